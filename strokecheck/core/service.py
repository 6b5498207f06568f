"""
Service base class for the StrokeCheck screening core.

A service declares the events it publishes (PRODUCES_EVENTS, registered as a
catalog when the service is built) and the events it handles (CONSUMES_EVENTS,
subscribed while it runs). Every service also reports its own lifecycle as
SERVICE_STATE_CHANGED events.
"""

import asyncio
import structlog
from abc import ABC, abstractmethod
from typing import Dict, Any, Iterator, Optional, ClassVar, Tuple
from .events import EventType, BaseEvent
from .registry import EventCatalog, ServiceRegistry
from .bus import EventBus, EventHandler

class BaseService(ABC):
    """
    A named participant on the event bus with a start/stop lifecycle.

    Subclasses fill in PRODUCES_EVENTS as ``{EventType: {'schema', 'description'}}``
    and CONSUMES_EVENTS as ``{EventType: handler method name}``.
    """

    PRODUCES_EVENTS: ClassVar[Dict[EventType, Dict[str, Any]]] = {}
    CONSUMES_EVENTS: ClassVar[Dict[EventType, str]] = {}

    def __init__(self,
                 event_bus: EventBus,
                 service_registry: ServiceRegistry,
                 name: Optional[str] = None,
                 config: Optional[Any] = None):
        self.event_bus = event_bus
        self.service_registry = service_registry
        self.name = name or type(self).__name__
        self.config = config
        self.logger = structlog.get_logger(service=self.name)

        self._running = False
        self._lock = asyncio.Lock()

        event_bus.registry.register_catalog(self.name, self.event_catalog())
        service_registry.register_service(self.name, self)

    @classmethod
    def event_catalog(cls) -> EventCatalog:
        """Everything this service publishes, its own state changes included."""
        from strokecheck.events.system import ServiceStateChangedEvent

        return {
            EventType.SERVICE_STATE_CHANGED: {
                'schema': ServiceStateChangedEvent,
                'description': "A service changed lifecycle state",
            },
            **cls.PRODUCES_EVENTS,
        }

    @property
    def running(self) -> bool:
        return self._running

    def _subscriptions(self) -> Iterator[Tuple[EventType, EventHandler]]:
        for event_type, handler_name in self.CONSUMES_EVENTS.items():
            yield event_type, getattr(self, handler_name)

    def _mark(self, running: bool) -> None:
        self._running = running
        state = 'running' if running else 'stopped'
        self.service_registry.set_service_state(self.name, state)
        self.logger.info(f"Service {state}")

    async def start(self) -> None:
        """Subscribe to consumed events. Overrides call super().start() first."""
        async with self._lock:
            if self._running:
                self.logger.warning("Service already running")
                return
            for event_type, handler in self._subscriptions():
                self.event_bus.subscribe(event_type, handler, self.name)
            self._mark(True)
            await self.publish_service_state('started')

    async def stop(self) -> None:
        """Unsubscribe from consumed events. Overrides call super().stop() last."""
        async with self._lock:
            if not self._running:
                self.logger.warning("Service already stopped")
                return
            await self.publish_service_state('stopping')
            for event_type, handler in self._subscriptions():
                self.event_bus.unsubscribe(event_type, handler)
            self._mark(False)
            await self.publish_service_state('stopped')

    async def publish(self, event: BaseEvent) -> None:
        """Publish an event under this service's name. Dropped while stopped."""
        if not self._running:
            self.logger.warning("Attempted publish while stopped", event_type=event.type)
            return
        await self.event_bus.publish(event, self.name)

    async def publish_service_state(self, state: str, error: Optional[str] = None) -> None:
        from strokecheck.events.system import ServiceStateChangedEvent

        await self.event_bus.publish(
            ServiceStateChangedEvent(service_name=self.name, state=state, error=error),
            self.name
        )

    @abstractmethod
    async def handle_event(self, event: BaseEvent) -> None:
        """Entry point for every event listed in CONSUMES_EVENTS."""
