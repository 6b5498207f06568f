"""
Event bus for the StrokeCheck screening core.

Carries requests from the presentation layer to the screening service and the
screening lifecycle back out. Events are validated against the registry before
delivery; a failing handler never reaches the publisher.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Callable, Awaitable
from .events import EventType, BaseEvent
from .registry import EventRegistry
from .tracing import EventTracer

EventHandler = Callable[[BaseEvent], Awaitable[None]]

class EventBus:
    """
    Validating publish/subscribe hub. Handlers for one event run concurrently.
    A handler subscribed with ``event_type=None`` receives every event.
    """

    def __init__(self, registry: EventRegistry, tracer: Optional[EventTracer] = None):
        self.registry = registry
        self.tracer = tracer
        self._handlers: Dict[Optional[EventType], List[EventHandler]] = {}
        self.logger = logging.getLogger(__name__)

    async def publish(self, event: BaseEvent, sender: str) -> int:
        """
        Validate, trace and deliver an event.

        Args:
            event: The event to publish
            sender: Producer name, stamped on the event if it has none

        Returns:
            int: Number of handlers the event was delivered to (0 if rejected)
        """
        event.producer_name = event.producer_name or sender
        try:
            self.registry.validate_schema(event)
        except (ValueError, TypeError) as e:
            self.logger.error(f"Rejected event from {sender}: {e}")
            return 0

        if self.tracer:
            self.tracer.record_event(event)

        handlers = self._handlers_for(event.type)
        if not handlers:
            self.logger.debug(f"No subscribers for {event.type}")
            return 0

        outcomes = await asyncio.gather(*(self._dispatch(handler, event) for handler in handlers),
                                        return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
        return len(handlers)

    def _handlers_for(self, event_type: EventType) -> List[EventHandler]:
        return self._handlers.get(event_type, []) + self._handlers.get(None, [])

    async def _dispatch(self, handler: EventHandler, event: BaseEvent) -> None:
        try:
            await handler(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"Handler {handler.__qualname__} failed on {event.type}: {e}")

    def subscribe(self, event_type: Optional[EventType], handler: EventHandler, service_name: str) -> None:
        """
        Subscribe a handler to one event type, or to every event if ``event_type`` is None.
        """
        self._handlers.setdefault(event_type, []).append(handler)
        if event_type is not None:
            self.registry.register_consumer(service_name, event_type)
        self.logger.debug(f"{service_name} subscribed to {event_type or 'all events'}")

    def unsubscribe(self, event_type: Optional[EventType], handler: EventHandler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self._handlers.pop(event_type, None)
