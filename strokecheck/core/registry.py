"""
Event and service registry for the StrokeCheck screening core.

Every event that crosses the bus must have a registered schema: the screening
service registers what it publishes, the application registers the requests the
presentation layer sends. The service registry tracks lifecycle state per service.
"""

import logging
from typing import Dict, Mapping, Set, Type, Any, Optional
from .events import EventType, BaseEvent

# Event type -> {'schema': event class, 'description': text}
EventCatalog = Mapping[EventType, Mapping[str, Any]]

class EventRegistry:
    """
    Schemas, producers and consumers of the events on one bus.
    """

    def __init__(self):
        self._schemas: Dict[EventType, Type[BaseEvent]] = {}
        self._descriptions: Dict[EventType, str] = {}
        self._producers: Dict[EventType, Set[str]] = {}
        self._consumers: Dict[EventType, Set[str]] = {}
        self._logger = logging.getLogger(__name__)

    def register_event(self, event_type: EventType, event_schema: Type[BaseEvent], description: str):
        """
        Register the schema for an event type. Re-registering replaces the schema.

        Args:
            event_type: The type of event being registered
            event_schema: The pydantic model class events of this type must be
            description: What the event means to the screening flow
        """
        self._schemas[event_type] = event_schema
        self._descriptions[event_type] = description
        self._logger.debug(f"Registered event type: {event_type}")

    def register_catalog(self, producer: str, catalog: EventCatalog) -> None:
        """Register every event a producer publishes, with its schema and description."""
        for event_type, info in catalog.items():
            self.register_producer(producer, event_type)
            self.register_event(event_type, info['schema'], info['description'])

    def register_producer(self, service_name: str, event_type: EventType):
        self._producers.setdefault(event_type, set()).add(service_name)

    def register_consumer(self, service_name: str, event_type: EventType):
        self._consumers.setdefault(event_type, set()).add(service_name)

    def validate_schema(self, event: BaseEvent) -> bool:
        """
        Check an event against the schema registered for its type.

        Raises:
            ValueError: If the event type was never registered
            TypeError: If the event is not an instance of the registered schema
        """
        schema = self._schemas.get(event.type)
        if schema is None:
            raise ValueError(f"Unknown event type: {event.type}")
        if not isinstance(event, schema):
            raise TypeError(f"{type(event).__name__} does not match schema {schema.__name__} for {event.type}")
        return True

    def get_event_flow(self, event_type: EventType) -> Dict[str, Set[str]]:
        """Producers and consumers registered for an event type."""
        return {
            'producers': set(self._producers.get(event_type, ())),
            'consumers': set(self._consumers.get(event_type, ())),
        }

class ServiceRegistry:
    """
    Services by name with their lifecycle state ('registered', 'running', 'stopped').
    """

    def __init__(self):
        self._services: Dict[str, Any] = {}
        self._states: Dict[str, str] = {}
        self._logger = logging.getLogger(__name__)

    def register_service(self, service_name: str, service_instance: Any):
        self._services[service_name] = service_instance
        self._states[service_name] = "registered"
        self._logger.debug(f"Registered service: {service_name}")

    def get_service(self, service_name: str) -> Optional[Any]:
        return self._services.get(service_name)

    def set_service_state(self, service_name: str, state: str):
        self._states[service_name] = state
        self._logger.debug(f"Service {service_name} -> {state}")

    def get_service_state(self, service_name: str) -> Optional[str]:
        return self._states.get(service_name)

    def get_all_services(self) -> Dict[str, Any]:
        return dict(self._services)
