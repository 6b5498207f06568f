"""
System events for the StrokeCheck screening core.

This module defines events related to application lifecycle, service state,
and sensor availability.
"""

from typing import Dict, Any, Optional, Literal
from strokecheck.core.events import BaseEvent, EventType

class ApplicationStartupCompletedEvent(BaseEvent):
    """
    Event published when application startup has completed.

    This event signals that all core services have been initialized
    and the application is ready to accept screening requests.
    """
    type: Literal[EventType.APPLICATION_STARTUP_COMPLETED] = EventType.APPLICATION_STARTUP_COMPLETED

class ServiceStateChangedEvent(BaseEvent):
    """
    Event published when a service changes state.
    """
    type: Literal[EventType.SERVICE_STATE_CHANGED] = EventType.SERVICE_STATE_CHANGED
    service_name: str
    state: str  # 'registered', 'started', 'stopping', 'stopped', 'error'
    error: Optional[str] = None  # Present only if state is 'error'

class ServiceErrorEvent(BaseEvent):
    """
    Event published when a service encounters an error it recovered from.
    """
    type: Literal[EventType.SERVICE_ERROR] = EventType.SERVICE_ERROR
    service_name: str
    error_type: str
    error_message: str
    details: Optional[Dict[str, Any]] = None

class SensorErrorEvent(BaseEvent):
    """
    Event published when the sensor provider could not be subscribed.

    The test still completes (on the fallback path); this event lets the
    presentation layer explain why, e.g. to ask for motion permissions.
    """
    type: Literal[EventType.SENSOR_ERROR] = EventType.SENSOR_ERROR
    test_name: str
    channel: str
    error_message: str
    fallback: str
