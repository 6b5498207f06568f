"""
Event definitions for the StrokeCheck screening core.

This package contains all event types used in the system, organized by functional area.
"""

# Re-export core types
from strokecheck.core.events import EventType, BaseEvent
from .system import (
    ApplicationStartupCompletedEvent, ServiceStateChangedEvent, ServiceErrorEvent, SensorErrorEvent,
)
from .screening import (
    ScreeningRequestedEvent, TestCancelRequestedEvent, ScreeningAbortRequestedEvent,
    TestStateChangedEvent, CountdownTickEvent, TestCompletedEvent, TestCancelledEvent,
    ScreeningCompletedEvent, EmergencyTriggeredEvent,
)
