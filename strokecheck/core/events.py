"""
Core event system for the StrokeCheck screening core.

This module defines the base event model and event type enum that form the foundation
of the typed event system. All events in the system should inherit from BaseEvent.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from enum import Enum
import time
import uuid

class EventType(str, Enum):
    """
    Enum defining all event types in the system.

    Using string-based enum to ensure JSON serialization works properly.
    """
    # Screening requests (consumed by the screening service)
    SCREENING_REQUESTED = "screening_requested"
    TEST_CANCEL_REQUESTED = "test_cancel_requested"
    SCREENING_ABORT_REQUESTED = "screening_abort_requested"

    # Single test lifecycle
    TEST_STATE_CHANGED = "test_state_changed"
    COUNTDOWN_TICK = "countdown_tick"
    TEST_COMPLETED = "test_completed"
    TEST_CANCELLED = "test_cancelled"

    # Suite lifecycle
    SCREENING_COMPLETED = "screening_completed"
    EMERGENCY_TRIGGERED = "emergency_triggered"

    # System events
    APPLICATION_STARTUP_COMPLETED = "application_startup_completed"
    SERVICE_STATE_CHANGED = "service_state_changed"
    SERVICE_ERROR = "service_error"
    SENSOR_ERROR = "sensor_error"

def generate_trace_id() -> str:
    """Generate a unique trace ID for event tracing."""
    return str(uuid.uuid4())

class BaseEvent(BaseModel):
    """
    Base model for all events with common metadata.

    All events in the system should inherit from this class and specify the event type
    and any additional payload fields required for that event.
    """
    # Allow extra attributes and store enum values rather than enum members
    model_config = ConfigDict(extra="allow", use_enum_values=True)

    type: EventType
    producer_name: str = ""
    timestamp: float = Field(default_factory=time.time)
    trace_id: Optional[str] = Field(default_factory=generate_trace_id)
