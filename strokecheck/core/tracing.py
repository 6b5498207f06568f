"""
Event tracing for the StrokeCheck screening core.

Keeps a bounded buffer of recently published events so a screening session can be
inspected after the fact (which tests ran, in what order, and what they reported).
Only event metadata and payloads are kept; raw sensor streams never pass through here.
"""

import time
import logging
from typing import Dict, List, Any, Deque
from collections import deque
from .events import BaseEvent

class EventTracer:
    """
    Records events as they are published, keeping the most recent ``max_events``.
    """

    def __init__(self, max_events: int = 1000):
        """
        Initialize the event tracer.

        Args:
            max_events: Maximum number of events to keep in the buffer
        """
        self.max_events = max_events
        self.events: Deque[Dict[str, Any]] = deque(maxlen=max_events)
        self.logger = logging.getLogger(__name__)

    def record_event(self, event: BaseEvent) -> None:
        """
        Record an event in the trace buffer.

        Args:
            event: The event to record
        """
        self.events.append({
            'recorded_at': time.time(),
            'trace_id': event.trace_id,
            'type': event.type,
            'producer': event.producer_name,
            'event_data': event.model_dump(exclude={'trace_id', 'type', 'producer_name'})
        })
        self.logger.debug(f"Recorded event {event.type} from {event.producer_name}")

    def get_events_by_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e['type'] == event_type]

    def get_events_by_producer(self, producer_name: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e['producer'] == producer_name]

    def get_event_count(self) -> int:
        return len(self.events)
