"""
Screening events for the StrokeCheck screening core.

This module defines the requests the presentation layer sends to the screening
service and the lifecycle events the service publishes back: per-test state,
countdown ticks, results, suite completion and emergency escalation.
"""

from typing import Dict, Any, Optional, Literal, List
from strokecheck.core.events import BaseEvent, EventType

class ScreeningRequestedEvent(BaseEvent):
    """
    Event requesting a screening suite to start.

    With no ``tests`` the default three-test suite runs.
    """
    type: Literal[EventType.SCREENING_REQUESTED] = EventType.SCREENING_REQUESTED
    tests: Optional[List[str]] = None  # Profile names ('balance', 'gait', 'stillness', 'direction_tracking', 'posture')
    difficulty: int = 1  # Posture difficulty tier (1-6)
    quorum: Optional[int] = None  # Overrides the configured quorum

class TestCancelRequestedEvent(BaseEvent):
    """
    Event requesting the active test to be cancelled.

    The suite moves on to the next test; the cancelled test is not counted.
    """
    __test__ = False
    type: Literal[EventType.TEST_CANCEL_REQUESTED] = EventType.TEST_CANCEL_REQUESTED

class ScreeningAbortRequestedEvent(BaseEvent):
    """
    Event requesting the whole suite to stop, e.g. when the user leaves the screen.
    """
    type: Literal[EventType.SCREENING_ABORT_REQUESTED] = EventType.SCREENING_ABORT_REQUESTED
    reason: Optional[str] = None

class TestStateChangedEvent(BaseEvent):
    """
    Event published when the active test moves to a new phase.
    """
    __test__ = False
    type: Literal[EventType.TEST_STATE_CHANGED] = EventType.TEST_STATE_CHANGED
    test_name: str
    test_index: int
    state: str  # 'idle', 'countdown', 'capturing', 'analyzing', 'abnormal_early_exit', 'result'
    step: Optional[str] = None  # Current prompt for sequence tests

class CountdownTickEvent(BaseEvent):
    """
    Event published once per second during the pre-capture countdown.
    """
    type: Literal[EventType.COUNTDOWN_TICK] = EventType.COUNTDOWN_TICK
    test_name: str
    remaining: int  # Seconds left before capture starts

class TestCompletedEvent(BaseEvent):
    """
    Event published when a test produced a verdict.
    """
    __test__ = False
    type: Literal[EventType.TEST_COMPLETED] = EventType.TEST_COMPLETED
    test_name: str
    test_index: int
    is_abnormal: bool
    result: Dict[str, Any]  # TestResult.to_dict()
    abnormal_count: int  # Abnormal results so far, this one included

class TestCancelledEvent(BaseEvent):
    """
    Event published when a test was cancelled before producing a verdict.
    """
    __test__ = False
    type: Literal[EventType.TEST_CANCELLED] = EventType.TEST_CANCELLED
    test_name: str
    test_index: int

class ScreeningCompletedEvent(BaseEvent):
    """
    Event published once per suite with the final state, whatever the outcome.
    """
    type: Literal[EventType.SCREENING_COMPLETED] = EventType.SCREENING_COMPLETED
    terminal: str  # 'all_normal', 'emergency', 'aborted'
    state: Dict[str, Any]  # OrchestrationState.to_dict()

class EmergencyTriggeredEvent(BaseEvent):
    """
    Event published when enough tests were abnormal to recommend emergency help.

    The presentation layer offers the emergency call and the first contact.
    """
    type: Literal[EventType.EMERGENCY_TRIGGERED] = EventType.EMERGENCY_TRIGGERED
    abnormal_count: int
    results: List[Dict[str, Any]]
    user_id: Optional[str] = None
    emergency_contacts: List[Dict[str, str]] = []
