"""
Screening service: runs screening suites on request and reports them on the event bus.

The presentation layer publishes ScreeningRequestedEvent to start a suite and
TestCancelRequestedEvent / ScreeningAbortRequestedEvent to stop it. Everything the
UI needs to render (phase changes, countdown ticks, results, the final outcome and
the emergency recommendation) comes back as events.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from strokecheck.core.bus import EventBus
from strokecheck.core.config import ApplicationConfig, get_config
from strokecheck.core.events import BaseEvent, EventType
from strokecheck.core.registry import ServiceRegistry
from strokecheck.core.service import BaseService
from strokecheck.events.screening import (
    ScreeningRequestedEvent, TestStateChangedEvent, CountdownTickEvent, TestCompletedEvent,
    TestCancelledEvent, ScreeningCompletedEvent, EmergencyTriggeredEvent,
)
from strokecheck.events.system import ServiceErrorEvent, SensorErrorEvent
from strokecheck.screening.controller import SingleTestController, StepJudge, TestState
from strokecheck.screening.orchestrator import ScreeningOrchestrator
from strokecheck.screening.profiles import (
    TestProfile, balance_profile, gait_profile, stillness_profile, direction_profile,
    posture_profile, default_suite,
)
from strokecheck.screening.results import OrchestrationState, TestResult
from strokecheck.sensors.provider import SensorProvider, SimulatedSensorProvider

class EmergencyContact(BaseModel):
    name: str
    phone: str

class SessionContext(BaseModel):
    """The signed-in user, passed explicitly to the service for the emergency payload."""
    user_id: Optional[str] = None
    emergency_contacts: List[EmergencyContact] = Field(default_factory=list)

PROFILE_FACTORIES: Dict[str, Callable[..., TestProfile]] = {
    "balance": balance_profile,
    "gait": gait_profile,
    "stillness": stillness_profile,
    "direction_tracking": direction_profile,
}

class ScreeningService(BaseService):
    """Runs one screening suite at a time against the configured sensor provider."""

    PRODUCES_EVENTS = {
        EventType.TEST_STATE_CHANGED: {
            'schema': TestStateChangedEvent,
            'description': "The active test moved to a new phase",
        },
        EventType.COUNTDOWN_TICK: {
            'schema': CountdownTickEvent,
            'description': "One second of the pre-capture countdown elapsed",
        },
        EventType.TEST_COMPLETED: {
            'schema': TestCompletedEvent,
            'description': "A test produced a verdict",
        },
        EventType.TEST_CANCELLED: {
            'schema': TestCancelledEvent,
            'description': "A test was cancelled before producing a verdict",
        },
        EventType.SCREENING_COMPLETED: {
            'schema': ScreeningCompletedEvent,
            'description': "A screening suite reached its final state",
        },
        EventType.EMERGENCY_TRIGGERED: {
            'schema': EmergencyTriggeredEvent,
            'description': "Abnormal results reached the quorum; emergency help is recommended",
        },
        EventType.SENSOR_ERROR: {
            'schema': SensorErrorEvent,
            'description': "A test could not subscribe to the motion sensors",
        },
        EventType.SERVICE_ERROR: {
            'schema': ServiceErrorEvent,
            'description': "The screening service rejected a request or a suite failed",
        },
    }

    CONSUMES_EVENTS = {
        EventType.SCREENING_REQUESTED: 'handle_event',
        EventType.TEST_CANCEL_REQUESTED: 'handle_event',
        EventType.SCREENING_ABORT_REQUESTED: 'handle_event',
    }

    def __init__(self,
                 event_bus: EventBus,
                 service_registry: ServiceRegistry,
                 sensors: SensorProvider,
                 session: Optional[SessionContext] = None,
                 config: Optional[ApplicationConfig] = None,
                 step_judge: Optional[StepJudge] = None,
                 name: Optional[str] = None):
        super().__init__(event_bus, service_registry, name=name, config=config or get_config())
        self.sensors = sensors
        self.session = session or SessionContext()
        self.step_judge = step_judge
        self.orchestrator: Optional[ScreeningOrchestrator] = None
        self._screening_task: Optional[asyncio.Task] = None

    @property
    def is_screening(self) -> bool:
        return self._screening_task is not None and not self._screening_task.done()

    async def stop(self) -> None:
        """Abort any running suite before unsubscribing."""
        if self.is_screening:
            self.orchestrator.abort()
            try:
                await asyncio.wait_for(asyncio.shield(self._screening_task),
                                       timeout=self.config.service.service_shutdown_timeout)
            except asyncio.TimeoutError:
                self.logger.warning("Screening did not stop in time; cancelling")
                self._screening_task.cancel()
        await super().stop()

    async def handle_event(self, event: BaseEvent) -> None:
        if event.type == EventType.SCREENING_REQUESTED:
            await self._start_screening(event)
        elif event.type == EventType.TEST_CANCEL_REQUESTED:
            if not self.is_screening or not self.orchestrator.cancel_current():
                self.logger.info("Cancel requested but no test is cancellable")
        elif event.type == EventType.SCREENING_ABORT_REQUESTED:
            if self.is_screening:
                self.logger.info("Screening abort requested", reason=getattr(event, 'reason', None))
                self.orchestrator.abort()

    async def wait_for_screening(self) -> Optional[OrchestrationState]:
        """Wait for the running suite (if any) and return its final state."""
        if self._screening_task is None:
            return None
        return await self._screening_task

    async def _start_screening(self, event: ScreeningRequestedEvent) -> None:
        if self.is_screening:
            await self._publish_error("screening_in_progress", "A screening is already running")
            return

        screening = self.config.screening
        quorum = event.quorum if event.quorum is not None else screening.quorum
        try:
            profiles = self.build_profiles(event.tests, event.difficulty)
            orchestrator = ScreeningOrchestrator(
                [self._make_controller(index, profile) for index, profile in enumerate(profiles)],
                quorum=quorum,
                on_result=self._on_result,
                on_emergency=self._on_emergency,
                on_complete=self._on_complete,
            )
        except (KeyError, ValueError) as e:
            await self._publish_error("invalid_request", str(e))
            return

        self.orchestrator = orchestrator
        self.logger.info("Starting screening", tests=[p.name for p in profiles], quorum=quorum)
        self._screening_task = asyncio.create_task(self._run_screening(orchestrator))

    def build_profiles(self, names: Optional[Sequence[str]], difficulty: int = 1) -> List[TestProfile]:
        """
        Resolve requested test names to profiles built from the screening config.

        Raises:
            KeyError: For an unknown test name
            ValueError: For an invalid posture difficulty
        """
        screening = self.config.screening
        if not names:
            return default_suite(screening)

        profiles = []
        for name in names:
            if name == "posture":
                profiles.append(posture_profile(difficulty, screening))
            elif name in PROFILE_FACTORIES:
                profiles.append(PROFILE_FACTORIES[name](screening))
            else:
                raise KeyError(f"Unknown test: {name}")
        return profiles

    def _make_controller(self, index: int, profile: TestProfile) -> SingleTestController:
        sensor_config = self.config.sensor

        async def on_state_change(state: TestState) -> None:
            await self.publish(TestStateChangedEvent(
                test_name=profile.name, test_index=index, state=state.value))

        async def on_step(step_index: int, step: str) -> None:
            await self.publish(TestStateChangedEvent(
                test_name=profile.name, test_index=index,
                state=TestState.CAPTURING.value, step=step))

        async def on_tick(remaining: int) -> None:
            await self.publish(CountdownTickEvent(test_name=profile.name, remaining=remaining))

        async def on_sensor_error(channel, error, fallback) -> None:
            await self.publish(SensorErrorEvent(
                test_name=profile.name, channel=channel.value,
                error_message=str(error), fallback=fallback.value))

        return SingleTestController(
            profile,
            self.sensors,
            step_judge=self.step_judge,
            queue_size=self.config.screening.queue_size,
            simulated_provider_factory=lambda: SimulatedSensorProvider(
                rate_hz=sensor_config.simulated_rate_hz,
                noise=sensor_config.simulated_noise,
                seed=sensor_config.simulated_seed,
            ),
            on_state_change=on_state_change,
            on_tick=on_tick,
            on_step=on_step,
            on_sensor_error=on_sensor_error,
        )

    async def _run_screening(self, orchestrator: ScreeningOrchestrator) -> OrchestrationState:
        try:
            return await orchestrator.run()
        except asyncio.CancelledError:
            self.logger.info("Screening task cancelled")
            raise
        except Exception as e:
            self.logger.error("Screening failed", error=str(e), exc_info=True)
            await self._publish_error("screening_failed", str(e))
            return orchestrator.state

    async def _on_result(self, index: int, result: TestResult, state: OrchestrationState) -> None:
        if result.cancelled:
            await self.publish(TestCancelledEvent(test_name=result.test_name, test_index=index))
            return
        await self.publish(TestCompletedEvent(
            test_name=result.test_name,
            test_index=index,
            is_abnormal=result.is_abnormal,
            result=result.to_dict(),
            abnormal_count=state.abnormal_count,
        ))

    async def _on_emergency(self, state: OrchestrationState) -> None:
        await self.publish(EmergencyTriggeredEvent(
            abnormal_count=state.abnormal_count,
            results=[r.to_dict() for r in state.results],
            user_id=self.session.user_id,
            emergency_contacts=[c.model_dump() for c in self.session.emergency_contacts],
        ))

    async def _on_complete(self, state: OrchestrationState) -> None:
        self.logger.info("Screening finished", terminal=state.terminal.value,
                         abnormal_count=state.abnormal_count)
        await self.publish(ScreeningCompletedEvent(terminal=state.terminal.value, state=state.to_dict()))

    async def _publish_error(self, error_type: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.logger.warning("Screening request rejected", error_type=error_type, error=message)
        await self.publish(ServiceErrorEvent(
            service_name=self.name, error_type=error_type, error_message=message, details=details))
