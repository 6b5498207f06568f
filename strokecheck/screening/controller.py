"""
Single-test controller.

Drives one test through its phases and turns the captured samples into a TestResult.

State machine (``TestState``):
- IDLE -> COUNTDOWN on ``run()``. Fresh sample buffers are created; one tick per second.
- COUNTDOWN -> CAPTURING when the countdown reaches 0. The controller subscribes to the
  channels the profile needs. Sensor callbacks only enqueue into a bounded asyncio.Queue;
  a single pump task moves queued samples into the buffers.
- CAPTURING -> ANALYZING when the capture window closes. Subscriptions are removed
  before analysis and on every other exit path (cancel, task cancellation, errors).
  Sequence profiles go CAPTURING -> ANALYZING at every step boundary and back to
  CAPTURING for the next step.
- ANALYZING -> RESULT once extraction and classification are done (no I/O).
- ANALYZING -> ABNORMAL_EARLY_EXIT -> RESULT when a sequence hits its consecutive-miss
  limit; remaining steps are skipped.
- COUNTDOWN/CAPTURING -> IDLE on ``cancel()``: buffers are discarded and ``run()``
  returns a cancelled result without a verdict.

Sensor failures never escape: a subscribe error switches to the profile's fallback,
either clearly-labeled simulated data or the fail-safe path where an empty window
classifies as abnormal with insufficient data.
"""

import asyncio
import inspect
import logging
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from strokecheck.analysis.classifier import (
    INSUFFICIENT_VERDICT, Verdict, classify, classify_sequence, should_exit_early,
)
from strokecheck.analysis.metrics import dominant_direction, extract_metrics
from strokecheck.analysis.samples import Channel, Sample, SampleBuffer
from strokecheck.core.config import FallbackMode
from strokecheck.sensors.provider import SensorProvider, SimulatedSensorProvider, SubscriptionHandle
from .profiles import TestProfile
from .results import DataSource, TestResult, now_ms

StepJudge = Callable[[str, Sequence[Sample]], bool]

class TestState(str, Enum):
    __test__ = False

    IDLE = "idle"
    COUNTDOWN = "countdown"
    CAPTURING = "capturing"
    ANALYZING = "analyzing"
    ABNORMAL_EARLY_EXIT = "abnormal_early_exit"
    RESULT = "result"

# States in which the test holds (or is about to hold) the sensors and can be stopped
CANCELLABLE_STATES = (TestState.COUNTDOWN, TestState.CAPTURING)

class SingleTestController:
    """
    Runs one test profile against a sensor provider.

    Callbacks (``on_state_change``, ``on_tick``, ``on_step``, ``on_sensor_error``) may be
    plain functions or coroutine functions; coroutines are scheduled on the running loop
    and awaited before ``run()`` returns a result.
    """

    def __init__(self,
                 profile: TestProfile,
                 sensors: SensorProvider,
                 step_judge: Optional[StepJudge] = None,
                 queue_size: int = 2048,
                 simulated_provider_factory: Optional[Callable[[], SensorProvider]] = None,
                 on_state_change: Optional[Callable[[TestState], Any]] = None,
                 on_tick: Optional[Callable[[int], Any]] = None,
                 on_step: Optional[Callable[[int, str], Any]] = None,
                 on_sensor_error: Optional[Callable[[Channel, Exception, FallbackMode], Any]] = None):
        self.profile = profile
        self.sensors = sensors
        self.step_judge = step_judge or self._judge_direction
        self.queue_size = queue_size
        self.simulated_provider_factory = simulated_provider_factory or SimulatedSensorProvider
        self.on_state_change = on_state_change
        self.on_tick = on_tick
        self.on_step = on_step
        self.on_sensor_error = on_sensor_error

        self.state = TestState.IDLE
        self.buffers: Dict[Channel, SampleBuffer] = {}
        self.current_step: Optional[str] = None
        self.logger = logging.getLogger(__name__)

        self._handles: List[Tuple[SensorProvider, SubscriptionHandle]] = []
        self._queue: Optional[asyncio.Queue] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._cancel_event: Optional[asyncio.Event] = None
        self._accepting = False
        self._running = False
        self._data_source = DataSource.SENSOR
        self._notes: List[str] = []
        self._pending: Set[asyncio.Future] = set()

    @property
    def name(self) -> str:
        return self.profile.name

    @property
    def has_live_subscriptions(self) -> bool:
        return bool(self._handles)

    @property
    def is_running(self) -> bool:
        return self._running

    async def run(self) -> TestResult:
        """
        Run the test from IDLE to a terminal outcome.

        Returns:
            TestResult: The verdict, or a cancelled result if ``cancel()`` was called

        Raises:
            RuntimeError: If the controller is already running
        """
        if self._running:
            raise RuntimeError(f"Test {self.name} is already running")

        self._running = True
        self._cancel_event = asyncio.Event()
        self._data_source = DataSource.SENSOR
        self._notes = []
        self.current_step = None
        self.buffers = {channel: SampleBuffer(channel) for channel in self.profile.channels()}
        try:
            return await self._run_phases()
        except asyncio.CancelledError:
            self.logger.info(f"Test {self.name} task cancelled; tearing down")
            self._discard()
            raise
        finally:
            self._unsubscribe_all()
            self._running = False

    def cancel(self) -> bool:
        """
        Stop the test: unsubscribe, discard the buffers and return to IDLE.

        Returns:
            bool: True if a running test was cancelled
        """
        if not self._running or self.state not in CANCELLABLE_STATES:
            return False
        self.logger.info(f"Test {self.name} cancelled during {self.state.value}")
        self._cancel_event.set()
        self._discard()
        return True

    async def _run_phases(self) -> TestResult:
        # State callbacks run synchronously and may cancel the test
        self._set_state(TestState.COUNTDOWN)
        if self._cancel_event.is_set():
            return await self._cancelled()
        for remaining in range(self.profile.countdown_s, 0, -1):
            self._notify(self.on_tick, remaining)
            if await self._wait(1.0):
                return await self._cancelled()

        self._set_state(TestState.CAPTURING)
        if self._cancel_event.is_set():
            return await self._cancelled()
        self._subscribe()
        if self._cancel_event.is_set():
            return await self._cancelled()

        if self.profile.is_sequence:
            outcomes = await self._capture_sequence()
            if outcomes is None:
                return await self._cancelled()
            verdict, metrics = self._analyze_sequence(outcomes), MappingProxyType({})
        else:
            if await self._wait(self.profile.capture_s):
                return await self._cancelled()
            self._close_window()
            self._set_state(TestState.ANALYZING)
            outcomes = []
            verdict, metrics = self._analyze_window()

        if verdict.insufficient_data:
            self._notes.append("insufficient data")

        self._set_state(TestState.RESULT)
        result = TestResult(
            test_name=self.name,
            verdict=verdict,
            completed_at=now_ms(),
            data_source=self._data_source,
            metrics=metrics,
            step_outcomes=tuple(outcomes),
            notes=tuple(self._notes),
        )
        self.logger.info(
            f"Test {self.name} finished: abnormal={verdict.is_abnormal} "
            f"score={verdict.score:.2f} source={self._data_source.value}"
        )
        await self._flush_notifications()
        return result

    async def _capture_sequence(self) -> Optional[List[bool]]:
        """Capture and judge each step; None if cancelled."""
        outcomes: List[bool] = []
        for index, step in enumerate(self.profile.steps):
            if index:
                self._set_state(TestState.CAPTURING)
            self.current_step = step
            self._notify(self.on_step, index, step)
            if self._cancel_event.is_set():
                return None

            accel = self.buffers[Channel.ACCEL]
            start = len(accel)
            if await self._wait(self.profile.step_s):
                return None
            self._drain_queue()

            self._set_state(TestState.ANALYZING)
            outcomes.append(self._judge_step(step, accel.snapshot()[start:]))
            if should_exit_early(outcomes, self.profile.max_consecutive_misses):
                self.logger.info(f"Test {self.name} ending early after {len(outcomes)} steps")
                self._set_state(TestState.ABNORMAL_EARLY_EXIT)
                break

        self._close_window()
        return outcomes

    def _judge_step(self, step: str, window: Sequence[Sample]) -> bool:
        try:
            return bool(self.step_judge(step, window))
        except Exception as e:
            self.logger.error(f"Step judge failed for {step!r}: {e}; counting as missed")
            return False

    def _judge_direction(self, step: str, window: Sequence[Sample]) -> bool:
        return dominant_direction(window, self.profile.direction_dead_zone) == step

    def _analyze_window(self) -> Tuple[Verdict, Mapping[str, float]]:
        metrics = extract_metrics(self.profile.metric_names(), self.buffers,
                                  **self.profile.extractor_params())
        return classify(metrics, self.profile.active_thresholds()), metrics

    def _analyze_sequence(self, outcomes: List[bool]) -> Verdict:
        if len(self.buffers[Channel.ACCEL]) < 2:
            return INSUFFICIENT_VERDICT
        return classify_sequence(outcomes, self.profile.max_misses,
                                 self.profile.max_consecutive_misses)

    def _subscribe(self) -> None:
        """Subscribe every needed channel, switching to the fallback if any subscribe fails."""
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._accepting = True
        self._pump_task = asyncio.get_running_loop().create_task(self._pump(self._queue))

        failure = self._subscribe_channels(self.sensors)
        if failure is None:
            return

        channel, error = failure
        self._unsubscribe_all(stop_pump=False)
        self._reset_window()
        self.logger.warning(
            f"Sensor unavailable for {self.name} ({channel.value}): {error}; "
            f"fallback={self.profile.fallback.value}"
        )
        self._notify(self.on_sensor_error, channel, error, self.profile.fallback)
        if self._cancel_event.is_set():
            return

        if self.profile.fallback == FallbackMode.SIMULATED:
            self._data_source = DataSource.SIMULATED
            self._notes.append("simulated sensor data")
            failure = self._subscribe_channels(self.simulated_provider_factory())
            if failure is None:
                return
            self._unsubscribe_all(stop_pump=False)
            self._reset_window()
            self.logger.error(f"Simulated sensor failed for {self.name}: {failure[1]}")

        self._data_source = DataSource.UNAVAILABLE
        self._notes.append("sensor unavailable")

    def _subscribe_channels(self, provider: SensorProvider) -> Optional[Tuple[Channel, Exception]]:
        for channel in self.profile.channels():
            try:
                handle = provider.subscribe(channel, self._make_callback(channel, self._queue))
            except Exception as e:
                return channel, e
            self._handles.append((provider, handle))
        return None

    def _make_callback(self, channel: Channel, queue: asyncio.Queue) -> Callable[[Sample], None]:
        def on_sample(sample: Sample) -> None:
            if not self._accepting or queue is not self._queue:
                return
            try:
                queue.put_nowait((channel, sample))
            except asyncio.QueueFull:
                self.logger.warning(f"Sample queue full for {self.name}; dropping {channel.value} sample")
        return on_sample

    async def _pump(self, queue: asyncio.Queue) -> None:
        while True:
            channel, sample = await queue.get()
            buffer = self.buffers.get(channel)
            if buffer is not None:
                buffer.append(sample)

    def _drain_queue(self) -> None:
        if self._queue is None:
            return
        while True:
            try:
                channel, sample = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            buffer = self.buffers.get(channel)
            if buffer is not None:
                buffer.append(sample)

    def _reset_window(self) -> None:
        """Throw away samples from a provider that failed part way through subscribing."""
        while self._queue is not None and not self._queue.empty():
            self._queue.get_nowait()
        self.buffers = {channel: SampleBuffer(channel) for channel in self.buffers}

    def _close_window(self) -> None:
        """End capture: unsubscribe first, then move whatever is still queued into the buffers."""
        self._unsubscribe_all()
        self._drain_queue()
        self._queue = None

    def _unsubscribe_all(self, stop_pump: bool = True) -> None:
        handles, self._handles = self._handles, []
        for provider, handle in handles:
            try:
                provider.unsubscribe(handle)
            except Exception as e:
                self.logger.error(f"Failed to unsubscribe {handle.channel.value} for {self.name}: {e}")
        if stop_pump:
            self._accepting = False
            if self._pump_task is not None:
                self._pump_task.cancel()
                self._pump_task = None

    def _discard(self) -> None:
        self._unsubscribe_all()
        self._queue = None
        self.buffers = {}
        self.current_step = None
        self._set_state(TestState.IDLE)

    async def _cancelled(self) -> TestResult:
        if self.state != TestState.IDLE:
            self._discard()
        await self._flush_notifications()
        return TestResult.cancelled_result(self.name)

    async def _wait(self, seconds: float) -> bool:
        """Sleep for a phase timer; True if the test was cancelled meanwhile."""
        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
        return self._cancel_event.is_set()

    def _set_state(self, state: TestState) -> None:
        if state == self.state:
            return
        self.logger.debug(f"Test {self.name}: {self.state.value} -> {state.value}")
        self.state = state
        self._notify(self.on_state_change, state)

    def _notify(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            outcome = callback(*args)
        except Exception as e:
            self.logger.error(f"Callback {getattr(callback, '__qualname__', callback)} failed: {e}")
            return
        if inspect.isawaitable(outcome):
            future = asyncio.ensure_future(outcome)
            self._pending.add(future)
            future.add_done_callback(self._pending.discard)

    async def _flush_notifications(self) -> None:
        if not self._pending:
            return
        results = await asyncio.gather(*list(self._pending), return_exceptions=True)
        for outcome in results:
            if isinstance(outcome, Exception):
                self.logger.error(f"Notification for {self.name} failed: {outcome}")
