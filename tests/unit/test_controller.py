"""
Unit tests for the SingleTestController.

A scripted provider replays fixed samples as soon as a channel is subscribed, so
tests run with a zero countdown and short capture windows.
"""

import asyncio
import unittest
from unittest.mock import MagicMock

from strokecheck.analysis.metrics import dominant_direction
from strokecheck.analysis.samples import Channel, Sample
from strokecheck.core.config import FallbackMode
from strokecheck.screening.controller import SingleTestController, TestState
from strokecheck.screening.profiles import balance_profile, direction_profile, stillness_profile
from strokecheck.screening.results import DataSource
from strokecheck.sensors.provider import CallbackSensorProvider, SensorUnavailableError

def make_samples(points, start=0, interval_ms=20):
    return [Sample(float(x), float(y), float(z), start + i * interval_ms)
            for i, (x, y, z) in enumerate(points)]

class ScriptedProvider(CallbackSensorProvider):
    """Delivers a fixed list of samples per channel on subscribe."""

    def __init__(self, script=None):
        super().__init__()
        self.script = script or {}
        self.subscribed = []

    def subscribe(self, channel, callback):
        handle = super().subscribe(channel, callback)
        self.subscribed.append(channel)
        for sample in self.script.get(channel, ()):
            callback(sample)
        return handle

STILL = {
    Channel.ACCEL: make_samples([(0.0, 0.0, 9.8)] * 50),
    Channel.GYRO: make_samples([(0.0, 0.0, 0.0)] * 50),
}

class TestSingleWindowTests(unittest.IsolatedAsyncioTestCase):
    """Test cases for single-window profiles."""

    async def test_still_device_is_normal(self):
        provider = ScriptedProvider(STILL)
        states = []
        controller = SingleTestController(balance_profile(countdown_s=0, capture_s=0.02), provider,
                                          on_state_change=states.append)

        result = await controller.run()

        self.assertFalse(result.cancelled)
        self.assertFalse(result.is_abnormal)
        self.assertEqual(result.data_source, DataSource.SENSOR)
        self.assertEqual(result.metrics["energy"], 0.0)
        self.assertEqual(result.metrics["tilt"], 0.0)
        self.assertEqual(states, [TestState.COUNTDOWN, TestState.CAPTURING, TestState.ANALYZING, TestState.RESULT])
        self.assertEqual(provider.subscribed, [Channel.ACCEL, Channel.GYRO])
        self.assertEqual(provider.live_subscriptions, 0)
        self.assertFalse(controller.has_live_subscriptions)

    async def test_shaking_device_is_abnormal(self):
        provider = ScriptedProvider({Channel.ACCEL: make_samples([(5, 5, 5), (-5, -5, -5)] * 5)})
        controller = SingleTestController(stillness_profile(countdown_s=0, capture_s=0.02), provider)

        result = await controller.run()

        self.assertTrue(result.is_abnormal)
        self.assertEqual(result.metrics["shake_count"], 9.0)
        self.assertEqual(provider.subscribed, [Channel.ACCEL])

    async def test_empty_window_is_insufficient(self):
        controller = SingleTestController(balance_profile(countdown_s=0, capture_s=0.02), ScriptedProvider())

        result = await controller.run()

        self.assertTrue(result.is_abnormal)
        self.assertTrue(result.verdict.insufficient_data)
        self.assertIn("insufficient data", result.notes)

    async def test_countdown_ticks(self):
        ticks = []
        controller = SingleTestController(balance_profile(countdown_s=1, capture_s=0.01),
                                          ScriptedProvider(STILL), on_tick=ticks.append)
        await controller.run()
        self.assertEqual(ticks, [1])

    async def test_async_callbacks_are_awaited(self):
        seen = []

        async def on_state_change(state):
            await asyncio.sleep(0)
            seen.append(state)

        controller = SingleTestController(balance_profile(countdown_s=0, capture_s=0.01),
                                          ScriptedProvider(STILL), on_state_change=on_state_change)
        await controller.run()
        self.assertIn(TestState.RESULT, seen)

    async def test_failing_callback_does_not_break_the_test(self):
        controller = SingleTestController(balance_profile(countdown_s=0, capture_s=0.01),
                                          ScriptedProvider(STILL),
                                          on_state_change=MagicMock(side_effect=RuntimeError("ui gone")))
        result = await controller.run()
        self.assertFalse(result.is_abnormal)

    async def test_rerun_starts_with_fresh_buffers(self):
        provider = ScriptedProvider(STILL)
        controller = SingleTestController(balance_profile(countdown_s=0, capture_s=0.01), provider)
        await controller.run()
        await controller.run()
        self.assertEqual(len(controller.buffers[Channel.ACCEL]), 50)

    async def test_result_metrics_are_read_only(self):
        controller = SingleTestController(balance_profile(countdown_s=0, capture_s=0.01), ScriptedProvider(STILL))
        result = await controller.run()
        with self.assertRaises(TypeError):
            result.metrics["energy"] = 99.0

    async def test_run_while_running(self):
        controller = SingleTestController(balance_profile(countdown_s=0, capture_s=5.0), ScriptedProvider(STILL))
        task = asyncio.create_task(controller.run())
        await asyncio.sleep(0.01)
        with self.assertRaises(RuntimeError):
            await controller.run()
        controller.cancel()
        await task

class TestCancellation(unittest.IsolatedAsyncioTestCase):

    async def test_cancel_during_capture(self):
        provider = ScriptedProvider(STILL)
        controller = SingleTestController(balance_profile(countdown_s=0, capture_s=5.0), provider)
        task = asyncio.create_task(controller.run())
        await asyncio.sleep(0.01)
        self.assertEqual(controller.state, TestState.CAPTURING)
        self.assertTrue(controller.has_live_subscriptions)

        self.assertTrue(controller.cancel())
        result = await asyncio.wait_for(task, timeout=1.0)

        self.assertTrue(result.cancelled)
        self.assertIsNone(result.verdict)
        self.assertFalse(result.is_abnormal)
        self.assertEqual(controller.state, TestState.IDLE)
        self.assertEqual(controller.buffers, {})
        self.assertEqual(provider.live_subscriptions, 0)

    async def test_cancel_during_countdown(self):
        provider = ScriptedProvider(STILL)
        controller = SingleTestController(balance_profile(countdown_s=3, capture_s=1.0), provider)
        task = asyncio.create_task(controller.run())
        await asyncio.sleep(0.01)
        self.assertEqual(controller.state, TestState.COUNTDOWN)

        self.assertTrue(controller.cancel())
        result = await asyncio.wait_for(task, timeout=1.0)

        self.assertTrue(result.cancelled)
        self.assertEqual(provider.subscribed, [])

    async def test_cancel_when_idle(self):
        controller = SingleTestController(balance_profile(), ScriptedProvider())
        self.assertFalse(controller.cancel())

    async def test_task_cancellation_unsubscribes(self):
        provider = ScriptedProvider(STILL)
        controller = SingleTestController(balance_profile(countdown_s=0, capture_s=5.0), provider)
        task = asyncio.create_task(controller.run())
        await asyncio.sleep(0.01)

        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task
        self.assertEqual(provider.live_subscriptions, 0)
        self.assertFalse(controller.is_running)

    async def test_cancel_from_state_callback_as_capture_starts(self):
        provider = ScriptedProvider(STILL)
        controller = None

        def on_state_change(state):
            if state == TestState.CAPTURING:
                controller.cancel()

        controller = SingleTestController(balance_profile(countdown_s=0, capture_s=5.0), provider,
                                          on_state_change=on_state_change)
        result = await asyncio.wait_for(controller.run(), timeout=1.0)

        self.assertTrue(result.cancelled)
        self.assertEqual(provider.subscribed, [])
        self.assertEqual(provider.live_subscriptions, 0)
        self.assertEqual(controller.state, TestState.IDLE)

    async def test_cancel_from_state_callback_between_steps(self):
        provider = ScriptedProvider(STILL)
        captures = []
        controller = None

        def on_state_change(state):
            if state == TestState.CAPTURING:
                captures.append(state)
                if len(captures) == 2:
                    controller.cancel()

        controller = SingleTestController(direction_profile(countdown_s=0, step_s=0.01), provider,
                                          step_judge=lambda step, window: True,
                                          on_state_change=on_state_change)
        result = await asyncio.wait_for(controller.run(), timeout=1.0)

        self.assertTrue(result.cancelled)
        self.assertEqual(provider.live_subscriptions, 0)
        self.assertEqual(controller.buffers, {})
        self.assertEqual(controller.state, TestState.IDLE)

    async def test_cancel_from_step_prompt(self):
        provider = ScriptedProvider(STILL)
        controller = None
        controller = SingleTestController(direction_profile(countdown_s=0, step_s=0.01), provider,
                                          step_judge=lambda step, window: True,
                                          on_step=lambda index, step: controller.cancel())
        result = await asyncio.wait_for(controller.run(), timeout=1.0)

        self.assertTrue(result.cancelled)
        self.assertEqual(provider.live_subscriptions, 0)

class TestSensorFallback(unittest.IsolatedAsyncioTestCase):

    async def test_fail_safe_when_sensor_unavailable(self):
        provider = ScriptedProvider(STILL)
        provider.fail_with(SensorUnavailableError("motion permission denied"))
        on_sensor_error = MagicMock()
        controller = SingleTestController(balance_profile(countdown_s=0, capture_s=0.01), provider,
                                          on_sensor_error=on_sensor_error)

        result = await controller.run()

        self.assertTrue(result.is_abnormal)
        self.assertTrue(result.verdict.insufficient_data)
        self.assertEqual(result.data_source, DataSource.UNAVAILABLE)
        self.assertIn("sensor unavailable", result.notes)
        channel, error, fallback = on_sensor_error.call_args[0]
        self.assertEqual(channel, Channel.ACCEL)
        self.assertIsInstance(error, SensorUnavailableError)
        self.assertEqual(fallback, FallbackMode.FAIL_SAFE)

    async def test_partial_subscription_is_rolled_back(self):
        provider = ScriptedProvider(STILL)
        original_subscribe = provider.subscribe

        def subscribe(channel, callback):
            if channel == Channel.GYRO:
                raise SensorUnavailableError("no gyroscope")
            return original_subscribe(channel, callback)

        provider.subscribe = subscribe
        controller = SingleTestController(balance_profile(countdown_s=0, capture_s=0.01), provider)

        result = await controller.run()

        self.assertEqual(result.data_source, DataSource.UNAVAILABLE)
        self.assertTrue(result.verdict.insufficient_data)
        self.assertEqual(provider.live_subscriptions, 0)

    async def test_simulated_fallback_is_labeled(self):
        provider = ScriptedProvider()
        provider.fail_with(SensorUnavailableError("unsupported platform"))
        simulated = ScriptedProvider(STILL)
        controller = SingleTestController(
            balance_profile(countdown_s=0, capture_s=0.01, fallback=FallbackMode.SIMULATED),
            provider,
            simulated_provider_factory=lambda: simulated,
        )

        result = await controller.run()

        self.assertEqual(result.data_source, DataSource.SIMULATED)
        self.assertIn("simulated sensor data", result.notes)
        self.assertFalse(result.is_abnormal)
        self.assertEqual(simulated.live_subscriptions, 0)

class TestSequenceTests(unittest.IsolatedAsyncioTestCase):

    def _profile(self, **overrides):
        return direction_profile(countdown_s=0, step_s=0.01, **overrides)

    async def test_all_steps_matched(self):
        steps = []
        controller = SingleTestController(self._profile(), ScriptedProvider(STILL),
                                          step_judge=lambda step, window: True,
                                          on_step=lambda index, step: steps.append(step))

        result = await controller.run()

        self.assertFalse(result.is_abnormal)
        self.assertEqual(result.step_outcomes, (True,) * 8)
        self.assertEqual(len(steps), 8)

    async def test_two_consecutive_misses_end_early(self):
        states = []
        controller = SingleTestController(self._profile(), ScriptedProvider(STILL),
                                          step_judge=lambda step, window: False,
                                          on_state_change=states.append)

        result = await controller.run()

        self.assertTrue(result.is_abnormal)
        self.assertEqual(result.step_outcomes, (False, False))
        self.assertIn("consecutive_misses", result.verdict.breached)
        self.assertIn(TestState.ABNORMAL_EARLY_EXIT, states)
        self.assertEqual(states[-1], TestState.RESULT)

    async def test_three_scattered_misses(self):
        outcomes = iter([False, True, False, True, False, True, True, True])
        controller = SingleTestController(self._profile(), ScriptedProvider(STILL),
                                          step_judge=lambda step, window: next(outcomes))

        result = await controller.run()

        self.assertTrue(result.is_abnormal)
        self.assertEqual(result.verdict.breached, ("misses",))
        self.assertEqual(len(result.step_outcomes), 8)

    async def test_default_judge_uses_tilt_direction(self):
        provider = ScriptedProvider({Channel.ACCEL: make_samples([(-5.0, 0.0, 8.0)] * 10)})
        controller = SingleTestController(self._profile(steps=("Left",)), provider)

        result = await controller.run()

        self.assertEqual(result.step_outcomes, (True,))
        self.assertFalse(result.is_abnormal)

    async def test_failing_judge_counts_as_miss(self):
        controller = SingleTestController(self._profile(steps=("Left",)), ScriptedProvider(STILL),
                                          step_judge=MagicMock(side_effect=RuntimeError("camera lost")))
        result = await controller.run()
        self.assertEqual(result.step_outcomes, (False,))

    async def test_no_samples_is_insufficient(self):
        controller = SingleTestController(self._profile(), ScriptedProvider(),
                                          step_judge=lambda step, window: True)
        result = await controller.run()
        self.assertTrue(result.verdict.insufficient_data)
        self.assertTrue(result.is_abnormal)

    async def _follow_prompts(self, provider, controller, tilt_for):
        """Tilt the phone every 5 ms according to the prompt currently shown."""
        timestamp = 0
        while True:
            await asyncio.sleep(0.005)
            timestamp += 5
            x, y = tilt_for(controller.current_step)
            provider.emit(Channel.ACCEL, Sample(x, y, 8.0, timestamp))

    async def test_samples_arriving_during_steps_are_judged_per_step(self):
        tilts = {"Left": (-5.0, 0.0), "Right": (5.0, 0.0), "Up": (0.0, 5.0)}
        provider = CallbackSensorProvider()
        windows = []

        def judge(step, window):
            windows.append((step, list(window)))
            return dominant_direction(window) == step

        controller = SingleTestController(direction_profile(countdown_s=0, step_s=0.05,
                                                            steps=("Left", "Right", "Up")),
                                          provider, step_judge=judge)
        user = asyncio.create_task(
            self._follow_prompts(provider, controller, lambda step: tilts.get(step, (0.0, 0.0))))
        try:
            result = await asyncio.wait_for(controller.run(), timeout=2.0)
        finally:
            user.cancel()

        self.assertEqual(result.step_outcomes, (True, True, True))
        self.assertFalse(result.is_abnormal)
        for step, window in windows:
            self.assertTrue(window)
            self.assertTrue(all((s.x, s.y) == tilts[step] for s in window))
        self.assertEqual(provider.live_subscriptions, 0)

    async def test_user_stuck_on_first_prompt_ends_early(self):
        provider = CallbackSensorProvider()
        controller = SingleTestController(direction_profile(countdown_s=0, step_s=0.05), provider)
        user = asyncio.create_task(self._follow_prompts(provider, controller, lambda step: (-5.0, 0.0)))
        try:
            result = await asyncio.wait_for(controller.run(), timeout=2.0)
        finally:
            user.cancel()

        self.assertEqual(result.step_outcomes, (True, False, False))
        self.assertTrue(result.is_abnormal)
        self.assertIn("consecutive_misses", result.verdict.breached)

if __name__ == '__main__':
    unittest.main()
