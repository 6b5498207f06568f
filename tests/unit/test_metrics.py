"""
Unit tests for the metric extractors.
"""

import math
import unittest

import numpy as np

from strokecheck.analysis.metrics import (
    IRREGULAR_GAIT, extract_metrics, is_insufficient, magnitude_change_energy,
    angular_tilt_accumulation, angular_tilt_rate, step_interval_regularity, shake_events, shake_event_count,
    shake_max_intensity, dominant_direction, required_channels,
)
from strokecheck.analysis.samples import Channel, Sample, SampleBuffer

def make_samples(points, start=0, interval_ms=20):
    return [Sample(float(x), float(y), float(z), start + i * interval_ms)
            for i, (x, y, z) in enumerate(points)]

class TestEnergy(unittest.TestCase):

    def test_constant_stream_has_zero_energy(self):
        self.assertEqual(magnitude_change_energy(make_samples([(0, 0, 9.8)] * 50)), 0.0)

    def test_fewer_than_two_samples_is_insufficient(self):
        self.assertTrue(is_insufficient(magnitude_change_energy([])))
        self.assertTrue(is_insufficient(magnitude_change_energy(make_samples([(1, 2, 3)]))))

    def test_mean_consecutive_distance(self):
        samples = make_samples([(0, 0, 0), (3, 4, 0), (3, 4, 0)])
        self.assertAlmostEqual(magnitude_change_energy(samples), 2.5)

    def test_planar_energy_ignores_z(self):
        samples = make_samples([(0, 0, 0), (0, 0, 10)])
        self.assertEqual(magnitude_change_energy(samples, include_z=False), 0.0)
        self.assertEqual(magnitude_change_energy(samples), 10.0)

    def test_accepts_buffer_and_array(self):
        buffer = SampleBuffer(Channel.ACCEL)
        for sample in make_samples([(0, 0, 0), (3, 4, 0)]):
            buffer.append(sample)
        self.assertEqual(magnitude_change_energy(buffer), 5.0)
        self.assertEqual(magnitude_change_energy(np.array([[0, 0, 0], [3, 4, 0]])), 5.0)

class TestTilt(unittest.TestCase):

    def test_constant_stream_has_zero_tilt(self):
        self.assertEqual(angular_tilt_accumulation(make_samples([(0.3, -0.2, 0.1)] * 40)), 0.0)

    def test_raw_accumulation_without_bias_removal(self):
        samples = make_samples([(1.0, 0, 0)] * 50)
        tilt = angular_tilt_accumulation(samples, sampling_rate_hz=50.0, remove_bias=False)
        self.assertAlmostEqual(tilt, 180.0 / math.pi)

    def test_rotation_above_bias_accumulates(self):
        points = [(0, 0, 0)] * 9 + [(0.5, 0, 0)]
        tilt = angular_tilt_accumulation(make_samples(points), sampling_rate_hz=50.0)
        self.assertAlmostEqual(tilt, 0.5 / 50.0 * 180.0 / math.pi)

    def test_insufficient_data(self):
        self.assertTrue(is_insufficient(angular_tilt_accumulation(make_samples([(1, 1, 1)]))))

    def test_rate_is_tilt_per_second_of_window(self):
        points = [(0.0, 0.0, 0.0)] * 49 + [(0.5, 0.0, 0.0)]
        samples = make_samples(points)
        tilt = angular_tilt_accumulation(samples, sampling_rate_hz=50.0)
        self.assertAlmostEqual(angular_tilt_rate(samples, sampling_rate_hz=50.0), tilt)
        doubled = make_samples(points * 2)
        self.assertAlmostEqual(angular_tilt_rate(doubled, sampling_rate_hz=50.0), tilt)

    def test_rate_insufficient_data(self):
        self.assertTrue(is_insufficient(angular_tilt_rate(make_samples([(1, 1, 1)]))))

class TestStepRegularity(unittest.TestCase):

    def _walk(self, peak_positions, length=60):
        z = [9.8] * length
        for position in peak_positions:
            z[position] = 12.5
        return make_samples([(0, 0, value) for value in z])

    def test_evenly_spaced_steps_are_regular(self):
        self.assertAlmostEqual(step_interval_regularity(self._walk([5, 15, 25, 35, 45])), 0.0)

    def test_uneven_steps_are_less_regular(self):
        self.assertGreater(step_interval_regularity(self._walk([5, 8, 25, 29, 50])), 0.3)

    def test_fewer_than_two_peaks_is_irregular(self):
        self.assertEqual(step_interval_regularity(self._walk([20])), IRREGULAR_GAIT)
        self.assertEqual(step_interval_regularity(self._walk([])), IRREGULAR_GAIT)

    def test_flat_topped_steps_count_once(self):
        z = [9.8] * 60
        for position in (5, 15, 25, 35, 45):
            z[position] = z[position + 1] = 12.5
        samples = make_samples([(0, 0, value) for value in z])
        self.assertAlmostEqual(step_interval_regularity(samples), 0.0)

    def test_peaks_below_threshold_are_ignored(self):
        walk = self._walk([5, 15, 25, 35, 45])
        self.assertEqual(step_interval_regularity(walk, peak_threshold=13.0), IRREGULAR_GAIT)

    def test_insufficient_data(self):
        self.assertTrue(is_insufficient(step_interval_regularity(make_samples([(0, 0, 9.8)]))))

class TestShake(unittest.TestCase):

    def test_still_device_has_no_shakes(self):
        samples = make_samples([(0, 0, 9.8)] * 100, interval_ms=150)
        self.assertEqual(shake_event_count(samples), 0.0)
        self.assertEqual(shake_max_intensity(samples), 0.0)

    def test_alternating_extremes_are_shakes(self):
        samples = make_samples([(5, 5, 5), (-5, -5, -5)] * 5)
        stats = shake_events(samples)
        self.assertEqual(stats.count, 9)
        self.assertAlmostEqual(stats.max_intensity, math.sqrt(300))
        self.assertAlmostEqual(stats.mean_intensity, math.sqrt(300))
        self.assertFalse(stats.insufficient_data)

    def test_threshold_is_tunable(self):
        samples = make_samples([(0, 0, 0), (0, 0, 5), (0, 0, 0)])
        self.assertEqual(shake_event_count(samples), 0.0)
        self.assertEqual(shake_event_count(samples, shake_threshold=4.0), 2.0)

    def test_insufficient_data(self):
        self.assertTrue(shake_events([]).insufficient_data)
        self.assertTrue(is_insufficient(shake_event_count([])))

class TestDominantDirection(unittest.TestCase):

    def test_cardinal_and_diagonal_directions(self):
        self.assertEqual(dominant_direction(make_samples([(-5, 0, 9.8)] * 3)), "Left")
        self.assertEqual(dominant_direction(make_samples([(5, 0, 9.8)] * 3)), "Right")
        self.assertEqual(dominant_direction(make_samples([(0, 5, 9.8)] * 3)), "Up")
        self.assertEqual(dominant_direction(make_samples([(0, -5, 9.8)] * 3)), "Down")
        self.assertEqual(dominant_direction(make_samples([(3, 3, 9.8)] * 3)), "Up-Right")
        self.assertEqual(dominant_direction(make_samples([(-3, -3, 9.8)] * 3)), "Down-Left")

    def test_dead_zone_and_empty_window(self):
        self.assertIsNone(dominant_direction(make_samples([(0.5, -0.5, 9.8)] * 3)))
        self.assertIsNone(dominant_direction([]))

class TestExtractMetrics(unittest.TestCase):

    def test_extracts_named_metrics_per_channel(self):
        buffers = {
            Channel.ACCEL: make_samples([(0, 0, 0), (3, 4, 0)]),
            Channel.GYRO: make_samples([(0.1, 0.1, 0.1)] * 5),
        }
        metrics = extract_metrics(["energy", "tilt"], buffers, sampling_rate_hz=50.0, shake_threshold=1.0)
        self.assertEqual(metrics["energy"], 5.0)
        self.assertEqual(metrics["tilt"], 0.0)

    def test_result_is_read_only(self):
        metrics = extract_metrics(["energy"], {Channel.ACCEL: make_samples([(0, 0, 0)] * 2)})
        with self.assertRaises(TypeError):
            metrics["energy"] = 1.0

    def test_missing_channel_is_insufficient(self):
        metrics = extract_metrics(["tilt"], {Channel.ACCEL: make_samples([(0, 0, 0)] * 2)})
        self.assertTrue(is_insufficient(metrics["tilt"]))

    def test_params_are_forwarded(self):
        samples = make_samples([(0, 0, 0), (0, 0, 5)])
        metrics = extract_metrics(["shake_count"], {Channel.ACCEL: samples}, shake_threshold=4.0)
        self.assertEqual(metrics["shake_count"], 1.0)

    def test_unknown_metric(self):
        with self.assertRaises(KeyError):
            extract_metrics(["heart_rate"], {})

    def test_required_channels(self):
        self.assertEqual(required_channels(["energy", "tilt"]), {Channel.ACCEL, Channel.GYRO})
        self.assertEqual(required_channels(["shake_count"]), {Channel.ACCEL})

if __name__ == '__main__':
    unittest.main()
