"""
Metric extractors for buffered motion samples.

Each extractor is a pure function ``samples -> float`` over one channel's samples
(a SampleBuffer, a sequence of Sample, or an (n, 3) array). Extractors are
independent of each other, so a test profile can pick any subset of them.

Core Concepts:
- Insufficient data: every extractor needs at least 2 samples. With fewer it returns
  ``INSUFFICIENT_DATA`` (nan), which the classifier treats as an abnormal result.
- Magnitude-change energy: mean Euclidean distance between consecutive acceleration
  samples, a proxy for jerkiness.
- Angular tilt accumulation: gyro rates integrated at an assumed fixed rate and
  converted to degrees. The gyro zero-rate offset (per-axis median) is removed first,
  so a constant stream accumulates nothing. Tilt rate divides the total by the window
  length so its limits do not depend on how long the capture ran.
- Step-interval regularity: coefficient of variation of the gaps between vertical
  acceleration peaks, found with scipy.signal.find_peaks (flat peaks count once).
  ``IRREGULAR_GAIT`` (5.0) when fewer than 2 peaks are found.
- Shake events: consecutive-sample deltas whose 3D magnitude exceeds a threshold,
  with their peak and mean intensity.
- Dominant direction: the compass-style direction of the mean x/y tilt of a window,
  used to judge direction-following steps.
"""

import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, Iterable, Mapping, Optional, Sequence, Set, Tuple, Union

import numpy as np
from scipy.signal import find_peaks

from .samples import Channel, Sample, SampleBuffer

SampleInput = Union[SampleBuffer, Sequence[Sample], np.ndarray]
MetricSet = Mapping[str, float]

INSUFFICIENT_DATA = float("nan")
IRREGULAR_GAIT = 5.0

DEFAULT_SAMPLING_RATE_HZ = 50.0
DEFAULT_SHAKE_THRESHOLD = 12.0       # m/s^2
DEFAULT_STEP_PEAK_THRESHOLD = 11.0   # m/s^2, gravity plus a stride impulse
DEFAULT_DIRECTION_DEAD_ZONE = 2.0    # m/s^2

DIRECTIONS = ("Left", "Right", "Up", "Down", "Up-Left", "Up-Right", "Down-Left", "Down-Right")

def _as_array(samples: SampleInput) -> np.ndarray:
    """Normalize any accepted sample input to an (n, 3) float array."""
    if isinstance(samples, np.ndarray):
        return samples.reshape(-1, 3).astype(float, copy=False)
    if isinstance(samples, SampleBuffer):
        return samples.as_array()
    return np.array([(s.x, s.y, s.z) for s in samples], dtype=float).reshape(-1, 3)

def is_insufficient(value: float) -> bool:
    """True if a metric value is the insufficient-data sentinel (or otherwise non-finite)."""
    return not math.isfinite(value)

def magnitude_change_energy(samples: SampleInput, include_z: bool = True) -> float:
    """
    Mean Euclidean distance between consecutive samples.

    Args:
        samples: Acceleration samples
        include_z: Use (x, y, z) deltas; False restricts to the (x, y) plane

    Returns:
        float: Energy in m/s^2, or INSUFFICIENT_DATA
    """
    arr = _as_array(samples)
    if len(arr) < 2:
        return INSUFFICIENT_DATA
    components = arr if include_z else arr[:, :2]
    deltas = np.diff(components, axis=0)
    return float(np.mean(np.linalg.norm(deltas, axis=1)))

def angular_tilt_accumulation(samples: SampleInput,
                              sampling_rate_hz: float = DEFAULT_SAMPLING_RATE_HZ,
                              remove_bias: bool = True) -> float:
    """
    Accumulated rotation in degrees: sum((|x| + |y| + |z|) / rate) * 180 / pi.

    Args:
        samples: Gyroscope samples in rad/s
        sampling_rate_hz: Assumed fixed sample rate
        remove_bias: Subtract the per-axis median (zero-rate offset) before integrating

    Returns:
        float: Degrees, or INSUFFICIENT_DATA
    """
    arr = _as_array(samples)
    if len(arr) < 2 or sampling_rate_hz <= 0:
        return INSUFFICIENT_DATA
    rates = arr - np.median(arr, axis=0) if remove_bias else arr
    return float(np.sum(np.abs(rates)) / sampling_rate_hz * (180.0 / math.pi))

def angular_tilt_rate(samples: SampleInput,
                      sampling_rate_hz: float = DEFAULT_SAMPLING_RATE_HZ,
                      remove_bias: bool = True) -> float:
    """
    Tilt accumulation divided by the window length, in degrees per second.

    Unlike the accumulated total it does not grow with the capture window, so one
    limit holds for a 2 s and a 30 s capture.
    """
    arr = _as_array(samples)
    tilt = angular_tilt_accumulation(arr, sampling_rate_hz, remove_bias)
    if is_insufficient(tilt):
        return INSUFFICIENT_DATA
    return tilt / (len(arr) / sampling_rate_hz)

def step_interval_regularity(samples: SampleInput,
                             peak_threshold: float = DEFAULT_STEP_PEAK_THRESHOLD) -> float:
    """
    Coefficient of variation (stddev / mean) of inter-peak sample-index gaps.

    Lower is more regular. Returns IRREGULAR_GAIT when fewer than 2 peaks are found.
    """
    arr = _as_array(samples)
    if len(arr) < 2:
        return INSUFFICIENT_DATA
    peaks, _ = find_peaks(arr[:, 2], height=peak_threshold)
    if len(peaks) < 2:
        return IRREGULAR_GAIT
    gaps = np.diff(peaks).astype(float)
    return float(np.std(gaps) / np.mean(gaps))

@dataclass(frozen=True)
class ShakeStats:
    """Shake events found in one window."""
    count: int
    max_intensity: float
    mean_intensity: float
    insufficient_data: bool = False

def shake_events(samples: SampleInput,
                 shake_threshold: float = DEFAULT_SHAKE_THRESHOLD) -> ShakeStats:
    """
    Count consecutive-sample deltas whose 3D magnitude exceeds the shake threshold.
    """
    arr = _as_array(samples)
    if len(arr) < 2:
        return ShakeStats(count=0, max_intensity=0.0, mean_intensity=0.0, insufficient_data=True)
    magnitudes = np.linalg.norm(np.diff(arr, axis=0), axis=1)
    qualifying = magnitudes[magnitudes > shake_threshold]
    if len(qualifying) == 0:
        return ShakeStats(count=0, max_intensity=0.0, mean_intensity=0.0)
    return ShakeStats(
        count=int(len(qualifying)),
        max_intensity=float(np.max(qualifying)),
        mean_intensity=float(np.mean(qualifying)),
    )

def shake_event_count(samples: SampleInput,
                      shake_threshold: float = DEFAULT_SHAKE_THRESHOLD) -> float:
    stats = shake_events(samples, shake_threshold)
    return INSUFFICIENT_DATA if stats.insufficient_data else float(stats.count)

def shake_max_intensity(samples: SampleInput,
                        shake_threshold: float = DEFAULT_SHAKE_THRESHOLD) -> float:
    stats = shake_events(samples, shake_threshold)
    return INSUFFICIENT_DATA if stats.insufficient_data else stats.max_intensity

def shake_mean_intensity(samples: SampleInput,
                         shake_threshold: float = DEFAULT_SHAKE_THRESHOLD) -> float:
    stats = shake_events(samples, shake_threshold)
    return INSUFFICIENT_DATA if stats.insufficient_data else stats.mean_intensity

def dominant_direction(samples: SampleInput,
                       dead_zone: float = DEFAULT_DIRECTION_DEAD_ZONE) -> Optional[str]:
    """
    Direction of the mean x/y tilt of an acceleration window.

    Negative x is Left, positive y is Up. Returns one of DIRECTIONS, or None when the
    window is empty, non-finite, or the tilt stays inside the dead zone on both axes.
    """
    arr = _as_array(samples)
    if len(arr) == 0:
        return None
    mean_x, mean_y = float(np.mean(arr[:, 0])), float(np.mean(arr[:, 1]))
    if not (math.isfinite(mean_x) and math.isfinite(mean_y)):
        return None

    vertical = "Up" if mean_y > dead_zone else "Down" if mean_y < -dead_zone else ""
    horizontal = "Left" if mean_x < -dead_zone else "Right" if mean_x > dead_zone else ""
    if vertical and horizontal:
        return f"{vertical}-{horizontal}"
    return vertical or horizontal or None

@dataclass(frozen=True)
class MetricSpec:
    """Binds a metric name to its channel, extractor and accepted tuning parameters."""
    name: str
    channel: Channel
    extractor: Callable[..., float]
    params: Tuple[str, ...] = ()

METRICS: Dict[str, MetricSpec] = {
    "energy": MetricSpec("energy", Channel.ACCEL, magnitude_change_energy),
    "tilt": MetricSpec("tilt", Channel.GYRO, angular_tilt_accumulation, ("sampling_rate_hz",)),
    "tilt_rate": MetricSpec("tilt_rate", Channel.GYRO, angular_tilt_rate, ("sampling_rate_hz",)),
    "step_regularity": MetricSpec("step_regularity", Channel.ACCEL, step_interval_regularity,
                                  ("peak_threshold",)),
    "shake_count": MetricSpec("shake_count", Channel.ACCEL, shake_event_count, ("shake_threshold",)),
    "shake_max_intensity": MetricSpec("shake_max_intensity", Channel.ACCEL, shake_max_intensity,
                                      ("shake_threshold",)),
    "shake_mean_intensity": MetricSpec("shake_mean_intensity", Channel.ACCEL, shake_mean_intensity,
                                       ("shake_threshold",)),
}

def required_channels(names: Iterable[str]) -> Set[Channel]:
    """Channels a set of metrics needs to be subscribed to."""
    return {METRICS[name].channel for name in names}

def extract_metrics(names: Iterable[str],
                    buffers: Mapping[Channel, SampleInput],
                    **params: float) -> MetricSet:
    """
    Run the named extractors over their channel buffers.

    Args:
        names: Metric names from METRICS
        buffers: Samples per channel; a missing channel counts as empty
        **params: Tuning parameters, forwarded only to extractors that accept them

    Returns:
        MetricSet: Read-only mapping of metric name to value

    Raises:
        KeyError: If a metric name is not registered
    """
    values: Dict[str, float] = {}
    for name in names:
        spec = METRICS[name]
        samples = buffers.get(spec.channel, ())
        kwargs = {key: params[key] for key in spec.params if key in params}
        values[name] = spec.extractor(samples, **kwargs)
    return MappingProxyType(values)
