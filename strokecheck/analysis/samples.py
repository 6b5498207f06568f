"""
Sample types and the per-window sample buffer.

A capture window owns one SampleBuffer per sensor channel. Buffers are append-only
and time-ordered; a reading older than the last stored one is dropped and logged,
never raised, so a jittery sensor can not abort a test.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)

class Channel(str, Enum):
    """Sensor channels a test can subscribe to."""
    ACCEL = "accel"  # m/s^2
    GYRO = "gyro"    # rad/s

@dataclass(frozen=True)
class Sample:
    """One timestamped 3-axis sensor reading (timestamp in integer milliseconds)."""
    x: float
    y: float
    z: float
    timestamp: int

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)

class SampleBuffer:
    """
    Append-only, time-ordered sequence of samples for a single capture window.
    """

    def __init__(self, channel: Channel = Channel.ACCEL):
        self.channel = channel
        self._samples: List[Sample] = []
        self.dropped = 0

    def append(self, sample: Sample) -> bool:
        """
        Append a sample, dropping it if its timestamp goes backwards.

        Returns:
            bool: True if the sample was stored
        """
        if self._samples and sample.timestamp < self._samples[-1].timestamp:
            self.dropped += 1
            logger.warning(
                "Dropping out-of-order %s sample: %d < %d",
                self.channel.value, sample.timestamp, self._samples[-1].timestamp
            )
            return False
        self._samples.append(sample)
        return True

    def snapshot(self) -> Tuple[Sample, ...]:
        """Return the current ordered samples without mutating the buffer."""
        return tuple(self._samples)

    def as_array(self) -> np.ndarray:
        """Return the samples as an (n, 3) float array of x, y, z."""
        if not self._samples:
            return np.empty((0, 3), dtype=float)
        return np.array([s.as_tuple() for s in self._samples], dtype=float)

    @property
    def first_timestamp(self) -> Optional[int]:
        return self._samples[0].timestamp if self._samples else None

    @property
    def last_timestamp(self) -> Optional[int]:
        return self._samples[-1].timestamp if self._samples else None

    @property
    def duration_ms(self) -> int:
        if len(self._samples) < 2:
            return 0
        return self._samples[-1].timestamp - self._samples[0].timestamp

    def __len__(self) -> int:
        return len(self._samples)

    def __repr__(self) -> str:
        return f"SampleBuffer(channel={self.channel.value}, samples={len(self)}, dropped={self.dropped})"
