"""
Sensor provider contract and the two providers shipped with the core.

The screening core never talks to hardware. A host application adapts its motion API
(device motion events, a BNO085 read loop, a recorded file) to the SensorProvider
contract: ``subscribe(channel, callback)`` returns a handle, ``unsubscribe(handle)``
stops delivery. Callbacks are invoked on the event loop thread, one Sample at a time.

- CallbackSensorProvider: push adapter; the host calls ``emit`` for each reading.
- SimulatedSensorProvider: generates synthetic readings on an asyncio task. Results
  produced from it are always labeled as simulated by the controller.
"""

import asyncio
import itertools
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import numpy as np

from strokecheck.analysis.samples import Channel, Sample

SampleCallback = Callable[[Sample], None]

GRAVITY = 9.81  # m/s^2

class SensorUnavailableError(RuntimeError):
    """Raised by ``subscribe`` when a channel can not be delivered (permissions, platform)."""

@dataclass(frozen=True)
class SubscriptionHandle:
    """Opaque token identifying one live subscription."""
    id: int
    channel: Channel

class SensorProvider(ABC):
    """Source of timestamped 3-axis samples for the accel and gyro channels."""

    @abstractmethod
    def subscribe(self, channel: Channel, callback: SampleCallback) -> SubscriptionHandle:
        """
        Start delivering samples for a channel.

        Raises:
            SensorUnavailableError: If the channel can not be delivered
        """

    @abstractmethod
    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Stop delivery for a handle. Unknown or already-removed handles are ignored."""

    @property
    @abstractmethod
    def live_subscriptions(self) -> int:
        """Number of subscriptions currently delivering samples."""

class CallbackSensorProvider(SensorProvider):
    """
    Push-style provider: the host application forwards each reading with ``emit``.
    """

    def __init__(self):
        self._ids = itertools.count(1)
        self._callbacks: Dict[int, Tuple[Channel, SampleCallback]] = {}
        self._error: Optional[Exception] = None
        self.logger = logging.getLogger(__name__)

    def fail_with(self, error: Optional[Exception]) -> None:
        """Make subsequent subscribes raise ``error`` (None restores normal behavior)."""
        self._error = error

    def subscribe(self, channel: Channel, callback: SampleCallback) -> SubscriptionHandle:
        if self._error is not None:
            raise self._error
        handle = SubscriptionHandle(next(self._ids), channel)
        self._callbacks[handle.id] = (channel, callback)
        self.logger.debug(f"Subscribed {channel.value} (handle {handle.id})")
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        if self._callbacks.pop(handle.id, None) is not None:
            self.logger.debug(f"Unsubscribed {handle.channel.value} (handle {handle.id})")

    @property
    def live_subscriptions(self) -> int:
        return len(self._callbacks)

    def emit(self, channel: Channel, sample: Sample) -> int:
        """
        Deliver a sample to every subscriber of the channel.

        Returns:
            int: Number of callbacks the sample was delivered to
        """
        delivered = 0
        for subscribed_channel, callback in list(self._callbacks.values()):
            if subscribed_channel == channel:
                callback(sample)
                delivered += 1
        return delivered

class SimulatedSensorProvider(SensorProvider):
    """
    Generates synthetic samples at a fixed rate: a device held still (gravity on z for
    accel, zero rotation for gyro) plus Gaussian noise from a seeded generator.
    """

    def __init__(self, rate_hz: float = 50.0, noise: float = 0.05, seed: Optional[int] = None):
        if rate_hz <= 0:
            raise ValueError("Sample rate must be positive")
        self.rate_hz = rate_hz
        self.noise = noise
        self._rng = np.random.default_rng(seed)
        self._ids = itertools.count(1)
        self._tasks: Dict[int, asyncio.Task] = {}
        self.logger = logging.getLogger(__name__)

    def subscribe(self, channel: Channel, callback: SampleCallback) -> SubscriptionHandle:
        handle = SubscriptionHandle(next(self._ids), channel)
        loop = asyncio.get_running_loop()
        self._tasks[handle.id] = loop.create_task(self._generate(channel, callback))
        self.logger.info(f"Simulating {channel.value} samples at {self.rate_hz} Hz")
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        task = self._tasks.pop(handle.id, None)
        if task is not None:
            task.cancel()

    @property
    def live_subscriptions(self) -> int:
        return len(self._tasks)

    def next_sample(self, channel: Channel, timestamp: int) -> Sample:
        x, y, z = self._rng.normal(0.0, self.noise, size=3)
        if channel == Channel.ACCEL:
            z += GRAVITY
        return Sample(float(x), float(y), float(z), timestamp)

    async def _generate(self, channel: Channel, callback: SampleCallback) -> None:
        interval = 1.0 / self.rate_hz
        while True:
            callback(self.next_sample(channel, int(time.monotonic() * 1000)))
            await asyncio.sleep(interval)
