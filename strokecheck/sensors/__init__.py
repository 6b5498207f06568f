"""
Sensor collaborators consumed by the screening controllers.
"""

from .provider import (
    SensorProvider, SensorUnavailableError, SubscriptionHandle,
    CallbackSensorProvider, SimulatedSensorProvider,
)

__all__ = [
    'SensorProvider', 'SensorUnavailableError', 'SubscriptionHandle',
    'CallbackSensorProvider', 'SimulatedSensorProvider',
]
