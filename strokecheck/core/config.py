"""
Configuration management for the StrokeCheck screening core.

This module provides Pydantic settings models for type-safe configuration with validation
and environment variable integration. Per-test thresholds live in the test profiles;
this module holds the suite-wide defaults they are built from.
"""

from enum import Enum
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class LogLevel(str, Enum):
    """Log levels for the application."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

class FallbackMode(str, Enum):
    """What a test does when the sensor provider cannot deliver samples."""
    FAIL_SAFE = "fail_safe"    # Analyze whatever arrived; empty windows are abnormal
    SIMULATED = "simulated"    # Substitute clearly-labeled synthetic samples

class BaseConfig(BaseSettings):
    """
    Base configuration class with common settings for all components.

    All other configuration classes should inherit from this class.
    """
    model_config = SettingsConfigDict(env_file=".env", env_prefix="STROKECHECK_", extra="ignore")

    log_level: LogLevel = LogLevel.INFO

class EventConfig(BaseConfig):
    """Configuration for the event system."""
    model_config = SettingsConfigDict(env_prefix="STROKECHECK_EVENT_")

    max_trace_events: int = 1000
    tracing_enabled: bool = True

class ServiceConfig(BaseConfig):
    """Configuration for service management."""
    model_config = SettingsConfigDict(env_prefix="STROKECHECK_SERVICE_")

    service_startup_timeout: float = 10.0  # seconds
    service_shutdown_timeout: float = 5.0  # seconds

class ScreeningConfig(BaseConfig):
    """Configuration for test timing, analysis constants and the suite quorum."""
    model_config = SettingsConfigDict(env_prefix="STROKECHECK_SCREENING_")

    quorum: int = 2                       # Abnormal verdicts needed for emergency
    countdown_s: int = 3                  # Seconds before capture starts
    capture_s: float = 10.0               # Capture window for single-window tests
    step_s: float = 3.0                   # Capture window per step of a sequence test
    sampling_rate_hz: float = 50.0        # Assumed gyro rate for tilt accumulation
    shake_threshold: float = 12.0         # m/s^2 - consecutive-sample delta for a shake event
    step_peak_threshold: float = 11.0     # m/s^2 - vertical peak for step detection
    direction_dead_zone: float = 2.0      # m/s^2 - mean tilt below this is "no direction"
    fallback: FallbackMode = FallbackMode.FAIL_SAFE
    queue_size: int = 2048                # Bounded sample queue between sensor and controller

    @field_validator("quorum")
    @classmethod
    def validate_quorum(cls, v):
        """A quorum of zero would escalate before any test ran."""
        if v < 1:
            raise ValueError("Quorum must be at least 1")
        return v

    @field_validator("sampling_rate_hz", "queue_size")
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator("countdown_s", "capture_s", "step_s")
    @classmethod
    def validate_duration(cls, v):
        if v < 0:
            raise ValueError("Durations cannot be negative")
        return v

class SensorConfig(BaseConfig):
    """Configuration for the simulated sensor provider."""
    model_config = SettingsConfigDict(env_prefix="STROKECHECK_SENSOR_")

    simulated_rate_hz: float = 50.0
    simulated_noise: float = 0.05         # m/s^2 (or rad/s) standard deviation
    simulated_seed: int = 7

    @field_validator("simulated_rate_hz")
    @classmethod
    def validate_rate(cls, v):
        if v <= 0:
            raise ValueError("Simulated sample rate must be positive")
        return v

class ApplicationConfig(BaseConfig):
    """
    Main application configuration that combines all component configurations.

    This is the top-level configuration class that should be used by the application.
    """
    model_config = SettingsConfigDict(env_file=".env", env_prefix="STROKECHECK_",
                                      env_nested_delimiter="__", extra="ignore")

    event: EventConfig = Field(default_factory=EventConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    screening: ScreeningConfig = Field(default_factory=ScreeningConfig)
    sensor: SensorConfig = Field(default_factory=SensorConfig)

def get_config() -> ApplicationConfig:
    """
    Get the application configuration.

    Returns:
        The validated ApplicationConfig instance
    """
    return ApplicationConfig()
