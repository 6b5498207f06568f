"""
Test profiles: one configuration object per test type.

Every test runs through the same controller; what differs between a balance test, a
stillness test and a direction-following sequence is data: which metrics are extracted,
how they are weighted and limited, how long each phase lasts, and what happens when the
sensor is unavailable. Thresholds are starting points for screening, not clinically
validated limits.
"""

from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, model_validator

from strokecheck.analysis.classifier import ThresholdTable, TieredThresholds, DIFFICULTY_LEVELS
from strokecheck.analysis.metrics import (
    METRICS, DIRECTIONS, DEFAULT_SAMPLING_RATE_HZ, DEFAULT_SHAKE_THRESHOLD,
    DEFAULT_STEP_PEAK_THRESHOLD, DEFAULT_DIRECTION_DEAD_ZONE, required_channels,
)
from strokecheck.analysis.samples import Channel
from strokecheck.core.config import FallbackMode, ScreeningConfig

class TestProfile(BaseModel):
    """
    Everything the controller needs to run one test type.

    Single-window tests set ``thresholds`` (or ``tiers`` plus ``difficulty``).
    Sequence tests set ``steps``; each step captures for ``step_s`` and is judged
    matched or missed, and the sequence is classified by its misses.
    """
    __test__ = False
    model_config = ConfigDict(frozen=True)

    name: str
    metrics: Tuple[str, ...] = ()
    thresholds: Optional[ThresholdTable] = None
    tiers: Optional[TieredThresholds] = None
    difficulty: int = 1

    countdown_s: int = 3
    capture_s: float = 10.0
    steps: Tuple[str, ...] = ()
    step_s: float = 3.0
    max_misses: int = 3
    max_consecutive_misses: int = 2

    fallback: FallbackMode = FallbackMode.FAIL_SAFE
    sampling_rate_hz: float = DEFAULT_SAMPLING_RATE_HZ
    shake_threshold: float = DEFAULT_SHAKE_THRESHOLD
    step_peak_threshold: float = DEFAULT_STEP_PEAK_THRESHOLD
    direction_dead_zone: float = DEFAULT_DIRECTION_DEAD_ZONE

    @model_validator(mode="after")
    def validate_profile(self):
        unknown = [name for name in self.metrics if name not in METRICS]
        if unknown:
            raise ValueError(f"Unknown metrics: {unknown}")
        if not self.steps and self.thresholds is None and self.tiers is None:
            raise ValueError(f"Profile {self.name!r} needs thresholds, tiers or steps")
        if self.tiers is not None and not 1 <= self.difficulty <= DIFFICULTY_LEVELS:
            raise ValueError(f"Difficulty must be between 1 and {DIFFICULTY_LEVELS}")
        if self.countdown_s < 0 or self.capture_s < 0 or self.step_s < 0:
            raise ValueError("Durations cannot be negative")
        table = self.active_thresholds()
        if table is not None:
            unknown = [name for name in table.metric_names() if name not in METRICS]
            if unknown:
                raise ValueError(f"Threshold table reads unknown metrics: {unknown}")
        return self

    @property
    def is_sequence(self) -> bool:
        return bool(self.steps)

    def active_thresholds(self) -> Optional[ThresholdTable]:
        """The threshold table in effect, resolving tiers by difficulty."""
        if self.tiers is not None:
            return self.tiers.for_difficulty(self.difficulty)
        return self.thresholds

    def metric_names(self) -> List[str]:
        """Metrics to extract: everything the table reads, then any extra reported metrics."""
        table = self.active_thresholds()
        names = table.metric_names() if table is not None else []
        names.extend(name for name in self.metrics if name not in names)
        return names

    def channels(self) -> List[Channel]:
        """Channels to subscribe to, accel first."""
        channels = required_channels(self.metric_names())
        if self.is_sequence:
            channels.add(Channel.ACCEL)
        return sorted(channels, key=lambda c: c.value)

    def extractor_params(self) -> Dict[str, float]:
        return {
            "sampling_rate_hz": self.sampling_rate_hz,
            "shake_threshold": self.shake_threshold,
            "peak_threshold": self.step_peak_threshold,
        }

def _base_settings(config: Optional[ScreeningConfig]) -> Dict[str, Any]:
    config = config or ScreeningConfig()
    return {
        "countdown_s": config.countdown_s,
        "capture_s": config.capture_s,
        "step_s": config.step_s,
        "fallback": config.fallback,
        "sampling_rate_hz": config.sampling_rate_hz,
        "shake_threshold": config.shake_threshold,
        "step_peak_threshold": config.step_peak_threshold,
        "direction_dead_zone": config.direction_dead_zone,
    }

def _build(config: Optional[ScreeningConfig], overrides: Dict[str, Any], **defaults: Any) -> TestProfile:
    return TestProfile(**{**_base_settings(config), **defaults, **overrides})

def balance_profile(config: Optional[ScreeningConfig] = None, **overrides: Any) -> TestProfile:
    """Stand still holding the phone against the chest: sway energy plus rate of tilt."""
    return _build(config, overrides,
        name="balance",
        metrics=("tilt",),
        thresholds=ThresholdTable(
            weights={"energy": 0.6, "tilt_rate": 0.4},
            score_threshold=5.0,
            metric_thresholds={"energy": 3.0, "tilt_rate": 12.0},
        ),
    )

def gait_profile(config: Optional[ScreeningConfig] = None, **overrides: Any) -> TestProfile:
    """Walk normally holding the phone: adds step-interval regularity to the balance metrics."""
    return _build(config, overrides,
        name="gait",
        thresholds=ThresholdTable(
            weights={"energy": 0.5, "tilt_rate": 0.05, "step_regularity": 0.3},
            score_threshold=8.0,
            metric_thresholds={"energy": 6.0, "step_regularity": 0.5},
        ),
    )

def stillness_profile(config: Optional[ScreeningConfig] = None, **overrides: Any) -> TestProfile:
    """Hold the phone out at arm's length for 15 s: counts tremor-like shake events."""
    return _build(config, overrides,
        name="stillness",
        capture_s=15.0,
        metrics=("shake_count", "shake_max_intensity", "shake_mean_intensity"),
        thresholds=ThresholdTable(
            weights={"shake_count": 1.0},
            score_threshold=5.0,
            metric_thresholds={"shake_count": 5.0},
        ),
    )

def direction_profile(config: Optional[ScreeningConfig] = None, **overrides: Any) -> TestProfile:
    """
    Follow eight direction prompts by tilting the phone, one step per prompt.

    Three total misses or two consecutive misses make the test abnormal; two
    consecutive misses also end it early.
    """
    return _build(config, overrides,
        name="direction_tracking",
        steps=DIRECTIONS,
        max_misses=3,
        max_consecutive_misses=2,
    )

# Looser limits at higher levels: harder postures sway more in healthy users.
_POSTURE_SCORE_LIMITS = (4.0, 5.0, 6.0, 7.5, 9.0, 11.0)
_POSTURE_TILT_RATE_LIMITS = (10.0, 12.0, 14.0, 17.0, 20.0, 24.0)  # deg/s

def posture_tiers() -> TieredThresholds:
    return TieredThresholds(tiers=tuple(
        ThresholdTable(
            weights={"energy": 0.7, "tilt_rate": 0.3},
            score_threshold=score_limit,
            metric_thresholds={"tilt_rate": rate_limit},
        )
        for score_limit, rate_limit in zip(_POSTURE_SCORE_LIMITS, _POSTURE_TILT_RATE_LIMITS)
    ))

def posture_profile(difficulty: int = 1, config: Optional[ScreeningConfig] = None,
                    **overrides: Any) -> TestProfile:
    """Hold a posture from the posture sequence; limits come from the difficulty tier (1-6)."""
    return _build(config, overrides,
        name=f"posture_level_{difficulty}",
        metrics=("tilt",),
        tiers=posture_tiers(),
        difficulty=difficulty,
    )

def default_suite(config: Optional[ScreeningConfig] = None) -> List[TestProfile]:
    """The three-test comprehensive screening: balance, direction tracking, stillness."""
    return [
        balance_profile(config),
        direction_profile(config),
        stillness_profile(config),
    ]
