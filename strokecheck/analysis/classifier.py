"""
Verdict classification.

Turns a MetricSet into a Verdict using a threshold table: a weighted composite score
compared against a score threshold, OR-ed with per-metric limits. Classification never
raises; anything it can not evaluate becomes an abnormal verdict so that bad input
fails toward caution rather than toward false reassurance.
"""

import math
import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, field_validator

logger = logging.getLogger(__name__)

DIFFICULTY_LEVELS = 6

@dataclass(frozen=True)
class Verdict:
    """Outcome of one completed test."""
    score: float
    is_abnormal: bool
    insufficient_data: bool = False
    breached: Tuple[str, ...] = ()  # Metric names (or "score") that crossed a limit

    def to_dict(self) -> Dict[str, object]:
        return {
            "score": self.score,
            "is_abnormal": self.is_abnormal,
            "insufficient_data": self.insufficient_data,
            "breached": list(self.breached),
        }

INSUFFICIENT_VERDICT = Verdict(score=0.0, is_abnormal=True, insufficient_data=True)

class ThresholdTable(BaseModel):
    """
    Weights and limits for one test type.

    ``weights`` defines the composite score, ``score_threshold`` its limit, and
    ``metric_thresholds`` optional per-metric limits that are sufficient on their own.
    """
    model_config = ConfigDict(frozen=True)

    weights: Dict[str, float]
    score_threshold: float
    metric_thresholds: Dict[str, float] = {}

    @field_validator("weights")
    @classmethod
    def validate_weights(cls, v):
        if not v:
            raise ValueError("A threshold table needs at least one weighted metric")
        return v

    def metric_names(self) -> List[str]:
        """Every metric the table reads, weighted ones first."""
        names = list(self.weights)
        names.extend(name for name in self.metric_thresholds if name not in self.weights)
        return names

class TieredThresholds(BaseModel):
    """Six threshold rows selected by a difficulty level from 1 (easiest) to 6."""
    model_config = ConfigDict(frozen=True)

    tiers: Tuple[ThresholdTable, ...]

    @field_validator("tiers")
    @classmethod
    def validate_tiers(cls, v):
        if len(v) != DIFFICULTY_LEVELS:
            raise ValueError(f"Expected {DIFFICULTY_LEVELS} difficulty tiers, got {len(v)}")
        return v

    def for_difficulty(self, level: int) -> ThresholdTable:
        """
        Select the threshold row for a difficulty level.

        Raises:
            ValueError: If the level is outside 1..6
        """
        if not 1 <= level <= DIFFICULTY_LEVELS:
            raise ValueError(f"Difficulty must be between 1 and {DIFFICULTY_LEVELS}, got {level}")
        return self.tiers[level - 1]

def classify(metrics: Mapping[str, float], thresholds: ThresholdTable) -> Verdict:
    """
    Classify a metric set against a threshold table.

    score = sum(weight_i * metric_i); abnormal if the score exceeds ``score_threshold``
    or any metric exceeds its own limit. An empty set, a missing weighted metric, or a
    non-finite value yields an abnormal insufficient-data verdict with score 0.

    Args:
        metrics: Metric name to value
        thresholds: The table to classify against

    Returns:
        Verdict: Always; this function does not raise
    """
    if not metrics:
        return INSUFFICIENT_VERDICT

    needed = thresholds.metric_names()
    for name in needed:
        value = metrics.get(name)
        if not isinstance(value, (int, float)) or not math.isfinite(value):
            logger.info("Metric %s unavailable (%r); failing safe", name, value)
            return INSUFFICIENT_VERDICT

    score = sum(weight * metrics[name] for name, weight in thresholds.weights.items())
    breached: List[str] = []
    if score > thresholds.score_threshold:
        breached.append("score")
    breached.extend(name for name, limit in thresholds.metric_thresholds.items()
                    if metrics[name] > limit)

    return Verdict(score=float(score), is_abnormal=bool(breached), breached=tuple(breached))

def consecutive_misses(outcomes: Sequence[bool]) -> int:
    """Longest run of missed steps (False) in a step sequence."""
    longest = current = 0
    for matched in outcomes:
        current = 0 if matched else current + 1
        longest = max(longest, current)
    return longest

def should_exit_early(outcomes: Sequence[bool], max_consecutive_misses: int = 2) -> bool:
    """True once the trailing run of misses reaches the consecutive-miss limit."""
    trailing = 0
    for matched in reversed(outcomes):
        if matched:
            break
        trailing += 1
    return trailing >= max_consecutive_misses

def classify_sequence(outcomes: Sequence[bool],
                      max_misses: int = 3,
                      max_consecutive_misses: int = 2) -> Verdict:
    """
    Classify a multi-step sequence (e.g. direction following) from per-step outcomes.

    Abnormal on ``max_misses`` total misses or ``max_consecutive_misses`` in a row.
    The score is the number of missed steps.
    """
    if not outcomes:
        return INSUFFICIENT_VERDICT

    misses = sum(1 for matched in outcomes if not matched)
    breached: List[str] = []
    if misses >= max_misses:
        breached.append("misses")
    if consecutive_misses(outcomes) >= max_consecutive_misses:
        breached.append("consecutive_misses")
    return Verdict(score=float(misses), is_abnormal=bool(breached), breached=tuple(breached))
