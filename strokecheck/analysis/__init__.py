"""
Signal-analysis core: sample buffers, metric extractors and verdict classification.
"""

from .samples import Channel, Sample, SampleBuffer
from .metrics import (
    INSUFFICIENT_DATA, IRREGULAR_GAIT, DIRECTIONS, METRICS, MetricSet, ShakeStats,
    magnitude_change_energy, angular_tilt_accumulation, step_interval_regularity,
    shake_events, shake_event_count, dominant_direction, extract_metrics,
    required_channels, is_insufficient,
)
from .classifier import (
    Verdict, ThresholdTable, TieredThresholds, classify, classify_sequence, should_exit_early,
)

__all__ = [
    'Channel', 'Sample', 'SampleBuffer',
    'INSUFFICIENT_DATA', 'IRREGULAR_GAIT', 'DIRECTIONS', 'METRICS', 'MetricSet', 'ShakeStats',
    'magnitude_change_energy', 'angular_tilt_accumulation', 'step_interval_regularity',
    'shake_events', 'shake_event_count', 'dominant_direction', 'extract_metrics',
    'required_channels', 'is_insufficient',
    'Verdict', 'ThresholdTable', 'TieredThresholds', 'classify', 'classify_sequence',
    'should_exit_early',
]
