"""
StrokeCheck - motion-based stroke symptom screening core.

This package contains the analysis and orchestration core of the StrokeCheck
screening application. It turns buffered motion-sensor samples into verdicts
and combines per-test verdicts into an overall triage decision.

Features:
- Sample buffering with out-of-order protection
- Metric extraction (energy, tilt, step regularity, shake events)
- Threshold-based verdict classification
- Per-test state machine and multi-test orchestration with emergency escalation
"""

__version__ = "1.0.0"
