"""
Result types emitted by the controllers and the orchestrator.
"""

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from strokecheck.analysis.classifier import Verdict

def now_ms() -> int:
    return int(time.time() * 1000)

class DataSource(str, Enum):
    """Where the samples behind a result came from."""
    SENSOR = "sensor"
    SIMULATED = "simulated"      # Synthetic fallback data, never a real measurement
    UNAVAILABLE = "unavailable"  # Sensor failed; the verdict is the fail-safe one

class SuiteStatus(str, Enum):
    RUNNING = "running"
    ALL_NORMAL = "all_normal"
    EMERGENCY = "emergency"
    ABORTED = "aborted"

def _jsonable(value: float) -> Optional[float]:
    return value if math.isfinite(value) else None

@dataclass(frozen=True)
class TestResult:
    """Outcome of one test. ``verdict`` is None only when the test was cancelled."""
    __test__ = False

    test_name: str
    verdict: Optional[Verdict]
    completed_at: int
    cancelled: bool = False
    data_source: DataSource = DataSource.SENSOR
    metrics: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))
    step_outcomes: Tuple[bool, ...] = ()
    notes: Tuple[str, ...] = ()

    @classmethod
    def cancelled_result(cls, test_name: str) -> "TestResult":
        return cls(test_name=test_name, verdict=None, completed_at=now_ms(),
                   cancelled=True, notes=("cancelled",))

    @property
    def is_abnormal(self) -> bool:
        return not self.cancelled and self.verdict is not None and self.verdict.is_abnormal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_name": self.test_name,
            "verdict": self.verdict.to_dict() if self.verdict else None,
            "completed_at": self.completed_at,
            "cancelled": self.cancelled,
            "data_source": self.data_source.value,
            "metrics": {name: _jsonable(value) for name, value in self.metrics.items()},
            "step_outcomes": list(self.step_outcomes),
            "notes": list(self.notes),
        }

@dataclass(frozen=True)
class OrchestrationState:
    """Snapshot of a screening suite; replaced, never mutated, on every transition."""
    results: Tuple[TestResult, ...] = ()
    abnormal_count: int = 0
    current_test_index: int = 0
    terminal: SuiteStatus = SuiteStatus.RUNNING

    @property
    def finished(self) -> bool:
        return self.terminal != SuiteStatus.RUNNING

    @property
    def counted_results(self) -> Tuple[TestResult, ...]:
        """Results that take part in quorum arithmetic (cancelled tests excluded)."""
        return tuple(r for r in self.results if not r.cancelled)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "abnormal_count": self.abnormal_count,
            "current_test_index": self.current_test_index,
            "terminal": self.terminal.value,
        }
