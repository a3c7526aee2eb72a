# portal/domain/models/analytics_domain_model.py

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class RequestWindowStats:
    """Request outcome figures for one time window."""
    start: datetime
    end: datetime
    total: int
    errors: int
    mean_duration_ms: Optional[float] = None

    @property
    def error_rate(self) -> Optional[float]:
        """Share of error outcomes in percent, None for an empty window."""
        if not self.total:
            return None
        return self.errors * 100.0 / self.total


@dataclass(frozen=True)
class Anomaly:
    """A metric that strayed ``deviation`` standard deviations from its baseline."""
    metric: str
    value: float
    expected: float
    deviation: float
    threshold: float

    def as_metadata(self) -> Dict[str, Any]:
        return {
            "metric": self.metric,
            "value": round(self.value, 2),
            "expected": round(self.expected, 2),
            "deviation": round(self.deviation, 2),
            "threshold": self.threshold,
        }
