"""
Drift analysis results.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple

import pandas as pd

from ..config import constants
from ..utils.helpers import utc_now


class DriftType(str, Enum):
    """Kind of distribution shift."""
    COVARIATE_DRIFT = "COVARIATE_DRIFT"
    CONCEPT_DRIFT = "CONCEPT_DRIFT"
    PRIOR_DRIFT = "PRIOR_DRIFT"


class DriftSeverity(str, Enum):
    """Severity band of an overall drift score."""
    MINIMAL = "MINIMAL"
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @classmethod
    def from_score(cls, score: float) -> "DriftSeverity":
        if score > constants.SEVERITY_CRITICAL:
            return cls.CRITICAL
        if score > constants.SEVERITY_HIGH:
            return cls.HIGH
        if score > constants.SEVERITY_MODERATE:
            return cls.MODERATE
        if score > constants.SEVERITY_LOW:
            return cls.LOW
        return cls.MINIMAL


@dataclass(frozen=True)
class FeatureDivergenceMetric:
    """Divergence statistics for one feature."""
    feature_index: int
    psi_score: float
    ks_statistic: float
    p_value: float
    mean_shift: float
    std_shift: float
    is_drifted: bool = False
    feature_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feature_index": self.feature_index,
            "feature_name": self.feature_name,
            "psi_score": self.psi_score,
            "ks_statistic": self.ks_statistic,
            "p_value": self.p_value,
            "mean_shift": self.mean_shift,
            "std_shift": self.std_shift,
            "is_drifted": self.is_drifted,
        }


@dataclass(frozen=True)
class DriftResult:
    """
    Aggregate drift verdict for one reference/current comparison.

    ``computed_at`` is excluded from equality, so analysing the same inputs
    twice yields equal results.
    """
    overall_score: float
    is_drift_detected: bool
    drift_type: DriftType
    per_feature: Tuple[FeatureDivergenceMetric, ...]
    drifted_feature_indices: FrozenSet[int]
    drifted_ratio: float = 0.0
    threshold: float = constants.DRIFT_SCORE_THRESHOLD
    feature_attributions: Tuple[float, ...] = ()
    n_reference: int = 0
    n_current: int = 0
    computed_at: datetime = field(default_factory=utc_now, compare=False)

    @property
    def severity(self) -> DriftSeverity:
        return DriftSeverity.from_score(self.overall_score)

    @property
    def n_features(self) -> int:
        return len(self.per_feature)

    def metric_for(self, feature_index: int) -> FeatureDivergenceMetric:
        """Metric of one feature by index."""
        return self.per_feature[feature_index]

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict for logging and reporting."""
        return {
            "overall_score": self.overall_score,
            "is_drift_detected": self.is_drift_detected,
            "drift_type": self.drift_type.value,
            "severity": self.severity.value,
            "drifted_feature_indices": sorted(self.drifted_feature_indices),
            "drifted_ratio": self.drifted_ratio,
            "threshold": self.threshold,
            "feature_attributions": list(self.feature_attributions),
            "n_reference": self.n_reference,
            "n_current": self.n_current,
            "computed_at": self.computed_at.isoformat(),
            "per_feature": [metric.to_dict() for metric in self.per_feature],
        }

    def to_frame(self) -> pd.DataFrame:
        """Per-feature metrics as a DataFrame indexed by feature index."""
        frame = pd.DataFrame([metric.to_dict() for metric in self.per_feature])
        if self.feature_attributions:
            frame["attribution"] = list(self.feature_attributions)
        return frame.set_index("feature_index")
