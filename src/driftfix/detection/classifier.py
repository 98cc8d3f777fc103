"""
Aggregate per-feature divergence into a drift score and drift type.
"""
from typing import Any, List, Optional, Sequence

import numpy as np
import structlog
from scipy.stats import variation

from ..config.settings import ClassificationSettings, get_settings
from ..models.drift import DriftResult, DriftType, FeatureDivergenceMetric
from ..utils.exceptions import IncompatibleSchemaError
from ..utils.helpers import safe_divide
from .divergence import FeatureDivergenceAnalyzer

logger = structlog.get_logger(__name__)


class DriftClassifier:
    """
    Scores and labels drift from per-feature metrics.

    Rules, first match wins:
    - drifted ratio below the prior band -> PRIOR_DRIFT
    - drifted ratio inside the concept band, with heterogeneous PSI or
      scale shifts dominating location shifts -> CONCEPT_DRIFT
    - otherwise -> COVARIATE_DRIFT
    """

    def __init__(self, settings: Optional[ClassificationSettings] = None):
        self.settings = settings or get_settings().classification

    def classify(
        self,
        metrics: Sequence[FeatureDivergenceMetric],
        *,
        feature_weights: Optional[Sequence[float]] = None,
        n_reference: int = 0,
        n_current: int = 0,
    ) -> DriftResult:
        """
        Build a DriftResult.

        Args:
            metrics: Per-feature metrics from the analyzer
            feature_weights: Optional non-negative weight per feature
            n_reference: Reference sample size, for reporting
            n_current: Current sample size, for reporting

        Returns:
            DriftResult
        """
        if not metrics:
            raise IncompatibleSchemaError("Cannot classify drift without feature metrics")

        s = self.settings
        psi_values = np.array([m.psi_score for m in metrics], dtype=float)
        weights = self._normalized_weights(feature_weights, len(metrics))
        overall_score = float(np.clip(np.sum(weights * np.minimum(1.0, psi_values / s.psi_saturation)), 0.0, 1.0))

        drifted = [m for m in metrics if m.is_drifted]
        drifted_ratio = len(drifted) / len(metrics)
        drift_type = self._drift_type(psi_values, drifted, drifted_ratio)

        is_drift_detected = overall_score > s.drift_threshold
        if s.localized_drift_detection and drifted:
            is_drift_detected = True

        total_psi = float(psi_values.sum())
        attributions = tuple(float(v / total_psi) if total_psi > 0 else 0.0 for v in psi_values)

        result = DriftResult(
            overall_score=overall_score,
            is_drift_detected=is_drift_detected,
            drift_type=drift_type,
            per_feature=tuple(metrics),
            drifted_feature_indices=frozenset(m.feature_index for m in drifted),
            drifted_ratio=drifted_ratio,
            threshold=s.drift_threshold,
            feature_attributions=attributions,
            n_reference=n_reference,
            n_current=n_current,
        )

        logger.info(
            "drift_classified",
            overall_score=round(overall_score, 4),
            drift_detected=is_drift_detected,
            drift_type=drift_type.value,
            drifted_ratio=round(drifted_ratio, 4),
            severity=result.severity.value,
        )
        return result

    def _drift_type(
        self,
        psi_values: np.ndarray,
        drifted: List[FeatureDivergenceMetric],
        drifted_ratio: float,
    ) -> DriftType:
        s = self.settings
        if drifted_ratio < s.prior_max_ratio:
            return DriftType.PRIOR_DRIFT
        if drifted_ratio < s.concept_max_ratio:
            if self._psi_variation(psi_values) > s.psi_cv_threshold:
                return DriftType.CONCEPT_DRIFT
            if self._shape_location_ratio(drifted) > s.shape_location_ratio:
                return DriftType.CONCEPT_DRIFT
        return DriftType.COVARIATE_DRIFT

    @staticmethod
    def _psi_variation(psi_values: np.ndarray) -> float:
        """Coefficient of variation of per-feature PSI (0 when mean PSI is 0)."""
        if psi_values.size < 2 or float(psi_values.mean()) == 0.0:
            return 0.0
        return float(variation(psi_values))

    @staticmethod
    def _shape_location_ratio(drifted: List[FeatureDivergenceMetric]) -> float:
        """Average std shift over average mean shift among drifted features."""
        if not drifted:
            return 0.0
        avg_std_shift = float(np.mean([m.std_shift for m in drifted]))
        avg_mean_shift = float(np.mean([m.mean_shift for m in drifted]))
        if avg_mean_shift == 0.0:
            return float("inf") if avg_std_shift > 0 else 0.0
        return safe_divide(avg_std_shift, avg_mean_shift)

    @staticmethod
    def _normalized_weights(feature_weights: Optional[Sequence[float]], n_features: int) -> np.ndarray:
        if feature_weights is None:
            return np.full(n_features, 1.0 / n_features)
        weights = np.asarray(feature_weights, dtype=float)
        if weights.shape != (n_features,):
            raise IncompatibleSchemaError(
                f"Expected {n_features} feature weights, got {weights.size}",
                details={"n_features": n_features, "n_weights": int(weights.size)}
            )
        if not np.all(np.isfinite(weights)) or np.any(weights < 0):
            raise ValueError("feature weights must be finite and non-negative")
        total = float(weights.sum())
        if total == 0.0:
            return np.full(n_features, 1.0 / n_features)
        return weights / total


def analyze_drift(
    reference: Any,
    current: Any,
    *,
    analyzer: Optional[FeatureDivergenceAnalyzer] = None,
    classifier: Optional[DriftClassifier] = None,
    feature_weights: Optional[Sequence[float]] = None,
    expected_feature_count: Optional[int] = None,
    best_effort: bool = False,
) -> DriftResult:
    """Run divergence analysis and classification in one call."""
    analyzer = analyzer or FeatureDivergenceAnalyzer()
    classifier = classifier or DriftClassifier()
    metrics = analyzer.analyze(
        reference,
        current,
        expected_feature_count=expected_feature_count,
        best_effort=best_effort,
    )
    return classifier.classify(
        metrics,
        feature_weights=feature_weights,
        n_reference=len(reference),
        n_current=len(current),
    )
