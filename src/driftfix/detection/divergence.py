"""
Per-feature divergence between a reference and a current feature matrix.

For every feature the analyzer computes PSI, the two-sample KS statistic
and its asymptotic p-value, plus location and scale shift scores. It does
not aggregate across features; that is the classifier's job.
"""
from typing import Any, List, Optional, Sequence

import numpy as np
import structlog

from ..config.settings import DetectionSettings, get_settings
from ..models.drift import FeatureDivergenceMetric
from ..utils.exceptions import IncompatibleSchemaError, InsufficientDataError
from ..utils.helpers import as_feature_matrix, check_finite
from . import statistics

logger = structlog.get_logger(__name__)


class FeatureDivergenceAnalyzer:
    """
    Computes per-feature drift statistics.

    A feature counts as drifted when its PSI exceeds the PSI threshold, or
    when its KS statistic exceeds the KS threshold with a p-value below
    the significance level.
    """

    def __init__(self, settings: Optional[DetectionSettings] = None):
        """
        Initialize analyzer.

        Args:
            settings: Detection settings (defaults to global settings)
        """
        self.settings = settings or get_settings().detection

    def analyze(
        self,
        reference: Any,
        current: Any,
        *,
        expected_feature_count: Optional[int] = None,
        best_effort: bool = False,
        feature_names: Optional[Sequence[str]] = None,
    ) -> List[FeatureDivergenceMetric]:
        """
        Compare current data against the reference, feature by feature.

        Args:
            reference: Reference matrix (rows are samples)
            current: Current matrix with the same features
            expected_feature_count: Feature count declared by the model, if known
            best_effort: Skip the minimum sample size check
            feature_names: Optional feature labels

        Returns:
            One metric per feature, in feature index order

        Raises:
            IncompatibleSchemaError: Empty input or feature count mismatch
            CorruptDataError: NaN or infinite values
            InsufficientDataError: Too few samples and not best_effort
        """
        ref, ref_names = as_feature_matrix(reference, "reference")
        cur, cur_names = as_feature_matrix(current, "current")
        self._check_schema(ref, cur, expected_feature_count)
        check_finite(ref, "reference")
        check_finite(cur, "current")
        self._check_sample_size(ref, cur, best_effort)

        names = list(feature_names) if feature_names is not None else (ref_names or cur_names)
        if names is not None and len(names) != ref.shape[1]:
            raise IncompatibleSchemaError(
                f"Got {len(names)} feature names for {ref.shape[1]} features",
                details={"n_names": len(names), "n_features": ref.shape[1]}
            )

        metrics = [
            self.feature_metric(i, ref[:, i], cur[:, i], names[i] if names else None)
            for i in range(ref.shape[1])
        ]

        logger.debug(
            "feature_divergence_computed",
            n_features=len(metrics),
            n_reference=ref.shape[0],
            n_current=cur.shape[0],
            n_drifted=sum(1 for m in metrics if m.is_drifted),
            best_effort=best_effort,
        )
        return metrics

    def feature_metric(
        self,
        index: int,
        reference: np.ndarray,
        current: np.ndarray,
        name: Optional[str] = None,
    ) -> FeatureDivergenceMetric:
        """Divergence statistics for one feature column."""
        s = self.settings
        psi_score = statistics.psi(reference, current, s.n_bins, s.binning_strategy, s.psi_epsilon)
        d, p_value = statistics.ks_test(reference, current)
        mean_shift, std_shift = statistics.shift_scores(reference, current, s.psi_epsilon)
        is_drifted = psi_score > s.psi_threshold or (d > s.ks_statistic_threshold and p_value < s.ks_alpha)
        return FeatureDivergenceMetric(
            feature_index=index,
            psi_score=psi_score,
            ks_statistic=d,
            p_value=p_value,
            mean_shift=mean_shift,
            std_shift=std_shift,
            is_drifted=bool(is_drifted),
            feature_name=name,
        )

    @staticmethod
    def _check_schema(ref: np.ndarray, cur: np.ndarray, expected_feature_count: Optional[int]) -> None:
        if ref.shape[1] != cur.shape[1]:
            raise IncompatibleSchemaError(
                f"Reference has {ref.shape[1]} features but current has {cur.shape[1]}",
                details={"reference_features": ref.shape[1], "current_features": cur.shape[1]}
            )
        if expected_feature_count is not None and ref.shape[1] != expected_feature_count:
            raise IncompatibleSchemaError(
                f"Model expects {expected_feature_count} features but data has {ref.shape[1]}",
                details={"expected_features": expected_feature_count, "actual_features": ref.shape[1]}
            )

    def _check_sample_size(self, ref: np.ndarray, cur: np.ndarray, best_effort: bool) -> None:
        min_samples = self.settings.min_samples
        smallest = min(ref.shape[0], cur.shape[0])
        if smallest >= min_samples:
            return
        if best_effort:
            logger.warning(
                "insufficient_samples_best_effort",
                n_reference=ref.shape[0],
                n_current=cur.shape[0],
                min_samples=min_samples,
            )
            return
        raise InsufficientDataError(
            f"Need at least {min_samples} samples, got {smallest}",
            details={"n_reference": ref.shape[0], "n_current": cur.shape[0], "min_samples": min_samples}
        )
