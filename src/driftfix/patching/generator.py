"""
Patch candidate generation.

Maps a drift verdict onto corrective preprocessing patches. The generator
only computes parameters; it never touches model state.
"""
from typing import Any, List, Optional, Sequence

import numpy as np
import structlog

from ..config.settings import GenerationSettings, get_settings
from ..models.drift import DriftResult, DriftType
from ..models.patch import (
    ClippingParameters,
    ModelUpdateParameters,
    NormalizationParameters,
    PatchCandidate,
    PatchPriority,
    PatchType,
    ReweightingParameters,
    ThresholdParameters,
)
from ..utils.exceptions import IncompatibleSchemaError
from ..utils.helpers import as_feature_matrix, check_finite

logger = structlog.get_logger(__name__)


class PatchCandidateGenerator:
    """
    Proposes patches for a detected drift.

    - COVARIATE_DRIFT: normalization update (primary), percentile clipping (secondary)
    - CONCEPT_DRIFT: feature reweighting (primary)
    - PRIOR_DRIFT: decision threshold tuning (primary)
    - very high overall score: extra emergency clipping
    """

    def __init__(self, settings: Optional[GenerationSettings] = None):
        self.settings = settings or get_settings().generation

    def generate(
        self,
        drift_result: DriftResult,
        reference: Any,
        current: Any,
        *,
        reference_outputs: Optional[Sequence[float]] = None,
        current_outputs: Optional[Sequence[float]] = None,
    ) -> List[PatchCandidate]:
        """
        Generate candidates for a drift result.

        Args:
            drift_result: Result of analysing ``current`` against ``reference``
            reference: Reference feature matrix
            current: Current feature matrix
            reference_outputs: Optional model scores on reference data
            current_outputs: Optional model scores on current data

        Returns:
            Candidates, primary first; empty when no drift was detected
        """
        if not drift_result.is_drift_detected:
            logger.debug("no_drift_no_candidates", overall_score=drift_result.overall_score)
            return []

        ref, _ = as_feature_matrix(reference, "reference")
        cur, _ = as_feature_matrix(current, "current")
        if ref.shape[1] != cur.shape[1] or ref.shape[1] != drift_result.n_features:
            raise IncompatibleSchemaError(
                "Data does not match the drift result's features",
                details={
                    "reference_features": ref.shape[1],
                    "current_features": cur.shape[1],
                    "result_features": drift_result.n_features,
                }
            )
        check_finite(ref, "reference")
        check_finite(cur, "current")

        features = self._target_features(drift_result)
        candidates: List[PatchCandidate] = []

        if drift_result.drift_type is DriftType.COVARIATE_DRIFT:
            candidates.append(self.normalization_candidate(ref, cur, features))
            candidates.append(self.clipping_candidate(
                ref, cur, features,
                self.settings.clip_lower_percentile,
                self.settings.clip_upper_percentile,
                PatchPriority.SECONDARY,
            ))
        elif drift_result.drift_type is DriftType.CONCEPT_DRIFT:
            candidates.append(self.reweighting_candidate(drift_result, features))
        elif drift_result.drift_type is DriftType.PRIOR_DRIFT:
            candidates.append(self.threshold_candidate(drift_result, reference_outputs, current_outputs))
        else:
            raise TypeError(f"Unsupported drift type: {drift_result.drift_type}")

        if drift_result.overall_score > self.settings.emergency_score:
            candidates.append(self.clipping_candidate(
                ref, cur, features,
                self.settings.emergency_lower_percentile,
                self.settings.emergency_upper_percentile,
                PatchPriority.EMERGENCY,
            ))

        logger.info(
            "patch_candidates_generated",
            drift_type=drift_result.drift_type.value,
            n_candidates=len(candidates),
            patch_types=[c.patch_type.value for c in candidates],
        )
        return candidates

    @staticmethod
    def _target_features(drift_result: DriftResult) -> List[int]:
        """Drifted features, or every feature when drift is only visible in aggregate."""
        if drift_result.drifted_feature_indices:
            return sorted(drift_result.drifted_feature_indices)
        return list(range(drift_result.n_features))

    def normalization_candidate(self, ref: np.ndarray, cur: np.ndarray, features: List[int]) -> PatchCandidate:
        eps = self.settings.epsilon
        parameters = NormalizationParameters(
            feature_indices=tuple(features),
            current_means=tuple(float(cur[:, i].mean()) for i in features),
            current_stds=tuple(max(float(cur[:, i].std()), eps) for i in features),
            reference_means=tuple(float(ref[:, i].mean()) for i in features),
            reference_stds=tuple(max(float(ref[:, i].std()), eps) for i in features),
        )
        return PatchCandidate(
            patch_type=PatchType.NORMALIZATION_UPDATE,
            priority=PatchPriority.PRIMARY,
            parameters=parameters,
            expected_drift_reduction=self.settings.normalization_reduction,
            rationale=f"Re-standardize {len(features)} shifted feature(s) onto reference statistics",
        )

    def clipping_candidate(
        self,
        ref: np.ndarray,
        cur: np.ndarray,
        features: List[int],
        lower_percentile: float,
        upper_percentile: float,
        priority: PatchPriority,
    ) -> PatchCandidate:
        source = cur if self.settings.clip_source == "current" else ref
        lower = np.percentile(source[:, features], lower_percentile, axis=0)
        upper = np.percentile(source[:, features], upper_percentile, axis=0)
        parameters = ClippingParameters(
            feature_indices=tuple(features),
            lower_bounds=tuple(float(v) for v in lower),
            upper_bounds=tuple(float(v) for v in upper),
            lower_percentile=lower_percentile,
            upper_percentile=upper_percentile,
        )
        return PatchCandidate(
            patch_type=PatchType.FEATURE_CLIPPING,
            priority=priority,
            parameters=parameters,
            expected_drift_reduction=self.settings.clipping_reduction,
            rationale=(
                f"Clip {len(features)} feature(s) to "
                f"[p{lower_percentile:g}, p{upper_percentile:g}] of {self.settings.clip_source} data"
            ),
        )

    def reweighting_candidate(self, drift_result: DriftResult, features: List[int]) -> PatchCandidate:
        weights = tuple(1.0 / (1.0 + drift_result.metric_for(i).psi_score) for i in features)
        return PatchCandidate(
            patch_type=PatchType.FEATURE_REWEIGHTING,
            priority=PatchPriority.PRIMARY,
            parameters=ReweightingParameters(feature_indices=tuple(features), weights=weights),
            expected_drift_reduction=self.settings.reweighting_reduction,
            rationale=f"Down-weight {len(features)} drifted feature(s) by drift severity",
        )

    def threshold_candidate(
        self,
        drift_result: DriftResult,
        reference_outputs: Optional[Sequence[float]],
        current_outputs: Optional[Sequence[float]],
    ) -> PatchCandidate:
        if reference_outputs is not None and current_outputs is not None:
            ref_scores = np.asarray(reference_outputs, dtype=float).ravel()
            cur_scores = np.asarray(current_outputs, dtype=float).ravel()
            delta = float(cur_scores.mean() - ref_scores.mean())
            source = "output distribution shift"
        else:
            delta = drift_result.overall_score * self.settings.threshold_delta_scale
            source = "overall drift score"
        parameters = ThresholdParameters(delta=delta, base_threshold=self.settings.base_decision_threshold)
        return PatchCandidate(
            patch_type=PatchType.THRESHOLD_TUNING,
            priority=PatchPriority.PRIMARY,
            parameters=parameters,
            expected_drift_reduction=self.settings.threshold_reduction,
            rationale=f"Move decision threshold by {delta:+.4f} from {source}",
        )

    def model_update_candidate(self, model_version: str, description: str = "") -> PatchCandidate:
        """Candidate that switches the model to ``model_version``; proposed by operators, never from drift."""
        return PatchCandidate(
            patch_type=PatchType.MODEL_UPDATE,
            priority=PatchPriority.SECONDARY,
            parameters=ModelUpdateParameters(model_version=model_version, description=description),
            expected_drift_reduction=self.settings.model_update_reduction,
            rationale=f"Switch to model version {model_version}",
        )
