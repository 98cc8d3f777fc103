"""
Patch validation on held-out data.

Each candidate is applied to a validation subset of the current data that
is disjoint from the subset patches are later applied to. Drift is
re-measured against the reference, accuracy is optionally re-measured
through the model's predict callable, and a safety score decides whether
the candidate is accepted.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import structlog
from sklearn.metrics import accuracy_score, precision_score, recall_score

from ..config import constants
from ..config.settings import ValidationSettings, get_settings
from ..detection import statistics
from ..detection.classifier import DriftClassifier
from ..detection.divergence import FeatureDivergenceAnalyzer
from ..models.patch import (
    ClippingParameters,
    ModelUpdateParameters,
    NormalizationParameters,
    PatchCandidate,
    PatchParameters,
    PatchType,
    PatchValidationResult,
    ReweightingParameters,
    ThresholdParameters,
)
from ..models.ruleset import PreprocessingRuleSet
from ..monitoring import metrics
from ..utils.exceptions import IncompatibleSchemaError, InferenceUnavailableError
from ..utils.helpers import as_feature_matrix, check_finite, predict_outputs, safe_divide, wilson_interval

logger = structlog.get_logger(__name__)

PredictFn = Callable[[np.ndarray], Any]


@dataclass(frozen=True, eq=False)
class DataSplit:
    """Row indices of the validation and application subsets."""
    validation_indices: np.ndarray
    application_indices: np.ndarray
    fast_track: bool = False

    @property
    def n_validation(self) -> int:
        return int(self.validation_indices.size)

    @property
    def n_application(self) -> int:
        return int(self.application_indices.size)


@dataclass(frozen=True)
class ValidationRun:
    """Validation results for a batch of candidates."""
    results: Tuple[PatchValidationResult, ...]
    split: DataSplit = field(compare=False)

    @property
    def fast_track(self) -> bool:
        return self.split.fast_track

    @property
    def accepted(self) -> List[PatchValidationResult]:
        return [r for r in self.results if r.accepted]

    @property
    def rejected(self) -> List[PatchValidationResult]:
        return [r for r in self.results if not r.accepted]

    def result_for(self, candidate_id: str) -> PatchValidationResult:
        for result in self.results:
            if result.candidate_id == candidate_id:
                return result
        raise KeyError(candidate_id)


@dataclass
class _AccuracyCheck:
    accuracy_delta: float = 0.0
    precision_shift: float = 0.0
    recall_shift: float = 0.0
    confidence_interval: Optional[Tuple[float, float]] = None
    patched_outputs: Optional[np.ndarray] = None


class PatchValidator:
    """
    Validates patch candidates before they are applied.

    Acceptance requires safety above the safety threshold and measured
    drift reduction above the reduction threshold. Candidates that miss a
    threshold but stay inside its borderline band are accepted with a
    warning; anything worse is rejected with a reason.
    """

    def __init__(
        self,
        settings: Optional[ValidationSettings] = None,
        analyzer: Optional[FeatureDivergenceAnalyzer] = None,
        classifier: Optional[DriftClassifier] = None,
    ):
        """
        Initialize validator.

        Args:
            settings: Validation settings (defaults to global settings)
            analyzer: Analyzer used to re-measure drift
            classifier: Classifier used to score re-measured drift
        """
        self.settings = settings or get_settings().validation
        self.analyzer = analyzer or FeatureDivergenceAnalyzer()
        self.classifier = classifier or DriftClassifier()

    def split(self, n_samples: int) -> DataSplit:
        """
        Split row indices into disjoint validation and application subsets.

        Large datasets hold out a larger share than medium ones. Small
        datasets, or splits whose validation subset would be too small,
        are fast-tracked: nothing is held out.
        """
        s = self.settings
        if n_samples >= s.large_dataset_size:
            size = max(s.large_minimum, int(n_samples * s.large_fraction))
        elif n_samples >= s.medium_dataset_size:
            size = max(s.medium_minimum, int(n_samples * s.medium_fraction))
        else:
            size = 0
        size = min(size, max(n_samples - 1, 0))

        if size < s.min_validation_samples:
            return DataSplit(
                validation_indices=np.array([], dtype=int),
                application_indices=np.arange(n_samples),
                fast_track=True,
            )

        permutation = np.random.default_rng(s.random_seed).permutation(n_samples)
        return DataSplit(
            validation_indices=np.sort(permutation[:size]),
            application_indices=np.sort(permutation[size:]),
        )

    def validate(
        self,
        reference: Any,
        current: Any,
        candidates: Sequence[PatchCandidate],
        *,
        predict: Optional[PredictFn] = None,
        labels: Optional[Sequence[Any]] = None,
        base_ruleset: Optional[PreprocessingRuleSet] = None,
        feature_weights: Optional[Sequence[float]] = None,
    ) -> ValidationRun:
        """
        Validate candidates against held-out current data.

        Args:
            reference: Reference feature matrix
            current: Current feature matrix
            candidates: Candidates to validate
            predict: Optional model inference callable (matrix -> outputs)
            labels: Optional ground truth for the current rows
            base_ruleset: Rule set already active for the model
            feature_weights: Optional per-feature weights for the re-measured drift score

        Returns:
            ValidationRun with one result per candidate, in input order
        """
        ref, _ = as_feature_matrix(reference, "reference")
        cur, _ = as_feature_matrix(current, "current")
        if ref.shape[1] != cur.shape[1]:
            raise IncompatibleSchemaError(
                f"Reference has {ref.shape[1]} features but current has {cur.shape[1]}",
                details={"reference_features": ref.shape[1], "current_features": cur.shape[1]}
            )
        check_finite(ref, "reference")
        check_finite(cur, "current")
        truth = None
        if labels is not None:
            truth = np.asarray(labels)
            if truth.shape[0] != cur.shape[0]:
                raise IncompatibleSchemaError(
                    f"Got {truth.shape[0]} labels for {cur.shape[0]} rows",
                    details={"n_labels": int(truth.shape[0]), "n_rows": cur.shape[0]}
                )

        base = base_ruleset or PreprocessingRuleSet()
        split = self.split(cur.shape[0])

        if split.fast_track:
            logger.info("validation_fast_track", n_samples=cur.shape[0], n_candidates=len(candidates))
            results = [self._fast_track(candidate, ref, cur) for candidate in candidates]
        else:
            results = self._validate_held_out(
                ref, cur, candidates, split, base, predict,
                truth[split.validation_indices] if truth is not None else None,
                feature_weights,
            )

        for result in results:
            metrics.record_validation(result)
            logger.info(
                "patch_candidate_validated",
                candidate_id=result.candidate_id,
                patch_type=result.patch_type.value,
                accepted=result.accepted,
                safety_score=round(result.safety_score, 4),
                drift_reduction=round(result.measured_drift_reduction, 4),
                approximate=result.approximate,
                reason=result.rejection_reason,
            )
        return ValidationRun(results=tuple(results), split=split)

    def _validate_held_out(
        self,
        ref: np.ndarray,
        cur: np.ndarray,
        candidates: Sequence[PatchCandidate],
        split: DataSplit,
        base: PreprocessingRuleSet,
        predict: Optional[PredictFn],
        truth: Optional[np.ndarray],
        feature_weights: Optional[Sequence[float]] = None,
    ) -> List[PatchValidationResult]:
        held_out = cur[split.validation_indices]
        base_matrix = base.transform(held_out)
        score_before = self._drift_score(ref, base_matrix, feature_weights)

        base_outputs = None
        inference_error = None
        if predict is not None:
            try:
                base_outputs = base.adjust_outputs(self._predict(predict, base_matrix))
            except InferenceUnavailableError as e:
                inference_error = e
                logger.warning("baseline_inference_unavailable", error=e.message, details=e.details)

        output_cache: Dict[str, np.ndarray] = {}
        results = []
        for candidate in candidates:
            if inference_error is not None:
                results.append(self._unavailable(candidate))
                continue
            try:
                results.append(self._validate_candidate(
                    candidate, ref, held_out, base, score_before,
                    predict, base_outputs, truth, output_cache, feature_weights,
                ))
            except InferenceUnavailableError as e:
                logger.warning("candidate_inference_unavailable", candidate_id=candidate.id, error=e.message)
                results.append(self._unavailable(candidate))
        return results

    def _validate_candidate(
        self,
        candidate: PatchCandidate,
        ref: np.ndarray,
        held_out: np.ndarray,
        base: PreprocessingRuleSet,
        score_before: float,
        predict: Optional[PredictFn],
        base_outputs: Optional[np.ndarray],
        truth: Optional[np.ndarray],
        output_cache: Dict[str, np.ndarray],
        feature_weights: Optional[Sequence[float]] = None,
    ) -> PatchValidationResult:
        patched_ruleset = base.with_parameters(candidate.parameters)
        patched_matrix = patched_ruleset.transform(held_out)

        check = _AccuracyCheck()
        if predict is not None:
            check = self._accuracy_check(predict, patched_ruleset, patched_matrix, base_outputs, truth)

        approximate = False
        before: Optional[float] = score_before
        after: Optional[float] = None
        if candidate.patch_type is PatchType.THRESHOLD_TUNING:
            if predict is None:
                reduction = candidate.expected_drift_reduction
                approximate = True
                before = None
            else:
                if "reference" not in output_cache:
                    output_cache["reference"] = self._predict(predict, ref)
                before = self._output_drift_score(output_cache["reference"], base_outputs)
                after = self._output_drift_score(output_cache["reference"], check.patched_outputs)
                reduction = self._reduction(before, after)
        else:
            after = self._drift_score(ref, patched_matrix, feature_weights)
            reduction = self._reduction(score_before, after)

        relative_change = self._relative_change(candidate.parameters, held_out, ref)
        safety = self._safety_score(check.accuracy_delta, check.precision_shift, check.recall_shift, relative_change)
        accepted, reason, warnings = self._decide(safety, reduction)
        return PatchValidationResult(
            candidate_id=candidate.id,
            patch_type=candidate.patch_type,
            safety_score=safety,
            accuracy_delta=check.accuracy_delta,
            measured_drift_reduction=reduction,
            accepted=accepted,
            rejection_reason=reason,
            approximate=approximate,
            warnings=warnings,
            precision_shift=check.precision_shift,
            recall_shift=check.recall_shift,
            drift_score_before=before,
            drift_score_after=after,
            accuracy_confidence_interval=check.confidence_interval,
        )

    def _fast_track(self, candidate: PatchCandidate, ref: np.ndarray, cur: np.ndarray) -> PatchValidationResult:
        """Approximate validation for datasets too small to hold out rows."""
        reduction = candidate.expected_drift_reduction
        relative_change = self._relative_change(candidate.parameters, cur, ref)
        safety = self._safety_score(0.0, 0.0, 0.0, relative_change)
        accepted, reason, warnings = self._decide(safety, reduction)
        return PatchValidationResult(
            candidate_id=candidate.id,
            patch_type=candidate.patch_type,
            safety_score=safety,
            accuracy_delta=0.0,
            measured_drift_reduction=reduction,
            accepted=accepted,
            rejection_reason=reason,
            approximate=True,
            warnings=warnings,
        )

    @staticmethod
    def _unavailable(candidate: PatchCandidate) -> PatchValidationResult:
        return PatchValidationResult(
            candidate_id=candidate.id,
            patch_type=candidate.patch_type,
            safety_score=0.0,
            accuracy_delta=0.0,
            measured_drift_reduction=0.0,
            accepted=False,
            rejection_reason=constants.INFERENCE_UNAVAILABLE_REASON,
        )

    def _predict(self, predict: PredictFn, matrix: np.ndarray) -> np.ndarray:
        try:
            return predict_outputs(predict, matrix, timeout=self.settings.predict_timeout_seconds)
        except InferenceUnavailableError:
            metrics.PREDICT_FAILURES_TOTAL.inc()
            raise

    def _accuracy_check(
        self,
        predict: PredictFn,
        patched_ruleset: PreprocessingRuleSet,
        patched_matrix: np.ndarray,
        base_outputs: np.ndarray,
        truth: Optional[np.ndarray],
    ) -> _AccuracyCheck:
        patched_outputs = patched_ruleset.adjust_outputs(self._predict(predict, patched_matrix))
        base_labels = self._to_labels(base_outputs)
        patched_labels = self._to_labels(patched_outputs)
        reference_labels = truth if truth is not None else base_labels

        base_accuracy = accuracy_score(reference_labels, base_labels)
        patched_accuracy = accuracy_score(reference_labels, patched_labels)
        precision_shift = (
            precision_score(reference_labels, patched_labels, average="macro", zero_division=0)
            - precision_score(reference_labels, base_labels, average="macro", zero_division=0)
        )
        recall_shift = (
            recall_score(reference_labels, patched_labels, average="macro", zero_division=0)
            - recall_score(reference_labels, base_labels, average="macro", zero_division=0)
        )
        n = len(reference_labels)
        return _AccuracyCheck(
            accuracy_delta=float(patched_accuracy - base_accuracy),
            precision_shift=float(precision_shift),
            recall_shift=float(recall_shift),
            confidence_interval=wilson_interval(int(round(patched_accuracy * n)), n, constants.WILSON_Z),
            patched_outputs=patched_outputs,
        )

    def _to_labels(self, outputs: np.ndarray) -> np.ndarray:
        """Class labels from model outputs: argmax for score matrices, threshold for single scores."""
        if outputs.ndim == 2 and outputs.shape[1] > 1:
            return np.argmax(outputs, axis=1)
        return (outputs.ravel() >= self.settings.decision_threshold).astype(int)

    @staticmethod
    def _score_vector(outputs: np.ndarray) -> np.ndarray:
        if outputs.ndim == 1:
            return outputs
        if outputs.shape[1] == 1:
            return outputs[:, 0]
        if outputs.shape[1] == 2:
            return outputs[:, 1]
        return outputs.max(axis=1)

    def _drift_score(
        self,
        ref: np.ndarray,
        matrix: np.ndarray,
        feature_weights: Optional[Sequence[float]] = None,
    ) -> float:
        feature_metrics = self.analyzer.analyze(ref, matrix, best_effort=True)
        return self.classifier.classify(feature_metrics, feature_weights=feature_weights).overall_score

    def _output_drift_score(self, reference_outputs: np.ndarray, outputs: np.ndarray) -> float:
        detection = self.analyzer.settings
        value = statistics.psi(
            self._score_vector(reference_outputs),
            self._score_vector(outputs),
            detection.n_bins,
            detection.binning_strategy,
            detection.psi_epsilon,
        )
        return float(min(1.0, value / self.classifier.settings.psi_saturation))

    @staticmethod
    def _reduction(before: float, after: float) -> float:
        return float(safe_divide(before - after, before))

    def _relative_change(self, parameters: PatchParameters, data: np.ndarray, ref: np.ndarray) -> float:
        """Size of the change a patch makes, relative to reference spread."""
        if isinstance(parameters, ThresholdParameters):
            return abs(parameters.delta) / self.settings.threshold_change_scale
        if isinstance(parameters, ModelUpdateParameters):
            return constants.MODEL_UPDATE_RELATIVE_CHANGE
        if not isinstance(parameters, (ClippingParameters, ReweightingParameters, NormalizationParameters)):
            raise TypeError(f"Unsupported patch parameters: {type(parameters).__name__}")

        features = list(parameters.feature_indices)
        if not features:
            return 0.0
        transformed = PreprocessingRuleSet().with_parameters(parameters).transform(data)
        before, after = data[:, features], transformed[:, features]
        ref_std = ref[:, features].std(axis=0)
        mean_change = np.abs(after.mean(axis=0) - before.mean(axis=0))
        std_change = np.abs(after.std(axis=0) - before.std(axis=0))
        return float(np.mean((mean_change + std_change) / (ref_std + constants.PSI_EPSILON)))

    def _safety_score(
        self,
        accuracy_delta: float,
        precision_shift: float,
        recall_shift: float,
        relative_change: float,
    ) -> float:
        s = self.settings
        accuracy_component = 1.0 - min(max(-accuracy_delta, 0.0), s.max_accuracy_delta) / s.max_accuracy_delta
        balance_component = 1.0 - min(abs(precision_shift - recall_shift) / s.balance_tolerance, 1.0)
        change_component = 1.0 / (1.0 + relative_change)
        total_weight = s.weight_accuracy + s.weight_balance + s.weight_parameter_change
        score = safe_divide(
            s.weight_accuracy * accuracy_component
            + s.weight_balance * balance_component
            + s.weight_parameter_change * change_component,
            total_weight,
        )
        return float(np.clip(score, 0.0, 1.0))

    def _decide(self, safety: float, reduction: float) -> Tuple[bool, Optional[str], Tuple[str, ...]]:
        """Return (accepted, rejection reason, warnings)."""
        s = self.settings
        problems = []
        warnings = []

        if safety <= s.safety_threshold:
            if safety >= s.borderline_safety_floor:
                warnings.append(
                    f"safety score {safety:.2f} is borderline "
                    f"(threshold {s.safety_threshold:.2f})"
                )
            else:
                problems.append(f"safety score {safety:.2f} below threshold {s.borderline_safety_floor:.2f}")

        if reduction <= s.reduction_threshold:
            if reduction >= s.borderline_reduction_floor:
                warnings.append(
                    f"drift reduction {reduction:.2f} is borderline "
                    f"(threshold {s.reduction_threshold:.2f})"
                )
            else:
                problems.append(
                    f"drift reduction {reduction:.2f} below threshold {s.borderline_reduction_floor:.2f}"
                )

        if problems:
            return False, "; ".join(problems), ()
        return True, None, tuple(warnings)
