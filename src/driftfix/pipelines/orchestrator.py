"""
End-to-end drift remediation pipeline.

Steps:
1. Analyze current data against the reference
2. Generate patch candidates for the detected drift
3. Validate every candidate on held-out rows
4. Apply the accepted candidates through the patch engine
5. Re-analyze the patched application rows and report the reduction
"""
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..config.logger import get_logger
from ..config.settings import GlobalSettings, get_settings
from ..detection.classifier import DriftClassifier
from ..detection.divergence import FeatureDivergenceAnalyzer
from ..models.drift import DriftResult, DriftType
from ..models.patch import AppliedPatch, PatchCandidate, PatchValidationResult
from ..monitoring import metrics
from ..patching.engine import PatchEngine
from ..patching.generator import PatchCandidateGenerator
from ..patching.validator import PatchValidator, ValidationRun
from ..storage.repository import create_repository
from ..utils.exceptions import DriftFixException, InferenceUnavailableError
from ..utils.helpers import as_feature_matrix, predict_outputs, safe_divide

logger = get_logger(__name__)


@dataclass(frozen=True)
class DriftFixResult:
    """Outcome of one remediation run for a model."""
    model_id: str
    original_drift_result: DriftResult
    accepted_patches: Tuple[AppliedPatch, ...]
    rejected_patches: Tuple[PatchValidationResult, ...]
    final_drift_result: DriftResult
    reduction_percent: float
    candidates: Tuple[PatchCandidate, ...] = ()
    approximate: bool = False
    validation: Optional[ValidationRun] = field(default=None, compare=False)

    @property
    def patched(self) -> bool:
        return bool(self.accepted_patches)

    def summary(self) -> Dict[str, Any]:
        """Plain dict for reporting."""
        return {
            "model_id": self.model_id,
            "drift_detected": self.original_drift_result.is_drift_detected,
            "drift_type": self.original_drift_result.drift_type.value,
            "severity": self.original_drift_result.severity.value,
            "original_score": self.original_drift_result.overall_score,
            "final_score": self.final_drift_result.overall_score,
            "reduction_percent": self.reduction_percent,
            "approximate": self.approximate,
            "fast_track": self.validation.fast_track if self.validation else False,
            "n_candidates": len(self.candidates),
            "accepted": [
                {"id": p.id, "patch_type": p.patch_type.value, "priority": p.priority.value}
                for p in self.accepted_patches
            ],
            "rejected": [
                {"candidate_id": r.candidate_id, "patch_type": r.patch_type.value, "reason": r.rejection_reason}
                for r in self.rejected_patches
            ],
        }


@dataclass
class ModelJob:
    """Inputs for one model in a batch run."""
    reference: Any
    current: Any
    predict: Optional[Callable[[np.ndarray], Any]] = None
    labels: Optional[Sequence[Any]] = None
    feature_weights: Optional[Sequence[float]] = None
    expected_feature_count: Optional[int] = None
    best_effort: bool = False


class DriftFixOrchestrator:
    """
    Runs analyze -> generate -> validate -> apply -> re-analyze for a model.
    """

    def __init__(
        self,
        engine: Optional[PatchEngine] = None,
        analyzer: Optional[FeatureDivergenceAnalyzer] = None,
        classifier: Optional[DriftClassifier] = None,
        generator: Optional[PatchCandidateGenerator] = None,
        validator: Optional[PatchValidator] = None,
        settings: Optional[GlobalSettings] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            engine: Patch engine (defaults to one backed by the configured repository)
            analyzer: Divergence analyzer
            classifier: Drift classifier
            generator: Candidate generator
            validator: Candidate validator
            settings: Global settings
        """
        self.settings = settings or get_settings()
        self.engine = engine or PatchEngine(create_repository(self.settings.storage))
        self.analyzer = analyzer or FeatureDivergenceAnalyzer(self.settings.detection)
        self.classifier = classifier or DriftClassifier(self.settings.classification)
        self.generator = generator or PatchCandidateGenerator(self.settings.generation)
        self.validator = validator or PatchValidator(self.settings.validation, self.analyzer, self.classifier)

    def run(
        self,
        model_id: str,
        reference: Any,
        current: Any,
        *,
        predict: Optional[Callable[[np.ndarray], Any]] = None,
        labels: Optional[Sequence[Any]] = None,
        feature_weights: Optional[Sequence[float]] = None,
        expected_feature_count: Optional[int] = None,
        best_effort: bool = False,
    ) -> DriftFixResult:
        """
        Detect drift for a model and apply validated patches.

        Args:
            model_id: Model identifier
            reference: Reference (training-time) feature matrix
            current: Raw current (production) feature matrix
            predict: Optional model inference callable
            labels: Optional ground truth for current rows
            feature_weights: Optional per-feature occurrence weights
            expected_feature_count: Input width declared by the model
            best_effort: Analyze even below the minimum sample size

        Returns:
            DriftFixResult

        Raises:
            IncompatibleSchemaError, CorruptDataError, InsufficientDataError
        """
        started = time.perf_counter()
        ref, feature_names = as_feature_matrix(reference, "reference")
        cur, _ = as_feature_matrix(current, "current")
        log = logger.bind(model_id=model_id)

        try:
            feature_metrics = self.analyzer.analyze(
                ref, cur,
                expected_feature_count=expected_feature_count,
                best_effort=best_effort,
                feature_names=feature_names,
            )
        except DriftFixException as e:
            metrics.record_analysis(model_id, None)
            log.error("drift_analysis_failed", error=e.message, error_code=e.error_code)
            raise

        original = self.classifier.classify(
            feature_metrics,
            feature_weights=feature_weights,
            n_reference=ref.shape[0],
            n_current=cur.shape[0],
        )
        metrics.record_analysis(model_id, original.is_drift_detected, "original", original.overall_score)

        if not original.is_drift_detected:
            log.info("no_drift_detected", overall_score=original.overall_score)
            return self._finish(model_id, started, DriftFixResult(
                model_id=model_id,
                original_drift_result=original,
                accepted_patches=(),
                rejected_patches=(),
                final_drift_result=original,
                reduction_percent=0.0,
            ))

        reference_outputs, current_outputs = self._outputs_for_threshold(original, ref, cur, predict)
        candidates = self.generator.generate(
            original, ref, cur,
            reference_outputs=reference_outputs,
            current_outputs=current_outputs,
        )
        validation = self.validator.validate(
            ref, cur, candidates,
            predict=predict,
            labels=labels,
            base_ruleset=self.engine.active_ruleset(model_id),
            feature_weights=feature_weights,
        )

        # One rule set version per run, so a single rollback undoes the whole run
        accepted = self.engine.accept_many(model_id, [
            (candidate, result)
            for candidate, result in zip(candidates, validation.results)
            if result.accepted
        ])

        final = original
        if accepted:
            application = cur[validation.split.application_indices]
            patched = self.engine.transform(model_id, application)
            final_metrics = self.analyzer.analyze(ref, patched, best_effort=True, feature_names=feature_names)
            final = self.classifier.classify(
                final_metrics,
                feature_weights=feature_weights,
                n_reference=ref.shape[0],
                n_current=application.shape[0],
            )
            metrics.record_analysis(model_id, final.is_drift_detected, "final", final.overall_score)

        reduction = safe_divide(original.overall_score - final.overall_score, original.overall_score)
        result = DriftFixResult(
            model_id=model_id,
            original_drift_result=original,
            accepted_patches=tuple(accepted),
            rejected_patches=tuple(validation.rejected),
            final_drift_result=final,
            reduction_percent=float(reduction),
            candidates=tuple(candidates),
            approximate=any(r.approximate for r in validation.accepted),
            validation=validation,
        )
        log.info(
            "drift_remediation_completed",
            drift_type=original.drift_type.value,
            original_score=round(original.overall_score, 4),
            final_score=round(final.overall_score, 4),
            reduction_percent=round(result.reduction_percent, 4),
            n_accepted=len(accepted),
            n_rejected=len(result.rejected_patches),
            approximate=result.approximate,
        )
        return self._finish(model_id, started, result)

    @staticmethod
    def _finish(model_id: str, started: float, result: DriftFixResult) -> DriftFixResult:
        metrics.ANALYSIS_DURATION_SECONDS.labels(model_id=model_id).observe(time.perf_counter() - started)
        return result

    def _outputs_for_threshold(
        self,
        drift_result: DriftResult,
        ref: np.ndarray,
        cur: np.ndarray,
        predict: Optional[Callable[[np.ndarray], Any]],
    ) -> Tuple[Optional[np.ndarray], Optional[np.ndarray]]:
        """Model scores on both samples, only needed to size a threshold patch."""
        if predict is None or drift_result.drift_type is not DriftType.PRIOR_DRIFT:
            return None, None
        timeout = self.settings.validation.predict_timeout_seconds
        try:
            reference_outputs = predict_outputs(predict, ref, timeout=timeout)
            current_outputs = predict_outputs(predict, cur, timeout=timeout)
        except InferenceUnavailableError as e:
            metrics.PREDICT_FAILURES_TOTAL.inc()
            logger.warning("output_scores_unavailable", error=e.message, details=e.details)
            return None, None
        return self._positive_scores(reference_outputs), self._positive_scores(current_outputs)

    @staticmethod
    def _positive_scores(outputs: np.ndarray) -> np.ndarray:
        if outputs.ndim == 2 and outputs.shape[1] == 2:
            return outputs[:, 1]
        return outputs.ravel() if outputs.ndim == 1 or outputs.shape[1] == 1 else outputs.max(axis=1)

    def run_many(
        self,
        jobs: Mapping[str, ModelJob],
        max_workers: int = 4,
    ) -> Tuple[Dict[str, DriftFixResult], Dict[str, Exception]]:
        """
        Run independent models in parallel, one task per model.

        Returns:
            (results by model id, failures by model id)
        """
        results: Dict[str, DriftFixResult] = {}
        failures: Dict[str, Exception] = {}
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {
                executor.submit(
                    self.run,
                    model_id,
                    job.reference,
                    job.current,
                    predict=job.predict,
                    labels=job.labels,
                    feature_weights=job.feature_weights,
                    expected_feature_count=job.expected_feature_count,
                    best_effort=job.best_effort,
                ): model_id
                for model_id, job in jobs.items()
            }

            for future in as_completed(futures):
                model_id = futures[future]
                try:
                    results[model_id] = future.result()
                except Exception as e:
                    logger.warning("model_run_failed", model_id=model_id, error=str(e))
                    failures[model_id] = e

        logger.info("batch_run_completed", n_succeeded=len(results), n_failed=len(failures))
        return results, failures
