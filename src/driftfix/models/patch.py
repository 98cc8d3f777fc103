"""
Patch candidates, their parameters, validation results and applied patches.
"""
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from ..config import constants
from ..utils.exceptions import ValidationFailure
from ..utils.helpers import utc_now


class PatchType(str, Enum):
    """Kinds of corrective patch."""
    FEATURE_CLIPPING = "FEATURE_CLIPPING"
    FEATURE_REWEIGHTING = "FEATURE_REWEIGHTING"
    NORMALIZATION_UPDATE = "NORMALIZATION_UPDATE"
    THRESHOLD_TUNING = "THRESHOLD_TUNING"
    MODEL_UPDATE = "MODEL_UPDATE"

    @property
    def description(self) -> str:
        return _PATCH_DESCRIPTIONS[self]


_PATCH_DESCRIPTIONS = {
    PatchType.FEATURE_CLIPPING: "Clip feature values to a fixed range to contain outliers",
    PatchType.FEATURE_REWEIGHTING: "Scale drifted features down by their drift severity",
    PatchType.NORMALIZATION_UPDATE: "Re-standardize drifted features onto the reference scale",
    PatchType.THRESHOLD_TUNING: "Shift the decision threshold to follow the output distribution",
    PatchType.MODEL_UPDATE: "Switch to a different model version",
}


class PatchPriority(str, Enum):
    PRIMARY = "PRIMARY"
    SECONDARY = "SECONDARY"
    EMERGENCY = "EMERGENCY"


def _floats(values) -> Tuple[float, ...]:
    return tuple(float(v) for v in values)


def _ints(values) -> Tuple[int, ...]:
    return tuple(int(v) for v in values)


@dataclass(frozen=True)
class ClippingParameters:
    """Clip each listed feature to [lower, upper]."""
    feature_indices: Tuple[int, ...]
    lower_bounds: Tuple[float, ...]
    upper_bounds: Tuple[float, ...]
    lower_percentile: float = constants.CLIP_LOWER_PERCENTILE
    upper_percentile: float = constants.CLIP_UPPER_PERCENTILE

    patch_type = PatchType.FEATURE_CLIPPING

    def __post_init__(self):
        if not len(self.feature_indices) == len(self.lower_bounds) == len(self.upper_bounds):
            raise ValueError("clipping parameters must have one bound pair per feature")
        for lower, upper in zip(self.lower_bounds, self.upper_bounds):
            if lower > upper:
                raise ValueError(f"clipping lower bound {lower} exceeds upper bound {upper}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feature_indices": list(self.feature_indices),
            "lower_bounds": list(self.lower_bounds),
            "upper_bounds": list(self.upper_bounds),
            "lower_percentile": self.lower_percentile,
            "upper_percentile": self.upper_percentile,
        }


@dataclass(frozen=True)
class ReweightingParameters:
    """Multiply each listed feature by its weight."""
    feature_indices: Tuple[int, ...]
    weights: Tuple[float, ...]

    patch_type = PatchType.FEATURE_REWEIGHTING

    def __post_init__(self):
        if len(self.feature_indices) != len(self.weights):
            raise ValueError("reweighting parameters must have one weight per feature")

    def to_dict(self) -> Dict[str, Any]:
        return {"feature_indices": list(self.feature_indices), "weights": list(self.weights)}


@dataclass(frozen=True)
class NormalizationParameters:
    """
    Standardize each listed feature with its current mean/std, then map it
    back onto the reference mean/std.
    """
    feature_indices: Tuple[int, ...]
    current_means: Tuple[float, ...]
    current_stds: Tuple[float, ...]
    reference_means: Tuple[float, ...]
    reference_stds: Tuple[float, ...]

    patch_type = PatchType.NORMALIZATION_UPDATE

    def __post_init__(self):
        n = len(self.feature_indices)
        lengths = {len(self.current_means), len(self.current_stds), len(self.reference_means), len(self.reference_stds)}
        if lengths != {n}:
            raise ValueError("normalization parameters must have one entry per feature")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feature_indices": list(self.feature_indices),
            "current_means": list(self.current_means),
            "current_stds": list(self.current_stds),
            "reference_means": list(self.reference_means),
            "reference_stds": list(self.reference_stds),
        }


@dataclass(frozen=True)
class ThresholdParameters:
    """Raise the decision threshold by ``delta``."""
    delta: float
    base_threshold: float = constants.BASE_DECISION_THRESHOLD

    patch_type = PatchType.THRESHOLD_TUNING

    @property
    def new_threshold(self) -> float:
        return self.base_threshold + self.delta

    def to_dict(self) -> Dict[str, Any]:
        return {"delta": self.delta, "base_threshold": self.base_threshold}


@dataclass(frozen=True)
class ModelUpdateParameters:
    """Point the rule set at another model version."""
    model_version: str
    description: str = ""

    patch_type = PatchType.MODEL_UPDATE

    def to_dict(self) -> Dict[str, Any]:
        return {"model_version": self.model_version, "description": self.description}


PatchParameters = Union[
    ClippingParameters,
    ReweightingParameters,
    NormalizationParameters,
    ThresholdParameters,
    ModelUpdateParameters,
]


def parameters_from_dict(patch_type: PatchType, data: Dict[str, Any]) -> PatchParameters:
    """Rebuild typed parameters from their ``to_dict`` form."""
    patch_type = PatchType(patch_type)
    if patch_type is PatchType.FEATURE_CLIPPING:
        return ClippingParameters(
            feature_indices=_ints(data["feature_indices"]),
            lower_bounds=_floats(data["lower_bounds"]),
            upper_bounds=_floats(data["upper_bounds"]),
            lower_percentile=float(data.get("lower_percentile", constants.CLIP_LOWER_PERCENTILE)),
            upper_percentile=float(data.get("upper_percentile", constants.CLIP_UPPER_PERCENTILE)),
        )
    if patch_type is PatchType.FEATURE_REWEIGHTING:
        return ReweightingParameters(
            feature_indices=_ints(data["feature_indices"]),
            weights=_floats(data["weights"]),
        )
    if patch_type is PatchType.NORMALIZATION_UPDATE:
        return NormalizationParameters(
            feature_indices=_ints(data["feature_indices"]),
            current_means=_floats(data["current_means"]),
            current_stds=_floats(data["current_stds"]),
            reference_means=_floats(data["reference_means"]),
            reference_stds=_floats(data["reference_stds"]),
        )
    if patch_type is PatchType.THRESHOLD_TUNING:
        return ThresholdParameters(
            delta=float(data["delta"]),
            base_threshold=float(data.get("base_threshold", constants.BASE_DECISION_THRESHOLD)),
        )
    if patch_type is PatchType.MODEL_UPDATE:
        return ModelUpdateParameters(
            model_version=str(data["model_version"]),
            description=str(data.get("description", "")),
        )
    raise TypeError(f"Unsupported patch type: {patch_type}")


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class PatchCandidate:
    """A proposed, not yet validated, patch."""
    patch_type: PatchType
    priority: PatchPriority
    parameters: PatchParameters
    expected_drift_reduction: float
    rationale: str = ""
    id: str = field(default_factory=new_id)

    def __post_init__(self):
        if self.parameters.patch_type is not self.patch_type:
            raise ValueError(
                f"{type(self.parameters).__name__} cannot parameterize a {self.patch_type.value} patch"
            )
        if not 0.0 <= self.expected_drift_reduction <= 1.0:
            raise ValueError("expected_drift_reduction must be within [0, 1]")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "patch_type": self.patch_type.value,
            "priority": self.priority.value,
            "parameters": self.parameters.to_dict(),
            "expected_drift_reduction": self.expected_drift_reduction,
            "rationale": self.rationale,
        }


@dataclass(frozen=True)
class PatchValidationResult:
    """Outcome of validating one candidate."""
    candidate_id: str
    patch_type: PatchType
    safety_score: float
    accuracy_delta: float
    measured_drift_reduction: float
    accepted: bool
    rejection_reason: Optional[str] = None
    approximate: bool = False
    warnings: Tuple[str, ...] = ()
    precision_shift: float = 0.0
    recall_shift: float = 0.0
    drift_score_before: Optional[float] = None
    drift_score_after: Optional[float] = None
    accuracy_confidence_interval: Optional[Tuple[float, float]] = None

    @property
    def is_borderline(self) -> bool:
        """Accepted, but only inside the borderline band."""
        return self.accepted and bool(self.warnings)

    def raise_for_rejection(self) -> None:
        """Raise ValidationFailure if the candidate was rejected."""
        if not self.accepted:
            raise ValidationFailure(
                self.rejection_reason or "Patch candidate failed validation",
                details={
                    "candidate_id": self.candidate_id,
                    "patch_type": self.patch_type.value,
                    "safety_score": self.safety_score,
                    "measured_drift_reduction": self.measured_drift_reduction,
                }
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidate_id": self.candidate_id,
            "patch_type": self.patch_type.value,
            "safety_score": self.safety_score,
            "accuracy_delta": self.accuracy_delta,
            "measured_drift_reduction": self.measured_drift_reduction,
            "accepted": self.accepted,
            "rejection_reason": self.rejection_reason,
            "approximate": self.approximate,
            "warnings": list(self.warnings),
            "precision_shift": self.precision_shift,
            "recall_shift": self.recall_shift,
            "drift_score_before": self.drift_score_before,
            "drift_score_after": self.drift_score_after,
            "accuracy_confidence_interval": (
                list(self.accuracy_confidence_interval) if self.accuracy_confidence_interval else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PatchValidationResult":
        interval = data.get("accuracy_confidence_interval")
        return cls(
            candidate_id=data["candidate_id"],
            patch_type=PatchType(data["patch_type"]),
            safety_score=float(data["safety_score"]),
            accuracy_delta=float(data["accuracy_delta"]),
            measured_drift_reduction=float(data["measured_drift_reduction"]),
            accepted=bool(data["accepted"]),
            rejection_reason=data.get("rejection_reason"),
            approximate=bool(data.get("approximate", False)),
            warnings=tuple(data.get("warnings", ())),
            precision_shift=float(data.get("precision_shift", 0.0)),
            recall_shift=float(data.get("recall_shift", 0.0)),
            drift_score_before=data.get("drift_score_before"),
            drift_score_after=data.get("drift_score_after"),
            accuracy_confidence_interval=tuple(interval) if interval else None,
        )


@dataclass(frozen=True)
class AppliedPatch:
    """A validated patch that has been applied to a model's rule set."""
    candidate_id: str
    patch_type: PatchType
    priority: PatchPriority
    parameters: PatchParameters
    validation_result: Optional[PatchValidationResult] = None
    applied_at: datetime = field(default_factory=utc_now)
    rolled_back_at: Optional[datetime] = None
    id: str = field(default_factory=new_id)

    @classmethod
    def from_candidate(
        cls,
        candidate: PatchCandidate,
        validation_result: Optional[PatchValidationResult] = None,
    ) -> "AppliedPatch":
        return cls(
            candidate_id=candidate.id,
            patch_type=candidate.patch_type,
            priority=candidate.priority,
            parameters=candidate.parameters,
            validation_result=validation_result,
        )

    @property
    def is_rolled_back(self) -> bool:
        return self.rolled_back_at is not None

    def mark_rolled_back(self, at: Optional[datetime] = None) -> "AppliedPatch":
        return replace(self, rolled_back_at=at or utc_now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "candidate_id": self.candidate_id,
            "patch_type": self.patch_type.value,
            "priority": self.priority.value,
            "parameters": self.parameters.to_dict(),
            "validation_result": self.validation_result.to_dict() if self.validation_result else None,
            "applied_at": self.applied_at.isoformat(),
            "rolled_back_at": self.rolled_back_at.isoformat() if self.rolled_back_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppliedPatch":
        patch_type = PatchType(data["patch_type"])
        validation = data.get("validation_result")
        rolled_back_at = data.get("rolled_back_at")
        return cls(
            id=data["id"],
            candidate_id=data["candidate_id"],
            patch_type=patch_type,
            priority=PatchPriority(data["priority"]),
            parameters=parameters_from_dict(patch_type, data["parameters"]),
            validation_result=PatchValidationResult.from_dict(validation) if validation else None,
            applied_at=datetime.fromisoformat(data["applied_at"]),
            rolled_back_at=datetime.fromisoformat(rolled_back_at) if rolled_back_at else None,
        )
