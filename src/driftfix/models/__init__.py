"""Domain data types."""

from .drift import DriftResult, DriftSeverity, DriftType, FeatureDivergenceMetric
from .patch import (
    AppliedPatch,
    ClippingParameters,
    ModelUpdateParameters,
    NormalizationParameters,
    PatchCandidate,
    PatchParameters,
    PatchPriority,
    PatchType,
    PatchValidationResult,
    ReweightingParameters,
    ThresholdParameters,
)
from .ruleset import PatchState, PreprocessingRuleSet, RuleSetHistory

__all__ = [
    "AppliedPatch",
    "ClippingParameters",
    "DriftResult",
    "DriftSeverity",
    "DriftType",
    "FeatureDivergenceMetric",
    "ModelUpdateParameters",
    "NormalizationParameters",
    "PatchCandidate",
    "PatchParameters",
    "PatchPriority",
    "PatchState",
    "PatchType",
    "PatchValidationResult",
    "PreprocessingRuleSet",
    "ReweightingParameters",
    "RuleSetHistory",
    "ThresholdParameters",
]
