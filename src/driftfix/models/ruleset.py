"""
Preprocessing rule sets and their two-slot rollback history.

A rule set is the composition of applied patches. Stages run in a fixed
order: clip, reweight, normalize on inputs, then the threshold shift on
model outputs. A patch overrides the stage parameters of the features it
touches and leaves the rest untouched.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import numpy as np

from ..config import constants
from ..utils.exceptions import IncompatibleSchemaError, RollbackError
from ..utils.helpers import as_feature_matrix, utc_now
from .patch import (
    AppliedPatch,
    ClippingParameters,
    ModelUpdateParameters,
    NormalizationParameters,
    PatchParameters,
    ReweightingParameters,
    ThresholdParameters,
)


class PatchState(str, Enum):
    NO_PATCH = "NO_PATCH"
    PATCHED = "PATCHED"


@dataclass(frozen=True)
class PreprocessingRuleSet:
    """Immutable, composed preprocessing for one model."""
    version: int = 0
    clip_bounds: Dict[int, Tuple[float, float]] = field(default_factory=dict)
    feature_weights: Dict[int, float] = field(default_factory=dict)
    # feature -> (current_mean, current_std, reference_mean, reference_std)
    normalization: Dict[int, Tuple[float, float, float, float]] = field(default_factory=dict)
    threshold_delta: float = 0.0
    model_version: Optional[str] = None
    patches: Tuple[AppliedPatch, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.patches

    @property
    def touched_features(self) -> Tuple[int, ...]:
        return tuple(sorted(set(self.clip_bounds) | set(self.feature_weights) | set(self.normalization)))

    def with_parameters(self, parameters: PatchParameters) -> "PreprocessingRuleSet":
        """Return a copy whose stages are overridden by ``parameters``."""
        if isinstance(parameters, ClippingParameters):
            bounds = dict(self.clip_bounds)
            for idx, lower, upper in zip(parameters.feature_indices, parameters.lower_bounds, parameters.upper_bounds):
                bounds[idx] = (lower, upper)
            return replace(self, clip_bounds=bounds)
        if isinstance(parameters, ReweightingParameters):
            weights = dict(self.feature_weights)
            weights.update(zip(parameters.feature_indices, parameters.weights))
            return replace(self, feature_weights=weights)
        if isinstance(parameters, NormalizationParameters):
            normalization = dict(self.normalization)
            for row in zip(
                parameters.feature_indices,
                parameters.current_means,
                parameters.current_stds,
                parameters.reference_means,
                parameters.reference_stds,
            ):
                normalization[row[0]] = tuple(row[1:])
            return replace(self, normalization=normalization)
        if isinstance(parameters, ThresholdParameters):
            return replace(self, threshold_delta=parameters.delta)
        if isinstance(parameters, ModelUpdateParameters):
            return replace(self, model_version=parameters.model_version)
        raise TypeError(f"Unsupported patch parameters: {type(parameters).__name__}")

    def compose(self, *patches: AppliedPatch) -> "PreprocessingRuleSet":
        """
        Fold one or more applied patches, in order, into a single new version.

        Only the newest ``MAX_RULESET_PATCHES`` patch records are kept; the
        stage parameters always reflect every patch.
        """
        if not patches:
            raise ValueError("compose needs at least one patch")
        composed = self
        for patch in patches:
            composed = composed.with_parameters(patch.parameters)
        history = (self.patches + patches)[-constants.MAX_RULESET_PATCHES:]
        return replace(composed, version=self.version + 1, patches=history)

    def transform(self, data: Any) -> np.ndarray:
        """
        Apply the input stages to a feature matrix.

        Args:
            data: Feature matrix (rows are samples)

        Returns:
            New transformed matrix; the input is never modified

        Raises:
            IncompatibleSchemaError: If a rule references a missing feature
        """
        matrix, _ = as_feature_matrix(data, "matrix")
        touched = self.touched_features
        if touched and touched[-1] >= matrix.shape[1]:
            raise IncompatibleSchemaError(
                f"Rule set references feature {touched[-1]} but matrix has {matrix.shape[1]} features",
                details={"n_features": matrix.shape[1], "max_feature_index": touched[-1]}
            )

        out = np.array(matrix, dtype=np.float64, copy=True)
        for idx, (lower, upper) in self.clip_bounds.items():
            out[:, idx] = np.clip(out[:, idx], lower, upper)
        for idx, weight in self.feature_weights.items():
            out[:, idx] = out[:, idx] * weight
        for idx, (current_mean, current_std, reference_mean, reference_std) in self.normalization.items():
            scale = max(current_std, constants.PSI_EPSILON)
            out[:, idx] = (out[:, idx] - current_mean) / scale * reference_std + reference_mean
        return out

    def adjust_outputs(self, outputs: Any) -> np.ndarray:
        """Threshold stage: shift model scores down by the threshold delta."""
        scores = np.array(outputs, dtype=np.float64, copy=True)
        if self.threshold_delta:
            scores = scores - self.threshold_delta
        return scores

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "clip_bounds": {str(k): list(v) for k, v in self.clip_bounds.items()},
            "feature_weights": {str(k): v for k, v in self.feature_weights.items()},
            "normalization": {str(k): list(v) for k, v in self.normalization.items()},
            "threshold_delta": self.threshold_delta,
            "model_version": self.model_version,
            "patches": [patch.to_dict() for patch in self.patches],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PreprocessingRuleSet":
        return cls(
            version=int(data.get("version", 0)),
            clip_bounds={int(k): (float(v[0]), float(v[1])) for k, v in data.get("clip_bounds", {}).items()},
            feature_weights={int(k): float(v) for k, v in data.get("feature_weights", {}).items()},
            normalization={
                int(k): tuple(float(x) for x in v) for k, v in data.get("normalization", {}).items()
            },
            threshold_delta=float(data.get("threshold_delta", 0.0)),
            model_version=data.get("model_version"),
            patches=tuple(AppliedPatch.from_dict(p) for p in data.get("patches", [])),
        )


def _initial_slots() -> Tuple[Optional[PreprocessingRuleSet], Optional[PreprocessingRuleSet]]:
    return PreprocessingRuleSet(), None


@dataclass(frozen=True)
class RuleSetHistory:
    """
    Two-slot arena holding the active rule set and its only rollback target.

    Applying writes into the inactive slot and swaps; rolling back swaps
    back and clears the abandoned slot, so rollback depth is exactly one.
    """
    slots: Tuple[Optional[PreprocessingRuleSet], Optional[PreprocessingRuleSet]] = field(
        default_factory=_initial_slots
    )
    active_index: int = 0
    log: Tuple[AppliedPatch, ...] = ()

    @property
    def active(self) -> PreprocessingRuleSet:
        return self.slots[self.active_index]

    @property
    def previous(self) -> Optional[PreprocessingRuleSet]:
        return self.slots[1 - self.active_index]

    @property
    def state(self) -> PatchState:
        return PatchState.NO_PATCH if self.active.is_empty else PatchState.PATCHED

    def advance(self, *patches: AppliedPatch) -> "RuleSetHistory":
        """
        Compose ``patches`` into one new active rule set, archiving the current one.

        Patches applied together share a version and are rolled back together.
        The log keeps the newest ``MAX_RULESET_PATCHES`` entries.
        """
        new_index = 1 - self.active_index
        slots = list(self.slots)
        slots[new_index] = self.active.compose(*patches)
        log = (self.log + patches)[-constants.MAX_RULESET_PATCHES:]
        return RuleSetHistory(slots=tuple(slots), active_index=new_index, log=log)

    def rolled_back(self, at: Optional[datetime] = None) -> "RuleSetHistory":
        """Restore the archived rule set and stamp the undone patches."""
        restored = self.previous
        if restored is None:
            raise RollbackError(
                "No previous rule set to roll back to",
                details={"active_version": self.active.version}
            )
        at = at or utc_now()
        kept = {patch.id for patch in restored.patches}
        undone = {patch.id for patch in self.active.patches} - kept
        log = tuple(
            patch.mark_rolled_back(at) if patch.id in undone and not patch.is_rolled_back else patch
            for patch in self.log
        )
        slots = list(self.slots)
        slots[self.active_index] = None
        return RuleSetHistory(slots=tuple(slots), active_index=1 - self.active_index, log=log)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slots": [slot.to_dict() if slot is not None else None for slot in self.slots],
            "active_index": self.active_index,
            "log": [patch.to_dict() for patch in self.log],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleSetHistory":
        slots = tuple(PreprocessingRuleSet.from_dict(s) if s is not None else None for s in data["slots"])
        if len(slots) != 2:
            raise ValueError("rule set history must have exactly two slots")
        return cls(
            slots=slots,
            active_index=int(data["active_index"]),
            log=tuple(AppliedPatch.from_dict(p) for p in data.get("log", [])),
        )
