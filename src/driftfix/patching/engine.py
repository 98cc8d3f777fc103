"""
Patch engine: the only component that mutates a model's active rule set.

Each model owns a two-slot history (active rule set plus one archived
version). Apply and rollback for a model are serialized by a per-model
lock; different models never block each other. Transforms work on an
immutable snapshot and hold the lock only long enough to read it.
"""
import threading
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import structlog

from ..models.patch import AppliedPatch, PatchCandidate, PatchValidationResult
from ..models.ruleset import PatchState, PreprocessingRuleSet, RuleSetHistory
from ..monitoring import metrics
from ..storage.repository import InMemoryRuleSetRepository, RuleSetRepository
from ..utils.exceptions import RollbackError, ValidationFailure

logger = structlog.get_logger(__name__)


class PatchEngine:
    """
    Applies, rolls back and executes preprocessing patches per model.

    State per model: NO_PATCH -> apply -> PATCHED -> apply -> PATCHED,
    PATCHED -> rollback -> previous state. Only one level of rollback is
    kept.
    """

    def __init__(self, repository: Optional[RuleSetRepository] = None):
        """
        Initialize engine.

        Args:
            repository: Rule set storage (defaults to in-memory)
        """
        self.repository = repository or InMemoryRuleSetRepository()
        self._histories: Dict[str, RuleSetHistory] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, model_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(model_id)
            if lock is None:
                lock = self._locks[model_id] = threading.RLock()
            return lock

    def _history(self, model_id: str) -> RuleSetHistory:
        """Current history; caller holds the model lock."""
        history = self._histories.get(model_id)
        if history is None:
            history = self.repository.load(model_id) or RuleSetHistory()
            self._histories[model_id] = history
        return history

    def _commit(self, model_id: str, history: RuleSetHistory) -> None:
        """Persist first, then publish; a failed save leaves state unchanged."""
        self.repository.save(model_id, history)
        self._histories[model_id] = history

    def snapshot(self, model_id: str) -> RuleSetHistory:
        """Consistent view of a model's history."""
        with self._lock_for(model_id):
            return self._history(model_id)

    def apply(self, model_id: str, patch: AppliedPatch) -> PreprocessingRuleSet:
        """
        Compose a patch into the model's active rule set.

        The previously active rule set becomes the rollback target.

        Args:
            model_id: Model identifier
            patch: Patch to apply

        Returns:
            New active rule set
        """
        return self.apply_many(model_id, [patch])

    def apply_many(self, model_id: str, patches: Sequence[AppliedPatch]) -> PreprocessingRuleSet:
        """
        Compose several patches into a single new rule set version.

        One rollback undoes all of them and restores the rule set that was
        active before the call.

        Args:
            model_id: Model identifier
            patches: Patches to apply, in order

        Returns:
            New active rule set

        Raises:
            ValueError: If ``patches`` is empty
        """
        if not patches:
            raise ValueError("apply_many needs at least one patch")
        with self._lock_for(model_id):
            history = self._history(model_id).advance(*patches)
            self._commit(model_id, history)

        active = history.active
        for patch in patches:
            metrics.record_patch_applied(model_id, patch.patch_type.value, active.version)
            logger.info(
                "patch_applied",
                model_id=model_id,
                patch_id=patch.id,
                patch_type=patch.patch_type.value,
                priority=patch.priority.value,
                ruleset_version=active.version,
            )
        return active

    def accept(
        self,
        model_id: str,
        candidate: PatchCandidate,
        validation_result: PatchValidationResult,
    ) -> AppliedPatch:
        """
        Apply a candidate that passed validation.

        Raises:
            ValidationFailure: If the result rejected the candidate or belongs to another candidate
        """
        return self.accept_many(model_id, [(candidate, validation_result)])[0]

    def accept_many(
        self,
        model_id: str,
        accepted: Sequence[Tuple[PatchCandidate, PatchValidationResult]],
    ) -> List[AppliedPatch]:
        """
        Apply every validated candidate as one rule set version.

        All pairs are checked before anything is applied, so one bad pair
        leaves the model untouched.

        Returns:
            Applied patches in input order (empty when ``accepted`` is empty)

        Raises:
            ValidationFailure: If a result rejected its candidate or belongs to another candidate
        """
        patches = []
        for candidate, validation_result in accepted:
            if validation_result.candidate_id != candidate.id:
                raise ValidationFailure(
                    "Validation result does not belong to this candidate",
                    details={"candidate_id": candidate.id, "result_candidate_id": validation_result.candidate_id}
                )
            validation_result.raise_for_rejection()
            patches.append(AppliedPatch.from_candidate(candidate, validation_result))
        if patches:
            self.apply_many(model_id, patches)
        return patches

    def rollback(self, model_id: str) -> PreprocessingRuleSet:
        """
        Restore the archived rule set.

        Returns:
            Restored active rule set

        Raises:
            RollbackError: If there is nothing to roll back to
        """
        with self._lock_for(model_id):
            try:
                history = self._history(model_id).rolled_back()
            except RollbackError as e:
                metrics.record_rollback(model_id, success=False)
                e.details["model_id"] = model_id
                logger.warning("rollback_unavailable", model_id=model_id)
                raise
            self._commit(model_id, history)

        active = history.active
        metrics.record_rollback(model_id, success=True, version=active.version)
        logger.info("patch_rolled_back", model_id=model_id, ruleset_version=active.version)
        return active

    def transform(self, model_id: str, data: Any) -> np.ndarray:
        """Run the model's active input stages on a matrix; the input is never modified."""
        return self.active_ruleset(model_id).transform(data)

    def adjust_outputs(self, model_id: str, outputs: Any) -> np.ndarray:
        """Run the model's threshold stage on model outputs."""
        return self.active_ruleset(model_id).adjust_outputs(outputs)

    def active_ruleset(self, model_id: str) -> PreprocessingRuleSet:
        return self.snapshot(model_id).active

    def previous_ruleset(self, model_id: str) -> Optional[PreprocessingRuleSet]:
        return self.snapshot(model_id).previous

    def state(self, model_id: str) -> PatchState:
        return self.snapshot(model_id).state

    def applied_patches(self, model_id: str) -> List[AppliedPatch]:
        """Every patch applied to the model, oldest first, with rollback stamps."""
        return list(self.snapshot(model_id).log)
