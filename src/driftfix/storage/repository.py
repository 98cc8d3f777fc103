"""
Rule set repositories.

The patch engine persists each model's rule set history through this
contract: ``save(model_id, history)`` and ``load(model_id)``.
"""
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import structlog

from ..config.settings import StorageSettings, get_settings
from ..models.ruleset import RuleSetHistory

logger = structlog.get_logger(__name__)


class RuleSetRepository(ABC):
    """Storage for per-model rule set histories."""

    @abstractmethod
    def save(self, model_id: str, history: RuleSetHistory) -> None:
        """Persist the history of a model, replacing any previous one."""

    @abstractmethod
    def load(self, model_id: str) -> Optional[RuleSetHistory]:
        """Return the stored history, or None if the model is unknown."""

    @abstractmethod
    def delete(self, model_id: str) -> bool:
        """Remove a model's history. Returns True if something was removed."""

    @abstractmethod
    def model_ids(self) -> List[str]:
        """Models with a stored history."""


class InMemoryRuleSetRepository(RuleSetRepository):
    """Process-local repository; histories are immutable so no copies are needed."""

    def __init__(self):
        self._histories: Dict[str, RuleSetHistory] = {}
        self._lock = threading.Lock()

    def save(self, model_id: str, history: RuleSetHistory) -> None:
        with self._lock:
            self._histories[model_id] = history

    def load(self, model_id: str) -> Optional[RuleSetHistory]:
        with self._lock:
            return self._histories.get(model_id)

    def delete(self, model_id: str) -> bool:
        with self._lock:
            return self._histories.pop(model_id, None) is not None

    def model_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._histories)


def create_repository(settings: Optional[StorageSettings] = None) -> RuleSetRepository:
    """Build the repository selected by storage settings."""
    settings = settings or get_settings().storage
    if settings.backend == "sql":
        from .database import SqlRuleSetRepository

        return SqlRuleSetRepository(settings)
    logger.debug("using_in_memory_repository")
    return InMemoryRuleSetRepository()
