"""Storage module."""

from .repository import InMemoryRuleSetRepository, RuleSetRepository, create_repository

__all__ = ["InMemoryRuleSetRepository", "RuleSetRepository", "create_repository"]
