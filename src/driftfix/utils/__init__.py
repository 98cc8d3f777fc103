"""Utility functions and classes."""

from .exceptions import (
    CorruptDataError,
    DriftFixException,
    IncompatibleSchemaError,
    InferenceUnavailableError,
    InsufficientDataError,
    PersistenceError,
    RollbackError,
    ValidationFailure,
)

__all__ = [
    "CorruptDataError",
    "DriftFixException",
    "IncompatibleSchemaError",
    "InferenceUnavailableError",
    "InsufficientDataError",
    "PersistenceError",
    "RollbackError",
    "ValidationFailure",
]
