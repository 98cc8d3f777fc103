"""
Custom exceptions for DriftFix.
"""
from typing import Optional, Dict, Any

from ..config import constants


class DriftFixException(Exception):
    """Base exception for DriftFix."""

    def __init__(
        self,
        message: str,
        error_code: str = constants.ERROR_CODE_BASE,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize exception.

        Args:
            message: Error message
            error_code: Error code
            details: Additional error details
        """
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class IncompatibleSchemaError(DriftFixException):
    """Raised when matrices are empty or their feature counts disagree."""

    def __init__(
        self,
        message: str = "Incompatible feature schema",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code=constants.ERROR_CODE_INCOMPATIBLE_SCHEMA,
            details=details
        )


class InsufficientDataError(DriftFixException):
    """Raised when a sample is too small for a meaningful drift test."""

    def __init__(
        self,
        message: str = "Insufficient data for drift analysis",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code=constants.ERROR_CODE_INSUFFICIENT_DATA,
            details=details
        )


class CorruptDataError(DriftFixException):
    """Raised when input contains NaN or infinite values."""

    def __init__(
        self,
        message: str = "Input data contains NaN or infinite values",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code=constants.ERROR_CODE_CORRUPT_DATA,
            details=details
        )


class ValidationFailure(DriftFixException):
    """A patch candidate did not pass validation."""

    def __init__(
        self,
        message: str = "Patch candidate failed validation",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code=constants.ERROR_CODE_VALIDATION_FAILURE,
            details=details
        )


class RollbackError(DriftFixException):
    """Raised when there is no archived rule set to roll back to."""

    def __init__(
        self,
        message: str = "No previous rule set to roll back to",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code=constants.ERROR_CODE_ROLLBACK,
            details=details
        )


class InferenceUnavailableError(DriftFixException):
    """Raised when the model's predict callable times out or fails."""

    def __init__(
        self,
        message: str = constants.INFERENCE_UNAVAILABLE_REASON,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code=constants.ERROR_CODE_INFERENCE_UNAVAILABLE,
            details=details
        )


class PersistenceError(DriftFixException):
    """Raised when the rule set repository fails."""

    def __init__(
        self,
        message: str = "Rule set persistence failed",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code=constants.ERROR_CODE_PERSISTENCE,
            details=details
        )
