"""
Shared helpers for matrix handling, numerics and timed calls.
"""
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Tuple

import numpy as np
import pandas as pd

from .exceptions import CorruptDataError, IncompatibleSchemaError, InferenceUnavailableError


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Divide, returning ``default`` when the denominator is zero."""
    if denominator == 0:
        return default
    return numerator / denominator


def as_feature_matrix(data: Any, name: str = "data") -> Tuple[np.ndarray, Optional[List[str]]]:
    """
    Convert input into a 2-D float matrix.

    Args:
        data: numpy array, pandas DataFrame or nested sequence
        name: Label used in error details

    Returns:
        Tuple of (matrix, feature names or None)

    Raises:
        IncompatibleSchemaError: If the input is not a non-empty 2-D numeric matrix
    """
    feature_names = None
    try:
        if isinstance(data, pd.DataFrame):
            feature_names = [str(column) for column in data.columns]
            matrix = data.to_numpy(dtype=np.float64)
        else:
            matrix = np.asarray(data, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise IncompatibleSchemaError(
            f"{name} is not a numeric feature matrix",
            details={"matrix": name, "error": str(e)}
        ) from e

    if matrix.ndim != 2:
        raise IncompatibleSchemaError(
            f"{name} must be 2-dimensional, got {matrix.ndim} dimension(s)",
            details={"matrix": name, "shape": list(matrix.shape)}
        )
    if matrix.shape[0] == 0 or matrix.shape[1] == 0:
        raise IncompatibleSchemaError(
            f"{name} is empty",
            details={"matrix": name, "shape": list(matrix.shape)}
        )
    return matrix, feature_names


def check_finite(matrix: np.ndarray, name: str = "data") -> None:
    """Raise CorruptDataError if the matrix holds NaN or infinite values."""
    finite = np.isfinite(matrix)
    if finite.all():
        return
    nan_count = int(np.isnan(matrix).sum())
    inf_count = int(np.isinf(matrix).sum())
    bad_columns = np.where(~finite.all(axis=0))[0]
    raise CorruptDataError(
        f"{name} contains {nan_count} NaN and {inf_count} infinite value(s)",
        details={
            "matrix": name,
            "nan_count": nan_count,
            "inf_count": inf_count,
            "feature_indices": [int(i) for i in bad_columns],
        }
    )


def wilson_interval(successes: int, total: int, z: float = 1.96) -> Tuple[float, float]:
    """
    Wilson score interval for a binomial proportion.

    Args:
        successes: Number of successes
        total: Number of trials
        z: Normal quantile for the confidence level

    Returns:
        (lower, upper) bounds in [0, 1]
    """
    if total <= 0:
        return 0.0, 1.0
    p = successes / total
    denominator = 1 + z ** 2 / total
    center = (p + z ** 2 / (2 * total)) / denominator
    margin = z * np.sqrt(p * (1 - p) / total + z ** 2 / (4 * total ** 2)) / denominator
    return max(0.0, float(center - margin)), min(1.0, float(center + margin))


def call_with_timeout(func: Callable[..., Any], *args: Any, timeout: float) -> Any:
    """
    Run ``func`` on a worker thread and wait at most ``timeout`` seconds.

    Raises:
        InferenceUnavailableError: On timeout or when ``func`` raises
    """
    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(func, *args)
    try:
        return future.result(timeout=timeout)
    except FuturesTimeoutError as e:
        future.cancel()
        raise InferenceUnavailableError(details={"reason": "timeout", "timeout_seconds": timeout}) from e
    except Exception as e:
        raise InferenceUnavailableError(details={"reason": "error", "error": str(e)}) from e
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def predict_outputs(predict: Callable[[np.ndarray], Any], matrix: np.ndarray, timeout: float) -> np.ndarray:
    """
    Call a model on a copy of ``matrix`` and return its outputs as floats.

    Outputs must be a finite numeric vector or matrix with one row per input row.

    Raises:
        InferenceUnavailableError: On timeout, error or malformed outputs
    """
    raw = call_with_timeout(predict, matrix.copy(), timeout=timeout)
    try:
        outputs = np.asarray(raw, dtype=float)
    except (TypeError, ValueError) as e:
        raise InferenceUnavailableError(
            details={"reason": "invalid outputs", "type": type(raw).__name__, "error": str(e)}
        ) from e
    if outputs.ndim not in (1, 2) or outputs.shape[0] != matrix.shape[0] or not np.all(np.isfinite(outputs)):
        raise InferenceUnavailableError(
            details={"reason": "invalid outputs", "shape": list(outputs.shape)}
        )
    return outputs
