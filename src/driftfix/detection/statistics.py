"""
Statistical primitives for per-feature drift: PSI and two-sample KS.
"""
from __future__ import annotations

from typing import Literal, Tuple

import numpy as np
from scipy.special import kolmogorov
from scipy.stats import ks_2samp

from ..config import constants

Strategy = Literal["quantile", "uniform"]


def reference_bin_edges(reference: np.ndarray, bins: int, strategy: Strategy = "quantile") -> np.ndarray:
    """
    Interior bin edges derived from the reference sample only.

    The outer bins are open-ended, so values outside the reference range
    fall into the first or last bin.
    """
    x = np.asarray(reference, dtype=float)
    if strategy == "quantile":
        edges = np.unique(np.quantile(x, np.linspace(0, 1, bins + 1)))
    elif strategy == "uniform":
        edges = np.linspace(x.min(), x.max(), bins + 1)
    else:
        raise ValueError("strategy must be 'quantile' or 'uniform'")

    inner = np.unique(edges[1:-1])
    if inner.size == 0:
        # Constant (or near constant) reference: isolate its value in a bin of its own
        value = float(edges[0])
        inner = np.array([value, np.nextafter(value, np.inf)])
    return inner


def bin_proportions(values: np.ndarray, inner_edges: np.ndarray, epsilon: float = constants.PSI_EPSILON) -> np.ndarray:
    """Bin occupancy proportions with empty bins floored at ``epsilon``."""
    idx = np.searchsorted(inner_edges, values, side="right")
    counts = np.bincount(idx, minlength=inner_edges.size + 1).astype(float)
    proportions = counts / float(values.size)
    return np.maximum(proportions, epsilon)


def psi(
    reference: np.ndarray,
    current: np.ndarray,
    bins: int = constants.DEFAULT_N_BINS,
    strategy: Strategy = "quantile",
    epsilon: float = constants.PSI_EPSILON,
) -> float:
    """
    Population Stability Index between reference and current samples.

    PSI = sum over bins of (c_b - r_b) * ln(c_b / r_b)

    Rule of thumb:
      < 0.1 : no significant change
      0.1 - 0.2 : moderate change
      > 0.2 : significant change
    """
    x = np.asarray(reference, dtype=float)
    y = np.asarray(current, dtype=float)
    inner = reference_bin_edges(x, bins, strategy)
    r = bin_proportions(x, inner, epsilon)
    c = bin_proportions(y, inner, epsilon)
    return float(max(0.0, np.sum((c - r) * np.log(c / r))))


def ks_statistic(reference: np.ndarray, current: np.ndarray) -> float:
    """Two-sample KS statistic D = max |F_ref(x) - F_cur(x)|."""
    return float(ks_2samp(reference, current, method="asymp").statistic)


def ks_p_value(d: float, n1: int, n2: int) -> float:
    """
    Asymptotic two-sided p-value for the KS statistic.

    Kolmogorov survival function at lambda = (sqrt(ne) + 0.12 + 0.11/sqrt(ne)) * D
    on the effective sample size ne = n1*n2/(n1+n2).
    """
    if d <= 0:
        return 1.0
    root = np.sqrt(n1 * n2 / float(n1 + n2))
    lam = (root + 0.12 + 0.11 / root) * d
    return float(np.clip(kolmogorov(lam), 0.0, 1.0))


def ks_test(reference: np.ndarray, current: np.ndarray) -> Tuple[float, float]:
    """Return (D, p_value) for two samples."""
    d = ks_statistic(reference, current)
    return d, ks_p_value(d, len(reference), len(current))


def shift_scores(reference: np.ndarray, current: np.ndarray, epsilon: float = constants.PSI_EPSILON) -> Tuple[float, float]:
    """
    Location and scale shift relative to the reference spread.

    Returns:
        (|mu_cur - mu_ref| / (sigma_ref + eps), |sigma_cur - sigma_ref| / (sigma_ref + eps))
    """
    ref_std = float(np.std(reference))
    mean_shift = abs(float(np.mean(current)) - float(np.mean(reference))) / (ref_std + epsilon)
    std_shift = abs(float(np.std(current)) - ref_std) / (ref_std + epsilon)
    return mean_shift, std_shift
