from __future__ import annotations

import numpy as np
from scipy import stats


def iqr(values: np.ndarray) -> float:
    return float(stats.iqr(np.asarray(values, dtype=float), nan_policy="omit"))


def mad(values: np.ndarray) -> float:
    values = np.asarray(values, dtype=float)
    if values.size == 0:
        return np.nan
    return float(stats.median_abs_deviation(values, scale="normal"))


def robust_bounds(values: np.ndarray, k: float) -> tuple[float, float]:
    center = float(np.median(values))
    spread = k * iqr(values)
    return center - spread, center + spread


def binary_entropy(values: np.ndarray) -> float:
    """Entropy in bits of the zero/non-zero pattern of ``values``."""
    values = np.asarray(values)
    if values.size == 0:
        return 0.0
    p = np.count_nonzero(values == 0) / values.size
    if p == 0.0 or p == 1.0:
        return 0.0
    return float(-(p * np.log2(p) + (1 - p) * np.log2(1 - p)))


def relative_change(current: np.ndarray, previous: np.ndarray) -> float:
    with np.errstate(divide="ignore", invalid="ignore"):
        change = np.abs((current - previous) / previous)
    change = change[np.isfinite(change)]
    if change.size == 0:
        return np.inf
    return float(np.median(change))
