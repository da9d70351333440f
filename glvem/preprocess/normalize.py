from __future__ import annotations

import numpy as np


class ZeroAbundanceError(ValueError):
    """Raised when a sample carries no reads, so no biomass can be estimated."""

    def __init__(self, samples: np.ndarray) -> None:
        self.samples = np.asarray(samples, dtype=int)
        listed = ", ".join(str(s) for s in self.samples)
        super().__init__(f"Sample(s) {listed} have zero total abundance")


def relativize(counts: np.ndarray) -> np.ndarray:
    """Total sum scaling: divide each sample (column) by its total."""
    counts = np.asarray(counts, dtype=float)
    if counts.ndim != 2:
        raise ValueError(f"Expected a taxa x samples matrix, got shape {counts.shape}")
    if not np.all(np.isfinite(counts)) or np.any(counts < 0):
        raise ValueError("Counts must be finite and non-negative")
    totals = counts.sum(axis=0)
    empty = np.flatnonzero(totals == 0)
    if empty.size:
        raise ZeroAbundanceError(empty)
    return counts / totals


def css_factor(matrix: np.ndarray, quantile: float = 0.5) -> np.ndarray:
    """Cumulative sum scaling factors, one per sample (column).

    The factor sums the entries at or below the ``quantile`` of each sample's
    non-zero entries and is normalized to unit geometric mean.
    """
    matrix = np.asarray(matrix, dtype=float)
    factors = np.zeros(matrix.shape[1])
    for s in range(matrix.shape[1]):
        nonzero = matrix[matrix[:, s] != 0, s]
        if nonzero.size == 0:
            raise ZeroAbundanceError(np.array([s]))
        cutoff = np.quantile(nonzero, quantile)
        factors[s] = nonzero[nonzero <= cutoff].sum()
    return factors / np.exp(np.mean(np.log(factors)))
