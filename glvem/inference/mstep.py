from __future__ import annotations

from concurrent.futures import Executor
from typing import Optional, Tuple

import numpy as np


def biomass_candidates(growth: np.ndarray, interactions: np.ndarray, x: np.ndarray) -> np.ndarray:
    """Per-taxon biomass implied by the equilibrium a_i + m (B x)_i = 0."""
    with np.errstate(divide="ignore", invalid="ignore"):
        ratios = -growth / (interactions @ x)
    ratios = ratios[x != 0]
    return ratios[np.isfinite(ratios)]


def estimate_biomass(growth: np.ndarray, interactions: np.ndarray, x: np.ndarray) -> Tuple[float, np.ndarray]:
    """Biomass of one sample and the relative residual of every taxon.

    When every candidate is negative the model disagrees in sign for all taxa
    and the least negative candidate is used in absolute value. Otherwise the
    median of the positive candidates is taken.
    """
    candidates = biomass_candidates(growth, interactions, x)
    if candidates.size == 0:
        biomass = np.nan
    elif np.all(candidates < 0):
        biomass = float(abs(np.max(candidates)))
    else:
        biomass = float(np.median(candidates[candidates > 0]))
    with np.errstate(divide="ignore", invalid="ignore"):
        residuals = (biomass * (interactions @ x) + growth) / growth
    residuals[x == 0] = 0.0
    return biomass, residuals


def m_step(
    abundance: np.ndarray,
    growth: np.ndarray,
    interactions: np.ndarray,
    executor: Optional[Executor] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """Estimate biomass for every sample given fixed parameters.

    Returns the biomass vector and the relative residuals (samples x taxa).
    """

    def _run(sample: int) -> Tuple[float, np.ndarray]:
        return estimate_biomass(growth, interactions, abundance[:, sample])

    mapper = executor.map if executor is not None else map
    rows = list(mapper(_run, range(abundance.shape[1])))
    biomass = np.array([row[0] for row in rows])
    residuals = np.vstack([row[1] for row in rows])
    return biomass, residuals
