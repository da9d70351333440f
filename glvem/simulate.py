from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import pandas as pd


@dataclass
class SimulatedCommunity:
    counts: np.ndarray
    absolute: np.ndarray
    biomass: np.ndarray

    def to_frame(self) -> pd.DataFrame:
        n_taxa, n_samples = self.counts.shape
        return pd.DataFrame(
            self.counts,
            index=[f"taxon_{i}" for i in range(n_taxa)],
            columns=[f"sample_{s}" for s in range(n_samples)],
        )


def random_parameters(
    n_taxa: int,
    strength: float = 0.1,
    density: float = 0.5,
    seed: int = 0,
) -> Tuple[np.ndarray, np.ndarray]:
    """Growth rates in [0.5, 1.5] and a sparse interaction matrix with -1 self-interaction."""
    rng = np.random.default_rng(seed)
    growth = rng.uniform(0.5, 1.5, n_taxa)
    interactions = rng.uniform(-strength, strength, (n_taxa, n_taxa))
    interactions[rng.random((n_taxa, n_taxa)) >= density] = 0.0
    np.fill_diagonal(interactions, -1.0)
    return growth, interactions


def simulate_equilibria(
    growth: np.ndarray,
    interactions: np.ndarray,
    n_samples: int,
    presence: float = 0.7,
    noise: float = 0.0,
    depth: Optional[int] = None,
    seed: int = 0,
    max_attempts: int = 100000,
) -> SimulatedCommunity:
    """Steady-state communities of random taxon subsets.

    Each sample keeps a random subset of taxa and solves
    ``B_SS x_S = -a_S`` for their absolute abundances; subsets without a
    strictly positive solution are redrawn. ``noise`` is the sigma of
    multiplicative log-normal noise, ``depth`` an optional multinomial
    sequencing depth (relative abundances are returned otherwise).
    """
    rng = np.random.default_rng(seed)
    growth = np.asarray(growth, dtype=float)
    interactions = np.asarray(interactions, dtype=float)
    n_taxa = growth.size
    absolute = np.zeros((n_taxa, n_samples))
    sample = 0
    attempts = 0
    while sample < n_samples:
        attempts += 1
        if attempts > max_attempts:
            raise RuntimeError(f"Only {sample} feasible equilibria in {max_attempts} draws")
        present = np.flatnonzero(rng.random(n_taxa) < presence)
        if present.size == 0:
            continue
        try:
            x = np.linalg.solve(interactions[np.ix_(present, present)], -growth[present])
        except np.linalg.LinAlgError:
            continue
        if np.any(x <= 0):
            continue
        absolute[present, sample] = x
        sample += 1

    biomass = absolute.sum(axis=0)
    observed = absolute * rng.lognormal(0.0, noise, absolute.shape) if noise > 0 else absolute
    relative = observed / observed.sum(axis=0)
    if depth is None:
        counts = relative
    else:
        counts = np.column_stack(
            [rng.multinomial(depth, relative[:, s] / relative[:, s].sum()) for s in range(n_samples)]
        ).astype(float)
    return SimulatedCommunity(counts=counts, absolute=absolute, biomass=biomass)
