from __future__ import annotations

from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from glvem.inference.oracle import OracleError, RegressionOracle
from glvem.utils.stats import binary_entropy


class TaxonFitError(OracleError):
    """The regression for one taxon failed; ``cause`` holds the oracle error."""

    def __init__(self, taxon: int, cause: Exception) -> None:
        self.taxon = taxon
        self.cause = cause
        super().__init__(f"Fit failed for taxon {taxon}: {cause}")


@dataclass
class TaxonFit:
    taxon: int
    coef: np.ndarray
    sq_residuals: np.ndarray
    penalty: float
    entropy: np.ndarray


@dataclass
class EStepResult:
    growth: np.ndarray
    interactions: np.ndarray
    sq_residuals: np.ndarray
    penalties: np.ndarray
    uncertainty: np.ndarray


def retained_samples(abundance: np.ndarray, mask: np.ndarray, taxon: int) -> np.ndarray:
    return (abundance[taxon] != 0) & ~mask[taxon]


def build_regression(
    abundance: np.ndarray,
    biomass: np.ndarray,
    mask: np.ndarray,
    taxon: int,
    center: bool = False,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Response and design for one taxon: y = x_i, X = [1/m, x_j for j != i]."""
    retained = retained_samples(abundance, mask, taxon)
    others = np.delete(abundance, taxon, axis=0)
    X = np.vstack([1.0 / biomass, others])[:, retained].T
    y = abundance[taxon, retained]
    if center:
        y = y - y.mean()
        X = X - X.mean(axis=0)
    return y, X, retained


def fit_taxon(
    abundance: np.ndarray,
    biomass: np.ndarray,
    mask: np.ndarray,
    taxon: int,
    oracle: RegressionOracle,
    penalty_init: Optional[float] = None,
    center: bool = False,
) -> TaxonFit:
    y, X, retained = build_regression(abundance, biomass, mask, taxon, center)
    try:
        fit = oracle.fit(y, X, penalty_init)
    except (OracleError, ValueError, np.linalg.LinAlgError) as exc:
        raise TaxonFitError(taxon, exc) from exc
    # the self-interaction is the -1 anchor, not a free coefficient
    coef = np.insert(np.asarray(fit.coef, dtype=float), taxon + 1, -1.0)
    sq_residuals = np.full(abundance.shape[1], np.nan)
    sq_residuals[retained] = fit.sq_residuals
    entropy = np.array([binary_entropy(row[retained]) for row in abundance])
    return TaxonFit(taxon=taxon, coef=coef, sq_residuals=sq_residuals, penalty=fit.penalty, entropy=entropy)


def snap_interactions(interactions: np.ndarray, threshold: float) -> np.ndarray:
    out = interactions.copy()
    out[np.abs(out) < threshold] = 0.0
    return out


def e_step(
    abundance: np.ndarray,
    biomass: np.ndarray,
    mask: np.ndarray,
    oracle: RegressionOracle,
    penalty_inits: Optional[Sequence[float]] = None,
    center: bool = False,
    snap_threshold: float = 1e-5,
    executor: Optional[Executor] = None,
) -> EStepResult:
    """Estimate scaled growth rates and interactions given the biomass."""
    n_taxa = abundance.shape[0]
    inits = list(penalty_inits) if penalty_inits is not None else [None] * n_taxa

    def _run(taxon: int) -> TaxonFit:
        return fit_taxon(abundance, biomass, mask, taxon, oracle, inits[taxon], center)

    mapper = executor.map if executor is not None else map
    fits = list(mapper(_run, range(n_taxa)))

    theta = np.vstack([fit.coef for fit in fits])
    return EStepResult(
        growth=theta[:, 0],
        interactions=snap_interactions(theta[:, 1:], snap_threshold),
        sq_residuals=np.vstack([fit.sq_residuals for fit in fits]),
        penalties=np.array([fit.penalty for fit in fits]),
        uncertainty=np.vstack([fit.entropy for fit in fits]),
    )
