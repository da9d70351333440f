"""
Alternating estimation of gLV parameters and sample biomass.

Each iteration fits the scaled growth rates and interactions given the
current biomass (E-step), then re-estimates biomass from the fitted
equilibrium (M-step). Once the biomass trace stabilizes, samples whose
residuals are inconsistent with a shared equilibrium are removed, with the
removal list periodically reset so early misfits are not permanent.
"""
from __future__ import annotations

import logging
import warnings
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.exceptions import ConvergenceWarning

from glvem.config import FitConfig
from glvem.inference.estep import EStepResult, e_step
from glvem.inference.mstep import m_step
from glvem.inference.oracle import ElasticNetOracle, RegressionOracle
from glvem.inference.samples import detect_bad_samples, retained_columns, sample_errors, update_mask
from glvem.preprocess.filters import preprocess
from glvem.preprocess.normalize import css_factor
from glvem.utils.stats import relative_change

logger = logging.getLogger(__name__)


class EMState(str, Enum):
    WARMUP = "warmup"
    FILTERING = "filtering"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"


@dataclass
class Trace:
    """Per-iteration history. ``biomass[0]`` is the seed, so it is one longer than the rest."""

    biomass: List[np.ndarray] = field(default_factory=list)
    growth: List[np.ndarray] = field(default_factory=list)
    interactions: List[np.ndarray] = field(default_factory=list)
    penalties: List[np.ndarray] = field(default_factory=list)

    @property
    def n_iter(self) -> int:
        return len(self.growth)

    def append(self, biomass: np.ndarray, estimate: EStepResult) -> None:
        self.biomass.append(biomass)
        self.growth.append(estimate.growth)
        self.interactions.append(estimate.interactions)
        self.penalties.append(estimate.penalties)

    def biomass_frame(self, samples: Sequence[str]) -> pd.DataFrame:
        return pd.DataFrame(np.column_stack(self.biomass), index=list(samples))

    def growth_frame(self, taxa: Sequence[str]) -> pd.DataFrame:
        return pd.DataFrame(np.column_stack(self.growth), index=list(taxa), columns=range(1, self.n_iter + 1))

    def penalty_frame(self, taxa: Sequence[str]) -> pd.DataFrame:
        return pd.DataFrame(np.column_stack(self.penalties), index=list(taxa), columns=range(1, self.n_iter + 1))


@dataclass
class EMResult:
    trace: Trace
    taxa: List[str]
    samples: List[str]
    err_e: np.ndarray
    err_m: np.ndarray
    uncertainty: np.ndarray
    mask: np.ndarray
    excluded_samples: np.ndarray
    state: EMState
    converged: bool

    @property
    def n_iter(self) -> int:
        return self.trace.n_iter


def result_to_params(result: EMResult) -> Tuple[np.ndarray, np.ndarray]:
    """Final scaled growth rates and interaction matrix."""
    return result.trace.growth[-1], result.trace.interactions[-1]


def result_to_biomass(result: EMResult) -> np.ndarray:
    return result.trace.biomass[-1]


def rescale_biomass(biomass: np.ndarray, mask: np.ndarray, scaling: float) -> np.ndarray:
    """Scale biomass so its median over retained samples equals ``scaling``."""
    retained = retained_columns(mask)
    reference = biomass[retained] if retained.any() else biomass
    return biomass * scaling / np.nanmedian(reference)


def _labels(counts, taxa: Optional[Sequence[str]], samples: Optional[Sequence[str]]) -> Tuple[List[str], List[str]]:
    if isinstance(counts, pd.DataFrame):
        taxa = taxa if taxa is not None else counts.index.astype(str)
        samples = samples if samples is not None else counts.columns.astype(str)
    n_taxa, n_samples = np.shape(counts)
    taxa = list(taxa) if taxa is not None else [f"taxon_{i}" for i in range(n_taxa)]
    samples = list(samples) if samples is not None else [f"sample_{s}" for s in range(n_samples)]
    return taxa, samples


class EMFitter:
    """Runs the E/M iterations; the worker pool lives only for one :meth:`fit` call.

    ``trace`` is updated after each completed iteration and stays readable if
    a later iteration raises.
    """

    def __init__(self, config: FitConfig | None = None, oracle: RegressionOracle | None = None) -> None:
        self.config = config or FitConfig()
        self.oracle = oracle or ElasticNetOracle(self.config.oracle)
        self.trace = Trace()
        self.state = EMState.WARMUP

    def fit(
        self,
        counts,
        taxa: Optional[Sequence[str]] = None,
        samples: Optional[Sequence[str]] = None,
        initial_biomass: Optional[np.ndarray] = None,
    ) -> EMResult:
        taxa, samples = _labels(counts, taxa, samples)
        pre = preprocess(
            np.asarray(counts, dtype=float),
            deviation=self.config.preprocess.deviation,
            detection_limit=self.config.preprocess.detection_limit,
        )
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", category=ConvergenceWarning)
            with ThreadPoolExecutor(max_workers=self.config.em.jobs) as executor:
                return self._run(pre.abundance, pre.mask, taxa, samples, initial_biomass, executor)

    def _run(
        self,
        abundance: np.ndarray,
        initial_mask: np.ndarray,
        taxa: List[str],
        samples: List[str],
        initial_biomass: Optional[np.ndarray],
        executor: ThreadPoolExecutor,
    ) -> EMResult:
        cfg = self.config.em
        filtering_enabled = np.isfinite(cfg.deviation)
        mask = initial_mask.copy()
        if initial_biomass is None:
            seed = css_factor(abundance, cfg.css_quantile)
        else:
            seed = np.asarray(initial_biomass, dtype=float)
            if seed.shape != (abundance.shape[1],) or np.any(seed <= 0):
                raise ValueError("initial_biomass must be one positive value per sample")
        biomass = rescale_biomass(seed, mask, cfg.scaling)

        self.trace = Trace(biomass=[biomass])
        self.state = EMState.WARMUP
        filter_iters = 0
        penalties: Optional[np.ndarray] = None
        estimate: Optional[EStepResult] = None
        err_m = np.zeros((abundance.shape[1], abundance.shape[0]))

        for iteration in range(1, cfg.max_iter + 1):
            logger.info("Iteration %d (%s)", iteration, self.state.value)
            penalty_inits = penalties if iteration >= cfg.warm_start_iter else None

            logger.info("E-step: estimating scaled parameters...")
            estimate = e_step(
                abundance,
                biomass,
                mask,
                self.oracle,
                penalty_inits=penalty_inits,
                center=cfg.center,
                snap_threshold=cfg.snap_threshold,
                executor=executor,
            )
            logger.info("M-step: estimating biomass...")
            new_biomass, err_m = m_step(abundance, estimate.growth, estimate.interactions, executor=executor)

            if self.state is EMState.FILTERING:
                bad = detect_bad_samples(sample_errors(estimate.sq_residuals), cfg.deviation)
                mask = update_mask(mask, initial_mask, bad, iteration, cfg.refresh_iter)
                filter_iters += 1
                logger.info(
                    "Number of samples removed (detected to be non-static): %d",
                    int((~retained_columns(mask)).sum()),
                )

            new_biomass = rescale_biomass(new_biomass, mask, cfg.scaling)
            self.trace.append(new_biomass, estimate)
            penalties = estimate.penalties
            stable = relative_change(new_biomass, biomass) < cfg.tolerance
            biomass = new_biomass

            if self.state is EMState.WARMUP and filtering_enabled:
                if cfg.warm_iter is not None:
                    start = iteration > cfg.warm_iter
                else:
                    start = iteration > cfg.min_iter and stable
                if start:
                    logger.info("Start to detect and remove bad samples...")
                    self.state = EMState.FILTERING
            if stable and (not filtering_enabled or (
                self.state is EMState.FILTERING and filter_iters > cfg.min_filter_iter
            )):
                logger.info("Converged after %d iterations", iteration)
                self.state = EMState.CONVERGED
                break
        else:
            self.state = EMState.EXHAUSTED
            logger.warning("Reached max_iter=%d without convergence; estimates may be unconverged", cfg.max_iter)

        return EMResult(
            trace=self.trace,
            taxa=taxa,
            samples=samples,
            err_e=estimate.sq_residuals,
            err_m=err_m,
            uncertainty=estimate.uncertainty,
            mask=mask,
            excluded_samples=np.flatnonzero(~retained_columns(mask)),
            state=self.state,
            converged=self.state is EMState.CONVERGED,
        )


def fit_em(
    counts,
    config: FitConfig | None = None,
    oracle: RegressionOracle | None = None,
    taxa: Optional[Sequence[str]] = None,
    samples: Optional[Sequence[str]] = None,
    initial_biomass: Optional[np.ndarray] = None,
) -> EMResult:
    return EMFitter(config, oracle).fit(counts, taxa=taxa, samples=samples, initial_biomass=initial_biomass)
