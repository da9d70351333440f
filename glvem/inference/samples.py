from __future__ import annotations

import numpy as np

from glvem.utils.stats import iqr


def robust_zscore(errors: np.ndarray) -> np.ndarray:
    errors = np.asarray(errors, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        score = (errors - np.nanmedian(errors)) / iqr(errors)
    # undefined scores mark the sample as maximally anomalous
    score[np.isnan(score)] = np.inf
    return score


def detect_bad_samples(errors: np.ndarray, threshold: float) -> np.ndarray:
    return robust_zscore(errors) > threshold


def sample_errors(sq_residuals: np.ndarray) -> np.ndarray:
    """Median E-step residual of each sample over the taxa that used it."""
    out = np.full(sq_residuals.shape[1], np.nan)
    observed = ~np.all(np.isnan(sq_residuals), axis=0)
    out[observed] = np.nanmedian(sq_residuals[:, observed], axis=0)
    return out


def update_mask(
    mask: np.ndarray,
    initial_mask: np.ndarray,
    bad_samples: np.ndarray,
    iteration: int,
    refresh_iter: int,
) -> np.ndarray:
    """OR bad samples into every taxon's row, resetting to ``initial_mask`` on refresh iterations."""
    base = initial_mask if iteration % refresh_iter == 0 else mask
    return base | bad_samples[None, :]


def retained_columns(mask: np.ndarray) -> np.ndarray:
    return ~mask.any(axis=0)
