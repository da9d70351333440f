from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from glvem.preprocess.normalize import relativize
from glvem.utils.stats import mad

DETECTION_LIMIT = 1e-4


@dataclass(frozen=True)
class Preprocessed:
    abundance: np.ndarray
    mask: np.ndarray
    taxon_mad: np.ndarray


def apply_detection_limit(abundance: np.ndarray, detection_limit: float = DETECTION_LIMIT) -> np.ndarray:
    out = abundance.copy()
    out[out < detection_limit] = 0.0
    return out


def taxon_mad(abundance: np.ndarray) -> np.ndarray:
    return np.array([mad(row[row != 0]) for row in abundance])


def build_exclusion_mask(abundance: np.ndarray, scale: np.ndarray, deviation: float) -> np.ndarray:
    with np.errstate(divide="ignore", invalid="ignore"):
        ratio = abundance / scale[:, None]
    # NaN ratios (taxon never observed) compare False and stay included
    return ratio < deviation


def preprocess(
    counts: np.ndarray,
    deviation: float = 0.0,
    detection_limit: float = DETECTION_LIMIT,
) -> Preprocessed:
    """Relativize, apply the detection limit and build the initial exclusion mask."""
    # renormalize so thresholded columns still sum to one
    abundance = relativize(apply_detection_limit(relativize(counts), detection_limit))
    scale = taxon_mad(abundance)
    mask = build_exclusion_mask(abundance, scale, deviation)
    abundance.setflags(write=False)
    mask.setflags(write=False)
    return Preprocessed(abundance=abundance, mask=mask, taxon_mad=scale)
