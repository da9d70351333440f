from concurrent.futures import ThreadPoolExecutor

import numpy as np

from glvem.inference.mstep import biomass_candidates, estimate_biomass, m_step
from glvem.preprocess.filters import preprocess


def test_recovers_true_biomass(community, growth, interactions):
    abundance = preprocess(community.counts).abundance
    with ThreadPoolExecutor(max_workers=3) as executor:
        biomass, residuals = m_step(abundance, growth, interactions, executor=executor)
    assert np.allclose(biomass, community.biomass, rtol=1e-8)
    assert residuals.shape == (30, 5)
    assert np.allclose(residuals, 0.0, atol=1e-8)


def test_all_negative_candidates_use_least_negative():
    growth = np.array([1.0, 2.0])
    interactions = np.eye(2)
    x = np.array([0.5, 0.5])
    assert np.allclose(biomass_candidates(growth, interactions, x), [-2.0, -4.0])
    biomass, _ = estimate_biomass(growth, interactions, x)
    assert biomass == 2.0


def test_median_of_positive_candidates():
    growth = np.ones(3)
    interactions = np.diag([-1.0, -1.0, 1.0])
    x = np.array([0.2, 0.3, 0.5])
    biomass, residuals = estimate_biomass(growth, interactions, x)
    assert np.isclose(biomass, np.median([5.0, 1.0 / 0.3]))
    expected = (biomass * (interactions @ x) + growth) / growth
    assert np.allclose(residuals, expected)


def test_absent_taxa_get_zero_residual():
    growth = np.array([1.0, 1.0, 1.0])
    interactions = -np.eye(3) + 0.1
    x = np.array([0.6, 0.4, 0.0])
    biomass, residuals = estimate_biomass(growth, interactions, x)
    assert biomass > 0
    assert residuals[2] == 0.0
    assert np.all(np.isfinite(residuals))


def test_serial_and_pooled_agree(community, growth, interactions):
    abundance = preprocess(community.counts).abundance
    serial = m_step(abundance, growth * 2, interactions)
    with ThreadPoolExecutor(max_workers=4) as executor:
        pooled = m_step(abundance, growth * 2, interactions, executor=executor)
    assert np.array_equal(serial[0], pooled[0])
    assert np.array_equal(serial[1], pooled[1])
