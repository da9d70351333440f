import numpy as np
import pytest

from glvem.config import OracleConfig
from glvem.inference.oracle import CVCurve, ElasticNetOracle, InsufficientSamplesError, OracleError


def _linear_problem(n=40, noise=0.0, seed=0):
    rng = np.random.default_rng(seed)
    z = rng.uniform(0.5, 2.0, n)
    others = rng.uniform(0.0, 1.0, (n, 3))
    X = np.column_stack([z, others])
    coef = np.array([2.0, 0.5, -0.3, 0.0])
    y = X @ coef + rng.normal(scale=noise, size=n) if noise else X @ coef
    return y, X, coef


def test_noise_free_recovery_at_cv_minimum():
    y, X, coef = _linear_problem()
    oracle = ElasticNetOracle(OracleConfig(lambda_choice=2))
    fit = oracle.fit(y, X)
    assert np.allclose(fit.coef, coef, atol=1e-2)
    assert fit.sq_residuals.shape == y.shape
    assert fit.penalty > 0


def test_first_regressor_is_unpenalized():
    y, X, _ = _linear_problem()
    coefs = ElasticNetOracle()._solve(y, X, np.array([10.0]))
    z = X[:, 0]
    assert np.allclose(coefs[0, 1:], 0.0)
    assert np.isclose(coefs[0, 0], z @ y / (z @ z))


def test_one_se_penalty_not_below_minimum():
    y, X, _ = _linear_problem(noise=0.2, seed=4)
    oracle = ElasticNetOracle()
    curve = oracle.cross_validate(y, X, 10.0 ** np.linspace(-1, -6, 30))
    assert curve.lambda_1se >= curve.lambda_min
    assert np.all(np.diff(curve.lambdas) < 0)


def test_selection_rules():
    curve = CVCurve(
        lambdas=np.array([1.0, 0.1]),
        cvm=np.array([1.0, 0.5]),
        cvsd=np.array([0.1, 0.1]),
        lambda_min=0.1,
        lambda_1se=1.0,
    )
    assert ElasticNetOracle(OracleConfig(lambda_choice=1)).select(curve) == 1.0
    assert ElasticNetOracle(OracleConfig(lambda_choice=2)).select(curve) == 0.1
    blended = ElasticNetOracle(OracleConfig(lambda_choice=0.25)).select(curve)
    assert np.isclose(blended, 0.75 * 0.1 + 0.25 * 1.0)
    with pytest.raises(ValueError):
        ElasticNetOracle(OracleConfig(lambda_choice=1.5)).select(curve)


def test_warm_started_grid_is_narrow():
    y, X, _ = _linear_problem()
    grid = ElasticNetOracle().penalty_grid(y, X, penalty_init=0.01)
    assert grid.size == 50
    assert np.isclose(grid[0], 0.01)
    assert np.isclose(grid[-1], 0.002)


def test_too_few_samples_raise_distinguishable_error():
    y, X, _ = _linear_problem(n=5)
    with pytest.raises(InsufficientSamplesError) as excinfo:
        ElasticNetOracle().fit(y, X)
    assert isinstance(excinfo.value, OracleError)
    assert excinfo.value.n_required == X.shape[1] + 2


def test_outliers_in_response_do_not_drive_the_fit():
    y, X, coef = _linear_problem(n=60)
    y = y.copy()
    y[0] = 1e3
    fit = ElasticNetOracle(OracleConfig(lambda_choice=2)).fit(y, X)
    assert np.allclose(fit.coef, coef, atol=1e-2)
    assert fit.sq_residuals[0] > 1e5
