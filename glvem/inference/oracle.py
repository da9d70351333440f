from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

import numpy as np
from sklearn.linear_model import enet_path
from sklearn.model_selection import KFold

from glvem.config import OracleConfig
from glvem.utils.stats import robust_bounds


class OracleError(RuntimeError):
    """A regression sub-problem could not be solved."""


class InsufficientSamplesError(OracleError):
    def __init__(self, n_samples: int, n_required: int) -> None:
        self.n_samples = n_samples
        self.n_required = n_required
        super().__init__(f"Need at least {n_required} samples for the fit, got {n_samples}")


@dataclass
class OracleFit:
    coef: np.ndarray
    sq_residuals: np.ndarray
    penalty: float


@dataclass
class CVCurve:
    lambdas: np.ndarray
    cvm: np.ndarray
    cvsd: np.ndarray
    lambda_min: float
    lambda_1se: float


class RegressionOracle(Protocol):
    """Penalized regression of ``y`` on ``X`` without intercept.

    The first column of ``X`` is left unpenalized. Implementations return the
    coefficients, squared residuals for every row of ``X`` and the selected
    penalty, and raise :class:`OracleError` when the problem is degenerate.
    """

    def fit(self, y: np.ndarray, X: np.ndarray, penalty_init: Optional[float] = None) -> OracleFit:
        ...


class ElasticNetOracle:
    """Cross-validated elastic net on top of scikit-learn's coordinate descent."""

    def __init__(self, config: OracleConfig | None = None) -> None:
        self.config = config or OracleConfig()

    def _solve(self, y: np.ndarray, X: np.ndarray, lambdas: np.ndarray) -> np.ndarray:
        """Coefficient path, one row per penalty (lambdas in decreasing order)."""
        z = X[:, 0]
        zz = float(z @ z)
        if zz == 0.0:
            raise OracleError("Unpenalized regressor is identically zero")
        rest = X[:, 1:]
        # profile out the unpenalized regressor: the penalized part is fit on
        # the residual space orthogonal to z
        y_perp = y - z * (z @ y) / zz
        rest_perp = rest - np.outer(z, z @ rest / zz)
        if rest.shape[1]:
            scale = np.sqrt(np.mean(rest_perp**2, axis=0))
            scale[scale == 0] = 1.0
            _, path, _ = enet_path(
                rest_perp / scale,
                y_perp,
                l1_ratio=self.config.alpha,
                alphas=lambdas,
                tol=self.config.tol,
                max_iter=self.config.max_iter,
            )
            beta = path / scale[:, None]
        else:
            beta = np.zeros((0, lambdas.size))
        c0 = z @ (y[:, None] - rest @ beta) / zz
        return np.vstack([c0, beta]).T

    def cross_validate(self, y: np.ndarray, X: np.ndarray, lambdas: np.ndarray) -> CVCurve:
        lambdas = np.sort(np.asarray(lambdas, dtype=float))[::-1]
        n_folds = min(self.config.nfolds, y.size)
        folds = KFold(n_splits=n_folds, shuffle=True, random_state=self.config.seed)
        errors = np.empty((n_folds, lambdas.size))
        for k, (train, test) in enumerate(folds.split(X)):
            coefs = self._solve(y[train], X[train], lambdas)
            pred = X[test] @ coefs.T
            errors[k] = np.mean((y[test, None] - pred) ** 2, axis=0)
        cvm = errors.mean(axis=0)
        cvsd = errors.std(axis=0, ddof=1) / np.sqrt(n_folds)
        # ties resolve to the largest penalty
        lambda_min = float(np.max(lambdas[cvm <= np.min(cvm)]))
        idx_min = int(np.flatnonzero(lambdas == lambda_min)[0])
        lambda_1se = float(np.max(lambdas[cvm <= cvm[idx_min] + cvsd[idx_min]]))
        return CVCurve(lambdas=lambdas, cvm=cvm, cvsd=cvsd, lambda_min=lambda_min, lambda_1se=lambda_1se)

    def penalty_grid(self, y: np.ndarray, X: np.ndarray, penalty_init: Optional[float] = None) -> np.ndarray:
        cfg = self.config
        if penalty_init is not None and np.isfinite(penalty_init) and penalty_init > 0:
            return np.exp(np.linspace(np.log(penalty_init), np.log(penalty_init / cfg.warm_span), cfg.warm_points))
        coarse = 10.0 ** np.linspace(cfg.coarse_log10_max, cfg.coarse_log10_min, cfg.coarse_points)
        center = self.cross_validate(y, X, coarse).lambda_min
        return np.exp(
            np.linspace(np.log(center * cfg.fine_span), np.log(center / cfg.fine_span), cfg.fine_points)
        )

    def select(self, curve: CVCurve) -> float:
        choice = self.config.lambda_choice
        if choice == 1:
            return curve.lambda_1se
        if choice == 2:
            return curve.lambda_min
        if 0 < choice < 1:
            return (1 - choice) * curve.lambda_min + choice * curve.lambda_1se
        raise ValueError(f"lambda_choice must be 1, 2 or in (0, 1), got {choice}")

    def fit(self, y: np.ndarray, X: np.ndarray, penalty_init: Optional[float] = None) -> OracleFit:
        y = np.asarray(y, dtype=float)
        X = np.asarray(X, dtype=float)
        n_samples, n_regressors = X.shape
        if n_samples < n_regressors + 2:
            raise InsufficientSamplesError(n_samples, n_regressors + 2)
        low, high = robust_bounds(y, self.config.outlier_iqr)
        keep = (y >= low) & (y <= high)
        if keep.sum() < 3:
            raise InsufficientSamplesError(int(keep.sum()), 3)
        y_fit, X_fit = y[keep], X[keep]
        lambdas = self.penalty_grid(y_fit, X_fit, penalty_init)
        penalty = self.select(self.cross_validate(y_fit, X_fit, lambdas))
        coef = self._solve(y_fit, X_fit, np.array([penalty]))[0]
        sq_residuals = (y - X @ coef) ** 2
        return OracleFit(coef=coef, sq_residuals=sq_residuals, penalty=float(penalty))
