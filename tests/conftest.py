import threading

import numpy as np
import pytest

from glvem.inference.oracle import InsufficientSamplesError, OracleFit
from glvem.simulate import simulate_equilibria

GROWTH = np.array([1.0, 0.8, 1.2, 0.9, 1.1])
INTERACTIONS = np.array(
    [
        [-1.0, 0.1, 0.0, -0.1, 0.0],
        [0.0, -1.0, -0.1, 0.0, 0.1],
        [0.1, 0.0, -1.0, 0.0, -0.1],
        [0.0, -0.1, 0.1, -1.0, 0.0],
        [-0.1, 0.0, 0.0, 0.1, -1.0],
    ]
)


class LstsqOracle:
    """Unpenalized least squares honouring the oracle contract.

    Reported residuals are spread evenly over [1, 2] so robust z-scores stay
    well defined on noise-free data. With ``fail_after`` set, every call past
    that many raises ``InsufficientSamplesError``.
    """

    def __init__(self, fail_after=None):
        self.calls = []
        self.fail_after = fail_after
        self._lock = threading.Lock()

    def fit(self, y, X, penalty_init=None):
        with self._lock:
            failing = self.fail_after is not None and len(self.calls) >= self.fail_after
            self.calls.append(penalty_init)
        if failing or y.size < X.shape[1] + 2:
            raise InsufficientSamplesError(y.size, max(y.size + 1, X.shape[1] + 2))
        coef, *_ = np.linalg.lstsq(X, y, rcond=None)
        penalty = 0.1 if penalty_init is None else penalty_init / 2
        return OracleFit(coef=coef, sq_residuals=np.linspace(1.0, 2.0, y.size), penalty=penalty)


@pytest.fixture
def growth():
    return GROWTH.copy()


@pytest.fixture
def interactions():
    return INTERACTIONS.copy()


@pytest.fixture
def make_oracle():
    return LstsqOracle


@pytest.fixture
def community():
    return simulate_equilibria(GROWTH, INTERACTIONS, 30, presence=0.7, seed=1)


@pytest.fixture
def noisy_community():
    return simulate_equilibria(GROWTH, INTERACTIONS, 30, presence=0.7, noise=0.05, seed=7)
