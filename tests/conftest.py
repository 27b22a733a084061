"""Pytest configuration and fixtures for pyconfseq tests."""

import numpy as np
import pytest

from pyconfseq import NuisanceFitter


def expit(x):
    return 1 / (1 + np.exp(-x))


@pytest.fixture
def seed():
    """Random seed for reproducibility."""
    return 42


@pytest.fixture
def confounded_dgp(seed):
    """Generate confounded observational data with known ATE.

    T ~ Bernoulli(expit(0.8 * X0))
    Y = tau * T + 2 * X0 + X1 + epsilon

    True ATE = 1.0
    """
    rng = np.random.default_rng(seed)
    n = 5000
    X = rng.normal(size=(n, 2))
    propensity = expit(0.8 * X[:, 0])
    T = rng.binomial(1, propensity)
    tau_true = 1.0
    Y = tau_true * T + 2 * X[:, 0] + X[:, 1] + rng.normal(size=n)

    return {
        "Y": Y,
        "T": T,
        "X": X,
        "propensity": propensity,
        "tau_true": tau_true,
        "n": n,
    }


@pytest.fixture
def heavy_tailed_dgp():
    """Factory for the heavy-tailed scenario.

    d=3 Gaussian covariates, propensity 0.2 + 0.6 * expit(X0 - 0.5 X1) in
    [0.2, 0.8], true ATE = 1, t-distributed (5 df) noise.
    """

    def make(rng, n=2000):
        X = rng.normal(size=(n, 3))
        propensity = 0.2 + 0.6 * expit(X[:, 0] - 0.5 * X[:, 1])
        T = rng.binomial(1, propensity)
        Y = 1.0 * T + X @ np.array([2.0, 1.0, -1.0]) + rng.standard_t(5, size=n)
        return {"Y": Y, "T": T, "X": X, "propensity": propensity, "tau_true": 1.0, "n": n}

    return make


@pytest.fixture
def small_data(seed):
    """Small randomised dataset for API tests."""
    rng = np.random.default_rng(seed)
    n = 400
    X = rng.normal(size=(n, 2))
    T = rng.binomial(1, 0.5, size=n)
    Y = 0.5 * T + X[:, 0] + rng.normal(size=n)
    return {"Y": Y, "T": T, "X": X, "n": n}


class LeakageCheckingFitter(NuisanceFitter):
    """Fitter that fails if asked to predict a unit it was trained on.

    The first covariate column must hold a unique unit id.
    """

    def __init__(self, value=0.0):
        self.value = value
        self.seen = set()

    def fit(self, X, y):
        self.seen = set(np.asarray(X)[:, 0].tolist())
        return self

    def predict(self, X):
        ids = set(np.asarray(X)[:, 0].tolist())
        overlap = ids & self.seen
        if overlap:
            raise AssertionError(f"predicting {len(overlap)} training units")
        return np.full(len(X), self.value)


@pytest.fixture
def leakage_fitter():
    return LeakageCheckingFitter
