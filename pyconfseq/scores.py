"""
Doubly-robust (AIPW) pseudo-outcomes.

Each observation is mapped to

    mu1 - mu0 + a * (y - mu1) / pi - (1 - a) * (y - mu0) / (1 - pi)

whose expectation is the ATE when either the outcome regressions or the
propensity score are correct. Propensities are clamped into the configured
interval before division.
"""

from typing import Tuple

import numpy as np

from .constants import DEFAULT_PROPENSITY_BOUNDS
from .crossfit import NuisancePredictions
from .exceptions import ConfigurationError, NumericalInstabilityError


def clamp_propensity(pi, bounds: Tuple[float, float] = DEFAULT_PROPENSITY_BOUNDS):
    """Clamp propensity estimates into ``[bounds[0], bounds[1]]``."""
    lower, upper = bounds
    if not 0 < lower < upper < 1:
        raise ConfigurationError(f"propensity bounds must satisfy 0 < lower < upper < 1, got {bounds}")
    return np.clip(pi, lower, upper)


def aipw_score(y: float, a: int, mu1: float, mu0: float, pi: float,
               bounds: Tuple[float, float] = DEFAULT_PROPENSITY_BOUNDS) -> float:
    """Doubly-robust score of a single observation."""
    pi = float(clamp_propensity(pi, bounds))
    return mu1 - mu0 + a * (y - mu1) / pi - (1 - a) * (y - mu0) / (1 - pi)


def aipw_scores(outcomes: np.ndarray, treatment: np.ndarray, mu1: np.ndarray, mu0: np.ndarray,
                propensity: np.ndarray,
                bounds: Tuple[float, float] = DEFAULT_PROPENSITY_BOUNDS) -> np.ndarray:
    """
    Vectorised doubly-robust scores.

    Parameters
    ----------
    outcomes, treatment : ndarray of shape (n,)
        Observed outcome and binary treatment.
    mu1, mu0 : ndarray of shape (n,)
        Out-of-fold outcome predictions under treatment and control.
    propensity : ndarray of shape (n,)
        Out-of-fold propensity estimates.
    bounds : tuple of float
        Propensity clamp interval.

    Returns
    -------
    ndarray of shape (n,)
        One score per observation, in input order.

    Raises
    ------
    NumericalInstabilityError
        If any score is non-finite.
    """
    y = np.asarray(outcomes, dtype=float)
    a = np.asarray(treatment, dtype=float)
    pi = clamp_propensity(np.asarray(propensity, dtype=float), bounds)
    mu1 = np.asarray(mu1, dtype=float)
    mu0 = np.asarray(mu0, dtype=float)

    scores = mu1 - mu0 + a * (y - mu1) / pi - (1 - a) * (y - mu0) / (1 - pi)

    bad = ~np.isfinite(scores)
    if bad.any():
        raise NumericalInstabilityError(
            f"{int(bad.sum())} non-finite scores (first at index {int(np.flatnonzero(bad)[0])})"
        )
    return scores


def scores_from_predictions(outcomes: np.ndarray, treatment: np.ndarray, predictions: NuisancePredictions,
                            bounds: Tuple[float, float] = DEFAULT_PROPENSITY_BOUNDS) -> np.ndarray:
    """
    Scores of the observations that received a prediction, in arrival order.
    """
    keep = predictions.available
    return aipw_scores(
        np.asarray(outcomes)[keep],
        np.asarray(treatment)[keep],
        predictions.mu1[keep],
        predictions.mu0[keep],
        predictions.propensity[keep],
        bounds,
    )


def unadjusted_scores(outcomes: np.ndarray, treatment: np.ndarray, propensity: float,
                      bounds: Tuple[float, float] = DEFAULT_PROPENSITY_BOUNDS) -> np.ndarray:
    """
    Horvitz-Thompson contrast: the AIPW score with ``mu1 = mu0 = 0`` and a
    constant propensity.
    """
    n = len(outcomes)
    predictions = NuisancePredictions.constant(n, mu1=0.0, mu0=0.0, propensity=propensity)
    return scores_from_predictions(outcomes, treatment, predictions, bounds)
