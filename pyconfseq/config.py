"""
Explicit configuration structure for confidence sequence estimation.

All options recognised by the entry points are collected in a single
frozen dataclass so that a run is fully described by its inputs and one
``ConfSeqConfig`` instance.
"""

import dataclasses
from dataclasses import dataclass
from typing import Optional, Tuple, Union

import numpy as np

from .constants import (
    DEFAULT_ALPHA, DEFAULT_CROSS_FIT, DEFAULT_FOLDS, DEFAULT_PROPENSITY_BOUNDS,
    DEFAULT_PROPENSITY_POLICY, DEFAULT_TRAIN_PREDICTIONS, MAX_FOLDS, MIN_FOLDS,
    RANDOM_SEED, VALID_PROPENSITY_POLICIES, VALID_TRAIN_PREDICTIONS
)
from .exceptions import ConfigurationError


@dataclass(frozen=True)
class ConfSeqConfig:
    """
    Configuration for confidence sequence estimation of the ATE.

    Attributes
    ----------
    alpha : float
        Miscoverage budget in (0, 1). Default 0.05.
    t_opt : int, optional
        Time at which the interval width is minimised. ``None`` uses the
        number of scores in the stream.
    cross_fit : bool
        Whether nuisance functions are fitted with sample splitting.
    fold_count : int
        Number of folds for the random K-fold partition.
    propensity_bounds : tuple of float
        Clamp interval ``(eps, 1 - eps)`` applied to propensity estimates.
    propensity_policy : str
        ``'clip'`` truncates estimates into ``propensity_bounds``,
        ``'reject'`` raises ``FitError`` when an estimate falls outside.
    train_predictions : str
        Single-split mode only: ``'drop'`` the training half from the score
        stream, or score it with its ``'in_sample'`` fit (reduced rigor).
    allow_failed_folds : bool
        Keep the folds that fitted successfully when another fold fails.
    max_radius : float, optional
        Radius reported at times where the variance is undefined (t < 2).
        ``None`` raises ``InsufficientDataError`` instead.
    n_jobs : int
        Number of joblib workers used to fit folds.
    random_state : int or numpy.random.Generator
        Source of randomness for fold assignment.
    verbose : bool
        Print a results table after estimation.
    """
    alpha: float = DEFAULT_ALPHA
    t_opt: Optional[int] = None
    cross_fit: bool = DEFAULT_CROSS_FIT
    fold_count: int = DEFAULT_FOLDS
    propensity_bounds: Tuple[float, float] = DEFAULT_PROPENSITY_BOUNDS
    propensity_policy: str = DEFAULT_PROPENSITY_POLICY
    train_predictions: str = DEFAULT_TRAIN_PREDICTIONS
    allow_failed_folds: bool = False
    max_radius: Optional[float] = None
    n_jobs: int = 1
    random_state: Union[int, np.random.Generator, None] = RANDOM_SEED
    verbose: bool = False

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Check every field and raise ``ConfigurationError`` on the first
        invalid one.
        """
        if not 0 < self.alpha < 1:
            raise ConfigurationError(f"alpha must be in (0, 1), got {self.alpha}")

        if self.t_opt is not None and self.t_opt <= 0:
            raise ConfigurationError(f"t_opt must be positive, got {self.t_opt}")

        if not MIN_FOLDS <= self.fold_count <= MAX_FOLDS:
            raise ConfigurationError(
                f"fold_count must be between {MIN_FOLDS} and {MAX_FOLDS}, got {self.fold_count}"
            )

        if len(self.propensity_bounds) != 2:
            raise ConfigurationError("propensity_bounds must be a (lower, upper) pair")
        lower, upper = self.propensity_bounds
        if not 0 < lower < upper < 1:
            raise ConfigurationError(
                f"propensity_bounds must satisfy 0 < lower < upper < 1, got {self.propensity_bounds}"
            )

        if self.propensity_policy not in VALID_PROPENSITY_POLICIES:
            raise ConfigurationError(
                f"propensity_policy must be one of {VALID_PROPENSITY_POLICIES}, got '{self.propensity_policy}'"
            )

        if self.train_predictions not in VALID_TRAIN_PREDICTIONS:
            raise ConfigurationError(
                f"train_predictions must be one of {VALID_TRAIN_PREDICTIONS}, got '{self.train_predictions}'"
            )

        if self.max_radius is not None and not self.max_radius > 0:
            raise ConfigurationError(f"max_radius must be positive, got {self.max_radius}")

        if self.n_jobs == 0:
            raise ConfigurationError("n_jobs must be non-zero")

    def replace(self, **changes) -> "ConfSeqConfig":
        """Return a copy with the given fields replaced."""
        return dataclasses.replace(self, **changes)
