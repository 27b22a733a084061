"""
Cross-fitting of nuisance functions.

Splits the sample into folds, fits the outcome regressions and the
propensity score on the complement of each fold and predicts on the fold
itself, so that no unit is ever predicted by a model trained on it.
Folds are independent units of work and are dispatched through joblib.
"""

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.model_selection import KFold

from .config import ConfSeqConfig
from .exceptions import ConfigurationError, FitError
from .learners import NuisanceFitter, as_fitter

logger = logging.getLogger(__name__)


# === DATA CONTAINERS ===

@dataclass
class NuisancePredictions:
    """
    Out-of-fold nuisance predictions, one entry per observation.

    Attributes
    ----------
    mu1 : ndarray
        Predicted outcome under treatment.
    mu0 : ndarray
        Predicted outcome under control.
    propensity : ndarray
        Predicted (clamped) probability of treatment.
    available : ndarray of bool
        Whether the observation received a prediction. Units in the
        training half of a single split, or in a failed fold under degraded
        mode, are unavailable and are excluded from the score stream.
    """
    mu1: np.ndarray
    mu0: np.ndarray
    propensity: np.ndarray
    available: np.ndarray

    @classmethod
    def empty(cls, n: int) -> "NuisancePredictions":
        return cls(
            mu1=np.full(n, np.nan),
            mu0=np.full(n, np.nan),
            propensity=np.full(n, np.nan),
            available=np.zeros(n, dtype=bool),
        )

    @classmethod
    def constant(cls, n: int, mu1: float, mu0: float, propensity: float) -> "NuisancePredictions":
        """Predictions of constant nuisance functions (the unadjusted estimator)."""
        return cls(
            mu1=np.full(n, float(mu1)),
            mu0=np.full(n, float(mu0)),
            propensity=np.full(n, float(propensity)),
            available=np.ones(n, dtype=bool),
        )

    def __len__(self):
        return len(self.mu1)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            'mu1': self.mu1,
            'mu0': self.mu0,
            'propensity': self.propensity,
            'available': self.available,
        })


@dataclass
class FoldResult:
    """Outcome of fitting the nuisance functions for one fold."""
    fold: int
    train_index: np.ndarray
    predict_index: np.ndarray
    mu1: Optional[np.ndarray] = None
    mu0: Optional[np.ndarray] = None
    propensity: Optional[np.ndarray] = None
    error: Optional[BaseException] = None
    in_sample: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class CrossFitResult:
    """Assembled predictions together with the per-fold record."""
    predictions: NuisancePredictions
    folds: List[FoldResult] = field(default_factory=list)
    mode: str = 'kfold'

    @property
    def failed_folds(self) -> List[int]:
        return [fr.fold for fr in self.folds if not fr.succeeded]

    @property
    def n_folds(self) -> int:
        return len(self.folds)


@dataclass(frozen=True)
class FoldAssignment:
    """
    Mapping from observation index to a fold label.

    Labels run consecutively from 0 (``0..K-1``) or from 1 (``1..K``).
    Every index carries exactly one label; the holdout sets of the folds
    therefore partition the index set.
    """
    labels: np.ndarray

    @classmethod
    def random(cls, n: int, fold_count: int,
               random_state: Union[int, np.random.Generator, None] = None) -> "FoldAssignment":
        return cls(make_folds(n, fold_count, random_state))

    @classmethod
    def from_train_idx(cls, train_idx: Sequence[bool]) -> "FoldAssignment":
        """
        Two folds from a boolean split: fold 0 holds the units outside
        ``train_idx`` (predicted by the fit on ``train_idx``), fold 1 holds
        the ``train_idx`` units (predicted by the fit on the rest).
        """
        mask = _as_train_mask(train_idx)
        return cls(np.where(mask, 1, 0))

    @property
    def folds(self) -> List[int]:
        """Fold labels in increasing order."""
        return [int(k) for k in np.unique(self.labels)]

    @property
    def n_folds(self) -> int:
        return len(self.folds)

    def holdout(self, fold: int) -> np.ndarray:
        return np.flatnonzero(self.labels == fold)

    def training(self, fold: int) -> np.ndarray:
        return np.flatnonzero(self.labels != fold)

    def validate(self, n: int) -> None:
        """
        Check the assignment covers ``n`` observations with at least two
        non-empty folds.

        Raises
        ------
        ConfigurationError
            If lengths differ, labels are not integers starting at 0 or 1,
            fewer than two folds exist, or a fold between the smallest and
            largest label is empty.
        """
        labels = np.asarray(self.labels)
        if labels.ndim != 1 or len(labels) != n:
            raise ConfigurationError(
                f"Fold assignment must have one label per observation ({n}), got shape {labels.shape}"
            )
        if not np.issubdtype(labels.dtype, np.integer):
            raise ConfigurationError("Fold labels must be integers")
        if self.n_folds < 2:
            raise ConfigurationError("Cross-fitting requires at least two folds")

        first, last = self.folds[0], self.folds[-1]
        if first not in (0, 1):
            raise ConfigurationError(f"Fold labels must start at 0 or 1, got {first}")
        empty = sorted(set(range(first, last + 1)) - set(self.folds))
        if empty:
            raise ConfigurationError(f"Fold(s) {empty} are empty")


# === INPUT HANDLING ===

def _resolve_seed(random_state: Union[int, np.random.Generator, None]) -> Optional[int]:
    if isinstance(random_state, np.random.Generator):
        return int(random_state.integers(2**31 - 1))
    if random_state is None:
        return None
    return int(random_state)


def _as_train_mask(train_idx: Sequence[bool], n: Optional[int] = None) -> np.ndarray:
    mask = np.asarray(train_idx)
    if mask.dtype != bool:
        raise ConfigurationError("train_idx must be a boolean mask")
    if n is not None and len(mask) != n:
        raise ConfigurationError(f"train_idx must have length {n}, got {len(mask)}")
    if mask.all() or not mask.any():
        raise ConfigurationError("train_idx must leave both halves non-empty")
    return mask


def validate_inputs(outcomes: Any, treatment: Any,
                    covariates: Any = None) -> Tuple[np.ndarray, np.ndarray, Optional[np.ndarray]]:
    """
    Convert inputs to numpy arrays and validate them.

    Parameters
    ----------
    outcomes : array-like of shape (n,)
        Observed outcomes (numeric, finite).
    treatment : array-like of shape (n,)
        Binary treatment indicator (0/1).
    covariates : array-like of shape (n, d) or (n,), optional
        Covariates; a DataFrame is accepted.

    Returns
    -------
    tuple
        ``(y, a, X)`` as float arrays; ``X`` is ``None`` when not given.

    Raises
    ------
    ConfigurationError
        If data validation fails (empty data, wrong lengths, missing values,
        non-binary treatment).
    """
    y = np.asarray(outcomes, dtype=float).reshape(-1)
    a_raw = np.asarray(treatment)

    if len(y) == 0:
        raise ConfigurationError("Data cannot be empty")
    if a_raw.ndim != 1 or len(a_raw) != len(y):
        raise ConfigurationError(
            f"treatment must have one entry per outcome ({len(y)}), got shape {a_raw.shape}"
        )
    if not np.all(np.isfinite(y)):
        raise ConfigurationError("outcomes contain missing or non-finite values")

    try:
        a = a_raw.astype(float)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError("treatment must be binary (0/1)") from exc
    if not np.all(np.isin(a, [0.0, 1.0])):
        raise ConfigurationError("treatment must be binary (0/1)")

    X = None
    if covariates is not None:
        X = np.asarray(covariates, dtype=float)
        if X.ndim == 1:
            X = X.reshape(-1, 1)
        if X.ndim != 2 or X.shape[0] != len(y):
            raise ConfigurationError(
                f"covariates must have one row per outcome ({len(y)}), got shape {X.shape}"
            )
        if not np.all(np.isfinite(X)):
            raise ConfigurationError("covariates contain missing or non-finite values")

    return y, a, X


def make_folds(n: int, fold_count: int,
               random_state: Union[int, np.random.Generator, None] = None) -> np.ndarray:
    """
    Balanced random K-fold partition of ``range(n)``.

    Parameters
    ----------
    n : int
        Number of observations.
    fold_count : int
        Number of folds K.
    random_state : int or numpy.random.Generator, optional
        Explicit source of randomness; the same seed yields the same labels.

    Returns
    -------
    ndarray of int
        Fold label in ``0..K-1`` for each observation.
    """
    if fold_count < 2:
        raise ConfigurationError(f"fold_count must be at least 2, got {fold_count}")
    if fold_count > n:
        raise ConfigurationError(f"fold_count ({fold_count}) exceeds the number of observations ({n})")

    labels = np.empty(n, dtype=int)
    cv = KFold(n_splits=fold_count, shuffle=True, random_state=_resolve_seed(random_state))
    for fold, (_, test_idx) in enumerate(cv.split(np.arange(n))):
        labels[test_idx] = fold
    return labels


# === FOLD FITTING ===

def check_propensity(pi: np.ndarray, config: ConfSeqConfig, fold: Optional[int] = None) -> np.ndarray:
    """
    Validate propensity estimates and clamp them into the configured bounds.

    Raises
    ------
    FitError
        If an estimate is non-finite or outside [0, 1], or outside the
        clamp bounds under ``propensity_policy='reject'``.
    """
    pi = np.asarray(pi, dtype=float)
    if not np.all(np.isfinite(pi)):
        raise FitError("propensity fit returned non-finite values", fold=fold)
    if np.any((pi < 0) | (pi > 1)):
        raise FitError(
            f"propensity fit returned values outside [0, 1] (min {pi.min():.4g}, max {pi.max():.4g})",
            fold=fold,
        )

    lower, upper = config.propensity_bounds
    outside = (pi < lower) | (pi > upper)
    if outside.any():
        if config.propensity_policy == 'reject':
            raise FitError(
                f"{int(outside.sum())} propensity estimates outside {config.propensity_bounds}",
                fold=fold,
            )
        logger.debug("Clamping %d propensity estimates into %s", int(outside.sum()), config.propensity_bounds)
    return np.clip(pi, lower, upper)


def _check_outcome(pred: np.ndarray, n_expected: int, name: str, fold: Optional[int]) -> np.ndarray:
    pred = np.asarray(pred, dtype=float).reshape(-1)
    if len(pred) != n_expected:
        raise FitError(f"{name} fit returned {len(pred)} predictions for {n_expected} units", fold=fold)
    if not np.all(np.isfinite(pred)):
        raise FitError(f"{name} fit returned non-finite predictions", fold=fold)
    return pred


def fit_nuisance(X_train: np.ndarray, a_train: np.ndarray, y_train: np.ndarray, X_pred: np.ndarray,
                 fitters: Tuple[NuisanceFitter, NuisanceFitter, NuisanceFitter],
                 config: ConfSeqConfig, fold: Optional[int] = None) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Fit the three nuisance functions on one training set and predict for
    ``X_pred``.

    The outcome regressions are fitted on the treated and control units of
    the training set respectively; the propensity score on all of them.
    Fresh clones of the fitters are used so that no state crosses folds.

    Returns
    -------
    tuple
        ``(mu1, mu0, propensity)`` for the rows of ``X_pred``.
    """
    regression_1, regression_0, propensity_fitter = fitters
    treated = a_train == 1
    if not treated.any():
        raise FitError("training set has no treated units", fold=fold)
    if treated.all():
        raise FitError("training set has no control units", fold=fold)

    mu1 = regression_1.clone().fit(X_train[treated], y_train[treated]).predict(X_pred)
    mu1 = _check_outcome(mu1, len(X_pred), 'regression_fn_1', fold)

    mu0 = regression_0.clone().fit(X_train[~treated], y_train[~treated]).predict(X_pred)
    mu0 = _check_outcome(mu0, len(X_pred), 'regression_fn_0', fold)

    pi = propensity_fitter.clone().fit(X_train, a_train).predict(X_pred)
    pi = np.asarray(pi, dtype=float).reshape(-1)
    if len(pi) != len(X_pred):
        raise FitError(f"propensity fit returned {len(pi)} predictions for {len(X_pred)} units", fold=fold)
    pi = check_propensity(pi, config, fold)

    return mu1, mu0, pi


def _fit_fold(fold: int, X: np.ndarray, a: np.ndarray, y: np.ndarray,
              train_index: np.ndarray, predict_index: np.ndarray,
              fitters: Tuple[NuisanceFitter, NuisanceFitter, NuisanceFitter],
              config: ConfSeqConfig, in_sample: bool = False) -> FoldResult:
    """
    One independent unit of work. Failures are returned, not raised, so
    the gather step decides between aborting and degraded output.
    """
    result = FoldResult(fold=fold, train_index=train_index, predict_index=predict_index, in_sample=in_sample)
    try:
        result.mu1, result.mu0, result.propensity = fit_nuisance(
            X[train_index], a[train_index], y[train_index], X[predict_index], fitters, config, fold
        )
    except Exception as exc:
        result.error = exc
    return result


def _assemble(n: int, fold_results: List[FoldResult], config: ConfSeqConfig, mode: str) -> CrossFitResult:
    predictions = NuisancePredictions.empty(n)

    for fr in fold_results:
        if not fr.succeeded:
            if not config.allow_failed_folds:
                if isinstance(fr.error, FitError):
                    raise fr.error
                raise FitError(f"nuisance fit failed: {fr.error!r}", fold=fr.fold) from fr.error
            logger.warning("Fold %d failed and is excluded (degraded mode): %r", fr.fold, fr.error)
            continue

        predictions.mu1[fr.predict_index] = fr.mu1
        predictions.mu0[fr.predict_index] = fr.mu0
        predictions.propensity[fr.predict_index] = fr.propensity
        predictions.available[fr.predict_index] = True

    if not predictions.available.any():
        raise FitError("no fold produced predictions")

    logger.debug("Assembled %d of %d predictions (%s)", int(predictions.available.sum()), n, mode)
    return CrossFitResult(predictions=predictions, folds=fold_results, mode=mode)


def _resolve_fitters(regression_fn_1: Any, regression_fn_0: Any,
                     propensity_score_fn: Any) -> Tuple[NuisanceFitter, NuisanceFitter, NuisanceFitter]:
    return (
        as_fitter(regression_fn_1, 'regression'),
        as_fitter(regression_fn_0, 'regression'),
        as_fitter(propensity_score_fn, 'propensity'),
    )


# === PUBLIC INTERFACE ===

def cross_fit(covariates: Any, treatment: Any, outcomes: Any,
              regression_fn_1: Any, regression_fn_0: Any, propensity_score_fn: Any,
              fold_count: Optional[int] = None,
              fold_assignment: Union[FoldAssignment, Sequence[int], None] = None,
              config: Optional[ConfSeqConfig] = None) -> CrossFitResult:
    """
    K-fold cross-fitting of the outcome regressions and propensity score.

    For each fold k, every nuisance function is fitted using only the
    observations outside fold k and evaluated on fold k. Folds are
    dispatched as independent joblib tasks (``config.n_jobs`` workers)
    and gathered in fold order.

    Parameters
    ----------
    covariates : array-like of shape (n, d)
        Covariates.
    treatment : array-like of shape (n,)
        Binary treatment indicator.
    outcomes : array-like of shape (n,)
        Observed outcomes.
    regression_fn_1, regression_fn_0 : fitter-like
        Outcome regressions under treatment and control. Anything accepted
        by ``as_fitter``: a ``NuisanceFitter``, scikit-learn estimator,
        learner name, constant, or ``fn(X_train, y_train, X_new)``.
    propensity_score_fn : fitter-like
        Propensity score model; must predict probabilities in [0, 1].
    fold_count : int, optional
        Number of folds for a random partition (default ``config.fold_count``).
    fold_assignment : FoldAssignment or sequence of int, optional
        Explicit fold labels; overrides ``fold_count``.
    config : ConfSeqConfig, optional
        Propensity bounds and policy, degraded mode, ``n_jobs`` and
        ``random_state``.

    Returns
    -------
    CrossFitResult
        Out-of-fold predictions for every observation and per-fold records.

    Raises
    ------
    FitError
        If any fold fails (unless ``config.allow_failed_folds``).
    ConfigurationError
        If the fold assignment is invalid or a fold is empty.
    """
    config = config or ConfSeqConfig()
    y, a, X = validate_inputs(outcomes, treatment, covariates)
    if X is None:
        raise ConfigurationError("covariates are required for cross-fitting")
    n = len(y)
    fitters = _resolve_fitters(regression_fn_1, regression_fn_0, propensity_score_fn)

    if fold_assignment is None:
        fold_assignment = FoldAssignment.random(n, fold_count or config.fold_count, config.random_state)
    elif not isinstance(fold_assignment, FoldAssignment):
        fold_assignment = FoldAssignment(np.asarray(fold_assignment))
    fold_assignment.validate(n)

    tasks = [
        (k, fold_assignment.training(k), fold_assignment.holdout(k))
        for k in fold_assignment.folds
    ]
    logger.debug("Cross-fitting %d folds of sizes %s", len(tasks), [len(h) for _, _, h in tasks])

    fold_results = Parallel(n_jobs=config.n_jobs)(
        delayed(_fit_fold)(k, X, a, y, train_index, predict_index, fitters, config)
        for k, train_index, predict_index in tasks
    )
    return _assemble(n, list(fold_results), config, mode='kfold')


def single_split(covariates: Any, treatment: Any, outcomes: Any,
                 regression_fn_1: Any, regression_fn_0: Any, propensity_score_fn: Any,
                 train_idx: Sequence[bool], config: Optional[ConfSeqConfig] = None) -> CrossFitResult:
    """
    Fit once on ``train_idx`` and predict on the complement.

    With ``config.train_predictions='drop'`` (default) the training half
    receives no prediction and is left out of the score stream. With
    ``'in_sample'`` it is scored with its own in-sample fit, which breaks
    the no-leakage property for that half; a ``UserWarning`` is issued.
    """
    config = config or ConfSeqConfig()
    y, a, X = validate_inputs(outcomes, treatment, covariates)
    if X is None:
        raise ConfigurationError("covariates are required for sample splitting")
    mask = _as_train_mask(train_idx, len(y))
    fitters = _resolve_fitters(regression_fn_1, regression_fn_0, propensity_score_fn)

    train_index = np.flatnonzero(mask)
    holdout_index = np.flatnonzero(~mask)
    fold_results = [_fit_fold(0, X, a, y, train_index, holdout_index, fitters, config)]

    if config.train_predictions == 'in_sample':
        warnings.warn(
            "Scoring the training half with its in-sample fit: these units are "
            "predicted by a model trained on them, which can bias the intervals.",
            UserWarning,
            stacklevel=2,
        )
        fold_results.append(_fit_fold(1, X, a, y, train_index, train_index, fitters, config, in_sample=True))

    return _assemble(len(y), fold_results, config.replace(allow_failed_folds=False), mode='single_split')


def in_sample_fit(covariates: Any, treatment: Any, outcomes: Any,
                  regression_fn_1: Any, regression_fn_0: Any, propensity_score_fn: Any,
                  config: Optional[ConfSeqConfig] = None) -> CrossFitResult:
    """
    Fit on all observations and predict on the same observations
    (no sample splitting). Issues a ``UserWarning``.
    """
    config = config or ConfSeqConfig()
    y, a, X = validate_inputs(outcomes, treatment, covariates)
    if X is None:
        raise ConfigurationError("covariates are required for nuisance fitting")
    fitters = _resolve_fitters(regression_fn_1, regression_fn_0, propensity_score_fn)

    warnings.warn(
        "cross_fit=False without train_idx fits nuisance functions in-sample; "
        "every unit is predicted by a model trained on it.",
        UserWarning,
        stacklevel=2,
    )
    index = np.arange(len(y))
    fold_results = [_fit_fold(0, X, a, y, index, index, fitters, config, in_sample=True)]
    return _assemble(len(y), fold_results, config.replace(allow_failed_folds=False), mode='in_sample')
