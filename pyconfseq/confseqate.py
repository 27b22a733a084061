"""
Anytime-valid confidence sequences for the average treatment effect.

This module provides the entry points of the package: the doubly-robust
estimator (cross-fitted AIPW scores), the unadjusted estimator (constant
nuisance functions), and a DataFrame interface. Both estimators feed their
score stream through the same tracker and confidence sequence engine.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy import stats

from .boundaries import ConfidenceSequenceEngine, ConfSeqPoint
from .config import ConfSeqConfig
from .constants import (
    CONFIDENCE_LEVEL, DEFAULT_ADJUSTMENT, VALID_ADJUSTMENTS
)
from .crossfit import (
    CrossFitResult, FoldAssignment, in_sample_fit, single_split, validate_inputs,
    cross_fit as run_cross_fit
)
from .exceptions import ConfigurationError, InsufficientDataError
from .scores import scores_from_predictions, unadjusted_scores
from .tracker import SequentialTracker

logger = logging.getLogger(__name__)


# === RESULT CONTAINER ===

@dataclass
class ConfSeqResult:
    """
    Confidence sequence for the ATE at the requested times.

    Attributes
    ----------
    points : list of ConfSeqPoint
        One interval per requested time, in increasing time order.
    scores : ndarray
        Score stream the sequence was computed from, in processing order.
    method : str
        'aipw', 'unadjusted' or 'scores'.
    alpha : float
        Miscoverage budget.
    t_opt : float
        Time at which the width was minimised.
    rho2 : float
        Mixture variance used by the boundary.
    crossfit : CrossFitResult, optional
        Nuisance predictions and per-fold record (doubly-robust only).
    """
    points: List[ConfSeqPoint]
    scores: np.ndarray
    method: str
    alpha: float
    t_opt: float
    rho2: float
    crossfit: Optional[CrossFitResult] = field(default=None, repr=False)

    def __iter__(self) -> Iterator[ConfSeqPoint]:
        return iter(self.points)

    def __len__(self):
        return len(self.points)

    @property
    def n(self) -> int:
        """Number of scores in the stream."""
        return len(self.scores)

    @property
    def estimate(self) -> float:
        """Mean of all scores."""
        return float(np.mean(self.scores))

    @property
    def times(self) -> np.ndarray:
        return np.array([p.time for p in self.points])

    @property
    def centers(self) -> np.ndarray:
        return np.array([p.center for p in self.points])

    @property
    def lower(self) -> np.ndarray:
        return np.array([p.lower for p in self.points])

    @property
    def upper(self) -> np.ndarray:
        return np.array([p.upper for p in self.points])

    @property
    def radii(self) -> np.ndarray:
        return np.array([p.radius for p in self.points])

    def covers(self, value: float) -> bool:
        """Whether ``value`` lies inside the interval at every reported time."""
        return all(p.covers(value) for p in self.points)

    def fixed_n_interval(self, level: float = CONFIDENCE_LEVEL) -> Tuple[float, float]:
        """
        Classical CLT interval from all scores, valid only at this single
        sample size. Provided for comparison with the confidence sequence.
        """
        if not 0 < level < 1:
            raise ConfigurationError(f"level must be in (0, 1), got {level}")
        if self.n < 2:
            raise InsufficientDataError("a fixed-n interval needs at least two scores")
        z = stats.norm.ppf(1 - (1 - level) / 2)
        margin = z * np.std(self.scores, ddof=1) / np.sqrt(self.n)
        return (self.estimate - margin, self.estimate + margin)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            'time': self.times,
            'estimate': self.centers,
            'lower': self.lower,
            'upper': self.upper,
            'radius': self.radii,
        })

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (excluding the score stream)."""
        return {
            'method': self.method,
            'alpha': self.alpha,
            't_opt': self.t_opt,
            'rho2': self.rho2,
            'n': self.n,
            'estimate': self.estimate,
            'points': [(p.time, p.lower, p.upper) for p in self.points],
        }

    def summary(self) -> str:
        last = self.points[-1]
        lines = [
            f"{'=' * 60}",
            f"CONFIDENCE SEQUENCE: {self.method.upper()}",
            f"{'=' * 60}",
            f"Scores:           {self.n}",
            f"Estimate:         {self.estimate:.4f}",
            f"Alpha:            {self.alpha}",
            f"Optimised at t:   {self.t_opt}",
            f"Reported times:   {len(self.points)}",
            f"Last interval:    t={last.time} ({last.lower:.4f}, {last.upper:.4f})",
        ]
        if self.crossfit is not None:
            lines.append(f"Nuisance fitting: {self.crossfit.mode}, {self.crossfit.n_folds} fold(s)")
            if self.crossfit.failed_folds:
                lines.append(f"Failed folds:     {self.crossfit.failed_folds}")
        lines.append(f"{'=' * 60}")
        return "\n".join(lines)


# === SHARED MACHINERY ===

def _resolve_config(config: Optional[ConfSeqConfig], **overrides) -> ConfSeqConfig:
    config = config or ConfSeqConfig()
    changes = {k: v for k, v in overrides.items() if v is not None}
    return config.replace(**changes) if changes else config


def confseq_from_scores(scores: Sequence[float], t_opt: Optional[float] = None,
                        alpha: Optional[float] = None, times: Optional[Sequence[int]] = None,
                        config: Optional[ConfSeqConfig] = None, method: str = 'scores',
                        crossfit: Optional[CrossFitResult] = None) -> ConfSeqResult:
    """
    Confidence sequence for the mean of a score stream.

    Scores are folded into a ``SequentialTracker`` in the given order and
    the engine reports an interval at each requested time.

    Parameters
    ----------
    scores : sequence of float
        Score stream in processing order.
    t_opt : float, optional
        Time at which the width is minimised (default: number of scores).
    alpha : float, optional
        Miscoverage budget (default ``config.alpha``).
    times : sequence of int, optional
        Strictly increasing reporting times (default: every time).
    config : ConfSeqConfig, optional
        Configuration; ``alpha`` and ``t_opt`` override its fields.

    Returns
    -------
    ConfSeqResult
    """
    config = _resolve_config(config, alpha=alpha, t_opt=t_opt)
    scores = np.asarray(scores, dtype=float).reshape(-1)
    tracker = SequentialTracker(scores)
    if tracker.n == 0:
        raise InsufficientDataError("the score stream is empty")

    target = config.t_opt if config.t_opt is not None else tracker.n
    engine = ConfidenceSequenceEngine(config.alpha, target, config.max_radius)
    points = engine.points(tracker, times)

    result = ConfSeqResult(
        points=points,
        scores=scores,
        method=method,
        alpha=config.alpha,
        t_opt=target,
        rho2=engine.rho2,
        crossfit=crossfit,
    )
    logger.info("%s confidence sequence: n=%d, estimate=%.4f, %d point(s)",
                method, result.n, result.estimate, len(points))
    if config.verbose:
        print(result.summary())
    return result


# === PUBLIC INTERFACE ===

def confseq_ate(outcomes: Any, covariates: Any, treatment: Any,
                regression_fn_1: Any = 'ols', regression_fn_0: Any = 'ols',
                propensity_score_fn: Any = 'logit',
                train_idx: Optional[Sequence[bool]] = None, fold_count: Optional[int] = None,
                t_opt: Optional[float] = None, alpha: Optional[float] = None,
                times: Optional[Sequence[int]] = None, cross_fit: Optional[bool] = None,
                config: Optional[ConfSeqConfig] = None) -> ConfSeqResult:
    """
    Doubly-robust confidence sequence for the ATE.

    Nuisance functions are fitted according to the splitting strategy, the
    AIPW score of each predicted observation is computed, and the scores
    are processed in input order.

    Splitting strategy:

    - ``cross_fit=True``, no ``train_idx``: random K-fold cross-fitting.
    - ``cross_fit=True`` with ``train_idx``: two-fold cross-fitting along the
      given split (each half predicted by the fit on the other).
    - ``cross_fit=False`` with ``train_idx``: single split; only the
      complement of ``train_idx`` is scored unless
      ``config.train_predictions='in_sample'``.
    - ``cross_fit=False``, no ``train_idx``: in-sample fit (warns).

    Parameters
    ----------
    outcomes : array-like of shape (n,)
        Observed outcomes.
    covariates : array-like of shape (n, d)
        Covariates.
    treatment : array-like of shape (n,)
        Binary treatment indicator.
    regression_fn_1, regression_fn_0 : fitter-like
        Outcome regressions under treatment / control (default 'ols').
    propensity_score_fn : fitter-like
        Propensity score model (default 'logit').
    train_idx : array-like of bool, optional
        Caller-chosen split.
    fold_count : int, optional
        Number of folds (default ``config.fold_count``).
    t_opt : float, optional
        Time at which the width is minimised (default: number of scores).
    alpha : float, optional
        Miscoverage budget (default 0.05).
    times : sequence of int, optional
        Strictly increasing reporting times (default: every time).
    cross_fit : bool, optional
        Enable sample splitting (default True).
    config : ConfSeqConfig, optional
        Remaining options; explicit keyword arguments take precedence.

    Returns
    -------
    ConfSeqResult
        Fully populated confidence sequence.

    Raises
    ------
    FitError, ConfigurationError, InsufficientDataError, NumericalInstabilityError
    """
    config = _resolve_config(config, alpha=alpha, t_opt=t_opt, cross_fit=cross_fit, fold_count=fold_count)
    y, a, X = validate_inputs(outcomes, treatment, covariates)
    if X is None:
        raise ConfigurationError("covariates must be provided for the doubly-robust estimator")

    fitters = (regression_fn_1, regression_fn_0, propensity_score_fn)
    if train_idx is not None and config.cross_fit:
        fit = run_cross_fit(X, a, y, *fitters, fold_assignment=FoldAssignment.from_train_idx(train_idx),
                            config=config)
    elif train_idx is not None:
        fit = single_split(X, a, y, *fitters, train_idx=train_idx, config=config)
    elif config.cross_fit:
        fit = run_cross_fit(X, a, y, *fitters, config=config)
    else:
        fit = in_sample_fit(X, a, y, *fitters, config=config)

    scores = scores_from_predictions(y, a, fit.predictions, config.propensity_bounds)
    return confseq_from_scores(scores, times=times, config=config, method='aipw', crossfit=fit)


def confseq_ate_unadjusted(outcomes: Any, treatment: Any, propensity_score: Optional[float] = None,
                           t_opt: Optional[float] = None, alpha: Optional[float] = None,
                           times: Optional[Sequence[int]] = None,
                           config: Optional[ConfSeqConfig] = None) -> ConfSeqResult:
    """
    Unadjusted confidence sequence for the ATE.

    Uses constant nuisance functions (``mu1 = mu0 = 0`` and a single
    propensity), which reduces the AIPW score to an inverse-probability
    weighted contrast. Valid in randomised experiments with known (or
    consistently estimated) assignment probability.

    Parameters
    ----------
    outcomes, treatment : array-like of shape (n,)
        Observed outcomes and binary treatment.
    propensity_score : float, optional
        Probability of treatment in (0, 1); defaults to the treated fraction.
        Clipped into ``config.propensity_bounds``, or rejected with
        ``ConfigurationError`` under ``propensity_policy='reject'``.
    t_opt, alpha, times, config
        As in ``confseq_ate``.
    """
    config = _resolve_config(config, alpha=alpha, t_opt=t_opt)
    y, a, _ = validate_inputs(outcomes, treatment)

    if propensity_score is None:
        propensity_score = float(a.mean())
        if propensity_score in (0.0, 1.0):
            raise ConfigurationError("treatment must contain both treated and control units")
    elif not 0 < propensity_score < 1:
        raise ConfigurationError(f"propensity_score must be in (0, 1), got {propensity_score}")

    lower, upper = config.propensity_bounds
    if not lower <= propensity_score <= upper:
        if config.propensity_policy == 'reject':
            raise ConfigurationError(
                f"propensity_score {propensity_score} is outside the bounds {config.propensity_bounds}"
            )
        logger.debug("Clamping propensity_score %s into %s", propensity_score, config.propensity_bounds)

    scores = unadjusted_scores(y, a, propensity_score, config.propensity_bounds)
    return confseq_from_scores(scores, times=times, config=config, method='unadjusted')


class SequentialATE:
    """
    DataFrame interface to the confidence sequence estimators.

    Methods include:
    - Unadjusted inverse-probability weighted contrast ('none')
    - Doubly-robust AIPW with cross-fitted nuisance functions ('aipw')

    Parameters
    ----------
    config : ConfSeqConfig, optional
        Configuration shared by every call.
    """

    def __init__(self, config: Optional[ConfSeqConfig] = None):
        self.config = config or ConfSeqConfig()

    # === VALIDATION METHODS ===

    def _validate_data(self, data: pd.DataFrame, outcome: str, treatment: str,
                       covariates: Optional[List[str]] = None) -> None:
        """
        Validate input data for estimation.

        Raises
        ------
        ConfigurationError
            If data validation fails (missing columns, wrong types, etc.)
        """
        if not isinstance(data, pd.DataFrame):
            raise ConfigurationError("Data must be a pandas DataFrame")

        if data.empty:
            raise ConfigurationError("Data cannot be empty")

        for column in [outcome, treatment] + list(covariates or []):
            if column not in data.columns:
                raise ConfigurationError(f"Variable '{column}' not found in data")
            if data[column].isnull().any():
                raise ConfigurationError(f"Variable '{column}' contains missing values")
            if not pd.api.types.is_numeric_dtype(data[column]):
                raise ConfigurationError(f"Variable '{column}' must be numeric")

        unique_treatment_values = data[treatment].unique()
        if not set(unique_treatment_values).issubset({0, 1}):
            raise ConfigurationError(f"Treatment variable '{treatment}' must be binary (0/1)")

        if len(unique_treatment_values) < 2:
            raise ConfigurationError("Treatment variable must have both 0 and 1 values")

    def _validate_parameters(self, adjustment: str, covariates: Optional[List[str]],
                             propensity_score: Optional[float]) -> None:
        if adjustment not in VALID_ADJUSTMENTS:
            raise ConfigurationError(f"adjustment must be one of {VALID_ADJUSTMENTS}, got '{adjustment}'")

        if adjustment == 'aipw':
            if not covariates:
                raise ConfigurationError("covariates must be provided when adjustment='aipw'")
            if propensity_score is not None:
                raise ConfigurationError("propensity_score is only used when adjustment='none'")

    # === PUBLIC INTERFACE ===

    def calculate(self, data: pd.DataFrame, outcome: str, treatment: str,
                  adjustment: str = DEFAULT_ADJUSTMENT, covariates: Optional[List[str]] = None,
                  regression_learner: Any = 'ols', propensity_learner: Any = 'logit',
                  propensity_score: Optional[float] = None,
                  train_idx: Optional[Union[str, Sequence[bool]]] = None,
                  times: Optional[Sequence[int]] = None) -> ConfSeqResult:
        """
        Compute a confidence sequence for the ATE from a DataFrame.

        Rows are processed in the DataFrame's order.

        Parameters
        ----------
        data : pd.DataFrame
            Input data containing outcome, treatment and covariates.
        outcome : str
            Name of the outcome variable.
        treatment : str
            Name of the binary treatment variable.
        adjustment : str, optional
            'aipw' (default) or 'none' for the unadjusted estimator.
        covariates : List[str], optional
            Covariates for the nuisance functions (required for 'aipw').
        regression_learner : fitter-like, optional
            Outcome regression used for both treatment arms (default 'ols').
        propensity_learner : fitter-like, optional
            Propensity score model (default 'logit').
        propensity_score : float, optional
            Known assignment probability for adjustment='none'.
        train_idx : str or array-like of bool, optional
            Caller-chosen split, given as a mask or the name of a boolean column.
        times : sequence of int, optional
            Reporting times.

        Returns
        -------
        ConfSeqResult
        """
        self._validate_data(data, outcome, treatment, covariates)
        self._validate_parameters(adjustment, covariates, propensity_score)

        if adjustment == 'none':
            return confseq_ate_unadjusted(
                data[outcome].to_numpy(), data[treatment].to_numpy(),
                propensity_score=propensity_score, times=times, config=self.config,
            )

        if isinstance(train_idx, str):
            if train_idx not in data.columns:
                raise ConfigurationError(f"Split column '{train_idx}' not found in data")
            train_idx = data[train_idx].to_numpy()

        return confseq_ate(
            data[outcome].to_numpy(), data[covariates].to_numpy(), data[treatment].to_numpy(),
            regression_fn_1=regression_learner, regression_fn_0=regression_learner,
            propensity_score_fn=propensity_learner, train_idx=train_idx,
            times=times, config=self.config,
        )
