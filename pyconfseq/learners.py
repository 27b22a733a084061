"""
Nuisance fitters for outcome regressions and propensity scores.

The estimation core only relies on the ``NuisanceFitter`` interface:
``fit(X, y)`` followed by ``predict(X)``. Concrete fitters wrap
scikit-learn estimators, statsmodels GLMs, plain callables, or constants.
"""

import copy
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import numpy as np
import statsmodels.api as sm
from sklearn.base import BaseEstimator, clone, is_classifier
from sklearn.ensemble import (
    GradientBoostingClassifier, GradientBoostingRegressor,
    RandomForestClassifier, RandomForestRegressor
)
from sklearn.linear_model import ElasticNet, Lasso, LogisticRegression, Ridge

from .constants import ML_MODEL_CONFIGS, VALID_PROPENSITY_LEARNERS, VALID_REGRESSION_LEARNERS
from .exceptions import ConfigurationError

VALID_TASKS = ['regression', 'propensity']


class NuisanceFitter(ABC):
    """
    Capability interface for a nuisance function.

    Implementations must be deterministic given their training data, and
    ``clone`` must return an unfitted copy that shares no state with the
    original so that folds can be fitted independently.
    """

    @abstractmethod
    def fit(self, X: np.ndarray, y: np.ndarray) -> "NuisanceFitter":
        """Fit on covariates ``X`` and target ``y``; return ``self``."""

    @abstractmethod
    def predict(self, X: np.ndarray) -> np.ndarray:
        """Predict the target (or the treatment probability) for ``X``."""

    def clone(self) -> "NuisanceFitter":
        return copy.deepcopy(self)


class SklearnFitter(NuisanceFitter):
    """
    Wrap a scikit-learn estimator.

    Classifiers are used through ``predict_proba`` so that a propensity
    fitter returns probabilities of treatment rather than labels.
    """

    def __init__(self, estimator: BaseEstimator):
        self.estimator = estimator
        self._fitted = None

    def fit(self, X, y):
        self._fitted = clone(self.estimator).fit(X, y)
        return self

    def predict(self, X):
        if self._fitted is None:
            raise RuntimeError("SklearnFitter must be fitted before predict")
        if is_classifier(self._fitted):
            proba = self._fitted.predict_proba(X)
            classes = list(self._fitted.classes_)
            if 1 not in classes:
                return np.zeros(len(X))
            return proba[:, classes.index(1)]
        return np.asarray(self._fitted.predict(X), dtype=float)

    def clone(self):
        return SklearnFitter(clone(self.estimator))

    def __repr__(self):
        return f"SklearnFitter({self.estimator!r})"


class StatsmodelsFitter(NuisanceFitter):
    """
    Linear (OLS) or logistic (Logit) regression with an intercept, fitted
    with statsmodels.
    """

    def __init__(self, kind: str = 'ols'):
        if kind not in ('ols', 'logit'):
            raise ConfigurationError(f"kind must be 'ols' or 'logit', got '{kind}'")
        self.kind = kind
        self._results = None

    def fit(self, X, y):
        design = sm.add_constant(np.asarray(X, dtype=float), has_constant='add')
        if self.kind == 'ols':
            self._results = sm.OLS(np.asarray(y, dtype=float), design).fit()
        else:
            self._results = sm.Logit(np.asarray(y, dtype=float), design).fit(disp=0)
        return self

    def predict(self, X):
        if self._results is None:
            raise RuntimeError("StatsmodelsFitter must be fitted before predict")
        design = sm.add_constant(np.asarray(X, dtype=float), has_constant='add')
        return np.asarray(self._results.predict(design), dtype=float)

    def clone(self):
        return StatsmodelsFitter(self.kind)

    def __repr__(self):
        return f"StatsmodelsFitter(kind='{self.kind}')"


class CallableFitter(NuisanceFitter):
    """
    Adapt a regression function ``fn(X_train, y_train, X_new) -> predictions``.

    Fitting only stores the training data; ``fn`` runs at prediction time.
    """

    def __init__(self, fn: Callable[[np.ndarray, np.ndarray, np.ndarray], Any]):
        if not callable(fn):
            raise ConfigurationError("CallableFitter requires a callable")
        self.fn = fn
        self._X = None
        self._y = None

    def fit(self, X, y):
        self._X = X
        self._y = y
        return self

    def predict(self, X):
        if self._X is None:
            raise RuntimeError("CallableFitter must be fitted before predict")
        return np.asarray(self.fn(self._X, self._y, X), dtype=float).reshape(-1)

    def clone(self):
        return CallableFitter(self.fn)


class ConstantFitter(NuisanceFitter):
    """Predict a constant: ``value`` if given, otherwise the training mean."""

    def __init__(self, value: Optional[float] = None):
        self.value = value
        self._constant = value

    def fit(self, X, y):
        if self.value is None:
            self._constant = float(np.mean(y))
        return self

    def predict(self, X):
        if self._constant is None:
            raise RuntimeError("ConstantFitter must be fitted before predict")
        return np.full(len(X), self._constant, dtype=float)

    def clone(self):
        return ConstantFitter(self.value)

    def __repr__(self):
        return f"ConstantFitter(value={self.value})"


def get_learner(name: str, task: str = 'regression') -> NuisanceFitter:
    """
    Get a nuisance fitter by name.

    Parameters
    ----------
    name : str
        For ``task='regression'``: 'ols', 'rf', 'gbm', 'lasso', 'ridge',
        'elastic-net'. For ``task='propensity'``: 'logit', 'logistic',
        'rf', 'gbm'.
    task : str
        'regression' or 'propensity'.

    Returns
    -------
    NuisanceFitter
        Configured, unfitted fitter.
    """
    if task not in VALID_TASKS:
        raise ConfigurationError(f"task must be one of {VALID_TASKS}, got '{task}'")

    name = name.lower()

    if task == 'regression':
        if name not in VALID_REGRESSION_LEARNERS:
            raise ConfigurationError(
                f"Unknown regression learner: '{name}'. Choose from: {VALID_REGRESSION_LEARNERS}"
            )
        if name == 'ols':
            return StatsmodelsFitter('ols')
        config = ML_MODEL_CONFIGS[name]
        if name == 'rf':
            return SklearnFitter(RandomForestRegressor(**config))
        elif name == 'gbm':
            return SklearnFitter(GradientBoostingRegressor(**config))
        elif name == 'lasso':
            return SklearnFitter(Lasso(**config))
        elif name == 'ridge':
            return SklearnFitter(Ridge(**config))
        else:
            return SklearnFitter(ElasticNet(**config))

    if name not in VALID_PROPENSITY_LEARNERS:
        raise ConfigurationError(
            f"Unknown propensity learner: '{name}'. Choose from: {VALID_PROPENSITY_LEARNERS}"
        )
    if name == 'logit':
        return StatsmodelsFitter('logit')
    elif name == 'logistic':
        return SklearnFitter(LogisticRegression(**ML_MODEL_CONFIGS['logistic']))
    elif name == 'rf':
        return SklearnFitter(RandomForestClassifier(**ML_MODEL_CONFIGS['rf']))
    else:
        return SklearnFitter(GradientBoostingClassifier(**ML_MODEL_CONFIGS['gbm']))


def as_fitter(obj: Any, task: str = 'regression') -> NuisanceFitter:
    """
    Coerce a fitter-like object into a ``NuisanceFitter``.

    Accepts a ``NuisanceFitter``, a scikit-learn estimator, a learner name,
    a number (constant prediction) or a regression function
    ``fn(X_train, y_train, X_new)``.
    """
    if isinstance(obj, NuisanceFitter):
        return obj
    if isinstance(obj, str):
        return get_learner(obj, task)
    if isinstance(obj, BaseEstimator):
        return SklearnFitter(obj)
    if isinstance(obj, (int, float, np.number)) and not isinstance(obj, bool):
        return ConstantFitter(float(obj))
    if callable(obj):
        return CallableFitter(obj)
    raise ConfigurationError(f"Cannot use {obj!r} as a {task} fitter")
