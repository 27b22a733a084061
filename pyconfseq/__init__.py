"""
PyConfSeq - Anytime-valid confidence sequences for average treatment effects.

A Python package for estimating the average treatment effect (ATE) in
observational data with confidence sequences: intervals updated as
observations arrive that contain the ATE at every sample size
simultaneously with probability at least 1 - alpha. Nuisance functions are
cross-fitted and combined into doubly-robust (AIPW) scores.
"""

from .boundaries import ConfidenceSequenceEngine, ConfSeqPoint, optimal_rho2
from .config import ConfSeqConfig
from .confseqate import (
    ConfSeqResult, SequentialATE, confseq_ate, confseq_ate_unadjusted, confseq_from_scores
)
from .constants import *
from .crossfit import CrossFitResult, FoldAssignment, NuisancePredictions, cross_fit
from .exceptions import (
    ConfigurationError, ConfSeqError, FitError, InsufficientDataError, NumericalInstabilityError
)
from .learners import (
    CallableFitter, ConstantFitter, NuisanceFitter, SklearnFitter, StatsmodelsFitter, get_learner
)
from .scores import aipw_score, aipw_scores
from .tracker import RunningState, SequentialTracker

__version__ = "0.1.0"

__all__ = [
    "confseq_ate",
    "confseq_ate_unadjusted",
    "confseq_from_scores",
    "SequentialATE",
    "ConfSeqResult",
    "ConfSeqConfig",
    "ConfidenceSequenceEngine",
    "ConfSeqPoint",
    "optimal_rho2",
    "cross_fit",
    "CrossFitResult",
    "FoldAssignment",
    "NuisancePredictions",
    "aipw_score",
    "aipw_scores",
    "RunningState",
    "SequentialTracker",
    "NuisanceFitter",
    "SklearnFitter",
    "StatsmodelsFitter",
    "CallableFitter",
    "ConstantFitter",
    "get_learner",
    "ConfSeqError",
    "ConfigurationError",
    "FitError",
    "InsufficientDataError",
    "NumericalInstabilityError",
]
