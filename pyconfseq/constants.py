"""
Constants and configuration for the PyConfSeq package.

This module contains all configuration constants used throughout the package,
including valid learner names, nuisance model configurations, and default values.
"""

# Valid adjustment methods
VALID_ADJUSTMENTS = ['none', 'aipw']

# Valid learner names per nuisance task
VALID_REGRESSION_LEARNERS = ['ols', 'rf', 'gbm', 'lasso', 'ridge', 'elastic-net']
VALID_PROPENSITY_LEARNERS = ['logit', 'logistic', 'rf', 'gbm']

# Cross-fitting configuration
MIN_FOLDS = 2
MAX_FOLDS = 20
DEFAULT_FOLDS = 5

# Default values
DEFAULT_ALPHA = 0.05
DEFAULT_CROSS_FIT = True
DEFAULT_ADJUSTMENT = 'aipw'
DEFAULT_PROPENSITY_BOUNDS = (0.01, 0.99)

# Propensity handling outside the clamp interval
VALID_PROPENSITY_POLICIES = ['clip', 'reject']
DEFAULT_PROPENSITY_POLICY = 'clip'

# Single-split handling of the training half
VALID_TRAIN_PREDICTIONS = ['drop', 'in_sample']
DEFAULT_TRAIN_PREDICTIONS = 'drop'

# Random seed for reproducibility
RANDOM_SEED = 1988

# Nuisance model configurations
ML_MODEL_CONFIGS = {
    'rf': {
        'n_estimators': 100,
        'min_samples_leaf': 5,
        'random_state': RANDOM_SEED
    },
    'gbm': {
        'n_estimators': 100,
        'learning_rate': 0.05,
        'max_depth': 2,
        'random_state': RANDOM_SEED
    },
    'lasso': {
        'alpha': 0.1,
        'random_state': RANDOM_SEED
    },
    'ridge': {
        'alpha': 1.0,
        'random_state': RANDOM_SEED
    },
    'elastic-net': {
        'alpha': 0.1,
        'l1_ratio': 0.5,
        'random_state': RANDOM_SEED
    },
    'logistic': {
        'C': 1.0,
        'max_iter': 1000
    }
}

# Confidence level of the fixed-n comparison interval
CONFIDENCE_LEVEL = 0.95
