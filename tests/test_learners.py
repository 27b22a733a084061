"""Tests for nuisance fitters."""

import numpy as np
import pytest
from sklearn.linear_model import LinearRegression, LogisticRegression

from pyconfseq import (
    CallableFitter, ConfigurationError, ConstantFitter, SklearnFitter, StatsmodelsFitter, get_learner
)
from pyconfseq.learners import as_fitter


@pytest.fixture
def linear_data(seed):
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(500, 3))
    y = 1.0 + X @ np.array([0.5, -0.3, 0.8]) + 0.1 * rng.normal(size=500)
    d = rng.binomial(1, 1 / (1 + np.exp(-X[:, 0])))
    return X, y, d


class TestGetLearner:
    """Test suite for the learner factory."""

    @pytest.mark.parametrize("name", ['ols', 'rf', 'gbm', 'lasso', 'ridge', 'elastic-net'])
    def test_regression_learners(self, name, linear_data):
        X, y, _ = linear_data
        fitter = get_learner(name, 'regression')
        predictions = fitter.fit(X, y).predict(X)
        assert predictions.shape == (len(X),)
        assert np.all(np.isfinite(predictions))

    @pytest.mark.parametrize("name", ['logit', 'logistic', 'rf', 'gbm'])
    def test_propensity_learners(self, name, linear_data):
        X, _, d = linear_data
        fitter = get_learner(name, 'propensity')
        predictions = fitter.fit(X, d).predict(X)
        assert np.all((predictions >= 0) & (predictions <= 1))

    def test_case_insensitive(self):
        assert isinstance(get_learner('OLS'), StatsmodelsFitter)

    @pytest.mark.parametrize("name,task", [('svm', 'regression'), ('ols', 'propensity'), ('rf', 'clustering')])
    def test_unknown(self, name, task):
        with pytest.raises(ConfigurationError):
            get_learner(name, task)


class TestFitters:
    """Test suite for concrete fitters."""

    def test_ols_recovers_linear_function(self, linear_data):
        X, y, _ = linear_data
        predictions = StatsmodelsFitter('ols').fit(X, y).predict(X)
        truth = 1.0 + X @ np.array([0.5, -0.3, 0.8])
        assert np.max(np.abs(predictions - truth)) < 0.1

    def test_sklearn_classifier_predicts_probabilities(self, linear_data):
        X, _, d = linear_data
        predictions = SklearnFitter(LogisticRegression()).fit(X, d).predict(X)
        assert 0 < predictions.min() and predictions.max() < 1
        assert np.corrcoef(predictions, X[:, 0])[0, 1] > 0.8

    def test_sklearn_predict_before_fit(self, linear_data):
        X, _, _ = linear_data
        with pytest.raises(RuntimeError):
            SklearnFitter(LinearRegression()).predict(X)

    def test_clone_is_unfitted_and_independent(self, linear_data):
        X, y, _ = linear_data
        fitter = SklearnFitter(LinearRegression()).fit(X, y)
        copy = fitter.clone()
        with pytest.raises(RuntimeError):
            copy.predict(X)
        copy.fit(X, -y)
        assert np.corrcoef(fitter.predict(X), copy.predict(X))[0, 1] < -0.99

    def test_callable_fitter(self, linear_data):
        X, y, _ = linear_data

        def regression_fn(X_train, y_train, X_new):
            return np.full(len(X_new), y_train.mean())

        predictions = CallableFitter(regression_fn).fit(X[:100], y[:100]).predict(X[100:])
        np.testing.assert_allclose(predictions, y[:100].mean())

    def test_constant_fitter(self, linear_data):
        X, y, _ = linear_data
        np.testing.assert_allclose(ConstantFitter(0.3).fit(X, y).predict(X[:5]), 0.3)
        np.testing.assert_allclose(ConstantFitter().fit(X, y).predict(X[:5]), y.mean())


class TestAsFitter:
    """Test suite for fitter coercion."""

    def test_coercions(self):
        assert isinstance(as_fitter('ols'), StatsmodelsFitter)
        assert isinstance(as_fitter('logit', 'propensity'), StatsmodelsFitter)
        assert isinstance(as_fitter(LinearRegression()), SklearnFitter)
        assert isinstance(as_fitter(0.5, 'propensity'), ConstantFitter)
        assert isinstance(as_fitter(lambda X, y, new: np.zeros(len(new))), CallableFitter)

    def test_fitter_passed_through(self):
        fitter = ConstantFitter(1.0)
        assert as_fitter(fitter) is fitter

    def test_rejects_unknown(self):
        with pytest.raises(ConfigurationError):
            as_fitter(object())
