"""Tests for doubly-robust score construction."""

import numpy as np
import pytest

from pyconfseq import ConfigurationError, NumericalInstabilityError, NuisancePredictions, aipw_score, aipw_scores
from pyconfseq.scores import clamp_propensity, scores_from_predictions, unadjusted_scores


class TestAIPWScore:
    """Test suite for the AIPW pseudo-outcome."""

    def test_treated_unit(self):
        # 2 - 1 + (3 - 2) / 0.5
        assert aipw_score(3.0, 1, 2.0, 1.0, 0.5) == pytest.approx(3.0)

    def test_control_unit(self):
        # 2 - 1 - (0 - 1) / 0.75
        assert aipw_score(0.0, 0, 2.0, 1.0, 0.25) == pytest.approx(1.0 + 1.0 / 0.75)

    def test_correct_outcome_model_gives_plug_in(self):
        # residuals are zero, so the score is mu1 - mu0 whatever pi is
        for pi in (0.1, 0.5, 0.9):
            assert aipw_score(5.0, 1, 5.0, 2.0, pi) == pytest.approx(3.0)
            assert aipw_score(2.0, 0, 5.0, 2.0, pi) == pytest.approx(3.0)

    def test_vectorised_matches_scalar(self, seed):
        rng = np.random.default_rng(seed)
        n = 50
        y = rng.normal(size=n)
        a = rng.binomial(1, 0.5, size=n)
        mu1 = rng.normal(size=n)
        mu0 = rng.normal(size=n)
        pi = rng.uniform(0.05, 0.95, size=n)

        scores = aipw_scores(y, a, mu1, mu0, pi)
        expected = [aipw_score(y[i], a[i], mu1[i], mu0[i], pi[i]) for i in range(n)]
        np.testing.assert_allclose(scores, expected)

    def test_propensity_clamped(self):
        y = np.array([1.0, 1.0])
        a = np.array([1, 0])
        zeros = np.zeros(2)

        scores = aipw_scores(y, a, zeros, zeros, np.array([0.0, 1.0]), bounds=(0.05, 0.95))

        assert np.all(np.isfinite(scores))
        np.testing.assert_allclose(scores, [1.0 / 0.05, -1.0 / 0.05])

    def test_clamp_propensity(self):
        np.testing.assert_allclose(clamp_propensity(np.array([0.0, 0.5, 1.0]), (0.1, 0.9)), [0.1, 0.5, 0.9])

    @pytest.mark.parametrize("bounds", [(0.0, 0.9), (0.5, 0.5), (0.2, 1.0)])
    def test_invalid_bounds(self, bounds):
        with pytest.raises(ConfigurationError):
            clamp_propensity(0.5, bounds)

    def test_non_finite_score_raises(self):
        with pytest.raises(NumericalInstabilityError):
            aipw_scores([1.0, 2.0], [1, 0], [np.inf, 0.0], [0.0, 0.0], [0.5, 0.5])


class TestPredictionsAndUnadjusted:
    """Test suite for scores built from nuisance predictions."""

    def test_unavailable_units_dropped(self):
        predictions = NuisancePredictions(
            mu1=np.array([1.0, np.nan, 1.0]),
            mu0=np.array([0.0, np.nan, 0.0]),
            propensity=np.array([0.5, np.nan, 0.5]),
            available=np.array([True, False, True]),
        )
        scores = scores_from_predictions(np.array([1.0, 9.0, 0.0]), np.array([1, 1, 0]), predictions)
        np.testing.assert_allclose(scores, [1.0, 1.0])

    def test_unadjusted_scores(self):
        scores = unadjusted_scores(np.array([2.0, 1.0]), np.array([1, 0]), 0.5)
        np.testing.assert_allclose(scores, [4.0, -2.0])

    def test_unadjusted_mean_is_ipw_contrast(self, seed):
        rng = np.random.default_rng(seed)
        a = rng.binomial(1, 0.3, size=1000)
        y = rng.normal(size=1000) + a
        p = a.mean()

        scores = unadjusted_scores(y, a, p)

        expected = (a * y).sum() / (1000 * p) - ((1 - a) * y).sum() / (1000 * (1 - p))
        assert scores.mean() == pytest.approx(expected)
