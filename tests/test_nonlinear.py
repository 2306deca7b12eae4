# tests/test_nonlinear.py
"""Tests for the exponential and logistic growth-curve fitters."""

import numpy as np
import pytest

from stature.config import DEFAULT_INITIAL_GUESSES
from stature.models import (ExponentialModel, FittedModel, LogisticModel, UnfitModel,
                            nonlinear_model_for)
from stature.models.curves import (exponential, exponential_gradient, logistic,
                                   logistic_gradient)
from stature.predictors import PredictorCatalog
from stature.records import ModelFamily, ModelSpec

from conftest import make_cohort


@pytest.fixture
def catalog():
    return PredictorCatalog(['FEMXLN', 'FEMHDD'])


@pytest.fixture
def exponential_cohort(rng):
    x = rng.uniform(100.0, 900.0, 150)
    y = exponential(x, 195.0, 160.0, 0.0032) + rng.normal(0.0, 1.0, 150)
    return make_cohort(x, y, predictor='FEMXLN')


@pytest.fixture
def logistic_cohort(rng):
    x = rng.uniform(10.0, 90.0, 150)
    y = logistic(x, 185.0, 1.5, 0.06) + rng.normal(0.0, 1.0, 150)
    return make_cohort(x, y, predictor='FEMHDD')


def exponential_model(catalog, max_evaluations=5000):
    return nonlinear_model_for('pooled', 'FEMXLN', catalog, DEFAULT_INITIAL_GUESSES,
                               max_evaluations=max_evaluations)


class TestCurves:
    """Tests for the curve gradients against finite differences."""

    @pytest.mark.parametrize("curve, gradient, params", [
        (exponential, exponential_gradient, (195.0, 160.0, 0.0032)),
        (logistic, logistic_gradient, (185.0, 1.5, 0.06)),
    ])
    def test_gradient(self, curve, gradient, params):
        x = np.array([20.0, 45.0, 300.0])
        analytic = gradient(x, *params)
        assert analytic.shape == (3, 3)
        for k in range(3):
            step = 1e-6 * max(abs(params[k]), 1e-3)
            up = list(params)
            down = list(params)
            up[k] += step
            down[k] -= step
            numeric = (curve(x, *up) - curve(x, *down)) / (2 * step)
            np.testing.assert_allclose(analytic[:, k], numeric, rtol=1e-5, atol=1e-8)


class TestNonlinearModelFor:
    """Tests for family dispatch by predictor kind."""

    def test_length_predictor_gets_exponential(self, catalog):
        model = exponential_model(catalog)
        assert isinstance(model, ExponentialModel)
        assert model.spec.family is ModelFamily.EXPONENTIAL
        assert model.initial_guess == [200.0, 150.0, 0.003]

    def test_breadth_predictor_gets_logistic(self, catalog):
        model = nonlinear_model_for('pooled', 'FEMHDD', catalog, DEFAULT_INITIAL_GUESSES)
        assert isinstance(model, LogisticModel)
        assert model.model_id == 'pooled:logistic:FEMHDD'

    def test_list_initial_guess(self, catalog):
        guesses = {'exponential': [190.0, 140.0, 0.004], 'logistic': [1.0, 1.0, 1.0]}
        model = nonlinear_model_for('pooled', 'FEMXLN', catalog, guesses)
        assert model.initial_guess == [190.0, 140.0, 0.004]

    def test_requires_single_predictor(self, catalog):
        spec = ModelSpec('pooled', ModelFamily.EXPONENTIAL, ('FEMXLN', 'FEMHDD'))
        with pytest.raises(ValueError, match="one predictor"):
            ExponentialModel(spec, catalog, initial_guess=[200.0, 150.0, 0.003])


class TestNonlinearFit:
    """Tests for growth-curve fitting."""

    def test_exponential_fit(self, catalog, exponential_cohort):
        """Test a converged fit beats the constant-mean baseline."""
        fitted = exponential_model(catalog).fit(exponential_cohort)

        assert isinstance(fitted, FittedModel)
        assert fitted.converged
        assert fitted.param_names == ('a', 'b', 'c')
        assert fitted.rss <= fitted.tss
        assert fitted.df_resid == 147
        assert fitted.residual_variance == pytest.approx(fitted.rss / 147)
        assert fitted.iterations is not None and fitted.iterations > 0
        assert np.all(np.isfinite(fitted.covariance))
        assert np.sqrt(fitted.residual_variance) == pytest.approx(1.0, abs=0.25)

    def test_logistic_fit(self, catalog, logistic_cohort):
        """Test the logistic family fits breadth-type data."""
        model = nonlinear_model_for('pooled', 'FEMHDD', catalog, DEFAULT_INITIAL_GUESSES)
        fitted = model.fit(logistic_cohort)

        assert isinstance(fitted, FittedModel)
        assert fitted.family is ModelFamily.LOGISTIC
        assert fitted.rss <= fitted.tss
        assert fitted.params[0] == pytest.approx(185.0, rel=0.05)

    def test_zero_variance_predictor(self, catalog):
        """Test a constant predictor yields a ConvergenceFailure sentinel."""
        cohort = make_cohort([450.0] * 20, np.linspace(160, 180, 20), predictor='FEMXLN')
        outcome = exponential_model(catalog).fit(cohort)

        assert isinstance(outcome, UnfitModel)
        assert outcome.error_kind == 'ConvergenceFailure'
        assert outcome.model_id == 'pooled:exponential:FEMXLN'
        assert 'Singular gradient' in outcome.message

    def test_iteration_budget(self, catalog, exponential_cohort):
        """Test an exhausted evaluation budget is a ConvergenceFailure."""
        outcome = exponential_model(catalog, max_evaluations=2).fit(exponential_cohort)
        assert isinstance(outcome, UnfitModel)
        assert outcome.error_kind == 'ConvergenceFailure'

    def test_too_few_rows(self, catalog):
        """Test three rows are not enough for three parameters."""
        cohort = make_cohort([300.0, 400.0, 500.0], [160.0, 165.0, 168.0], predictor='FEMXLN')
        outcome = exponential_model(catalog).fit(cohort)
        assert isinstance(outcome, UnfitModel)
        assert outcome.error_kind == 'InsufficientDataError'

    def test_fitter_unchanged_by_fit(self, catalog, exponential_cohort):
        """Test fit() returns a result and leaves the fitter reusable."""
        model = exponential_model(catalog)
        a = model.fit(exponential_cohort)
        b = model.fit(exponential_cohort)
        np.testing.assert_allclose(a.params, b.params)
        assert model.initial_guess == [200.0, 150.0, 0.003]
