"""
nonlinear.py
============
Asymptotic growth-curve models fitted by nonlinear least squares

- ExponentialModel (length-type predictors): stature = a - b * exp(-c * x)
- LogisticModel (breadth-type predictors):   stature = a / (1 + b * exp(-c * x))

Both start Levenberg-Marquardt from a fixed, configurable initial guess. Any
failure (iteration budget exhausted, singular gradient, covariance not
estimable, non-finite estimates) surfaces as ConvergenceFailure, which the
base class records as an UnfitModel so the batch carries on.
"""

import warnings
from typing import Sequence

import numpy as np
from scipy.optimize import OptimizeWarning, curve_fit

from ..errors import ConvergenceFailure
from ..predictors import PredictorCatalog
from ..records import Cohort, ModelFamily, ModelSpec, PredictorKind
from .base_model import BaseStatureModel, FittedModel
from .curves import CURVES

PARAM_NAMES = ('a', 'b', 'c')


class NonlinearGrowthModel(BaseStatureModel):
    """Shared nonlinear least squares fitting for the growth-curve families"""

    def __init__(self, spec: ModelSpec, catalog: PredictorCatalog,
                 initial_guess: Sequence[float],
                 max_evaluations: int = 5000):
        super().__init__(spec, catalog)
        if len(spec.predictors) != 1:
            raise ValueError(f"Growth curve needs one predictor, got {spec.predictors}")
        if len(initial_guess) != 3:
            raise ValueError("Initial guess must hold a, b and c")
        self.initial_guess = [float(p) for p in initial_guess]
        self.max_evaluations = int(max_evaluations)
        self.curve, self.jacobian = CURVES[self.family.value]

    @property
    def min_rows(self) -> int:
        return len(PARAM_NAMES) + 1

    def _fit_core(self, X: np.ndarray, y: np.ndarray, cohort: Cohort) -> FittedModel:
        x = X[:, 0]
        if np.ptp(x) == 0:
            raise ConvergenceFailure(
                f"Singular gradient: {self.spec.predictors[0]} has zero variance",
                model_id=self.model_id)

        with warnings.catch_warnings(), np.errstate(over='ignore', invalid='ignore', divide='ignore'):
            warnings.simplefilter('error', OptimizeWarning)
            try:
                popt, pcov, info, _, _ = curve_fit(
                    self.curve, x, y,
                    p0=self.initial_guess,
                    jac=self.jacobian,
                    method='lm',
                    maxfev=self.max_evaluations,
                    full_output=True,
                )
            except (RuntimeError, ValueError, OptimizeWarning,
                    np.linalg.LinAlgError, FloatingPointError) as e:
                raise ConvergenceFailure(f"{type(e).__name__}: {e}",
                                         model_id=self.model_id) from e

        if not (np.all(np.isfinite(popt)) and np.all(np.isfinite(pcov))):
            raise ConvergenceFailure("Non-finite parameters or covariance",
                                     model_id=self.model_id)

        residuals = y - self.curve(x, *popt)
        rss = float(np.sum(residuals ** 2))
        if not np.isfinite(rss):
            raise ConvergenceFailure("Non-finite residuals at the solution",
                                     model_id=self.model_id)
        df_resid = len(y) - len(PARAM_NAMES)

        fitted = FittedModel(
            spec=self.spec,
            predictors=tuple(self.spec.predictors),
            param_names=PARAM_NAMES,
            params=np.asarray(popt, dtype=float),
            covariance=np.asarray(pcov, dtype=float),
            residual_variance=rss / df_resid,
            df_resid=df_resid,
            n_obs=len(y),
            rss=rss,
            tss=float(np.sum((y - y.mean()) ** 2)),
            iterations=int(info.get('nfev', 0)),
        )
        self.logger.info(f"{self.family.value} {self.model_id}: a={popt[0]:.4f}, b={popt[1]:.4f}, "
                         f"c={popt[2]:.6f} ({fitted.iterations} evaluations, n={fitted.n_obs})")
        return fitted


class ExponentialModel(NonlinearGrowthModel):
    family = ModelFamily.EXPONENTIAL


class LogisticModel(NonlinearGrowthModel):
    family = ModelFamily.LOGISTIC


NONLINEAR_BY_KIND = {
    PredictorKind.LENGTH: ExponentialModel,
    PredictorKind.BREADTH: LogisticModel,
}


def nonlinear_model_for(cohort: str, predictor: str, catalog: PredictorCatalog,
                        initial_guesses: dict,
                        max_evaluations: int = 5000) -> NonlinearGrowthModel:
    """Fitter of the family matching the predictor's catalog kind"""
    model_class = NONLINEAR_BY_KIND[catalog.kind(predictor)]
    spec = ModelSpec(cohort=cohort, family=model_class.family, predictors=(predictor,))
    guess = initial_guesses[model_class.family.value]
    if isinstance(guess, dict):
        guess = [guess['a'], guess['b'], guess['c']]
    return model_class(spec, catalog, initial_guess=guess, max_evaluations=max_evaluations)
