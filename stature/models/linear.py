"""
linear.py
=========
Univariate ordinary least squares: stature ~ const + predictor
"""

from typing import Sequence

import numpy as np
import statsmodels.api as sm

from ..errors import InsufficientDataError
from ..records import Cohort, ModelFamily, ModelSpec
from .base_model import BaseStatureModel, FittedModel


def fit_ols(X: np.ndarray, y: np.ndarray, spec: ModelSpec,
            predictors: Sequence[str]) -> FittedModel:
    """
    OLS fit packaged as a FittedModel

    The covariance is statsmodels' cov_params(), i.e. s^2 (X'X)^-1, which
    is all the prediction interval needs besides s^2 itself.
    """
    design = sm.add_constant(np.asarray(X, dtype=float), has_constant='add')
    if np.linalg.matrix_rank(design) < design.shape[1]:
        raise InsufficientDataError(
            "Design matrix is rank deficient (constant or collinear predictors)",
            model_id=spec.model_id)
    if design.shape[0] <= design.shape[1]:
        raise InsufficientDataError(
            f"{design.shape[0]} rows for {design.shape[1]} coefficients",
            model_id=spec.model_id)

    results = sm.OLS(y, design).fit()

    return FittedModel(
        spec=spec,
        predictors=tuple(predictors),
        param_names=('const',) + tuple(predictors),
        params=np.asarray(results.params, dtype=float),
        covariance=np.asarray(results.cov_params(), dtype=float),
        residual_variance=float(results.scale),
        df_resid=int(results.df_resid),
        n_obs=int(results.nobs),
        rss=float(results.ssr),
        tss=float(results.centered_tss),
    )


class UnivariateLinearModel(BaseStatureModel):
    """OLS of stature on a single predictor, complete pairs only"""

    family = ModelFamily.LINEAR

    def __init__(self, spec: ModelSpec, catalog):
        super().__init__(spec, catalog)
        if len(spec.predictors) != 1:
            raise ValueError(f"Univariate model needs one predictor, got {spec.predictors}")

    def _fit_core(self, X: np.ndarray, y: np.ndarray, cohort: Cohort) -> FittedModel:
        fitted = fit_ols(X, y, self.spec, self.spec.predictors)
        const, slope = fitted.params
        self.logger.info(f"OLS {self.model_id}: stature = {const:.4f} + {slope:.4f} * "
                         f"{self.spec.predictors[0]} (n={fitted.n_obs}, "
                         f"SEE={np.sqrt(fitted.residual_variance):.4f})")
        return fitted
