"""
intervals.py
============
Prediction intervals for new individuals.

Both model kinds share one form:

    se_pred = sqrt(s^2 + g' Cov g)
    interval = point -/+ crit * se_pred

- Linear models: g = (1, x...) and Cov = s^2 (X'X)^-1, which is exactly the
  OLS prediction interval for a new observation (t critical value on the
  residual degrees of freedom).
- Nonlinear models: g is the gradient of the fitted curve w.r.t. (a, b, c) at
  the new x (delta method) and Cov is the asymptotic covariance from the fit.

Known limitation: the delta method is a first-order linearisation. Where the
fitted curve bends sharply (close to its asymptote, or at the steep part of
the logistic) the interval can be too narrow or too wide; it is reported
as is.
"""

import logging
from typing import List, Optional, Tuple

import numpy as np
from scipy import stats

from .errors import MissingPredictorError
from .models.base_model import FitOutcome, FittedModel, UnfitModel
from .predictors import PredictorCatalog
from .records import Cohort, Individual, PredictionRecord

logger = logging.getLogger(__name__)


def critical_value(confidence: float, df_resid: int, critical: str = "t") -> float:
    """Two-sided critical value for the requested coverage"""
    q = 1.0 - (1.0 - confidence) / 2.0
    if critical == "normal":
        return float(stats.norm.ppf(q))
    return float(stats.t.ppf(q, df_resid))


def prediction_interval(fitted: FittedModel, X, confidence: float = 0.95,
                        critical: str = "t") -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Point estimates and interval bounds for predictor rows X

    Args:
        fitted: converged model
        X: predictor values, shape (n, p) in the model's predictor order
        confidence: nominal coverage
        critical: "t" (residual degrees of freedom) or "normal"

    Returns:
        (point, lower, upper) arrays of length n
    """
    X = np.asarray(X, dtype=float)
    if X.ndim == 1:
        X = X.reshape(-1, len(fitted.predictors))

    point = np.asarray(fitted.mean(X), dtype=float)
    g = fitted.gradient(X)
    parameter_var = np.einsum('ij,jk,ik->i', g, fitted.covariance, g)
    se_pred = np.sqrt(fitted.residual_variance + np.clip(parameter_var, 0.0, None))
    half_width = critical_value(confidence, fitted.df_resid, critical) * se_pred
    return point, point - half_width, point + half_width


def predict_individual(fitted: FittedModel, individual: Individual,
                       catalog: PredictorCatalog, cohort: Optional[str] = None,
                       confidence: float = 0.95, critical: str = "t") -> PredictionRecord:
    """
    PredictionRecord for one individual

    Raises:
        MissingPredictorError: the individual lacks a predictor of the model
    """
    values = [catalog.value(individual, name) for name in fitted.predictors]
    if not all(np.isfinite(values)):
        missing = [n for n, v in zip(fitted.predictors, values) if not np.isfinite(v)]
        raise MissingPredictorError(f"Missing predictors {missing}",
                                    model_id=fitted.model_id,
                                    individual_id=individual.individual_id)

    point, lower, upper = prediction_interval(fitted, [values], confidence, critical)
    return PredictionRecord(
        model_id=fitted.model_id,
        cohort=cohort or fitted.spec.cohort,
        family=fitted.family,
        individual_id=individual.individual_id,
        sex=individual.sex,
        true=float(individual.stature),
        point=float(point[0]),
        lower=float(lower[0]),
        upper=float(upper[0]),
    )


def predict_cohort(outcome: FitOutcome, cohort: Cohort, catalog: PredictorCatalog,
                   confidence: float = 0.95, critical: str = "t") -> List[PredictionRecord]:
    """
    PredictionRecords for every individual of a cohort with a definable prediction

    Rows missing a predictor are skipped. An UnfitModel yields no records.
    """
    if isinstance(outcome, UnfitModel):
        logger.debug(f"No predictions for unfit model {outcome.model_id} ({outcome.error_kind})")
        return []

    records = []
    n_skipped = 0
    for individual in cohort:
        try:
            record = predict_individual(outcome, individual, catalog, cohort.name,
                                        confidence, critical)
        except MissingPredictorError as e:
            n_skipped += 1
            logger.debug(f"Skipped row: {e}")
            continue
        if not np.isfinite([record.point, record.lower, record.upper]).all():
            n_skipped += 1
            logger.debug(f"Skipped row without a finite prediction: "
                         f"{individual.individual_id} [{outcome.model_id}]")
            continue
        records.append(record)

    if n_skipped:
        logger.info(f"{outcome.model_id}: {len(records)} predictions on {cohort.name} "
                    f"{cohort.role.value}, {n_skipped} rows skipped")
    return records
