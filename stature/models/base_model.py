"""
base_model.py
=============
Base class and fit results for stature models

Handles all common functionality:
- Complete-case extraction of training rows
- Error isolation (a failed fit becomes an UnfitModel, never an exception)
- Section / parameter logging

Child classes implement:
- family -> ModelFamily of the fitter
- _fit_core(X, y, cohort) -> FittedModel
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..errors import InsufficientDataError, StatureModelError
from ..predictors import PredictorCatalog
from ..records import Cohort, ModelFamily, ModelSpec
from .curves import CURVES, linear_design


@dataclass(frozen=True, eq=False)
class FittedModel:
    """Estimated parameters of one converged model"""
    spec: ModelSpec
    predictors: Tuple[str, ...]
    param_names: Tuple[str, ...]
    params: np.ndarray
    covariance: np.ndarray
    residual_variance: float
    df_resid: int
    n_obs: int
    rss: float
    tss: float
    iterations: Optional[int] = None
    selection: Optional[List[Dict[str, Any]]] = None
    converged: bool = field(default=True, init=False)

    @property
    def model_id(self) -> str:
        return self.spec.model_id

    @property
    def family(self) -> ModelFamily:
        return self.spec.family

    @property
    def standard_errors(self) -> np.ndarray:
        return np.sqrt(np.clip(np.diag(self.covariance), 0.0, None))

    def param_dict(self) -> Dict[str, float]:
        return {name: float(v) for name, v in zip(self.param_names, self.params)}

    def mean(self, X) -> np.ndarray:
        """Point estimates for predictor values X (n, p)"""
        X = np.asarray(X, dtype=float)
        if self.family.is_linear:
            return linear_design(X) @ self.params
        curve, _ = CURVES[self.family.value]
        return curve(X.reshape(-1), *self.params)

    def gradient(self, X) -> np.ndarray:
        """Gradient of the mean w.r.t. the parameters, shape (n, k)"""
        X = np.asarray(X, dtype=float)
        if self.family.is_linear:
            return linear_design(X)
        _, gradient = CURVES[self.family.value]
        return gradient(X.reshape(-1), *self.params)


@dataclass(frozen=True)
class UnfitModel:
    """Sentinel for a model whose fit failed; carries the error kind"""
    spec: ModelSpec
    error_kind: str
    message: str
    converged: bool = field(default=False, init=False)

    @property
    def model_id(self) -> str:
        return self.spec.model_id

    @property
    def family(self) -> ModelFamily:
        return self.spec.family


FitOutcome = Union[FittedModel, UnfitModel]


def complete_cases(cohort: Cohort, catalog: PredictorCatalog,
                   predictors: Sequence[str]) -> Tuple[List[str], np.ndarray, np.ndarray]:
    """Identifiers, predictor matrix and stature of rows with every predictor present"""
    ids, rows, y = [], [], []
    for ind in cohort:
        values = [catalog.value(ind, name) for name in predictors]
        if all(np.isfinite(values)) and np.isfinite(ind.stature):
            ids.append(ind.individual_id)
            rows.append(values)
            y.append(ind.stature)
    X = np.array(rows, dtype=float).reshape(len(rows), len(predictors))
    return ids, X, np.array(y, dtype=float)


class BaseStatureModel(ABC):
    """
    Base class for stature model fitters

    A fitter is configuration only: fit() returns an immutable FitOutcome and
    leaves the fitter untouched, so one instance can be shipped to a worker
    process and fitted there.
    """

    family: ModelFamily

    def __init__(self, spec: ModelSpec, catalog: PredictorCatalog):
        if spec.family is not self.family:
            raise ValueError(f"{type(self).__name__} cannot fit a {spec.family.value} spec")
        self.spec = spec
        self.catalog = catalog

    @property
    def model_id(self) -> str:
        return self.spec.model_id

    @property
    def logger(self) -> logging.Logger:
        return logging.getLogger(f"stature.models.{self.model_id}")

    def log_section(self, title: str, char: str = "-"):
        """Log section header"""
        self.logger.info("")
        self.logger.info(char * 60)
        self.logger.info(title.upper())
        self.logger.info(char * 60)

    def log_parameters(self, fitted: FittedModel):
        """Log estimates with standard errors, one line per parameter"""
        for idx, (name, value, se) in enumerate(
                zip(fitted.param_names, fitted.params, fitted.standard_errors), 1):
            self.logger.info(f"  {idx:3d}. {name:30s} Beta={value:12.6f} SE={se:10.6f}")

    @property
    def min_rows(self) -> int:
        """Fewest complete rows the fitter accepts"""
        return len(self.spec.predictors) + 2

    def fit(self, cohort: Cohort) -> FitOutcome:
        """Fit on a training cohort (template method); failures become UnfitModel"""
        if cohort.name != self.spec.cohort:
            raise ValueError(f"Spec {self.model_id} expects cohort '{self.spec.cohort}', "
                             f"got '{cohort.name}'")
        try:
            ids, X, y = complete_cases(cohort, self.catalog, self.spec.predictors)
            if len(y) < self.min_rows:
                raise InsufficientDataError(
                    f"{len(y)} complete cases, need at least {self.min_rows}",
                    model_id=self.model_id)
            fitted = self._fit_core(X, y, cohort)
        except StatureModelError as e:
            if e.model_id is None:
                e.model_id = self.model_id
            self.logger.warning(f"{type(e).__name__}: {e}")
            return UnfitModel(spec=self.spec, error_kind=type(e).__name__, message=str(e))

        self.logger.debug(f"Fitted on {fitted.n_obs} rows, residual SD "
                          f"{np.sqrt(fitted.residual_variance):.4f}")
        return fitted

    @abstractmethod
    def _fit_core(self, X: np.ndarray, y: np.ndarray, cohort: Cohort) -> FittedModel:
        """Core fitting logic on complete rows (child implements)"""
        pass
