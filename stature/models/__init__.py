"""
Stature model families and the fit results they produce.
"""

from .base_model import BaseStatureModel, FitOutcome, FittedModel, UnfitModel, complete_cases
from .linear import UnivariateLinearModel, fit_ols
from .nonlinear import (ExponentialModel, LogisticModel, NonlinearGrowthModel,
                        nonlinear_model_for)
from .stepwise import StepwiseLinearModel
from ..records import ModelFamily

# Model class registry
MODEL_CLASSES = {
    ModelFamily.LINEAR: UnivariateLinearModel,
    ModelFamily.LINEAR_STEPWISE: StepwiseLinearModel,
    ModelFamily.EXPONENTIAL: ExponentialModel,
    ModelFamily.LOGISTIC: LogisticModel,
}

__all__ = [
    'BaseStatureModel',
    'FitOutcome',
    'FittedModel',
    'UnfitModel',
    'complete_cases',
    'UnivariateLinearModel',
    'fit_ols',
    'StepwiseLinearModel',
    'NonlinearGrowthModel',
    'ExponentialModel',
    'LogisticModel',
    'nonlinear_model_for',
    'MODEL_CLASSES',
]
