"""
stature
=======
Stature estimation from skeletal measurements: a catalog of linear,
stepwise and asymptotic growth-curve models fitted per cohort, compared on
held-out individuals by prediction-interval accuracy and error spread.
"""

from .cohorts import POOLED, Partition, partition
from .config import StudyConfig, config_from_dict, load_config
from .errors import (ConfigurationError, ConvergenceFailure, InsufficientDataError,
                     MissingPredictorError, StatureModelError)
from .evaluation import compare_models, performance_table, subgroup_metrics, summarize
from .intervals import predict_cohort, predict_individual, prediction_interval
from .loader import load_individuals
from .misclassification import aggregate, flag_misclassified, misclassification_table
from .models import FittedModel, UnfitModel
from .orchestrator import StudyOrchestrator, StudyResult, build_model_catalog, fit_models
from .predictors import PredictorCatalog, classify_predictor
from .records import (Cohort, CohortRole, Individual, MisclassificationRecord, ModelFamily,
                      ModelSpec, PerformanceSummary, PredictionRecord, PredictorKind,
                      PredictorSpec)

__version__ = "0.1.0"
