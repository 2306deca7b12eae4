"""
records.py
==========
Data structures shared by the stature modeling pipeline.

Everything here is a frozen dataclass: individuals are immutable once loaded,
and predictions / summaries are derived once and never mutated.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple

import numpy as np


class CohortRole(str, Enum):
    TRAIN = "train"
    TEST = "test"


class PredictorKind(str, Enum):
    """Functional classification of a predictor (selects the nonlinear family)"""
    LENGTH = "length"
    BREADTH = "breadth"


class ModelFamily(str, Enum):
    LINEAR = "linear"
    LINEAR_STEPWISE = "stepwise"
    EXPONENTIAL = "exponential"
    LOGISTIC = "logistic"

    @property
    def is_linear(self) -> bool:
        return self in (ModelFamily.LINEAR, ModelFamily.LINEAR_STEPWISE)


@dataclass(frozen=True)
class Individual:
    """
    One skeleton: identifier, demographics, stature and bone measurements

    Compared by value. The measurements dict makes instances unhashable; key
    collections by individual_id instead.
    """
    individual_id: str
    sex: str
    age: float
    stature: float
    measurements: Mapping[str, float] = field(default_factory=dict)

    def value(self, name: str) -> float:
        """Measurement for `name`, NaN when absent"""
        value = self.measurements.get(name)
        if value is None:
            return np.nan
        return float(value)

    def has(self, name: str) -> bool:
        return np.isfinite(self.value(name))


@dataclass(frozen=True)
class Cohort:
    """A named, role-tagged set of individuals (pooled or one demographic category)"""
    name: str
    role: CohortRole
    individuals: Tuple[Individual, ...]
    category: Optional[str] = None

    def __len__(self) -> int:
        return len(self.individuals)

    def __iter__(self):
        return iter(self.individuals)

    @property
    def ids(self) -> Tuple[str, ...]:
        return tuple(ind.individual_id for ind in self.individuals)

    def category_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for ind in self.individuals:
            counts[ind.sex] = counts.get(ind.sex, 0) + 1
        return counts


@dataclass(frozen=True)
class PredictorSpec:
    name: str
    kind: PredictorKind
    components: Tuple[str, ...] = ()

    @property
    def is_composite(self) -> bool:
        return len(self.components) > 0


@dataclass(frozen=True)
class ModelSpec:
    """Identifies one model of the catalog: cohort x family x predictor set"""
    cohort: str
    family: ModelFamily
    predictors: Tuple[str, ...]

    @property
    def model_id(self) -> str:
        if self.family is ModelFamily.LINEAR_STEPWISE:
            return f"{self.cohort}:{self.family.value}"
        return f"{self.cohort}:{self.family.value}:{'+'.join(self.predictors)}"

    @property
    def description(self) -> str:
        if self.family is ModelFamily.LINEAR_STEPWISE:
            return f"stepwise over {len(self.predictors)} predictors"
        return " + ".join(self.predictors)


@dataclass(frozen=True)
class PredictionRecord:
    """Point estimate and prediction interval for one individual under one model"""
    model_id: str
    cohort: str
    family: ModelFamily
    individual_id: str
    sex: str
    true: float
    point: float
    lower: float
    upper: float

    @property
    def residual(self) -> float:
        return self.true - self.point

    @property
    def covered(self) -> bool:
        return self.lower <= self.true <= self.upper

    def to_dict(self) -> Dict[str, object]:
        return {
            'model_id': self.model_id,
            'cohort': self.cohort,
            'family': self.family.value,
            'individual_id': self.individual_id,
            'sex': self.sex,
            'true': self.true,
            'point': self.point,
            'lower': self.lower,
            'upper': self.upper,
            'residual': self.residual,
        }


@dataclass(frozen=True)
class PerformanceSummary:
    model_id: str
    cohort: str
    family: ModelFamily
    description: str
    fit_status: str
    n: int
    accuracy: float
    see: float
    mad: float
    bias: float

    @property
    def is_na(self) -> bool:
        return self.n == 0

    def to_dict(self) -> Dict[str, object]:
        return {
            'model_id': self.model_id,
            'cohort': self.cohort,
            'family': self.family.value,
            'predictors': self.description,
            'fit_status': self.fit_status,
            'n': self.n,
            'accuracy': self.accuracy,
            'see': self.see,
            'mad': self.mad,
            'bias': self.bias,
        }


@dataclass(frozen=True)
class MisclassificationRecord:
    individual_id: str
    misses: Mapping[str, bool]

    @property
    def total_misses(self) -> int:
        return sum(1 for missed in self.misses.values() if missed)
