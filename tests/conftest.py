# tests/conftest.py
"""Shared fixtures: seeded synthetic skeletal datasets."""

from pathlib import Path
from typing import Sequence

import numpy as np
import pandas as pd
import pytest
from scipy import stats

from stature.config import StudyConfig
from stature.records import Cohort, CohortRole, Individual


def make_skeletal_frame(n: int = 240, seed: int = 0, p_male: float = 0.5) -> pd.DataFrame:
    """Plausible long-bone data: lengths in mm, stature in cm"""
    rng = np.random.default_rng(seed)
    sex = np.where(rng.random(n) < p_male, 'M', 'F')
    male = sex == 'M'

    femur = rng.normal(np.where(male, 470.0, 430.0), 22.0)
    tibia = 0.81 * femur + rng.normal(0.0, 9.0, n)
    humerus = 0.70 * femur + rng.normal(0.0, 10.0, n)
    femur_head = rng.normal(np.where(male, 48.0, 42.0), 2.5)
    stature = 58.0 + 0.20 * femur + 0.07 * tibia + rng.normal(0.0, 3.0, n)

    return pd.DataFrame({
        'id': [f"S{i:04d}" for i in range(n)],
        'sex': sex,
        'age': rng.uniform(20.0, 80.0, n).round(0),
        'stature': stature,
        'FEMXLN': femur,
        'TIBXLN': tibia,
        'HUMXLN': humerus,
        'FEMHDD': femur_head,
    })


def make_cohort(x: Sequence[float], y: Sequence[float], predictor: str = 'X',
                name: str = 'pooled', role: CohortRole = CohortRole.TRAIN,
                prefix: str = 'I', sex: str = 'F') -> Cohort:
    """Cohort of individuals carrying a single measurement"""
    individuals = tuple(
        Individual(individual_id=f"{prefix}{i:05d}", sex=sex, age=40.0, stature=float(yi),
                   measurements={predictor: float(xi)})
        for i, (xi, yi) in enumerate(zip(x, y))
    )
    return Cohort(name=name, role=role, individuals=individuals)


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(12345)


@pytest.fixture
def skeletal_frame() -> pd.DataFrame:
    """240 synthetic individuals, both sexes"""
    return make_skeletal_frame()


@pytest.fixture
def study_config(tmp_path: Path) -> StudyConfig:
    """Fast settings writing into a temporary directory"""
    return StudyConfig(
        scenario_name="test_study",
        cv_folds=5,
        output_dir=str(tmp_path / "output"),
        log_dir=str(tmp_path / "logs"),
    )


@pytest.fixture
def linear_data(rng):
    """stature = 50 + 2x + N(0, 1) with 100 training and 20 test rows

    Test noise is the 20 midpoint quantiles of N(0, 1) in shuffled order, so
    the held-out sample spans +/-1.96 sigma without depending on the seed.
    """
    x_train = rng.uniform(0.0, 20.0, 100)
    y_train = 50.0 + 2.0 * x_train + rng.normal(0.0, 1.0, 100)
    x_test = rng.uniform(0.0, 20.0, 20)
    noise = stats.norm.ppf((np.arange(20) + 0.5) / 20)
    y_test = 50.0 + 2.0 * x_test + rng.permutation(noise)
    train = make_cohort(x_train, y_train)
    test = make_cohort(x_test, y_test, role=CohortRole.TEST, prefix='T')
    return train, test
