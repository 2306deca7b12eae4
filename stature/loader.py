"""
loader.py
=========
Tabular data -> Individual records.

Accepts an in-memory DataFrame or a CSV / Excel path. Column names come from
the StudyConfig; predictor columns default to every numeric column that is
not the id, sex, age or outcome column.
"""

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .config import StudyConfig
from .errors import ConfigurationError
from .records import Individual

logger = logging.getLogger(__name__)


def read_table(path: Union[str, Path]) -> pd.DataFrame:
    """Read a CSV or Excel file into a DataFrame"""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Data file not found: {path}")

    if path.suffix.lower() in ('.xlsx', '.xls'):
        df = pd.read_excel(path)
    else:
        df = pd.read_csv(path)
    logger.info(f"Loaded {path} with shape {df.shape}")
    return df


def predictor_columns(df: pd.DataFrame, config: StudyConfig) -> List[str]:
    """Predictor names: configured list, else the remaining numeric columns"""
    reserved = {config.id_column, config.sex_column, config.age_column, config.outcome_column}

    if config.predictors:
        missing = [p for p in config.predictors if p not in df.columns]
        if missing:
            raise ConfigurationError(f"Predictor columns not found in data: {missing}")
        return list(config.predictors)

    numeric = df.select_dtypes(include=[np.number]).columns
    return [c for c in numeric if c not in reserved]


def load_individuals(data: Union[pd.DataFrame, str, Path],
                     config: StudyConfig,
                     predictors: Optional[Sequence[str]] = None) -> List[Individual]:
    """
    Convert a cleaned table into Individuals

    Rows without a finite outcome are dropped. A missing outcome or sex
    column, or a table with no usable rows, is fatal.
    """
    df = data if isinstance(data, pd.DataFrame) else read_table(data)

    for column in (config.outcome_column, config.sex_column):
        if column not in df.columns:
            raise ConfigurationError(f"Required column '{column}' not found in data")
    if len(df) == 0:
        raise ConfigurationError("Dataset has no rows")

    if predictors is None:
        predictors = predictor_columns(df, config)

    outcome = pd.to_numeric(df[config.outcome_column], errors='coerce')
    keep = outcome.notna() & np.isfinite(outcome)
    n_dropped = int((~keep).sum())
    if n_dropped:
        logger.warning(f"Dropped {n_dropped} rows without a usable {config.outcome_column}")
    df = df.loc[keep]
    outcome = outcome.loc[keep]

    if len(df) == 0:
        raise ConfigurationError(f"No rows with a non-missing {config.outcome_column}")

    if config.id_column in df.columns:
        ids = df[config.id_column].astype(str)
    else:
        logger.info(f"No '{config.id_column}' column; using row index as identifier")
        ids = pd.Series(df.index.astype(str), index=df.index)

    if ids.duplicated().any():
        raise ConfigurationError(
            f"Identifier column '{config.id_column}' contains duplicates")

    if config.age_column in df.columns:
        age = pd.to_numeric(df[config.age_column], errors='coerce')
    else:
        age = pd.Series(np.nan, index=df.index)

    values = df[list(predictors)].apply(pd.to_numeric, errors='coerce')

    individuals = []
    for idx in df.index:
        measurements = {
            name: float(v) for name, v in values.loc[idx].items() if pd.notna(v)
        }
        individuals.append(Individual(
            individual_id=ids.loc[idx],
            sex=str(df.at[idx, config.sex_column]),
            age=float(age.loc[idx]) if pd.notna(age.loc[idx]) else np.nan,
            stature=float(outcome.loc[idx]),
            measurements=measurements,
        ))

    logger.info(f"Loaded {len(individuals):,} individuals with {len(predictors)} predictor columns")
    return individuals
