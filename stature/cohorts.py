"""
cohorts.py
==========
Cohort partitioner: stratified train/test split of the pooled sample, with
one subgroup cohort per demographic category obtained by filtering the
pooled split (never by re-splitting).
"""

import logging
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.model_selection import train_test_split

from .errors import ConfigurationError
from .records import Cohort, CohortRole, Individual

logger = logging.getLogger(__name__)

POOLED = "pooled"


@dataclass(frozen=True)
class Partition:
    """Train and test cohorts keyed by cohort name"""
    train: Mapping[str, Cohort]
    test: Mapping[str, Cohort]
    cohort_names: tuple

    def source(self, name: str) -> List[Individual]:
        return list(self.train[name].individuals) + list(self.test[name].individuals)

    def summary(self) -> pd.DataFrame:
        """Sizes and category proportions for every cohort and role"""
        rows = []
        for name in self.cohort_names:
            for cohort in (self.train[name], self.test[name]):
                counts = cohort.category_counts()
                n = len(cohort)
                row = {'cohort': name, 'role': cohort.role.value, 'n': n}
                for category, count in sorted(counts.items()):
                    row[f'prop_{category}'] = count / n if n else np.nan
                rows.append(row)
        return pd.DataFrame(rows)

    def membership(self) -> pd.DataFrame:
        """One row per (cohort, role, individual) for export"""
        rows = []
        for name in self.cohort_names:
            for cohort in (self.train[name], self.test[name]):
                for ind in cohort:
                    rows.append({'cohort': name, 'role': cohort.role.value,
                                 'individual_id': ind.individual_id, 'sex': ind.sex})
        return pd.DataFrame(rows)


def partition(individuals: Sequence[Individual],
              train_fraction: float = 0.8,
              random_seed: int = 42,
              cohort_names: Optional[Mapping[str, str]] = None) -> Partition:
    """
    Split individuals into pooled and per-category train/test cohorts

    Args:
        individuals: base dataset
        train_fraction: share of each category assigned to training
        random_seed: seed for the shuffled split
        cohort_names: optional category label -> cohort name mapping

    Raises:
        ConfigurationError: bad fraction, empty dataset, not exactly two
            categories, or a category left without members in train or test
    """
    if not 0.0 < train_fraction < 1.0:
        raise ConfigurationError(f"Split fraction must be in (0, 1), got {train_fraction}")

    usable = [ind for ind in individuals if np.isfinite(ind.stature)]
    if len(usable) < len(individuals):
        logger.warning(f"Excluded {len(individuals) - len(usable)} individuals without stature")
    if not usable:
        raise ConfigurationError("Cannot partition an empty cohort")

    labels = np.array([ind.sex for ind in usable])
    categories = sorted(set(labels.tolist()))
    if len(categories) != 2:
        raise ConfigurationError(
            f"Expected two demographic categories, found {len(categories)}: {categories}")
    cohort_names = dict(cohort_names or {})
    names = {cat: cohort_names.get(cat, str(cat)) for cat in categories}
    if POOLED in names.values() or len(set(names.values())) != len(names):
        raise ConfigurationError(f"Cohort names must be unique and not '{POOLED}': {names}")

    indices = np.arange(len(usable))
    try:
        train_idx, test_idx = train_test_split(
            indices,
            train_size=train_fraction,
            random_state=random_seed,
            shuffle=True,
            stratify=labels,
        )
    except ValueError as e:
        raise ConfigurationError(
            f"Split fraction {train_fraction} cannot stratify {len(usable)} individuals "
            f"over categories {categories}: {e}") from e

    # Keep source order inside each split
    train_members = [usable[i] for i in sorted(train_idx)]
    test_members = [usable[i] for i in sorted(test_idx)]

    train = {POOLED: Cohort(POOLED, CohortRole.TRAIN, tuple(train_members))}
    test = {POOLED: Cohort(POOLED, CohortRole.TEST, tuple(test_members))}

    for category in categories:
        name = names[category]
        train_sub = tuple(ind for ind in train_members if ind.sex == category)
        test_sub = tuple(ind for ind in test_members if ind.sex == category)
        if not train_sub or not test_sub:
            raise ConfigurationError(
                f"Split fraction {train_fraction} leaves category '{category}' with "
                f"{len(train_sub)} training and {len(test_sub)} test individuals")
        train[name] = Cohort(name, CohortRole.TRAIN, train_sub, category=category)
        test[name] = Cohort(name, CohortRole.TEST, test_sub, category=category)

    result = Partition(train=train, test=test,
                       cohort_names=(POOLED,) + tuple(names[c] for c in categories))

    logger.info(f"Partitioned {len(usable):,} individuals (train fraction {train_fraction}, "
                f"seed {random_seed})")
    for name in result.cohort_names:
        logger.info(f"  {name}: train={len(train[name]):,}, test={len(test[name]):,}")

    return result
