"""
misclassification.py
====================
Cross-model aggregation of individuals whose true stature falls outside
a model's prediction interval.

Runs once every model has produced its test predictions; the result counts,
per individual, how many distinct models missed them.
"""

import logging
from typing import Dict, Iterable, List

import pandas as pd

from .records import MisclassificationRecord, PredictionRecord

logger = logging.getLogger(__name__)


def flag_misclassified(records: Iterable[PredictionRecord]) -> List[PredictionRecord]:
    """Records whose interval does not contain the true stature"""
    return [r for r in records if not r.covered]


def aggregate(records: Iterable[PredictionRecord]) -> List[MisclassificationRecord]:
    """
    Group predictions by individual

    Every individual with at least one prediction appears (total 0 allowed).
    A model predicting the same individual twice counts once.

    Returns:
        MisclassificationRecords sorted by total misses (desc), then id
    """
    records = list(records)
    misses: Dict[str, Dict[str, bool]] = {}
    for r in records:
        misses.setdefault(r.individual_id, {})[r.model_id] = False
    for r in flag_misclassified(records):
        misses[r.individual_id][r.model_id] = True

    result = [MisclassificationRecord(individual_id=ind, misses=per_model)
              for ind, per_model in misses.items()]
    result.sort(key=lambda m: (-m.total_misses, m.individual_id))
    return result


def misclassification_table(records: Iterable[PredictionRecord]) -> pd.DataFrame:
    """
    One row per individual, one boolean column per model id, plus total_misses

    Models that never predicted an individual show False for that individual.
    """
    aggregated = aggregate(records)
    model_ids = sorted({m for rec in aggregated for m in rec.misses})

    rows = []
    for rec in aggregated:
        row = {'individual_id': rec.individual_id}
        row.update({m: bool(rec.misses.get(m, False)) for m in model_ids})
        row['total_misses'] = rec.total_misses
        rows.append(row)

    table = pd.DataFrame(rows, columns=['individual_id'] + model_ids + ['total_misses'])
    if not table.empty:
        table['total_misses'] = table['total_misses'].astype(int)
    return table


def log_most_misclassified(aggregated: List[MisclassificationRecord], top: int = 10) -> None:
    flagged = [m for m in aggregated if m.total_misses > 0]
    logger.info(f"{len(flagged)} of {len(aggregated)} test individuals missed by at least one model")
    for rec in flagged[:top]:
        missed_by = sorted(m for m, missed in rec.misses.items() if missed)
        logger.info(f"  {rec.individual_id:<15} missed by {rec.total_misses:3d} models: "
                    f"{', '.join(missed_by)}")
