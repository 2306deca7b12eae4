"""
evaluation.py
=============
Performance metrics of fitted models on held-out individuals.

Metrics (residual r = true - point):
- accuracy: fraction of records whose prediction interval contains the truth
- SEE: sqrt(sum(r^2) / (n - 2)), NaN when n <= 2
- MAD: 1.4826 * median(|r - mean(r)|), a normal-consistent robust spread
- bias: mean(r)

A model that did not converge, or has no predictions, gets an NA summary:
n = 0 and NaN metrics, with fit_status naming why.
"""

import logging
from typing import Dict, Iterable, List, Sequence

import numpy as np
import pandas as pd

from .models.base_model import FitOutcome, UnfitModel
from .records import ModelFamily, PerformanceSummary, PredictionRecord

logger = logging.getLogger(__name__)

MAD_SCALE = 1.4826

PERFORMANCE_COLUMNS = ['model_id', 'cohort', 'family', 'predictors', 'fit_status',
                       'n', 'accuracy', 'see', 'mad', 'bias']


def standard_error_of_estimate(residuals: np.ndarray) -> float:
    n = len(residuals)
    if n <= 2:
        return np.nan
    return float(np.sqrt(np.sum(residuals ** 2) / (n - 2)))


def scaled_mad(residuals: np.ndarray) -> float:
    if len(residuals) == 0:
        return np.nan
    return float(MAD_SCALE * np.median(np.abs(residuals - residuals.mean())))


def summarize(outcome: FitOutcome, records: Sequence[PredictionRecord]) -> PerformanceSummary:
    """
    PerformanceSummary of one model over its test-cohort predictions

    Args:
        outcome: FittedModel or UnfitModel the records came from
        records: predictions of this model on its test cohort

    Returns:
        PerformanceSummary (NA when the model is unfit or records is empty)
    """
    spec = outcome.spec
    fit_status = outcome.error_kind if isinstance(outcome, UnfitModel) else "converged"

    if isinstance(outcome, UnfitModel) or not records:
        if not isinstance(outcome, UnfitModel):
            fit_status = "no_predictions"
        return PerformanceSummary(
            model_id=spec.model_id, cohort=spec.cohort, family=spec.family,
            description=spec.description, fit_status=fit_status, n=0,
            accuracy=np.nan, see=np.nan, mad=np.nan, bias=np.nan)

    residuals = np.array([r.residual for r in records], dtype=float)
    covered = np.array([r.covered for r in records], dtype=bool)

    summary = PerformanceSummary(
        model_id=spec.model_id,
        cohort=spec.cohort,
        family=spec.family,
        description=_describe(outcome),
        fit_status=fit_status,
        n=len(records),
        accuracy=float(covered.mean()),
        see=standard_error_of_estimate(residuals),
        mad=scaled_mad(residuals),
        bias=float(residuals.mean()),
    )
    logger.debug(f"{summary.model_id}: n={summary.n}, accuracy={summary.accuracy:.3f}, "
                 f"SEE={summary.see:.3f}, MAD={summary.mad:.3f}, bias={summary.bias:+.3f}")
    return summary


def _describe(outcome: FitOutcome) -> str:
    """Predictor description; stepwise models list the selected predictors"""
    if outcome.family is ModelFamily.LINEAR_STEPWISE and not isinstance(outcome, UnfitModel):
        return "stepwise: " + " + ".join(outcome.predictors)
    return outcome.spec.description


def performance_table(summaries: Iterable[PerformanceSummary]) -> pd.DataFrame:
    """One row per model, NA rows included"""
    rows = [s.to_dict() for s in summaries]
    return pd.DataFrame(rows, columns=PERFORMANCE_COLUMNS)


def subgroup_metrics(records: Iterable[PredictionRecord]) -> pd.DataFrame:
    """
    Metrics per model and sex category

    Pooled models are evaluated on both sexes, so this exposes any systematic
    over- or under-estimation for one group.

    Returns:
        DataFrame with model_id, cohort, family, sex, n, accuracy, bias, see
    """
    columns = ['model_id', 'cohort', 'family', 'sex', 'n', 'accuracy', 'bias', 'see']
    frame = pd.DataFrame([r.to_dict() for r in records])
    if frame.empty:
        return pd.DataFrame(columns=columns)

    frame['covered'] = (frame['lower'] <= frame['true']) & (frame['true'] <= frame['upper'])
    rows = []
    for (model_id, cohort, family, sex), group in frame.groupby(
            ['model_id', 'cohort', 'family', 'sex'], sort=True):
        residuals = group['residual'].to_numpy(dtype=float)
        rows.append({
            'model_id': model_id,
            'cohort': cohort,
            'family': family,
            'sex': sex,
            'n': int(len(group)),
            'accuracy': float(group['covered'].mean()),
            'bias': float(residuals.mean()),
            'see': standard_error_of_estimate(residuals),
        })
    return pd.DataFrame(rows, columns=columns)


def compare_models(summaries: Iterable[PerformanceSummary]) -> Dict[str, List[Dict[str, object]]]:
    """
    Converged models ranked by SEE (ascending) within each cohort

    NA summaries and models without a finite SEE are left out of the ranking.
    """
    ranking: Dict[str, List[Dict[str, object]]] = {}
    for s in summaries:
        if s.is_na or not np.isfinite(s.see):
            continue
        ranking.setdefault(s.cohort, []).append(s.to_dict())

    for cohort in ranking:
        ranking[cohort].sort(key=lambda row: (row['see'], row['model_id']))
        for rank, row in enumerate(ranking[cohort], 1):
            row['rank'] = rank
    return dict(sorted(ranking.items()))


def log_comparison(ranking: Dict[str, List[Dict[str, object]]], top: int = 10) -> None:
    """Log the per-cohort ranking as a fixed-width table"""
    for cohort, rows in ranking.items():
        logger.info("")
        logger.info(f"Model ranking for cohort '{cohort}' (by SEE):")
        logger.info(f"{'Rank':<6}{'Model':<45}{'n':>6}{'Acc':>8}{'SEE':>10}{'MAD':>10}{'Bias':>10}")
        logger.info("-" * 95)
        for row in rows[:top]:
            logger.info(f"{row['rank']:<6}{row['model_id']:<45}{row['n']:>6}"
                        f"{row['accuracy']:>8.3f}{row['see']:>10.3f}{row['mad']:>10.3f}"
                        f"{row['bias']:>+10.3f}")
