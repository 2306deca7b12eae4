"""
orchestrator.py
===============
Runs a complete stature study:

1. Load individuals and build the predictor catalog
2. Partition into pooled and per-category train/test cohorts
3. Fit every model of the catalog on its training cohort
   (sequentially or on a process pool)
4. Predict the matching test cohort once all fits are in
5. Summarize performance, subgroup bias and cross-model misclassification
6. Write the result tables and a JSON summary to the output directory

A failed model never stops the run: it is recorded as an UnfitModel and gets
an NA summary. Only structural problems (bad configuration, unusable data)
are fatal.
"""

import argparse
import json
import logging
import pickle
import sys
import traceback
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .cohorts import POOLED, Partition, partition
from .config import StudyConfig, load_config
from .errors import ConfigurationError, StatureModelError
from .evaluation import (compare_models, log_comparison, performance_table, subgroup_metrics,
                         summarize)
from .intervals import predict_cohort
from .loader import load_individuals, predictor_columns, read_table
from .misclassification import aggregate, log_most_misclassified, misclassification_table
from .models import (MODEL_CLASSES, BaseStatureModel, FitOutcome, FittedModel, UnfitModel,
                     nonlinear_model_for)
from .predictors import PredictorCatalog
from .records import Cohort, ModelFamily, ModelSpec, PerformanceSummary, PredictionRecord

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'


def setup_logging(log_dir: Union[str, Path] = "logs", log_suffix: Optional[str] = None,
                  level: str = "INFO") -> Path:
    """
    File + console logging for the `stature` package loggers

    Handlers installed by an earlier call are replaced, so repeated runs in
    one process do not duplicate lines.

    Returns:
        Path of the log file
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / (f'stature_log_{log_suffix}.txt' if log_suffix else 'stature_log.txt')

    package_logger = logging.getLogger('stature')
    for handler in list(package_logger.handlers):
        if getattr(handler, '_stature_handler', False):
            package_logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
    for handler in (logging.FileHandler(log_file, encoding='utf-8'),
                    logging.StreamHandler(sys.stdout)):
        handler.setFormatter(formatter)
        handler._stature_handler = True
        package_logger.addHandler(handler)

    package_logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    return log_file


def log_section(title: str, char: str = "="):
    """Log section header"""
    logger.info("")
    logger.info(char * 80)
    logger.info(title.upper())
    logger.info(char * 80)


def build_model_catalog(partition_: Partition, catalog: PredictorCatalog,
                        config: StudyConfig) -> List[BaseStatureModel]:
    """
    Every model the study fits, in a fixed order

    Per cohort: one univariate OLS and one growth curve (family by predictor
    kind) for each predictor, then one stepwise model over the base
    measurements.
    """
    fitters: List[BaseStatureModel] = []
    for cohort in partition_.cohort_names:
        for name in catalog.names:
            spec = ModelSpec(cohort=cohort, family=ModelFamily.LINEAR, predictors=(name,))
            fitters.append(MODEL_CLASSES[ModelFamily.LINEAR](spec, catalog))
        for name in catalog.names:
            fitters.append(nonlinear_model_for(cohort, name, catalog,
                                               config.initial_guesses,
                                               max_evaluations=config.max_evaluations))
        if catalog.base_names:
            spec = ModelSpec(cohort=cohort, family=ModelFamily.LINEAR_STEPWISE,
                             predictors=tuple(catalog.base_names))
            fitters.append(MODEL_CLASSES[ModelFamily.LINEAR_STEPWISE](
                spec, catalog,
                n_folds=config.cv_folds,
                random_seed=config.random_seed,
                max_subset_size=config.max_subset_size))
    return fitters


def _fit_one(fitter: BaseStatureModel, cohort: Cohort) -> FitOutcome:
    """Unit of work: any exception becomes an UnfitModel for this model"""
    try:
        return fitter.fit(cohort)
    except Exception as e:
        logger.warning(f"Model {fitter.model_id} failed: {type(e).__name__}: {e}")
        logger.debug(traceback.format_exc())
        return UnfitModel(spec=fitter.spec, error_kind=type(e).__name__, message=str(e))


def fit_models(fitters: Sequence[BaseStatureModel], partition_: Partition,
               n_workers: int = 1) -> List[FitOutcome]:
    """Fit every model on its training cohort; results come back in catalog order"""
    if n_workers <= 1:
        outcomes = []
        for i, fitter in enumerate(fitters, 1):
            logger.debug(f"[{i}/{len(fitters)}] Fitting {fitter.model_id}")
            outcomes.append(_fit_one(fitter, partition_.train[fitter.spec.cohort]))
        return outcomes

    logger.info(f"Fitting {len(fitters)} models on {n_workers} worker processes")
    results: Dict[int, FitOutcome] = {}
    with ProcessPoolExecutor(max_workers=n_workers) as executor:
        futures = {
            executor.submit(_fit_one, fitter, partition_.train[fitter.spec.cohort]): idx
            for idx, fitter in enumerate(fitters)
        }
        for done, future in enumerate(as_completed(futures), 1):
            idx = futures[future]
            try:
                results[idx] = future.result()
            except Exception as e:
                logger.warning(f"Worker failed for {fitters[idx].model_id}: {e}")
                results[idx] = UnfitModel(spec=fitters[idx].spec,
                                          error_kind=type(e).__name__, message=str(e))
            if done % 25 == 0 or done == len(fitters):
                logger.info(f"  {done}/{len(fitters)} fits complete")

    return [results[idx] for idx in range(len(fitters))]


def fitted_models_table(outcomes: Sequence[FitOutcome]) -> pd.DataFrame:
    """Parameters, standard errors and convergence flag per model"""
    rows = []
    for outcome in outcomes:
        row = {
            'model_id': outcome.model_id,
            'cohort': outcome.spec.cohort,
            'family': outcome.family.value,
            'converged': outcome.converged,
        }
        if isinstance(outcome, FittedModel):
            row.update({
                'predictors': '+'.join(outcome.predictors),
                'n_obs': outcome.n_obs,
                'df_resid': outcome.df_resid,
                'residual_se': float(np.sqrt(outcome.residual_variance)),
                'r2': 1.0 - outcome.rss / outcome.tss if outcome.tss > 0 else np.nan,
                'iterations': outcome.iterations,
                'params': json.dumps(outcome.param_dict()),
                'std_errors': json.dumps(dict(zip(outcome.param_names,
                                                  map(float, outcome.standard_errors)))),
                'error_kind': None,
                'message': None,
            })
        else:
            row.update({'predictors': '+'.join(outcome.spec.predictors),
                        'error_kind': outcome.error_kind, 'message': outcome.message})
        rows.append(row)
    columns = ['model_id', 'cohort', 'family', 'predictors', 'converged', 'n_obs',
               'df_resid', 'residual_se', 'r2', 'iterations', 'params', 'std_errors',
               'error_kind', 'message']
    return pd.DataFrame(rows, columns=columns)


@dataclass
class StudyResult:
    """Everything a study run produced"""
    partition: Partition
    catalog: PredictorCatalog
    outcomes: List[FitOutcome]
    predictions: List[PredictionRecord]
    summaries: List[PerformanceSummary]
    performance: pd.DataFrame
    subgroups: pd.DataFrame
    misclassification: pd.DataFrame
    ranking: Dict[str, List[Dict[str, Any]]]

    @property
    def n_converged(self) -> int:
        return sum(1 for o in self.outcomes if o.converged)


class StudyOrchestrator:
    """
    Master orchestrator for a stature study

    Args:
        config: StudyConfig, or path to a JSON configuration file
    """

    def __init__(self, config: Union[StudyConfig, str, Path, None] = None):
        if config is None:
            config = StudyConfig()
        elif not isinstance(config, StudyConfig):
            config = load_config(config)
        self.config = config
        self.output_dir = Path(config.output_dir)

    def setup_output_dirs(self):
        self.output_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Output directory: {self.output_dir}")

    def prepare(self, data: Union[pd.DataFrame, str, Path]):
        """Individuals (with composite values) and the predictor catalog"""
        cfg = self.config
        df = data if isinstance(data, pd.DataFrame) else read_table(data)
        names = predictor_columns(df, cfg)
        if not names:
            raise ConfigurationError("No numeric predictor columns in data")
        individuals = load_individuals(df, cfg, predictors=names)
        catalog = PredictorCatalog(names, composites=cfg.composites,
                                   overrides=cfg.kind_overrides)
        return catalog.derive(individuals), catalog

    def evaluate(self, outcomes: Sequence[FitOutcome], partition_: Partition,
                 catalog: PredictorCatalog):
        """Test-cohort predictions and per-model summaries"""
        predictions: List[PredictionRecord] = []
        summaries: List[PerformanceSummary] = []
        for outcome in outcomes:
            records = predict_cohort(outcome, partition_.test[outcome.spec.cohort], catalog,
                                     confidence=self.config.confidence,
                                     critical=self.config.critical)
            predictions.extend(records)
            summaries.append(summarize(outcome, records))
        return predictions, summaries

    def run(self, data: Union[pd.DataFrame, str, Path], write: bool = True) -> StudyResult:
        """Run the complete study; raises on fatal errors"""
        cfg = self.config
        start_time = datetime.now()

        log_section(f"STATURE STUDY: {cfg.scenario_name}")
        for key, value in cfg.to_dict().items():
            logger.info(f"  {key}: {value}")

        individuals, catalog = self.prepare(data)
        logger.info(catalog.to_frame().to_string(index=False))

        log_section("COHORTS")
        partition_ = partition(individuals, train_fraction=cfg.train_fraction,
                               random_seed=cfg.random_seed, cohort_names=cfg.cohort_names)
        logger.info(partition_.summary().to_string(index=False))

        fitters = build_model_catalog(partition_, catalog, cfg)
        log_section(f"FITTING {len(fitters)} MODELS")
        outcomes = fit_models(fitters, partition_, n_workers=cfg.n_workers)
        n_converged = sum(1 for o in outcomes if o.converged)
        logger.info(f"{n_converged} of {len(outcomes)} models converged")
        for outcome in outcomes:
            if isinstance(outcome, UnfitModel):
                logger.warning(f"  UNFIT {outcome.model_id}: {outcome.error_kind} "
                               f"({outcome.message})")

        log_section("EVALUATION")
        predictions, summaries = self.evaluate(outcomes, partition_, catalog)
        for s in summaries:
            if s.is_na:
                logger.info(f"  {s.model_id:<45} NA ({s.fit_status})")
            else:
                logger.info(f"  {s.model_id:<45} n={s.n:4d} acc={s.accuracy:.3f} "
                            f"SEE={s.see:.3f} MAD={s.mad:.3f} bias={s.bias:+.3f}")

        ranking = compare_models(summaries)
        log_comparison(ranking)

        log_section("MISCLASSIFICATION")
        log_most_misclassified(aggregate(predictions))

        result = StudyResult(
            partition=partition_,
            catalog=catalog,
            outcomes=outcomes,
            predictions=predictions,
            summaries=summaries,
            performance=performance_table(summaries),
            subgroups=subgroup_metrics(predictions),
            misclassification=misclassification_table(predictions),
            ranking=ranking,
        )

        if write:
            self.write_outputs(result)

        log_section("STUDY COMPLETE")
        logger.info(f"Total time: {datetime.now() - start_time}")
        logger.info(f"Models fitted: {len(outcomes)} ({n_converged} converged)")
        return result

    def write_outputs(self, result: StudyResult):
        """Write result tables, pickled fits and the JSON summary"""
        self.setup_output_dirs()
        out = self.output_dir

        with open(out / 'fitted_models.pkl', 'wb') as f:
            pickle.dump(result.outcomes, f)
        fitted_models_table(result.outcomes).to_csv(out / 'fitted_models.csv', index=False)
        pd.DataFrame([r.to_dict() for r in result.predictions]).to_csv(
            out / 'predictions.csv', index=False)
        result.performance.to_csv(out / 'performance.csv', index=False)
        result.subgroups.to_csv(out / 'subgroup_performance.csv', index=False)
        result.misclassification.to_csv(out / 'misclassification.csv', index=False)
        result.partition.membership().to_csv(out / 'cohorts.csv', index=False)

        stepwise = {
            o.spec.cohort: list(o.predictors)
            for o in result.outcomes
            if o.family is ModelFamily.LINEAR_STEPWISE and isinstance(o, FittedModel)
        }
        summary = {
            'scenario_name': self.config.scenario_name,
            'timestamp': datetime.now().isoformat(),
            'config': self.config.to_dict(),
            'n_individuals': len(result.partition.source(POOLED)),
            'cohorts': result.partition.summary().to_dict(orient='records'),
            'n_models': len(result.outcomes),
            'n_converged': result.n_converged,
            'unfit_models': {o.model_id: o.error_kind for o in result.outcomes
                             if isinstance(o, UnfitModel)},
            'stepwise_selection': stepwise,
            'best_model_per_cohort': {cohort: rows[0] for cohort, rows in result.ranking.items()},
        }
        with open(out / 'summary.json', 'w', encoding='utf-8') as f:
            json.dump(summary, f, indent=2, default=str)

        logger.info(f"Results written to {out}")


# ============================================================================
# MAIN EXECUTION
# ============================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point"""
    parser = argparse.ArgumentParser(
        prog='stature',
        description='Stature estimation model catalog',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
    Examples:
    python -m stature --data skeletal.csv
    python -m stature --data skeletal.csv --config config/stature_study.json --workers 4
            """
    )
    parser.add_argument('--data', type=str, required=True,
                        help='CSV or Excel file with one row per individual')
    parser.add_argument('--config', type=str, default=None,
                        help='Path to JSON configuration file (default: built-in settings)')
    parser.add_argument('--output-dir', type=str, default=None,
                        help='Override output_settings.output_dir')
    parser.add_argument('--workers', type=int, default=None,
                        help='Override pipeline_settings.n_workers')
    parser.add_argument('--log-level', type=str, default='INFO',
                        help='Logging level (default: INFO)')
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config) if args.config else StudyConfig()
        overrides = {}
        if args.output_dir:
            overrides['output_dir'] = args.output_dir
        if args.workers is not None:
            overrides['n_workers'] = args.workers
        if overrides:
            config = replace(config, **overrides)
    except StatureModelError as e:
        print(f"ERROR: {e}")
        return 1

    log_file = setup_logging(config.log_dir, config.log_suffix, args.log_level)
    logger.info(f"Log file: {log_file}")

    try:
        StudyOrchestrator(config).run(args.data)
        return 0
    except Exception as e:
        logger.error("")
        logger.error("=" * 80)
        logger.error("STUDY FAILED")
        logger.error("=" * 80)
        logger.error(f"{type(e).__name__}: {e}")
        logger.debug(traceback.format_exc())
        return 1


if __name__ == "__main__":
    sys.exit(main())
