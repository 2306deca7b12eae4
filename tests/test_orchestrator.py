# tests/test_orchestrator.py
"""End-to-end tests for the study orchestrator."""

import json
import logging
import pickle
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from stature.cohorts import POOLED, partition
from stature.errors import ConfigurationError
from stature.loader import load_individuals
from stature.models import FittedModel, UnfitModel
from stature.orchestrator import (StudyOrchestrator, build_model_catalog, fit_models,
                                  main, setup_logging)
from stature.predictors import PredictorCatalog
from stature.records import ModelFamily

OUTPUT_FILES = ['fitted_models.pkl', 'fitted_models.csv', 'predictions.csv',
                'performance.csv', 'subgroup_performance.csv', 'misclassification.csv',
                'cohorts.csv', 'summary.json']


@pytest.fixture
def clean_logging():
    """Remove handlers installed by setup_logging after the test"""
    yield
    package_logger = logging.getLogger('stature')
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.setLevel(logging.NOTSET)


class TestModelCatalog:
    """Tests for build_model_catalog."""

    def test_catalog_order_and_size(self, skeletal_frame, study_config):
        individuals = load_individuals(skeletal_frame, study_config)
        catalog = PredictorCatalog(['FEMXLN', 'FEMHDD'])
        parts = partition(individuals)
        fitters = build_model_catalog(parts, catalog, study_config)

        # 3 cohorts x (2 linear + 2 nonlinear + 1 stepwise)
        assert len(fitters) == 15
        ids = [f.model_id for f in fitters[:5]]
        assert ids == ['pooled:linear:FEMXLN', 'pooled:linear:FEMHDD',
                       'pooled:exponential:FEMXLN', 'pooled:logistic:FEMHDD',
                       'pooled:stepwise']
        assert len({f.model_id for f in fitters}) == 15

    def test_stepwise_excludes_composites(self, skeletal_frame, study_config):
        individuals = load_individuals(skeletal_frame, study_config)
        catalog = PredictorCatalog(['FEMXLN', 'TIBXLN'], composites={'FEMTIB': ['FEMXLN', 'TIBXLN']})
        fitters = build_model_catalog(partition(individuals), catalog, study_config)
        stepwise = [f for f in fitters if f.spec.family is ModelFamily.LINEAR_STEPWISE]
        assert len(stepwise) == 3
        assert stepwise[0].spec.predictors == ('FEMXLN', 'TIBXLN')


class TestStudyOrchestrator:
    """Tests for a complete study run."""

    def test_run_writes_outputs(self, skeletal_frame, study_config):
        """Test a run produces every output table and consistent records."""
        result = StudyOrchestrator(study_config).run(skeletal_frame)
        out = study_config.output_dir

        for name in OUTPUT_FILES:
            assert (Path(out) / name).exists(), name

        n_models = 3 * (2 * 4 + 1)
        assert len(result.outcomes) == n_models
        assert len(result.performance) == n_models
        assert len(pd.read_csv(f"{out}/fitted_models.csv")) == n_models

        for r in result.predictions:
            assert r.lower <= r.point <= r.upper

        # Linear models on complete data always converge
        linear = [o for o in result.outcomes if o.family is ModelFamily.LINEAR]
        assert all(isinstance(o, FittedModel) for o in linear)

        with open(f"{out}/summary.json") as f:
            summary = json.load(f)
        assert summary['n_models'] == n_models
        assert summary['n_individuals'] == len(skeletal_frame)
        assert set(summary['best_model_per_cohort']) <= {POOLED, 'F', 'M'}

        with open(f"{out}/fitted_models.pkl", 'rb') as f:
            outcomes = pickle.load(f)
        assert [o.model_id for o in outcomes] == [o.model_id for o in result.outcomes]

    def test_predictions_only_on_test_cohorts(self, skeletal_frame, study_config):
        result = StudyOrchestrator(study_config).run(skeletal_frame, write=False)
        test_ids = {c: set(result.partition.test[c].ids) for c in result.partition.cohort_names}
        for r in result.predictions:
            assert r.individual_id in test_ids[r.cohort]

    def test_misclassification_totals(self, skeletal_frame, study_config):
        """Test totals equal the number of models missing each individual."""
        result = StudyOrchestrator(study_config).run(skeletal_frame, write=False)
        table = result.misclassification
        model_columns = [c for c in table.columns if c not in ('individual_id', 'total_misses')]
        np.testing.assert_array_equal(table[model_columns].sum(axis=1).to_numpy(),
                                      table['total_misses'].to_numpy())
        assert set(table['individual_id']) == set(result.partition.test[POOLED].ids)

    def test_zero_variance_predictor_isolated(self, skeletal_frame, study_config):
        """Test a constant predictor fails alone and leaves other models intact."""
        frame = skeletal_frame.assign(CONSTXLN=450.0)
        result = StudyOrchestrator(study_config).run(frame, write=False)
        by_id = {o.model_id: o for o in result.outcomes}
        summaries = {s.model_id: s for s in result.summaries}

        unfit = by_id['pooled:exponential:CONSTXLN']
        assert isinstance(unfit, UnfitModel)
        assert unfit.error_kind == 'ConvergenceFailure'
        assert summaries['pooled:exponential:CONSTXLN'].is_na
        assert isinstance(by_id['pooled:linear:CONSTXLN'], UnfitModel)

        intact = summaries['pooled:linear:FEMXLN']
        assert not intact.is_na
        assert intact.n == len(result.partition.test[POOLED])

    def test_composites_from_config(self, skeletal_frame, study_config):
        study_config.composites = {'FEMTIB': ['FEMXLN', 'TIBXLN']}
        result = StudyOrchestrator(study_config).run(skeletal_frame, write=False)
        assert 'pooled:linear:FEMTIB' in {o.model_id for o in result.outcomes}
        assert 'pooled:exponential:FEMTIB' in {o.model_id for o in result.outcomes}

    def test_missing_outcome_column_is_fatal(self, skeletal_frame, study_config):
        with pytest.raises(ConfigurationError, match="stature"):
            StudyOrchestrator(study_config).run(skeletal_frame.drop(columns=['stature']))

    def test_process_pool_matches_sequential(self, skeletal_frame, study_config):
        """Test parallel fitting returns the same outcomes in catalog order."""
        individuals = load_individuals(skeletal_frame, study_config)
        catalog = PredictorCatalog(['FEMXLN', 'FEMHDD'])
        parts = partition(individuals)
        fitters = build_model_catalog(parts, catalog, study_config)

        sequential = fit_models(fitters, parts, n_workers=1)
        parallel = fit_models(fitters, parts, n_workers=2)

        assert [o.model_id for o in parallel] == [o.model_id for o in sequential]
        for a, b in zip(sequential, parallel):
            assert a.converged == b.converged
            if isinstance(a, FittedModel):
                np.testing.assert_allclose(a.params, b.params)


class TestMain:
    """Tests for the command line entry point."""

    def test_main_success(self, skeletal_frame, tmp_path, monkeypatch, clean_logging):
        monkeypatch.chdir(tmp_path)
        data = tmp_path / 'skeletal.csv'
        skeletal_frame.to_csv(data, index=False)
        out = tmp_path / 'cli_output'

        code = main(['--data', str(data), '--output-dir', str(out)])

        assert code == 0
        assert (out / 'performance.csv').exists()

    def test_main_missing_data(self, tmp_path, clean_logging):
        config = tmp_path / 'cfg.json'
        config.write_text(json.dumps({
            'data_settings': {},
            'model_settings': {},
            'output_settings': {'output_dir': str(tmp_path / 'o'),
                                'log_dir': str(tmp_path / 'logs')},
        }))
        code = main(['--data', str(tmp_path / 'nope.csv'), '--config', str(config)])
        assert code == 1

    def test_main_bad_config(self, tmp_path, monkeypatch, clean_logging):
        monkeypatch.chdir(tmp_path)
        config = tmp_path / 'cfg.json'
        config.write_text(json.dumps({'data_settings': {}}))
        assert main(['--data', 'x.csv', '--config', str(config)]) == 1

    def test_setup_logging_writes_file(self, tmp_path, clean_logging):
        log_file = setup_logging(tmp_path / 'logs', log_suffix='unit')
        logging.getLogger('stature.test').info("hello")
        assert log_file.name == 'stature_log_unit.txt'
        assert 'hello' in log_file.read_text()
