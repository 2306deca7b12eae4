"""
config.py
=========
Study configuration: JSON file -> StudyConfig.

The JSON layout mirrors the orchestrator configuration sections:

    {
      "scenario_name": "...",
      "data_settings":     {...column names, split fraction, seed, composites...},
      "model_settings":    {...cv folds, confidence, initial guesses...},
      "pipeline_settings": {...n_workers...},
      "output_settings":   {...output_dir, log_dir, log_suffix...}
    }
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# Anthropometric starting points (stature in cm, long bones in mm).
# Not derived from data; tune per study through the configuration file.
DEFAULT_INITIAL_GUESSES = {
    'exponential': {'a': 200.0, 'b': 150.0, 'c': 0.003},
    'logistic': {'a': 200.0, 'b': 1.0, 'c': 0.05},
}

REQUIRED_SECTIONS = ['data_settings', 'model_settings']


@dataclass
class StudyConfig:
    """All tunable settings of a stature study run"""
    scenario_name: str = "stature_study"

    # Data settings
    id_column: str = "id"
    sex_column: str = "sex"
    age_column: str = "age"
    outcome_column: str = "stature"
    predictors: Optional[List[str]] = None
    composites: Dict[str, List[str]] = field(default_factory=dict)
    kind_overrides: Dict[str, str] = field(default_factory=dict)
    train_fraction: float = 0.8
    random_seed: int = 42
    cohort_names: Dict[str, str] = field(default_factory=dict)

    # Model settings
    cv_folds: int = 10
    max_subset_size: Optional[int] = None
    confidence: float = 0.95
    critical: str = "t"
    max_evaluations: int = 5000
    initial_guesses: Dict[str, Dict[str, float]] = field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_INITIAL_GUESSES.items()})

    # Pipeline settings
    n_workers: int = 1

    # Output settings
    output_dir: str = "output"
    log_dir: str = "logs"
    log_suffix: Optional[str] = None

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Raise ConfigurationError on settings that cannot produce a valid run"""
        if not 0.0 < float(self.train_fraction) < 1.0:
            raise ConfigurationError(
                f"train_fraction must be in (0, 1), got {self.train_fraction}")
        if not 0.0 < float(self.confidence) < 1.0:
            raise ConfigurationError(f"confidence must be in (0, 1), got {self.confidence}")
        if int(self.cv_folds) < 2:
            raise ConfigurationError(f"cv_folds must be >= 2, got {self.cv_folds}")
        if self.critical not in ('t', 'normal'):
            raise ConfigurationError(f"critical must be 't' or 'normal', got {self.critical!r}")
        if int(self.max_evaluations) < 1:
            raise ConfigurationError("max_evaluations must be positive")
        if int(self.n_workers) < 1:
            raise ConfigurationError("n_workers must be >= 1")
        if self.max_subset_size is not None and int(self.max_subset_size) < 1:
            raise ConfigurationError("max_subset_size must be >= 1 when given")
        for family in ('exponential', 'logistic'):
            guess = self.initial_guesses.get(family)
            if guess is None or any(p not in guess for p in ('a', 'b', 'c')):
                raise ConfigurationError(
                    f"initial_guesses.{family} must define a, b and c")

    def initial_guess(self, family: str) -> List[float]:
        guess = self.initial_guesses[family]
        return [float(guess['a']), float(guess['b']), float(guess['c'])]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Maps JSON section keys onto StudyConfig attributes
_SECTION_FIELDS = {
    'data_settings': ['id_column', 'sex_column', 'age_column', 'outcome_column',
                      'predictors', 'composites', 'kind_overrides',
                      'train_fraction', 'random_seed', 'cohort_names'],
    'model_settings': ['cv_folds', 'max_subset_size', 'confidence', 'critical',
                       'max_evaluations', 'initial_guesses'],
    'pipeline_settings': ['n_workers'],
    'output_settings': ['output_dir', 'log_dir', 'log_suffix'],
}


def config_from_dict(raw: Dict[str, Any]) -> StudyConfig:
    """Build a StudyConfig from the sectioned dictionary layout"""
    for section in REQUIRED_SECTIONS:
        if section not in raw:
            raise ConfigurationError(f"Missing required field in config: {section}")

    kwargs: Dict[str, Any] = {}
    if 'scenario_name' in raw:
        kwargs['scenario_name'] = raw['scenario_name']

    for section, names in _SECTION_FIELDS.items():
        values = raw.get(section, {}) or {}
        unknown = set(values) - set(names)
        if unknown:
            logger.warning(f"Ignoring unknown keys in {section}: {sorted(unknown)}")
        for name in names:
            if name in values:
                kwargs[name] = values[name]

    # Partial initial guesses override the defaults parameter by parameter
    if 'initial_guesses' in kwargs:
        kwargs['initial_guesses'] = _merge_initial_guesses(kwargs['initial_guesses'])

    return StudyConfig(**kwargs)


def _merge_initial_guesses(raw: Any) -> Dict[str, Dict[str, float]]:
    """Overlay configured guesses ([a, b, c] or {a, b, c} subsets) on the defaults"""
    if not isinstance(raw, dict):
        raise ConfigurationError("initial_guesses must map a family name to its guess")

    merged = {k: dict(v) for k, v in DEFAULT_INITIAL_GUESSES.items()}
    for family, guess in raw.items():
        if family not in merged:
            raise ConfigurationError(
                f"initial_guesses: unknown family {family!r}, expected one of {sorted(merged)}")
        if isinstance(guess, (list, tuple)):
            if len(guess) != 3:
                raise ConfigurationError(
                    f"initial_guesses.{family} must list exactly three values [a, b, c]")
            guess = dict(zip(('a', 'b', 'c'), guess))
        elif not isinstance(guess, dict):
            raise ConfigurationError(
                f"initial_guesses.{family} must be a list [a, b, c] or an object")
        unknown = set(guess) - {'a', 'b', 'c'}
        if unknown:
            raise ConfigurationError(
                f"initial_guesses.{family} has unknown parameters {sorted(unknown)}")
        for param, value in guess.items():
            try:
                merged[family][param] = float(value)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(
                    f"initial_guesses.{family}.{param} must be numeric, got {value!r}") from e
    return merged


def load_config(config_path: Union[str, Path]) -> StudyConfig:
    """Load and validate a JSON study configuration"""
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Failed to parse {config_path}: {e}") from e

    config = config_from_dict(raw)
    logger.info(f"Loaded configuration from {config_path} (scenario: {config.scenario_name})")
    return config
