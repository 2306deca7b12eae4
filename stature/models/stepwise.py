"""
stepwise.py
===========
Multivariate linear model chosen by cross-validated stepwise subset search.

Selection runs on the complete-case rows (every candidate predictor present):
a forward pass and a backward pass each propose one subset per size 1..K,
every subset is scored by k-fold cross-validated MSE, and the size and
membership with the lowest CV error win (ties go to the smaller subset).
The winning subset is then refit by OLS on every training row that has the
selected predictors, not only on the complete-case rows.
"""

from dataclasses import replace
from typing import Dict, FrozenSet, List, Optional, Tuple

import numpy as np
from sklearn.linear_model import LinearRegression
from sklearn.model_selection import KFold, cross_val_score

from ..errors import InsufficientDataError
from ..records import Cohort, ModelFamily
from .base_model import BaseStatureModel, FittedModel, complete_cases
from .linear import fit_ols


class StepwiseLinearModel(BaseStatureModel):
    """One stepwise-selected multivariate OLS model per cohort"""

    family = ModelFamily.LINEAR_STEPWISE

    def __init__(self, spec, catalog,
                 n_folds: int = 10,
                 random_seed: int = 42,
                 max_subset_size: Optional[int] = None):
        super().__init__(spec, catalog)
        if not spec.predictors:
            raise ValueError("Stepwise model needs at least one candidate predictor")
        self.n_folds = n_folds
        self.random_seed = random_seed
        self.max_subset_size = max_subset_size

    def _cv_scorer(self, X: np.ndarray, y: np.ndarray):
        """Memoised CV-MSE of a column subset, same folds for every subset"""
        n_splits = min(self.n_folds, len(y))
        kf = KFold(n_splits=n_splits, shuffle=True, random_state=self.random_seed)
        cache: Dict[FrozenSet[int], float] = {}

        def score(columns: FrozenSet[int]) -> float:
            if columns not in cache:
                cols = sorted(columns)
                scores = cross_val_score(LinearRegression(), X[:, cols], y, cv=kf,
                                         scoring='neg_mean_squared_error')
                cache[columns] = float(-np.mean(scores))
            return cache[columns]

        return score

    def select(self, X: np.ndarray, y: np.ndarray) -> Tuple[List[str], List[Dict]]:
        """
        Forward/backward subset search over the columns of X

        Columns constant on these rows cannot enter a model and are dropped.

        Returns:
            (selected predictor names, trace of the best subset per size and direction)
        """
        varying = np.ptp(X, axis=0) > 0
        candidates = [name for name, keep in zip(self.spec.predictors, varying) if keep]
        dropped = [name for name, keep in zip(self.spec.predictors, varying) if not keep]
        if dropped:
            self.logger.warning(f"Zero-variance candidates excluded: {', '.join(dropped)}")
        if not candidates:
            raise InsufficientDataError("No candidate predictor varies", model_id=self.model_id)
        X = X[:, varying]
        n_candidates = len(candidates)
        max_size = min(self.max_subset_size or n_candidates, n_candidates)
        score = self._cv_scorer(X, y)

        proposals: Dict[int, List[Tuple[float, FrozenSet[int], str]]] = {
            size: [] for size in range(1, max_size + 1)}

        # Forward: grow from the empty set
        current: FrozenSet[int] = frozenset()
        for size in range(1, max_size + 1):
            best = min((score(current | {j}), j) for j in range(n_candidates) if j not in current)
            current = current | {best[1]}
            proposals[size].append((best[0], current, 'forward'))

        # Backward: shrink from the full set
        current = frozenset(range(n_candidates))
        if n_candidates <= max_size:
            proposals[n_candidates].append((score(current), current, 'backward'))
        for size in range(n_candidates - 1, 0, -1):
            best = min((score(current - {j}), j) for j in sorted(current))
            current = current - {best[1]}
            if size <= max_size:
                proposals[size].append((best[0], current, 'backward'))

        trace = []
        chosen: Optional[Tuple[float, FrozenSet[int]]] = None
        for size in range(1, max_size + 1):
            cv_mse, columns, direction = min(proposals[size], key=lambda p: p[0])
            names = [candidates[j] for j in sorted(columns)]
            trace.append({'size': size, 'predictors': names,
                          'cv_mse': cv_mse, 'direction': direction})
            self.logger.info(f"  size {size:2d} ({direction:8s}) CV MSE={cv_mse:10.4f}  "
                             f"{', '.join(names)}")
            if chosen is None or cv_mse < chosen[0]:
                chosen = (cv_mse, columns)

        selected = [candidates[j] for j in sorted(chosen[1])]
        return selected, trace

    def _fit_core(self, X: np.ndarray, y: np.ndarray, cohort: Cohort) -> FittedModel:
        self.log_section(f"STEPWISE SELECTION: {cohort.name} ({len(y)} complete cases, "
                         f"{self.n_folds}-fold CV)")
        selected, trace = self.select(X, y)
        self.logger.info(f"Selected {len(selected)} predictors: {', '.join(selected)}")

        # Refit on every training row complete for the selected subset
        _, X_sel, y_sel = complete_cases(cohort, self.catalog, selected)
        if len(y_sel) < len(selected) + 2:
            raise InsufficientDataError(
                f"{len(y_sel)} rows for refit on {len(selected)} predictors",
                model_id=self.model_id)
        fitted = fit_ols(X_sel, y_sel, self.spec, selected)
        self.logger.info(f"Refit on {fitted.n_obs} rows, "
                         f"SEE={np.sqrt(fitted.residual_variance):.4f}")
        self.log_parameters(fitted)
        return replace(fitted, selection=trace)
