"""
errors.py
=========
Error kinds raised by the stature modeling core.

Structural problems (ConfigurationError) abort a run. The other kinds are
raised for a single model or a single individual and are caught by the
batch code, which records them and moves on.
"""

from typing import Optional


class StatureModelError(Exception):
    """Base class for all stature modeling errors."""

    def __init__(self, message: str,
                 model_id: Optional[str] = None,
                 individual_id: Optional[str] = None):
        self.model_id = model_id
        self.individual_id = individual_id
        super().__init__(message)

    def __str__(self) -> str:
        message = super().__str__()
        context = []
        if self.model_id:
            context.append(f"model={self.model_id}")
        if self.individual_id:
            context.append(f"individual={self.individual_id}")
        if context:
            return f"{message} [{', '.join(context)}]"
        return message


class ConfigurationError(StatureModelError):
    """Invalid configuration, split fraction, empty cohort or missing column."""
    pass


class InsufficientDataError(StatureModelError):
    """Too few complete cases to fit the requested model."""
    pass


class ConvergenceFailure(StatureModelError):
    """Nonlinear least squares did not converge (non-fatal)."""
    pass


class MissingPredictorError(StatureModelError):
    """A row lacks a predictor the model needs (row is skipped)."""
    pass
