"""
curves.py
=========
Mean functions of the model families and their gradients with respect to the
parameters. The gradients serve twice: as the Jacobian handed to the
optimiser and as the linearisation used by the delta-method interval.
"""

import numpy as np


def exponential(x, a, b, c):
    """Asymptotic growth curve: a - b * exp(-c * x)"""
    return a - b * np.exp(-c * np.asarray(x, dtype=float))


def exponential_gradient(x, a, b, c) -> np.ndarray:
    """d/d(a, b, c) of the exponential curve, shape (n, 3)"""
    x = np.atleast_1d(np.asarray(x, dtype=float))
    e = np.exp(-c * x)
    return np.column_stack([np.ones_like(x), -e, b * x * e])


def logistic(x, a, b, c):
    """Sigmoidal growth curve: a / (1 + b * exp(-c * x))"""
    return a / (1.0 + b * np.exp(-c * np.asarray(x, dtype=float)))


def logistic_gradient(x, a, b, c) -> np.ndarray:
    """d/d(a, b, c) of the logistic curve, shape (n, 3)"""
    x = np.atleast_1d(np.asarray(x, dtype=float))
    e = np.exp(-c * x)
    d = 1.0 + b * e
    return np.column_stack([1.0 / d, -a * e / d ** 2, a * b * x * e / d ** 2])


def linear_design(X) -> np.ndarray:
    """Design matrix with a leading intercept column, shape (n, p + 1)"""
    X = np.asarray(X, dtype=float)
    if X.ndim == 1:
        X = X.reshape(-1, 1)
    return np.column_stack([np.ones(X.shape[0]), X])


CURVES = {
    'exponential': (exponential, exponential_gradient),
    'logistic': (logistic, logistic_gradient),
}
