"""
Utility functions.
"""

import numpy as np


def check_array(X, name='X', dtype=np.float64, finite=True):
    """Validate matrix input."""
    X = np.asarray(X, dtype=dtype)
    if X.ndim != 2:
        raise ValueError(f"{name} must be 2-dimensional")
    if finite and not np.all(np.isfinite(X)):
        raise ValueError(f"{name} contains NaN or Inf")
    return X


def check_vector(y, name='y', dtype=np.float64, finite=True):
    """Validate vector input."""
    y = np.asarray(y, dtype=dtype)
    if y.ndim == 0:
        y = y.reshape(1)
    if y.ndim != 1:
        raise ValueError(f"{name} must be 1-dimensional")
    if finite and not np.all(np.isfinite(y)):
        raise ValueError(f"{name} contains NaN or Inf")
    return y


def check_shape(a, shape, name):
    """Validate that an array has the expected shape."""
    if a.shape != shape:
        raise ValueError(f"{name} has shape {a.shape}, expected {shape}")
    return a


def frozen(a):
    """Return a read-only copy of an array."""
    a = np.array(a, dtype=np.float64)
    a.flags.writeable = False
    return a
