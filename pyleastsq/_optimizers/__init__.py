"""
Optimizer selection and management.

Provides a unified interface to the Gauss-Newton and Levenberg-Marquardt
optimizers.
"""

from .base import LeastSquaresOptimizer, Optimum
from .gauss_newton import Decomposition, GaussNewtonOptimizer
from .levenberg_marquardt import LevenbergMarquardtOptimizer

_OPTIMIZERS = {
    'levenberg-marquardt': LevenbergMarquardtOptimizer,
    'gauss-newton': GaussNewtonOptimizer,
}

_ALIASES = {
    'lm': 'levenberg-marquardt',
    'levenberg_marquardt': 'levenberg-marquardt',
    'gn': 'gauss-newton',
    'gauss_newton': 'gauss-newton',
}


def get_optimizer(optimizer: str = 'levenberg-marquardt', **options) -> LeastSquaresOptimizer:
    """
    Get an optimizer by name.

    Parameters
    ----------
    optimizer : str
        Optimizer selection:
        - 'levenberg-marquardt' (or 'lm'): trust-region method, robust default
        - 'gauss-newton' (or 'gn'): full-step method, needs a convergence checker
    **options
        Keyword arguments forwarded to the optimizer constructor, e.g.
        ``cost_relative_tolerance`` or ``decomposition``.

    Returns
    -------
    LeastSquaresOptimizer
        Optimizer instance

    Examples
    --------
    >>> optimizer = get_optimizer('lm', cost_relative_tolerance=1e-12)
    >>> optimizer = get_optimizer('gauss-newton', decomposition='cholesky')
    """
    if isinstance(optimizer, LeastSquaresOptimizer):
        if options:
            raise ValueError("options cannot be combined with an optimizer instance")
        return optimizer

    key = str(optimizer).lower()
    key = _ALIASES.get(key, key)
    if key not in _OPTIMIZERS:
        raise ValueError(
            f"Unknown optimizer: '{optimizer}'\n"
            f"Valid options: {list_available_optimizers() + sorted(_ALIASES)}"
        )
    return _OPTIMIZERS[key](**options)


def list_available_optimizers() -> list:
    """List names of available optimizers."""
    return list(_OPTIMIZERS)


__all__ = [
    'get_optimizer',
    'list_available_optimizers',
    'LeastSquaresOptimizer',
    'Optimum',
    'Decomposition',
    'GaussNewtonOptimizer',
    'LevenbergMarquardtOptimizer',
]
