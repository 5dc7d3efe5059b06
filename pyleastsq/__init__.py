"""
PyLeastSq: dense nonlinear least squares with Gauss-Newton and
Levenberg-Marquardt optimizers.

Copyright (C) 2024 SGCX
Licensed under GPL-3.0
"""

__version__ = "1.0.0"

# Import main user-facing API
from .fit import least_squares, LeastSquaresFit
from .problem import create_problem, LeastSquaresProblem
from .checkers import (
    ConvergenceChecker,
    SimplePointChecker,
    SimpleVectorValueChecker,
    EvaluationRmsChecker,
)
from ._core.evaluation import Evaluation

# Import optimizer utilities
from ._optimizers import (
    get_optimizer,
    list_available_optimizers,
    Decomposition,
    GaussNewtonOptimizer,
    LevenbergMarquardtOptimizer,
    Optimum,
)

__all__ = [
    'least_squares',
    'LeastSquaresFit',
    'create_problem',
    'LeastSquaresProblem',
    'Evaluation',
    'ConvergenceChecker',
    'SimplePointChecker',
    'SimpleVectorValueChecker',
    'EvaluationRmsChecker',
    'get_optimizer',
    'list_available_optimizers',
    'Decomposition',
    'GaussNewtonOptimizer',
    'LevenbergMarquardtOptimizer',
    'Optimum',
]
