"""
Least-squares problem definition.

A problem bundles the start point, the evaluator, an optional convergence
checker and the evaluation/iteration budgets. Optimizers only read it.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional

import numpy as np
from scipy.linalg import eigh

from ._core.evaluation import ArrayEvaluation, Evaluation, LazyEvaluation, apply_weight
from ._core.incrementor import Incrementor
from ._utils import check_array, check_shape, check_vector
from .checkers import as_checker
from .exceptions import (
    ConfigurationError,
    TooManyEvaluationsError,
    TooManyIterationsError,
)


class LeastSquaresProblem(ABC):
    """Abstract least-squares problem."""

    @property
    @abstractmethod
    def start(self) -> np.ndarray:
        """Initial guess, shape (n,)."""

    @property
    @abstractmethod
    def observation_size(self) -> int:
        """Number of residuals m."""

    @property
    @abstractmethod
    def parameter_size(self) -> int:
        """Number of parameters n."""

    @property
    @abstractmethod
    def convergence_checker(self):
        """Convergence checker, or None."""

    @abstractmethod
    def evaluate(self, point) -> Evaluation:
        """Evaluate the problem at ``point``."""

    @abstractmethod
    def get_evaluation_counter(self) -> Incrementor:
        """New counter enforcing the evaluation budget."""

    @abstractmethod
    def get_iteration_counter(self) -> Incrementor:
        """New counter enforcing the iteration budget."""


def weight_square_root(weight) -> np.ndarray:
    """
    Square root of a weight vector or matrix.

    A 1-D array is a diagonal weight; a 2-D array must be a symmetric
    positive semi-definite matrix and is rooted through its
    eigendecomposition.
    """
    weight = np.asarray(weight, dtype=np.float64)
    if weight.ndim == 1:
        if np.any(weight < 0):
            raise ValueError("weights must be non-negative")
        return np.sqrt(weight)

    weight = check_array(weight, name='weight')
    if weight.shape[0] != weight.shape[1]:
        raise ValueError(f"weight matrix must be square, got {weight.shape}")
    if not np.allclose(weight, weight.T):
        raise ValueError("weight matrix must be symmetric")
    eigenvalues, eigenvectors = eigh(weight)
    if np.any(eigenvalues < -1e-12 * max(1.0, np.max(np.abs(eigenvalues)))):
        raise ValueError("weight matrix must be positive semi-definite")
    root = np.sqrt(np.clip(eigenvalues, 0.0, None))
    return (eigenvectors * root) @ eigenvectors.T


class LocalLeastSquaresProblem(LeastSquaresProblem):
    """
    Problem built from a model function and observed target values.

    Residuals are ``target - value`` and the Jacobian is that of the model,
    both multiplied by the square root of the weight when one is given.
    Use ``create_problem`` rather than instantiating directly.
    """

    def __init__(
        self,
        model: Callable,
        target: np.ndarray,
        start: np.ndarray,
        jacobian: Optional[Callable] = None,
        weight_sqrt: Optional[np.ndarray] = None,
        checker=None,
        max_evaluations: int = 1000,
        max_iterations: int = 1000,
        lazy_evaluation: bool = False,
        parameter_validator: Optional[Callable] = None,
    ):
        if max_evaluations <= 0:
            raise ConfigurationError(
                f"max_evaluations must be positive, got {max_evaluations}"
            )
        if max_iterations <= 0:
            raise ConfigurationError(
                f"max_iterations must be positive, got {max_iterations}"
            )
        self.model = model
        self.model_jacobian = jacobian
        self.target = target
        self._start = start
        self.weight_sqrt = weight_sqrt
        self._checker = as_checker(checker)
        self.max_evaluations = int(max_evaluations)
        self.max_iterations = int(max_iterations)
        self.lazy_evaluation = lazy_evaluation
        self.parameter_validator = parameter_validator

    @property
    def start(self) -> np.ndarray:
        return self._start.copy()

    @property
    def observation_size(self) -> int:
        return self.target.shape[0]

    @property
    def parameter_size(self) -> int:
        return self._start.shape[0]

    @property
    def convergence_checker(self):
        return self._checker

    def get_evaluation_counter(self) -> Incrementor:
        return Incrementor(self.max_evaluations, TooManyEvaluationsError)

    def get_iteration_counter(self) -> Incrementor:
        return Incrementor(self.max_iterations, TooManyIterationsError)

    def _compute(self, point):
        """Weighted (residuals, jacobian) at an already validated point."""
        m, n = self.observation_size, self.parameter_size
        if self.model_jacobian is None:
            value, jac = self.model(point)
        else:
            value = self.model(point)
            jac = self.model_jacobian(point)

        # Model outputs may be infinite (soft failure), never the wrong shape
        value = check_shape(
            check_vector(value, name='model value', finite=False), (m,), 'model value'
        )
        jac = check_shape(
            check_array(jac, name='model jacobian', finite=False), (m, n), 'model jacobian'
        )

        residuals = self.target - value
        if self.weight_sqrt is not None:
            residuals, jac = apply_weight(residuals, jac, self.weight_sqrt)
        return residuals, jac

    def evaluate(self, point) -> Evaluation:
        point = check_vector(point, name='point', finite=False)
        check_shape(point, (self.parameter_size,), 'point')
        if self.parameter_validator is not None:
            point = check_vector(self.parameter_validator(point.copy()), name='point', finite=False)
            check_shape(point, (self.parameter_size,), 'validated point')

        if self.lazy_evaluation:
            return LazyEvaluation(point, self._compute)
        residuals, jac = self._compute(point)
        return ArrayEvaluation(point, residuals, jac)

    def __repr__(self):
        return (
            f"LocalLeastSquaresProblem(m={self.observation_size}, "
            f"n={self.parameter_size}, max_evaluations={self.max_evaluations}, "
            f"max_iterations={self.max_iterations})"
        )


def create_problem(
    model: Callable,
    target,
    start,
    jacobian: Optional[Callable] = None,
    weight=None,
    checker=None,
    max_evaluations: int = 1000,
    max_iterations: int = 1000,
    lazy_evaluation: bool = False,
    parameter_validator: Optional[Callable] = None,
) -> LocalLeastSquaresProblem:
    """
    Build a least-squares problem from a model function.

    Parameters
    ----------
    model : callable
        ``model(point)`` returning ``(value, jacobian)``, or only ``value``
        when ``jacobian`` is given. ``value`` has shape (m,), the Jacobian
        (m, n).
    target : array_like, shape (m,)
        Observed values.
    start : array_like, shape (n,)
        Initial guess.
    jacobian : callable, optional
        ``jacobian(point)`` returning the model Jacobian.
    weight : array_like, optional
        Diagonal weights, shape (m,), or a weight matrix, shape (m, m).
    checker : ConvergenceChecker or callable, optional
        Required by Gauss-Newton, optional for Levenberg-Marquardt.
    max_evaluations : int, default=1000
        Evaluation budget.
    max_iterations : int, default=1000
        Iteration budget.
    lazy_evaluation : bool, default=False
        Defer model calls until residuals or Jacobian are read.
    parameter_validator : callable, optional
        ``validator(point) -> point`` applied before every evaluation, for
        example to clip parameters into a valid domain.

    Returns
    -------
    LocalLeastSquaresProblem

    Examples
    --------
    >>> x = np.arange(10.0)
    >>> def line(p):
    ...     return p[0] * x + p[1], np.column_stack([x, np.ones_like(x)])
    >>> problem = create_problem(line, 3 * x + 2, [1.0, 1.0])
    """
    target = check_vector(target, name='target').copy()
    start = check_vector(start, name='start').copy()
    if not callable(model):
        raise TypeError("model must be callable")
    if jacobian is not None and not callable(jacobian):
        raise TypeError("jacobian must be callable")

    weight_sqrt = None
    if weight is not None:
        weight_sqrt = weight_square_root(weight)
        if weight_sqrt.shape[0] != target.shape[0]:
            raise ValueError(
                f"weight has size {weight_sqrt.shape[0]}, "
                f"expected {target.shape[0]} (number of observations)"
            )

    return LocalLeastSquaresProblem(
        model=model,
        target=target,
        start=start,
        jacobian=jacobian,
        weight_sqrt=weight_sqrt,
        checker=checker,
        max_evaluations=max_evaluations,
        max_iterations=max_iterations,
        lazy_evaluation=lazy_evaluation,
        parameter_validator=parameter_validator,
    )


__all__ = [
    "LeastSquaresProblem",
    "LocalLeastSquaresProblem",
    "create_problem",
    "weight_square_root",
]
