"""
Convergence checkers.

A checker decides, from two consecutive evaluations, whether an optimizer
may stop. Any callable ``f(iteration, previous, current) -> bool`` can be
used where a checker is expected; see ``as_checker``.
"""

from abc import ABC, abstractmethod
from typing import Callable

import numpy as np

from ._core.evaluation import Evaluation
from .exceptions import ConfigurationError


class ConvergenceChecker(ABC):
    """Base class for convergence checkers."""

    @abstractmethod
    def converged(self, iteration: int, previous: Evaluation, current: Evaluation) -> bool:
        """Return True if the optimizer may stop at ``current``."""
        pass

    def __call__(self, iteration, previous, current):
        return self.converged(iteration, previous, current)


class _FunctionChecker(ConvergenceChecker):
    """Adapter for a plain function."""

    def __init__(self, function: Callable[[int, Evaluation, Evaluation], bool]):
        self.function = function

    def converged(self, iteration, previous, current):
        return bool(self.function(iteration, previous, current))

    def __repr__(self):
        return f"_FunctionChecker({self.function!r})"


def as_checker(checker):
    """Wrap a callable into a ConvergenceChecker (None passes through)."""
    if checker is None or isinstance(checker, ConvergenceChecker):
        return checker
    if callable(checker):
        return _FunctionChecker(checker)
    raise TypeError(
        f"checker must be a ConvergenceChecker or a callable, got {type(checker).__name__}"
    )


class _ThresholdChecker(ConvergenceChecker):
    """Element-wise relative/absolute threshold test on a vector."""

    def __init__(
        self,
        relative_threshold: float,
        absolute_threshold: float,
        max_iteration_count: int = -1,
    ):
        if relative_threshold <= 0 and absolute_threshold <= 0:
            raise ConfigurationError(
                "at least one of relative_threshold and absolute_threshold "
                "must be positive"
            )
        if max_iteration_count != -1 and max_iteration_count <= 0:
            raise ConfigurationError(
                f"max_iteration_count must be positive, got {max_iteration_count}"
            )
        self.relative_threshold = relative_threshold
        self.absolute_threshold = absolute_threshold
        self.max_iteration_count = max_iteration_count

    @abstractmethod
    def _vector(self, evaluation: Evaluation) -> np.ndarray:
        """Vector compared between consecutive evaluations."""

    def converged(self, iteration, previous, current):
        if self.max_iteration_count != -1 and iteration >= self.max_iteration_count:
            return True

        p = self._vector(previous)
        c = self._vector(current)
        difference = np.abs(p - c)
        size = np.maximum(np.abs(p), np.abs(c))
        # Each component must pass either the relative or the absolute test
        failed = (difference > size * self.relative_threshold) & (
            difference > self.absolute_threshold
        )
        return not np.any(failed)

    def __repr__(self):
        return (
            f"{type(self).__name__}(relative_threshold={self.relative_threshold}, "
            f"absolute_threshold={self.absolute_threshold}, "
            f"max_iteration_count={self.max_iteration_count})"
        )


class SimplePointChecker(_ThresholdChecker):
    """
    Converged when every coordinate of the point has stopped moving.

    Parameters
    ----------
    relative_threshold : float
    absolute_threshold : float
    max_iteration_count : int, default=-1
        If positive, also report convergence once this iteration is
        reached. -1 disables the limit.
    """

    def _vector(self, evaluation):
        return evaluation.point


class SimpleVectorValueChecker(_ThresholdChecker):
    """Converged when every residual has stopped changing."""

    def _vector(self, evaluation):
        return evaluation.residuals


class EvaluationRmsChecker(ConvergenceChecker):
    """
    Converged when the RMS of the residuals stops changing.

    Parameters
    ----------
    relative_tolerance : float
    absolute_tolerance : float, optional
        Defaults to ``relative_tolerance``.
    """

    def __init__(self, relative_tolerance: float, absolute_tolerance=None):
        if absolute_tolerance is None:
            absolute_tolerance = relative_tolerance
        if relative_tolerance < 0 or absolute_tolerance < 0:
            raise ConfigurationError("tolerances must be non-negative")
        self.relative_tolerance = relative_tolerance
        self.absolute_tolerance = absolute_tolerance

    def converged(self, iteration, previous, current):
        p = previous.rms
        c = current.rms
        difference = abs(p - c)
        return (
            difference <= self.absolute_tolerance
            or difference <= self.relative_tolerance * max(abs(p), abs(c))
        )

    def __repr__(self):
        return (
            f"EvaluationRmsChecker(relative_tolerance={self.relative_tolerance}, "
            f"absolute_tolerance={self.absolute_tolerance})"
        )


__all__ = [
    "ConvergenceChecker",
    "SimplePointChecker",
    "SimpleVectorValueChecker",
    "EvaluationRmsChecker",
    "as_checker",
]
