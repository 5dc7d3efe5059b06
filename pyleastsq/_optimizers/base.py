"""
Abstract base classes for optimizers.

Defines the interface all optimizers must implement and the result they
return.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np

from .._core.evaluation import Evaluation


@dataclass(frozen=True)
class Optimum:
    """Best evaluation found plus the budget that was consumed."""
    evaluation: Evaluation
    evaluations: int
    iterations: int

    @property
    def point(self) -> np.ndarray:
        return self.evaluation.point

    @property
    def residuals(self) -> np.ndarray:
        return self.evaluation.residuals

    @property
    def jacobian(self) -> np.ndarray:
        return self.evaluation.jacobian

    @property
    def cost(self) -> float:
        return self.evaluation.cost

    @property
    def chi_square(self) -> float:
        return self.evaluation.chi_square

    @property
    def rms(self) -> float:
        return self.evaluation.rms

    def get_reduced_chi_square(self, n_fitted: int) -> float:
        return self.evaluation.get_reduced_chi_square(n_fitted)

    def get_covariances(self, threshold: float = 1e-14) -> np.ndarray:
        return self.evaluation.get_covariances(threshold)

    def get_sigma(self, threshold: float = 1e-14) -> np.ndarray:
        return self.evaluation.get_sigma(threshold)


class LeastSquaresOptimizer(ABC):
    """Abstract base class for all least-squares optimizers."""

    name = "base"

    @abstractmethod
    def optimize(self, problem) -> Optimum:
        """
        Solve a least-squares problem.

        Parameters
        ----------
        problem : LeastSquaresProblem
            Start point, evaluator, checker and budgets.

        Returns
        -------
        Optimum
            Best evaluation with the evaluation and iteration counts.
        """
        pass

    @abstractmethod
    def get_config(self) -> dict:
        """Get optimizer settings."""
        pass
