"""
Evaluations of a least-squares problem at a point.

An evaluation bundles the point, the weighted residuals and the weighted
Jacobian, and derives the fit statistics from them.

Conventions
-----------
- residuals = target - model(point)
- jacobian  = d model / d point (not of the residuals)
- cost      = ||residuals||_2, with no 0.5 factor anywhere
"""

from abc import ABC, abstractmethod
from functools import cached_property
from typing import Callable, Tuple

import numpy as np
from scipy.linalg import qr, solve_triangular

from ..exceptions import SingularMatrixError
from .._utils import frozen


class Evaluation(ABC):
    """Snapshot of a least-squares problem at a single point."""

    @property
    @abstractmethod
    def point(self) -> np.ndarray:
        """Parameter vector, shape (n,)."""

    @property
    @abstractmethod
    def residuals(self) -> np.ndarray:
        """Weighted residuals, shape (m,)."""

    @property
    @abstractmethod
    def jacobian(self) -> np.ndarray:
        """Weighted Jacobian, shape (m, n)."""

    @property
    def observation_size(self) -> int:
        return self.residuals.shape[0]

    @property
    def cost(self) -> float:
        """L2 norm of the residuals."""
        r = self.residuals
        return float(np.sqrt(r @ r))

    @property
    def chi_square(self) -> float:
        r = self.residuals
        return float(r @ r)

    @property
    def rms(self) -> float:
        """Root mean square of the residuals."""
        cost = self.cost
        return float(np.sqrt(cost * cost / self.observation_size))

    def get_reduced_chi_square(self, n_fitted: int) -> float:
        """Chi-square divided by the residual degrees of freedom."""
        dof = self.observation_size - n_fitted
        if dof <= 0:
            raise ValueError(
                f"no residual degrees of freedom: {self.observation_size} "
                f"observations for {n_fitted} fitted parameters"
            )
        return self.chi_square / dof

    def get_covariances(self, threshold: float = 1e-14) -> np.ndarray:
        """
        Covariance matrix of the parameters, (J^T J)^-1.

        Parameters
        ----------
        threshold : float
            Singularity threshold on the diagonal of R in the QR
            decomposition of J^T J.

        Raises
        ------
        SingularMatrixError
            If J^T J is singular at the given threshold.
        """
        j = self.jacobian
        jtj = j.T @ j
        Q, R = qr(jtj)
        if np.any(np.abs(np.diag(R)) <= threshold):
            raise SingularMatrixError(
                f"J^T J is singular (threshold {threshold:g})"
            )
        return solve_triangular(R, Q.T)

    def get_sigma(self, threshold: float = 1e-14) -> np.ndarray:
        """Square roots of the diagonal of the covariance matrix."""
        return np.sqrt(np.diag(self.get_covariances(threshold)))

    def __repr__(self):
        return (
            f"{type(self).__name__}(n={self.point.shape[0]}, "
            f"m={self.observation_size}, cost={self.cost:.6g})"
        )


class ArrayEvaluation(Evaluation):
    """Evaluation backed by precomputed arrays (copied and made read-only)."""

    def __init__(self, point, residuals, jacobian):
        self._point = frozen(point)
        self._residuals = frozen(residuals)
        self._jacobian = frozen(jacobian)

    @property
    def point(self) -> np.ndarray:
        return self._point

    @property
    def residuals(self) -> np.ndarray:
        return self._residuals

    @property
    def jacobian(self) -> np.ndarray:
        return self._jacobian


class LazyEvaluation(Evaluation):
    """
    Evaluation that defers calling the model.

    ``compute`` is called once, the first time residuals or the Jacobian are
    read, and must return the ``(residuals, jacobian)`` pair.
    """

    def __init__(self, point, compute: Callable[[np.ndarray], Tuple[np.ndarray, np.ndarray]]):
        self._point = frozen(point)
        self._compute = compute

    @cached_property
    def _values(self):
        residuals, jacobian = self._compute(self._point)
        return frozen(residuals), frozen(jacobian)

    @property
    def point(self) -> np.ndarray:
        return self._point

    @property
    def residuals(self) -> np.ndarray:
        return self._values[0]

    @property
    def jacobian(self) -> np.ndarray:
        return self._values[1]


def apply_weight(residuals, jacobian, weight_sqrt):
    """
    Apply a square-root weight matrix to residuals and Jacobian.

    ``weight_sqrt`` is either a vector (diagonal weights) or a full matrix.
    """
    if weight_sqrt.ndim == 1:
        return weight_sqrt * residuals, weight_sqrt[:, np.newaxis] * jacobian
    return weight_sqrt @ residuals, weight_sqrt @ jacobian


__all__ = [
    "Evaluation",
    "ArrayEvaluation",
    "LazyEvaluation",
    "apply_weight",
]
