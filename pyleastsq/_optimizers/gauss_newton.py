"""
Gauss-Newton optimizer.

Full-step Newton updates on the linearised problem, with a selectable
linear solver. There is no trust region: on strongly nonlinear or badly
scaled problems this optimizer can diverge, use Levenberg-Marquardt there.
"""

import logging
from enum import Enum

import numpy as np
from scipy.linalg import (
    LinAlgError,
    cho_factor,
    cho_solve,
    lstsq,
    lu_factor,
    lu_solve,
    qr,
    solve_triangular,
)

from ..exceptions import ConfigurationError, ConvergenceError
from .base import LeastSquaresOptimizer, Optimum

logger = logging.getLogger(__name__)

SINGULARITY_THRESHOLD = 1e-11


def compute_normal_matrix(jacobian: np.ndarray, residuals: np.ndarray):
    """Normal equations: returns (J^T J, J^T r)."""
    return jacobian.T @ jacobian, jacobian.T @ residuals


class Decomposition(Enum):
    """Linear solver used for the Gauss-Newton step."""
    LU = "lu"
    QR = "qr"
    CHOLESKY = "cholesky"
    SVD = "svd"

    def solve(self, jacobian: np.ndarray, residuals: np.ndarray) -> np.ndarray:
        """
        Solve J dx = r in the least-squares sense.

        Raises
        ------
        ConvergenceError
            LU and Cholesky on a singular normal matrix, QR on a rank-0
            Jacobian.
        """
        if self is Decomposition.LU:
            return _solve_lu(jacobian, residuals)
        if self is Decomposition.QR:
            return _solve_qr(jacobian, residuals)
        if self is Decomposition.CHOLESKY:
            return _solve_cholesky(jacobian, residuals)
        return _solve_svd(jacobian, residuals)


def _singular(method: str) -> ConvergenceError:
    return ConvergenceError(f"unable to solve singular problem ({method})")


def _solve_lu(jacobian, residuals):
    normal, jtr = compute_normal_matrix(jacobian, residuals)
    try:
        lu, piv = lu_factor(normal, check_finite=True)
    except (LinAlgError, ValueError) as e:
        raise _singular("LU") from e
    if np.any(np.abs(np.diag(lu)) < SINGULARITY_THRESHOLD):
        raise _singular("LU")
    return lu_solve((lu, piv), jtr)


def _solve_cholesky(jacobian, residuals):
    normal, jtr = compute_normal_matrix(jacobian, residuals)
    try:
        factor, lower = cho_factor(normal, lower=True)
    except (LinAlgError, ValueError) as e:
        raise _singular("Cholesky") from e
    if np.any(np.diag(factor) <= SINGULARITY_THRESHOLD):
        raise _singular("Cholesky")
    return cho_solve((factor, lower), jtr)


def _solve_qr(jacobian, residuals):
    # Pivoted QR of J itself; columns past the numeric rank get no step
    n = jacobian.shape[1]
    try:
        Q, R, P = qr(jacobian, mode='economic', pivoting=True)
    except (LinAlgError, ValueError) as e:
        raise _singular("QR") from e

    R_diag = np.abs(np.diag(R))
    rank = int(np.sum(R_diag > SINGULARITY_THRESHOLD))
    if rank == 0:
        raise _singular("QR")
    if rank < n:
        logger.debug(f"QR step on rank-deficient jacobian (rank {rank} < {n})")

    qty = Q.T @ residuals
    dx = np.zeros(n)
    dx[P[:rank]] = solve_triangular(R[:rank, :rank], qty[:rank], lower=False)
    return dx


def _solve_svd(jacobian, residuals):
    # Minimum-norm solution
    dx, _, _, _ = lstsq(jacobian, residuals, lapack_driver='gelsd')
    return dx


class GaussNewtonOptimizer(LeastSquaresOptimizer):
    """
    Gauss-Newton least-squares optimizer.

    Iterates x <- x + dx with dx solving J dx = r. The problem must carry a
    convergence checker; it is the only stopping rule.

    Parameters
    ----------
    decomposition : Decomposition or str, default=Decomposition.QR
        Linear solver for each step.

    Examples
    --------
    >>> optimizer = GaussNewtonOptimizer(Decomposition.CHOLESKY)
    >>> optimum = optimizer.optimize(problem)
    """

    name = "gauss-newton"

    def __init__(self, decomposition=Decomposition.QR):
        if isinstance(decomposition, str):
            try:
                decomposition = Decomposition(decomposition.lower())
            except ValueError:
                raise ConfigurationError(
                    f"Unknown decomposition: '{decomposition}'\n"
                    f"Valid options: {[d.value for d in Decomposition]}"
                ) from None
        self.decomposition = decomposition

    def with_decomposition(self, decomposition) -> "GaussNewtonOptimizer":
        return GaussNewtonOptimizer(decomposition)

    def optimize(self, problem) -> Optimum:
        evaluation_counter = problem.get_evaluation_counter()
        iteration_counter = problem.get_iteration_counter()
        checker = problem.convergence_checker
        if checker is None:
            raise ConfigurationError(
                "Gauss-Newton requires a convergence checker"
            )

        current_point = np.array(problem.start, dtype=np.float64)
        current = None
        while True:
            iteration_counter.increment_count()

            previous = current
            evaluation_counter.increment_count()
            current = problem.evaluate(current_point)
            current_point = np.array(current.point)

            logger.debug(
                f"iteration {iteration_counter.count}: cost={current.cost:.6e}"
            )

            if previous is not None and checker.converged(
                iteration_counter.count, previous, current
            ):
                logger.info(
                    f"Gauss-Newton converged after {iteration_counter.count} "
                    f"iterations (cost={current.cost:.6e})"
                )
                return Optimum(
                    current, evaluation_counter.count, iteration_counter.count
                )

            dx = self.decomposition.solve(current.jacobian, current.residuals)
            current_point = current_point + dx

    def get_config(self) -> dict:
        return {
            'optimizer': self.name,
            'decomposition': self.decomposition.value,
        }

    def __repr__(self):
        return f"GaussNewtonOptimizer(decomposition={self.decomposition.name})"
