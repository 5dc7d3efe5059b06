"""
Levenberg-Marquardt optimizer.

Trust-region method in the style of MINPACK's lmder: one pivoted QR
decomposition of the weighted Jacobian per outer iteration, then an inner
loop that picks the LM parameter for the current trust-region radius and
tries steps until one reduces the cost enough to be accepted.

Algorithm:
---------
1. Evaluate, decompose J P = Q R, compute Q^T r
2. Stop if r is orthogonal to the columns of J (max cosine test)
3. Inner loop: find lambda with ||D dx(lambda)|| ~ delta, evaluate x + dx,
   compare actual and predicted reduction, update delta and lambda
4. Accept the step when ratio >= 1e-4, otherwise restore the previous point
5. Test the cost, parameter and orthogonality tolerances

Reference:
---------
J. J. More, "The Levenberg-Marquardt algorithm: implementation and theory",
Numerical Analysis, Lecture Notes in Mathematics 630 (1978).
"""

import logging
from dataclasses import dataclass, replace

import numpy as np

from .._core.qr import (
    QRDecomposition,
    determine_lm_direction,
    q_transpose_y,
    qr_decomposition_with_pivoting,
)
from ..exceptions import (
    ConfigurationError,
    ConvergenceError,
    CostToleranceError,
    OrthogonalityToleranceError,
    ParameterToleranceError,
)
from .base import LeastSquaresOptimizer, Optimum

logger = logging.getLogger(__name__)

EPS = np.finfo(np.float64).eps
TWO_EPS = 2 * EPS
SAFE_MIN = np.finfo(np.float64).tiny

# Step acceptance and trust-region update thresholds
ACCEPT_RATIO = 1.0e-4
SHRINK_RATIO = 0.25
EXPAND_RATIO = 0.75
MAX_LM_PARAMETER_ITERATIONS = 10


@dataclass(frozen=True)
class LevenbergMarquardtOptimizer(LeastSquaresOptimizer):
    """
    Levenberg-Marquardt least-squares optimizer.

    Parameters
    ----------
    initial_step_bound_factor : float, default=100
        Initial trust-region radius is this factor times ||D x0||, or the
        factor itself when x0 is zero. Usually in [0.1, 100].
    cost_relative_tolerance : float, default=1e-10
        Stop when both actual and predicted relative cost reductions are
        at most this.
    parameter_relative_tolerance : float, default=1e-10
        Stop when the relative change in the scaled point is at most this.
    ortho_tolerance : float, default=1e-10
        Stop when the cosine between r and every column of J is at most
        this.
    ranking_threshold : float, default=smallest normal double
        Squared column norms at or below this are treated as rank
        deficiency by the QR decomposition.

    Examples
    --------
    >>> optimizer = LevenbergMarquardtOptimizer().with_cost_relative_tolerance(1e-12)
    >>> optimum = optimizer.optimize(problem)
    """

    initial_step_bound_factor: float = 100.0
    cost_relative_tolerance: float = 1e-10
    parameter_relative_tolerance: float = 1e-10
    ortho_tolerance: float = 1e-10
    ranking_threshold: float = SAFE_MIN

    name = "levenberg-marquardt"

    def __post_init__(self):
        if not self.initial_step_bound_factor > 0:
            raise ConfigurationError(
                f"initial_step_bound_factor must be positive, "
                f"got {self.initial_step_bound_factor}"
            )
        for field_name in (
            'cost_relative_tolerance',
            'parameter_relative_tolerance',
            'ortho_tolerance',
            'ranking_threshold',
        ):
            if not getattr(self, field_name) >= 0:
                raise ConfigurationError(
                    f"{field_name} must be non-negative, "
                    f"got {getattr(self, field_name)}"
                )

    def with_initial_step_bound_factor(self, value: float):
        return replace(self, initial_step_bound_factor=value)

    def with_cost_relative_tolerance(self, value: float):
        return replace(self, cost_relative_tolerance=value)

    def with_parameter_relative_tolerance(self, value: float):
        return replace(self, parameter_relative_tolerance=value)

    def with_ortho_tolerance(self, value: float):
        return replace(self, ortho_tolerance=value)

    def with_ranking_threshold(self, value: float):
        return replace(self, ranking_threshold=value)

    def get_config(self) -> dict:
        return {
            'optimizer': self.name,
            'initial_step_bound_factor': self.initial_step_bound_factor,
            'cost_relative_tolerance': self.cost_relative_tolerance,
            'parameter_relative_tolerance': self.parameter_relative_tolerance,
            'ortho_tolerance': self.ortho_tolerance,
            'ranking_threshold': self.ranking_threshold,
        }

    def optimize(self, problem) -> Optimum:
        n_r = problem.observation_size
        n_c = problem.parameter_size
        iteration_counter = problem.get_iteration_counter()
        evaluation_counter = problem.get_evaluation_counter()
        checker = problem.convergence_checker

        solved_cols = min(n_r, n_c)
        lm_par = 0.0
        delta = 0.0
        x_norm = 0.0
        diag = np.zeros(n_c)

        evaluation_counter.increment_count()
        current = problem.evaluate(problem.start)
        current_cost = current.cost
        current_point = np.array(current.point)
        if not np.isfinite(current_cost):
            raise ConvergenceError(
                f"cost is not finite at the start point ({current_cost})"
            )

        first_iteration = True
        while True:
            iteration_counter.increment_count()
            previous = current

            qr = qr_decomposition_with_pivoting(
                current.jacobian, solved_cols, self.ranking_threshold
            )
            perm = qr.permutation
            jac_norm = qr.jac_norm
            a = qr.qr

            qtf = np.array(current.residuals)
            q_transpose_y(qtf, qr)

            # From here on the pivoted diagonal of the buffer holds R
            for k in range(solved_cols):
                pk = perm[k]
                a[k, pk] = qr.diag_r[pk]

            if first_iteration:
                # Scale by the column norms, unit scale for null columns
                diag = np.where(jac_norm == 0, 1.0, jac_norm)
                x_norm = np.linalg.norm(diag * current_point)
                if x_norm == 0:
                    delta = self.initial_step_bound_factor
                else:
                    delta = self.initial_step_bound_factor * x_norm

            max_cosine = 0.0
            if current_cost != 0:
                for j in range(solved_cols):
                    pj = perm[j]
                    s = jac_norm[pj]
                    if s != 0:
                        total = a[:j + 1, pj] @ qtf[:j + 1]
                        max_cosine = np.maximum(max_cosine, abs(total) / (s * current_cost))

            if max_cosine <= self.ortho_tolerance:
                logger.info(
                    f"Levenberg-Marquardt converged: residuals orthogonal to "
                    f"the jacobian (cost={current_cost:.6e})"
                )
                return Optimum(
                    current, evaluation_counter.count, iteration_counter.count
                )

            diag = np.maximum(diag, jac_norm)

            ratio = 0.0
            while ratio < ACCEPT_RATIO:
                old_x = current_point.copy()
                previous_cost = current_cost

                lm_par, lm_dir = self.determine_lm_parameter(
                    qtf, delta, diag, qr, solved_cols, lm_par
                )

                solved = perm[:solved_cols]
                lm_dir[solved] = -lm_dir[solved]
                current_point = old_x.copy()
                current_point[solved] = old_x[solved] + lm_dir[solved]
                lm_norm = np.linalg.norm(diag[solved] * lm_dir[solved])

                if first_iteration:
                    delta = min(delta, lm_norm)

                evaluation_counter.increment_count()
                current = problem.evaluate(current_point)
                current_cost = current.cost
                current_point = np.array(current.point)

                act_red = -1.0
                if 0.1 * current_cost < previous_cost:
                    r = current_cost / previous_cost
                    act_red = 1.0 - r * r

                # Predicted reduction from the linear model R P^T dx
                work = np.zeros(solved_cols)
                for j in range(solved_cols):
                    pj = perm[j]
                    work[:j + 1] += a[:j + 1, pj] * lm_dir[pj]
                pc2 = previous_cost * previous_cost
                coeff1 = (work @ work) / pc2
                coeff2 = lm_par * lm_norm * lm_norm / pc2
                pre_red = coeff1 + 2 * coeff2
                dir_der = -(coeff1 + coeff2)

                ratio = 0.0 if pre_red == 0 else act_red / pre_red

                if ratio <= SHRINK_RATIO:
                    if act_red < 0:
                        tmp = 0.5 * dir_der / (dir_der + 0.5 * act_red)
                    else:
                        tmp = 0.5
                    if 0.1 * current_cost >= previous_cost or tmp < 0.1:
                        tmp = 0.1
                    delta = tmp * min(delta, 10.0 * lm_norm)
                    lm_par /= tmp
                elif lm_par == 0 or ratio >= EXPAND_RATIO:
                    delta = 2 * lm_norm
                    lm_par *= 0.5

                logger.debug(
                    f"iteration {iteration_counter.count}: cost={current_cost:.6e} "
                    f"ratio={ratio:.4g} delta={delta:.4g} lm_par={lm_par:.4g}"
                )

                if ratio >= ACCEPT_RATIO:
                    first_iteration = False
                    x_norm = np.linalg.norm(diag * current_point)
                    if checker is not None and checker.converged(
                        iteration_counter.count, previous, current
                    ):
                        logger.info(
                            f"Levenberg-Marquardt converged by checker "
                            f"(cost={current_cost:.6e})"
                        )
                        return Optimum(
                            current, evaluation_counter.count, iteration_counter.count
                        )
                else:
                    # Rejected: restore the previous point
                    current_cost = previous_cost
                    current_point = old_x
                    current = previous

                if (
                    abs(act_red) <= self.cost_relative_tolerance
                    and pre_red <= self.cost_relative_tolerance
                    and ratio <= 2.0
                ) or delta <= self.parameter_relative_tolerance * x_norm:
                    logger.info(
                        f"Levenberg-Marquardt converged after "
                        f"{iteration_counter.count} iterations (cost={current_cost:.6e})"
                    )
                    return Optimum(
                        current, evaluation_counter.count, iteration_counter.count
                    )

                if abs(act_red) <= TWO_EPS and pre_red <= TWO_EPS and ratio <= 2.0:
                    raise CostToleranceError(self.cost_relative_tolerance)
                elif delta <= TWO_EPS * x_norm:
                    raise ParameterToleranceError(self.parameter_relative_tolerance)
                elif max_cosine <= TWO_EPS:
                    raise OrthogonalityToleranceError(self.ortho_tolerance)

    def determine_lm_parameter(
        self,
        qy: np.ndarray,
        delta: float,
        diag: np.ndarray,
        qr: QRDecomposition,
        solved_cols: int,
        lm_par: float,
    ):
        """
        Find the LM parameter for the current trust-region radius.

        Searches lambda >= 0 so that ||D dx(lambda)|| is within 10% of
        ``delta``, by Newton steps on the secular equation bracketed by
        [parl, paru]. Returns 0 when the Gauss-Newton direction already
        fits inside the region.

        Parameters
        ----------
        qy : ndarray, shape (m,)
            Q^T r
        delta : float
            Trust-region radius.
        diag : ndarray, shape (n,)
            Column scaling D.
        qr : QRDecomposition
            Current decomposition.
        solved_cols : int
            min(m, n)
        lm_par : float
            Previous LM parameter, used as the starting guess.

        Returns
        -------
        lm_par : float
            New LM parameter.
        lm_dir : ndarray, shape (n,)
            Direction for that parameter, before the sign flip.
        """
        a = qr.qr
        perm = qr.permutation
        rank = qr.rank
        diag_r = qr.diag_r
        n_c = a.shape[1]
        solved = perm[:solved_cols]

        # Gauss-Newton direction; null-space components are zero
        lm_dir = np.zeros(n_c)
        lm_dir[perm[:rank]] = qy[:rank]
        for k in range(rank - 1, -1, -1):
            pk = perm[k]
            ypk = lm_dir[pk] / diag_r[pk]
            lm_dir[perm[:k]] -= ypk * a[:k, pk]
            lm_dir[pk] = ypk

        work1 = np.zeros(n_c)
        work1[solved] = diag[solved] * lm_dir[solved]
        dx_norm = np.linalg.norm(work1[solved])
        fp = dx_norm - delta
        if fp <= 0.1 * delta:
            return 0.0, lm_dir

        # Lower bound from the Newton step, only for a full-rank jacobian
        parl = 0.0
        if rank == solved_cols:
            work1[solved] *= diag[solved] / dx_norm
            for j in range(solved_cols):
                pj = perm[j]
                total = a[:j, pj] @ work1[perm[:j]]
                work1[pj] = (work1[pj] - total) / diag_r[pj]
            sum2 = work1[solved] @ work1[solved]
            parl = fp / (delta * sum2)

        # Upper bound from the scaled gradient
        gradient = np.empty(solved_cols)
        for j in range(solved_cols):
            pj = perm[j]
            gradient[j] = (a[:j + 1, pj] @ qy[:j + 1]) / diag[pj]
        g_norm = np.linalg.norm(gradient)
        paru = g_norm / delta
        if paru == 0:
            paru = SAFE_MIN / min(delta, 0.1)

        lm_par = min(paru, max(lm_par, parl))
        if lm_par == 0:
            lm_par = g_norm / dx_norm

        for iteration in range(1, MAX_LM_PARAMETER_ITERATIONS + 1):
            if lm_par == 0:
                lm_par = max(SAFE_MIN, 0.001 * paru)

            s_par = np.sqrt(lm_par)
            work1 = np.zeros(n_c)
            work1[solved] = s_par * diag[solved]
            lm_dir, s_diag = determine_lm_direction(qy, work1, qr, solved_cols)

            work3 = np.zeros(n_c)
            work3[solved] = diag[solved] * lm_dir[solved]
            dx_norm = np.linalg.norm(work3[solved])
            previous_fp = fp
            fp = dx_norm - delta

            if (
                abs(fp) <= 0.1 * delta
                or (parl == 0 and fp <= previous_fp and previous_fp < 0)
                or iteration == MAX_LM_PARAMETER_ITERATIONS
            ):
                return lm_par, lm_dir

            # Newton correction
            work1 = np.zeros(n_c)
            work1[solved] = work3[solved] * diag[solved] / dx_norm
            for j in range(solved_cols):
                pj = perm[j]
                work1[pj] /= s_diag[j]
                work1[perm[j + 1:solved_cols]] -= a[j + 1:solved_cols, pj] * work1[pj]
            sum2 = work1[solved] @ work1[solved]
            correction = fp / (delta * sum2)

            if fp > 0:
                parl = max(parl, lm_par)
            elif fp < 0:
                paru = min(paru, lm_par)

            lm_par = max(parl, lm_par + correction)

        return lm_par, lm_dir
