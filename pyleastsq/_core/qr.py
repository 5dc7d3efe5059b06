"""
QR decomposition with column pivoting.

Householder QR used by the Levenberg-Marquardt optimizer, together with the
two operations that consume it: applying Q^T to a vector and solving the
damped least-squares system for the LM direction.

Q and R are never formed explicitly. The decomposition owns one working
buffer ``qr`` with two logical views (see QRDecomposition).
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from ..exceptions import QRDecompositionError


@dataclass
class QRDecomposition:
    """
    Result of QR decomposition with pivoting.

    Column ``pk = permutation[k]`` of ``qr`` holds, in rows ``0..k-1``, the
    off-diagonal part of column k of R and, in rows ``k..m-1``, the
    Householder vector of step k (non-unit, first entry ``a_kk - alpha``).
    The diagonal of R is kept apart in ``diag_r`` so the vector and R can
    share storage. The LM optimizer later writes ``diag_r`` onto the
    diagonal and uses the strict lower triangle as scratch space.
    """
    qr: np.ndarray           # Working buffer, shape (m, n), original column order
    permutation: np.ndarray  # Pivot order: solved column k -> original column
    rank: int                # Numeric rank
    diag_r: np.ndarray       # Diagonal of R, indexed by original column
    jac_norm: np.ndarray     # Column norms before pivoting
    beta: np.ndarray         # Householder coefficients, indexed by original column

    def householder_vector(self, k: int) -> np.ndarray:
        """Householder vector of step k (rows k..m-1 of the pivoted column)."""
        return self.qr[k:, self.permutation[k]]

    def r_matrix(self) -> np.ndarray:
        """
        Upper-triangular R in pivoted column order, shape (n, n).

        Only meaningful right after the decomposition, before the LM
        optimizer reuses the strict lower triangle.
        """
        n_r, n_c = self.qr.shape
        size = min(n_r, n_c)
        R = np.zeros((size, n_c))
        for k in range(n_c):
            pk = self.permutation[k]
            rows = min(k, size)
            R[:rows, k] = self.qr[:rows, pk]
            if k < size:
                R[k, k] = self.diag_r[pk]
        return R


def qr_decomposition_with_pivoting(
    jacobian: np.ndarray,
    solved_cols: int,
    ranking_threshold: float,
) -> QRDecomposition:
    """
    Decompose the negated weighted Jacobian as Q R P^T.

    At each step the remaining column with the largest squared norm is
    moved to the front (through the permutation only), so that the
    diagonal of R is non-increasing in magnitude and rank deficiency
    shows up as a trailing block of negligible columns.

    Parameters
    ----------
    jacobian : ndarray, shape (m, n)
        Weighted Jacobian. It is copied; the copy becomes the ``qr`` buffer.
    solved_cols : int
        min(m, n)
    ranking_threshold : float
        Squared column norms at or below this value are treated as zero.

    Returns
    -------
    result : QRDecomposition

    Raises
    ------
    QRDecompositionError
        If a column norm is infinite or NaN.
    """
    a = -np.array(jacobian, dtype=np.float64)
    n_r, n_c = a.shape
    permutation = np.arange(n_c)
    diag_r = np.zeros(n_c)
    beta = np.zeros(n_c)
    jac_norm = np.sqrt(np.einsum('ij,ij->j', a, a))

    for k in range(n_c):
        # Squared norms of the remaining columns over rows k..m-1
        remaining = a[k:, permutation[k:]]
        norms2 = np.einsum('ij,ij->j', remaining, remaining)
        if not np.all(np.isfinite(norms2)):
            raise QRDecompositionError(n_r, n_c)

        next_column = k + int(np.argmax(norms2))
        ak2 = norms2[next_column - k]
        if ak2 <= ranking_threshold:
            return QRDecomposition(a, permutation, k, diag_r, jac_norm, beta)

        pk = permutation[next_column]
        permutation[next_column] = permutation[k]
        permutation[k] = pk

        akk = a[k, pk]
        alpha = -np.sqrt(ak2) if akk > 0 else np.sqrt(ak2)
        betak = 1.0 / (ak2 - akk * alpha)
        beta[pk] = betak
        diag_r[pk] = alpha
        a[k, pk] -= alpha

        # Reflect the columns that are still to be processed
        v = a[k:, pk]
        rest = permutation[k + 1:]
        if rest.size:
            block = a[k:, rest]
            gamma = betak * (v @ block)
            a[k:, rest] = block - np.outer(v, gamma)

    return QRDecomposition(a, permutation, solved_cols, diag_r, jac_norm, beta)


def q_transpose_y(y: np.ndarray, qr: QRDecomposition) -> np.ndarray:
    """
    Compute Q^T y in place.

    Parameters
    ----------
    y : ndarray, shape (m,)
        Vector to transform, overwritten with the result.
    qr : QRDecomposition
        Decomposition whose Householder vectors are still intact.
    """
    a = qr.qr
    for k in range(a.shape[1]):
        pk = qr.permutation[k]
        v = a[k:, pk]
        gamma = (v @ y[k:]) * qr.beta[pk]
        y[k:] -= gamma * v
    return y


def _givens(rkk: float, dk: float) -> Tuple[float, float]:
    """Rotation (cos, sin) that annihilates ``dk`` against ``rkk``."""
    if abs(rkk) < abs(dk):
        cotan = rkk / dk
        sin = 1.0 / np.sqrt(1.0 + cotan * cotan)
        return sin * cotan, sin
    tan = dk / rkk
    cos = 1.0 / np.sqrt(1.0 + tan * tan)
    return cos, cos * tan


def determine_lm_direction(
    qy: np.ndarray,
    diag: np.ndarray,
    qr: QRDecomposition,
    solved_cols: int,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Solve the damped system (R; D) x = (Q^T r; 0) in the least-squares sense.

    D = diag(diag) is eliminated row by row with Givens rotations, giving
    an upper-triangular S with S^T S = R^T R + D^T D. If S is singular the
    components from the first zero diagonal onwards are set to zero and
    the leading non-singular block is back-substituted.

    The strict lower triangle of ``qr.qr`` receives S (transposed); the
    upper triangle and the diagonal of R are left unchanged.

    Parameters
    ----------
    qy : ndarray, shape (m,)
        Q^T r; only the first ``solved_cols`` entries are read.
    diag : ndarray, shape (n,)
        Diagonal of D, original column order.
    qr : QRDecomposition
        Decomposition with R's diagonal already written onto ``qr.qr``.
    solved_cols : int
        min(m, n)

    Returns
    -------
    lm_dir : ndarray, shape (n,)
        Solution, original column order.
    s_diag : ndarray, shape (solved_cols,)
        Diagonal of S, pivoted order.
    """
    a = qr.qr
    perm = qr.permutation
    n_c = a.shape[1]
    sc = solved_cols

    # Copy R into the strict lower triangle, keep its diagonal and Q^T r
    for j in range(sc):
        pj = perm[j]
        a[j + 1:sc, pj] = a[j, perm[j + 1:sc]]
    r_diag = qr.diag_r[perm[:sc]].copy()
    work = np.array(qy[:sc], dtype=np.float64)

    s_diag = np.zeros(sc)
    for j in range(sc):
        pj = perm[j]
        if diag[pj] != 0:
            s_diag[j + 1:] = 0.0
            s_diag[j] = diag[pj]
            qtbpj = 0.0
            for k in range(j, sc):
                pk = perm[k]
                if s_diag[k] == 0:
                    continue
                rkk = a[k, pk]
                cos, sin = _givens(rkk, s_diag[k])
                a[k, pk] = cos * rkk + sin * s_diag[k]
                temp = cos * work[k] + sin * qtbpj
                qtbpj = -sin * work[k] + cos * qtbpj
                work[k] = temp

                rik = a[k + 1:sc, pk].copy()
                sik = s_diag[k + 1:sc].copy()
                a[k + 1:sc, pk] = cos * rik + sin * sik
                s_diag[k + 1:sc] = -sin * rik + cos * sik
        s_diag[j] = a[j, pj]
        a[j, pj] = r_diag[j]

    # Singular S: zero the tail and solve the leading block
    singular = np.flatnonzero(s_diag == 0)
    n_sing = int(singular[0]) if singular.size else sc
    work[n_sing:] = 0.0
    for j in range(n_sing - 1, -1, -1):
        pj = perm[j]
        total = a[j + 1:n_sing, pj] @ work[j + 1:n_sing]
        work[j] = (work[j] - total) / s_diag[j]

    lm_dir = np.zeros(n_c)
    lm_dir[perm[:sc]] = work
    return lm_dir, s_diag


__all__ = [
    "QRDecomposition",
    "qr_decomposition_with_pivoting",
    "q_transpose_y",
    "determine_lm_direction",
]
