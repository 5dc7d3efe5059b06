"""
Exception hierarchy.

Every failure the solvers can report is a subclass of LeastSquaresError, so
callers can catch the whole family or pick out the case they care about.
"""


class LeastSquaresError(Exception):
    """Base class for all pyleastsq errors."""


class ConfigurationError(LeastSquaresError, ValueError):
    """Invalid optimizer or problem settings, raised at construction."""


class MaxCountExceededError(LeastSquaresError, RuntimeError):
    """A bounded counter went past its ceiling."""

    what = "count"

    def __init__(self, max_count: int):
        self.max_count = max_count
        super().__init__(f"maximal {self.what} ({max_count}) exceeded")


class TooManyEvaluationsError(MaxCountExceededError):
    """Evaluation budget exhausted."""

    what = "evaluation count"


class TooManyIterationsError(MaxCountExceededError):
    """Iteration budget exhausted."""

    what = "iteration count"


class ConvergenceError(LeastSquaresError, RuntimeError):
    """The solver cannot make further progress."""


class SingularMatrixError(ConvergenceError):
    """A linear solve hit a (numerically) singular matrix."""


class QRDecompositionError(ConvergenceError):
    """QR decomposition met an infinite or NaN column norm."""

    def __init__(self, n_rows: int, n_cols: int):
        self.shape = (n_rows, n_cols)
        super().__init__(
            f"unable to perform QR decomposition on the {n_rows}x{n_cols} jacobian"
        )


class ToleranceError(ConvergenceError):
    """Requested precision cannot be reached with the current tolerance."""

    what = "tolerance"

    def __init__(self, tolerance: float):
        self.tolerance = tolerance
        super().__init__(
            f"{self.what} too small ({tolerance:g}), "
            f"no further improvement in the approximate solution is possible"
        )


class CostToleranceError(ToleranceError):
    what = "cost relative tolerance"


class ParameterToleranceError(ToleranceError):
    what = "parameters relative tolerance"


class OrthogonalityToleranceError(ToleranceError):
    what = "orthogonality tolerance"


__all__ = [
    "LeastSquaresError",
    "ConfigurationError",
    "MaxCountExceededError",
    "TooManyEvaluationsError",
    "TooManyIterationsError",
    "ConvergenceError",
    "SingularMatrixError",
    "QRDecompositionError",
    "ToleranceError",
    "CostToleranceError",
    "ParameterToleranceError",
    "OrthogonalityToleranceError",
]
