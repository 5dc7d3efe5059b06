"""
Nonlinear least-squares fitting with a statistical report.

This is the user-facing entry point: build the problem, run an optimizer,
and summarise the estimates the way a regression table does.
"""

import warnings
from typing import Callable, List, Optional, Union

import numpy as np
import pandas as pd
from scipy import stats

from ._optimizers import get_optimizer
from ._optimizers.base import Optimum
from .checkers import EvaluationRmsChecker
from .exceptions import SingularMatrixError
from .problem import create_problem


class LeastSquaresFit:
    """
    Result of a nonlinear least-squares fit.

    Wraps the optimizer's Optimum with named parameters and inference
    statistics.

    Examples
    --------
    >>> fit = least_squares(model, y, start=[1.0, 1.0], param_names=['a', 'b'])
    >>> fit.summary()
    >>> fit.params        # Named estimates
    >>> fit.std_errors    # Standard errors
    >>> fit.conf_int()    # Confidence intervals
    """

    def __init__(
        self,
        optimum: Optimum,
        param_names: Optional[List[str]] = None,
        optimizer_name: str = '',
        singularity_threshold: float = 1e-14,
    ):
        self.optimum = optimum
        self.optimizer_name = optimizer_name

        self.coefficients = np.array(optimum.point)
        self.n_params = self.coefficients.shape[0]
        if param_names is None:
            param_names = [f'p{i}' for i in range(self.n_params)]
        if len(param_names) != self.n_params:
            raise ValueError(
                f"{len(param_names)} parameter names for {self.n_params} parameters"
            )
        self.param_names = list(param_names)

        self._compute_statistics(singularity_threshold)

    def _compute_statistics(self, threshold):
        """Compute standard errors, t-stats, p-values, etc."""
        optimum = self.optimum

        self.residuals = np.array(optimum.residuals)
        self.n_obs = self.residuals.shape[0]
        self.df_residual = self.n_obs - self.n_params
        self.cost = optimum.cost
        self.rms = optimum.rms
        self.chi_square = optimum.chi_square
        self.evaluations = optimum.evaluations
        self.iterations = optimum.iterations

        # Residual variance: sigma^2 = chi^2 / dof
        if self.df_residual > 0:
            self.residual_variance = optimum.get_reduced_chi_square(self.n_params)
        else:
            self.residual_variance = np.nan

        # Var(p) = sigma^2 (J'J)^-1
        try:
            self.vcov = optimum.get_covariances(threshold) * self.residual_variance
        except SingularMatrixError:
            warnings.warn(
                "Jacobian is singular at the solution; "
                "parameter uncertainties are undefined.",
                UserWarning
            )
            self.vcov = np.full((self.n_params, self.n_params), np.nan)

        self.std_errors = np.sqrt(np.diag(self.vcov))

        with np.errstate(divide='ignore', invalid='ignore'):
            self.t_values = self.coefficients / self.std_errors

        if self.df_residual > 0:
            self.pvalues = 2 * stats.t.sf(np.abs(self.t_values), self.df_residual)
        else:
            self.pvalues = np.full(self.n_params, np.nan)

    @property
    def params(self) -> pd.Series:
        """Named parameter estimates (pandas Series)."""
        return pd.Series(self.coefficients, index=self.param_names)

    @property
    def bse(self) -> pd.Series:
        """Named standard errors (pandas Series)."""
        return pd.Series(self.std_errors, index=self.param_names)

    def conf_int(self, alpha: float = 0.05) -> pd.DataFrame:
        """
        Confidence intervals for the parameters.

        Parameters
        ----------
        alpha : float
            Significance level (default: 0.05 for 95% CI)

        Returns
        -------
        DataFrame
            Confidence intervals with columns 'lower' and 'upper'
        """
        if self.df_residual > 0:
            t_crit = stats.t.ppf(1 - alpha / 2, self.df_residual)
        else:
            t_crit = np.nan
        lower = self.coefficients - t_crit * self.std_errors
        upper = self.coefficients + t_crit * self.std_errors

        return pd.DataFrame({
            'lower': lower,
            'upper': upper
        }, index=self.param_names)

    def summary(self):
        """Print a summary table of the fit."""
        print()
        print("=" * 80)
        print("NONLINEAR LEAST SQUARES RESULTS")
        print("=" * 80)
        print()

        print(f"Optimizer:              {self.optimizer_name}")
        print(f"Number of observations: {self.n_obs}")
        print(f"Degrees of freedom:     {self.df_residual}")
        print(f"Evaluations:            {self.evaluations}")
        print(f"Iterations:             {self.iterations}")
        print()

        print("Parameters:")
        print("-" * 80)
        print(f"{'Parameter':<20} {'Estimate':>12} {'Std. Error':>12} {'t value':>10} {'Pr(>|t|)':>12}")
        print("-" * 80)

        for i, name in enumerate(self.param_names):
            p = self.pvalues[i]
            if np.isnan(p):
                p_str = 'NA'
            else:
                p_str = f"{p:.4f}" if p >= 0.0001 else "<.0001"

            print(f"{name:<20} {self.coefficients[i]:>12.6g} {self.std_errors[i]:>12.4g} "
                  f"{self.t_values[i]:>10.3f} {p_str:>12}")

        print("-" * 80)
        print()

        print(f"Cost (||r||):           {self.cost:.6g}")
        print(f"RMS:                    {self.rms:.6g}")
        if not np.isnan(self.residual_variance):
            print(f"Residual std. error:    {np.sqrt(self.residual_variance):.6g} "
                  f"on {self.df_residual} degrees of freedom")
        print("=" * 80)
        print()

    def __repr__(self):
        return (
            f"LeastSquaresFit(n={self.n_obs}, p={self.n_params}, "
            f"cost={self.cost:.3g})"
        )


def least_squares(
    model: Callable,
    target,
    start,
    jacobian: Optional[Callable] = None,
    weight=None,
    method: Union[str, object] = 'levenberg-marquardt',
    param_names: Optional[List[str]] = None,
    checker=None,
    max_evaluations: int = 1000,
    max_iterations: int = 1000,
    parameter_validator: Optional[Callable] = None,
    **optimizer_options
) -> LeastSquaresFit:
    """
    Fit a model by nonlinear least squares (convenience function).

    Parameters
    ----------
    model : callable
        ``model(point)`` returning ``(value, jacobian)``, or only ``value``
        when ``jacobian`` is given.
    target : array_like, shape (m,)
        Observed values.
    start : array_like, shape (n,)
        Initial guess.
    jacobian : callable, optional
        Model Jacobian, if not returned by ``model``.
    weight : array_like, optional
        Diagonal weights or weight matrix.
    method : str or LeastSquaresOptimizer
        'levenberg-marquardt' ('lm') or 'gauss-newton' ('gn').
    param_names : list of str, optional
        Names for the parameters in the report.
    checker : ConvergenceChecker or callable, optional
        Gauss-Newton falls back to ``EvaluationRmsChecker(1e-10)``.
    max_evaluations, max_iterations : int
        Budgets.
    parameter_validator : callable, optional
        Applied to every trial point.
    **optimizer_options
        Forwarded to the optimizer constructor.

    Returns
    -------
    LeastSquaresFit
        Fitted model report

    Examples
    --------
    >>> x = np.linspace(0, 1, 20)
    >>> def line(p):
    ...     return p[0] * x + p[1], np.column_stack([x, np.ones_like(x)])
    >>> fit = least_squares(line, 3 * x + 2, [1.0, 1.0], param_names=['slope', 'intercept'])
    >>> fit.params
    """
    optimizer = get_optimizer(method, **optimizer_options)

    if checker is None and optimizer.name == 'gauss-newton':
        checker = EvaluationRmsChecker(1e-10, 1e-10)

    problem = create_problem(
        model,
        target,
        start,
        jacobian=jacobian,
        weight=weight,
        checker=checker,
        max_evaluations=max_evaluations,
        max_iterations=max_iterations,
        parameter_validator=parameter_validator,
    )
    optimum = optimizer.optimize(problem)
    return LeastSquaresFit(optimum, param_names=param_names, optimizer_name=optimizer.name)
