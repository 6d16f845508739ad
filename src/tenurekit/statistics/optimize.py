"""Bounded maximum-likelihood optimization.

Both regression fitters hand a log-likelihood with analytic gradient and
Hessian to :func:`maximize_likelihood`. The work is done by scipy's
``trust-exact`` method (Newton steps inside a trust region, so non-concave
regions far from the optimum are handled safely). Running out of iterations
is reported as a :class:`ConvergenceError`, never returned as a result.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np
from scipy import optimize

from tenurekit.core.config import OptimizerOptions
from tenurekit.core.exceptions import ConvergenceError, SingularMatrixError


logger = logging.getLogger(__name__)

# (log_likelihood, gradient, hessian) of the log-likelihood at a point
LikelihoodFn = Callable[[np.ndarray], Tuple[float, np.ndarray, np.ndarray]]

MAX_CONDITION_NUMBER = 1e12

# Standard errors this many times the well-identified size sd(x) * sqrt(d)
# mean the estimate ran off towards infinity
MAX_SE_INFLATION = 100.0

# |beta| * sd(x) beyond this on an unconverged run is a diverging coefficient
MAX_STANDARDIZED_EFFECT = 5.0


@dataclass(frozen=True)
class OptimizationResult:
    """Outcome of a converged maximization."""
    params: np.ndarray
    log_likelihood: float
    gradient: np.ndarray
    hessian: np.ndarray
    n_iterations: int


class _CachedObjective:
    """Evaluate the likelihood once per point for fun/jac/hess calls."""

    def __init__(self, fn: LikelihoodFn):
        self._fn = fn
        self._x: Optional[np.ndarray] = None
        self._value = None

    def _evaluate(self, x: np.ndarray):
        if self._x is None or not np.array_equal(x, self._x):
            ll, grad, hess = self._fn(x)
            self._x = np.array(x, copy=True)
            # Negate: scipy minimizes
            self._value = (-ll, -grad, -hess)
        return self._value

    def fun(self, x):
        value = self._evaluate(x)[0]
        return value if np.isfinite(value) else np.inf

    def jac(self, x):
        return self._evaluate(x)[1]

    def hess(self, x):
        return self._evaluate(x)[2]


def maximize_likelihood(
    fn: LikelihoodFn,
    x0: np.ndarray,
    options: OptimizerOptions = OptimizerOptions(),
    label: str = "model",
) -> OptimizationResult:
    """Maximize a log-likelihood with a bounded iteration budget.

    Args:
        fn: Returns (log-likelihood, gradient, Hessian) at a parameter vector.
        x0: Starting point.
        options: Iteration and tolerance bounds.
        label: Name used in log messages and errors.

    Returns:
        The converged optimum.

    Raises:
        ConvergenceError: If the gradient norm is still above tolerance when
            the budget runs out, or the likelihood is not finite at the end.
    """
    x0 = np.asarray(x0, dtype=float)
    if x0.size == 0:
        ll, grad, hess = fn(x0)
        return OptimizationResult(x0, float(ll), grad, hess, 0)

    objective = _CachedObjective(fn)
    result = optimize.minimize(
        objective.fun,
        x0,
        jac=objective.jac,
        hess=objective.hess,
        method="trust-exact",
        options={"maxiter": options.max_iter, "gtol": options.tol},
    )

    ll, grad, hess = fn(result.x)
    grad_norm = float(np.linalg.norm(grad))
    diagnostics = {
        "params": result.x.tolist(),
        "log_likelihood": float(ll),
        "gradient_norm": grad_norm,
        "n_iterations": int(result.nit),
        "message": str(result.message),
    }

    # trust-exact can stop with "bad approximation" once the gradient is at
    # rounding-noise level; accept that when the gradient is near tolerance.
    converged = result.success or (
        result.nit < options.max_iter and grad_norm <= options.tol * 100
    )
    if not converged or not np.isfinite(ll):
        logger.warning("%s did not converge: %s", label, diagnostics)
        raise ConvergenceError(
            f"{label} failed to converge within {options.max_iter} iterations "
            f"(gradient norm {grad_norm:.3g}): {result.message}",
            diagnostics,
        )

    logger.debug("%s converged in %d iterations, log-likelihood %.4f", label, result.nit, ll)
    return OptimizationResult(result.x, float(ll), grad, hess, int(result.nit))


def covariance_from_hessian(hessian: np.ndarray, label: str = "model") -> np.ndarray:
    """Invert the observed information (``-hessian``) of a log-likelihood.

    Raises:
        SingularMatrixError: If the information matrix is not finite, is
            ill-conditioned, or yields non-positive variances (perfect
            separation or collinearity).
    """
    information = -np.asarray(hessian, dtype=float)
    if information.size == 0:
        return information.reshape(0, 0)

    diagnostics = {"condition_number": None}
    if not np.all(np.isfinite(information)):
        raise SingularMatrixError(f"{label}: information matrix is not finite", diagnostics)

    condition = float(np.linalg.cond(information))
    diagnostics["condition_number"] = condition
    if not np.isfinite(condition) or condition > MAX_CONDITION_NUMBER:
        raise SingularMatrixError(
            f"{label}: information matrix is singular (condition number {condition:.3g}); "
            "check for collinear covariates or perfect separation",
            diagnostics,
        )
    try:
        covariance = np.linalg.inv(information)
    except np.linalg.LinAlgError as exc:
        raise SingularMatrixError(f"{label}: information matrix is singular", diagnostics) from exc

    if np.any(np.diag(covariance) <= 0):
        raise SingularMatrixError(
            f"{label}: information matrix is not positive definite", diagnostics
        )
    return covariance


def check_full_rank(design: np.ndarray, columns, label: str = "model") -> None:
    """Reject a rank-deficient design matrix before fitting.

    Raises:
        SingularMatrixError: Naming the design columns when collinear.
    """
    if design.shape[1] == 0:
        return
    rank = np.linalg.matrix_rank(design)
    if rank < design.shape[1]:
        raise SingularMatrixError(
            f"{label}: design matrix has rank {rank} < {design.shape[1]} columns "
            f"({list(columns)}); covariates are collinear",
            {"rank": int(rank), "columns": list(columns)},
        )


def _column_spread(design: np.ndarray) -> np.ndarray:
    return np.asarray(design, dtype=float).std(axis=0)


def check_separation(
    design: np.ndarray,
    std_errors: np.ndarray,
    n_events: int,
    columns,
    label: str = "model",
) -> None:
    """Reject coefficients whose information has collapsed.

    A well-identified coefficient has a standard error of roughly
    ``1 / (sd(x) * sqrt(n_events))``. When a covariate separates leavers from
    stayers the optimizer follows the likelihood towards infinity and stops
    once the gradient is flat, with a condition number that can still look
    healthy; the standard error is then orders of magnitude too large.
    Constant columns (the intercept) are skipped.

    Raises:
        SingularMatrixError: Naming the separated columns.
    """
    inflation = np.asarray(std_errors, dtype=float) * _column_spread(design) * np.sqrt(n_events)
    separated = {
        str(name): float(value)
        for name, value in zip(columns, inflation)
        if not np.isfinite(value) or value > MAX_SE_INFLATION
    }
    if separated:
        raise SingularMatrixError(
            f"{label}: coefficients for {list(separated)} diverge; the covariate "
            "perfectly separates leavers from stayers",
            {"se_inflation": separated},
        )


def check_divergence(
    exc: ConvergenceError,
    design: np.ndarray,
    columns,
    options: OptimizerOptions,
    label: str = "model",
) -> None:
    """Re-label an early-stopped run whose coefficients are running off to infinity.

    Runs that used the whole iteration budget stay a ConvergenceError.

    Raises:
        SingularMatrixError: From ``exc`` when any standardized coefficient
            is beyond ``MAX_STANDARDIZED_EFFECT``.
    """
    params = np.asarray(exc.diagnostics.get("params", []), dtype=float)
    if exc.diagnostics.get("n_iterations", 0) >= options.max_iter or params.size < len(columns):
        return
    effects = np.abs(params[: len(columns)]) * _column_spread(design)
    diverging = [str(name) for name, value in zip(columns, effects) if value > MAX_STANDARDIZED_EFFECT]
    if diverging:
        raise SingularMatrixError(
            f"{label}: coefficients for {diverging} diverge; the covariate "
            "perfectly separates leavers from stayers",
            {**exc.diagnostics, "diverging": diverging},
        ) from exc
