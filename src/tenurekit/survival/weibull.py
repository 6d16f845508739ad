"""Weibull Accelerated Failure Time regression.

The model is ``log T = x'beta + sigma * W`` with W a standard minimum extreme
value variable, so T given x is Weibull with shape ``k = 1 / sigma`` and scale
``exp(x'beta)``. Coefficients act on the log-time scale: ``exp(beta_j)`` is the
time ratio, the factor by which expected tenure is multiplied per unit
increase in covariate j (> 1 means employees stay longer).

Censored subjects contribute their survival probability to the likelihood;
subjects with an observed departure contribute the density.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd
from scipy import special

from tenurekit.core.config import DEFAULT_ALPHA, OptimizerOptions
from tenurekit.core.covariates import CovariateSpec
from tenurekit.core.exceptions import ConvergenceError, DataError, InvalidParameterError
from tenurekit.core.records import SurvivalData, covariate_frame
from tenurekit.core.reporting import coefficient_summary
from tenurekit.statistics.concordance import concordance_index
from tenurekit.statistics.optimize import (
    check_divergence,
    check_full_rank,
    check_separation,
    covariance_from_hessian,
    maximize_likelihood,
)


logger = logging.getLogger(__name__)

INTERCEPT = "Intercept"


def weibull_log_likelihood(theta: np.ndarray, X: np.ndarray, log_t: np.ndarray, events: np.ndarray):
    """Log-likelihood, gradient and Hessian in ``theta = (beta, log sigma)``.

    With ``z = (log t - x'beta) / sigma`` an event contributes
    ``-log sigma - log t + z - exp(z)`` and a censored record ``-exp(z)``.
    """
    beta, log_sigma = theta[:-1], theta[-1]
    sigma = np.exp(log_sigma)
    delta = events.astype(float)

    with np.errstate(over="ignore", invalid="ignore"):
        z = (log_t - X @ beta) / sigma
        ez = np.exp(z)
        ll = float(np.sum(delta * (-log_sigma - log_t + z) - ez))

        dl_dz = delta - ez
        grad_beta = -(X.T @ dl_dz) / sigma
        grad_u = np.sum(-delta - z * dl_dz)

        h_bb = -(X.T * ez) @ X / sigma ** 2
        h_bu = X.T @ (dl_dz - z * ez) / sigma
        h_uu = np.sum(z * dl_dz - z ** 2 * ez)

    grad = np.append(grad_beta, grad_u)
    hess = np.empty((len(theta), len(theta)))
    hess[:-1, :-1] = h_bb
    hess[:-1, -1] = h_bu
    hess[-1, :-1] = h_bu
    hess[-1, -1] = h_uu
    return ll, grad, hess


@dataclass(frozen=True, eq=False)
class WeibullAFTModel:
    """A fitted Weibull AFT model. Immutable; refitting creates a new one.

    Attributes:
        spec: Covariate specification the model was fitted with.
        params: Coefficients on the log-time scale, intercept first.
        log_sigma: Log of the AFT scale (sigma = 1 / shape).
        covariance: Covariance of ``(params, log_sigma)``.
        summary: Coefficient table (estimate, exp_estimate = time ratio,
            std_error, z, p_value, ci_lower, ci_upper, significant).
        log_likelihood: Maximized log-likelihood.
        data_fingerprint: Hash of the records the model was fitted on.
    """
    spec: CovariateSpec
    params: pd.Series
    log_sigma: float
    covariance: pd.DataFrame
    summary: pd.DataFrame
    log_likelihood: float
    n_samples: int
    n_events: int
    n_iterations: int
    alpha: float
    data_fingerprint: str
    concordance: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def n_parameters(self) -> int:
        return len(self.params) + 1

    @property
    def aic(self) -> float:
        """Akaike Information Criterion: -2 log L + 2 k."""
        return -2.0 * self.log_likelihood + 2.0 * self.n_parameters

    @property
    def sigma(self) -> float:
        return float(np.exp(self.log_sigma))

    @property
    def shape(self) -> float:
        """Weibull shape k = 1 / sigma (> 1: turnover hazard rises with tenure)."""
        return 1.0 / self.sigma

    @property
    def scale(self) -> float:
        """Weibull scale for a subject at every covariate's zero/reference."""
        return float(np.exp(self.params[INTERCEPT]))

    @property
    def time_ratios(self) -> pd.Series:
        return self.summary["exp_estimate"].drop(INTERCEPT)

    def _linear_predictor(self, data) -> np.ndarray:
        X = self.spec.design_matrix(covariate_frame(data)).to_numpy(dtype=float)
        beta = self.params.to_numpy()
        return beta[0] + X @ beta[1:]

    def predict_median(self, data) -> np.ndarray:
        """Median tenure per subject: exp(x'beta) * (log 2) ** sigma."""
        return np.exp(self._linear_predictor(data)) * np.log(2.0) ** self.sigma

    def predict_expectation(self, data) -> np.ndarray:
        """Expected tenure per subject: exp(x'beta) * Gamma(1 + sigma)."""
        return np.exp(self._linear_predictor(data)) * special.gamma(1.0 + self.sigma)

    def predict_survival(self, data, times) -> pd.DataFrame:
        """Survival probabilities, one row per time and one column per subject."""
        times = np.atleast_1d(np.asarray(times, dtype=float))
        if np.any(times <= 0):
            raise DataError("Prediction times must be positive")
        eta = self._linear_predictor(data)
        z = (np.log(times)[:, None] - eta[None, :]) / self.sigma
        return pd.DataFrame(np.exp(-np.exp(z)), index=pd.Index(times, name="duration"))

    def predict_risk(self, data) -> np.ndarray:
        """Risk score for ranking: higher means shorter expected tenure."""
        return -self._linear_predictor(data)


class WeibullAFTFitter:
    """Fit Weibull AFT models by maximum likelihood.

    Examples:
        >>> data = SurvivalData.from_frame(df, "stag", "event")
        >>> spec = CovariateSpec.infer(df, ["age", "way"], references={"way": "bus"})
        >>> model = WeibullAFTFitter().fit(data, spec)
        >>> model.summary["exp_estimate"]
    """

    def __init__(
        self,
        alpha: float = DEFAULT_ALPHA,
        max_iter: int = 100,
        tol: float = 1e-6,
    ):
        self.alpha = alpha
        self.options = OptimizerOptions(max_iter=max_iter, tol=tol)

    def fit(self, data: SurvivalData, spec: Optional[CovariateSpec] = None) -> WeibullAFTModel:
        """Fit the model.

        Args:
            data: Event-time records.
            spec: Covariates to use. Defaults to every covariate column, with
                levels inferred from the data.

        Raises:
            DataError: Too few observations or no events.
            SingularMatrixError: Collinear design or singular information.
            ConvergenceError: The optimizer ran out of iterations.
            InvalidParameterError: Non-positive or non-finite shape/scale.
        """
        frame = data.covariates
        if spec is None:
            spec = CovariateSpec.infer(frame, list(frame.columns))
        spec = spec.resolve(frame)

        design = spec.design_matrix(frame)
        X = np.column_stack([np.ones(len(design)), design.to_numpy(dtype=float)])
        names = [INTERCEPT] + list(design.columns)

        if data.n_events == 0:
            raise DataError("Weibull AFT needs at least one observed event")
        if data.n_samples <= X.shape[1] + 1:
            raise DataError(
                f"{data.n_samples} observations cannot identify {X.shape[1] + 1} parameters"
            )
        check_full_rank(X, names, label="Weibull AFT")

        log_t = np.log(data.durations)
        events = data.events

        # Start from the exponential MLE of the intercept
        theta0 = np.zeros(X.shape[1] + 1)
        theta0[0] = np.log(data.durations.sum() / data.n_events)

        logger.debug("Fitting Weibull AFT: %s (n=%d)", spec, data.n_samples)
        try:
            result = maximize_likelihood(
                lambda theta: weibull_log_likelihood(theta, X, log_t, events),
                theta0,
                self.options,
                label="Weibull AFT",
            )
        except ConvergenceError as exc:
            check_divergence(exc, X, names, self.options, label="Weibull AFT")
            raise

        beta, log_sigma = result.params[:-1], float(result.params[-1])
        sigma = np.exp(log_sigma)
        scale = np.exp(beta[0])
        diagnostics = {"sigma": float(sigma), "scale": float(scale), "params": result.params.tolist()}
        if not np.isfinite(sigma) or sigma <= 0 or not np.isfinite(scale) or scale <= 0:
            raise InvalidParameterError(
                f"Weibull AFT produced invalid shape/scale (sigma={sigma}, scale={scale})",
                diagnostics,
            )

        covariance = covariance_from_hessian(result.hessian, label="Weibull AFT")
        std_errors = np.sqrt(np.diag(covariance))
        check_separation(X, std_errors[:-1], data.n_events, names, label="Weibull AFT")
        cov_names = names + ["log_sigma"]

        linear = X @ beta
        try:
            concordance = concordance_index(data.durations, -linear, events)
        except DataError:
            concordance = None

        model = WeibullAFTModel(
            spec=spec,
            params=pd.Series(beta, index=names, name="estimate"),
            log_sigma=log_sigma,
            covariance=pd.DataFrame(covariance, index=cov_names, columns=cov_names),
            summary=coefficient_summary(names, beta, std_errors[:-1], alpha=self.alpha),
            log_likelihood=result.log_likelihood,
            n_samples=data.n_samples,
            n_events=data.n_events,
            n_iterations=result.n_iterations,
            alpha=self.alpha,
            data_fingerprint=data.fingerprint(),
            concordance=concordance,
            metadata={"log_sigma_se": float(std_errors[-1])},
        )
        logger.info(
            "Weibull AFT fitted: %s | logL=%.3f AIC=%.3f shape=%.3f",
            spec, model.log_likelihood, model.aic, model.shape,
        )
        return model

    def stepwise(
        self,
        data: SurvivalData,
        spec: CovariateSpec,
        direction: str = "both",
        start: Optional[CovariateSpec] = None,
        max_steps: Optional[int] = None,
    ):
        """AIC-driven stepwise selection over the covariates in ``spec``.

        See :func:`tenurekit.survival.selection.stepwise_selection`.
        """
        from tenurekit.survival.selection import stepwise_selection

        return stepwise_selection(
            self.fit, data, spec.resolve(data.covariates),
            direction=direction, start=start, max_steps=max_steps,
        )

