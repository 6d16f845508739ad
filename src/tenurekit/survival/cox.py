"""Cox proportional-hazards regression.

Coefficients are log hazard ratios: ``exp(beta_j)`` multiplies the turnover
hazard per unit increase of covariate j (> 1 means employees leave faster).
The baseline hazard is left unspecified and estimated afterwards (Breslow).

Tied event times use Efron's approximation by default; Breslow's is
available. With ``strata`` each level of one categorical column gets its own
risk sets and baseline hazard while the coefficients are shared.
"""

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from scipy import stats

from tenurekit.core.config import DEFAULT_ALPHA, DURATION_COL, EVENT_COL, OptimizerOptions
from tenurekit.core.covariates import CovariateSpec
from tenurekit.core.exceptions import (
    ConvergenceError,
    DataError,
    EmptyRiskSetError,
    ProportionalHazardsWarning,
)
from tenurekit.core.records import SurvivalData, covariate_frame
from tenurekit.core.reporting import coefficient_summary, diagnostic_table
from tenurekit.statistics.concordance import concordance_index
from tenurekit.statistics.optimize import (
    check_divergence,
    check_full_rank,
    check_separation,
    covariance_from_hessian,
    maximize_likelihood,
)


logger = logging.getLogger(__name__)

TIES_METHODS = ("efron", "breslow")
TIME_TRANSFORMS = ("rank", "km", "identity", "log")


@dataclass
class _Stratum:
    """Risk-set bookkeeping for one stratum, sorted by duration."""
    label: Any
    index: np.ndarray
    durations: np.ndarray
    event_times: np.ndarray
    starts: np.ndarray
    tied: List[np.ndarray]


def _build_strata(durations: np.ndarray, events: np.ndarray, labels: np.ndarray) -> List[_Stratum]:
    strata = []
    for label in sorted(pd.unique(labels), key=str):
        index = np.flatnonzero(labels == label)
        index = index[np.argsort(durations[index], kind="mergesort")]
        t, e = durations[index], events[index]
        if not e.any():
            raise EmptyRiskSetError(
                f"Stratum {label!r} has {len(index)} subjects but no observed events; "
                "drop it or merge it with another stratum"
            )
        event_times = np.unique(t[e])
        strata.append(_Stratum(
            label=label,
            index=index,
            durations=t,
            event_times=event_times,
            starts=np.searchsorted(t, event_times, side="left"),
            tied=[np.flatnonzero((t == s) & e) for s in event_times],
        ))
    return strata


def _risk_sums(X: np.ndarray, beta: np.ndarray):
    """Reverse cumulative sums of w, w*x and w*x*x' with w = exp(x'beta - shift)."""
    eta = X @ beta
    shift = float(eta.max())
    w = np.exp(eta - shift)
    wx = w[:, None] * X
    wxx = wx[:, :, None] * X[:, None, :]
    s0 = np.cumsum(w[::-1])[::-1]
    s1 = np.cumsum(wx[::-1], axis=0)[::-1]
    s2 = np.cumsum(wxx[::-1], axis=0)[::-1]
    return eta, shift, w, wx, wxx, s0, s1, s2


def cox_partial_likelihood(beta: np.ndarray, X: np.ndarray, strata: List[_Stratum], ties: str = "efron"):
    """Log partial likelihood, gradient and Hessian summed over strata.

    For ``d`` events tied at one time Efron replaces the risk-set sums by
    ``S - (l / d) * T`` for ``l = 0 .. d - 1``, where ``T`` sums over the tied
    events; Breslow uses ``S`` unchanged for all ``d`` terms.
    """
    p = len(beta)
    ll = 0.0
    grad = np.zeros(p)
    hess = np.zeros((p, p))

    with np.errstate(over="ignore", divide="ignore", invalid="ignore"):
        for stratum in strata:
            Xs = X[stratum.index]
            eta, shift, w, wx, wxx, s0, s1, s2 = _risk_sums(Xs, beta)

            for start, tied in zip(stratum.starts, stratum.tied):
                d = len(tied)
                ll += eta[tied].sum()
                grad += Xs[tied].sum(axis=0)
                t0, t1, t2 = w[tied].sum(), wx[tied].sum(axis=0), wxx[tied].sum(axis=0)

                for l in range(d):
                    frac = l / d if ties == "efron" else 0.0
                    phi0 = s0[start] - frac * t0
                    mean = (s1[start] - frac * t1) / phi0
                    ll -= np.log(phi0) + shift
                    grad -= mean
                    hess -= (s2[start] - frac * t2) / phi0 - np.outer(mean, mean)

    return float(ll), grad, hess


def _schoenfeld(beta: np.ndarray, X: np.ndarray, strata: List[_Stratum], ties: str):
    """Per-event Schoenfeld residuals x_i - E[x | risk set at t_i].

    Tied events share the Efron-averaged expectation, so the residuals sum
    to the score vector (zero at the fitted coefficients).
    """
    times, rows = [], []
    with np.errstate(over="ignore", invalid="ignore"):
        for stratum in strata:
            Xs = X[stratum.index]
            _, _, w, wx, _, s0, s1, _ = _risk_sums(Xs, beta)
            for time, start, tied in zip(stratum.event_times, stratum.starts, stratum.tied):
                d = len(tied)
                t0, t1 = w[tied].sum(), wx[tied].sum(axis=0)
                fracs = np.arange(d) / d if ties == "efron" else np.zeros(d)
                expected = np.mean(
                    [(s1[start] - f * t1) / (s0[start] - f * t0) for f in fracs], axis=0
                )
                for i in tied:
                    times.append(time)
                    rows.append(Xs[i] - expected)
    return np.asarray(times), np.asarray(rows).reshape(len(times), X.shape[1])


def _time_transform(times: np.ndarray, data: SurvivalData, kind: str) -> np.ndarray:
    if kind == "rank":
        return stats.rankdata(times)
    if kind == "identity":
        return times
    if kind == "log":
        return np.log(times)
    if kind == "km":
        from tenurekit.survival.local_impl import KaplanMeierFitter

        kmf = KaplanMeierFitter().fit(data.to_frame(), DURATION_COL, EVENT_COL)
        return 1.0 - np.asarray(kmf.predict_survival(times))
    raise ValueError(f"Invalid time_transform '{kind}'. Use one of {list(TIME_TRANSFORMS)}.")


@dataclass(frozen=True, eq=False)
class CoxPHModel:
    """A fitted Cox model. Immutable; refitting creates a new one.

    Attributes:
        spec: Covariate specification the model was fitted with.
        strata: Stratification column, or None.
        params: Log hazard ratios.
        covariance: Coefficient covariance (inverse observed information).
        summary: Coefficient table (estimate, exp_estimate = hazard ratio,
            std_error, z, p_value, ci_lower, ci_upper, significant).
        log_likelihood: Maximized log partial likelihood.
        log_likelihood_null: Log partial likelihood at beta = 0.
        means: Covariate means used for centering.
        baseline_cumulative_hazard: Breslow estimate per stratum (key None
            when unstratified), evaluated at centered covariates.
        data_fingerprint: Hash of the records the model was fitted on.
    """
    spec: CovariateSpec
    strata: Optional[str]
    ties: str
    params: pd.Series
    covariance: pd.DataFrame
    summary: pd.DataFrame
    log_likelihood: float
    log_likelihood_null: float
    n_samples: int
    n_events: int
    n_iterations: int
    alpha: float
    data_fingerprint: str
    means: pd.Series
    baseline_cumulative_hazard: Dict[Any, pd.DataFrame] = field(default_factory=dict)
    concordance: Optional[float] = None

    @property
    def n_parameters(self) -> int:
        return len(self.params)

    @property
    def aic(self) -> float:
        """Partial AIC: -2 log PL + 2 k."""
        return -2.0 * self.log_likelihood + 2.0 * self.n_parameters

    @property
    def hazard_ratios(self) -> pd.Series:
        return self.summary["exp_estimate"]

    def log_likelihood_ratio_test(self) -> Dict[str, float]:
        """Likelihood-ratio test of the fitted model against beta = 0."""
        statistic = max(2.0 * (self.log_likelihood - self.log_likelihood_null), 0.0)
        dof = self.n_parameters
        p_value = float(stats.chi2.sf(statistic, dof)) if dof else 1.0
        return {"test_statistic": statistic, "degrees_of_freedom": dof, "p_value": p_value}

    def _centered_design(self, data) -> np.ndarray:
        X = self.spec.design_matrix(covariate_frame(data)).to_numpy(dtype=float)
        return X - self.means.to_numpy()

    def _strata_labels(self, frame: pd.DataFrame) -> np.ndarray:
        if self.strata is None:
            return np.zeros(len(frame), dtype=int)
        if self.strata not in frame.columns:
            raise DataError(f"Stratification column '{self.strata}' not found")
        labels = frame[self.strata].to_numpy()
        unknown = set(pd.unique(labels)) - set(self.baseline_cumulative_hazard)
        if unknown:
            raise DataError(f"Unknown strata for '{self.strata}': {sorted(map(str, unknown))}")
        return labels

    def predict_log_partial_hazard(self, data) -> np.ndarray:
        """Centered linear predictor (x - mean)'beta."""
        return self._centered_design(data) @ self.params.to_numpy()

    def predict_partial_hazard(self, data) -> np.ndarray:
        return np.exp(self.predict_log_partial_hazard(data))

    def predict_risk(self, data) -> np.ndarray:
        """Risk score for ranking: higher means earlier expected turnover."""
        return self.predict_log_partial_hazard(data)

    def predict_survival(self, data, times) -> pd.DataFrame:
        """Survival probabilities, one row per time and one column per subject.

        ``S(t | x) = exp(-H0_s(t) * exp((x - mean)'beta))`` with the Breslow
        baseline of the subject's stratum, held flat between event times.
        """
        times = np.atleast_1d(np.asarray(times, dtype=float))
        frame = covariate_frame(data)
        partial = self.predict_partial_hazard(frame)
        labels = self._strata_labels(frame)

        survival = np.empty((len(times), len(partial)))
        for label, baseline in self.baseline_cumulative_hazard.items():
            members = np.flatnonzero(labels == label) if self.strata is not None else np.arange(len(partial))
            if len(members) == 0:
                continue
            idx = np.searchsorted(baseline.index.to_numpy(), times, side="right") - 1
            steps = baseline["baseline_cumulative_hazard"].to_numpy()
            cumulative = np.where(idx >= 0, steps[np.clip(idx, 0, None)], 0.0)
            survival[:, members] = np.exp(-np.outer(cumulative, partial[members]))
        return pd.DataFrame(survival, index=pd.Index(times, name="duration"))

    def _check_training_data(self, data: SurvivalData) -> None:
        if data.fingerprint() != self.data_fingerprint:
            raise DataError(
                "Residual diagnostics need the records the model was fitted on "
                f"(fingerprint {self.data_fingerprint}, got {data.fingerprint()})"
            )

    def schoenfeld_residuals(self, data: SurvivalData) -> pd.DataFrame:
        """Schoenfeld residuals, one row per event, ordered by event time."""
        self._check_training_data(data)
        frame = data.covariates
        strata = _build_strata(data.durations, data.events, self._strata_labels(frame))
        times, rows = _schoenfeld(
            self.params.to_numpy(), self._centered_design(frame), strata, self.ties
        )
        order = np.argsort(times, kind="mergesort")
        return pd.DataFrame(
            rows[order],
            index=pd.Index(times[order], name=DURATION_COL),
            columns=list(self.params.index),
        )

    def check_proportional_hazards(
        self,
        data: SurvivalData,
        time_transform: str = "rank",
        alpha: Optional[float] = None,
    ) -> pd.DataFrame:
        """Grambsch-Therneau test of proportional hazards per covariate.

        Scaled Schoenfeld residuals are correlated with a transform of event
        time; a trend means the coefficient drifts with tenure. Each statistic
        is chi-squared with one degree of freedom.

        Args:
            data: The records the model was fitted on.
            time_transform: "rank" (default), "km", "identity" or "log".
            alpha: Threshold for the ``violated`` flag. Defaults to the
                model's alpha.

        Returns:
            DataFrame indexed by design column with test_statistic, p_value
            and violated.

        Warns:
            ProportionalHazardsWarning: If any covariate is flagged. Nothing is
                refitted automatically.
        """
        alpha = self.alpha if alpha is None else alpha
        if time_transform not in TIME_TRANSFORMS:
            raise ValueError(
                f"Invalid time_transform '{time_transform}'. Use one of {list(TIME_TRANSFORMS)}."
            )
        residuals = self.schoenfeld_residuals(data)
        if residuals.shape[1] == 0:
            return diagnostic_table({}, alpha=alpha)

        g = _time_transform(residuals.index.to_numpy(dtype=float), data, time_transform)
        g = g - g.mean()
        if np.allclose(g, 0.0):
            raise DataError("Proportional-hazards test needs at least two distinct event times")

        n_deaths = len(residuals)
        variances = np.diag(self.covariance.to_numpy())
        scaled = n_deaths * residuals.to_numpy() @ self.covariance.to_numpy() + self.params.to_numpy()
        statistic = (g @ scaled) ** 2 / (n_deaths * variances * np.sum(g ** 2))

        rows = {
            name: {"test_statistic": float(t), "p_value": float(stats.chi2.sf(t, 1))}
            for name, t in zip(residuals.columns, statistic)
        }
        table = diagnostic_table(rows, alpha=alpha)

        flagged = table.index[table["violated"]].tolist()
        if flagged:
            owners = sorted({
                covariate for covariate, columns in self.spec.term_columns().items()
                if set(columns) & set(flagged)
            })
            warnings.warn(
                f"Proportional hazards assumption looks violated for {flagged} "
                f"(time_transform={time_transform!r}, alpha={alpha}). Consider "
                f"stratifying on {owners} (strata=...) and refitting.",
                ProportionalHazardsWarning,
                stacklevel=2,
            )
        return table


class CoxPHFitter:
    """Fit Cox proportional-hazards models by maximum partial likelihood.

    Examples:
        >>> spec = CovariateSpec.infer(df, ["age", "extraversion", "way"])
        >>> model = CoxPHFitter().fit(data, spec)
        >>> model.check_proportional_hazards(data)
    """

    def __init__(
        self,
        ties: str = "efron",
        alpha: float = DEFAULT_ALPHA,
        max_iter: int = 100,
        tol: float = 1e-6,
    ):
        if ties not in TIES_METHODS:
            raise ValueError(f"Invalid ties method '{ties}'. Use one of {list(TIES_METHODS)}.")
        self.ties = ties
        self.alpha = alpha
        self.options = OptimizerOptions(max_iter=max_iter, tol=tol)

    def fit(
        self,
        data: SurvivalData,
        spec: Optional[CovariateSpec] = None,
        strata: Optional[str] = None,
    ) -> CoxPHModel:
        """Fit the model.

        Args:
            data: Event-time records.
            spec: Covariates to use. Defaults to every covariate column except
                ``strata``. An empty spec fits the null model.
            strata: Categorical column whose levels get separate baselines.

        Raises:
            DataError: Too few observations, no events, or ``strata`` also in
                the covariate spec.
            EmptyRiskSetError: A stratum without events.
            SingularMatrixError: Collinear design or singular information.
            ConvergenceError: The optimizer ran out of iterations.
        """
        frame = data.covariates
        if spec is None:
            spec = CovariateSpec.infer(frame, [c for c in frame.columns if c != strata])
        spec = spec.resolve(frame)

        if strata is not None:
            if strata in spec:
                raise DataError(
                    f"'{strata}' cannot be both a stratification column and a covariate"
                )
            if strata not in frame.columns:
                raise DataError(f"Stratification column '{strata}' not found in covariates")
            if frame[strata].isna().any():
                raise DataError(f"Stratification column '{strata}' contains missing values")
            labels = frame[strata].to_numpy()
        else:
            labels = np.zeros(data.n_samples, dtype=int)

        design = spec.design_matrix(frame)
        names = list(design.columns)
        if data.n_events == 0:
            raise DataError("Cox PH needs at least one observed event")
        if data.n_samples <= len(names):
            raise DataError(
                f"{data.n_samples} observations cannot identify {len(names)} parameters"
            )

        means = design.mean()
        X = design.to_numpy(dtype=float) - means.to_numpy()
        check_full_rank(X, names, label="Cox PH")
        risk_strata = _build_strata(data.durations, data.events, labels)

        def likelihood(beta):
            return cox_partial_likelihood(beta, X, risk_strata, self.ties)

        logger.debug("Fitting Cox PH: %s (n=%d, strata=%s)", spec, data.n_samples, strata)
        try:
            result = maximize_likelihood(likelihood, np.zeros(len(names)), self.options, label="Cox PH")
        except ConvergenceError as exc:
            check_divergence(exc, X, names, self.options, label="Cox PH")
            raise
        covariance = covariance_from_hessian(result.hessian, label="Cox PH")
        check_separation(X, np.sqrt(np.diag(covariance)), data.n_events, names, label="Cox PH")
        beta = result.params
        ll_null = likelihood(np.zeros(len(names)))[0]

        risk = X @ beta
        try:
            concordance = concordance_index(data.durations, risk, data.events)
        except DataError:
            concordance = None

        model = CoxPHModel(
            spec=spec,
            strata=strata,
            ties=self.ties,
            params=pd.Series(beta, index=names, name="estimate", dtype=float),
            covariance=pd.DataFrame(covariance, index=names, columns=names),
            summary=coefficient_summary(names, beta, np.sqrt(np.diag(covariance)), alpha=self.alpha),
            log_likelihood=result.log_likelihood,
            log_likelihood_null=ll_null,
            n_samples=data.n_samples,
            n_events=data.n_events,
            n_iterations=result.n_iterations,
            alpha=self.alpha,
            data_fingerprint=data.fingerprint(),
            means=means,
            baseline_cumulative_hazard=self._baseline_hazard(beta, X, risk_strata, strata is not None),
            concordance=concordance,
        )
        logger.info(
            "Cox PH fitted: %s | logPL=%.3f AIC=%.3f strata=%s",
            spec, model.log_likelihood, model.aic, strata,
        )
        return model

    @staticmethod
    def _baseline_hazard(beta, X, risk_strata, stratified) -> Dict[Any, pd.DataFrame]:
        """Breslow estimator dH0(t) = d(t) / sum_{R(t)} exp((x - mean)'beta)."""
        baselines = {}
        for stratum in risk_strata:
            _, shift, _, _, _, s0, _, _ = _risk_sums(X[stratum.index], beta)
            deaths = np.array([len(tied) for tied in stratum.tied], dtype=float)
            increments = deaths / (s0[stratum.starts] * np.exp(shift))
            baselines[stratum.label if stratified else None] = pd.DataFrame(
                {"baseline_cumulative_hazard": np.cumsum(increments)},
                index=pd.Index(stratum.event_times, name=DURATION_COL),
            )
        return baselines

    def stepwise(
        self,
        data: SurvivalData,
        spec: CovariateSpec,
        strata: Optional[str] = None,
        direction: str = "both",
        start: Optional[CovariateSpec] = None,
        max_steps: Optional[int] = None,
    ):
        """AIC-driven stepwise selection over the covariates in ``spec``.

        See :func:`tenurekit.survival.selection.stepwise_selection`.
        """
        from tenurekit.survival.selection import stepwise_selection

        return stepwise_selection(
            lambda d, s: self.fit(d, s, strata=strata),
            data, spec.resolve(data.covariates),
            direction=direction, start=start, max_steps=max_steps,
        )
