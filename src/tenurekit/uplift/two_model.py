"""Two-model uplift estimation.

The event indicator is treated as a binary outcome (time to event is
ignored). One logistic regression is fitted on the treated subjects and one
on the controls, both with the same predictors; a subject's uplift is
``P(event | treatment model) - P(event | control model)``. Negative uplift
means the treatment lowers turnover probability.

Each arm reports its own coefficients and p-values. There is no pooled
interaction test, so a covariate that is significant in one arm only is not
evidence of a differential effect on its own.
"""

import logging
import warnings
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy.special import expit
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning,
    HessianInversionWarning,
    PerfectSeparationWarning,
)

from tenurekit.core.config import DEFAULT_ALPHA
from tenurekit.core.covariates import CovariateSpec
from tenurekit.core.exceptions import DataError, SingularMatrixError, UnstableFitWarning
from tenurekit.core.records import SurvivalData, covariate_frame
from tenurekit.core.reporting import coefficient_summary
from tenurekit.statistics.optimize import check_full_rank


logger = logging.getLogger(__name__)

INTERCEPT = "Intercept"
ARMS = ("treatment", "control")


def check_arm(n_obs: int, n_events: int, n_params: int) -> List[str]:
    """Structural problems that make an arm's logistic fit unreliable."""
    issues = []
    if n_obs <= n_params:
        issues.append(f"fewer observations ({n_obs}) than parameters ({n_params})")
    if n_events == 0:
        issues.append("no events in arm")
    elif n_events == n_obs:
        issues.append("every subject in arm had the event")
    return issues


@dataclass(frozen=True, eq=False)
class ArmModel:
    """Logistic model of event probability for one arm.

    Attributes:
        arm: "treatment" or "control".
        n_obs: Subjects in the arm.
        n_events: Subjects in the arm with an observed event.
        params: Log-odds coefficients (intercept first), or None when the arm
            could not be fitted.
        summary: Coefficient table; exp_estimate is the odds ratio.
        stable: False when a structural problem, perfect separation or a
            convergence warning was detected.
        issues: Human-readable descriptions of those problems.
    """
    arm: str
    n_obs: int
    n_events: int
    params: Optional[pd.Series]
    summary: pd.DataFrame
    stable: bool
    issues: Tuple[str, ...] = ()

    @property
    def fitted(self) -> bool:
        return self.params is not None

    def predict_proba(self, design: pd.DataFrame) -> np.ndarray:
        if not self.fitted:
            raise DataError(f"The {self.arm} arm could not be fitted: {'; '.join(self.issues)}")
        return expit(design.to_numpy(dtype=float) @ self.params.to_numpy())


@dataclass(frozen=True, eq=False)
class UpliftResult:
    """Pair of arm models plus the training subjects' uplift scores."""
    treatment: ArmModel
    control: ArmModel
    spec: CovariateSpec
    alpha: float
    data_fingerprint: str
    scores: Optional[np.ndarray] = None

    @property
    def stable(self) -> bool:
        return self.treatment.stable and self.control.stable

    def _design(self, data) -> pd.DataFrame:
        design = self.spec.design_matrix(covariate_frame(data))
        design.insert(0, INTERCEPT, 1.0)
        return design

    def predict_uplift(self, data: Union[SurvivalData, pd.DataFrame]) -> np.ndarray:
        """Per-subject P(event | treated) - P(event | control)."""
        design = self._design(data)
        return self.treatment.predict_proba(design) - self.control.predict_proba(design)

    def average_uplift(self, data: Union[SurvivalData, pd.DataFrame]) -> float:
        return float(np.mean(self.predict_uplift(data)))

    def coefficient_table(self) -> pd.DataFrame:
        """Per-arm estimates and p-values side by side (no pooled test)."""
        columns = ["estimate", "exp_estimate", "p_value", "significant"]
        parts = {
            arm.arm: arm.summary[columns].add_prefix(f"{arm.arm}_")
            for arm in (self.treatment, self.control)
        }
        return pd.concat([parts["treatment"], parts["control"]], axis=1)


class TwoModelUplift:
    """Two-model ("dual") uplift estimator on logistic regressions.

    Examples:
        >>> data = records.with_treatment_flag("coach", "yes")
        >>> result = TwoModelUplift(["age", "extraversion"]).fit(data)
        >>> result.coefficient_table()
        >>> result.average_uplift(data)
    """

    def __init__(
        self,
        predictors: Union[Sequence[str], CovariateSpec],
        alpha: float = DEFAULT_ALPHA,
        max_iter: int = 100,
    ):
        self.predictors = predictors
        self.alpha = alpha
        self.max_iter = max_iter

    def _resolve_spec(self, data: SurvivalData) -> CovariateSpec:
        frame = data.covariates
        if isinstance(self.predictors, CovariateSpec):
            spec = self.predictors
        else:
            spec = CovariateSpec.infer(frame, list(self.predictors))
        if data.treatment_source is not None and data.treatment_source in spec:
            raise DataError(
                f"Treatment column '{data.treatment_source}' cannot also be a predictor"
            )
        # Levels come from the whole population so both arms share one design
        return spec.resolve(frame)

    def fit(self, data: SurvivalData) -> UpliftResult:
        """Fit one logistic model per arm.

        Raises:
            DataError: No treatment flag, an empty arm, or the treatment
                column among the predictors.
            SingularMatrixError: Collinear predictors within an arm or a
                singular Hessian.

        Warns:
            UnstableFitWarning: An arm is too small, perfectly separated or
                did not converge. Its issues are listed on the ArmModel.
        """
        if data.treatment_flag is None:
            raise DataError("No treatment flag attached; call with_treatment_flag() first")

        spec = self._resolve_spec(data)
        design = spec.design_matrix(data.covariates)
        design.insert(0, INTERCEPT, 1.0)
        outcome = data.events.astype(int)
        flag = data.treatment_flag

        arms = {}
        for arm, mask in zip(ARMS, (flag, ~flag)):
            if not mask.any():
                raise DataError(f"The {arm} arm is empty")
            arms[arm] = self._fit_arm(arm, design.loc[mask], outcome[mask])

        result = UpliftResult(
            treatment=arms["treatment"],
            control=arms["control"],
            spec=spec,
            alpha=self.alpha,
            data_fingerprint=data.fingerprint(),
        )
        if result.treatment.fitted and result.control.fitted:
            result = replace(result, scores=result.predict_uplift(data))
            logger.info("Two-model uplift fitted: average uplift %.4f", float(np.mean(result.scores)))
        return result

    def _fit_arm(self, arm: str, design: pd.DataFrame, outcome: np.ndarray) -> ArmModel:
        n_obs, n_events = len(outcome), int(outcome.sum())
        issues = check_arm(n_obs, n_events, design.shape[1])

        if n_obs <= design.shape[1]:
            return self._unstable(arm, n_obs, n_events, None, design.columns, issues)
        check_full_rank(design.to_numpy(dtype=float), design.columns, label=f"{arm} arm")

        fitted, std_errors, failure = None, None, None
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            try:
                fitted = sm.Logit(outcome, design).fit(disp=False, maxiter=self.max_iter)
                std_errors = np.sqrt(np.diag(np.asarray(fitted.cov_params())))
            except np.linalg.LinAlgError as exc:
                failure = exc

        separated = any(issubclass(w.category, PerfectSeparationWarning) for w in caught)
        if failure is not None and not separated:
            raise SingularMatrixError(
                f"{arm} arm: Hessian of the logistic likelihood is singular",
                {"arm": arm, "n_obs": n_obs, "n_events": n_events},
            ) from failure
        if separated:
            issues.append("perfect separation: some predictor pattern determines the outcome")
        if fitted is None:
            return self._unstable(arm, n_obs, n_events, None, design.columns, issues)

        for caught_warning in caught:
            if issubclass(caught_warning.category, (ConvergenceWarning, HessianInversionWarning)):
                issues.append(f"optimizer warning: {caught_warning.message}")
        if not fitted.mle_retvals.get("converged", True):
            issues.append(f"did not converge within {self.max_iter} iterations")

        if not issues and not np.all(np.isfinite(std_errors)):
            raise SingularMatrixError(
                f"{arm} arm: coefficient covariance is not finite",
                {"arm": arm, "n_obs": n_obs, "n_events": n_events},
            )

        params = pd.Series(np.asarray(fitted.params, dtype=float), index=design.columns, name="estimate")
        if issues:
            return self._unstable(arm, n_obs, n_events, params, design.columns, issues, std_errors)

        logger.debug("Fitted %s arm: %d subjects, %d events", arm, n_obs, n_events)
        return ArmModel(
            arm=arm,
            n_obs=n_obs,
            n_events=n_events,
            params=params,
            summary=coefficient_summary(design.columns, params.to_numpy(), std_errors, alpha=self.alpha),
            stable=True,
        )

    def _unstable(self, arm, n_obs, n_events, params, columns, issues, std_errors=None) -> ArmModel:
        warnings.warn(
            f"The {arm} arm fit is unstable: {'; '.join(issues)}",
            UnstableFitWarning,
            stacklevel=4,
        )
        logger.warning("Unstable %s arm (%d subjects, %d events): %s", arm, n_obs, n_events, issues)
        estimates = np.full(len(columns), np.nan) if params is None else params.to_numpy()
        if std_errors is None:
            std_errors = np.full(len(columns), np.nan)
        return ArmModel(
            arm=arm,
            n_obs=n_obs,
            n_events=n_events,
            params=params,
            summary=coefficient_summary(columns, estimates, std_errors, alpha=self.alpha),
            stable=False,
            issues=tuple(issues),
        )
