"""Local Kaplan-Meier implementation using lifelines.

This module provides a pandas-based Kaplan-Meier estimator that wraps
the lifelines library for local/small-scale survival analysis and adds
Greenwood standard errors to the curve table.
"""

import logging
import warnings
from typing import Optional, Dict, Any, Union

import lifelines
import numpy as np
import pandas as pd

from tenurekit.core.config import DEFAULT_ALPHA
from tenurekit.core.exceptions import DataError, DegenerateCurveError
from tenurekit.core.validation import validate_input_schema


logger = logging.getLogger(__name__)

CURVE_COLUMNS = [
    "duration",
    "n_at_risk",
    "n_events",
    "n_censored",
    "survival_probability",
    "variance",
    "std_error",
    "ci_lower",
    "ci_upper",
]


def greenwood_variance(
    survival: np.ndarray, n_at_risk: np.ndarray, n_events: np.ndarray
) -> np.ndarray:
    """Greenwood's formula: S(t)^2 * sum_{t_i <= t} d_i / (n_i (n_i - d_i)).

    Terms where every subject at risk fails (n_i == d_i) drive S to zero; the
    variance there is defined as zero rather than 0 * inf.
    """
    n = np.asarray(n_at_risk, dtype=float)
    d = np.asarray(n_events, dtype=float)
    survival = np.asarray(survival, dtype=float)

    with np.errstate(divide="ignore", invalid="ignore"):
        terms = np.where((n > d) & (d > 0), d / (n * (n - d)), 0.0)
    variance = survival ** 2 * np.cumsum(terms)
    variance[survival <= 0] = 0.0
    return np.maximum(variance, 0.0)


class KaplanMeierFitter:
    """Local Kaplan-Meier survival curve estimator using lifelines.

    Attributes:
        survival_df_: DataFrame containing the survival curve, one row per
            distinct observed time (plus t=0) with at-risk and event counts,
            survival probability, Greenwood variance/standard error and
            confidence bounds.
        is_fitted: Whether the model has been fitted to data.
    """

    def __init__(self):
        self._lifelines_kmf = None
        self.survival_df_: Optional[pd.DataFrame] = None
        self._is_fitted: bool = False
        self._stats: Dict[str, Any] = {}
        self._fitted_alpha: float = 0.05
        self.label: Optional[str] = None

    def fit(
        self,
        df: pd.DataFrame,
        duration_col: str,
        event_col: str,
        **kwargs,
    ) -> "KaplanMeierFitter":
        """Fit the Kaplan-Meier estimator to survival data.

        Args:
            df: pandas DataFrame with one row per subject.
            duration_col: Name of the duration (tenure) column.
            event_col: Name of the event indicator column (0=censored, 1=event).
            **kwargs: ``alpha`` (1 - confidence level, default 0.05) and
                ``label``; anything else is passed to lifelines.

        Returns:
            Self for method chaining.

        Raises:
            DataError: If the input fails validation.
            DegenerateCurveError: If no event is observed, so the curve would
                be constant at 1.
        """
        validate_input_schema(df, duration_col, event_col)

        n_samples = len(df)
        total_events = int(df[event_col].sum())
        label = kwargs.pop("label", "survival_probability")
        if total_events == 0:
            raise DegenerateCurveError(
                f"Group '{label}' has no observed events among {n_samples} subjects; "
                "its Kaplan-Meier curve is constant"
            )

        alpha = kwargs.pop("alpha", DEFAULT_ALPHA)
        self._fitted_alpha, self.label = alpha, label
        # A fresh lifelines fitter per call; its alpha is 1 - confidence level
        self._lifelines_kmf = lifelines.KaplanMeierFitter(alpha=alpha, label=label).fit(
            df[duration_col], df[event_col], **kwargs
        )

        self._stats = {
            "n_samples": n_samples,
            "total_events": total_events,
            "event_rate": float(total_events / n_samples),
            "min_duration": float(df[duration_col].min()),
            "max_duration": float(df[duration_col].max()),
            "duration_col": duration_col,
            "event_col": event_col,
        }
        self._is_fitted = True
        self.survival_df_ = self._build_curve()

        logger.debug(
            "Fitted Kaplan-Meier curve '%s': %d subjects, %d events",
            label, n_samples, total_events,
        )
        return self

    def _build_curve(self) -> pd.DataFrame:
        """Assemble the curve table from the lifelines event table."""
        table = self._lifelines_kmf.event_table
        times = table.index.values.astype(float)

        # Lifelines returns index as time, column as label
        survival = (
            self._lifelines_kmf.survival_function_.iloc[:, 0]
            .reindex(times, method="ffill")
            .fillna(1.0)
            .values
        )
        curve = pd.DataFrame({
            "duration": times,
            "n_at_risk": table["at_risk"].values.astype(int),
            "n_events": table["observed"].values.astype(int),
            "n_censored": table["censored"].values.astype(int),
            "survival_probability": survival,
        })

        if curve["duration"].iloc[0] > 0:
            origin = pd.DataFrame([{
                "duration": 0.0,
                "n_at_risk": int(curve["n_at_risk"].iloc[0]),
                "n_events": 0,
                "n_censored": 0,
                "survival_probability": 1.0,
            }])
            curve = pd.concat([origin, curve], ignore_index=True)

        curve["variance"] = greenwood_variance(
            curve["survival_probability"].values,
            curve["n_at_risk"].values,
            curve["n_events"].values,
        )
        curve["std_error"] = np.sqrt(curve["variance"])

        # Lifelines CI columns are like 'survival_probability_lower_0.95'
        # We grab the first and second columns to map to lower/upper
        ci_df = self._lifelines_kmf.confidence_interval_survival_function_
        ci = ci_df.reindex(curve["duration"].values, method="ffill")
        curve["ci_lower"] = ci.iloc[:, 0].fillna(1.0).values
        curve["ci_upper"] = ci.iloc[:, 1].fillna(1.0).values

        return curve[CURVE_COLUMNS]

    def _check_fitted(self) -> None:
        if not self._is_fitted:
            raise ValueError("Model has not been fitted. Call fit() first.")

    def predict_survival(self, duration: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
        """Predict survival probability at one or more durations.

        The curve is right-continuous and held flat beyond the last observed
        time; it is never extrapolated.
        """
        self._check_fitted()
        times = self.survival_df_["duration"].values
        probs = self.survival_df_["survival_probability"].values

        query = np.asarray(duration, dtype=float)
        if np.any(query < 0):
            raise DataError("Survival is only defined for t >= 0")
        idx = np.searchsorted(times, query, side="right") - 1
        result = probs[np.clip(idx, 0, None)]
        return float(result) if result.ndim == 0 else result

    def median_survival(self) -> Optional[float]:
        """First tenure with S <= 0.5; None while more than half are still employed."""
        self._check_fitted()
        median = float(self._lifelines_kmf.median_survival_time_)
        return None if np.isinf(median) else median

    def survival_df(self) -> pd.DataFrame:
        self._check_fitted()
        return self.survival_df_

    def summary(self) -> Dict[str, Any]:
        self._check_fitted()
        return {
            **self._stats,
            "label": self.label,
            "median_survival": self.median_survival(),
            "is_fitted": self._is_fitted,
        }

    def get_confidence_intervals(
        self, confidence_level: float = 0.95
    ) -> pd.DataFrame:
        """Curve table with its ci_lower/ci_upper columns.

        Bounds are those computed at fit time (``alpha``); asking for another
        level warns and still returns the fitted ones.
        """
        self._check_fitted()

        if not np.isclose(1.0 - confidence_level, self._fitted_alpha):
            warnings.warn(
                f"Requested confidence level {confidence_level:g} differs from fitted "
                f"level {1 - self._fitted_alpha:g}; returning the fitted bounds"
            )

        return self.survival_df_.copy()

    @property
    def is_fitted(self) -> bool:
        return self._is_fitted

    @staticmethod
    def fit_groups(
        df: pd.DataFrame,
        duration_col: str,
        event_col: str,
        group_col: str,
        alpha: float = DEFAULT_ALPHA,
    ) -> Dict[Any, "KaplanMeierFitter"]:
        """Fit one curve per level of ``group_col``.

        Returns:
            Mapping from group label to fitted estimator, in sorted label order.

        Raises:
            DegenerateCurveError: If any group has no observed events.
        """
        validate_input_schema(df, duration_col, event_col, required_cols=[group_col])

        return {
            level: KaplanMeierFitter().fit(
                rows, duration_col, event_col, label=str(level), alpha=alpha
            )
            for level, rows in sorted(df.groupby(group_col, sort=False), key=lambda item: str(item[0]))
        }
