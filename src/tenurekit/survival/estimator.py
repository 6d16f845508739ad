"""Kaplan-Meier entry point that picks the local or Spark implementation.

pandas tables (and :class:`~tenurekit.core.records.SurvivalData`) are fitted
with lifelines on the driver; Spark tables are fitted in the cluster.
"""

from typing import Optional, Dict, Any, Tuple, Union

import pandas as pd
from pyspark.sql import DataFrame as SparkDataFrame

from tenurekit.core.config import DURATION_COL, EVENT_COL, GROUP_COL
from tenurekit.core.engine import get_backend
from tenurekit.core.exceptions import DataError
from tenurekit.core.records import SurvivalData
from tenurekit.survival.local_impl import KaplanMeierFitter
from tenurekit.survival.spark_impl import KaplanMeier


IMPLEMENTATIONS = {"pandas": KaplanMeierFitter, "spark": KaplanMeier}

TableLike = Union[pd.DataFrame, SparkDataFrame, SurvivalData]


def _as_table(data: TableLike, duration_col: str, event_col: str) -> Tuple[Any, str, str]:
    if isinstance(data, SurvivalData):
        return data.to_frame(), DURATION_COL, EVENT_COL
    return data, duration_col, event_col


class SurvivalEstimator:
    """One Kaplan-Meier curve, whatever holds the data.

    Attributes:
        backend: "pandas" or "spark" once fitted.

    Examples:
        >>> df = pd.DataFrame({'stag': [5, 6, 7, 8, 10], 'event': [1, 0, 1, 0, 1]})
        >>> SurvivalEstimator().fit(df, 'stag', 'event').median_survival()
        10.0
    """

    def __init__(self):
        self.backend: Optional[str] = None
        self._estimator: Optional[Any] = None

    @classmethod
    def _wrap(cls, backend: str, fitted) -> "SurvivalEstimator":
        estimator = cls()
        estimator.backend, estimator._estimator = backend, fitted
        return estimator

    def fit(
        self,
        df: TableLike,
        duration_col: str = DURATION_COL,
        event_col: str = EVENT_COL,
        **kwargs,
    ) -> "SurvivalEstimator":
        """Fit the curve; extra keyword arguments go to the backend (e.g. ``bins``).

        Raises:
            TypeError: If ``df`` is not a pandas/Spark DataFrame or SurvivalData.
            DegenerateCurveError: If nobody left.
        """
        table, duration_col, event_col = _as_table(df, duration_col, event_col)
        self.backend = get_backend(table)
        self._estimator = IMPLEMENTATIONS[self.backend]().fit(
            table, duration_col=duration_col, event_col=event_col, **kwargs
        )
        return self

    @classmethod
    def fit_groups(
        cls,
        df: TableLike,
        duration_col: str = DURATION_COL,
        event_col: str = EVENT_COL,
        group_col: str = GROUP_COL,
    ) -> Dict[Any, "SurvivalEstimator"]:
        """Fit one curve per group, keyed by group label.

        SurvivalData must carry a group label (``with_group_label``).

        Raises:
            DegenerateCurveError: If any group has no observed events.
        """
        if isinstance(df, SurvivalData) and df.group_label is None:
            raise DataError("No group label attached; call with_group_label() first")
        table, duration_col, event_col = _as_table(df, duration_col, event_col)
        if isinstance(df, SurvivalData):
            group_col = GROUP_COL

        backend = get_backend(table)
        fitted = IMPLEMENTATIONS[backend].fit_groups(table, duration_col, event_col, group_col)
        return {label: cls._wrap(backend, fitter) for label, fitter in fitted.items()}

    @property
    def is_fitted(self) -> bool:
        return self._estimator is not None

    def _fitted(self):
        if self._estimator is None:
            raise ValueError("Model has not been fitted. Call fit() first.")
        return self._estimator

    def predict_survival(self, duration: float) -> float:
        return self._fitted().predict_survival(duration)

    def median_survival(self) -> Optional[float]:
        """Tenure at which half the cohort has left, None if never reached."""
        return self._fitted().median_survival()

    def survival_df(self) -> Union[pd.DataFrame, SparkDataFrame]:
        """The curve table in the backend's own DataFrame type."""
        curve = self._fitted().survival_df
        return curve() if self.backend == "pandas" else curve

    def summary(self) -> Dict[str, Any]:
        return self._fitted().summary()

    def get_confidence_intervals(
        self, confidence_level: float = 0.95
    ) -> Union[pd.DataFrame, SparkDataFrame]:
        return self._fitted().get_confidence_intervals(confidence_level)
