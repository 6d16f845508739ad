"""Kaplan-Meier curves for workforce tables that live in Spark.

The raw rows are reduced once to one row per distinct tenure (or per tenure
bin); everything after that runs on the small aggregate with running-sum
window functions, so the cost is a single shuffle of the employee table.
"""

import logging
from typing import Optional, Dict, Any

from pyspark.sql import Column, DataFrame, Window
from pyspark.sql import functions as F
from pyspark.sql.types import DoubleType

from tenurekit.core.exceptions import DegenerateCurveError
from tenurekit.core.validation import validate_input_schema


logger = logging.getLogger(__name__)


def _tenure_column(duration_col: str, bins: Optional[int], low: float, high: float) -> Column:
    if bins is None:
        return F.col(duration_col).cast(DoubleType())
    width = (high - low) / bins if high > low else 1.0
    # Right bin edge: an exit is never moved earlier than it happened
    return (F.ceil(F.col(duration_col) / width) * width).cast(DoubleType())


def _curve(counts: DataFrame, n_samples: int) -> DataFrame:
    """Product-limit estimate and Greenwood variance from per-time counts.

    ``counts`` has one row per time with ``leavers`` (events) and ``exits``
    (events plus censorings). S(t) is accumulated on the log scale; a time at
    which everyone still at risk leaves pins S to 0 from there on.
    """
    so_far = Window.orderBy("duration").rowsBetween(Window.unboundedPreceding, Window.currentRow)
    leavers, at_risk = F.col("leavers"), F.col("n_at_risk")
    survivors = at_risk - leavers

    staged = counts.withColumn(
        "n_at_risk", F.lit(n_samples) - F.sum("exits").over(so_far) + F.col("exits")
    ).withColumn(
        "log_step", F.when(survivors > 0, F.log(survivors / at_risk)).otherwise(0.0)
    ).withColumn(
        "wiped_out", F.max((survivors == 0).cast("int")).over(so_far)
    ).withColumn(
        "greenwood_step",
        F.when((survivors > 0) & (leavers > 0), leavers / (at_risk * survivors)).otherwise(0.0),
    )

    survival = F.when(F.col("wiped_out") == 1, F.lit(0.0)).otherwise(
        F.exp(F.sum("log_step").over(so_far))
    )
    staged = staged.withColumn("survival_probability", survival).withColumn(
        "variance", F.pow("survival_probability", 2) * F.sum("greenwood_step").over(so_far)
    )

    return staged.select(
        "duration",
        "n_at_risk",
        leavers.alias("n_events"),
        (F.col("exits") - leavers).alias("n_censored"),
        "survival_probability",
        "variance",
        F.sqrt("variance").alias("std_error"),
    ).orderBy("duration")


class KaplanMeier:
    """Spark-side Kaplan-Meier estimator.

    Produces the same table as the local ``KaplanMeierFitter`` (``duration``,
    ``n_at_risk``, ``n_events``, ``n_censored``, ``survival_probability``,
    ``variance``, ``std_error``) as a cached Spark DataFrame. Durations are
    kept exact unless ``bins`` is given, in which case they are rounded up
    onto an even grid.

    Attributes:
        survival_df: The fitted curve, or None before ``fit``.
        is_fitted: Whether ``fit`` has run.
    """

    def __init__(self) -> None:
        self.survival_df: Optional[DataFrame] = None
        self.is_fitted: bool = False
        self._stats: Dict[str, Any] = {}

    def fit(
        self,
        df: DataFrame,
        duration_col: str,
        event_col: str,
        bins: Optional[int] = None,
        label: str = "survival_probability",
    ) -> "KaplanMeier":
        """Estimate the curve for every row of ``df``.

        Args:
            df: One row per employee.
            duration_col: Tenure column.
            event_col: 0/1 column, 1 when the employee left.
            bins: Optional number of tenure bins.
            label: Curve name for messages and ``summary()``.

        Raises:
            DataError: If the table fails validation.
            DegenerateCurveError: If nobody left.
        """
        validate_input_schema(df, duration_col, event_col)

        overview = df.agg(
            F.count(F.lit(1)).alias("n"),
            F.sum(F.col(event_col).cast("long")).alias("events"),
            F.min(duration_col).alias("low"),
            F.max(duration_col).alias("high"),
        ).first()
        n_samples, total_events = overview["n"], int(overview["events"] or 0)

        if total_events == 0:
            raise DegenerateCurveError(
                f"Group '{label}' has no observed events among {n_samples} subjects; "
                "its Kaplan-Meier curve is constant"
            )

        counts = df.groupBy(
            _tenure_column(duration_col, bins, overview["low"], overview["high"]).alias("duration")
        ).agg(
            F.sum(F.col(event_col).cast("long")).alias("leavers"),
            F.count(F.lit(1)).alias("exits"),
        )
        self.survival_df = _curve(counts, n_samples).cache()

        self._stats = {
            "n_samples": n_samples,
            "total_events": total_events,
            "min_duration": overview["low"],
            "max_duration": overview["high"],
            "duration_col": duration_col,
            "event_col": event_col,
            "label": label,
            "bins": bins,
        }
        self.is_fitted = True
        logger.debug(
            "Fitted distributed Kaplan-Meier curve '%s': %d subjects, %d events",
            label, n_samples, total_events,
        )
        return self

    def _check_fitted(self) -> None:
        if not self.is_fitted or self.survival_df is None:
            raise ValueError("Model has not been fitted. Call fit() first.")

    def predict_survival(self, duration: float) -> float:
        """S(duration): 1 before the first time, flat after the last."""
        self._check_fitted()
        row = (
            self.survival_df.filter(F.col("duration") <= duration)
            .orderBy(F.col("duration").desc())
            .select("survival_probability")
            .first()
        )
        return 1.0 if row is None else float(row[0])

    def median_survival(self) -> Optional[float]:
        """First time with S <= 0.5, or None when the curve never gets there."""
        self._check_fitted()
        row = (
            self.survival_df.filter(F.col("survival_probability") <= 0.5)
            .orderBy("duration")
            .select("duration")
            .first()
        )
        return None if row is None else float(row[0])

    def summary(self) -> Dict[str, Any]:
        self._check_fitted()
        n_samples = self._stats["n_samples"]
        return {
            **self._stats,
            "event_rate": self._stats["total_events"] / n_samples if n_samples else 0.0,
            "median_survival": self.median_survival(),
            "is_fitted": self.is_fitted,
        }

    def get_confidence_intervals(self, confidence_level: float = 0.95) -> DataFrame:
        """Curve with log-log ``ci_lower``/``ci_upper`` columns.

        Where S is 0 or 1 the transform is undefined and both bounds equal S.
        """
        self._check_fitted()
        from scipy import stats

        z = float(stats.norm.ppf(0.5 + confidence_level / 2))
        s, se = F.col("survival_probability"), F.col("std_error")
        centre = F.log(-F.log(s))
        spread = z * se / F.abs(s * F.log(s))
        inside = (s > 0) & (s < 1)

        return self.survival_df.withColumn(
            "ci_lower", F.when(inside, F.exp(-F.exp(centre + spread))).otherwise(s)
        ).withColumn(
            "ci_upper", F.when(inside, F.exp(-F.exp(centre - spread))).otherwise(s)
        )

    @staticmethod
    def fit_groups(
        df: DataFrame,
        duration_col: str,
        event_col: str,
        group_col: str,
        bins: Optional[int] = None,
    ) -> Dict[Any, "KaplanMeier"]:
        """One curve per level of ``group_col``, keyed by level.

        Raises:
            DegenerateCurveError: If any group has no observed events.
        """
        validate_input_schema(df, duration_col, event_col, required_cols=[group_col])
        levels = sorted((row[0] for row in df.select(group_col).distinct().collect()), key=str)
        return {
            level: KaplanMeier().fit(
                df.filter(F.col(group_col) == level), duration_col, event_col,
                bins=bins, label=str(level),
            )
            for level in levels
        }
