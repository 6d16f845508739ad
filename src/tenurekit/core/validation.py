"""Validation utilities for Tenurekit."""

from typing import Iterable, Optional

import numpy as np
import pandas as pd
from pyspark.sql import DataFrame as SparkDataFrame
from pyspark.sql import functions as F
from pyspark.sql.types import NumericType

from tenurekit.core.engine import get_backend
from tenurekit.core.exceptions import DataError


def validate_input_schema(
    df,
    duration_col: str,
    event_col: str,
    required_cols: Optional[Iterable[str]] = None,
) -> None:
    """Validate that the input DataFrame can be read as event-time records.

    Checks that the duration and event columns exist, that durations are
    numeric and strictly positive, that the event indicator only holds 0/1,
    and that none of the used columns contain nulls.

    Args:
        df: Input pandas or PySpark DataFrame.
        duration_col: Name of the duration column.
        event_col: Name of the event column.
        required_cols: Additional columns (covariates, group labels) that must
            be present and non-null.

    Raises:
        DataError: If required columns are missing or hold invalid values.
        TypeError: If df is not a pandas or PySpark DataFrame.
    """
    backend = get_backend(df)
    extra = list(required_cols or [])

    for column in [duration_col, event_col] + extra:
        if column not in df.columns:
            raise DataError(f"Column '{column}' not found in DataFrame")

    if backend == "pandas":
        _validate_pandas(df, duration_col, event_col, extra)
    else:
        _validate_spark(df, duration_col, event_col, extra)


def _validate_pandas(
    df: pd.DataFrame, duration_col: str, event_col: str, extra: list
) -> None:
    if len(df) == 0:
        raise DataError("DataFrame is empty")

    if not pd.api.types.is_numeric_dtype(df[duration_col]):
        raise DataError(
            f"Duration column '{duration_col}' must be numeric, found {df[duration_col].dtype}"
        )

    used = [duration_col, event_col] + extra
    null_counts = df[used].isna().sum()
    if null_counts.any():
        missing = null_counts[null_counts > 0].to_dict()
        raise DataError(f"Missing values in required columns: {missing}")

    durations = df[duration_col].to_numpy(dtype=float)
    if not np.all(np.isfinite(durations)):
        raise DataError(f"Duration column '{duration_col}' contains non-finite values")
    if durations.min() <= 0:
        raise DataError(
            f"Duration values must be positive, found min={durations.min()}"
        )

    events = pd.unique(df[event_col])
    if not set(events.tolist()) <= {0, 1, True, False}:
        raise DataError(
            f"Event column '{event_col}' must only contain 0/1, found {sorted(map(str, events))}"
        )


def _validate_spark(
    df: SparkDataFrame, duration_col: str, event_col: str, extra: list
) -> None:
    if not isinstance(df.schema[duration_col].dataType, NumericType):
        raise DataError(
            f"Duration column '{duration_col}' must be numeric, "
            f"found {df.schema[duration_col].dataType}"
        )

    used = [duration_col, event_col] + extra
    # One pass for every check
    row = df.select(
        F.count(F.lit(1)).alias("n_samples"),
        F.min(duration_col).alias("min_duration"),
        F.sum(
            F.when(~F.col(event_col).cast("double").isin(0.0, 1.0), 1).otherwise(0)
        ).alias("bad_events"),
        *[F.sum(F.col(c).isNull().cast("int")).alias(f"null_{i}") for i, c in enumerate(used)],
    ).first()

    if row["n_samples"] == 0:
        raise DataError("DataFrame is empty")

    nulls = {c: row[f"null_{i}"] for i, c in enumerate(used) if row[f"null_{i}"]}
    if nulls:
        raise DataError(f"Missing values in required columns: {nulls}")

    if row["min_duration"] <= 0:
        raise DataError(f"Duration values must be positive, found min={row['min_duration']}")

    if row["bad_events"]:
        raise DataError(f"Event column '{event_col}' must only contain 0/1")
