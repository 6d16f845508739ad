"""Backend detection for workforce tables held in pandas or Spark."""

import logging
from typing import Optional, Sequence, Union

import pandas as pd
from pyspark.sql import DataFrame as SparkDataFrame


logger = logging.getLogger(__name__)

BackendType = Union[pd.DataFrame, SparkDataFrame]

BACKENDS = {pd.DataFrame: "pandas", SparkDataFrame: "spark"}


def get_backend(df: BackendType) -> str:
    """Name of the library holding ``df``: "pandas" or "spark".

    Raises:
        TypeError: For anything that is neither.
    """
    for frame_type, name in BACKENDS.items():
        if isinstance(df, frame_type):
            return name
    raise TypeError(
        f"Unsupported DataFrame type {type(df).__name__}; pass a "
        "pandas.DataFrame or a pyspark.sql.DataFrame"
    )


def is_spark(df: BackendType) -> bool:
    return isinstance(df, SparkDataFrame)


def is_pandas(df: BackendType) -> bool:
    return isinstance(df, pd.DataFrame)


def to_pandas(df: BackendType, columns: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """Bring a table into driver memory as a pandas DataFrame.

    The regression fitters work on an in-memory record collection, so Spark
    input is projected onto ``columns`` and collected. Pandas input is copied.
    """
    if get_backend(df) == "spark":
        if columns is not None:
            df = df.select(*columns)
        logger.debug("Collecting Spark DataFrame to the driver")
        return df.toPandas()
    if columns is not None:
        return df.loc[:, list(columns)].copy()
    return df.copy()
