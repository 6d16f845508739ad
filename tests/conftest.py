"""Pytest configuration and fixtures for Tenurekit tests."""

import numpy as np
import pandas as pd
import pytest


@pytest.fixture(scope="session")
def spark_session():
    """Create a SparkSession for testing.

    This fixture creates a local SparkSession with minimal configuration
    suitable for unit testing. The session is shared across all tests
    in a test session for efficiency. Tests that need it are skipped when no
    JVM is available.

    Yields:
        SparkSession: Active SparkSession instance.
    """
    from pyspark.sql import SparkSession

    try:
        spark = (
            SparkSession.builder.master("local[2]")
            .appName("tenurekit-test")
            .config("spark.sql.shuffle.partitions", "4")
            .config("spark.sql.adaptive.enabled", "true")
            .config("spark.sql.adaptive.coalescePartitions.enabled", "true")
            .getOrCreate()
        )
    except Exception as exc:  # no JVM on this machine
        pytest.skip(f"Spark is not available: {exc}")

    # Set log level to reduce noise during tests
    spark.sparkContext.setLogLevel("ERROR")

    yield spark

    # Cleanup after tests
    spark.stop()


@pytest.fixture(scope="session")
def turnover_df():
    """Synthetic employee-turnover table.

    Columns: stag (tenure in years), event, gender, age, way (commute),
    extraversion, coach. Older employees and bus commuters leave faster,
    walkers stay longer; gender and extraversion have no effect.
    """
    rng = np.random.default_rng(2024)
    n = 400
    age = rng.uniform(20, 55, n).round(0)
    way = rng.choice(["bus", "car", "foot"], n)
    gender = rng.choice(["f", "m"], n)
    extraversion = rng.normal(5, 2, n).round(1)
    coach = rng.choice(["no", "yes"], n)

    way_effect = pd.Series(way).map({"bus": 0.4, "car": 0.0, "foot": -0.5}).to_numpy()
    linear = 0.03 * (age - 35) + way_effect
    shape, scale = 1.3, 4.0
    times = scale * (-np.log(1 - rng.random(n)) * np.exp(-linear)) ** (1 / shape)
    horizon = 8.0

    return pd.DataFrame({
        "stag": np.minimum(times, horizon).round(2).clip(0.01),
        "event": (times <= horizon).astype(int),
        "gender": gender,
        "age": age,
        "way": way,
        "extraversion": extraversion,
        "coach": coach,
    })


@pytest.fixture(scope="session")
def turnover_data(turnover_df):
    """The turnover table as SurvivalData."""
    from tenurekit.core import SurvivalData

    return SurvivalData.from_frame(turnover_df, "stag", "event")


@pytest.fixture(scope="session")
def rossi():
    """Recidivism data shipped with lifelines (reference for regression fits)."""
    from lifelines.datasets import load_rossi

    return load_rossi()


@pytest.fixture(scope="session")
def rossi_data(rossi):
    from tenurekit.core import SurvivalData

    return SurvivalData.from_frame(rossi, "week", "arrest")


@pytest.fixture(scope="function")
def small_survival_data(spark_session):
    """Create a small Spark survival dataset for comparing against lifelines.

    Returns:
        DataFrame with columns: id (string), duration (float), event (int).
    """
    from tenurekit.survival.utils import generate_synthetic_survival_data

    return generate_synthetic_survival_data(
        n_samples=100, censoring_rate=0.3, scale=100.0, seed=42, spark=spark_session
    )
