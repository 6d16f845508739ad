"""Synthetic data generators for survival analysis."""

import logging
from typing import Dict, Optional, Union

import numpy as np
import pandas as pd
from pyspark.sql import DataFrame, SparkSession


logger = logging.getLogger(__name__)


def generate_synthetic_survival_data(
    n_samples: int = 1000,
    distribution: str = "exponential",
    scale: float = 1.0,
    shape: float = 1.5,
    effects: Optional[Dict[str, float]] = None,
    noise_covariates: int = 0,
    horizon: Optional[float] = None,
    censoring_rate: float = 0.0,
    seed: Optional[int] = None,
    spark: Optional[SparkSession] = None,
) -> Union[pd.DataFrame, DataFrame]:
    """Generate proportional-hazards survival data for testing and benchmarking.

    Each subject gets independent binary covariates. Covariates named in
    ``effects`` multiply the hazard by the given ratio; the
    ``noise_covariates`` extra columns have no effect. Event times follow
    ``H(t | x) = (t / scale) ** shape * exp(x'beta)`` (shape 1 for the
    exponential), so the true Cox coefficient of covariate j is
    ``log(effects[j])``.

    Args:
        n_samples: Number of subjects. Default is 1,000.
        distribution: 'exponential' or 'weibull'.
        scale: Baseline scale. For exponential this is the baseline mean.
        shape: Weibull shape (ignored for exponential).
        effects: Mapping from covariate name to hazard ratio.
        noise_covariates: Number of binary covariates with hazard ratio 1,
            named noise_0, noise_1, ...
        horizon: Administrative censoring time; subjects still employed at
            the horizon are censored there.
        censoring_rate: Probability that a subject is independently censored
            at a uniformly drawn fraction of its event time.
        seed: Random seed for reproducibility.
        spark: If given, the result is returned as a Spark DataFrame.

    Returns:
        DataFrame with columns id, duration, event and the covariates.

    Raises:
        ValueError: On an unknown distribution or out-of-range parameter.

    Examples:
        >>> df = generate_synthetic_survival_data(
        ...     500, effects={"remote": 0.5}, noise_covariates=2, horizon=2.0, seed=7
        ... )
        >>> df.columns.tolist()
        ['id', 'duration', 'event', 'remote', 'noise_0', 'noise_1']
    """
    if distribution not in ("exponential", "weibull"):
        raise ValueError("Distribution must be 'exponential' or 'weibull'")
    if not 0 <= censoring_rate < 1:
        raise ValueError("censoring_rate must be in [0, 1)")
    if scale <= 0 or shape <= 0:
        raise ValueError("scale and shape must be positive")
    if horizon is not None and horizon <= 0:
        raise ValueError("horizon must be positive")
    effects = dict(effects or {})
    if any(ratio <= 0 for ratio in effects.values()):
        raise ValueError("Hazard ratios must be positive")

    rng = np.random.default_rng(seed)
    k = 1.0 if distribution == "exponential" else shape

    covariates = {name: rng.integers(0, 2, n_samples) for name in effects}
    for i in range(noise_covariates):
        covariates[f"noise_{i}"] = rng.integers(0, 2, n_samples)

    linear = np.zeros(n_samples)
    for name, ratio in effects.items():
        linear += np.log(ratio) * covariates[name]

    # Inverse-transform sampling of H(T | x) ~ Exp(1); 1 - U avoids log(0)
    uniform_random = 1.0 - rng.random(n_samples)
    event_times = scale * (-np.log(uniform_random) * np.exp(-linear)) ** (1.0 / k)

    durations = event_times.copy()
    events = np.ones(n_samples, dtype=np.int32)

    censored = rng.random(n_samples) < censoring_rate
    durations[censored] *= 1.0 - rng.random(int(censored.sum()))
    events[censored] = 0

    if horizon is not None:
        beyond = durations > horizon
        durations[beyond] = horizon
        events[beyond] = 0

    frame = pd.DataFrame({
        "id": [f"sample_{i:08d}" for i in range(n_samples)],
        "duration": durations.astype(np.float64),
        "event": events,
        **{name: values.astype(np.int32) for name, values in covariates.items()},
    })
    logger.debug(
        "Generated %d synthetic subjects (%s, %d events)", n_samples, distribution, int(events.sum())
    )

    if spark is not None:
        return spark.createDataFrame(frame)
    return frame
