"""Tenurekit - survival analysis for employee turnover.

Tenurekit estimates turnover risk from censored tenure data: Kaplan-Meier
curves that dispatch to local (pandas/lifelines) or distributed (Spark)
implementations, the log-rank test, Weibull AFT and Cox PH regression with
stepwise AIC selection, and a two-model uplift estimator.

Example:
    >>> import pandas as pd
    >>> from tenurekit import CoxPHFitter, CovariateSpec, SurvivalData
    >>>
    >>> df = pd.read_csv("turnover.csv")
    >>> data = SurvivalData.from_frame(df, "stag", "event", ["age", "way", "gender"])
    >>> spec = CovariateSpec.infer(df, ["age", "way"], references={"way": "bus"})
    >>> model = CoxPHFitter().fit(data, spec, strata=None)
    >>> print(model.summary)
    >>> model.check_proportional_hazards(data)
"""

import logging

__version__ = "0.1.0"

from tenurekit.core import (
    Covariate,
    CovariateSpec,
    SurvivalData,
    DataError,
    NumericalError,
    TenurekitError,
    TenurekitWarning,
)
from tenurekit.statistics import concordance_index, goodness_of_fit, compare_distributions
from tenurekit.survival import (
    SurvivalEstimator,
    KaplanMeierFitter,
    KaplanMeier,
    SurvivalTester,
    LogRankResult,
    WeibullAFTFitter,
    CoxPHFitter,
    stepwise_selection,
)
from tenurekit.uplift import TwoModelUplift

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "Covariate",
    "CovariateSpec",
    "SurvivalData",
    "DataError",
    "NumericalError",
    "TenurekitError",
    "TenurekitWarning",
    "concordance_index",
    "goodness_of_fit",
    "compare_distributions",
    "SurvivalEstimator",  # Unified Kaplan-Meier interface (recommended)
    "KaplanMeierFitter",  # Local (pandas/lifelines)
    "KaplanMeier",        # Distributed (Spark)
    "SurvivalTester",     # Log-rank test
    "LogRankResult",
    "WeibullAFTFitter",
    "CoxPHFitter",
    "stepwise_selection",
    "TwoModelUplift",
]
