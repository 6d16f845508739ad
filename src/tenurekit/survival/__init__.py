"""Survival analysis module for Tenurekit.

Kaplan-Meier curves dispatch to local (pandas/lifelines) or distributed
(Spark) implementations based on the input DataFrame type. Regression models
(Weibull AFT, Cox PH) and the log-rank test work on in-memory records.

Example:
    >>> from tenurekit.survival import SurvivalTester, CoxPHFitter
    >>> import pandas as pd
    >>>
    >>> df_ab = pd.DataFrame({
    ...     'stag': [5, 6, 7, 8, 10, 12, 15, 16],
    ...     'event': [1, 0, 1, 0, 1, 1, 1, 0],
    ...     'way': ['bus', 'bus', 'bus', 'bus', 'car', 'car', 'car', 'car']
    ... })
    >>> tester = SurvivalTester()
    >>> result = tester.run_test(df_ab, 'stag', 'event', group_col='way')
    >>> print(f"P-Value: {result['p_value']:.4f}")
"""

from tenurekit.survival.estimator import SurvivalEstimator
from tenurekit.survival.local_impl import KaplanMeierFitter
from tenurekit.survival.spark_impl import KaplanMeier
from tenurekit.survival.logrank import SurvivalTester, LogRankResult
from tenurekit.survival.weibull import WeibullAFTFitter, WeibullAFTModel
from tenurekit.survival.cox import CoxPHFitter, CoxPHModel
from tenurekit.survival.selection import StepwiseResult, stepwise_selection
from tenurekit.survival.utils import generate_synthetic_survival_data

__all__ = [
    "SurvivalEstimator",  # Unified interface
    "KaplanMeierFitter",  # Local (pandas/lifelines)
    "KaplanMeier",        # Distributed (Spark)
    "SurvivalTester",     # k-group log-rank test
    "LogRankResult",
    "WeibullAFTFitter",
    "WeibullAFTModel",
    "CoxPHFitter",
    "CoxPHModel",
    "StepwiseResult",
    "stepwise_selection",
    "generate_synthetic_survival_data",
]
