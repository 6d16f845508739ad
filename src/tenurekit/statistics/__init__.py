"""Statistics module for Tenurekit.

This module provides pure mathematical and statistical implementations
that are decoupled from specific backend implementations.
"""

from tenurekit.statistics.concordance import concordance_index, score_model
from tenurekit.statistics.goodness_of_fit import (
    GoodnessOfFitResult,
    compare_distributions,
    goodness_of_fit,
)
from tenurekit.statistics.optimize import (
    OptimizationResult,
    check_separation,
    covariance_from_hessian,
    maximize_likelihood,
)

__all__ = [
    "concordance_index",
    "score_model",
    "GoodnessOfFitResult",
    "compare_distributions",
    "goodness_of_fit",
    "OptimizationResult",
    "check_separation",
    "covariance_from_hessian",
    "maximize_likelihood",
]
