"""Core utilities for Tenurekit.

This module provides shared infrastructure used across all analysis modules:
- engine: Dispatcher for detecting and handling Pandas vs Spark DataFrames
- validation: Rigorous data checks (data types, positivity, nulls)
- covariates: Declarative covariate specification with reference levels
- records: Immutable event-time records
- exceptions: Error and warning taxonomy
- reporting: Standardized summary tables and effect descriptions
"""

from tenurekit.core.engine import get_backend, is_pandas, is_spark, to_pandas
from tenurekit.core.validation import validate_input_schema
from tenurekit.core.covariates import Covariate, CovariateSpec, EMPTY_SPEC
from tenurekit.core.records import SurvivalData
from tenurekit.core.config import DEFAULT_ALPHA, OptimizerOptions
from tenurekit.core.exceptions import (
    TenurekitError,
    DataError,
    DegenerateCurveError,
    EmptyRiskSetError,
    NumericalError,
    ConvergenceError,
    SingularMatrixError,
    InvalidParameterError,
    TenurekitWarning,
    ProportionalHazardsWarning,
    GoodnessOfFitWarning,
    UnstableFitWarning,
)
from tenurekit.core.reporting import coefficient_summary, describe_effects

__all__ = [
    # Engine
    "get_backend",
    "is_pandas",
    "is_spark",
    "to_pandas",
    # Validation
    "validate_input_schema",
    # Data model
    "Covariate",
    "CovariateSpec",
    "EMPTY_SPEC",
    "SurvivalData",
    # Config
    "DEFAULT_ALPHA",
    "OptimizerOptions",
    # Errors
    "TenurekitError",
    "DataError",
    "DegenerateCurveError",
    "EmptyRiskSetError",
    "NumericalError",
    "ConvergenceError",
    "SingularMatrixError",
    "InvalidParameterError",
    "TenurekitWarning",
    "ProportionalHazardsWarning",
    "GoodnessOfFitWarning",
    "UnstableFitWarning",
    # Reporting
    "coefficient_summary",
    "describe_effects",
]
