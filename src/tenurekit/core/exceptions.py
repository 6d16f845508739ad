"""Error and warning taxonomy for Tenurekit.

Three families of outcome are distinguished:

1. Data errors: the input cannot be modelled as given (non-positive durations,
   missing columns, empty groups or strata, fewer observations than
   parameters). The fit is aborted and no partial model is returned.
2. Numerical errors: the optimizer did not converge, the information matrix
   is singular, or a distribution parameter left its valid range. These carry
   the last iterate's diagnostics.
3. Statistical-assumption findings: proportional-hazards violations,
   goodness-of-fit rejections, unstable uplift arms. These are advisory and
   surface as warnings; the caller decides what to do about them.
"""

from typing import Any, Dict, Optional


class TenurekitError(Exception):
    """Base class for all Tenurekit errors."""


class DataError(TenurekitError, ValueError):
    """The input records violate an invariant required for fitting."""


class DegenerateCurveError(DataError):
    """A Kaplan-Meier group has no observed events, so its curve is constant."""


class EmptyRiskSetError(DataError):
    """A stratum (or stratum/time combination) has an empty risk set."""


class NumericalError(TenurekitError):
    """A numerical procedure failed.

    Attributes:
        diagnostics: Details about the last iterate (parameters, gradient
            norm, iteration count, optimizer message).
    """

    def __init__(self, message: str, diagnostics: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.diagnostics: Dict[str, Any] = diagnostics or {}


class ConvergenceError(NumericalError):
    """An iterative procedure exhausted its iteration budget."""


class SingularMatrixError(NumericalError):
    """The coefficient covariance (or design) matrix is singular."""


class InvalidParameterError(NumericalError):
    """A fitted distribution parameter is non-positive or non-finite."""


class TenurekitWarning(UserWarning):
    """Base class for advisory findings."""


class ProportionalHazardsWarning(TenurekitWarning):
    """At least one covariate fails the proportional-hazards test."""


class GoodnessOfFitWarning(TenurekitWarning):
    """A candidate distribution was rejected by the goodness-of-fit test."""


class UnstableFitWarning(TenurekitWarning):
    """A fit succeeded but its estimates are unreliable."""
