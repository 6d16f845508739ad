"""Treatment-effect heterogeneity (uplift) estimation for Tenurekit."""

from tenurekit.uplift.two_model import ArmModel, TwoModelUplift, UpliftResult, check_arm

__all__ = [
    "ArmModel",
    "TwoModelUplift",
    "UpliftResult",
    "check_arm",
]
