"""Default settings shared by the fitters."""

from dataclasses import dataclass


DEFAULT_ALPHA = 0.05

# Column names used when records are converted back to a flat table.
DURATION_COL = "duration"
EVENT_COL = "event"
GROUP_COL = "group"
TREATMENT_COL = "treatment"


@dataclass(frozen=True)
class OptimizerOptions:
    """Bounds for every iterative optimizer.

    Attributes:
        max_iter: Maximum number of optimizer iterations. Exceeding it is a
            reported failure, never an infinite loop.
        tol: Convergence tolerance on the gradient norm.
    """
    max_iter: int = 100
    tol: float = 1e-6

    def __post_init__(self):
        if self.max_iter < 1:
            raise ValueError(f"max_iter must be positive, got {self.max_iter}")
        if self.tol <= 0:
            raise ValueError(f"tol must be positive, got {self.tol}")
