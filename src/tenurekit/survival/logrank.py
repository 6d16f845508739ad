"""Log-rank testing for differences in retention between groups.

At each distinct event time the events are allocated across groups in
proportion to their risk sets (the hypergeometric expectation under equal
hazards). Observed minus expected events, together with their covariance,
give a chi-squared statistic with (groups - 1) degrees of freedom.

Sign convention for ``excess_events`` (observed - expected):
    - Positive Value: the group leaves FASTER than under equal hazards.
    - Negative Value: the group stays LONGER than under equal hazards.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd
from scipy import stats
from pyspark.sql import DataFrame as SparkDataFrame

from tenurekit.core.config import DEFAULT_ALPHA, DURATION_COL, EVENT_COL, GROUP_COL
from tenurekit.core.engine import to_pandas
from tenurekit.core.exceptions import DataError
from tenurekit.core.records import SurvivalData
from tenurekit.core.validation import validate_input_schema


logger = logging.getLogger(__name__)


@dataclass
class LogRankResult:
    """Result of a log-rank test comparing two or more survival curves.

    Attributes:
        test_statistic: The chi-square test statistic.
        p_value: The p-value for the test.
        degrees_of_freedom: Number of groups minus one.
        significant: Whether p_value < alpha.
        alpha: Threshold used for ``significant``.
        group_names: Group labels in test order.
        observed: Observed events per group.
        expected: Expected events per group under equal hazards.
        n_per_group: Subjects per group.
    """
    test_statistic: float
    p_value: float
    degrees_of_freedom: int = 1
    significant: bool = False
    alpha: float = DEFAULT_ALPHA
    group_names: Tuple[str, ...] = ()
    observed: Dict[str, float] = field(default_factory=dict)
    expected: Dict[str, float] = field(default_factory=dict)
    n_per_group: Dict[str, int] = field(default_factory=dict)

    @property
    def excess_events(self) -> Dict[str, float]:
        """Observed minus expected events per group."""
        return {g: self.observed[g] - self.expected[g] for g in self.group_names}

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary."""
        return {
            "test_statistic": self.test_statistic,
            "p_value": self.p_value,
            "degrees_of_freedom": self.degrees_of_freedom,
            "significant": self.significant,
            "alpha": self.alpha,
            "group_names": list(self.group_names),
            "observed": dict(self.observed),
            "expected": dict(self.expected),
            "excess_events": self.excess_events,
            "n_per_group": dict(self.n_per_group),
        }


def logrank_statistic(
    durations: np.ndarray,
    events: np.ndarray,
    groups: np.ndarray,
    group_names: List[Any],
) -> Tuple[float, np.ndarray, np.ndarray]:
    """Compute the k-sample log-rank statistic.

    Returns:
        (chi_square, observed, expected), the last two ordered as group_names.
    """
    durations = np.asarray(durations, dtype=float)
    events = np.asarray(events, dtype=bool)
    k = len(group_names)
    membership = np.stack([groups == g for g in group_names])  # (k, n)

    observed = np.zeros(k)
    expected = np.zeros(k)
    covariance = np.zeros((k, k))

    for t in np.unique(durations[events]):
        at_risk = membership[:, durations >= t].sum(axis=1).astype(float)  # n_j
        deaths = membership[:, (durations == t) & events].sum(axis=1).astype(float)  # o_j
        n_total = at_risk.sum()
        d_total = deaths.sum()

        share = at_risk / n_total
        observed += deaths
        expected += d_total * share

        if n_total > 1:
            # Hypergeometric covariance of the k event counts
            scale = d_total * (n_total - d_total) / (n_total - 1)
            covariance += scale * (np.diag(share) - np.outer(share, share))

    # The k counts sum to a constant, so drop the last group
    diff = (observed - expected)[:-1]
    reduced = covariance[:-1, :-1]
    if np.allclose(reduced, 0.0):
        chi_square = 0.0
    else:
        chi_square = float(diff @ np.linalg.pinv(reduced) @ diff)
    return max(chi_square, 0.0), observed, expected


class SurvivalTester:
    """Log-rank testing for retention differences between groups.

    Accepts pandas or PySpark DataFrames (Spark input is reduced to the three
    needed columns and collected) and SurvivalData with a group label.
    """

    def __init__(self) -> None:
        """Initialize the SurvivalTester."""
        self._is_fitted: bool = False
        self._last_result: Optional[LogRankResult] = None
        self._stats: Dict[str, Any] = {}

    def run_test(
        self,
        df: Union[pd.DataFrame, SparkDataFrame, SurvivalData],
        duration_col: str = DURATION_COL,
        event_col: str = EVENT_COL,
        group_col: str = GROUP_COL,
        alpha: float = DEFAULT_ALPHA,
    ) -> Dict[str, Any]:
        """Run a log-rank test comparing survival curves between groups.

        Args:
            df: Records with a duration, an event indicator and a group column.
            duration_col: Name of the duration column.
            event_col: Name of the event indicator column.
            group_col: Name of the grouping column.
            alpha: Significance threshold for the ``significant`` flag. It is
                a policy input; the statistic does not depend on it.

        Returns:
            ``LogRankResult.to_dict()``.

        Raises:
            ValueError: If fewer than two groups are present.
        """
        result = self.test(df, duration_col, event_col, group_col, alpha)
        return result.to_dict()

    def test(
        self,
        df: Union[pd.DataFrame, SparkDataFrame, SurvivalData],
        duration_col: str = DURATION_COL,
        event_col: str = EVENT_COL,
        group_col: str = GROUP_COL,
        alpha: float = DEFAULT_ALPHA,
    ) -> LogRankResult:
        """Same as :meth:`run_test` but returns the dataclass."""
        if isinstance(df, SurvivalData):
            if df.group_label is None:
                raise DataError("No group label attached; call with_group_label() first")
            df, duration_col, event_col, group_col = (
                df.to_frame(), DURATION_COL, EVENT_COL, GROUP_COL
            )

        validate_input_schema(df, duration_col, event_col, required_cols=[group_col])
        frame = to_pandas(df, [duration_col, event_col, group_col])

        unique_groups = sorted(frame[group_col].unique().tolist(), key=str)
        if len(unique_groups) < 2:
            raise DataError(
                f"Group column must have at least 2 unique values, "
                f"found {len(unique_groups)}: {unique_groups}"
            )

        durations = frame[duration_col].to_numpy(dtype=float)
        events = frame[event_col].to_numpy().astype(bool)
        groups = frame[group_col].to_numpy()

        chi_square, observed, expected = logrank_statistic(
            durations, events, groups, unique_groups
        )
        dof = len(unique_groups) - 1
        p_value = float(stats.chi2.sf(chi_square, df=dof))

        names = tuple(str(g) for g in unique_groups)
        n_per_group = {str(g): int((groups == g).sum()) for g in unique_groups}
        result = LogRankResult(
            test_statistic=float(chi_square),
            p_value=p_value,
            degrees_of_freedom=dof,
            significant=p_value < alpha,
            alpha=alpha,
            group_names=names,
            observed=dict(zip(names, observed.tolist())),
            expected=dict(zip(names, expected.tolist())),
            n_per_group=n_per_group,
        )

        self._stats = {
            "n_per_group": n_per_group,
            "events_per_group": dict(zip(names, observed.astype(int).tolist())),
        }
        self._last_result = result
        self._is_fitted = True

        logger.info(
            "Log-rank test over %d groups: chi2=%.4f df=%d p=%.4g",
            len(names), chi_square, dof, p_value,
        )
        return result

    def summary(self) -> Dict[str, Any]:
        """Get a summary of the test results."""
        if not self._is_fitted:
            raise ValueError("Test has not been run. Call run_test() first.")

        return {
            **self._stats,
            "test_statistic": self._last_result.test_statistic,
            "p_value": self._last_result.p_value,
            "degrees_of_freedom": self._last_result.degrees_of_freedom,
            "significant": self._last_result.significant,
        }

    @property
    def is_fitted(self) -> bool:
        """Whether a test has been run."""
        return self._is_fitted

    @property
    def group_names(self) -> Tuple[str, ...]:
        """Get the names of the groups being compared."""
        if self._last_result is None:
            return ()
        return self._last_result.group_names
