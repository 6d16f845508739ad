"""Tests for Anderson-Darling goodness-of-fit testing."""

import numpy as np
import pytest
from scipy import stats

from tenurekit.core import DataError, GoodnessOfFitWarning
from tenurekit.statistics import compare_distributions, goodness_of_fit


class TestGoodnessOfFit:
    """Tests for goodness_of_fit."""

    def test_weibull_sample_not_rejected(self):
        """A Weibull sample is consistent with the Weibull family."""
        durations = stats.weibull_min.rvs(1.5, scale=4.0, size=200, random_state=11)

        result = goodness_of_fit(durations, "weibull", alpha=0.01, n_mc_samples=99, random_state=0)

        assert result.distribution == "weibull"
        assert result.rejected is False
        assert result.params["c"] == pytest.approx(1.5, rel=0.25)
        assert result.params["loc"] == 0.0

    def test_clearly_wrong_family_rejected_with_warning(self):
        """Tenures packed into [10, 11] are not exponential."""
        durations = np.random.default_rng(5).uniform(10, 11, 150)

        with pytest.warns(GoodnessOfFitWarning, match="exponential"):
            result = goodness_of_fit(durations, "exponential", n_mc_samples=99, random_state=0)

        assert result.rejected is True
        assert result.p_value < 0.05

    def test_events_filter(self):
        durations = stats.weibull_min.rvs(1.2, scale=3.0, size=60, random_state=2)
        events = np.r_[np.ones(40), np.zeros(20)]

        result = goodness_of_fit(durations, "weibull", events=events, n_mc_samples=49, random_state=0)

        assert result.n_samples == 40

    def test_too_few_samples(self):
        with pytest.raises(DataError, match="at least"):
            goodness_of_fit([1.0, 2.0, 3.0])

    def test_unknown_distribution(self):
        with pytest.raises(ValueError, match="Unknown distribution"):
            goodness_of_fit(np.arange(1, 20), "gompertz-ish")

    def test_to_dict(self):
        durations = stats.weibull_min.rvs(1.5, scale=4.0, size=50, random_state=1)
        result = goodness_of_fit(durations, "weibull", n_mc_samples=49, random_state=0)
        assert set(result.to_dict()) == {
            "distribution", "statistic", "p_value", "rejected", "alpha", "params", "n_samples",
        }


class TestCompareDistributions:
    """Tests for compare_distributions."""

    def test_table_sorted_by_p_value(self):
        durations = stats.weibull_min.rvs(2.5, scale=4.0, size=150, random_state=7)

        table = compare_distributions(
            durations, ("weibull", "exponential"), n_mc_samples=99, random_state=0
        )

        assert set(table.index) == {"weibull", "exponential"}
        assert list(table.columns) == ["statistic", "p_value", "rejected", "n_samples"]
        assert table["p_value"].is_monotonic_decreasing
        # Shape 2.5 is far from exponential
        assert table.index[0] == "weibull"
