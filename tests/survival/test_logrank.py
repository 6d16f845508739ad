"""Tests for the k-group log-rank test."""

import numpy as np
import pandas as pd
import pytest
from lifelines.statistics import logrank_test, multivariate_logrank_test

from tenurekit.core import DataError
from tenurekit.survival import LogRankResult, SurvivalTester


def commute_frame(rng, n, bus_scale, car_scale):
    """Tenures of bus and car commuters with 60% observed exits."""
    bus = np.clip(rng.exponential(bus_scale, n), 0.1, 100).round(1)
    car = np.clip(rng.exponential(car_scale, n), 0.1, 100).round(1)
    return pd.DataFrame({
        'stag': np.concatenate([bus, car]),
        'event': rng.binomial(1, 0.6, 2 * n),
        'way': ['bus'] * n + ['car'] * n,
    })


@pytest.fixture
def tiny_df():
    return pd.DataFrame({
        'stag': [5, 6, 7, 8, 10, 12],
        'event': [1, 0, 1, 0, 1, 1],
        'way': ['bus', 'bus', 'bus', 'car', 'car', 'car'],
    })


class TestLogRankResult:
    def test_dict_view(self):
        result = LogRankResult(
            test_statistic=5.0,
            p_value=0.025,
            degrees_of_freedom=1,
            significant=True,
            group_names=("bus", "car"),
            observed={"bus": 10.0, "car": 4.0},
            expected={"bus": 7.0, "car": 7.0},
        )

        as_dict = result.to_dict()

        assert as_dict["group_names"] == ["bus", "car"]
        assert as_dict["significant"] is True
        assert (as_dict["test_statistic"], as_dict["degrees_of_freedom"]) == (5.0, 1)
        # Positive excess: the group leaves faster than pooled hazard predicts
        assert as_dict["excess_events"] == {"bus": 3.0, "car": -3.0}


class TestSurvivalTesterPandas:
    """Log-rank on in-memory tables."""

    def test_identical_groups(self):
        """Copying the same cohort into two groups gives chi2 = 0 and p = 1."""
        rng = np.random.default_rng(42)
        cohort = commute_frame(rng, 25, 10, 10)
        df = pd.concat([cohort.assign(way='bus'), cohort.assign(way='car')], ignore_index=True)

        result = SurvivalTester().run_test(df, 'stag', 'event', group_col='way')

        assert result['test_statistic'] == pytest.approx(0.0, abs=1e-10)
        assert result['p_value'] == pytest.approx(1.0)
        assert result['degrees_of_freedom'] == 1

    def test_two_groups_agree_with_lifelines(self):
        df = commute_frame(np.random.default_rng(7), 100, 10, 20)
        bus, car = df[df['way'] == 'bus'], df[df['way'] == 'car']

        result = SurvivalTester().run_test(df, 'stag', 'event', group_col='way')
        reference = logrank_test(
            bus['stag'], car['stag'], event_observed_A=bus['event'], event_observed_B=car['event']
        )

        assert result['test_statistic'] == pytest.approx(reference.test_statistic, rel=1e-8)
        assert result['p_value'] == pytest.approx(reference.p_value, rel=1e-6)

    def test_three_groups_agree_with_lifelines(self, turnover_df):
        result = SurvivalTester().run_test(turnover_df, 'stag', 'event', group_col='way')
        reference = multivariate_logrank_test(
            turnover_df['stag'], turnover_df['way'], turnover_df['event']
        )

        assert result['degrees_of_freedom'] == 2
        assert result['test_statistic'] == pytest.approx(reference.test_statistic, rel=1e-8)
        assert result['p_value'] == pytest.approx(reference.p_value, rel=1e-6)
        assert result['excess_events']['bus'] > 0
        assert result['excess_events']['foot'] < 0

    def test_observed_equals_expected_in_total(self, turnover_df):
        result = SurvivalTester().test(turnover_df, 'stag', 'event', group_col='way')
        assert sum(result.observed.values()) == pytest.approx(sum(result.expected.values()))

    def test_survival_data_input(self, turnover_data):
        result = SurvivalTester().test(turnover_data.with_group_label('gender'))

        assert result.group_names == ('f', 'm')
        assert sum(result.n_per_group.values()) == turnover_data.n_samples

    def test_survival_data_without_label(self, turnover_data):
        with pytest.raises(DataError, match="No group label"):
            SurvivalTester().test(turnover_data)

    def test_summary_counts(self, tiny_df):
        tester = SurvivalTester()
        tester.run_test(tiny_df, 'stag', 'event', group_col='way')

        summary = tester.summary()

        assert summary["n_per_group"] == {'bus': 3, 'car': 3}
        assert summary["events_per_group"] == {'bus': 2, 'car': 2}
        assert tester.group_names == ('bus', 'car')

    def test_summary_before_run(self):
        with pytest.raises(ValueError, match="Test has not been run"):
            SurvivalTester().summary()

    def test_single_group(self, tiny_df):
        with pytest.raises(ValueError, match="at least 2 unique values"):
            SurvivalTester().run_test(tiny_df.assign(way='car'), 'stag', 'event', group_col='way')

    def test_significance_flag_follows_alpha(self):
        df = pd.DataFrame({
            'stag': [1, 2, 3, 4, 5, 10, 15, 20, 25, 30],
            'event': [1, 1, 1, 0, 0, 1, 1, 1, 0, 1],
            'way': ['bus'] * 5 + ['foot'] * 5,
        })

        strict = SurvivalTester().run_test(df, 'stag', 'event', 'way', alpha=1e-6)
        loose = SurvivalTester().run_test(df, 'stag', 'event', 'way', alpha=0.999)

        assert strict['test_statistic'] == loose['test_statistic']
        assert strict['significant'] is False
        assert loose['significant'] is True


class TestSurvivalTesterEdgeCases:
    def test_nobody_left(self, tiny_df):
        result = SurvivalTester().run_test(tiny_df.assign(event=0), 'stag', 'event', group_col='way')

        assert result['test_statistic'] == 0.0
        assert result['p_value'] == 1.0

    def test_two_per_group(self):
        df = pd.DataFrame({'stag': [5, 10, 15, 20], 'event': [1, 1, 1, 1], 'way': ['bus', 'bus', 'car', 'car']})

        result = SurvivalTester().run_test(df, 'stag', 'event', group_col='way')

        assert isinstance(result['test_statistic'], float)
        assert 0 <= result['p_value'] <= 1

    def test_non_positive_tenure(self):
        df = pd.DataFrame({'stag': [0, 1], 'event': [1, 1], 'way': ['bus', 'car']})
        with pytest.raises(DataError, match="positive"):
            SurvivalTester().run_test(df, 'stag', 'event', 'way')


def test_spark_input_matches_pandas(spark_session):
    """Spark input is collected, so results match pandas exactly."""
    df = commute_frame(np.random.default_rng(42), 50, 10, 10)

    local = SurvivalTester().run_test(df, 'stag', 'event', group_col='way')
    distributed = SurvivalTester().run_test(spark_session.createDataFrame(df), 'stag', 'event', group_col='way')

    assert distributed['test_statistic'] == pytest.approx(local['test_statistic'])
    assert distributed['p_value'] == pytest.approx(local['p_value'])
