"""Tests for the synthetic data generator."""

import numpy as np
import pandas as pd
import pytest

from tenurekit.survival.utils import generate_synthetic_survival_data


class TestSyntheticData:
    def test_columns(self):
        df = generate_synthetic_survival_data(
            50, effects={'remote': 0.5}, noise_covariates=2, seed=1
        )

        assert df.columns.tolist() == ['id', 'duration', 'event', 'remote', 'noise_0', 'noise_1']
        assert len(df) == 50
        assert df['id'].is_unique
        assert (df['duration'] > 0).all()
        assert set(df['remote'].unique()) <= {0, 1}

    def test_seed_reproducible(self):
        first = generate_synthetic_survival_data(200, censoring_rate=0.2, seed=3)
        second = generate_synthetic_survival_data(200, censoring_rate=0.2, seed=3)
        other = generate_synthetic_survival_data(200, censoring_rate=0.2, seed=4)

        pd.testing.assert_frame_equal(first, second)
        assert not np.allclose(first['duration'], other['duration'])

    def test_no_censoring_by_default(self):
        df = generate_synthetic_survival_data(100, seed=0)
        assert (df['event'] == 1).all()

    def test_horizon_censoring(self):
        df = generate_synthetic_survival_data(500, scale=1.0, horizon=0.5, seed=2)

        assert df['duration'].max() <= 0.5
        censored = df[df['event'] == 0]
        assert len(censored) > 0
        assert (censored['duration'] == 0.5).all()

    def test_random_censoring_rate(self):
        df = generate_synthetic_survival_data(2000, censoring_rate=0.3, seed=9)
        assert (df['event'] == 0).mean() == pytest.approx(0.3, abs=0.05)

    def test_exponential_mean(self):
        df = generate_synthetic_survival_data(5000, scale=2.0, seed=11)
        assert df['duration'].mean() == pytest.approx(2.0, rel=0.08)

    def test_hazard_ratio_shortens_tenure(self):
        df = generate_synthetic_survival_data(
            4000, distribution='weibull', shape=2.0, effects={'night_shift': 3.0}, seed=12
        )
        by_flag = df.groupby('night_shift')['duration'].median()
        # Median ratio is HR ** (-1 / shape)
        assert by_flag[1] / by_flag[0] == pytest.approx(3.0 ** -0.5, rel=0.1)

    @pytest.mark.parametrize("kwargs", [
        {'distribution': 'lognormal'},
        {'censoring_rate': 1.0},
        {'scale': 0.0},
        {'shape': -1.0},
        {'horizon': 0.0},
        {'effects': {'remote': 0.0}},
    ])
    def test_invalid_arguments(self, kwargs):
        with pytest.raises(ValueError):
            generate_synthetic_survival_data(10, **kwargs)


def test_spark_output(small_survival_data):
    assert set(small_survival_data.columns) == {'id', 'duration', 'event'}
    assert small_survival_data.count() == 100
