"""Tests for event-time records and input validation."""

import numpy as np
import pandas as pd
import pytest

from tenurekit.core import DataError, SurvivalData, validate_input_schema


class TestValidation:
    """Tests for validate_input_schema on pandas DataFrames."""

    def test_valid_frame_passes(self):
        """A clean table raises nothing."""
        df = pd.DataFrame({'stag': [1.5, 2.0, 3.2], 'event': [1, 0, 1], 'way': ['bus', 'car', 'foot']})
        validate_input_schema(df, 'stag', 'event', required_cols=['way'])

    def test_missing_column(self):
        df = pd.DataFrame({'stag': [1.0, 2.0], 'event': [1, 0]})
        with pytest.raises(DataError, match="Column 'way' not found"):
            validate_input_schema(df, 'stag', 'event', required_cols=['way'])

    def test_non_positive_duration(self):
        """Zero tenure is rejected (durations must be strictly positive)."""
        df = pd.DataFrame({'stag': [0.0, 2.0], 'event': [1, 0]})
        with pytest.raises(DataError, match="must be positive"):
            validate_input_schema(df, 'stag', 'event')

    def test_event_outside_zero_one(self):
        df = pd.DataFrame({'stag': [1.0, 2.0], 'event': [1, 2]})
        with pytest.raises(ValueError, match="0/1"):
            validate_input_schema(df, 'stag', 'event')

    def test_nulls_in_used_columns(self):
        df = pd.DataFrame({'stag': [1.0, np.nan], 'event': [1, 0]})
        with pytest.raises(DataError, match="Missing values"):
            validate_input_schema(df, 'stag', 'event')

    def test_empty_frame(self):
        df = pd.DataFrame({'stag': pd.Series([], dtype=float), 'event': pd.Series([], dtype=int)})
        with pytest.raises(DataError, match="empty"):
            validate_input_schema(df, 'stag', 'event')

    def test_unsupported_type(self):
        with pytest.raises(TypeError, match="Unsupported DataFrame type"):
            validate_input_schema({'stag': [1.0]}, 'stag', 'event')


class TestSurvivalData:
    """Tests for the SurvivalData record collection."""

    @pytest.fixture
    def df(self):
        return pd.DataFrame({
            'stag': [1.0, 2.5, 3.0, 4.2, 5.1, 6.0],
            'event': [1, 0, 1, 1, 0, 1],
            'gender': ['f', 'm', 'f', 'm', 'f', 'm'],
            'age': [25, 31, 44, 38, 29, 50],
        })

    def test_from_frame(self, df):
        data = SurvivalData.from_frame(df, 'stag', 'event')

        assert data.n_samples == 6
        assert data.n_events == 4
        assert data.events.dtype == bool
        assert list(data.covariates.columns) == ['gender', 'age']

    @pytest.mark.parametrize("name", ["duration", "event", "group", "treatment"])
    def test_reserved_covariate_name(self, df, name):
        """A covariate may not shadow a standard column of to_frame()."""
        table = df.rename(columns={'event': 'left'}).assign(**{name: 1})
        with pytest.raises(DataError, match="reserved"):
            SurvivalData.from_frame(table, 'stag', 'left')

    def test_reserved_name_in_covariate_table(self):
        covariates = pd.DataFrame({'group': ['a', 'b']})
        with pytest.raises(DataError, match="reserved"):
            SurvivalData([1.0, 2.0], [1, 0], covariates)

    def test_covariate_subset(self, df):
        data = SurvivalData.from_frame(df, 'stag', 'event', ['age'])
        assert list(data.covariates.columns) == ['age']

    def test_arrays_are_read_only(self, df):
        data = SurvivalData.from_frame(df, 'stag', 'event')
        with pytest.raises(ValueError):
            data.durations[0] = 10.0

    def test_covariates_returns_copy(self, df):
        data = SurvivalData.from_frame(df, 'stag', 'event')
        data.covariates.loc[0, 'age'] = 99
        assert data.covariates.loc[0, 'age'] == 25

    def test_invalid_duration_rejected(self):
        with pytest.raises(DataError, match="positive"):
            SurvivalData([1.0, -2.0], [1, 0])

    def test_length_mismatch(self):
        with pytest.raises(DataError, match="same length"):
            SurvivalData([1.0, 2.0], [1])

    def test_group_label_does_not_mutate(self, df):
        """Attaching a group label returns a new collection."""
        data = SurvivalData.from_frame(df, 'stag', 'event')
        grouped = data.with_group_label('gender')

        assert data.group_label is None
        assert list(grouped.group_label) == ['f', 'm', 'f', 'm', 'f', 'm']
        pd.testing.assert_frame_equal(grouped.covariates, data.covariates)

    def test_groups_sorted(self, df):
        grouped = SurvivalData.from_frame(df, 'stag', 'event').with_group_label('gender')
        groups = grouped.groups()

        assert list(groups) == ['f', 'm']
        assert groups['f'].n_samples == 3
        assert groups['m'].n_events == 2

    def test_groups_without_label(self, df):
        data = SurvivalData.from_frame(df, 'stag', 'event')
        with pytest.raises(DataError, match="No group label"):
            data.groups()

    def test_treatment_flag_from_level(self, df):
        data = SurvivalData.from_frame(df, 'stag', 'event').with_treatment_flag('gender', 'f')

        assert data.treatment_source == 'gender'
        assert data.treatment_flag.tolist() == [True, False, True, False, True, False]

    def test_treatment_flag_from_callable(self, df):
        data = SurvivalData.from_frame(df, 'stag', 'event').with_treatment_flag(
            'age', lambda ages: ages > 35
        )
        assert data.treatment_flag.sum() == 3

    def test_subset_keeps_attachments(self, df):
        data = SurvivalData.from_frame(df, 'stag', 'event').with_treatment_flag('gender', 'f')
        subset = data.subset(data.durations > 2.0)

        assert subset.n_samples == 5
        assert subset.treatment_source == 'gender'
        assert subset.treatment_flag.tolist() == [False, True, False, True, False]

    def test_empty_subset(self, df):
        data = SurvivalData.from_frame(df, 'stag', 'event')
        with pytest.raises(DataError, match="empty"):
            data.subset(np.zeros(6, dtype=bool))

    def test_to_frame_columns(self, df):
        frame = SurvivalData.from_frame(df, 'stag', 'event').with_group_label('gender').to_frame()
        assert list(frame.columns) == ['duration', 'event', 'gender', 'age', 'group']

    def test_fingerprint_tracks_content(self, df):
        data = SurvivalData.from_frame(df, 'stag', 'event')
        same = SurvivalData.from_frame(df.copy(), 'stag', 'event')
        other = data.subset(data.durations < 6.0)

        assert data.fingerprint() == same.fingerprint()
        assert data.fingerprint() != other.fingerprint()
        assert len(data.fingerprint()) == 12


class TestSparkIngestion:
    """SurvivalData built from a Spark DataFrame."""

    def test_from_spark_frame(self, spark_session):
        df = pd.DataFrame({'stag': [1.0, 2.0, 3.0], 'event': [1, 0, 1], 'way': ['bus', 'car', 'bus']})
        spark_df = spark_session.createDataFrame(df)

        data = SurvivalData.from_frame(spark_df, 'stag', 'event')

        assert data.n_samples == 3
        assert data.n_events == 2
        assert sorted(data.covariates['way']) == ['bus', 'bus', 'car']

    def test_spark_validation(self, spark_session):
        spark_df = spark_session.createDataFrame(
            pd.DataFrame({'stag': [1.0, -1.0], 'event': [1, 0]})
        )
        with pytest.raises(DataError, match="positive"):
            SurvivalData.from_frame(spark_df, 'stag', 'event')
