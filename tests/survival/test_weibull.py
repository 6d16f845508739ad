"""Tests for Weibull AFT regression."""

import numpy as np
import pandas as pd
import pytest
from lifelines import WeibullAFTFitter as LifelinesWeibullAFT

from tenurekit.core import (
    ConvergenceError,
    CovariateSpec,
    DataError,
    SingularMatrixError,
    SurvivalData,
)
from tenurekit.survival import WeibullAFTFitter, WeibullAFTModel
from tenurekit.survival.utils import generate_synthetic_survival_data


ROSSI_COVARIATES = ['fin', 'age', 'race', 'wexp', 'mar', 'paro', 'prio']


@pytest.fixture(scope="module")
def rossi_model(rossi, rossi_data):
    spec = CovariateSpec.infer(rossi, ROSSI_COVARIATES)
    return WeibullAFTFitter().fit(rossi_data, spec)


class TestWeibullAgainstLifelines:
    """Maximum-likelihood estimates match lifelines on the rossi data."""

    def test_coefficients(self, rossi, rossi_model):
        reference = LifelinesWeibullAFT().fit(rossi, 'week', 'arrest')
        expected = reference.params_.loc['lambda_']

        for name in ROSSI_COVARIATES + ['Intercept']:
            assert rossi_model.params[name] == pytest.approx(expected[name], abs=2e-3)
        assert rossi_model.shape == pytest.approx(np.exp(reference.params_.loc[('rho_', 'Intercept')]), rel=1e-3)

    def test_log_likelihood(self, rossi, rossi_model):
        reference = LifelinesWeibullAFT().fit(rossi, 'week', 'arrest')
        assert rossi_model.log_likelihood == pytest.approx(reference.log_likelihood_, abs=1e-3)


class TestWeibullModel:
    """Tests for the fitted WeibullAFTModel."""

    def test_summary_layout(self, rossi_model):
        summary = rossi_model.summary

        assert summary.index[0] == 'Intercept'
        assert list(summary.index[1:]) == ROSSI_COVARIATES
        np.testing.assert_allclose(summary['exp_estimate'], np.exp(summary['estimate']))
        # Financial aid lengthens time to re-arrest
        assert summary.loc['fin', 'exp_estimate'] > 1

    def test_aic(self, rossi_model):
        assert rossi_model.n_parameters == 9
        assert rossi_model.aic == pytest.approx(-2 * rossi_model.log_likelihood + 18)

    def test_traceable_to_spec_and_data(self, rossi_model, rossi_data):
        assert rossi_model.spec.names == tuple(ROSSI_COVARIATES)
        assert rossi_model.data_fingerprint == rossi_data.fingerprint()

    def test_immutable(self, rossi_model):
        with pytest.raises(AttributeError):
            rossi_model.log_sigma = 0.0

    def test_predictions(self, rossi_model, rossi_data):
        median = rossi_model.predict_median(rossi_data)
        expectation = rossi_model.predict_expectation(rossi_data)
        survival = rossi_model.predict_survival(rossi_data, [1.0, 26.0, 52.0])

        assert median.shape == (rossi_data.n_samples,)
        assert (median > 0).all() and (expectation > 0).all()
        assert survival.shape == (3, rossi_data.n_samples)
        assert (survival.diff().iloc[1:] <= 0).all().all()
        # At the predicted median the survival probability is one half
        first = rossi_model.predict_survival(rossi_data.subset(np.arange(rossi_data.n_samples) == 0), [median[0]])
        assert first.iloc[0, 0] == pytest.approx(0.5)

    def test_risk_orders_by_expected_tenure(self, rossi_model, rossi_data):
        risk = rossi_model.predict_risk(rossi_data)
        median = rossi_model.predict_median(rossi_data)
        assert np.corrcoef(risk, np.log(median))[0, 1] == pytest.approx(-1.0)

    def test_concordance_reported(self, rossi_model):
        assert 0.55 < rossi_model.concordance < 0.75


class TestWeibullRecovery:
    """Fits on synthetic data recover the generating parameters."""

    def test_shape_and_time_ratio(self):
        df = generate_synthetic_survival_data(
            n_samples=3000, distribution='weibull', scale=2.0, shape=1.5,
            effects={'remote': 0.5}, seed=1,
        )
        data = SurvivalData.from_frame(df, 'duration', 'event', ['remote'])

        model = WeibullAFTFitter().fit(data)

        # Under Weibull PH, hazard ratio h maps to time ratio h ** (-1 / shape)
        assert model.shape == pytest.approx(1.5, rel=0.06)
        assert model.time_ratios['remote'] == pytest.approx(0.5 ** (-1 / 1.5), rel=0.08)
        assert model.scale == pytest.approx(2.0, rel=0.06)

    def test_reference_level_changes_sign_only(self, turnover_df, turnover_data):
        bus = CovariateSpec.infer(turnover_df, ['way'], references={'way': 'bus'})
        foot = bus.with_reference('way', 'foot')

        by_bus = WeibullAFTFitter().fit(turnover_data, bus)
        by_foot = WeibullAFTFitter().fit(turnover_data, foot)

        assert by_bus.log_likelihood == pytest.approx(by_foot.log_likelihood, abs=1e-6)
        assert by_bus.params['way[T.foot]'] == pytest.approx(-by_foot.params['way[T.bus]'], abs=1e-4)
        # Walkers stay longer than bus commuters in the fixture
        assert by_bus.summary.loc['way[T.foot]', 'exp_estimate'] > 1


class TestWeibullErrors:
    """Data and numerical failures are typed."""

    def test_no_events(self):
        data = SurvivalData([1.0, 2.0, 3.0, 4.0], [0, 0, 0, 0])
        with pytest.raises(DataError, match="at least one observed event"):
            WeibullAFTFitter().fit(data)

    def test_too_few_observations(self):
        covariates = pd.DataFrame({'age': [30.0, 40.0, 50.0]})
        data = SurvivalData([1.0, 2.0, 3.0], [1, 1, 0], covariates)
        with pytest.raises(DataError, match="cannot identify"):
            WeibullAFTFitter().fit(data)

    def test_collinear_covariates(self, turnover_df):
        df = turnover_df.assign(age_months=turnover_df['age'] * 12)
        data = SurvivalData.from_frame(df, 'stag', 'event', ['age', 'age_months'])
        with pytest.raises(SingularMatrixError, match="collinear"):
            WeibullAFTFitter().fit(data)

    def test_perfect_separation(self):
        """Nobody on the night shift leaves; all are censored at 10."""
        covariates = pd.DataFrame({'night_shift': [0.0] * 20 + [1.0] * 20})
        durations = np.concatenate([np.linspace(1.0, 20.0, 20), np.full(20, 10.0)])
        events = np.repeat([1, 0], 20)
        data = SurvivalData(durations, events, covariates)

        with pytest.raises(SingularMatrixError, match="separat"):
            WeibullAFTFitter().fit(data)

    def test_iteration_budget(self, rossi_data):
        with pytest.raises(ConvergenceError) as excinfo:
            WeibullAFTFitter(max_iter=1).fit(rossi_data)
        assert "gradient_norm" in excinfo.value.diagnostics

    def test_returns_model_type(self, turnover_data, turnover_df):
        spec = CovariateSpec.infer(turnover_df, ['age'])
        assert isinstance(WeibullAFTFitter().fit(turnover_data, spec), WeibullAFTModel)
