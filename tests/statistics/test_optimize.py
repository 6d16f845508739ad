"""Tests for the bounded likelihood optimizer."""

import numpy as np
import pytest

from tenurekit.core import ConvergenceError, OptimizerOptions, SingularMatrixError
from tenurekit.statistics.optimize import (
    check_divergence,
    check_full_rank,
    check_separation,
    covariance_from_hessian,
    maximize_likelihood,
)


def quadratic(x):
    """Concave quadratic with maximum at (1, 2)."""
    target = np.array([1.0, 2.0])
    diff = x - target
    return -float(diff @ diff), -2.0 * diff, -2.0 * np.eye(2)


def negative_rosenbrock(x):
    a, b = x
    ll = -((1 - a) ** 2 + 100 * (b - a ** 2) ** 2)
    grad = -np.array([-2 * (1 - a) - 400 * a * (b - a ** 2), 200 * (b - a ** 2)])
    hess = -np.array([
        [2 - 400 * (b - a ** 2) + 800 * a ** 2, -400 * a],
        [-400 * a, 200.0],
    ])
    return ll, grad, hess


class TestMaximizeLikelihood:
    """Tests for maximize_likelihood."""

    def test_finds_maximum(self):
        result = maximize_likelihood(quadratic, np.zeros(2))

        np.testing.assert_allclose(result.params, [1.0, 2.0], atol=1e-6)
        assert result.log_likelihood == pytest.approx(0.0, abs=1e-10)

    def test_empty_parameter_vector(self):
        result = maximize_likelihood(lambda x: (-3.0, np.zeros(0), np.zeros((0, 0))), np.zeros(0))
        assert result.log_likelihood == -3.0
        assert result.n_iterations == 0

    def test_budget_exhaustion_raises(self):
        """Running out of iterations is reported, not returned."""
        with pytest.raises(ConvergenceError) as excinfo:
            maximize_likelihood(negative_rosenbrock, np.array([-1.2, 1.0]), OptimizerOptions(max_iter=1))

        assert excinfo.value.diagnostics["n_iterations"] <= 1
        assert "gradient_norm" in excinfo.value.diagnostics

    def test_rosenbrock_converges_with_budget(self):
        result = maximize_likelihood(negative_rosenbrock, np.array([-1.2, 1.0]), OptimizerOptions(max_iter=200))
        np.testing.assert_allclose(result.params, [1.0, 1.0], atol=1e-4)

    def test_invalid_options(self):
        with pytest.raises(ValueError, match="max_iter"):
            OptimizerOptions(max_iter=0)


class TestCovariance:
    """Tests for covariance_from_hessian and check_full_rank."""

    def test_inverse_information(self):
        covariance = covariance_from_hessian(-np.diag([4.0, 25.0]))
        np.testing.assert_allclose(covariance, np.diag([0.25, 0.04]))

    def test_singular_information(self):
        with pytest.raises(SingularMatrixError, match="singular"):
            covariance_from_hessian(-np.array([[1.0, 1.0], [1.0, 1.0]]))

    def test_collinear_design(self):
        design = np.column_stack([np.arange(5.0), 2 * np.arange(5.0)])
        with pytest.raises(SingularMatrixError, match="collinear"):
            check_full_rank(design, ['age', 'age_doubled'])


class TestSeparation:
    """Tests for check_separation and check_divergence."""

    design = np.column_stack([np.ones(40), np.repeat([0.0, 1.0], 20)])

    def test_well_identified_coefficients_pass(self):
        # sd(x) = 0.5, so a standard error of 0.4 with 25 events is ordinary
        check_separation(self.design, [0.0, 0.4], 25, ['Intercept', 'remote'])

    def test_inflated_standard_error(self):
        with pytest.raises(SingularMatrixError, match="separates") as excinfo:
            check_separation(self.design, [0.0, 1200.0], 40, ['Intercept', 'remote'])

        assert list(excinfo.value.diagnostics["se_inflation"]) == ['remote']

    def test_diverging_early_stop(self):
        stopped = ConvergenceError("stopped", {"params": [0.1, 18.0], "n_iterations": 17})
        with pytest.raises(SingularMatrixError) as excinfo:
            check_divergence(stopped, self.design, ['Intercept', 'remote'], OptimizerOptions())

        assert excinfo.value.diagnostics["diverging"] == ['remote']
        assert excinfo.value.__cause__ is stopped

    def test_exhausted_budget_is_left_alone(self):
        exhausted = ConvergenceError("budget", {"params": [0.1, 18.0], "n_iterations": 100})
        check_divergence(exhausted, self.design, ['Intercept', 'remote'], OptimizerOptions(max_iter=100))
