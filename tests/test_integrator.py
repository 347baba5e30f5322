"""Tests for the variable step-size Runge-Kutta integrator."""

import numpy as np
import pytest

from odsim.core.config import IntegratorConfig
from odsim.core.errors import MinimumStepSizeExceededError, StepLimitExceededError
from odsim.numerics.extended_time import Time
from odsim.numerics.integrator import RungeKuttaVariableStepSizeIntegrator
from odsim.numerics.rk_coefficients import CoefficientSet


def decay(t, y):
    return -y


def make_integrator(method=CoefficientSet.RKF78, **overrides):
    settings = dict(coefficient_set=method, initial_step_s=0.1, max_step_s=1.0,
                    rtol=1e-12, atol=1e-12)
    settings.update(overrides)
    return RungeKuttaVariableStepSizeIntegrator(decay, config=IntegratorConfig(**settings))


class TestAccuracy:
    """Global accuracy on y' = -y."""

    @pytest.mark.parametrize("method", list(CoefficientSet))
    def test_exponential_decay(self, method):
        integrator = make_integrator(method)
        state = integrator.new_state(0.0, np.array([1.0]))
        integrator.integrate_to(state, 5.0)
        assert state.time == 5.0
        assert abs(state.state[0] - np.exp(-5.0)) < 1e-8

    def test_backwards_integration(self):
        integrator = make_integrator()
        state = integrator.new_state(2.0, np.array([np.exp(-2.0)]))
        integrator.integrate_to(state, 0.0)
        assert state.time == 0.0
        assert state.step_size < 0.0
        np.testing.assert_allclose(state.state, [1.0], rtol=1e-8)

    def test_lands_exactly_on_end_time(self):
        integrator = make_integrator(initial_step_s=0.3)
        state = integrator.new_state(0.0, np.array([1.0]))
        integrator.integrate_to(state, 1.234567)
        assert state.time == 1.234567

    def test_time_objects_are_supported(self):
        integrator = make_integrator()
        t0 = Time(1.0e9)
        state = integrator.new_state(t0, np.array([1.0]))
        integrator.integrate_to(state, t0 + 2.0)
        assert state.time - t0 == 2.0
        np.testing.assert_allclose(state.state, [np.exp(-2.0)], rtol=1e-9)

    def test_callback_sees_every_accepted_step(self):
        integrator = make_integrator()
        state = integrator.new_state(0.0, np.array([1.0]))
        seen = []
        integrator.integrate_to(state, 5.0, callback=lambda s: seen.append(float(s.time)))
        assert len(seen) == state.accepted_steps
        assert np.all(np.diff(seen) > 0.0)
        assert seen[-1] == 5.0

    def test_post_process_applied_to_accepted_states(self):
        calls = []

        def clamp(y):
            calls.append(y.copy())
            np.maximum(y, 0.0, out=y)

        integrator = RungeKuttaVariableStepSizeIntegrator(
            decay, config=IntegratorConfig(initial_step_s=0.5), post_process=clamp)
        state = integrator.new_state(0.0, np.array([1.0]))
        integrator.integrate_to(state, 2.0)
        assert len(calls) == state.accepted_steps


class TestSingleStep:
    """Local error of one step on y' = -y."""

    @pytest.mark.parametrize("method", list(CoefficientSet))
    def test_lower_order_local_error(self, method):
        integrator = make_integrator(method)
        order = integrator.coefficients.lower_order
        steps = (0.2, 0.1, 0.05)
        errors = []
        for h in steps:
            lower, _, _ = integrator.compute_stage_estimates(0.0, np.array([1.0]), h)
            errors.append(abs(lower[0] - np.exp(-h)))

        for h, error in zip(steps, errors):
            assert error <= h ** (order + 1)
        # Halving the step divides the error by at least 2^(order + 1),
        # as long as it stays above round-off.
        for coarse, fine in zip(errors, errors[1:]):
            if fine > 1e-13:
                assert np.log2(coarse / fine) >= order + 0.5


class TestStepControl:

    def test_rejected_attempts_shrink_monotonically(self):
        integrator = make_integrator(initial_step_s=100.0, max_step_s=100.0)
        state = integrator.new_state(0.0, np.array([1.0]))
        integrator.perform_step(state)
        attempts = np.abs(state.last_attempts)
        assert len(attempts) > 1
        assert np.all(np.diff(attempts) < 0.0)
        assert state.rejected_steps == len(attempts) - 1

    def test_step_grows_after_easy_step(self):
        integrator = make_integrator(initial_step_s=1e-3, max_step_s=10.0)
        state = integrator.new_state(0.0, np.array([1.0]))
        h = integrator.perform_step(state)
        assert h == 1e-3
        assert 1e-3 < state.step_size <= 1e-3 * integrator.config.max_factor

    def test_step_respects_maximum(self):
        integrator = make_integrator(initial_step_s=0.5, max_step_s=0.5)
        state = integrator.new_state(0.0, np.array([1.0]))
        integrator.perform_step(state)
        assert abs(state.step_size) <= 0.5

    def test_minimum_step_size_exceeded(self):
        integrator = RungeKuttaVariableStepSizeIntegrator(
            lambda t, y: np.full_like(y, np.nan),
            config=IntegratorConfig(initial_step_s=1.0, min_step_s=1e-3))
        state = integrator.new_state(0.0, np.array([1.0]))
        with pytest.raises(MinimumStepSizeExceededError) as info:
            integrator.perform_step(state)
        assert abs(info.value.step_size) <= 1e-3
        assert isinstance(info.value, RuntimeError)

    def test_step_limit(self):
        integrator = make_integrator(max_step_s=1.0, max_steps=3)
        state = integrator.new_state(0.0, np.array([1.0]))
        with pytest.raises(StepLimitExceededError):
            integrator.integrate_to(state, 100.0)

    def test_error_norm_scales_with_tolerance(self):
        y = np.array([1.0, 100.0])
        lower = y + np.array([1e-10, 0.0])
        norm = RungeKuttaVariableStepSizeIntegrator.error_norm(y, lower, y, 1e-10, 0.0)
        assert norm == pytest.approx(np.sqrt(0.5))

    def test_independent_runs_share_no_state(self):
        integrator = make_integrator()
        a = integrator.new_state(0.0, np.array([1.0]))
        b = integrator.new_state(0.0, np.array([2.0]))
        integrator.integrate_to(a, 1.0)
        assert b.time == 0.0
        assert b.state[0] == 2.0
