"""Tests for configuration validation."""

import numpy as np
import pytest

from odsim.core.config import (
    EstimationConfig, IntegratorConfig, ODConfig, PropagationConfig, ProcessNoiseConfig,
)
from odsim.numerics.rk_coefficients import CoefficientSet


class TestIntegratorConfig:

    def test_defaults(self):
        config = IntegratorConfig()
        assert config.coefficient_set is CoefficientSet.RKF78
        assert config.max_steps is None

    @pytest.mark.parametrize("kwargs", [
        {"min_step_s": 0.0},
        {"min_step_s": 10.0, "max_step_s": 1.0},
        {"initial_step_s": 0.0},
        {"rtol": -1e-9},
        {"atol": np.array([1e-9, -1e-9])},
        {"safety_factor": 0.0},
        {"safety_factor": 1.5},
        {"min_factor": 1.0},
        {"max_factor": 0.5},
        {"max_steps": 0},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            IntegratorConfig(**kwargs)

    def test_negative_initial_step_allowed(self):
        assert IntegratorConfig(initial_step_s=-5.0).initial_step_s == -5.0


class TestPropagationConfig:

    def test_output_decimation_must_be_positive(self):
        with pytest.raises(ValueError):
            PropagationConfig(output_every_n_steps=0)


class TestEstimationConfig:

    @pytest.mark.parametrize("kwargs", [
        {"max_iterations": 0},
        {"observation_weight": 0.0},
        {"propagation_margin_s": -1.0},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            EstimationConfig(**kwargs)


class TestProcessNoiseConfig:

    def test_negative_density(self):
        with pytest.raises(ValueError):
            ProcessNoiseConfig(acceleration_psd=-1.0)


class TestODConfig:

    def test_propagates_stm_by_default(self):
        assert ODConfig().propagation.propagate_stm
