"""Tests for light-time solution and observation models."""

import numpy as np
import pytest

from odsim.astrodynamics.bodies import Body, BodyRegistry, constant_ephemeris, linear_ephemeris
from odsim.core.constants import AU, MU_SUN, SPEED_OF_LIGHT
from odsim.core.errors import InvalidLinkEndRoleError, LightTimeConvergenceError
from odsim.core.types import LinkEndType
from odsim.observation.light_time import FirstOrderRelativisticCorrection, LightTimeCalculator
from odsim.observation.models import (
    AngularPositionObservationModel, ConstantBias, OneWayRangeObservationModel,
)


def static_link(distance):
    transmitter = constant_ephemeris(np.array([distance, 0.0, 0.0, 0.0, 0.0, 0.0]))
    receiver = constant_ephemeris(np.zeros(6))
    return LightTimeCalculator(transmitter, receiver)


class TestLightTime:

    def test_static_link(self):
        calculator = static_link(3.0e8)
        assert calculator.calculate_light_time(0.0) == pytest.approx(3.0e8 / SPEED_OF_LIGHT,
                                                                     rel=1e-15)

    def test_receding_transmitter_at_fixed_reception(self):
        """tau = d(t_R - tau)/c with d(t) = d0 + v t."""
        d0, v = 1.0e9, 3.0e4
        transmitter = linear_ephemeris(np.array([d0, 0.0, 0.0, v, 0.0, 0.0]))
        calculator = LightTimeCalculator(transmitter, constant_ephemeris(np.zeros(6)))
        t_r = 100.0
        expected = (d0 + v * t_r) / (SPEED_OF_LIGHT + v)
        tau, tx_state, rx_state = calculator.calculate_light_time_with_link_end_states(
            t_r, is_time_at_reception=True)
        assert tau == pytest.approx(expected, rel=1e-13)
        assert tx_state[0] == pytest.approx(d0 + v * (t_r - tau), rel=1e-13)
        np.testing.assert_array_equal(rx_state, np.zeros(6))

    def test_fixed_transmission_time(self):
        d0, v = 1.0e9, 3.0e4
        receiver = linear_ephemeris(np.array([d0, 0.0, 0.0, v, 0.0, 0.0]))
        calculator = LightTimeCalculator(constant_ephemeris(np.zeros(6)), receiver)
        tau = calculator.calculate_light_time(0.0, is_time_at_reception=False)
        assert tau == pytest.approx(d0 / (SPEED_OF_LIGHT - v), rel=1e-13)

    def test_non_convergence_raises(self):
        # Transmitter faster than light never settles
        transmitter = linear_ephemeris(np.array([1.0e9, 0.0, 0.0, -2.0 * SPEED_OF_LIGHT, 0, 0]))
        calculator = LightTimeCalculator(transmitter, constant_ephemeris(np.zeros(6)),
                                         max_iterations=5)
        with pytest.raises(LightTimeConvergenceError):
            calculator.calculate_light_time(0.0)

    def test_invalid_settings(self):
        with pytest.raises(ValueError):
            LightTimeCalculator(lambda t: np.zeros(6), lambda t: np.zeros(6), tolerance=0.0)


class TestRelativisticCorrection:

    @pytest.fixture
    def sun_registry(self):
        sun = Body("Sun", gravitational_parameter=MU_SUN,
                   ephemeris=constant_ephemeris(np.zeros(6)))
        return BodyRegistry([sun])

    def test_shapiro_delay_value(self, sun_registry):
        correction = FirstOrderRelativisticCorrection(["Sun"], sun_registry)
        r_t = np.array([AU, 0.0, 0.0, 0, 0, 0])
        r_r = np.array([0.0, 1.5 * AU, 0.0, 0, 0, 0])
        rho = np.linalg.norm(r_t[0:3] - r_r[0:3])
        expected = (2.0 * MU_SUN / SPEED_OF_LIGHT ** 3
                    * np.log((AU + 1.5 * AU + rho) / (AU + 1.5 * AU - rho)))
        assert correction.calculate_light_time_correction(r_t, r_r, 0.0, 0.0) == pytest.approx(
            expected, rel=1e-14)

    def test_gamma_follows_registry(self, sun_registry):
        correction = FirstOrderRelativisticCorrection(["Sun"], sun_registry)
        r_t = np.array([AU, 0.0, 0.0, 0, 0, 0])
        r_r = np.array([0.0, AU, 0.0, 0, 0, 0])
        full = correction.calculate_light_time_correction(r_t, r_r, 0.0, 0.0)
        sun_registry.ppn_gamma = 0.0
        assert correction.calculate_light_time_correction(r_t, r_r, 0.0, 0.0) == pytest.approx(
            0.5 * full)

    def test_fixed_gamma(self, sun_registry):
        correction = FirstOrderRelativisticCorrection(["Sun"], sun_registry, ppn_gamma=0.5)
        sun_registry.ppn_gamma = 1.0
        assert correction.is_ppn_gamma_fixed
        assert correction.ppn_gamma == 0.5

    def test_partials_are_linear_coefficients(self, sun_registry):
        correction = FirstOrderRelativisticCorrection(["Sun"], sun_registry)
        args = (np.array([AU, 0.0, 0.0, 0, 0, 0]), np.array([0.0, AU, 0.0, 0, 0, 0]), 0.0, 0.0)
        value = correction.calculate_light_time_correction(*args)
        assert correction.partial_wrt_ppn_gamma(*args) * 2.0 == pytest.approx(value)
        assert correction.partial_wrt_gravitational_parameter("Sun", *args) * MU_SUN == (
            pytest.approx(value))
        assert correction.partial_wrt_gravitational_parameter("Earth", *args) == 0.0


class TestObservationModels:

    def test_static_range_equals_distance(self):
        model = OneWayRangeObservationModel(static_link(7.5e6))
        for reference in (LinkEndType.RECEIVER, LinkEndType.TRANSMITTER):
            assert model.compute_ideal_observation(10.0, reference)[0] == pytest.approx(
                7.5e6, rel=1e-15)

    def test_link_end_data(self):
        model = OneWayRangeObservationModel(static_link(3.0e8))
        _, geometry = model.compute_ideal_observation_with_link_end_data(
            5.0, LinkEndType.RECEIVER)
        assert geometry.reference_link_end is LinkEndType.RECEIVER
        assert geometry.time_of(LinkEndType.RECEIVER) == 5.0
        assert geometry.time_of(LinkEndType.TRANSMITTER) == pytest.approx(
            5.0 - 3.0e8 / SPEED_OF_LIGHT)
        assert geometry.reference_time == 5.0

    def test_invalid_reference_role(self):
        model = OneWayRangeObservationModel(static_link(1.0e6))
        with pytest.raises(InvalidLinkEndRoleError):
            model.compute_ideal_observation(0.0, LinkEndType.REFLECTOR)
        with pytest.raises(ValueError):
            model.compute_observation(0.0, LinkEndType.REFLECTOR)

    def test_bias_added(self):
        model = OneWayRangeObservationModel(static_link(1.0e6), bias=ConstantBias([12.5]))
        ideal = model.compute_ideal_observation(0.0, LinkEndType.RECEIVER)
        biased = model.compute_observation(0.0, LinkEndType.RECEIVER)
        assert biased[0] - ideal[0] == pytest.approx(12.5)

    def test_bias_size_checked(self):
        with pytest.raises(ValueError):
            OneWayRangeObservationModel(static_link(1.0e6), bias=ConstantBias([1.0, 2.0]))

    def test_extended_precision_observable(self):
        model = OneWayRangeObservationModel(static_link(1.0e6), dtype=np.longdouble)
        value = model.compute_ideal_observation(0.0, LinkEndType.RECEIVER)
        assert value.dtype == np.dtype(np.longdouble)

    def test_extended_precision_range_uses_float64_light_time(self):
        calculator = static_link(1.0e6)
        model = OneWayRangeObservationModel(calculator, dtype=np.longdouble)
        value = model.compute_ideal_observation(0.0, LinkEndType.RECEIVER)[0]
        light_time = calculator.calculate_light_time(0.0)
        assert isinstance(light_time, float)
        assert value == np.longdouble(light_time) * np.longdouble(SPEED_OF_LIGHT)

    def test_angular_position(self):
        transmitter = constant_ephemeris(np.array([1.0e7, 1.0e7, np.sqrt(2.0) * 1.0e7, 0, 0, 0]))
        calculator = LightTimeCalculator(transmitter, constant_ephemeris(np.zeros(6)))
        model = AngularPositionObservationModel(calculator)
        alpha, delta = model.compute_ideal_observation(0.0, LinkEndType.RECEIVER)
        assert alpha == pytest.approx(np.pi / 4)
        assert delta == pytest.approx(np.pi / 4)
