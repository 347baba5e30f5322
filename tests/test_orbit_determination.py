"""Tests for batch least-squares orbit determination."""

import numpy as np
import pytest

from odsim.astrodynamics.bodies import Body, constant_ephemeris
from odsim.astrodynamics.composer import StateDerivativeComposer
from odsim.astrodynamics.gravity import PointMassGravity
from odsim.astrodynamics.propulsion import EngineModel, ThrustAcceleration
from odsim.astrodynamics.state_derivative import TranslationalStateDerivative
from odsim.astrodynamics.propagator import Propagator
from odsim.core.config import (
    EstimationConfig, IntegratorConfig, ODConfig, PropagationConfig,
)
from odsim.core.constants import MU_EARTH
from odsim.core.types import LinkEndType
from odsim.estimation.orbit_determination import (
    ObservationCollection, OrbitDeterminationManager, simulate_observations,
)
from odsim.estimation.parameters import (
    ConstantSpecificImpulse, ConstantThrustMagnitude, GravitationalParameter,
    InitialTranslationalState, ParameterSet, PPNGamma,
)
from odsim.observation.light_time import LightTimeCalculator
from odsim.observation.models import (
    AngularPositionObservationModel, OneWayRangeObservationModel,
)

TIMES = np.arange(120.0, 2400.0 + 1.0, 60.0)
STATE_ERROR = np.array([100.0, -50.0, 30.0, 0.1, -0.05, 0.02])
RANGE_SIGMA = 1.0
ANGLE_SIGMA = 1e-6


def integrator_config():
    return IntegratorConfig(initial_step_s=10.0, max_step_s=20.0, rtol=1e-12, atol=1e-12)


def od_config(**estimation):
    estimation.setdefault("max_iterations", 10)
    return ODConfig(
        propagation=PropagationConfig(integrator=integrator_config(), propagate_stm=True),
        estimation=EstimationConfig(**estimation),
    )


@pytest.fixture
def tracking(earth_registry, two_body_composer, leo_state, station_positions):
    """Registry with stations and a Sat ephemeris following the true orbit."""
    for name, state in station_positions.items():
        earth_registry.add(Body(name, ephemeris=constant_ephemeris(state)))
    truth = Propagator(two_body_composer, PropagationConfig(integrator=integrator_config()))\
        .propagate(0.0, leo_state, TIMES[-1] + 120.0)
    earth_registry["Sat"].ephemeris = lambda t: truth.cartesian_state_at("Sat", t)
    return earth_registry


def link(registry, station, model_type=OneWayRangeObservationModel):
    calculator = LightTimeCalculator(registry.state_function("Sat"),
                                     registry.state_function(station))
    return model_type(calculator)


def link_ends(station):
    return {LinkEndType.TRANSMITTER: "Sat", LinkEndType.RECEIVER: station}


def range_collections(registry, stations, rng):
    collections = []
    for station in stations:
        model = link(registry, station)
        observations = simulate_observations(model, TIMES, noise_sigma=RANGE_SIGMA, rng=rng)
        collections.append(ObservationCollection(model, link_ends(station), TIMES, observations))
    return collections


class TestObservationCollection:

    def test_reshapes_observations(self, tracking):
        model = link(tracking, "StationX", AngularPositionObservationModel)
        collection = ObservationCollection(model, link_ends("StationX"),
                                           [200.0, 300.0], np.zeros(4))
        assert collection.observations.shape == (2, 2)
        assert collection.size == 4

    def test_missing_link_end(self, tracking):
        with pytest.raises(ValueError):
            ObservationCollection(link(tracking, "StationX"),
                                  {LinkEndType.RECEIVER: "StationX"}, [200.0], [0.0])

    def test_simulated_observations_without_noise(self, tracking, station_positions):
        model = link(tracking, "StationX")
        values = simulate_observations(model, [300.0])
        geometric = np.linalg.norm(tracking["Sat"].state_at(300.0)[0:3]
                                   - station_positions["StationX"][0:3])
        # Light time moves the transmitter by only a few hundred metres
        assert values.shape == (1, 1)
        assert abs(values[0, 0] - geometric) < 1e3


class TestManagerSetup:

    def test_observations_inside_margin_rejected(self, tracking, two_body_composer, leo_state):
        model = link(tracking, "StationX")
        collection = ObservationCollection(model, link_ends("StationX"), [30.0, 120.0],
                                           [0.0, 0.0])
        parameters = ParameterSet([InitialTranslationalState("Sat", leo_state)])
        with pytest.raises(ValueError, match="margin"):
            OrbitDeterminationManager(two_body_composer, tracking, parameters, [collection],
                                      0.0, leo_state, od_config())

    def test_no_observations(self, tracking, two_body_composer, leo_state):
        parameters = ParameterSet([InitialTranslationalState("Sat", leo_state)])
        with pytest.raises(ValueError):
            OrbitDeterminationManager(two_body_composer, tracking, parameters, [],
                                      0.0, leo_state, od_config())

    def test_propagation_replaces_ephemeris(self, tracking, two_body_composer, leo_state):
        collections = range_collections(tracking, ["StationX"], np.random.default_rng(1))
        parameters = ParameterSet([InitialTranslationalState("Sat", leo_state + STATE_ERROR)])
        manager = OrbitDeterminationManager(two_body_composer, tracking, parameters,
                                            collections, 0.0, leo_state, od_config())
        result = manager.propagate()
        assert result.times[-1] == pytest.approx(TIMES[-1] + 60.0)
        np.testing.assert_allclose(tracking["Sat"].state_at(0.0), leo_state + STATE_ERROR)


class TestNormalEquations:

    @pytest.fixture
    def manager(self, tracking, two_body_composer, leo_state):
        def build(**estimation):
            collections = range_collections(tracking, ["StationX"], np.random.default_rng(2))
            parameters = ParameterSet([InitialTranslationalState("Sat", leo_state)])
            return OrbitDeterminationManager(two_body_composer, tracking, parameters,
                                             collections, 0.0, leo_state,
                                             od_config(**estimation))
        return build

    @pytest.fixture
    def design(self):
        rng = np.random.default_rng(3)
        H = rng.normal(size=(20, 6)) * np.array([1.0, 1.0, 1.0, 1e3, 1e3, 1e3])
        dp = rng.normal(size=6)
        return H, dp

    def test_exact_solution(self, manager, design):
        H, dp_true = design
        dp, covariance = manager().solve_normal_equations(H, H @ dp_true, np.ones(20))
        np.testing.assert_allclose(dp, dp_true, rtol=1e-8, atol=1e-12)
        expected = np.linalg.inv(H.T @ H)
        np.testing.assert_allclose(covariance, expected, rtol=1e-6,
                                   atol=1e-10 * np.abs(expected).max())

    def test_tight_a_priori_suppresses_update(self, manager, design):
        H, dp_true = design
        dp, _ = manager(a_priori_covariance=1e-20 * np.eye(6))\
            .solve_normal_equations(H, H @ dp_true, np.ones(20))
        assert np.all(np.abs(dp) < 1e-6 * np.abs(dp_true).max())

    def test_a_priori_shape_mismatch(self, manager, design):
        H, dp_true = design
        with pytest.raises(ValueError, match="A priori"):
            manager(a_priori_covariance=np.eye(3))\
                .solve_normal_equations(H, H @ dp_true, np.ones(20))


class TestEstimation:
    """Recovering the truth from noisy simulated tracking."""

    def test_initial_state_from_ranges(self, tracking, two_body_composer, leo_state,
                                       station_positions):
        collections = range_collections(tracking, list(station_positions),
                                        np.random.default_rng(42))
        parameters = ParameterSet([InitialTranslationalState("Sat", leo_state + STATE_ERROR)])
        manager = OrbitDeterminationManager(
            two_body_composer, tracking, parameters, collections, 0.0,
            leo_state + STATE_ERROR, od_config(observation_weight=1.0 / RANGE_SIGMA ** 2))
        output = manager.estimate()

        assert output.converged
        assert output.parameter_names == [f"initial_state:Sat[{i}]" for i in range(6)]
        assert output.design_matrix.shape == (3 * len(TIMES), 6)
        assert output.rms_history[-1] < 2.0 * RANGE_SIGMA
        assert output.rms_history[0] > output.rms_history[-1]
        error = output.final_parameters - leo_state
        assert np.all(np.abs(error) < 5.0 * output.formal_errors)
        np.testing.assert_allclose(np.diag(output.correlations), 1.0)

    def test_state_and_gravitational_parameter(self, tracking, two_body_composer, leo_state,
                                               station_positions):
        collections = range_collections(tracking, list(station_positions),
                                        np.random.default_rng(7))
        tracking["Earth"].gravitational_parameter = MU_EARTH * (1.0 + 1e-6)
        parameters = ParameterSet([
            InitialTranslationalState("Sat", leo_state + STATE_ERROR),
            GravitationalParameter("Earth", tracking),
        ])
        manager = OrbitDeterminationManager(
            two_body_composer, tracking, parameters, collections, 0.0,
            leo_state + STATE_ERROR, od_config())
        output = manager.estimate()

        assert output.converged
        assert output.parameter_names[-1] == "gravitational_parameter:Earth"
        truth = np.concatenate([leo_state, [MU_EARTH]])
        error = output.final_parameters - truth
        assert np.all(np.abs(error) < 5.0 * output.formal_errors)
        assert tracking["Earth"].gravitational_parameter == output.final_parameters[-1]

    def test_mixed_range_and_angles(self, tracking, two_body_composer, leo_state):
        rng = np.random.default_rng(11)
        collections = range_collections(tracking, ["StationX"], rng)
        for station in ("StationY", "StationZ"):
            model = link(tracking, station, AngularPositionObservationModel)
            observations = simulate_observations(model, TIMES, noise_sigma=ANGLE_SIGMA, rng=rng)
            collections.append(ObservationCollection(
                model, link_ends(station), TIMES, observations,
                weight=1.0 / ANGLE_SIGMA ** 2))
        parameters = ParameterSet([InitialTranslationalState("Sat", leo_state + STATE_ERROR)])
        manager = OrbitDeterminationManager(
            two_body_composer, tracking, parameters, collections, 0.0,
            leo_state + STATE_ERROR, od_config())
        output = manager.estimate()

        assert output.converged
        assert output.design_matrix.shape == (5 * len(TIMES), 6)
        error = output.final_parameters - leo_state
        assert np.all(np.abs(error) < 5.0 * output.formal_errors)

    def test_iteration_limit_logs_warning(self, tracking, two_body_composer, leo_state, caplog):
        collections = range_collections(tracking, ["StationX", "StationY"],
                                        np.random.default_rng(5))
        parameters = ParameterSet([InitialTranslationalState("Sat", leo_state + STATE_ERROR)])
        manager = OrbitDeterminationManager(
            two_body_composer, tracking, parameters, collections, 0.0,
            leo_state + STATE_ERROR, od_config(max_iterations=1))
        with caplog.at_level("WARNING", logger="odsim.estimation.orbit_determination"):
            output = manager.estimate()
        assert not output.converged
        assert output.iterations == 1
        assert len(output.parameter_history) == 2
        assert "without meeting" in caplog.text


class TestParameterSet:

    def test_duplicates_rejected(self, earth_registry):
        with pytest.raises(ValueError, match="Duplicate"):
            ParameterSet([PPNGamma(earth_registry), PPNGamma(earth_registry)])

    def test_slices_and_values(self, earth_registry, leo_state):
        parameters = ParameterSet([
            InitialTranslationalState("Sat", leo_state),
            GravitationalParameter("Earth", earth_registry),
            PPNGamma(earth_registry),
        ])
        assert parameters.size == 8
        assert [sl for _, sl in parameters] == [slice(0, 6), slice(6, 7), slice(7, 8)]
        assert parameters.labels[-2:] == ["gravitational_parameter:Earth", "ppn_gamma"]
        assert parameters.sensitivity_identifiers() == [("gravitational_parameter", "Earth")]

        values = parameters.get_values()
        values[7] = 0.5
        parameters.set_values(values)
        assert earth_registry.ppn_gamma == 0.5
        np.testing.assert_array_equal(parameters.initial_states()["Sat"], leo_state)

    def test_set_values_shape(self, earth_registry):
        parameters = ParameterSet([PPNGamma(earth_registry)])
        with pytest.raises(ValueError):
            parameters.set_values(np.zeros(2))

    def test_initial_state_shape(self):
        with pytest.raises(ValueError):
            InitialTranslationalState("Sat", np.zeros(5))


class TestEngineParameters:

    def test_values_and_labels(self):
        engine = EngineModel("main", thrust_magnitude=10.0, specific_impulse=300.0)
        thrust = ConstantThrustMagnitude(engine)
        isp = ConstantSpecificImpulse(engine)
        parameters = ParameterSet([thrust, isp])
        assert parameters.labels == ["thrust_magnitude:main", "specific_impulse:main"]
        assert parameters.sensitivity_identifiers() == [
            ("thrust_magnitude", "main"), ("specific_impulse", "main")]
        parameters.set_values(np.array([12.0, 310.0]))
        assert engine.thrust_magnitude == 12.0
        assert engine.specific_impulse == 310.0

    def test_thrust_position_partial(self, earth_registry, leo_state):
        """Early in a burn the position moves by F t^2 / (2 m) per newton."""
        engine = EngineModel("main", thrust_magnitude=10.0, specific_impulse=300.0)
        model = TranslationalStateDerivative(
            earth_registry, {"Sat": [PointMassGravity("Earth"), ThrustAcceleration(engine)]})
        composer = StateDerivativeComposer([model], earth_registry)
        parameter = ConstantThrustMagnitude(engine)
        config = PropagationConfig(integrator=IntegratorConfig(initial_step_s=1.0,
                                                               max_step_s=5.0))
        result = Propagator(composer, config).propagate(
            0.0, leo_state, 10.0, sensitivity_parameters=[parameter.identifier],
            propagate_stm=True)

        partial = parameter.position_partial(result, "Sat")
        assert parameter.position_partial(result, "Earth") is None
        block = partial(result.final_state, 10.0)
        assert block.shape == (3, 1)
        assert block[0, 0] == pytest.approx(0.5 * 10.0 ** 2 / 500.0, rel=1e-3)
        assert abs(block[1, 0]) < 1e-4 and abs(block[2, 0]) < 1e-4
