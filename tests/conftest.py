"""Shared fixtures for the odsim test suite."""

import numpy as np
import pytest

from odsim.astrodynamics.bodies import Body, BodyRegistry, constant_ephemeris
from odsim.astrodynamics.composer import StateDerivativeComposer
from odsim.astrodynamics.gravity import PointMassGravity
from odsim.astrodynamics.state_derivative import TranslationalStateDerivative
from odsim.core.config import IntegratorConfig, PropagationConfig
from odsim.core.constants import MU_EARTH, R_EARTH


@pytest.fixture
def earth_registry():
    """Earth fixed at the origin plus a 500 kg spacecraft."""
    earth = Body("Earth", gravitational_parameter=MU_EARTH,
                 ephemeris=constant_ephemeris(np.zeros(6)))
    sat = Body("Sat", mass=500.0, inertia_tensor=np.diag([10.0, 20.0, 30.0]))
    return BodyRegistry([earth, sat])


@pytest.fixture
def leo_state():
    """Inclined circular LEO at 7000 km radius."""
    r = 7000e3
    v = np.sqrt(MU_EARTH / r)
    inc = 0.5
    return np.array([r, 0.0, 0.0, 0.0, v * np.cos(inc), v * np.sin(inc)])


@pytest.fixture
def two_body_composer(earth_registry):
    model = TranslationalStateDerivative(
        earth_registry, {"Sat": [PointMassGravity("Earth")]})
    return StateDerivativeComposer([model], earth_registry)


@pytest.fixture
def tight_propagation_config():
    return PropagationConfig(
        integrator=IntegratorConfig(initial_step_s=10.0, max_step_s=60.0,
                                    rtol=1e-12, atol=1e-12),
    )


@pytest.fixture
def station_positions():
    """Three ground stations on the Earth's surface along the axes."""
    return {
        "StationX": np.array([R_EARTH, 0.0, 0.0, 0.0, 0.0, 0.0]),
        "StationY": np.array([0.0, R_EARTH, 0.0, 0.0, 0.0, 0.0]),
        "StationZ": np.array([0.0, 0.0, R_EARTH, 0.0, 0.0, 0.0]),
    }
