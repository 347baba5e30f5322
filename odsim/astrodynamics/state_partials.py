"""
Partial derivatives of state derivative models.

Each partial object answers, for its model and at the environment state
last written by the composer, how the model's derivative depends on each
integrated state type and on estimatable parameters. Couplings that are
not implemented are reported with UnsupportedStateCouplingError instead of
being assumed zero; callers decide whether treating them as zero is
acceptable for their problem.
"""

from __future__ import annotations

from typing import Optional, Protocol

import numpy as np

from ..core.constants import G0
from ..core.errors import UnsupportedStateCouplingError
from ..core.types import IntegratedStateType
from .gravity import PointMassGravity
from .propulsion import EngineModel
from .state_derivative import (
    CustomStateDerivative, MassRateStateDerivative, SingleStateDerivative,
    TranslationalStateDerivative, _RotationalBase,
)


class StateDerivativePartial(Protocol):
    """Capability interface of model partials."""

    model: SingleStateDerivative

    def wrt_state(self, time: float, other: SingleStateDerivative) -> np.ndarray:
        """d(model derivative)/d(other model state), (n_model, n_other)."""
        ...

    def wrt_parameter(self, time: float, identifier: tuple) -> Optional[np.ndarray]:
        """d(model derivative)/dp, (n_model,), or None if independent."""
        ...


def _size(model: SingleStateDerivative) -> int:
    return model.propagated_state_size


# ===================================================================
# Translational
# ===================================================================

class TranslationalAccelerationPartial:
    """Partials of Cowell dynamics.

    Within the translational state the block of body i wrt body j is
        [[0, I], [da/dr, 0]]   for i == j
        [[0, 0], [-da/dr_direct, 0]]   for point-mass attraction of i by j
    """

    def __init__(self, model: TranslationalStateDerivative):
        self.model = model

    def wrt_state(self, time: float, other: SingleStateDerivative) -> np.ndarray:
        model = self.model
        n_self = _size(model)
        n_other = _size(other)
        block = np.zeros((n_self, n_other))

        if other.state_type is IntegratedStateType.TRANSLATIONAL:
            bodies = model.bodies
            for i, body in enumerate(bodies):
                rows = slice(6 * i + 3, 6 * i + 6)
                block[6 * i:6 * i + 3, 6 * i + 3:6 * i + 6] = np.eye(3)
                for acc in model.accelerations[body]:
                    _, da_dr = acc.acceleration(time, body, model.registry)
                    block[rows, 6 * i:6 * i + 3] += da_dr
                    if isinstance(acc, PointMassGravity) and acc.exerting_body in bodies:
                        j = bodies.index(acc.exerting_body)
                        block[rows, 6 * j:6 * j + 3] -= da_dr
            return block

        if other.state_type is IntegratedStateType.BODY_MASS:
            for i, body in enumerate(model.bodies):
                if body not in other.bodies:
                    continue
                j = other.bodies.index(body)
                for acc in model.accelerations[body]:
                    block[6 * i + 3:6 * i + 6, j] += acc.partial_wrt_mass(
                        time, body, model.registry)
            return block

        if other.state_type is IntegratedStateType.ROTATIONAL:
            raise UnsupportedStateCouplingError(
                IntegratedStateType.TRANSLATIONAL, IntegratedStateType.ROTATIONAL,
                "attitude-dependent accelerations are not modelled")

        # Accelerations never read custom states
        return block

    def wrt_parameter(self, time: float, identifier: tuple) -> Optional[np.ndarray]:
        model = self.model
        out = np.zeros(_size(model))
        found = False
        for i, body in enumerate(model.bodies):
            for acc in model.accelerations[body]:
                partial = acc.partial_wrt_parameter(identifier, time, body, model.registry)
                if partial is not None:
                    out[6 * i + 3:6 * i + 6] += partial
                    found = True
        return out if found else None


# ===================================================================
# Body mass
# ===================================================================

class MassRatePartial:
    """Partials of thrust-driven mass rates.

    Engines with constant thrust and specific impulse give mass rates that
    do not depend on translational state or on mass itself. The dependence
    on rotational state is not implemented.
    """

    def __init__(self, model: MassRateStateDerivative):
        self.model = model

    def wrt_state(self, time: float, other: SingleStateDerivative) -> np.ndarray:
        if other.state_type is IntegratedStateType.ROTATIONAL:
            raise UnsupportedStateCouplingError(
                IntegratedStateType.BODY_MASS, IntegratedStateType.ROTATIONAL,
                "mass rate dependency on rotational state")
        return np.zeros((_size(self.model), _size(other)))

    def _engines(self, body: str) -> list[EngineModel]:
        return [engine for rate_model in self.model.mass_rate_models[body]
                for engine in rate_model.engines]

    @staticmethod
    def wrt_thrust_magnitude(engine: EngineModel) -> float:
        """d(mdot)/d(thrust) [kg/s/N]."""
        return -1.0 / (engine.specific_impulse * G0)

    @staticmethod
    def wrt_specific_impulse(engine: EngineModel) -> float:
        """d(mdot)/d(Isp) [kg/s/s]."""
        return -engine.mass_rate / engine.specific_impulse

    def wrt_parameter(self, time: float, identifier: tuple) -> Optional[np.ndarray]:
        kind, name = identifier[0], identifier[-1]
        out = np.zeros(_size(self.model))
        found = False
        for i, body in enumerate(self.model.bodies):
            for engine in self._engines(body):
                if engine.name != name:
                    continue
                if kind == "thrust_magnitude":
                    out[i] += self.wrt_thrust_magnitude(engine)
                    found = True
                elif kind == "specific_impulse":
                    out[i] += self.wrt_specific_impulse(engine)
                    found = True
        return out if found else None


# ===================================================================
# Not implemented couplings
# ===================================================================

class RotationalDynamicsPartial:
    """Rotational dynamics partials are not implemented."""

    def __init__(self, model: _RotationalBase):
        self.model = model

    def wrt_state(self, time: float, other: SingleStateDerivative) -> np.ndarray:
        raise UnsupportedStateCouplingError(
            IntegratedStateType.ROTATIONAL, other.state_type)

    def wrt_parameter(self, time: float, identifier: tuple) -> Optional[np.ndarray]:
        raise UnsupportedStateCouplingError(
            IntegratedStateType.ROTATIONAL, IntegratedStateType.ROTATIONAL,
            f"parameter partial {identifier}")


class CustomStatePartial:
    """Custom state functions are opaque; their partials are unknown."""

    def __init__(self, model: CustomStateDerivative):
        self.model = model

    def wrt_state(self, time: float, other: SingleStateDerivative) -> np.ndarray:
        raise UnsupportedStateCouplingError(IntegratedStateType.CUSTOM, other.state_type)

    def wrt_parameter(self, time: float, identifier: tuple) -> Optional[np.ndarray]:
        return None


def create_state_derivative_partial(model: SingleStateDerivative) -> StateDerivativePartial:
    """Partial object matching a state derivative model."""
    if isinstance(model, TranslationalStateDerivative):
        return TranslationalAccelerationPartial(model)
    if isinstance(model, MassRateStateDerivative):
        return MassRatePartial(model)
    if isinstance(model, _RotationalBase):
        return RotationalDynamicsPartial(model)
    if isinstance(model, CustomStateDerivative):
        return CustomStatePartial(model)
    raise TypeError(f"No partials available for {type(model).__name__}")
