"""
Single-type state derivative models.

Each model owns the dynamics of one kind of integrated state for one or
more bodies and implements the same capability set:

    state_type                       kind of state handled
    bodies                           names of the bodies, in state order
    internal_size_per_body           elements integrated per body
    conventional_size_per_body       elements output per body
    update_environment(t, y)         write the current state into the registry
    calculate_derivative(t, y)       derivative of the model's state slice
    convert_from_conventional(y, t)  output representation -> integrated
    convert_to_conventional(y, t)    integrated representation -> output
    is_state_to_be_post_processed    whether post_process_state does anything
    post_process_state(y)            in-place fix-up of an accepted state
    align_interpolation_endpoint(y0, y1, f1)
                                     y1, f1 moved onto the branch of y0

The set of models is closed: translational (Cowell), rotational with a
quaternion or an exponential-map attitude, body mass and user-defined
custom states. The composer dispatches on this interface only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, ClassVar, Optional, Protocol

import numpy as np

from ..attitude.exponential_map import (
    exponential_map_kinematics, exponential_map_to_quaternion, is_shadow_switch_required,
    quaternion_to_exponential_map, shadow_exponential_map,
)
from ..attitude.quaternion import q_normalize
from ..core.types import IntegratedStateType
from .bodies import BodyRegistry
from .eom import (
    euler_angular_acceleration, exponential_map_rotational_derivative,
    quaternion_rotational_derivative, translational_derivative,
)
from .gravity import AccelerationModel
from .propulsion import FromThrustMassRateModel
from .torques import TorqueModel

logger = logging.getLogger(__name__)


class SingleStateDerivative(Protocol):
    """Capability interface shared by all state derivative models."""

    state_type: ClassVar[IntegratedStateType]
    internal_size_per_body: int
    conventional_size_per_body: int
    is_state_to_be_post_processed: bool

    @property
    def bodies(self) -> list[str]: ...

    @property
    def propagated_state_size(self) -> int: ...

    @property
    def conventional_state_size(self) -> int: ...

    def update_environment(self, time: float, state: np.ndarray) -> None: ...

    def calculate_derivative(self, time: float, state: np.ndarray) -> np.ndarray: ...

    def convert_from_conventional(self, state: np.ndarray, time: float) -> np.ndarray: ...

    def convert_to_conventional(self, state: np.ndarray, time: float) -> np.ndarray: ...

    def post_process_state(self, state: np.ndarray) -> None: ...

    def align_interpolation_endpoint(self, reference: np.ndarray, state: np.ndarray,
                                     derivative: np.ndarray
                                     ) -> tuple[np.ndarray, np.ndarray]: ...


class _IdentityRepresentation:
    """Mixin for models whose integrated and output states coincide."""

    is_state_to_be_post_processed = False

    @property
    def propagated_state_size(self) -> int:
        return self.internal_size_per_body * len(self.bodies)

    @property
    def conventional_state_size(self) -> int:
        return self.conventional_size_per_body * len(self.bodies)

    def convert_from_conventional(self, state: np.ndarray, time: float) -> np.ndarray:
        return np.array(state, dtype=float, copy=True)

    def convert_to_conventional(self, state: np.ndarray, time: float) -> np.ndarray:
        return np.array(state, dtype=float, copy=True)

    def post_process_state(self, state: np.ndarray) -> None:
        return None

    def align_interpolation_endpoint(self, reference, state, derivative):
        return state, derivative


# ===================================================================
# Translational
# ===================================================================

@dataclass
class TranslationalStateDerivative(_IdentityRepresentation):
    """Cowell propagation of Cartesian states.

    States are relative to each body's central body (inertial origin when
    no central body is given); the registry always holds inertial states.

    Attributes:
        registry: Body registry.
        accelerations: Acceleration models acting on each propagated body.
        central_bodies: Central body per propagated body, or None.
    """
    state_type: ClassVar[IntegratedStateType] = IntegratedStateType.TRANSLATIONAL
    internal_size_per_body: ClassVar[int] = 6
    conventional_size_per_body: ClassVar[int] = 6

    registry: BodyRegistry
    accelerations: dict[str, list[AccelerationModel]]
    central_bodies: Optional[dict[str, str]] = None

    @property
    def bodies(self) -> list[str]:
        return list(self.accelerations)

    def central_body_state(self, body: str, time: float) -> np.ndarray:
        if not self.central_bodies or self.central_bodies.get(body) is None:
            return np.zeros(6)
        return self.registry[self.central_bodies[body]].state

    def update_environment(self, time: float, state: np.ndarray) -> None:
        for i, name in enumerate(self.bodies):
            local = state[6 * i:6 * i + 6].astype(float)
            self.registry[name].state = self.central_body_state(name, time) + local

    def total_acceleration(self, time: float, body: str
                           ) -> tuple[np.ndarray, np.ndarray]:
        """Summed acceleration and position Jacobian acting on a body."""
        a_total = np.zeros(3)
        da_dr_total = np.zeros((3, 3))
        for model in self.accelerations[body]:
            a, da_dr = model.acceleration(time, body, self.registry)
            a_total = a_total + a
            da_dr_total = da_dr_total + da_dr
        return a_total, da_dr_total

    def calculate_derivative(self, time: float, state: np.ndarray) -> np.ndarray:
        derivative = np.zeros_like(state)
        for i, name in enumerate(self.bodies):
            a, _ = self.total_acceleration(time, name)
            derivative[6 * i:6 * i + 6] = translational_derivative(state[6 * i:6 * i + 6], a)
        return derivative


# ===================================================================
# Rotational
# ===================================================================

@dataclass
class _RotationalBase:
    registry: BodyRegistry
    torques: dict[str, list[TorqueModel]]

    @property
    def bodies(self) -> list[str]:
        return list(self.torques)

    @property
    def propagated_state_size(self) -> int:
        return self.internal_size_per_body * len(self.bodies)

    @property
    def conventional_state_size(self) -> int:
        return self.conventional_size_per_body * len(self.bodies)

    def angular_acceleration(self, time: float, body: str) -> np.ndarray:
        b = self.registry[body]
        torque = np.zeros(3)
        for model in self.torques[body]:
            torque = torque + model.torque(time, body, self.registry)
        return euler_angular_acceleration(
            b.inertia_tensor, b.angular_velocity, torque, b.inertia_tensor_rate
        )

    def align_interpolation_endpoint(self, reference, state, derivative):
        return state, derivative


@dataclass
class RotationalQuaternionStateDerivative(_RotationalBase):
    """Rotational dynamics with a [q, w] state (7 per body).

    The quaternion is re-normalised on every accepted step.
    """
    state_type: ClassVar[IntegratedStateType] = IntegratedStateType.ROTATIONAL
    internal_size_per_body: ClassVar[int] = 7
    conventional_size_per_body: ClassVar[int] = 7
    is_state_to_be_post_processed: ClassVar[bool] = True

    def update_environment(self, time: float, state: np.ndarray) -> None:
        for i, name in enumerate(self.bodies):
            block = state[7 * i:7 * i + 7].astype(float)
            body = self.registry[name]
            body.rotation = q_normalize(block[0:4])
            body.angular_velocity = block[4:7]

    def calculate_derivative(self, time: float, state: np.ndarray) -> np.ndarray:
        derivative = np.zeros_like(state)
        for i, name in enumerate(self.bodies):
            block = state[7 * i:7 * i + 7]
            omega_dot = self.angular_acceleration(time, name)
            derivative[7 * i:7 * i + 7] = quaternion_rotational_derivative(
                block[0:4], block[4:7], omega_dot)
        return derivative

    def convert_from_conventional(self, state: np.ndarray, time: float) -> np.ndarray:
        return np.array(state, dtype=float, copy=True)

    def convert_to_conventional(self, state: np.ndarray, time: float) -> np.ndarray:
        return np.array(state, dtype=float, copy=True)

    def post_process_state(self, state: np.ndarray) -> None:
        for i in range(len(self.bodies)):
            q = state[7 * i:7 * i + 4]
            state[7 * i:7 * i + 4] = q / np.linalg.norm(q)


@dataclass
class RotationalExponentialMapStateDerivative(_RotationalBase):
    """Rotational dynamics with an [e, w] exponential-map state.

    6 integrated elements per body, 7 conventional ([q, w]). Accepted states
    whose exponential map has reached |e| >= pi are switched to the shadow
    representation, which keeps the map away from its 2*pi singularity.
    """
    state_type: ClassVar[IntegratedStateType] = IntegratedStateType.ROTATIONAL
    internal_size_per_body: ClassVar[int] = 6
    conventional_size_per_body: ClassVar[int] = 7
    is_state_to_be_post_processed: ClassVar[bool] = True

    def update_environment(self, time: float, state: np.ndarray) -> None:
        for i, name in enumerate(self.bodies):
            block = state[6 * i:6 * i + 6].astype(float)
            body = self.registry[name]
            body.rotation = exponential_map_to_quaternion(block[0:3])
            body.angular_velocity = block[3:6]

    def calculate_derivative(self, time: float, state: np.ndarray) -> np.ndarray:
        derivative = np.zeros_like(state)
        for i, name in enumerate(self.bodies):
            block = state[6 * i:6 * i + 6]
            omega_dot = self.angular_acceleration(time, name)
            derivative[6 * i:6 * i + 6] = exponential_map_rotational_derivative(
                block[0:3], block[3:6], omega_dot)
        return derivative

    def convert_from_conventional(self, state: np.ndarray, time: float) -> np.ndarray:
        out = np.zeros(6 * len(self.bodies))
        for i in range(len(self.bodies)):
            block = state[7 * i:7 * i + 7]
            out[6 * i:6 * i + 3] = quaternion_to_exponential_map(q_normalize(block[0:4]))
            out[6 * i + 3:6 * i + 6] = block[4:7]
        self.post_process_state(out)
        return out

    def convert_to_conventional(self, state: np.ndarray, time: float) -> np.ndarray:
        out = np.zeros(7 * len(self.bodies))
        for i in range(len(self.bodies)):
            block = state[6 * i:6 * i + 6]
            out[7 * i:7 * i + 4] = exponential_map_to_quaternion(block[0:3])
            out[7 * i + 4:7 * i + 7] = block[3:6]
        return out

    def post_process_state(self, state: np.ndarray) -> None:
        for i, name in enumerate(self.bodies):
            e = state[6 * i:6 * i + 3]
            if is_shadow_switch_required(e):
                state[6 * i:6 * i + 3] = shadow_exponential_map(e)
                logger.debug("Shadow exponential map switch for body '%s' (|e|=%.6f)",
                             name, float(np.linalg.norm(e)))

    def align_interpolation_endpoint(self, reference: np.ndarray, state: np.ndarray,
                                     derivative: np.ndarray
                                     ) -> tuple[np.ndarray, np.ndarray]:
        """Undo a shadow switch between two consecutive output states.

        A switch between reference and state makes the stored maps jump
        from e to about -e although the rotation is continuous. Each body
        whose shadow lies closer to the reference map is swapped back, and
        its map rate recomputed for the swapped map.

        Args:
            reference: Model slice of the earlier output state.
            state: Model slice of the later output state.
            derivative: Derivative stored with state.

        Returns:
            Copies of state and derivative on the branch of reference.
        """
        state = np.array(state, copy=True)
        derivative = np.array(derivative, copy=True)
        for i in range(len(self.bodies)):
            e_ref = reference[6 * i:6 * i + 3]
            e = state[6 * i:6 * i + 3]
            if not np.any(e):
                continue
            other = shadow_exponential_map(e)
            if np.linalg.norm(other - e_ref) < np.linalg.norm(e - e_ref):
                state[6 * i:6 * i + 3] = other
                derivative[6 * i:6 * i + 3] = exponential_map_kinematics(
                    other, state[6 * i + 3:6 * i + 6])
        return state, derivative


# ===================================================================
# Body mass
# ===================================================================

@dataclass
class MassRateStateDerivative(_IdentityRepresentation):
    """Body mass propagation (1 element per body).

    Attributes:
        registry: Body registry.
        mass_rate_models: Mass rate models of each propagated body.
    """
    state_type: ClassVar[IntegratedStateType] = IntegratedStateType.BODY_MASS
    internal_size_per_body: ClassVar[int] = 1
    conventional_size_per_body: ClassVar[int] = 1

    registry: BodyRegistry
    mass_rate_models: dict[str, list[FromThrustMassRateModel]]

    @property
    def bodies(self) -> list[str]:
        return list(self.mass_rate_models)

    def update_environment(self, time: float, state: np.ndarray) -> None:
        for i, name in enumerate(self.bodies):
            self.registry[name].mass = float(state[i])

    def calculate_derivative(self, time: float, state: np.ndarray) -> np.ndarray:
        derivative = np.zeros_like(state)
        for i, name in enumerate(self.bodies):
            derivative[i] = sum(model.mass_rate(time) for model in self.mass_rate_models[name])
        return derivative


# ===================================================================
# Custom
# ===================================================================

@dataclass
class CustomStateDerivative(_IdentityRepresentation):
    """User-defined state with derivative function (t, state) -> derivative.

    Attributes:
        name: Identifier of the custom state.
        size: Number of elements.
        function: Derivative function.
    """
    state_type: ClassVar[IntegratedStateType] = IntegratedStateType.CUSTOM

    name: str
    size: int
    function: Callable[[float, np.ndarray], np.ndarray]
    internal_size_per_body: int = field(init=False)
    conventional_size_per_body: int = field(init=False)

    def __post_init__(self):
        if self.size < 1:
            raise ValueError(f"Custom state size must be >= 1, got {self.size}")
        self.internal_size_per_body = self.size
        self.conventional_size_per_body = self.size

    @property
    def bodies(self) -> list[str]:
        return [self.name]

    def update_environment(self, time: float, state: np.ndarray) -> None:
        return None

    def calculate_derivative(self, time: float, state: np.ndarray) -> np.ndarray:
        derivative = np.asarray(self.function(time, state))
        if derivative.shape != state.shape:
            raise ValueError(
                f"Custom state '{self.name}' derivative has shape {derivative.shape}, "
                f"expected {state.shape}"
            )
        return derivative
