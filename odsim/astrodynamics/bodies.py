"""
Body registry.

Bodies hold their physical properties and their current (time-dependent)
state. Environment and state-derivative models never keep references to
Body objects; they keep the registry and a body name and look the body up
at evaluation time, so there are no ownership cycles between bodies and
the models acting on them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

Ephemeris = Callable[[float], np.ndarray]


@dataclass
class Body:
    """A body of the simulated environment.

    Attributes:
        name: Unique identifier.
        gravitational_parameter: GM [m^3/s^2]; zero for massless bodies.
        mass: Current mass [kg].
        inertia_tensor: Inertia tensor in the body frame [kg m^2], shape (3,3).
        inertia_tensor_rate: Time derivative of the inertia tensor, shape (3,3).
        ephemeris: Optional function t -> Cartesian state (6,) used for
            bodies that are not propagated.
        state: Current inertial Cartesian state [m, m/s], shape (6,).
        rotation: Current body-fixed to inertial quaternion, shape (4,).
        angular_velocity: Current body-frame angular velocity [rad/s], shape (3,).
    """
    name: str
    gravitational_parameter: float = 0.0
    mass: float = 0.0
    inertia_tensor: np.ndarray = field(default_factory=lambda: np.eye(3))
    inertia_tensor_rate: np.ndarray = field(default_factory=lambda: np.zeros((3, 3)))
    ephemeris: Optional[Ephemeris] = None
    state: np.ndarray = field(default_factory=lambda: np.zeros(6))
    rotation: np.ndarray = field(default_factory=lambda: np.array([1.0, 0.0, 0.0, 0.0]))
    angular_velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))

    @property
    def position(self) -> np.ndarray:
        return self.state[0:3]

    @property
    def velocity(self) -> np.ndarray:
        return self.state[3:6]

    def state_at(self, t: float) -> np.ndarray:
        """Cartesian state at t from the ephemeris, or the current state."""
        if self.ephemeris is None:
            return self.state.copy()
        return np.asarray(self.ephemeris(t), dtype=float)


class BodyRegistry:
    """Name-indexed collection of bodies plus global metric parameters.

    Attributes:
        ppn_gamma: PPN parameter gamma used by relativistic corrections.
    """

    def __init__(self, bodies: Optional[list[Body]] = None, ppn_gamma: float = 1.0):
        self._bodies: dict[str, Body] = {}
        self.ppn_gamma = ppn_gamma
        for body in bodies or []:
            self.add(body)

    def add(self, body: Body) -> Body:
        if body.name in self._bodies:
            raise ValueError(f"Body '{body.name}' already registered")
        self._bodies[body.name] = body
        return body

    def __getitem__(self, name: str) -> Body:
        try:
            return self._bodies[name]
        except KeyError:
            raise KeyError(f"Unknown body '{name}'") from None

    def __contains__(self, name: str) -> bool:
        return name in self._bodies

    def __iter__(self):
        return iter(self._bodies.values())

    def names(self) -> list[str]:
        return list(self._bodies)

    def update_ephemeris_bodies(self, t: float, skip: tuple[str, ...] = ()):
        """Set the current state of every ephemeris-driven body to its state at t."""
        for body in self._bodies.values():
            if body.ephemeris is not None and body.name not in skip:
                body.state = np.asarray(body.ephemeris(t), dtype=float)

    def state_function(self, name: str) -> Ephemeris:
        """Callable t -> state of a body, resolved by name at call time."""
        def _state(t: float) -> np.ndarray:
            return self[name].state_at(t)
        return _state


def constant_ephemeris(state: np.ndarray) -> Ephemeris:
    """Ephemeris of a body fixed at one Cartesian state."""
    fixed = np.array(state, dtype=float, copy=True)

    def _ephemeris(t: float) -> np.ndarray:
        return fixed.copy()
    return _ephemeris


def linear_ephemeris(state: np.ndarray, t_ref: float = 0.0) -> Ephemeris:
    """Ephemeris of a body moving with constant velocity."""
    ref = np.array(state, dtype=float, copy=True)

    def _ephemeris(t: float) -> np.ndarray:
        out = ref.copy()
        out[0:3] += (t - t_ref) * ref[3:6]
        return out
    return _ephemeris
