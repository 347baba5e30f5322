"""
Engine and thrust models.

Engines have a constant thrust magnitude, specific impulse and inertial
thrust direction. They drive both the thrust acceleration of the
translational dynamics and the mass rate of the body-mass dynamics.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from ..core.constants import G0
from .bodies import BodyRegistry


@dataclass
class EngineModel:
    """Constant-thrust engine.

    Attributes:
        name: Engine identifier (used by estimatable engine parameters).
        thrust_magnitude: Thrust [N].
        specific_impulse: Specific impulse [s].
        direction: Inertial thrust direction, shape (3,); normalised on init.
    """
    name: str
    thrust_magnitude: float
    specific_impulse: float
    direction: np.ndarray = field(default_factory=lambda: np.array([1.0, 0.0, 0.0]))

    def __post_init__(self):
        if self.specific_impulse <= 0.0:
            raise ValueError(f"specific_impulse must be positive, got {self.specific_impulse}")
        norm = np.linalg.norm(self.direction)
        if norm == 0.0:
            raise ValueError("Thrust direction must be non-zero")
        self.direction = np.asarray(self.direction, dtype=float) / norm

    @property
    def mass_rate(self) -> float:
        """Body mass rate caused by this engine [kg/s] (negative)."""
        return -self.thrust_magnitude / (self.specific_impulse * G0)

    @property
    def thrust_vector(self) -> np.ndarray:
        return self.thrust_magnitude * self.direction


@dataclass
class ThrustAcceleration:
    """Acceleration of a body by one of its engines."""
    engine: EngineModel

    def acceleration(self, time: float, body_name: str, registry: BodyRegistry
                     ) -> tuple[np.ndarray, np.ndarray]:
        mass = registry[body_name].mass
        return self.engine.thrust_vector / mass, np.zeros((3, 3))

    def partial_wrt_mass(self, time: float, body_name: str,
                         registry: BodyRegistry) -> np.ndarray:
        mass = registry[body_name].mass
        return -self.engine.thrust_vector / mass ** 2

    def partial_wrt_parameter(self, identifier: tuple, time: float, body_name: str,
                              registry: BodyRegistry) -> Optional[np.ndarray]:
        if identifier == ("thrust_magnitude", self.engine.name):
            return self.engine.direction / registry[body_name].mass
        return None


@dataclass
class FromThrustMassRateModel:
    """Mass rate of a body as the sum of its engines' propellant flow.

    Attributes:
        engines: Engines mounted on the body.
    """
    engines: list[EngineModel]

    def mass_rate(self, time: float) -> float:
        return sum(engine.mass_rate for engine in self.engines)
