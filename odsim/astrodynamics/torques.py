"""
Torque models for rotational dynamics.

Torques are expressed in the body-fixed frame of the body they act on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

import numpy as np

from .bodies import BodyRegistry


class TorqueModel(Protocol):
    """Capability interface of torque models."""

    def torque(self, time: float, body_name: str, registry: BodyRegistry) -> np.ndarray:
        """Body-frame torque [N m], shape (3,)."""
        ...


@dataclass
class ConstantTorque:
    """Torque fixed in the body frame."""
    torque_body: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def torque(self, time: float, body_name: str, registry: BodyRegistry) -> np.ndarray:
        return np.asarray(self.torque_body, dtype=float)
