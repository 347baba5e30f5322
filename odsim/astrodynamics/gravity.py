"""
Point-mass gravitational acceleration models.

Each function returns the acceleration vector AND its Jacobian (da/dr)
for variational-equation integration. The Jacobian is the 3x3 matrix of
partial derivatives of acceleration with respect to the position of the
accelerated body.

References:
    Montenbruck & Gill, "Satellite Orbits", Ch. 3
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

import numpy as np

from .bodies import BodyRegistry


class AccelerationModel(Protocol):
    """Capability interface of translational acceleration models."""

    def acceleration(self, time: float, body_name: str, registry: BodyRegistry
                     ) -> tuple[np.ndarray, np.ndarray]:
        """Acceleration (3,) and its Jacobian wrt position (3,3)."""
        ...

    def partial_wrt_mass(self, time: float, body_name: str,
                         registry: BodyRegistry) -> np.ndarray:
        """Partial of the acceleration wrt the accelerated body's mass, (3,)."""
        ...

    def partial_wrt_parameter(self, identifier: tuple, time: float, body_name: str,
                              registry: BodyRegistry) -> Optional[np.ndarray]:
        """Partial wrt an estimatable parameter, (3,), or None if independent."""
        ...


# ===================================================================
# Point-mass kernels
# ===================================================================

def point_mass_acceleration(r: np.ndarray, mu: float
                            ) -> tuple[np.ndarray, np.ndarray]:
    """Point-mass gravitational acceleration of a body at r from the attractor.

    Args:
        r: Position relative to the attracting body [m], shape (3,).
        mu: Gravitational parameter of the attracting body [m^3/s^2].

    Returns:
        a: Acceleration vector [m/s^2], shape (3,).
        da_dr: Jacobian da/dr, shape (3,3).
    """
    r_mag = np.linalg.norm(r)
    r3 = r_mag ** 3

    a = -mu * r / r3
    da_dr = -mu / r3 * (np.eye(3) - 3.0 * np.outer(r, r) / r_mag ** 2)

    return a, da_dr


def third_body_acceleration(r_sat: np.ndarray, r_body: np.ndarray,
                            mu_body: float
                            ) -> tuple[np.ndarray, np.ndarray]:
    """Third-body perturbation in a frame centred on another (central) body.

    a = mu * [d/|d|^3 - r_body/|r_body|^3],  d = r_body - r_sat

    The second (indirect) term is the acceleration of the frame origin by
    the same body, which does not depend on the satellite position.

    Args:
        r_sat: Satellite position relative to the central body [m], shape (3,).
        r_body: Third body position relative to the central body [m], shape (3,).
        mu_body: Third body gravitational parameter [m^3/s^2].

    Returns:
        a: Perturbation acceleration [m/s^2], shape (3,).
        da_dr: Jacobian da/dr wrt satellite position, shape (3,3).
    """
    d = r_body - r_sat
    d_mag = np.linalg.norm(d)
    d3 = d_mag ** 3
    rb3 = np.linalg.norm(r_body) ** 3

    a = mu_body * (d / d3 - r_body / rb3)
    da_dr = -mu_body * (np.eye(3) / d3 - 3.0 * np.outer(d, d) / d_mag ** 5)

    return a, da_dr


# ===================================================================
# Registry-backed model
# ===================================================================

@dataclass
class PointMassGravity:
    """Point-mass attraction by a named body.

    When the accelerated body is integrated relative to a central body
    other than the attracting one, the indirect term (acceleration of the
    central body by the attractor) is subtracted.

    Attributes:
        exerting_body: Name of the attracting body.
        central_body: Origin of the integration frame; None for an
            inertial origin.
    """
    exerting_body: str
    central_body: Optional[str] = None

    def _geometry(self, body_name, registry):
        r_sat = registry[body_name].position
        exerting = registry[self.exerting_body]
        indirect = (self.central_body is not None
                    and self.central_body != self.exerting_body)
        return r_sat, exerting, indirect

    def acceleration(self, time: float, body_name: str, registry: BodyRegistry
                     ) -> tuple[np.ndarray, np.ndarray]:
        r_sat, exerting, indirect = self._geometry(body_name, registry)
        mu = exerting.gravitational_parameter
        if indirect:
            r_c = registry[self.central_body].position
            return third_body_acceleration(r_sat - r_c, exerting.position - r_c, mu)
        return point_mass_acceleration(r_sat - exerting.position, mu)

    def partial_wrt_mass(self, time: float, body_name: str,
                         registry: BodyRegistry) -> np.ndarray:
        return np.zeros(3)

    def partial_wrt_gravitational_parameter(self, time: float, body_name: str,
                                            registry: BodyRegistry) -> np.ndarray:
        """da/dmu of the attracting body, (3,)."""
        r_sat, exerting, indirect = self._geometry(body_name, registry)
        if indirect:
            r_c = registry[self.central_body].position
            a, _ = third_body_acceleration(r_sat - r_c, exerting.position - r_c, 1.0)
        else:
            a, _ = point_mass_acceleration(r_sat - exerting.position, 1.0)
        return a

    def partial_wrt_parameter(self, identifier: tuple, time: float, body_name: str,
                              registry: BodyRegistry) -> Optional[np.ndarray]:
        if identifier == ("gravitational_parameter", self.exerting_body):
            return self.partial_wrt_gravitational_parameter(time, body_name, registry)
        return None
