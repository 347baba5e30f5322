"""
Exponential-map attitude representation.

The exponential map e = theta * axis encodes the same rotation as the
quaternion q = [cos(theta/2), sin(theta/2) * axis]. It is singular at
theta = 2*pi; whenever |e| reaches pi the vector is replaced by its shadow
e' = e * (1 - 2*pi/|e|), which encodes the same rotation with magnitude
2*pi - |e| <= pi.

Reference:
    Grassia, "Practical Parameterization of Rotations Using the
    Exponential Map", Journal of Graphics Tools 3(3), 1998
"""

from __future__ import annotations

import numpy as np

from ..core.constants import PI, TWO_PI
from .quaternion import skew

# Below this angle the closed forms switch to Taylor series
_SMALL_ANGLE = 1e-4


def exponential_map_to_quaternion(e: np.ndarray) -> np.ndarray:
    """Convert an exponential-map vector to a unit quaternion.

    Args:
        e: Exponential map [rad], shape (3,).

    Returns:
        Unit quaternion [q0_scalar, q1, q2, q3], shape (4,).
    """
    theta = np.linalg.norm(e)
    if theta < _SMALL_ANGLE:
        # sin(theta/2)/theta = 1/2 - theta^2/48 + ...
        factor = 0.5 - theta * theta / 48.0
    else:
        factor = np.sin(0.5 * theta) / theta
    return np.concatenate([[np.cos(0.5 * theta)], factor * e])


def quaternion_to_exponential_map(q: np.ndarray) -> np.ndarray:
    """Convert a unit quaternion to an exponential-map vector.

    The rotation angle is taken in [0, 2*pi], so quaternions with a negative
    scalar part map to vectors of norm above pi (shadow side).

    Args:
        q: Unit quaternion [q0_scalar, q1, q2, q3], shape (4,).

    Returns:
        Exponential map [rad], shape (3,).
    """
    q_vec = q[1:4]
    vec_norm = np.linalg.norm(q_vec)
    theta = 2.0 * np.arctan2(vec_norm, q[0])
    if vec_norm < _SMALL_ANGLE and q[0] > 0.0:
        # theta/sin(theta/2) = 2 + theta^2/12 + ...
        return (2.0 + theta * theta / 12.0) * q_vec
    if vec_norm == 0.0:
        # q = -1: full turn, same rotation as the identity
        return np.zeros(3)
    return (theta / vec_norm) * q_vec


def is_shadow_switch_required(e: np.ndarray) -> bool:
    """True when |e| has reached the pi boundary."""
    return bool(np.linalg.norm(e) >= PI)


def shadow_exponential_map(e: np.ndarray) -> np.ndarray:
    """Shadow representation e * (1 - 2*pi/|e|) of the same rotation."""
    theta = np.linalg.norm(e)
    return e * (1.0 - TWO_PI / theta)


def exponential_map_rate_matrix(e: np.ndarray) -> np.ndarray:
    """Matrix B(e) with de/dt = B(e) @ w for body-frame angular velocity w.

    B = I + [e x]/2 + c(theta) [e x]^2, c = (1 - (theta/2) cot(theta/2)) / theta^2

    Args:
        e: Exponential map [rad], shape (3,), |e| < 2*pi.

    Returns:
        B, shape (3, 3).
    """
    theta = np.linalg.norm(e)
    if theta < _SMALL_ANGLE:
        c = 1.0 / 12.0 + theta * theta / 720.0
    else:
        half = 0.5 * theta
        c = (1.0 - half * np.cos(half) / np.sin(half)) / (theta * theta)

    e_cross = skew(e)
    return np.eye(3) + 0.5 * e_cross + c * (e_cross @ e_cross)


def exponential_map_kinematics(e: np.ndarray, omega_body: np.ndarray) -> np.ndarray:
    """Exponential-map time derivative for a body-frame angular velocity."""
    return exponential_map_rate_matrix(e) @ omega_body
