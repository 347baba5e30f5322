"""
Quaternion operations.

Convention: q = [q0, q1, q2, q3] with q0 the scalar component (Hamilton
product). A rotational state quaternion rotates body-fixed vectors into
the inertial frame: v_I = R(q) @ v_B. Angular velocities are expressed in
the body frame, giving the kinematics dq/dt = 0.5 * q * [0, w].
"""

from __future__ import annotations

import numpy as np


def skew(v: np.ndarray) -> np.ndarray:
    """Cross-product matrix: skew(a) @ b == cross(a, b)."""
    return np.array([
        [0.0, -v[2], v[1]],
        [v[2], 0.0, -v[0]],
        [-v[1], v[0], 0.0],
    ])


def q_multiply(q1: np.ndarray, q2: np.ndarray) -> np.ndarray:
    """Hamilton product q1 * q2, so that R(q1 * q2) = R(q1) @ R(q2).

    Args:
        q1: First quaternion [q0_scalar, q1, q2, q3], shape (4,).
        q2: Second quaternion, shape (4,).

    Returns:
        Product quaternion, shape (4,).
    """
    w1, x1, y1, z1 = q1
    w2, x2, y2, z2 = q2

    return np.array([
        w1*w2 - x1*x2 - y1*y2 - z1*z2,
        w1*x2 + x1*w2 + y1*z2 - z1*y2,
        w1*y2 - x1*z2 + y1*w2 + z1*x2,
        w1*z2 + x1*y2 - y1*x2 + z1*w2,
    ])


def q_normalize(q: np.ndarray) -> np.ndarray:
    """Normalize quaternion to unit magnitude.

    Args:
        q: Quaternion, shape (4,).

    Returns:
        Unit quaternion, shape (4,).

    Raises:
        ValueError: If q has (near) zero norm.
    """
    n = np.linalg.norm(q)
    if n < 1e-15:
        raise ValueError(f"Cannot normalize quaternion with norm {n:.3e}")
    return q / n


def q_from_axis_angle(axis: np.ndarray, angle: float) -> np.ndarray:
    """Create quaternion from axis-angle representation.

    Args:
        axis: Rotation axis (unit vector), shape (3,).
        angle: Rotation angle [rad].

    Returns:
        Unit quaternion, shape (4,).
    """
    half = angle / 2.0
    s = np.sin(half)
    return np.array([np.cos(half), axis[0]*s, axis[1]*s, axis[2]*s])


def q_kinematics(q: np.ndarray, omega_body: np.ndarray) -> np.ndarray:
    """Quaternion time derivative for a body-frame angular velocity.

    dq/dt = 0.5 * q * [0, w]

    Args:
        q: Unit quaternion (body to inertial), shape (4,).
        omega_body: Angular velocity in the body frame [rad/s], shape (3,).

    Returns:
        dq/dt, shape (4,).
    """
    return 0.5 * q_multiply(q, np.concatenate([[0.0], omega_body]))


def q_equivalent(q1: np.ndarray, q2: np.ndarray, atol: float = 1e-12) -> bool:
    """True if both quaternions represent the same rotation (q and -q)."""
    return bool(np.allclose(q1, q2, atol=atol) or np.allclose(q1, -q2, atol=atol))
