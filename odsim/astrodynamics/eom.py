"""
Equations of motion kernels.

Pure functions shared by the state-derivative models:
    - Cowell translational dynamics  d[r, v]/dt = [v, a]
    - Euler rotational dynamics      I dw/dt = tau - w x (I w) - dI/dt w
    - Attitude kinematics for the quaternion and exponential-map states
    - Variational equations          dPhi/dt = A(t) Phi
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from ..attitude.exponential_map import exponential_map_kinematics
from ..attitude.quaternion import q_kinematics


def translational_derivative(state: np.ndarray, acceleration: np.ndarray) -> np.ndarray:
    """Cartesian state derivative [v, a], shape (6,)."""
    return np.concatenate([state[3:6], acceleration])


def euler_angular_acceleration(inertia: np.ndarray,
                               omega: np.ndarray,
                               torque: np.ndarray,
                               inertia_rate: Optional[np.ndarray] = None
                               ) -> np.ndarray:
    """Body-frame angular acceleration from Euler's rotational equation.

    Args:
        inertia: Inertia tensor [kg m^2], shape (3,3).
        omega: Body-frame angular velocity [rad/s], shape (3,).
        torque: Total body-frame torque [N m], shape (3,).
        inertia_rate: Time derivative of the inertia tensor, shape (3,3).

    Returns:
        dw/dt [rad/s^2], shape (3,).
    """
    rhs = torque - np.cross(omega, inertia @ omega)
    if inertia_rate is not None:
        rhs = rhs - inertia_rate @ omega
    return np.linalg.solve(inertia, rhs)


def quaternion_rotational_derivative(q: np.ndarray, omega: np.ndarray,
                                     omega_dot: np.ndarray) -> np.ndarray:
    """Derivative of the [q, w] rotational state, shape (7,)."""
    return np.concatenate([q_kinematics(q, omega), omega_dot])


def exponential_map_rotational_derivative(e: np.ndarray, omega: np.ndarray,
                                          omega_dot: np.ndarray) -> np.ndarray:
    """Derivative of the [e, w] rotational state, shape (6,)."""
    return np.concatenate([exponential_map_kinematics(e, omega), omega_dot])


def variational_derivative(A: np.ndarray, phi: np.ndarray,
                           sensitivity: Optional[np.ndarray] = None,
                           df_dp: Optional[np.ndarray] = None
                           ) -> tuple[np.ndarray, Optional[np.ndarray]]:
    """Derivatives of the STM and of the parameter sensitivity matrix.

    dPhi/dt = A Phi
    dS/dt   = A S + df/dp

    Args:
        A: State Jacobian df/dx, shape (n,n).
        phi: State transition matrix, shape (n,n).
        sensitivity: Sensitivity matrix dx/dp, shape (n,k), or None.
        df_dp: Explicit parameter partial of the dynamics, shape (n,k).

    Returns:
        dphi: Derivative of the STM, shape (n,n).
        dsens: Derivative of the sensitivity matrix, or None.
    """
    dphi = A @ phi
    if sensitivity is None:
        return dphi, None
    dsens = A @ sensitivity
    if df_dp is not None:
        dsens = dsens + df_dp
    return dphi, dsens
