"""
White acceleration process noise.

Unmodelled accelerations make the true trajectory drift away from the
propagated one; the discrete-time noise added over an interval dt for a
white acceleration of spectral density q is

    Q = q * [[dt^3/3 I, dt^2/2 I],
             [dt^2/2 I, dt     I]]
"""

from __future__ import annotations

import numpy as np

from ..core.types import IntegratedStateType, StateBlock


def white_acceleration_noise(q: float, dt: float) -> np.ndarray:
    """Discrete process noise of one Cartesian state.

    Args:
        q: Acceleration spectral density [m^2/s^3].
        dt: Interval length [s]; the sign is ignored.

    Returns:
        Q: 6x6 covariance increment [m^2, m^2/s, m^2/s^2].
    """
    dt = abs(dt)
    I3 = np.eye(3)
    return q * np.block([
        [dt ** 3 / 3.0 * I3, dt ** 2 / 2.0 * I3],
        [dt ** 2 / 2.0 * I3, dt * I3],
    ])


def composed_state_noise(blocks: list[StateBlock], size: int,
                         q: float, dt: float) -> np.ndarray:
    """Process noise of a composed state: Q on every translational block."""
    Q = np.zeros((size, size))
    if q == 0.0:
        return Q
    Q_body = white_acceleration_noise(q, dt)
    for block in blocks:
        if block.state_type is IntegratedStateType.TRANSLATIONAL:
            Q[block.slice, block.slice] = Q_body
    return Q
