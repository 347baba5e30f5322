"""
Light-time solution between two link ends.

Solves the implicit light-time equation

    tau = |r_R(t_R) - r_T(t_T)| / c + sum(corrections),   t_R - t_T = tau

by fixed-point iteration, holding either the reception or the transmission
time fixed.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol, Sequence

import numpy as np

from ..astrodynamics.bodies import BodyRegistry
from ..core.constants import SPEED_OF_LIGHT
from ..core.errors import LightTimeConvergenceError

logger = logging.getLogger(__name__)

StateFunction = Callable[[float], np.ndarray]


class LightTimeCorrection(Protocol):
    """Additive correction to the geometric light time [s]."""

    def calculate_light_time_correction(self, transmitter_state: np.ndarray,
                                        receiver_state: np.ndarray,
                                        transmission_time: float,
                                        reception_time: float) -> float:
        ...


# ===================================================================
# Relativistic correction
# ===================================================================

def shapiro_log_term(r_transmitter: np.ndarray, r_receiver: np.ndarray,
                     r_perturber: np.ndarray) -> float:
    """ln((r_T + r_R + rho) / (r_T + r_R - rho)) for one perturbing body."""
    d_t = np.linalg.norm(r_transmitter - r_perturber)
    d_r = np.linalg.norm(r_receiver - r_perturber)
    rho = np.linalg.norm(r_receiver - r_transmitter)
    return float(np.log((d_t + d_r + rho) / (d_t + d_r - rho)))


class FirstOrderRelativisticCorrection:
    """First-order (Shapiro) light-time delay of point-mass perturbers.

        dtau = sum_k (1 + gamma) mu_k / c^3 * ln((r_T + r_R + rho) / (r_T + r_R - rho))

    Perturber positions are taken at the mid-point of the link-end times.

    Attributes:
        perturbers: Names of the bodies causing the delay.
        registry: Body registry holding their gravitational parameters.
    """

    def __init__(self, perturbers: Sequence[str], registry: BodyRegistry,
                 ppn_gamma: Optional[float] = None):
        """Initialize the correction.

        Args:
            perturbers: Names of the perturbing bodies.
            registry: Body registry.
            ppn_gamma: Fixed PPN gamma. None reads registry.ppn_gamma at
                every evaluation, so an estimated gamma takes effect.
        """
        self.perturbers = list(perturbers)
        self.registry = registry
        self._ppn_gamma = ppn_gamma

    @property
    def is_ppn_gamma_fixed(self) -> bool:
        return self._ppn_gamma is not None

    @property
    def ppn_gamma(self) -> float:
        if self._ppn_gamma is not None:
            return self._ppn_gamma
        return self.registry.ppn_gamma

    def log_terms(self, transmitter_state: np.ndarray, receiver_state: np.ndarray,
                  transmission_time: float, reception_time: float) -> dict[str, float]:
        """Logarithmic geometry term of each perturber."""
        t_mid = 0.5 * (transmission_time + reception_time)
        terms = {}
        for name in self.perturbers:
            r_p = self.registry[name].state_at(t_mid)[0:3]
            terms[name] = shapiro_log_term(transmitter_state[0:3], receiver_state[0:3], r_p)
        return terms

    def calculate_light_time_correction(self, transmitter_state: np.ndarray,
                                        receiver_state: np.ndarray,
                                        transmission_time: float,
                                        reception_time: float) -> float:
        terms = self.log_terms(transmitter_state, receiver_state,
                               transmission_time, reception_time)
        scale = (1.0 + self.ppn_gamma) / SPEED_OF_LIGHT ** 3
        return sum(scale * self.registry[name].gravitational_parameter * log_term
                   for name, log_term in terms.items())

    def partial_wrt_ppn_gamma(self, transmitter_state, receiver_state,
                              transmission_time, reception_time) -> float:
        terms = self.log_terms(transmitter_state, receiver_state,
                               transmission_time, reception_time)
        return sum(self.registry[name].gravitational_parameter * log_term
                   for name, log_term in terms.items()) / SPEED_OF_LIGHT ** 3

    def partial_wrt_gravitational_parameter(self, body: str, transmitter_state,
                                            receiver_state, transmission_time,
                                            reception_time) -> float:
        if body not in self.perturbers:
            return 0.0
        terms = self.log_terms(transmitter_state, receiver_state,
                               transmission_time, reception_time)
        return (1.0 + self.ppn_gamma) * terms[body] / SPEED_OF_LIGHT ** 3


# ===================================================================
# Light-time solver
# ===================================================================

class LightTimeCalculator:
    """Iterative light-time solver for one transmitter/receiver pair.

    Attributes:
        transmitter_state_fn: t -> Cartesian state (6,) of the transmitter.
        receiver_state_fn: t -> Cartesian state (6,) of the receiver.
        corrections: Additive light-time corrections.
        tolerance: Convergence threshold on the light-time update [s].
        max_iterations: Iteration bound.
    """

    def __init__(self,
                 transmitter_state_fn: StateFunction,
                 receiver_state_fn: StateFunction,
                 corrections: Sequence[LightTimeCorrection] = (),
                 tolerance: float = 1e-12,
                 max_iterations: int = 50):
        if tolerance <= 0.0:
            raise ValueError(f"tolerance must be positive, got {tolerance}")
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
        self.transmitter_state_fn = transmitter_state_fn
        self.receiver_state_fn = receiver_state_fn
        self.corrections = list(corrections)
        self.tolerance = tolerance
        self.max_iterations = max_iterations

    def total_correction(self, transmitter_state, receiver_state,
                         transmission_time, reception_time) -> float:
        return sum(c.calculate_light_time_correction(
            transmitter_state, receiver_state, transmission_time, reception_time)
            for c in self.corrections)

    def _light_time(self, transmitter_state, receiver_state,
                    transmission_time, reception_time) -> float:
        distance = np.linalg.norm(receiver_state[0:3] - transmitter_state[0:3])
        return float(distance / SPEED_OF_LIGHT + self.total_correction(
            transmitter_state, receiver_state, transmission_time, reception_time))

    def calculate_light_time_with_link_end_states(
            self, time: float, is_time_at_reception: bool
    ) -> tuple[float, np.ndarray, np.ndarray]:
        """Solve the light-time equation with one link-end time held fixed.

        Args:
            time: Fixed link-end time [s].
            is_time_at_reception: True to hold the reception time fixed,
                False to hold the transmission time fixed.

        Returns:
            light_time: Converged light time [s].
            transmitter_state: Transmitter state at transmission, (6,).
            receiver_state: Receiver state at reception, (6,).
        """
        if is_time_at_reception:
            receiver_state = np.asarray(self.receiver_state_fn(time), dtype=float)
            transmitter_state = np.asarray(self.transmitter_state_fn(time), dtype=float)
        else:
            transmitter_state = np.asarray(self.transmitter_state_fn(time), dtype=float)
            receiver_state = np.asarray(self.receiver_state_fn(time), dtype=float)

        light_time = self._light_time(transmitter_state, receiver_state, time, time)
        change = np.inf
        for iteration in range(1, self.max_iterations + 1):
            if is_time_at_reception:
                t_t, t_r = time - light_time, time
                transmitter_state = np.asarray(self.transmitter_state_fn(t_t), dtype=float)
            else:
                t_t, t_r = time, time + light_time
                receiver_state = np.asarray(self.receiver_state_fn(t_r), dtype=float)

            updated = self._light_time(transmitter_state, receiver_state, t_t, t_r)
            change = abs(updated - light_time)
            light_time = updated
            if change <= self.tolerance:
                return light_time, transmitter_state, receiver_state

        logger.warning("Light-time iteration stalled at t=%.6f s (change %.3e s)",
                       time, change)
        raise LightTimeConvergenceError(self.max_iterations, change)

    def calculate_light_time(self, time: float, is_time_at_reception: bool = True) -> float:
        return self.calculate_light_time_with_link_end_states(time, is_time_at_reception)[0]
