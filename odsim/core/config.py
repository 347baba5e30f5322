"""
Propagation and estimation configuration.

Central configuration objects for the integrator, the propagator and the
batch orbit-determination loop.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union

import numpy as np

from ..numerics.rk_coefficients import CoefficientSet


@dataclass
class IntegratorConfig:
    """Variable step-size Runge-Kutta configuration.

    Attributes:
        coefficient_set: Embedded Runge-Kutta pair to use.
        initial_step_s: First trial step [s]. Negative for backwards runs.
        min_step_s: Smallest step magnitude allowed [s].
        max_step_s: Largest step magnitude allowed [s].
        rtol: Relative error tolerance, scalar or per component.
        atol: Absolute error tolerance, scalar or per component.
        safety_factor: Multiplier on the optimal step estimate.
        max_factor: Largest growth factor between consecutive steps.
        min_factor: Smallest shrink factor after a rejected step.
        max_steps: Bound on accepted steps per run; None means unbounded.
    """
    coefficient_set: CoefficientSet = CoefficientSet.RKF78
    initial_step_s: float = 10.0
    min_step_s: float = 1e-6
    max_step_s: float = 600.0
    rtol: Union[float, np.ndarray] = 1e-12
    atol: Union[float, np.ndarray] = 1e-12
    safety_factor: float = 0.8
    max_factor: float = 4.0
    min_factor: float = 0.1
    max_steps: Optional[int] = None

    def __post_init__(self):
        if self.min_step_s <= 0.0:
            raise ValueError(f"min_step_s must be positive, got {self.min_step_s}")
        if self.min_step_s > self.max_step_s:
            raise ValueError(
                f"min_step_s ({self.min_step_s}) exceeds max_step_s ({self.max_step_s})"
            )
        if self.initial_step_s == 0.0:
            raise ValueError("initial_step_s must be non-zero")
        if np.any(np.asarray(self.rtol) < 0.0) or np.any(np.asarray(self.atol) < 0.0):
            raise ValueError("Error tolerances must be non-negative")
        if not 0.0 < self.safety_factor <= 1.0:
            raise ValueError(f"safety_factor must lie in (0, 1], got {self.safety_factor}")
        if not 0.0 < self.min_factor < 1.0 < self.max_factor:
            raise ValueError(
                f"Need 0 < min_factor < 1 < max_factor, got "
                f"{self.min_factor}, {self.max_factor}"
            )
        if self.max_steps is not None and self.max_steps <= 0:
            raise ValueError(f"max_steps must be positive, got {self.max_steps}")


@dataclass
class PropagationConfig:
    """Propagator settings.

    Attributes:
        integrator: Integrator configuration.
        output_every_n_steps: Store every n-th accepted step (the final
            state is always stored).
        propagate_stm: Integrate variational equations alongside the state.
    """
    integrator: IntegratorConfig = field(default_factory=IntegratorConfig)
    output_every_n_steps: int = 1
    propagate_stm: bool = False

    def __post_init__(self):
        if self.output_every_n_steps < 1:
            raise ValueError(
                f"output_every_n_steps must be >= 1, got {self.output_every_n_steps}"
            )


@dataclass
class EstimationConfig:
    """Batch least-squares settings.

    Attributes:
        max_iterations: Upper bound on Gauss-Newton iterations.
        convergence_rms_change: Stop once the relative change of the
            weighted residual RMS drops below this value.
        observation_weight: Default weight (1/sigma^2) of an observation.
        a_priori_covariance: Optional a priori parameter covariance.
        propagation_margin_s: Propagation extends this far past the last
            observation so that light-time solutions stay inside the arc.
    """
    max_iterations: int = 5
    convergence_rms_change: float = 1e-3
    observation_weight: float = 1.0
    a_priori_covariance: Optional[np.ndarray] = None
    propagation_margin_s: float = 60.0

    def __post_init__(self):
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.observation_weight <= 0.0:
            raise ValueError(
                f"observation_weight must be positive, got {self.observation_weight}"
            )
        if self.propagation_margin_s < 0.0:
            raise ValueError("propagation_margin_s must be non-negative")


@dataclass
class ProcessNoiseConfig:
    """Process noise used when mapping covariance along an arc.

    Attributes:
        acceleration_psd: White acceleration noise spectral density
            [m^2/s^3]. Zero disables process noise.
    """
    acceleration_psd: float = 0.0

    def __post_init__(self):
        if self.acceleration_psd < 0.0:
            raise ValueError(
                f"acceleration_psd must be non-negative, got {self.acceleration_psd}"
            )


@dataclass
class ODConfig:
    """Top-level orbit-determination configuration."""
    propagation: PropagationConfig = field(
        default_factory=lambda: PropagationConfig(propagate_stm=True)
    )
    estimation: EstimationConfig = field(default_factory=EstimationConfig)
    process_noise: ProcessNoiseConfig = field(default_factory=ProcessNoiseConfig)
