"""
Variable step-size embedded Runge-Kutta integrator.

One step evaluates all stages of the tableau, forms the lower- and
higher-order solutions, uses their difference as the local error estimate
and either accepts the step (advancing time and growing the step size) or
rejects it (shrinking the step size and retrying). Step-size control uses
the exponent 1/(q+1) with q the smaller of the two orders, scaled by a
safety factor and clamped to [min_factor, max_factor] and to the
configured step bounds.

The integrator owns no run state: everything that changes from step to
step lives in the caller's IntegratorState, so independent runs never
share mutable data.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

import numpy as np

from ..core.config import IntegratorConfig
from ..core.errors import MinimumStepSizeExceededError, StepLimitExceededError
from .extended_time import TimeLike, time_difference
from .rk_coefficients import OrderToIntegrate, RungeKuttaCoefficients, get_coefficients

logger = logging.getLogger(__name__)

DerivativeFunction = Callable[[TimeLike, np.ndarray], np.ndarray]


@dataclass
class IntegratorState:
    """Mutable state of one integration run.

    Attributes:
        time: Current time [s], float or Time.
        state: Current state vector, shape (n,). Its dtype fixes the
            working precision of the run.
        step_size: Next step size to attempt [s].
        rtol: Relative tolerance, scalar or shape (n,).
        atol: Absolute tolerance, scalar or shape (n,).
        accepted_steps: Number of accepted steps so far.
        rejected_steps: Number of rejected attempts so far.
        last_error_norm: Error norm of the last accepted step.
        last_attempts: Step sizes tried during the last perform_step call.
    """
    time: TimeLike
    state: np.ndarray
    step_size: float
    rtol: Union[float, np.ndarray] = 1e-12
    atol: Union[float, np.ndarray] = 1e-12
    accepted_steps: int = 0
    rejected_steps: int = 0
    last_error_norm: float = 0.0
    last_attempts: list[float] = field(default_factory=list)

    def __post_init__(self):
        self.state = np.array(self.state, copy=True)
        if self.state.ndim != 1:
            raise ValueError(f"State must be a 1-D vector, got shape {self.state.shape}")


class RungeKuttaVariableStepSizeIntegrator:
    """Adaptive integrator over an embedded Runge-Kutta pair.

    Attributes:
        derivative: Function (t, y) -> dy/dt.
        coefficients: Butcher tableau in use.
        config: Step-size control settings.
        post_process: Optional in-place fix-up applied to every accepted
            state (e.g. attitude singularity avoidance).
    """

    def __init__(self,
                 derivative: DerivativeFunction,
                 coefficients: Optional[RungeKuttaCoefficients] = None,
                 config: Optional[IntegratorConfig] = None,
                 post_process: Optional[Callable[[np.ndarray], None]] = None):
        """Initialize the integrator.

        Args:
            derivative: State derivative function (t, y) -> dy/dt.
            coefficients: Tableau; defaults to the one named in config.
            config: Integrator configuration. Defaults to IntegratorConfig().
            post_process: Optional in-place hook for accepted states.
        """
        self.config = config if config is not None else IntegratorConfig()
        self.derivative = derivative
        self.coefficients = (coefficients if coefficients is not None
                             else get_coefficients(self.config.coefficient_set))
        self.post_process = post_process
        self._exponent = 1.0 / (self.coefficients.error_order + 1.0)

    def new_state(self, t0: TimeLike, y0: np.ndarray,
                  step_size: Optional[float] = None) -> IntegratorState:
        """Create an IntegratorState carrying this integrator's tolerances."""
        return IntegratorState(
            time=t0,
            state=y0,
            step_size=self.config.initial_step_s if step_size is None else step_size,
            rtol=self.config.rtol,
            atol=self.config.atol,
        )

    # ------------------------------------------------------------------
    # Single attempt
    # ------------------------------------------------------------------

    def compute_stage_estimates(self, t: TimeLike, y: np.ndarray, h: float
                                ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Evaluate all stages and both embedded solutions for one step.

        Args:
            t: Step start time [s].
            y: State at t, shape (n,).
            h: Step size [s].

        Returns:
            lower: Lower-order estimate of y(t + h), shape (n,).
            higher: Higher-order estimate of y(t + h), shape (n,).
            k: Stage derivatives, shape (stages, n).
        """
        coeff = self.coefficients
        k = np.zeros((coeff.stages, y.shape[0]), dtype=y.dtype)

        for i in range(coeff.stages):
            # Stage i only uses stages 0..i-1
            y_stage = y + h * (coeff.a[i, :i] @ k[:i]) if i > 0 else y
            k[i] = self.derivative(t + coeff.c[i] * h, y_stage)

        lower = y + h * (coeff.b[0] @ k)
        higher = y + h * (coeff.b[1] @ k)
        return lower, higher, k

    @staticmethod
    def error_norm(y: np.ndarray, lower: np.ndarray, higher: np.ndarray,
                   rtol, atol) -> float:
        """RMS of the local error scaled by the component tolerances.

        Args:
            y: State at the step start.
            lower, higher: The two embedded estimates at the step end.
            rtol, atol: Relative and absolute tolerances.

        Returns:
            Normalised error norm; values <= 1 satisfy the tolerance.
        """
        scale = atol + rtol * np.maximum(np.abs(y), np.abs(higher))
        ratio = (higher - lower) / scale
        norm = float(np.sqrt(np.mean(ratio.astype(float) ** 2)))
        if not np.isfinite(norm):
            return np.inf
        return norm

    # ------------------------------------------------------------------
    # Adaptive step
    # ------------------------------------------------------------------

    def perform_step(self, state: IntegratorState,
                     max_step_size: Optional[float] = None) -> float:
        """Take one accepted step, updating state in place.

        Args:
            state: Run state; time, state vector, step size and counters
                are updated on acceptance.
            max_step_size: Optional bound on this step's magnitude (used to
                land on an end time). Does not change the configured bound.

        Returns:
            The step size that was accepted [s].

        Raises:
            MinimumStepSizeExceededError: If a step at the minimum size
                still fails the error test.
        """
        cfg = self.config
        direction = 1.0 if state.step_size > 0.0 else -1.0
        h = state.step_size
        bounded = False
        if max_step_size is not None and abs(h) >= abs(max_step_size):
            h = max_step_size
            bounded = True

        state.last_attempts = []
        while True:
            state.last_attempts.append(h)
            lower, higher, _ = self.compute_stage_estimates(state.time, state.state, h)
            err = self.error_norm(state.state, lower, higher, state.rtol, state.atol)

            if err <= 1.0:
                break

            state.rejected_steps += 1
            logger.debug("Rejected step at t=%.6f s: h=%.3e s, error norm=%.3e",
                         float(state.time), h, err)

            if abs(h) <= cfg.min_step_s:
                raise MinimumStepSizeExceededError(float(state.time), h, err)

            factor = max(cfg.min_factor, cfg.safety_factor * err ** -self._exponent)
            h = direction * max(abs(h) * min(factor, 1.0), cfg.min_step_s)
            bounded = False

        if self.coefficients.order_to_integrate is OrderToIntegrate.HIGHER:
            accepted = higher
        else:
            accepted = lower
        new_state = np.array(accepted, copy=True)
        if self.post_process is not None:
            self.post_process(new_state)

        state.time = state.time + h
        state.state = new_state
        state.accepted_steps += 1
        state.last_error_norm = err

        if err == 0.0:
            growth = cfg.max_factor
        else:
            growth = min(cfg.max_factor, max(1.0, cfg.safety_factor * err ** -self._exponent))
        if bounded:
            # A step shortened to land on an end time does not shrink the next one
            h_next = abs(state.step_size)
        else:
            h_next = abs(h) * growth
        h_next = min(max(h_next, cfg.min_step_s), cfg.max_step_s)
        state.step_size = direction * h_next
        return h

    def integrate_to(self, state: IntegratorState, t_end: TimeLike,
                     max_steps: Optional[int] = None,
                     callback: Optional[Callable[[IntegratorState], None]] = None
                     ) -> IntegratorState:
        """Integrate until t_end, landing on it exactly.

        Works in either time direction; the sign of the step size is set
        from the direction of t_end.

        Args:
            state: Run state, updated in place.
            t_end: Final time [s].
            max_steps: Bound on accepted steps for this call. Defaults to
                the configured max_steps.
            callback: Called with the state after every accepted step.

        Returns:
            The same state object, now at t_end.

        Raises:
            StepLimitExceededError: If max_steps steps do not reach t_end.
        """
        if max_steps is None:
            max_steps = self.config.max_steps

        remaining = time_difference(t_end, state.time)
        if remaining == 0.0:
            return state
        direction = 1.0 if remaining > 0.0 else -1.0
        state.step_size = direction * abs(state.step_size)

        n_steps = 0
        while True:
            remaining = time_difference(t_end, state.time)
            if direction * remaining <= 0.0:
                break
            if max_steps is not None and n_steps >= max_steps:
                raise StepLimitExceededError(max_steps, float(state.time))

            h = self.perform_step(state, max_step_size=remaining)
            n_steps += 1
            if h == remaining:
                # Land exactly on the requested end time
                state.time = t_end
            if callback is not None:
                callback(state)

        return state
