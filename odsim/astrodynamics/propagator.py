"""
Numerical state propagator.

Drives the variable step-size Runge-Kutta integrator over a composed state
derivative, with:
    - Conversion between conventional (output) and internal (integrated)
      state representations
    - Post-processing of accepted states (quaternion normalisation,
      exponential-map shadow switching)
    - Optional variational equations (STM and parameter sensitivities)
    - Output decimation and Hermite-interpolable state history
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from ..core.config import PropagationConfig
from ..core.types import PropagationResult
from ..numerics.extended_time import TimeLike
from ..numerics.integrator import IntegratorState, RungeKuttaVariableStepSizeIntegrator
from .composer import StateDerivativeComposer
from .variational import VariationalEquations

logger = logging.getLogger(__name__)


def parameter_label(identifier: tuple) -> str:
    return ":".join(str(part) for part in identifier)


class Propagator:
    """Numerical propagator for composed translational/rotational/mass states.

    Attributes:
        composer: Composed state derivative.
        config: Propagation configuration.
    """

    def __init__(self, composer: StateDerivativeComposer,
                 config: Optional[PropagationConfig] = None):
        """Initialize the propagator.

        Args:
            composer: Composed state derivative of the propagated bodies.
            config: Propagation configuration. Defaults to PropagationConfig().
        """
        self.composer = composer
        self.config = config if config is not None else PropagationConfig()

    def propagate(self,
                  t0: TimeLike,
                  conventional_state: np.ndarray,
                  t_end: TimeLike,
                  sensitivity_parameters: Optional[list[tuple]] = None,
                  propagate_stm: Optional[bool] = None
                  ) -> PropagationResult:
        """Propagate a conventional state from t0 to t_end.

        Args:
            t0: Initial time [s], float or Time.
            conventional_state: Initial state in output representation.
            t_end: Final time [s]; may precede t0 for backwards propagation.
            sensitivity_parameters: Identifiers of parameters whose
                sensitivity columns are integrated (requires the STM).
            propagate_stm: Override of config.propagate_stm.

        Returns:
            PropagationResult with states, derivatives and optional STMs.
        """
        composer = self.composer
        if propagate_stm is None:
            propagate_stm = self.config.propagate_stm
        if sensitivity_parameters and not propagate_stm:
            raise ValueError("Parameter sensitivities require propagate_stm=True")

        x0 = composer.convert_from_conventional(np.asarray(conventional_state), t0)
        n = composer.internal_size

        variational = None
        if propagate_stm:
            variational = VariationalEquations(composer, sensitivity_parameters)
            y0 = variational.initial_state(x0)
            derivative = variational.compute_derivative
            post_process = variational.post_process_state
        else:
            y0 = x0
            derivative = composer.derivative_function()
            post_process = (composer.post_process_state
                            if composer.is_state_to_be_post_processed else None)

        integrator = RungeKuttaVariableStepSizeIntegrator(
            derivative, config=self.config.integrator, post_process=post_process)
        state = integrator.new_state(t0, y0)

        logger.info("Propagating %d states (%s) from t=%.3f s to t=%.3f s",
                    n, "with STM" if propagate_stm else "no STM",
                    float(t0), float(t_end))

        records: list[tuple[float, np.ndarray]] = []
        every_n = self.config.output_every_n_steps

        def record(s: IntegratorState):
            records.append((float(s.time), s.state.copy()))

        def on_step(s: IntegratorState):
            if s.accepted_steps % every_n == 0:
                record(s)

        record(state)
        integrator.integrate_to(state, t_end, callback=on_step)
        if records[-1][0] != float(state.time):
            record(state)

        logger.info("Propagation finished: %d accepted, %d rejected steps",
                    state.accepted_steps, state.rejected_steps)

        return self._build_result(records, variational)

    def _build_result(self, records, variational: Optional[VariationalEquations]
                      ) -> PropagationResult:
        composer = self.composer
        n = composer.internal_size

        times = np.array([t for t, _ in records])
        internal = np.array([y[:n].astype(float) for _, y in records])
        derivatives = np.array([
            composer.compute_state_derivative(t, y[:n]).astype(float) for t, y in records
        ])
        conventional = np.array([
            composer.convert_to_conventional(y[:n], t) for t, y in records
        ])

        stms = sensitivities = None
        labels: list[str] = []
        if variational is not None:
            split = [variational.split(y.astype(float)) for _, y in records]
            stms = np.array([phi for _, phi, _ in split])
            sensitivities = np.array([sens for _, _, sens in split])
            labels = [parameter_label(p) for p in variational.parameters]

        return PropagationResult(
            times=times,
            internal_states=internal,
            internal_derivatives=derivatives,
            states=conventional,
            internal_blocks=list(composer.internal_blocks),
            conventional_blocks=list(composer.conventional_blocks),
            stms=stms,
            sensitivities=sensitivities,
            sensitivity_parameters=labels,
            to_conventional=lambda t, x: composer.convert_to_conventional(x, t),
            align_endpoint=composer.align_interpolation_endpoint,
            post_process=(composer.post_process_state
                          if composer.is_state_to_be_post_processed else None),
        )
