"""
Batch least-squares orbit determination.

Gauss-Newton iteration on the estimated parameter vector p:

    1. Propagate the dynamics with STM and parameter sensitivities
    2. Evaluate every observation and its link-end geometry
    3. Build the design matrix H = dh/dp from the observation partials
    4. Solve the normal equations (H^T W H + P0^-1) dp = H^T W r
    5. Update p and repeat until the residual RMS settles

Columns of H are normalised before the Cholesky solve so that parameters
of very different magnitude (positions, velocities, GM) stay well
conditioned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
import scipy.linalg

from ..astrodynamics.bodies import BodyRegistry
from ..astrodynamics.composer import StateDerivativeComposer
from ..astrodynamics.propagator import Propagator
from ..core.config import ODConfig
from ..core.constants import TWO_PI
from ..core.types import (
    EstimationOutput, IntegratedStateType, LinkEndType, PropagationResult,
)
from ..observation.models import (
    AngularPositionObservationModel, ObservationModel, OneWayRangeObservationModel,
)
from ..observation.partials import (
    AngularPositionPartial, AngularPositionScaling, ObservationPartial,
    OneWayRangePartial, OneWayRangeScaling,
)
from .parameters import ParameterSet

logger = logging.getLogger(__name__)


@dataclass
class ObservationCollection:
    """Observations of one model over one link.

    Attributes:
        model: Observation model evaluating the link.
        link_ends: Body name at each link end.
        times: Observation times [s] at the reference link end, shape (N,).
        observations: Observed values, shape (N, observable size).
        reference_link_end: Link end whose time tags the observations.
        weight: Weight (1/sigma^2) of each observable; None uses the
            configured default.
    """
    model: ObservationModel
    link_ends: dict[LinkEndType, str]
    times: np.ndarray
    observations: np.ndarray
    reference_link_end: LinkEndType = LinkEndType.RECEIVER
    weight: Optional[float] = None

    def __post_init__(self):
        self.times = np.asarray(self.times, dtype=float)
        self.observations = np.asarray(self.observations, dtype=float).reshape(
            len(self.times), self.model.observable_size)
        for link_end in (LinkEndType.TRANSMITTER, LinkEndType.RECEIVER):
            if link_end not in self.link_ends:
                raise ValueError(f"Missing {link_end.name} link end")

    @property
    def size(self) -> int:
        return self.observations.size


def simulate_observations(model: ObservationModel, times: Sequence[float],
                          reference_link_end: LinkEndType = LinkEndType.RECEIVER,
                          noise_sigma: float = 0.0,
                          rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """Observations of a model with optional white Gaussian noise.

    Returns:
        Array of shape (N, observable size).
    """
    values = np.array([model.compute_observation(t, reference_link_end) for t in times],
                      dtype=float)
    if noise_sigma > 0.0:
        rng = rng if rng is not None else np.random.default_rng()
        values = values + rng.normal(0.0, noise_sigma, size=values.shape)
    return values


def _make_scaling(model: ObservationModel):
    if isinstance(model, OneWayRangeObservationModel):
        return OneWayRangeScaling(), OneWayRangePartial
    if isinstance(model, AngularPositionObservationModel):
        return AngularPositionScaling(), AngularPositionPartial
    raise TypeError(f"No partials for observation model {type(model).__name__}")


class OrbitDeterminationManager:
    """Batch least-squares estimator.

    The propagated bodies become link ends by having their registry
    ephemeris point at the latest propagation.

    Attributes:
        composer: Composed dynamics of the propagated bodies.
        registry: Body registry shared with dynamics and observation models.
        parameters: Estimated parameters.
        collections: Observation collections.
        epoch: Estimation epoch (initial propagation time) [s].
        config: OD configuration.
    """

    def __init__(self,
                 composer: StateDerivativeComposer,
                 registry: BodyRegistry,
                 parameters: ParameterSet,
                 collections: Sequence[ObservationCollection],
                 epoch: float,
                 initial_conventional_state: np.ndarray,
                 config: Optional[ODConfig] = None):
        """Initialize the manager.

        Args:
            composer: Composed dynamics of the propagated bodies.
            registry: Body registry.
            parameters: Estimated parameters.
            collections: Observations to fit.
            epoch: Initial propagation time [s].
            initial_conventional_state: Full conventional state at epoch;
                estimated initial states overwrite their bodies' blocks.
            config: OD configuration. Defaults to ODConfig().
        """
        self.composer = composer
        self.registry = registry
        self.parameters = parameters
        self.collections = list(collections)
        self.epoch = float(epoch)
        self.config = config if config is not None else ODConfig()
        self._initial_state = np.array(initial_conventional_state, dtype=float)
        if not self.collections:
            raise ValueError("No observations to process")

        margin = self.config.estimation.propagation_margin_s
        first = min(float(c.times.min()) for c in self.collections)
        last = max(float(c.times.max()) for c in self.collections)
        if first - margin < self.epoch:
            raise ValueError(
                f"First observation at t={first:.3f} s lies within the "
                f"{margin:.1f} s margin of the epoch t={self.epoch:.3f} s"
            )
        self.end_time = last + margin
        self.propagator = Propagator(composer, self.config.propagation)
        self.result: Optional[PropagationResult] = None

    # ------------------------------------------------------------------
    # Dynamics
    # ------------------------------------------------------------------

    def _conventional_initial_state(self) -> np.ndarray:
        state = self._initial_state.copy()
        for body, value in self.parameters.initial_states().items():
            block = self.composer.block(IntegratedStateType.TRANSLATIONAL, body,
                                        conventional=True)
            state[block.slice] = value
        return state

    def _propagated_ephemeris(self, result: PropagationResult, body: str):
        """Inertial state of a propagated body from the propagation history."""
        model = self.composer.model_of_type(IntegratedStateType.TRANSLATIONAL)
        central = (model.central_bodies or {}).get(body)

        def _ephemeris(t: float) -> np.ndarray:
            state = result.cartesian_state_at(body, t)
            if central is not None:
                state = state + self.registry[central].state_at(t)
            return state
        return _ephemeris

    def propagate(self) -> PropagationResult:
        """Propagate with the current parameters and expose the result as ephemerides."""
        result = self.propagator.propagate(
            self.epoch, self._conventional_initial_state(), self.end_time,
            sensitivity_parameters=self.parameters.sensitivity_identifiers(),
            propagate_stm=True,
        )
        for block in result.internal_blocks:
            if block.state_type is IntegratedStateType.TRANSLATIONAL:
                self.registry[block.body].ephemeris = self._propagated_ephemeris(
                    result, block.body)
        self.result = result
        return result

    # ------------------------------------------------------------------
    # Observations
    # ------------------------------------------------------------------

    def _observation_partials(self, collection: ObservationCollection,
                              result: PropagationResult):
        scaling, partial_type = _make_scaling(collection.model)
        corrections = collection.model.light_time_calculator.corrections
        partials: list[Optional[ObservationPartial]] = []
        for parameter, _ in self.parameters:
            position_partials = {}
            for link_end, body in collection.link_ends.items():
                position_partial = parameter.position_partial(result, body)
                if position_partial is not None:
                    position_partials[link_end] = position_partial
            partial = partial_type(scaling, position_partials,
                                   parameter.correction_partials(corrections))
            partials.append(None if partial.is_empty else partial)
        return scaling, partials

    def compute_residuals_and_partials(self, result: PropagationResult
                                       ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Residuals (observed - computed), design matrix and weights."""
        default_weight = self.config.estimation.observation_weight
        residuals, rows, weights = [], [], []
        for collection in self.collections:
            model = collection.model
            scaling, partials = self._observation_partials(collection, result)
            weight = collection.weight if collection.weight is not None else default_weight
            for time, observed in zip(collection.times, collection.observations):
                computed, geometry = model.compute_observation_with_link_end_data(
                    time, collection.reference_link_end)
                residual = observed - computed.astype(float)
                if isinstance(model, AngularPositionObservationModel):
                    # Right ascension wraps at 2 pi
                    residual[0] = (residual[0] + np.pi) % TWO_PI - np.pi
                scaling.update(geometry)
                row = np.zeros((model.observable_size, self.parameters.size))
                for partial, (_, sl) in zip(partials, self.parameters):
                    if partial is not None:
                        for block, _ in partial.calculate_partial(geometry):
                            row[:, sl] += block
                residuals.append(residual)
                rows.append(row)
                weights.append(np.full(model.observable_size, weight))
        return np.concatenate(residuals), np.vstack(rows), np.concatenate(weights)

    # ------------------------------------------------------------------
    # Estimation
    # ------------------------------------------------------------------

    def _a_priori_information(self) -> Optional[np.ndarray]:
        P0 = self.config.estimation.a_priori_covariance
        if P0 is None:
            return None
        P0 = np.asarray(P0, dtype=float)
        if P0.shape != (self.parameters.size, self.parameters.size):
            raise ValueError(
                f"A priori covariance shape {P0.shape} does not match "
                f"{self.parameters.size} parameters"
            )
        return scipy.linalg.inv(P0)

    def solve_normal_equations(self, H: np.ndarray, residuals: np.ndarray,
                               weights: np.ndarray
                               ) -> tuple[np.ndarray, np.ndarray]:
        """Parameter update and formal covariance.

        Returns:
            dp: Parameter correction, shape (n,).
            covariance: (H^T W H + P0^-1)^-1, shape (n, n).
        """
        norms = np.linalg.norm(H, axis=0)
        norms[norms == 0.0] = 1.0
        D = 1.0 / norms
        Hn = H * D
        N = Hn.T @ (weights[:, None] * Hn)
        info = self._a_priori_information()
        if info is not None:
            N += info * np.outer(D, D)
        b = Hn.T @ (weights * residuals)

        factor = scipy.linalg.cho_factor(N)
        dp = D * scipy.linalg.cho_solve(factor, b)
        covariance = np.outer(D, D) * scipy.linalg.cho_solve(factor, np.eye(len(D)))
        return dp, covariance

    def estimate(self) -> EstimationOutput:
        """Run the batch least-squares iteration."""
        est = self.config.estimation
        parameter_history = [self.parameters.get_values()]
        residual_history: list[np.ndarray] = []
        rms_history: list[float] = []
        converged = False
        H = covariance = None

        for iteration in range(est.max_iterations):
            result = self.propagate()
            residuals, H, weights = self.compute_residuals_and_partials(result)
            rms = float(np.sqrt(np.mean(weights * residuals ** 2)))
            residual_history.append(residuals)
            rms_history.append(rms)

            dp, covariance = self.solve_normal_equations(H, residuals, weights)
            self.parameters.set_values(parameter_history[-1] + dp)
            parameter_history.append(self.parameters.get_values())
            logger.info("OD iteration %d: weighted RMS %.6e, |dp| %.3e",
                        iteration + 1, rms, np.linalg.norm(dp))

            if iteration > 0:
                previous = rms_history[-2]
                change = abs(rms - previous) / max(previous, np.finfo(float).tiny)
                if change < est.convergence_rms_change:
                    converged = True
                    break

        if not converged:
            logger.warning("OD stopped after %d iterations without meeting the "
                           "RMS change criterion", est.max_iterations)

        return EstimationOutput(
            parameter_names=self.parameters.labels,
            parameter_history=parameter_history,
            residual_history=residual_history,
            rms_history=rms_history,
            covariance=covariance,
            design_matrix=H,
            converged=converged,
        )
