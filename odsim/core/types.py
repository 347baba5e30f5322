"""
Foundational data types.

State, geometry and result records shared between the propagation,
observation and estimation layers.
Convention:
    - Distances: m
    - Time: seconds since the reference epoch
    - Velocity: m/s
    - Mass: kg
    - Angles: radians
    - Quaternions: scalar first, body-fixed to inertial
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Optional

import numpy as np


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class IntegratedStateType(Enum):
    """Dynamical state kinds, in the order they appear in a composed state."""
    TRANSLATIONAL = auto()
    ROTATIONAL = auto()
    BODY_MASS = auto()
    CUSTOM = auto()


class LinkEndType(Enum):
    """Role of a participant in an observation."""
    TRANSMITTER = auto()
    RECEIVER = auto()
    REFLECTOR = auto()      # Retransmitter in multi-leg links


# ---------------------------------------------------------------------------
# Composed state layout
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StateBlock:
    """Location of one body's sub-state inside a composed state vector.

    Attributes:
        state_type: Dynamical state kind.
        body: Name of the body (or custom state) the block belongs to.
        start: Index of the first element.
        size: Number of elements.
    """
    state_type: IntegratedStateType
    body: str
    start: int
    size: int

    @property
    def slice(self) -> slice:
        return slice(self.start, self.start + self.size)


# ---------------------------------------------------------------------------
# Observation geometry
# ---------------------------------------------------------------------------

_LINK_END_ORDER = {LinkEndType.TRANSMITTER: 0, LinkEndType.RECEIVER: 1}


@dataclass
class LinkEndGeometry:
    """Times and states of all link ends for one observation evaluation.

    Attributes:
        times: Link-end times [s], ordered transmitter, receiver.
        states: Link-end Cartesian states, each shape (6,), same order.
        reference_link_end: Link end whose time was held fixed.
    """
    times: list[float]
    states: list[np.ndarray]
    reference_link_end: LinkEndType

    def __post_init__(self):
        if len(self.times) != len(self.states):
            raise ValueError(
                f"Got {len(self.times)} link-end times but {len(self.states)} states"
            )

    def state_of(self, link_end: LinkEndType) -> np.ndarray:
        return self.states[_LINK_END_ORDER[link_end]]

    def time_of(self, link_end: LinkEndType) -> float:
        return self.times[_LINK_END_ORDER[link_end]]

    @property
    def reference_time(self) -> float:
        return self.time_of(self.reference_link_end)


# ---------------------------------------------------------------------------
# Propagation results
# ---------------------------------------------------------------------------

def hermite_interpolate(t: float, t0: float, t1: float,
                        y0: np.ndarray, y1: np.ndarray,
                        f0: np.ndarray, f1: np.ndarray) -> np.ndarray:
    """Cubic Hermite interpolation between two samples with derivatives."""
    h = t1 - t0
    s = (t - t0) / h
    s2 = s * s
    s3 = s2 * s
    h00 = 2.0 * s3 - 3.0 * s2 + 1.0
    h10 = s3 - 2.0 * s2 + s
    h01 = -2.0 * s3 + 3.0 * s2
    h11 = s3 - s2
    return h00 * y0 + h10 * h * f0 + h01 * y1 + h11 * h * f1


@dataclass
class PropagationResult:
    """Time-tagged output of one propagation.

    Attributes:
        times: Output times [s], shape (N,), monotonic in the propagation
            direction.
        internal_states: Integrated (internal) states, shape (N, n).
        internal_derivatives: Internal state derivatives, shape (N, n).
        states: Conventional states, shape (N, m).
        internal_blocks: Layout of the internal state.
        conventional_blocks: Layout of the conventional state.
        stms: State transition matrices d x(t) / d x(t0) of the internal
            state, shape (N, n, n), or None.
        sensitivities: Sensitivity matrices d x(t) / d p, shape (N, n, k),
            or None.
        sensitivity_parameters: Names of the k sensitivity columns.
        to_conventional: Converter (t, internal_state) -> conventional state.
        align_endpoint: Optional (y0, y1, f1) -> (y1, f1) that moves the later
            end of an interval onto the representation branch of the earlier
            one before interpolating.
        post_process: Optional in-place fix-up applied to interpolated
            internal states.
    """
    times: np.ndarray
    internal_states: np.ndarray
    internal_derivatives: np.ndarray
    states: np.ndarray
    internal_blocks: list[StateBlock]
    conventional_blocks: list[StateBlock]
    stms: Optional[np.ndarray] = None
    sensitivities: Optional[np.ndarray] = None
    sensitivity_parameters: list[str] = field(default_factory=list)
    to_conventional: Optional[Callable[[float, np.ndarray], np.ndarray]] = None
    align_endpoint: Optional[Callable[[np.ndarray, np.ndarray, np.ndarray],
                                      tuple[np.ndarray, np.ndarray]]] = None
    post_process: Optional[Callable[[np.ndarray], None]] = None

    @property
    def final_state(self) -> np.ndarray:
        return self.states[-1]

    def _bracket(self, t: float) -> int:
        """Index i such that t lies between times[i] and times[i+1]."""
        times = self.times
        forward = times[-1] >= times[0]
        lo, hi = (times[0], times[-1]) if forward else (times[-1], times[0])
        tol = 1e-9 * max(1.0, abs(hi))
        if t < lo - tol or t > hi + tol:
            raise ValueError(
                f"t={t:.6f} s outside propagated interval [{lo:.6f}, {hi:.6f}] s"
            )
        if forward:
            i = int(np.searchsorted(times, t, side="right")) - 1
        else:
            i = int(np.searchsorted(-times, -t, side="right")) - 1
        return min(max(i, 0), len(times) - 2)

    def state_at(self, t: float) -> np.ndarray:
        """Internal state at t by cubic Hermite interpolation.

        The later sample is first aligned with the earlier one (see
        align_endpoint) and the result is post-processed like an accepted
        integration state.
        """
        if len(self.times) == 1:
            return self.internal_states[0].copy()
        i = self._bracket(t)
        y0, f0 = self.internal_states[i], self.internal_derivatives[i]
        y1, f1 = self.internal_states[i + 1], self.internal_derivatives[i + 1]
        if self.align_endpoint is not None:
            y1, f1 = self.align_endpoint(y0, y1, f1)
        state = hermite_interpolate(t, self.times[i], self.times[i + 1], y0, y1, f0, f1)
        if self.post_process is not None:
            self.post_process(state)
        return state

    def conventional_state_at(self, t: float) -> np.ndarray:
        """Conventional state at t (interpolated internal state, converted)."""
        internal = self.state_at(t)
        if self.to_conventional is None:
            return internal
        return self.to_conventional(t, internal)

    def block(self, state_type: IntegratedStateType, body: str,
              conventional: bool = False) -> StateBlock:
        blocks = self.conventional_blocks if conventional else self.internal_blocks
        for b in blocks:
            if b.state_type is state_type and b.body == body:
                return b
        raise KeyError(f"No {state_type.name} state for body '{body}'")

    def cartesian_state_at(self, body: str, t: float) -> np.ndarray:
        """Propagated translational state of a body at t, shape (6,)."""
        blk = self.block(IntegratedStateType.TRANSLATIONAL, body)
        return self.state_at(t)[blk.slice]

    def stm_at(self, t: float) -> np.ndarray:
        """State transition matrix at t by linear interpolation."""
        if self.stms is None:
            raise RuntimeError("Propagation was run without variational equations")
        return self._linear(self.stms, t)

    def sensitivity_at(self, t: float) -> np.ndarray:
        """Parameter sensitivity matrix at t by linear interpolation."""
        if self.sensitivities is None:
            raise RuntimeError("Propagation was run without parameter sensitivities")
        return self._linear(self.sensitivities, t)

    def _linear(self, history: np.ndarray, t: float) -> np.ndarray:
        if len(self.times) == 1:
            return history[0].copy()
        i = self._bracket(t)
        t0, t1 = self.times[i], self.times[i + 1]
        w = (t - t0) / (t1 - t0)
        return (1.0 - w) * history[i] + w * history[i + 1]


# ---------------------------------------------------------------------------
# Covariance
# ---------------------------------------------------------------------------

@dataclass
class CovarianceHistory:
    """Time history of covariance along a trajectory.

    Attributes:
        times: Times [s], shape (N,).
        covariances: List of N square covariance matrices.
    """
    times: np.ndarray               # (N,)
    covariances: list[np.ndarray]   # list of (n,n)

    @property
    def position_sigmas(self) -> np.ndarray:
        """1-sigma position uncertainties over time, shape (N, 3)."""
        return np.array([np.sqrt(np.diag(P[:3, :3])) for P in self.covariances])

    @property
    def velocity_sigmas(self) -> np.ndarray:
        """1-sigma velocity uncertainties over time, shape (N, 3)."""
        return np.array([np.sqrt(np.diag(P[3:6, 3:6])) for P in self.covariances])


# ---------------------------------------------------------------------------
# Estimation results
# ---------------------------------------------------------------------------

@dataclass
class EstimationOutput:
    """Result of a batch least-squares estimation.

    Attributes:
        parameter_names: Labels of the estimated parameter vector entries.
        parameter_history: Parameter vector before each iteration and after
            the last one.
        residual_history: Residual vector (observed - computed) per iteration.
        rms_history: Weighted residual RMS per iteration.
        covariance: Formal covariance of the final estimate.
        design_matrix: Design matrix of the last iteration.
        converged: True if the RMS change criterion was met.
    """
    parameter_names: list[str]
    parameter_history: list[np.ndarray]
    residual_history: list[np.ndarray]
    rms_history: list[float]
    covariance: np.ndarray
    design_matrix: np.ndarray
    converged: bool

    @property
    def final_parameters(self) -> np.ndarray:
        return self.parameter_history[-1]

    @property
    def iterations(self) -> int:
        return len(self.residual_history)

    @property
    def formal_errors(self) -> np.ndarray:
        """1-sigma formal errors, shape (n,)."""
        return np.sqrt(np.diag(self.covariance))

    @property
    def correlations(self) -> np.ndarray:
        """Correlation coefficient matrix, shape (n, n)."""
        sig = self.formal_errors
        return self.covariance / np.outer(sig, sig)
