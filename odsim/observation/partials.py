"""
Observation partial derivatives.

A partial of an observable h wrt a parameter p is assembled from

    dh/dp = sum over link ends   S_link(ref) * dr_link/dp
          + sum over corrections L(ref) * dDelta/dp

where S is the position scaling of the observable at a link end
(including the light-time equation coupling), dr/dp the position partial
of the link end, and L the light-time scaling applied to partials of
light-time corrections Delta. Scalings are refreshed with the link-end
geometry of each observation before any partial is evaluated.

Sign convention: rho_hat = (r_T - r_R) / |r_T - r_R| points from the
receiver to the transmitter.
"""

from __future__ import annotations

from typing import Optional, Protocol

import numpy as np

from ..core.constants import SPEED_OF_LIGHT
from ..core.errors import InvalidReferenceLinkEndError
from ..core.types import IntegratedStateType, LinkEndGeometry, LinkEndType, PropagationResult
from .light_time import FirstOrderRelativisticCorrection

_OTHER_END = {
    LinkEndType.RECEIVER: LinkEndType.TRANSMITTER,
    LinkEndType.TRANSMITTER: LinkEndType.RECEIVER,
}


# ===================================================================
# Scalings
# ===================================================================

class PositionPartialScaling(Protocol):
    """Geometry-dependent factors shared by all partials of one observable."""

    def update(self, geometry: LinkEndGeometry) -> None: ...

    def scaling_factor(self, link_end: LinkEndType,
                       reference_link_end: LinkEndType) -> np.ndarray: ...

    def light_time_correction_factor(self, reference_link_end: LinkEndType) -> np.ndarray: ...


class _ScalingBase:
    """Geometry cache with reference link-end checks."""

    def __init__(self):
        self._geometry: Optional[LinkEndGeometry] = None

    def _require_update(self) -> LinkEndGeometry:
        if self._geometry is None:
            raise RuntimeError(f"{type(self).__name__} used before update()")
        return self._geometry

    @staticmethod
    def _check_reference(reference_link_end: LinkEndType) -> None:
        if reference_link_end not in _OTHER_END:
            raise InvalidReferenceLinkEndError(reference_link_end)

    @staticmethod
    def _line_of_sight(geometry: LinkEndGeometry) -> tuple[np.ndarray, float]:
        rho = (geometry.state_of(LinkEndType.TRANSMITTER)[0:3]
               - geometry.state_of(LinkEndType.RECEIVER)[0:3])
        distance = float(np.linalg.norm(rho))
        return rho / distance, distance

    @staticmethod
    def _free_end_velocity(geometry: LinkEndGeometry, reference_link_end: LinkEndType
                           ) -> np.ndarray:
        """Velocity of the link end whose time is solved for."""
        return geometry.state_of(_OTHER_END[reference_link_end])[3:6]


class OneWayRangeScaling(_ScalingBase):
    """Scaling of one-way range partials.

    For a fixed reference link end the range responds to link-end
    positions as

        d(range)/dr_T =  rho_hat / (1 + rho_hat . v / c)
        d(range)/dr_R = -rho_hat / (1 + rho_hat . v / c)

    with v the velocity of the non-fixed link end.
    """

    def update(self, geometry: LinkEndGeometry) -> None:
        rho_hat, _ = self._line_of_sight(geometry)
        self._geometry = geometry
        self._factors = {}
        self._light_time_factors = {}
        for reference in _OTHER_END:
            v = self._free_end_velocity(geometry, reference)
            lt_factor = 1.0 / (1.0 + rho_hat @ v / SPEED_OF_LIGHT)
            self._light_time_factors[reference] = lt_factor
            self._factors[reference] = rho_hat * lt_factor

    def scaling_factor(self, link_end: LinkEndType,
                       reference_link_end: LinkEndType) -> np.ndarray:
        """d(range)/d(position of link_end), shape (1, 3)."""
        self._require_update()
        self._check_reference(reference_link_end)
        factor = self._factors[reference_link_end]
        if link_end is LinkEndType.RECEIVER:
            factor = -factor
        return factor.reshape(1, 3)

    def light_time_partial_scaling_factor(self, reference_link_end: LinkEndType) -> float:
        """d(tau)/d(Delta) including the light-time equation coupling."""
        self._require_update()
        self._check_reference(reference_link_end)
        return self._light_time_factors[reference_link_end]

    def light_time_correction_factor(self, reference_link_end: LinkEndType) -> np.ndarray:
        """d(range)/d(Delta), shape (1,)."""
        return np.array([SPEED_OF_LIGHT
                         * self.light_time_partial_scaling_factor(reference_link_end)])


class AngularPositionScaling(_ScalingBase):
    """Scaling of right ascension / declination partials, rows (alpha, delta)."""

    @staticmethod
    def angles_wrt_relative_position(rho: np.ndarray) -> np.ndarray:
        """d(alpha, delta)/d(r_T - r_R), shape (2, 3)."""
        x, y, z = rho
        rxy2 = x * x + y * y
        rxy = np.sqrt(rxy2)
        r2 = rxy2 + z * z
        return np.array([
            [-y / rxy2, x / rxy2, 0.0],
            [-x * z / (r2 * rxy), -y * z / (r2 * rxy), rxy / r2],
        ])

    def update(self, geometry: LinkEndGeometry) -> None:
        rho_hat, distance = self._line_of_sight(geometry)
        jacobian = self.angles_wrt_relative_position(rho_hat * distance)
        self._geometry = geometry
        self._factors = {}
        self._light_time_factors = {}
        for reference in _OTHER_END:
            v = self._free_end_velocity(geometry, reference)
            denominator = 1.0 + rho_hat @ v / SPEED_OF_LIGHT
            coupling = np.eye(3) - np.outer(v, rho_hat) / (SPEED_OF_LIGHT * denominator)
            self._factors[reference] = jacobian @ coupling
            self._light_time_factors[reference] = jacobian @ (-v) / denominator

    def scaling_factor(self, link_end: LinkEndType,
                       reference_link_end: LinkEndType) -> np.ndarray:
        """d(alpha, delta)/d(position of link_end), shape (2, 3)."""
        self._require_update()
        self._check_reference(reference_link_end)
        factor = self._factors[reference_link_end]
        return -factor if link_end is LinkEndType.RECEIVER else factor

    def light_time_correction_factor(self, reference_link_end: LinkEndType) -> np.ndarray:
        """d(alpha, delta)/d(Delta), shape (2,)."""
        self._require_update()
        self._check_reference(reference_link_end)
        return self._light_time_factors[reference_link_end]


# ===================================================================
# Link-end position partials
# ===================================================================

class PositionPartial(Protocol):
    """Partial of a link-end position wrt a parameter, shape (3, n)."""

    def __call__(self, state: np.ndarray, time: float) -> np.ndarray: ...


class CartesianStatePartial:
    """Position wrt the link end's own current Cartesian state: [I3 | 0]."""

    def __call__(self, state: np.ndarray, time: float) -> np.ndarray:
        return np.hstack([np.eye(3), np.zeros((3, 3))])


class InitialStatePartial:
    """Position of a propagated body wrt its initial Cartesian state.

    Reads the position rows of the body's block in the propagated STM.
    """

    def __init__(self, result: PropagationResult, body: str):
        self.result = result
        self.body = body
        self._slice = result.block(IntegratedStateType.TRANSLATIONAL, body).slice

    def __call__(self, state: np.ndarray, time: float) -> np.ndarray:
        phi = self.result.stm_at(time)
        start = self._slice.start
        return phi[start:start + 3, self._slice]


class SensitivityPositionPartial:
    """Position of a propagated body wrt a dynamical parameter."""

    def __init__(self, result: PropagationResult, body: str, parameter_label: str):
        self.result = result
        self.body = body
        self._start = result.block(IntegratedStateType.TRANSLATIONAL, body).start
        try:
            self._column = result.sensitivity_parameters.index(parameter_label)
        except ValueError:
            raise KeyError(f"No sensitivity column for '{parameter_label}'") from None

    def __call__(self, state: np.ndarray, time: float) -> np.ndarray:
        sens = self.result.sensitivity_at(time)
        return sens[self._start:self._start + 3, self._column:self._column + 1]


# ===================================================================
# Light-time correction partials
# ===================================================================

class LightTimeCorrectionPartial(Protocol):
    def __call__(self, geometry: LinkEndGeometry) -> tuple[np.ndarray, float]: ...


class RelativisticCorrectionPartial:
    """Partial of the Shapiro delay wrt PPN gamma or a perturber's mu.

    Attributes:
        correction: Correction the partial belongs to.
        identifier: ("ppn_gamma",) or ("gravitational_parameter", body).
    """

    def __init__(self, correction: FirstOrderRelativisticCorrection, identifier: tuple):
        kind = identifier[0]
        if kind not in ("ppn_gamma", "gravitational_parameter"):
            raise ValueError(f"No relativistic correction partial wrt {identifier}")
        self.correction = correction
        self.identifier = identifier

    def __call__(self, geometry: LinkEndGeometry) -> tuple[np.ndarray, float]:
        """dDelta/dp [s per unit p], shape (1,), and the evaluation time."""
        args = (geometry.state_of(LinkEndType.TRANSMITTER),
                geometry.state_of(LinkEndType.RECEIVER),
                geometry.time_of(LinkEndType.TRANSMITTER),
                geometry.time_of(LinkEndType.RECEIVER))
        if self.identifier[0] == "ppn_gamma":
            value = self.correction.partial_wrt_ppn_gamma(*args)
        else:
            value = self.correction.partial_wrt_gravitational_parameter(
                self.identifier[1], *args)
        return np.array([value]), 0.5 * (args[2] + args[3])


# ===================================================================
# Observation partials
# ===================================================================

class ObservationPartial:
    """Partial of one observable wrt one parameter.

    Attributes:
        scaling: Scaling object shared by all partials of the observable.
        position_partials: Position partial per link end depending on p.
        correction_partials: Light-time correction partials depending on p.
    """

    def __init__(self, scaling: PositionPartialScaling,
                 position_partials: Optional[dict[LinkEndType, PositionPartial]] = None,
                 correction_partials: Optional[list[LightTimeCorrectionPartial]] = None):
        self.scaling = scaling
        self.position_partials = dict(position_partials or {})
        self.correction_partials = list(correction_partials or [])

    @property
    def is_empty(self) -> bool:
        return not self.position_partials and not self.correction_partials

    def calculate_partial(self, geometry: LinkEndGeometry
                          ) -> list[tuple[np.ndarray, float]]:
        """Partial blocks with their evaluation times.

        The scaling must already hold this geometry. Blocks have shape
        (observable size, parameter size) and sum to the total partial.
        """
        reference = geometry.reference_link_end
        blocks = []
        for link_end, position_partial in self.position_partials.items():
            time = geometry.time_of(link_end)
            dr_dp = position_partial(geometry.state_of(link_end), time)
            blocks.append((self.scaling.scaling_factor(link_end, reference) @ dr_dp, time))
        if self.correction_partials:
            factor = self.scaling.light_time_correction_factor(reference)
            for correction_partial in self.correction_partials:
                d_delta, time = correction_partial(geometry)
                blocks.append((np.outer(factor, d_delta), time))
        return blocks


class OneWayRangePartial(ObservationPartial):
    def __init__(self, scaling: OneWayRangeScaling, position_partials=None,
                 correction_partials=None):
        super().__init__(scaling, position_partials, correction_partials)


class AngularPositionPartial(ObservationPartial):
    def __init__(self, scaling: AngularPositionScaling, position_partials=None,
                 correction_partials=None):
        super().__init__(scaling, position_partials, correction_partials)


def total_partial(partial: ObservationPartial, geometry: LinkEndGeometry) -> np.ndarray:
    """Sum of all blocks of a partial."""
    blocks = partial.calculate_partial(geometry)
    if not blocks:
        raise ValueError("Partial has no contributions")
    return sum(block for block, _ in blocks)
