"""
Observation models.

An observation model turns a time and a time-fixed link end into an
ideal observable (plus optional bias), together with the link-end
geometry that the partial-derivative framework needs.

Observables:
    - One-way range [m]: c * light time
    - Angular position [rad]: right ascension and declination of the
      transmitter as seen from the receiver
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from ..core.constants import SPEED_OF_LIGHT
from ..core.errors import InvalidLinkEndRoleError
from ..core.types import LinkEndGeometry, LinkEndType
from .light_time import LightTimeCalculator


class ConstantBias:
    """Time-invariant additive observation bias.

    Attributes:
        values: Bias per observable component.
    """

    def __init__(self, values: Sequence[float]):
        self.values = np.atleast_1d(np.asarray(values, dtype=float))

    def bias(self, time: float) -> np.ndarray:
        return self.values


class ObservationModel:
    """Base class of single-link observation models.

    Subclasses set ``observable_size`` and implement
    ``compute_ideal_observation_with_link_end_data``.

    Attributes:
        light_time_calculator: Light-time solver of the link.
        bias: Optional bias added by compute_observation.
    """

    observable_size: int = 1
    valid_reference_link_ends = (LinkEndType.TRANSMITTER, LinkEndType.RECEIVER)

    def __init__(self, light_time_calculator: LightTimeCalculator,
                 bias: Optional[ConstantBias] = None):
        if bias is not None and bias.values.shape != (self.observable_size,):
            raise ValueError(
                f"Bias of size {bias.values.size} for observable of size "
                f"{self.observable_size}"
            )
        self.light_time_calculator = light_time_calculator
        self.bias = bias

    def _check_reference(self, reference_link_end: LinkEndType) -> None:
        if reference_link_end not in self.valid_reference_link_ends:
            raise InvalidLinkEndRoleError(reference_link_end, type(self).__name__)

    def _solve_geometry(self, time: float, reference_link_end: LinkEndType
                        ) -> tuple[float, LinkEndGeometry]:
        self._check_reference(reference_link_end)
        at_reception = reference_link_end is LinkEndType.RECEIVER
        light_time, tx_state, rx_state = (
            self.light_time_calculator.calculate_light_time_with_link_end_states(
                time, at_reception))
        if at_reception:
            times = [time - light_time, time]
        else:
            times = [time, time + light_time]
        return light_time, LinkEndGeometry(times, [tx_state, rx_state], reference_link_end)

    def compute_ideal_observation_with_link_end_data(
            self, time: float, reference_link_end: LinkEndType
    ) -> tuple[np.ndarray, LinkEndGeometry]:
        raise NotImplementedError

    def compute_ideal_observation(self, time: float,
                                  reference_link_end: LinkEndType) -> np.ndarray:
        return self.compute_ideal_observation_with_link_end_data(time, reference_link_end)[0]

    def compute_observation_with_link_end_data(
            self, time: float, reference_link_end: LinkEndType
    ) -> tuple[np.ndarray, LinkEndGeometry]:
        """Ideal observation plus bias, with its link-end geometry."""
        observation, geometry = self.compute_ideal_observation_with_link_end_data(
            time, reference_link_end)
        if self.bias is not None:
            observation = observation + self.bias.bias(time).astype(observation.dtype)
        return observation, geometry

    def compute_observation(self, time: float,
                            reference_link_end: LinkEndType) -> np.ndarray:
        return self.compute_observation_with_link_end_data(time, reference_link_end)[0]


class OneWayRangeObservationModel(ObservationModel):
    """One-way range c * tau between transmitter and receiver.

    The light-time equation is always solved in float64. Only the product
    c * tau is formed in dtype, so an extended dtype carries the range with
    more digits but not with more accuracy than the float64 light time.

    Attributes:
        dtype: Floating type of the returned observable.
    """

    observable_size = 1

    def __init__(self, light_time_calculator: LightTimeCalculator,
                 bias: Optional[ConstantBias] = None, dtype=float):
        super().__init__(light_time_calculator, bias)
        self.dtype = np.dtype(dtype)

    def compute_ideal_observation_with_link_end_data(
            self, time: float, reference_link_end: LinkEndType
    ) -> tuple[np.ndarray, LinkEndGeometry]:
        light_time, geometry = self._solve_geometry(time, reference_link_end)
        value = self.dtype.type(light_time) * self.dtype.type(SPEED_OF_LIGHT)
        return np.array([value], dtype=self.dtype), geometry


def right_ascension_declination(relative_position: np.ndarray) -> np.ndarray:
    """[alpha, delta] of a relative position vector [rad]."""
    x, y, z = relative_position
    return np.array([np.arctan2(y, x), np.arctan2(z, np.hypot(x, y))])


class AngularPositionObservationModel(ObservationModel):
    """Right ascension and declination of the transmitter seen from the receiver."""

    observable_size = 2

    def compute_ideal_observation_with_link_end_data(
            self, time: float, reference_link_end: LinkEndType
    ) -> tuple[np.ndarray, LinkEndGeometry]:
        _, geometry = self._solve_geometry(time, reference_link_end)
        relative = (geometry.state_of(LinkEndType.TRANSMITTER)[0:3]
                    - geometry.state_of(LinkEndType.RECEIVER)[0:3])
        return right_ascension_declination(relative), geometry
