"""
Estimatable parameters.

Each parameter reads and writes its value in the environment it belongs
to, and knows which observation-partial ingredients depend on it:
link-end position partials (through the propagated dynamics) and
light-time correction partials.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from ..astrodynamics.bodies import BodyRegistry
from ..astrodynamics.propagator import parameter_label
from ..astrodynamics.propulsion import EngineModel
from ..core.types import IntegratedStateType, PropagationResult
from ..observation.light_time import FirstOrderRelativisticCorrection
from ..observation.partials import (
    InitialStatePartial, PositionPartial, RelativisticCorrectionPartial,
    SensitivityPositionPartial,
)


class EstimatableParameter:
    """Base class of estimatable parameters.

    Attributes:
        identifier: Tuple naming the parameter, e.g. ("gravitational_parameter", "Earth").
        size: Number of scalar entries.
        affects_dynamics: True if the propagated state depends on it
            through a sensitivity column.
    """

    identifier: tuple = ()
    size: int = 1
    affects_dynamics: bool = False

    def get_value(self) -> np.ndarray:
        raise NotImplementedError

    def set_value(self, value: np.ndarray) -> None:
        raise NotImplementedError

    @property
    def labels(self) -> list[str]:
        base = parameter_label(self.identifier)
        if self.size == 1:
            return [base]
        return [f"{base}[{i}]" for i in range(self.size)]

    def position_partial(self, result: PropagationResult, body: str
                         ) -> Optional[PositionPartial]:
        """Partial of a link-end body's position wrt this parameter, or None."""
        return None

    def correction_partials(self, corrections: Sequence
                            ) -> list[RelativisticCorrectionPartial]:
        return []


def _is_propagated(result: PropagationResult, body: str) -> bool:
    return any(b.state_type is IntegratedStateType.TRANSLATIONAL and b.body == body
               for b in result.internal_blocks)


class InitialTranslationalState(EstimatableParameter):
    """Cartesian state of a propagated body at the estimation epoch."""

    size = 6

    def __init__(self, body: str, initial_state: np.ndarray):
        self.body = body
        self.identifier = ("initial_state", body)
        self._value = np.array(initial_state, dtype=float)
        if self._value.shape != (6,):
            raise ValueError(f"Initial state must have shape (6,), got {self._value.shape}")

    def get_value(self) -> np.ndarray:
        return self._value.copy()

    def set_value(self, value: np.ndarray) -> None:
        self._value = np.array(value, dtype=float)

    def position_partial(self, result, body):
        if body != self.body:
            return None
        return InitialStatePartial(result, body)


class GravitationalParameter(EstimatableParameter):
    """GM of a body [m^3/s^2]."""

    affects_dynamics = True

    def __init__(self, body: str, registry: BodyRegistry):
        self.body = body
        self.registry = registry
        self.identifier = ("gravitational_parameter", body)

    def get_value(self) -> np.ndarray:
        return np.array([self.registry[self.body].gravitational_parameter])

    def set_value(self, value: np.ndarray) -> None:
        self.registry[self.body].gravitational_parameter = float(np.asarray(value).ravel()[0])

    def position_partial(self, result, body):
        if not _is_propagated(result, body):
            return None
        return SensitivityPositionPartial(result, body, self.labels[0])

    def correction_partials(self, corrections):
        return [RelativisticCorrectionPartial(c, self.identifier) for c in corrections
                if isinstance(c, FirstOrderRelativisticCorrection)
                and self.body in c.perturbers]


class PPNGamma(EstimatableParameter):
    """Post-Newtonian parameter gamma of the global metric."""

    def __init__(self, registry: BodyRegistry):
        self.registry = registry
        self.identifier = ("ppn_gamma",)

    def get_value(self) -> np.ndarray:
        return np.array([self.registry.ppn_gamma])

    def set_value(self, value: np.ndarray) -> None:
        self.registry.ppn_gamma = float(np.asarray(value).ravel()[0])

    def correction_partials(self, corrections):
        # Corrections with a fixed gamma do not follow the registry value
        return [RelativisticCorrectionPartial(c, self.identifier) for c in corrections
                if isinstance(c, FirstOrderRelativisticCorrection) and not c.is_ppn_gamma_fixed]


class _EngineParameter(EstimatableParameter):
    """Engine property reaching the observables through the propagated state."""

    affects_dynamics = True
    attribute = ""

    def __init__(self, engine: EngineModel):
        self.engine = engine
        self.identifier = (self.attribute, engine.name)

    def get_value(self) -> np.ndarray:
        return np.array([getattr(self.engine, self.attribute)])

    def set_value(self, value: np.ndarray) -> None:
        setattr(self.engine, self.attribute, float(np.asarray(value).ravel()[0]))

    def position_partial(self, result, body):
        if not _is_propagated(result, body):
            return None
        return SensitivityPositionPartial(result, body, self.labels[0])


class ConstantThrustMagnitude(_EngineParameter):
    """Thrust of a constant-thrust engine [N]."""
    attribute = "thrust_magnitude"


class ConstantSpecificImpulse(_EngineParameter):
    """Specific impulse of a constant-thrust engine [s]."""
    attribute = "specific_impulse"


class ParameterSet:
    """Ordered concatenation of estimatable parameters.

    Attributes:
        parameters: Parameters in vector order.
    """

    def __init__(self, parameters: Sequence[EstimatableParameter]):
        identifiers = [p.identifier for p in parameters]
        if len(set(identifiers)) != len(identifiers):
            raise ValueError(f"Duplicate parameters in {identifiers}")
        self.parameters = list(parameters)
        self.slices = []
        start = 0
        for p in self.parameters:
            self.slices.append(slice(start, start + p.size))
            start += p.size
        self.size = start

    def __iter__(self):
        return iter(zip(self.parameters, self.slices))

    def __len__(self) -> int:
        return len(self.parameters)

    @property
    def labels(self) -> list[str]:
        return [label for p in self.parameters for label in p.labels]

    def get_values(self) -> np.ndarray:
        if not self.parameters:
            return np.zeros(0)
        return np.concatenate([p.get_value() for p in self.parameters])

    def set_values(self, values: np.ndarray) -> None:
        values = np.asarray(values, dtype=float)
        if values.shape != (self.size,):
            raise ValueError(f"Expected {self.size} parameter values, got {values.shape}")
        for p, sl in self:
            p.set_value(values[sl])

    def initial_states(self) -> dict[str, np.ndarray]:
        return {p.body: p.get_value() for p in self.parameters
                if isinstance(p, InitialTranslationalState)}

    def sensitivity_identifiers(self) -> list[tuple]:
        return [p.identifier for p in self.parameters if p.affects_dynamics]
