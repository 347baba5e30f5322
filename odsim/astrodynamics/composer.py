"""
Composed state derivative.

Concatenates the states of several single-type models into one integrated
vector, ordered by IntegratedStateType (translational, rotational, body
mass, custom) and, within a type, by the order the models were given.
The composer owns the models and the global index map; models only see
their own slice of the state.
"""

from __future__ import annotations

import logging
from typing import Callable

import numpy as np

from ..core.types import IntegratedStateType, StateBlock
from ..numerics.extended_time import TimeLike
from .bodies import BodyRegistry
from .state_derivative import SingleStateDerivative

logger = logging.getLogger(__name__)

_TYPE_ORDER = {t: i for i, t in enumerate(IntegratedStateType)}


def _float_time(t: TimeLike) -> float:
    return float(t)


class StateDerivativeComposer:
    """Dispatches a composed state to its single-type models.

    Attributes:
        models: Models sorted by state type.
        registry: Body registry shared with the models.
        internal_blocks: Per-body layout of the integrated state.
        conventional_blocks: Per-body layout of the output state.
    """

    def __init__(self, models: list[SingleStateDerivative], registry: BodyRegistry):
        """Initialize the composer.

        Args:
            models: State derivative models; at most one per state type
                for translational, rotational and body-mass states.
            registry: Registry the models read and write.
        """
        if not models:
            raise ValueError("At least one state derivative model is required")
        self.registry = registry
        self.models = sorted(models, key=lambda m: _TYPE_ORDER[m.state_type])

        seen = set()
        for model in self.models:
            if model.state_type is not IntegratedStateType.CUSTOM:
                if model.state_type in seen:
                    raise ValueError(
                        f"Multiple {model.state_type.name} models; combine their bodies "
                        f"into one model"
                    )
                seen.add(model.state_type)

        self.internal_blocks: list[StateBlock] = []
        self.conventional_blocks: list[StateBlock] = []
        self._internal_ranges: list[slice] = []
        self._conventional_ranges: list[slice] = []

        i_start = c_start = 0
        for model in self.models:
            i_model, c_model = i_start, c_start
            for body in model.bodies:
                self.internal_blocks.append(StateBlock(
                    model.state_type, body, i_start, model.internal_size_per_body))
                self.conventional_blocks.append(StateBlock(
                    model.state_type, body, c_start, model.conventional_size_per_body))
                i_start += model.internal_size_per_body
                c_start += model.conventional_size_per_body
            self._internal_ranges.append(slice(i_model, i_start))
            self._conventional_ranges.append(slice(c_model, c_start))

        self.internal_size = i_start
        self.conventional_size = c_start
        self._propagated = tuple(
            body for model in self.models for body in model.bodies
            if model.state_type is IntegratedStateType.TRANSLATIONAL
        )
        logger.debug(
            "Composed %d model(s): %d integrated, %d conventional elements",
            len(self.models), self.internal_size, self.conventional_size,
        )

    # ------------------------------------------------------------------
    # Index helpers
    # ------------------------------------------------------------------

    def model_of_type(self, state_type: IntegratedStateType) -> SingleStateDerivative:
        for model in self.models:
            if model.state_type is state_type:
                return model
        raise KeyError(f"No {state_type.name} model in composed state")

    def block(self, state_type: IntegratedStateType, body: str,
              conventional: bool = False) -> StateBlock:
        blocks = self.conventional_blocks if conventional else self.internal_blocks
        for b in blocks:
            if b.state_type is state_type and b.body == body:
                return b
        raise KeyError(f"No {state_type.name} state for body '{body}'")

    def model_slices(self) -> list[tuple[SingleStateDerivative, slice]]:
        """Each model with its range in the integrated state."""
        return list(zip(self.models, self._internal_ranges))

    def split_state(self, state: np.ndarray) -> dict[IntegratedStateType, list[np.ndarray]]:
        """Integrated state split into per-model slices, keyed by type."""
        self._check_size(state, self.internal_size)
        out: dict[IntegratedStateType, list[np.ndarray]] = {}
        for model, rng in self.model_slices():
            out.setdefault(model.state_type, []).append(state[rng])
        return out

    @staticmethod
    def _check_size(state, expected):
        if state.shape != (expected,):
            raise ValueError(f"Expected state of shape ({expected},), got {state.shape}")

    # ------------------------------------------------------------------
    # Dynamics
    # ------------------------------------------------------------------

    def update_environment(self, time: TimeLike, state: np.ndarray) -> None:
        """Write all current states into the registry before any derivative."""
        t = _float_time(time)
        self.registry.update_ephemeris_bodies(t, skip=self._propagated)
        for model, rng in self.model_slices():
            model.update_environment(t, state[rng])

    def compute_state_derivative(self, time: TimeLike, state: np.ndarray) -> np.ndarray:
        """Derivative of the composed integrated state.

        Args:
            time: Current time [s].
            state: Composed integrated state, shape (n,).

        Returns:
            Composed derivative, shape (n,), same dtype as state.
        """
        self._check_size(state, self.internal_size)
        self.update_environment(time, state)
        t = _float_time(time)
        derivative = np.zeros_like(state)
        for model, rng in self.model_slices():
            derivative[rng] = model.calculate_derivative(t, state[rng])
        return derivative

    def derivative_function(self) -> Callable[[TimeLike, np.ndarray], np.ndarray]:
        return self.compute_state_derivative

    # ------------------------------------------------------------------
    # Representations
    # ------------------------------------------------------------------

    def convert_from_conventional(self, state: np.ndarray, time: TimeLike) -> np.ndarray:
        """Output representation -> integrated representation."""
        self._check_size(state, self.conventional_size)
        t = _float_time(time)
        out = np.zeros(self.internal_size, dtype=state.dtype)
        for model, i_rng, c_rng in zip(self.models, self._internal_ranges,
                                       self._conventional_ranges):
            out[i_rng] = model.convert_from_conventional(state[c_rng], t)
        return out

    def convert_to_conventional(self, state: np.ndarray, time: TimeLike) -> np.ndarray:
        """Integrated representation -> output representation."""
        self._check_size(state, self.internal_size)
        t = _float_time(time)
        out = np.zeros(self.conventional_size)
        for model, i_rng, c_rng in zip(self.models, self._internal_ranges,
                                       self._conventional_ranges):
            out[c_rng] = model.convert_to_conventional(state[i_rng], t)
        return out

    @property
    def is_state_to_be_post_processed(self) -> bool:
        return any(m.is_state_to_be_post_processed for m in self.models)

    def post_process_state(self, state: np.ndarray) -> None:
        """Apply in place the fix-ups of the models that need one."""
        for model, rng in self.model_slices():
            if model.is_state_to_be_post_processed:
                view = state[rng]
                model.post_process_state(view)

    def align_interpolation_endpoint(self, reference: np.ndarray, state: np.ndarray,
                                     derivative: np.ndarray
                                     ) -> tuple[np.ndarray, np.ndarray]:
        """Copies of state and derivative on the representation branch of reference.

        Used before interpolating between two output states, so that a
        representation switch applied at the later one does not show up as
        a jump inside the interval.
        """
        self._check_size(state, self.internal_size)
        state = np.array(state, copy=True)
        derivative = np.array(derivative, copy=True)
        for model, rng in self.model_slices():
            state[rng], derivative[rng] = model.align_interpolation_endpoint(
                reference[rng], state[rng], derivative[rng])
        return state, derivative
