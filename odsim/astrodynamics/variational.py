"""
Variational equations.

Integrates the state transition matrix Phi = dx(t)/dx(t0) and the
parameter sensitivity matrix S = dx(t)/dp alongside the composed state:

    y = [x, Phi (row-major), S (row-major)]
    dPhi/dt = A(t) Phi,   dS/dt = A(t) S + df/dp

A(t) is assembled block by block from the partial objects of the
composer's models; an unsupported coupling aborts with
UnsupportedStateCouplingError.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from ..numerics.extended_time import TimeLike
from .composer import StateDerivativeComposer
from .eom import variational_derivative
from .state_partials import create_state_derivative_partial


class VariationalEquations:
    """Augmented dynamics of state, STM and parameter sensitivities.

    Attributes:
        composer: Composed state derivative.
        parameters: Identifiers of the parameters with sensitivity columns.
        size: State size n.
        augmented_size: n + n*n + n*k.
    """

    def __init__(self, composer: StateDerivativeComposer,
                 parameters: Optional[list[tuple]] = None):
        self.composer = composer
        self.parameters = list(parameters or [])
        self.size = composer.internal_size
        self.n_parameters = len(self.parameters)
        self.augmented_size = self.size * (1 + self.size + self.n_parameters)
        self._partials = [(create_state_derivative_partial(model), rng)
                          for model, rng in composer.model_slices()]

    def initial_state(self, x0: np.ndarray) -> np.ndarray:
        n, k = self.size, self.n_parameters
        return np.concatenate([x0, np.eye(n).ravel(), np.zeros(n * k)])

    def split(self, y: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Augmented vector -> (x, Phi, S)."""
        n, k = self.size, self.n_parameters
        x = y[:n]
        phi = y[n:n + n * n].reshape(n, n)
        sens = y[n + n * n:].reshape(n, k)
        return x, phi, sens

    def state_matrix(self, time: float) -> np.ndarray:
        """A = df/dx at the environment last written by the composer."""
        n = self.size
        A = np.zeros((n, n))
        for partial, rng_i in self._partials:
            for model_j, rng_j in self.composer.model_slices():
                A[rng_i, rng_j] = partial.wrt_state(time, model_j)
        return A

    def parameter_matrix(self, time: float) -> np.ndarray:
        """df/dp, shape (n, k)."""
        df_dp = np.zeros((self.size, self.n_parameters))
        for col, identifier in enumerate(self.parameters):
            for partial, rng in self._partials:
                column = partial.wrt_parameter(time, identifier)
                if column is not None:
                    df_dp[rng, col] += column
        return df_dp

    def compute_derivative(self, time: TimeLike, y: np.ndarray) -> np.ndarray:
        x, phi, sens = self.split(y)
        # Writes the environment used by the partials below
        dx = self.composer.compute_state_derivative(time, x)
        t = float(time)
        A = self.state_matrix(t)
        if self.n_parameters:
            dphi, dsens = variational_derivative(A, phi, sens, self.parameter_matrix(t))
        else:
            dphi, dsens = variational_derivative(A, phi)
            dsens = np.zeros((self.size, 0))
        return np.concatenate([dx, dphi.ravel(), dsens.ravel()])

    def post_process_state(self, y: np.ndarray) -> None:
        self.composer.post_process_state(y[:self.size])
