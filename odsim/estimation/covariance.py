"""
Covariance mapping along a propagated arc.

Maps an initial-state covariance through the stored state transition
matrices, with optional white acceleration noise:

    P(t_i) = Phi(t_i, t_i-1) P(t_i-1) Phi(t_i, t_i-1)^T + Q(t_i - t_i-1)
    Phi(t_i, t_i-1) = Phi(t_i, t0) Phi(t_i-1, t0)^-1
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import scipy.linalg

from ..core.config import ProcessNoiseConfig
from ..core.types import CovarianceHistory, PropagationResult
from .process_noise import composed_state_noise

logger = logging.getLogger(__name__)


class CovariancePropagator:
    """Maps covariance along a trajectory using its precomputed STMs.

    This is not a filter: no measurements are processed.

    Attributes:
        config: Process noise settings.
    """

    def __init__(self, config: Optional[ProcessNoiseConfig] = None):
        self.config = config if config is not None else ProcessNoiseConfig()

    def propagate_step(self, P: np.ndarray, stm_step: np.ndarray, dt: float,
                       result: PropagationResult) -> np.ndarray:
        """Map a covariance over one output interval."""
        Q = composed_state_noise(result.internal_blocks, P.shape[0],
                                 self.config.acceleration_psd, dt)
        P_next = stm_step @ P @ stm_step.T + Q
        return 0.5 * (P_next + P_next.T)

    def propagate_along_trajectory(self, P0: np.ndarray,
                                   result: PropagationResult) -> CovarianceHistory:
        """Covariance at every output time of a propagation.

        Args:
            P0: Covariance of the internal state at the first output time.
            result: Propagation with STMs.

        Returns:
            CovarianceHistory on result.times.
        """
        if result.stms is None:
            raise RuntimeError("Covariance mapping requires a propagation with STMs")
        n = result.stms.shape[1]
        if P0.shape != (n, n):
            raise ValueError(f"Expected ({n}, {n}) covariance, got {P0.shape}")

        covariances = [P0.copy()]
        P = P0.copy()
        for i in range(1, len(result.times)):
            lu = scipy.linalg.lu_factor(result.stms[i - 1])
            # Phi_i Phi_{i-1}^-1 = (Phi_{i-1}^-T Phi_i^T)^T
            stm_step = scipy.linalg.lu_solve(lu, result.stms[i].T, trans=1).T
            P = self.propagate_step(P, stm_step, result.times[i] - result.times[i - 1],
                                    result)
            covariances.append(P.copy())

        logger.debug("Mapped covariance over %d epochs", len(covariances))
        return CovarianceHistory(times=result.times.copy(), covariances=covariances)
