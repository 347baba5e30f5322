"""
Exception taxonomy.

Every error raised by the numerical core derives from OdsimError and from
the built-in exception a caller would otherwise expect at that seam, so
``except ValueError`` style handlers keep working.
"""

from __future__ import annotations

from typing import Optional


class OdsimError(Exception):
    """Base class for all odsim errors."""


class UnsupportedMethodError(OdsimError, ValueError):
    """Unknown Runge-Kutta coefficient set identifier."""

    def __init__(self, method):
        self.method = method
        super().__init__(f"Unsupported Runge-Kutta coefficient set: {method!r}")


class MinimumStepSizeExceededError(OdsimError, RuntimeError):
    """Step-size control could not meet the tolerance at the minimum step.

    Attributes:
        time: Integration time at which the step was attempted [s].
        step_size: Step size of the failed attempt [s].
        error_norm: Normalised error norm of the failed attempt.
    """

    def __init__(self, time: float, step_size: float, error_norm: float):
        self.time = time
        self.step_size = step_size
        self.error_norm = error_norm
        super().__init__(
            f"Minimum step size exceeded at t={time:.6f} s "
            f"(h={step_size:.3e} s, error norm={error_norm:.3e})"
        )


class StepLimitExceededError(OdsimError, RuntimeError):
    """Caller-imposed maximum number of integration steps reached."""

    def __init__(self, max_steps: int, time: float):
        self.max_steps = max_steps
        self.time = time
        super().__init__(
            f"Maximum number of steps ({max_steps}) reached at t={time:.6f} s"
        )


class UnsupportedStateCouplingError(OdsimError, NotImplementedError):
    """Partial of one integrated state type wrt another is not available.

    Callers may catch this and treat the coupling as structurally zero when
    that is appropriate for their problem.

    Attributes:
        derivative_type: State type whose derivative is differentiated.
        state_type: State type the partial is taken with respect to.
    """

    def __init__(self, derivative_type, state_type, detail: Optional[str] = None):
        self.derivative_type = derivative_type
        self.state_type = state_type
        message = (
            f"Partial of {derivative_type.name} derivative wrt "
            f"{state_type.name} state is not implemented"
        )
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class InvalidLinkEndRoleError(OdsimError, ValueError):
    """Reference link end role not supported by an observation model."""

    def __init__(self, link_end, model_name: str):
        self.link_end = link_end
        super().__init__(
            f"Link end {getattr(link_end, 'name', link_end)} is not a valid "
            f"reference for {model_name}"
        )


class InvalidReferenceLinkEndError(OdsimError, ValueError):
    """Scaling factor requested for an unrecognised time-fixed link end."""

    def __init__(self, link_end):
        self.link_end = link_end
        super().__init__(
            f"No scaling factor for reference link end "
            f"{getattr(link_end, 'name', link_end)}"
        )


class LightTimeConvergenceError(OdsimError, RuntimeError):
    """Light-time fixed-point iteration did not converge."""

    def __init__(self, iterations: int, change: float):
        self.iterations = iterations
        self.change = change
        super().__init__(
            f"Light time not converged after {iterations} iterations "
            f"(last change {change:.3e} s)"
        )
