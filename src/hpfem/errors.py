"""Exceptions raised by the nonlinear solve and adaptivity drivers."""


class HPFemError(RuntimeError):
    """Base class for fatal errors in the solve/adapt loop."""


class NewtonNonConvergence(HPFemError):
    """Newton iteration hit its iteration cap without meeting the tolerance."""

    def __init__(self, iterations: int, residual_norm: float, tol: float):
        super().__init__(
            f"Newton method did not converge in {iterations} iterations "
            f"(residual norm {residual_norm:.6e}, tolerance {tol:.1e})"
        )
        self.iterations = iterations
        self.residual_norm = residual_norm
        self.tol = tol


class LinearSolveFailure(HPFemError):
    """The linear backend could not produce a Newton correction."""


class AdaptivityDegenerate(HPFemError, ValueError):
    """Error indicators cannot drive a refinement (empty, zero or malformed)."""


class EigenvalueStagnation(UserWarning):
    """Source iteration used up its iteration budget before converging."""
