"""Newton iteration for the assembled nonlinear system F(Y) = 0."""

import logging
from dataclasses import dataclass

import numpy as np

from .assembly import DiscreteProblem
from .datastructures import Mesh
from .errors import LinearSolveFailure, NewtonNonConvergence
from .linalg import LinearSystem

log = logging.getLogger(__name__)


@dataclass
class NewtonResult:
    """Outcome of one Newton solve."""

    converged: bool
    iterations: int
    residual_norm: float
    ndof: int


class NewtonSolver:
    """
    Newton's method J(Y^n) dY = -F(Y^n), Y^{n+1} = Y^n + dY on a fixed mesh.

    Parameters
    ----------
    problem : DiscreteProblem
        Weak forms for the Jacobian and residual
    tol : float
        Tolerance for the l2 norm of the residual vector
    max_iter : int
        Number of Newton steps after which the solve is declared divergent
    linear_solver : str
        Backend passed to `LinearSystem`
    """

    def __init__(
        self,
        problem: DiscreteProblem,
        tol: float = 1e-8,
        max_iter: int = 150,
        linear_solver: str = "splu",
    ):
        if tol <= 0:
            raise ValueError(f"Newton tolerance must be positive, got {tol}")
        if max_iter < 1:
            raise ValueError(f"max_iter must be >= 1, got {max_iter}")
        self.problem = problem
        self.tol = tol
        self.max_iter = max_iter
        self.linear_solver = linear_solver

    def solve(self, mesh: Mesh) -> NewtonResult:
        """
        Run Newton's method starting from the coefficients stored on the mesh.

        The converged coefficients are written back into slot 0 of the mesh.
        At least one Newton step is always taken, since the initial residual
        on a freshly refined mesh can be deceptively small.

        Raises
        ------
        LinearSolveFailure
            The backend could not solve for the correction
        NewtonNonConvergence
            `max_iter` steps were taken without meeting the tolerance
        """
        ndof = mesh.num_dofs
        y = mesh.solution_to_vector()
        tol_squared = self.tol * self.tol
        it = 0

        with LinearSystem(self.linear_solver) as system:
            while True:
                J, F = self.problem.assemble(mesh)

                res_norm_squared = float(F @ F)
                log.debug(f"Newton iter {it + 1}, residual norm: {np.sqrt(res_norm_squared):.15f}")

                if res_norm_squared < tol_squared and it > 0:
                    break

                if it >= self.max_iter:
                    raise NewtonNonConvergence(it, np.sqrt(res_norm_squared), self.tol)

                system.set(J, -F)
                if not system.solve():
                    raise LinearSolveFailure(
                        f"Linear solver '{self.linear_solver}' failed at Newton iteration "
                        f"{it + 1} ({ndof} DOF)"
                    )
                y += system.correction_vector()
                it += 1

                mesh.vector_to_solution(y)

        log.debug(f"Newton converged in {it} iterations ({ndof} DOF)")
        return NewtonResult(True, it, float(np.sqrt(res_norm_squared)), ndof)
