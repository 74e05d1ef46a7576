"""Fast trial refinement (FTR) error estimation.

For every active element a local reference solution is computed on a copy of
the coarse mesh in which only that element is refined. The norm of the
difference between the trial and coarse solutions on the element is its
error indicator, and the trial element(s) that replaced it are kept as the
reference pair that later decides how the element is refined.
"""

import logging

import numpy as np

from .assembly import DiscreteProblem
from .datastructures import FTR_INDICATORS, REFINEMENT_MODES, Mesh, RefElementPair
from .interpolation import calc_error_estimate, check_norm, difference_norm_squared
from .newton import NewtonSolver

log = logging.getLogger(__name__)


class FTRErrorEstimator:
    """
    Per-element error indicators from local trial refinements.

    Parameters
    ----------
    problem : DiscreteProblem
        Weak forms shared with the coarse solve
    norm : str
        "L2" or "H1"
    tol, max_iter : float, int
        Newton settings for the trial (fine) solves
    linear_solver : str
        Linear backend for the trial solves
    trial_mode : str
        "hp" splits the element and raises the degree of both sons,
        "h" splits keeping the degree, "p" raises the degree only
    max_degree : int
        Degree cap for trial elements
    indicator : str
        "element" measures trial - coarse over the refined element only,
        "global" over the whole domain
    """

    def __init__(
        self,
        problem: DiscreteProblem,
        norm: str = "L2",
        tol: float = 1e-8,
        max_iter: int = 150,
        linear_solver: str = "splu",
        trial_mode: str = "hp",
        max_degree: int = 10,
        indicator: str = "element",
    ):
        if trial_mode not in REFINEMENT_MODES:
            raise ValueError(f"Unknown trial refinement: {trial_mode}. Use 'h', 'p' or 'hp'")
        if indicator not in FTR_INDICATORS:
            raise ValueError(f"Unknown indicator: {indicator}. Use 'element' or 'global'")
        self.norm = check_norm(norm)
        self.trial_mode = trial_mode
        self.max_degree = max_degree
        self.indicator = indicator
        self.newton = NewtonSolver(problem, tol=tol, max_iter=max_iter, linear_solver=linear_solver)

    def trial_mesh(self, coarse_mesh: Mesh, element_id: int, depth: int = 1) -> tuple[Mesh, int]:
        """
        Copy the coarse mesh and refine element `element_id` only.

        With depth > 1 the refinement is repeated on every element that
        replaced the original one.

        Returns
        -------
        mesh_ref : Mesh
            Trial mesh with assigned DOFs and inherited coefficients
        n_replacing : int
            Number of trial elements covering the coarse element
        """
        if depth < 1:
            raise ValueError(f"Trial refinement depth must be >= 1, got {depth}")
        mesh_ref = coarse_mesh.clone()
        n_replacing = 1
        for _ in range(depth):
            # Right to left so that the ids still to be refined stay valid
            n_new = 0
            for k in reversed(range(element_id, element_id + n_replacing)):
                n_new += mesh_ref.refine_element(k, self.trial_mode, self.max_degree)
            n_replacing = n_new
        mesh_ref.assign_dofs()
        return mesh_ref, n_replacing

    def solve_trial(self, coarse_mesh: Mesh, element_id: int, depth: int = 1) -> tuple[float, Mesh, list]:
        """
        Solve on the trial mesh and measure the difference on the element.

        Returns
        -------
        error : float
            Norm of (trial - coarse) over the coarse element, or over the
            whole domain for the "global" indicator
        mesh_ref : Mesh
            Solved trial mesh
        replacing : list[Element]
            Trial elements that cover the coarse element
        """
        mesh_ref, _ = self.trial_mesh(coarse_mesh, element_id, depth)
        log.debug(f"Elem [{element_id}]: fine mesh created ({mesh_ref.num_dofs} DOF)")

        # A failed trial solve aborts the whole estimation step
        self.newton.solve(mesh_ref)

        replacing = _replacing_elements(coarse_mesh, mesh_ref, element_id)
        if self.indicator == "global":
            error, _ = calc_error_estimate(self.norm, coarse_mesh, mesh_ref)
        else:
            coarse_elem = coarse_mesh.elements[element_id]
            error = float(np.sqrt(difference_norm_squared(coarse_elem, replacing, self.norm)))
        return error, mesh_ref, replacing

    def estimate(self, coarse_mesh: Mesh, element_id: int) -> tuple[float, RefElementPair]:
        """
        Error indicator and reference pair for one coarse element.

        Returns
        -------
        error : float
            Norm of the difference between the trial and coarse solutions
        ref_pair : RefElementPair
            One trial element (degree bump) or two (spatial split)
        """
        error, _, replacing = self.solve_trial(coarse_mesh, element_id, depth=1)
        log.debug(f"Elem [{element_id}]: absolute error (est) = {error:g}")
        return error, RefElementPair(tuple(e.copy() for e in replacing))

    def estimate_all(self, coarse_mesh: Mesh) -> tuple[np.ndarray, dict[int, RefElementPair]]:
        """
        Run FTR for every active element, left to right.

        Returns
        -------
        errors : ndarray (n_active_elem,)
        ref_pairs : dict[int, RefElementPair]
            Fresh mapping from element id to its reference pair
        """
        n_elem = coarse_mesh.n_active_elem
        errors = np.zeros(n_elem)
        ref_pairs: dict[int, RefElementPair] = {}
        for i in range(n_elem):
            errors[i], ref_pairs[i] = self.estimate(coarse_mesh, i)
        return errors, ref_pairs


def _replacing_elements(coarse_mesh: Mesh, mesh_ref: Mesh, element_id: int) -> list:
    """Walk both meshes in lock-step and collect the trial elements covering `element_id`."""
    ref_iter = iter(mesh_ref.active_elements())
    for idx, (e, e_ref) in enumerate(zip(coarse_mesh.active_elements(), ref_iter)):
        if idx != element_id:
            continue
        replacing = [e_ref]
        tol = 1e-12 * max(1.0, abs(e.x2))
        while replacing[-1].x2 < e.x2 - tol:
            replacing.append(next(ref_iter))
        return replacing
    raise IndexError(f"Element id {element_id} not found in coarse mesh")
