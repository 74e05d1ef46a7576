"""Source (power) iteration for the dominant eigenvalue k_eff."""

import logging
import time
import warnings
from dataclasses import dataclass, field

import mlflow
import numpy as np

from .datastructures import EigenParameters, Element, Mesh, Metrics, TimeSeries
from .elements import element_quadrature
from .errors import EigenvalueStagnation
from .newton import NewtonSolver
from .problems import Materials, NeutronicsProblem

log = logging.getLogger(__name__)


@dataclass
class EigenResult:
    """Outcome of the power iteration; the eigenvector stays on the mesh (slot 0)."""

    k_eff: float
    iterations: int
    converged: bool
    history: list[float] = field(default_factory=list)
    metrics: Metrics = field(default_factory=Metrics)
    time_series: TimeSeries = field(default_factory=TimeSeries)


def calc_elem_fission_yield(e: Element, nSf) -> float:
    """Integral of nSf * u over one element (nSf is constant per material)."""
    x, w, _, _ = element_quadrature(e.x1, e.x2, e.p)
    u, _ = e.evaluate(x)
    nSf_e = np.atleast_1d(np.asarray(nSf, dtype=np.float64)[..., e.marker])
    return float(np.sum((nSf_e[:, None] * u) @ w))


def calc_fission_yield(mesh: Mesh, nSf) -> float:
    """Integral of nSf * u over the mesh.

    `nSf` is indexed by material marker, or by (group, marker) for several equations.
    """
    return sum(calc_elem_fission_yield(e, nSf) for e in mesh.active_elements())


def normalize_to_power(mesh: Mesh, power: float, materials: Materials) -> float:
    """
    Scale the flux in slot 0 so that it generates `power` [W].

    P(u) = eps / nu * int nSf u dx

    Returns
    -------
    float
        Normalization constant applied to the flux
    """
    P = materials.eps * calc_fission_yield(mesh, materials.nSf) / materials.nu
    if P <= 0:
        raise ValueError(f"Flux generates non-positive power ({P}); cannot normalize")
    c = power / P
    mesh.multiply(c, slot=0)
    return c


class PowerIteration:
    """
    Source iteration around a Newton solve on a fixed mesh.

    Each step copies the flux into the source slot, solves the diffusion
    problem with the fission source scaled by the current eigenvalue, and
    updates k_eff = int nSf u dx.

    Parameters
    ----------
    problem : NeutronicsProblem
        Provides the weak forms and holds the current `k_eff`
    params : EigenParameters
    linear_solver : str, optional
        Overrides `params.linear_solver`
    """

    def __init__(self, problem: NeutronicsProblem, params: EigenParameters, linear_solver: str | None = None):
        self.problem = problem
        self.params = params
        self.newton = NewtonSolver(
            problem.discrete_problem,
            tol=params.newton_tol,
            max_iter=params.newton_max_iter,
            linear_solver=linear_solver or params.linear_solver,
        )

    def run(self, mesh: Mesh) -> EigenResult:
        """
        Iterate until |k_new - k_old| / k_new < tol_si or max_si steps.

        Exhausting `max_si` emits an `EigenvalueStagnation` warning and
        returns the last iterate with ``converged=False``.
        """
        if mesh.n_slots < 2:
            raise ValueError(f"Power iteration needs a source slot; mesh has {mesh.n_slots} slot(s)")

        params = self.params
        nSf = self.problem.materials.nSf
        k_eff = params.k_eff_init
        self.problem.k_eff = k_eff
        history: list[float] = []
        time_series = TimeSeries()
        converged = False

        time_start = time.time()
        for i in range(params.max_si):
            # SourceUpdate
            mesh.copy_slot(0, 1)

            # CoarseSolve
            self.newton.solve(mesh)

            # EigenvalueUpdate
            k_old = k_eff
            k_eff = calc_fission_yield(mesh, nSf)
            self.problem.k_eff = k_eff
            history.append(k_eff)
            log.info(f"K_EFF_{i} = {k_eff:.6f}")

            time_series.iteration.append(i)
            time_series.k_eff.append(k_eff)
            if mlflow.active_run():
                mlflow.log_metric("k_eff", k_eff, step=i)

            if abs(k_eff - k_old) / k_eff < params.tol_si:
                converged = True
                break

        iterations = len(history)
        if not converged:
            msg = f"Power iteration did not converge in {params.max_si} iterations (k_eff = {k_eff:.8f})"
            log.warning(msg)
            warnings.warn(msg, EigenvalueStagnation, stacklevel=2)

        metrics = Metrics(
            iterations=iterations,
            converged=converged,
            final_ndof=mesh.num_dofs,
            k_eff=k_eff,
            wall_time_seconds=time.time() - time_start,
        )
        log.info(f"K_EFF = {k_eff:.6f} ({iterations} iterations, converged={converged})")
        return EigenResult(k_eff, iterations, converged, history, metrics, time_series)
