"""FTR-driven hp-adaptive Newton loop.

Each outer iteration solves on the coarse mesh, estimates the error of every
element by fast trial refinement, and either stops (max FTR error below the
tolerance) or refines the mesh and solves again.
"""

import logging
import time
from dataclasses import dataclass

import mlflow
import numpy as np

from .amr import AdaptivityController
from .assembly import DiscreteProblem
from .datastructures import AdaptivityParameters, Mesh, Metrics, RefElementPair, TimeSeries
from .ftr import FTRErrorEstimator
from .interpolation import calc_error_exact, calc_solution_norm
from .newton import NewtonSolver
from .plot_style import NullSink

log = logging.getLogger(__name__)


@dataclass
class AdaptiveResult:
    """Final mesh (with solution) and the statistics of an adaptive run."""

    mesh: Mesh
    metrics: Metrics
    time_series: TimeSeries


class AdaptiveDriver:
    """
    Drive Newton solves and hp-refinement until the FTR error tolerance is met.

    Parameters
    ----------
    problem : DiscreteProblem
        Weak forms of the nonlinear problem
    params : AdaptivityParameters
        Tolerances, adaptivity settings and linear backend
    exact : callable, optional
        x -> (values, derivatives); used only to report the true relative error
    sink : NullSink, optional
        Receives the mesh after each outer iteration and at the end

    Attributes
    ----------
    mesh : Mesh
        Mesh of the last completed coarse solve; still valid if a later
        iteration aborts with an exception
    ref_pairs : dict[int, RefElementPair]
        Reference pairs of the last FTR sweep
    """

    def __init__(self, problem: DiscreteProblem, params: AdaptivityParameters, exact=None, sink=None):
        self.params = params
        self.exact = exact
        self.sink = sink if sink is not None else NullSink()
        self.newton = NewtonSolver(
            problem,
            tol=params.newton_tol_coarse,
            max_iter=params.newton_max_iter,
            linear_solver=params.linear_solver,
        )
        self.estimator = FTRErrorEstimator(
            problem,
            norm=params.norm,
            tol=params.newton_tol_ref,
            max_iter=params.newton_max_iter,
            linear_solver=params.linear_solver,
            trial_mode=params.trial_mode,
            max_degree=params.max_degree,
            indicator=params.indicator,
        )
        self.controller = AdaptivityController(
            norm=params.norm,
            adapt_mode=params.adapt_mode,
            threshold=params.threshold,
            max_degree=params.max_degree,
        )
        self.mesh: Mesh | None = None
        self.ref_pairs: dict[int, RefElementPair] = {}

    def run(self, mesh: Mesh) -> AdaptiveResult:
        """
        Run the adaptive loop starting from `mesh` (DOFs must be assigned).

        Raises
        ------
        NewtonNonConvergence, LinearSolveFailure
            From the coarse or any trial solve; `self.mesh` keeps the last
            successfully solved mesh
        """
        params = self.params
        metrics = Metrics()
        time_series = TimeSeries()

        exact_norm = None
        if self.exact is not None:
            exact_norm = calc_solution_norm(params.norm, self.exact, mesh.a, mesh.b)

        time_start = time.time()
        mlflow_time = 0.0

        for it in range(1, params.max_adapt_iterations + 1):
            log.info(f"============ Adaptivity step {it} ============")
            log.info(f"N_dof = {mesh.num_dofs}")

            # CoarseSolve
            self.newton.solve(mesh)
            self.mesh = mesh

            # Estimate
            errors, ref_pairs = self.estimator.estimate_all(mesh)
            self.ref_pairs = ref_pairs

            # CheckGlobal
            max_ftr_error = float(np.max(errors))
            err_exact_rel = None
            if self.exact is not None:
                err_exact = calc_error_exact(params.norm, mesh, self.exact)
                err_exact_rel = 100.0 * err_exact / exact_norm
                log.info(f"Relative error (exact) = {err_exact_rel:g} %")
            log.info(f"Max FTR error = {max_ftr_error:g}")

            time_series.iteration.append(it)
            time_series.ndof.append(mesh.num_dofs)
            time_series.max_ftr_error.append(max_ftr_error)
            if err_exact_rel is not None:
                time_series.err_exact_rel.append(err_exact_rel)

            if mlflow.active_run():
                t_log_start = time.time()
                live_metrics = {"ndof": mesh.num_dofs, "max_ftr_error": max_ftr_error}
                if err_exact_rel is not None:
                    live_metrics["err_exact_rel"] = err_exact_rel
                mlflow.log_metrics(live_metrics, step=it)
                mlflow_time += time.time() - t_log_start

            self.sink.on_iteration(it, mesh, errors, max_ftr_error, err_exact_rel)

            metrics.iterations = it
            metrics.final_ndof = mesh.num_dofs
            metrics.max_ftr_error = max_ftr_error
            if err_exact_rel is not None:
                metrics.err_exact_rel = err_exact_rel

            if max_ftr_error < params.tol_err_ftr:
                metrics.converged = True
                break

            if it == params.max_adapt_iterations:
                log.warning(
                    f"Adaptivity did not reach tol_err_ftr={params.tol_err_ftr:g} in "
                    f"{it} iterations (max FTR error {max_ftr_error:g})"
                )
                break

            # Refine
            mesh = self.controller.refine(mesh, errors, ref_pairs)
            if mesh.num_dofs > params.max_ndof:
                log.warning(
                    f"Adaptivity stopped: refined mesh has {mesh.num_dofs} DOF > max_ndof={params.max_ndof} "
                    f"(max FTR error {max_ftr_error:g})"
                )
                break

        metrics.wall_time_seconds = time.time() - time_start - mlflow_time
        log.info(
            f"Adaptivity finished in {metrics.wall_time_seconds:.2f} seconds: "
            f"{metrics.iterations} iterations, {metrics.final_ndof} DOF, converged={metrics.converged}"
        )

        self.sink.on_finish(self.mesh, time_series, self.exact)
        return AdaptiveResult(self.mesh, metrics, time_series)
