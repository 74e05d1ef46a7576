"""
hp-FEM driver - unified entry point for the adaptive and eigenvalue runs.

Usage:
    uv run python main.py
    uv run python main.py problem=neutronics
    uv run python main.py problem.params.adapt_mode=h problem.params.norm=H1
"""

import logging
import os
import tempfile
from pathlib import Path

import hydra
import mlflow
import pandas as pd
from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

from hpfem import (
    FIRST_ORDER_CASES,
    AdaptiveDriver,
    AdaptivityParameters,
    ConvergencePlotter,
    EigenParameters,
    Materials,
    NeutronicsProblem,
    NullSink,
    PowerIteration,
    first_order_exact,
    first_order_mesh,
    first_order_problem,
    neutronics_mesh,
    normalize_to_power,
)
from hpfem.plot_style import sample_solution

load_dotenv()

log = logging.getLogger(__name__)


def get_experiment_name(cfg: DictConfig) -> str:
    """Build full experiment name with optional prefix."""
    name = cfg.experiment_name
    prefix = cfg.mlflow.get("project_prefix", "")
    if prefix and not name.startswith("/"):
        return f"{prefix}/{name}"
    return name


def setup_mlflow(cfg: DictConfig) -> str:
    """Setup MLflow tracking and return experiment name."""
    tracking_uri = cfg.mlflow.get("tracking_uri", "./mlruns")
    if str(cfg.mlflow.get("mode", "")).lower() in ("files", "local"):
        os.environ.pop("MLFLOW_TRACKING_URI", None)
    os.environ["MLFLOW_TRACKING_URI"] = str(tracking_uri)
    mlflow.set_tracking_uri(tracking_uri)

    experiment_name = get_experiment_name(cfg)
    mlflow.set_experiment(experiment_name)
    return experiment_name


def output_dir() -> Path:
    return Path(hydra.core.hydra_config.HydraConfig.get().runtime.output_dir)


def log_solution_table(mesh, name: str = "solution.csv"):
    """Sample the final solution and attach it to the active run."""
    x, u, du = sample_solution(mesh)
    df = pd.DataFrame({"x": x, "u": u[0], "dudx": du[0]})
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / name
        df.to_csv(path, index=False)
        mlflow.log_artifact(str(path))


def run_adaptive(cfg: DictConfig):
    """Solve y' = f(y, x) with FTR-driven hp-adaptivity."""
    pcfg = cfg.problem
    params = AdaptivityParameters(**OmegaConf.to_container(pcfg.params))
    mlflow.log_params(params.to_mlflow())
    case = FIRST_ORDER_CASES[pcfg.case]
    m = pcfg.mesh

    problem = first_order_problem(case.f, case.dfdy)
    mesh = first_order_mesh(m.a, m.b, m.n_elem, m.y_a, m.p_init)
    exact = first_order_exact(case, m.a, m.y_a)
    sink = ConvergencePlotter(output_dir() / "figures") if cfg.plot else NullSink()

    driver = AdaptiveDriver(problem, params, exact=exact, sink=sink)
    result = driver.run(mesh)

    mlflow.log_metrics(result.metrics.to_mlflow())
    log_solution_table(result.mesh)
    for path in getattr(sink, "saved", []):
        mlflow.log_artifact(str(path))
    log.info(
        f"Done: {result.metrics.iterations} iter, {result.metrics.final_ndof} DOF, "
        f"converged={result.metrics.converged}, time={result.metrics.wall_time_seconds:.2f}s"
    )
    return result


def run_eigen(cfg: DictConfig):
    """Power iteration for the slab reactor, then normalize the flux to the given power."""
    pcfg = cfg.problem
    params = EigenParameters(**OmegaConf.to_container(pcfg.params))
    mlflow.log_params(params.to_mlflow())
    materials = Materials(**OmegaConf.to_container(pcfg.materials))
    problem = NeutronicsProblem(
        materials,
        k_eff=params.k_eff_init,
        neumann_left=pcfg.boundary.neumann_left,
        albedo_right=pcfg.boundary.albedo_right,
    )
    m = pcfg.mesh
    mesh = neutronics_mesh(m.interfaces, m.poly_orders, m.subdivisions, m.init_val)

    result = PowerIteration(problem, params).run(mesh)
    mlflow.log_metrics(result.metrics.to_mlflow())

    c = normalize_to_power(mesh, pcfg.power, materials)
    mlflow.log_metric("power_normalization", c)
    log_solution_table(mesh, "flux.csv")
    log.info(f"Done: K_EFF = {result.k_eff:.6f}, {result.iterations} iterations, converged={result.converged}")
    return result


@hydra.main(config_path="conf", config_name="config", version_base=None)
def main(cfg: DictConfig) -> float | None:
    """Main entry point.

    Returns
    -------
    float
        Final max FTR error (adaptive) or k_eff (eigen).
    """
    log.info(f"Problem: {cfg.problem.name}, driver={cfg.problem.driver}")
    log.info(f"MLflow experiment: {setup_mlflow(cfg)}")

    with mlflow.start_run(run_name=cfg.problem.name, tags={"driver": cfg.problem.driver}):
        mlflow.log_dict(OmegaConf.to_container(cfg, resolve=True), "config.yaml")

        if cfg.problem.driver == "adaptive":
            return run_adaptive(cfg).metrics.max_ftr_error
        if cfg.problem.driver == "eigen":
            return run_eigen(cfg).k_eff
        raise ValueError(f"Unknown driver: {cfg.problem.driver}. Use 'adaptive' or 'eigen'")


if __name__ == "__main__":
    main()
