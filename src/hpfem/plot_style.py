import logging
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np

from .datastructures import Mesh, TimeSeries
from .interpolation import evaluate_solution

log = logging.getLogger(__name__)

FIGURES_DIR = Path("figures")
STYLE_PATH = Path(__file__).resolve().parent / "hpfem.mplstyle"


def setup_style():
    """Apply shared matplotlib style."""
    if STYLE_PATH.exists():
        plt.style.use(STYLE_PATH)
    plt.rcParams.setdefault("savefig.bbox", "tight")


def save_figure(fig, filename: str | Path):
    """
    Save figure to the specified path.
    """
    filepath = Path(filename)
    filepath.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(filepath, bbox_inches="tight")
    plt.close(fig)
    log.info(f"Saved: {filepath}")
    return filepath


def plot_solution(ax, mesh: Mesh, slot: int = 0, eq: int = 0, n_points: int = 20, **kwargs):
    """Plot one solution component, sampling every element separately."""
    for k, e in enumerate(mesh.active_elements()):
        x = np.linspace(e.x1, e.x2, n_points)
        u, _ = e.evaluate(x, slot)
        ax.plot(x, u[eq], color=kwargs.get("color", "C0"), label=kwargs.get("label") if k == 0 else None)
    return ax


def plot_mesh(ax, mesh: Mesh):
    """Show element end points and polynomial degrees as a step plot."""
    VX = mesh.vertices
    ax.stairs(mesh.degrees, VX, color="k")
    ax.plot(VX, np.zeros_like(VX), "|", color="k", markersize=10)
    ax.set_xlabel("$x$")
    ax.set_ylabel("$p$")
    return ax


def plot_convergence(ax, time_series: TimeSeries):
    """Max FTR error (and exact relative error in %) against DOFs."""
    ax.semilogy(time_series.ndof, time_series.max_ftr_error, "k--", label="max FTR error")
    if time_series.err_exact_rel:
        ax.semilogy(time_series.ndof, time_series.err_exact_rel, "ko-", label="exact error [%]")
    ax.set_xlabel("Degrees of Freedom")
    ax.set_ylabel("Error")
    ax.set_title("Convergence History")
    ax.legend()
    return ax


class NullSink:
    """Output sink that ignores every checkpoint."""

    def on_iteration(self, iteration: int, mesh: Mesh, element_errors, max_ftr_error: float, err_exact_rel=None):
        pass

    def on_finish(self, mesh: Mesh, time_series: TimeSeries, exact=None):
        pass


class ConvergencePlotter(NullSink):
    """
    Save solution and convergence figures for an adaptive run.

    Parameters
    ----------
    output_dir : str or Path
        Directory for the figures
    every_iteration : bool
        Also save the solution and element errors after each outer iteration
    """

    def __init__(self, output_dir: str | Path = FIGURES_DIR, every_iteration: bool = False):
        self.output_dir = Path(output_dir)
        self.every_iteration = every_iteration
        self.saved: list[Path] = []
        setup_style()

    def on_iteration(self, iteration, mesh, element_errors, max_ftr_error, err_exact_rel=None):
        if not self.every_iteration:
            return
        fig, (ax_u, ax_err) = plt.subplots(2, 1, sharex=True, figsize=(6, 5))
        plot_solution(ax_u, mesh)
        ax_u.set_ylabel("$u$")
        ax_u.set_title(f"Adaptivity step {iteration} ({mesh.num_dofs} DOF)")
        ax_err.stairs(np.asarray(element_errors), mesh.vertices, color="k")
        ax_err.axhline(max_ftr_error, color="C3", linestyle=":")
        ax_err.set_yscale("log")
        ax_err.set_xlabel("$x$")
        ax_err.set_ylabel("FTR error")
        self.saved.append(save_figure(fig, self.output_dir / f"step_{iteration:03d}.png"))

    def on_finish(self, mesh, time_series, exact=None):
        fig, (ax_u, ax_p) = plt.subplots(2, 1, sharex=True, figsize=(6, 5))
        plot_solution(ax_u, mesh, label="FE solution")
        if exact is not None:
            x = np.linspace(mesh.a, mesh.b, 400)
            u_ex, _ = exact(x)
            ax_u.plot(x, np.asarray(u_ex)[0], "k:", label="exact")
        ax_u.set_ylabel("$u$")
        ax_u.legend()
        plot_mesh(ax_p, mesh)
        self.saved.append(save_figure(fig, self.output_dir / "solution.png"))

        if time_series.ndof:
            fig, ax = plt.subplots(figsize=(6, 4))
            plot_convergence(ax, time_series)
            self.saved.append(save_figure(fig, self.output_dir / "conv_dof.png"))


def sample_solution(mesh: Mesh, n_points: int = 500, slot: int = 0):
    """Solution values on an equidistant grid, for tables and artifacts."""
    x = np.linspace(mesh.a, mesh.b, n_points)
    u, du = evaluate_solution(mesh, x, slot)
    return x, u, du
