import numpy as np

from .datastructures import NORMS, Element, Mesh
from .elements import element_quadrature, gauss_quadrature, quadrature_order


def check_norm(norm: str) -> str:
    if norm not in NORMS:
        raise ValueError(f"Unknown norm: {norm}. Use 'L2' or 'H1'")
    return norm


def evaluate_solution(mesh: Mesh, x, slot: int = 0) -> tuple[np.ndarray, np.ndarray]:
    """
    Evaluate the piecewise polynomial solution at arbitrary points in [a, b].

    Returns
    -------
    u, dudx : ndarray (n_eq, len(x))
    """
    x = np.atleast_1d(np.asarray(x, dtype=np.float64))
    VX = mesh.vertices
    # Points on interior vertices go to the element on their right
    idx = np.clip(np.searchsorted(VX, x, side="right") - 1, 0, mesh.n_active_elem - 1)

    u = np.zeros((mesh.n_eq, len(x)))
    du = np.zeros((mesh.n_eq, len(x)))
    for e_idx in np.unique(idx):
        mask = idx == e_idx
        u[:, mask], du[:, mask] = mesh.elements[e_idx].evaluate(x[mask], slot)
    return u, du


def _norm_squared(diff: np.ndarray, ddiff: np.ndarray, w: np.ndarray, norm: str) -> float:
    val = float(np.sum((diff * diff) @ w))
    if norm == "H1":
        val += float(np.sum((ddiff * ddiff) @ w))
    return val


def difference_norm_squared(coarse: Element, fine: list[Element], norm: str, slot: int = 0) -> float:
    """
    Squared norm of (fine - coarse) over the fine elements.

    The fine elements must lie inside the coarse element.
    """
    check_norm(norm)
    total = 0.0
    for ef in fine:
        p = max(ef.p, coarse.p)
        x, w, _, _ = element_quadrature(ef.x1, ef.x2, p, quadrature_order(p) + 2)
        uf, duf = ef.evaluate(x, slot)
        uc, duc = coarse.evaluate(x, slot)
        total += _norm_squared(uf - uc, duf - duc, w, norm)
    return total


def calc_error_estimate(norm: str, mesh: Mesh, mesh_ref: Mesh, slot: int = 0) -> tuple[float, np.ndarray]:
    """
    Norm of the difference between a reference solution and the coarse one.

    Returns
    -------
    total : float
        Global error
    ref_elem_errors : ndarray
        Error contribution of each reference element
    """
    check_norm(norm)
    errors = np.zeros(mesh_ref.n_active_elem)
    for k, ef in enumerate(mesh_ref.active_elements()):
        x, w, _, _ = element_quadrature(ef.x1, ef.x2, ef.p, quadrature_order(ef.p) + 2)
        uf, duf = ef.evaluate(x, slot)
        uc, duc = evaluate_solution(mesh, x, slot)
        errors[k] = _norm_squared(uf - uc, duf - duc, w, norm)
    return float(np.sqrt(errors.sum())), np.sqrt(errors)


def calc_error_exact(norm: str, mesh: Mesh, exact, slot: int = 0) -> float:
    """
    Global error of the mesh solution with respect to an exact solution.

    Parameters
    ----------
    exact : callable
        x -> (values, derivatives), arrays of shape (n_eq, len(x))
    """
    check_norm(norm)
    total = 0.0
    for e in mesh.active_elements():
        x, w, _, _ = element_quadrature(e.x1, e.x2, e.p, quadrature_order(e.p) + 8)
        u, du = e.evaluate(x, slot)
        u_ex, du_ex = exact(x)
        total += _norm_squared(u - np.asarray(u_ex), du - np.asarray(du_ex), w, norm)
    return float(np.sqrt(total))


def calc_solution_norm(norm: str, exact, a: float, b: float, subdivision: int = 500, order: int = 20) -> float:
    """Norm of an exact solution on [a, b] using a fine subdivision and Gauss quadrature."""
    check_norm(norm)
    xi, wi = gauss_quadrature(order)
    VX = np.linspace(a, b, subdivision + 1)
    h = np.diff(VX)
    x = (VX[:-1, None] + 0.5 * h[:, None] * (xi[None, :] + 1.0)).ravel()
    w = (0.5 * h[:, None] * wi[None, :]).ravel()
    u, du = exact(x)
    return float(np.sqrt(_norm_squared(np.asarray(u), np.asarray(du), w, norm)))
