"""Weak forms, meshes and exact solutions of the shipped problems.

First-order ODE
    y' = f(y, x) on (a, b), y(a) = y_a, solved with Newton's method;
    f may be nonlinear in y but must be differentiable.

Neutron diffusion eigenproblem
    -(D u')' + Sa u = 1/k nSf u in a slab of three materials (inner core,
    outer core, reflector). Reflection (zero Neumann) on the left, vacuum
    modelled by the albedo condition albedo u + D u' = 0 on the right.
"""

from dataclasses import dataclass, field
from typing import Callable

import numpy as np

from .assembly import DiscreteProblem
from .boundary import add_albedo, add_neumann
from .datastructures import LEFT, RIGHT, Mesh
from .mesh import line_mesh, multi_material_mesh

# ============================================================================
# First-order ODE y' = f(y, x)
# ============================================================================


@dataclass(frozen=True)
class FirstOrderCase:
    """Right-hand side f(y, x), its y-derivative, and optionally the exact solution."""

    f: Callable
    dfdy: Callable
    exact: Callable | None = None  # (x, a, y_a) -> (y, dy/dx)


def _quadratic_exact(x, a, y_a):
    # y' = -y^2, y(a) = y_a  =>  y = 1 / (x - a + 1/y_a)
    s = x - a + 1.0 / y_a
    return 1.0 / s, -1.0 / (s * s)


def _linear_exact(x, a, y_a):
    y = y_a * np.exp(-(x - a))
    return y, -y


FIRST_ORDER_CASES = {
    "quadratic_decay": FirstOrderCase(
        f=lambda y, x: -y * y,
        dfdy=lambda y, x: -2.0 * y,
        exact=_quadratic_exact,
    ),
    "linear_decay": FirstOrderCase(
        f=lambda y, x: -y,
        dfdy=lambda y, x: -np.ones_like(y),
        exact=_linear_exact,
    ),
}


def first_order_problem(f: Callable, dfdy: Callable, eq: int = 0) -> DiscreteProblem:
    """
    Weak forms of y' = f(y, x).

    Residual:  int (y' - f(y, x)) v dx
    Jacobian:  int (du - dfdy(y, x) u) v dx
    """

    def jacobian(data, u, du, v, dv):
        return du * v - dfdy(data.u_prev[eq], data.x) * u * v

    def residual(data, v, dv):
        return (data.du_prev[eq] - f(data.u_prev[eq], data.x)) * v

    dp = DiscreteProblem()
    dp.add_matrix_form(eq, eq, jacobian)
    dp.add_vector_form(eq, residual)
    return dp


def first_order_mesh(a: float, b: float, n_elem: int, y_a: float, p_init: int = 1) -> Mesh:
    """Equidistant coarse mesh with the initial condition as left Dirichlet value."""
    mesh = line_mesh(a, b, n_elem, p_init)
    mesh.set_bc_left_dirichlet(0, y_a)
    mesh.assign_dofs()
    return mesh


def first_order_exact(case: FirstOrderCase, a: float, y_a: float):
    """Exact-solution oracle x -> (values, derivatives) with shape (1, len(x))."""
    if case.exact is None:
        return None

    def exact(x):
        y, dy = case.exact(np.asarray(x, dtype=np.float64), a, y_a)
        return np.atleast_2d(y), np.atleast_2d(dy)

    return exact


# ============================================================================
# One-group neutron diffusion in multi-material slabs
# ============================================================================


@dataclass
class Materials:
    """Per-marker cross sections (index = material marker)."""

    D: list[float] = field(default_factory=lambda: [0.65, 0.75, 1.15])  # Diffusion coefficient
    Sa: list[float] = field(default_factory=lambda: [0.12, 0.10, 0.01])  # Absorption
    nSf: list[float] = field(default_factory=lambda: [0.185, 0.15, 0.0])  # Fission yield nu*Sigma_f
    chi: float = 1.0  # Fission spectrum
    nu: float = 2.43  # Mean number of neutrons released by fission
    eps: float = 3.204e-11  # Mean energy release of each fission [J]

    def __post_init__(self):
        if not len(self.D) == len(self.Sa) == len(self.nSf):
            raise ValueError("D, Sa and nSf must have one entry per material")

    @property
    def n_mat(self) -> int:
        return len(self.D)


class NeutronicsProblem:
    """
    Weak forms of the source iteration step for the neutron diffusion eigenproblem.

    The fission source is read from solution slot 1 and scaled by the current
    `k_eff`, which the power iteration updates between Newton solves.

    Parameters
    ----------
    materials : Materials
    k_eff : float
        Initial eigenvalue approximation
    neumann_left : float
        Prescribed flux on the left (0 = total reflection)
    albedo_right : float
        Albedo coefficient on the right (vacuum)
    """

    def __init__(
        self,
        materials: Materials | None = None,
        k_eff: float = 1.0,
        neumann_left: float = 0.0,
        albedo_right: float = 0.5,
    ):
        self.materials = materials if materials is not None else Materials()
        self.k_eff = k_eff
        self.neumann_left = neumann_left
        self.albedo_right = albedo_right
        self.discrete_problem = self._build()

    def _build(self) -> DiscreteProblem:
        dp = DiscreteProblem()
        for m in range(self.materials.n_mat):
            dp.add_matrix_form(0, 0, self._jacobian(m), marker=m)
            dp.add_vector_form(0, self._residual(m), marker=m)
        add_neumann(dp, LEFT, self.neumann_left)
        add_albedo(dp, RIGHT, self.albedo_right)
        return dp

    def _jacobian(self, m: int):
        D, Sa = self.materials.D[m], self.materials.Sa[m]

        def jacobian(data, u, du, v, dv):
            return D * du * dv + Sa * u * v

        return jacobian

    def _residual(self, m: int):
        mat = self.materials
        D, Sa, nSf = mat.D[m], mat.Sa[m], mat.nSf[m]

        def residual(data, v, dv):
            source = mat.chi * nSf * data.u_slots[1, 0] / self.k_eff
            return D * data.du_prev[0] * dv + (Sa * data.u_prev[0] - source) * v

        return residual


def neutronics_mesh(
    interfaces=(0.0, 50.0, 100.0, 125.0),
    poly_orders=(3, 3, 3),
    subdivisions=(2, 2, 1),
    init_val: float = 1.0,
) -> Mesh:
    """Slab mesh with two solution slots and the initial guess u = init_val."""
    n_mat = len(interfaces) - 1
    mesh = multi_material_mesh(interfaces, poly_orders, list(range(n_mat)), subdivisions, n_eq=1, n_slots=2)
    mesh.assign_dofs()
    mesh.set_vertex_values(init_val, slot=0)
    return mesh
