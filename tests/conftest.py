"""Shared fixtures for the hpfem tests.

Run with: uv run pytest tests -v
"""

import numpy as np
import pytest

from hpfem import (
    FIRST_ORDER_CASES,
    DiscreteProblem,
    NewtonSolver,
    first_order_exact,
    first_order_mesh,
    first_order_problem,
    line_mesh,
)


@pytest.fixture
def quadratic_case():
    """y' = -y^2, exact solution 1 / (x + 1) for y(0) = 1."""
    return FIRST_ORDER_CASES["quadratic_decay"]


@pytest.fixture
def linear_case():
    """y' = -y, exact solution exp(-x) for y(0) = 1."""
    return FIRST_ORDER_CASES["linear_decay"]


@pytest.fixture
def quadratic_problem(quadratic_case):
    return first_order_problem(quadratic_case.f, quadratic_case.dfdy)


@pytest.fixture
def quadratic_exact(quadratic_case):
    return first_order_exact(quadratic_case, 0.0, 1.0)


@pytest.fixture
def coarse_mesh():
    """5 linear elements on [0, 10] with y(0) = 1."""
    return first_order_mesh(0.0, 10.0, 5, 1.0, p_init=1)


@pytest.fixture
def solved_coarse_mesh(quadratic_problem, coarse_mesh):
    NewtonSolver(quadratic_problem, tol=1e-10).solve(coarse_mesh)
    return coarse_mesh


def reaction_diffusion_problem():
    """-u'' + u = f on (0, 1) with exact solution sin(pi x)."""

    def f(x):
        return (1.0 + np.pi**2) * np.sin(np.pi * x)

    def jacobian(data, u, du, v, dv):
        return du * dv + u * v

    def residual(data, v, dv):
        return data.du_prev[0] * dv + (data.u_prev[0] - f(data.x)) * v

    def exact(x):
        x = np.asarray(x, dtype=np.float64)
        return np.atleast_2d(np.sin(np.pi * x)), np.atleast_2d(np.pi * np.cos(np.pi * x))

    dp = DiscreteProblem()
    dp.add_matrix_form(0, 0, jacobian)
    dp.add_vector_form(0, residual)
    return dp, exact


@pytest.fixture
def reaction_diffusion():
    """Problem, exact solution and a coarse mesh with homogeneous Dirichlet ends."""
    dp, exact = reaction_diffusion_problem()
    mesh = line_mesh(0.0, 1.0, 4, p_init=1)
    mesh.set_bc_left_dirichlet(0, 0.0)
    mesh.set_bc_right_dirichlet(0, 0.0)
    mesh.assign_dofs()
    return dp, exact, mesh
