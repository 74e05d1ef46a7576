"""Tests for the Newton solver."""

import numpy as np
import pytest

import hpfem.newton
from hpfem import (
    DiscreteProblem,
    LinearSolveFailure,
    LinearSystem,
    NewtonNonConvergence,
    NewtonSolver,
    first_order_mesh,
    first_order_problem,
)
from hpfem.interpolation import calc_error_exact


class RecordingSystem(LinearSystem):
    instances = []

    def __init__(self, backend="splu"):
        super().__init__(backend)
        RecordingSystem.instances.append(self)


@pytest.fixture
def recording(monkeypatch):
    RecordingSystem.instances = []
    monkeypatch.setattr(hpfem.newton, "LinearSystem", RecordingSystem)
    return RecordingSystem


class TestNewtonSolver:
    """Newton iteration on a fixed mesh."""

    @pytest.mark.parametrize("n_elem,p_init", [(1, 1), (5, 1), (8, 3)])
    def test_linear_problem_one_iteration(self, linear_case, n_elem, p_init):
        problem = first_order_problem(linear_case.f, linear_case.dfdy)
        mesh = first_order_mesh(0.0, 2.0, n_elem, 1.0, p_init)
        result = NewtonSolver(problem, tol=1e-8).solve(mesh)
        assert result.converged
        assert result.iterations == 1
        assert result.residual_norm < 1e-8
        assert result.ndof == mesh.num_dofs

    def test_nonlinear_problem(self, quadratic_problem, quadratic_exact):
        mesh = first_order_mesh(0.0, 10.0, 20, 1.0, p_init=3)
        result = NewtonSolver(quadratic_problem, tol=1e-10).solve(mesh)
        assert result.converged
        assert 1 < result.iterations < 20
        assert calc_error_exact("L2", mesh, quadratic_exact) < 1e-3

    def test_solution_written_to_mesh(self, quadratic_problem, coarse_mesh):
        before = coarse_mesh.solution_to_vector()
        NewtonSolver(quadratic_problem).solve(coarse_mesh)
        after = coarse_mesh.solution_to_vector()
        assert not np.allclose(before, after)
        # Dirichlet value is untouched
        assert coarse_mesh.elements[0].coeffs[0, 0, 0] == 1.0

    def test_forced_first_iteration(self, linear_case):
        """A converged start still performs one Newton step."""
        problem = first_order_problem(linear_case.f, linear_case.dfdy)
        mesh = first_order_mesh(0.0, 1.0, 4, 1.0, p_init=2)
        NewtonSolver(problem).solve(mesh)
        result = NewtonSolver(problem).solve(mesh)
        assert result.iterations == 1

    def test_iteration_cap(self, quadratic_problem, coarse_mesh, recording):
        with pytest.raises(NewtonNonConvergence) as excinfo:
            NewtonSolver(quadratic_problem, tol=1e-12, max_iter=1).solve(coarse_mesh)
        assert excinfo.value.iterations == 1
        assert excinfo.value.residual_norm > 1e-12
        assert len(recording.instances) == 1
        assert recording.instances[0].released

    def test_linear_solve_failure(self, coarse_mesh, recording):
        dp = DiscreteProblem()
        dp.add_matrix_form(0, 0, lambda data, u, du, v, dv: 0.0 * u * v)
        dp.add_vector_form(0, lambda data, v, dv: v)
        with pytest.raises(LinearSolveFailure):
            NewtonSolver(dp).solve(coarse_mesh)
        assert recording.instances[0].released

    def test_one_handle_per_solve(self, quadratic_problem, coarse_mesh, recording):
        NewtonSolver(quadratic_problem).solve(coarse_mesh)
        assert len(recording.instances) == 1
        assert recording.instances[0].released

    def test_invalid_settings(self, quadratic_problem):
        with pytest.raises(ValueError):
            NewtonSolver(quadratic_problem, tol=0.0)
        with pytest.raises(ValueError):
            NewtonSolver(quadratic_problem, max_iter=0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
