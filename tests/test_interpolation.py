"""Tests for solution evaluation and error norms."""

import numpy as np
import pytest

from hpfem import line_mesh
from hpfem.interpolation import (
    calc_error_estimate,
    calc_error_exact,
    calc_solution_norm,
    evaluate_solution,
)


def linear_exact(x):
    x = np.asarray(x, dtype=np.float64)
    return np.atleast_2d(2.0 * x + 1.0), np.atleast_2d(2.0 * np.ones_like(x))


@pytest.fixture
def linear_mesh():
    """Piecewise linear interpolant of 2x + 1 on [0, 1]."""
    mesh = line_mesh(0.0, 1.0, 4, p_init=2)
    mesh.assign_dofs()
    for e in mesh.elements:
        e.coeffs[0, 0, :2] = 2.0 * np.array([e.x1, e.x2]) + 1.0
    return mesh


class TestEvaluation:
    def test_evaluate_solution(self, linear_mesh):
        x = np.array([0.0, 0.1, 0.25, 0.6, 1.0])
        u, du = evaluate_solution(linear_mesh, x)
        assert np.allclose(u[0], 2.0 * x + 1.0)
        assert np.allclose(du[0], 2.0)


class TestNorms:
    def test_exact_error_vanishes(self, linear_mesh):
        for norm in ("L2", "H1"):
            assert calc_error_exact(norm, linear_mesh, linear_exact) < 1e-13

    def test_exact_error_value(self, linear_mesh):
        """Shifting the solution by 1 gives an L2 error of 1 on [0, 1]."""
        for e in linear_mesh.elements:
            e.coeffs[0, 0, :2] += 1.0
        assert np.isclose(calc_error_exact("L2", linear_mesh, linear_exact), 1.0)
        assert np.isclose(calc_error_exact("H1", linear_mesh, linear_exact), 1.0)

    def test_solution_norm(self):
        # int_0^1 (2x + 1)^2 = 13/3, int_0^1 2^2 = 4
        assert np.isclose(calc_solution_norm("L2", linear_exact, 0.0, 1.0), np.sqrt(13.0 / 3.0))
        assert np.isclose(calc_solution_norm("H1", linear_exact, 0.0, 1.0), np.sqrt(13.0 / 3.0 + 4.0))

    def test_error_estimate(self, linear_mesh):
        ref = linear_mesh.clone()
        ref.refine_element(1, "hp")
        ref.assign_dofs()
        total, per_elem = calc_error_estimate("L2", linear_mesh, ref)
        assert per_elem.shape == (5,)
        assert total < 1e-13

        ref.elements[2].coeffs[0, 0, 2] = 1.0
        total, per_elem = calc_error_estimate("L2", linear_mesh, ref)
        assert np.argmax(per_elem) == 2
        assert np.isclose(total, per_elem[2])

    def test_unknown_norm(self, linear_mesh):
        with pytest.raises(ValueError):
            calc_error_exact("Linf", linear_mesh, linear_exact)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
