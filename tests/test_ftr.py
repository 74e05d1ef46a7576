"""Tests for fast trial refinement error estimation."""

import numpy as np
import pytest

from hpfem import FTRErrorEstimator, NewtonSolver, RefElementPair, first_order_mesh, first_order_problem
from hpfem.interpolation import calc_error_estimate, calc_error_exact


class TestTrialMesh:
    """Local refinement of a copy of the coarse mesh."""

    @pytest.mark.parametrize(
        "mode,n_replacing,degrees",
        [("hp", 2, [2, 2]), ("h", 2, [1, 1]), ("p", 1, [2])],
    )
    def test_modes(self, quadratic_problem, solved_coarse_mesh, mode, n_replacing, degrees):
        ftr = FTRErrorEstimator(quadratic_problem, trial_mode=mode)
        mesh_ref, n = ftr.trial_mesh(solved_coarse_mesh, 2)
        assert n == n_replacing
        assert [e.p for e in mesh_ref.elements[2 : 2 + n]] == degrees
        assert mesh_ref.n_active_elem == 4 + n
        # Coarse mesh untouched
        assert solved_coarse_mesh.n_active_elem == 5
        assert np.all(solved_coarse_mesh.degrees == 1)

    def test_depth(self, quadratic_problem, solved_coarse_mesh):
        ftr = FTRErrorEstimator(quadratic_problem, trial_mode="hp")
        mesh_ref, n = ftr.trial_mesh(solved_coarse_mesh, 0, depth=2)
        assert n == 4
        assert [e.p for e in mesh_ref.elements[:4]] == [3, 3, 3, 3]
        assert np.allclose(mesh_ref.vertices[:5], [0.0, 0.5, 1.0, 1.5, 2.0])

    def test_max_degree_cap(self, quadratic_problem, solved_coarse_mesh):
        ftr = FTRErrorEstimator(quadratic_problem, trial_mode="hp", max_degree=1)
        mesh_ref, _ = ftr.trial_mesh(solved_coarse_mesh, 0)
        assert np.all(mesh_ref.degrees == 1)

    def test_invalid_settings(self, quadratic_problem):
        with pytest.raises(ValueError):
            FTRErrorEstimator(quadratic_problem, trial_mode="q")
        with pytest.raises(ValueError):
            FTRErrorEstimator(quadratic_problem, norm="Linf")


class TestEstimate:
    """Error indicators and reference pairs."""

    def test_estimate(self, quadratic_problem, solved_coarse_mesh):
        ftr = FTRErrorEstimator(quadratic_problem)
        error, pair = ftr.estimate(solved_coarse_mesh, 1)
        assert error > 0
        assert isinstance(pair, RefElementPair)
        assert pair.is_split
        assert np.isclose(pair.x1, 2.0) and np.isclose(pair.x2, 4.0)

    def test_p_trial_pair(self, quadratic_problem, solved_coarse_mesh):
        ftr = FTRErrorEstimator(quadratic_problem, trial_mode="p")
        _, pair = ftr.estimate(solved_coarse_mesh, 3)
        assert not pair.is_split
        assert pair.elements[0].p == 2

    def test_exact_coarse_solution(self):
        """y' = 0 is solved exactly by linears, so every indicator vanishes."""
        problem = first_order_problem(lambda y, x: 0.0 * y, lambda y, x: 0.0 * y)
        mesh = first_order_mesh(0.0, 1.0, 3, 2.0)
        NewtonSolver(problem).solve(mesh)
        errors, _ = FTRErrorEstimator(problem).estimate_all(mesh)
        assert np.all(errors < 1e-12)

    def test_estimate_all(self, quadratic_problem, solved_coarse_mesh):
        ftr = FTRErrorEstimator(quadratic_problem)
        errors, pairs = ftr.estimate_all(solved_coarse_mesh)
        assert errors.shape == (5,)
        assert sorted(pairs) == [0, 1, 2, 3, 4]
        assert np.all(errors >= 0)
        # Steepest decay near the initial condition
        assert np.argmax(errors) == 0

        errors2, pairs2 = ftr.estimate_all(solved_coarse_mesh)
        assert pairs2 is not pairs
        assert np.allclose(errors, errors2)

    def test_pairs_are_copies(self, quadratic_problem, solved_coarse_mesh):
        ftr = FTRErrorEstimator(quadratic_problem)
        _, pair = ftr.estimate(solved_coarse_mesh, 0)
        pair.elements[0].coeffs[:] = 0.0
        _, pair2 = ftr.estimate(solved_coarse_mesh, 0)
        assert np.any(pair2.elements[0].coeffs != 0.0)


class TestRefinementDepth:
    """Indicator behaviour under deeper trial refinement (symmetric problem)."""

    def test_energy_error_non_increasing(self, reaction_diffusion):
        dp, exact, mesh = reaction_diffusion
        NewtonSolver(dp, tol=1e-10).solve(mesh)
        ftr = FTRErrorEstimator(dp, norm="H1", tol=1e-10)

        for element_id in range(mesh.n_active_elem):
            true_errors = [calc_error_exact("H1", mesh, exact)]
            for depth in (1, 2, 3):
                _, mesh_ref, _ = ftr.solve_trial(mesh, element_id, depth)
                true_errors.append(calc_error_exact("H1", mesh_ref, exact))
            assert all(b <= a + 1e-12 for a, b in zip(true_errors[:-1], true_errors[1:]))

    def test_indicator_bounded_by_true_error(self, reaction_diffusion):
        dp, exact, mesh = reaction_diffusion
        NewtonSolver(dp, tol=1e-10).solve(mesh)
        coarse_error = calc_error_exact("H1", mesh, exact)
        ftr = FTRErrorEstimator(dp, norm="H1", tol=1e-10)

        for depth in (1, 2, 3):
            error, _, replacing = ftr.solve_trial(mesh, 1, depth)
            assert error <= coarse_error + 1e-12
            assert np.isclose(replacing[0].x1, mesh.elements[1].x1)
            assert np.isclose(replacing[-1].x2, mesh.elements[1].x2)

    @pytest.mark.parametrize("element_id", [0, 1, 2, 3])
    def test_global_indicator_gap_non_increasing(self, reaction_diffusion, element_id):
        """
        With nested trial spaces and the energy (H1) norm,
        ||u - u_c||^2 = ||u - u_t||^2 + ||u_t - u_c||^2, so deeper trial
        refinement moves the indicator monotonically up to the coarse error.
        """
        dp, exact, mesh = reaction_diffusion
        NewtonSolver(dp, tol=1e-10).solve(mesh)
        coarse_error = calc_error_exact("H1", mesh, exact)
        ftr = FTRErrorEstimator(dp, norm="H1", tol=1e-10, indicator="global")

        gaps = []
        for depth in (1, 2, 3):
            error, mesh_ref, _ = ftr.solve_trial(mesh, element_id, depth)
            trial_error = calc_error_exact("H1", mesh_ref, exact)
            assert error <= coarse_error + 1e-12
            assert np.isclose(error**2 + trial_error**2, coarse_error**2, rtol=1e-3)
            gaps.append(coarse_error - error)
        assert all(b <= a + 1e-10 for a, b in zip(gaps[:-1], gaps[1:]))

    def test_element_indicator_below_global(self, reaction_diffusion):
        dp, _, mesh = reaction_diffusion
        NewtonSolver(dp, tol=1e-10).solve(mesh)
        local = FTRErrorEstimator(dp, norm="H1", tol=1e-10)
        whole = FTRErrorEstimator(dp, norm="H1", tol=1e-10, indicator="global")

        for depth in (1, 2, 3):
            error_local, _, _ = local.solve_trial(mesh, 2, depth)
            error_global, _, _ = whole.solve_trial(mesh, 2, depth)
            assert 0.0 < error_local <= error_global + 1e-12


class TestGlobalIndicator:
    """Whole-domain FTR indicator on the first-order problem."""

    def test_matches_error_estimate(self, quadratic_problem, solved_coarse_mesh):
        ftr = FTRErrorEstimator(quadratic_problem, indicator="global")
        error, mesh_ref, _ = ftr.solve_trial(solved_coarse_mesh, 1)
        total, per_elem = calc_error_estimate("L2", solved_coarse_mesh, mesh_ref)
        assert np.isclose(error, total)
        assert per_elem.shape == (mesh_ref.n_active_elem,)

    def test_bounds_element_indicator(self, quadratic_problem, solved_coarse_mesh):
        errors_local, _ = FTRErrorEstimator(quadratic_problem).estimate_all(solved_coarse_mesh)
        errors_global, pairs = FTRErrorEstimator(quadratic_problem, indicator="global").estimate_all(
            solved_coarse_mesh
        )
        assert np.all(errors_local <= errors_global + 1e-12)
        assert sorted(pairs) == [0, 1, 2, 3, 4]

    def test_unknown_indicator(self, quadratic_problem):
        with pytest.raises(ValueError):
            FTRErrorEstimator(quadratic_problem, indicator="patch")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
