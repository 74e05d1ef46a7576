"""Tests for the power iteration on the three-material slab reactor."""

import numpy as np
import pytest

from hpfem import (
    EigenParameters,
    EigenvalueStagnation,
    Materials,
    NeutronicsProblem,
    PowerIteration,
    calc_fission_yield,
    line_mesh,
    neutronics_mesh,
    normalize_to_power,
)


@pytest.fixture
def materials():
    return Materials(D=[0.65, 0.75, 1.15], Sa=[0.12, 0.10, 0.01], nSf=[0.185, 0.15, 0.0])


class TestFissionYield:
    """Integral functionals of the flux."""

    def test_constant_flux(self, materials):
        mesh = neutronics_mesh(init_val=1.0)
        # 0.185 * 50 + 0.15 * 50 + 0 * 25
        assert np.isclose(calc_fission_yield(mesh, materials.nSf), 16.75)

    def test_normalize_to_power(self, materials):
        mesh = neutronics_mesh(init_val=2.0)
        c = normalize_to_power(mesh, 160.0, materials)
        power = materials.eps * calc_fission_yield(mesh, materials.nSf) / materials.nu
        assert np.isclose(power, 160.0)
        assert c > 0

    def test_normalize_zero_flux(self, materials):
        mesh = neutronics_mesh(init_val=0.0)
        with pytest.raises(ValueError):
            normalize_to_power(mesh, 160.0, materials)

    def test_materials_mismatch(self):
        with pytest.raises(ValueError):
            Materials(D=[1.0], Sa=[0.1, 0.2], nSf=[0.0])


class TestPowerIteration:
    """Source iteration for k_eff."""

    def test_converges(self, materials):
        params = EigenParameters(max_si=1000, tol_si=1e-8)
        problem = NeutronicsProblem(materials, k_eff=params.k_eff_init)
        mesh = neutronics_mesh()
        result = PowerIteration(problem, params).run(mesh)

        assert result.converged
        assert result.iterations < 1000
        assert len(result.history) == result.iterations
        assert 0.5 < result.k_eff < 2.0
        assert abs(result.history[-1] - result.history[-2]) / result.k_eff < 1e-8
        assert problem.k_eff == result.k_eff

        # Successive changes shrink once the transient has died out
        diffs = np.abs(np.diff(result.history))
        tail = diffs[len(diffs) // 2 :]
        assert np.all(np.diff(tail) < 0)

    def test_flux_is_positive(self, materials):
        params = EigenParameters()
        mesh = neutronics_mesh()
        PowerIteration(NeutronicsProblem(materials), params).run(mesh)
        x = np.linspace(0.0, 125.0, 50)
        u = np.concatenate([e.evaluate(x[(x >= e.x1) & (x <= e.x2)])[0][0] for e in mesh.elements])
        assert np.all(u > 0)

    def test_backends_agree(self, materials):
        k = []
        for backend in ("splu", "dense"):
            params = EigenParameters(tol_si=1e-10)
            result = PowerIteration(NeutronicsProblem(materials), params, backend).run(neutronics_mesh())
            k.append(result.k_eff)
        assert np.isclose(k[0], k[1], rtol=1e-8)

    def test_stagnation_warning(self, materials):
        params = EigenParameters(max_si=3)
        mesh = neutronics_mesh()
        with pytest.warns(EigenvalueStagnation):
            result = PowerIteration(NeutronicsProblem(materials), params).run(mesh)
        assert not result.converged
        assert result.iterations == 3
        assert result.metrics.k_eff == result.k_eff
        assert result.time_series.k_eff == result.history

    def test_needs_source_slot(self, materials):
        mesh = line_mesh(0.0, 125.0, 5, p_init=2)
        mesh.assign_dofs()
        with pytest.raises(ValueError):
            PowerIteration(NeutronicsProblem(materials), EigenParameters()).run(mesh)

    def test_invalid_parameters(self):
        with pytest.raises(ValueError):
            EigenParameters(max_si=0)
        with pytest.raises(ValueError):
            EigenParameters(tol_si=-1.0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
