"""Surface forms for natural boundary conditions.

For a diffusion operator -(D u')' the weak form carries the boundary term
-[D u' v] evaluated at the end points. The helpers here return callbacks
for `DiscreteProblem.add_*_form_surf` that replace D u' by its prescribed
value.
"""

from .assembly import DiscreteProblem
from .datastructures import LEFT, RIGHT


def neumann_vector_form(flux: float):
    """
    Residual term for a prescribed outward flux -D du/dn = flux.

    At either end point the boundary term -[D u' v] reduces to flux * v.
    """

    def residual_surf(data, v, dv):
        return flux * v

    return residual_surf


def albedo_forms(albedo: float, eq: int = 0):
    """
    Jacobian and residual terms for the Newton (albedo) condition
    albedo * u + D du/dn = 0, which gives the boundary term albedo * u * v.
    """

    def jacobian_surf(data, u, du, v, dv):
        return albedo * u * v

    def residual_surf(data, v, dv):
        return albedo * data.u_prev[eq] * v

    return jacobian_surf, residual_surf


def add_neumann(dp: DiscreteProblem, boundary: int, flux: float, eq: int = 0) -> None:
    dp.add_vector_form_surf(eq, neumann_vector_form(flux), boundary)


def add_albedo(dp: DiscreteProblem, boundary: int, albedo: float, eq: int = 0) -> None:
    jacobian_surf, residual_surf = albedo_forms(albedo, eq)
    dp.add_matrix_form_surf(eq, eq, jacobian_surf, boundary)
    dp.add_vector_form_surf(eq, residual_surf, boundary)


__all__ = ["LEFT", "RIGHT", "neumann_vector_form", "albedo_forms", "add_neumann", "add_albedo"]
