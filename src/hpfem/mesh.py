import numpy as np

from .datastructures import Element, Mesh


def line_mesh(
    a: float,
    b: float,
    n_elem: int,
    p_init: int = 1,
    n_eq: int = 1,
    n_slots: int = 1,
    marker: int = 0,
) -> Mesh:
    """Create an equidistant 1D mesh on [a, b] with uniform degree p_init."""
    if n_elem < 1:
        raise ValueError(f"n_elem must be >= 1, got {n_elem}")
    VX = np.linspace(a, b, n_elem + 1)
    elements = [
        Element(VX[i], VX[i + 1], p_init, np.zeros((n_slots, n_eq, p_init + 1)), marker)
        for i in range(n_elem)
    ]
    return Mesh(elements, n_eq=n_eq, n_slots=n_slots)


def multi_material_mesh(
    interfaces,
    poly_orders,
    markers,
    subdivisions,
    n_eq: int = 1,
    n_slots: int = 1,
) -> Mesh:
    """
    Create a mesh from macroelements with their own material and subdivision.

    Parameters
    ----------
    interfaces : sequence of float
        Macroelement end points (n_mat + 1 values, increasing)
    poly_orders : sequence of int
        Initial polynomial degree per macroelement
    markers : sequence of int
        Material marker per macroelement
    subdivisions : sequence of int
        Number of equidistant elements per macroelement
    """
    interfaces = np.asarray(interfaces, dtype=np.float64)
    n_mat = len(interfaces) - 1
    if not (len(poly_orders) == len(markers) == len(subdivisions) == n_mat):
        raise ValueError(
            f"Expected {n_mat} entries in poly_orders, markers and subdivisions"
        )
    if np.any(np.diff(interfaces) <= 0):
        raise ValueError("Interfaces must be strictly increasing")

    elements = []
    for m in range(n_mat):
        VX = np.linspace(interfaces[m], interfaces[m + 1], subdivisions[m] + 1)
        p = poly_orders[m]
        for i in range(subdivisions[m]):
            elements.append(
                Element(VX[i], VX[i + 1], p, np.zeros((n_slots, n_eq, p + 1)), markers[m])
            )
    return Mesh(elements, n_eq=n_eq, n_slots=n_slots)
