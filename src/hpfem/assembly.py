"""Weak-form registry and assembly of the Newton system J(Y) dY = -F(Y)."""

from typing import Callable, NamedTuple

import numpy as np
from scipy.sparse import coo_matrix, csr_matrix

from .datastructures import ANY_MARKER, LEFT, RIGHT, Mesh
from .elements import element_quadrature, lobatto_basis


class FormData(NamedTuple):
    """
    Solution data handed to weak-form callbacks.

    For volumetric forms the arrays live on the element quadrature points
    (last axis); for surface forms that axis is dropped.

    Attributes
    ----------
    x : ndarray
        Physical points (quadrature points, or the boundary point)
    weights : ndarray or None
        Physical quadrature weights (None for surface forms)
    u_prev, du_prev : ndarray (n_eq, ...)
        Current Newton iterate and its derivative
    marker : int
        Material marker of the element
    u_slots, du_slots : ndarray (n_slots, n_eq, ...)
        All stored solutions (slot 0 equals u_prev)
    """

    x: np.ndarray
    weights: np.ndarray | None
    u_prev: np.ndarray
    du_prev: np.ndarray
    marker: int
    u_slots: np.ndarray
    du_slots: np.ndarray


# fn(data, u, du, v, dv) -> integrand (volumetric) or boundary term (surface)
MatrixForm = Callable[..., np.ndarray]
# fn(data, v, dv) -> integrand (volumetric) or boundary term (surface)
VectorForm = Callable[..., np.ndarray]


class DiscreteProblem:
    """
    Collection of weak forms that assembles the Jacobian and residual.

    Volumetric forms return point-wise integrands; the assembler multiplies by
    the quadrature weights. Test functions `v, dv` carry the row axis and
    trial functions `u, du` the column axis, so a matrix form written as
    ``du * v - dfdy(u_prev) * u * v`` broadcasts to the full element block.
    """

    def __init__(self):
        self._matrix_forms: list[tuple[int, int, MatrixForm, int]] = []
        self._vector_forms: list[tuple[int, VectorForm, int]] = []
        self._matrix_forms_surf: list[tuple[int, int, MatrixForm, int]] = []
        self._vector_forms_surf: list[tuple[int, VectorForm, int]] = []

    def add_matrix_form(self, i: int, j: int, fn: MatrixForm, marker: int = ANY_MARKER) -> None:
        self._matrix_forms.append((i, j, fn, marker))

    def add_vector_form(self, i: int, fn: VectorForm, marker: int = ANY_MARKER) -> None:
        self._vector_forms.append((i, fn, marker))

    def add_matrix_form_surf(self, i: int, j: int, fn: MatrixForm, boundary: int) -> None:
        _check_boundary(boundary)
        self._matrix_forms_surf.append((i, j, fn, boundary))

    def add_vector_form_surf(self, i: int, fn: VectorForm, boundary: int) -> None:
        _check_boundary(boundary)
        self._vector_forms_surf.append((i, fn, boundary))

    def assemble(self, mesh: Mesh, y: np.ndarray | None = None) -> tuple[csr_matrix, np.ndarray]:
        """
        Assemble the Jacobian matrix and residual vector on the mesh.

        Parameters
        ----------
        mesh : Mesh
            Mesh with assigned DOFs
        y : ndarray, optional
            Coefficient vector; written into slot 0 before assembly

        Returns
        -------
        J : csr_matrix (ndof, ndof)
        F : ndarray (ndof,)
        """
        if y is not None:
            mesh.vector_to_solution(y)
        ndof = mesh.num_dofs
        F = np.zeros(ndof)
        rows, cols, vals = [], [], []

        for e in mesh.active_elements():
            x, w, V, dV = element_quadrature(e.x1, e.x2, e.p)
            u_slots = e.coeffs @ V
            du_slots = e.coeffs @ dV
            data = FormData(x, w, u_slots[0], du_slots[0], e.marker, u_slots, du_slots)
            nb, nq = V.shape

            for i, fn, marker in self._vector_forms:
                if marker not in (ANY_MARKER, e.marker):
                    continue
                integrand = np.broadcast_to(fn(data, V, dV), (nb, nq))
                _scatter_vector(F, e.dofs[i], integrand @ w)

            if not self._matrix_forms:
                continue
            v, dv = V[:, None, :], dV[:, None, :]
            u, du = V[None, :, :], dV[None, :, :]
            for i, j, fn, marker in self._matrix_forms:
                if marker not in (ANY_MARKER, e.marker):
                    continue
                integrand = np.broadcast_to(fn(data, u, du, v, dv), (nb, nb, nq))
                _scatter_matrix(rows, cols, vals, e.dofs[i], e.dofs[j], integrand @ w)

        self._assemble_surface(mesh, F, rows, cols, vals)

        if rows:
            J = coo_matrix(
                (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
                shape=(ndof, ndof),
            ).tocsr()
        else:
            J = csr_matrix((ndof, ndof))
        return J, F

    def _assemble_surface(self, mesh: Mesh, F, rows, cols, vals) -> None:
        for boundary in (LEFT, RIGHT):
            vec_forms = [(i, fn) for i, fn, b in self._vector_forms_surf if b == boundary]
            mat_forms = [(i, j, fn) for i, j, fn, b in self._matrix_forms_surf if b == boundary]
            if not vec_forms and not mat_forms:
                continue

            e = mesh.elements[0] if boundary == LEFT else mesh.elements[-1]
            xi = -1.0 if boundary == LEFT else 1.0
            V, dV = lobatto_basis([xi], e.p)
            V, dV = V[:, 0], dV[:, 0] * (2.0 / e.length)
            u_slots, du_slots = e.coeffs @ V, e.coeffs @ dV
            x = np.array([e.x1 if boundary == LEFT else e.x2])
            data = FormData(x, None, u_slots[0], du_slots[0], e.marker, u_slots, du_slots)
            nb = e.p + 1

            for i, fn in vec_forms:
                _scatter_vector(F, e.dofs[i], np.broadcast_to(fn(data, V, dV), (nb,)))
            for i, j, fn in mat_forms:
                block = np.broadcast_to(
                    fn(data, V[None, :], dV[None, :], V[:, None], dV[:, None]), (nb, nb)
                )
                _scatter_matrix(rows, cols, vals, e.dofs[i], e.dofs[j], block)


def _check_boundary(boundary: int) -> None:
    if boundary not in (LEFT, RIGHT):
        raise ValueError(f"Unknown boundary marker {boundary}. Use LEFT or RIGHT")


def _scatter_vector(F: np.ndarray, dofs: np.ndarray, local: np.ndarray) -> None:
    mask = dofs >= 0
    np.add.at(F, dofs[mask], local[mask])


def _scatter_matrix(rows, cols, vals, dofs_i, dofs_j, block) -> None:
    rmask = dofs_i >= 0
    cmask = dofs_j >= 0
    R, C = np.meshgrid(dofs_i[rmask], dofs_j[cmask], indexing="ij")
    rows.append(R.ravel())
    cols.append(C.ravel())
    vals.append(block[np.ix_(rmask, cmask)].ravel())
