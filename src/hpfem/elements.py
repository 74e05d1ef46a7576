"""Hierarchic shape functions and Gauss quadrature on the reference interval.

The basis on [-1, 1] is the Lobatto (integrated Legendre) family:

    l_0 = (1 - xi) / 2,   l_1 = (1 + xi) / 2,
    l_k = (P_k - P_{k-2}) / sqrt(2 (2k - 1)),   k >= 2

with derivatives l_k' = sqrt((2k - 1) / 2) P_{k-1}. The bubbles l_k, k >= 2,
vanish at both end points, so raising the degree of an element only appends
coefficients and leaves the existing ones untouched.
"""

import numpy as np
from numba import njit
from numpy.polynomial.legendre import leggauss

# Gauss-Legendre rules are cached by number of points
_GAUSS_QUAD = {}


def gauss_quadrature(n: int) -> tuple[np.ndarray, np.ndarray]:
    """Return (points, weights) of the n-point Gauss-Legendre rule on [-1, 1]."""
    if n < 1:
        raise ValueError(f"Quadrature needs at least one point, got n={n}")
    if n not in _GAUSS_QUAD:
        _GAUSS_QUAD[n] = leggauss(n)
    return _GAUSS_QUAD[n]


def quadrature_order(p: int) -> int:
    """Number of Gauss points used on an element of degree p.

    Integrates products of three degree-p functions exactly, which covers
    quadratic nonlinearities in the weak forms.
    """
    return (3 * p) // 2 + 2


@njit
def _lobatto_table(xi, p):
    """Values and derivatives of l_0..l_p at the points xi."""
    n = xi.shape[0]
    vals = np.empty((p + 1, n))
    ders = np.empty((p + 1, n))
    leg = np.empty((p + 1, n))

    for j in range(n):
        x = xi[j]
        leg[0, j] = 1.0
        if p >= 1:
            leg[1, j] = x
        for k in range(2, p + 1):
            leg[k, j] = ((2 * k - 1) * x * leg[k - 1, j] - (k - 1) * leg[k - 2, j]) / k

        vals[0, j] = 0.5 * (1.0 - x)
        ders[0, j] = -0.5
        if p >= 1:
            vals[1, j] = 0.5 * (1.0 + x)
            ders[1, j] = 0.5
        for k in range(2, p + 1):
            vals[k, j] = (leg[k, j] - leg[k - 2, j]) / np.sqrt(2.0 * (2 * k - 1))
            ders[k, j] = np.sqrt((2 * k - 1) / 2.0) * leg[k - 1, j]

    return vals, ders


def lobatto_basis(xi, p: int) -> tuple[np.ndarray, np.ndarray]:
    """
    Evaluate the hierarchic basis of degree p on the reference interval.

    Parameters
    ----------
    xi : array_like
        Reference coordinates in [-1, 1]
    p : int
        Polynomial degree (>= 1)

    Returns
    -------
    vals, ders : ndarray, shape (p + 1, len(xi))
        Basis values and reference derivatives d/dxi
    """
    if p < 1:
        raise ValueError(f"Polynomial degree must be >= 1, got p={p}")
    xi = np.ascontiguousarray(np.atleast_1d(xi), dtype=np.float64)
    return _lobatto_table(xi, int(p))


def to_reference(x, x1: float, x2: float) -> np.ndarray:
    """Map physical points in [x1, x2] to [-1, 1]."""
    return (2.0 * np.asarray(x, dtype=np.float64) - x1 - x2) / (x2 - x1)


def element_quadrature(x1: float, x2: float, p: int, n_quad: int | None = None):
    """
    Physical quadrature and basis tables for an element [x1, x2] of degree p.

    Returns
    -------
    x : ndarray (n_quad,)
        Physical quadrature points
    w : ndarray (n_quad,)
        Physical weights (sum to x2 - x1)
    vals : ndarray (p + 1, n_quad)
        Basis values
    ders : ndarray (p + 1, n_quad)
        Physical derivatives d/dx
    """
    if n_quad is None:
        n_quad = quadrature_order(p)
    xi, wi = gauss_quadrature(n_quad)
    jac = 0.5 * (x2 - x1)
    vals, ders = lobatto_basis(xi, p)
    x = x1 + jac * (xi + 1.0)
    return x, wi * jac, vals, ders / jac


def eval_expansion(coeffs: np.ndarray, x1: float, x2: float, x) -> tuple[np.ndarray, np.ndarray]:
    """
    Evaluate a Lobatto expansion on [x1, x2].

    Parameters
    ----------
    coeffs : ndarray (n_eq, p + 1)
        Coefficients per equation
    x : array_like
        Physical points inside [x1, x2]

    Returns
    -------
    u, dudx : ndarray (n_eq, len(x))
    """
    p = coeffs.shape[-1] - 1
    vals, ders = lobatto_basis(to_reference(x, x1, x2), p)
    return coeffs @ vals, (coeffs @ ders) * (2.0 / (x2 - x1))


def lobatto_projection(
    x1: float,
    x2: float,
    p: int,
    func,
    left: np.ndarray,
    right: np.ndarray,
    h1: bool = False,
    n_quad: int | None = None,
) -> np.ndarray:
    """
    Projection-based interpolation onto the degree-p Lobatto space of [x1, x2].

    The vertex coefficients are fixed to `left` and `right`; the bubble
    coefficients minimise the L2 (or full H1) norm of the remainder.

    Parameters
    ----------
    func : callable
        x -> (values, derivatives), each of shape (n_eq, len(x))
    left, right : ndarray (n_eq,)
        Vertex values
    h1 : bool
        Project in the H1 norm instead of L2

    Returns
    -------
    coeffs : ndarray (n_eq, p + 1)
    """
    if n_quad is None:
        n_quad = quadrature_order(p) + 4
    x, w, vals, ders = element_quadrature(x1, x2, p, n_quad)
    left = np.asarray(left, dtype=np.float64)
    right = np.asarray(right, dtype=np.float64)

    coeffs = np.zeros((left.shape[0], p + 1))
    coeffs[:, 0] = left
    coeffs[:, 1] = right
    if p < 2:
        return coeffs

    u, du = func(x)
    g = u - (np.outer(left, vals[0]) + np.outer(right, vals[1]))
    dg = du - (np.outer(left, ders[0]) + np.outer(right, ders[1]))

    B, dB = vals[2:], ders[2:]
    gram = (B * w) @ B.T
    rhs = (g * w) @ B.T
    if h1:
        gram += (dB * w) @ dB.T
        rhs += (dg * w) @ dB.T
    coeffs[:, 2:] = np.linalg.solve(gram, rhs.T).T
    return coeffs
