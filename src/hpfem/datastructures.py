from __future__ import annotations

import copy
from dataclasses import dataclass, field

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from .elements import eval_expansion, lobatto_projection

# Boundary markers for surface forms
LEFT, RIGHT = 0, 1

# Marker that matches every element in the form registry
ANY_MARKER = -1

# Refinement modes (trial refinement and adaptivity)
REFINEMENT_MODES = ("h", "p", "hp")

# Error norms
NORMS = ("L2", "H1")

# Region over which an FTR indicator measures trial - coarse
FTR_INDICATORS = ("element", "global")


@dataclass
class Element:
    """
    One active element of a 1D hp mesh.

    Attributes
    ----------
    x1, x2 : float
        End points, x1 < x2
    p : int
        Polynomial degree
    coeffs : ndarray (n_slots, n_eq, p + 1)
        Lobatto coefficients per solution slot and equation
    marker : int
        Material marker
    level : int
        Number of spatial splits since the initial mesh
    dofs : ndarray (n_eq, p + 1)
        Global DOF index per coefficient, -1 for Dirichlet vertices
    """

    x1: float
    x2: float
    p: int
    coeffs: NDArray[np.float64]
    marker: int = 0
    level: int = 0
    dofs: NDArray[np.int64] = field(default=None, repr=False)

    @property
    def n_eq(self) -> int:
        return self.coeffs.shape[1]

    @property
    def n_slots(self) -> int:
        return self.coeffs.shape[0]

    @property
    def length(self) -> float:
        return self.x2 - self.x1

    @property
    def midpoint(self) -> float:
        return 0.5 * (self.x1 + self.x2)

    def copy(self) -> Element:
        return copy.deepcopy(self)

    def evaluate(self, x, slot: int = 0) -> tuple[np.ndarray, np.ndarray]:
        """Values and derivatives (n_eq, len(x)) of one solution slot."""
        return eval_expansion(self.coeffs[slot], self.x1, self.x2, x)

    def with_degree(self, p_new: int) -> Element:
        """Copy of the element with degree p_new (hierarchic: pad or truncate)."""
        coeffs = np.zeros((self.n_slots, self.n_eq, p_new + 1))
        n = min(p_new, self.p) + 1
        coeffs[:, :, :n] = self.coeffs[:, :, :n]
        return Element(self.x1, self.x2, p_new, coeffs, self.marker, self.level)

    def split(self, p_left: int, p_right: int) -> tuple[Element, Element]:
        """
        Split at the midpoint into two sons of degrees p_left, p_right.

        The sons reproduce the parent solution exactly when their degrees are
        at least the parent degree, which gives Newton a good initial guess.
        """
        xm = self.midpoint
        sons = []
        for x1, x2, p in ((self.x1, xm, p_left), (xm, self.x2, p_right)):
            coeffs = np.zeros((self.n_slots, self.n_eq, p + 1))
            for slot in range(self.n_slots):
                left, _ = self.evaluate([x1], slot)
                right, _ = self.evaluate([x2], slot)
                coeffs[slot] = lobatto_projection(
                    x1, x2, p,
                    lambda x, s=slot: self.evaluate(x, s),
                    left[:, 0], right[:, 0],
                )
            sons.append(Element(x1, x2, p, coeffs, self.marker, self.level + 1))
        return sons[0], sons[1]


@dataclass
class RefElementPair:
    """Trial-mesh element(s) that replaced one coarse element during FTR."""

    elements: tuple[Element, ...]

    def __post_init__(self) -> None:
        if len(self.elements) not in (1, 2):
            raise ValueError(
                f"A reference pair holds one or two elements, got {len(self.elements)}"
            )

    @property
    def is_split(self) -> bool:
        return len(self.elements) == 2

    @property
    def x1(self) -> float:
        return self.elements[0].x1

    @property
    def x2(self) -> float:
        return self.elements[-1].x2

    def evaluate(self, x, slot: int = 0) -> tuple[np.ndarray, np.ndarray]:
        """Evaluate the piecewise reference solution at points inside [x1, x2]."""
        x = np.atleast_1d(np.asarray(x, dtype=np.float64))
        if not self.is_split:
            return self.elements[0].evaluate(x, slot)

        n_eq = self.elements[0].n_eq
        u = np.empty((n_eq, len(x)))
        du = np.empty((n_eq, len(x)))
        in_left = x < self.elements[0].x2
        for e, mask in ((self.elements[0], in_left), (self.elements[1], ~in_left)):
            if np.any(mask):
                u[:, mask], du[:, mask] = e.evaluate(x[mask], slot)
        return u, du


class Mesh:
    """
    Ordered list of active elements covering [a, b] with C0 DOF numbering.

    Parameters
    ----------
    elements : list[Element]
        Contiguous elements, left to right
    n_eq : int
        Number of equations (components of the solution)
    n_slots : int
        Number of stored solutions; slot 0 is the Newton iterate
    """

    def __init__(self, elements: list[Element], n_eq: int = 1, n_slots: int = 1):
        if not elements:
            raise ValueError("Mesh needs at least one element")
        self.elements = list(elements)
        self.n_eq = n_eq
        self.n_slots = n_slots
        self.bc_left: dict[int, float] = {}
        self.bc_right: dict[int, float] = {}
        self._ndof = 0
        self._check_contiguous()

    def _check_contiguous(self) -> None:
        for left, right in zip(self.elements[:-1], self.elements[1:]):
            if not np.isclose(left.x2, right.x1, rtol=0.0, atol=1e-12 * max(1.0, abs(left.x2))):
                raise ValueError(
                    f"Elements [{left.x1}, {left.x2}] and [{right.x1}, {right.x2}] "
                    "are not contiguous"
                )

    # -------------------------------------------------------------------------
    # Geometry
    # -------------------------------------------------------------------------

    @property
    def a(self) -> float:
        return self.elements[0].x1

    @property
    def b(self) -> float:
        return self.elements[-1].x2

    @property
    def n_active_elem(self) -> int:
        return len(self.elements)

    @property
    def vertices(self) -> NDArray[np.float64]:
        return np.array([e.x1 for e in self.elements] + [self.elements[-1].x2])

    @property
    def degrees(self) -> NDArray[np.int64]:
        return np.array([e.p for e in self.elements], dtype=np.int64)

    def active_elements(self) -> list[Element]:
        """Active elements in left-to-right order; the index is the element id."""
        return self.elements

    def clone(self) -> Mesh:
        """Deep copy including all solution slots and DOF numbering."""
        return copy.deepcopy(self)

    # -------------------------------------------------------------------------
    # Boundary conditions and DOFs
    # -------------------------------------------------------------------------

    def set_bc_left_dirichlet(self, eq: int, value: float) -> None:
        self.bc_left[eq] = float(value)

    def set_bc_right_dirichlet(self, eq: int, value: float) -> None:
        self.bc_right[eq] = float(value)

    def assign_dofs(self) -> int:
        """
        Enumerate DOFs left to right and apply Dirichlet vertex values.

        Vertex DOFs are shared between neighbours; bubbles are local.

        Returns
        -------
        int
            Number of DOFs
        """
        count = 0
        last = len(self.elements) - 1
        prev_right = np.full(self.n_eq, -1, dtype=np.int64)

        for idx, e in enumerate(self.elements):
            e.dofs = np.empty((self.n_eq, e.p + 1), dtype=np.int64)
            for eq in range(self.n_eq):
                if idx == 0:
                    if eq in self.bc_left:
                        e.dofs[eq, 0] = -1
                        e.coeffs[:, eq, 0] = self.bc_left[eq]
                    else:
                        e.dofs[eq, 0] = count
                        count += 1
                else:
                    e.dofs[eq, 0] = prev_right[eq]

                if idx == last and eq in self.bc_right:
                    e.dofs[eq, 1] = -1
                    e.coeffs[:, eq, 1] = self.bc_right[eq]
                else:
                    e.dofs[eq, 1] = count
                    count += 1
                prev_right[eq] = e.dofs[eq, 1]

                n_bubbles = e.p - 1
                e.dofs[eq, 2:] = np.arange(count, count + n_bubbles)
                count += n_bubbles

        self._ndof = count
        return count

    @property
    def num_dofs(self) -> int:
        return self._ndof

    # -------------------------------------------------------------------------
    # Coefficient vector <-> element coefficients
    # -------------------------------------------------------------------------

    def solution_to_vector(self, slot: int = 0) -> NDArray[np.float64]:
        """Flatten the coefficients of one slot into a DOF vector."""
        y = np.zeros(self._ndof)
        for e in self.elements:
            mask = e.dofs >= 0
            y[e.dofs[mask]] = e.coeffs[slot][mask]
        return y

    def vector_to_solution(self, y: NDArray[np.float64], slot: int = 0) -> None:
        """Write a DOF vector back into the element coefficients of one slot."""
        y = np.asarray(y, dtype=np.float64)
        if y.shape != (self._ndof,):
            raise ValueError(f"Expected vector of length {self._ndof}, got shape {y.shape}")
        for e in self.elements:
            mask = e.dofs >= 0
            e.coeffs[slot][mask] = y[e.dofs[mask]]

    def copy_slot(self, src: int, dst: int) -> None:
        for e in self.elements:
            e.coeffs[dst] = e.coeffs[src]

    def set_vertex_values(self, value: float, slot: int = 0, eq: int = 0) -> None:
        """Set all free vertex coefficients of one equation to a constant."""
        for idx, e in enumerate(self.elements):
            if not (idx == 0 and eq in self.bc_left):
                e.coeffs[slot, eq, 0] = value
            if not (idx == len(self.elements) - 1 and eq in self.bc_right):
                e.coeffs[slot, eq, 1] = value

    def multiply(self, c: float, slot: int = 0) -> None:
        for e in self.elements:
            e.coeffs[slot] *= c

    # -------------------------------------------------------------------------
    # Refinement
    # -------------------------------------------------------------------------

    def refine_element(self, element_id: int, mode: str, max_degree: int = 10) -> int:
        """
        Refine one element in place; DOFs must be reassigned afterwards.

        Parameters
        ----------
        element_id : int
            Index of the active element
        mode : str
            "p" raises the degree by one, "h" splits keeping the degree,
            "hp" splits and raises the degree of both sons
        max_degree : int
            Degree cap; "p" at the cap falls back to a split

        Returns
        -------
        int
            Number of elements that replaced the original (1 or 2)
        """
        if not 0 <= element_id < len(self.elements):
            raise IndexError(
                f"Element id {element_id} out of range for {len(self.elements)} elements"
            )
        if mode not in REFINEMENT_MODES:
            raise ValueError(f"Unknown refinement mode: {mode}. Use 'h', 'p' or 'hp'")

        e = self.elements[element_id]
        if mode == "p" and e.p < max_degree:
            self.elements[element_id] = e.with_degree(e.p + 1)
            return 1

        p_son = min(e.p + 1, max_degree) if mode == "hp" else e.p
        self.elements[element_id : element_id + 1] = list(e.split(p_son, p_son))
        return 2

    def __repr__(self) -> str:
        return (
            f"Mesh(a={self.a}, b={self.b}, n_elem={self.n_active_elem}, "
            f"ndof={self._ndof}, n_eq={self.n_eq})"
        )


# ============================================================================
# Parameters (Input Configuration) - logged to MLflow as params
# ============================================================================


@dataclass
class Parameters:
    """Settings shared by all drivers."""

    name: str = ""
    linear_solver: str = "splu"

    def to_mlflow(self) -> dict:
        """Convert to MLflow-compatible params dict."""
        return {
            k: (int(v) if isinstance(v, bool) else v) for k, v in self.__dict__.items()
        }

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([self.to_mlflow()])


@dataclass
class AdaptivityParameters(Parameters):
    """Settings of the FTR-driven hp-adaptive Newton loop."""

    name: str = "first_order"
    tol_err_ftr: float = 1e-2  # Stop when max FTR error drops below
    newton_tol_coarse: float = 1e-8
    newton_tol_ref: float = 1e-8
    newton_max_iter: int = 150
    adapt_mode: str = "hp"
    threshold: float = 0.7  # Refine elements with error >= threshold * max
    norm: str = "L2"
    trial_mode: str = "hp"
    max_degree: int = 10
    max_adapt_iterations: int = 50
    max_ndof: int = 2000  # Stop before solving a larger mesh
    indicator: str = "element"  # FTR error over the refined element or the whole mesh

    def __post_init__(self):
        if self.adapt_mode not in REFINEMENT_MODES:
            raise ValueError(f"Unknown adapt_mode: {self.adapt_mode}. Use 'h', 'p' or 'hp'")
        if self.trial_mode not in REFINEMENT_MODES:
            raise ValueError(f"Unknown trial_mode: {self.trial_mode}. Use 'h', 'p' or 'hp'")
        if self.norm not in NORMS:
            raise ValueError(f"Unknown norm: {self.norm}. Use 'L2' or 'H1'")
        if self.tol_err_ftr <= 0:
            raise ValueError(f"tol_err_ftr must be positive, got {self.tol_err_ftr}")
        if self.max_adapt_iterations < 1:
            raise ValueError(
                f"max_adapt_iterations must be >= 1, got {self.max_adapt_iterations}"
            )
        if self.max_ndof < 1:
            raise ValueError(f"max_ndof must be >= 1, got {self.max_ndof}")
        if self.indicator not in FTR_INDICATORS:
            raise ValueError(f"Unknown indicator: {self.indicator}. Use 'element' or 'global'")


@dataclass
class EigenParameters(Parameters):
    """Settings of the source (power) iteration."""

    name: str = "neutronics"
    newton_tol: float = 1e-5
    newton_max_iter: int = 150
    max_si: int = 1000
    tol_si: float = 1e-8
    k_eff_init: float = 1.0

    def __post_init__(self):
        if self.max_si < 1:
            raise ValueError(f"max_si must be >= 1, got {self.max_si}")
        if self.tol_si <= 0:
            raise ValueError(f"tol_si must be positive, got {self.tol_si}")
        if self.k_eff_init <= 0:
            raise ValueError(f"k_eff_init must be positive, got {self.k_eff_init}")


# ============================================================================
# Metrics (Output Results) - logged to MLflow as metrics
# ============================================================================


@dataclass
class Metrics:
    """Driver results computed during/after solving."""

    iterations: int = 0
    converged: bool = False
    final_ndof: int = 0
    max_ftr_error: float = float("inf")
    err_exact_rel: float = float("inf")  # Percent
    k_eff: float = float("inf")
    wall_time_seconds: float = 0.0

    def to_mlflow(self) -> dict:
        """Convert to MLflow-compatible dict (bools as int, skip inf)."""
        return {
            k: (int(v) if isinstance(v, bool) else v)
            for k, v in self.__dict__.items()
            if v != float("inf")  # Skip unset values
        }

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([self.to_mlflow()])


# ============================================================================
# TimeSeries (Convergence History) - logged to MLflow as step metrics
# ============================================================================


@dataclass
class TimeSeries:
    """Convergence history (one value per outer iteration)."""

    iteration: list[int] = field(default_factory=list)
    ndof: list[int] = field(default_factory=list)
    max_ftr_error: list[float] = field(default_factory=list)
    err_exact_rel: list[float] = field(default_factory=list)  # Percent
    k_eff: list[float] = field(default_factory=list)

    def to_dataframe(self) -> pd.DataFrame:
        """Convert to DataFrame with one row per iteration."""
        return pd.DataFrame({k: v for k, v in self.__dict__.items() if v})
