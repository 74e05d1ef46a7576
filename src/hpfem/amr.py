"""hp-adaptivity driven by FTR error indicators and reference element pairs."""

import logging
from dataclasses import dataclass

import numpy as np

from .datastructures import REFINEMENT_MODES, Element, Mesh, RefElementPair
from .elements import gauss_quadrature, lobatto_projection, quadrature_order
from .errors import AdaptivityDegenerate
from .interpolation import check_norm

log = logging.getLogger(__name__)


def validate_errors(errors, n_elem: int) -> np.ndarray:
    """Check an error indicator array before it drives a refinement."""
    errors = np.asarray(errors, dtype=np.float64)
    if errors.ndim != 1 or len(errors) != n_elem:
        raise AdaptivityDegenerate(
            f"Expected {n_elem} element errors, got array of shape {errors.shape}"
        )
    if not np.all(np.isfinite(errors)) or np.any(errors < 0):
        raise AdaptivityDegenerate("Element errors must be finite and non-negative")
    if np.max(errors) <= 0.0:
        raise AdaptivityDegenerate(
            "Maximum element error is zero; the global stopping test should have ended the loop"
        )
    return errors


def mark_elements(errors: np.ndarray, threshold: float = 0.7) -> np.ndarray:
    """
    Return indices of elements to refine.

    Every element with error >= threshold * max(errors) is marked; if none
    qualifies (threshold > 1), the element with the largest error is.
    """
    errors = np.asarray(errors, dtype=np.float64)
    marked = np.where(errors >= threshold * np.max(errors))[0]
    if len(marked) == 0:
        marked = np.array([int(np.argmax(errors))])
    return marked


@dataclass
class Candidate:
    """One way of refining an element, built from the reference solution."""

    kind: str
    elements: list[Element]
    error: float
    dofs_added: int

    def criterion(self, err0: float) -> float:
        """Error reduction per added degree of freedom."""
        return (err0 - self.error) / self.dofs_added


class AdaptivityController:
    """
    Select elements by error and refine them in h, p or hp fashion.

    Parameters
    ----------
    norm : str
        "L2" or "H1"; used for candidate projections and errors
    adapt_mode : str
        "hp" (choose per element), "h" (always split), "p" (always raise degree)
    threshold : float
        Elements with error >= threshold * max_error are refined
    max_degree : int
        Degree cap; p-refinement beyond it falls back to a split
    """

    def __init__(self, norm: str = "L2", adapt_mode: str = "hp", threshold: float = 0.7, max_degree: int = 10):
        if adapt_mode not in REFINEMENT_MODES:
            raise ValueError(f"Unknown adaptivity mode: {adapt_mode}. Use 'h', 'p' or 'hp'")
        if threshold < 0:
            raise ValueError(f"Threshold must be non-negative, got {threshold}")
        self.norm = check_norm(norm)
        self.adapt_mode = adapt_mode
        self.threshold = threshold
        self.max_degree = max_degree
        self.last_decisions: dict[int, str] = {}

    def refine(self, mesh: Mesh, element_errors, ref_pairs: dict[int, RefElementPair]) -> Mesh:
        """
        Build the refined mesh.

        Parameters
        ----------
        mesh : Mesh
            Coarse mesh carrying the last solution
        element_errors : array_like (n_active_elem,)
            FTR error indicators
        ref_pairs : dict[int, RefElementPair]
            Reference pairs from the same FTR sweep

        Returns
        -------
        Mesh
            New mesh with assigned DOFs; unmarked elements keep their
            coefficients, refined ones get projections of the reference solution
        """
        errors = validate_errors(element_errors, mesh.n_active_elem)
        marked = set(int(i) for i in mark_elements(errors, self.threshold))
        log.info(f"Refining {len(marked)} of {mesh.n_active_elem} elements ({self.adapt_mode})")

        self.last_decisions = {}
        new_elements: list[Element] = []
        for idx, e in enumerate(mesh.active_elements()):
            if idx not in marked:
                new_elements.append(e.copy())
                continue
            if idx not in ref_pairs:
                raise AdaptivityDegenerate(f"No reference pair for marked element {idx}")
            candidate = self._select(e, ref_pairs[idx])
            self.last_decisions[idx] = candidate.kind
            log.debug(f"Elem [{idx}]: {candidate.kind}-refinement (p={e.p})")
            new_elements.extend(candidate.elements)

        new_mesh = Mesh(new_elements, n_eq=mesh.n_eq, n_slots=mesh.n_slots)
        new_mesh.bc_left = dict(mesh.bc_left)
        new_mesh.bc_right = dict(mesh.bc_right)
        new_mesh.assign_dofs()
        return new_mesh

    def _select(self, e: Element, pair: RefElementPair) -> Candidate:
        can_raise = e.p < self.max_degree
        if self.adapt_mode == "h" or not can_raise:
            return self._h_candidate(e, pair)
        if self.adapt_mode == "p":
            return self._p_candidate(e, pair)

        cand_p = self._p_candidate(e, pair)
        cand_h = self._h_candidate(e, pair)
        err0 = np.sqrt(self._distance_squared(e, pair, [e]))
        crit_p = cand_p.criterion(err0)
        crit_h = cand_h.criterion(err0)
        log.debug(
            f"hp candidates: p err={cand_p.error:.3e} crit={crit_p:.3e}, "
            f"h err={cand_h.error:.3e} crit={crit_h:.3e}"
        )
        # Ties go to the cheaper degree increase
        return cand_p if crit_p >= crit_h else cand_h

    def _p_candidate(self, e: Element, pair: RefElementPair) -> Candidate:
        son = self._project(e, pair, e.x1, e.x2, e.p + 1, e.level)
        error = np.sqrt(self._distance_squared(e, pair, [son]))
        return Candidate("p", [son], error, e.n_eq)

    def _h_candidate(self, e: Element, pair: RefElementPair) -> Candidate:
        xm = e.midpoint
        sons = [
            self._project(e, pair, e.x1, xm, e.p, e.level + 1),
            self._project(e, pair, xm, e.x2, e.p, e.level + 1),
        ]
        error = np.sqrt(self._distance_squared(e, pair, sons))
        return Candidate("h", sons, error, e.p * e.n_eq)

    def _project(self, e: Element, pair: RefElementPair, x1: float, x2: float, p: int, level: int) -> Element:
        """Project the reference solution onto one candidate element.

        End points shared with the coarse element keep the coarse vertex values
        so neighbouring elements stay continuous.
        """
        coeffs = np.zeros((e.n_slots, e.n_eq, p + 1))
        for slot in range(e.n_slots):
            left = e.coeffs[slot, :, 0] if x1 == e.x1 else pair.evaluate([x1], slot)[0][:, 0]
            right = e.coeffs[slot, :, 1] if x2 == e.x2 else pair.evaluate([x2], slot)[0][:, 0]
            coeffs[slot] = lobatto_projection(
                x1, x2, p,
                lambda x, s=slot: pair.evaluate(x, s),
                left, right,
                h1=self.norm == "H1",
            )
        return Element(x1, x2, p, coeffs, e.marker, level)

    def _distance_squared(self, e: Element, pair: RefElementPair, candidate: list[Element]) -> float:
        """Squared norm of (reference - candidate) over the coarse element (slot 0)."""
        p_max = max([el.p for el in pair.elements] + [el.p for el in candidate])
        xi, wi = gauss_quadrature(quadrature_order(p_max) + 4)
        xm = e.midpoint
        total = 0.0
        # Reference pairs and candidates only break at the midpoint
        for x1, x2 in ((e.x1, xm), (xm, e.x2)):
            jac = 0.5 * (x2 - x1)
            x = x1 + jac * (xi + 1.0)
            w = wi * jac
            u_ref, du_ref = pair.evaluate(x)
            u_c, du_c = _evaluate_piecewise(candidate, x)
            diff, ddiff = u_ref - u_c, du_ref - du_c
            total += float(np.sum((diff * diff) @ w))
            if self.norm == "H1":
                total += float(np.sum((ddiff * ddiff) @ w))
        return total


def _evaluate_piecewise(elements: list[Element], x: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    if len(elements) == 1:
        return elements[0].evaluate(x)
    return RefElementPair(tuple(elements)).evaluate(x)
