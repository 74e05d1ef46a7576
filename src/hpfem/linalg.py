"""Linear solver backends for the Newton correction J dY = -F."""

import logging
import warnings

import numpy as np
import scipy.sparse.linalg as spla
from scipy.sparse import csc_matrix, spmatrix
from scipy.sparse.linalg import MatrixRankWarning

log = logging.getLogger(__name__)

LINEAR_SOLVERS = ("splu", "spsolve", "dense")


class LinearSystem:
    """
    Matrix, right-hand side and factorization owned by a single solve.

    Use as a context manager so the handle is released on every exit path::

        with LinearSystem("splu") as system:
            system.set(J, -F)
            if system.solve():
                dy = system.correction_vector()

    Parameters
    ----------
    backend : str
        "splu" (SuperLU factorization), "spsolve" or "dense" (LAPACK)
    """

    def __init__(self, backend: str = "splu"):
        if backend not in LINEAR_SOLVERS:
            raise ValueError(
                f"Unknown linear solver: {backend}. Use one of {', '.join(LINEAR_SOLVERS)}"
            )
        self.backend = backend
        self.matrix = None
        self.rhs = None
        self._solution = None
        self._released = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False

    @property
    def released(self) -> bool:
        return self._released

    def set(self, matrix: spmatrix, rhs: np.ndarray) -> None:
        if self._released:
            raise RuntimeError("Linear system handle was already released")
        self.matrix = matrix
        self.rhs = np.asarray(rhs, dtype=np.float64)
        self._solution = None

    def solve(self) -> bool:
        """Solve the stored system; return False if no finite solution exists."""
        if self.matrix is None:
            raise RuntimeError("No linear system set")
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("error", MatrixRankWarning)
                if self.backend == "splu":
                    x = spla.splu(csc_matrix(self.matrix)).solve(self.rhs)
                elif self.backend == "spsolve":
                    x = spla.spsolve(csc_matrix(self.matrix), self.rhs)
                else:
                    x = np.linalg.solve(self.matrix.toarray(), self.rhs)
        except (RuntimeError, MatrixRankWarning, np.linalg.LinAlgError) as exc:
            log.warning(f"Linear solve failed ({self.backend}): {exc}")
            return False

        x = np.atleast_1d(np.asarray(x, dtype=np.float64))
        if not np.all(np.isfinite(x)):
            log.warning(f"Linear solve produced non-finite values ({self.backend})")
            return False
        self._solution = x
        return True

    def correction_vector(self) -> np.ndarray:
        if self._solution is None:
            raise RuntimeError("No solution available; call solve() first")
        return self._solution

    def release(self) -> None:
        """Drop matrix, right-hand side and solution; safe to call more than once."""
        if self._released:
            return
        self.matrix = None
        self.rhs = None
        self._solution = None
        self._released = True
