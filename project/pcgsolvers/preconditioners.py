"""
Preconditioners
===============

A preconditioner M approximates A so that M^{-1} A has a smaller condition
number than A. The solvers only call ``solve(r)`` (z = M^{-1} r) and expect it
to be a pure function of its input for a fixed matrix.

Available preconditioners:
- Identity: M = I (plain CG)
- Jacobi (diagonal): M = diag(A)
- SSOR (Symmetric Successive Over-Relaxation)
- Any callable r -> M^{-1} r

Reference: Saad, "Iterative Methods for Sparse Linear Systems", 2003, ch. 10.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional
import numpy as np
import scipy.sparse as sp
from scipy.linalg import solve_triangular
from scipy.sparse.linalg import spsolve_triangular

from .operators import LinearOperator, MatrixOperator


class Preconditioner(ABC):
    """Approximate inverse of the system matrix."""

    @abstractmethod
    def solve(self, rhs: np.ndarray) -> np.ndarray:
        """Return lhs such that M @ lhs = rhs. ``rhs`` is not modified."""
        pass

    def update(self, matrix, pattern_changed: bool = True) -> None:
        """
        Recompute any internal data after the system matrix changed.

        Parameters
        ----------
        matrix
            The new system matrix.
        pattern_changed : bool
            True if the sparsity pattern changed too, not only the values.
        """
        pass


class IdentityPreconditioner(Preconditioner):

    def solve(self, rhs: np.ndarray) -> np.ndarray:
        return np.array(rhs, dtype=np.float64, copy=True)


class JacobiPreconditioner(Preconditioner):
    """
    Jacobi (diagonal) preconditioner.

    M = diag(A)
    M^{-1} r = r / diag(A)

    Simple and cheap, but only effective when A is diagonally dominant.
    """

    def __init__(self, matrix=None, diagonal: Optional[np.ndarray] = None):
        self.inverse_diagonal = None
        if diagonal is not None:
            self._invert(np.asarray(diagonal, dtype=np.float64))
        elif matrix is not None:
            self.update(matrix)

    def update(self, matrix, pattern_changed: bool = True) -> None:
        if not isinstance(matrix, LinearOperator):
            matrix = MatrixOperator(matrix)
        if not isinstance(matrix, MatrixOperator):
            raise TypeError("Jacobi preconditioner needs access to the matrix diagonal")
        self._invert(matrix.diagonal())

    def solve(self, rhs: np.ndarray) -> np.ndarray:
        if self.inverse_diagonal is None:
            raise ValueError("Jacobi preconditioner has not been given a matrix yet")
        return self.inverse_diagonal * rhs

    def _invert(self, diagonal: np.ndarray):
        zeros = np.flatnonzero(diagonal == 0.0)
        if zeros.size > 0:
            raise np.linalg.LinAlgError(f"Zero diagonal entry at row {zeros[0]}")
        self.inverse_diagonal = 1.0 / diagonal


class SsorPreconditioner(Preconditioner):
    """
    Symmetric Successive Over-Relaxation (SSOR) preconditioner.

    M = ω/(2-ω) (D/ω + L) @ D^{-1} @ (D/ω + L^T)

    where D = diag(A), L = strict lower triangle of A.

    Parameters
    ----------
    matrix
        System matrix, dense or scipy.sparse
    omega : float
        Relaxation parameter (0 < ω < 2). ω = 1 gives symmetric Gauss-Seidel.
    """

    def __init__(self, matrix=None, omega: float = 1.0):
        if not 0.0 < omega < 2.0:
            raise ValueError(f"SSOR relaxation parameter must be in (0, 2), got {omega}")
        self.omega = omega
        self._lower = None
        self._upper = None
        self._diagonal = None
        self._sparse = False
        if matrix is not None:
            self.update(matrix)

    def update(self, matrix, pattern_changed: bool = True) -> None:
        if isinstance(matrix, MatrixOperator):
            matrix = matrix.matrix
        self._sparse = sp.issparse(matrix)
        if self._sparse:
            A = sp.csr_matrix(matrix, dtype=np.float64)
            D = A.diagonal()
        else:
            A = np.asarray(matrix, dtype=np.float64)
            D = np.diag(A).copy()
        if np.any(D == 0.0):
            raise np.linalg.LinAlgError("SSOR requires a zero-free diagonal")

        D_omega = D / self.omega
        if self._sparse:
            self._lower = (sp.diags(D_omega) + sp.tril(A, k=-1)).tocsr()
            self._upper = (sp.diags(D_omega) + sp.triu(A, k=1)).tocsr()
        else:
            self._lower = np.diag(D_omega) + np.tril(A, -1)
            self._upper = np.diag(D_omega) + np.triu(A, 1)
        self._diagonal = D

    def solve(self, rhs: np.ndarray) -> np.ndarray:
        if self._diagonal is None:
            raise ValueError("SSOR preconditioner has not been given a matrix yet")
        # Forward solve: (D/ω + L) y = r
        # Scale: z = D @ y
        # Backward solve: (D/ω + U) x = z
        if self._sparse:
            y = spsolve_triangular(self._lower, rhs, lower=True)
            x = spsolve_triangular(self._upper, self._diagonal * y, lower=False)
        else:
            y = solve_triangular(self._lower, rhs, lower=True)
            x = solve_triangular(self._upper, self._diagonal * y, lower=False)
        return (2.0 - self.omega) / self.omega * np.asarray(x).ravel()


class CallablePreconditioner(Preconditioner):
    """Adapts a plain function r -> M^{-1} r."""

    def __init__(self, function: Callable[[np.ndarray], np.ndarray]):
        self.function = function

    def solve(self, rhs: np.ndarray) -> np.ndarray:
        return np.asarray(self.function(rhs), dtype=np.float64).ravel()


# Preconditioner registry
PRECONDITIONERS = {
    'identity': IdentityPreconditioner,
    'jacobi': JacobiPreconditioner,
    'ssor': SsorPreconditioner,
}


def as_preconditioner(preconditioner, matrix=None) -> Preconditioner:
    """
    Normalize the ``preconditioner`` argument of a solve call.

    Accepts a Preconditioner, None (identity), a callable, or one of the
    names in PRECONDITIONERS (built for ``matrix``).
    """
    if preconditioner is None:
        return IdentityPreconditioner()
    if isinstance(preconditioner, Preconditioner):
        return preconditioner
    if isinstance(preconditioner, str):
        if preconditioner not in PRECONDITIONERS:
            raise ValueError(f"Unknown preconditioner: {preconditioner}. "
                             f"Available: {list(PRECONDITIONERS.keys())}")
        if preconditioner == 'identity':
            return IdentityPreconditioner()
        return PRECONDITIONERS[preconditioner](matrix)
    if callable(preconditioner):
        return CallablePreconditioner(preconditioner)
    raise TypeError(f"Cannot use {type(preconditioner).__name__} as a preconditioner")
