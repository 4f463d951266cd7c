"""
Numerical Diagnostics for Iterative Solvers
============================================

Helpers that evaluate solution quality independently of the recurrence:

    1. Exact Residual: r = b - Ax
    2. Reference Solution: direct (LAPACK / SuperLU) solve
    3. A-norm Error: ||x - x*||_A = sqrt((x-x*)^T A (x-x*))
    4. Loss of Conjugacy: deviation of search directions from A-orthogonality
"""

from typing import Sequence
import numpy as np
import scipy.sparse as sp
from scipy.linalg import solve as direct_solve
from scipy.sparse.linalg import LinearOperator as ScipyLinearOperator, spsolve

from .operators import LinearOperator, MatrixOperator, as_operator


def exact_residual(matrix, rhs: np.ndarray, solution: np.ndarray) -> np.ndarray:
    """r = b - A @ x, as a new vector."""
    return rhs - as_operator(matrix).apply(solution)


def compute_reference_solution(A, b: np.ndarray) -> np.ndarray:
    """
    High-precision reference solution using a direct solver.

    Dense SPD matrices go through scipy's LAPACK-backed solve, sparse ones
    through SuperLU.
    """
    if isinstance(A, MatrixOperator):
        A = A.matrix
    if isinstance(A, (LinearOperator, ScipyLinearOperator)):
        raise TypeError("A reference solution needs an explicit matrix")
    if sp.issparse(A):
        return np.asarray(spsolve(sp.csc_matrix(A), b)).ravel()
    return direct_solve(np.asarray(A, dtype=np.float64), b, assume_a='pos')


def compute_a_norm_error(x: np.ndarray, x_ref: np.ndarray, A) -> float:
    """
    A-norm error: ||x - x*||_A = sqrt((x-x*)^T A (x-x*))

    The A-norm is the quantity CG minimizes over the Krylov subspace.
    """
    diff = x - x_ref
    return float(np.sqrt(np.abs(diff @ as_operator(A).apply(diff))))


def conjugacy_loss(directions: Sequence[np.ndarray],
                   matrix_times_directions: Sequence[np.ndarray]) -> float:
    """
    Largest normalized off-diagonal entry of D^T A D:

        max_{i != j} |d_i^T A d_j| / (||d_i||_A ||d_j||_A)

    Zero for exactly A-conjugate directions.
    """
    if len(directions) < 2:
        return 0.0
    D = np.vstack(directions)
    AD = np.vstack(matrix_times_directions)
    gram = D @ AD.T
    norms = np.sqrt(np.abs(np.diag(gram)))
    norms[norms < 1e-300] = 1.0
    normalized = np.abs(gram) / np.outer(norms, norms)
    np.fill_diagonal(normalized, 0.0)
    return float(normalized.max())
