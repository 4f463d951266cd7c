"""
Linear Operators
================

The solvers only need y = A @ x and the dimensions of A. Anything that
provides these can be used; numpy arrays, scipy.sparse matrices and
scipy.sparse.linalg.LinearOperator instances are wrapped automatically.
"""

from abc import ABC, abstractmethod
import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla


class LinearOperator(ABC):
    """
    Matrix-vector product without assumptions on the matrix storage.

    Implementations must not modify the input vector and must return a new
    1-D array of length ``num_rows``.
    """

    @property
    @abstractmethod
    def num_rows(self) -> int:
        pass

    @property
    @abstractmethod
    def num_columns(self) -> int:
        pass

    @abstractmethod
    def apply(self, x: np.ndarray) -> np.ndarray:
        """Compute A @ x."""
        pass


class MatrixOperator(LinearOperator):
    """Wraps a dense, sparse or scipy linear operator."""

    def __init__(self, matrix):
        if isinstance(matrix, (spla.LinearOperator, np.ndarray)) or sp.issparse(matrix):
            self.matrix = matrix
        else:
            self.matrix = np.asarray(matrix, dtype=np.float64)
        if len(self.matrix.shape) != 2:
            raise ValueError(f"Expected a 2-D matrix, got shape {self.matrix.shape}")

    @property
    def num_rows(self) -> int:
        return self.matrix.shape[0]

    @property
    def num_columns(self) -> int:
        return self.matrix.shape[1]

    def apply(self, x: np.ndarray) -> np.ndarray:
        if isinstance(self.matrix, spla.LinearOperator):
            y = self.matrix.matvec(x)
        else:
            y = self.matrix @ x
        return np.asarray(y, dtype=np.float64).ravel()

    def diagonal(self) -> np.ndarray:
        """Main diagonal of the wrapped matrix (not available for matrix-free operators)."""
        if isinstance(self.matrix, spla.LinearOperator):
            raise TypeError("A matrix-free operator does not expose its diagonal")
        if sp.issparse(self.matrix):
            return np.asarray(self.matrix.diagonal(), dtype=np.float64)
        return np.diag(self.matrix).astype(np.float64)


def as_operator(matrix) -> LinearOperator:
    """Return ``matrix`` itself if it already is a LinearOperator, else wrap it."""
    if isinstance(matrix, LinearOperator):
        return matrix
    if not hasattr(matrix, 'shape') and not isinstance(matrix, (list, tuple)):
        raise TypeError(f"Cannot use {type(matrix).__name__} as a linear operator")
    return MatrixOperator(matrix)
