# conftest.py

import numpy as np
import pytest
import scipy.sparse as sp


# Upper triangle of a symmetric, strictly diagonally dominant (hence SPD) matrix
_SYMM_POS_DEF_10_UPPER = np.array([
    [20.0, 1.0, -0.5, 0.0, 0.8, 0.0, -0.3, 0.0, 0.6, 0.1],
    [0.0, 18.0, 0.7, -0.9, 0.0, 0.4, 0.0, 0.2, 0.0, -0.6],
    [0.0, 0.0, 22.0, 0.5, -0.4, 0.0, 0.9, 0.0, -0.7, 0.0],
    [0.0, 0.0, 0.0, 19.0, 0.3, -0.8, 0.0, 0.5, 0.0, 0.2],
    [0.0, 0.0, 0.0, 0.0, 21.0, 0.6, -0.2, 0.0, 0.4, 0.0],
    [0.0, 0.0, 0.0, 0.0, 0.0, 17.0, 0.7, -0.5, 0.0, 0.3],
    [0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 20.0, 0.8, -0.6, 0.0],
    [0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 23.0, 0.9, -0.4],
    [0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 18.5, 0.5],
    [0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 16.0],
])

_SYMM_POS_DEF_10_LHS = np.array([1.0, -2.0, 3.0, 0.5, -1.5, 2.5, 0.0, 4.0, -3.0, 1.25])


@pytest.fixture
def dense_system():
    """10x10 dense SPD matrix, its rhs and the expected solution."""
    A = np.triu(_SYMM_POS_DEF_10_UPPER) + np.triu(_SYMM_POS_DEF_10_UPPER, 1).T
    x = _SYMM_POS_DEF_10_LHS.copy()
    return A, A @ x, x


@pytest.fixture
def sparse_system():
    """10x10 sparse SPD matrix (5-point band), its rhs and the expected solution."""
    n = 10
    A = sp.diags([-1.0, -1.0, 5.0, -1.0, -1.0], [-3, -1, 0, 1, 3], shape=(n, n), format='csr')
    x = np.linspace(0.1, 1.0, n)
    return A, A @ x, x


def laplacian_1d(n: int) -> sp.csr_matrix:
    return sp.diags([-1.0, 2.0, -1.0], [-1, 0, 1], shape=(n, n), format='csr')


@pytest.fixture
def laplacian_system():
    """30x30 1-D Laplacian (condition number in the hundreds) with x = ones."""
    A = laplacian_1d(30)
    x = np.ones(30)
    return A, A @ x, x


@pytest.fixture
def indefinite_system():
    """Diagonal indefinite matrix with p * A * p < 0 for the first direction."""
    A = np.diag([1.0, 2.0, -5.0])
    b = np.ones(3)
    return A, b

