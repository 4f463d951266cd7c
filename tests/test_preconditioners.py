"""
Tests for preconditioners and linear operators.
"""

import numpy as np
import pytest
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from pcgsolvers import (
    CallablePreconditioner,
    IdentityPreconditioner,
    JacobiPreconditioner,
    MatrixOperator,
    SsorPreconditioner,
    as_operator,
    as_preconditioner,
)


def test_identity_returns_copy():
    r = np.array([1.0, 2.0, 3.0])
    z = IdentityPreconditioner().solve(r)
    np.testing.assert_array_equal(z, r)
    z[0] = 100.0
    assert r[0] == 1.0


def test_jacobi_dense_and_sparse(dense_system, sparse_system):
    A, _, _ = dense_system
    r = np.arange(1.0, 11.0)
    np.testing.assert_allclose(JacobiPreconditioner(A).solve(r), r / np.diag(A))

    S, _, _ = sparse_system
    np.testing.assert_allclose(JacobiPreconditioner(S).solve(r), r / 5.0)


def test_jacobi_from_diagonal():
    M = JacobiPreconditioner(diagonal=np.array([2.0, 4.0]))
    np.testing.assert_allclose(M.solve(np.array([1.0, 1.0])), [0.5, 0.25])


def test_jacobi_update_replaces_diagonal():
    M = JacobiPreconditioner(np.diag([2.0, 2.0]))
    M.update(np.diag([4.0, 8.0]), pattern_changed=False)
    np.testing.assert_allclose(M.solve(np.array([4.0, 8.0])), [1.0, 1.0])


def test_jacobi_zero_diagonal():
    with pytest.raises(np.linalg.LinAlgError):
        JacobiPreconditioner(np.array([[1.0, 1.0], [1.0, 0.0]]))


def test_jacobi_without_matrix():
    with pytest.raises(ValueError):
        JacobiPreconditioner().solve(np.ones(2))


def test_jacobi_rejects_matrix_free_operator():
    with pytest.raises(TypeError):
        JacobiPreconditioner(spla.aslinearoperator(np.eye(3)))


@pytest.mark.parametrize('omega', [0.8, 1.0, 1.5])
def test_ssor_matches_explicit_matrix(dense_system, omega):
    A, _, _ = dense_system
    D = np.diag(np.diag(A))
    L = np.tril(A, -1)
    M = omega / (2.0 - omega) * (D / omega + L) @ np.linalg.inv(D) @ (D / omega + L.T)
    r = np.linspace(-1.0, 1.0, A.shape[0])

    z = SsorPreconditioner(A, omega=omega).solve(r)
    np.testing.assert_allclose(M @ z, r, atol=1E-10)


def test_ssor_sparse_matches_dense(sparse_system):
    S, _, _ = sparse_system
    r = np.linspace(1.0, 2.0, S.shape[0])
    z_sparse = SsorPreconditioner(S, omega=1.2).solve(r)
    z_dense = SsorPreconditioner(S.toarray(), omega=1.2).solve(r)
    np.testing.assert_allclose(z_sparse, z_dense, atol=1E-12)


@pytest.mark.parametrize('omega', [0.0, 2.0, -1.0])
def test_ssor_invalid_omega(omega):
    with pytest.raises(ValueError):
        SsorPreconditioner(omega=omega)


def test_as_preconditioner(dense_system):
    A, _, _ = dense_system
    assert isinstance(as_preconditioner(None), IdentityPreconditioner)
    assert isinstance(as_preconditioner('identity'), IdentityPreconditioner)
    assert isinstance(as_preconditioner('jacobi', A), JacobiPreconditioner)
    assert isinstance(as_preconditioner('ssor', A), SsorPreconditioner)

    M = JacobiPreconditioner(A)
    assert as_preconditioner(M) is M

    wrapped = as_preconditioner(lambda r: 2.0 * r)
    assert isinstance(wrapped, CallablePreconditioner)
    np.testing.assert_allclose(wrapped.solve(np.ones(3)), 2.0 * np.ones(3))


def test_as_preconditioner_rejects_unknown():
    with pytest.raises(ValueError):
        as_preconditioner('ilu')
    with pytest.raises(TypeError):
        as_preconditioner(42)


def test_matrix_operator_kinds(sparse_system):
    S, _, _ = sparse_system
    x = np.linspace(0.0, 1.0, S.shape[0])
    expected = S.toarray() @ x
    for matrix in (S, S.toarray(), spla.aslinearoperator(S)):
        operator = MatrixOperator(matrix)
        assert operator.num_rows == operator.num_columns == S.shape[0]
        np.testing.assert_allclose(operator.apply(x), expected)


def test_matrix_operator_diagonal(sparse_system):
    S, _, _ = sparse_system
    np.testing.assert_allclose(MatrixOperator(S).diagonal(), 5.0 * np.ones(S.shape[0]))
    np.testing.assert_allclose(MatrixOperator(sp.csc_matrix(S)).diagonal(), 5.0 * np.ones(S.shape[0]))
    with pytest.raises(TypeError):
        MatrixOperator(spla.aslinearoperator(S)).diagonal()


def test_as_operator():
    operator = MatrixOperator(np.eye(2))
    assert as_operator(operator) is operator
    assert isinstance(as_operator([[1.0, 0.0], [0.0, 1.0]]), MatrixOperator)
    with pytest.raises(TypeError):
        as_operator(3.0)
    with pytest.raises(ValueError):
        MatrixOperator(np.ones(3))
