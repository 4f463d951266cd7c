"""
Tests for ReorthogonalizedPcg and its direction cache.
"""

import numpy as np
import pytest

from pcgsolvers import (
    PcgAlgorithm,
    ReorthogonalizationCache,
    ReorthogonalizedPcg,
)


def test_matches_pcg_with_empty_cache(dense_system):
    A, b, x_expected = dense_system
    n = A.shape[0]
    x_pcg = np.zeros(n)
    x_reortho = np.zeros(n)
    stats_pcg = PcgAlgorithm(residual_tolerance=1E-9).solve(A, 'jacobi', b, x_pcg, True)
    solver = ReorthogonalizedPcg(residual_tolerance=1E-9)
    stats_reortho = solver.solve(A, 'jacobi', b, x_reortho, True)

    assert stats_reortho.has_converged
    assert stats_reortho.num_iterations_required == stats_pcg.num_iterations_required
    np.testing.assert_allclose(x_reortho, x_pcg, atol=1E-7)
    np.testing.assert_allclose(x_reortho, x_expected, atol=1E-6)

    # A cleared cache reproduces the first solve
    solver.clear()
    x_again = np.zeros(n)
    stats_again = solver.solve(A, 'jacobi', b, x_again, True)

    assert stats_again.num_iterations_required == stats_pcg.num_iterations_required
    np.testing.assert_allclose(x_again, x_reortho, rtol=0, atol=1E-12)
    assert len(solver.reortho_cache) == stats_again.num_iterations_required


def test_cache_grows_by_one_entry_per_iteration(laplacian_system):
    A, b, _ = laplacian_system
    solver = ReorthogonalizedPcg(residual_tolerance=1E-8)
    stats = solver.solve(A, None, b, np.zeros(A.shape[0]), True)

    cache = solver.reortho_cache
    assert stats.has_converged
    assert len(cache) == stats.num_iterations_required
    assert len(cache.directions) == len(cache.matrix_times_directions)
    assert len(cache.directions) == len(cache.direction_times_matrix_times_directions)
    assert all(pq > 0 for pq in cache.direction_times_matrix_times_directions)


def test_cached_directions_stay_conjugate(laplacian_system):
    A, b, _ = laplacian_system
    solver = ReorthogonalizedPcg(residual_tolerance=1E-10)
    solver.solve(A, None, b, np.zeros(A.shape[0]), True)

    assert solver.reortho_cache.conjugacy_loss() < 1E-8


def test_reuse_speeds_up_nearby_rhs(laplacian_system):
    A, b1, _ = laplacian_system
    n = A.shape[0]
    rng = np.random.default_rng(42)
    b2 = b1 + 0.1 * rng.standard_normal(n)

    solver = ReorthogonalizedPcg(residual_tolerance=1E-8)
    first = solver.solve(A, None, b1, np.zeros(n), True)
    assert first.has_converged

    x_warm = np.zeros(n)
    warm = solver.solve(A, None, b2, x_warm, True)
    x_cold = np.zeros(n)
    cold = ReorthogonalizedPcg(residual_tolerance=1E-8).solve(A, None, b2, x_cold, True)
    plain = PcgAlgorithm(residual_tolerance=1E-8).solve(A, None, b2, np.zeros(n), True)

    x_reference = np.linalg.solve(A.toarray(), b2)
    assert warm.has_converged
    assert cold.has_converged
    assert warm.num_iterations_required < cold.num_iterations_required
    assert warm.num_iterations_required < plain.num_iterations_required
    np.testing.assert_allclose(x_warm, x_reference, atol=1E-5)
    np.testing.assert_allclose(x_cold, x_reference, atol=1E-5)


def test_same_rhs_again_needs_no_iterations(laplacian_system):
    A, b, x_expected = laplacian_system
    n = A.shape[0]
    solver = ReorthogonalizedPcg(residual_tolerance=1E-8)
    solver.solve(A, None, b, np.zeros(n), True)

    x = np.zeros(n)
    stats = solver.solve(A, None, b, x, True)

    assert stats.has_converged
    assert stats.num_iterations_required == 0
    np.testing.assert_allclose(x, x_expected, atol=1E-5)


def test_clear_discards_cache(dense_system):
    A, b, _ = dense_system
    solver = ReorthogonalizedPcg()
    solver.solve(A, 'jacobi', b, np.zeros(A.shape[0]), True)
    assert len(solver.reortho_cache) > 0

    solver.clear()
    assert len(solver.reortho_cache) == 0


def test_trim_cache(laplacian_system):
    A, b, _ = laplacian_system
    solver = ReorthogonalizedPcg(residual_tolerance=1E-8)
    solver.solve(A, None, b, np.zeros(A.shape[0]), True)
    cache = solver.reortho_cache
    size = len(cache)
    assert size >= 4
    oldest = cache.directions[0].copy()
    newest = cache.directions[-1].copy()

    solver.trim_oldest(1)
    assert len(cache) == size - 1
    assert not np.array_equal(cache.directions[0], oldest)
    np.testing.assert_array_equal(cache.directions[-1], newest)

    solver.trim_newest(1)
    assert len(cache) == size - 2
    assert not np.array_equal(cache.directions[-1], newest)

    solver.trim_newest(0)
    assert len(cache) == size - 2

    solver.trim_oldest(size * 10)
    assert len(cache) == 0
    solver.trim_newest(5)
    assert len(cache) == 0


def test_negative_trim_is_rejected():
    cache = ReorthogonalizationCache()
    with pytest.raises(ValueError):
        cache.remove_oldest(-1)
    with pytest.raises(ValueError):
        cache.remove_newest(-1)


def test_bounded_cache_keeps_newest(laplacian_system):
    A, b, x_expected = laplacian_system
    solver = ReorthogonalizedPcg(residual_tolerance=1E-8, max_cache_size=3)
    x = np.zeros(A.shape[0])
    stats = solver.solve(A, None, b, x, True)

    assert stats.has_converged
    assert len(solver.reortho_cache) == 3
    np.testing.assert_allclose(x, x_expected, atol=1E-5)


def test_invalid_cache_size():
    with pytest.raises(ValueError):
        ReorthogonalizationCache(max_size=0)


def test_indefinite_system_does_not_cache(indefinite_system):
    A, b = indefinite_system
    solver = ReorthogonalizedPcg()
    with pytest.warns(RuntimeWarning):
        stats = solver.solve(A, None, b, np.zeros(3), True)

    assert stats.has_stagnated
    assert stats.num_iterations_required == 0
    assert len(solver.reortho_cache) == 0
