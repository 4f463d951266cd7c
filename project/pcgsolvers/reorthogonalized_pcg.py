"""
Reorthogonalized Preconditioned Conjugate Gradient
==================================================

In floating point arithmetic the search directions of PCG gradually lose
their mutual A-conjugacy, which slows convergence. This variant keeps every
direction p_i it uses, together with A * p_i and p_i * A * p_i, and builds
each new direction by explicitly A-orthogonalizing the preconditioned
residual against all of them:

    p = z - Σ_i (z * A p_i) / (p_i * A p_i) * p_i

Only cached quantities are used, so the correction costs dot products, not
operator applications.

The cache outlives ``solve``. When the next right-hand side is close to the
previous one, the stored directions already span most of the solution: the
new initial residual is projected onto them before iterating, and the fresh
directions are kept A-conjugate to the old ones. Call ``clear`` (or trim the
cache) whenever the operator changes; the cache assumes the same A and this
is not checked.

Reference: Saad, "Iterative Methods for Sparse Linear Systems", 2003, §6.7
and §9.3; Chapman & Saad, "Deflated and augmented Krylov subspace
techniques", 1997.
"""

from typing import List, Optional
import numpy as np

from .base import PcgAlgorithmBase, IterativeStatistics
from .diagnostics import conjugacy_loss
from .strategies import PcgResidualUpdater, RegularPcgResidualUpdater


class ReorthogonalizationCache:
    """
    Insertion-ordered (oldest first) store of PCG direction data.

    The three lists always have the same length.
    """

    def __init__(self, max_size: Optional[int] = None):
        if max_size is not None and max_size < 1:
            raise ValueError(f"Cache size must be positive, got {max_size}")
        self.max_size = max_size
        self.directions: List[np.ndarray] = []
        self.matrix_times_directions: List[np.ndarray] = []
        self.direction_times_matrix_times_directions: List[float] = []

    def __len__(self) -> int:
        return len(self.directions)

    def clear(self):
        self.directions.clear()
        self.matrix_times_directions.clear()
        self.direction_times_matrix_times_directions.clear()

    def remove_newest(self, num_entries: int):
        """
        Discard the entries of the newest PCG iterations. If ``num_entries``
        exceeds the number stored, the cache is emptied.
        """
        if num_entries < 0:
            raise ValueError(f"Cannot remove {num_entries} entries")
        if num_entries >= len(self):
            self.clear()
        elif num_entries > 0:
            start = len(self) - num_entries
            del self.directions[start:]
            del self.matrix_times_directions[start:]
            del self.direction_times_matrix_times_directions[start:]

    def remove_oldest(self, num_entries: int):
        """
        Discard the entries of the oldest PCG iterations. If ``num_entries``
        exceeds the number stored, the cache is emptied.
        """
        if num_entries < 0:
            raise ValueError(f"Cannot remove {num_entries} entries")
        del self.directions[:num_entries]
        del self.matrix_times_directions[:num_entries]
        del self.direction_times_matrix_times_directions[:num_entries]

    def store_direction_data(self, pcg):
        """Append the finalized direction of the current iteration as the newest entry."""
        self.directions.append(pcg.direction.copy())
        self.matrix_times_directions.append(pcg.matrix_times_direction.copy())
        self.direction_times_matrix_times_directions.append(pcg.direction_times_matrix_times_direction)
        if self.max_size is not None and len(self) > self.max_size:
            self.remove_oldest(len(self) - self.max_size)

    def conjugacy_loss(self) -> float:
        """max |p_i * A * p_j| / (||p_i||_A ||p_j||_A) over the stored directions."""
        return conjugacy_loss(self.directions, self.matrix_times_directions)


class ReorthogonalizedPcg(PcgAlgorithmBase):
    """
    PCG with full reorthogonalization of the directions against a cache that
    persists across solves.

    Key properties:
    - Same iterates as PCG in exact arithmetic when the cache starts empty
    - Restores the A-conjugacy lost to rounding errors
    - Reuses directions of previous solves with the same operator
    """

    name = "Reorthogonalized Preconditioned Conjugate Gradient"

    def __init__(self,
                 residual_updater: Optional[PcgResidualUpdater] = None,
                 max_cache_size: Optional[int] = None,
                 **kwargs):
        """
        Parameters
        ----------
        residual_updater : PcgResidualUpdater, optional
            How r is updated after x. Default: r = r - α A p
        max_cache_size : int, optional
            Keep at most this many directions, dropping the oldest. Unbounded by default
        **kwargs
            Termination parameters, see PcgAlgorithmBase
        """
        super().__init__(**kwargs)
        if residual_updater is None:
            residual_updater = RegularPcgResidualUpdater()
        self.residual_updater = residual_updater.copy_with_initial_settings()
        self.reortho_cache = ReorthogonalizationCache(max_cache_size)

    def clear(self) -> None:
        super().clear()
        self.reortho_cache.clear()

    def trim_oldest(self, num_entries: int):
        self.reortho_cache.remove_oldest(num_entries)

    def trim_newest(self, num_entries: int):
        self.reortho_cache.remove_newest(num_entries)

    def _solve_internal(self, max_iterations: int) -> IterativeStatistics:
        ws = self._workspace
        if len(self.reortho_cache) > 0:
            self._project_onto_cached_directions()

        # z = inv(M) * r
        ws.precond_residual = ws.preconditioner.solve(ws.residual)
        ws.res_dot_precond_res = float(np.dot(ws.residual, ws.precond_residual))

        residual_norm_ratio = self._initialize_termination()
        if self._check_convergence(residual_norm_ratio):
            return self._statistics(True, False, 0, residual_norm_ratio)

        ws.direction = self._reorthogonalize(ws.precond_residual)

        for iteration in range(max_iterations):
            ws.iteration = iteration

            # q = A * p
            ws.matrix_times_direction = ws.matrix.apply(ws.direction)
            ws.direction_times_matrix_times_direction = float(
                np.dot(ws.direction, ws.matrix_times_direction))
            if ws.direction_times_matrix_times_direction <= 0:
                self._report_loss_of_positive_definiteness(
                    iteration, ws.direction_times_matrix_times_direction)
                return self._statistics(False, True, iteration, residual_norm_ratio)

            self.reortho_cache.store_direction_data(self)

            # α = (p * r) / (p * q)
            ws.step_size = float(np.dot(ws.direction, ws.residual)) / ws.direction_times_matrix_times_direction

            # x = x + α * p
            ws.solution += ws.step_size * ws.direction

            # Normally r = r - α * q, but corrections may be applied
            self.residual_updater.update_residual(self, ws.residual)

            ws.precond_residual = ws.preconditioner.solve(ws.residual)
            ws.res_dot_precond_res_old = ws.res_dot_precond_res
            ws.res_dot_precond_res = float(np.dot(ws.residual, ws.precond_residual))

            residual_norm_ratio = self.convergence.estimate_residual_norm_ratio(self)
            self._record(iteration + 1, residual_norm_ratio)
            if self._check_convergence(residual_norm_ratio):
                return self._statistics(True, False, iteration + 1, residual_norm_ratio)
            if self._check_stagnation():
                return self._statistics(False, True, iteration + 1, residual_norm_ratio)

            ws.direction = self._reorthogonalize(ws.precond_residual)

        return self._statistics(False, False, max_iterations, residual_norm_ratio)

    def _reorthogonalize(self, precond_residual: np.ndarray) -> np.ndarray:
        """
        p = z - Σ_i β_i * p_i, β_i = (z * A p_i) / (p_i * A p_i),
        over every cached direction.
        """
        cache = self.reortho_cache
        direction = precond_residual.copy()
        for p_i, q_i, pq_i in zip(cache.directions, cache.matrix_times_directions,
                                  cache.direction_times_matrix_times_directions):
            direction -= (np.dot(precond_residual, q_i) / pq_i) * p_i
        return direction

    def _project_onto_cached_directions(self):
        """
        Galerkin correction of the initial guess on the cached directions:
        x += c_i p_i, r -= c_i A p_i, c_i = (p_i * r) / (p_i * A p_i).
        Afterwards r is orthogonal to every cached direction.
        """
        ws = self._workspace
        cache = self.reortho_cache
        for p_i, q_i, pq_i in zip(cache.directions, cache.matrix_times_directions,
                                  cache.direction_times_matrix_times_directions):
            coefficient = np.dot(p_i, ws.residual) / pq_i
            ws.solution += coefficient * p_i
            ws.residual -= coefficient * q_i
