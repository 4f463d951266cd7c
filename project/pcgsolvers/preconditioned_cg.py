"""
Preconditioned Conjugate Gradient Solver for Linear Systems
==========================================================

Solves A @ x = b using Preconditioned Conjugate Gradient (PCG).

Preconditioning transforms the system to:
    M^{-1} A x = M^{-1} b

where M ≈ A is easy to invert. The effective condition number becomes
κ(M^{-1} A) << κ(A), accelerating convergence.

Reference: Shewchuk, "An Introduction to the Conjugate Gradient Method
Without the Agonizing Pain", 1994.
"""

from typing import Optional
import numpy as np

from .base import PcgAlgorithmBase, IterativeStatistics
from .strategies import (
    BetaCalculation,
    FletcherReevesBeta,
    PcgResidualUpdater,
    RegularPcgResidualUpdater,
)


class PcgAlgorithm(PcgAlgorithmBase):
    """
    Preconditioned Conjugate Gradient solver for SPD linear systems.

    Key properties:
    - Reduces effective condition number via preconditioning
    - Maintains CG optimality in transformed space
    - Beta formula and residual update are pluggable strategies
    - Stops with ``has_stagnated`` if p * A * p <= 0 (A not positive definite)
    """

    name = "Preconditioned Conjugate Gradient"

    def __init__(self,
                 beta_calculation: Optional[BetaCalculation] = None,
                 residual_updater: Optional[PcgResidualUpdater] = None,
                 **kwargs):
        """
        Initialize PCG solver.

        Parameters
        ----------
        beta_calculation : BetaCalculation, optional
            Formula for β in p = z + β p. Default: Fletcher-Reeves
        residual_updater : PcgResidualUpdater, optional
            How r is updated after x. Default: r = r - α A p
        **kwargs
            Termination parameters, see PcgAlgorithmBase
        """
        super().__init__(**kwargs)
        if beta_calculation is None:
            beta_calculation = FletcherReevesBeta()
        if residual_updater is None:
            residual_updater = RegularPcgResidualUpdater()
        self.beta_calculation = beta_calculation.copy_with_initial_settings()
        self.residual_updater = residual_updater.copy_with_initial_settings()

    def _solve_internal(self, max_iterations: int) -> IterativeStatistics:
        """
        Algorithm (with preconditioner M):
        1. r = b - A @ x
        2. z = M^{-1} @ r
        3. p = z
        4. For each iteration:
           a. α = (r^T z) / (p^T A p)
           b. x = x + α * p
           c. r_new = r - α * A @ p
           d. z_new = M^{-1} @ r_new
           e. β = (r_new^T z_new) / (r^T z)
           f. p = z_new + β * p
        """
        ws = self._workspace
        ws.precond_residual = ws.preconditioner.solve(ws.residual)
        ws.direction = ws.precond_residual.copy()
        ws.res_dot_precond_res = float(np.dot(ws.residual, ws.precond_residual))

        # Strategies are initialized as soon as the first r and r * inv(M) * r exist
        residual_norm_ratio = self._initialize_termination()
        self.beta_calculation.initialize(self)
        if self._check_convergence(residual_norm_ratio):
            return self._statistics(True, False, 0, residual_norm_ratio)

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

            # α = (r * z) / (p * q)
            ws.step_size = ws.res_dot_precond_res / ws.direction_times_matrix_times_direction

            # x = x + α * p
            ws.solution += ws.step_size * ws.direction

            # Normally r = r - α * q, but corrections may be applied
            self.residual_updater.update_residual(self, ws.residual)

            # z = inv(M) * r
            ws.precond_residual = ws.preconditioner.solve(ws.residual)

            ws.res_dot_precond_res_old = ws.res_dot_precond_res
            ws.res_dot_precond_res = float(np.dot(ws.residual, ws.precond_residual))

            # Checking here avoids the direction update of the last iteration
            residual_norm_ratio = self.convergence.estimate_residual_norm_ratio(self)
            self._record(iteration + 1, residual_norm_ratio)
            if self._check_convergence(residual_norm_ratio):
                return self._statistics(True, False, iteration + 1, residual_norm_ratio)
            if self._check_stagnation():
                return self._statistics(False, True, iteration + 1, residual_norm_ratio)

            # p = z + β * p
            ws.beta = self.beta_calculation.calculate_beta(self)
            ws.direction *= ws.beta
            ws.direction += ws.precond_residual

        return self._statistics(False, False, max_iterations, residual_norm_ratio)
