"""
Recurrence Strategies
=====================

Policy objects injected into the PCG recurrence:

- beta calculators, used to update the direction: p = z + β p
- residual updaters for PCG and for block PCG

Like the termination strategies, each one can produce a fresh copy of itself
through ``copy_with_initial_settings()``.
"""

from abc import ABC, abstractmethod
import numpy as np

from .diagnostics import exact_residual


# =============================================================================
# BETA PARAMETER
# =============================================================================

class BetaCalculation(ABC):

    # True if the formula needs the residual vectors, not only r * inv(M) * r
    requires_vectors = False

    def initialize(self, pcg) -> None:
        pass

    @abstractmethod
    def calculate_beta(self, pcg) -> float:
        pass

    def copy_with_initial_settings(self) -> 'BetaCalculation':
        return type(self)()


class FletcherReevesBeta(BetaCalculation):
    """
    Fletcher-Reeves: β = (rNew * inv(M) * rNew) / (rOld * inv(M) * rOld).

    The simplest formula; needs no extra memory or calculations.
    """

    def calculate_beta(self, pcg) -> float:
        return pcg.res_dot_precond_res / pcg.res_dot_precond_res_old


class PolakRibiereBeta(BetaCalculation):
    """
    Polak-Ribiere: β = (rNew * (sNew - sOld)) / (rOld * sOld), s = inv(M) * r.

    Usually better than Fletcher-Reeves for variable preconditioners. Keeps a
    copy of the previous preconditioned residual.
    """

    requires_vectors = True

    def __init__(self):
        self.previous_precond_residual = None

    def initialize(self, pcg) -> None:
        self.previous_precond_residual = pcg.precond_residual.copy()

    def calculate_beta(self, pcg) -> float:
        cross = np.dot(pcg.residual, self.previous_precond_residual)
        beta = (pcg.res_dot_precond_res - cross) / pcg.res_dot_precond_res_old
        self.previous_precond_residual = pcg.precond_residual.copy()
        return beta


# =============================================================================
# PCG RESIDUAL UPDATERS
# =============================================================================

class PcgResidualUpdater(ABC):
    """Updates the residual r in place after the solution update."""

    @abstractmethod
    def update_residual(self, pcg, residual: np.ndarray) -> None:
        pass

    def copy_with_initial_settings(self) -> 'PcgResidualUpdater':
        return type(self)()


class RegularPcgResidualUpdater(PcgResidualUpdater):
    """r = r - α * A*p. No corrections are applied."""

    def update_residual(self, pcg, residual: np.ndarray) -> None:
        residual -= pcg.step_size * pcg.matrix_times_direction


class PeriodicExactPcgResidualUpdater(PcgResidualUpdater):
    """
    r = r - α * A*p, except every ``period`` iterations when r = b - A*x is
    recomputed exactly to remove the floating point drift of the recurrence.
    """

    def __init__(self, period: int = 50):
        if period < 1:
            raise ValueError(f"Residual correction period must be positive, got {period}")
        self.period = period

    def update_residual(self, pcg, residual: np.ndarray) -> None:
        if (pcg.iteration + 1) % self.period == 0:
            residual[:] = exact_residual(pcg.matrix, pcg.rhs, pcg.solution)
        else:
            residual -= pcg.step_size * pcg.matrix_times_direction

    def copy_with_initial_settings(self) -> 'PeriodicExactPcgResidualUpdater':
        return PeriodicExactPcgResidualUpdater(self.period)


# =============================================================================
# BLOCK PCG RESIDUAL UPDATERS
# =============================================================================

class BlockPcgResidualUpdater(ABC):
    """Materializes the residual at the end of a block, in place."""

    @abstractmethod
    def update_residual(self, pcg, residual: np.ndarray) -> None:
        pass

    def copy_with_initial_settings(self) -> 'BlockPcgResidualUpdater':
        return type(self)()


class RegularBlockPcgResidualUpdater(BlockPcgResidualUpdater):
    """Combines the block kernels with the tracked residual coefficients."""

    def update_residual(self, pcg, residual: np.ndarray) -> None:
        residual[:] = pcg.residual_operator.evaluate_vector(pcg.residual_kernels, pcg.direction_kernels)


class ExactBlockPcgResidualUpdater(BlockPcgResidualUpdater):
    """r = b - A*x, one extra operator application per block."""

    def update_residual(self, pcg, residual: np.ndarray) -> None:
        residual[:] = exact_residual(pcg.matrix, pcg.rhs, pcg.solution)
