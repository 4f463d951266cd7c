"""
Block (s-step) Preconditioned Conjugate Gradient
================================================

Advances the PCG recurrence s iterations at a time. At the start of each
block the Krylov kernels

    R_i = (A M)^i r,  i = 0..s-1        P_j = (A M)^j p,  j = 0..s

are built (M = inverse preconditioner), together with the "sandwich"
products between them. Because A and M are symmetric,
R_i * M * R_j = r * M * (A M)^(i+j) r, so each table only depends on i + j:

    residual sandwiches             r * M * (A M)^k * r,  k = 0..2s-2
    direction sandwiches            p * M * (A M)^k * p,  k = 0..2s
    residual-direction sandwiches   r * M * (A M)^k * p,  k = 0..2s-1

Inside the block every vector is a short coefficient array over the kernels
(a BlockVectorOperator), and all the dot products PCG needs are quadratic
forms of the tables. Full-length vectors are formed once per block.

Inside a block the direction and residual are the quantities *before*
multiplication with M (PCG's direction is M * p here). The solution
correction accumulated from them is therefore multiplied with M once, when
the block ends. The per-substep vectors are not valid preconditioned
quantities until that correction is applied.

Reference: Chronopoulos & Gear, "s-step iterative methods for symmetric
linear systems", J. Comput. Appl. Math. 25 (1989).
"""

from dataclasses import dataclass
from typing import Optional
import numpy as np
from scipy.linalg import hankel

from .base import DEFAULT_BLOCK_SIZE, IterativeStatistics, PcgAlgorithmBase
from .strategies import (
    BetaCalculation,
    BlockPcgResidualUpdater,
    FletcherReevesBeta,
    RegularBlockPcgResidualUpdater,
)
from .termination import RhsNormalizedConvergence


def _hankel_form(values: np.ndarray, rows: int, cols: int, shift: int) -> np.ndarray:
    """H[i, j] = values[i + j + shift], zero past the end of ``values``."""
    padded = np.zeros(rows + cols)
    tail = values[shift:shift + rows + cols]
    padded[:tail.size] = tail
    return hankel(padded[:rows], padded[rows - 1:rows + cols - 1])


@dataclass
class SandwichTables:
    """
    Quadratic forms of one block, built from the three sandwich arrays.
    ``*_m`` give u * M * v, ``*_mam`` give u * M * A * M * v.
    """
    residual_m: np.ndarray
    direction_m: np.ndarray
    residual_direction_m: np.ndarray
    residual_mam: np.ndarray
    direction_mam: np.ndarray
    residual_direction_mam: np.ndarray

    @classmethod
    def build(cls, block_size: int, residual_sandwiches: np.ndarray,
              direction_sandwiches: np.ndarray, residual_direction_sandwiches: np.ndarray):
        s = block_size
        return cls(
            residual_m=_hankel_form(residual_sandwiches, s, s, 0),
            direction_m=_hankel_form(direction_sandwiches, s + 1, s + 1, 0),
            residual_direction_m=_hankel_form(residual_direction_sandwiches, s, s + 1, 0),
            residual_mam=_hankel_form(residual_sandwiches, s, s, 1),
            direction_mam=_hankel_form(direction_sandwiches, s + 1, s + 1, 1),
            residual_direction_mam=_hankel_form(residual_direction_sandwiches, s, s + 1, 1),
        )


class BlockVectorOperator:
    """
    A full-length vector of the current block, kept as coefficients over the
    residual kernels (``r``, length s) and the direction kernels (``p``,
    length s+1).
    """

    def __init__(self, block_size: int):
        self.r = np.zeros(block_size)
        self.p = np.zeros(block_size + 1)

    @classmethod
    def residual_seed(cls, block_size: int) -> 'BlockVectorOperator':
        operator = cls(block_size)
        operator.r[0] = 1.0
        return operator

    @classmethod
    def direction_seed(cls, block_size: int) -> 'BlockVectorOperator':
        operator = cls(block_size)
        operator.p[0] = 1.0
        return operator

    def update_x(self, step_size: float, direction: 'BlockVectorOperator'):
        """x += α * p"""
        self.r += step_size * direction.r
        self.p += step_size * direction.p

    def update_r(self, step_size: float, direction: 'BlockVectorOperator'):
        """r -= α * A * M * p. Multiplying with A * M shifts every kernel index by one."""
        self.r[1:] -= step_size * direction.r[:-1]
        self.p[1:] -= step_size * direction.p[:-1]

    def update_p(self, residual: 'BlockVectorOperator', beta: float):
        """p = r + β * p"""
        self.r = residual.r + beta * self.r
        self.p = residual.p + beta * self.p

    def square(self, tables: SandwichTables) -> float:
        """u * M * u"""
        return float(self.r @ tables.residual_m @ self.r
                     + self.p @ tables.direction_m @ self.p
                     + 2.0 * self.r @ tables.residual_direction_m @ self.p)

    def sandwich(self, tables: SandwichTables) -> float:
        """u * M * A * M * u"""
        return float(self.r @ tables.residual_mam @ self.r
                     + self.p @ tables.direction_mam @ self.p
                     + 2.0 * self.r @ tables.residual_direction_mam @ self.p)

    def evaluate_vector(self, residual_kernels: np.ndarray, direction_kernels: np.ndarray) -> np.ndarray:
        return self.r @ residual_kernels + self.p @ direction_kernels


class BlockPcgAlgorithm(PcgAlgorithmBase):
    """
    s-step Preconditioned Conjugate Gradient.

    Key properties:
    - s PCG iterations per block, with full-length vector work only at block boundaries
    - block_size = 1 reproduces PCG
    - Larger blocks reduce global synchronization points but lose accuracy,
      since the kernels approach the dominant eigenvector of A * M
    """

    name = "Block Preconditioned Conjugate Gradient"

    def __init__(self,
                 block_size: int = DEFAULT_BLOCK_SIZE,
                 beta_calculation: Optional[BetaCalculation] = None,
                 residual_updater: Optional[BlockPcgResidualUpdater] = None,
                 **kwargs):
        """
        Initialize block PCG solver.

        Parameters
        ----------
        block_size : int
            Number of PCG iterations per block (s)
        beta_calculation : BetaCalculation, optional
            Must only use r * inv(M) * r. Default: Fletcher-Reeves
        residual_updater : BlockPcgResidualUpdater, optional
            How r is formed at the end of a block. Default: from the kernels
        **kwargs
            Termination parameters, see PcgAlgorithmBase. The default
            convergence criterion is RhsNormalizedConvergence, which needs no
            full-length vectors inside a block
        """
        if kwargs.get('convergence') is None:
            kwargs['convergence'] = RhsNormalizedConvergence()
        super().__init__(**kwargs)
        if int(block_size) != block_size or block_size < 1:
            raise ValueError(f"Block size must be a positive integer, got {block_size}")
        if beta_calculation is None:
            beta_calculation = FletcherReevesBeta()
        if beta_calculation.requires_vectors:
            raise ValueError(f"{type(beta_calculation).__name__} needs full-length vectors, "
                             "which block PCG does not form inside a block")
        if residual_updater is None:
            residual_updater = RegularBlockPcgResidualUpdater()

        self.block_size = int(block_size)
        self.beta_calculation = beta_calculation.copy_with_initial_settings()
        self.residual_updater = residual_updater.copy_with_initial_settings()

        s = self.block_size
        self.residual_sandwiches = np.zeros(2 * s - 1)
        self.direction_sandwiches = np.zeros(2 * s + 1)
        self.residual_direction_sandwiches = np.zeros(2 * s)
        self._residual_kernels: Optional[np.ndarray] = None
        self._direction_kernels: Optional[np.ndarray] = None
        self._residual_operator: Optional[BlockVectorOperator] = None
        self._tables: Optional[SandwichTables] = None

    @property
    def residual_kernels(self) -> np.ndarray:
        """Krylov subspace (A * M)^i * r, one kernel per row."""
        return self._residual_kernels

    @property
    def direction_kernels(self) -> np.ndarray:
        """Krylov subspace (A * M)^j * p, one kernel per row."""
        return self._direction_kernels

    @property
    def residual_operator(self) -> Optional[BlockVectorOperator]:
        """Coefficients of the current residual, while a block is open."""
        return self._residual_operator

    @property
    def residual(self) -> np.ndarray:
        # Inside a block the residual only exists as coefficients, so forming
        # it costs a full-length combination of the kernels.
        if self._residual_operator is not None:
            return self._residual_operator.evaluate_vector(self._residual_kernels, self._direction_kernels)
        return self._workspace.residual

    def _evaluate_kernel(self, vector: np.ndarray, kernel: np.ndarray):
        ws = self._workspace
        kernel[0] = vector
        for i in range(1, kernel.shape[0]):
            kernel[i] = ws.matrix.apply(ws.preconditioner.solve(kernel[i - 1]))

    def _evaluate_sandwich(self, kernel1: np.ndarray, kernel2: np.ndarray, sandwich: np.ndarray):
        """
        sandwich[k] = kernel1[0] * M * (A M)^k * kernel2[0], obtained as
        (M kernel1[0]) * kernel2[k] for the first len(kernel2) entries and as
        (M kernel2[-1]) * kernel1[i] for the rest.
        """
        preconditioner = self._workspace.preconditioner
        n2 = kernel2.shape[0]
        sandwich[:n2] = kernel2 @ preconditioner.solve(kernel1[0])
        sandwich[n2:] = kernel1[1:] @ preconditioner.solve(kernel2[-1])

    def _initialize_block_info(self):
        # The first direction equals the residual, so one kernel serves both
        s = self.block_size
        self._evaluate_kernel(self._workspace.residual, self._direction_kernels)
        self._evaluate_sandwich(self._direction_kernels, self._direction_kernels, self.direction_sandwiches)
        self._residual_kernels[:] = self._direction_kernels[:s]
        self.residual_sandwiches[:] = self.direction_sandwiches[:2 * s - 1]
        self.residual_direction_sandwiches[:] = self.direction_sandwiches[:2 * s]
        self._build_tables()

    def _update_block_info(self):
        ws = self._workspace
        self._evaluate_kernel(ws.residual, self._residual_kernels)
        self._evaluate_kernel(ws.direction, self._direction_kernels)
        self._evaluate_sandwich(self._residual_kernels, self._residual_kernels, self.residual_sandwiches)
        self._evaluate_sandwich(self._direction_kernels, self._direction_kernels, self.direction_sandwiches)
        self._evaluate_sandwich(self._residual_kernels, self._direction_kernels,
                                self.residual_direction_sandwiches)
        self._build_tables()

    def _build_tables(self):
        self._tables = SandwichTables.build(self.block_size, self.residual_sandwiches,
                                            self.direction_sandwiches, self.residual_direction_sandwiches)

    def _add_solution_correction(self, solution_operator: BlockVectorOperator):
        """x = x + M * (Σ kernel coefficients). Inside the block M was omitted."""
        ws = self._workspace
        correction = solution_operator.evaluate_vector(self._residual_kernels, self._direction_kernels)
        ws.solution += ws.preconditioner.solve(correction)

    def _solve_internal(self, max_iterations: int) -> IterativeStatistics:
        ws = self._workspace
        s = self.block_size
        n = ws.rhs.shape[0]
        self._residual_kernels = np.zeros((s, n))
        self._direction_kernels = np.zeros((s + 1, n))
        self.residual_sandwiches[:] = 0.0
        self.direction_sandwiches[:] = 0.0
        self.residual_direction_sandwiches[:] = 0.0
        self._residual_operator = None
        try:
            return self._iterate_blocks(max_iterations)
        finally:
            self._residual_operator = None
            self._tables = None

    def _iterate_blocks(self, max_iterations: int) -> IterativeStatistics:
        ws = self._workspace
        s = self.block_size

        self._initialize_block_info()
        ws.direction = ws.residual.copy()
        ws.res_dot_precond_res = float(self.residual_sandwiches[0])  # r * M * r

        residual_norm_ratio = self._initialize_termination()
        self.beta_calculation.initialize(self)
        if self._check_convergence(residual_norm_ratio):
            return self._statistics(True, False, 0, residual_norm_ratio)

        completed = 0
        while completed < max_iterations:
            solution_operator = BlockVectorOperator(s)
            direction_operator = BlockVectorOperator.direction_seed(s)
            self._residual_operator = BlockVectorOperator.residual_seed(s)

            for _ in range(min(s, max_iterations - completed)):
                ws.iteration = completed

                # pAp = p * M * A * M * p
                ws.direction_times_matrix_times_direction = direction_operator.sandwich(self._tables)
                if ws.direction_times_matrix_times_direction <= 0:
                    self._report_loss_of_positive_definiteness(
                        completed, ws.direction_times_matrix_times_direction)
                    self._add_solution_correction(solution_operator)
                    return self._statistics(False, True, completed, residual_norm_ratio)

                ws.step_size = ws.res_dot_precond_res / ws.direction_times_matrix_times_direction
                solution_operator.update_x(ws.step_size, direction_operator)  # x += α p, should be α M p
                self._residual_operator.update_r(ws.step_size, direction_operator)  # r -= α A M p

                ws.res_dot_precond_res_old = ws.res_dot_precond_res
                ws.res_dot_precond_res = self._residual_operator.square(self._tables)

                ws.beta = self.beta_calculation.calculate_beta(self)
                direction_operator.update_p(self._residual_operator, ws.beta)  # p = r + β p, should be M r + β p
                completed += 1

                residual_norm_ratio = self.convergence.estimate_residual_norm_ratio(self)
                self._record(completed, residual_norm_ratio)
                if self._check_convergence(residual_norm_ratio):
                    self._add_solution_correction(solution_operator)
                    return self._statistics(True, False, completed, residual_norm_ratio)
                if self._check_stagnation():
                    self._add_solution_correction(solution_operator)
                    return self._statistics(False, True, completed, residual_norm_ratio)

            # End of block: form the full-length vectors. Only x needs the
            # multiplication with M that was omitted inside the block.
            self._add_solution_correction(solution_operator)
            ws.direction = direction_operator.evaluate_vector(self._residual_kernels, self._direction_kernels)
            self.residual_updater.update_residual(self, ws.residual)
            self._residual_operator = None

            if completed < max_iterations:
                self._update_block_info()
                ws.res_dot_precond_res = float(self.residual_sandwiches[0])

        return self._statistics(False, False, max_iterations, residual_norm_ratio)
