"""
Base class for the conjugate-direction solvers.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple
import math
import time
import warnings
import numpy as np

from .exceptions import NonMatchingDimensionsError
from .operators import LinearOperator, as_operator
from .preconditioners import Preconditioner, as_preconditioner
from .termination import (
    MaxIterationsProvider,
    NullStagnationCriterion,
    PercentageMaxIterationsProvider,
    RegularPcgConvergence,
    ResidualConvergence,
    StagnationCriterion,
)


# =============================================================================
# CONFIGURATION
# =============================================================================

DEFAULT_RESIDUAL_TOLERANCE = 1e-10
DEFAULT_MAX_ITERATIONS_FRACTION = 1.0
DEFAULT_BLOCK_SIZE = 6


@dataclass(frozen=True)
class IterativeStatistics:
    """Outcome of one solve. Produced once and never modified."""
    algorithm_name: str
    has_converged: bool
    has_stagnated: bool
    num_iterations_required: int
    residual_norm_ratio_estimation: float
    convergence_criterion: str = ""

    # Additional diagnostics
    residual_norm_ratio_history: Tuple[float, ...] = ()
    elapsed_time: float = 0.0


@dataclass
class PcgWorkspace:
    """
    Mutable state of a single solve. Created at the start of ``solve`` and
    dropped when it returns; only ``solution`` (the caller's array) survives.
    """
    matrix: LinearOperator
    preconditioner: Preconditioner
    rhs: np.ndarray
    solution: np.ndarray
    residual: np.ndarray
    precond_residual: Optional[np.ndarray] = None
    direction: Optional[np.ndarray] = None
    matrix_times_direction: Optional[np.ndarray] = None

    # Iteration scalars
    step_size: float = math.nan
    beta: float = math.nan
    res_dot_precond_res: float = math.nan
    res_dot_precond_res_old: float = math.nan
    direction_times_matrix_times_direction: float = math.nan
    iteration: int = 0
    initial_res_dot_precond_res: float = 1.0
    residual_history: List[float] = field(default_factory=list)


class PcgAlgorithmBase(ABC):
    """
    Abstract base class of the Preconditioned Conjugate Gradient family.

    Solves: A @ x = b, A symmetric positive definite.

    The strategies passed to the constructor are copied with their initial
    settings, so the same configured objects can be given to many solvers.
    During a solve they receive the solver itself and read the current
    iteration quantities through its read-only properties.

    A solver instance keeps mutable state while solving; concurrent calls to
    ``solve`` on the same instance are not supported.
    """

    name = "PCG"

    def __init__(self,
                 residual_tolerance: float = DEFAULT_RESIDUAL_TOLERANCE,
                 max_iterations_provider: Optional[MaxIterationsProvider] = None,
                 convergence: Optional[ResidualConvergence] = None,
                 stagnation: Optional[StagnationCriterion] = None,
                 verbose: bool = False):
        """
        Initialize solver with termination parameters.

        Parameters
        ----------
        residual_tolerance : float
            The solver converges when the convergence criterion's ratio is at most this
        max_iterations_provider : MaxIterationsProvider, optional
            Iteration budget policy. Default: as many iterations as the system order
        convergence : ResidualConvergence, optional
            Default: norm2(r) / norm2(b)
        stagnation : StagnationCriterion, optional
            Default: never stagnates
        verbose : bool
            Print iteration progress
        """
        if residual_tolerance <= 0:
            raise ValueError(f"Residual tolerance must be positive, got {residual_tolerance}")
        if max_iterations_provider is None:
            max_iterations_provider = PercentageMaxIterationsProvider(DEFAULT_MAX_ITERATIONS_FRACTION)
        if convergence is None:
            convergence = RegularPcgConvergence()
        if stagnation is None:
            stagnation = NullStagnationCriterion()

        self.residual_tolerance = residual_tolerance
        self.max_iterations_provider = max_iterations_provider.copy_with_initial_settings()
        self.convergence = convergence.copy_with_initial_settings()
        self.stagnation = stagnation.copy_with_initial_settings()
        self.verbose = verbose
        self._workspace: Optional[PcgWorkspace] = None

    # Current iteration quantities, read by the strategies

    @property
    def matrix(self) -> LinearOperator:
        return self._workspace.matrix

    @property
    def preconditioner(self) -> Preconditioner:
        return self._workspace.preconditioner

    @property
    def rhs(self) -> np.ndarray:
        """Right-hand side b (private copy)."""
        return self._workspace.rhs

    @property
    def solution(self) -> np.ndarray:
        return self._workspace.solution

    @property
    def residual(self) -> np.ndarray:
        return self._workspace.residual

    @property
    def precond_residual(self) -> np.ndarray:
        """z = inv(M) * r"""
        return self._workspace.precond_residual

    @property
    def direction(self) -> np.ndarray:
        return self._workspace.direction

    @property
    def matrix_times_direction(self) -> np.ndarray:
        return self._workspace.matrix_times_direction

    @property
    def step_size(self) -> float:
        return self._workspace.step_size

    @property
    def beta(self) -> float:
        return self._workspace.beta

    @property
    def res_dot_precond_res(self) -> float:
        """δ = r * inv(M) * r of this iteration."""
        return self._workspace.res_dot_precond_res

    @property
    def res_dot_precond_res_old(self) -> float:
        return self._workspace.res_dot_precond_res_old

    @property
    def direction_times_matrix_times_direction(self) -> float:
        return self._workspace.direction_times_matrix_times_direction

    @property
    def iteration(self) -> int:
        """Zero-based index of the current iteration."""
        return self._workspace.iteration

    def clear(self) -> None:
        """Discard any state kept between solves."""
        self._workspace = None

    @abstractmethod
    def _solve_internal(self, max_iterations: int) -> IterativeStatistics:
        """
        Run the recurrence. The workspace holds b, x and r = b - Ax on entry.
        """
        pass

    def solve(self,
              matrix,
              preconditioner,
              rhs: np.ndarray,
              solution: np.ndarray,
              initial_guess_is_zero: bool = False) -> IterativeStatistics:
        """
        Solve the linear system A @ x = b.

        Parameters
        ----------
        matrix : LinearOperator, np.ndarray, scipy.sparse matrix or LinearOperator
            System matrix (n x n), symmetric positive definite
        preconditioner : Preconditioner, callable, str or None
            Approximate inverse of A. None means no preconditioning
        rhs : np.ndarray
            Right-hand side vector (n,). Not modified
        solution : np.ndarray
            Float vector (n,), overwritten in place with the solution. Holds the
            initial guess on entry unless ``initial_guess_is_zero`` is True
        initial_guess_is_zero : bool
            If True, ``solution`` is zeroed and its contents ignored

        Returns
        -------
        IterativeStatistics
            Convergence diagnostics
        """
        matrix = as_operator(matrix)
        preconditioner = as_preconditioner(preconditioner, matrix)
        rhs_copy, solution = self._check_dimensions(matrix, rhs, solution)

        if initial_guess_is_zero:
            solution[:] = 0.0
            residual = rhs_copy.copy()
        else:
            residual = rhs_copy - matrix.apply(solution)

        max_iterations = self.max_iterations_provider.get_max_iterations(matrix.num_columns)
        self._workspace = PcgWorkspace(matrix=matrix, preconditioner=preconditioner,
                                       rhs=rhs_copy, solution=solution, residual=residual)

        start_time = time.perf_counter()
        try:
            stats = self._solve_internal(max_iterations)
        finally:
            history = tuple(self._workspace.residual_history)
            self._workspace = None
        elapsed_time = time.perf_counter() - start_time

        stats = replace(stats, residual_norm_ratio_history=history, elapsed_time=elapsed_time)
        if self.verbose:
            status = "converged" if stats.has_converged else (
                "stagnated" if stats.has_stagnated else "did not converge")
            print(f"  {self.name} {status} after {stats.num_iterations_required} iterations, "
                  f"ratio = {stats.residual_norm_ratio_estimation:.6e}")
        return stats

    def _check_dimensions(self, matrix: LinearOperator, rhs, solution) -> Tuple[np.ndarray, np.ndarray]:
        if matrix.num_rows != matrix.num_columns:
            raise NonMatchingDimensionsError("The system matrix must be square",
                                             (matrix.num_rows, matrix.num_rows),
                                             (matrix.num_rows, matrix.num_columns))
        if not isinstance(solution, np.ndarray) or not np.issubdtype(solution.dtype, np.floating):
            raise TypeError("The solution must be a float numpy array, since it is updated in place")
        rhs_array = np.asarray(rhs, dtype=np.float64)
        if rhs_array.ndim != 1 or rhs_array.shape[0] != matrix.num_rows:
            raise NonMatchingDimensionsError("The right-hand side does not match the matrix rows",
                                             (matrix.num_rows,), rhs_array.shape)
        if solution.ndim != 1 or solution.shape[0] != matrix.num_columns:
            raise NonMatchingDimensionsError("The solution does not match the matrix columns",
                                             (matrix.num_columns,), solution.shape)
        if np.shares_memory(solution, rhs_array):
            raise ValueError("The solution vector must not alias the right-hand side")
        return rhs_array.copy(), solution

    def _initialize_termination(self) -> float:
        """
        Initialize the convergence and stagnation strategies, once the first
        r and r * inv(M) * r are known. Returns the initial ratio.
        """
        ws = self._workspace
        self.convergence.initialize(self)
        ratio = self.convergence.estimate_residual_norm_ratio(self)
        if ws.res_dot_precond_res > 0:
            ws.initial_res_dot_precond_res = ws.res_dot_precond_res
        self.stagnation.store_initial_error(self._stagnation_error())
        ws.residual_history.append(ratio)
        return ratio

    def _check_convergence(self, residual_norm_ratio: float) -> bool:
        """Check if solver has converged."""
        return residual_norm_ratio <= self.residual_tolerance

    def _stagnation_error(self) -> float:
        """
        sqrt(r * inv(M) * r) / sqrt(r0 * inv(M) * r0). Independent of the
        convergence criterion, which may not estimate anything.
        """
        ws = self._workspace
        return math.sqrt(max(ws.res_dot_precond_res, 0.0) / ws.initial_res_dot_precond_res)

    def _check_stagnation(self) -> bool:
        self.stagnation.store_new_error(self._stagnation_error())
        return self.stagnation.has_stagnated()

    def _record(self, iteration: int, residual_norm_ratio: float):
        self._workspace.residual_history.append(residual_norm_ratio)
        self._log(iteration, residual_norm_ratio)

    def _report_loss_of_positive_definiteness(self, iteration: int, value: float):
        warnings.warn(f"{self.name}: p * A * p = {value:.6e} <= 0 at iteration {iteration}. "
                      "The operator is not positive definite along the search direction; "
                      "returning the current estimate.", RuntimeWarning, stacklevel=3)

    def _statistics(self, converged: bool, stagnated: bool, iterations: int,
                    residual_norm_ratio: float) -> IterativeStatistics:
        return IterativeStatistics(
            algorithm_name=self.name,
            has_converged=converged,
            has_stagnated=stagnated,
            num_iterations_required=iterations,
            residual_norm_ratio_estimation=residual_norm_ratio,
            convergence_criterion=self.convergence.describe(self.residual_tolerance),
        )

    def _log(self, iteration: int, residual_norm_ratio: float):
        """Log iteration progress."""
        if self.verbose:
            print(f"  {self.name} iter {iteration:4d}: ratio = {residual_norm_ratio:.6e}")
