"""
Termination Strategies
======================

Small policy objects that decide when a conjugate-direction solver stops:

- max-iteration providers (budget from the order of the system)
- residual convergence criteria (ratio compared against the tolerance)
- stagnation criteria (no meaningful error reduction any more)

Every strategy implements ``copy_with_initial_settings()``: it returns a new
object with the same configuration but none of the state accumulated while
serving a solve, so one configured strategy can seed many solvers.
"""

from abc import ABC, abstractmethod
from typing import List, Optional
import math
import numpy as np

from .exceptions import SolverDivergedError


# =============================================================================
# MAX ITERATIONS
# =============================================================================

class MaxIterationsProvider(ABC):

    @abstractmethod
    def get_max_iterations(self, order: int) -> int:
        pass

    @abstractmethod
    def copy_with_initial_settings(self) -> 'MaxIterationsProvider':
        pass


class FixedMaxIterationsProvider(MaxIterationsProvider):
    """The same budget regardless of the system order."""

    def __init__(self, max_iterations: int):
        if max_iterations < 1:
            raise ValueError(f"Max iterations must be positive, got {max_iterations}")
        self.max_iterations = max_iterations

    def get_max_iterations(self, order: int) -> int:
        return self.max_iterations

    def copy_with_initial_settings(self) -> 'FixedMaxIterationsProvider':
        return FixedMaxIterationsProvider(self.max_iterations)


class PercentageMaxIterationsProvider(MaxIterationsProvider):
    """
    Budget proportional to the system order: ceil(fraction * order).

    A fraction of 1.0 allows exactly as many iterations as CG needs in exact
    arithmetic.
    """

    def __init__(self, fraction: float):
        if fraction <= 0:
            raise ValueError(f"Iteration fraction must be positive, got {fraction}")
        self.fraction = fraction

    def get_max_iterations(self, order: int) -> int:
        return max(1, int(math.ceil(self.fraction * order)))

    def copy_with_initial_settings(self) -> 'PercentageMaxIterationsProvider':
        return PercentageMaxIterationsProvider(self.fraction)


# =============================================================================
# CONVERGENCE CRITERIA
# =============================================================================

class ResidualConvergence(ABC):
    """
    Estimates the ratio that is compared against the residual tolerance.

    ``initialize`` is called once per solve, right after the first residual
    and r * M^{-1} * r are known.
    """

    def initialize(self, pcg) -> None:
        pass

    @abstractmethod
    def estimate_residual_norm_ratio(self, pcg) -> float:
        pass

    @abstractmethod
    def describe(self, tolerance: float) -> str:
        pass

    def copy_with_initial_settings(self) -> 'ResidualConvergence':
        return type(self)()


class RegularPcgConvergence(ResidualConvergence):
    """norm2(r) / norm2(b). Falls back to norm2(r) for a zero right-hand side."""

    def __init__(self):
        self.denominator = 1.0

    def initialize(self, pcg) -> None:
        norm = np.linalg.norm(pcg.rhs)
        self.denominator = norm if norm > 0 else 1.0

    def estimate_residual_norm_ratio(self, pcg) -> float:
        return np.linalg.norm(pcg.residual) / self.denominator

    def describe(self, tolerance: float) -> str:
        return f"norm2(b - A * x) / norm2(b) <= {tolerance}"


class RhsNormalizedConvergence(ResidualConvergence):
    """
    sqrt(r * inv(M) * r) / sqrt(b * inv(M) * b).

    Uses only the dot product the recurrence already computes, so it needs no
    extra full-length operations per iteration. Block PCG relies on this, since
    its residual is not materialized inside a block.
    """

    def __init__(self):
        self.denominator = 1.0

    def initialize(self, pcg) -> None:
        rhs = pcg.rhs
        rhs_dot = float(np.dot(rhs, pcg.preconditioner.solve(rhs)))
        self.denominator = math.sqrt(rhs_dot) if rhs_dot > 0 else 1.0

    def estimate_residual_norm_ratio(self, pcg) -> float:
        return math.sqrt(max(pcg.res_dot_precond_res, 0.0)) / self.denominator

    def describe(self, tolerance: float) -> str:
        return f"sqrt(r * inv(M) * r) / sqrt(b * inv(M) * b) <= {tolerance}"


class AbsoluteResidualConvergence(ResidualConvergence):
    """norm2(r), not normalized."""

    def estimate_residual_norm_ratio(self, pcg) -> float:
        return np.linalg.norm(pcg.residual)

    def describe(self, tolerance: float) -> str:
        return f"norm2(b - A * x) <= {tolerance}"


class ResidualNeverConverges(ResidualConvergence):
    """
    Useful when a solver needs to run for a specified number of iterations,
    e.g. for benchmarking. Avoids any extra operation per iteration.
    """

    def estimate_residual_norm_ratio(self, pcg) -> float:
        return math.inf

    def describe(self, tolerance: float) -> str:
        return ("No convergence criterion specified. Iterative solution algorithm stops, "
                "when max iterations are reached.")


# =============================================================================
# STAGNATION CRITERIA
# =============================================================================

class StagnationCriterion(ABC):

    @abstractmethod
    def store_initial_error(self, initial_error: float) -> None:
        pass

    @abstractmethod
    def store_new_error(self, current_error: float) -> None:
        pass

    @abstractmethod
    def has_stagnated(self) -> bool:
        pass

    @abstractmethod
    def copy_with_initial_settings(self) -> 'StagnationCriterion':
        pass


class NullStagnationCriterion(StagnationCriterion):
    """Never reports stagnation."""

    def store_initial_error(self, initial_error: float) -> None:
        pass

    def store_new_error(self, current_error: float) -> None:
        pass

    def has_stagnated(self) -> bool:
        return False

    def copy_with_initial_settings(self) -> 'NullStagnationCriterion':
        return NullStagnationCriterion()


# FIXME: If there is one sharp increase in the error (outlier), followed by
# decreases, the auto-calibrated tolerance makes this report stagnation.
class AverageStagnationCriterion(StagnationCriterion):
    """
    Stagnation when the average relative error reduction over the last
    ``iteration_span`` iterations is at most ``relative_improvement_tolerance``.

    If no tolerance is given, it is set once per solve to 1E-3 times the first
    positive relative reduction found in the error history.
    """

    def __init__(self, iteration_span: int, relative_improvement_tolerance: Optional[float] = None):
        if iteration_span < 1:
            raise ValueError(f"Iteration span must be positive, got {iteration_span}")
        self.iteration_span = iteration_span
        self.initial_tolerance = relative_improvement_tolerance
        self.relative_improvement_tolerance = relative_improvement_tolerance
        self.error_history: List[float] = []

    def copy_with_initial_settings(self) -> 'AverageStagnationCriterion':
        return AverageStagnationCriterion(self.iteration_span, self.initial_tolerance)

    def store_initial_error(self, initial_error: float) -> None:
        self.error_history = [initial_error]
        self.relative_improvement_tolerance = self.initial_tolerance

    def store_new_error(self, current_error: float) -> None:
        self.error_history.append(current_error)

    def has_stagnated(self) -> bool:
        reductions = self._relative_error_reductions()
        if reductions is None:
            return False  # Not enough data yet
        relative_improvement = float(np.mean(reductions))
        if self.relative_improvement_tolerance is None:
            self.relative_improvement_tolerance = 1E-3 * self._initial_error_reduction()
        return relative_improvement <= self.relative_improvement_tolerance

    def _initial_error_reduction(self) -> float:
        for t in range(self.iteration_span):
            current = self.error_history[t]
            reduction = (current - self.error_history[t + 1]) / current
            if reduction > 0:
                return reduction
        # No improvement at all in the first span
        raise SolverDivergedError("PCG diverges: no error reduction in the first "
                                  f"{self.iteration_span} iterations")

    def _relative_error_reductions(self) -> Optional[np.ndarray]:
        if len(self.error_history) <= self.iteration_span:
            return None
        window = np.asarray(self.error_history[-(self.iteration_span + 1):])
        return (window[:-1] - window[1:]) / window[:-1]
