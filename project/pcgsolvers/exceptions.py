"""
Exceptions raised by the conjugate-direction solvers.
"""

from typing import Tuple


class NonMatchingDimensionsError(ValueError):
    """
    Raised before iterating when the operator, right-hand side and solution
    vector do not have compatible dimensions.
    """

    def __init__(self, message: str, expected: Tuple[int, ...], actual: Tuple[int, ...]):
        super().__init__(f"{message}: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class SolverDivergedError(RuntimeError):
    """Raised when a stagnation criterion finds no error reduction at all."""
