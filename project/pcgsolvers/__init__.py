"""
Conjugate-Direction Solvers for Linear Systems
==============================================

This package contains implementations of the Preconditioned Conjugate
Gradient family for solving symmetric positive definite systems:

    A x = b

Solvers:
- Preconditioned Conjugate Gradient (PCG)
- Reorthogonalized PCG (direction cache reusable across right-hand sides)
- Block (s-step) PCG

Termination, beta and residual update policies are pluggable strategy
objects; see termination.py and strategies.py.
"""

from .base import IterativeStatistics, PcgAlgorithmBase
from .block_pcg import BlockPcgAlgorithm, BlockVectorOperator
from .exceptions import NonMatchingDimensionsError, SolverDivergedError
from .operators import LinearOperator, MatrixOperator, as_operator
from .preconditioned_cg import PcgAlgorithm
from .preconditioners import (
    CallablePreconditioner,
    IdentityPreconditioner,
    JacobiPreconditioner,
    Preconditioner,
    SsorPreconditioner,
    as_preconditioner,
)
from .reorthogonalized_pcg import ReorthogonalizationCache, ReorthogonalizedPcg
from .strategies import (
    ExactBlockPcgResidualUpdater,
    FletcherReevesBeta,
    PeriodicExactPcgResidualUpdater,
    PolakRibiereBeta,
    RegularBlockPcgResidualUpdater,
    RegularPcgResidualUpdater,
)
from .termination import (
    AbsoluteResidualConvergence,
    AverageStagnationCriterion,
    FixedMaxIterationsProvider,
    NullStagnationCriterion,
    PercentageMaxIterationsProvider,
    RegularPcgConvergence,
    ResidualNeverConverges,
    RhsNormalizedConvergence,
)

__all__ = [
    'IterativeStatistics',
    'PcgAlgorithmBase',
    'PcgAlgorithm',
    'ReorthogonalizedPcg',
    'ReorthogonalizationCache',
    'BlockPcgAlgorithm',
    'BlockVectorOperator',
    'NonMatchingDimensionsError',
    'SolverDivergedError',
    'LinearOperator',
    'MatrixOperator',
    'as_operator',
    'Preconditioner',
    'IdentityPreconditioner',
    'JacobiPreconditioner',
    'SsorPreconditioner',
    'CallablePreconditioner',
    'as_preconditioner',
    'FletcherReevesBeta',
    'PolakRibiereBeta',
    'RegularPcgResidualUpdater',
    'PeriodicExactPcgResidualUpdater',
    'RegularBlockPcgResidualUpdater',
    'ExactBlockPcgResidualUpdater',
    'FixedMaxIterationsProvider',
    'PercentageMaxIterationsProvider',
    'RegularPcgConvergence',
    'RhsNormalizedConvergence',
    'AbsoluteResidualConvergence',
    'ResidualNeverConverges',
    'NullStagnationCriterion',
    'AverageStagnationCriterion',
]
