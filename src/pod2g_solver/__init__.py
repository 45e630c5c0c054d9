"""
POD2G Solver - AI-accelerated iterative solution of parameterized sparse linear systems

This package solves a long sequence of symmetric positive definite systems
A(p) x = b(p) in two phases:

- **Training**: Jacobi-preconditioned PCG; solutions are collected
- **AI-enhanced**: PCG preconditioned by a two-level POD-AMG operator built
  from the collected solutions, optionally started from a CAE + FFNN
  surrogate prediction

Quick Start:
    >>> from pod2g_solver import ResponseOrchestrator, AISolver, generate_parameter_values
    >>> from pod2g_solver.systems import FileLinearSystemProvider
    >>>
    >>> provider = FileLinearSystemProvider.from_files('bcsstk14.mtx')
    >>> orchestrator = ResponseOrchestrator(provider, num_principal_components=8)
    >>> solutions = list(AISolver(50, generate_parameter_values(300), orchestrator))
    >>> print(orchestrator.summary())

Step by step:
    >>> x = orchestrator.respond([0.1], SolverMode.TRAINING)
    >>> orchestrator.register([0.1], x)
    >>> orchestrator.train_from_registered()
    >>> x = orchestrator.respond([0.12], SolverMode.AI_ENHANCED)
"""

__version__ = '1.0.0'
__author__ = 'Litianyu141'
__license__ = 'Apache-2.0'

from .exceptions import (
    Pod2GError,
    InvalidInputError,
    InconsistentTrainingDataError,
    PreconditionViolationError,
)

from .config import (
    PcgConfig,
    SweepDirection,
    PodAmgConfig,
    DatasetSplitter,
    SurrogateConfig,
)

from .linalg import SolveResult, pcg, JacobiPreconditioner

from .systems import (
    LinearSystem,
    LinearSystemProvider,
    PerturbedLinearSystemProvider,
    FileLinearSystemProvider,
)

from .pod_amg import (
    ReducedBasis,
    PodAmgPreconditioner,
    PodAmgPreconditionerFactory,
)

from .surrogate import SurrogatePredictor, CaeFfnnSurrogate

from .training import AccumulatorState, TrainingAccumulator

from .solver import (
    SolverMode,
    ConvergenceRecord,
    PhaseStatistics,
    ConvergenceSummary,
    ResponseOrchestrator,
)

from .driver import AISolver, generate_parameter_values

__all__ = [
    # Version info
    '__version__',

    # Errors
    'Pod2GError',
    'InvalidInputError',
    'InconsistentTrainingDataError',
    'PreconditionViolationError',

    # Configuration
    'PcgConfig',
    'SweepDirection',
    'PodAmgConfig',
    'DatasetSplitter',
    'SurrogateConfig',

    # Linear algebra
    'SolveResult',
    'pcg',
    'JacobiPreconditioner',

    # Linear systems
    'LinearSystem',
    'LinearSystemProvider',
    'PerturbedLinearSystemProvider',
    'FileLinearSystemProvider',

    # Reduced order preconditioning
    'ReducedBasis',
    'PodAmgPreconditioner',
    'PodAmgPreconditionerFactory',

    # Surrogate
    'SurrogatePredictor',
    'CaeFfnnSurrogate',

    # Training and orchestration
    'AccumulatorState',
    'TrainingAccumulator',
    'SolverMode',
    'ConvergenceRecord',
    'PhaseStatistics',
    'ConvergenceSummary',
    'ResponseOrchestrator',
    'AISolver',
    'generate_parameter_values',
]
