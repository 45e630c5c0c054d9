"""
Linear system providers: parameter vector -> (sparse matrix, right hand side).
"""

from .provider import (
    LinearSystem,
    LinearSystemProvider,
    PerturbedLinearSystemProvider,
    validate_parameters,
)
from .io import FileLinearSystemProvider, read_coordinate_matrix, read_rhs

__all__ = [
    'LinearSystem',
    'LinearSystemProvider',
    'PerturbedLinearSystemProvider',
    'FileLinearSystemProvider',
    'validate_parameters',
    'read_coordinate_matrix',
    'read_rhs',
]
