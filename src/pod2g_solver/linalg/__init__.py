"""
Sparse linear algebra layer: CSR helpers, preconditioners and PCG.

Example:
    >>> from pod2g_solver.linalg import pcg, JacobiPreconditioner
    >>> from pod2g_solver.linalg.matrix_utils import create_tridiagonal_sparse_csr
    >>> A = create_tridiagonal_sparse_csr(50)
    >>> b = torch.ones(50, dtype=torch.float64)
    >>> result = pcg(A, b, JacobiPreconditioner.from_matrix(A), tol=1e-8)
    >>> print(f"Converged: {result.converged}, Iterations: {result.iterations}")
"""

from .matrix_utils import (
    coo_to_csr,
    dense_to_sparse_csr,
    ensure_csr,
    csr_with_values,
    diagonal_of,
    matvec,
    to_scipy_csr,
    compute_residual,
    compute_relative_residual,
)
from .preconditioners import (
    Preconditioner,
    IdentityPreconditioner,
    JacobiPreconditioner,
    GaussSeidelSmoother,
)
from .pcg import SolveResult, pcg

__all__ = [
    'coo_to_csr',
    'dense_to_sparse_csr',
    'ensure_csr',
    'csr_with_values',
    'diagonal_of',
    'matvec',
    'to_scipy_csr',
    'compute_residual',
    'compute_relative_residual',
    'Preconditioner',
    'IdentityPreconditioner',
    'JacobiPreconditioner',
    'GaussSeidelSmoother',
    'SolveResult',
    'pcg',
]
