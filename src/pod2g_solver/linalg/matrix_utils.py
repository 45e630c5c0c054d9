"""
Matrix utility functions for pod2g_solver.

This module provides utilities for building and converting the sparse CSR
matrices the pipeline works with, plus residual helpers.
"""

import torch
import numpy as np
from scipy import sparse
from typing import Callable, Optional, Tuple, Union

from ..exceptions import InvalidInputError

DEFAULT_DTYPE = torch.float64


def coo_to_csr(
    rows: torch.Tensor,
    cols: torch.Tensor,
    values: torch.Tensor,
    shape: Tuple[int, int],
    dtype: torch.dtype = DEFAULT_DTYPE
) -> torch.Tensor:
    """
    Assemble a sparse CSR tensor from coordinate triplets.

    Duplicate coordinates are summed.

    Args:
        rows: Row indices (zero-based)
        cols: Column indices (zero-based)
        values: Entry values
        shape: Matrix shape (n, m)
        dtype: Data type of the values

    Returns:
        Sparse CSR tensor
    """
    indices = torch.stack([rows.to(torch.long), cols.to(torch.long)])
    sparse_coo = torch.sparse_coo_tensor(indices, values.to(dtype), shape, dtype=dtype)
    return sparse_coo.coalesce().to_sparse_csr()


def dense_to_sparse_csr(
    A: torch.Tensor,
    dtype: torch.dtype = DEFAULT_DTYPE
) -> torch.Tensor:
    """
    Convert a dense matrix to sparse CSR format.

    Args:
        A: Dense matrix tensor of shape (n, m)
        dtype: Data type of the result

    Returns:
        Sparse CSR tensor
    """
    if A.ndim != 2:
        raise InvalidInputError(f"Expected 2D tensor, got {A.ndim}D")
    return A.to(dtype).to_sparse_csr()


def ensure_csr(A: torch.Tensor, dtype: torch.dtype = DEFAULT_DTYPE) -> torch.Tensor:
    """Return ``A`` as a CSR tensor of the requested dtype (dense and COO are converted)."""
    if A.layout == torch.sparse_csr:
        return A if A.dtype == dtype else csr_with_values(A, A.values().to(dtype))
    if A.is_sparse:
        return A.coalesce().to(dtype).to_sparse_csr()
    return dense_to_sparse_csr(A, dtype=dtype)


def csr_with_values(base: torch.Tensor, values: torch.Tensor) -> torch.Tensor:
    """
    Create a new CSR tensor with the sparsity pattern of ``base`` and new values.

    The index arrays are cloned, so the result shares no storage with ``base``.
    """
    if values.numel() != base.values().numel():
        raise InvalidInputError(
            f"Expected {base.values().numel()} values for the sparsity pattern, "
            f"got {values.numel()}")
    return torch.sparse_csr_tensor(
        crow_indices=base.crow_indices().clone(),
        col_indices=base.col_indices().clone(),
        values=values,
        size=base.shape,
        dtype=values.dtype,
    )


def row_indices_of(A: torch.Tensor) -> torch.Tensor:
    """Expand the CSR row pointer of ``A`` into one row index per stored value."""
    crow = A.crow_indices()
    counts = crow[1:] - crow[:-1]
    return torch.repeat_interleave(torch.arange(A.shape[0], device=crow.device), counts)


def diagonal_of(A: torch.Tensor) -> torch.Tensor:
    """
    Extract the main diagonal of a matrix.

    Args:
        A: Sparse CSR, sparse COO or dense square matrix

    Returns:
        Dense vector with the diagonal entries (zeros where none are stored)
    """
    if A.layout != torch.sparse_csr:
        if A.is_sparse:
            A = A.coalesce().to_sparse_csr()
        else:
            return torch.diagonal(A).clone()

    rows = row_indices_of(A)
    cols = A.col_indices()
    values = A.values()
    on_diagonal = rows == cols
    diagonal = torch.zeros(A.shape[0], dtype=values.dtype, device=values.device)
    return diagonal.index_add_(0, rows[on_diagonal], values[on_diagonal])


def matvec(
    A: Union[torch.Tensor, Callable[[torch.Tensor], torch.Tensor]],
    x: torch.Tensor
) -> torch.Tensor:
    """Matrix-vector product for dense, sparse (COO/CSR) or callable operators."""
    if callable(A) and not isinstance(A, torch.Tensor):
        return A(x)
    if A.layout == torch.sparse_csr or A.is_sparse:
        return torch.sparse.mm(A, x.unsqueeze(-1)).squeeze(-1)
    return torch.mv(A, x)


def to_scipy_csr(A: torch.Tensor) -> sparse.csr_matrix:
    """Convert a torch CSR tensor to a scipy.sparse CSR matrix (values copied to CPU)."""
    A = ensure_csr(A, dtype=A.dtype if A.dtype.is_floating_point else DEFAULT_DTYPE)
    return sparse.csr_matrix(
        (
            A.values().detach().cpu().numpy(),
            A.col_indices().detach().cpu().numpy(),
            A.crow_indices().detach().cpu().numpy(),
        ),
        shape=tuple(A.shape),
    )


def create_tridiagonal_sparse_csr(
    n: int,
    diag_val: float = 2.0,
    off_diag_val: float = -1.0,
    dtype: torch.dtype = DEFAULT_DTYPE
) -> torch.Tensor:
    """
    Create a tridiagonal sparse CSR tensor.

    Args:
        n: Matrix dimension
        diag_val: Main diagonal value
        off_diag_val: Off-diagonal value
        dtype: Data type

    Returns:
        Sparse CSR tensor representing a tridiagonal matrix
    """
    main = torch.arange(n)
    rows = [main]
    cols = [main]
    values = [torch.full((n,), diag_val, dtype=dtype)]

    if n > 1:
        upper = torch.arange(n - 1)
        rows += [upper, upper + 1]
        cols += [upper + 1, upper]
        values += [torch.full((n - 1,), off_diag_val, dtype=dtype)] * 2

    return coo_to_csr(torch.cat(rows), torch.cat(cols), torch.cat(values), (n, n), dtype=dtype)


def create_poisson_2d_sparse_csr(
    nx: int,
    ny: int,
    dtype: torch.dtype = DEFAULT_DTYPE
) -> torch.Tensor:
    """
    Create a 2D Poisson matrix using 5-point stencil.

    Args:
        nx: Number of grid points in x direction
        ny: Number of grid points in y direction
        dtype: Data type

    Returns:
        Sparse CSR tensor representing the Poisson operator
    """
    n = nx * ny
    grid = torch.arange(n).reshape(nx, ny)

    rows = [grid.flatten()]
    cols = [grid.flatten()]
    values = [torch.full((n,), 4.0, dtype=dtype)]

    # Left/right neighbours, then bottom/top neighbours
    for a, b in ((grid[:-1, :], grid[1:, :]), (grid[:, :-1], grid[:, 1:])):
        a, b = a.flatten(), b.flatten()
        rows += [a, b]
        cols += [b, a]
        values += [torch.full((a.numel(),), -1.0, dtype=dtype)] * 2

    return coo_to_csr(torch.cat(rows), torch.cat(cols), torch.cat(values), (n, n), dtype=dtype)


def compute_residual(
    A: Union[torch.Tensor, Callable],
    x: torch.Tensor,
    b: torch.Tensor
) -> torch.Tensor:
    """
    Compute the residual r = b - Ax.

    Args:
        A: Matrix (dense, sparse, or callable)
        x: Solution vector
        b: Right-hand side vector

    Returns:
        Residual vector
    """
    return b - matvec(A, x)


def compute_relative_residual(
    A: Union[torch.Tensor, Callable],
    x: torch.Tensor,
    b: torch.Tensor
) -> float:
    """
    Compute the relative residual ||b - Ax|| / ||b||.

    A zero right-hand side yields the absolute residual norm instead.

    Args:
        A: Matrix (dense, sparse, or callable)
        x: Solution vector
        b: Right-hand side vector

    Returns:
        Relative residual (scalar)
    """
    residual_norm = torch.norm(compute_residual(A, x, b)).item()
    b_norm = torch.norm(b).item()
    return residual_norm / b_norm if b_norm > 0 else residual_norm


def as_vector(values, dtype: torch.dtype = DEFAULT_DTYPE, name: str = "vector") -> torch.Tensor:
    """Convert a sequence, NumPy array or tensor into a detached 1D tensor copy."""
    if values is None:
        raise InvalidInputError(f"{name} must not be None")
    if isinstance(values, torch.Tensor):
        vector = values.detach().to(dtype).clone()
    else:
        vector = torch.as_tensor(np.asarray(values, dtype=np.float64), dtype=dtype).clone()
    if vector.ndim != 1:
        raise InvalidInputError(f"{name} must be one-dimensional, got shape {tuple(vector.shape)}")
    return vector
