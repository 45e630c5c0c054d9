# Copyright 2025 Litianyu141
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Preconditioners and smoothers for the PCG solves.

A preconditioner is any callable ``M(r) -> z`` approximating ``A^{-1} r``.
The classes here are immutable once built:

- IdentityPreconditioner: no preconditioning
- JacobiPreconditioner: diagonal scaling, rebuilt for every training solve
- GaussSeidelSmoother: forward/backward/symmetric sweeps, used inside POD-AMG
"""

import numpy as np
import torch
from scipy import sparse
from scipy.sparse.linalg import spsolve_triangular

from ..config import SweepDirection
from ..exceptions import InvalidInputError
from .matrix_utils import diagonal_of, ensure_csr, to_scipy_csr


class Preconditioner:
    """Base class: callable mapping a residual to a preconditioned residual."""

    name = "Preconditioner"

    def __call__(self, r: torch.Tensor) -> torch.Tensor:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class IdentityPreconditioner(Preconditioner):
    """Returns the residual unchanged."""

    name = "Identity"

    def __call__(self, r: torch.Tensor) -> torch.Tensor:
        return r


class JacobiPreconditioner(Preconditioner):
    """
    Diagonal (Jacobi) preconditioner ``z = D^{-1} r``.

    Args:
        diagonal: Main diagonal of the system matrix. Every entry must be nonzero.
    """

    name = "Jacobi"

    def __init__(self, diagonal: torch.Tensor):
        diagonal = torch.as_tensor(diagonal)
        if diagonal.ndim != 1:
            raise InvalidInputError("Jacobi preconditioner expects a diagonal vector")
        zero = (diagonal == 0).nonzero()
        if zero.numel() > 0:
            raise InvalidInputError(
                f"Jacobi preconditioner needs a nonzero diagonal, entry {zero[0].item()} is zero")
        self._inverse_diagonal = 1.0 / diagonal

    @classmethod
    def from_matrix(cls, A: torch.Tensor) -> "JacobiPreconditioner":
        return cls(diagonal_of(A))

    @property
    def inverse_diagonal(self) -> torch.Tensor:
        return self._inverse_diagonal.clone()

    def __call__(self, r: torch.Tensor) -> torch.Tensor:
        return self._inverse_diagonal.to(r.dtype) * r

    def __repr__(self) -> str:
        return f"JacobiPreconditioner(order={self._inverse_diagonal.numel()})"


class GaussSeidelSmoother(Preconditioner):
    """
    Gauss-Seidel relaxation on a CSR matrix.

    A forward sweep solves with ``D + L``, a backward sweep with ``D + U``;
    a symmetric sweep is a forward sweep followed by a backward one, which
    keeps the smoother symmetric for use inside a CG preconditioner.
    The triangular solves run through ``scipy.sparse.linalg.spsolve_triangular``.

    Args:
        A: Square system matrix (torch CSR/COO/dense)
        direction: Sweep direction
        num_sweeps: Number of sweeps per ``smooth`` call
    """

    name = "Gauss-Seidel"

    def __init__(self, A: torch.Tensor, direction: SweepDirection = SweepDirection.SYMMETRIC,
                 num_sweeps: int = 1):
        if num_sweeps < 1:
            raise InvalidInputError(f"num_sweeps must be >= 1, got {num_sweeps}")
        A = ensure_csr(A)
        if A.shape[0] != A.shape[1]:
            raise InvalidInputError(f"Gauss-Seidel needs a square matrix, got {tuple(A.shape)}")
        if torch.any(diagonal_of(A) == 0):
            raise InvalidInputError("Gauss-Seidel needs a nonzero diagonal")

        self.direction = SweepDirection(direction)
        self.num_sweeps = num_sweeps
        self._A = to_scipy_csr(A)
        self._lower = sparse.tril(self._A, format='csr')
        self._upper = sparse.triu(self._A, format='csr')
        self._dtype = A.dtype

    @property
    def order(self) -> int:
        return self._A.shape[0]

    def _forward(self, x: np.ndarray, b: np.ndarray) -> np.ndarray:
        return x + spsolve_triangular(self._lower, b - self._A @ x, lower=True)

    def _backward(self, x: np.ndarray, b: np.ndarray) -> np.ndarray:
        return x + spsolve_triangular(self._upper, b - self._A @ x, lower=False)

    def smooth(self, x: torch.Tensor, b: torch.Tensor) -> torch.Tensor:
        """Apply ``num_sweeps`` sweeps to the iterate ``x`` of ``A x = b``; returns a new tensor."""
        x_np = x.detach().cpu().numpy().astype(np.float64)
        b_np = b.detach().cpu().numpy().astype(np.float64)
        for _ in range(self.num_sweeps):
            if self.direction in (SweepDirection.FORWARD, SweepDirection.SYMMETRIC):
                x_np = self._forward(x_np, b_np)
            if self.direction in (SweepDirection.BACKWARD, SweepDirection.SYMMETRIC):
                x_np = self._backward(x_np, b_np)
        return torch.from_numpy(x_np).to(device=x.device, dtype=x.dtype)

    def __call__(self, r: torch.Tensor) -> torch.Tensor:
        return self.smooth(torch.zeros_like(r), r)

    def __repr__(self) -> str:
        return (f"GaussSeidelSmoother(order={self.order}, direction='{self.direction.value}', "
                f"num_sweeps={self.num_sweeps})")


__all__ = [
    'Preconditioner',
    'IdentityPreconditioner',
    'JacobiPreconditioner',
    'GaussSeidelSmoother',
]
