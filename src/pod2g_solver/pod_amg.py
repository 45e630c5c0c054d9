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
POD-AMG: a two-level algebraic multigrid preconditioner whose coarse space is
spanned by the dominant POD modes of previously computed solutions.

Workflow:
    >>> factory = PodAmgPreconditionerFactory()
    >>> factory.initialize(snapshots, num_components=8)   # once, snapshots as columns
    >>> M = factory.create_preconditioner_for(A)          # per system matrix
    >>> result = pcg(A, b, M)

One application of the preconditioner runs ``num_iterations`` two-level
cycles starting from zero: smoother sweep, Galerkin coarse correction
``P (P^T A P)^{-1} P^T r``, smoother sweep. With a symmetric Gauss-Seidel
smoother the resulting operator is symmetric, as PCG requires.
"""

import logging
import warnings
from dataclasses import dataclass
from typing import Optional

import torch

from .config import PodAmgConfig
from .exceptions import InvalidInputError, PreconditionViolationError
from .linalg.matrix_utils import DEFAULT_DTYPE, ensure_csr, matvec
from .linalg.preconditioners import GaussSeidelSmoother, Preconditioner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReducedBasis:
    """Orthonormal POD modes (as columns) and their singular values."""
    vectors: torch.Tensor          # (order, num_components)
    singular_values: torch.Tensor  # (num_components,)
    captured_energy: float         # Fraction of snapshot energy spanned by the modes

    @property
    def order(self) -> int:
        return self.vectors.shape[0]

    @property
    def num_components(self) -> int:
        return self.vectors.shape[1]


def proper_orthogonal_decomposition(
    snapshots: torch.Tensor,
    num_components: int,
    keep_only_nonzero: bool = True
) -> ReducedBasis:
    """
    Extract the dominant left singular vectors of a snapshot matrix.

    Args:
        snapshots: Matrix whose columns are solution vectors, shape (order, num_samples)
        num_components: Number of principal components requested
        keep_only_nonzero: Drop components whose singular value is numerically zero

    Returns:
        ReducedBasis with at most ``num_components`` modes
    """
    if num_components < 1:
        raise InvalidInputError(f"num_components must be >= 1, got {num_components}")
    if snapshots.ndim != 2 or snapshots.shape[0] == 0 or snapshots.shape[1] == 0:
        raise InvalidInputError(f"Snapshot matrix must be non-empty 2D, got shape {tuple(snapshots.shape)}")

    snapshots = snapshots.to(DEFAULT_DTYPE)
    U, S, _ = torch.linalg.svd(snapshots, full_matrices=False)

    k = min(num_components, S.numel())
    if keep_only_nonzero:
        threshold = S.max() * max(snapshots.shape) * torch.finfo(S.dtype).eps
        k = min(k, int((S > threshold).sum().item()))
    if k < num_components:
        warnings.warn(
            f"Requested {num_components} principal components, but only {k} are available "
            f"from {snapshots.shape[1]} snapshots")

    total_energy = torch.sum(S ** 2).item()
    captured = torch.sum(S[:k] ** 2).item() / total_energy if total_energy > 0 else 0.0
    return ReducedBasis(vectors=U[:, :k].clone(), singular_values=S[:k].clone(),
                        captured_energy=captured)


class PodAmgPreconditioner(Preconditioner):
    """
    Two-level POD-AMG preconditioner for one system matrix.

    Args:
        A: System matrix
        basis: POD basis defining the coarse space
        config: Cycle and smoother settings
    """

    name = "POD-AMG"

    def __init__(self, A: torch.Tensor, basis: ReducedBasis, config: Optional[PodAmgConfig] = None):
        self.config = config or PodAmgConfig()
        self._A = ensure_csr(A)
        if self._A.shape[0] != basis.order:
            raise InvalidInputError(
                f"Matrix order {self._A.shape[0]} does not match POD basis order {basis.order}")

        self._P = basis.vectors
        self._smoother = GaussSeidelSmoother(
            self._A, direction=self.config.sweep_direction, num_sweeps=self.config.smoother_sweeps)

        if basis.num_components > 0:
            AP = torch.sparse.mm(self._A, self._P)
            coarse = self._P.T @ AP
            coarse = 0.5 * (coarse + coarse.T)
            self._coarse_inverse = torch.linalg.inv(coarse)
        else:
            self._coarse_inverse = None

    @property
    def num_components(self) -> int:
        return self._P.shape[1]

    def _coarse_correction(self, residual: torch.Tensor) -> torch.Tensor:
        return self._P @ (self._coarse_inverse @ (self._P.T @ residual))

    def _cycle(self, z: torch.Tensor, r: torch.Tensor) -> torch.Tensor:
        z = self._smoother.smooth(z, r)
        if self._coarse_inverse is not None:
            z = z + self._coarse_correction(r - matvec(self._A, z))
        return self._smoother.smooth(z, r)

    def __call__(self, r: torch.Tensor) -> torch.Tensor:
        z = torch.zeros_like(r)
        for _ in range(self.config.num_iterations):
            z = self._cycle(z, r)
        return z

    def __repr__(self) -> str:
        return (f"PodAmgPreconditioner(order={self._P.shape[0]}, "
                f"num_components={self.num_components}, smoother={self._smoother!r})")


class PodAmgPreconditionerFactory:
    """
    Holds the POD basis and builds a PodAmgPreconditioner for each new matrix.

    The factory is initialized exactly once from the training snapshots and is
    read-only afterwards.
    """

    def __init__(self, config: Optional[PodAmgConfig] = None):
        self.config = config or PodAmgConfig()
        self._basis: Optional[ReducedBasis] = None

    @property
    def is_initialized(self) -> bool:
        return self._basis is not None

    @property
    def basis(self) -> ReducedBasis:
        if self._basis is None:
            raise PreconditionViolationError("POD-AMG factory has not been initialized")
        return self._basis

    def initialize(self, snapshots: torch.Tensor, num_components: int) -> ReducedBasis:
        """
        Compute the POD basis from snapshots stored as columns.

        Raises:
            PreconditionViolationError: if the factory was already initialized
        """
        if self._basis is not None:
            raise PreconditionViolationError("POD-AMG factory is already initialized")
        basis = proper_orthogonal_decomposition(
            snapshots, num_components,
            keep_only_nonzero=self.config.keep_only_nonzero_principal_components)
        logger.info("POD basis: %d of %d requested components, %.6f of snapshot energy",
                    basis.num_components, num_components, basis.captured_energy)
        self._basis = basis
        return basis

    def create_preconditioner_for(self, A: torch.Tensor) -> PodAmgPreconditioner:
        if self._basis is None:
            raise PreconditionViolationError(
                "POD-AMG preconditioner requested before the factory was initialized")
        return PodAmgPreconditioner(A, self._basis, self.config)

    def __repr__(self) -> str:
        components = self._basis.num_components if self._basis is not None else None
        return f"PodAmgPreconditionerFactory(initialized={self.is_initialized}, num_components={components})"


__all__ = [
    'ReducedBasis',
    'proper_orthogonal_decomposition',
    'PodAmgPreconditioner',
    'PodAmgPreconditionerFactory',
]
