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
Tests for POD and the two-level POD-AMG preconditioner.
"""

import pytest
import torch

from pod2g_solver.config import PodAmgConfig
from pod2g_solver.exceptions import InvalidInputError, PreconditionViolationError
from pod2g_solver.linalg import JacobiPreconditioner, pcg
from pod2g_solver.linalg.matrix_utils import create_poisson_2d_sparse_csr, create_tridiagonal_sparse_csr
from pod2g_solver.pod_amg import (
    PodAmgPreconditioner,
    PodAmgPreconditionerFactory,
    proper_orthogonal_decomposition,
)
from pod2g_solver.systems import PerturbedLinearSystemProvider


def random_snapshots(order: int, num_samples: int, rank: int = None) -> torch.Tensor:
    generator = torch.Generator().manual_seed(1)
    if rank is None:
        return torch.randn(order, num_samples, generator=generator, dtype=torch.float64)
    # Only the first ``rank`` rows are nonzero
    left = torch.zeros(order, rank, dtype=torch.float64)
    left[:rank] = torch.randn(rank, rank, generator=generator, dtype=torch.float64)
    right = torch.randn(rank, num_samples, generator=generator, dtype=torch.float64)
    return left @ right


def solution_snapshots(provider: PerturbedLinearSystemProvider, factors) -> torch.Tensor:
    """Exact solutions of the provider's systems, stored as columns."""
    columns = []
    for factor in factors:
        system = provider.build([factor])
        columns.append(torch.linalg.solve(system.matrix.to_dense(), system.rhs))
    return torch.stack(columns, dim=1)


class TestProperOrthogonalDecomposition:

    def test_basis_is_orthonormal(self):
        basis = proper_orthogonal_decomposition(random_snapshots(20, 10), 4)
        assert basis.vectors.shape == (20, 4)
        assert basis.num_components == 4
        assert basis.order == 20
        assert torch.allclose(basis.vectors.T @ basis.vectors, torch.eye(4, dtype=torch.float64), atol=1e-12)
        assert 0 < basis.captured_energy <= 1

    def test_singular_values_are_sorted(self):
        basis = proper_orthogonal_decomposition(random_snapshots(15, 8), 5)
        values = basis.singular_values
        assert torch.all(values[:-1] >= values[1:])

    def test_zero_components_are_dropped(self):
        snapshots = random_snapshots(12, 10, rank=2)
        with pytest.warns(UserWarning, match="only 2 are available"):
            basis = proper_orthogonal_decomposition(snapshots, 5)
        assert basis.num_components == 2
        assert basis.captured_energy == pytest.approx(1.0)

    def test_zero_components_kept_on_request(self):
        snapshots = random_snapshots(12, 10, rank=2)
        basis = proper_orthogonal_decomposition(snapshots, 5, keep_only_nonzero=False)
        assert basis.num_components == 5

    def test_fewer_snapshots_than_components(self):
        with pytest.warns(UserWarning):
            basis = proper_orthogonal_decomposition(random_snapshots(10, 3), 8)
        assert basis.num_components == 3

    @pytest.mark.parametrize("snapshots, k", [
        (torch.zeros(0, 3, dtype=torch.float64), 1),
        (torch.ones(4, dtype=torch.float64), 1),
        (torch.ones(4, 3, dtype=torch.float64), 0),
    ])
    def test_invalid_input(self, snapshots, k):
        with pytest.raises(InvalidInputError):
            proper_orthogonal_decomposition(snapshots, k)


class TestPodAmgPreconditioner:

    def test_operator_is_symmetric(self):
        A = create_poisson_2d_sparse_csr(4, 4)
        basis = proper_orthogonal_decomposition(random_snapshots(16, 6), 3)
        M = PodAmgPreconditioner(A, basis)
        columns = [M(e) for e in torch.eye(16, dtype=torch.float64)]
        operator = torch.stack(columns, dim=1)
        assert torch.allclose(operator, operator.T, atol=1e-10)

    def test_full_coarse_space_inverts_matrix(self):
        A = create_tridiagonal_sparse_csr(10, diag_val=3.0)
        x_true = torch.linspace(1, 2, 10, dtype=torch.float64)
        basis = proper_orthogonal_decomposition(random_snapshots(10, 10), 10)
        M = PodAmgPreconditioner(A, basis)
        b = torch.sparse.mm(A, x_true.unsqueeze(1)).squeeze(1)
        assert torch.allclose(M(b), x_true, atol=1e-10)

    def test_accelerates_pcg_on_poisson(self):
        A = create_poisson_2d_sparse_csr(8, 8)
        provider = PerturbedLinearSystemProvider(A, torch.ones(64), noise=0.1, seed=3)
        snapshots = solution_snapshots(provider, [0.05 * i for i in range(12)])

        factory = PodAmgPreconditionerFactory()
        factory.initialize(snapshots, 8)
        system = provider.build([0.27])

        amg = pcg(system.matrix, system.rhs, factory.create_preconditioner_for(system.matrix),
                  tol=1e-8, maxiter=64)
        jacobi = pcg(system.matrix, system.rhs, JacobiPreconditioner.from_matrix(system.matrix),
                     tol=1e-8, maxiter=64)
        assert amg.converged and jacobi.converged
        assert amg.iterations < jacobi.iterations

    def test_more_cycles_reduce_error(self):
        A = create_poisson_2d_sparse_csr(6, 6)
        basis = proper_orthogonal_decomposition(random_snapshots(36, 5), 4)
        x_true = torch.ones(36, dtype=torch.float64)
        b = torch.sparse.mm(A, x_true.unsqueeze(1)).squeeze(1)
        one = PodAmgPreconditioner(A, basis, PodAmgConfig(num_iterations=1))(b)
        three = PodAmgPreconditioner(A, basis, PodAmgConfig(num_iterations=3))(b)

        def energy_error(x):
            e = x - x_true
            return torch.dot(e, torch.sparse.mm(A, e.unsqueeze(1)).squeeze(1)).item()

        assert energy_error(three) < energy_error(one)

    def test_order_mismatch(self):
        basis = proper_orthogonal_decomposition(random_snapshots(5, 3), 2)
        with pytest.raises(InvalidInputError):
            PodAmgPreconditioner(create_tridiagonal_sparse_csr(6), basis)


class TestPodAmgPreconditionerFactory:

    def test_lifecycle(self):
        factory = PodAmgPreconditionerFactory()
        assert not factory.is_initialized
        with pytest.raises(PreconditionViolationError):
            factory.create_preconditioner_for(create_tridiagonal_sparse_csr(8))
        with pytest.raises(PreconditionViolationError):
            _ = factory.basis

        basis = factory.initialize(random_snapshots(8, 5), 3)
        assert factory.is_initialized
        assert factory.basis is basis
        assert isinstance(factory.create_preconditioner_for(create_tridiagonal_sparse_csr(8)),
                          PodAmgPreconditioner)

    def test_initialize_twice(self):
        factory = PodAmgPreconditionerFactory()
        factory.initialize(random_snapshots(8, 5), 3)
        with pytest.raises(PreconditionViolationError):
            factory.initialize(random_snapshots(8, 5), 3)

    def test_builds_one_preconditioner_per_matrix(self):
        factory = PodAmgPreconditionerFactory()
        factory.initialize(random_snapshots(8, 5), 3)
        first = factory.create_preconditioner_for(create_tridiagonal_sparse_csr(8, diag_val=3.0))
        second = factory.create_preconditioner_for(create_tridiagonal_sparse_csr(8, diag_val=5.0))
        r = torch.ones(8, dtype=torch.float64)
        assert first is not second
        assert not torch.allclose(first(r), second(r))
