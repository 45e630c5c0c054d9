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
Tests for the two-phase ResponseOrchestrator:
- mode/state checks
- preconditioner, initial guess and reorthogonalization policy per phase
- absorbed solver failures
- convergence summary split at the phase boundary
"""

import math

import numpy as np
import pytest
import torch

from pod2g_solver.config import PcgConfig
from pod2g_solver.exceptions import InvalidInputError, PreconditionViolationError
from pod2g_solver.linalg import compute_relative_residual, dense_to_sparse_csr
from pod2g_solver.linalg.matrix_utils import create_poisson_2d_sparse_csr, create_tridiagonal_sparse_csr
from pod2g_solver.linalg.pcg import MAX_ITERATIONS_REACHED
from pod2g_solver.solver import (
    ConvergenceRecord,
    ConvergenceSummary,
    PhaseStatistics,
    ResponseOrchestrator,
    SolverMode,
)
from pod2g_solver.systems import PerturbedLinearSystemProvider
from pod2g_solver.training import TrainingAccumulator


def make_record(iterations: int, converged: bool = True, mode: SolverMode = SolverMode.TRAINING):
    return ConvergenceRecord(converged=converged, iterations=iterations, solver_label="PCG",
                             mode=mode, residual_norm=0.0 if converged else 1.0)


def trained_orchestrator(provider, surrogate, rng, num_samples=10, num_parameters=4,
                         num_principal_components=6, **kwargs):
    """Orchestrator trained on random 6-length solutions (full-rank snapshots)."""
    accumulator = TrainingAccumulator(num_principal_components=num_principal_components, surrogate=surrogate)
    orchestrator = ResponseOrchestrator(provider, accumulator, **kwargs)
    for _ in range(num_samples):
        orchestrator.register(rng.normal(size=num_parameters), rng.normal(size=provider.order))
    orchestrator.train_from_registered()
    return orchestrator


class TestModeChecks:

    def test_ai_response_before_training(self, tridiagonal_provider, mean_surrogate):
        orchestrator = ResponseOrchestrator(tridiagonal_provider, TrainingAccumulator(surrogate=mean_surrogate))
        with pytest.raises(PreconditionViolationError):
            orchestrator.respond([0.1], SolverMode.AI_ENHANCED)
        assert orchestrator.records == ()
        assert orchestrator.state is SolverMode.TRAINING

    def test_training_response_after_switch(self, tridiagonal_provider, mean_surrogate, rng):
        orchestrator = trained_orchestrator(tridiagonal_provider, mean_surrogate, rng)
        assert orchestrator.state is SolverMode.AI_ENHANCED
        with pytest.raises(PreconditionViolationError):
            orchestrator.model_response([0.1, 0.0, 0.0, 0.0])

    def test_train_twice(self, tridiagonal_provider, mean_surrogate, rng):
        orchestrator = trained_orchestrator(tridiagonal_provider, mean_surrogate, rng)
        with pytest.raises(PreconditionViolationError):
            orchestrator.train_from_registered()

    def test_enable_ai_enhancement_requires_training(self, tridiagonal_provider, mean_surrogate):
        orchestrator = ResponseOrchestrator(tridiagonal_provider, TrainingAccumulator(surrogate=mean_surrogate))
        with pytest.raises(PreconditionViolationError):
            orchestrator.enable_ai_enhancement()

    def test_externally_trained_accumulator(self, tridiagonal_provider, mean_surrogate, rng):
        accumulator = TrainingAccumulator(num_principal_components=6, surrogate=mean_surrogate)
        orchestrator = ResponseOrchestrator(tridiagonal_provider, accumulator)
        for _ in range(8):
            accumulator.register(rng.normal(size=1), rng.normal(size=6))
        accumulator.train_from_registered()
        assert orchestrator.state is SolverMode.TRAINING
        orchestrator.enable_ai_enhancement()
        assert orchestrator.ai_response([0.2]).shape == (6,)

    def test_mode_given_as_string(self, tridiagonal_provider, mean_surrogate):
        orchestrator = ResponseOrchestrator(tridiagonal_provider, TrainingAccumulator(surrogate=mean_surrogate),
                                            pcg_config=PcgConfig(max_iterations_over_order=1.0))
        assert orchestrator.respond([0.1], "training").shape == (6,)
        with pytest.raises(ValueError):
            orchestrator.respond([0.1], "hybrid")

    def test_invalid_parameters_are_not_recorded(self, tridiagonal_provider, mean_surrogate):
        orchestrator = ResponseOrchestrator(tridiagonal_provider, TrainingAccumulator(surrogate=mean_surrogate))
        with pytest.raises(InvalidInputError):
            orchestrator.model_response([])
        assert orchestrator.records == ()
        assert orchestrator.num_training_calls == 0

    def test_requires_provider(self):
        with pytest.raises(InvalidInputError):
            ResponseOrchestrator(None)


class TestTrainingResponse:

    def test_diagonally_dominant_5x5_converges(self, mean_surrogate):
        dense = torch.diag(torch.tensor([4.0, 5.0, 6.0, 7.0, 8.0], dtype=torch.float64))
        provider = PerturbedLinearSystemProvider(dense_to_sparse_csr(dense), torch.ones(5), seed=0)
        orchestrator = ResponseOrchestrator(provider, TrainingAccumulator(surrogate=mean_surrogate))

        x = orchestrator.respond([0.0], SolverMode.TRAINING)

        assert isinstance(x, np.ndarray)
        record = orchestrator.records[0]
        assert record.converged
        assert record.iterations <= PcgConfig().max_iterations_for(5)
        assert record.solver_label == "Reorthogonalized PCG"
        assert record.mode is SolverMode.TRAINING
        assert record.failure is None
        residual = compute_relative_residual(provider.base_matrix, torch.from_numpy(x), provider.base_rhs)
        assert residual < 1e-6

    def test_tridiagonal_5x5_converges_with_full_cap(self, mean_surrogate):
        provider = PerturbedLinearSystemProvider(
            create_tridiagonal_sparse_csr(5, diag_val=4.0), torch.arange(1.0, 6.0), seed=0)
        orchestrator = ResponseOrchestrator(provider, TrainingAccumulator(surrogate=mean_surrogate),
                                            pcg_config=PcgConfig(max_iterations_over_order=1.0))
        x = orchestrator.model_response([0.0])
        assert orchestrator.records[0].converged
        assert compute_relative_residual(provider.base_matrix, torch.from_numpy(x), provider.base_rhs) < 1e-6

    def test_iteration_cap_exceeded_is_recorded(self, mean_surrogate):
        provider = PerturbedLinearSystemProvider(create_poisson_2d_sparse_csr(10, 10), torch.ones(100), seed=0)
        orchestrator = ResponseOrchestrator(
            provider, TrainingAccumulator(surrogate=mean_surrogate),
            pcg_config=PcgConfig(residual_tolerance=1e-12, max_iterations_over_order=0.01))

        x = orchestrator.model_response([0.0])

        assert x.shape == (100,)
        assert len(orchestrator.records) == 1
        record = orchestrator.records[0]
        assert not record.converged
        assert record.iterations == 1
        assert record.failure == MAX_ITERATIONS_REACHED
        assert record.solver_label == f"Reorthogonalized PCG - {MAX_ITERATIONS_REACHED}"

    def test_solver_failure_is_absorbed(self, mean_surrogate):
        # Zero diagonal entry: the Jacobi preconditioner cannot be built
        dense = torch.tensor([[0.0, 1.0], [1.0, 2.0]], dtype=torch.float64)
        provider = PerturbedLinearSystemProvider(dense_to_sparse_csr(dense), torch.ones(2), seed=0)
        orchestrator = ResponseOrchestrator(provider, TrainingAccumulator(surrogate=mean_surrogate))

        x = orchestrator.model_response([0.0])
        orchestrator.model_response([0.1])

        np.testing.assert_array_equal(x, np.zeros(2))
        assert len(orchestrator.records) == 2
        record = orchestrator.records[0]
        assert not record.converged
        assert record.iterations == 0
        assert math.isnan(record.residual_norm)
        assert record.solver_label.startswith("Reorthogonalized PCG - ")
        assert "diagonal" in record.failure
        assert orchestrator.summary().training.non_converged == 2

    def test_training_calls_are_counted(self, tridiagonal_provider, mean_surrogate):
        orchestrator = ResponseOrchestrator(tridiagonal_provider, TrainingAccumulator(surrogate=mean_surrogate))
        for factor in (0.0, 0.1, 0.2):
            orchestrator.model_response([factor])
        assert orchestrator.num_training_calls == 3
        assert orchestrator.num_ai_enhanced_calls == 0


class TestAIEnhancedResponse:

    def test_end_to_end(self, tridiagonal_provider, tiny_surrogate_config, rng):
        accumulator = TrainingAccumulator(num_principal_components=6, surrogate_config=tiny_surrogate_config)
        orchestrator = ResponseOrchestrator(tridiagonal_provider, accumulator, use_surrogate_initial_guess=True)
        for _ in range(10):
            orchestrator.register(rng.normal(size=4), rng.normal(size=6))

        report = orchestrator.train_from_registered()
        x = orchestrator.respond(rng.normal(size=4), SolverMode.AI_ENHANCED)

        assert 'surrogate_test_loss' in report
        assert x.shape == (6,)
        record = orchestrator.records[-1]
        assert record.mode is SolverMode.AI_ENHANCED
        assert record.converged
        assert record.solver_label == "PCG"

    def test_uses_pod_amg_without_reorthogonalization(self, tridiagonal_provider, mean_surrogate, rng):
        orchestrator = trained_orchestrator(tridiagonal_provider, mean_surrogate, rng)
        x = orchestrator.ai_response([0.3, 0.0, 0.0, 0.0])
        record = orchestrator.records[-1]
        # A full POD basis makes the coarse correction exact
        assert record.converged
        assert record.iterations <= 1
        assert record.solver_label == "PCG"
        system = PerturbedLinearSystemProvider(tridiagonal_provider.base_matrix,
                                               tridiagonal_provider.base_rhs).build([0.3])
        assert compute_relative_residual(system.matrix, torch.from_numpy(x), system.rhs) < 1e-6

    def test_surrogate_guess_disables_reorthogonalization_in_training(self, tridiagonal_provider, mean_surrogate):
        orchestrator = ResponseOrchestrator(tridiagonal_provider, TrainingAccumulator(surrogate=mean_surrogate),
                                            use_surrogate_initial_guess=True)
        orchestrator.model_response([0.1])
        assert orchestrator.records[0].solver_label.split(" - ")[0] == "PCG"

    def test_surrogate_prediction_is_initial_guess(self, tridiagonal_provider, mean_surrogate, rng):
        orchestrator = trained_orchestrator(tridiagonal_provider, mean_surrogate, rng,
                                            use_surrogate_initial_guess=True)
        exact = torch.linalg.solve(tridiagonal_provider.base_matrix.to_dense(), tridiagonal_provider.base_rhs)
        # Mean surrogate returns the exact solution: no iterations are needed
        mean_surrogate._mean = exact.numpy()
        x = orchestrator.ai_response([0.0, 0.0, 0.0, 0.0])
        assert orchestrator.records[-1].iterations == 0
        np.testing.assert_allclose(x, exact.numpy())


class TestSummary:

    def test_phase_statistics(self):
        records = [make_record(3), make_record(7), make_record(5), make_record(40, converged=False)]
        stats = PhaseStatistics.from_records(records)
        assert stats.calls == 4
        assert stats.converged == 3
        assert stats.non_converged == 1
        assert stats.min_iterations == 3
        assert stats.max_iterations == 7
        assert stats.average_iterations == pytest.approx(5.0)

    def test_empty_phase(self):
        stats = PhaseStatistics.from_records([])
        assert stats.calls == 0
        assert stats.min_iterations is None and stats.max_iterations is None

    def test_summary_string(self):
        summary = ConvergenceSummary(
            training=PhaseStatistics.from_records([make_record(3), make_record(9)]),
            ai_enhanced=PhaseStatistics.from_records([make_record(2, mode=SolverMode.AI_ENHANCED),
                                                      make_record(5, False, SolverMode.AI_ENHANCED)]),
        )
        assert str(summary) == ("Min 3, max 9, avg 6.00, minAI 2, maxAI 2, avgAI 2.00, NC 0, NCAI 1")

    def test_split_at_phase_boundary(self, mean_surrogate):
        provider = PerturbedLinearSystemProvider(create_poisson_2d_sparse_csr(6, 6), torch.ones(36),
                                                 noise=0.1, seed=5)
        accumulator = TrainingAccumulator(num_principal_components=4, surrogate=mean_surrogate)
        orchestrator = ResponseOrchestrator(provider, accumulator)
        num_training, num_ai = 5, 3

        for i in range(num_training):
            parameters = [0.05 * i]
            orchestrator.register(parameters, orchestrator.model_response(parameters))
        orchestrator.train_from_registered()
        for i in range(num_ai):
            orchestrator.ai_response([0.03 * i])

        summary = orchestrator.summary()
        records = orchestrator.records
        assert summary.training.calls == num_training
        assert summary.ai_enhanced.calls == num_ai
        assert all(r.mode is SolverMode.TRAINING for r in records[:num_training])
        assert all(r.mode is SolverMode.AI_ENHANCED for r in records[num_training:])
        assert summary.training.non_converged == sum(not r.converged for r in records[:num_training])
        assert summary.ai_enhanced.non_converged == sum(not r.converged for r in records[num_training:])
        assert str(orchestrator) == str(summary)
