#!/usr/bin/env python3
"""
Basic Usage Examples for the POD2G solver

This file demonstrates the sparse PCG building blocks and the two-phase
training / AI-enhanced workflow on a perturbed 2D Poisson problem.
"""

import time

import torch

from pod2g_solver import (
    AISolver,
    PodAmgPreconditionerFactory,
    ResponseOrchestrator,
    SurrogateConfig,
    generate_parameter_values,
)
from pod2g_solver.linalg import JacobiPreconditioner, pcg
from pod2g_solver.linalg.matrix_utils import create_poisson_2d_sparse_csr
from pod2g_solver.systems import PerturbedLinearSystemProvider


def example_jacobi_vs_pod_amg():
    """Jacobi-PCG against POD-AMG-PCG on systems close to previously solved ones"""
    print("\n🔧 Jacobi vs POD-AMG Example")
    print("-" * 40)

    A = create_poisson_2d_sparse_csr(30, 30)
    provider = PerturbedLinearSystemProvider(A, torch.ones(A.shape[0]), noise=0.05, seed=42)
    print(f"Matrix size: {A.shape[0]}x{A.shape[1]}, non-zeros: {A.values().numel()}")

    snapshots = []
    for p in generate_parameter_values(20, seed=1):
        system = provider.build(p)
        result = pcg(system.matrix, system.rhs, JacobiPreconditioner.from_matrix(system.matrix), tol=1e-10)
        snapshots.append(result.x)

    factory = PodAmgPreconditionerFactory()
    basis = factory.initialize(torch.stack(snapshots, dim=1), num_components=8)
    print(f"POD basis: {basis.num_components} modes, {basis.captured_energy:.8f} of the snapshot energy")

    system = provider.build([0.15])
    for name, M in (("Jacobi", JacobiPreconditioner.from_matrix(system.matrix)),
                    ("POD-AMG", factory.create_preconditioner_for(system.matrix))):
        start_time = time.time()
        result = pcg(system.matrix, system.rhs, M, tol=1e-6)
        elapsed = time.time() - start_time
        print(f"{name}: converged={result.converged}, iterations={result.iterations}, "
              f"residual={result.residual_norm:.2e}, time={elapsed:.4f}s")


def example_two_phase_workflow():
    """Training phase, one-time training, then AI-enhanced solves"""
    print("\n🚀 Two-Phase Workflow Example")
    print("-" * 40)

    A = create_poisson_2d_sparse_csr(20, 20)
    provider = PerturbedLinearSystemProvider(A, torch.ones(A.shape[0]), noise=0.05, seed=13)
    surrogate_config = SurrogateConfig(cae_num_epochs=10, ffnn_num_epochs=50,
                                       encoder_filters=(32, 16), decoder_filters_without_output=(16, 32),
                                       seed=13)
    orchestrator = ResponseOrchestrator(
        provider,
        num_principal_components=8,
        use_surrogate_initial_guess=True,
        surrogate_config=surrogate_config,
    )

    parameter_sets = generate_parameter_values(60)
    start_time = time.time()
    solutions = list(AISolver(20, parameter_sets, orchestrator))
    elapsed = time.time() - start_time

    print(f"Solved {len(solutions)} systems in {elapsed:.2f}s")
    print(orchestrator.summary())


def main():
    """Run all examples"""
    print("🚀 POD2G Solver - Examples")
    print("=" * 60)

    example_jacobi_vs_pod_amg()
    example_two_phase_workflow()

    print("\n✅ All examples completed!")


if __name__ == "__main__":
    main()
