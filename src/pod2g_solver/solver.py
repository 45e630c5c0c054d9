#!/usr/bin/env python3
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
Two-phase response orchestration (POD2G algorithm, https://arxiv.org/abs/2207.02543)

The ResponseOrchestrator solves one linear system per parameter vector and
switches strategy with its phase:

- TRAINING: Jacobi-preconditioned, reorthogonalized PCG from a zero guess.
  Solutions are registered for the one-time POD / surrogate training.
- AI_ENHANCED: POD-AMG-preconditioned PCG, optionally started from the
  surrogate's predicted solution.

The phase moves from TRAINING to AI_ENHANCED exactly once, after training.
Every solve appends a ConvergenceRecord; a solve that fails or does not
converge is recorded and never aborts the batch.

Example:
    >>> from pod2g_solver import ResponseOrchestrator, SolverMode
    >>> orchestrator = ResponseOrchestrator(provider, num_principal_components=8)
    >>> for p in training_parameters:
    ...     x = orchestrator.respond(p, SolverMode.TRAINING)
    ...     orchestrator.register(p, x)
    >>> orchestrator.train_from_registered()
    >>> x = orchestrator.respond(p_new, SolverMode.AI_ENHANCED)
    >>> print(orchestrator.summary())
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import torch

from .config import PcgConfig, PodAmgConfig, SurrogateConfig
from .exceptions import InvalidInputError, PreconditionViolationError
from .linalg.matrix_utils import DEFAULT_DTYPE
from .linalg.pcg import PCG_LABEL, REORTHOGONALIZED_PCG_LABEL, SolveResult, pcg
from .linalg.preconditioners import JacobiPreconditioner
from .systems.provider import LinearSystemProvider
from .training import TrainingAccumulator

logger = logging.getLogger(__name__)


class SolverMode(Enum):
    """Operating phase of the orchestrator."""
    TRAINING = "training"
    AI_ENHANCED = "ai_enhanced"


@dataclass(frozen=True)
class ConvergenceRecord:
    """Statistics of one respond() call."""
    converged: bool               # Whether the solve met the residual tolerance
    iterations: int               # PCG iterations performed
    solver_label: str             # Algorithm name, with " - <failure>" appended on failure
    mode: SolverMode              # Phase the call was made in
    residual_norm: float          # Final relative residual (nan if the solve never started)
    failure: Optional[str] = None # Why the solve stopped unconverged


@dataclass(frozen=True)
class PhaseStatistics:
    """Iteration statistics over the records of one phase."""
    calls: int
    converged: int
    min_iterations: Optional[int]
    max_iterations: Optional[int]
    average_iterations: Optional[float]

    @property
    def non_converged(self) -> int:
        return self.calls - self.converged

    @classmethod
    def from_records(cls, records: Sequence[ConvergenceRecord]) -> "PhaseStatistics":
        iterations = [r.iterations for r in records if r.converged]
        if not iterations:
            return cls(len(records), 0, None, None, None)
        return cls(
            calls=len(records),
            converged=len(iterations),
            min_iterations=min(iterations),
            max_iterations=max(iterations),
            average_iterations=sum(iterations) / len(iterations),
        )


@dataclass(frozen=True)
class ConvergenceSummary:
    """Statistics split at the TRAINING -> AI_ENHANCED boundary."""
    training: PhaseStatistics
    ai_enhanced: PhaseStatistics

    def __str__(self) -> str:
        def fmt(value):
            if value is None:
                return "n/a"
            return f"{value:.2f}" if isinstance(value, float) else str(value)

        t, a = self.training, self.ai_enhanced
        return (f"Min {fmt(t.min_iterations)}, max {fmt(t.max_iterations)}, avg {fmt(t.average_iterations)}, "
                f"minAI {fmt(a.min_iterations)}, maxAI {fmt(a.max_iterations)}, avgAI {fmt(a.average_iterations)}, "
                f"NC {t.non_converged}, NCAI {a.non_converged}")


class ResponseOrchestrator:
    """
    Solves the parameterized linear system in either phase and logs convergence.

    Attributes:
        provider: Builds the linear system for each parameter vector
        accumulator: Owns training samples, the POD-AMG factory and the surrogate
        use_surrogate_initial_guess: Seed AI-enhanced solves with the surrogate prediction
        pcg_config: Tolerance and iteration cap of every solve

    Example:
        >>> orchestrator = ResponseOrchestrator(provider, use_surrogate_initial_guess=True)
        >>> x = orchestrator.model_response([0.1])     # TRAINING
        >>> orchestrator.register([0.1], x)
        >>> orchestrator.train_from_registered()
        >>> x = orchestrator.ai_response([0.12])       # AI_ENHANCED
    """

    def __init__(
        self,
        provider: LinearSystemProvider,
        accumulator: Optional[TrainingAccumulator] = None,
        num_principal_components: int = 8,
        use_surrogate_initial_guess: bool = False,
        pcg_config: Optional[PcgConfig] = None,
        pod_amg_config: Optional[PodAmgConfig] = None,
        surrogate_config: Optional[SurrogateConfig] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            provider: LinearSystemProvider used for every call
            accumulator: Existing TrainingAccumulator; built from the remaining
                arguments if omitted
            num_principal_components: POD modes of the default accumulator
            use_surrogate_initial_guess: Seed AI-enhanced solves with the surrogate
            pcg_config: PCG settings (tolerance 1e-6, cap 20% of the order by default)
            pod_amg_config: POD-AMG settings of the default accumulator
            surrogate_config: Surrogate settings of the default accumulator
        """
        if provider is None:
            raise InvalidInputError("A LinearSystemProvider is required")
        self.provider = provider
        self.accumulator = accumulator if accumulator is not None else TrainingAccumulator(
            num_principal_components=num_principal_components,
            pod_amg_config=pod_amg_config,
            surrogate_config=surrogate_config,
        )
        self.use_surrogate_initial_guess = use_surrogate_initial_guess
        self.pcg_config = pcg_config or PcgConfig()

        self._state = SolverMode.TRAINING
        self._records: List[ConvergenceRecord] = []
        self._num_training_calls = 0

    @property
    def state(self) -> SolverMode:
        return self._state

    @property
    def records(self) -> Tuple[ConvergenceRecord, ...]:
        return tuple(self._records)

    @property
    def num_training_calls(self) -> int:
        return self._num_training_calls

    @property
    def num_ai_enhanced_calls(self) -> int:
        return len(self._records) - self._num_training_calls

    def _check_mode(self, mode: SolverMode) -> None:
        if mode is self._state:
            return
        if mode is SolverMode.AI_ENHANCED:
            raise PreconditionViolationError(
                "AI-enhanced response requested before train_from_registered() completed")
        raise PreconditionViolationError(
            "Training response requested after the switch to the AI-enhanced phase")

    def _initial_guess(self, parameters, mode: SolverMode, order: int) -> torch.Tensor:
        if mode is SolverMode.AI_ENHANCED and self.use_surrogate_initial_guess:
            prediction = self.accumulator.surrogate.predict(parameters)
            x0 = torch.as_tensor(np.asarray(prediction), dtype=DEFAULT_DTYPE).reshape(-1)
            if x0.numel() != order:
                raise InvalidInputError(
                    f"Surrogate predicted {x0.numel()} values for a system of order {order}")
            return x0
        return torch.zeros(order, dtype=DEFAULT_DTYPE)

    def respond(self, parameters: Sequence[float], mode: Union[SolverMode, str]) -> np.ndarray:
        """
        Build and solve the linear system for ``parameters``.

        Args:
            parameters: Non-empty parameter vector; component 0 scales the matrix
            mode: Phase of the call, must match the orchestrator's state

        Returns:
            Raw values of the (possibly unconverged) solution vector

        Raises:
            InvalidInputError: for malformed parameters
            PreconditionViolationError: if ``mode`` does not match the current phase
        """
        mode = SolverMode(mode)
        self._check_mode(mode)

        system = self.provider.build(parameters)
        x0 = self._initial_guess(parameters, mode, system.order)

        if mode is SolverMode.TRAINING:
            self._num_training_calls += 1

        # Reorthogonalize only without POD-AMG and without a surrogate guess
        reorthogonalize = mode is SolverMode.TRAINING and not self.use_surrogate_initial_guess
        label = REORTHOGONALIZED_PCG_LABEL if reorthogonalize else PCG_LABEL

        try:
            if mode is SolverMode.TRAINING:
                M = JacobiPreconditioner.from_matrix(system.matrix)
            else:
                M = self.accumulator.preconditioner_factory.create_preconditioner_for(system.matrix)
            result = pcg(
                system.matrix, system.rhs, M, x0,
                tol=self.pcg_config.residual_tolerance,
                maxiter=self.pcg_config.max_iterations_for(system.order),
                reorthogonalize=reorthogonalize,
            )
        except (RuntimeError, ValueError, ArithmeticError) as e:
            result = SolveResult(x=x0, converged=False, iterations=0, residual_norm=math.nan,
                                 label=label, failure=str(e) or type(e).__name__)

        solver_label = result.label if result.failure is None else f"{result.label} - {result.failure}"
        record = ConvergenceRecord(
            converged=result.converged,
            iterations=result.iterations,
            solver_label=solver_label,
            mode=mode,
            residual_norm=result.residual_norm,
            failure=result.failure,
        )
        self._records.append(record)

        if result.converged:
            logger.debug("Number of PCG iterations = %d. Dofs = %d.", result.iterations, system.order)
        else:
            logger.warning("%s solve did not converge after %d iterations (%s)",
                           mode.value, result.iterations, solver_label)

        return result.x.detach().cpu().numpy()

    def model_response(self, parameters: Sequence[float]) -> np.ndarray:
        """Training-phase response."""
        return self.respond(parameters, SolverMode.TRAINING)

    def ai_response(self, parameters: Sequence[float]) -> np.ndarray:
        """AI-enhanced response."""
        return self.respond(parameters, SolverMode.AI_ENHANCED)

    def register(self, parameters: Sequence[float], solution) -> None:
        """Store a training response for the one-time training step."""
        self.accumulator.register(parameters, solution)

    def enable_ai_enhancement(self) -> None:
        """
        Switch irreversibly to the AI-enhanced phase.

        Raises:
            PreconditionViolationError: if the accumulator is not trained or the
                switch already happened
        """
        if self._state is SolverMode.AI_ENHANCED:
            raise PreconditionViolationError("The orchestrator is already in the AI-enhanced phase")
        if not self.accumulator.is_trained:
            raise PreconditionViolationError(
                "Cannot enable AI enhancement before the accumulator has been trained")
        self._state = SolverMode.AI_ENHANCED
        logger.info("Switched to AI-enhanced phase after %d training calls", self._num_training_calls)

    def train_from_registered(self) -> Dict[str, float]:
        """
        Run POD / surrogate training on the registered samples, then switch phase.

        Returns:
            The surrogate's evaluation report
        """
        if self._state is SolverMode.AI_ENHANCED:
            raise PreconditionViolationError("Training has already been performed")
        report = self.accumulator.train_from_registered()
        self.enable_ai_enhancement()
        return report

    def summary(self) -> ConvergenceSummary:
        """Aggregate the convergence log before and after the phase switch."""
        split = self._num_training_calls
        return ConvergenceSummary(
            training=PhaseStatistics.from_records(self._records[:split]),
            ai_enhanced=PhaseStatistics.from_records(self._records[split:]),
        )

    def __str__(self) -> str:
        return str(self.summary())

    def __repr__(self) -> str:
        return (
            f"ResponseOrchestrator(\n"
            f"  state='{self._state.value}',\n"
            f"  provider={self.provider!r},\n"
            f"  accumulator={self.accumulator!r},\n"
            f"  use_surrogate_initial_guess={self.use_surrogate_initial_guess},\n"
            f"  records={len(self._records)}\n"
            f")"
        )


__all__ = [
    'SolverMode',
    'ConvergenceRecord',
    'PhaseStatistics',
    'ConvergenceSummary',
    'ResponseOrchestrator',
]
