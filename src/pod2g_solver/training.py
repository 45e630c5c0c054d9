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
Accumulation of training samples and the one-time POD / surrogate training.

During the training phase every (parameters, solution) pair is registered.
``train_from_registered`` then:

1. checks all solutions have the same length,
2. stacks them as columns of a snapshot matrix and drops the raw vectors,
3. initializes the POD-AMG preconditioner factory from the snapshots,
4. checks parameter/solution counts and parameter lengths,
5. trains the surrogate on (parameters, snapshots^T).

The factory is only published once every step succeeded. A failure leaves
the accumulator in the FAILED state; it never retrains.
"""

import logging
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
import torch

from .config import PodAmgConfig, SurrogateConfig
from .exceptions import InconsistentTrainingDataError, InvalidInputError, PreconditionViolationError
from .linalg.matrix_utils import as_vector
from .pod_amg import PodAmgPreconditionerFactory, ReducedBasis
from .surrogate import CaeFfnnSurrogate, SurrogatePredictor

logger = logging.getLogger(__name__)


class AccumulatorState(Enum):
    """Lifecycle of a TrainingAccumulator."""
    COLLECTING = "collecting"
    TRAINED = "trained"
    FAILED = "failed"


class TrainingAccumulator:
    """
    Collects training samples and builds the reduced-order preconditioner
    and surrogate from them.

    Args:
        num_principal_components: POD modes kept for the coarse space
        pod_amg_config: POD-AMG settings (one symmetric Gauss-Seidel sweep by default)
        surrogate: Untrained surrogate; a CaeFfnnSurrogate is built if omitted
        surrogate_config: Settings for the default surrogate
    """

    def __init__(
        self,
        num_principal_components: int = 8,
        pod_amg_config: Optional[PodAmgConfig] = None,
        surrogate: Optional[SurrogatePredictor] = None,
        surrogate_config: Optional[SurrogateConfig] = None,
    ):
        if num_principal_components < 1:
            raise InvalidInputError(
                f"num_principal_components must be >= 1, got {num_principal_components}")
        if surrogate is not None and surrogate.is_trained:
            raise PreconditionViolationError("The surrogate handed to the accumulator is already trained")

        self.num_principal_components = num_principal_components
        self.pod_amg_config = pod_amg_config or PodAmgConfig()
        self._surrogate = surrogate if surrogate is not None else CaeFfnnSurrogate(surrogate_config)

        self._parameters: List[np.ndarray] = []
        self._solutions: List[torch.Tensor] = []
        self._state = AccumulatorState.COLLECTING
        self._factory: Optional[PodAmgPreconditionerFactory] = None
        self._training_report: Dict[str, float] = {}

    @property
    def state(self) -> AccumulatorState:
        return self._state

    @property
    def is_trained(self) -> bool:
        return self._state is AccumulatorState.TRAINED

    @property
    def num_registered(self) -> int:
        return len(self._parameters)

    @property
    def surrogate(self) -> SurrogatePredictor:
        return self._surrogate

    @property
    def preconditioner_factory(self) -> PodAmgPreconditionerFactory:
        if self._factory is None:
            raise PreconditionViolationError(
                f"No reduced-order preconditioner available (accumulator is {self._state.value})")
        return self._factory

    @property
    def reduced_basis(self) -> ReducedBasis:
        return self.preconditioner_factory.basis

    @property
    def training_report(self) -> Dict[str, float]:
        return dict(self._training_report)

    def _check_collecting(self):
        if self._state is not AccumulatorState.COLLECTING:
            raise PreconditionViolationError(
                f"Cannot register samples, accumulator is {self._state.value}")

    def register(self, parameters: Sequence[float], solution) -> None:
        """
        Store the solution of the system built from ``parameters``.

        Consistency across samples is only checked by ``train_from_registered``.
        """
        self._check_collecting()
        if solution is None:
            raise InvalidInputError("Cannot register a missing solution vector")
        self._parameters.append(np.array(parameters, dtype=np.float64).ravel())
        self._solutions.append(as_vector(solution, name="solution"))

    def register_batch(self, parameter_sets: Iterable[Sequence[float]], solutions: Iterable) -> None:
        """
        Append many parameter sets and solutions at once.

        The two sequences are appended independently; a count mismatch is
        reported by ``train_from_registered``.
        """
        self._check_collecting()
        solutions = list(solutions)
        if any(solution is None for solution in solutions):
            raise InvalidInputError("Cannot register a missing solution vector")
        self._parameters.extend(np.array(p, dtype=np.float64).ravel() for p in parameter_sets)
        self._solutions.extend(as_vector(s, name="solution") for s in solutions)

    def train_from_registered(self) -> Dict[str, float]:
        """
        Perform POD on the registered solutions and train the surrogate.

        Returns:
            The surrogate's evaluation report

        Raises:
            InconsistentTrainingDataError: on missing samples, length or count mismatches
            PreconditionViolationError: if training already ran (or failed)
        """
        if self._state is not AccumulatorState.COLLECTING:
            raise PreconditionViolationError(
                f"train_from_registered may only run once, accumulator is {self._state.value}")

        try:
            report = self._train()
        except Exception:
            self._state = AccumulatorState.FAILED
            self._parameters.clear()
            self._solutions.clear()
            raise

        self._state = AccumulatorState.TRAINED
        self._training_report = report
        return report

    def _train(self) -> Dict[str, float]:
        # Gather all solution vectors as columns of a matrix
        num_samples = len(self._solutions)
        if num_samples == 0:
            raise InconsistentTrainingDataError("No solution vectors have been registered")
        num_dofs = self._solutions[0].numel()
        lengths = {s.numel() for s in self._solutions}
        if len(lengths) != 1:
            raise InconsistentTrainingDataError(
                f"Registered solution vectors have different lengths: {sorted(lengths)}")
        snapshots = torch.stack(self._solutions, dim=1)

        # Free up memory, the snapshot matrix holds everything needed from here on
        self._solutions.clear()

        factory = PodAmgPreconditionerFactory(self.pod_amg_config)
        factory.initialize(snapshots, self.num_principal_components)

        if len(self._parameters) != num_samples:
            raise InconsistentTrainingDataError(
                f"Have gathered {len(self._parameters)} sets of model parameters, "
                f"but {num_samples} solution vectors")

        num_parameters = self._parameters[0].size
        if any(p.size != num_parameters for p in self._parameters):
            raise InconsistentTrainingDataError("The model parameter sets do not all have the same size")
        parameters = np.stack(self._parameters)

        # Dimension 0 must be the number of samples
        solutions = snapshots.T.cpu().numpy()
        logger.info("Training surrogate on %d samples (%d parameters, %d dofs)",
                    num_samples, num_parameters, num_dofs)
        report = self._surrogate.train_and_evaluate(parameters, solutions, None)

        self._factory = factory
        return report

    def __repr__(self) -> str:
        return (f"TrainingAccumulator(state={self._state.value}, num_registered={self.num_registered}, "
                f"num_principal_components={self.num_principal_components})")


__all__ = ['AccumulatorState', 'TrainingAccumulator']
