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
Batch driver running a sequence of analyses through both phases.

Example:
    >>> parameter_sets = generate_parameter_values(300)
    >>> orchestrator = ResponseOrchestrator(provider, num_principal_components=8)
    >>> responses = list(AISolver(50, parameter_sets, orchestrator))
    >>> print(orchestrator.summary())
"""

import logging
from typing import Iterator, List, Optional, Sequence

import numpy as np

from .exceptions import InvalidInputError, PreconditionViolationError
from .solver import ResponseOrchestrator

logger = logging.getLogger(__name__)


def generate_parameter_values(
    count: int,
    mean: float = 0.1,
    stdev: float = 0.1,
    seed: Optional[int] = 13,
    num_parameters: int = 1
) -> List[np.ndarray]:
    """
    Draw ``count`` parameter vectors with normally distributed components.

    Args:
        count: Number of parameter vectors
        mean: Mean of every component
        stdev: Standard deviation of every component
        seed: Seed of the random generator (None for a fresh one)
        num_parameters: Length of each parameter vector

    Returns:
        List of float64 arrays of length ``num_parameters``
    """
    if count < 0:
        raise InvalidInputError(f"count must be >= 0, got {count}")
    if num_parameters < 1:
        raise InvalidInputError(f"num_parameters must be >= 1, got {num_parameters}")
    if stdev < 0:
        raise InvalidInputError(f"stdev must be >= 0, got {stdev}")

    rng = np.random.default_rng(seed)
    samples = rng.normal(mean, stdev, size=(count, num_parameters))
    return [row.copy() for row in samples]


class AISolver:
    """
    Iterates over parameter sets, solving the first ``num_training`` in the
    training phase and the rest in the AI-enhanced phase.

    Training responses are registered with the orchestrator, which is trained
    once right before the first AI-enhanced analysis. Iterating yields the
    solution of every analysis in order.
    """

    def __init__(self, num_training: int, parameter_sets: Sequence[Sequence[float]],
                 response: ResponseOrchestrator):
        parameter_sets = list(parameter_sets)
        if not 1 <= num_training <= len(parameter_sets):
            raise InvalidInputError(
                f"num_training must lie in [1, {len(parameter_sets)}], got {num_training}")
        self.num_training = num_training
        self.parameter_sets = parameter_sets
        self.response = response
        self._consumed = False

    def __len__(self) -> int:
        return len(self.parameter_sets)

    def __iter__(self) -> Iterator[np.ndarray]:
        if self._consumed:
            raise PreconditionViolationError("An AISolver can only be iterated once")
        self._consumed = True

        for i, parameters in enumerate(self.parameter_sets):
            if i < self.num_training:
                solution = self.response.model_response(parameters)
                self.response.register(parameters, solution)
            else:
                if i == self.num_training:
                    logger.info("Training with %d registered responses", self.num_training)
                    self.response.train_from_registered()
                solution = self.response.ai_response(parameters)
            yield solution

        # All samples were used for training
        if self.num_training == len(self.parameter_sets):
            logger.info("Training with %d registered responses", self.num_training)
            self.response.train_from_registered()


__all__ = ['AISolver', 'generate_parameter_values']
