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
Configuration objects for the POD2G pipeline.

All configuration is expressed as plain dataclasses validated on construction:

- PcgConfig: tolerance and iteration cap of the preconditioned CG solves
- PodAmgConfig: reduced-order (POD-AMG) preconditioner and its smoother
- DatasetSplitter: train/validation/test split used by the surrogate
- SurrogateConfig: builder-style settings of the CAE + FFNN surrogate

Example:
    >>> from pod2g_solver.config import SurrogateConfig
    >>> config = SurrogateConfig(cae_num_epochs=10, ffnn_num_epochs=50, seed=13)
    >>> surrogate = config.build_surrogate()
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .exceptions import InvalidInputError


@dataclass(frozen=True)
class PcgConfig:
    """Settings of a single preconditioned conjugate gradient solve."""
    residual_tolerance: float = 1e-6
    max_iterations_over_order: float = 0.2

    def __post_init__(self):
        if not self.residual_tolerance > 0:
            raise InvalidInputError(
                f"residual_tolerance must be positive, got {self.residual_tolerance}")
        if not 0 < self.max_iterations_over_order <= 1:
            raise InvalidInputError(
                "max_iterations_over_order must lie in (0, 1], "
                f"got {self.max_iterations_over_order}")

    def max_iterations_for(self, order: int) -> int:
        """Iteration cap for a system of the given order (never below one)."""
        return max(1, math.ceil(self.max_iterations_over_order * order))


class SweepDirection(Enum):
    """Order in which a Gauss-Seidel sweep visits the unknowns."""
    FORWARD = "forward"
    BACKWARD = "backward"
    SYMMETRIC = "symmetric"


@dataclass(frozen=True)
class PodAmgConfig:
    """Settings of the POD-AMG reduced-order preconditioner."""
    num_iterations: int = 1
    smoother_sweeps: int = 1
    sweep_direction: SweepDirection = SweepDirection.SYMMETRIC
    keep_only_nonzero_principal_components: bool = True

    def __post_init__(self):
        if self.num_iterations < 1:
            raise InvalidInputError(f"num_iterations must be >= 1, got {self.num_iterations}")
        if self.smoother_sweeps < 1:
            raise InvalidInputError(f"smoother_sweeps must be >= 1, got {self.smoother_sweeps}")


@dataclass(frozen=True)
class DatasetSplitter:
    """
    Contiguous train/validation/test split.

    Samples keep their registration order: the first block is used for
    training, then validation, then test. Each held-out block receives at
    least the requested percentage (rounded up), while at least one sample is
    always left for training.
    """
    min_test_set_percentage: float = 0.2
    min_validation_set_percentage: float = 0.0

    def __post_init__(self):
        for name in ('min_test_set_percentage', 'min_validation_set_percentage'):
            value = getattr(self, name)
            if not 0 <= value < 1:
                raise InvalidInputError(f"{name} must lie in [0, 1), got {value}")
        if self.min_test_set_percentage + self.min_validation_set_percentage >= 1:
            raise InvalidInputError("Held-out percentages leave no training samples")

    def split(self, num_samples: int) -> Tuple[List[int], List[int], List[int]]:
        """Return (train, validation, test) index lists for ``num_samples`` samples."""
        if num_samples < 1:
            raise InvalidInputError("Cannot split an empty dataset")

        num_test = math.ceil(self.min_test_set_percentage * num_samples)
        num_val = math.ceil(self.min_validation_set_percentage * num_samples)
        # Shrink held-out sets until something is left to train on
        while num_samples - num_test - num_val < 1:
            if num_val > 0:
                num_val -= 1
            else:
                num_test -= 1

        num_train = num_samples - num_test - num_val
        indices = list(range(num_samples))
        return (
            indices[:num_train],
            indices[num_train:num_train + num_val],
            indices[num_train + num_val:],
        )


@dataclass(frozen=True)
class SurrogateConfig:
    """
    Builder-style configuration of the CAE + FFNN surrogate.

    Defaults match the settings used for the bcsstk14 experiments (the
    reference paper used 500 CAE and 3000 FFNN epochs).
    """
    cae_batch_size: int = 20
    cae_learning_rate: float = 1e-3
    cae_num_epochs: int = 50
    encoder_filters: Tuple[int, ...] = (256, 128, 64, 32)
    decoder_filters_without_output: Tuple[int, ...] = (64, 128, 256)
    latent_length: int = 8
    kernel_size: int = 5
    ffnn_batch_size: int = 20
    ffnn_hidden_layer_size: int = 64
    ffnn_learning_rate: float = 1e-4
    ffnn_num_epochs: int = 300
    ffnn_num_hidden_layers: int = 6
    splitter: DatasetSplitter = field(default_factory=DatasetSplitter)
    seed: Optional[int] = None
    device: str = 'cpu'

    def __post_init__(self):
        positive = (
            'cae_batch_size', 'cae_num_epochs', 'latent_length', 'kernel_size',
            'ffnn_batch_size', 'ffnn_hidden_layer_size', 'ffnn_num_epochs',
        )
        for name in positive:
            if getattr(self, name) < 1:
                raise InvalidInputError(f"{name} must be >= 1, got {getattr(self, name)}")
        if self.kernel_size % 2 == 0:
            raise InvalidInputError(f"kernel_size must be odd to preserve length, got {self.kernel_size}")
        if self.ffnn_num_hidden_layers < 0:
            raise InvalidInputError("ffnn_num_hidden_layers must be >= 0")
        if not self.cae_learning_rate > 0 or not self.ffnn_learning_rate > 0:
            raise InvalidInputError("Learning rates must be positive")
        if not self.encoder_filters or not self.decoder_filters_without_output:
            raise InvalidInputError("Encoder and decoder need at least one filter layer")
        if any(f < 1 for f in self.encoder_filters + self.decoder_filters_without_output):
            raise InvalidInputError("Filter counts must be >= 1")

    def build_surrogate(self):
        """Create an untrained CaeFfnnSurrogate with this configuration."""
        from .surrogate import CaeFfnnSurrogate
        return CaeFfnnSurrogate(self)


__all__ = [
    'PcgConfig',
    'SweepDirection',
    'PodAmgConfig',
    'DatasetSplitter',
    'SurrogateConfig',
]
