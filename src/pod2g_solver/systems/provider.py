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
Parameterized linear system generation.

A LinearSystemProvider turns a parameter vector into a concrete ``A x = b``.
The PerturbedLinearSystemProvider scales a fixed base system:

    A_ij = A0_ij * (1 + factor * (1 + noise * (U - 0.5)))
    b_i  = b0_i  * (1 + rhs_randomness * (U - 0.5))

where ``factor`` is the first parameter and every ``U`` is a fresh uniform
draw from the provider's own ``torch.Generator``. The generator is never
reseeded per call, so repeated calls with the same parameters differ unless
both noise levels (or the factor and the rhs noise) are zero.

Example:
    >>> from pod2g_solver.systems import PerturbedLinearSystemProvider
    >>> provider = PerturbedLinearSystemProvider(A, noise=0.1, seed=13)
    >>> system = provider.build([0.1])
    >>> system.order
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence, Union

import torch

from ..exceptions import InvalidInputError
from ..linalg.matrix_utils import DEFAULT_DTYPE, as_vector, csr_with_values, ensure_csr

logger = logging.getLogger(__name__)

ParameterVector = Union[Sequence[float], torch.Tensor]

# Synthetic right hand side: every SYNTHETIC_RHS_STRIDE-th entry gets a small load
SYNTHETIC_RHS_STRIDE = 10
SYNTHETIC_RHS_SCALE = 1e-5


@dataclass(frozen=True)
class LinearSystem:
    """A square sparse CSR matrix and its dense right hand side."""
    matrix: torch.Tensor
    rhs: torch.Tensor

    def __post_init__(self):
        if self.matrix.ndim != 2 or self.matrix.shape[0] != self.matrix.shape[1]:
            raise InvalidInputError(f"Matrix must be square, got shape {tuple(self.matrix.shape)}")
        if self.rhs.ndim != 1 or self.rhs.shape[0] != self.matrix.shape[0]:
            raise InvalidInputError(
                f"Right hand side length {tuple(self.rhs.shape)} does not match "
                f"matrix order {self.matrix.shape[0]}")

    @property
    def order(self) -> int:
        return self.matrix.shape[0]


def validate_parameters(parameters: ParameterVector) -> torch.Tensor:
    """Return the parameters as a float64 vector, rejecting empty or non-finite input."""
    try:
        vector = as_vector(parameters, name="parameters")
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"Malformed parameter vector: {e}") from e
    if vector.numel() == 0:
        raise InvalidInputError("Parameter vector must not be empty")
    if not bool(torch.isfinite(vector).all()):
        raise InvalidInputError("Parameter vector contains non-finite values")
    return vector


class LinearSystemProvider(ABC):
    """Defines the generation of a linear system for a specific parameter vector."""

    @abstractmethod
    def build(self, parameters: ParameterVector) -> LinearSystem:
        """
        Generate the matrix of coefficients and right hand side for ``parameters``.

        Args:
            parameters: Non-empty parameter vector

        Returns:
            A freshly built LinearSystem; never shares mutable storage with the base.
        """


class PerturbedLinearSystemProvider(LinearSystemProvider):
    """
    Multiplicative perturbation of a fixed base system.

    Args:
        matrix: Base coefficient matrix (dense, COO or CSR; stored as float64 CSR)
        rhs: Base right hand side. If omitted, a synthetic sparse load is drawn once.
        noise: Relative noise applied to the matrix scaling
        rhs_randomness: Relative noise applied to the right hand side
        generator: Pseudorandom generator owned by this provider
        seed: Seeds ``generator`` once at construction
    """

    def __init__(
        self,
        matrix: torch.Tensor,
        rhs: Optional[Union[Sequence[float], torch.Tensor]] = None,
        noise: float = 0.0,
        rhs_randomness: float = 0.0,
        generator: Optional[torch.Generator] = None,
        seed: Optional[int] = None,
    ):
        if noise < 0 or rhs_randomness < 0:
            raise InvalidInputError(
                f"Noise levels must be non-negative, got noise={noise}, rhs_randomness={rhs_randomness}")
        matrix = ensure_csr(matrix)
        if matrix.shape[0] != matrix.shape[1]:
            raise InvalidInputError(f"Base matrix must be square, got shape {tuple(matrix.shape)}")

        self.noise = float(noise)
        self.rhs_randomness = float(rhs_randomness)
        self._generator = generator if generator is not None else torch.Generator()
        if seed is not None:
            self._generator.manual_seed(seed)
        elif generator is None:
            self._generator.seed()

        self._matrix = csr_with_values(matrix, matrix.values().detach().clone())
        if rhs is None:
            self._rhs = self._synthetic_rhs(matrix.shape[0])
            logger.info("No right hand side supplied, generated a synthetic load of order %d",
                        matrix.shape[0])
        else:
            self._rhs = as_vector(rhs, name="rhs")
        # Validates order == len(rhs)
        LinearSystem(self._matrix, self._rhs)

    def _uniform(self, n: int) -> torch.Tensor:
        return torch.rand(n, generator=self._generator, dtype=DEFAULT_DTYPE)

    def _synthetic_rhs(self, order: int) -> torch.Tensor:
        rhs = torch.zeros(order, dtype=DEFAULT_DTYPE)
        num_loaded = order // SYNTHETIC_RHS_STRIDE
        rhs[:num_loaded * SYNTHETIC_RHS_STRIDE:SYNTHETIC_RHS_STRIDE] = (
            SYNTHETIC_RHS_SCALE * self._uniform(num_loaded))
        return rhs

    @property
    def order(self) -> int:
        return self._matrix.shape[0]

    @property
    def base_matrix(self) -> torch.Tensor:
        """Copy of the base CSR matrix."""
        return csr_with_values(self._matrix, self._matrix.values().clone())

    @property
    def base_rhs(self) -> torch.Tensor:
        """Copy of the base right hand side."""
        return self._rhs.clone()

    @property
    def generator(self) -> torch.Generator:
        return self._generator

    def build(self, parameters: ParameterVector) -> LinearSystem:
        parameters = validate_parameters(parameters)
        factor = parameters[0].item()

        base_values = self._matrix.values()
        scaling = 1.0 + factor * (1.0 + self.noise * (self._uniform(base_values.numel()) - 0.5))
        matrix = csr_with_values(self._matrix, base_values * scaling)

        rhs_scaling = 1.0 + self.rhs_randomness * (self._uniform(self._rhs.numel()) - 0.5)
        rhs = self._rhs * rhs_scaling

        return LinearSystem(matrix, rhs)

    def __repr__(self) -> str:
        return (f"{type(self).__name__}(order={self.order}, nnz={self._matrix.values().numel()}, "
                f"noise={self.noise}, rhs_randomness={self.rhs_randomness})")
