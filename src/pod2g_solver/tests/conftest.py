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

"""Shared fixtures: small SPD systems and fast surrogates."""

import numpy as np
import pytest
import torch

from pod2g_solver.config import DatasetSplitter, SurrogateConfig
from pod2g_solver.linalg.matrix_utils import create_tridiagonal_sparse_csr
from pod2g_solver.surrogate import SurrogatePredictor
from pod2g_solver.systems import PerturbedLinearSystemProvider


class MeanSurrogate(SurrogatePredictor):
    """Predicts the mean training solution, whatever the parameters."""

    def __init__(self):
        super().__init__()
        self.fit_calls = 0
        self._mean = None

    def _fit(self, parameters, solutions, test_set):
        self.fit_calls += 1
        self._mean = solutions.mean(axis=0)
        return {'num_train_samples': float(parameters.shape[0])}

    def _predict(self, parameters):
        return self._mean.copy()


@pytest.fixture
def mean_surrogate():
    return MeanSurrogate()


@pytest.fixture
def tiny_surrogate_config():
    """CAE + FFNN settings small enough to train in well under a second."""
    return SurrogateConfig(
        cae_batch_size=4,
        cae_num_epochs=3,
        encoder_filters=(4, 2),
        decoder_filters_without_output=(4,),
        latent_length=2,
        kernel_size=3,
        ffnn_batch_size=4,
        ffnn_hidden_layer_size=8,
        ffnn_num_epochs=3,
        ffnn_num_hidden_layers=2,
        splitter=DatasetSplitter(min_test_set_percentage=0.2),
        seed=13,
    )


@pytest.fixture
def tridiagonal_provider():
    """Diagonally dominant tridiagonal system of order 6 with a unit load."""
    A = create_tridiagonal_sparse_csr(6, diag_val=4.0, off_diag_val=-1.0)
    return PerturbedLinearSystemProvider(A, torch.ones(6, dtype=torch.float64), seed=13)


@pytest.fixture
def rng():
    return np.random.default_rng(13)
