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
Surrogate models predicting a solution vector from the parameter vector.

The CAE-FFNN surrogate combines:
- a 1D convolutional autoencoder (CAE) compressing solution vectors into a
  small latent code, and
- a feed-forward network (FFNN) mapping parameters to that latent code.

Prediction decodes ``FFNN(parameters)`` back into a full solution vector,
which the AI-enhanced solves use as their initial guess.

Example:
    >>> from pod2g_solver.config import SurrogateConfig
    >>> surrogate = SurrogateConfig(cae_num_epochs=20, ffnn_num_epochs=100, seed=0).build_surrogate()
    >>> report = surrogate.train_and_evaluate(parameters, solutions)   # (S, P) and (S, n)
    >>> x0 = surrogate.predict(parameters[0])                          # (n,)
"""

import contextlib
import logging
import math
from abc import ABC, abstractmethod
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np
import torch
import torch.nn as nn

from .config import SurrogateConfig
from .exceptions import InconsistentTrainingDataError, InvalidInputError, PreconditionViolationError

logger = logging.getLogger(__name__)

ArrayLike = Union[np.ndarray, torch.Tensor, Sequence]


class SurrogatePredictor(ABC):
    """
    A trainable map parameters -> solution approximation.

    Lifecycle: constructed untrained, trained exactly once through
    ``train_and_evaluate``, then used read-only through ``predict``.
    """

    def __init__(self):
        self._is_trained = False
        self._num_parameters: Optional[int] = None
        self._solution_length: Optional[int] = None

    @property
    def is_trained(self) -> bool:
        return self._is_trained

    @property
    def num_parameters(self) -> Optional[int]:
        return self._num_parameters

    @property
    def solution_length(self) -> Optional[int]:
        return self._solution_length

    @staticmethod
    def _as_2d(values: ArrayLike, name: str) -> np.ndarray:
        array = np.asarray(values.detach().cpu().numpy() if isinstance(values, torch.Tensor) else values,
                           dtype=np.float64)
        if array.ndim != 2:
            raise InconsistentTrainingDataError(f"{name} must be a 2D array, got shape {array.shape}")
        return array

    def train_and_evaluate(
        self,
        parameters: ArrayLike,
        solutions: ArrayLike,
        test_set: Optional[Tuple[ArrayLike, ArrayLike]] = None,
    ) -> Dict[str, float]:
        """
        Train the surrogate once and report its errors.

        Args:
            parameters: Array of shape (num_samples, num_parameters)
            solutions: Array of shape (num_samples, solution_length)
            test_set: Optional held-out (parameters, solutions). When given, all
                samples are used for training; otherwise the configured split applies.

        Returns:
            Dictionary of training/test mean squared errors
        """
        if self._is_trained:
            raise PreconditionViolationError("Surrogate has already been trained")

        parameters = self._as_2d(parameters, "parameters")
        solutions = self._as_2d(solutions, "solutions")
        if parameters.shape[0] != solutions.shape[0]:
            raise InconsistentTrainingDataError(
                f"Have {parameters.shape[0]} parameter sets but {solutions.shape[0]} solutions")
        if parameters.shape[0] == 0:
            raise InconsistentTrainingDataError("Cannot train a surrogate without samples")

        if test_set is not None:
            test_parameters = self._as_2d(test_set[0], "test parameters")
            test_solutions = self._as_2d(test_set[1], "test solutions")
            if (test_parameters.shape[1] != parameters.shape[1]
                    or test_solutions.shape[1] != solutions.shape[1]
                    or test_parameters.shape[0] != test_solutions.shape[0]):
                raise InconsistentTrainingDataError("Test set shapes do not match the training data")
            test_set = (test_parameters, test_solutions)

        self._num_parameters = parameters.shape[1]
        self._solution_length = solutions.shape[1]
        report = self._fit(parameters, solutions, test_set)
        self._is_trained = True
        return report

    def predict(self, parameters: ArrayLike) -> np.ndarray:
        """
        Predict the solution vector for one parameter vector.

        Raises:
            PreconditionViolationError: if called before training
        """
        if not self._is_trained:
            raise PreconditionViolationError("Surrogate prediction requested before training")
        vector = np.asarray(parameters.detach().cpu().numpy() if isinstance(parameters, torch.Tensor)
                            else parameters, dtype=np.float64).reshape(-1)
        if vector.size != self._num_parameters:
            raise InvalidInputError(
                f"Surrogate expects {self._num_parameters} parameters, got {vector.size}")
        return self._predict(vector)

    @abstractmethod
    def _fit(self, parameters: np.ndarray, solutions: np.ndarray,
             test_set: Optional[Tuple[np.ndarray, np.ndarray]]) -> Dict[str, float]:
        """Train on validated arrays; return the evaluation report."""

    @abstractmethod
    def _predict(self, parameters: np.ndarray) -> np.ndarray:
        """Predict for a validated 1D parameter vector."""


class ConvolutionalAutoencoder(nn.Module):
    """
    1D convolutional autoencoder for solution vectors of a fixed length.

    Encoder: Conv1d stack -> adaptive pooling to ``latent_length`` -> flatten.
    Decoder: unflatten -> upsample to ``order`` -> Conv1d stack -> single channel.
    """

    def __init__(self, order: int, encoder_filters: Sequence[int], decoder_filters: Sequence[int],
                 latent_length: int, kernel_size: int = 5):
        super().__init__()
        padding = kernel_size // 2
        self.order = order
        self.latent_channels = encoder_filters[-1]
        self.latent_length = min(latent_length, order)

        encoder = []
        in_channels = 1
        for filters in encoder_filters:
            encoder += [nn.Conv1d(in_channels, filters, kernel_size, padding=padding), nn.ReLU()]
            in_channels = filters
        encoder += [nn.AdaptiveAvgPool1d(self.latent_length), nn.Flatten()]
        self.encoder = nn.Sequential(*encoder)

        decoder = [
            nn.Unflatten(1, (self.latent_channels, self.latent_length)),
            nn.Upsample(size=order, mode='linear', align_corners=False),
        ]
        for filters in decoder_filters:
            decoder += [nn.Conv1d(in_channels, filters, kernel_size, padding=padding), nn.ReLU()]
            in_channels = filters
        decoder.append(nn.Conv1d(in_channels, 1, kernel_size, padding=padding))
        self.decoder = nn.Sequential(*decoder)

    @property
    def latent_size(self) -> int:
        return self.latent_channels * self.latent_length

    def encode(self, x: torch.Tensor) -> torch.Tensor:
        return self.encoder(x.unsqueeze(1))

    def decode(self, z: torch.Tensor) -> torch.Tensor:
        return self.decoder(z).squeeze(1)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.decode(self.encode(x))


class FeedForwardNetwork(nn.Module):
    """Fully connected ReLU network with ``num_hidden_layers`` layers of equal width."""

    def __init__(self, in_features: int, out_features: int, hidden_size: int, num_hidden_layers: int):
        super().__init__()
        layers = []
        width = in_features
        for _ in range(num_hidden_layers):
            layers += [nn.Linear(width, hidden_size), nn.ReLU()]
            width = hidden_size
        layers.append(nn.Linear(width, out_features))
        self.net = nn.Sequential(*layers)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.net(x)


def _train_network(model: nn.Module, inputs: torch.Tensor, targets: torch.Tensor,
                   batch_size: int, learning_rate: float, num_epochs: int, name: str) -> float:
    """Minibatch Adam on an MSE loss; returns the final full-batch training loss."""
    optimizer = torch.optim.Adam(model.parameters(), lr=learning_rate)
    criterion = nn.MSELoss()
    num_samples = inputs.shape[0]
    log_every = max(1, num_epochs // 5)

    model.train()
    for epoch in range(num_epochs):
        permutation = torch.randperm(num_samples, device=inputs.device)
        total_loss = 0.0
        for start in range(0, num_samples, batch_size):
            batch = permutation[start:start + batch_size]
            optimizer.zero_grad()
            loss = criterion(model(inputs[batch]), targets[batch])
            loss.backward()
            optimizer.step()
            total_loss += loss.item() * batch.numel()
        if (epoch + 1) % log_every == 0 or epoch == 0:
            logger.debug("%s epoch %d/%d - loss: %.6e", name, epoch + 1, num_epochs, total_loss / num_samples)

    model.eval()
    with torch.no_grad():
        return criterion(model(inputs), targets).item()


class CaeFfnnSurrogate(SurrogatePredictor):
    """
    CAE + FFNN surrogate.

    Parameters are standardized (mean/std) and solutions scaled by their
    largest magnitude before training, so tiny displacement fields train as
    well as unit-scale ones.

    Args:
        config: Surrogate settings; defaults to ``SurrogateConfig()``
    """

    def __init__(self, config: Optional[SurrogateConfig] = None):
        super().__init__()
        self.config = config or SurrogateConfig()
        self.device = torch.device(self.config.device)
        self.autoencoder: Optional[ConvolutionalAutoencoder] = None
        self.ffnn: Optional[FeedForwardNetwork] = None
        self._parameter_mean: Optional[torch.Tensor] = None
        self._parameter_std: Optional[torch.Tensor] = None
        self._solution_scale = 1.0

    def _seeded(self):
        if self.config.seed is None:
            return contextlib.nullcontext()
        return torch.random.fork_rng(devices=[])

    def _normalize_parameters(self, parameters: torch.Tensor) -> torch.Tensor:
        return (parameters - self._parameter_mean) / self._parameter_std

    def _to_tensor(self, array: np.ndarray) -> torch.Tensor:
        return torch.as_tensor(array, dtype=torch.float32, device=self.device)

    def _fit(self, parameters, solutions, test_set):
        config = self.config
        if test_set is None:
            train_idx, _, test_idx = config.splitter.split(parameters.shape[0])
            train_p, train_s = parameters[train_idx], solutions[train_idx]
            test_p, test_s = parameters[test_idx], solutions[test_idx]
        else:
            train_p, train_s = parameters, solutions
            test_p, test_s = test_set

        mean = train_p.mean(axis=0)
        std = train_p.std(axis=0)
        std[std == 0] = 1.0
        self._parameter_mean = self._to_tensor(mean)
        self._parameter_std = self._to_tensor(std)
        scale = float(np.abs(train_s).max())
        self._solution_scale = scale if scale > 0 else 1.0

        x_train = self._normalize_parameters(self._to_tensor(train_p))
        y_train = self._to_tensor(train_s / self._solution_scale)

        with self._seeded():
            if config.seed is not None:
                torch.manual_seed(config.seed)

            self.autoencoder = ConvolutionalAutoencoder(
                order=solutions.shape[1],
                encoder_filters=config.encoder_filters,
                decoder_filters=config.decoder_filters_without_output,
                latent_length=config.latent_length,
                kernel_size=config.kernel_size,
            ).to(self.device)
            cae_train_loss = _train_network(
                self.autoencoder, y_train, y_train, config.cae_batch_size,
                config.cae_learning_rate, config.cae_num_epochs, "CAE")

            with torch.no_grad():
                latent_train = self.autoencoder.encode(y_train)

            self.ffnn = FeedForwardNetwork(
                in_features=parameters.shape[1],
                out_features=self.autoencoder.latent_size,
                hidden_size=config.ffnn_hidden_layer_size,
                num_hidden_layers=config.ffnn_num_hidden_layers,
            ).to(self.device)
            ffnn_train_loss = _train_network(
                self.ffnn, x_train, latent_train, config.ffnn_batch_size,
                config.ffnn_learning_rate, config.ffnn_num_epochs, "FFNN")

        report = {
            'num_train_samples': float(train_p.shape[0]),
            'num_test_samples': float(test_p.shape[0]),
            'cae_train_loss': cae_train_loss,
            'ffnn_train_loss': ffnn_train_loss,
            'cae_test_loss': math.nan,
            'ffnn_test_loss': math.nan,
            'surrogate_test_loss': math.nan,
        }
        if test_p.shape[0] > 0:
            criterion = nn.MSELoss()
            x_test = self._normalize_parameters(self._to_tensor(test_p))
            y_test = self._to_tensor(test_s / self._solution_scale)
            with torch.no_grad():
                latent_test = self.autoencoder.encode(y_test)
                predicted_latent = self.ffnn(x_test)
                report['cae_test_loss'] = criterion(self.autoencoder.decode(latent_test), y_test).item()
                report['ffnn_test_loss'] = criterion(predicted_latent, latent_test).item()
                report['surrogate_test_loss'] = criterion(
                    self.autoencoder.decode(predicted_latent), y_test).item()

        logger.info("Surrogate trained on %d samples: CAE loss %.3e, FFNN loss %.3e, test loss %.3e",
                    train_p.shape[0], cae_train_loss, ffnn_train_loss, report['surrogate_test_loss'])
        return report

    def _predict(self, parameters: np.ndarray) -> np.ndarray:
        x = self._normalize_parameters(self._to_tensor(parameters).unsqueeze(0))
        with torch.no_grad():
            prediction = self.autoencoder.decode(self.ffnn(x)).squeeze(0)
        return prediction.to(torch.float64).cpu().numpy() * self._solution_scale

    def __repr__(self) -> str:
        return (f"CaeFfnnSurrogate(trained={self.is_trained}, num_parameters={self.num_parameters}, "
                f"solution_length={self.solution_length})")


__all__ = [
    'SurrogatePredictor',
    'ConvolutionalAutoencoder',
    'FeedForwardNetwork',
    'CaeFfnnSurrogate',
]
