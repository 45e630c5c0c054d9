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
Exception hierarchy for pod2g_solver.

Non-convergence of an individual solve is deliberately absent: it is reported
through ``SolveResult.converged`` / ``ConvergenceRecord.converged`` and never
raised to the caller.
"""


class Pod2GError(Exception):
    """Base class for all errors raised by pod2g_solver."""


class InvalidInputError(Pod2GError, ValueError):
    """Malformed parameter vectors, empty inputs or an inconsistent base system."""


class InconsistentTrainingDataError(Pod2GError, ValueError):
    """Registered training samples cannot be assembled for reduction/training."""


class PreconditionViolationError(Pod2GError, RuntimeError):
    """An operation was called in the wrong lifecycle state (driver sequencing bug)."""


__all__ = [
    'Pod2GError',
    'InvalidInputError',
    'InconsistentTrainingDataError',
    'PreconditionViolationError',
]
