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
Preconditioned Conjugate Gradient for PyTorch sparse systems.

Unlike a raising solver, ``pcg`` always returns a ``SolveResult``: running out
of iterations, a curvature breakdown or a failing preconditioner are reported
through ``converged=False`` and ``failure``, together with the last finite
iterate. Only malformed inputs (shape mismatches) raise.
"""

import logging
import torch
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, Union

from ..exceptions import InvalidInputError
from .matrix_utils import DEFAULT_DTYPE, matvec
from .preconditioners import IdentityPreconditioner

logger = logging.getLogger(__name__)

PCG_LABEL = "PCG"
REORTHOGONALIZED_PCG_LABEL = "Reorthogonalized PCG"
MAX_ITERATIONS_REACHED = "maximum iterations reached"


@dataclass
class SolveResult:
    """Outcome of one iterative solve."""
    x: torch.Tensor            # Final (or best-effort partial) iterate
    converged: bool            # Whether the residual criterion was met
    iterations: int            # Number of PCG iterations performed
    residual_norm: float       # Final relative residual ||b - Ax|| / ||b||
    label: str                 # Algorithm name
    failure: Optional[str] = None  # Reason the solve stopped unconverged

    @property
    def failed(self) -> bool:
        return not self.converged


def _dot(a: torch.Tensor, b: torch.Tensor) -> torch.Tensor:
    return torch.dot(a, b)


def _is_finite(value: torch.Tensor) -> bool:
    return bool(torch.isfinite(value).all())


def _reorthogonalize(z: torch.Tensor, directions: List[Tuple[torch.Tensor, torch.Tensor, torch.Tensor]]) -> torch.Tensor:
    """A-orthogonalize ``z`` against all stored (p, Ap, p·Ap) directions."""
    p = z.clone()
    for p_j, Ap_j, pAp_j in directions:
        p = p - (_dot(z, Ap_j) / pAp_j) * p_j
    return p


def pcg(
    A: Union[torch.Tensor, Callable[[torch.Tensor], torch.Tensor]],
    b: torch.Tensor,
    M: Optional[Callable[[torch.Tensor], torch.Tensor]] = None,
    x0: Optional[torch.Tensor] = None,
    *,
    tol: float = 1e-6,
    maxiter: Optional[int] = None,
    reorthogonalize: bool = False,
) -> SolveResult:
    """
    Solve the symmetric positive definite system ``A x = b`` with PCG.

    Parameters
    ----------
    A : sparse/dense tensor or function
        Square SPD matrix, or a function computing the product ``A @ x``.
    b : tensor
        Right hand side vector.
    M : function, optional
        Preconditioner approximating ``A^{-1}``; identity if omitted.
    x0 : tensor, optional
        Initial guess. Zeros if omitted.
    tol : float
        Convergence criterion ``norm(b - A x) <= tol * norm(b)``.
    maxiter : int, optional
        Maximum number of iterations. Defaults to the system order.
    reorthogonalize : bool
        A-orthogonalize every new search direction against all previous ones.
        More robust in finite precision, at the cost of storing the directions.

    Returns
    -------
    SolveResult
        Iterate, convergence flag, iteration count and diagnostics.
    """
    b = b.to(DEFAULT_DTYPE)
    if b.ndim != 1:
        raise InvalidInputError(f"b must be a vector, got shape {tuple(b.shape)}")
    n = b.numel()
    if isinstance(A, torch.Tensor) and (A.ndim != 2 or A.shape[0] != A.shape[1] or A.shape[0] != n):
        raise InvalidInputError(
            f"linear operator must be a square matrix matching b, but has shape {tuple(A.shape)} "
            f"for b of length {n}")

    if x0 is None:
        x = torch.zeros_like(b)
    else:
        x = x0.to(DEFAULT_DTYPE).clone()
        if x.shape != b.shape:
            raise InvalidInputError(
                f"x0 and b must have matching shapes: {tuple(x.shape)} vs {tuple(b.shape)}")

    if M is None:
        M = IdentityPreconditioner()
    if maxiter is None:
        maxiter = max(1, n)

    label = REORTHOGONALIZED_PCG_LABEL if reorthogonalize else PCG_LABEL
    b_norm = torch.norm(b)

    def result(x_final, converged, iterations, residual_norm, failure=None):
        relative = residual_norm / b_norm.item() if b_norm.item() > 0 else residual_norm
        logger.debug("Number of PCG iterations = %d. Dofs = %d.", iterations, n)
        return SolveResult(x=x_final, converged=converged, iterations=iterations,
                           residual_norm=float(relative), label=label, failure=failure)

    if b_norm.item() == 0:
        # Zero right hand side: the zero vector is the exact solution
        return result(torch.zeros_like(b), True, 0, 0.0)

    threshold = tol * b_norm
    iterations = 0
    r_norm = None
    try:
        r = b - matvec(A, x)
        r_norm = torch.norm(r)
        if r_norm <= threshold:
            return result(x, True, 0, r_norm.item())

        z = M(r)
        p = z.clone()
        gamma = _dot(r, z)
        directions = []

        while iterations < maxiter:
            Ap = matvec(A, p)
            pAp = _dot(p, Ap)
            if not _is_finite(pAp) or pAp <= 0:
                return result(x, False, iterations, r_norm.item(),
                              failure=f"breakdown: non-positive curvature p'Ap = {pAp.item():.3e}")

            step = (_dot(p, r) if reorthogonalize else gamma) / pAp
            x_new = x + step * p
            r_new = r - step * Ap
            if not (_is_finite(x_new) and _is_finite(r_new)):
                return result(x, False, iterations, r_norm.item(),
                              failure="breakdown: non-finite iterate")
            x, r = x_new, r_new
            r_norm = torch.norm(r)
            iterations += 1

            if r_norm <= threshold:
                return result(x, True, iterations, r_norm.item())

            z = M(r)
            if reorthogonalize:
                directions.append((p, Ap, pAp))
                p = _reorthogonalize(z, directions)
            else:
                gamma_new = _dot(r, z)
                beta = gamma_new / gamma
                p = z + beta * p
                gamma = gamma_new
    except (RuntimeError, ValueError, ArithmeticError) as e:
        # Preconditioner or kernel failure: report the last iterate
        residual = r_norm.item() if r_norm is not None else float('nan')
        return result(x, False, iterations, residual, failure=str(e) or type(e).__name__)

    return result(x, False, iterations, r_norm.item(), failure=MAX_ITERATIONS_REACHED)


__all__ = [
    'SolveResult',
    'pcg',
    'PCG_LABEL',
    'REORTHOGONALIZED_PCG_LABEL',
    'MAX_ITERATIONS_REACHED',
]
