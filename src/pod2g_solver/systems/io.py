"""
Reading problem definitions from coordinate text files.

Matrix file format (symmetric pattern, MatrixMarket-like):

    % comment lines start with '%'
    rows cols nnz
    col row value        <- one-indexed, one stored entry per line
    ...

Only one triangle needs to be stored; every off-diagonal entry is mirrored.
If both (i, j) and (j, i) appear, the later line wins.

Right hand side file: one value per line, '%' comment lines allowed.
"""

import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union

import torch

from ..exceptions import InvalidInputError
from ..linalg.matrix_utils import DEFAULT_DTYPE, coo_to_csr
from .provider import PerturbedLinearSystemProvider

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _data_lines(path: PathLike) -> Iterator[Tuple[int, str]]:
    with open(path, 'r') as f:
        for line_number, line in enumerate(f, start=1):
            stripped = line.strip()
            if not stripped or stripped.startswith('%'):
                continue
            yield line_number, stripped


def read_coordinate_matrix(path: PathLike) -> torch.Tensor:
    """
    Read a symmetric sparse matrix in coordinate text form.

    Args:
        path: Matrix file

    Returns:
        Symmetric float64 sparse CSR tensor
    """
    lines = _data_lines(path)
    try:
        header_line, header = next(lines)
    except StopIteration:
        raise InvalidInputError(f"{path}: no header line found") from None

    try:
        num_rows, num_cols, nnz = (int(v) for v in header.split())
    except ValueError as e:
        raise InvalidInputError(f"{path}:{header_line}: expected 'rows cols nnz', got '{header}'") from e
    if num_rows != num_cols:
        raise InvalidInputError(f"{path}: symmetric matrix must be square, got {num_rows}x{num_cols}")

    entries: Dict[Tuple[int, int], float] = {}
    count = 0
    for line_number, line in lines:
        fields = line.split()
        try:
            col, row, value = int(fields[0]) - 1, int(fields[1]) - 1, float(fields[2])
        except (IndexError, ValueError) as e:
            raise InvalidInputError(f"{path}:{line_number}: malformed entry '{line}'") from e
        if not (0 <= row < num_rows and 0 <= col < num_cols):
            raise InvalidInputError(
                f"{path}:{line_number}: entry ({row + 1}, {col + 1}) outside {num_rows}x{num_cols}")
        entries[(min(row, col), max(row, col))] = value
        count += 1

    if count != nnz:
        raise InvalidInputError(f"{path}: header declares {nnz} entries but {count} were found")

    rows: List[int] = []
    cols: List[int] = []
    values: List[float] = []
    for (i, j), value in entries.items():
        rows.append(i)
        cols.append(j)
        values.append(value)
        if i != j:
            rows.append(j)
            cols.append(i)
            values.append(value)

    logger.debug("Read %dx%d matrix with %d stored entries from %s", num_rows, num_cols, nnz, path)
    return coo_to_csr(
        torch.tensor(rows, dtype=torch.long),
        torch.tensor(cols, dtype=torch.long),
        torch.tensor(values, dtype=DEFAULT_DTYPE),
        (num_rows, num_cols),
    )


def read_rhs(path: PathLike) -> torch.Tensor:
    """Read a right hand side vector with one value per line."""
    values = []
    for line_number, line in _data_lines(path):
        try:
            values.append(float(line))
        except ValueError as e:
            raise InvalidInputError(f"{path}:{line_number}: malformed value '{line}'") from e
    if not values:
        raise InvalidInputError(f"{path}: right hand side file is empty")
    return torch.tensor(values, dtype=DEFAULT_DTYPE)


class FileLinearSystemProvider(PerturbedLinearSystemProvider):
    """PerturbedLinearSystemProvider whose base system is read from files."""

    @classmethod
    def from_files(
        cls,
        matrix_path: PathLike,
        rhs_path: Optional[PathLike] = None,
        noise: float = 0.0,
        rhs_randomness: float = 0.0,
        seed: Optional[int] = None,
        generator: Optional[torch.Generator] = None,
    ) -> "FileLinearSystemProvider":
        """
        Args:
            matrix_path: Coordinate matrix file
            rhs_path: Optional right hand side file; a synthetic load is used otherwise
            noise: Relative matrix noise
            rhs_randomness: Relative right hand side noise
            seed: Seeds the provider's generator once
            generator: Generator to own instead of a fresh one
        """
        matrix = read_coordinate_matrix(matrix_path)
        rhs = read_rhs(rhs_path) if rhs_path else None
        return cls(matrix, rhs, noise=noise, rhs_randomness=rhs_randomness,
                   generator=generator, seed=seed)
