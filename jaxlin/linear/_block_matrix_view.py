import abc
import dataclasses
from typing import Sequence, Tuple, Type, TypeVar

import numpy as onp
from jax import numpy as jnp

from .. import hints

ViewType = TypeVar("ViewType", bound="_BlockMatrixViewBase")


@dataclasses.dataclass(eq=False)
class _BlockMatrixViewBase(abc.ABC):
    """Partitions one backing matrix into a sequence of blocks, one per variable plus
    a trailing block for the residual/constant term.

    Block boundaries are computed once from block sizes. The backing matrix and its
    boundaries can only be replaced together, through `rebind()`."""

    matrix: hints.Array
    """Backing matrix."""

    offsets: Tuple[int, ...]
    """Block boundaries. Strictly increasing, starting at 0 and ending at the size of
    the partitioned dimension(s); block `i` spans `offsets[i]:offsets[i + 1]`."""

    @classmethod
    def make(
        cls: Type[ViewType], matrix: hints.Array, block_dims: Sequence[int]
    ) -> ViewType:
        """Bind a view to a matrix, given the size of each block."""
        matrix = jnp.asarray(matrix)
        return cls(matrix=matrix, offsets=cls._compute_offsets(matrix, block_dims))

    def rebind(self, matrix: hints.Array, block_dims: Sequence[int]) -> None:
        """Swap in a new backing matrix and block layout."""
        matrix = jnp.asarray(matrix)
        offsets = self._compute_offsets(matrix, block_dims)
        self.matrix, self.offsets = matrix, offsets

    def get_num_blocks(self) -> int:
        return len(self.offsets) - 1

    def get_block_dim(self, i: int) -> int:
        self._check_block_index(i)
        return self.offsets[i + 1] - self.offsets[i]

    def offset(self, i: int) -> int:
        """Start of block `i`. `offset(get_num_blocks())` is the end of the last
        block."""
        if not 0 <= i <= self.get_num_blocks():
            raise IndexError(
                f"Offset index {i} out of range for {self.get_num_blocks()} blocks."
            )
        return self.offsets[i]

    @abc.abstractmethod
    def full(self) -> jnp.ndarray:
        """The complete matrix."""

    @classmethod
    @abc.abstractmethod
    def _get_partitioned_dims(cls, matrix: jnp.ndarray) -> Tuple[int, ...]:
        """Sizes of the matrix dimensions that blocks partition."""

    @classmethod
    def _compute_offsets(
        cls, matrix: jnp.ndarray, block_dims: Sequence[int]
    ) -> Tuple[int, ...]:
        if len(block_dims) == 0 or any(int(d) <= 0 for d in block_dims):
            raise ValueError(f"Block sizes must be positive; got {tuple(block_dims)}.")
        offsets = tuple(int(x) for x in onp.cumsum([0] + [int(d) for d in block_dims]))
        for dim in cls._get_partitioned_dims(matrix):
            if dim != offsets[-1]:
                raise ValueError(
                    f"Block sizes {tuple(block_dims)} don't span a matrix of shape"
                    f" {matrix.shape}."
                )
        return offsets

    def _check_block_index(self, i: int) -> None:
        if not 0 <= i < self.get_num_blocks():
            raise IndexError(
                f"Block index {i} out of range for {self.get_num_blocks()} blocks."
            )

    def _check_block_range(self, start: int, end: int) -> None:
        if not 0 <= start <= end <= self.get_num_blocks():
            raise IndexError(
                f"Block range [{start}, {end}) out of range for"
                f" {self.get_num_blocks()} blocks."
            )


@dataclasses.dataclass(eq=False)
class BlockMatrixView(_BlockMatrixViewBase):
    """Column-partitioned view, eg over an augmented Jacobian
    `[A_1 | ... | A_n | b]`."""

    @classmethod
    def _get_partitioned_dims(cls, matrix: jnp.ndarray) -> Tuple[int, ...]:
        assert len(matrix.shape) == 2
        return (matrix.shape[1],)

    def get_rows(self) -> int:
        return self.matrix.shape[0]

    def block(self, i: int) -> jnp.ndarray:
        """Columns of block `i`. The last block is the residual column."""
        self._check_block_index(i)
        return self.matrix[:, self.offsets[i] : self.offsets[i + 1]]

    def range(self, start: int, end: int) -> jnp.ndarray:
        """Columns spanning blocks `start` through `end - 1`."""
        self._check_block_range(start, end)
        return self.matrix[:, self.offsets[start] : self.offsets[end]]

    def full(self) -> jnp.ndarray:
        return self.matrix


@dataclasses.dataclass(eq=False)
class SymmetricBlockMatrixView(_BlockMatrixViewBase):
    """View over a symmetric matrix, eg an augmented information matrix
    `[[G, g], [g^T, f]]`. Rows and columns are partitioned identically, and only the
    upper triangle is read."""

    @classmethod
    def _get_partitioned_dims(cls, matrix: jnp.ndarray) -> Tuple[int, ...]:
        assert len(matrix.shape) == 2
        return matrix.shape

    def block(self, i: int, j: int) -> jnp.ndarray:
        """Block `(i, j)`. Blocks below the diagonal are read from their mirror above
        it."""
        self._check_block_index(i)
        self._check_block_index(j)
        if i > j:
            return self.block(j, i).T
        block = self.matrix[
            self.offsets[i] : self.offsets[i + 1],
            self.offsets[j] : self.offsets[j + 1],
        ]
        return symmetric_from_upper(block) if i == j else block

    def range(self, start: int, end: int) -> jnp.ndarray:
        """Symmetric square span over blocks `start` through `end - 1`."""
        self._check_block_range(start, end)
        return symmetric_from_upper(
            self.matrix[
                self.offsets[start] : self.offsets[end],
                self.offsets[start] : self.offsets[end],
            ]
        )

    def range_rectangular(
        self, row_start: int, row_end: int, col_start: int, col_end: int
    ) -> jnp.ndarray:
        """Rectangular span strictly above the block diagonal: rows of blocks
        `row_start:row_end`, columns of blocks `col_start:col_end`."""
        self._check_block_range(row_start, row_end)
        self._check_block_range(col_start, col_end)
        if row_end > col_start:
            raise IndexError(
                f"Rows [{row_start}, {row_end}) and columns [{col_start}, {col_end})"
                " are not above the block diagonal."
            )
        return self.matrix[
            self.offsets[row_start] : self.offsets[row_end],
            self.offsets[col_start] : self.offsets[col_end],
        ]

    def full(self) -> jnp.ndarray:
        return symmetric_from_upper(self.matrix)


def symmetric_from_upper(matrix: hints.Array) -> jnp.ndarray:
    """Symmetric matrix from the upper triangle of a square matrix."""
    return jnp.triu(matrix) + jnp.triu(matrix, 1).T
