from typing import Mapping, Sequence, Tuple

import jax_dataclasses as jdc
import numpy as onp
from jax import numpy as jnp
from overrides import overrides

from .. import hints
from ._block_matrix_view import symmetric_from_upper
from ._jacobian_factor import JacobianFactor
from ._linear_factor_base import LinearFactorBase


@jdc.pytree_dataclass
class HessianFactor(LinearFactorBase):
    r"""Linear factor in information (quadratic) form:
    $$
    0.5 (f - 2 \delta^T g + \delta^T G \delta)
    $$
    stored as the augmented symmetric matrix `[[G, g], [g^T, f]]`. For a whitened
    Jacobian factor, this is `[A | b]^T [A | b]`. Only the upper triangle is read."""

    indices: jdc.Static[Tuple[int, ...]]
    dims: jdc.Static[Tuple[int, ...]]
    info: hints.Array

    def __post_init__(self):
        assert len(self.indices) == len(self.dims)
        assert len(set(self.indices)) == len(self.indices), "Duplicate slots!"
        size = sum(self.dims) + 1
        assert jnp.shape(self.info) == (size, size)

    @staticmethod
    def make(
        indices: Sequence[int],
        G_blocks: Sequence[hints.Array],
        g_blocks: Sequence[hints.Array],
        f: hints.Scalar,
    ) -> "HessianFactor":
        """Build from blocks. `G_blocks` holds the upper-triangular blocks `G_ij`,
        `i <= j`, in row-major order: `G_00, G_01, ..., G_0n, G_11, ...`."""
        n = len(indices)
        assert len(g_blocks) == n
        assert len(G_blocks) == n * (n + 1) // 2

        dims = tuple(int(onp.shape(g)[0]) for g in g_blocks)
        offsets = onp.concatenate([[0], onp.cumsum(dims)]).astype(int)
        size = offsets[-1]

        info = onp.zeros((size + 1, size + 1))
        G_iter = iter(G_blocks)
        for i in range(n):
            rows = slice(offsets[i], offsets[i + 1])
            for j in range(i, n):
                cols = slice(offsets[j], offsets[j + 1])
                G = onp.asarray(next(G_iter))
                assert G.shape == (dims[i], dims[j])
                info[rows, cols] = G
                info[cols, rows] = G.T
            info[rows, size] = onp.asarray(g_blocks[i])
            info[size, rows] = onp.asarray(g_blocks[i])
        info[size, size] = f

        return HessianFactor(indices=tuple(indices), dims=dims, info=jnp.asarray(info))

    @staticmethod
    def from_jacobian(jacobian_factor: JacobianFactor) -> "HessianFactor":
        """Information form of a Jacobian factor: `G = A^T A`, `g = A^T b`, `f = b^T b`
        for the whitened `A` and `b`."""
        Ab = jacobian_factor.matrix_augmented(whitened=True)
        return HessianFactor(
            indices=jacobian_factor.indices,
            dims=jacobian_factor.get_dims(),
            info=Ab.T @ Ab,
        )

    @overrides
    def get_dims(self) -> Tuple[int, ...]:
        return self.dims

    def squared_term(self) -> jnp.ndarray:
        """`G`, symmetric."""
        size = self.get_dim()
        return symmetric_from_upper(self.info[:size, :size])

    def linear_term(self) -> jnp.ndarray:
        """`g`."""
        size = self.get_dim()
        return self.info[:size, size]

    def constant_term(self) -> jnp.ndarray:
        """`f`."""
        size = self.get_dim()
        return self.info[size, size]

    @overrides
    def error(self, delta: Mapping[int, hints.Array]) -> hints.Array:
        x = self.stack_delta(delta)
        return 0.5 * (
            self.constant_term()
            - 2.0 * jnp.dot(x, self.linear_term())
            + x @ self.squared_term() @ x
        )

    @overrides
    def equals(self, other: object, tol: float = 1e-9) -> bool:
        if not isinstance(other, HessianFactor):
            return False
        return (
            self.indices == other.indices
            and self.dims == other.dims
            and bool(
                onp.allclose(
                    symmetric_from_upper(self.info),
                    symmetric_from_upper(other.info),
                    rtol=0.0,
                    atol=tol,
                )
            )
        )

    @overrides
    def print(self, label: str = "") -> None:
        print(label)
        print(f"indices: {self.indices}, dims: {self.dims}")
        print(f"[G g; g' f]=\n{onp.asarray(symmetric_from_upper(self.info))}")
