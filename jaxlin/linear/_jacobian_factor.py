from typing import Mapping, Optional, Sequence, Tuple

import jax_dataclasses as jdc
import numpy as onp
from jax import numpy as jnp
from overrides import overrides

from .. import hints, noises
from ._linear_factor_base import LinearFactorBase


@jdc.pytree_dataclass
class JacobianFactor(LinearFactorBase):
    r"""Linear factor in Jacobian form, corresponding to the residual:
    $$
    r = ( \Sum_i A_i \delta_i ) - b
    $$
    with cost `0.5 * mahalanobis(r)` under the factor's noise model. `A_i` and `b` are
    stored raw; the noise model is applied when the factor is consumed."""

    indices: jdc.Static[Tuple[int, ...]]
    A_matrices: Tuple[hints.Array, ...]
    b: hints.Array
    noise_model: noises.NoiseModelBase

    def __post_init__(self):
        assert len(self.indices) == len(self.A_matrices)
        assert len(set(self.indices)) == len(self.indices), "Duplicate slots!"
        (rows,) = jnp.shape(self.b)
        for A in self.A_matrices:
            assert len(jnp.shape(A)) == 2 and jnp.shape(A)[0] == rows
        assert self.noise_model.get_residual_dim() == rows

    @staticmethod
    def make(
        terms: Sequence[Tuple[int, hints.Array]],
        b: hints.Array,
        noise_model: Optional[noises.NoiseModelBase] = None,
    ) -> "JacobianFactor":
        """Build from `(slot, A)` pairs. Defaults to a unit noise model, ie a factor
        that's already whitened."""
        b = jnp.asarray(b)
        return JacobianFactor(
            indices=tuple(index for index, _ in terms),
            A_matrices=tuple(jnp.asarray(A) for _, A in terms),
            b=b,
            noise_model=noises.UnitGaussian.make(b.shape[0])
            if noise_model is None
            else noise_model,
        )

    def get_rows(self) -> int:
        return self.b.shape[0]

    @overrides
    def get_dims(self) -> Tuple[int, ...]:
        return tuple(A.shape[1] for A in self.A_matrices)

    def matrix_augmented(self, whitened: bool = True) -> jnp.ndarray:
        """Augmented matrix `[A_1 | ... | A_n | b]`, optionally with the noise model
        baked in. Whitening fails for constrained noise models."""
        Ab = jnp.concatenate(
            [jnp.asarray(A) for A in self.A_matrices] + [self.b[:, None]], axis=1
        )
        if whitened:
            Ab = self.noise_model.whiten_jacobian(Ab)
        return Ab

    def whiten(self) -> "JacobianFactor":
        """Copy of this factor with the noise model baked into `A` and `b`."""
        Ab = self.matrix_augmented(whitened=True)
        splits = onp.cumsum(self.get_dims())
        *A_matrices, b = jnp.split(Ab, splits, axis=1)
        return JacobianFactor(
            indices=self.indices,
            A_matrices=tuple(A_matrices),
            b=b[:, 0],
            noise_model=noises.UnitGaussian.make(self.get_rows()),
        )

    def error_vector(self, delta: Mapping[int, hints.Array]) -> jnp.ndarray:
        """Unwhitened residual `A delta - b`."""
        A = jnp.concatenate(self.A_matrices, axis=1)
        return A @ self.stack_delta(delta) - self.b

    @overrides
    def error(self, delta: Mapping[int, hints.Array]) -> hints.Array:
        return 0.5 * self.noise_model.mahalanobis(self.error_vector(delta))

    @overrides
    def equals(self, other: object, tol: float = 1e-9) -> bool:
        if not isinstance(other, JacobianFactor):
            return False
        return (
            self.indices == other.indices
            and self.get_dims() == other.get_dims()
            and self.get_rows() == other.get_rows()
            and all(
                onp.allclose(A0, A1, rtol=0.0, atol=tol)
                for A0, A1 in zip(self.A_matrices, other.A_matrices)
            )
            and bool(onp.allclose(self.b, other.b, rtol=0.0, atol=tol))
            and self.noise_model.equals(other.noise_model, tol)
        )

    @overrides
    def print(self, label: str = "") -> None:
        print(label)
        for index, A in zip(self.indices, self.A_matrices):
            print(f"A[{index}]=\n{onp.asarray(A)}")
        print(f"b=\n{onp.asarray(self.b)}")
        self.noise_model.print("noise model")
