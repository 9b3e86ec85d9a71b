import abc
from typing import Mapping, Tuple

from jax import numpy as jnp
from overrides import EnforceOverrides, final

from .. import hints
from ..errors import KeyNotFoundError


class LinearFactorBase(abc.ABC, EnforceOverrides):
    """Base class for linear factors. These are defined over integer variable slots
    (see `jaxlin.core.Ordering`) rather than variable objects, and are evaluated on
    local deltas: a mapping from each slot to a tangent-space vector."""

    indices: Tuple[int, ...]
    """Variable slot of each term."""

    @abc.abstractmethod
    def get_dims(self) -> Tuple[int, ...]:
        """Local dimension of each term."""

    @abc.abstractmethod
    def error(self, delta: Mapping[int, hints.Array]) -> hints.Array:
        """Evaluate the quadratic cost at a delta."""

    @abc.abstractmethod
    def equals(self, other: object, tol: float = 1e-9) -> bool:
        pass

    @abc.abstractmethod
    def print(self, label: str = "") -> None:
        pass

    @final
    def get_dim(self) -> int:
        """Total local dimension of the variables this factor touches."""
        return sum(self.get_dims())

    @final
    def stack_delta(self, delta: Mapping[int, hints.Array]) -> jnp.ndarray:
        """Concatenate the deltas of this factor's terms, in term order."""
        for index in self.indices:
            if index not in delta:
                raise KeyNotFoundError(f"No delta for variable slot {index}.")
        return jnp.concatenate([jnp.asarray(delta[index]) for index in self.indices])
