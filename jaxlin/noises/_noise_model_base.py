import abc
from typing import Tuple

import numpy as onp
from overrides import EnforceOverrides, final

from .. import hints


class NoiseModelBase(abc.ABC, EnforceOverrides):
    """Base class for noise models.

    A noise model maps residuals with some covariance to "whitened" residuals with
    identity covariance, so their squared norm can be used directly as a cost.
    Instances are immutable and can be shared between any number of factors.
    """

    @abc.abstractmethod
    def get_residual_dim(self) -> int:
        pass

    @abc.abstractmethod
    def whiten_residual_vector(self, residual_vector: hints.Array) -> hints.Array:
        """Map a raw residual to its whitened form."""

    @abc.abstractmethod
    def unwhiten_residual_vector(self, residual_vector: hints.Array) -> hints.Array:
        """Inverse of `whiten_residual_vector()`."""

    @abc.abstractmethod
    def mahalanobis(self, residual_vector: hints.Array) -> hints.Array:
        """Squared norm of the whitened residual."""

    @abc.abstractmethod
    def whiten_jacobian(self, jacobian: hints.Array) -> hints.Array:
        """Apply the whitening transform to each column of a Jacobian, so that whitened
        residuals and Jacobians stay consistent in the normal equations."""

    @abc.abstractmethod
    def equals(self, other: object, tol: float = 1e-9) -> bool:
        pass

    @abc.abstractmethod
    def print(self, label: str = "") -> None:
        pass

    # Shared implementations. Subclasses can override these if they can be done more
    # efficiently.

    def whiten_jacobian_in_place(self, jacobian: onp.ndarray) -> None:
        """In-place version of `whiten_jacobian()`, for a caller-supplied `numpy`
        buffer."""
        _check_mutable(jacobian)
        jacobian[...] = onp.asarray(self.whiten_jacobian(jacobian))

    @final
    def whiten_residual_vector_in_place(self, residual_vector: onp.ndarray) -> None:
        """In-place version of `whiten_residual_vector()`."""
        _check_mutable(residual_vector)
        residual_vector[...] = onp.asarray(self.whiten_residual_vector(residual_vector))

    @final
    def unwhiten_residual_vector_in_place(self, residual_vector: onp.ndarray) -> None:
        """In-place version of `unwhiten_residual_vector()`."""
        _check_mutable(residual_vector)
        residual_vector[...] = onp.asarray(
            self.unwhiten_residual_vector(residual_vector)
        )

    def whiten_system(
        self, A: hints.Array, b: hints.Array
    ) -> Tuple[hints.Array, hints.Array]:
        """Whiten a Jacobian and a residual vector together."""
        return self.whiten_jacobian(A), self.whiten_residual_vector(b)


def _check_mutable(buffer: onp.ndarray) -> None:
    """In-place results are written back with the buffer's own dtype, so only
    writeable floating point `numpy` arrays are accepted."""
    if not isinstance(buffer, onp.ndarray):
        raise TypeError(
            f"In-place whitening needs a mutable numpy array, but got {type(buffer)}."
        )
    if not onp.issubdtype(buffer.dtype, onp.floating):
        raise TypeError(
            f"In-place whitening needs a floating point buffer, but got {buffer.dtype}."
        )
    if not buffer.flags.writeable:
        raise TypeError("In-place whitening needs a writeable buffer.")
