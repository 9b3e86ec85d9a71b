import math
from typing import Sequence, Union

import jax.scipy.linalg
import jax_dataclasses as jdc
import numpy as onp
from jax import numpy as jnp
from overrides import final, overrides

from .. import hints
from ..errors import DecompositionError, UnsupportedOperationError
from ._noise_model_base import NoiseModelBase, _check_mutable

VectorLike = Union[hints.Array, Sequence[float]]


@jdc.pytree_dataclass
class Gaussian(NoiseModelBase):
    """Gaussian noise model, implementing `|R x|^2 = |y|^2` with `R.T @ R =
    inv(covariance)`.

    Whitening is `y = R x`, unwhitening `x = inv(R) y`. The subclasses below are
    specializations that are cheaper to evaluate."""

    sqrt_information_matrix: hints.Array
    """Square root information matrix `R`. Upper-triangular when computed from a
    covariance or information matrix."""

    @staticmethod
    def make_from_sqrt_information(sqrt_information: hints.Array) -> "Gaussian":
        """Create a Gaussian from a square root information matrix, stored as given."""
        R = _as_float_array(sqrt_information)
        _check_square(R, "Square root information matrix")
        if not bool(jnp.all(jnp.isfinite(R))) or int(
            jnp.linalg.matrix_rank(R)
        ) < R.shape[0]:
            raise DecompositionError("Square root information matrix is singular!")
        return Gaussian(sqrt_information_matrix=R)

    @staticmethod
    def make_from_covariance(covariance: hints.Array) -> "Gaussian":
        """Create a Gaussian from a symmetric positive-definite covariance matrix.

        We store the upper-triangular inverse square root of the covariance. Factoring
        the index-reversed covariance `P cov P = L L^T` gives `inv(cov) = R^T R` with
        `R = P inv(L) P`, which is upper-triangular."""
        covariance = _as_float_array(covariance)
        _check_square(covariance, "Covariance")
        dim = covariance.shape[0]

        chol = _cholesky(covariance[::-1, ::-1], "Covariance")
        chol_inv = jax.scipy.linalg.solve_triangular(chol, jnp.eye(dim), lower=True)
        return Gaussian(sqrt_information_matrix=chol_inv[::-1, ::-1])

    @staticmethod
    def make_from_information(information: hints.Array) -> "Gaussian":
        """Create a Gaussian from a symmetric positive-definite information matrix.
        Stores the upper-triangular square root `R`, with `R^T R = information`."""
        information = _as_float_array(information)
        _check_square(information, "Information matrix")
        return Gaussian(
            sqrt_information_matrix=_cholesky(information, "Information matrix").T
        )

    @overrides
    @final
    def get_residual_dim(self) -> int:
        return self.sqrt_information_matrix.shape[-1]

    @final
    def _as_residual(self, residual_vector: hints.Array) -> jnp.ndarray:
        residual_vector = jnp.asarray(residual_vector)
        assert residual_vector.shape == (self.get_residual_dim(),), (
            f"Expected a residual of shape ({self.get_residual_dim()},), got"
            f" {residual_vector.shape}."
        )
        return residual_vector

    @overrides
    def whiten_residual_vector(self, residual_vector: hints.Array) -> hints.Array:
        residual_vector = self._as_residual(residual_vector)
        return jnp.einsum("ij,j->i", self.sqrt_information_matrix, residual_vector)

    @overrides
    def unwhiten_residual_vector(self, residual_vector: hints.Array) -> hints.Array:
        residual_vector = self._as_residual(residual_vector)
        return jnp.linalg.solve(self.sqrt_information_matrix, residual_vector)

    @overrides
    def mahalanobis(self, residual_vector: hints.Array) -> hints.Array:
        # v^T R^T R v = <Rv, Rv>. Subclasses only need to specialize whitening.
        whitened = self.whiten_residual_vector(residual_vector)
        return jnp.dot(whitened, whitened)

    @overrides
    def whiten_jacobian(self, jacobian: hints.Array) -> hints.Array:
        return jnp.einsum(
            "ij,jk->ik", self.sqrt_information_matrix, jnp.asarray(jacobian)
        )

    @overrides
    def equals(self, other: object, tol: float = 1e-9) -> bool:
        # We store square roots, so comparing at `sqrt(tol)` corresponds to comparing
        # covariances at `tol`.
        if not isinstance(other, Gaussian):
            return False
        if isinstance(other, ConstrainedGaussian):
            return other.equals(self, tol)
        return _allclose(
            self.sqrt_information_matrix,
            other.sqrt_information_matrix,
            math.sqrt(tol),
        )

    @overrides
    def print(self, label: str = "") -> None:
        print(f"Gaussian {label}".rstrip())
        print(onp.asarray(self.sqrt_information_matrix))


@jdc.pytree_dataclass
class DiagonalGaussian(Gaussian):
    """Gaussian with a diagonal covariance matrix, specified by standard deviations.

    Use the `make_from_*()` helpers to construct."""

    sigmas: hints.Array
    """Standard deviations; square root of the covariance diagonal."""

    inv_sigmas: hints.Array
    """Reciprocal of `sigmas`; diagonal of the square root information matrix."""

    @staticmethod
    def make_from_sigmas(sigmas: VectorLike) -> "DiagonalGaussian":
        sigmas = _as_float_array(sigmas)
        if not bool(jnp.all(jnp.isfinite(sigmas))) or not bool(jnp.all(sigmas > 0.0)):
            raise DecompositionError(
                f"Diagonal noise models need positive, finite sigmas; got {sigmas}."
            )
        inv_sigmas = 1.0 / sigmas
        return DiagonalGaussian(
            sqrt_information_matrix=jnp.diag(inv_sigmas),
            sigmas=sigmas,
            inv_sigmas=inv_sigmas,
        )

    @staticmethod
    def make_from_variances(variances: VectorLike) -> "DiagonalGaussian":
        return DiagonalGaussian.make_from_sigmas(jnp.sqrt(_as_float_array(variances)))

    @staticmethod
    def make_from_precisions(precisions: VectorLike) -> "DiagonalGaussian":
        """Precisions are the diagonal of the information matrix, ie weights."""
        return DiagonalGaussian.make_from_variances(
            1.0 / _as_float_array(precisions)
        )

    @overrides
    def whiten_residual_vector(self, residual_vector: hints.Array) -> hints.Array:
        return self.inv_sigmas * self._as_residual(residual_vector)

    @overrides
    def unwhiten_residual_vector(self, residual_vector: hints.Array) -> hints.Array:
        return self.sigmas * self._as_residual(residual_vector)

    @overrides
    def whiten_jacobian(self, jacobian: hints.Array) -> hints.Array:
        assert len(jnp.shape(jacobian)) == 2
        assert jnp.shape(jacobian)[0] == self.get_residual_dim()
        return self.inv_sigmas[:, None] * jnp.asarray(jacobian)

    @overrides
    def print(self, label: str = "") -> None:
        print(f"Diagonal sigmas {label}".rstrip())
        print(onp.asarray(self.sigmas))


@jdc.pytree_dataclass
class ConstrainedGaussian(DiagonalGaussian):
    """Diagonal noise model where some or all sigmas can be zero, marking hard
    constraints on those residual components.

    All other Gaussian models have a non-singular square root information matrix; this
    one doesn't. Whitening returns zero for components with zero sigma *and* zero
    error, and positive infinity for components with zero sigma and nonzero error.
    Infinities are not clamped: `is_satisfied()` can be used to check feasibility
    explicitly."""

    @staticmethod
    def make_mixed(sigmas: VectorLike) -> "ConstrainedGaussian":
        """Create from standard deviations, some of which may be zero."""
        sigmas = _as_float_array(sigmas)
        if not bool(jnp.all(jnp.isfinite(sigmas))) or not bool(
            jnp.all(sigmas >= 0.0)
        ):
            raise DecompositionError(
                f"Constrained noise models need non-negative sigmas; got {sigmas}."
            )
        inv_sigmas = 1.0 / sigmas  # Infinite for constrained components.
        return ConstrainedGaussian(
            sqrt_information_matrix=jnp.diag(inv_sigmas),
            sigmas=sigmas,
            inv_sigmas=inv_sigmas,
        )

    @staticmethod
    def make_all(dim: int) -> "ConstrainedGaussian":
        """Fully constrained: every sigma is zero."""
        return ConstrainedGaussian.make_mixed(jnp.zeros(dim))

    @overrides
    def whiten_residual_vector(self, residual_vector: hints.Array) -> hints.Array:
        residual_vector = self._as_residual(residual_vector)
        unconstrained = self.sigmas > 0.0
        safe_sigmas = jnp.where(unconstrained, self.sigmas, 1.0)
        return jnp.where(
            unconstrained,
            residual_vector / safe_sigmas,
            jnp.where(residual_vector == 0.0, 0.0, jnp.inf),
        )

    @overrides
    def unwhiten_residual_vector(self, residual_vector: hints.Array) -> hints.Array:
        # Zero is the only feasible raw value for constrained components.
        residual_vector = self._as_residual(residual_vector)
        return jnp.where(self.sigmas > 0.0, self.sigmas * residual_vector, 0.0)

    @overrides
    def whiten_jacobian(self, jacobian: hints.Array) -> hints.Array:
        raise UnsupportedOperationError(
            "Constrained noise models can't whiten Jacobians: the information matrix"
            " is singular."
        )

    @overrides
    def whiten_jacobian_in_place(self, jacobian: onp.ndarray) -> None:
        raise UnsupportedOperationError(
            "Constrained noise models can't whiten Jacobians: the information matrix"
            " is singular."
        )

    def get_violated_components(self, residual_vector: hints.Array) -> hints.Array:
        """Boolean mask of constrained components with a nonzero residual."""
        return (self.sigmas == 0.0) & (self._as_residual(residual_vector) != 0.0)

    def is_satisfied(self, residual_vector: hints.Array) -> bool:
        """Returns `True` if every hard constraint holds exactly, ie the Mahalanobis
        distance is finite."""
        return not bool(jnp.any(self.get_violated_components(residual_vector)))

    @overrides
    def equals(self, other: object, tol: float = 1e-9) -> bool:
        if not isinstance(other, DiagonalGaussian):
            return False
        return _allclose(self.sigmas, other.sigmas, math.sqrt(tol))

    @overrides
    def print(self, label: str = "") -> None:
        print(f"Constrained sigmas {label}".rstrip())
        print(onp.asarray(self.sigmas))


@jdc.pytree_dataclass
class IsotropicGaussian(DiagonalGaussian):
    """Diagonal noise model where every standard deviation is the same. Stores the
    scalar sigma for cheaper whitening."""

    sigma: hints.Scalar
    inv_sigma: hints.Scalar

    @staticmethod
    def make_from_sigma(dim: int, sigma: float) -> "IsotropicGaussian":
        sigma = float(sigma)
        if not (math.isfinite(sigma) and sigma > 0.0):
            raise DecompositionError(
                f"Isotropic noise models need a positive, finite sigma; got {sigma}."
            )
        sigmas = jnp.full((dim,), sigma)
        return IsotropicGaussian(
            sqrt_information_matrix=jnp.eye(dim) / sigma,
            sigmas=sigmas,
            inv_sigmas=1.0 / sigmas,
            sigma=sigma,
            inv_sigma=1.0 / sigma,
        )

    @staticmethod
    def make_from_variance(dim: int, variance: float) -> "IsotropicGaussian":
        return IsotropicGaussian.make_from_sigma(dim, math.sqrt(variance))

    @staticmethod
    def make_from_precision(dim: int, precision: float) -> "IsotropicGaussian":
        return IsotropicGaussian.make_from_variance(dim, 1.0 / precision)

    @overrides
    def mahalanobis(self, residual_vector: hints.Array) -> hints.Array:
        residual_vector = self._as_residual(residual_vector)
        dot = jnp.dot(residual_vector, residual_vector)
        return dot * self.inv_sigma * self.inv_sigma

    @overrides
    def whiten_residual_vector(self, residual_vector: hints.Array) -> hints.Array:
        return self._as_residual(residual_vector) * self.inv_sigma

    @overrides
    def unwhiten_residual_vector(self, residual_vector: hints.Array) -> hints.Array:
        return self._as_residual(residual_vector) * self.sigma

    @overrides
    def whiten_jacobian(self, jacobian: hints.Array) -> hints.Array:
        return self.inv_sigma * jnp.asarray(jacobian)

    @overrides
    def whiten_jacobian_in_place(self, jacobian: onp.ndarray) -> None:
        _check_mutable(jacobian)
        jacobian *= self.inv_sigma

    @overrides
    def print(self, label: str = "") -> None:
        print(f"Isotropic sigma {label} {self.sigma}")


@jdc.pytree_dataclass
class UnitGaussian(IsotropicGaussian):
    """Unit-variance noise on every dimension. Whitening is the identity; used to tag
    factors that are already whitened."""

    @staticmethod
    def make(dim: int) -> "UnitGaussian":
        sigmas = jnp.ones(dim)
        return UnitGaussian(
            sqrt_information_matrix=jnp.eye(dim),
            sigmas=sigmas,
            inv_sigmas=sigmas,
            sigma=1.0,
            inv_sigma=1.0,
        )

    @overrides
    def mahalanobis(self, residual_vector: hints.Array) -> hints.Array:
        residual_vector = self._as_residual(residual_vector)
        return jnp.dot(residual_vector, residual_vector)

    @overrides
    def whiten_residual_vector(self, residual_vector: hints.Array) -> hints.Array:
        return self._as_residual(residual_vector)

    @overrides
    def unwhiten_residual_vector(self, residual_vector: hints.Array) -> hints.Array:
        return self._as_residual(residual_vector)

    @overrides
    def whiten_jacobian(self, jacobian: hints.Array) -> hints.Array:
        return jnp.asarray(jacobian)

    @overrides
    def whiten_jacobian_in_place(self, jacobian: onp.ndarray) -> None:
        _check_mutable(jacobian)

    @overrides
    def print(self, label: str = "") -> None:
        print(f"Unit {label}".rstrip())


def _as_float_array(x: Union[hints.Array, Sequence[float]]) -> jnp.ndarray:
    return jnp.asarray(x, dtype=jnp.result_type(float))


def _check_square(matrix: jnp.ndarray, name: str) -> None:
    if len(matrix.shape) != 2 or matrix.shape[0] != matrix.shape[1]:
        raise DecompositionError(f"{name} must be a square matrix; got {matrix.shape}.")


def _cholesky(matrix: jnp.ndarray, name: str) -> jnp.ndarray:
    """Lower-triangular Cholesky factor of a symmetric positive-definite matrix."""
    if not bool(jnp.all(jnp.isfinite(matrix))):
        raise DecompositionError(f"{name} has non-finite entries.")
    if not bool(jnp.allclose(matrix, matrix.T)):
        raise DecompositionError(f"{name} is not symmetric.")

    # JAX returns NaNs instead of raising for matrices that aren't positive-definite.
    chol = jnp.linalg.cholesky(matrix)
    if not bool(jnp.all(jnp.diag(chol) > 0.0)):
        raise DecompositionError(f"{name} is not positive-definite.")
    return chol


def _allclose(a: hints.Array, b: hints.Array, atol: float) -> bool:
    a = onp.asarray(a)
    b = onp.asarray(b)
    return a.shape == b.shape and bool(onp.allclose(a, b, rtol=0.0, atol=atol))
