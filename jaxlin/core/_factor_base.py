import abc
import functools
from typing import (
    Generic,
    Sequence,
    Tuple,
    Type,
    TypeVar,
    cast,
    get_type_hints,
)

import jax
import jax_dataclasses as jdc
import numpy as onp
from jax import numpy as jnp
from loguru import logger
from overrides import EnforceOverrides, final, overrides

from .. import hints, linear, noises
from ._ordering import Ordering
from ._variable_assignments import VariableAssignments
from ._variables import VariableBase

VariableValueTuple = TypeVar(
    "VariableValueTuple",
    bound=Tuple[hints.VariableValue, ...],
)


class NonlinearFactorBase(abc.ABC, EnforceOverrides):
    """Interface shared by every factor a graph can hold: ordinary residual factors
    (`FactorBase`) and factors that wrap a previously linearized system
    (`jaxlin.linearized`)."""

    variables: Tuple[VariableBase, ...]
    """Variables connected to this factor."""

    @abc.abstractmethod
    def get_dim(self) -> int:
        """Dimension of the factor: residual rows, or the size of the stacked local
        delta for information-form factors."""

    @abc.abstractmethod
    def error(self, assignments: VariableAssignments) -> hints.Array:
        """Cost of the factor at some variable values."""

    @abc.abstractmethod
    def linearize(
        self, assignments: VariableAssignments, ordering: Ordering
    ) -> linear.LinearFactorBase:
        """Linear approximation of the factor around some variable values, indexed by
        the slots of an ordering."""

    @abc.abstractmethod
    def equals(self, other: object, tol: float = 1e-9) -> bool:
        pass

    @abc.abstractmethod
    def print(self, label: str = "") -> None:
        pass

    @final
    def get_variables(self) -> Tuple[VariableBase, ...]:
        return tuple(self.variables)

    @final
    def format_variables(self) -> str:
        """Readable names for this factor's variables."""
        return " ".join(
            f"{type(variable).__name__}[{i}]"
            for i, variable in enumerate(self.variables)
        )


@jdc.pytree_dataclass
class _FactorBase:
    # For why we have two classes:
    # https://github.com/python/mypy/issues/5374#issuecomment-650656381

    variables: jdc.Static[Tuple[VariableBase, ...]]
    """Variables connected to this factor. 1-to-1, in-order correspondence with
    `VariableValueTuple`."""

    noise_model: noises.NoiseModelBase
    """Noise model."""


class FactorBase(_FactorBase, NonlinearFactorBase, Generic[VariableValueTuple]):
    """Factor defined by a residual function and a noise model. The cost is
    `0.5 * noise_model.mahalanobis(residual)`."""

    # (1) Functions that must be overriden in subclasses.

    @abc.abstractmethod
    def compute_residual_vector(
        self, variable_values: VariableValueTuple
    ) -> jnp.ndarray:
        """Compute factor error.

        Args:
            variable_values: Values of self.variables
        """

    # (2) Function to override for analytical Jacobians. This is always optional.

    def compute_residual_jacobians(
        self, variable_values: VariableValueTuple
    ) -> Tuple[jnp.ndarray, ...]:
        """Compute Jacobian of residual with respect to local parameterization.

        Uses `jax.jacfwd` through each variable's manifold retraction by default, but
        can optionally be overriden.

        Args:
            variable_values: Values of variables to linearize around.
        """

        def compute_residual_with_local_delta(
            local_deltas: Sequence[jnp.ndarray],
        ) -> jnp.ndarray:
            perturbed_values = tuple(
                variable.manifold_retract(value, local_delta)
                for variable, value, local_delta in zip(
                    self.variables, variable_values, local_deltas
                )
            )
            return self.compute_residual_vector(
                self.build_variable_value_tuple(perturbed_values)
            )

        # Evaluate Jacobian when deltas are zero
        return tuple(
            jax.jacfwd(compute_residual_with_local_delta)(
                tuple(
                    onp.zeros(variable.get_local_parameter_dim())
                    for variable in self.variables
                )
            )
        )

    # (3) Shared implementations.

    @final
    def get_residual_dim(self) -> int:
        """Error dimensionality."""
        return self.noise_model.get_residual_dim()

    @overrides
    def get_dim(self) -> int:
        return self.get_residual_dim()

    @overrides
    def error(self, assignments: VariableAssignments) -> hints.Array:
        residual_vector = self.compute_residual_vector(
            self.get_variable_values_from_assignments(assignments)
        )
        cost = 0.5 * self.noise_model.mahalanobis(residual_vector)

        # Runs on the host, so the check also works when `error()` is traced.
        jax.debug.callback(
            functools.partial(
                _warn_if_infinite,
                factor_name=type(self).__name__,
                variables=self.format_variables(),
            ),
            cost,
        )
        return cost

    @overrides
    def linearize(
        self, assignments: VariableAssignments, ordering: Ordering
    ) -> linear.LinearFactorBase:
        """Linearize around the given values. `A` and `b` are left unwhitened, with the
        factor's noise model attached: `r(x + delta) ~= r(x) + A delta = A delta - b`.
        """
        variable_values = self.get_variable_values_from_assignments(assignments)
        residual_vector = self.compute_residual_vector(variable_values)
        jacobians = self.compute_residual_jacobians(variable_values)
        return linear.JacobianFactor(
            indices=tuple(ordering[variable] for variable in self.variables),
            A_matrices=tuple(jnp.asarray(jacobian) for jacobian in jacobians),
            b=-residual_vector,
            noise_model=self.noise_model,
        )

    @overrides
    def equals(self, other: object, tol: float = 1e-9) -> bool:
        if type(other) is not type(self):
            return False
        if jax.tree_util.tree_structure(self) != jax.tree_util.tree_structure(other):
            return False
        return all(
            onp.shape(a) == onp.shape(b) and onp.allclose(a, b, rtol=0.0, atol=tol)
            for a, b in zip(
                jax.tree_util.tree_leaves(self), jax.tree_util.tree_leaves(other)
            )
        )

    @overrides
    def print(self, label: str = "") -> None:
        print(label)
        print(f"{type(self).__name__} keys: {self.format_variables()}")
        self.noise_model.print("noise model")

    @final
    def get_variable_values_from_assignments(
        self, assignments: VariableAssignments
    ) -> VariableValueTuple:
        """Prepare a set of variable values corresponding to this factor, for use in
        `compute_residual_vector` or `compute_residual_jacobians`."""

        return self.build_variable_value_tuple(
            tuple(assignments.get_value(v) for v in self.variables)
        )

    @final
    def build_variable_value_tuple(
        self, variable_values: Tuple[hints.VariableValue, ...]
    ) -> VariableValueTuple:
        """Prepares and validates a raw tuple of variable values to be passed into
        `compute_residual_vector` or `compute_residual_jacobians`.

        Slightly sketchy: checks the type hinting on `compute_residual_vector` and if
        the user expects a named tuple, we wrap the input accordingly. Otherwise, we
        just cast and return the input."""

        assert isinstance(variable_values, tuple)

        try:
            value_type: Type[VariableValueTuple] = get_type_hints(
                self.compute_residual_vector
            )["variable_values"]
        except KeyError as e:
            raise NotImplementedError(
                f"Missing type hints for {type(self).__name__}.compute_residual_vector"
            ) from e

        # Heuristic: evaluates to `True` for NamedTuple types but `False` for
        # `Tuple[...]` types. Note that standard superclass checking approaches don't
        # work for NamedTuple types.
        if type(value_type) is type:
            # Hint is `NamedTuple`
            return value_type(*variable_values)
        else:
            # Hint is `typing.Tuple` annotation
            return cast(VariableValueTuple, variable_values)


def _warn_if_infinite(cost: onp.ndarray, factor_name: str, variables: str) -> None:
    if not onp.isfinite(cost):
        logger.warning(
            "{} over ({}) has infinite cost: a hard constraint is violated.",
            factor_name,
            variables,
        )
