import dataclasses
from typing import Tuple

import numpy as onp
from jax import numpy as jnp
from loguru import logger
from overrides import final, overrides

from .. import hints, linear, noises
from ..core import NonlinearFactorBase, Ordering, VariableAssignments, VariableBase
from ..errors import KeyNotFoundError


@dataclasses.dataclass(frozen=True, eq=False)
class LinearizedFactorBase(NonlinearFactorBase):
    """A linear factor that was computed elsewhere (eg by marginalization), wrapped with
    the values it was linearized around so it can be re-evaluated and re-linearized as
    a nonlinear factor.

    Deltas are measured in the local coordinates of each variable, from its
    linearization point."""

    variables: Tuple[VariableBase, ...]
    """Variables, in the term order of the captured linear factor."""

    lin_points: VariableAssignments
    """Value of each variable at linearization time."""

    @staticmethod
    def _resolve_variables(
        linear_factor: linear.LinearFactorBase,
        ordering: Ordering,
        lin_points: VariableAssignments,
    ) -> Tuple[Tuple[VariableBase, ...], VariableAssignments]:
        """Map the slots of a linear factor back to variables, and grab their
        linearization points."""
        try:
            variables = tuple(ordering.get_variable(i) for i in linear_factor.indices)
        except KeyNotFoundError as e:
            raise KeyNotFoundError(
                f"Can't capture linear factor with slots {linear_factor.indices}: {e}"
            ) from e

        for variable, dim in zip(variables, linear_factor.get_dims()):
            assert variable.get_local_parameter_dim() == dim, (
                f"{type(variable).__name__} has local dimension"
                f" {variable.get_local_parameter_dim()}, but its term has {dim}"
                " columns."
            )
        return variables, lin_points.restrict(variables)

    @final
    def compute_local_deltas(
        self, assignments: VariableAssignments
    ) -> Tuple[jnp.ndarray, ...]:
        """Displacement of each variable from its linearization point."""
        return tuple(
            jnp.asarray(
                type(variable).manifold_local_coordinates(
                    self.lin_points.get_value(variable), assignments.get_value(variable)
                )
            )
            for variable in self.variables
        )

    @final
    def get_variable_index(self, variable: VariableBase) -> int:
        """Position of a variable within this factor."""
        for i, v in enumerate(self.variables):
            if v is variable:
                return i
        raise KeyNotFoundError(
            f"{type(variable).__name__} (id={id(variable)}) is not connected to this"
            " factor."
        )

    def _equals_base(self, other: object, tol: float) -> bool:
        return (
            type(other) is type(self)
            and isinstance(other, LinearizedFactorBase)
            and tuple(self.variables) == tuple(other.variables)
            and self.lin_points.equals(other.lin_points, tol)
        )


@dataclasses.dataclass(frozen=True, eq=False)
class LinearizedJacobianFactor(LinearizedFactorBase):
    """Captured Jacobian factor. Error is `0.5 |A d - b|^2`, where `d` stacks each
    variable's displacement from its linearization point."""

    Ab: linear.BlockMatrixView
    """Whitened augmented matrix `[A_1 | ... | A_n | b]`."""

    @staticmethod
    def make(
        jacobian_factor: linear.JacobianFactor,
        ordering: Ordering,
        lin_points: VariableAssignments,
    ) -> "LinearizedJacobianFactor":
        """Capture a Jacobian factor. Any noise model is baked into the stored blocks,
        so this fails for constrained noise models."""
        variables, lin_points = LinearizedFactorBase._resolve_variables(
            jacobian_factor, ordering, lin_points
        )
        Ab = linear.BlockMatrixView.make(
            jacobian_factor.matrix_augmented(whitened=True),
            jacobian_factor.get_dims() + (1,),
        )
        logger.debug(
            "Captured linearized Jacobian factor: {} rows, {} variables.",
            Ab.get_rows(),
            len(variables),
        )
        return LinearizedJacobianFactor(
            variables=variables, lin_points=lin_points, Ab=Ab
        )

    def get_rows(self) -> int:
        return self.Ab.get_rows()

    @overrides
    def get_dim(self) -> int:
        return self.get_rows()

    def get_A(self, variable: VariableBase) -> jnp.ndarray:
        return self.Ab.block(self.get_variable_index(variable))

    def get_b(self) -> jnp.ndarray:
        return self.Ab.block(self.Ab.get_num_blocks() - 1)[:, 0]

    def error_vector(self, assignments: VariableAssignments) -> jnp.ndarray:
        """Whitened residual `A d - b`."""
        error_vector = -self.get_b()
        for i, delta in enumerate(self.compute_local_deltas(assignments)):
            error_vector = error_vector + self.Ab.block(i) @ delta
        return error_vector

    @overrides
    def error(self, assignments: VariableAssignments) -> hints.Array:
        error_vector = self.error_vector(assignments)
        return 0.5 * jnp.dot(error_vector, error_vector)

    @overrides
    def linearize(
        self, assignments: VariableAssignments, ordering: Ordering
    ) -> linear.LinearFactorBase:
        # Whitening was baked in when we captured the factor.
        return linear.JacobianFactor(
            indices=tuple(ordering[variable] for variable in self.variables),
            A_matrices=tuple(self.Ab.block(i) for i in range(len(self.variables))),
            b=-self.error_vector(assignments),
            noise_model=noises.UnitGaussian.make(self.get_rows()),
        )

    @overrides
    def equals(self, other: object, tol: float = 1e-9) -> bool:
        if not self._equals_base(other, tol):
            return False
        assert isinstance(other, LinearizedJacobianFactor)
        this_matrix = onp.asarray(self.Ab.range(0, self.Ab.get_num_blocks()))
        other_matrix = onp.asarray(other.Ab.range(0, other.Ab.get_num_blocks()))
        return this_matrix.shape == other_matrix.shape and bool(
            onp.allclose(this_matrix, other_matrix, rtol=0.0, atol=tol)
        )

    @overrides
    def print(self, label: str = "") -> None:
        print(label)
        print(f"Nonlinear Keys: {self.format_variables()}")
        for i, variable in enumerate(self.variables):
            name = f"{type(variable).__name__}[{i}]"
            print(f"A[{name}]=\n{onp.asarray(self.Ab.block(i))}")
        print(f"b=\n{onp.asarray(self.get_b())}")
        self.lin_points.print("Linearization Point: ")


@dataclasses.dataclass(frozen=True, eq=False)
class LinearizedHessianFactor(LinearizedFactorBase):
    """Captured Hessian factor. Error is `0.5 (f - 2 d^T g + d^T G d)`, where `d` stacks
    each variable's displacement from its linearization point."""

    info: linear.SymmetricBlockMatrixView
    """Augmented information matrix `[[G, g], [g^T, f]]`, read from its upper
    triangle."""

    @staticmethod
    def make(
        hessian_factor: linear.HessianFactor,
        ordering: Ordering,
        lin_points: VariableAssignments,
    ) -> "LinearizedHessianFactor":
        variables, lin_points = LinearizedFactorBase._resolve_variables(
            hessian_factor, ordering, lin_points
        )
        info = linear.SymmetricBlockMatrixView.make(
            hessian_factor.info, hessian_factor.get_dims() + (1,)
        )
        logger.debug(
            "Captured linearized Hessian factor: dimension {}, {} variables.",
            hessian_factor.get_dim(),
            len(variables),
        )
        return LinearizedHessianFactor(
            variables=variables, lin_points=lin_points, info=info
        )

    def _get_num_variable_blocks(self) -> int:
        return self.info.get_num_blocks() - 1

    @overrides
    def get_dim(self) -> int:
        return self.info.offset(self._get_num_variable_blocks())

    def squared_term(self) -> jnp.ndarray:
        """`G`, symmetric."""
        return self.info.range(0, self._get_num_variable_blocks())

    def linear_term(self) -> jnp.ndarray:
        """`g`."""
        n = self._get_num_variable_blocks()
        return self.info.range_rectangular(0, n, n, n + 1)[:, 0]

    def constant_term(self) -> jnp.ndarray:
        """`f`."""
        n = self._get_num_variable_blocks()
        return self.info.block(n, n)[0, 0]

    def compute_stacked_delta(self, assignments: VariableAssignments) -> jnp.ndarray:
        """Local deltas of every variable, stacked in block order."""
        return jnp.concatenate(self.compute_local_deltas(assignments))

    @overrides
    def error(self, assignments: VariableAssignments) -> hints.Array:
        dx = self.compute_stacked_delta(assignments)

        # 0.5 * (f - 2 * dx^T g + dx^T G dx)
        f = self.constant_term()
        xtg = jnp.dot(dx, self.linear_term())
        xGx = dx @ self.squared_term() @ dx
        return 0.5 * (f - 2.0 * xtg + xGx)

    @overrides
    def linearize(
        self, assignments: VariableAssignments, ordering: Ordering
    ) -> linear.LinearFactorBase:
        """Re-center the quadratic at new values: `G' = G`, `g' = g - G dx`,
        `f' = f - 2 dx^T g + dx^T G dx`."""
        dx = self.compute_stacked_delta(assignments)
        G = self.squared_term()
        g = self.linear_term()
        Gdx = G @ dx

        f_new = self.constant_term() - 2.0 * jnp.dot(dx, g) + jnp.dot(dx, Gdx)
        g_new = g - Gdx

        n = self._get_num_variable_blocks()
        g_blocks = [
            g_new[self.info.offset(i) : self.info.offset(i + 1)] for i in range(n)
        ]
        G_blocks = [self.info.block(i, j) for i in range(n) for j in range(i, n)]

        logger.debug(
            "Re-centered linearized Hessian factor; constant term {} -> {}.",
            float(self.constant_term()),
            float(f_new),
        )
        return linear.HessianFactor.make(
            indices=[ordering[variable] for variable in self.variables],
            G_blocks=G_blocks,
            g_blocks=g_blocks,
            f=f_new,
        )

    @overrides
    def equals(self, other: object, tol: float = 1e-9) -> bool:
        if not self._equals_base(other, tol):
            return False
        assert isinstance(other, LinearizedHessianFactor)

        # The constant term is ignored.
        this_matrix = onp.array(self.info.full())
        other_matrix = onp.array(other.info.full())
        if this_matrix.shape != other_matrix.shape:
            return False
        this_matrix[-1, -1] = 0.0
        other_matrix[-1, -1] = 0.0
        return bool(onp.allclose(this_matrix, other_matrix, rtol=0.0, atol=tol))

    @overrides
    def print(self, label: str = "") -> None:
        print(label)
        print(f"Nonlinear Keys: {self.format_variables()}")
        n = self._get_num_variable_blocks()
        print(f"Ab^T * Ab: \n{onp.asarray(self.info.range(0, n + 1))}")
        self.lin_points.print("Linearization Point: ")
