import dataclasses
from typing import Collection, Dict, Iterable, Mapping, TypeVar

import numpy as onp
from frozendict import frozendict

from .. import hints
from ..errors import KeyNotFoundError
from ._variables import VariableBase

VariableValueType = TypeVar("VariableValueType", bound=hints.VariableValue)


@dataclasses.dataclass(frozen=True, eq=False)
class VariableAssignments:
    """Immutable storage class that maps variables to values.

    Used both for the values a factor is evaluated at and for the linearization point
    that a linearized factor was captured at."""

    value_from_variable: Mapping[VariableBase, hints.VariableValue]
    """Variable -> value mapping. A `frozendict`; insertion order is kept."""

    @staticmethod
    def make_from_dict(
        assignments: Mapping[VariableBase, hints.VariableValue],
    ) -> "VariableAssignments":
        """Create an assignment object from a full set of assignments."""
        return VariableAssignments(value_from_variable=frozendict(assignments))

    @staticmethod
    def make_from_defaults(variables: Iterable[VariableBase]) -> "VariableAssignments":
        """Create an assignment object from the default values corresponding to each
        variable."""
        return VariableAssignments(
            value_from_variable=frozendict(
                (variable, variable.get_default_value()) for variable in variables
            )
        )

    def as_dict(self) -> Dict[VariableBase, hints.VariableValue]:
        """Grab assignments as a variable -> value dictionary."""
        return dict(self.value_from_variable)

    def __repr__(self):
        k: VariableBase

        contents: str = "\n".join(
            [
                f"    {i}.{k.__class__.__name__}: {v}"
                for i, (k, v) in enumerate(self.value_from_variable.items())
            ]
        )
        return f"VariableAssignments(\n{contents}\n)"

    def __contains__(self, variable: object) -> bool:
        return variable in self.value_from_variable

    def __len__(self) -> int:
        return len(self.value_from_variable)

    def get_variables(self) -> Collection[VariableBase]:
        """Helper for iterating over variables."""
        return self.value_from_variable.keys()

    def get_value(self, variable: VariableBase[VariableValueType]) -> VariableValueType:
        """Get value corresponding to specific variable."""
        try:
            return self.value_from_variable[variable]
        except KeyError as e:
            raise KeyNotFoundError(
                f"No value assigned to variable {variable.__class__.__name__}"
                f" (id={id(variable)})."
            ) from e

    def set_value(
        self, variable: VariableBase[VariableValueType], value: VariableValueType
    ) -> "VariableAssignments":
        """Returns a copy of the assignments, with a value updated or added."""
        return VariableAssignments(
            value_from_variable=self.value_from_variable.set(variable, value)
        )

    def restrict(self, variables: Iterable[VariableBase]) -> "VariableAssignments":
        """Returns assignments for a subset of variables, in the order given."""
        return VariableAssignments(
            value_from_variable=frozendict(
                (variable, self.get_value(variable)) for variable in variables
            )
        )

    def manifold_retract(
        self, local_deltas: Mapping[VariableBase, hints.LocalVariableValue]
    ) -> "VariableAssignments":
        """Update variables on manifold. Variables without a delta are unchanged."""
        return VariableAssignments(
            value_from_variable=frozendict(
                (
                    variable,
                    type(variable).manifold_retract(value, local_deltas[variable])
                    if variable in local_deltas
                    else value,
                )
                for variable, value in self.value_from_variable.items()
            )
        )

    def equals(self, other: object, tol: float = 1e-9) -> bool:
        """Check that two assignments have the same variables, with values that match
        to within an absolute tolerance."""
        if not isinstance(other, VariableAssignments):
            return False
        if set(self.get_variables()) != set(other.get_variables()):
            return False

        for variable, value in self.value_from_variable.items():
            a = onp.asarray(variable.flatten(value))
            b = onp.asarray(variable.flatten(other.value_from_variable[variable]))
            if a.shape != b.shape or not onp.allclose(a, b, rtol=0.0, atol=tol):
                return False
        return True

    def print(self, label: str = "") -> None:
        print(f"{label}{self!r}")
