import dataclasses
from typing import Collection, Iterable, Mapping, Tuple

from frozendict import frozendict

from ..errors import KeyNotFoundError
from ._variables import VariableBase


@dataclasses.dataclass(frozen=True)
class Ordering:
    """Maps variables to contiguous integer slots, which is how linear factors refer to
    the variables they're defined over.

    Note that this is a vanilla dataclass -- not a PyTree. (in other words: all contents
    are static)
    """

    index_from_variable: Mapping[VariableBase, int]
    """Slot of each variable. A `frozendict`; slots are `0, 1, ..., N - 1`."""

    variable_from_index: Tuple[VariableBase, ...]
    """Inverse of `index_from_variable`."""

    def __post_init__(self):
        assert len(self.index_from_variable) == len(self.variable_from_index)
        for index, variable in enumerate(self.variable_from_index):
            assert self.index_from_variable[variable] == index

    @staticmethod
    def make(variables: Iterable[VariableBase]) -> "Ordering":
        """Assign slots to variables, in the order they're given. Duplicates keep their
        first slot."""
        variable_from_index = tuple(dict.fromkeys(variables))
        return Ordering(
            index_from_variable=frozendict(
                (variable, index) for index, variable in enumerate(variable_from_index)
            ),
            variable_from_index=variable_from_index,
        )

    def __getitem__(self, variable: VariableBase) -> int:
        try:
            return self.index_from_variable[variable]
        except KeyError as e:
            raise KeyNotFoundError(
                f"Variable {variable.__class__.__name__} (id={id(variable)}) is not in"
                " the ordering."
            ) from e

    def __contains__(self, variable: object) -> bool:
        return variable in self.index_from_variable

    def __len__(self) -> int:
        return len(self.variable_from_index)

    def get_variable(self, index: int) -> VariableBase:
        """Variable stored at a slot."""
        if not 0 <= index < len(self.variable_from_index):
            raise KeyNotFoundError(
                f"Slot {index} is not in an ordering of {len(self)} variables."
            )
        return self.variable_from_index[index]

    def get_variables(self) -> Collection[VariableBase]:
        """Variables. Slots are guaranteed to be in ascending order."""
        return self.variable_from_index
