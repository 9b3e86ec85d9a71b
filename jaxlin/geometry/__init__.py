from ._factors import BetweenFactor, BetweenValueTuple, PriorFactor, PriorValueTuple
from ._lie_variables import (
    LieVariableBase,
    SE2Variable,
    SE3Variable,
    SO2Variable,
    SO3Variable,
)

__all__ = [
    "BetweenFactor",
    "BetweenValueTuple",
    "PriorFactor",
    "PriorValueTuple",
    "LieVariableBase",
    "SE2Variable",
    "SE3Variable",
    "SO2Variable",
    "SO3Variable",
]
