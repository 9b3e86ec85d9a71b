from ._factor_base import FactorBase, NonlinearFactorBase
from ._ordering import Ordering
from ._variable_assignments import VariableAssignments
from ._variables import RealVectorVariable, VariableBase

__all__ = [
    "FactorBase",
    "NonlinearFactorBase",
    "Ordering",
    "RealVectorVariable",
    "VariableAssignments",
    "VariableBase",
]
