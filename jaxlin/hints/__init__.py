from ._aliases import Array, LocalVariableValue, Pytree, Scalar, VariableValue

__all__ = [
    "Array",
    "LocalVariableValue",
    "Pytree",
    "Scalar",
    "VariableValue",
]
