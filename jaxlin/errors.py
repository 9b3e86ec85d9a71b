class DecompositionError(ValueError):
    """Raised when a covariance, information, or square-root information matrix can't
    be decomposed into a valid (non-singular) noise model."""


class UnsupportedOperationError(RuntimeError):
    """Raised for operations that are mathematically undefined for a model, such as
    whitening a Jacobian through a singular (constrained) information matrix."""


class KeyNotFoundError(KeyError):
    """Raised when a variable can't be found in an ordering or assignment."""


__all__ = [
    "DecompositionError",
    "KeyNotFoundError",
    "UnsupportedOperationError",
]
