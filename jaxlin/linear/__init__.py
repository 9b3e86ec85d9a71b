from ._block_matrix_view import (
    BlockMatrixView,
    SymmetricBlockMatrixView,
    symmetric_from_upper,
)
from ._hessian_factor import HessianFactor
from ._jacobian_factor import JacobianFactor
from ._linear_factor_base import LinearFactorBase

__all__ = [
    "BlockMatrixView",
    "HessianFactor",
    "JacobianFactor",
    "LinearFactorBase",
    "SymmetricBlockMatrixView",
    "symmetric_from_upper",
]
