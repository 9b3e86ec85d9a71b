from ._linearized_factors import (
    LinearizedFactorBase,
    LinearizedHessianFactor,
    LinearizedJacobianFactor,
)

__all__ = [
    "LinearizedFactorBase",
    "LinearizedHessianFactor",
    "LinearizedJacobianFactor",
]
