from ._gaussians import (
    ConstrainedGaussian,
    DiagonalGaussian,
    Gaussian,
    IsotropicGaussian,
    UnitGaussian,
)
from ._noise_model_base import NoiseModelBase

__all__ = [
    "ConstrainedGaussian",
    "DiagonalGaussian",
    "Gaussian",
    "IsotropicGaussian",
    "NoiseModelBase",
    "UnitGaussian",
]
