from . import core, errors, geometry, hints, linear, linearized, noises, utils

__all__ = [
    "core",
    "errors",
    "geometry",
    "hints",
    "linear",
    "linearized",
    "noises",
    "utils",
]
