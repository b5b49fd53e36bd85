import numpy as np
from numpy.typing import ArrayLike

from .constants import CP, P0, RD


def exner_function(pressure: ArrayLike) -> np.ndarray:
    """Exner function (p / p0) ** (Rd / cp)"""
    return (np.asarray(pressure) / P0) ** (RD / CP)


def update_pressure(pressure: np.ndarray, z_lo: ArrayLike, z_hi: ArrayLike):
    """Adjust pressure in-place from heights ``z_lo`` to heights ``z_hi``,
    using the hypsometric relation of the standard atmosphere."""
    pressure *= (1.0 - 2.25577e-5 * (np.asarray(z_hi) - np.asarray(z_lo))) ** 5.25588


def interface_pressure(pressure: np.ndarray) -> np.ndarray:
    """Pressure at the bottom interface of each level (nz, ...): extrapolated
    linearly below the first level, the mean of adjacent levels above."""
    out = np.empty_like(pressure)
    if pressure.shape[0] == 1:
        out[...] = pressure
        return out
    out[0] = 2.0 * pressure[0] - pressure[1]
    out[1:] = 0.5 * (pressure[:-1] + pressure[1:])
    return out
