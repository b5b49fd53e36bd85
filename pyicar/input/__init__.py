from typing import Any, Iterable, Mapping, MutableMapping, Optional
import logging

import numpy as np
from numpy.typing import ArrayLike
import xarray
import cftime

LATITUDE_UNITS = (
    "degrees_north",
    "degree_north",
    "degree_N",
    "degrees_N",
    "degreeN",
    "degreesN",
)

LONGITUDE_UNITS = (
    "degrees_east",
    "degree_east",
    "degree_E",
    "degrees_E",
    "degreeE",
    "degreesE",
)

open_nc_files = []


def _open(path: str, **kwargs) -> xarray.Dataset:
    key = (path, kwargs.copy())
    for k, ds in open_nc_files:
        if k == key:
            return ds
    ds = xarray.open_dataset(path, **kwargs)
    open_nc_files.append((key, ds))
    return ds


def close_all():
    """Close all NetCDF files opened by :func:`read` and :func:`from_nc`"""
    while open_nc_files:
        _, ds = open_nc_files.pop()
        ds.close()


def read(path: str, name: str) -> np.ndarray:
    """Read a variable from a NetCDF file as a NumPy array with dimensions in
    file order (e.g., levels, y, x). A leading time dimension of length 1 is
    dropped."""
    ds = _open(path, decode_times=False)
    if name not in ds:
        raise Exception("Variable %s not found in %s" % (name, path))
    var = ds[name]
    values = np.asarray(var.values)
    leading = var.dims[0].lower() if var.dims else None
    if values.ndim > 2 and leading in ("time", "t") and values.shape[0] == 1:
        values = values[0]
    return values


def _find_coordinate(ds: xarray.Dataset, units: Iterable[str]) -> Optional[str]:
    for name, var in ds.variables.items():
        if var.attrs.get("units") in units:
            return name
    return None


class ForcingData:
    """Forcing data for one time step: coordinates of the forcing grid and the
    values of each forcing variable on that grid.

    Args:
        lon: longitude of the forcing grid, 1D (x) or 2D (y, x)
        lat: latitude of the forcing grid, 1D (y) or 2D (y, x)
        z: heights of the forcing levels, 1D (z) or 3D (z, y, x)
        variables: mapping from forcing variable name to values, levels first
            for 3D variables
        current_time: time of the forcing data
        u_lon: longitude of u-staggered forcing variables (default: ``lon``)
        u_lat: latitude of u-staggered forcing variables (default: ``lat``)
        v_lon: longitude of v-staggered forcing variables (default: ``lon``)
        v_lat: latitude of v-staggered forcing variables (default: ``lat``)
    """

    def __init__(
        self,
        lon: ArrayLike,
        lat: ArrayLike,
        z: ArrayLike,
        variables: Optional[Mapping[str, ArrayLike]] = None,
        current_time: Any = None,
        u_lon: Optional[ArrayLike] = None,
        u_lat: Optional[ArrayLike] = None,
        v_lon: Optional[ArrayLike] = None,
        v_lat: Optional[ArrayLike] = None,
    ):
        self.lon = np.asarray(lon, dtype=float)
        self.lat = np.asarray(lat, dtype=float)
        self.z = np.asarray(z, dtype=float)
        self.u_lon = None if u_lon is None else np.asarray(u_lon, dtype=float)
        self.u_lat = None if u_lat is None else np.asarray(u_lat, dtype=float)
        self.v_lon = None if v_lon is None else np.asarray(v_lon, dtype=float)
        self.v_lat = None if v_lat is None else np.asarray(v_lat, dtype=float)
        self.variables: MutableMapping[str, np.ndarray] = {}
        self.current_time = current_time
        if variables is not None:
            self.update(variables)

    def update(self, variables: Mapping[str, ArrayLike], current_time: Any = None):
        """Replace the values of the given variables and, optionally, the time"""
        for name, values in variables.items():
            self.variables[name] = np.asarray(values)
        if current_time is not None:
            self.current_time = current_time

    def __getitem__(self, name: str) -> np.ndarray:
        try:
            return self.variables[name]
        except KeyError:
            raise Exception(
                "Forcing variable %s is not available. Available: %s"
                % (name, ", ".join(self.variables))
            )

    def __contains__(self, name: str) -> bool:
        return name in self.variables


def from_nc(
    path: str,
    names: Iterable[str],
    lon: Optional[str] = None,
    lat: Optional[str] = None,
    z: str = "z",
    time: str = "time",
    time_index: int = 0,
    logger: Optional[logging.Logger] = None,
    **staggered: str,
) -> ForcingData:
    """Obtain forcing data for one time step from a NetCDF file.

    Args:
        path: NetCDF file
        names: forcing variables to read
        lon: name of the longitude variable. If not provided, it is found by its
            units.
        lat: name of the latitude variable. If not provided, it is found by its
            units.
        z: name of the variable with the heights of the forcing levels
        time: name of the time dimension
        time_index: index of the time step to read
        logger: logger for diagnostic messages
        **staggered: names of the staggered coordinate variables, with keywords
            ``u_lon``, ``u_lat``, ``v_lon``, ``v_lat``
    """
    logger = logger or logging.getLogger()
    ds = _open(path, decode_times=True, use_cftime=True, cache=False)
    if lon is None:
        lon = _find_coordinate(ds, LONGITUDE_UNITS)
    if lat is None:
        lat = _find_coordinate(ds, LATITUDE_UNITS)
    if lon is None or lat is None or z not in ds:
        raise Exception(
            "%s: longitude (%s), latitude (%s) and level heights (%s) are required"
            % (path, lon, lat, z)
        )

    def select(name: str) -> np.ndarray:
        var = ds[name]
        if time in var.dims:
            var = var.isel({time: time_index})
        return np.asarray(var.values)

    current_time = None
    if time in ds.variables:
        current_time = ds[time].values[time_index]
        if not isinstance(current_time, cftime.datetime):
            current_time = None
    logger.info("Reading forcing for %s from %s" % (current_time, path))

    variables = {}
    for name in names:
        if name not in ds:
            raise Exception("Forcing variable %s not found in %s" % (name, path))
        variables[name] = select(name)
    coordinates = {k: select(v) for k, v in staggered.items() if v}
    return ForcingData(
        select(lon),
        select(lat),
        select(z),
        variables,
        current_time=current_time,
        **coordinates,
    )
