from typing import NamedTuple, Optional, Tuple, Union, TYPE_CHECKING
import datetime
import enum
import logging

import numpy as np
from numpy.typing import ArrayLike

from . import core
from .util.interpolate import (
    GeoLookupTable,
    VerticalLookupTable,
    smooth_array,
    standardize_coordinates,
)

if TYPE_CHECKING:
    from .input import ForcingData

TimeDelta = Union[datetime.timedelta, float, int]


def seconds(dt: TimeDelta) -> float:
    """Length of a time step in seconds"""
    if isinstance(dt, datetime.timedelta):
        return dt.total_seconds()
    return float(dt)


class Geo(NamedTuple):
    """Horizontal coordinates (y, x) and level heights (z, y, x) of one grid"""

    lon: np.ndarray
    lat: np.ndarray
    z: np.ndarray


def fit_levels(values: np.ndarray, nz: int) -> np.ndarray:
    """Truncate ``values`` to ``nz`` levels, or replicate its top level if it has
    fewer."""
    if values.shape[0] >= nz:
        return values[:nz]
    top = np.repeat(values[-1:], nz - values.shape[0], axis=0)
    return np.concatenate([values, top], axis=0)


class LookupTables:
    """Horizontal and vertical lookup tables from the forcing grid to one
    destination grid.

    Attributes:
        horizontal: lookup table for forcing data on this grid's source coordinates
        z: heights of the forcing levels on the destination horizontal grid
        vertical: lookup table from the forcing levels to the destination levels
    """

    __slots__ = ("horizontal", "z", "vertical")

    def __init__(
        self,
        source_lon: ArrayLike,
        source_lat: ArrayLike,
        source_z: ArrayLike,
        geo: Geo,
        z_lon: Optional[ArrayLike] = None,
        z_lat: Optional[ArrayLike] = None,
    ):
        """
        Args:
            source_lon: longitude of the forcing variables on this grid
            source_lat: latitude of the forcing variables on this grid
            source_z: heights of the forcing levels (nz, y, x)
            geo: destination coordinates and heights
            z_lon: longitude of ``source_z`` if it differs from ``source_lon``
            z_lat: latitude of ``source_z`` if it differs from ``source_lat``
        """
        self.horizontal = _geo_lut(source_lon, source_lat, geo.lon, geo.lat)
        z_lut = self.horizontal
        if z_lon is not None and z_lat is not None:
            z_lut = _geo_lut(z_lon, z_lat, geo.lon, geo.lat)
        self.z: np.ndarray = z_lut(source_z)
        self.vertical = VerticalLookupTable(self.z, geo.z)


def _geo_lut(lon, lat, target_lon, target_lat) -> GeoLookupTable:
    target_lon, target_lat = standardize_coordinates(target_lon, target_lat)
    lon, lat = standardize_coordinates(lon, lat, center=target_lon.mean())
    return GeoLookupTable(lon, lat, target_lon, target_lat)


class GeoInterpolation:
    """Lookup tables from a forcing grid to the mass, u and v grids of a domain.

    Built once, when initial conditions are read; the forcing object is not
    modified.
    """

    def __init__(
        self,
        forcing: "ForcingData",
        geo: Geo,
        geo_u: Geo,
        geo_v: Geo,
        logger: Optional[logging.Logger] = None,
    ):
        self.logger = logger or logging.getLogger()
        for name in ("lon", "lat", "z"):
            if getattr(forcing, name, None) is None:
                raise Exception("Forcing data do not provide coordinate %s" % name)
        z = np.asarray(forcing.z, dtype=float)
        if z.ndim == 1:
            lon, lat = standardize_coordinates(forcing.lon, forcing.lat)
            z = np.broadcast_to(z[:, np.newaxis, np.newaxis], z.shape + lon.shape)

        self.logger.info("Building lookup tables for the mass grid")
        self.mass = LookupTables(forcing.lon, forcing.lat, z, geo)
        self.logger.info("Building lookup tables for the u grid")
        self.u = self._staggered(forcing, "u", z, geo_u)
        self.logger.info("Building lookup tables for the v grid")
        self.v = self._staggered(forcing, "v", z, geo_v)

    @staticmethod
    def _staggered(forcing, prefix: str, z: np.ndarray, geo: Geo) -> LookupTables:
        lon = getattr(forcing, prefix + "_lon", None)
        lat = getattr(forcing, prefix + "_lat", None)
        if lon is None or lat is None:
            return LookupTables(forcing.lon, forcing.lat, z, geo)
        return LookupTables(lon, lat, z, geo, z_lon=forcing.lon, z_lat=forcing.lat)


def interpolate_variable(
    out: np.ndarray,
    source: ArrayLike,
    tables: LookupTables,
    vertical: bool = True,
    nsmooth: int = 0,
    subset: Optional[Tuple[slice, slice]] = None,
):
    """Interpolate forcing data to a destination grid, writing the result to
    ``out``.

    3D source data (levels first) are first interpolated horizontally on their
    native levels and then mapped to the destination levels, either with the
    vertical lookup table or, if ``vertical`` is False, by truncating or
    replicating the top level. The result can then be smoothed horizontally and
    subset from the destination grid of the lookup tables to the extent of
    ``out``.
    """
    values = tables.horizontal(source)
    if values.ndim == 3:
        if vertical:
            values = tables.vertical(values)
        else:
            values = fit_levels(values, out.shape[0])
    if nsmooth > 0:
        values = smooth_array(values, nsmooth)
    if subset is not None:
        values = values[(Ellipsis,) + subset]
    assert values.shape == out.shape, "Interpolated shape %s does not match %s" % (
        values.shape,
        out.shape,
    )
    out[...] = values


class State(enum.Enum):
    IDLE = enum.auto()
    DELTA_COMPUTED = enum.auto()
    APPLIED = enum.auto()


class DeltaForcing:
    """Linear interpolation in time of forced fields between two forcing steps.

    After the forcing for the next step has been interpolated into the
    :attr:`~pyicar.core.Field.dqdt` buffers, :meth:`update_delta_fields` turns
    these into rates of change per second. Each sub-step then calls
    :meth:`apply_forcing` to add the rate times the sub-step length. Advected
    fields (``force_boundaries``) are only updated on the physical boundaries of
    the domain; all other fields everywhere.
    """

    def __init__(
        self,
        registry: core.ForcingRegistry,
        w: Optional[core.Field] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.registry = registry
        self.w = w
        self.logger = logger or logging.getLogger()
        self.state = State.IDLE

    def _fields(self):
        for field in self.registry.values():
            yield field
        if self.w is not None and self.w.dqdt is not None:
            yield self.w

    def update_delta_fields(self, dt: TimeDelta):
        """Convert the forcing snapshots in the ``dqdt`` buffers to rates of change
        relative to the current state, per second over ``dt``."""
        dt_s = seconds(dt)
        if dt_s <= 0:
            raise Exception("Forcing time step must be positive, got %s s" % dt_s)
        for field in self._fields():
            field.dqdt -= field.all_values
            field.dqdt /= dt_s
            self.logger.debug("Updated rate of change of %s" % field.name)
        self.state = State.DELTA_COMPUTED

    def apply_forcing(self, dt: TimeDelta):
        """Advance forced fields by ``dt`` using the current rates of change."""
        if self.state is State.IDLE:
            raise Exception(
                "apply_forcing called before update_delta_fields: no rates of change"
                " are available"
            )
        dt_s = seconds(dt)
        for field in self.registry.values():
            if field.three_d and field.force_boundaries:
                self._apply_boundaries(field, dt_s)
            else:
                field.all_values += field.dqdt * dt_s
        if self.w is not None and self.w.dqdt is not None:
            self.w.all_values += self.w.dqdt * dt_s
        self.state = State.APPLIED

    @staticmethod
    def _apply_boundaries(field: core.Field, dt_s: float):
        grid = field.grid
        data, dqdt = field.all_values, field.dqdt
        ny, nx = data.shape[-2:]

        # Rows along the south and north boundary include the corners; each
        # boundary point is updated once
        jstart, jstop = 0, ny
        if grid.south_boundary:
            data[:, 0, :] += dqdt[:, 0, :] * dt_s
            jstart = 1
        if grid.north_boundary and ny > jstart:
            data[:, -1, :] += dqdt[:, -1, :] * dt_s
            jstop = ny - 1
        if grid.west_boundary:
            data[:, jstart:jstop, 0] += dqdt[:, jstart:jstop, 0] * dt_s
        if grid.east_boundary and (nx > 1 or not grid.west_boundary):
            data[:, jstart:jstop, -1] += dqdt[:, jstart:jstop, -1] * dt_s
