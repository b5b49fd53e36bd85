from typing import Optional, Tuple

import numpy as np
from numpy.typing import ArrayLike
import scipy.spatial


def standardize_coordinates(
    lon: ArrayLike, lat: ArrayLike, center: Optional[float] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """Return 2D longitude and latitude arrays (y, x).

    1D coordinates are taken to describe a rectilinear grid and are broadcast.
    Longitudes are wrapped to the 360 degree window around ``center`` (by default
    the first longitude), so that a grid that crosses the antimeridian is
    continuous and a source grid can be compared with a destination grid.
    """
    lon = np.asarray(lon, dtype=float)
    lat = np.asarray(lat, dtype=float)
    if lon.ndim == 1 and lat.ndim == 1:
        lon, lat = np.meshgrid(lon, lat)
    assert lon.shape == lat.shape and lon.ndim == 2, (
        "Longitude %s and latitude %s must be 1D or have identical 2D shape"
        % (lon.shape, lat.shape)
    )
    if center is None:
        center = lon.flat[0]
    lon = (lon - center + 180.0) % 360.0 - 180.0 + center
    return lon, lat


def _stagger(values: ArrayLike, axis: int) -> np.ndarray:
    values = np.moveaxis(np.asarray(values, dtype=float), axis, -1)
    out = np.empty(values.shape[:-1] + (values.shape[-1] + 1,))
    if values.shape[-1] == 1:
        out[...] = values
    else:
        out[..., 1:-1] = 0.5 * (values[..., :-1] + values[..., 1:])
        out[..., 0] = 1.5 * values[..., 0] - 0.5 * values[..., 1]
        out[..., -1] = 1.5 * values[..., -1] - 0.5 * values[..., -2]
    return np.moveaxis(out, -1, axis)


def array_offset_x(values: ArrayLike) -> np.ndarray:
    """Move values from cell centers to the faces between cells in x-direction
    (last dimension). Outer faces are extrapolated linearly."""
    return _stagger(values, -1)


def array_offset_y(values: ArrayLike) -> np.ndarray:
    """Move values from cell centers to the faces between cells in y-direction
    (second to last dimension). Outer faces are extrapolated linearly."""
    return _stagger(values, -2)


def _box_mean(values: np.ndarray, windowsize: int, axis: int) -> np.ndarray:
    values = np.moveaxis(values, axis, -1)
    n = values.shape[-1]
    cumsum = np.zeros(values.shape[:-1] + (n + 1,))
    np.cumsum(values, axis=-1, out=cumsum[..., 1:])
    i = np.arange(n)
    start = np.maximum(i - windowsize, 0)
    stop = np.minimum(i + windowsize + 1, n)
    out = (cumsum[..., stop] - cumsum[..., start]) / (stop - start)
    return np.moveaxis(out, -1, axis)


def smooth_array(
    values: ArrayLike, windowsize: int, axes: Tuple[int, ...] = (-2, -1)
) -> np.ndarray:
    """Apply a running mean over ``2 * windowsize + 1`` points along each of the
    given axes. Near the edges of the array the window is truncated."""
    values = np.asarray(values, dtype=float)
    if windowsize <= 0:
        return values.copy()
    for axis in axes:
        values = _box_mean(values, windowsize, axis)
    return values


class GeoLookupTable:
    """Bilinear interpolation from a curvilinear source grid to arbitrary
    destination points.

    For every destination point, the source quadrilateral that contains it is
    located by searching the cells around the nearest source point; its
    fractional position in that cell is found by inverting the bilinear mapping
    with Newton iterations. Destination points that fall outside the source grid
    take the value of the nearest source point.

    Attributes:
        jj: source y indices, shape (ny, nx, 4)
        ii: source x indices, shape (ny, nx, 4)
        weights: interpolation weights, shape (ny, nx, 4), summing to 1
        inside: whether each destination point lies within the source grid
    """

    def __init__(
        self,
        lon: ArrayLike,
        lat: ArrayLike,
        target_lon: ArrayLike,
        target_lat: ArrayLike,
        iterations: int = 20,
        tolerance: float = 1e-8,
    ):
        lon = np.asarray(lon, dtype=float)
        lat = np.asarray(lat, dtype=float)
        target_lon = np.asarray(target_lon, dtype=float)
        target_lat = np.asarray(target_lat, dtype=float)
        assert lon.ndim == 2 and lon.shape == lat.shape, (
            "Source longitude %s and latitude %s must be 2D with identical shape"
            % (lon.shape, lat.shape)
        )
        assert target_lon.shape == target_lat.shape, (
            "Target longitude %s and latitude %s must have identical shape"
            % (target_lon.shape, target_lat.shape)
        )
        self.source_shape = lon.shape
        nyp, nxp = lon.shape
        assert nyp > 1 and nxp > 1, (
            "Source grid must have at least 2 points in each direction, but has"
            " shape %s" % (lon.shape,)
        )
        shape = target_lon.shape
        x = target_lon.ravel()
        y = target_lat.ravel()

        tree = scipy.spatial.cKDTree(np.stack([lon.ravel(), lat.ravel()], axis=-1))
        _, inearest = tree.query(np.stack([x, y], axis=-1))
        j0, i0 = np.unravel_index(inearest, lon.shape)

        npoint = x.size
        jj = np.repeat(j0[:, np.newaxis], 4, axis=1)
        ii = np.repeat(i0[:, np.newaxis], 4, axis=1)
        weights = np.zeros((npoint, 4))
        weights[:, 0] = 1.0
        inside = np.zeros(npoint, dtype=bool)

        # Each of the four cells that share the nearest source point as a corner
        for dj, di in ((-1, -1), (-1, 0), (0, -1), (0, 0)):
            j = np.clip(j0 + dj, 0, nyp - 2)
            i = np.clip(i0 + di, 0, nxp - 2)
            s, t, found = self._invert(lon, lat, j, i, x, y, iterations, tolerance)
            new = found & ~inside
            jj[new] = np.stack([j, j, j + 1, j + 1], axis=-1)[new]
            ii[new] = np.stack([i, i + 1, i, i + 1], axis=-1)[new]
            weights[new] = np.stack(
                [(1 - s) * (1 - t), s * (1 - t), (1 - s) * t, s * t], axis=-1
            )[new]
            inside |= new

        self.jj = jj.reshape(shape + (4,))
        self.ii = ii.reshape(shape + (4,))
        self.weights = weights.reshape(shape + (4,))
        self.inside = inside.reshape(shape)

    @staticmethod
    def _invert(lon, lat, j, i, x, y, iterations: int, tolerance: float):
        """Fractional position (s, t) of points (x, y) within source cells with
        lower-left corner (j, i), and whether the point lies inside the cell"""
        x00, y00 = lon[j, i], lat[j, i]
        x10, y10 = lon[j, i + 1], lat[j, i + 1]
        x01, y01 = lon[j + 1, i], lat[j + 1, i]
        x11, y11 = lon[j + 1, i + 1], lat[j + 1, i + 1]
        s = np.full(x.shape, 0.5)
        t = np.full(x.shape, 0.5)
        ok = np.ones(x.shape, dtype=bool)
        for _ in range(iterations):
            fx = (
                (1 - s) * (1 - t) * x00 + s * (1 - t) * x10 + (1 - s) * t * x01
                + s * t * x11 - x
            )
            fy = (
                (1 - s) * (1 - t) * y00 + s * (1 - t) * y10 + (1 - s) * t * y01
                + s * t * y11 - y
            )
            dxds = (1 - t) * (x10 - x00) + t * (x11 - x01)
            dyds = (1 - t) * (y10 - y00) + t * (y11 - y01)
            dxdt = (1 - s) * (x01 - x00) + s * (x11 - x10)
            dydt = (1 - s) * (y01 - y00) + s * (y11 - y10)
            det = dxds * dydt - dxdt * dyds
            ok &= det != 0.0
            det = np.where(ok, det, 1.0)
            s = s - np.where(ok, (fx * dydt - fy * dxdt) / det, 0.0)
            t = t - np.where(ok, (fy * dxds - fx * dyds) / det, 0.0)
        found = (
            ok
            & (s >= -tolerance)
            & (s <= 1 + tolerance)
            & (t >= -tolerance)
            & (t <= 1 + tolerance)
        )
        return np.clip(s, 0.0, 1.0), np.clip(t, 0.0, 1.0), found

    def __call__(self, source: ArrayLike) -> np.ndarray:
        """Interpolate values with the source grid in their last two dimensions"""
        source = np.asarray(source)
        assert source.shape[-2:] == self.source_shape, (
            "Source values have shape %s, expected (..., %i, %i)"
            % ((source.shape,) + self.source_shape)
        )
        return (source[..., self.jj, self.ii] * self.weights).sum(axis=-1)


class VerticalLookupTable:
    """Column-wise linear interpolation between two sets of level heights.

    Destination levels below the lowest or above the highest source level take
    the value of that boundary level. Levels are in the first dimension.

    Args:
        z: heights of the source levels on the destination horizontal grid
            (nz_source, ...)
        target_z: heights of the destination levels (nz, ...)
    """

    def __init__(self, z: ArrayLike, target_z: ArrayLike):
        z = np.asarray(z, dtype=float)
        target_z = np.asarray(target_z, dtype=float)
        assert z.shape[1:] == target_z.shape[1:], (
            "Source heights %s and target heights %s must have the same horizontal"
            " shape" % (z.shape, target_z.shape)
        )
        nzp = z.shape[0]
        columns = z.reshape(nzp, -1)
        descending = nzp > 1 and columns[0, 0] > columns[-1, 0]
        if descending:
            z = z[::-1]

        ix_right = (z[np.newaxis, ...] <= target_z[:, np.newaxis, ...]).sum(axis=1)
        ix_left = np.maximum(ix_right - 1, 0)
        ix_right = np.minimum(ix_right, nzp - 1)
        valid = ix_left != ix_right
        z_left = np.take_along_axis(z, ix_left, axis=0)
        z_right = np.take_along_axis(z, ix_right, axis=0)
        w_left = np.ones(target_z.shape)
        np.true_divide(z_right - target_z, z_right - z_left, out=w_left, where=valid)

        if descending:
            ix_left, ix_right = nzp - ix_left - 1, nzp - ix_right - 1
        self.ix_left = ix_left
        self.ix_right = ix_right
        self.w_left = w_left
        self.source_levels = nzp

    def __call__(self, source: ArrayLike) -> np.ndarray:
        source = np.asarray(source)
        assert source.shape[0] == self.source_levels, (
            "Source values have %i levels, expected %i"
            % (source.shape[0], self.source_levels)
        )
        left = np.take_along_axis(source, self.ix_left, axis=0)
        right = np.take_along_axis(source, self.ix_right, axis=0)
        return self.w_left * left + (1.0 - self.w_left) * right
