from typing import Tuple
import copy

import numpy as np

from . import parallel
from .constants import DEFAULT_HALO_SIZE


def _decompose(
    n: int, n_extra: int, images: int, img: int, halo: int
) -> Tuple[int, int, int, int]:
    """Tile and memory extent along one dimension for process grid position
    ``img`` (0-based) out of ``images``. Remainder cells and staggering extras go to
    the trailing tile. Extents are 0-based and exclusive at the end."""
    if n < images:
        raise Exception(
            "Global extent of %i points cannot be divided over %i images"
            % (n, images)
        )
    base = n // images
    if images > 1 and base < halo:
        raise Exception(
            "Tiles of %i points are narrower than the halo width %i" % (base, halo)
        )
    start = img * base
    stop = start + base
    if img == images - 1:
        stop = n + n_extra
    mstart = start - halo if img > 0 else start
    mstop = stop + halo if img < images - 1 else stop
    return start, stop, max(mstart, 0), min(mstop, n + n_extra)


class Grid:
    """Global, memory and tile extents of one subdomain.

    All extents are 0-based with an exclusive end, so that ``ims:ime`` can be
    used directly as a slice into a global array. Memory extents include a halo
    only on sides where a neighboring subdomain exists.
    """

    __slots__ = (
        "tiling",
        "halo",
        "ids",
        "ide",
        "jds",
        "jde",
        "kds",
        "kde",
        "ims",
        "ime",
        "jms",
        "jme",
        "kms",
        "kme",
        "its",
        "ite",
        "jts",
        "jte",
        "kts",
        "kte",
        "nx_extra",
        "ny_extra",
    )

    def __init__(self, tiling: parallel.Tiling, halo: int = DEFAULT_HALO_SIZE):
        self.tiling = tiling
        self.halo = halo

    @property
    def ximg(self) -> int:
        return self.tiling.icol

    @property
    def yimg(self) -> int:
        return self.tiling.irow

    @property
    def ximages(self) -> int:
        return self.tiling.ncol

    @property
    def yimages(self) -> int:
        return self.tiling.nrow

    def set_grid_dimensions(
        self, nx: int, ny: int, nz: int, nx_extra: int = 0, ny_extra: int = 0
    ) -> "Grid":
        """Derive the tile and memory extents of this subdomain.

        Args:
            nx: number of mass points of the global domain in x-direction
            ny: number of mass points of the global domain in y-direction
            nz: number of vertical levels (0 for a 2D grid)
            nx_extra: number of additional points in x-direction (1 for the
                u-staggered grid)
            ny_extra: number of additional points in y-direction (1 for the
                v-staggered grid)
        """
        self.nx_extra, self.ny_extra = nx_extra, ny_extra

        self.ids, self.ide = 0, nx + nx_extra
        self.jds, self.jde = 0, ny + ny_extra
        self.kds, self.kde = 0, nz
        self.its, self.ite, self.ims, self.ime = _decompose(
            nx, nx_extra, self.ximages, self.ximg, self.halo
        )
        self.jts, self.jte, self.jms, self.jme = _decompose(
            ny, ny_extra, self.yimages, self.yimg, self.halo
        )
        self.kts, self.kte, self.kms, self.kme = 0, nz, 0, nz
        return self

    def extend(self, n: int) -> "Grid":
        """Return a copy with memory extents widened by ``n`` points on all sides,
        clamped to the global domain. Tile extents are unchanged."""
        other = copy.copy(self)
        other.ims = max(self.ims - n, self.ids)
        other.ime = min(self.ime + n, self.ide)
        other.jms = max(self.jms - n, self.jds)
        other.jme = min(self.jme + n, self.jde)
        return other

    @property
    def nx(self) -> int:
        return self.ime - self.ims

    @property
    def ny(self) -> int:
        return self.jme - self.jms

    @property
    def nz(self) -> int:
        return self.kme - self.kms

    @property
    def shape(self) -> Tuple[int, ...]:
        """Shape of a local array in memory: (nz, ny, nx), or (ny, nx) for a 2D grid"""
        if self.nz == 0:
            return (self.ny, self.nx)
        return (self.nz, self.ny, self.nx)

    @property
    def north_boundary(self) -> bool:
        return self.yimg == self.yimages - 1

    @property
    def south_boundary(self) -> bool:
        return self.yimg == 0

    @property
    def east_boundary(self) -> bool:
        return self.ximg == self.ximages - 1

    @property
    def west_boundary(self) -> bool:
        return self.ximg == 0

    @property
    def halos(self) -> Tuple[int, int, int, int]:
        """Width of the memory margin at the west, east, south and north side"""
        return (
            self.its - self.ims,
            self.ime - self.ite,
            self.jts - self.jms,
            self.jme - self.jte,
        )

    @property
    def tile(self) -> Tuple[slice, slice]:
        """Slices (y, x) selecting the tile from a local array"""
        return (
            slice(self.jts - self.jms, self.jte - self.jms),
            slice(self.its - self.ims, self.ite - self.ims),
        )

    @property
    def memory(self) -> Tuple[slice, slice]:
        """Slices (y, x) selecting the memory extent from a global array"""
        return slice(self.jms, self.jme), slice(self.ims, self.ime)

    def subset(self, global_values: np.ndarray) -> np.ndarray:
        """Select this subdomain's memory extent from an array that spans the
        global domain in its last two dimensions."""
        global_values = np.asarray(global_values)
        assert global_values.shape[-2:] == (self.jde, self.ide), (
            "Global array has shape %s, expected (..., %i, %i)"
            % (global_values.shape, self.jde, self.ide)
        )
        return global_values[(Ellipsis,) + self.memory]

    def offset_in(self, other: "Grid") -> Tuple[slice, slice]:
        """Slices (y, x) selecting this grid's memory extent from a local array on
        ``other``, which must cover it."""
        assert (
            other.ims <= self.ims
            and self.ime <= other.ime
            and other.jms <= self.jms
            and self.jme <= other.jme
        ), "Grid [%i:%i, %i:%i] does not cover [%i:%i, %i:%i]" % (
            other.jms,
            other.jme,
            other.ims,
            other.ime,
            self.jms,
            self.jme,
            self.ims,
            self.ime,
        )
        return (
            slice(self.jms - other.jms, self.jme - other.jms),
            slice(self.ims - other.ims, self.ime - other.ims),
        )

    def __repr__(self) -> str:
        return "Grid(x=%i:%i [%i:%i] of %i, y=%i:%i [%i:%i] of %i, z=%i)" % (
            self.its,
            self.ite,
            self.ims,
            self.ime,
            self.ide,
            self.jts,
            self.jte,
            self.jms,
            self.jme,
            self.jde,
            self.kde,
        )
