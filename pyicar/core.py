from typing import Optional, Iterator, Mapping, Any
import collections.abc

import numpy as np
import numpy.lib.mixins
from numpy.typing import DTypeLike

from . import parallel
from .grid import Grid


class Field(numpy.lib.mixins.NDArrayOperatorsMixin):
    """A named quantity on the memory extent of a :class:`~pyicar.grid.Grid`.

    :attr:`all_values` spans the memory extent including any halo;
    :attr:`values` is a view of the tile owned by this subdomain. Fields that are
    driven by forcing data carry a :attr:`dqdt` buffer of the same shape, which
    holds the freshly interpolated forcing and, after
    :meth:`pyicar.domain.Domain.update_delta_fields`, its rate of change per second.
    """

    __slots__ = (
        "name",
        "grid",
        "attrs",
        "all_values",
        "values",
        "dqdt",
        "forcing_var",
        "force_boundaries",
    )

    def __init__(
        self,
        name: str,
        grid: Grid,
        dtype: DTypeLike = float,
        fill_value: Any = 0.0,
        forcing_var: Optional[str] = None,
        force_boundaries: bool = False,
        dqdt: bool = False,
        units: Optional[str] = None,
        long_name: Optional[str] = None,
        attrs: Mapping[str, Any] = {},
    ):
        self.name = name
        self.grid = grid
        self.attrs = dict(attrs)
        if units:
            self.attrs["units"] = units
        if long_name:
            self.attrs["long_name"] = long_name
        self.all_values = np.full(grid.shape, fill_value, dtype=dtype)
        self.values = self.all_values[(Ellipsis,) + grid.tile]
        self.forcing_var = forcing_var or None
        self.force_boundaries = force_boundaries
        self.dqdt: Optional[np.ndarray] = None
        if dqdt or self.forcing_var is not None:
            self.dqdt = np.zeros_like(self.all_values, dtype=float)

    @property
    def two_d(self) -> bool:
        return self.all_values.ndim == 2

    @property
    def three_d(self) -> bool:
        return self.all_values.ndim == 3

    @property
    def shape(self):
        return self.all_values.shape

    @property
    def ndim(self) -> int:
        return self.all_values.ndim

    @property
    def dtype(self) -> np.dtype:
        return self.all_values.dtype

    def fill(self, value):
        """Set all values, including the halo"""
        self.all_values[...] = value

    def __array__(self, dtype=None, copy=None) -> np.ndarray:
        return np.asarray(self.all_values, dtype=dtype)

    def __array_ufunc__(self, ufunc, method: str, *inputs, **kwargs):
        if "out" in kwargs:
            kwargs["out"] = tuple(
                x.all_values if isinstance(x, Field) else x for x in kwargs["out"]
            )
        inputs = tuple(x.all_values if isinstance(x, Field) else x for x in inputs)
        return getattr(ufunc, method)(*inputs, **kwargs)

    def __repr__(self) -> str:
        return "%s(%r, shape=%s, forcing_var=%r)" % (
            self.__class__.__name__,
            self.name,
            self.shape,
            self.forcing_var,
        )


class ExchangeableField(Field):
    """A :class:`Field` whose halo can be filled with the interior values of
    neighboring subdomains.

    Communication buffers and persistent requests are created on first use.
    """

    __slots__ = ("_dist",)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._dist: Optional[parallel.DistributedArray] = None

    def _distribute(self) -> parallel.DistributedArray:
        if self._dist is None:
            self._dist = self.grid.tiling.wrap(self.all_values, self.grid.halos)
        return self._dist

    def send(self):
        """Start sending interior cells adjacent to the halo to all neighbors"""
        self._distribute().send()

    def retrieve(self, no_sync: bool = False):
        """Wait for halo data from all neighbors and copy them into the halo"""
        self._distribute().retrieve(no_sync=no_sync)

    def exchange(self):
        self.send()
        self.retrieve()


class ForcingRegistry(collections.abc.Mapping):
    """Insertion-ordered mapping from forcing variable name to the :class:`Field`
    it drives"""

    def __init__(self):
        self._fields: "collections.OrderedDict[str, Field]" = collections.OrderedDict()

    def add(self, field: Field):
        name = field.forcing_var
        if not name:
            raise Exception("Field %s has no forcing variable" % field.name)
        if name in self._fields:
            raise Exception(
                "Forcing variable %s is already used by field %s"
                % (name, self._fields[name].name)
            )
        self._fields[name] = field

    def __getitem__(self, key: str) -> Field:
        return self._fields[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        return "ForcingRegistry(%s)" % ", ".join(
            "%s=%s" % (k, v.name) for k, v in self._fields.items()
        )
