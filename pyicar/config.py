from typing import Any, Iterable, Iterator, Mapping, Optional, Set
import collections.abc
import logging

import yaml

from . import catalog
from .constants import DEFAULT_HALO_SIZE

VERSION = "0.1.0"


class Node(collections.abc.Mapping):
    def __init__(self, dictionary: Mapping[str, Any], prefix: str = ""):
        self.prefix = prefix
        assert isinstance(dictionary, Mapping)
        self.dictionary = {}
        for name, value in dictionary.items():
            if isinstance(value, Mapping):
                value = Node(value, prefix="%s%s/" % (self.prefix, name))
            self.dictionary[name] = value
        self.retrieved = set()

    def __getitem__(self, path: str):
        components = path.split("/", 1)
        value = self.dictionary[components[0]]
        self.retrieved.add(components[0])
        if len(components) > 1:
            assert isinstance(value, Node)
            value = value[components[1]]
        return value

    def __iter__(self) -> Iterator:
        return self.dictionary.__iter__()

    def __len__(self) -> int:
        return self.dictionary.__len__()

    def check(self):
        unused = []
        for name, value in self.dictionary.items():
            if name not in self.retrieved:
                unused.append("%s%s" % (self.prefix, name))
            if isinstance(value, Node):
                unused += value.check()
        return unused


class Parameters:
    """Scalar run parameters.

    Names of forcing variables (``uvar``, ``tvar``, ...) and of variables in the
    initial conditions file (``hgt_hi``, ``landvar``, ...) are empty when the
    corresponding field is not read.
    """

    REQUIRED = ("init_conditions_file", "dx", "nz", "dz_levels")
    DEFAULTS = dict(
        init_conditions_file=None,
        dx=None,
        nz=None,
        dz_levels=None,
        space_varying_dz=False,
        flat_z_height=-1,
        smooth_wind_distance=None,
        halo=DEFAULT_HALO_SIZE,
        # variables in the initial conditions file
        hgt_hi="HGT",
        lat_hi="XLAT",
        lon_hi="XLONG",
        ulat_hi="",
        ulon_hi="",
        vlat_hi="",
        vlon_hi="",
        landvar="",
        soiltype_var="",
        soil_deept_var="",
        soil_t_var="",
        soil_vwc_var="",
        vegtype_var="",
        vegfrac_var="",
        # forcing variables
        uvar="U",
        vvar="V",
        pvar="P",
        tvar="T",
        qvvar="QVAPOR",
        qcvar="",
        qivar="",
        qrvar="",
        qsvar="",
        qgvar="",
        swdown_var="",
        lwdown_var="",
        sst_var="",
        # metadata
        comment="",
        version=VERSION,
    )

    def __init__(self, **kwargs):
        unknown = set(kwargs) - set(self.DEFAULTS)
        if unknown:
            raise Exception("Unknown parameters: %s" % ", ".join(sorted(unknown)))
        values = dict(self.DEFAULTS, **kwargs)
        missing = [name for name in self.REQUIRED if values[name] is None]
        if missing:
            raise Exception("Required parameters missing: %s" % ", ".join(missing))
        self.__dict__.update(values)

        self.nz = int(self.nz)
        self.dz_levels = [float(dz) for dz in self.dz_levels]
        if len(self.dz_levels) < self.nz:
            raise Exception(
                "dz_levels has %i values, but nz is %i"
                % (len(self.dz_levels), self.nz)
            )
        self.dz_levels = self.dz_levels[: self.nz]
        if self.smooth_wind_distance is None:
            self.smooth_wind_distance = 2 * self.dx

    @staticmethod
    def from_mapping(values: Mapping[str, Any]) -> "Parameters":
        return Parameters(**dict(values))

    @property
    def nsmooth(self) -> int:
        """Width of the smoothing window for winds, in grid cells"""
        return int(round(self.smooth_wind_distance / self.dx))

    def get(self, name: str, default=None):
        return self.__dict__.get(name, default)


class Options:
    """Run parameters together with the set of requested variables"""

    def __init__(
        self,
        parameters: Parameters,
        variables: Iterable[catalog.Var] = (),
    ):
        self.parameters = parameters
        self.vars_to_allocate: Set[catalog.Var] = set()
        self.vars_for_restart: Set[catalog.Var] = set()
        self.vars_to_advect: Set[catalog.Var] = set()
        self.alloc_vars(variables)

    def alloc_vars(self, variables: Iterable[catalog.Var]):
        self.vars_to_allocate.update(catalog.Var(v) for v in variables)

    def restart_vars(self, variables: Iterable[catalog.Var]):
        self.vars_for_restart.update(catalog.Var(v) for v in variables)

    def advect_vars(self, variables: Iterable[catalog.Var]):
        self.vars_to_advect.update(catalog.Var(v) for v in variables)

    @staticmethod
    def from_node(node: Node, logger: Optional[logging.Logger] = None) -> "Options":
        """Create options from a configuration with a ``parameters`` section and an
        optional ``variables`` list of requested variable names (e.g.,
        ``water_vapor``)."""
        parameters = Parameters.from_mapping(node["parameters"])
        names = node.get("variables") or []
        variables = []
        for name in names:
            try:
                variables.append(catalog.Var[name.upper()])
            except KeyError:
                raise Exception("Unknown variable %s requested" % name)
        unused = node.check()
        if unused and logger is not None:
            logger.warning("Unused configuration settings: %s" % ", ".join(unused))
        return Options(parameters, variables)


def configure(path: str) -> Node:
    with open(path) as f:
        settings = yaml.safe_load(f)
    if not isinstance(settings, Mapping):
        raise Exception(
            "%s should contain a mapping with configuration information, but instead"
            " contains %s" % (path, settings)
        )
    return Node(settings)
