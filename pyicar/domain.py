from typing import Callable, Dict, Iterator, Mapping, Optional, Sequence, Tuple
import logging

from mpi4py import MPI
import numpy as np
from numpy.typing import ArrayLike

from . import catalog
from . import config
from . import core
from . import forcing
from . import input
from . import parallel
from .atmosphere import exner_function, interface_pressure, update_pressure
from .catalog import Category, GridKind
from .constants import MONTHS, SOIL_LEVELS, SOIL_THICKNESS
from .grid import Grid
from .util.interpolate import array_offset_x, array_offset_y

Reader = Callable[[str, str], np.ndarray]


def flattening_level(dz: Sequence[float], flat_z_height: float) -> int:
    """Number of levels (counted from the surface) that follow the terrain when
    the thickness of levels varies in space.

    A ``flat_z_height`` <= 0 is an offset from the model top, in levels. A
    positive value is a height: levels follow the terrain until their nominal
    thicknesses add up to that height, or all levels do if the height exceeds
    the nominal depth of the column.
    """
    nz = len(dz)
    if flat_z_height <= 0:
        return max(nz + int(flat_z_height), 1)
    height = 0.0
    for k, thickness in enumerate(dz):
        height += thickness
        if height >= flat_z_height:
            return k + 1
    return nz


def level_ratio(
    terrain: ArrayLike,
    dz: Sequence[float],
    mean_terrain: Optional[float] = None,
    max_level: Optional[int] = None,
) -> np.ndarray:
    """Scale factor (z, y, x) for the thickness of each level.

    Without ``mean_terrain``, levels have their nominal thickness everywhere.
    Otherwise the lowest ``max_level`` levels are compressed over high terrain
    and stretched over low terrain, so that their top lies at the same height
    (mean terrain + their nominal depth) everywhere; levels above are flat.
    """
    terrain = np.asarray(terrain, dtype=float)
    ratio = np.ones((len(dz),) + terrain.shape)
    if mean_terrain is not None:
        depth = sum(dz[:max_level])
        smooth_height = mean_terrain + depth
        ratio[:max_level] = (smooth_height - terrain) / depth
    return ratio


def level_heights(
    terrain: ArrayLike, dz: Sequence[float], ratio: np.ndarray
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Terrain-following level geometry.

    Returns:
        z: height of the mass levels
        dz_mass: distance between a mass level and the one below it (or the
            surface)
        z_interface: height of the bottom interface of each level
        dz_interface: thickness of each level
    """
    terrain = np.asarray(terrain, dtype=float)
    dz = np.reshape(np.asarray(dz, dtype=float), (-1,) + (1,) * terrain.ndim)
    dz_interface = dz * ratio
    dz_mass = np.empty_like(dz_interface)
    dz_mass[0] = 0.5 * dz_interface[0]
    dz_mass[1:] = 0.5 * (dz_interface[1:] + dz_interface[:-1])
    z = terrain + np.cumsum(dz_mass, axis=0)
    z_interface = np.empty_like(dz_interface)
    z_interface[0] = terrain
    z_interface[1:] = terrain + np.cumsum(dz_interface[:-1], axis=0)
    return z, dz_mass, z_interface, dz_interface


def _broadcast_coordinates(lon: np.ndarray, lat: np.ndarray):
    if lon.ndim == 1 and lat.ndim == 1:
        lon, lat = np.meshgrid(lon, lat)
    return lon, lat


class Domain:
    """State of one subdomain of the atmospheric model.

    All quantities the run requested (see :mod:`pyicar.catalog`) are allocated as
    :class:`~pyicar.core.Field` attributes of the same name; those not requested
    are ``None``. The per-category mappings :attr:`prognostic`,
    :attr:`diagnostic`, :attr:`static` and :attr:`land` hold every catalog name
    of that category. Fields driven by forcing data are registered in
    :attr:`variables_to_force` in catalog order.

    Args:
        options: run parameters and requested variables
        tiling: process grid. If not provided, it is created for ``comm`` with
            subdomains as close to square as possible.
        reader: function that returns a variable from a file as array
            (default: :func:`pyicar.input.read`)
        logger: parent logger
        comm: MPI communicator, used if ``tiling`` is not provided
    """

    def __init__(
        self,
        options: config.Options,
        tiling: Optional[parallel.Tiling] = None,
        reader: Optional[Reader] = None,
        logger: Optional[logging.Logger] = None,
        comm=MPI.COMM_WORLD,
    ):
        if logger is None:
            logger = parallel.get_logger(comm=comm)
        self.root_logger: logging.Logger = logger
        self.logger: logging.Logger = self.root_logger.getChild("domain")
        self.options = options
        self.tiling = tiling
        self._comm = comm
        self.reader: Reader = reader or input.read
        self.dx: float = options.parameters.dx
        self.model_time = None
        self.info: Dict[str, str] = {}
        self.geo_interpolation: Optional[forcing.GeoInterpolation] = None
        self.init()

    def init(self):
        self.var_request(self.options)
        self.read_domain_shape(self.options)
        self.create_variables(self.options)
        self.initialize_core_variables(self.options)
        self.read_land_variables(self.options)
        self.setup_meta_data(self.options)

    def _read(self, name: str) -> np.ndarray:
        path = self.options.parameters.init_conditions_file
        return np.asarray(self.reader(path, name))

    def var_request(self, options: config.Options):
        """Add the variables every domain needs to the requested variables"""
        options.alloc_vars(catalog.REQUIRED_VARS)
        options.restart_vars(catalog.RESTART_VARS)
        options.advect_vars([catalog.Var.POTENTIAL_TEMPERATURE])

    def read_domain_shape(self, options: config.Options):
        """Set up the grids from the extent of the terrain in the initial
        conditions file"""
        parameters = options.parameters
        self.nsmooth = parameters.nsmooth
        terrain = self._read(parameters.hgt_hi)
        ny, nx = terrain.shape[-2:]
        nz = parameters.nz

        if self.tiling is None:
            self.tiling = parallel.Tiling.create(nx, ny, comm=self._comm)
        self.tiling.report(self.logger)
        self.logger.info("Domain size: %i x %i x %i" % (nx, ny, nz))

        def make(nz: int, nx_extra: int = 0, ny_extra: int = 0) -> Grid:
            grid = Grid(self.tiling, halo=parameters.halo)
            return grid.set_grid_dimensions(nx, ny, nz, nx_extra, ny_extra)

        self.grid = make(nz)
        self.u_grid = make(nz, nx_extra=1)
        self.v_grid = make(nz, ny_extra=1)
        self.grid2d = make(0)
        self.u_grid2d = make(0, nx_extra=1)
        self.v_grid2d = make(0, ny_extra=1)

        # u and v forcing is interpolated to grids extended by the smoothing
        # distance, so that smoothing is consistent across subdomains
        self.u_grid2d_ext = self.u_grid2d.extend(self.nsmooth)
        self.v_grid2d_ext = self.v_grid2d.extend(self.nsmooth)
        self.grid_soil = make(SOIL_LEVELS)
        self.grid_monthly = make(MONTHS)
        self.grids: Mapping[GridKind, Grid] = {
            GridKind.MASS: self.grid,
            GridKind.U: self.u_grid,
            GridKind.V: self.v_grid,
            GridKind.MASS_2D: self.grid2d,
            GridKind.U_2D: self.u_grid2d,
            GridKind.V_2D: self.v_grid2d,
            GridKind.SOIL: self.grid_soil,
            GridKind.MONTHLY: self.grid_monthly,
        }
        self.logger.debug("Mass grid: %r" % (self.grid,))

        for dim in "ijk":
            for kind in "dmt":
                for end in "se":
                    name = dim + kind + end
                    setattr(self, name, getattr(self.grid, name))

    @property
    def north_boundary(self) -> bool:
        return self.grid.north_boundary

    @property
    def south_boundary(self) -> bool:
        return self.grid.south_boundary

    @property
    def east_boundary(self) -> bool:
        return self.grid.east_boundary

    @property
    def west_boundary(self) -> bool:
        return self.grid.west_boundary

    def create_variables(self, options: config.Options):
        """Allocate all requested fields and register those driven by forcing"""
        parameters = options.parameters
        self.fields: Dict[str, core.Field] = {}
        self.variables_to_force = core.ForcingRegistry()
        self.prognostic: Dict[str, Optional[core.Field]] = {}
        self.diagnostic: Dict[str, Optional[core.Field]] = {}
        self.static: Dict[str, Optional[core.Field]] = {}
        self.land: Dict[str, Optional[core.Field]] = {}
        containers = {
            Category.PROGNOSTIC: self.prognostic,
            Category.DIAGNOSTIC: self.diagnostic,
            Category.STATIC: self.static,
            Category.LAND: self.land,
        }

        allocated = set(catalog.requested(options.vars_to_allocate))
        for spec in catalog.CATALOG:
            field = None
            if spec in allocated:
                forcing_var = None
                if spec.forcing_option is not None:
                    forcing_var = parameters.get(spec.forcing_option) or None
                cls = core.ExchangeableField if spec.exchangeable else core.Field
                field = cls(
                    spec.name,
                    self.grids[spec.grid],
                    dtype=spec.dtype,
                    fill_value=spec.initial,
                    forcing_var=forcing_var,
                    force_boundaries=spec.force_boundaries,
                    dqdt=spec.var == catalog.Var.W,
                    units=spec.units,
                    long_name=spec.long_name,
                )
                self.fields[spec.name] = field
                if field.forcing_var is not None:
                    self.variables_to_force.add(field)
            containers[spec.category][spec.name] = field
            setattr(self, spec.name, field)

        self.delta_forcing = forcing.DeltaForcing(
            self.variables_to_force, self.w, logger=self.logger.getChild("forcing")
        )
        self.logger.info(
            "Allocated %i fields, %i driven by forcing: %s"
            % (
                len(self.fields),
                len(self.variables_to_force),
                ", ".join(self.variables_to_force),
            )
        )

    def allocated(self, category: Optional[Category] = None) -> Iterator[core.Field]:
        """Iterate over allocated fields, optionally of one category only"""
        for spec in catalog.CATALOG:
            if category is None or spec.category == category:
                field = self.fields.get(spec.name)
                if field is not None:
                    yield field

    def read_core_variables(self, options: config.Options):
        """Read terrain and coordinates of the mass, u and v grids"""
        parameters = options.parameters
        if not parameters.lat_hi or not parameters.lon_hi:
            raise Exception(
                "Latitude and longitude of the mass grid (lat_hi, lon_hi) are required"
            )

        terrain = self._read(parameters.hgt_hi)
        self.global_terrain = terrain
        self.terrain.all_values[...] = self.grid2d.subset(terrain)

        lon, lat = _broadcast_coordinates(
            self._read(parameters.lon_hi), self._read(parameters.lat_hi)
        )
        self.longitude.all_values[...] = self.grid2d.subset(lon)
        self.latitude.all_values[...] = self.grid2d.subset(lat)

        def staggered(name: str, values: np.ndarray, offset) -> np.ndarray:
            if name:
                return self._read(name)
            return offset(values)

        u_lon = staggered(parameters.ulon_hi, lon, array_offset_x)
        u_lat = staggered(parameters.ulat_hi, lat, array_offset_x)
        v_lon = staggered(parameters.vlon_hi, lon, array_offset_y)
        v_lat = staggered(parameters.vlat_hi, lat, array_offset_y)
        self.u_longitude.all_values[...] = self.u_grid2d.subset(u_lon)
        self.u_latitude.all_values[...] = self.u_grid2d.subset(u_lat)
        self.v_longitude.all_values[...] = self.v_grid2d.subset(v_lon)
        self.v_latitude.all_values[...] = self.v_grid2d.subset(v_lat)

        # Coordinates and terrain on the extended staggered grids
        self._u_ext = (
            self.u_grid2d_ext.subset(u_lon),
            self.u_grid2d_ext.subset(u_lat),
            self.u_grid2d_ext.subset(array_offset_x(terrain)),
        )
        self._v_ext = (
            self.v_grid2d_ext.subset(v_lon),
            self.v_grid2d_ext.subset(v_lat),
            self.v_grid2d_ext.subset(array_offset_y(terrain)),
        )
        self.logger.info("Finished reading core domain variables")

    def initialize_core_variables(self, options: config.Options):
        """Read terrain and coordinates, then compute the terrain-following
        height of all levels on the mass, u and v grids"""
        self.read_core_variables(options)
        parameters = options.parameters
        dz = parameters.dz_levels

        mean_terrain = max_level = None
        if parameters.space_varying_dz:
            max_level = flattening_level(dz, parameters.flat_z_height)
            mean_terrain = float(np.mean(self.global_terrain))
            self.logger.info(
                "Levels follow the terrain up to level %i (mean terrain %.1f m)"
                % (max_level, mean_terrain)
            )
        self.max_level = max_level

        terrain = self.terrain.all_values
        ratio = level_ratio(terrain, dz, mean_terrain, max_level)
        z, dz_mass, z_interface, dz_interface = level_heights(terrain, dz, ratio)
        self.z.all_values[...] = z
        self.dz_mass.all_values[...] = dz_mass
        self.z_interface.all_values[...] = z_interface
        self.dz_interface.all_values[...] = dz_interface

        def staggered_geo(lon, lat, terrain) -> forcing.Geo:
            ratio = level_ratio(terrain, dz, mean_terrain, max_level)
            return forcing.Geo(lon, lat, level_heights(terrain, dz, ratio)[0])

        self.geo = forcing.Geo(
            self.longitude.all_values, self.latitude.all_values, self.z.all_values
        )
        self.geo_u = staggered_geo(*self._u_ext)
        self.geo_v = staggered_geo(*self._v_ext)

    def read_land_variables(self, options: config.Options):
        """Read soil and vegetation properties, or set defaults for those not in
        the initial conditions file"""
        parameters = options.parameters

        def read(name: str) -> np.ndarray:
            return self.grid2d.subset(self._read(name))

        if parameters.landvar and self.land_mask is not None:
            self.land_mask.all_values[...] = read(parameters.landvar)
        if parameters.soiltype_var and self.soil_type is not None:
            self.soil_type.all_values[...] = read(parameters.soiltype_var)
        if parameters.vegtype_var and self.veg_type is not None:
            self.veg_type.all_values[...] = read(parameters.vegtype_var)

        if self.soil_deep_temperature is not None:
            if parameters.soil_deept_var:
                self.soil_deep_temperature.fill(read(parameters.soil_deept_var))
            else:
                self.soil_deep_temperature.fill(280.0)

        if self.soil_temperature is not None:
            if parameters.soil_t_var:
                soil_t = read(parameters.soil_t_var)[:SOIL_LEVELS]
                self.soil_temperature.all_values[: soil_t.shape[0]] = soil_t
                deep = self.soil_deep_temperature
                if not parameters.soil_deept_var and deep is not None:
                    deep.fill(soil_t[-1])
            elif self.soil_deep_temperature is not None:
                self.soil_temperature.fill(self.soil_deep_temperature.all_values)
            else:
                self.soil_temperature.fill(280.0)

        if self.soil_water_content is not None:
            if parameters.soil_vwc_var:
                soil_vwc = read(parameters.soil_vwc_var)[:SOIL_LEVELS]
                self.soil_water_content.all_values[: soil_vwc.shape[0]] = soil_vwc
            else:
                self.soil_water_content.fill(0.2)

        if self.vegetation_fraction is not None:
            if parameters.vegfrac_var:
                # a 2D map applies to all months
                self.vegetation_fraction.fill(read(parameters.vegfrac_var))
            else:
                self.vegetation_fraction.fill(0.6)

        if self.soil_totalmoisture is not None and self.soil_water_content is not None:
            thickness = np.reshape(SOIL_THICKNESS, (-1, 1, 1))
            self.soil_totalmoisture.all_values[...] = (
                self.soil_water_content.all_values * thickness
            ).sum(axis=0)

        # Updated later by forcing or the land surface model
        defaults = dict(
            skin_temperature=280.0,
            roughness_z0=0.001,
            sensible_heat=0.0,
            latent_heat=0.0,
            u_10m=0.0,
            v_10m=0.0,
            temperature_2m=280.0,
            humidity_2m=0.001,
            surface_pressure=102000.0,
            longwave_up=0.0,
            ground_heat_flux=0.0,
        )
        for name, value in defaults.items():
            field = self.fields.get(name)
            if field is not None:
                field.fill(value)

    def setup_meta_data(self, options: config.Options):
        parameters = options.parameters
        self.info["comment"] = parameters.comment
        self.info["source"] = "pyicar version: %s" % parameters.version
        for kind in "dmt":
            for dim in "ijk":
                for end in "se":
                    name = dim + kind + end
                    self.info[name] = str(getattr(self.grid, name))

    def get_initial_conditions(self, forcing_data: input.ForcingData):
        """Build lookup tables from the forcing grid to this domain, interpolate
        the forcing to all forced fields and derive the internal variables."""
        self.geo_interpolation = forcing.GeoInterpolation(
            forcing_data,
            self.geo,
            self.geo_u,
            self.geo_v,
            logger=self.logger.getChild("forcing"),
        )
        self.interpolate_forcing(forcing_data)
        self.initialize_internal_variables()
        self.model_time = forcing_data.current_time

    def initialize_internal_variables(self):
        """Derive exner function, interface and surface pressure and temperature
        from pressure and potential temperature"""
        if self.pressure is None:
            return
        pressure = self.pressure.all_values
        if self.exner is not None:
            self.exner.all_values[...] = exner_function(pressure)
        if self.pressure_interface is not None:
            p_interface = interface_pressure(pressure)
            self.pressure_interface.all_values[...] = p_interface
            if self.surface_pressure is not None:
                self.surface_pressure.all_values[...] = p_interface[0]
        if (
            self.temperature is not None
            and self.exner is not None
            and self.potential_temperature is not None
        ):
            self.temperature.all_values[...] = (
                self.potential_temperature.all_values * self.exner.all_values
            )

    def interpolate_forcing(
        self, forcing_data: input.ForcingData, update: bool = False
    ):
        """Interpolate all forcing variables to the fields they drive.

        Args:
            forcing_data: forcing for one time step
            update: write to the :attr:`~pyicar.core.Field.dqdt` buffers instead of
                the values, in preparation of :meth:`update_delta_fields`
        """
        if self.geo_interpolation is None:
            raise Exception(
                "Lookup tables have not been built; call get_initial_conditions first"
            )
        tables = self.geo_interpolation
        for name, field in self.variables_to_force.items():
            out = field.dqdt if update else field.all_values
            source = forcing_data[name]
            self.logger.debug("Interpolating %s to %s" % (name, field.name))
            if field.two_d:
                forcing.interpolate_variable(out, source, tables.mass)
            elif field is self.pressure:
                # Pressure is not interpolated vertically, but adjusted
                # hydrostatically to the height of the model levels
                forcing.interpolate_variable(out, source, tables.mass, vertical=False)
                z_source = forcing.fit_levels(tables.mass.z, out.shape[0])
                update_pressure(out, z_source, self.z.all_values)
            elif field is self.u:
                forcing.interpolate_variable(
                    out,
                    source,
                    tables.u,
                    nsmooth=self.nsmooth,
                    subset=self.u_grid.offset_in(self.u_grid2d_ext),
                )
            elif field is self.v:
                forcing.interpolate_variable(
                    out,
                    source,
                    tables.v,
                    nsmooth=self.nsmooth,
                    subset=self.v_grid.offset_in(self.v_grid2d_ext),
                )
            else:
                forcing.interpolate_variable(out, source, tables.mass)

    def update_delta_fields(self, dt: forcing.TimeDelta):
        """Turn the forcing interpolated with ``update=True`` into rates of change
        over the forcing interval ``dt``"""
        self.delta_forcing.update_delta_fields(dt)

    def apply_forcing(self, dt: forcing.TimeDelta):
        """Advance forced fields by time step ``dt``"""
        self.delta_forcing.apply_forcing(dt)

    def _halo_fields(self) -> Iterator[core.ExchangeableField]:
        for name in catalog.HALO_VARIABLES:
            field = self.fields.get(name)
            if field is not None:
                yield field

    def halo_send(self):
        for field in self._halo_fields():
            field.send()

    def halo_retrieve(self):
        # The first retrieve synchronizes all processes
        for i, field in enumerate(self._halo_fields()):
            field.retrieve(no_sync=i > 0)

    def halo_exchange(self):
        self.halo_send()
        self.halo_retrieve()

    def enforce_limits(self):
        """Set negative values of water vapor, potential temperature and
        hydrometeors to zero"""
        for name in catalog.NONNEGATIVE_VARIABLES:
            field = self.fields.get(name)
            if field is None:
                continue
            negative = field.all_values < 0
            n = np.count_nonzero(negative)
            if n:
                field.all_values[negative] = 0
                self.logger.warning("%s: set %i negative values to 0" % (name, n))
