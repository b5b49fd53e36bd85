from typing import NamedTuple, Optional, Iterable, Iterator
import enum

from numpy.typing import DTypeLike

from .constants import LC_LAND


class Var(enum.IntEnum):
    """Identifiers of the quantities a domain can allocate. Physics components and
    the domain itself request these through
    :meth:`pyicar.config.Options.alloc_vars`."""

    U = 1
    V = 2
    W = 3
    WATER_VAPOR = 4
    POTENTIAL_TEMPERATURE = 5
    CLOUD_WATER = 6
    CLOUD_NUMBER_CONCENTRATION = 7
    CLOUD_ICE = 8
    ICE_NUMBER_CONCENTRATION = 9
    RAIN_IN_AIR = 10
    RAIN_NUMBER_CONCENTRATION = 11
    SNOW_IN_AIR = 12
    SNOW_NUMBER_CONCENTRATION = 13
    GRAUPEL_IN_AIR = 14
    GRAUPEL_NUMBER_CONCENTRATION = 15
    PRECIPITATION = 16
    SNOWFALL = 17
    PRESSURE = 18
    TEMPERATURE = 19
    EXNER = 20
    Z = 21
    DZ_INTERFACE = 22
    Z_INTERFACE = 23
    DZ = 24
    DENSITY = 25
    PRESSURE_INTERFACE = 26
    GRAUPEL = 27
    CLOUD_FRACTION = 28
    SHORTWAVE = 29
    LONGWAVE = 30
    VEGETATION_FRACTION = 31
    LAI = 32
    CANOPY_WATER = 33
    SNOW_WATER_EQUIVALENT = 34
    SKIN_TEMPERATURE = 35
    SOIL_WATER_CONTENT = 36
    SOIL_TEMPERATURE = 37
    LATITUDE = 38
    LONGITUDE = 39
    U_LATITUDE = 40
    U_LONGITUDE = 41
    V_LATITUDE = 42
    V_LONGITUDE = 43
    TERRAIN = 44
    SENSIBLE_HEAT = 45
    LATENT_HEAT = 46
    U_10M = 47
    V_10M = 48
    TEMPERATURE_2M = 49
    HUMIDITY_2M = 50
    SURFACE_PRESSURE = 51
    LONGWAVE_UP = 52
    GROUND_HEAT_FLUX = 53
    SOIL_TOTALMOISTURE = 54
    SOIL_DEEP_TEMPERATURE = 55
    ROUGHNESS_Z0 = 56
    VEG_TYPE = 57
    SOIL_TYPE = 58
    LAND_MASK = 59


class GridKind(enum.Enum):
    MASS = "grid"
    U = "u_grid"
    V = "v_grid"
    MASS_2D = "grid2d"
    U_2D = "u_grid2d"
    V_2D = "v_grid2d"
    SOIL = "grid_soil"
    MONTHLY = "grid_monthly"


class Category(enum.Enum):
    PROGNOSTIC = "prognostic"  #: advected or time-stepped state
    DIAGNOSTIC = "diagnostic"  #: derived from the state, or supplied by physics
    STATIC = "static"  #: geometry and coordinates, fixed after initialization
    LAND = "land"  #: soil, vegetation and land-surface fields


class FieldSpec(NamedTuple):
    name: str
    var: Var
    grid: GridKind
    category: Category
    forcing_option: Optional[str] = None
    force_boundaries: bool = False
    exchangeable: bool = False
    dtype: DTypeLike = float
    initial: float = 0.0
    units: Optional[str] = None
    long_name: Optional[str] = None


_P, _D = Category.PROGNOSTIC, Category.DIAGNOSTIC
_S, _L = Category.STATIC, Category.LAND
_M, _M2 = GridKind.MASS, GridKind.MASS_2D

CATALOG = (
    FieldSpec("u", Var.U, GridKind.U, _P, "uvar", False, True, units="m s-1"),
    FieldSpec("u_mass", Var.U, _M, _D, units="m s-1"),
    FieldSpec("v", Var.V, GridKind.V, _P, "vvar", False, True, units="m s-1"),
    FieldSpec("v_mass", Var.V, _M, _D, units="m s-1"),
    FieldSpec("w", Var.W, _M, _P, exchangeable=True, units="m s-1"),
    FieldSpec(
        "water_vapor", Var.WATER_VAPOR, _M, _P, "qvvar", True, True, units="kg kg-1"
    ),
    FieldSpec(
        "potential_temperature",
        Var.POTENTIAL_TEMPERATURE,
        _M,
        _P,
        "tvar",
        True,
        True,
        units="K",
    ),
    FieldSpec(
        "cloud_water_mass", Var.CLOUD_WATER, _M, _P, "qcvar", True, True, units="kg kg-1"
    ),
    FieldSpec("cloud_number", Var.CLOUD_NUMBER_CONCENTRATION, _M, _P, units="kg-1"),
    FieldSpec(
        "cloud_ice_mass", Var.CLOUD_ICE, _M, _P, "qivar", True, True, units="kg kg-1"
    ),
    FieldSpec(
        "cloud_ice_number",
        Var.ICE_NUMBER_CONCENTRATION,
        _M,
        _P,
        exchangeable=True,
        units="kg-1",
    ),
    FieldSpec("rain_mass", Var.RAIN_IN_AIR, _M, _P, "qrvar", True, True, units="kg kg-1"),
    FieldSpec(
        "rain_number",
        Var.RAIN_NUMBER_CONCENTRATION,
        _M,
        _P,
        exchangeable=True,
        units="kg-1",
    ),
    FieldSpec("snow_mass", Var.SNOW_IN_AIR, _M, _P, "qsvar", True, True, units="kg kg-1"),
    FieldSpec("snow_number", Var.SNOW_NUMBER_CONCENTRATION, _M, _P, units="kg-1"),
    FieldSpec(
        "graupel_mass", Var.GRAUPEL_IN_AIR, _M, _P, "qgvar", True, True, units="kg kg-1"
    ),
    FieldSpec("graupel_number", Var.GRAUPEL_NUMBER_CONCENTRATION, _M, _P, units="kg-1"),
    FieldSpec("accumulated_precipitation", Var.PRECIPITATION, _M2, _D, units="kg m-2"),
    FieldSpec("accumulated_snowfall", Var.SNOWFALL, _M2, _D, units="kg m-2"),
    FieldSpec("pressure", Var.PRESSURE, _M, _D, "pvar", False, units="Pa"),
    FieldSpec("temperature", Var.TEMPERATURE, _M, _D, units="K"),
    FieldSpec("exner", Var.EXNER, _M, _D, units="1"),
    FieldSpec("z", Var.Z, _M, _S, units="m", long_name="height of mass levels"),
    FieldSpec("dz_interface", Var.DZ_INTERFACE, _M, _S, units="m"),
    FieldSpec("z_interface", Var.Z_INTERFACE, _M, _S, units="m"),
    FieldSpec("dz_mass", Var.DZ, _M, _S, units="m"),
    FieldSpec("density", Var.DENSITY, _M, _D, units="kg m-3"),
    FieldSpec("pressure_interface", Var.PRESSURE_INTERFACE, _M, _D, units="Pa"),
    FieldSpec("graupel", Var.GRAUPEL, _M2, _D, units="kg m-2"),
    FieldSpec("cloud_fraction", Var.CLOUD_FRACTION, _M2, _D, units="1"),
    FieldSpec("shortwave", Var.SHORTWAVE, _M2, _D, "swdown_var", units="W m-2"),
    FieldSpec("longwave", Var.LONGWAVE, _M2, _D, "lwdown_var", units="W m-2"),
    FieldSpec("vegetation_fraction", Var.VEGETATION_FRACTION, GridKind.MONTHLY, _L),
    FieldSpec("lai", Var.LAI, _M2, _L, units="m2 m-2"),
    FieldSpec("canopy_water", Var.CANOPY_WATER, _M2, _L, units="kg m-2"),
    FieldSpec("snow_water_equivalent", Var.SNOW_WATER_EQUIVALENT, _M2, _L, units="kg m-2"),
    FieldSpec("skin_temperature", Var.SKIN_TEMPERATURE, _M2, _L, "sst_var", units="K"),
    FieldSpec("soil_water_content", Var.SOIL_WATER_CONTENT, GridKind.SOIL, _L),
    FieldSpec("soil_temperature", Var.SOIL_TEMPERATURE, GridKind.SOIL, _L, units="K"),
    FieldSpec("latitude", Var.LATITUDE, _M2, _S, units="degrees_north"),
    FieldSpec("longitude", Var.LONGITUDE, _M2, _S, units="degrees_east"),
    FieldSpec("u_latitude", Var.U_LATITUDE, GridKind.U_2D, _S, units="degrees_north"),
    FieldSpec("u_longitude", Var.U_LONGITUDE, GridKind.U_2D, _S, units="degrees_east"),
    FieldSpec("v_latitude", Var.V_LATITUDE, GridKind.V_2D, _S, units="degrees_north"),
    FieldSpec("v_longitude", Var.V_LONGITUDE, GridKind.V_2D, _S, units="degrees_east"),
    FieldSpec("terrain", Var.TERRAIN, _M2, _S, units="m"),
    FieldSpec("sensible_heat", Var.SENSIBLE_HEAT, _M2, _D, units="W m-2"),
    FieldSpec("latent_heat", Var.LATENT_HEAT, _M2, _D, units="W m-2"),
    FieldSpec("u_10m", Var.U_10M, _M2, _D, units="m s-1"),
    FieldSpec("v_10m", Var.V_10M, _M2, _D, units="m s-1"),
    FieldSpec("temperature_2m", Var.TEMPERATURE_2M, _M2, _D, units="K"),
    FieldSpec("humidity_2m", Var.HUMIDITY_2M, _M2, _D, units="kg kg-1"),
    FieldSpec("surface_pressure", Var.SURFACE_PRESSURE, _M2, _D, units="Pa"),
    FieldSpec("longwave_up", Var.LONGWAVE_UP, _M2, _D, units="W m-2"),
    FieldSpec("ground_heat_flux", Var.GROUND_HEAT_FLUX, _M2, _D, units="W m-2"),
    FieldSpec("soil_totalmoisture", Var.SOIL_TOTALMOISTURE, _M2, _L, units="kg m-2"),
    FieldSpec("soil_deep_temperature", Var.SOIL_DEEP_TEMPERATURE, _M2, _L, units="K"),
    FieldSpec("roughness_z0", Var.ROUGHNESS_Z0, _M2, _L, units="m"),
    FieldSpec("precipitation_bucket", Var.PRECIPITATION, _M2, _D, dtype=int),
    FieldSpec("snowfall_bucket", Var.SNOWFALL, _M2, _D, dtype=int),
    FieldSpec("veg_type", Var.VEG_TYPE, _M2, _L, dtype=int, initial=7),
    FieldSpec("soil_type", Var.SOIL_TYPE, _M2, _L, dtype=int, initial=3),
    FieldSpec("land_mask", Var.LAND_MASK, _M2, _L, dtype=int, initial=LC_LAND),
)

#: Fields exchanged by :meth:`pyicar.domain.Domain.halo_exchange`, in the order in
#: which every process must exchange them
HALO_VARIABLES = (
    "water_vapor",
    "potential_temperature",
    "cloud_water_mass",
    "cloud_ice_mass",
    "cloud_ice_number",
    "rain_mass",
    "rain_number",
    "snow_mass",
    "graupel_mass",
)

#: Fields that must not become negative, see :meth:`pyicar.domain.Domain.enforce_limits`
NONNEGATIVE_VARIABLES = HALO_VARIABLES

#: Quantities every domain needs, whatever the physics
REQUIRED_VARS = (
    Var.Z,
    Var.Z_INTERFACE,
    Var.DZ,
    Var.DZ_INTERFACE,
    Var.TERRAIN,
    Var.PRESSURE,
    Var.EXNER,
    Var.POTENTIAL_TEMPERATURE,
    Var.LATITUDE,
    Var.LONGITUDE,
    Var.U_LATITUDE,
    Var.U_LONGITUDE,
    Var.V_LATITUDE,
    Var.V_LONGITUDE,
)

#: Quantities needed to restart a domain
RESTART_VARS = (
    Var.Z,
    Var.TERRAIN,
    Var.POTENTIAL_TEMPERATURE,
    Var.LATITUDE,
    Var.LONGITUDE,
    Var.U_LATITUDE,
    Var.U_LONGITUDE,
    Var.V_LATITUDE,
    Var.V_LONGITUDE,
)


def requested(requested_vars: Iterable[Var]) -> Iterator[FieldSpec]:
    """Iterate over the catalog entries whose quantity has been requested."""
    requested_vars = frozenset(requested_vars)
    for spec in CATALOG:
        if spec.var in requested_vars:
            yield spec
