RD = 287.058  #: gas constant of dry air
CP = 1004.5  #: specific heat capacity of dry air at constant pressure
P0 = 100000.0  #: reference pressure for potential temperature

LC_LAND = 1  #: land-cover code for land in land_mask

DEFAULT_HALO_SIZE = 1

SOIL_LEVELS = 4
MONTHS = 12

#: thickness (m) of the soil layers, used to integrate total soil moisture
SOIL_THICKNESS = (0.1, 0.2, 0.5, 1.0)
