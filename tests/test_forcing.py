import unittest
import unittest.mock
import datetime
import logging

import numpy as np

import pyicar
from pyicar.core import Field, ForcingRegistry
from pyicar.forcing import DeltaForcing, State
from pyicar.grid import Grid
from pyicar.parallel import Tiling
from pyicar.util.interpolate import VerticalLookupTable

from local_comm import LocalWorld

NX, NY = 4, 4
DZ_LEVELS = [100.0, 200.0, 300.0]
FORCING_Z = np.array([0.0, 1000.0, 2000.0, 4000.0, 8000.0])
FORCING_LON = np.linspace(9.5, 11.0, 8)
FORCING_LAT = np.linspace(44.5, 46.0, 7)


def create_grid(rank=0, nrow=1, ncol=1, nx=6, ny=5, nz=2):
    world = LocalWorld(nrow * ncol)
    tiling = Tiling(nrow, ncol, comm=world.comm(rank))
    return Grid(tiling, halo=1).set_grid_dimensions(nx, ny, nz)


def boundary_mask(grid):
    """True for points in memory that lie on the outer faces of the global
    domain"""
    j = np.arange(grid.jms, grid.jme)[:, np.newaxis]
    i = np.arange(grid.ims, grid.ime)[np.newaxis, :]
    return (j == 0) | (j == grid.jde - 1) | (i == 0) | (i == grid.ide - 1)


def create_reader():
    lon, lat = np.meshgrid(10.0 + 0.1 * np.arange(NX), 45.0 + 0.1 * np.arange(NY))
    data = dict(HGT=np.zeros((NY, NX)), XLONG=lon, XLAT=lat)

    def reader(path, name):
        return data[name]

    return reader


def create_domains(variables=(), **parameters):
    parameters.setdefault("pvar", "")
    parameters = pyicar.Parameters(
        init_conditions_file="memory", dx=1000.0, nz=3, dz_levels=DZ_LEVELS, **parameters
    )
    world = LocalWorld(4)
    domains = []
    for rank in range(world.size):
        domains.append(
            pyicar.Domain(
                pyicar.Options(parameters, variables),
                tiling=Tiling(2, 2, comm=world.comm(rank)),
                reader=create_reader(),
                logger=logging.getLogger("pyicar.test"),
            )
        )
    return domains


def constant_forcing(**values):
    shape3d = (FORCING_Z.size, FORCING_LAT.size, FORCING_LON.size)
    variables = {}
    for name, value in values.items():
        shape = shape3d[1:] if name in ("TSK", "SWDOWN") else shape3d
        variables[name] = np.full(shape, value)
    return pyicar.ForcingData(FORCING_LON, FORCING_LAT, FORCING_Z, variables)


class TestForcingRegistry(unittest.TestCase):
    def test_order_and_duplicates(self):
        grid = create_grid()
        registry = ForcingRegistry()
        for name, var in [("theta", "T"), ("qv", "QVAPOR"), ("p", "P")]:
            registry.add(Field(name, grid, forcing_var=var))
        self.assertEqual(list(registry), ["T", "QVAPOR", "P"])
        self.assertEqual(registry["QVAPOR"].name, "qv")
        self.assertIsNotNone(registry["P"].dqdt)

        with self.assertRaisesRegex(Exception, "already used by field theta"):
            registry.add(Field("theta2", grid, forcing_var="T"))
        with self.assertRaisesRegex(Exception, "has no forcing variable"):
            registry.add(Field("w", grid, forcing_var=""))
        self.assertEqual(len(registry), 3)


class TestDeltaForcing(unittest.TestCase):
    def create(self, grid, force_boundaries):
        field = Field(
            "theta",
            grid,
            fill_value=300.0,
            forcing_var="T",
            force_boundaries=force_boundaries,
        )
        registry = ForcingRegistry()
        registry.add(field)
        return field, DeltaForcing(registry)

    def test_apply_before_update(self):
        field, delta = self.create(create_grid(), False)
        self.assertIs(delta.state, State.IDLE)
        with self.assertRaisesRegex(Exception, "before update_delta_fields"):
            delta.apply_forcing(60.0)
        with self.assertRaisesRegex(Exception, "must be positive"):
            delta.update_delta_fields(0.0)

    def test_reproduce_snapshot(self):
        grid = create_grid()
        field, delta = self.create(grid, False)
        field.dqdt[...] = 310.0
        delta.update_delta_fields(datetime.timedelta(hours=1))
        self.assertIs(delta.state, State.DELTA_COMPUTED)
        self.assertTrue(np.allclose(field.dqdt, 10.0 / 3600.0))
        delta.apply_forcing(datetime.timedelta(hours=1))
        self.assertIs(delta.state, State.APPLIED)
        self.assertTrue(np.allclose(field.all_values, 310.0))

        # Boundaries only
        field, delta = self.create(grid, True)
        field.dqdt[...] = 310.0
        delta.update_delta_fields(3600)
        for _ in range(4):
            delta.apply_forcing(900)
        expected = np.where(boundary_mask(grid), 310.0, 300.0)
        self.assertTrue(np.allclose(field.all_values, expected))

    def test_boundary_points_updated_once(self):
        for nrow, ncol in [(1, 1), (2, 2), (1, 2), (3, 1)]:
            for rank in range(nrow * ncol):
                with self.subTest(nrow=nrow, ncol=ncol, rank=rank):
                    grid = create_grid(rank, nrow, ncol, nx=6, ny=6)
                    field, delta = self.create(grid, True)
                    field.fill(0.0)
                    field.dqdt[...] = 1.0
                    delta.update_delta_fields(1.0)
                    delta.apply_forcing(1.0)
                    expected = np.where(boundary_mask(grid), 1.0, 0.0)
                    self.assertTrue((field.all_values == expected).all())

    def test_two_d_fields_everywhere(self):
        grid = create_grid(nz=0)
        field, delta = self.create(grid, True)
        field.dqdt[...] = 310.0
        delta.update_delta_fields(10.0)
        delta.apply_forcing(10.0)
        self.assertTrue(np.allclose(field.all_values, 310.0))

    def test_vertical_velocity(self):
        grid = create_grid()
        w = Field("w", grid, dqdt=True)
        delta = DeltaForcing(ForcingRegistry(), w)
        w.dqdt[...] = 2.0
        delta.update_delta_fields(4.0)
        delta.apply_forcing(1.0)
        self.assertTrue(np.allclose(w.all_values, 0.5))


class TestForcingPipeline(unittest.TestCase):
    def test_initial_conditions(self):
        for domain in create_domains([pyicar.Var.SKIN_TEMPERATURE], sst_var="TSK"):
            self.assertEqual(list(domain.variables_to_force), ["T", "TSK"])
            domain.get_initial_conditions(constant_forcing(T=300.0, TSK=290.0))
            self.assertTrue(np.allclose(domain.potential_temperature.all_values, 300.0))
            self.assertTrue(np.allclose(domain.skin_temperature.all_values, 290.0))

    def test_missing_lookup_tables(self):
        domain = create_domains()[0]
        with self.assertRaisesRegex(Exception, "Lookup tables have not been built"):
            domain.interpolate_forcing(constant_forcing(T=300.0))

    def test_missing_forcing_variable(self):
        domain = create_domains()[0]
        with self.assertRaisesRegex(Exception, "Forcing variable T is not available"):
            domain.get_initial_conditions(constant_forcing(P=100000.0))

    def test_pressure_not_interpolated_vertically(self):
        forcing = constant_forcing(T=300.0)
        forcing.update(
            dict(
                P=np.broadcast_to(
                    (100000.0 - 10.0 * FORCING_Z)[:, np.newaxis, np.newaxis],
                    forcing["T"].shape,
                )
            )
        )
        original = VerticalLookupTable.__call__
        for domain in create_domains(pvar="P"):
            self.assertEqual(list(domain.variables_to_force), ["T", "P"])
            with unittest.mock.patch.object(
                VerticalLookupTable, "__call__", autospec=True, side_effect=original
            ) as vertical:
                domain.get_initial_conditions(forcing)
            self.assertEqual(vertical.call_count, 1)

            # Forcing levels are matched to model levels one to one, then
            # adjusted hydrostatically to the model heights
            z_source = FORCING_Z[:3, np.newaxis, np.newaxis]
            z = domain.z.all_values
            self.assertTrue(np.allclose(z[:, 0, 0], [50.0, 200.0, 450.0]))
            expected = (100000.0 - 10.0 * z_source) * (
                1.0 - 2.25577e-5 * (z - z_source)
            ) ** 5.25588
            self.assertTrue(np.allclose(domain.pressure.all_values, expected))
            self.assertTrue(
                np.allclose(
                    domain.exner.all_values,
                    pyicar.atmosphere.exner_function(domain.pressure.all_values),
                )
            )

    def test_winds(self):
        domains = create_domains(
            [pyicar.Var.U, pyicar.Var.V], uvar="U", vvar="V", smooth_wind_distance=2000.0
        )
        for domain in domains:
            self.assertEqual(domain.nsmooth, 2)
            domain.get_initial_conditions(constant_forcing(U=5.0, V=-3.0, T=300.0))
            self.assertEqual(domain.u.shape, domain.u_grid.shape)
            self.assertEqual(domain.v.shape, domain.v_grid.shape)
            self.assertTrue(np.allclose(domain.u.all_values, 5.0))
            self.assertTrue(np.allclose(domain.v.all_values, -3.0))

    def test_forcing_update(self):
        domains = create_domains([pyicar.Var.SKIN_TEMPERATURE], sst_var="TSK")
        for domain in domains:
            domain.get_initial_conditions(constant_forcing(T=300.0, TSK=300.0))

        next_forcing = constant_forcing(T=310.0, TSK=310.0)
        for domain in domains:
            domain.interpolate_forcing(next_forcing, update=True)
            domain.update_delta_fields(datetime.timedelta(hours=1))
            for _ in range(4):
                domain.apply_forcing(datetime.timedelta(minutes=15))

        for domain in domains:
            with self.subTest(rank=domain.tiling.rank):
                # Advected fields are forced on the outer faces of the domain only
                expected = np.where(boundary_mask(domain.grid), 310.0, 300.0)
                self.assertTrue(
                    np.allclose(domain.potential_temperature.all_values, expected)
                )
                self.assertTrue(np.allclose(domain.skin_temperature.all_values, 310.0))


if __name__ == "__main__":
    unittest.main()
