import unittest

import numpy as np

from pyicar.domain import flattening_level, level_heights, level_ratio
from pyicar.atmosphere import exner_function, interface_pressure, update_pressure
from pyicar.constants import CP, P0, RD


class TestVerticalGeometry(unittest.TestCase):
    def test_flat_levels(self):
        dz = [100.0, 200.0, 300.0]
        terrain = np.full((3, 4), 10.0)
        ratio = level_ratio(terrain, dz)
        self.assertEqual(ratio.shape, (3, 3, 4))
        self.assertTrue((ratio == 1.0).all())

        z, dz_mass, z_interface, dz_interface = level_heights(terrain, dz, ratio)
        expected_z = np.array([60.0, 210.0, 460.0])[:, np.newaxis, np.newaxis]
        self.assertTrue(np.allclose(z, expected_z))
        self.assertTrue(np.allclose(dz_mass[:, 0, 0], [50.0, 150.0, 250.0]))
        self.assertTrue(np.allclose(z_interface[:, 1, 2], [10.0, 110.0, 310.0]))
        self.assertTrue(np.allclose(dz_interface[:, 2, 3], dz))

    def test_terrain_following(self):
        dz = [100.0, 200.0, 300.0]
        terrain = np.array([[0.0, 50.0, 200.0]])
        z, _, z_interface, _ = level_heights(terrain, dz, level_ratio(terrain, dz))
        for k in range(3):
            self.assertTrue(np.allclose(z[k] - terrain, z[k, 0, 0]))
            self.assertTrue(np.allclose(z_interface[k] - terrain, z_interface[k, 0, 0]))

    def test_flattening_level(self):
        dz = [100.0, 200.0, 300.0, 400.0]
        self.assertEqual(flattening_level(dz, 0), 4)
        self.assertEqual(flattening_level(dz, -1), 3)
        self.assertEqual(flattening_level(dz, -10), 1)
        self.assertEqual(flattening_level(dz, 250.0), 2)
        self.assertEqual(flattening_level(dz, 300.0), 2)
        self.assertEqual(flattening_level(dz, 1000.0), 4)
        self.assertEqual(flattening_level(dz, 5000.0), 4)

    def test_space_varying(self):
        dz = [100.0, 200.0, 300.0]
        terrain = np.array([[0.0, 200.0]])
        ratio = level_ratio(terrain, dz, mean_terrain=100.0, max_level=2)
        self.assertTrue(np.allclose(ratio[:2, 0, :], [[4.0 / 3.0, 2.0 / 3.0]] * 2))
        self.assertTrue((ratio[2] == 1.0).all())

        terrain = np.random.uniform(0.0, 1000.0, (5, 6))
        mean_terrain = terrain.mean()
        max_level = flattening_level(dz, -1)
        ratio = level_ratio(terrain, dz, mean_terrain, max_level)
        z, dz_mass, z_interface, dz_interface = level_heights(terrain, dz, ratio)

        # The top of the terrain-following levels is flat
        top = z_interface[max_level - 1] + dz_interface[max_level - 1]
        self.assertTrue(np.allclose(top, mean_terrain + sum(dz[:max_level])))
        self.assertTrue(np.allclose(z_interface[max_level], top))
        self.assertTrue(np.allclose(dz_interface[max_level:], dz[max_level]))

        # Mass levels lie halfway between interfaces
        self.assertTrue(np.allclose(z, z_interface + 0.5 * dz_interface))
        self.assertTrue(np.allclose(np.diff(z, axis=0), dz_mass[1:]))


class TestAtmosphere(unittest.TestCase):
    def test_exner_function(self):
        self.assertAlmostEqual(float(exner_function(P0)), 1.0)
        pressure = np.array([50000.0, 80000.0, 101325.0])
        self.assertTrue(np.allclose(exner_function(pressure), (pressure / P0) ** (RD / CP)))

    def test_update_pressure(self):
        pressure = np.full((2, 3, 4), 100000.0)
        z = np.random.uniform(0.0, 1000.0, (2, 3, 4))
        update_pressure(pressure, z, z)
        self.assertTrue((pressure == 100000.0).all())

        update_pressure(pressure, np.zeros_like(z), np.full_like(z, 1000.0))
        self.assertTrue(np.allclose(pressure, 100000.0 * 0.88699, rtol=1e-4))

    def test_interface_pressure(self):
        pressure = np.array([100000.0, 90000.0, 80000.0])[:, np.newaxis, np.newaxis]
        result = interface_pressure(pressure)
        self.assertTrue(np.allclose(result[:, 0, 0], [105000.0, 95000.0, 85000.0]))


if __name__ == "__main__":
    unittest.main()
