import unittest
import os
import tempfile
import logging

import pyicar
from pyicar.config import Node, Options, Parameters, configure

CONFIGURATION = """
parameters:
  init_conditions_file: geo_4km.nc
  dx: 4000.
  nz: 3
  dz_levels: [50., 100., 200., 400.]
  space_varying_dz: true
  flat_z_height: 2000.
  qcvar: QCLOUD
variables:
- water_vapor
- cloud_water
"""


class TestConfiguration(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmpdir.name, "icar.yaml")

    def tearDown(self):
        self.tmpdir.cleanup()

    def write(self, text: str) -> str:
        with open(self.path, "w") as f:
            f.write(text)
        return self.path

    def test_from_yaml(self):
        node = configure(self.write(CONFIGURATION))
        options = Options.from_node(node)
        parameters = options.parameters
        self.assertEqual(parameters.init_conditions_file, "geo_4km.nc")
        self.assertEqual(parameters.nz, 3)
        self.assertEqual(parameters.dz_levels, [50.0, 100.0, 200.0])
        self.assertTrue(parameters.space_varying_dz)
        self.assertEqual(parameters.qcvar, "QCLOUD")
        self.assertEqual(parameters.tvar, "T")
        self.assertEqual(parameters.qivar, "")
        self.assertEqual(parameters.nsmooth, 2)
        self.assertEqual(
            options.vars_to_allocate,
            {pyicar.Var.WATER_VAPOR, pyicar.Var.CLOUD_WATER},
        )

    def test_unused_settings(self):
        node = configure(self.write(CONFIGURATION + "output:\n  path: out.nc\n"))
        logger = logging.getLogger("pyicar.test.config")
        with self.assertLogs(logger, level="WARNING") as cm:
            Options.from_node(node, logger=logger)
        self.assertIn("output/path", cm.output[0])

    def test_invalid(self):
        with self.assertRaisesRegex(Exception, "should contain a mapping"):
            configure(self.write("- dx\n- nz\n"))
        node = configure(self.write(CONFIGURATION.replace("cloud_water", "dust")))
        with self.assertRaisesRegex(Exception, "Unknown variable dust"):
            Options.from_node(node)

    def test_parameters(self):
        with self.assertRaisesRegex(Exception, "Unknown parameters: dy"):
            Parameters(init_conditions_file="a.nc", dx=1.0, dy=1.0, nz=1, dz_levels=[1])
        with self.assertRaisesRegex(Exception, "Required parameters missing: dx, nz"):
            Parameters(init_conditions_file="a.nc", dz_levels=[1.0])
        with self.assertRaisesRegex(Exception, "dz_levels has 2 values, but nz is 3"):
            Parameters(init_conditions_file="a.nc", dx=1.0, nz=3, dz_levels=[1, 2])

        parameters = Parameters(
            init_conditions_file="a.nc",
            dx=1000.0,
            nz=2,
            dz_levels=[10, 20],
            smooth_wind_distance=3000.0,
        )
        self.assertEqual(parameters.nsmooth, 3)
        self.assertEqual(parameters.get("uvar"), "U")
        self.assertIsNone(parameters.get("undefined"))

    def test_node(self):
        node = Node(dict(a=1, b=dict(c=2, d=3)))
        self.assertEqual(node["b/c"], 2)
        self.assertEqual(node["a"], 1)
        self.assertEqual(node.check(), ["b/d"])

    def test_options(self):
        options = Options(
            Parameters(init_conditions_file="a.nc", dx=1.0, nz=1, dz_levels=[1])
        )
        self.assertEqual(options.vars_to_allocate, set())
        options.alloc_vars([pyicar.Var.U, int(pyicar.Var.V)])
        options.alloc_vars([pyicar.Var.U])
        self.assertEqual(options.vars_to_allocate, {pyicar.Var.U, pyicar.Var.V})
        options.restart_vars([pyicar.Var.Z])
        options.advect_vars([pyicar.Var.WATER_VAPOR])
        self.assertEqual(options.vars_for_restart, {pyicar.Var.Z})
        self.assertEqual(options.vars_to_advect, {pyicar.Var.WATER_VAPOR})


if __name__ == "__main__":
    unittest.main()
