import unittest
import logging

import numpy as np

import pymultilayer


class TestDebug(unittest.TestCase):
    def setUp(self):
        self.logger = pymultilayer.parallel.get_logger(level="ERROR")

    def test_check_finite(self):
        mask = np.ones((3, 4))
        mask[1, 1] = 0
        domain = pymultilayer.domain.create_cartesian(
            4, 3, 2, 1.0, mask=mask, logger=self.logger
        )
        a = domain.T.array(name="a", fill=1.0)
        self.assertTrue(pymultilayer.debug.check_finite(a, self.logger))

        # non-finite values on land are ignored
        a.values[1, 1] = np.nan
        self.assertTrue(pymultilayer.debug.check_finite(a, self.logger))

        a.values[0, 2] = np.inf
        with self.assertLogs(self.logger, level=logging.ERROR) as cm:
            self.assertFalse(pymultilayer.debug.check_finite(a, self.logger))
        self.assertIn("a not finite in 1 cells", cm.output[0])


if __name__ == "__main__":
    unittest.main()
