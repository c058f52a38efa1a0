import math
import unittest

import numpy as np

from gridpole_rl.features import (
    IdentityExtractor,
    LidarSensorExtractor,
    NormalizedDistanceExtractor,
    RawPositionExtractor,
    SensorFlags,
    make_extractor,
)
from gridpole_sim import GridWorld
from gridpole_sim.errors import ConfigurationError


class TestFeatureExtractors(unittest.TestCase):
    def setUp(self):
        self.meta = GridWorld(grid_size=6).metadata

    def test_raw_position(self):
        ext = RawPositionExtractor(self.meta)
        out = ext((2, 4))
        self.assertEqual(out.dtype, np.float32)
        np.testing.assert_array_equal(out, [2.0, 4.0])
        with self.assertRaises(ValueError):
            ext((6, 0))

    def test_normalized_distance_at_start(self):
        out = NormalizedDistanceExtractor(self.meta)((0, 0))
        np.testing.assert_allclose(out, [0.0, 0.0, 5 / 6, 5 / 6, 3 / 6, 3 / 6], rtol=1e-6)

    def test_lidar_at_start(self):
        out = LidarSensorExtractor(self.meta)((0, 0))
        self.assertEqual(out.shape, (11,))
        np.testing.assert_allclose(out[:2], [1.0, 1.0])
        # up, down, left, right
        np.testing.assert_array_equal(out[2:6], [0.0, 1.0, 0.0, 1.0])
        # up-left, up-right, down-left, down-right
        np.testing.assert_array_equal(out[6:10], [0.0, 0.0, 0.0, 1.0])
        expected_pit = 1.0 - math.hypot(3, 3) / (math.sqrt(2.0) * 5)
        self.assertAlmostEqual(float(out[10]), expected_pit, places=6)

    def test_lidar_sees_blocked_neighbours(self):
        out = LidarSensorExtractor(self.meta)((1, 1))
        self.assertEqual(out[5], 0.0)  # right neighbour (1, 2) is blocked
        self.assertEqual(out[7], 1.0)  # up-right (0, 2) is free
        self.assertEqual(out[9], 0.0)  # down-right (2, 2) is blocked

    def test_lidar_pit_counts_as_available(self):
        out = LidarSensorExtractor(self.meta)((3, 2))
        self.assertEqual(out[5], 1.0)  # (3, 3) is the pit, not a wall

    def test_pit_proximity_peaks_on_pit(self):
        ext = LidarSensorExtractor(self.meta)
        self.assertAlmostEqual(float(ext((3, 3))[10]), 1.0)
        self.assertLess(float(ext((5, 5))[10]), float(ext((4, 4))[10]))

    def test_disabled_groups_are_zeroed(self):
        flags = SensorFlags(goal_localization=False, straight_sensors=True, diagonal_sensors=False, pit_distance=False)
        out = LidarSensorExtractor(self.meta, flags)((0, 0))
        self.assertEqual(out.shape, (11,))
        np.testing.assert_array_equal(out[:2], [0.0, 0.0])
        np.testing.assert_array_equal(out[6:], np.zeros(5))
        self.assertEqual(float(out[2:6].sum()), 2.0)

    def test_all_flags_off_fails_validation(self):
        flags = SensorFlags(False, False, False, False)
        self.assertFalse(flags.any_enabled())
        with self.assertRaises(ConfigurationError):
            LidarSensorExtractor(self.meta, flags).validate()

    def test_sensor_flags_from_dict(self):
        flags = SensorFlags.from_dict({"pit_distance": False})
        self.assertFalse(flags.pit_distance)
        self.assertTrue(flags.goal_localization)
        with self.assertRaises(ConfigurationError):
            SensorFlags.from_dict({"sonar": True})

    def test_identity_copies_observation(self):
        obs = np.array([0.1, 0.2, 0.3, 0.4])
        out = IdentityExtractor()(obs)
        obs[0] = 9.0
        self.assertAlmostEqual(float(out[0]), 0.1, places=6)
        with self.assertRaises(ValueError):
            IdentityExtractor()((1.0, 2.0))

    def test_factory(self):
        self.assertEqual(make_extractor("lidar", metadata=self.meta).dim, 11)
        self.assertEqual(make_extractor("distance", metadata=self.meta).dim, 6)
        self.assertEqual(make_extractor("raw", metadata=self.meta).dim, 2)
        self.assertEqual(make_extractor("identity").dim, 4)
        with self.assertRaises(ConfigurationError):
            make_extractor("lidar")
        with self.assertRaises(ConfigurationError):
            make_extractor("pixels", metadata=self.meta)


if __name__ == "__main__":
    unittest.main()
