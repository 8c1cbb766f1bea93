#!/usr/bin/env python3
"""
Unit tests for the online rotation-only hand-eye estimator.
"""

import unittest
import numpy as np
import os
import sys

# Add package to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from scipy.spatial.transform import Rotation

from tracking_calibration.online_rotation import OnlineRotationHandEye, pseudo_inverse


def rotation_error(q_estimate, q_true):
    """Angle in radians between two rotations given as quaternions."""
    dot = abs(np.dot(q_estimate, q_true)) / (np.linalg.norm(q_estimate) * np.linalg.norm(q_true))
    return 2 * np.arccos(np.clip(dot, 0.0, 1.0))


def make_measurements(x, count, seed=0):
    """Pairs (a, b) of relative rotations with a * x = x * b."""
    rng = np.random.default_rng(seed)
    measurements = []
    for _ in range(count):
        axis = rng.normal(size=3)
        axis /= np.linalg.norm(axis)
        b = Rotation.from_rotvec(axis * rng.uniform(0.2, 2.0))
        a = x * b * x.inv()
        measurements.append((a.as_quat(), b.as_quat()))
    return measurements


class TestOnlineRotationHandEye(unittest.TestCase):
    """Test convergence and order independence of the online estimator."""

    def setUp(self):
        self.x = Rotation.from_rotvec([0.4, -0.2, 0.6])
        self.q_true = self.x.as_quat()
        self.measurements = make_measurements(self.x, 12, seed=5)

    def test_identity_before_measurements(self):
        estimator = OnlineRotationHandEye()
        np.testing.assert_array_equal(estimator.compute_result(), [0, 0, 0, 1])
        self.assertEqual(estimator.measurement_count, 0)
        self.assertFalse(estimator.is_observable)
        self.assertIsNone(estimator.state.covariance)

    def test_converges_to_true_rotation(self):
        estimator = OnlineRotationHandEye()
        for a, b in self.measurements:
            estimator.add_measurement(a, b)

        result = estimator.compute_result()
        self.assertAlmostEqual(np.linalg.norm(result), 1.0)
        self.assertGreaterEqual(result[3], 0.0)
        self.assertLess(rotation_error(result, self.q_true), 1e-6)
        self.assertEqual(estimator.measurement_count, 12)
        self.assertIsNotNone(estimator.state.covariance)

    def test_error_never_increases(self):
        estimator = OnlineRotationHandEye()
        previous = rotation_error(estimator.compute_result(), self.q_true)
        for a, b in self.measurements:
            estimator.add_measurement(a, b)
            error = rotation_error(estimator.compute_result(), self.q_true)
            self.assertLessEqual(error, previous + 1e-6)
            previous = error

    def test_observable_after_two_measurements(self):
        estimator = OnlineRotationHandEye()
        estimator.add_measurement(*self.measurements[0])
        self.assertFalse(estimator.is_observable)
        estimator.add_measurement(*self.measurements[1])
        self.assertTrue(estimator.is_observable)
        self.assertLess(rotation_error(estimator.compute_result(), self.q_true), 1e-6)

    def test_order_independence(self):
        forward = OnlineRotationHandEye()
        for a, b in self.measurements:
            forward.add_measurement(a, b)

        shuffled = OnlineRotationHandEye()
        order = np.random.default_rng(9).permutation(len(self.measurements))
        for index in order:
            shuffled.add_measurement(*self.measurements[index])

        np.testing.assert_allclose(forward.compute_result(), shuffled.compute_result(), atol=1e-9)

    def test_quaternion_sign_does_not_matter(self):
        estimator = OnlineRotationHandEye()
        for a, b in self.measurements[:4]:
            estimator.add_measurement(-a, b)
        self.assertLess(rotation_error(estimator.compute_result(), self.q_true), 1e-6)

    def test_reset(self):
        estimator = OnlineRotationHandEye()
        for a, b in self.measurements[:3]:
            estimator.add_measurement(a, b)
        estimator.reset()
        self.assertEqual(estimator.measurement_count, 0)
        np.testing.assert_array_equal(estimator.compute_result(), [0, 0, 0, 1])

    def test_state_is_a_copy(self):
        estimator = OnlineRotationHandEye()
        estimator.add_measurement(*self.measurements[0])
        state = estimator.state
        state.value[:] = 100.0
        self.assertLess(np.max(np.abs(estimator.state.value)), 100.0)


class TestPseudoInverse(unittest.TestCase):

    def test_full_rank(self):
        M = np.array([[2.0, 0.5, 0.0], [0.5, 1.0, 0.1], [0.0, 0.1, 3.0]])
        np.testing.assert_array_almost_equal(pseudo_inverse(M), np.linalg.inv(M))

    def test_rank_deficient(self):
        v = np.array([1.0, 2.0, 2.0])
        M = np.outer(v, v)
        P = pseudo_inverse(M)
        np.testing.assert_array_almost_equal(M @ P @ M, M)
        np.testing.assert_array_almost_equal(P @ v, v / 9.0)

    def test_zero(self):
        np.testing.assert_array_equal(pseudo_inverse(np.zeros((3, 3))), np.zeros((3, 3)))


if __name__ == '__main__':
    unittest.main()
