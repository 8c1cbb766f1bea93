#!/usr/bin/env python3
"""
Unit tests for observation aggregation and local bundle partitioning.
"""

import unittest
import numpy as np
import os
import sys

# Add package to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tracking_calibration.exceptions import InconsistentInputError, InsufficientDataError
from tracking_calibration.observations import (
    aggregate_observations,
    check_consistency,
    partition_local_bundles,
)


class TestAggregateObservations(unittest.TestCase):
    """Test collecting weighted correspondences per camera."""

    def setUp(self):
        self.points3d = np.arange(15, dtype=float).reshape(5, 3)
        self.points2d = [
            np.arange(10, dtype=float).reshape(5, 2),
            np.arange(10, 20, dtype=float).reshape(5, 2),
        ]
        self.weights = [
            [1.0, 0.0, 1.0, 1.0, 0.0],
            [1.0, 1.0, 1.0, 1.0, 1.0],
        ]

    def test_counts(self):
        observation_set = aggregate_observations(self.points3d, self.points2d, self.weights)
        self.assertEqual(observation_set.camera_counts, [3, 5])
        self.assertEqual(observation_set.total, 8)
        self.assertEqual(observation_set.min_count, 3)
        self.assertEqual(observation_set.max_count, 5)
        self.assertEqual(observation_set.max_camera, 1)
        self.assertEqual((observation_set.start, observation_set.end), (0, 4))

    def test_order_and_values(self):
        observation_set = aggregate_observations(self.points3d, self.points2d, self.weights)
        first = observation_set.observations[0]
        self.assertEqual((first.point_index, first.camera_index), (0, 0))
        np.testing.assert_array_equal(first.pixel, [0.0, 1.0])

        cameras = [obs.camera_index for obs in observation_set.observations]
        self.assertEqual(cameras, sorted(cameras))
        self.assertEqual([obs.point_index for obs in observation_set.observations[:3]], [0, 2, 3])

        measurements = observation_set.measurements()
        self.assertEqual(measurements.shape, (16,))
        np.testing.assert_array_equal(measurements[:6], [0, 1, 4, 5, 6, 7])

    def test_per_camera_points(self):
        observation_set = aggregate_observations(self.points3d, self.points2d, self.weights)
        np.testing.assert_array_equal(observation_set.camera_points3d[0], self.points3d[[0, 2, 3]])
        np.testing.assert_array_equal(observation_set.camera_pixels[0],
                                      self.points2d[0][[0, 2, 3]])
        self.assertEqual(observation_set.camera_points3d[1].shape, (5, 3))

    def test_range(self):
        observation_set = aggregate_observations(self.points3d, self.points2d, self.weights,
                                                 start=1, end=2)
        self.assertEqual(observation_set.camera_counts, [1, 2])
        self.assertEqual(len(observation_set.points3d), 2)
        # point indices are relative to the start of the range
        self.assertEqual([obs.point_index for obs in observation_set.observations], [1, 0, 1])
        np.testing.assert_array_equal(observation_set.points3d[0], self.points3d[1])

    def test_ties_pick_first_camera(self):
        weights = [[1.0] * 5, [1.0] * 5]
        observation_set = aggregate_observations(self.points3d, self.points2d, weights)
        self.assertEqual(observation_set.max_camera, 0)

    def test_empty_range(self):
        observation_set = aggregate_observations(self.points3d, self.points2d, self.weights,
                                                 start=3, end=2)
        self.assertEqual(observation_set.total, 0)
        self.assertEqual(observation_set.camera_counts, [0, 0])
        self.assertEqual(observation_set.measurements().shape, (0,))

    def test_invalid_range(self):
        with self.assertRaises(InconsistentInputError):
            aggregate_observations(self.points3d, self.points2d, self.weights, start=-1)
        with self.assertRaises(InconsistentInputError):
            aggregate_observations(self.points3d, self.points2d, self.weights, end=5)
        with self.assertRaises(InconsistentInputError):
            aggregate_observations(self.points3d, self.points2d, self.weights, start=4, end=2)


class TestCheckConsistency(unittest.TestCase):
    """Test input validation of multi-camera pose estimation."""

    def setUp(self):
        self.points3d = np.zeros((4, 3))
        self.points2d = [np.zeros((4, 2)), np.zeros((4, 2))]
        self.weights = [np.ones(4), np.ones(4)]
        self.extrinsics = [np.eye(4), np.eye(4)]
        self.intrinsics = [np.eye(3), np.eye(3)]

    def test_valid_input(self):
        check_consistency(self.points3d, self.points2d, self.weights,
                          self.extrinsics, self.intrinsics)

    def test_too_few_points(self):
        with self.assertRaises(InsufficientDataError):
            check_consistency(self.points3d[:2], [p[:2] for p in self.points2d],
                              [w[:2] for w in self.weights], self.extrinsics, self.intrinsics)

    def test_camera_count_mismatch(self):
        with self.assertRaises(InconsistentInputError):
            check_consistency(self.points3d, self.points2d, self.weights,
                              self.extrinsics, self.intrinsics[:1])
        with self.assertRaises(InconsistentInputError):
            check_consistency(self.points3d, self.points2d[:1], self.weights,
                              self.extrinsics, self.intrinsics)

    def test_point_count_mismatch(self):
        points2d = [np.zeros((4, 2)), np.zeros((3, 2))]
        with self.assertRaises(InconsistentInputError):
            check_consistency(self.points3d, points2d, self.weights,
                              self.extrinsics, self.intrinsics)

        weights = [np.ones(4), np.ones(5)]
        with self.assertRaises(InconsistentInputError):
            check_consistency(self.points3d, self.points2d, weights,
                              self.extrinsics, self.intrinsics)


class TestLocalBundles(unittest.TestCase):
    """Test splitting model points into local bundles."""

    def test_partition(self):
        bundles = partition_local_bundles([2, 3], 6)
        self.assertEqual([(b.start, b.end) for b in bundles], [(0, 1), (2, 4)])
        self.assertEqual([b.size for b in bundles], [2, 3])

    def test_zero_size_bundle(self):
        bundles = partition_local_bundles([2, 0, 1], 3)
        self.assertEqual(bundles[1].size, 0)
        self.assertEqual((bundles[2].start, bundles[2].end), (2, 2))

    def test_too_many_points(self):
        with self.assertRaises(InconsistentInputError):
            partition_local_bundles([4, 3], 6)

    def test_negative_size(self):
        with self.assertRaises(InconsistentInputError):
            partition_local_bundles([2, -1], 6)


if __name__ == '__main__':
    unittest.main()
