"""
Aggregation of multi-camera 2D-3D correspondences.

Each camera reports one 2D point and one weight per 3D model point. A
correspondence takes part in the pose estimation only if its weight is
non-zero.
"""

import logging
import numpy as np
from dataclasses import dataclass, field
from typing import List, NamedTuple, Optional, Sequence

from .exceptions import InconsistentInputError, InsufficientDataError


LOGGER = logging.getLogger(__name__)
TRACE_LOGGER = logging.getLogger(__name__ + '.trace')

MIN_MODEL_POINTS = 3


class Observation(NamedTuple):
    """One retained correspondence."""
    point_index: int    # relative to the start of the aggregated range
    camera_index: int
    pixel: np.ndarray   # measured 2D point
    weight: float


class LocalBundle(NamedTuple):
    """Contiguous, inclusive range of model points posed independently."""
    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start + 1


@dataclass
class ObservationSet:
    """Correspondences retained over one point range, grouped for the solvers."""
    observations: List[Observation]
    camera_counts: List[int]
    points3d: np.ndarray                 # model points of the range
    start: int
    end: int
    camera_points3d: List[np.ndarray] = field(default_factory=list)
    camera_pixels: List[np.ndarray] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.observations)

    @property
    def min_count(self) -> int:
        return min(self.camera_counts) if self.camera_counts else 0

    @property
    def max_count(self) -> int:
        return max(self.camera_counts) if self.camera_counts else 0

    @property
    def max_camera(self) -> int:
        """Index of the first camera with the most observations."""
        return int(np.argmax(self.camera_counts)) if self.camera_counts else -1

    def measurements(self) -> np.ndarray:
        """Measured pixels stacked into one vector [u0, v0, u1, v1, ...]."""
        if not self.observations:
            return np.zeros(0)
        return np.concatenate([obs.pixel for obs in self.observations])


def check_consistency(points3d: Sequence, points2d: Sequence, weights: Sequence,
                      cam_extrinsics: Sequence, cam_intrinsics: Sequence,
                      logger: Optional[logging.Logger] = None):
    """
    Validate the shapes of multi-camera pose estimation inputs.

    Raises:
        InsufficientDataError: fewer than three model points
        InconsistentInputError: camera counts or per-camera lengths disagree
    """
    log = logger or LOGGER

    if len(points3d) < MIN_MODEL_POINTS:
        log.error("Pose estimation requires at least %d points, got %d",
                  MIN_MODEL_POINTS, len(points3d))
        raise InsufficientDataError(
            f"Pose estimation requires at least {MIN_MODEL_POINTS} points, got {len(points3d)}")

    num_cameras = len(weights)
    if not (len(points2d) == num_cameras == len(cam_extrinsics) == len(cam_intrinsics)):
        log.error("Camera counts disagree: points2d=%d, weights=%d, extrinsics=%d, intrinsics=%d",
                  len(points2d), num_cameras, len(cam_extrinsics), len(cam_intrinsics))
        raise InconsistentInputError("All input sets must have the same number of cameras")

    for camera_index in range(num_cameras):
        if (len(points2d[camera_index]) != len(points3d)
                or len(weights[camera_index]) != len(points3d)):
            log.error("Camera %d has %d points and %d weights for %d model points",
                      camera_index, len(points2d[camera_index]),
                      len(weights[camera_index]), len(points3d))
            raise InconsistentInputError(
                "All cameras must have the same number of measurements as 3D points")


def aggregate_observations(points3d: Sequence, points2d: Sequence, weights: Sequence,
                           start: int = 0, end: Optional[int] = None,
                           logger: Optional[logging.Logger] = None) -> ObservationSet:
    """
    Collect the non-zero-weight correspondences of a point range.

    Args:
        points3d: Model points, shape [N, 3]
        points2d: Per camera, measured points of shape [N, 2]
        weights: Per camera, N scalar weights (0 marks a missing observation)
        start: First model point of the range
        end: Last model point of the range, inclusive (last point if None)
        logger: Logger for diagnostics

    Returns:
        ObservationSet ordered by camera, then by point index
    """
    log = logger or LOGGER
    if end is None:
        end = len(points3d) - 1

    if start < 0 or end >= len(points3d) or start > end + 1:
        log.error("Invalid point range [%d, %d] for %d points", start, end, len(points3d))
        raise InconsistentInputError(
            f"Invalid point range [{start}, {end}] for {len(points3d)} points")

    model = np.asarray(points3d, dtype=float).reshape(-1, 3)
    observations: List[Observation] = []
    camera_counts = []
    camera_points3d = []
    camera_pixels = []

    for camera_index in range(len(weights)):
        camera_weights = weights[camera_index]
        camera_points = points2d[camera_index]
        kept = []
        kept_pixels = []
        for point_index in range(start, end + 1):
            weight = float(camera_weights[point_index])
            if weight == 0.0:
                continue
            pixel = np.asarray(camera_points[point_index], dtype=float).reshape(2)
            TRACE_LOGGER.debug("Observation: point %d -> camera %d, weight=%g, m=%s, X=%s",
                               point_index, camera_index, weight, pixel, model[point_index])
            observations.append(Observation(point_index - start, camera_index, pixel, weight))
            kept.append(point_index)
            kept_pixels.append(pixel)

        camera_counts.append(len(kept))
        camera_points3d.append(model[kept].reshape(-1, 3))
        camera_pixels.append(np.array(kept_pixels).reshape(-1, 2))

    log.debug("%d observations found over points [%d, %d], per camera %s",
              len(observations), start, end, camera_counts)

    return ObservationSet(
        observations=observations,
        camera_counts=camera_counts,
        points3d=model[start:end + 1],
        start=start,
        end=end,
        camera_points3d=camera_points3d,
        camera_pixels=camera_pixels,
    )


def partition_local_bundles(bundle_sizes: Sequence[int], num_points: int) -> List[LocalBundle]:
    """
    Split the model points into contiguous bundles in declared order.

    Raises:
        InconsistentInputError: a size is negative or the sizes exceed num_points
    """
    bundles = []
    offset = 0
    for size in bundle_sizes:
        size = int(size)
        if size < 0:
            raise InconsistentInputError(f"Local bundle size must not be negative, got {size}")
        bundles.append(LocalBundle(offset, offset + size - 1))
        offset += size

    if offset > num_points:
        raise InconsistentInputError(
            f"Local bundles cover {offset} points but only {num_points} are given")
    return bundles
