"""
Multi-camera 6-DoF pose refinement.

Refines the pose of a target observed by several calibrated cameras by
minimizing the stacked reprojection error with Levenberg-Marquardt. The
pose is parameterized as [tx, ty, tz, wx, wy, wz], where w is the rotation
vector (so(3) logarithm) of the target rotation.
"""

import logging
import numpy as np
from dataclasses import dataclass, field
from typing import List, Optional, Sequence
from scipy.optimize import least_squares
from scipy.spatial.transform import Rotation

from .config import CalibrationConfig, StoppingPolicy
from .exceptions import InsufficientDataError, SingularSystemError
from .observations import (
    ObservationSet, aggregate_observations, check_consistency, partition_local_bundles
)
from .pose_seeding import MIN_SEED_CORRESPONDENCES, estimate_camera_pose
from .poses import ErrorPose, Pose
from .utils import skew


LOGGER = logging.getLogger(__name__)

REJECTED_RESIDUAL = -1.0
PARAMETER_COUNT = 6
MIN_DEPTH = 1e-12
# MINPACK rejects tolerances at or below machine epsilon
FTOL_FLOOR = 10 * np.finfo(float).eps


@dataclass
class PoseEstimationResult:
    """Outcome of one multi-camera pose estimation."""
    success: bool
    pose: ErrorPose = field(default_factory=ErrorPose)
    residual: float = REJECTED_RESIDUAL
    num_observations: int = 0
    camera_counts: List[int] = field(default_factory=list)
    iterations: int = 0

    @property
    def rejected(self) -> bool:
        """Not enough observations yet; safe to retry with more data."""
        return not self.success


def _to_pose(transform) -> Pose:
    if isinstance(transform, Pose):
        return transform
    return Pose.from_matrix(transform)


def left_jacobian(rotvec: np.ndarray) -> np.ndarray:
    """Left Jacobian of SO(3): exp(w + d) ~ exp(J(w) d) exp(w) for small d."""
    theta = np.linalg.norm(rotvec)
    K = skew(rotvec)
    if theta < 1e-6:
        return np.eye(3) + 0.5 * K + K @ K / 6.0
    return (np.eye(3)
            + (1 - np.cos(theta)) / theta**2 * K
            + (theta - np.sin(theta)) / theta**3 * K @ K)


class ReprojectionObjective:
    """
    Residual and Jacobian of the multi-camera reprojection error.

    Each observation m contributes measured_m - project(K_c (E_c (pose X_m))),
    where E_c maps the shared frame into camera c.
    """

    def __init__(self, observation_set: ObservationSet,
                 cam_extrinsics: Sequence[Pose], cam_intrinsics: Sequence[np.ndarray]):
        observations = observation_set.observations
        point_idx = np.array([obs.point_index for obs in observations], dtype=int)
        cam_idx = np.array([obs.camera_index for obs in observations], dtype=int)

        cam_rotations = np.array([E.rotation_matrix() for E in cam_extrinsics]).reshape(-1, 3, 3)
        cam_translations = np.array([E.translation for E in cam_extrinsics]).reshape(-1, 3)
        cam_matrices = np.array(cam_intrinsics, dtype=float).reshape(-1, 3, 3)

        self.points = observation_set.points3d[point_idx].reshape(-1, 3)
        self.measured = observation_set.measurements().reshape(-1, 2)
        self.cam_rotations = cam_rotations[cam_idx]
        self.cam_translations = cam_translations[cam_idx]
        # d(homogeneous image point) / d(point in shared frame)
        self.projection = np.einsum('mij,mjk->mik', cam_matrices[cam_idx], self.cam_rotations)
        self.cam_offsets = np.einsum('mij,mj->mi', cam_matrices[cam_idx], self.cam_translations)

    def __len__(self):
        return 2 * len(self.points)

    def _homogeneous(self, params: np.ndarray):
        rotated = Rotation.from_rotvec(params[3:6]).apply(self.points)
        world = rotated + params[0:3]
        h = np.einsum('mij,mj->mi', self.projection, world) + self.cam_offsets
        if np.any(np.abs(h[:, 2]) < MIN_DEPTH):
            raise SingularSystemError("A point projects onto a camera's principal plane")
        return rotated, h

    def project(self, params: np.ndarray) -> np.ndarray:
        """Predicted pixels, shape [M, 2]."""
        _, h = self._homogeneous(params)
        return h[:, :2] / h[:, 2:3]

    def residuals(self, params: np.ndarray) -> np.ndarray:
        return (self.measured - self.project(params)).ravel()

    def jacobian(self, params: np.ndarray) -> np.ndarray:
        """Analytic derivative of residuals() with respect to the 6 parameters."""
        rotated, h = self._homogeneous(params)
        inv_z = 1.0 / h[:, 2]

        # d(pixel) / d(homogeneous point), shape [M, 2, 3]
        D = np.zeros((len(h), 2, 3))
        D[:, 0, 0] = inv_z
        D[:, 1, 1] = inv_z
        D[:, 0, 2] = -h[:, 0] * inv_z**2
        D[:, 1, 2] = -h[:, 1] * inv_z**2

        DA = np.einsum('mij,mjk->mik', D, self.projection)
        J_l = left_jacobian(params[3:6])
        d_rot = np.array([-skew(p) @ J_l for p in rotated]).reshape(-1, 3, 3)

        J = np.empty((len(h), 2, PARAMETER_COUNT))
        J[:, :, 0:3] = -DA
        J[:, :, 3:6] = -np.einsum('mij,mjk->mik', DA, d_rot)
        return J.reshape(-1, PARAMETER_COUNT)


class MultiCameraPoseRefiner:
    """
    Estimates a target pose from 2D observations in several calibrated cameras.

    Camera extrinsics map points of the shared target frame into each camera
    frame; intrinsics are 3x3 pinhole matrices.
    """

    def __init__(self, min_correspondences: int = 4,
                 stopping: Optional[StoppingPolicy] = None,
                 pnp_method: str = "sqpnp",
                 logger: Optional[logging.Logger] = None):
        """
        Args:
            min_correspondences: Observations every camera must contribute
            stopping: Levenberg-Marquardt termination criteria
            pnp_method: Single-camera solver used when no initial pose is given
            logger: Logger for diagnostics
        """
        self.min_correspondences = min_correspondences
        self.stopping = stopping or StoppingPolicy()
        self.pnp_method = pnp_method
        self.logger = logger or LOGGER

    @classmethod
    def from_config(cls, config: CalibrationConfig,
                    logger: Optional[logging.Logger] = None) -> 'MultiCameraPoseRefiner':
        return cls(min_correspondences=config.min_correspondences,
                   stopping=config.stopping,
                   pnp_method=config.pnp_method,
                   logger=logger)

    def estimate_pose(self, points3d, points2d, weights, cam_extrinsics, cam_intrinsics,
                      initial_pose=None, start: int = 0,
                      end: Optional[int] = None) -> PoseEstimationResult:
        """
        Estimate the target pose from the observations of a point range.

        Args:
            points3d: Model points in the target frame, shape [N, 3]
            points2d: Per camera, measured image points of shape [N, 2]
            weights: Per camera, N weights; 0 marks a missing observation
            cam_extrinsics: Per camera, Pose or 4x4 matrix (shared frame -> camera)
            cam_intrinsics: Per camera, 3x3 intrinsic matrix
            initial_pose: Optional starting pose (target -> shared frame)
            start: First model point used
            end: Last model point used, inclusive (last point if None)

        Returns:
            PoseEstimationResult; success is False (residual -1) when some
            camera has fewer than min_correspondences observations

        Raises:
            InsufficientDataError: fewer than three model points
            InconsistentInputError: per-camera inputs disagree
            SingularSystemError: the optimization is degenerate
        """
        check_consistency(points3d, points2d, weights, cam_extrinsics, cam_intrinsics,
                          logger=self.logger)
        return self._estimate(points3d, points2d, weights,
                              [_to_pose(E) for E in cam_extrinsics], cam_intrinsics,
                              None if initial_pose is None else _to_pose(initial_pose),
                              start, end)

    def estimate_local_bundles(self, points3d, points2d, weights, cam_extrinsics,
                               cam_intrinsics,
                               bundle_sizes: Sequence[int]) -> List[PoseEstimationResult]:
        """
        Estimate one pose per local bundle of consecutive model points.

        Bundles are taken in declared order starting at point 0 and are
        always initialized by single-camera PnP.

        Returns:
            One PoseEstimationResult per bundle
        """
        check_consistency(points3d, points2d, weights, cam_extrinsics, cam_intrinsics,
                          logger=self.logger)
        bundles = partition_local_bundles(bundle_sizes, len(points3d))
        extrinsics = [_to_pose(E) for E in cam_extrinsics]

        self.logger.debug("Processing %d local bundles...", len(bundles))
        results = []
        for index, bundle in enumerate(bundles):
            self.logger.debug("Local bundle %d has %d points, offset %d",
                              index, bundle.size, bundle.start)
            results.append(self._estimate(points3d, points2d, weights, extrinsics,
                                          cam_intrinsics, None, bundle.start, bundle.end))
        return results

    def _estimate(self, points3d, points2d, weights, cam_extrinsics: List[Pose],
                  cam_intrinsics, initial_pose: Optional[Pose],
                  start: int, end: Optional[int]) -> PoseEstimationResult:
        observation_set = aggregate_observations(points3d, points2d, weights, start, end,
                                                 logger=self.logger)

        if not self._is_feasible(observation_set, initial_pose is not None):
            self.logger.debug("Not enough observations. Only %d observations available for some camera",
                              observation_set.min_count)
            return PoseEstimationResult(
                success=False,
                num_observations=observation_set.total,
                camera_counts=list(observation_set.camera_counts),
            )

        if initial_pose is None:
            initial_pose = self._seed_pose(observation_set, cam_extrinsics, cam_intrinsics)

        if observation_set.total * 2 < PARAMETER_COUNT:
            self.logger.error("Only %d observations for %d pose parameters",
                              observation_set.total, PARAMETER_COUNT)
            raise InsufficientDataError(
                f"At least {PARAMETER_COUNT // 2} observations are needed, "
                f"got {observation_set.total}")

        objective = ReprojectionObjective(observation_set, cam_extrinsics, cam_intrinsics)
        self.logger.debug("Optimizing pose over %d cameras using %d observations",
                          len(cam_extrinsics), observation_set.total)

        params = np.concatenate([initial_pose.translation, initial_pose.rotation_vector()])
        result = least_squares(
            objective.residuals,
            params,
            jac=objective.jacobian,
            method='lm',
            ftol=max(self.stopping.min_improvement, FTOL_FLOOR),
            max_nfev=self.stopping.max_iterations,
        )

        if np.linalg.matrix_rank(result.jac) < PARAMETER_COUNT:
            self.logger.error("Normal equations are singular; the observations do not fix the pose")
            raise SingularSystemError("Normal equations of the pose refinement are singular")

        residual = float(np.sqrt(np.mean(result.fun ** 2)))
        pose = Pose.from_rotation_vector(result.x[3:6], result.x[0:3]).canonical()
        final_pose = ErrorPose.with_residual(pose, residual)
        self.logger.debug("Estimated pose: %s, residual: %g (%d evaluations, %s)",
                          pose, residual, result.nfev, result.message)

        return PoseEstimationResult(
            success=True,
            pose=final_pose,
            residual=residual,
            num_observations=observation_set.total,
            camera_counts=list(observation_set.camera_counts),
            iterations=int(result.nfev),
        )

    def _is_feasible(self, observation_set: ObservationSet, has_initial_pose: bool) -> bool:
        return (observation_set.min_count >= self.min_correspondences
                and (has_initial_pose or observation_set.max_count >= MIN_SEED_CORRESPONDENCES))

    def _seed_pose(self, observation_set: ObservationSet, cam_extrinsics: List[Pose],
                   cam_intrinsics) -> Pose:
        """PnP on the camera with the most observations, mapped into the shared frame."""
        camera = observation_set.max_camera
        self.logger.debug("Compute initial pose with %d observations for camera %d",
                          observation_set.camera_counts[camera], camera)
        target_in_camera = estimate_camera_pose(
            observation_set.camera_points3d[camera],
            observation_set.camera_pixels[camera],
            cam_intrinsics[camera],
            method=self.pnp_method,
        )
        initial_pose = cam_extrinsics[camera].inverse() @ target_in_camera
        self.logger.debug("Initial pose %s", initial_pose)
        return initial_pose


def multiple_camera_estimate_pose(points3d, points2d, weights, cam_extrinsics, cam_intrinsics,
                                  min_correspondences: int, initial_pose=None,
                                  start: int = 0, end: Optional[int] = None,
                                  stopping: Optional[StoppingPolicy] = None,
                                  logger: Optional[logging.Logger] = None) -> PoseEstimationResult:
    """Functional form of MultiCameraPoseRefiner.estimate_pose."""
    refiner = MultiCameraPoseRefiner(min_correspondences, stopping, logger=logger)
    return refiner.estimate_pose(points3d, points2d, weights, cam_extrinsics, cam_intrinsics,
                                 initial_pose, start, end)


def multiple_camera_estimate_local_bundles(points3d, points2d, weights, cam_extrinsics,
                                           cam_intrinsics, min_correspondences: int,
                                           bundle_sizes: Sequence[int],
                                           stopping: Optional[StoppingPolicy] = None,
                                           logger: Optional[logging.Logger] = None
                                           ) -> List[PoseEstimationResult]:
    """Functional form of MultiCameraPoseRefiner.estimate_local_bundles."""
    refiner = MultiCameraPoseRefiner(min_correspondences, stopping, logger=logger)
    return refiner.estimate_local_bundles(points3d, points2d, weights, cam_extrinsics,
                                          cam_intrinsics, bundle_sizes)
