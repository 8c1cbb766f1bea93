"""
Single-camera 2D-3D pose estimation used to seed the multi-camera refiner.
"""

import cv2
import numpy as np
from typing import Optional

from .exceptions import InsufficientDataError, SingularSystemError
from .poses import Pose


# PnP solver mapping
PNP_METHOD_MAP = {
    "iterative": cv2.SOLVEPNP_ITERATIVE,
    "sqpnp": cv2.SOLVEPNP_SQPNP,
    "epnp": cv2.SOLVEPNP_EPNP,
    "ippe": cv2.SOLVEPNP_IPPE,
}

MIN_SEED_CORRESPONDENCES = 4


def estimate_camera_pose(points3d: np.ndarray, points2d: np.ndarray,
                         camera_matrix: np.ndarray,
                         dist_coeffs: Optional[np.ndarray] = None,
                         method: str = "sqpnp") -> Pose:
    """
    Estimate the pose of a model in one camera's frame.

    Args:
        points3d: Model points, shape [N, 3]
        points2d: Measured image points, shape [N, 2]
        camera_matrix: 3x3 camera intrinsic matrix
        dist_coeffs: Distortion coefficients (None for undistorted points)
        method: Name of the PnP solver, see PNP_METHOD_MAP

    Returns:
        Pose mapping model coordinates into the camera frame

    Raises:
        InsufficientDataError: fewer than four correspondences
        SingularSystemError: the PnP solver did not find a pose
    """
    if method not in PNP_METHOD_MAP:
        raise ValueError(f"Unknown PnP method: {method}")

    obj_points = np.ascontiguousarray(points3d, dtype=np.float64).reshape(-1, 3)
    img_points = np.ascontiguousarray(points2d, dtype=np.float64).reshape(-1, 2)

    if len(obj_points) < MIN_SEED_CORRESPONDENCES or len(obj_points) != len(img_points):
        raise InsufficientDataError(
            f"Pose seeding needs at least {MIN_SEED_CORRESPONDENCES} matching "
            f"correspondences, got {len(obj_points)} 3D and {len(img_points)} 2D points")

    try:
        success, rvec, tvec = cv2.solvePnP(
            obj_points, img_points,
            np.asarray(camera_matrix, dtype=np.float64), dist_coeffs,
            flags=PNP_METHOD_MAP[method]
        )
    except cv2.error as e:
        raise SingularSystemError(f"PnP ({method}) failed: {e}") from e

    if not success:
        raise SingularSystemError(f"PnP ({method}) did not converge")

    return Pose.from_rotation_vector(rvec.flatten(), tvec.flatten())
