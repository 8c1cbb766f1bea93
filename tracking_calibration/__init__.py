# tracking_calibration package
"""
Extrinsic rigid-transform calibration for camera/robot tracking.

This package provides closed-form and online hand-eye calibration and
Levenberg-Marquardt refinement of a target pose seen by several
calibrated cameras.
"""

from .poses import Pose, ErrorPose
from .exceptions import (
    CalibrationError,
    SizeMismatchError,
    InsufficientDataError,
    InconsistentInputError,
    SingularSystemError,
)
from .hand_eye import HandEyeCalibrationSolver, build_measurement_pairs, perform_hand_eye_calibration
from .online_rotation import OnlineRotationHandEye
from .observations import aggregate_observations, check_consistency, partition_local_bundles
from .pose_refiner import (
    MultiCameraPoseRefiner,
    PoseEstimationResult,
    multiple_camera_estimate_pose,
    multiple_camera_estimate_local_bundles,
)
from .config import CalibrationConfig, StoppingPolicy, load_calibration_config

__all__ = [
    'Pose',
    'ErrorPose',
    'CalibrationError',
    'SizeMismatchError',
    'InsufficientDataError',
    'InconsistentInputError',
    'SingularSystemError',
    'HandEyeCalibrationSolver',
    'build_measurement_pairs',
    'perform_hand_eye_calibration',
    'OnlineRotationHandEye',
    'aggregate_observations',
    'check_consistency',
    'partition_local_bundles',
    'MultiCameraPoseRefiner',
    'PoseEstimationResult',
    'multiple_camera_estimate_pose',
    'multiple_camera_estimate_local_bundles',
    'CalibrationConfig',
    'StoppingPolicy',
    'load_calibration_config',
]
