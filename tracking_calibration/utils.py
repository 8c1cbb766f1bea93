"""
Utility functions for rigid transforms and calibration file I/O.
"""

import numpy as np
import yaml
import os
from typing import Dict, Any, List, Optional

from .exceptions import SingularSystemError
from .poses import Pose


def load_yaml(path: str) -> Dict[str, Any]:
    """Load a YAML file, skipping full-line comments."""
    with open(path, 'r') as f:
        lines = [l for l in f.read().split('\n') if not l.strip().startswith('#')]
    data = yaml.safe_load('\n'.join(lines))
    return data if data else {}


def skew(v: np.ndarray) -> np.ndarray:
    """Cross-product matrix: skew(v) @ u == np.cross(v, u)."""
    return np.array([
        [0.0, -v[2], v[1]],
        [v[2], 0.0, -v[0]],
        [-v[1], v[0], 0.0]
    ], dtype=np.result_type(v, np.float32))


def quaternion_from_matrix(R: np.ndarray) -> np.ndarray:
    """
    Convert a 3x3 rotation matrix to a quaternion [x, y, z, w] with w >= 0.

    Picks the largest of the four diagonal combinations as pivot so the
    division stays well conditioned. Keeps the dtype of R.
    """
    R = np.asarray(R)
    diag = np.array([
        1 + R[0, 0] + R[1, 1] + R[2, 2],
        1 + R[0, 0] - R[1, 1] - R[2, 2],
        1 - R[0, 0] + R[1, 1] - R[2, 2],
        1 - R[0, 0] - R[1, 1] + R[2, 2],
    ]) / 4
    pivot = int(np.argmax(diag))
    s = np.sqrt(diag[pivot])

    if pivot == 0:
        w = s
        x = (R[2, 1] - R[1, 2]) / (4 * s)
        y = (R[0, 2] - R[2, 0]) / (4 * s)
        z = (R[1, 0] - R[0, 1]) / (4 * s)
    elif pivot == 1:
        x = s
        w = (R[2, 1] - R[1, 2]) / (4 * s)
        y = (R[1, 0] + R[0, 1]) / (4 * s)
        z = (R[0, 2] + R[2, 0]) / (4 * s)
    elif pivot == 2:
        y = s
        w = (R[0, 2] - R[2, 0]) / (4 * s)
        x = (R[1, 0] + R[0, 1]) / (4 * s)
        z = (R[2, 1] + R[1, 2]) / (4 * s)
    else:
        z = s
        w = (R[1, 0] - R[0, 1]) / (4 * s)
        x = (R[0, 2] + R[2, 0]) / (4 * s)
        y = (R[2, 1] + R[1, 2]) / (4 * s)

    q = np.array([x, y, z, w], dtype=R.dtype)
    return -q if w < 0 else q


def rotation_vector_part(q: np.ndarray) -> np.ndarray:
    """Vector part of a unit quaternion [x, y, z, w], sign fixed so that w >= 0."""
    q = np.asarray(q)
    q = q / np.linalg.norm(q)
    return -q[:3] if q[3] < 0 else q[:3]


def invert_transform(T: np.ndarray) -> np.ndarray:
    """
    Invert a 4x4 homogeneous transform.

    Raises:
        SingularSystemError: if the matrix is not invertible
    """
    try:
        return np.linalg.inv(T)
    except np.linalg.LinAlgError as e:
        raise SingularSystemError(f"Transform is not invertible: {e}") from e


def load_transforms(path: str) -> List[np.ndarray]:
    """
    Load a sequence of rigid transforms.

    Supports a .npy stack of shape [N, 4, 4] or a YAML file holding a list of
    [x, y, z, qx, qy, qz, qw] entries (optionally under a 'transforms' key).
    """
    if path.endswith('.npy'):
        stack = np.load(path)
        if stack.ndim != 3 or stack.shape[1:] != (4, 4):
            raise ValueError(f"Expected an [N, 4, 4] array in {path}, got {stack.shape}")
        return [T for T in stack]

    data = load_yaml(path)
    entries = data['transforms'] if isinstance(data, dict) else data
    transforms = []
    for value in entries:
        if len(value) != 7:
            raise ValueError(f"Expected [x, y, z, qx, qy, qz, qw], got {value}")
        transforms.append(Pose(value[3:], value[:3]).as_matrix())
    return transforms


def _pose_value(pose: Pose) -> str:
    t = pose.translation
    q = pose.canonical().rotation
    return (f"[{t[0]:.6f}, {t[1]:.6f}, {t[2]:.6f}, "
            f"{q[0]:.6f}, {q[1]:.6f}, {q[2]:.6f}, {q[3]:.6f}]")


def save_pose_yaml(pose: Pose, output_path: str, parent: str, child: str,
                   residual: Optional[float] = None):
    """
    Save a single calibrated pose in the [x, y, z, qx, qy, qz, qw] layout.

    Args:
        pose: Calibrated pose (child expressed in parent)
        output_path: Path to save the YAML file
        parent: Name of the parent frame
        child: Name of the child frame
        residual: Optional optimization residual to record
    """
    save_poses_yaml({child: (pose, residual)}, output_path, parent)


def save_poses_yaml(poses: Dict[str, Any], output_path: str, parent: str):
    """
    Save several poses sharing one parent frame.

    Args:
        poses: Dict mapping child name -> (Pose, residual or None)
        output_path: Path to save the YAML file
        parent: Name of the parent frame
    """
    lines = [
        "# Position xyz; Quaternions xyzw",
        "# [ x_m, y_m, z_m, qx, qy, qz, qw]",
    ]
    for child, (pose, residual) in poses.items():
        lines.append(f"{child}:")
        lines.append(f'  parent: "{parent}"')
        lines.append(f'  child: "{child}"')
        lines.append(f"  value: {_pose_value(pose)}")
        if residual is not None:
            lines.append(f"  residual: {float(residual):.6g}")

    directory = os.path.dirname(output_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(output_path, 'w') as f:
        f.write('\n'.join(lines) + '\n')


