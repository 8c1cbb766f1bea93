"""
Rigid pose value types shared by the hand-eye and multi-camera solvers.

Quaternions are stored scalar-last as [x, y, z, w], the convention used by
scipy.spatial.transform.Rotation.
"""

import numpy as np
from dataclasses import dataclass, field
from scipy.spatial.transform import Rotation


@dataclass(frozen=True, eq=False)
class Pose:
    """Rigid transform as a unit quaternion [x, y, z, w] and a translation."""
    rotation: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, 0.0, 1.0]))
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self):
        q = np.asarray(self.rotation, dtype=float).reshape(-1)
        t = np.asarray(self.translation, dtype=float).reshape(-1)
        if q.shape != (4,):
            raise ValueError(f"Quaternion must have 4 components, got {q.shape}")
        if t.shape != (3,):
            raise ValueError(f"Translation must have 3 components, got {t.shape}")

        norm = np.linalg.norm(q)
        if not np.isfinite(norm) or norm == 0.0:
            raise ValueError("Quaternion must have a finite, non-zero norm")

        object.__setattr__(self, 'rotation', q / norm)
        object.__setattr__(self, 'translation', t)

    @classmethod
    def identity(cls) -> 'Pose':
        return cls()

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> 'Pose':
        """Build a pose from a 4x4 homogeneous matrix."""
        T = np.asarray(T, dtype=float)
        if T.shape != (4, 4):
            raise ValueError(f"Expected a 4x4 transform, got {T.shape}")
        q = Rotation.from_matrix(T[:3, :3]).as_quat()
        return cls(q, T[:3, 3])

    @classmethod
    def from_rotation_vector(cls, rotvec: np.ndarray, translation: np.ndarray) -> 'Pose':
        """Inverse of rotation_vector(): the exponential map of so(3)."""
        return cls(Rotation.from_rotvec(np.asarray(rotvec, dtype=float)).as_quat(), translation)

    def rotation_matrix(self) -> np.ndarray:
        return Rotation.from_quat(self.rotation).as_matrix()

    def rotation_vector(self) -> np.ndarray:
        """Logarithm of the rotation as an axis-angle vector (angle in [0, pi])."""
        return Rotation.from_quat(self.rotation).as_rotvec()

    def as_matrix(self) -> np.ndarray:
        T = np.eye(4)
        T[:3, :3] = self.rotation_matrix()
        T[:3, 3] = self.translation
        return T

    def inverse(self) -> 'Pose':
        R_inv = Rotation.from_quat(self.rotation).inv()
        return Pose(R_inv.as_quat(), -R_inv.apply(self.translation))

    def compose(self, other: 'Pose') -> 'Pose':
        """self * other: other is applied first."""
        R = Rotation.from_quat(self.rotation)
        rotation = R * Rotation.from_quat(other.rotation)
        return Pose(rotation.as_quat(), R.apply(other.translation) + self.translation)

    def __matmul__(self, other: 'Pose') -> 'Pose':
        return self.compose(other)

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Apply the pose to a single 3-vector or an (N, 3) array."""
        return Rotation.from_quat(self.rotation).apply(np.asarray(points, dtype=float)) + self.translation

    def canonical(self) -> 'Pose':
        """Same pose with the quaternion sign chosen so that w >= 0."""
        if self.rotation[3] < 0:
            return Pose(-self.rotation, self.translation)
        return self

    def __repr__(self):
        t = self.translation
        q = self.rotation
        return (f"Pose(t=[{t[0]:.6f}, {t[1]:.6f}, {t[2]:.6f}], "
                f"q=[{q[0]:.6f}, {q[1]:.6f}, {q[2]:.6f}, {q[3]:.6f}])")


@dataclass(frozen=True, eq=False)
class ErrorPose(Pose):
    """
    Pose with a 6x6 covariance-like matrix.

    The refiner fills the diagonal with its final residual, so the matrix is
    a quality score rather than a calibrated uncertainty.
    """
    covariance: np.ndarray = field(default_factory=lambda: np.eye(6))

    def __post_init__(self):
        super().__post_init__()
        cov = np.asarray(self.covariance, dtype=float)
        if cov.shape != (6, 6):
            raise ValueError(f"Covariance must be 6x6, got {cov.shape}")
        object.__setattr__(self, 'covariance', cov)

    @classmethod
    def with_residual(cls, pose: Pose, residual: float) -> 'ErrorPose':
        return cls(pose.rotation, pose.translation, np.eye(6) * residual)

    @property
    def pose(self) -> Pose:
        return Pose(self.rotation, self.translation)


def as_matrix(transform, dtype=None) -> np.ndarray:
    """Return a 4x4 homogeneous matrix for either a Pose or a matrix-like."""
    if isinstance(transform, Pose):
        T = transform.as_matrix()
    else:
        T = np.asarray(transform)
        if T.shape != (4, 4):
            raise ValueError(f"Expected a 4x4 transform, got {T.shape}")
    return T.astype(dtype if dtype is not None else np.result_type(T, np.float32), copy=False)
