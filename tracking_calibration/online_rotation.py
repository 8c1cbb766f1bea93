"""
Online rotation-only hand-eye calibration.

A recursive variant of the Tsai-Lenz rotation step: each pair of relative
rotations (a, b) adds one linear constraint skew(va + vb) x = vb - va on
the modified Rodrigues vector x = tan(theta/2) * axis of the unknown
rotation, so that a * x = x * b.
"""

import logging
import numpy as np
from dataclasses import dataclass, field
from typing import Optional

from .utils import rotation_vector_part, skew


# Eigenvalues below this fraction of the largest count as unobserved
RELATIVE_RANK_TOLERANCE = 1e-10


def _observed_spectrum(information: np.ndarray):
    eigenvalues, eigenvectors = np.linalg.eigh(information)
    if eigenvalues[-1] <= 0:
        return eigenvalues[:0], eigenvectors[:, :0]
    keep = eigenvalues > RELATIVE_RANK_TOLERANCE * eigenvalues[-1]
    return eigenvalues[keep], eigenvectors[:, keep]


def pseudo_inverse(information: np.ndarray) -> np.ndarray:
    """Pseudo-inverse of a symmetric positive semi-definite matrix."""
    eigenvalues, eigenvectors = _observed_spectrum(information)
    return (eigenvectors / eigenvalues) @ eigenvectors.T


def observed_rank(information: np.ndarray) -> int:
    return len(_observed_spectrum(information)[0])


@dataclass
class RotationEstimate:
    """Running estimate of the Tsai-Lenz vector and its information matrix."""
    value: np.ndarray = field(default_factory=lambda: np.zeros(3))
    information: np.ndarray = field(default_factory=lambda: np.zeros((3, 3)))

    @property
    def covariance(self) -> Optional[np.ndarray]:
        """Inverse of the information matrix, None while some axis is unobserved."""
        if observed_rank(self.information) < 3:
            return None
        return np.linalg.inv(self.information)


class OnlineRotationHandEye:
    """
    Incremental estimator of the rotation x with a * x = x * b.

    Only the 3-vector estimate and its 3x3 information matrix are kept, so
    memory and per-measurement cost stay constant. Until the constraints
    span all three axes the estimate is the minimum-norm solution, which
    means the error against a consistent ground truth can only shrink as
    measurements arrive and does not depend on their order.

    Instances are not thread safe.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._state = RotationEstimate()
        self._count = 0

    def add_measurement(self, a: np.ndarray, b: np.ndarray):
        """
        Add one pair of relative rotations.

        Args:
            a: Relative rotation in the first frame, quaternion [x, y, z, w]
            b: Corresponding relative rotation in the second frame
        """
        va = rotation_vector_part(a)
        vb = rotation_vector_part(b)
        H = skew(va + vb).astype(float)
        z = vb - va

        # eta = information @ value holds because value is the minimum-norm solution
        information = self._state.information + H.T @ H
        eta = self._state.information @ self._state.value + H.T @ z
        value = pseudo_inverse(information) @ eta

        self._state = RotationEstimate(value, information)
        self._count += 1
        self.logger.debug("Rotation measurement %d: estimate %s", self._count, value)

    def compute_result(self) -> np.ndarray:
        """
        Current rotation estimate as a quaternion [x, y, z, w] with w >= 0.

        Returns the identity before any measurement has been added.
        """
        x = self._state.value
        scale = 1.0 / np.sqrt(1.0 + x @ x)
        return np.append(x * scale, scale)

    @property
    def measurement_count(self) -> int:
        return self._count

    @property
    def is_observable(self) -> bool:
        """True once the measurements constrain all three rotation axes."""
        return observed_rank(self._state.information) == 3

    @property
    def state(self) -> RotationEstimate:
        return RotationEstimate(self._state.value.copy(), self._state.information.copy())

    def reset(self):
        self._state = RotationEstimate()
        self._count = 0
