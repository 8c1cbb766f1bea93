"""
Closed-form hand-eye calibration (Tsai-Lenz).

Given the poses of a hand (e.g. gripper -> base) and an eye (e.g.
world -> camera) recorded at the same instants, finds the fixed transform X
satisfying Hg_ij * X = X * Hc_ij for every relative motion pair.
"""

import logging
import numpy as np
from typing import List, NamedTuple, Optional, Sequence, Tuple

from .exceptions import SingularSystemError, SizeMismatchError
from .poses import Pose, as_matrix
from .utils import invert_transform, quaternion_from_matrix, skew


LOGGER = logging.getLogger(__name__)


class MeasurementPair(NamedTuple):
    """Relative motions of hand and eye between samples i and j (i < j)."""
    hand_motion: np.ndarray  # Hg_ij = inv(hand_j) * hand_i
    eye_motion: np.ndarray   # Hc_ij = eye_j * inv(eye_i)
    i: int
    j: int


def expected_pair_count(n: int, use_all_pairs: bool) -> int:
    """Number of pairs produced for n samples in the given pairing mode."""
    if n < 2:
        return 0
    return n * (n - 1) // 2 if use_all_pairs else n - 1


def build_measurement_pairs(hand: Sequence, eye: Sequence,
                            use_all_pairs: bool = False,
                            dtype=None) -> List[MeasurementPair]:
    """
    Turn two parallel transform sequences into relative-motion pairs.

    Adjacent mode pairs each sample with its successor only. All-pairs mode
    uses every i < j, which is O(n^2) but statistically stronger.

    Args:
        hand: Sequence of 4x4 matrices or Pose objects
        eye: Sequence of 4x4 matrices or Pose objects, same length as hand
        use_all_pairs: Pair every i < j instead of neighbours only
        dtype: Numeric type for the computation (inferred if None)

    Returns:
        List of MeasurementPair in (i, j) order
    """
    if len(hand) != len(eye):
        raise SizeMismatchError(
            f"Hand and eye sequences differ in length: {len(hand)} != {len(eye)}")

    n = len(hand)
    if dtype is None:
        dtype = _common_dtype(hand, eye)
    hand_T = [as_matrix(T, dtype) for T in hand]
    eye_T = [as_matrix(T, dtype) for T in eye]
    hand_inv = [invert_transform(T) for T in hand_T]
    eye_inv = [invert_transform(T) for T in eye_T]

    pairs: List[Optional[MeasurementPair]] = [None] * expected_pair_count(n, use_all_pairs)
    k = 0
    for i in range(n - 1):
        last = n if use_all_pairs else i + 2
        for j in range(i + 1, last):
            pairs[k] = MeasurementPair(
                hand_motion=hand_inv[j] @ hand_T[i],
                eye_motion=eye_T[j] @ eye_inv[i],
                i=i,
                j=j,
            )
            k += 1
    return pairs


def _common_dtype(*sequences) -> np.dtype:
    """float32 if every input is float32, float64 otherwise."""
    dtypes = [T.dtype for seq in sequences for T in seq if isinstance(T, np.ndarray)]
    if dtypes and len(dtypes) == sum(len(seq) for seq in sequences):
        return np.result_type(np.float32, *dtypes)
    return np.dtype(np.float64)


def _solve_least_squares(A: np.ndarray, b: np.ndarray, stage: str,
                         log: logging.Logger) -> np.ndarray:
    """Solve the overdetermined system A x = b, refusing rank-deficient A."""
    x, _, rank, _ = np.linalg.lstsq(A, b, rcond=None)
    if rank < A.shape[1]:
        log.error("%s system is rank deficient (rank %d < %d)", stage, rank, A.shape[1])
        raise SingularSystemError(
            f"{stage} system is rank deficient (rank {rank} < {A.shape[1]}); "
            f"the motions do not constrain the hand-eye transform")
    return x


def rotation_from_tsai_vector(pcg_prime: np.ndarray) -> np.ndarray:
    """
    Rebuild a rotation matrix from the modified Rodrigues vector tan(theta/2) * axis.

    The vector is first scaled to P = 2 sin(theta/2) * axis, then
    R = (1 - |P|^2/2) I + 1/2 (P P^T + sqrt(4 - |P|^2) skew(P)).
    """
    pcg = 2 * pcg_prime / np.sqrt(1 + pcg_prime @ pcg_prime)
    length = pcg @ pcg
    identity = np.eye(3, dtype=pcg.dtype) * (1 - length / 2)
    alpha = np.sqrt(max(4 - length, 0))
    return identity + 0.5 * (np.outer(pcg, pcg) + alpha * skew(pcg))


def compute_rotation(pairs: Sequence[MeasurementPair],
                     log: logging.Logger = LOGGER) -> np.ndarray:
    """Rotation stage: least squares on skew(pg + pc) x = pc - pg."""
    dtype = pairs[0].hand_motion.dtype
    A = np.empty((3 * len(pairs), 3), dtype=dtype)
    b = np.empty(3 * len(pairs), dtype=dtype)

    for k, pair in enumerate(pairs):
        pg = quaternion_from_matrix(pair.hand_motion[:3, :3])[:3]
        pc = quaternion_from_matrix(pair.eye_motion[:3, :3])[:3]
        A[3 * k:3 * k + 3] = skew(pg + pc)
        b[3 * k:3 * k + 3] = pc - pg

    pcg_prime = _solve_least_squares(A, b, "Rotation", log)
    return rotation_from_tsai_vector(pcg_prime)


def compute_translation(pairs: Sequence[MeasurementPair], rcg: np.ndarray,
                        log: logging.Logger = LOGGER) -> np.ndarray:
    """Translation stage: least squares on (Rg - I) t = Rcg tc - tg."""
    dtype = pairs[0].hand_motion.dtype
    A = np.empty((3 * len(pairs), 3), dtype=dtype)
    b = np.empty(3 * len(pairs), dtype=dtype)
    identity = np.eye(3, dtype=dtype)

    for k, pair in enumerate(pairs):
        rg = pair.hand_motion[:3, :3]
        tg = pair.hand_motion[:3, 3]
        tc = pair.eye_motion[:3, 3]
        A[3 * k:3 * k + 3] = rg - identity
        b[3 * k:3 * k + 3] = rcg @ tc - tg

    return _solve_least_squares(A, b, "Translation", log)


def perform_hand_eye_calibration(hand: Sequence, eye: Sequence,
                                 use_all_pairs: bool = False,
                                 dtype=None,
                                 logger: Optional[logging.Logger] = None) -> Pose:
    """
    Estimate the fixed transform X between two rigidly linked frames.

    Args:
        hand: Hand poses (4x4 matrices or Pose objects)
        eye: Eye poses recorded at the same instants
        use_all_pairs: Use every sample pair instead of neighbours only
        dtype: Numeric type used throughout (float32 or float64). Defaults to
            float32 when all inputs are float32 matrices, float64 otherwise.
        logger: Logger for diagnostics (module logger if None)

    Returns:
        Pose of X, quaternion normalized to w >= 0. The identity pose when two
        or fewer samples are given.

    Raises:
        SizeMismatchError: hand and eye lengths differ
        SingularSystemError: the motions do not determine X
    """
    log = logger or LOGGER

    if len(hand) != len(eye):
        log.error("Input sizes of hand (%d) and eye (%d) do not match", len(hand), len(eye))
        raise SizeMismatchError(
            f"Hand and eye sequences differ in length: {len(hand)} != {len(eye)}")

    if len(eye) <= 2:
        log.debug("Only %d samples, returning identity pose", len(eye))
        return Pose.identity()

    pairs = build_measurement_pairs(hand, eye, use_all_pairs, dtype)
    log.debug("Hand-eye calibration from %d samples, %d pairs (%s)",
              len(eye), len(pairs), "all pairs" if use_all_pairs else "adjacent")

    rcg = compute_rotation(pairs, log)
    tcg = compute_translation(pairs, rcg, log)

    result = Pose(quaternion_from_matrix(rcg.astype(np.float64)), tcg).canonical()
    log.debug("Hand-eye result: %s", result)
    return result


class HandEyeCalibrationSolver:
    """
    Batch hand-eye solver with a fixed pairing mode.
    """

    def __init__(self, use_all_pairs: bool = False,
                 logger: Optional[logging.Logger] = None):
        """
        Args:
            use_all_pairs: Pair every sample with every later one
            logger: Logger for diagnostics
        """
        self.use_all_pairs = use_all_pairs
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config, logger: Optional[logging.Logger] = None) -> 'HandEyeCalibrationSolver':
        return cls(use_all_pairs=config.use_all_pairs, logger=logger)

    def solve(self, hand: Sequence, eye: Sequence, dtype=None) -> Pose:
        return perform_hand_eye_calibration(
            hand, eye, self.use_all_pairs, dtype=dtype, logger=self.logger)

    def solve_with_residuals(self, hand: Sequence, eye: Sequence) -> Tuple[Pose, np.ndarray]:
        """
        Solve and report how well X explains each motion pair.

        Returns:
            Tuple of (pose, residuals) where residuals[k] holds the rotation
            error in radians and the translation error of pair k
        """
        pose = self.solve(hand, eye)
        if len(eye) <= 2:
            return pose, np.zeros((0, 2))

        X = pose.as_matrix()
        pairs = build_measurement_pairs(hand, eye, self.use_all_pairs, np.float64)
        residuals = np.empty((len(pairs), 2))
        for k, pair in enumerate(pairs):
            lhs = pair.hand_motion @ X
            rhs = X @ pair.eye_motion
            R_err = lhs[:3, :3].T @ rhs[:3, :3]
            cos_angle = np.clip((np.trace(R_err) - 1) / 2, -1.0, 1.0)
            residuals[k] = (np.arccos(cos_angle), np.linalg.norm(lhs[:3, 3] - rhs[:3, 3]))
        return pose, residuals
