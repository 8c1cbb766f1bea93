"""
Typed failures raised by the calibration routines.

A rejected pose estimate (not enough observations yet) is not an error and
is reported through PoseEstimationResult instead.
"""

import numpy as np


class CalibrationError(Exception):
    """Base class for all calibration failures."""


class SizeMismatchError(CalibrationError, ValueError):
    """Input sequences that must be parallel have different lengths."""


class InsufficientDataError(CalibrationError, ValueError):
    """Fewer points or pairs than the algorithm needs."""


class InconsistentInputError(CalibrationError, ValueError):
    """Per-camera arrays disagree in camera count or length."""


class SingularSystemError(CalibrationError, np.linalg.LinAlgError):
    """A least-squares system is rank deficient or a transform is not invertible."""
