"""
Calibration settings loaded from YAML.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .pose_seeding import PNP_METHOD_MAP
from .utils import load_yaml


@dataclass(frozen=True)
class StoppingPolicy:
    """
    Termination criteria of the Levenberg-Marquardt refinement.

    max_iterations caps the residual evaluations; min_improvement is the
    relative decrease of the squared residual below which the solver stops.
    """
    max_iterations: int = 10
    min_improvement: float = 1e-6

    def __post_init__(self):
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be positive, got {self.max_iterations}")
        if not self.min_improvement > 0:
            raise ValueError(f"min_improvement must be positive, got {self.min_improvement}")


@dataclass(frozen=True)
class CalibrationConfig:
    """Settings for the hand-eye solver and the multi-camera pose refiner."""
    use_all_pairs: bool = False
    min_correspondences: int = 4
    pnp_method: str = "sqpnp"
    stopping: StoppingPolicy = field(default_factory=StoppingPolicy)

    def __post_init__(self):
        if self.min_correspondences < 0:
            raise ValueError(
                f"min_correspondences must not be negative, got {self.min_correspondences}")
        if self.pnp_method not in PNP_METHOD_MAP:
            raise ValueError(f"Unknown PnP method: {self.pnp_method}")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'CalibrationConfig':
        data = data or {}
        hand_eye = data.get('hand_eye', {}) or {}
        refinement = data.get('pose_refinement', {}) or {}

        defaults = cls()
        stopping = StoppingPolicy(
            max_iterations=int(refinement.get('max_iterations', defaults.stopping.max_iterations)),
            min_improvement=float(refinement.get('min_improvement', defaults.stopping.min_improvement)),
        )
        return cls(
            use_all_pairs=bool(hand_eye.get('use_all_pairs', defaults.use_all_pairs)),
            min_correspondences=int(refinement.get('min_correspondences', defaults.min_correspondences)),
            pnp_method=str(refinement.get('pnp_method', defaults.pnp_method)).lower(),
            stopping=stopping,
        )


def load_calibration_config(config_path: Optional[str] = None) -> CalibrationConfig:
    """Load calibration settings from a YAML file (defaults if no path is given)."""
    if config_path is None:
        return CalibrationConfig()
    return CalibrationConfig.from_dict(load_yaml(config_path))
