#!/usr/bin/env python3
"""
Compute the hand-eye transform from recorded hand and eye poses.

Both files hold the same number of transforms, recorded at the same
instants, either as a .npy stack of 4x4 matrices or as a YAML list of
[x, y, z, qx, qy, qz, qw] entries.

Usage:
    python3 scripts/compute_hand_eye.py \
        --hand /path/to/gripper_poses.yaml \
        --eye /path/to/camera_poses.yaml \
        --config config/calibration.yaml \
        --output hand_eye.yaml
"""

import argparse
import logging
import numpy as np
import os
import sys

try:
    from tracking_calibration.config import load_calibration_config
    from tracking_calibration.exceptions import CalibrationError
    from tracking_calibration.hand_eye import HandEyeCalibrationSolver
    from tracking_calibration.utils import load_transforms, save_pose_yaml
except ImportError:
    sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    from tracking_calibration.config import load_calibration_config
    from tracking_calibration.exceptions import CalibrationError
    from tracking_calibration.hand_eye import HandEyeCalibrationSolver
    from tracking_calibration.utils import load_transforms, save_pose_yaml


def main():
    parser = argparse.ArgumentParser(
        description='Compute the hand-eye transform with the Tsai-Lenz method'
    )

    parser.add_argument('--hand', type=str, required=True,
                        help='Hand poses (.npy stack or YAML list)')
    parser.add_argument('--eye', type=str, required=True,
                        help='Eye poses recorded at the same instants')
    parser.add_argument('--config', type=str, default=None,
                        help='Path to calibration.yaml (defaults if omitted)')
    parser.add_argument('--all-pairs', action='store_true',
                        help='Pair every sample with every later one')
    parser.add_argument('--output', '-o', type=str, default='hand_eye.yaml',
                        help='Output file path (default: hand_eye.yaml)')
    parser.add_argument('--parent', type=str, default='hand',
                        help='Parent frame name written to the output')
    parser.add_argument('--child', type=str, default='eye',
                        help='Child frame name written to the output')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Verbose output')

    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(levelname)s %(name)s: %(message)s')

    print("Loading poses...")
    hand = load_transforms(args.hand)
    eye = load_transforms(args.eye)
    print(f"  {len(hand)} hand poses, {len(eye)} eye poses")

    config = load_calibration_config(args.config)
    solver = HandEyeCalibrationSolver.from_config(config)
    if args.all_pairs:
        solver.use_all_pairs = True

    print("\n" + "="*60)
    print("COMPUTING HAND-EYE CALIBRATION")
    print("="*60)

    try:
        pose, residuals = solver.solve_with_residuals(hand, eye)
    except CalibrationError as e:
        print(f"\nERROR: Calibration failed - {e}")
        sys.exit(1)

    if len(eye) <= 2:
        print("\nWARNING: Two or fewer samples, the result is the identity transform")

    t = pose.translation
    q = pose.rotation
    print(f"\n{args.child} (relative to {args.parent}):")
    print(f"  Translation: [{t[0]:.6f}, {t[1]:.6f}, {t[2]:.6f}] m")
    print(f"  Quaternion:  [{q[0]:.6f}, {q[1]:.6f}, {q[2]:.6f}, {q[3]:.6f}]")

    residual = None
    if len(residuals):
        residual = float(np.mean(residuals[:, 1]))
        print(f"  Pairs used:  {len(residuals)} "
              f"({'all pairs' if solver.use_all_pairs else 'adjacent'})")
        print(f"  Mean rotation error:    {np.degrees(np.mean(residuals[:, 0])):.4f} deg")
        print(f"  Mean translation error: {residual:.6f} m")

    save_pose_yaml(pose, args.output, args.parent, args.child, residual)

    print("\n✓ Calibration complete!")
    print(f"  Hand-eye transform saved to: {args.output}")


if __name__ == '__main__':
    main()
