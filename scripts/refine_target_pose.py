#!/usr/bin/env python3
"""
Estimate the pose of a target seen by several calibrated cameras.

The input is an .npz archive with:
    points3d        [N, 3] model points in the target frame
    points2d        [C, N, 2] measured image points per camera
    weights         [C, N] weights, 0 for points a camera did not see
    cam_extrinsics  [C, 4, 4] shared frame -> camera transforms
    cam_intrinsics  [C, 3, 3] camera matrices
    bundle_sizes    optional, point counts of consecutive local bundles
    initial_pose    optional 4x4 starting pose (single pose mode only)

Usage:
    python3 scripts/refine_target_pose.py \
        --observations /path/to/observations.npz \
        --config config/calibration.yaml \
        --output target_pose.yaml
"""

import argparse
import logging
import numpy as np
import os
import sys

try:
    from tracking_calibration.config import load_calibration_config
    from tracking_calibration.exceptions import CalibrationError
    from tracking_calibration.pose_refiner import MultiCameraPoseRefiner
    from tracking_calibration.utils import save_poses_yaml
except ImportError:
    sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    from tracking_calibration.config import load_calibration_config
    from tracking_calibration.exceptions import CalibrationError
    from tracking_calibration.pose_refiner import MultiCameraPoseRefiner
    from tracking_calibration.utils import save_poses_yaml


def print_result(name, result):
    if not result.success:
        print(f"\n{name}: rejected ({result.num_observations} observations, "
              f"per camera {result.camera_counts})")
        return
    t = result.pose.translation
    q = result.pose.rotation
    print(f"\n{name}:")
    print(f"  Translation: [{t[0]:.6f}, {t[1]:.6f}, {t[2]:.6f}] m")
    print(f"  Quaternion:  [{q[0]:.6f}, {q[1]:.6f}, {q[2]:.6f}, {q[3]:.6f}]")
    print(f"  Residual:    {result.residual:.4f} px RMS")
    print(f"  Observations: {result.num_observations} (per camera {result.camera_counts})")


def main():
    parser = argparse.ArgumentParser(
        description='Refine a target pose from multi-camera observations'
    )

    parser.add_argument('--observations', type=str, required=True,
                        help='Path to the .npz observation archive')
    parser.add_argument('--config', type=str, default=None,
                        help='Path to calibration.yaml (defaults if omitted)')
    parser.add_argument('--min-correspondences', type=int, default=None,
                        help='Override the per-camera observation minimum')
    parser.add_argument('--output', '-o', type=str, default='target_pose.yaml',
                        help='Output file path (default: target_pose.yaml)')
    parser.add_argument('--parent', type=str, default='world',
                        help='Name of the shared frame')
    parser.add_argument('--child', type=str, default='target',
                        help='Name of the target frame (suffixed per bundle)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Verbose output')

    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(levelname)s %(name)s: %(message)s')

    print("Loading observations...")
    data = np.load(args.observations)
    points3d = data['points3d']
    points2d = list(data['points2d'])
    weights = list(data['weights'])
    cam_extrinsics = list(data['cam_extrinsics'])
    cam_intrinsics = list(data['cam_intrinsics'])
    print(f"  {len(points3d)} model points, {len(cam_extrinsics)} cameras")

    config = load_calibration_config(args.config)
    refiner = MultiCameraPoseRefiner.from_config(config)
    if args.min_correspondences is not None:
        refiner.min_correspondences = args.min_correspondences

    print("\n" + "="*60)
    print("REFINING TARGET POSE")
    print("="*60)

    poses = {}
    try:
        if 'bundle_sizes' in data.files:
            bundle_sizes = [int(size) for size in data['bundle_sizes']]
            print(f"Local bundles: {bundle_sizes}")
            results = refiner.estimate_local_bundles(
                points3d, points2d, weights, cam_extrinsics, cam_intrinsics, bundle_sizes)
            for index, result in enumerate(results):
                name = f"{args.child}_{index}"
                print_result(name, result)
                if result.success:
                    poses[name] = (result.pose, result.residual)
        else:
            initial_pose = data['initial_pose'] if 'initial_pose' in data.files else None
            result = refiner.estimate_pose(
                points3d, points2d, weights, cam_extrinsics, cam_intrinsics,
                initial_pose=initial_pose)
            print_result(args.child, result)
            if result.success:
                poses[args.child] = (result.pose, result.residual)
    except CalibrationError as e:
        print(f"\nERROR: Pose estimation failed - {e}")
        sys.exit(1)

    if not poses:
        print("\nERROR: No pose could be estimated")
        print("Possible causes:")
        print("  - Too few observations per camera")
        print("  - Fewer than four observations in every camera for the initial pose")
        sys.exit(1)

    save_poses_yaml(poses, args.output, args.parent)

    print("\n✓ Pose estimation complete!")
    print(f"  {len(poses)} pose(s) saved to: {args.output}")


if __name__ == '__main__':
    main()
