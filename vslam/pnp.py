"""Camera pose from 3D-2D correspondences: point pairing and Gauss-Newton refinement."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np

from vslam.camera import Intrinsics
from vslam.lie import SE3
from vslam.matching import Match
from vslam.orb import KeyPoint

_log = logging.getLogger(__name__)

DEPTH_SCALE = 5000.0
_CONVERGED_STEP = 1e-6


def _points(values, width: int, name: str) -> np.ndarray:
    array = np.asarray(values, dtype=float)
    if array.ndim != 2 or array.shape[1] != width:
        raise ValueError(f"{name} must have shape (N, {width}), got {array.shape}")
    return array


def _checked_pairs(points_3d, points_2d) -> tuple[np.ndarray, np.ndarray]:
    p3 = _points(points_3d, 3, "points_3d")
    p2 = _points(points_2d, 2, "points_2d")
    if p3.shape[0] != p2.shape[0]:
        raise ValueError("points_3d and points_2d differ in length")
    if p3.shape[0] == 0:
        raise ValueError("at least one correspondence is needed")
    return p3, p2


def build_3d_2d_pairs(
    keypoints_1: Sequence[KeyPoint],
    keypoints_2: Sequence[KeyPoint],
    matches: Sequence[Match],
    depth: np.ndarray,
    intrinsics: Intrinsics,
    depth_scale: float = DEPTH_SCALE,
) -> tuple[np.ndarray, np.ndarray]:
    """3D points of the first view and their pixels in the second view.

    The depth of each first-view keypoint is read from ``depth`` at its
    truncated pixel position and divided by ``depth_scale``; matches whose
    depth reading is zero are skipped.
    """
    depth_image = np.asarray(depth)
    if depth_image.ndim != 2:
        raise ValueError(f"depth must be a single-channel image, got shape {depth_image.shape}")
    points_3d: list[np.ndarray] = []
    points_2d: list[np.ndarray] = []
    for match in matches:
        kp1 = keypoints_1[match.query_idx]
        kp2 = keypoints_2[match.train_idx]
        reading = depth_image[int(kp1.y), int(kp1.x)]
        if reading == 0:
            continue
        z = float(reading) / depth_scale
        normalised = intrinsics.pixel_to_camera(np.array([kp1.x, kp1.y], dtype=float))
        points_3d.append(np.array([normalised[0] * z, normalised[1] * z, z]))
        points_2d.append(np.array([kp2.x, kp2.y], dtype=float))
    if not points_3d:
        return np.zeros((0, 3)), np.zeros((0, 2))
    return np.array(points_3d), np.array(points_2d)


def _jacobians(points_cam: np.ndarray, intrinsics: Intrinsics) -> np.ndarray:
    fx, fy = intrinsics.fx, intrinsics.fy
    x, y, z = points_cam[:, 0], points_cam[:, 1], points_cam[:, 2]
    inv_z = 1.0 / z
    inv_z2 = inv_z * inv_z
    zeros = np.zeros_like(x)
    row0 = np.stack(
        [
            -fx * inv_z,
            zeros,
            fx * x * inv_z2,
            fx * x * y * inv_z2,
            -fx - fx * x * x * inv_z2,
            fx * y * inv_z,
        ],
        axis=-1,
    )
    row1 = np.stack(
        [
            zeros,
            -fy * inv_z,
            fy * y * inv_z2,
            fy + fy * y * y * inv_z2,
            -fy * x * y * inv_z2,
            -fy * x * inv_z,
        ],
        axis=-1,
    )
    return np.stack([row0, row1], axis=1)


def projection_jacobian(point_cam, intrinsics: Intrinsics) -> np.ndarray:
    """2x6 Jacobian of the reprojection error ``observed - project(exp(xi) * P)``.

    ``point_cam`` is the point in the camera frame; the twist has its
    translation part first and its rotation part second.
    """
    p = np.asarray(point_cam, dtype=float)
    if p.shape != (3,):
        raise ValueError(f"point must have 3 components, got shape {p.shape}")
    return _jacobians(p[None, :], intrinsics)[0]


def _linearize(
    points_3d: np.ndarray, points_2d: np.ndarray, intrinsics: Intrinsics, pose: SE3
) -> tuple[np.ndarray, np.ndarray, float]:
    points_cam = pose.transform(points_3d)
    errors = points_2d - intrinsics.camera_to_pixel(points_cam)
    jacobians = _jacobians(points_cam, intrinsics)
    hessian = np.einsum("nki,nkj->ij", jacobians, jacobians)
    bias = -np.einsum("nki,nk->i", jacobians, errors)
    cost = float((errors * errors).sum())
    return hessian, bias, cost


def _solve(hessian: np.ndarray, bias: np.ndarray) -> np.ndarray | None:
    try:
        step = np.linalg.solve(hessian, bias)
    except np.linalg.LinAlgError:
        return None
    if not np.all(np.isfinite(step)):
        return None
    return step


def pose_gauss_newton(
    points_3d,
    points_2d,
    intrinsics: Intrinsics,
    pose: SE3 | None = None,
    iterations: int = 10,
) -> SE3:
    """Refine the pose mapping ``points_3d`` onto pixels ``points_2d`` by Gauss-Newton.

    Iteration stops when the linear system cannot be solved, when the cost
    no longer decreases, or when the update norm falls below 1e-6.
    """
    p3, p2 = _checked_pairs(points_3d, points_2d)
    estimate = SE3() if pose is None else pose
    last_cost = 0.0
    for iteration in range(iterations):
        hessian, bias, cost = _linearize(p3, p2, intrinsics, estimate)
        step = _solve(hessian, bias)
        if step is None:
            _log.debug("result is nan")
            break
        if iteration > 0 and cost >= last_cost:
            _log.debug("cost: %s, last cost: %s", cost, last_cost)
            break
        estimate = SE3.exp(step) @ estimate
        last_cost = cost
        _log.debug("iteration %d cost=%.12g", iteration, cost)
        if np.linalg.norm(step) < _CONVERGED_STEP:
            break
    return estimate


def refine_pose_projection(
    points_3d, points_2d, intrinsics: Intrinsics, iterations: int = 10
) -> SE3:
    """Pose from the identity by a fixed number of plain Gauss-Newton steps.

    Each step is taken whatever it does to the cost; iteration stops early
    only when the linear system cannot be solved.
    """
    p3, p2 = _checked_pairs(points_3d, points_2d)
    estimate = SE3()
    for iteration in range(iterations):
        hessian, bias, cost = _linearize(p3, p2, intrinsics, estimate)
        step = _solve(hessian, bias)
        if step is None:
            break
        estimate = SE3.exp(step) @ estimate
        _log.debug("iteration %d chi2=%.12g", iteration, cost)
    return estimate