"""Rigid alignment of 3D-3D correspondences: SVD closed form and Levenberg-Marquardt."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

import numpy as np

from vslam.camera import Intrinsics
from vslam.lie import SE3
from vslam.matching import Match
from vslam.orb import KeyPoint

_log = logging.getLogger(__name__)

DEPTH_SCALE = 5000.0
_INITIAL_TAU = 1e-5
_MAX_TRIALS = 10
_GOOD_STEP_LOWER = 1.0 / 3.0
_GOOD_STEP_UPPER = 2.0 / 3.0


def _checked_pairs(pts1, pts2) -> tuple[np.ndarray, np.ndarray]:
    a = np.asarray(pts1, dtype=float)
    b = np.asarray(pts2, dtype=float)
    for name, array in (("pts1", a), ("pts2", b)):
        if array.ndim != 2 or array.shape[1] != 3:
            raise ValueError(f"{name} must have shape (N, 3), got {array.shape}")
    if a.shape[0] != b.shape[0]:
        raise ValueError("pts1 and pts2 differ in length")
    if a.shape[0] == 0:
        raise ValueError("at least one correspondence is needed")
    return a, b


def build_3d_3d_pairs(
    keypoints_1: Sequence[KeyPoint],
    keypoints_2: Sequence[KeyPoint],
    matches: Sequence[Match],
    depth_1: np.ndarray,
    depth_2: np.ndarray,
    intrinsics: Intrinsics,
    depth_scale: float = DEPTH_SCALE,
) -> tuple[np.ndarray, np.ndarray]:
    """3D points of both views for each match with valid depth in both images.

    Depths are read at the truncated pixel positions and divided by
    ``depth_scale``; a zero reading in either image drops the match.
    """
    d1 = np.asarray(depth_1)
    d2 = np.asarray(depth_2)
    if d1.ndim != 2 or d2.ndim != 2:
        raise ValueError("depth images must be single-channel")
    pts1: list[np.ndarray] = []
    pts2: list[np.ndarray] = []
    for match in matches:
        kp1 = keypoints_1[match.query_idx]
        kp2 = keypoints_2[match.train_idx]
        reading1 = d1[int(kp1.y), int(kp1.x)]
        reading2 = d2[int(kp2.y), int(kp2.x)]
        if reading1 == 0 or reading2 == 0:
            continue
        for kp, reading, out in ((kp1, reading1, pts1), (kp2, reading2, pts2)):
            z = float(reading) / depth_scale
            normalised = intrinsics.pixel_to_camera(np.array([kp.x, kp.y], dtype=float))
            out.append(np.array([normalised[0] * z, normalised[1] * z, z]))
    if not pts1:
        return np.zeros((0, 3)), np.zeros((0, 3))
    return np.array(pts1), np.array(pts2)


def pose_estimation_3d3d(pts1, pts2) -> tuple[np.ndarray, np.ndarray]:
    """Rotation R and translation t with ``pts1 ~= R @ pts2 + t`` by SVD.

    When ``U V^T`` has a negative determinant its negation is used.
    """
    a, b = _checked_pairs(pts1, pts2)
    centroid1 = a.mean(axis=0)
    centroid2 = b.mean(axis=0)
    w = (a - centroid1).T @ (b - centroid2)
    u, _, vt = np.linalg.svd(w)
    rotation = u @ vt
    if np.linalg.det(rotation) < 0:
        rotation = -rotation
    translation = centroid1 - rotation @ centroid2
    return rotation, translation


def _hat_rows(points: np.ndarray) -> np.ndarray:
    x, y, z = points[:, 0], points[:, 1], points[:, 2]
    zeros = np.zeros_like(x)
    return np.stack(
        [
            np.stack([zeros, -z, y], axis=-1),
            np.stack([z, zeros, -x], axis=-1),
            np.stack([-y, x, zeros], axis=-1),
        ],
        axis=1,
    )


def _chi2(a: np.ndarray, b: np.ndarray, pose: SE3) -> float:
    errors = a - pose.transform(b)
    return float((errors * errors).sum())


def _system(a: np.ndarray, b: np.ndarray, pose: SE3) -> tuple[np.ndarray, np.ndarray, float]:
    transformed = pose.transform(b)
    errors = a - transformed
    count = a.shape[0]
    jacobians = np.zeros((count, 3, 6))
    jacobians[:, :, :3] = -np.eye(3)
    jacobians[:, :, 3:] = _hat_rows(transformed)
    hessian = np.einsum("nki,nkj->ij", jacobians, jacobians)
    bias = -np.einsum("nki,nk->i", jacobians, errors)
    return hessian, bias, float((errors * errors).sum())


def bundle_adjustment_icp(pts1, pts2, iterations: int = 10) -> SE3:
    """Pose T with ``pts1 ~= T(pts2)`` by Levenberg-Marquardt from the identity.

    Each iteration tries up to 10 damping values; optimisation ends when
    none of them lowers the squared error.
    """
    a, b = _checked_pairs(pts1, pts2)
    pose = SE3()
    hessian, bias, chi = _system(a, b, pose)
    damping = _INITIAL_TAU * float(np.max(np.diag(hessian)))
    factor = 2.0
    for iteration in range(iterations):
        if chi == 0.0:
            break
        improved = False
        for _ in range(_MAX_TRIALS):
            try:
                step = np.linalg.solve(hessian + damping * np.eye(6), bias)
            except np.linalg.LinAlgError:
                step = None
            if step is not None and np.all(np.isfinite(step)):
                candidate = SE3.exp(step) @ pose
                new_chi = _chi2(a, b, candidate)
                scale = float(step @ (damping * step + bias)) + 1e-3
                rho = (chi - new_chi) / scale
                if rho > 0 and math.isfinite(new_chi):
                    pose = candidate
                    alpha = min(1.0 - (2.0 * rho - 1.0) ** 3, _GOOD_STEP_UPPER)
                    damping *= max(_GOOD_STEP_LOWER, alpha)
                    factor = 2.0
                    improved = True
                    break
            damping *= factor
            factor *= 2.0
        if not improved:
            break
        hessian, bias, chi = _system(a, b, pose)
        _log.debug("iteration %d chi2=%.12g lambda=%g", iteration, chi, damping)
    return pose