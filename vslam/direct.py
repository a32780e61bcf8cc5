"""Camera pose estimation by the direct (photometric) method on sparse pixels."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from vslam.camera import Intrinsics
from vslam.imaging import build_pyramid, get_pixel_value
from vslam.lie import SE3

_log = logging.getLogger(__name__)

KITTI_INTRINSICS = Intrinsics(fx=718.856, fy=718.856, cx=607.1928, cy=185.2157)
BASELINE = 0.573

HALF_PATCH_SIZE = 1
ITERATIONS = 10
PYRAMID_LEVELS = 4
PYRAMID_SCALE = 0.5
_CONVERGED_STEP = 1e-3

_OFFSETS = np.arange(-HALF_PATCH_SIZE, HALF_PATCH_SIZE + 1, dtype=float)
_PATCH_X, _PATCH_Y = (grid.ravel() for grid in np.meshgrid(_OFFSETS, _OFFSETS, indexing="ij"))


@dataclass(frozen=True, eq=False)
class Accumulation:
    """Normal equations, mean cost per good point and projections of one linearisation."""

    hessian: np.ndarray
    bias: np.ndarray
    cost: float
    projection: np.ndarray
    good: int


def _checked(px_ref, depth_ref) -> tuple[np.ndarray, np.ndarray]:
    pixels = np.asarray(px_ref, dtype=float)
    if pixels.size == 0:
        pixels = pixels.reshape(0, 2)
    if pixels.ndim != 2 or pixels.shape[1] != 2:
        raise ValueError(f"px_ref must have shape (N, 2), got {pixels.shape}")
    depths = np.asarray(depth_ref, dtype=float)
    if depths.ndim != 1:
        raise ValueError(f"depth_ref must be one-dimensional, got shape {depths.shape}")
    if depths.shape[0] != pixels.shape[0]:
        raise ValueError("px_ref and depth_ref differ in length")
    return pixels, depths


def _solve(hessian: np.ndarray, bias: np.ndarray) -> np.ndarray:
    if not (np.all(np.isfinite(hessian)) and np.all(np.isfinite(bias))):
        return np.full(bias.shape, np.nan)
    try:
        return np.linalg.solve(hessian, bias)
    except np.linalg.LinAlgError:
        return np.linalg.lstsq(hessian, bias, rcond=None)[0]


def accumulate(
    img1: np.ndarray,
    img2: np.ndarray,
    px_ref,
    depth_ref,
    pose: SE3 | None = None,
    intrinsics: Intrinsics = KITTI_INTRINSICS,
) -> Accumulation:
    """Photometric Gauss-Newton system of the reference pixels under ``pose``.

    Points behind the camera or projecting within one pixel of the border of
    ``img2`` are left out; their projection stays ``(0, 0)``.
    """
    pixels, depths = _checked(px_ref, depth_ref)
    image1 = np.asarray(img1)
    image2 = np.asarray(img2)
    if image1.ndim != 2 or image2.ndim != 2:
        raise ValueError("images must be single-channel")
    estimate = SE3() if pose is None else pose
    rows, cols = image2.shape
    count = pixels.shape[0]

    normalised = intrinsics.pixel_to_camera(pixels)
    points_ref = depths[:, None] * np.column_stack([normalised, np.ones(count)])
    points_cur = estimate.transform(points_ref)
    with np.errstate(divide="ignore", invalid="ignore"):
        uv = intrinsics.camera_to_pixel(points_cur)
    u, v = uv[:, 0], uv[:, 1]
    half = HALF_PATCH_SIZE
    with np.errstate(invalid="ignore"):
        good = (
            (points_cur[:, 2] >= 0)
            & np.isfinite(u)
            & np.isfinite(v)
            & (u >= half)
            & (u <= cols - half)
            & (v >= half)
            & (v <= rows - half)
        )

    projection = np.zeros((count, 2))
    projection[good] = uv[good]
    n_good = int(good.sum())
    if n_good == 0:
        return Accumulation(np.zeros((6, 6)), np.zeros(6), 0.0, projection, 0)

    pc = points_cur[good]
    x, y, z = pc[:, 0], pc[:, 1], pc[:, 2]
    z_inv = 1.0 / z
    z2_inv = z_inv * z_inv
    fx, fy = intrinsics.fx, intrinsics.fy
    zeros = np.zeros_like(x)
    j_pixel = np.stack(
        [
            np.stack(
                [fx * z_inv, zeros, -fx * x * z2_inv, -fx * x * y * z2_inv,
                 fx + fx * x * x * z2_inv, -fx * y * z_inv],
                axis=-1,
            ),
            np.stack(
                [zeros, fy * z_inv, -fy * y * z2_inv, -fy - fy * y * y * z2_inv,
                 fy * x * y * z2_inv, fy * x * z_inv],
                axis=-1,
            ),
        ],
        axis=1,
    )

    ref_x = pixels[good, 0][:, None] + _PATCH_X
    ref_y = pixels[good, 1][:, None] + _PATCH_Y
    cur_x = u[good][:, None] + _PATCH_X
    cur_y = v[good][:, None] + _PATCH_Y
    error = get_pixel_value(image1, ref_x, ref_y) - get_pixel_value(image2, cur_x, cur_y)
    gradient = np.stack(
        [
            0.5 * (get_pixel_value(image2, cur_x + 1, cur_y) - get_pixel_value(image2, cur_x - 1, cur_y)),
            0.5 * (get_pixel_value(image2, cur_x, cur_y + 1) - get_pixel_value(image2, cur_x, cur_y - 1)),
        ],
        axis=-1,
    )
    jacobian = -np.einsum("mpk,mkj->mpj", gradient, j_pixel)
    hessian = np.einsum("mpi,mpj->ij", jacobian, jacobian)
    bias = -np.einsum("mp,mpi->i", error, jacobian)
    cost = float((error * error).sum()) / n_good
    return Accumulation(hessian, bias, cost, projection, n_good)


def direct_pose_single_layer(
    img1: np.ndarray,
    img2: np.ndarray,
    px_ref,
    depth_ref,
    pose: SE3 | None = None,
    intrinsics: Intrinsics = KITTI_INTRINSICS,
) -> SE3:
    """Refine the pose of ``img2`` relative to ``img1`` by photometric Gauss-Newton.

    Stops when the system gives no finite update, when the cost rises
    (keeping the step just taken) or when the update norm drops below 1e-3.
    """
    pixels, depths = _checked(px_ref, depth_ref)
    estimate = SE3() if pose is None else pose
    last_cost = 0.0
    for iteration in range(ITERATIONS):
        accumulation = accumulate(img1, img2, pixels, depths, estimate, intrinsics)
        update = _solve(accumulation.hessian, accumulation.bias)
        if not np.all(np.isfinite(update)):
            _log.debug("update is nan")
            break
        estimate = SE3.exp(update) @ estimate
        cost = accumulation.cost
        if iteration > 0 and cost > last_cost:
            _log.debug("cost increased: %s, %s", cost, last_cost)
            break
        if np.linalg.norm(update) < _CONVERGED_STEP:
            break
        last_cost = cost
        _log.debug("iteration: %d, cost: %s", iteration, cost)
    return estimate


def direct_pose_multi_layer(
    img1: np.ndarray,
    img2: np.ndarray,
    px_ref,
    depth_ref,
    pose: SE3 | None = None,
    intrinsics: Intrinsics = KITTI_INTRINSICS,
) -> SE3:
    """Coarse-to-fine direct pose estimation over a 4-level pyramid."""
    pixels, depths = _checked(px_ref, depth_ref)
    pyramid1 = build_pyramid(img1, PYRAMID_LEVELS, PYRAMID_SCALE)
    pyramid2 = build_pyramid(img2, PYRAMID_LEVELS, PYRAMID_SCALE)
    estimate = SE3() if pose is None else pose
    for level in range(PYRAMID_LEVELS - 1, -1, -1):
        scale = PYRAMID_SCALE**level
        estimate = direct_pose_single_layer(
            pyramid1[level],
            pyramid2[level],
            pixels * scale,
            depths,
            estimate,
            intrinsics.scaled(scale),
        )
    return estimate