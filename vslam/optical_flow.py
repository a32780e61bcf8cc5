"""Sparse Lucas-Kanade optical flow by Gauss-Newton, on one level or an image pyramid."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import replace

import numpy as np

from vslam.imaging import build_pyramid, get_pixel_value
from vslam.orb import KeyPoint

_log = logging.getLogger(__name__)

HALF_PATCH_SIZE = 4
ITERATIONS = 10
PYRAMID_LEVELS = 4
PYRAMID_SCALE = 0.5
_CONVERGED_STEP = 1e-2

_OFFSETS = np.arange(-HALF_PATCH_SIZE, HALF_PATCH_SIZE, dtype=float)
_PATCH_X, _PATCH_Y = (grid.ravel() for grid in np.meshgrid(_OFFSETS, _OFFSETS, indexing="ij"))


def _solve(hessian: np.ndarray, bias: np.ndarray) -> np.ndarray:
    if not (np.all(np.isfinite(hessian)) and np.all(np.isfinite(bias))):
        return np.full(bias.shape, np.nan)
    try:
        return np.linalg.solve(hessian, bias)
    except np.linalg.LinAlgError:
        # Singular system (flat patch): take the minimum-norm solution.
        return np.linalg.lstsq(hessian, bias, rcond=None)[0]


def _gradient(img: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    gx = 0.5 * (get_pixel_value(img, xs + 1, ys) - get_pixel_value(img, xs - 1, ys))
    gy = 0.5 * (get_pixel_value(img, xs, ys + 1) - get_pixel_value(img, xs, ys - 1))
    return np.column_stack([gx, gy])


def _track_point(
    img1: np.ndarray, img2: np.ndarray, kp: KeyPoint, dx: float, dy: float, inverse: bool
) -> tuple[float, float, bool]:
    px = kp.x + _PATCH_X
    py = kp.y + _PATCH_Y
    reference = get_pixel_value(img1, px, py)
    hessian = np.zeros((2, 2))
    jacobian = np.zeros((px.size, 2))
    last_cost = 0.0
    succeeded = True
    for iteration in range(ITERATIONS):
        qx = px + dx
        qy = py + dy
        error = reference - get_pixel_value(img2, qx, qy)
        if not inverse:
            jacobian = -_gradient(img2, qx, qy)
            hessian = jacobian.T @ jacobian
        elif iteration == 0:
            # The inverse formulation keeps the Jacobian of the first image fixed.
            jacobian = -_gradient(img1, px, py)
            hessian = jacobian.T @ jacobian
        bias = -(error @ jacobian)
        cost = float(error @ error)

        update = _solve(hessian, bias)
        if not np.all(np.isfinite(update)):
            _log.debug("update is nan")
            succeeded = False
            break
        if iteration > 0 and cost > last_cost:
            break

        dx += float(update[0])
        dy += float(update[1])
        last_cost = cost
        succeeded = True
        if np.linalg.norm(update) < _CONVERGED_STEP:
            break
    return dx, dy, succeeded


def track_single_level(
    img1: np.ndarray,
    img2: np.ndarray,
    kp1: Sequence[KeyPoint],
    kp2: Sequence[KeyPoint] | None = None,
    inverse: bool = False,
    has_initial: bool = False,
) -> tuple[list[KeyPoint], list[bool]]:
    """Track ``kp1`` from ``img1`` into ``img2`` with an 8x8 patch.

    With ``has_initial`` the positions in ``kp2`` are the starting guesses.
    Returns the tracked keypoints and, for each, whether tracking succeeded.
    """
    first = np.asarray(img1)
    second = np.asarray(img2)
    if first.ndim != 2 or second.ndim != 2:
        raise ValueError("images must be single-channel")
    sources = list(kp1)
    guesses: list[KeyPoint] | None = None
    if has_initial:
        if kp2 is None:
            raise ValueError("an initial guess needs kp2")
        guesses = list(kp2)
        if len(guesses) != len(sources):
            raise ValueError("kp1 and kp2 differ in length")

    tracked: list[KeyPoint] = []
    success: list[bool] = []
    for index, kp in enumerate(sources):
        dx = dy = 0.0
        if guesses is not None:
            dx = guesses[index].x - kp.x
            dy = guesses[index].y - kp.y
        dx, dy, ok = _track_point(first, second, kp, dx, dy, inverse)
        tracked.append(replace(kp, x=kp.x + dx, y=kp.y + dy))
        success.append(ok)
    return tracked, success


def track_multi_level(
    img1: np.ndarray, img2: np.ndarray, kp1: Sequence[KeyPoint], inverse: bool = False
) -> tuple[list[KeyPoint], list[bool]]:
    """Coarse-to-fine tracking over a 4-level pyramid halving the image each level."""
    pyramid1 = build_pyramid(img1, PYRAMID_LEVELS, PYRAMID_SCALE)
    pyramid2 = build_pyramid(img2, PYRAMID_LEVELS, PYRAMID_SCALE)

    top = PYRAMID_SCALE ** (PYRAMID_LEVELS - 1)
    kp1_pyr = [replace(kp, x=kp.x * top, y=kp.y * top) for kp in kp1]
    kp2_pyr = list(kp1_pyr)
    success: list[bool] = []
    for level in range(PYRAMID_LEVELS - 1, -1, -1):
        kp2_pyr, success = track_single_level(
            pyramid1[level], pyramid2[level], kp1_pyr, kp2_pyr, inverse, True
        )
        _log.debug("tracked pyramid level %d", level)
        if level > 0:
            kp1_pyr = [
                replace(kp, x=kp.x / PYRAMID_SCALE, y=kp.y / PYRAMID_SCALE) for kp in kp1_pyr
            ]
            kp2_pyr = [
                replace(kp, x=kp.x / PYRAMID_SCALE, y=kp.y / PYRAMID_SCALE) for kp in kp2_pyr
            ]
    return kp2_pyr, success