"""Oriented FAST keypoints and rotated BRIEF (ORB) descriptors on grayscale images."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from os import PathLike

import numpy as np
from PIL import Image

# Offsets (dx, dy) of the 16-pixel Bresenham circle of radius 3 used by FAST.
_CIRCLE = (
    (0, -3), (1, -3), (2, -2), (3, -1), (3, 0), (3, 1), (2, 2), (1, 3),
    (0, 3), (-1, 3), (-2, 2), (-3, 1), (-3, 0), (-3, -1), (-2, -2), (-1, -3),
)
_ARC_LENGTH = 9
_RADIUS = 3

_HALF_PATCH_SIZE = 8
_HALF_BOUNDARY = 16
_DESCRIPTOR_WORDS = 8
_BITS_PER_WORD = 32

# Learned BRIEF sampling pattern: each row is a point pair (px, py, qx, qy).
_ORB_PATTERN = np.array(
    [
        8, -3, 9, 5, 4, 2, 7, -12, -11, 9, -8, 2, 7, -12, 12, -13,
        2, -13, 2, 12, 1, -7, 1, 6, -2, -10, -2, -4, -13, -13, -11, -8,
        -13, -3, -12, -9, 10, 4, 11, 9, -13, -8, -8, -9, -11, 7, -9, 12,
        7, 7, 12, 6, -4, -5, -3, 0, -13, 2, -12, -3, -9, 0, -7, 5,
        12, -6, 12, -1, -3, 6, -2, 12, -6, -13, -4, -8, 11, -13, 12, -8,
        4, 7, 5, 1, 5, -3, 10, -3, 3, -7, 6, 12, -8, -7, -6, -2,
        -2, 11, -1, -10, -13, 12, -8, 10, -7, 3, -5, -3, -4, 2, -3, 7,
        -10, -12, -6, 11, 5, -12, 6, -7, 5, -6, 7, -1, 1, 0, 4, -5,
        9, 11, 11, -13, 4, 7, 4, 12, 2, -1, 4, 4, -4, -12, -2, 7,
        -8, -5, -7, -10, 4, 11, 9, 12, 0, -8, 1, -13, -13, -2, -8, 2,
        -3, -2, -2, 3, -6, 9, -4, -9, 8, 12, 10, 7, 0, 9, 1, 3,
        7, -5, 11, -10, -13, -6, -11, 0, 10, 7, 12, 1, -6, -3, -6, 12,
        10, -9, 12, -4, -13, 8, -8, -12, -13, 0, -8, -4, 3, 3, 7, 8,
        5, 7, 10, -7, -1, 7, 1, -12, 3, -10, 5, 6, 2, -4, 3, -10,
        -13, 0, -13, 5, -13, -7, -12, 12, -13, 3, -11, 8, -7, 12, -4, 7,
        6, -10, 12, 8, -9, -1, -7, -6, -2, -5, 0, 12, -12, 5, -7, 5,
        3, -10, 8, -13, -7, -7, -4, 5, -3, -2, -1, -7, 2, 9, 5, -11,
        -11, -13, -5, -13, -1, 6, 0, -1, 5, -3, 5, 2, -4, -13, -4, 12,
        -9, -6, -9, 6, -12, -10, -8, -4, 10, 2, 12, -3, 7, 12, 12, 12,
        -7, -13, -6, 5, -4, 9, -3, 4, 7, -1, 12, 2, -7, 6, -5, 1,
        -13, 11, -12, 5, -3, 7, -2, -6, 7, -8, 12, -7, -13, -7, -11, -12,
        1, -3, 12, 12, 2, -6, 3, 0, -4, 3, -2, -13, -1, -13, 1, 9,
        7, 1, 8, -6, 1, -1, 3, 12, 9, 1, 12, 6, -1, -9, -1, 3,
        -13, -13, -10, 5, 7, 7, 10, 12, 12, -5, 12, 9, 6, 3, 7, 11,
        5, -13, 6, 10, 2, -12, 2, 3, 3, 8, 4, -6, 2, 6, 12, -13,
        9, -12, 10, 3, -8, 4, -7, 9, -11, 12, -4, -6, 1, 12, 2, -8,
        6, -9, 7, -4, 2, 3, 3, -2, 6, 3, 11, 0, 3, -3, 8, -8,
        7, 8, 9, 3, -11, -5, -6, -4, -10, 11, -5, 10, -5, -8, -3, 12,
        -10, 5, -9, 0, 8, -1, 12, -6, 4, -6, 6, -11, -10, 12, -8, 7,
        4, -2, 6, 7, -2, 0, -2, 12, -5, -8, -5, 2, 7, -6, 10, 12,
        -9, -13, -8, -8, -5, -13, -5, -2, 8, -8, 9, -13, -9, -11, -9, 0,
        1, -8, 1, -2, 7, -4, 9, 1, -2, 1, -1, -4, 11, -6, 12, -11,
        -12, -9, -6, 4, 3, 7, 7, 12, 5, 5, 10, 8, 0, -4, 2, 8,
        -9, 12, -5, -13, 0, 7, 2, 12, -1, 2, 1, 7, 5, 11, 7, -9,
        3, 5, 6, -8, -13, -4, -8, 9, -5, 9, -3, -3, -4, -7, -3, -12,
        6, 5, 8, 0, -7, 6, -6, 12, -13, 6, -5, -2, 1, -10, 3, 10,
        4, 1, 8, -4, -2, -2, 2, -13, 2, -12, 12, 12, -2, -13, 0, -6,
        4, 1, 9, 3, -6, -10, -3, -5, -3, -13, -1, 1, 7, 5, 12, -11,
        4, -2, 5, -7, -13, 9, -9, -5, 7, 1, 8, 6, 7, -8, 7, 6,
        -7, -4, -7, 1, -8, 11, -7, -8, -13, 6, -12, -8, 2, 4, 3, 9,
        10, -5, 12, 3, -6, -5, -6, 7, 8, -3, 9, -8, 2, -12, 2, 8,
        -11, -2, -10, 3, -12, -13, -7, -9, -11, 0, -10, -5, 5, -3, 11, 8,
        -2, -13, -1, 12, -1, -8, 0, 9, -13, -11, -12, -5, -10, -2, -10, 11,
        -3, 9, -2, -13, 2, -3, 3, 2, -9, -13, -4, 0, -4, 6, -3, -10,
        -4, 12, -2, -7, -6, -11, -4, 9, 6, -3, 6, 11, -13, 11, -5, 5,
        11, 11, 12, 6, 7, -5, 12, -2, -1, 12, 0, 7, -4, -8, -3, -2,
        -7, 1, -6, 7, -13, -12, -8, -13, -7, -2, -6, -8, -8, 5, -6, -9,
        -5, -1, -4, 5, -13, 7, -8, 10, 1, 5, 5, -13, 1, 0, 10, -13,
        9, 12, 10, -1, 5, -8, 10, -9, -1, 11, 1, -13, -9, -3, -6, 2,
        -1, -10, 1, 12, -13, 1, -8, -10, 8, -11, 10, -6, 2, -13, 3, -6,
        7, -13, 12, -9, -10, -10, -5, -7, -10, -8, -8, -13, 4, -6, 8, 5,
        3, 12, 8, -13, -4, 2, -3, -3, 5, -13, 10, -12, 4, -13, 5, -1,
        -9, 9, -4, 3, 0, 3, 3, -9, -12, 1, -6, 1, 3, 2, 4, -8,
        -10, -10, -10, 9, 8, -13, 12, 12, -8, -12, -6, -5, 2, 2, 3, 7,
        10, 6, 11, -8, 6, 8, 8, -12, -7, 10, -6, 5, -3, -9, -3, 9,
        -1, -13, -1, 5, -3, -7, -3, 4, -8, -2, -8, 3, 4, 2, 12, 12,
        2, -5, 3, 11, 6, -9, 11, -13, 3, -1, 7, 12, 11, -1, 12, 4,
        -3, 0, -3, 6, 4, -11, 4, 12, 2, -4, 2, 1, -10, -6, -8, 1,
        -13, 7, -11, 1, -13, 12, -11, -13, 6, 0, 11, -13, 0, -1, 1, 4,
        -13, 3, -9, -2, -9, 8, -6, -3, -13, -6, -8, -2, 5, -9, 8, 10,
        2, 7, 3, -9, -1, -6, -1, -1, 9, 5, 11, -2, 11, -3, 12, -8,
        3, 0, 3, 5, -1, 4, 0, 10, 3, -6, 4, 5, -13, 0, -10, 5,
        5, 8, 12, 11, 8, 9, 9, -6, 7, -4, 8, -12, -10, 4, -10, 9,
        7, 3, 12, 4, 9, -7, 10, -2, 7, 0, 12, -2, -1, -6, 0, -11,
    ],
    dtype=np.float64,
).reshape(_DESCRIPTOR_WORDS * _BITS_PER_WORD, 4)

_BIT_WEIGHTS = np.left_shift(np.uint64(1), np.arange(_BITS_PER_WORD, dtype=np.uint64))


@dataclass(frozen=True)
class KeyPoint:
    """An image feature location in pixel coordinates with its detector response."""

    x: float
    y: float
    response: float = 0.0

    @property
    def pt(self) -> np.ndarray:
        """The location as an ``(x, y)`` array."""
        return np.array([self.x, self.y], dtype=float)


def _grayscale(image: np.ndarray) -> np.ndarray:
    array = np.asarray(image)
    if array.ndim != 2:
        raise ValueError(f"expected a single-channel image, got shape {array.shape}")
    return array


def load_gray(path: str | PathLike[str]) -> np.ndarray:
    """Read an image file as an 8-bit grayscale array of shape (rows, cols)."""
    with Image.open(path) as picture:
        return np.array(picture.convert("L"), dtype=np.uint8)


def fast_keypoints(image: np.ndarray, threshold: float = 40) -> list[KeyPoint]:
    """Detect FAST-9 corners with 3x3 non-maximum suppression.

    A pixel is a corner when 9 contiguous pixels of the radius-3 circle are all
    brighter than it by more than ``threshold`` or all darker by more than it.
    Keypoints come in row-major order.
    """
    if threshold < 0:
        raise ValueError("threshold must not be negative")
    img = _grayscale(image).astype(np.int64)
    rows, cols = img.shape
    if rows < 2 * _RADIUS + 1 or cols < 2 * _RADIUS + 1:
        return []

    h = rows - 2 * _RADIUS
    w = cols - 2 * _RADIUS
    center = img[_RADIUS : _RADIUS + h, _RADIUS : _RADIUS + w]
    circle = np.stack(
        [img[_RADIUS + dy : _RADIUS + dy + h, _RADIUS + dx : _RADIUS + dx + w] for dx, dy in _CIRCLE]
    ) - center
    ring = np.concatenate([circle, circle[: _ARC_LENGTH - 1]])

    best = np.full(center.shape, np.iinfo(np.int64).min, dtype=np.int64)
    for start in range(len(_CIRCLE)):
        window = ring[start : start + _ARC_LENGTH]
        brighter = window.min(axis=0)
        darker = (-window).min(axis=0)
        np.maximum(best, np.maximum(brighter, darker), out=best)

    corner = best > threshold
    scores = np.zeros((rows, cols), dtype=np.int64)
    scores[_RADIUS : _RADIUS + h, _RADIUS : _RADIUS + w] = np.where(corner, best - 1, 0)
    is_corner = np.zeros((rows, cols), dtype=bool)
    is_corner[_RADIUS : _RADIUS + h, _RADIUS : _RADIUS + w] = corner

    padded = np.pad(scores, 1)
    keep = is_corner.copy()
    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            if dx == 0 and dy == 0:
                continue
            neighbour = padded[1 + dy : 1 + dy + rows, 1 + dx : 1 + dx + cols]
            keep &= scores > neighbour

    ys, xs = np.nonzero(keep)
    return [
        KeyPoint(float(x), float(y), float(scores[y, x])) for y, x in zip(ys.tolist(), xs.tolist())
    ]


def _descriptor(img: np.ndarray, kp: KeyPoint) -> np.ndarray:
    rows, cols = img.shape
    row0 = int(kp.y)
    col0 = int(kp.x)
    patch = img[
        row0 - _HALF_PATCH_SIZE : row0 + _HALF_PATCH_SIZE,
        col0 - _HALF_PATCH_SIZE : col0 + _HALF_PATCH_SIZE,
    ].astype(np.float64)
    offsets = np.arange(-_HALF_PATCH_SIZE, _HALF_PATCH_SIZE, dtype=np.float64)
    m10 = float((patch * offsets[None, :]).sum())
    m01 = float((patch * offsets[:, None]).sum())

    norm = np.sqrt(m01 * m01 + m10 * m10) + 1e-18
    sin_theta = m01 / norm
    cos_theta = m10 / norm

    def sample(px: np.ndarray, py: np.ndarray) -> np.ndarray:
        xs = np.trunc(cos_theta * px - sin_theta * py + kp.x).astype(np.int64)
        ys = np.trunc(sin_theta * px + cos_theta * py + kp.y).astype(np.int64)
        return img[np.clip(ys, 0, rows - 1), np.clip(xs, 0, cols - 1)]

    p_values = sample(_ORB_PATTERN[:, 0], _ORB_PATTERN[:, 1])
    q_values = sample(_ORB_PATTERN[:, 2], _ORB_PATTERN[:, 3])
    bits = (p_values < q_values).reshape(_DESCRIPTOR_WORDS, _BITS_PER_WORD).astype(np.uint64)
    return (bits @ _BIT_WEIGHTS).astype(np.uint32)


def compute_orb(image: np.ndarray, keypoints: Iterable[KeyPoint]) -> list[np.ndarray | None]:
    """Compute a 256-bit steered BRIEF descriptor for each keypoint.

    Each descriptor is an array of 8 ``uint32`` words. Keypoints closer than
    16 pixels to the image border get ``None`` instead.
    """
    img = _grayscale(image)
    rows, cols = img.shape
    descriptors: list[np.ndarray | None] = []
    for kp in keypoints:
        if (
            kp.x < _HALF_BOUNDARY
            or kp.y < _HALF_BOUNDARY
            or kp.x >= cols - _HALF_BOUNDARY
            or kp.y >= rows - _HALF_BOUNDARY
        ):
            descriptors.append(None)
            continue
        descriptors.append(_descriptor(img, kp))
    return descriptors