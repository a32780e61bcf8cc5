"""Sub-pixel sampling and image pyramids for grayscale images."""

from __future__ import annotations

import numpy as np


def _grayscale(img: np.ndarray) -> np.ndarray:
    array = np.asarray(img)
    if array.ndim != 2:
        raise ValueError(f"expected a single-channel image, got shape {array.shape}")
    if array.size == 0:
        raise ValueError("image is empty")
    return array


def get_pixel_value(img: np.ndarray, x, y):
    """Bilinearly interpolated intensity at ``(x, y)``.

    Coordinates outside the image are clamped to its border. ``x`` and ``y``
    may be scalars, giving a float, or arrays of one shape, giving an array.
    """
    image = _grayscale(img)
    rows, cols = image.shape
    xs = np.asarray(x, dtype=float)
    ys = np.asarray(y, dtype=float)
    scalar = xs.ndim == 0 and ys.ndim == 0

    xs = np.where(xs < 0, 0.0, xs)
    ys = np.where(ys < 0, 0.0, ys)
    xs = np.where(xs >= cols, cols - 1.0, xs)
    ys = np.where(ys >= rows, rows - 1.0, ys)

    x0 = xs.astype(np.int64)
    y0 = ys.astype(np.int64)
    x1 = np.minimum(x0 + 1, cols - 1)
    y1 = np.minimum(y0 + 1, rows - 1)
    xx = xs - np.floor(xs)
    yy = ys - np.floor(ys)

    values = image.astype(float)
    result = (
        (1 - xx) * (1 - yy) * values[y0, x0]
        + xx * (1 - yy) * values[y0, x1]
        + (1 - xx) * yy * values[y1, x0]
        + xx * yy * values[y1, x1]
    )
    return float(result) if scalar else result


def _source_coordinates(dst_size: int, src_size: int) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    ratio = src_size / dst_size
    f = (np.arange(dst_size) + 0.5) * ratio - 0.5
    s = np.floor(f).astype(np.int64)
    frac = f - s
    low = s < 0
    frac[low] = 0.0
    s[low] = 0
    high = s >= src_size - 1
    frac[high] = 0.0
    s[high] = src_size - 1
    return s, np.minimum(s + 1, src_size - 1), frac


def _resize_linear(image: np.ndarray, width: int, height: int) -> np.ndarray:
    rows, cols = image.shape
    x0, x1, fx = _source_coordinates(width, cols)
    y0, y1, fy = _source_coordinates(height, rows)
    values = image.astype(float)
    top = values[y0][:, x0] * (1 - fx) + values[y0][:, x1] * fx
    bottom = values[y1][:, x0] * (1 - fx) + values[y1][:, x1] * fx
    result = top * (1 - fy)[:, None] + bottom * fy[:, None]
    if np.issubdtype(image.dtype, np.integer):
        info = np.iinfo(image.dtype)
        return np.clip(np.floor(result + 0.5), info.min, info.max).astype(image.dtype)
    return result.astype(image.dtype)


def build_pyramid(image: np.ndarray, levels: int = 4, scale: float = 0.5) -> list[np.ndarray]:
    """Image pyramid from fine to coarse; level 0 is ``image`` itself.

    Each level is the previous one resized bilinearly by ``scale``, with the
    size truncated to whole pixels.
    """
    base = _grayscale(image)
    if levels < 1:
        raise ValueError("levels must be at least 1")
    if not 0.0 < scale <= 1.0:
        raise ValueError("scale must be in (0, 1]")
    pyramid = [base]
    for _ in range(levels - 1):
        previous = pyramid[-1]
        height = int(previous.shape[0] * scale)
        width = int(previous.shape[1] * scale)
        if height < 1 or width < 1:
            raise ValueError("image too small for the requested pyramid")
        pyramid.append(_resize_linear(previous, width, height))
    return pyramid