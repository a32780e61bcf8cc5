"""Pinhole camera intrinsics and conversions between pixels and camera coordinates."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class Intrinsics:
    """Focal lengths and principal point of a pinhole camera."""

    fx: float
    fy: float
    cx: float
    cy: float

    def matrix(self) -> np.ndarray:
        """The 3x3 camera matrix K."""
        return np.array([[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]])

    def scaled(self, scale: float) -> Intrinsics:
        """Intrinsics of the image resized by ``scale``."""
        return Intrinsics(self.fx * scale, self.fy * scale, self.cx * scale, self.cy * scale)

    def pixel_to_camera(self, point: np.ndarray) -> np.ndarray:
        """Normalised image coordinates of pixels with shape (..., 2)."""
        p = np.asarray(point, dtype=float)
        if p.shape[-1:] != (2,):
            raise ValueError(f"pixels must have 2 coordinates, got shape {p.shape}")
        return np.stack([(p[..., 0] - self.cx) / self.fx, (p[..., 1] - self.cy) / self.fy], axis=-1)

    def camera_to_pixel(self, point: np.ndarray) -> np.ndarray:
        """Pixel coordinates of camera-frame 3D points with shape (..., 3)."""
        p = np.asarray(point, dtype=float)
        if p.shape[-1:] != (3,):
            raise ValueError(f"points must have 3 coordinates, got shape {p.shape}")
        return np.stack(
            [
                self.fx * p[..., 0] / p[..., 2] + self.cx,
                self.fy * p[..., 1] / p[..., 2] + self.cy,
            ],
            axis=-1,
        )


TUM_FREIBURG2 = Intrinsics(fx=520.9, fy=521.0, cx=325.1, cy=249.7)