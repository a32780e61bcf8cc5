"""Angle-axis and quaternion rotation helpers for 3-vectors."""

from __future__ import annotations

import math
import sys
from collections.abc import Sequence

import numpy as np

_EPSILON = sys.float_info.epsilon


def _vector(values: Sequence[float] | np.ndarray, size: int, name: str) -> np.ndarray:
    array = np.asarray(values, dtype=float)
    if array.shape != (size,):
        raise ValueError(f"{name} must have exactly {size} components, got shape {array.shape}")
    return array


def dot_product(x: Sequence[float], y: Sequence[float]) -> float:
    """Dot product of two 3-vectors."""
    a = _vector(x, 3, "x")
    b = _vector(y, 3, "y")
    return float(a[0] * b[0] + a[1] * b[1] + a[2] * b[2])


def cross_product(x: Sequence[float], y: Sequence[float]) -> np.ndarray:
    """Cross product of two 3-vectors."""
    a = _vector(x, 3, "x")
    b = _vector(y, 3, "y")
    return np.array(
        [
            a[1] * b[2] - a[2] * b[1],
            a[2] * b[0] - a[0] * b[2],
            a[0] * b[1] - a[1] * b[0],
        ]
    )


def angle_axis_to_quaternion(angle_axis: Sequence[float]) -> np.ndarray:
    """Convert an angle-axis vector to a quaternion ``(w, x, y, z)``."""
    a = _vector(angle_axis, 3, "angle_axis")
    theta_squared = float(a @ a)
    if theta_squared > _EPSILON:
        theta = math.sqrt(theta_squared)
        half_theta = 0.5 * theta
        k = math.sin(half_theta) / theta
        return np.array([math.cos(half_theta), a[0] * k, a[1] * k, a[2] * k])
    # Near zero rotation: first-order approximation.
    return np.array([1.0, a[0] * 0.5, a[1] * 0.5, a[2] * 0.5])


def quaternion_to_angle_axis(quaternion: Sequence[float]) -> np.ndarray:
    """Convert a quaternion ``(w, x, y, z)`` to an angle-axis vector."""
    q = _vector(quaternion, 4, "quaternion")
    imaginary = q[1:]
    sin_squared_theta = float(imaginary @ imaginary)
    if sin_squared_theta > _EPSILON:
        sin_theta = math.sqrt(sin_squared_theta)
        cos_theta = q[0]
        # Keep the resulting angle within [-pi, pi].
        if cos_theta < 0.0:
            two_theta = 2.0 * math.atan2(-sin_theta, -cos_theta)
        else:
            two_theta = 2.0 * math.atan2(sin_theta, cos_theta)
        k = two_theta / sin_theta
    else:
        k = 2.0
    return imaginary * k


def angle_axis_rotate_point(angle_axis: Sequence[float], pt: Sequence[float]) -> np.ndarray:
    """Rotate a 3D point by an angle-axis rotation (Rodrigues' formula)."""
    a = _vector(angle_axis, 3, "angle_axis")
    p = _vector(pt, 3, "pt")
    theta_squared = dot_product(a, a)
    if theta_squared > _EPSILON:
        theta = math.sqrt(theta_squared)
        cos_theta = math.cos(theta)
        sin_theta = math.sin(theta)
        w = a / theta
        w_cross_pt = cross_product(w, p)
        tmp = dot_product(w, p) * (1.0 - cos_theta)
        return p * cos_theta + w_cross_pt * sin_theta + w * tmp
    # Near zero: R * p ~= p + w x p.
    return p + cross_product(a, p)