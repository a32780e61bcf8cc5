"""Rotations and rigid-body motions: SO(3) and SE(3) exponentials and logarithms."""

from __future__ import annotations

import math
import sys
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from vslam.rotation import quaternion_to_angle_axis

_EPSILON = sys.float_info.epsilon


def _vec3(values: Sequence[float] | np.ndarray, name: str = "vector") -> np.ndarray:
    array = np.asarray(values, dtype=float)
    if array.shape != (3,):
        raise ValueError(f"{name} must have 3 components, got shape {array.shape}")
    return array


def _mat3(values: Sequence[Sequence[float]] | np.ndarray, name: str = "matrix") -> np.ndarray:
    array = np.asarray(values, dtype=float)
    if array.shape != (3, 3):
        raise ValueError(f"{name} must be 3x3, got shape {array.shape}")
    return array


def hat(v: Sequence[float]) -> np.ndarray:
    """The skew-symmetric matrix ``[v]x`` with ``hat(v) @ w == v x w``."""
    x, y, z = _vec3(v, "v")
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def so3_exp(omega: Sequence[float]) -> np.ndarray:
    """Rotation matrix of a rotation vector (Rodrigues' formula)."""
    w = _vec3(omega, "omega")
    theta_squared = float(w @ w)
    k = hat(w)
    k2 = k @ k
    if theta_squared <= _EPSILON:
        return np.eye(3) + k + 0.5 * k2
    theta = math.sqrt(theta_squared)
    return np.eye(3) + (math.sin(theta) / theta) * k + ((1.0 - math.cos(theta)) / theta_squared) * k2


def _matrix_to_quaternion(r: np.ndarray) -> np.ndarray:
    trace = r[0, 0] + r[1, 1] + r[2, 2]
    if trace > 0.0:
        s = math.sqrt(trace + 1.0) * 2.0
        return np.array(
            [0.25 * s, (r[2, 1] - r[1, 2]) / s, (r[0, 2] - r[2, 0]) / s, (r[1, 0] - r[0, 1]) / s]
        )
    if r[0, 0] > r[1, 1] and r[0, 0] > r[2, 2]:
        s = math.sqrt(1.0 + r[0, 0] - r[1, 1] - r[2, 2]) * 2.0
        return np.array(
            [(r[2, 1] - r[1, 2]) / s, 0.25 * s, (r[0, 1] + r[1, 0]) / s, (r[0, 2] + r[2, 0]) / s]
        )
    if r[1, 1] > r[2, 2]:
        s = math.sqrt(1.0 + r[1, 1] - r[0, 0] - r[2, 2]) * 2.0
        return np.array(
            [(r[0, 2] - r[2, 0]) / s, (r[0, 1] + r[1, 0]) / s, 0.25 * s, (r[1, 2] + r[2, 1]) / s]
        )
    s = math.sqrt(1.0 + r[2, 2] - r[0, 0] - r[1, 1]) * 2.0
    return np.array(
        [(r[1, 0] - r[0, 1]) / s, (r[0, 2] + r[2, 0]) / s, (r[1, 2] + r[2, 1]) / s, 0.25 * s]
    )


def so3_log(rotation: Sequence[Sequence[float]] | np.ndarray) -> np.ndarray:
    """Rotation vector of a rotation matrix, with angle in ``[0, pi]``."""
    r = _mat3(rotation, "rotation")
    return quaternion_to_angle_axis(_matrix_to_quaternion(r))


def _left_jacobian(omega: np.ndarray) -> np.ndarray:
    theta_squared = float(omega @ omega)
    k = hat(omega)
    k2 = k @ k
    if theta_squared <= _EPSILON:
        return np.eye(3) + 0.5 * k + k2 / 6.0
    theta = math.sqrt(theta_squared)
    return (
        np.eye(3)
        + ((1.0 - math.cos(theta)) / theta_squared) * k
        + ((theta - math.sin(theta)) / (theta_squared * theta)) * k2
    )


@dataclass(frozen=True, eq=False)
class SE3:
    """A rigid-body motion ``x -> R x + t``."""

    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self) -> None:
        object.__setattr__(self, "rotation", _mat3(self.rotation, "rotation").copy())
        object.__setattr__(self, "translation", _vec3(self.translation, "translation").copy())

    @classmethod
    def exp(cls, xi: Sequence[float]) -> SE3:
        """Motion for a twist ``(rho, phi)``: translation part first, rotation part second."""
        twist = np.asarray(xi, dtype=float)
        if twist.shape != (6,):
            raise ValueError(f"twist must have 6 components, got shape {twist.shape}")
        rho, phi = twist[:3], twist[3:]
        return cls(so3_exp(phi), _left_jacobian(phi) @ rho)

    def matrix(self) -> np.ndarray:
        """The 4x4 homogeneous transformation matrix."""
        m = np.eye(4)
        m[:3, :3] = self.rotation
        m[:3, 3] = self.translation
        return m

    def inverse(self) -> SE3:
        rt = self.rotation.T
        return SE3(rt, -rt @ self.translation)

    def transform(self, points: Sequence[float] | np.ndarray) -> np.ndarray:
        """Apply the motion to one point of shape (3,) or to points of shape (N, 3)."""
        p = np.asarray(points, dtype=float)
        if p.shape == (3,):
            return self.rotation @ p + self.translation
        if p.ndim == 2 and p.shape[1] == 3:
            return p @ self.rotation.T + self.translation
        raise ValueError(f"points must have shape (3,) or (N, 3), got {p.shape}")

    def __matmul__(self, other: object) -> SE3:
        if not isinstance(other, SE3):
            return NotImplemented
        return SE3(
            self.rotation @ other.rotation,
            self.rotation @ other.translation + self.translation,
        )