"""Bundle-adjustment-in-the-large (BAL) problems: loading, saving and conditioning."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from os import PathLike
from pathlib import Path

import numpy as np

from vslam.noise import RandomSource, rand_normal
from vslam.rotation import (
    angle_axis_rotate_point,
    angle_axis_to_quaternion,
    quaternion_to_angle_axis,
)

_ANGLE_AXIS_CAMERA = 9
_QUATERNION_CAMERA = 10
_POINT_BLOCK = 3


def median(data: Sequence[float] | np.ndarray) -> float:
    """The element at position ``n // 2`` of the sorted data."""
    values = np.asarray(data, dtype=float).ravel()
    if values.size == 0:
        raise ValueError("median of empty data")
    k = values.size // 2
    return float(np.partition(values, k)[k])


def perturb_point3(
    sigma: float, point: Sequence[float], rng: RandomSource | None = None
) -> np.ndarray:
    """Return ``point`` with Gaussian noise of deviation ``sigma`` added to each axis."""
    noise = [rand_normal(rng) * sigma for _ in range(3)]
    return np.asarray(point, dtype=float) + noise


@dataclass(eq=False)
class BALProblem:
    """Cameras, points and observations of a BAL dataset."""

    num_cameras: int
    num_points: int
    camera_index: np.ndarray
    point_index: np.ndarray
    observations: np.ndarray
    parameters: np.ndarray
    use_quaternions: bool = False

    def __post_init__(self) -> None:
        self.camera_index = np.asarray(self.camera_index, dtype=np.int64).ravel()
        self.point_index = np.asarray(self.point_index, dtype=np.int64).ravel()
        self.observations = np.asarray(self.observations, dtype=float).reshape(-1, 2)
        self.parameters = np.array(self.parameters, dtype=float).ravel()
        count = self.observations.shape[0]
        if self.camera_index.size != count or self.point_index.size != count:
            raise ValueError("observation indices and observations differ in length")
        expected = self.camera_block_size * self.num_cameras + _POINT_BLOCK * self.num_points
        if self.parameters.size != expected:
            raise ValueError(f"expected {expected} parameters, got {self.parameters.size}")

    @classmethod
    def from_file(
        cls, filename: str | PathLike[str], use_quaternions: bool = False
    ) -> BALProblem:
        """Load a BAL text file, optionally converting rotations to quaternions."""
        words = Path(filename).read_text().split()
        try:
            num_cameras, num_points, num_observations = (int(w) for w in words[:3])
        except ValueError as exc:
            raise ValueError("invalid BAL data file: bad header") from exc
        if min(num_cameras, num_points, num_observations) < 0:
            raise ValueError("invalid BAL data file: negative counts")

        observations_end = 3 + 4 * num_observations
        num_parameters = _ANGLE_AXIS_CAMERA * num_cameras + _POINT_BLOCK * num_points
        if len(words) < observations_end + num_parameters:
            raise ValueError("invalid BAL data file: not enough values")

        try:
            rows = np.array(words[3:observations_end], dtype=str).reshape(num_observations, 4)
            camera_index = rows[:, 0].astype(np.int64)
            point_index = rows[:, 1].astype(np.int64)
            observations = rows[:, 2:].astype(float)
            parameters = np.array(
                words[observations_end : observations_end + num_parameters], dtype=float
            )
        except ValueError as exc:
            raise ValueError("invalid BAL data file: malformed value") from exc

        if use_quaternions:
            split = _ANGLE_AXIS_CAMERA * num_cameras
            cameras = parameters[:split].reshape(num_cameras, _ANGLE_AXIS_CAMERA)
            quaternions = np.array(
                [angle_axis_to_quaternion(camera[:3]) for camera in cameras]
            ).reshape(num_cameras, 4)
            converted = np.hstack([quaternions, cameras[:, 3:]])
            parameters = np.concatenate([converted.ravel(), parameters[split:]])

        return cls(
            num_cameras=num_cameras,
            num_points=num_points,
            camera_index=camera_index,
            point_index=point_index,
            observations=observations,
            parameters=parameters,
            use_quaternions=use_quaternions,
        )

    @property
    def camera_block_size(self) -> int:
        return _QUATERNION_CAMERA if self.use_quaternions else _ANGLE_AXIS_CAMERA

    @property
    def point_block_size(self) -> int:
        return _POINT_BLOCK

    @property
    def num_observations(self) -> int:
        return int(self.observations.shape[0])

    @property
    def num_parameters(self) -> int:
        return int(self.parameters.size)

    @property
    def cameras(self) -> np.ndarray:
        """Writable view of the camera blocks, one row per camera."""
        end = self.camera_block_size * self.num_cameras
        return self.parameters[:end].reshape(self.num_cameras, self.camera_block_size)

    @property
    def points(self) -> np.ndarray:
        """Writable view of the points, one row per point."""
        start = self.camera_block_size * self.num_cameras
        return self.parameters[start:].reshape(self.num_points, _POINT_BLOCK)

    def write_to_file(self, filename: str | PathLike[str]) -> None:
        """Save the problem as BAL text with angle-axis cameras."""
        lines = [f"{self.num_cameras} {self.num_cameras} {self.num_points} {self.num_observations}"]
        for cam, pt, (x, y) in zip(self.camera_index, self.point_index, self.observations):
            lines.append(f"{cam} {pt} {x:g} {y:g}")
        for camera in self.cameras:
            if self.use_quaternions:
                values = np.concatenate([quaternion_to_angle_axis(camera[:4]), camera[4:10]])
            else:
                values = camera
            lines.extend(f"{v:.16g}" for v in values)
        lines.extend(f"{v:.16g}" for v in self.points.ravel())
        Path(filename).write_text("".join(line + "\n" for line in lines))

    def write_to_ply_file(self, filename: str | PathLike[str]) -> None:
        """Save camera centres (green) and points (white) as an ASCII PLY cloud."""
        header = [
            "ply",
            "format ascii 1.0",
            f"element vertex {self.num_cameras + self.num_points}",
            "property float x",
            "property float y",
            "property float z",
            "property uchar red",
            "property uchar green",
            "property uchar blue",
            "end_header",
        ]
        body = []
        for camera in self.cameras:
            _, center = self.camera_to_angle_axis_and_center(camera)
            body.append(f"{center[0]:g} {center[1]:g} {center[2]:g} 0 255 0\n")
        for point in self.points:
            body.append("".join(f"{v:g} " for v in point) + " 255 255 255\n")
        Path(filename).write_text("\n".join(header) + "\n" + "".join(body))

    def camera_to_angle_axis_and_center(
        self, camera: Sequence[float]
    ) -> tuple[np.ndarray, np.ndarray]:
        """Split a camera block into its angle-axis rotation and its centre ``-R^T t``."""
        cam = np.asarray(camera, dtype=float)
        if self.use_quaternions:
            angle_axis = quaternion_to_angle_axis(cam[:4])
        else:
            angle_axis = cam[:3].copy()
        b = self.camera_block_size
        center = -angle_axis_rotate_point(-angle_axis, cam[b - 6 : b - 3])
        return angle_axis, center

    def angle_axis_and_center_to_camera(
        self, angle_axis: Sequence[float], center: Sequence[float]
    ) -> np.ndarray:
        """Rotation and translation part of a camera block for a rotation and centre.

        The result has ``camera_block_size - 3`` entries; the intrinsics are not included.
        """
        if self.use_quaternions:
            rotation = angle_axis_to_quaternion(angle_axis)
        else:
            rotation = np.asarray(angle_axis, dtype=float)
        translation = -angle_axis_rotate_point(angle_axis, center)
        return np.concatenate([rotation, translation])

    def _set_pose(self, camera: np.ndarray, angle_axis: np.ndarray, center: np.ndarray) -> None:
        camera[: self.camera_block_size - 3] = self.angle_axis_and_center_to_camera(
            angle_axis, center
        )

    def normalize(self) -> None:
        """Centre the points on their median and scale their median deviation to 100."""
        points = self.points
        center_of_points = np.array([median(points[:, axis]) for axis in range(3)])
        deviation = median(np.abs(points - center_of_points).sum(axis=1))
        scale = 100.0 / deviation

        points[:] = scale * (points - center_of_points)

        for camera in self.cameras:
            angle_axis, center = self.camera_to_angle_axis_and_center(camera)
            self._set_pose(camera, angle_axis, scale * (center - center_of_points))

    def perturb(
        self,
        rotation_sigma: float,
        translation_sigma: float,
        point_sigma: float,
        rng: RandomSource | None = None,
    ) -> None:
        """Add Gaussian noise to points, camera rotations and camera translations."""
        if point_sigma < 0.0 or rotation_sigma < 0.0 or translation_sigma < 0.0:
            raise ValueError("noise deviations must not be negative")

        points = self.points
        if point_sigma > 0:
            for point in points:
                point[:] = perturb_point3(point_sigma, point, rng)

        b = self.camera_block_size
        for camera in self.cameras:
            angle_axis, center = self.camera_to_angle_axis_and_center(camera)
            if rotation_sigma > 0.0:
                angle_axis = perturb_point3(rotation_sigma, angle_axis, rng)
            self._set_pose(camera, angle_axis, center)
            if translation_sigma > 0.0:
                camera[b - 6 : b - 3] = perturb_point3(translation_sigma, camera[b - 6 : b - 3], rng)