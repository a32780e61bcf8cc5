"""Bundle adjustment of BAL problems with a robust sparse least-squares solver."""

from __future__ import annotations

import sys
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np
from scipy.optimize import OptimizeResult, least_squares
from scipy.sparse import coo_matrix

from vslam.bal import BALProblem
from vslam.lie import so3_exp, so3_log

_EPSILON = sys.float_info.epsilon
_CAMERA_SIZE = 9
_POINT_SIZE = 3


@dataclass(eq=False)
class PoseAndIntrinsics:
    """Camera rotation, translation, focal length and radial distortion."""

    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    focal: float = 0.0
    k1: float = 0.0
    k2: float = 0.0

    @classmethod
    def from_array(cls, data: Sequence[float]) -> PoseAndIntrinsics:
        """Read a 9-value camera block: rotation vector, translation, f, k1, k2."""
        values = np.asarray(data, dtype=float)
        if values.shape != (_CAMERA_SIZE,):
            raise ValueError(f"camera block must have 9 values, got shape {values.shape}")
        return cls(
            rotation=so3_exp(values[:3]),
            translation=values[3:6].copy(),
            focal=float(values[6]),
            k1=float(values[7]),
            k2=float(values[8]),
        )

    def to_array(self) -> np.ndarray:
        """The 9-value camera block of this estimate."""
        return np.concatenate(
            [so3_log(self.rotation), self.translation, [self.focal, self.k1, self.k2]]
        )

    def project(self, point: Sequence[float]) -> np.ndarray:
        """Project a 3D point with this camera.

        The distortion radius is taken over the whole normalised vector
        ``(-x/z, -y/z, -1)``.
        """
        pc = self.rotation @ np.asarray(point, dtype=float) + self.translation
        pc = -pc / pc[2]
        r2 = float(pc @ pc)
        distortion = 1.0 + r2 * (self.k1 + self.k2 * r2)
        return np.array([self.focal * distortion * pc[0], self.focal * distortion * pc[1]])


def _rotate_points(angle_axis: np.ndarray, points: np.ndarray) -> np.ndarray:
    theta_squared = np.einsum("ij,ij->i", angle_axis, angle_axis)
    large = theta_squared > _EPSILON
    theta = np.sqrt(np.where(large, theta_squared, 1.0))
    w = angle_axis / theta[:, None]
    cos_theta = np.cos(theta)[:, None]
    sin_theta = np.sin(theta)[:, None]
    tmp = np.einsum("ij,ij->i", w, points)[:, None] * (1.0 - cos_theta)
    rotated = points * cos_theta + np.cross(w, points) * sin_theta + w * tmp
    approximated = points + np.cross(angle_axis, points)
    return np.where(large[:, None], rotated, approximated)


def _residuals(x: np.ndarray, problem: BALProblem) -> np.ndarray:
    split = _CAMERA_SIZE * problem.num_cameras
    cameras = x[:split].reshape(problem.num_cameras, _CAMERA_SIZE)[problem.camera_index]
    points = x[split:].reshape(problem.num_points, _POINT_SIZE)[problem.point_index]
    p = _rotate_points(cameras[:, :3], points) + cameras[:, 3:6]
    xp = -p[:, 0] / p[:, 2]
    yp = -p[:, 1] / p[:, 2]
    r2 = xp * xp + yp * yp
    distortion = 1.0 + r2 * (cameras[:, 7] + cameras[:, 8] * r2)
    scale = cameras[:, 6] * distortion
    predictions = np.column_stack([scale * xp, scale * yp])
    return (predictions - problem.observations).ravel()


def _jacobian_sparsity(problem: BALProblem) -> coo_matrix:
    count = problem.num_observations
    offset = _CAMERA_SIZE * problem.num_cameras
    camera_cols = problem.camera_index[:, None] * _CAMERA_SIZE + np.arange(_CAMERA_SIZE)
    point_cols = offset + problem.point_index[:, None] * _POINT_SIZE + np.arange(_POINT_SIZE)
    cols = np.hstack([camera_cols, point_cols])
    observation = np.arange(count)[:, None]
    rows = np.concatenate([np.broadcast_to(2 * observation + r, cols.shape).ravel() for r in (0, 1)])
    all_cols = np.concatenate([cols.ravel(), cols.ravel()])
    data = np.ones(rows.size, dtype=np.int8)
    return coo_matrix((data, (rows, all_cols)), shape=(2 * count, problem.num_parameters))


def solve_ba(
    problem: BALProblem, robust: bool = True, max_iterations: int = 40
) -> OptimizeResult:
    """Refine all cameras and points of ``problem`` in place.

    With ``robust`` the residuals go through a Huber loss of scale 1.
    Returns the solver's result; ``problem.parameters`` holds the solution.
    """
    if problem.use_quaternions:
        raise ValueError("bundle adjustment needs angle-axis cameras")
    if problem.num_observations == 0:
        raise ValueError("problem has no observations")
    if max_iterations < 1:
        raise ValueError("max_iterations must be positive")

    result = least_squares(
        _residuals,
        problem.parameters.copy(),
        jac_sparsity=_jacobian_sparsity(problem),
        x_scale="jac",
        loss="huber" if robust else "linear",
        f_scale=1.0,
        max_nfev=max_iterations,
        method="trf",
        args=(problem,),
    )
    problem.parameters[:] = result.x
    return result


def main(argv: Sequence[str] | None = None) -> int:
    """Load, condition and solve a BAL problem, writing point clouds before and after."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 1:
        print("usage: bundle_adjustment bal_data.txt")
        return 1

    problem = BALProblem.from_file(args[0])
    problem.normalize()
    problem.perturb(0.1, 0.5, 0.5)
    problem.write_to_ply_file("initial.ply")

    print("bal problem file loaded...")
    print(
        f"bal problem have {problem.num_cameras} cameras and {problem.num_points} points. "
    )
    print(f"Forming {problem.num_observations} observations. ")
    print("Solving BA ... ")
    result = solve_ba(problem)
    print(f"{result.message} final cost: {result.cost:g}")

    problem.write_to_ply_file("final.ply")
    return 0