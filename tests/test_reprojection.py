import numpy as np
import pytest

from vslam.reprojection import SnavelyReprojectionError, cam_projection_with_distortion
from vslam.rotation import angle_axis_rotate_point


def _camera(rotation=(0.0, 0.0, 0.0), translation=(0.0, 0.0, 0.0), focal=1.0, k1=0.0, k2=0.0):
    return np.array([*rotation, *translation, focal, k1, k2])


def test_identity_camera_projects_with_negated_division():
    prediction = cam_projection_with_distortion(_camera(), [2.0, 4.0, -2.0])
    np.testing.assert_allclose(prediction, [1.0, 2.0])


def test_focal_length_scales_prediction():
    point = [0.3, -0.2, -5.0]
    base = cam_projection_with_distortion(_camera(), point)
    scaled = cam_projection_with_distortion(_camera(focal=500.0), point)
    np.testing.assert_allclose(scaled, 500.0 * base)


def test_distortion_is_radial():
    point = [0.3, -0.2, -2.0]
    base = cam_projection_with_distortion(_camera(), point)
    distorted = cam_projection_with_distortion(_camera(k1=0.1, k2=0.01), point)
    assert distorted[0] / distorted[1] == pytest.approx(base[0] / base[1])
    assert abs(distorted[0]) > abs(base[0])


def test_translation_equals_shifting_point():
    point = np.array([0.5, 1.0, -4.0])
    shift = np.array([0.1, -0.3, 0.2])
    moved_camera = cam_projection_with_distortion(_camera(translation=shift), point)
    moved_point = cam_projection_with_distortion(_camera(), point + shift)
    np.testing.assert_allclose(moved_camera, moved_point)


def test_rotation_equals_rotating_point():
    point = np.array([0.5, 1.0, -4.0])
    rotation = np.array([0.1, -0.2, 0.05])
    rotated_camera = cam_projection_with_distortion(_camera(rotation=rotation), point)
    rotated_point = cam_projection_with_distortion(_camera(), angle_axis_rotate_point(rotation, point))
    np.testing.assert_allclose(rotated_camera, rotated_point)


def test_residual_is_zero_at_prediction():
    camera = _camera(rotation=(0.01, 0.02, -0.03), translation=(0.1, 0.2, 0.3), focal=400.0, k1=0.01)
    point = [1.0, -0.5, -6.0]
    prediction = cam_projection_with_distortion(camera, point)
    residual = SnavelyReprojectionError(prediction[0], prediction[1])(camera, point)
    np.testing.assert_allclose(residual, [0.0, 0.0], atol=1e-12)


def test_residual_is_prediction_minus_observation():
    camera = _camera(focal=300.0)
    point = [1.0, -0.5, -6.0]
    prediction = cam_projection_with_distortion(camera, point)
    residual = SnavelyReprojectionError(prediction[0] + 2.0, prediction[1] - 3.0)(camera, point)
    np.testing.assert_allclose(residual, [-2.0, 3.0])


def test_wrong_camera_size_is_rejected():
    with pytest.raises(ValueError):
        cam_projection_with_distortion(np.zeros(6), [0.0, 0.0, -1.0])