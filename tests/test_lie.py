import math

import numpy as np
import pytest
from hypothesis import given
from hypothesis import strategies as st

from vslam.lie import SE3, hat, so3_exp, so3_log

small = st.floats(min_value=-1.5, max_value=1.5, allow_nan=False)
vec3 = st.tuples(small, small, small)


def test_hat_matches_cross_product():
    v = np.array([0.3, -1.2, 2.0])
    w = np.array([1.5, 0.4, -0.7])
    assert np.allclose(hat(v) @ w, np.cross(v, w))


def test_hat_is_skew_symmetric():
    k = hat([1.0, 2.0, 3.0])
    assert np.allclose(k, -k.T)


def test_hat_rejects_wrong_size():
    with pytest.raises(ValueError):
        hat([1.0, 2.0])


@given(vec3)
def test_so3_exp_is_rotation(omega):
    r = so3_exp(omega)
    assert np.allclose(r @ r.T, np.eye(3), atol=1e-9)
    assert math.isclose(np.linalg.det(r), 1.0, abs_tol=1e-9)


@given(vec3)
def test_so3_log_inverts_exp(omega):
    assert np.allclose(so3_log(so3_exp(omega)), omega, atol=1e-8)


def test_so3_exp_of_zero_is_identity():
    assert np.allclose(so3_exp([0.0, 0.0, 0.0]), np.eye(3))


def test_so3_quarter_turn_about_z():
    r = so3_exp([0.0, 0.0, math.pi / 2])
    assert np.allclose(r @ np.array([1.0, 0.0, 0.0]), [0.0, 1.0, 0.0])


def test_so3_log_near_pi():
    omega = np.array([0.0, math.pi - 1e-6, 0.0])
    assert np.allclose(so3_log(so3_exp(omega)), omega, atol=1e-6)


def test_so3_log_rejects_non_square():
    with pytest.raises(ValueError):
        so3_log(np.eye(2))


def test_se3_exp_of_zero_is_identity():
    assert np.allclose(SE3.exp(np.zeros(6)).matrix(), np.eye(4))


def test_se3_exp_pure_translation():
    pose = SE3.exp([1.0, -2.0, 3.0, 0.0, 0.0, 0.0])
    assert np.allclose(pose.translation, [1.0, -2.0, 3.0])
    assert np.allclose(pose.rotation, np.eye(3))


def test_se3_exp_rotation_part_matches_so3():
    phi = np.array([0.2, -0.1, 0.4])
    pose = SE3.exp(np.concatenate([[0.5, 0.1, -0.3], phi]))
    assert np.allclose(pose.rotation, so3_exp(phi))


def test_se3_exp_rejects_wrong_size():
    with pytest.raises(ValueError):
        SE3.exp([0.0] * 5)


@given(vec3, vec3)
def test_inverse_composition_is_identity(rho, phi):
    pose = SE3.exp(np.concatenate([rho, phi]))
    assert np.allclose((pose @ pose.inverse()).matrix(), np.eye(4), atol=1e-9)
    assert np.allclose((pose.inverse() @ pose).matrix(), np.eye(4), atol=1e-9)


def test_composition_matches_matrix_product():
    a = SE3.exp([0.1, 0.2, 0.3, 0.4, -0.5, 0.6])
    b = SE3.exp([-1.0, 0.5, 2.0, 0.1, 0.1, -0.2])
    assert np.allclose((a @ b).matrix(), a.matrix() @ b.matrix())


def test_transform_single_and_many_agree_with_matrix():
    pose = SE3.exp([0.1, 0.2, 0.3, 0.4, -0.5, 0.6])
    points = np.array([[1.0, 2.0, 3.0], [-1.0, 0.0, 4.0]])
    homogeneous = np.hstack([points, np.ones((2, 1))]) @ pose.matrix().T
    assert np.allclose(pose.transform(points), homogeneous[:, :3])
    assert np.allclose(pose.transform(points[0]), homogeneous[0, :3])


def test_transform_rejects_bad_shape():
    with pytest.raises(ValueError):
        SE3().transform(np.zeros((2, 2)))


def test_matmul_with_non_pose_is_type_error():
    with pytest.raises(TypeError):
        SE3() @ 3