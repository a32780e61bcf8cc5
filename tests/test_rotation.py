import math

import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from scipy.spatial.transform import Rotation

from vslam.rotation import (
    angle_axis_rotate_point,
    angle_axis_to_quaternion,
    cross_product,
    dot_product,
    quaternion_to_angle_axis,
)

component = st.floats(min_value=-2.0, max_value=2.0, allow_nan=False)
vector3 = st.tuples(component, component, component)
rotation_vector = vector3.filter(lambda v: 1e-3 < math.sqrt(sum(c * c for c in v)) < 3.0)


@given(vector3, vector3)
def test_dot_product_matches_numpy(x, y):
    assert dot_product(x, y) == pytest.approx(float(np.dot(x, y)), abs=1e-12)


@given(vector3, vector3)
def test_cross_product_is_orthogonal_and_antisymmetric(x, y):
    c = cross_product(x, y)
    assert dot_product(c, x) == pytest.approx(0.0, abs=1e-9)
    assert dot_product(c, y) == pytest.approx(0.0, abs=1e-9)
    np.testing.assert_allclose(cross_product(y, x), -c, atol=1e-12)


def test_cross_product_of_vector_with_itself_is_zero():
    np.testing.assert_array_equal(cross_product([1.5, -2.0, 3.0], [1.5, -2.0, 3.0]), np.zeros(3))


def test_zero_angle_axis_gives_identity_quaternion():
    np.testing.assert_array_equal(angle_axis_to_quaternion([0.0, 0.0, 0.0]), [1.0, 0.0, 0.0, 0.0])


@given(rotation_vector)
def test_quaternion_is_unit_length(aa):
    q = angle_axis_to_quaternion(aa)
    assert float(np.linalg.norm(q)) == pytest.approx(1.0, abs=1e-12)


@given(rotation_vector)
def test_angle_axis_quaternion_round_trip(aa):
    back = quaternion_to_angle_axis(angle_axis_to_quaternion(aa))
    np.testing.assert_allclose(back, aa, atol=1e-9)


@settings(max_examples=50)
@given(rotation_vector, vector3)
def test_rotate_point_matches_scipy(aa, pt):
    expected = Rotation.from_rotvec(aa).apply(pt)
    np.testing.assert_allclose(angle_axis_rotate_point(aa, pt), expected, atol=1e-9)


@given(rotation_vector, vector3)
def test_rotation_preserves_norm(aa, pt):
    rotated = angle_axis_rotate_point(aa, pt)
    assert float(np.linalg.norm(rotated)) == pytest.approx(float(np.linalg.norm(pt)), abs=1e-9)


def test_small_angle_uses_first_order_approximation():
    aa = np.array([1e-10, -2e-10, 3e-10])
    pt = np.array([1.0, 2.0, 3.0])
    result = angle_axis_rotate_point(aa, pt)
    np.testing.assert_allclose(result, pt + cross_product(aa, pt), atol=0)


@given(rotation_vector, vector3)
def test_negated_quaternion_is_same_rotation(aa, pt):
    q = angle_axis_to_quaternion(aa)
    from_negated = quaternion_to_angle_axis(-q)
    np.testing.assert_allclose(
        angle_axis_rotate_point(from_negated, pt), angle_axis_rotate_point(aa, pt), atol=1e-9
    )


def test_wrong_length_is_rejected():
    with pytest.raises(ValueError):
        angle_axis_rotate_point([1.0, 2.0], [0.0, 0.0, 1.0])
    with pytest.raises(ValueError):
        quaternion_to_angle_axis([1.0, 0.0, 0.0])