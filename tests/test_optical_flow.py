import numpy as np
import pytest

from vslam.optical_flow import track_multi_level, track_single_level
from vslam.orb import KeyPoint


def _pattern(xs, ys):
    return 128.0 + 50.0 * np.sin(xs / 8.0 + ys / 13.0) + 40.0 * np.cos(ys / 9.0 - xs / 17.0)


def _pair(shift_x, shift_y, size=160):
    ys, xs = np.mgrid[0:size, 0:size].astype(float)
    return _pattern(xs, ys), _pattern(xs - shift_x, ys - shift_y)


KEYPOINTS = [
    KeyPoint(70.0, 80.0),
    KeyPoint(90.0, 70.0),
    KeyPoint(80.0, 95.0),
    KeyPoint(60.0, 60.0),
]


def _assert_shifted(tracked, shift_x, shift_y, tolerance):
    assert len(tracked) == len(KEYPOINTS)
    for source, result in zip(KEYPOINTS, tracked):
        assert result.x == pytest.approx(source.x + shift_x, abs=tolerance)
        assert result.y == pytest.approx(source.y + shift_y, abs=tolerance)


def test_single_level_forward_recovers_shift():
    img1, img2 = _pair(1.5, -1.0)
    tracked, success = track_single_level(img1, img2, KEYPOINTS)
    assert all(success)
    _assert_shifted(tracked, 1.5, -1.0, 0.2)


def test_single_level_inverse_recovers_shift():
    img1, img2 = _pair(1.0, 0.5)
    tracked, success = track_single_level(img1, img2, KEYPOINTS, inverse=True)
    assert all(success)
    _assert_shifted(tracked, 1.0, 0.5, 0.3)


def test_initial_guess_at_truth_stays_there():
    img1, img2 = _pair(2.0, 1.0)
    guesses = [KeyPoint(kp.x + 2.0, kp.y + 1.0) for kp in KEYPOINTS]
    tracked, success = track_single_level(img1, img2, KEYPOINTS, guesses, has_initial=True)
    assert all(success)
    _assert_shifted(tracked, 2.0, 1.0, 0.1)


def test_identical_images_leave_keypoints_in_place():
    img1, _ = _pair(0.0, 0.0)
    tracked, success = track_single_level(img1, img1.copy(), KEYPOINTS)
    assert success == [True] * len(KEYPOINTS)
    assert [(kp.x, kp.y) for kp in tracked] == [(kp.x, kp.y) for kp in KEYPOINTS]


def test_flat_image_gives_zero_motion():
    flat = np.full((40, 40), 100.0)
    points = [KeyPoint(20.0, 20.0)]
    tracked, success = track_single_level(flat, flat, points)
    assert success == [True]
    assert (tracked[0].x, tracked[0].y) == (20.0, 20.0)


def test_response_is_kept():
    img1, img2 = _pair(1.0, 0.0)
    tracked, _ = track_single_level(img1, img2, [KeyPoint(70.0, 80.0, 12.5)])
    assert tracked[0].response == 12.5


def test_empty_keypoints():
    img1, img2 = _pair(1.0, 0.0)
    assert track_single_level(img1, img2, []) == ([], [])
    assert track_multi_level(img1, img2, []) == ([], [])


def test_initial_guess_requires_kp2():
    img1, img2 = _pair(1.0, 0.0)
    with pytest.raises(ValueError):
        track_single_level(img1, img2, KEYPOINTS, None, has_initial=True)


def test_initial_guess_length_mismatch():
    img1, img2 = _pair(1.0, 0.0)
    with pytest.raises(ValueError):
        track_single_level(img1, img2, KEYPOINTS, KEYPOINTS[:1], has_initial=True)


def test_colour_image_rejected():
    image = np.zeros((20, 20, 3))
    with pytest.raises(ValueError):
        track_single_level(image, image, [KeyPoint(10.0, 10.0)])


def test_multi_level_recovers_larger_shift():
    img1, img2 = _pair(5.0, 3.0)
    tracked, success = track_multi_level(img1, img2, KEYPOINTS)
    assert all(success)
    _assert_shifted(tracked, 5.0, 3.0, 0.3)


def test_multi_level_inverse_recovers_shift():
    img1, img2 = _pair(4.0, -2.0)
    tracked, success = track_multi_level(img1, img2, KEYPOINTS, inverse=True)
    assert all(success)
    _assert_shifted(tracked, 4.0, -2.0, 0.4)