import numpy as np
import pytest
from PIL import Image

from vslam.orb import KeyPoint, compute_orb, fast_keypoints, load_gray


def _random_image(seed: int, high: int = 256, size: int = 64) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.integers(0, high, size=(size, size), dtype=np.int64).astype(np.uint8)


def _gradient_square() -> np.ndarray:
    image = np.zeros((60, 60), dtype=np.uint8)
    for r in range(20, 30):
        for c in range(20, 30):
            image[r, c] = 250 - 5 * ((r - 20) + (c - 20))
    return image


def test_keypoint_pt():
    kp = KeyPoint(3.5, 7.25)
    assert np.array_equal(kp.pt, np.array([3.5, 7.25]))


def test_load_gray_round_trip(tmp_path):
    data = _random_image(1, size=16)
    path = tmp_path / "gray.png"
    Image.fromarray(data).save(path)
    loaded = load_gray(path)
    assert loaded.dtype == np.uint8
    assert np.array_equal(loaded, data)


def test_load_gray_converts_colour(tmp_path):
    rgb = np.full((5, 6, 3), 77, dtype=np.uint8)
    path = tmp_path / "colour.png"
    Image.fromarray(rgb).save(path)
    loaded = load_gray(path)
    assert loaded.shape == (5, 6)
    assert np.all(loaded == 77)


def test_load_gray_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_gray(tmp_path / "missing.png")


def test_fast_constant_image_has_no_corners():
    assert fast_keypoints(np.full((40, 40), 128, dtype=np.uint8), 40) == []


def test_fast_tiny_image_has_no_corners():
    assert fast_keypoints(np.zeros((5, 5), dtype=np.uint8), 10) == []


def test_fast_finds_square_corner():
    keypoints = fast_keypoints(_gradient_square(), 40)
    positions = {(kp.x, kp.y) for kp in keypoints}
    assert (20.0, 20.0) in positions


def test_fast_keypoints_stay_near_square():
    keypoints = fast_keypoints(_gradient_square(), 40)
    assert keypoints
    for kp in keypoints:
        assert 17 <= kp.x <= 32
        assert 17 <= kp.y <= 32
        assert kp.response >= 40


def test_fast_keypoints_row_major_order():
    keypoints = fast_keypoints(_random_image(5, size=48), 20)
    order = [(kp.y, kp.x) for kp in keypoints]
    assert order == sorted(order)


def test_fast_threshold_above_range_finds_nothing():
    assert fast_keypoints(_gradient_square(), 255) == []


def test_fast_higher_threshold_finds_fewer():
    image = _random_image(9, size=48)
    assert len(fast_keypoints(image, 60)) <= len(fast_keypoints(image, 20))


def test_fast_rejects_negative_threshold():
    with pytest.raises(ValueError):
        fast_keypoints(np.zeros((10, 10), dtype=np.uint8), -1)


def test_fast_rejects_colour_image():
    with pytest.raises(ValueError):
        fast_keypoints(np.zeros((10, 10, 3), dtype=np.uint8), 10)


def test_compute_orb_marks_border_points():
    image = _random_image(2)
    keypoints = [KeyPoint(5, 5), KeyPoint(32, 32), KeyPoint(48, 32), KeyPoint(47, 47)]
    descriptors = compute_orb(image, keypoints)
    assert len(descriptors) == len(keypoints)
    assert descriptors[0] is None
    assert descriptors[2] is None
    for desc in (descriptors[1], descriptors[3]):
        assert desc.dtype == np.uint32
        assert desc.shape == (8,)


def test_compute_orb_constant_patch_is_zero():
    image = np.full((64, 64), 100, dtype=np.uint8)
    (desc,) = compute_orb(image, [KeyPoint(30, 30)])
    assert np.array_equal(desc, np.zeros(8, dtype=np.uint32))


def test_compute_orb_is_deterministic():
    image = _random_image(3)
    keypoints = [KeyPoint(20, 25), KeyPoint(40.5, 33.2)]
    first = compute_orb(image, keypoints)
    second = compute_orb(image.copy(), keypoints)
    for a, b in zip(first, second):
        assert np.array_equal(a, b)


def test_compute_orb_invariant_to_contrast_scaling():
    image = _random_image(4, high=128)
    brighter = (image.astype(np.int64) * 2).astype(np.uint8)
    keypoints = [KeyPoint(x, y) for x in (18, 30, 45) for y in (17, 32, 46)]
    for a, b in zip(compute_orb(image, keypoints), compute_orb(brighter, keypoints)):
        assert np.array_equal(a, b)


def test_compute_orb_differs_between_images():
    keypoint = [KeyPoint(32, 32)]
    (a,) = compute_orb(_random_image(6), keypoint)
    (b,) = compute_orb(_random_image(7), keypoint)
    assert not np.array_equal(a, b)


def test_compute_orb_rejects_colour_image():
    with pytest.raises(ValueError):
        compute_orb(np.zeros((64, 64, 3), dtype=np.uint8), [KeyPoint(32, 32)])