"""Brute-force Hamming matching of binary descriptors and match filtering."""

from __future__ import annotations

import sys
import time
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from PIL import Image, ImageDraw

from vslam.orb import KeyPoint, compute_orb, fast_keypoints, load_gray

FIRST_FILE = "./1.png"
SECOND_FILE = "./2.png"
MATCHES_FILE = "matches.png"

_FAST_THRESHOLD = 40
_DEFAULT_MAX_DISTANCE = 40
_NO_MATCH_DISTANCE = 256
_GOOD_MATCH_FLOOR = 30.0

_PALETTE = (
    (255, 0, 0),
    (0, 200, 0),
    (0, 0, 255),
    (255, 160, 0),
    (200, 0, 200),
    (0, 200, 200),
)


@dataclass(frozen=True)
class Match:
    """A correspondence between descriptor ``query_idx`` and descriptor ``train_idx``."""

    query_idx: int
    train_idx: int
    distance: float


def _is_empty(descriptor: np.ndarray | None) -> bool:
    return descriptor is None or len(descriptor) == 0


def hamming_distance(desc1: Sequence[int] | np.ndarray, desc2: Sequence[int] | np.ndarray) -> int:
    """Number of differing bits between two descriptors of 32-bit words."""
    a = np.asarray(desc1, dtype=np.uint64)
    b = np.asarray(desc2, dtype=np.uint64)
    if a.shape != b.shape:
        raise ValueError(f"descriptors differ in shape: {a.shape} and {b.shape}")
    return sum(int(word).bit_count() for word in np.bitwise_xor(a, b).ravel())


def bf_match(
    desc1: Sequence[np.ndarray | None],
    desc2: Sequence[np.ndarray | None],
    max_distance: int = _DEFAULT_MAX_DISTANCE,
) -> list[Match]:
    """Match each descriptor of ``desc1`` to its nearest one in ``desc2``.

    Missing descriptors (``None`` or empty) are skipped. A match is kept only
    when its distance is below ``max_distance``; on ties the first candidate wins.
    """
    matches: list[Match] = []
    for query_idx, query in enumerate(desc1):
        if _is_empty(query):
            continue
        best_train, best_distance = 0, _NO_MATCH_DISTANCE
        for train_idx, train in enumerate(desc2):
            if _is_empty(train):
                continue
            distance = hamming_distance(query, train)
            if distance < max_distance and distance < best_distance:
                best_train, best_distance = train_idx, distance
        if best_distance < max_distance:
            matches.append(Match(query_idx, best_train, best_distance))
    return matches


def filter_good_matches(matches: Sequence[Match]) -> list[Match]:
    """Keep matches no farther than twice the smallest distance, or 30 if that is larger."""
    if not matches:
        return []
    min_dist = min(m.distance for m in matches)
    limit = max(2 * min_dist, _GOOD_MATCH_FLOOR)
    return [m for m in matches if m.distance <= limit]


def _draw_matches(
    img1: np.ndarray,
    keypoints1: Sequence[KeyPoint],
    img2: np.ndarray,
    keypoints2: Sequence[KeyPoint],
    matches: Sequence[Match],
) -> Image.Image:
    rows1, cols1 = img1.shape
    rows2, cols2 = img2.shape
    canvas = Image.new("RGB", (cols1 + cols2, max(rows1, rows2)))
    canvas.paste(Image.fromarray(img1).convert("RGB"), (0, 0))
    canvas.paste(Image.fromarray(img2).convert("RGB"), (cols1, 0))
    draw = ImageDraw.Draw(canvas)
    for number, match in enumerate(matches):
        color = _PALETTE[number % len(_PALETTE)]
        p = keypoints1[match.query_idx]
        q = keypoints2[match.train_idx]
        qx = q.x + cols1
        for x, y in ((p.x, p.y), (qx, q.y)):
            draw.ellipse((x - 2, y - 2, x + 2, y + 2), outline=color)
        draw.line((p.x, p.y, qx, q.y), fill=color)
    return canvas


def main(argv: Sequence[str] | None = None) -> int:
    """Detect, describe and match ORB features of two images; save the matches."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) not in (0, 2):
        print("usage: orb_match [img1 img2]")
        return 1
    first, second = args if args else (FIRST_FILE, SECOND_FILE)

    first_image = load_gray(first)
    second_image = load_gray(second)

    start = time.perf_counter()
    keypoints1 = fast_keypoints(first_image, _FAST_THRESHOLD)
    descriptors1 = compute_orb(first_image, keypoints1)
    keypoints2 = fast_keypoints(second_image, _FAST_THRESHOLD)
    descriptors2 = compute_orb(second_image, keypoints2)
    for keypoints, descriptors in ((keypoints1, descriptors1), (keypoints2, descriptors2)):
        bad = sum(1 for d in descriptors if d is None)
        print(f"bad/total: {bad}/{len(keypoints)}")
    print(f"extract ORB cost = {time.perf_counter() - start} seconds. ")

    start = time.perf_counter()
    matches = bf_match(descriptors1, descriptors2)
    print(f"match ORB cost = {time.perf_counter() - start} seconds. ")
    print(f"matches: {len(matches)}")

    _draw_matches(first_image, keypoints1, second_image, keypoints2, matches).save(MATCHES_FILE)
    print("done.")
    return 0