"""Uniform and Gaussian random numbers for perturbing problems."""

from __future__ import annotations

import math
import random
from typing import Protocol


class RandomSource(Protocol):
    def random(self) -> float: ...


def _source(rng: RandomSource | None) -> RandomSource:
    return random if rng is None else rng  # type: ignore[return-value]


def rand_double(rng: RandomSource | None = None) -> float:
    """A uniform random number in [0, 1]."""
    return _source(rng).random()


def rand_normal(rng: RandomSource | None = None) -> float:
    """A standard normal random number (Marsaglia polar method)."""
    source = _source(rng)
    while True:
        x1 = 2.0 * rand_double(source) - 1.0
        x2 = 2.0 * rand_double(source) - 1.0
        w = x1 * x1 + x2 * x2
        if 0.0 < w < 1.0:
            break
    w = math.sqrt((-2.0 * math.log(w)) / w)
    return x1 * w