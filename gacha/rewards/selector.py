"""Weighted reward selection.

``select`` is pure: the caller supplies the draw, so odds can be tested with
fixed values and the random source stays swappable. A draw ``d`` in [0, 100)
lands on the first reward whose running cumulative weight is strictly greater
than ``d``; with weights {A:40, B:30} that is A for [0, 40) and B for [40, 70).
"""

from __future__ import annotations

import math
import random
from typing import Sequence

from .pool import WEIGHT_TOTAL, RewardDefinition


def select(pool: Sequence[RewardDefinition], draw: float) -> RewardDefinition:
    if not pool:
        raise ValueError("cannot select from an empty pool")
    if isinstance(draw, bool) or not isinstance(draw, (int, float)) or not (0.0 <= draw < WEIGHT_TOTAL):
        raise ValueError(f"draw must be in [0, {WEIGHT_TOTAL:g}), got {draw!r}")
    acc = 0.0
    for reward in pool:
        acc += reward.weight
        if acc > draw:
            return reward
    # Rounding can leave the running sum a hair under the draw; last entry absorbs it
    return pool[-1]


def draw_from(rng: random.Random) -> float:
    """Uniform draw in [0, 100) from an injected random source."""
    draw = rng.random() * WEIGHT_TOTAL
    # random() < 1.0 but the product can round up to exactly 100.0
    return draw if draw < WEIGHT_TOTAL else math.nextafter(WEIGHT_TOTAL, 0.0)


__all__ = ["draw_from", "select"]
