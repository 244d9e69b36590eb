from __future__ import annotations

"""Timing models for the headphone event generator.

Each simulated device:
- waits an initial jitter drawn uniformly from [0, 2) seconds
- then emits one event every [3, 10) seconds, drawn uniformly per event

Delays are half-open intervals: `random()` returns values in [0, 1), so
`low + random() * (high - low)` never reaches `high`.
"""

import random

INITIAL_DELAY_RANGE: tuple[float, float] = (0.0, 2.0)
NEXT_DELAY_RANGE: tuple[float, float] = (3.0, 10.0)


def sample_delay(*, low: float, high: float, rng: random.Random | None = None) -> float:
    """Sample a delay (seconds) uniformly from [low, high).

    Args:
        low: inclusive lower bound, must be >= 0.
        high: exclusive upper bound, must be > low.
        rng: optional RNG (useful for deterministic tests).
    """
    if low < 0:
        raise ValueError("low must be >= 0")
    if high <= low:
        raise ValueError("high must be > low")

    r = rng or random
    return float(low + r.random() * (high - low))


def sample_initial_delay(rng: random.Random | None = None) -> float:
    low, high = INITIAL_DELAY_RANGE
    return sample_delay(low=low, high=high, rng=rng)


def sample_next_delay(rng: random.Random | None = None) -> float:
    low, high = NEXT_DELAY_RANGE
    return sample_delay(low=low, high=high, rng=rng)
