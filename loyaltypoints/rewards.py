"""
Prize table for the post-purchase wheel.

The draw is a pure function of one uniform sample, so the tiers can be tested
deterministically through ``reward_for_sample``.
"""
from dataclasses import dataclass
import random

# Cumulative cut-offs, evaluated in order: 2% / 8% / 10% / 80%
REWARD_TIERS = (
    (0.02, 300),
    (0.10, 100),
    (0.20, 50),
)
TRY_AGAIN_LABEL = "Try Again"

_system_random = random.SystemRandom()


@dataclass(frozen=True)
class SpinReward:
    points: int
    label: str


def label_for_points(points):
    if points > 0:
        return f"Won {points} points"
    return TRY_AGAIN_LABEL


def reward_for_sample(sample):
    if not 0 <= sample < 1:
        raise ValueError(f"Sample must be in [0, 1), got {sample!r}")
    for cutoff, points in REWARD_TIERS:
        if sample < cutoff:
            return SpinReward(points=points, label=label_for_points(points))
    return SpinReward(points=0, label=TRY_AGAIN_LABEL)


def draw(rng=None):
    rng = rng or _system_random
    return reward_for_sample(rng.random())
