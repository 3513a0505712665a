"""
Randomness source shared by the scheduler, selector and executor.

Every random decision the bot makes (refresh draws, shuffles, delays,
trade sizes, direction, jitter) goes through one RandomSource so tests can
substitute a seeded or scripted one. Key generation does not use it; wallet
secrets come from ``secrets``.
"""

import random
from typing import List, Optional, Sequence, TypeVar

T = TypeVar("T")


class RandomSource:
    """Thin wrapper around ``random.Random`` with the draws the bot needs."""

    def __init__(self, seed: Optional[int] = None):
        self._rng = random.Random(seed)

    def random(self) -> float:
        """Uniform float in [0, 1)."""
        return self._rng.random()

    def uniform(self, low: float, high: float) -> float:
        return low + self.random() * (high - low)

    def chance(self, probability: float) -> bool:
        """True with the given probability."""
        return self.random() < probability

    def coin_flip(self) -> bool:
        return self.random() > 0.5

    def shuffled(self, items: Sequence[T]) -> List[T]:
        """Return a uniformly permuted copy of ``items``."""
        copy = list(items)
        self._rng.shuffle(copy)
        return copy
