"""Active wallet subset selection."""

import math
from typing import Iterable, Set

from .randomness import RandomSource
from .wallet_store import WalletRecord


class ActiveSetSelector:
    """
    Chooses which wallets may trade.

    The subset is redrawn from scratch on each recompute, with no memory of
    previous membership. ``maybe_recompute`` is called once per scheduling
    cycle, so membership lasts a geometrically distributed number of cycles.
    """

    def __init__(self, rng: RandomSource, refresh_probability: float = 0.1):
        self.rng = rng
        self.refresh_probability = refresh_probability
        self._active: Set[str] = set()

    @property
    def active(self) -> Set[str]:
        return set(self._active)

    def recompute(self, pool: Iterable[WalletRecord], fraction: float) -> Set[str]:
        """Shuffle the pool and keep the first floor(len(pool) * fraction) addresses."""
        wallets = list(pool)
        count = math.floor(len(wallets) * fraction)
        shuffled = self.rng.shuffled(wallets)
        self._active = {w.address for w in shuffled[:count]}
        return self.active

    def maybe_recompute(self, pool: Iterable[WalletRecord], fraction: float) -> bool:
        """Recompute with the configured probability. Returns True if it did."""
        if self.rng.chance(self.refresh_probability):
            self.recompute(pool, fraction)
            return True
        return False
