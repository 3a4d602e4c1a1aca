"""Per-market current price cache with time-based invalidation.

The live Trader reads current prices through this cache so that several
consumers in one polling pass (position sync, strategy, volume resolution)
share a single venue request. Entries expire after ttl seconds; there is no
other invalidation.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable

from dcabot.financial.money import Money


class PriceCache:
    """In-memory price cache keyed by market.

    Uses asyncio.Lock for safe concurrent reads/writes from multiple coroutines.

    Args:
        ttl: Seconds a cached price stays fresh.
        clock: Returns the current time in seconds; defaults to time.monotonic.
    """

    def __init__(
        self,
        ttl: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._clock = clock
        self._prices: dict[str, tuple[Money, float]] = {}
        self._lock = asyncio.Lock()

    async def update_price(self, key: str, price: Money) -> None:
        async with self._lock:
            self._prices[key] = (price, self._clock())

    async def get_price(self, key: str) -> Money | None:
        """Return the cached price for key, or None if missing or expired."""
        async with self._lock:
            entry = self._prices.get(key)
            if entry is None:
                return None
            price, stored_at = entry
            if self._clock() - stored_at > self._ttl:
                del self._prices[key]
                return None
            return price

    async def get_or_fetch(
        self, key: str, fetch: Callable[[], Awaitable[Money | None]]
    ) -> Money | None:
        """Return a fresh cached price, fetching and storing it on a miss.

        A failed fetch (None) is not cached.
        """
        cached = await self.get_price(key)
        if cached is not None:
            return cached
        price = await fetch()
        if price is not None:
            await self.update_price(key, price)
        return price
