"""Tests for the TTL price cache used by the live trader."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from dcabot.financial.money import Money
from dcabot.market_data.price_cache import PriceCache


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestPriceCache:
    @pytest.mark.asyncio
    async def test_fresh_price_is_served_from_cache(self) -> None:
        clock = _Clock()
        cache = PriceCache(ttl=10, clock=clock)
        fetch = AsyncMock(return_value=Money(Decimal("100")))

        first = await cache.get_or_fetch("bybit:BTC/USDT:futures", fetch)
        clock.now = 10
        second = await cache.get_or_fetch("bybit:BTC/USDT:futures", fetch)

        assert first == second == Money(Decimal("100"))
        fetch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_expired_price_is_refetched(self) -> None:
        clock = _Clock()
        cache = PriceCache(ttl=10, clock=clock)
        fetch = AsyncMock(side_effect=[Money(Decimal("100")), Money(Decimal("101"))])

        await cache.get_or_fetch("k", fetch)
        clock.now = 10.5
        assert await cache.get_price("k") is None
        assert await cache.get_or_fetch("k", fetch) == Money(Decimal("101"))

    @pytest.mark.asyncio
    async def test_failed_fetch_is_not_cached(self) -> None:
        cache = PriceCache(ttl=10, clock=_Clock())
        fetch = AsyncMock(side_effect=[None, Money(Decimal("5"))])

        assert await cache.get_or_fetch("k", fetch) is None
        assert await cache.get_or_fetch("k", fetch) == Money(Decimal("5"))

    @pytest.mark.asyncio
    async def test_keys_are_independent(self) -> None:
        cache = PriceCache(ttl=10, clock=_Clock())
        await cache.update_price("a", Money(Decimal("1")))
        assert await cache.get_price("b") is None
        assert await cache.get_price("a") == Money(Decimal("1"))
