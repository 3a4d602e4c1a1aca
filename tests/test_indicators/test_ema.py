"""Tests for EMA seeded with a simple average."""

from decimal import Decimal

from helpers import make_candle

from dcabot.candles import CandleArena
from dcabot.indicators.ema import EMA, ema_from_prices


class TestEmaFromPrices:
    def test_seed_and_smoothing(self) -> None:
        """Period 3: seed SMA(1,2,3) = 2, then k = 0.5."""
        values = ema_from_prices([Decimal(p) for p in (1, 2, 3, 4, 5)], 3)
        assert values == [Decimal("2"), Decimal("3"), Decimal("4")]

    def test_too_few_prices(self) -> None:
        assert ema_from_prices([Decimal("1"), Decimal("2")], 3) == []

    def test_invalid_period(self) -> None:
        assert ema_from_prices([Decimal("1")], 0) == []


class TestEmaIndicator:
    def test_calculate_over_arena(self) -> None:
        arena = CandleArena(
            make_candle(i * 60, str(p), str(p), str(p), str(p))
            for i, p in enumerate((1, 2, 3, 4, 5))
        )
        result = EMA(period=3).calculate(arena)
        assert result.latest_value == Decimal("4")
        assert result.timestamps == [120, 180, 240]
