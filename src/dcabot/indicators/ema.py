"""Exponential Moving Average seeded with a simple average."""

from decimal import Decimal

from dcabot.candles import CandleArena
from dcabot.indicators.base import INDICATOR_QUANTIZE, Indicator, IndicatorResult

DEFAULT_PERIOD = 50


def ema_from_prices(prices: list[Decimal], period: int) -> list[Decimal]:
    """Compute EMA over prices (oldest first).

    The first value is the SMA of the first ``period`` prices; every later
    value is ``price * k + previous * (1 - k)`` with ``k = 2 / (period + 1)``.

    Args:
        prices: Close prices ordered oldest-first.
        period: Smoothing period, at least 1.

    Returns:
        len(prices) - period + 1 values, or an empty list if there are
        fewer than ``period`` prices.
    """
    if period < 1 or len(prices) < period:
        return []

    k = Decimal("2") / (Decimal(period) + Decimal("1"))
    one_minus_k = Decimal("1") - k

    previous = (sum(prices[:period], Decimal("0")) / Decimal(period)).quantize(
        INDICATOR_QUANTIZE
    )
    ema = [previous]
    for price in prices[period:]:
        previous = (price * k + previous * one_minus_k).quantize(INDICATOR_QUANTIZE)
        ema.append(previous)
    return ema


class EMA(Indicator):
    name = "EMA"

    def __init__(self, period: int = DEFAULT_PERIOD) -> None:
        super().__init__(period)

    def calculate(self, candles: CandleArena) -> IndicatorResult:
        if len(candles) < self.period:
            return IndicatorResult()
        values = ema_from_prices(candles.closes(), self.period)
        timestamps = [c.open_time for c in candles][self.period - 1 :]
        return IndicatorResult(values=values, timestamps=timestamps)
