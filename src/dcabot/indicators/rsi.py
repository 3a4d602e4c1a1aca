"""Relative Strength Index with Wilder smoothing.

Signals per value: "overbought" (>= overbought), "oversold" (<= oversold),
otherwise "neutral".

CRITICAL: All computations use Decimal. Never use float.
"""

from decimal import Decimal

from dcabot.candles import CandleArena
from dcabot.indicators.base import INDICATOR_QUANTIZE, Indicator, IndicatorResult

DEFAULT_PERIOD = 14
DEFAULT_OVERBOUGHT = Decimal("70")
DEFAULT_OVERSOLD = Decimal("30")

SIGNAL_OVERBOUGHT = "overbought"
SIGNAL_OVERSOLD = "oversold"
SIGNAL_NEUTRAL = "neutral"

_HUNDRED = Decimal("100")
_ZERO = Decimal("0")


def rsi_from_prices(prices: list[Decimal], period: int) -> list[Decimal]:
    """Compute RSI values from close prices (oldest first).

    Needs at least period + 1 prices. The first value uses plain averages of
    the first ``period`` changes; later values use Wilder smoothing. An
    average loss of zero yields 100.
    """
    if period < 1 or len(prices) < period + 1:
        return []

    changes = [prices[i] - prices[i - 1] for i in range(1, len(prices))]
    p = Decimal(period)

    avg_gain = sum((c for c in changes[:period] if c > 0), _ZERO) / p
    avg_loss = sum((-c for c in changes[:period] if c < 0), _ZERO) / p
    values = [_rsi(avg_gain, avg_loss)]

    for change in changes[period:]:
        gain = change if change > 0 else _ZERO
        loss = -change if change < 0 else _ZERO
        avg_gain = ((avg_gain * (p - 1) + gain) / p).quantize(INDICATOR_QUANTIZE)
        avg_loss = ((avg_loss * (p - 1) + loss) / p).quantize(INDICATOR_QUANTIZE)
        values.append(_rsi(avg_gain, avg_loss))

    return values


def _rsi(avg_gain: Decimal, avg_loss: Decimal) -> Decimal:
    if avg_loss == 0:
        return _HUNDRED
    rs = avg_gain / avg_loss
    return (_HUNDRED - _HUNDRED / (Decimal("1") + rs)).quantize(INDICATOR_QUANTIZE)


class RSI(Indicator):
    name = "RSI"

    def __init__(
        self,
        period: int = DEFAULT_PERIOD,
        overbought: Decimal = DEFAULT_OVERBOUGHT,
        oversold: Decimal = DEFAULT_OVERSOLD,
    ) -> None:
        super().__init__(period)
        self.overbought = overbought
        self.oversold = oversold

    def calculate(self, candles: CandleArena) -> IndicatorResult:
        if len(candles) < self.period + 1:
            return IndicatorResult()

        values = rsi_from_prices(candles.closes(), self.period)
        timestamps = [c.open_time for c in candles][self.period :]
        return IndicatorResult(
            values=values,
            timestamps=timestamps,
            signals=[self.classify(v) for v in values],
        )

    def classify(self, value: Decimal) -> str:
        if value >= self.overbought:
            return SIGNAL_OVERBOUGHT
        if value <= self.oversold:
            return SIGNAL_OVERSOLD
        return SIGNAL_NEUTRAL
