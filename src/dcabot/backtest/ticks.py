"""Synthetic intra-candle price ticks.

A candle is replayed as a path through its extremes: O -> L -> H -> C for a
bullish candle (close >= open) and O -> H -> L -> C for a bearish one. With
four ticks each waypoint is one tick; with more, the intervals between
waypoints are filled by linear interpolation.

Every tick carries a partial candle snapshot: the open is fixed, high and
low expand as the path reaches them, close is the tick price, and volume is
apportioned by progress through the candle.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from dataclasses import dataclass
from decimal import Decimal

from dcabot.models import Candle

DEFAULT_TICKS_PER_CANDLE = 4

# Cumulative volume share at each of the four waypoints
_FOUR_TICK_VOLUME = (Decimal("0"), Decimal("0.25"), Decimal("0.75"), Decimal("1"))


@dataclass(frozen=True)
class Tick:
    """One simulated price observation inside a candle."""

    timestamp: int
    price: Decimal
    candle: Candle


def waypoints(candle: Candle) -> tuple[Decimal, Decimal, Decimal, Decimal]:
    if candle.is_bullish:
        return candle.open, candle.low, candle.high, candle.close
    return candle.open, candle.high, candle.low, candle.close


def _segment_steps(intervals: int) -> list[int]:
    """Split intervals across the three waypoint segments, remainder first."""
    base, remainder = divmod(intervals, 3)
    return [base + (1 if i < remainder else 0) for i in range(3)]


def _path(candle: Candle, count: int) -> list[Decimal]:
    points = waypoints(candle)
    if count <= 4:
        return list(points)

    prices = [points[0]]
    for segment, steps in enumerate(_segment_steps(count - 1)):
        start, end = points[segment], points[segment + 1]
        for step in range(1, steps + 1):
            prices.append(start + (end - start) * Decimal(step) / Decimal(steps))
    return prices


def generate_ticks(
    candle: Candle, duration: int, count: int = DEFAULT_TICKS_PER_CANDLE
) -> list[Tick]:
    """Build the tick sequence for one candle.

    Args:
        candle: Completed candle to replay.
        duration: Candle length in seconds.
        count: Ticks per candle; values below 4 are raised to 4.

    Returns:
        Ticks with strictly increasing timestamps inside
        [open_time, open_time + duration - 1], ending at the close.
    """
    count = max(count, DEFAULT_TICKS_PER_CANDLE)
    prices = _path(candle, count)
    total = len(prices)
    start = candle.open_time

    if total == 4:
        times = [start, start + duration // 3, start + 2 * duration // 3, start + duration - 1]
        fractions = list(_FOUR_TICK_VOLUME)
    else:
        times = [start + (i * (duration - 1)) // (total - 1) for i in range(total)]
        fractions = [Decimal(i) / Decimal(total - 1) for i in range(total)]

    ticks: list[Tick] = []
    high = low = candle.open
    for timestamp, price, fraction in zip(times, prices, fractions):
        high = max(high, price)
        low = min(low, price)
        snapshot = Candle(
            open_time=candle.open_time,
            open=candle.open,
            high=high,
            low=low,
            close=price,
            volume=candle.volume * fraction,
        )
        ticks.append(Tick(timestamp, price, snapshot))
    return ticks
