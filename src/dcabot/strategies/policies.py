"""Reusable strategy policies.

Each policy owns one concern (grid construction, cooldowns, trend filter,
partial close, breakeven lock) and is injected into a strategy instance.
Policies hold per-instance state only; nothing here is process-wide.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from dcabot.financial.entry_volume import EntryVolume
from dcabot.financial.grid import DCAOrderGrid
from dcabot.financial.money import Money
from dcabot.financial.position import Position
from dcabot.indicators.ema import ema_from_prices
from dcabot.models import DCAOffsetMode, PositionDirection, TimeFrame

if TYPE_CHECKING:
    from dcabot.market import Market

_HUNDRED = Decimal("100")

#: Higher-timeframe candles requested for the EMA trend filter.
TREND_FILTER_CANDLES = 250


@dataclass(frozen=True)
class GridSettings:
    """Grid parameters for one direction."""

    number_of_levels: int
    entry_volume: EntryVolume
    volume_multiplier: Decimal
    price_deviation: Decimal
    price_deviation_multiplier: Decimal
    expected_profit: Decimal


class GridBuilder:
    """Builds the DCA order grid for a direction from resolved parameters."""

    def __init__(
        self,
        long: GridSettings,
        short: GridSettings,
        offset_mode: DCAOffsetMode = DCAOffsetMode.FROM_ENTRY,
        always_market_entry: bool = False,
    ) -> None:
        self._settings = {PositionDirection.LONG: long, PositionDirection.SHORT: short}
        self.offset_mode = offset_mode
        self.always_market_entry = always_market_entry

    def settings(self, direction: PositionDirection) -> GridSettings:
        return self._settings[direction]

    def build(self, direction: PositionDirection) -> DCAOrderGrid:
        s = self._settings[direction]
        return DCAOrderGrid.from_parameters(
            number_of_levels=s.number_of_levels,
            entry_volume=s.entry_volume.value,
            volume_multiplier=s.volume_multiplier,
            price_deviation=s.price_deviation,
            price_deviation_multiplier=s.price_deviation_multiplier,
            direction=direction,
            expected_profit=s.expected_profit,
            offset_mode=self.offset_mode,
            volume_mode=s.entry_volume.mode,
            always_market_entry=self.always_market_entry,
        )


class Cooldown:
    """Blocks an action for a fixed number of seconds after it was marked.

    A zero duration never blocks.
    """

    def __init__(self, duration_seconds: int) -> None:
        self.duration_seconds = duration_seconds
        self.marked_at: int | None = None

    def mark(self, timestamp: int) -> None:
        self.marked_at = timestamp

    def is_active(self, now: int) -> bool:
        if self.duration_seconds <= 0 or self.marked_at is None:
            return False
        return now - self.marked_at < self.duration_seconds


class StopLossCooldownPolicy(Cooldown):
    """Cooldown after a stop-loss close, configured in minutes."""

    def __init__(self, minutes: int) -> None:
        super().__init__(minutes * 60)

    def record_stop_loss(self, timestamp: int) -> None:
        self.mark(timestamp)


class EMATrendFilter:
    """Allows entries only in the direction of a higher-timeframe EMA trend.

    LONG requires the latest higher-timeframe close above the EMA; SHORT
    requires it below. Only higher-timeframe candles that have closed by the
    context clock are used. Missing data blocks entries while the filter is on.
    """

    def __init__(self, enabled: bool, timeframe: TimeFrame, period: int) -> None:
        self.enabled = enabled
        self.timeframe = timeframe
        self.period = period

    def allows(self, market: Market, direction: PositionDirection) -> bool:
        if not self.enabled:
            return True
        if not market.candles:
            return False
        now = market.context.now()
        step = self.timeframe.to_seconds()
        start = now - TREND_FILTER_CANDLES * step
        candles = [
            c
            for c in market.request_candles(self.timeframe, start, now)
            if c.open_time + step <= now
        ]
        if not candles:
            return False
        closes = [c.close for c in candles]
        ema = ema_from_prices(closes, self.period)
        if not ema:
            return False
        if direction.is_long:
            return closes[-1] > ema[-1]
        return closes[-1] < ema[-1]


def progress_to_take_profit(position: Position) -> Decimal:
    """How far the current price has moved from entry towards TP, in % (0..100+)."""
    if position.take_profit_price is None:
        return Decimal("0")
    entry = position.average_entry_price.amount
    distance = position.take_profit_price.amount - entry
    if abs(distance) < Decimal("1e-12"):
        return Decimal("0")
    return (position.current_price.amount - entry) / distance * _HUNDRED


def trigger_price(position: Position, trigger_percent: Decimal) -> Money | None:
    """Price trigger_percent of the way from average entry to TP."""
    if position.take_profit_price is None:
        return None
    entry = position.average_entry_price.amount
    amount = entry + (position.take_profit_price.amount - entry) * trigger_percent / _HUNDRED
    return Money(amount, position.quote_currency)


class PartialClosePolicy:
    """Closes part of a position once it has progressed far enough towards TP.

    Runs at most once per position, keyed by the position's created_at.
    A live limit close is tracked through pending_order_id until filled.
    """

    def __init__(
        self,
        enabled: bool,
        trigger_percent: Decimal,
        close_percent: Decimal,
        use_limit_order: bool = False,
    ) -> None:
        self.enabled = enabled
        self.trigger_percent = trigger_percent
        self.close_percent = close_percent
        self.use_limit_order = use_limit_order
        self.executed_for: int | None = None
        self.pending_order_id: str | None = None

    def is_executed(self, position: Position) -> bool:
        return self.executed_for == position.created_at

    def mark_executed(self, position: Position) -> None:
        self.executed_for = position.created_at
        self.pending_order_id = None

    def should_trigger(self, position: Position) -> bool:
        if not self.enabled or self.is_executed(position):
            return False
        return progress_to_take_profit(position) >= self.trigger_percent

    def close_volume(self, position: Position) -> Decimal:
        return position.volume.amount * self.close_percent / _HUNDRED

    def close_price(self, position: Position) -> Money | None:
        return trigger_price(position, self.trigger_percent)


class BreakevenLockPolicy:
    """Partially closes a winning position and moves the stop-loss to entry.

    The stop goes one tick into the loss side (below entry for LONG, above
    for SHORT). The lock counts as executed once the stop-loss sits within
    two ticks of the average entry.
    """

    def __init__(
        self,
        enabled: bool,
        trigger_percent: Decimal,
        close_percent: Decimal,
        use_limit_order: bool = False,
    ) -> None:
        self.enabled = enabled
        self.trigger_percent = trigger_percent
        self.close_percent = close_percent
        self.use_limit_order = use_limit_order
        self.pending_order_id: str | None = None

    def is_executed(self, position: Position, tick_size: Decimal) -> bool:
        if position.stop_loss_price is None:
            return False
        diff = abs(position.stop_loss_price.amount - position.average_entry_price.amount)
        return diff <= tick_size * 2

    def should_trigger(self, position: Position, tick_size: Decimal) -> bool:
        if not self.enabled or self.is_executed(position, tick_size):
            return False
        return progress_to_take_profit(position) >= self.trigger_percent

    def close_volume(self, position: Position) -> Decimal:
        return position.volume.amount * self.close_percent / _HUNDRED

    def close_price(self, position: Position) -> Money | None:
        return trigger_price(position, self.trigger_percent)

    def stop_price(self, position: Position, tick_size: Decimal) -> Money:
        offset = -tick_size if position.direction.is_long else tick_size
        return Money(position.average_entry_price.amount + offset, position.quote_currency)
