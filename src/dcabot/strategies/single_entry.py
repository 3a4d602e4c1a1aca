"""Single-entry strategy family: one market entry with fixed stop-loss and take-profit.

While the position is open two optional policies can lock in profit:

- Partial close: once the price has covered partialCloseTriggerPercent of the
  way to TP, close partialClosePercent of the volume.
- Breakeven lock: once the price has covered breakevenLockTriggerPercent of
  the way to TP, close breakevenLockClosePercent of the volume and move the
  stop-loss to one tick past the average entry.

In simulation both always take the market path at the exact trigger price.
Live, each can instead place a reduce-only limit order whose fill is detected
on a later cycle.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from __future__ import annotations

from abc import abstractmethod
from decimal import Decimal
from typing import TYPE_CHECKING

from dcabot.financial.entry_volume import EntryVolume
from dcabot.financial.money import Money
from dcabot.financial.position import Position
from dcabot.models import MarginMode, PositionDirection, TimeFrame
from dcabot.strategies.base import BaseStrategy, StrategyValidationResult
from dcabot.strategies.parameters import ParameterRegistry, ParameterSpec, ParameterType
from dcabot.strategies.policies import (
    BreakevenLockPolicy,
    EMATrendFilter,
    PartialClosePolicy,
    StopLossCooldownPolicy,
)

if TYPE_CHECKING:
    from dcabot.market import Market

#: Fallback when the venue does not report a tick size.
DEFAULT_TICK_SIZE = Decimal("0.01")

_D = Decimal
_HUNDRED = Decimal("100")

SINGLE_ENTRY_PARAMETERS = ParameterRegistry(
    [
        ParameterSpec("entryVolume", "100%", ParameterType.VOLUME,
                      "Entry volume (USDT, %, %M, or base currency)",
                      minimum=_D(0), step=_D(5)),
        ParameterSpec("stopLossPercent", "5", ParameterType.DECIMAL,
                      "Stop-loss distance from entry (%)",
                      minimum=_D("0.1"), maximum=_D(50), step=_D("0.5")),
        ParameterSpec("takeProfitPercent", "10", ParameterType.DECIMAL,
                      "Take-profit distance from entry (%)",
                      minimum=_D("0.1"), maximum=_D(200), step=_D("0.5")),
        ParameterSpec("useIsolatedMargin", "true", ParameterType.BOOL,
                      "Require isolated margin on futures"),
        ParameterSpec("emaTrendFilter", "false", ParameterType.BOOL,
                      "Only enter in the direction of the higher-timeframe EMA trend"),
        ParameterSpec("emaTrendFilterTimeframe", TimeFrame.TF_1DAY.value, ParameterType.CHOICE,
                      "Timeframe of the EMA trend filter",
                      choices=(TimeFrame.TF_1HOUR.value, TimeFrame.TF_4HOURS.value,
                               TimeFrame.TF_1DAY.value)),
        ParameterSpec("emaFilterPeriod", "50", ParameterType.INT,
                      "EMA trend filter period",
                      minimum=_D(2), maximum=_D(200), step=_D(5)),
        ParameterSpec("partialCloseEnabled", "false", ParameterType.BOOL,
                      "Enable partial close"),
        ParameterSpec("partialCloseTriggerPercent", "70", ParameterType.DECIMAL,
                      "Partial close trigger (% of the way to TP)",
                      minimum=_D(0), maximum=_D(100), step=_D(5)),
        ParameterSpec("partialClosePercent", "70", ParameterType.DECIMAL,
                      "Share of the volume closed by partial close (%)",
                      minimum=_D(1), maximum=_D(99), step=_D(5)),
        ParameterSpec("partialCloseUseLimitOrder", "false", ParameterType.BOOL,
                      "Use a limit order for partial close (live only)"),
        ParameterSpec("breakevenLockEnabled", "true", ParameterType.BOOL,
                      "Enable breakeven lock"),
        ParameterSpec("breakevenLockTriggerPercent", "10", ParameterType.DECIMAL,
                      "Breakeven lock trigger (% of the way to TP)",
                      minimum=_D(0), maximum=_D(100), step=_D(5)),
        ParameterSpec("breakevenLockClosePercent", "25", ParameterType.DECIMAL,
                      "Share of the volume closed by breakeven lock (%)",
                      minimum=_D(1), maximum=_D(99), step=_D(5)),
        ParameterSpec("breakevenLockUseLimitOrder", "false", ParameterType.BOOL,
                      "Use a limit order for breakeven lock (live only)"),
        ParameterSpec("stopLossCooldownMinutes", "0", ParameterType.INT,
                      "Minutes to wait after a stop-loss before entering again",
                      minimum=_D(0), maximum=_D(10080), step=_D(60)),
    ]
)


class SingleEntryStrategy(BaseStrategy):
    """Base class for single-entry strategies; subclasses detect the signal."""

    name = "SingleEntry"
    parameters = SINGLE_ENTRY_PARAMETERS

    def __init__(self, market: Market, params: dict[str, str] | None = None) -> None:
        super().__init__(market, params)
        p = self.params
        self.entry_volume: EntryVolume = p["entryVolume"]  # type: ignore[assignment]
        self.stop_loss_percent: Decimal = p["stopLossPercent"]  # type: ignore[assignment]
        self.take_profit_percent: Decimal = p["takeProfitPercent"]  # type: ignore[assignment]
        self.use_isolated_margin: bool = p["useIsolatedMargin"]  # type: ignore[assignment]

        self.trend_filter = EMATrendFilter(
            enabled=p["emaTrendFilter"],  # type: ignore[arg-type]
            timeframe=TimeFrame(p["emaTrendFilterTimeframe"]),
            period=p["emaFilterPeriod"],  # type: ignore[arg-type]
        )
        self.partial_close = PartialClosePolicy(
            enabled=p["partialCloseEnabled"],  # type: ignore[arg-type]
            trigger_percent=p["partialCloseTriggerPercent"],  # type: ignore[arg-type]
            close_percent=p["partialClosePercent"],  # type: ignore[arg-type]
            use_limit_order=p["partialCloseUseLimitOrder"],  # type: ignore[arg-type]
        )
        self.breakeven_lock = BreakevenLockPolicy(
            enabled=p["breakevenLockEnabled"],  # type: ignore[arg-type]
            trigger_percent=p["breakevenLockTriggerPercent"],  # type: ignore[arg-type]
            close_percent=p["breakevenLockClosePercent"],  # type: ignore[arg-type]
            use_limit_order=p["breakevenLockUseLimitOrder"],  # type: ignore[arg-type]
        )
        self.stop_loss_cooldown = StopLossCooldownPolicy(
            p["stopLossCooldownMinutes"]  # type: ignore[arg-type]
        )
        # Pending limit-order ids are only meaningful for one position
        self._pending_for: int | None = None

    @classmethod
    def required_timeframes(cls) -> list[TimeFrame]:
        return [TimeFrame.TF_1DAY, TimeFrame.TF_1HOUR]

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------

    @abstractmethod
    def detect_long_signal(self) -> bool: ...

    @abstractmethod
    def detect_short_signal(self) -> bool: ...

    def should_long(self) -> bool:
        if self._cooldown_active() or not self.trend_filter.allows(
            self.market, PositionDirection.LONG
        ):
            return False
        return self.detect_long_signal()

    def should_short(self) -> bool:
        if self._cooldown_active() or not self.trend_filter.allows(
            self.market, PositionDirection.SHORT
        ):
            return False
        return self.detect_short_signal()

    def _cooldown_active(self) -> bool:
        if not self.market.candles:
            return False
        return self.stop_loss_cooldown.is_active(self.market.candles.last().open_time)

    def notify_stop_loss(self, timestamp: int) -> None:
        self.stop_loss_cooldown.record_stop_loss(timestamp)

    async def handle_long(self, market: Market) -> Position | None:
        return await self._enter(market, PositionDirection.LONG)

    async def handle_short(self, market: Market) -> Position | None:
        return await self._enter(market, PositionDirection.SHORT)

    async def _enter(self, market: Market, direction: PositionDirection) -> Position | None:
        context = await market.trading_context()
        amount = self.entry_volume.resolve(context)
        price = context.current_price

        position = await market.open_position(
            direction, amount, take_profit_percent=self.take_profit_percent
        )
        if position is None:
            return None

        stop_loss = price.modify_by_percent_with_direction(-self.stop_loss_percent, direction)
        await market.set_stop_loss(stop_loss)
        position.stop_loss_price = stop_loss
        position.expected_stop_loss_percent = self.stop_loss_percent

        position.take_profit_price = price.modify_by_percent_with_direction(
            self.take_profit_percent, direction
        )
        position.expected_profit_percent = self.take_profit_percent

        await market.positions.save(position)
        return position

    # ------------------------------------------------------------------
    # Position management
    # ------------------------------------------------------------------

    async def update_position(self, position: Position) -> None:
        if not position.is_active:
            if position.finish_reason is not None and position.finish_reason.is_stop_loss:
                self.notify_stop_loss(position.finished_at or self.context.now())
            return

        await position.update_take_profit(self.market)
        if position.take_profit_price is None:
            return

        if self._pending_for != position.created_at:
            self._pending_for = position.created_at
            self.partial_close.pending_order_id = None
            self.breakeven_lock.pending_order_id = None

        # Limit orders only make sense against a real order book
        use_limits = not self.context.simulation
        tick_size = await self._tick_size()

        policy = self.partial_close
        if policy.enabled and not policy.is_executed(position):
            if use_limits and policy.pending_order_id is not None:
                await self._detect_partial_close_fill(position)
            elif policy.should_trigger(position):
                if policy.use_limit_order and use_limits:
                    await self._place_partial_close_limit(position)
                else:
                    await self._execute_partial_close(position)

        lock = self.breakeven_lock
        if lock.enabled and not lock.is_executed(position, tick_size):
            if use_limits and lock.pending_order_id is not None:
                await self._detect_breakeven_lock_fill(position, tick_size)
            elif lock.should_trigger(position, tick_size):
                if lock.use_limit_order and use_limits:
                    await self._place_breakeven_lock_limit(position)
                else:
                    await self._execute_breakeven_lock(position, tick_size)

    async def _tick_size(self) -> Decimal:
        tick_size = await self.market.get_tick_size()
        return tick_size if tick_size else DEFAULT_TICK_SIZE

    async def _execute_partial_close(self, position: Position) -> None:
        volume = self.partial_close.close_volume(position)
        close_price = self.partial_close.close_price(position)
        if not await self.market.partial_close(position, volume, close_price):
            self.context.logger.error("partial_close_failed", ticker=position.ticker)
            return
        self.partial_close.mark_executed(position)
        await self.market.positions.save(position)

    async def _execute_breakeven_lock(self, position: Position, tick_size: Decimal) -> None:
        lock = self.breakeven_lock
        close_volume = lock.close_volume(position)
        close_price = lock.close_price(position)
        if not await self.market.partial_close(
            position, close_volume, close_price, breakeven_lock=True
        ):
            self.context.logger.error("breakeven_lock_close_failed", ticker=position.ticker)
            return
        await self._move_stop_to_entry(position, close_volume, close_price, tick_size)

    async def _move_stop_to_entry(
        self,
        position: Position,
        close_volume: Decimal,
        close_price: Money | None,
        tick_size: Decimal,
    ) -> None:
        stop = self.breakeven_lock.stop_price(position, tick_size)
        if not await self.market.set_stop_loss(stop):
            self.context.logger.error("breakeven_lock_stop_failed", ticker=position.ticker)
            return
        position.stop_loss_price = stop
        self.breakeven_lock.pending_order_id = None
        await self.market.positions.save(position)

        locked_profit = Decimal("0")
        if close_price is not None:
            diff = close_price.amount - position.average_entry_price.amount
            locked_profit = diff * position.direction.multiplier * close_volume

        self.context.logger.info(
            "breakeven_lock_executed",
            ticker=position.ticker,
            closed_volume=str(close_volume),
            stop_loss=str(stop.amount),
            locked_profit=str(locked_profit),
        )
        self.context.emit(
            "breakeven_lock",
            closeVolume=close_volume,
            slPrice=stop.amount,
            lockedProfit=locked_profit,
            time=self.context.now(),
        )

    # ------------------------------------------------------------------
    # Live limit-order path
    # ------------------------------------------------------------------

    async def _place_partial_close_limit(self, position: Position) -> None:
        price = self.partial_close.close_price(position)
        if price is None:
            return
        order_id = await self.market.exchange.place_limit_close(
            self.market,
            position.direction,
            self.partial_close.close_volume(position),
            price,
        )
        if order_id is None:
            self.context.logger.error("partial_close_limit_failed", ticker=position.ticker)
            return
        self.partial_close.pending_order_id = order_id
        self.context.logger.info(
            "partial_close_limit_placed", ticker=position.ticker, order_id=order_id
        )

    async def _detect_partial_close_fill(self, position: Position) -> None:
        order_id = self.partial_close.pending_order_id
        if order_id is None or await self.market.has_active_order(order_id):
            return
        self.partial_close.mark_executed(position)
        self.context.logger.info(
            "partial_close_limit_filled", ticker=position.ticker, order_id=order_id
        )

    async def _place_breakeven_lock_limit(self, position: Position) -> None:
        price = self.breakeven_lock.close_price(position)
        if price is None:
            return
        order_id = await self.market.exchange.place_limit_close(
            self.market,
            position.direction,
            self.breakeven_lock.close_volume(position),
            price,
        )
        if order_id is None:
            self.context.logger.error("breakeven_lock_limit_failed", ticker=position.ticker)
            return
        self.breakeven_lock.pending_order_id = order_id
        self.context.logger.info(
            "breakeven_lock_limit_placed", ticker=position.ticker, order_id=order_id
        )

    async def _detect_breakeven_lock_fill(self, position: Position, tick_size: Decimal) -> None:
        order_id = self.breakeven_lock.pending_order_id
        if order_id is None or await self.market.has_active_order(order_id):
            return
        # Volume itself is re-read from the venue by update_info()
        close_volume = self.breakeven_lock.close_volume(position)
        close_price = self.breakeven_lock.close_price(position)
        await self._move_stop_to_entry(position, close_volume, close_price, tick_size)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def validate_exchange_settings(self, market: Market) -> StrategyValidationResult:
        result = StrategyValidationResult()

        if self.partial_close.enabled:
            trigger = self.partial_close.trigger_percent
            if trigger < 10 or trigger > 95:
                result.add_error(
                    f"Partial Close trigger ({trigger}%) must be between 10% and 95%."
                )

        if self.breakeven_lock.enabled:
            trigger = self.breakeven_lock.trigger_percent
            if trigger < 10 or trigger > 90:
                result.add_error(
                    f"Breakeven Lock trigger ({trigger}%) must be between 10% and 90%."
                )

        if not market.pair.market_type.is_futures:
            return result

        if self.use_isolated_margin:
            margin_mode = await market.exchange.get_margin_mode(market)
            if margin_mode is None:
                result.add_warning(
                    "Could not verify margin mode on the exchange. "
                    "Strategy expects Isolated margin mode."
                )
            elif margin_mode is not MarginMode.ISOLATED:
                result.add_error(
                    f"Strategy requires Isolated margin mode, but the exchange is "
                    f"configured as '{margin_mode.value}'."
                )

        leverage = await market.exchange.get_leverage(market)
        if leverage is None:
            result.add_warning(
                "Could not verify leverage on the exchange. "
                "Cannot check if the stop-loss distance is safe for the current leverage."
            )
        elif leverage > 0:
            max_loss = _HUNDRED / leverage
            if self.stop_loss_percent >= max_loss:
                result.add_error(
                    f"Stop-loss distance ({self.stop_loss_percent}%) exceeds the maximum "
                    f"allowed by leverage ({leverage}x): liquidation occurs at "
                    f"~{max_loss:.2f}% loss."
                )
            elif self.stop_loss_percent > max_loss * Decimal("0.8"):
                result.add_warning(
                    f"Stop-loss distance ({self.stop_loss_percent}%) is close to the "
                    f"liquidation threshold ({max_loss:.2f}% at {leverage}x leverage)."
                )

        return result

