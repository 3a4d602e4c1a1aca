"""Tick-driven historical replay engine.

Replays candles through the same Market, Strategy and Position code that runs
live, with BacktestExchange standing in for the venue. Each candle is split
into synthetic ticks (see ticks.py); the partial candle of the current tick
is the last candle the indicators see, so no tick can look ahead.

Per tick, in order:
    1. advance the simulated clock and current price
    2. recompute indicators
    3. run one Market.process_trading() cycle
    4. fill pending grid limit orders crossed by the tick price
    5. resolve take-profit / stop-loss hits at the exact order price
    6. stop the run if balance plus unrealized PnL is at or below zero

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
CRITICAL: Never use time.time() -- always use simulated timestamps.
"""

from __future__ import annotations

from decimal import Decimal

from dcabot.analytics.metrics import duration_stats, idle_time, risk_ratios
from dcabot.backtest.events import BacktestEventWriter
from dcabot.backtest.exchange import BacktestExchange
from dcabot.backtest.models import (
    BacktestResult,
    BalancePoint,
    DirectionStats,
    FinancialResult,
    OpenPositionSummary,
    TradeStats,
)
from dcabot.backtest.ticks import DEFAULT_TICKS_PER_CANDLE, Tick, generate_ticks
from dcabot.context import SimulationClock
from dcabot.exceptions import InsufficientDataError
from dcabot.financial.money import Money
from dcabot.financial.position import Position
from dcabot.logging import bind_simulation_context, clear_simulation_context
from dcabot.market import Market
from dcabot.models import Candle, PositionDirection, PositionFinishReason, PositionStatus

#: Stop-loss closes this close to entry count as breakeven locks, not losses.
BREAKEVEN_TOLERANCE = Decimal("0.001")


def is_breakeven_stop(position: Position) -> bool:
    """True if a stop-loss finish happened at (almost) the entry price."""
    if position.finish_reason is None or not position.finish_reason.is_stop_loss:
        return False
    if position.stop_loss_price is None:
        return False
    entry = position.price_for_pnl().amount
    if entry <= 0:
        return False
    return abs(position.stop_loss_price.amount - entry) / entry < BREAKEVEN_TOLERANCE


class BacktestEngine:
    """Replays candles for one Market and builds a BacktestResult.

    The Market must be constructed with a simulated ExecutionContext driven
    by ``clock`` and with ``exchange`` as its driver, and must already have
    its strategy set.

    Args:
        market: Market to drive.
        exchange: Simulated exchange behind the market.
        clock: Clock shared with the market's ExecutionContext.
        ticks_per_candle: Synthetic ticks per candle (minimum 4).
        event_writer: Optional JSONL event stream.
    """

    def __init__(
        self,
        market: Market,
        exchange: BacktestExchange,
        clock: SimulationClock,
        ticks_per_candle: int = DEFAULT_TICKS_PER_CANDLE,
        event_writer: BacktestEventWriter | None = None,
    ) -> None:
        self._market = market
        self._exchange = exchange
        self._clock = clock
        self._ticks_per_candle = ticks_per_candle
        self._events = event_writer
        self._logger = market.context.logger

        self._liquidated = False
        self._max_drawdown = Decimal("0")
        self._trade_pnls: dict[int, Decimal] = {}
        self._balance_history: list[BalancePoint] = []

    async def run(self, candles: list[Candle]) -> BacktestResult:
        """Replay candles in order and return the run's result.

        Raises:
            InsufficientDataError: If candles is empty.
        """
        if not candles:
            raise InsufficientDataError(f"No candles to replay for {self._market.ticker}")

        market = self._market
        duration = market.pair.timeframe.to_seconds()
        initial_balance = self._exchange.balance
        total = len(candles)
        last_candle = candles[0]

        bind_simulation_context(ticker=market.ticker)
        self._logger.info(
            "backtest_started",
            ticker=market.ticker,
            candles=total,
            initial_balance=str(initial_balance),
        )
        try:
            for index, candle in enumerate(candles):
                last_candle = candle
                ticks = generate_ticks(candle, duration, self._ticks_per_candle)
                market.candles.append(ticks[0].candle)
                for tick in ticks:
                    await self._process_tick(tick)
                    if self._liquidated:
                        break

                self._snapshot_candle(candle, index, total)
                if self._liquidated:
                    break
        finally:
            clear_simulation_context("sim_time", "ticker")

        sim_start = candles[0].open_time
        sim_end = candles[-1].open_time + duration - 1
        final_balance = Decimal("0") if self._liquidated else self._exchange.balance
        financial = FinancialResult(
            initial_balance=initial_balance,
            final_balance=final_balance,
            max_drawdown=self._max_drawdown,
            liquidated=self._liquidated,
            coin_price_start=candles[0].open,
            coin_price_end=last_candle.close,
        )
        result = await self._build_result(financial, sim_start, sim_end)

        self._logger.info(
            "backtest_finished",
            ticker=market.ticker,
            final_balance=str(final_balance),
            pnl_percent=str(financial.pnl_percent),
            finished=result.trades.finished,
            liquidated=self._liquidated,
        )
        return result

    # ------------------------------------------------------------------
    # Tick processing
    # ------------------------------------------------------------------

    async def _process_tick(self, tick: Tick) -> None:
        market = self._market
        market.candles.overwrite_last(tick.candle)
        self._clock.set(tick.timestamp)
        bind_simulation_context(sim_time=tick.timestamp)
        self._exchange.set_current_price(market, Money(tick.price, market.pair.quote_currency))

        market.calculate_indicators()
        await market.process_trading()
        await self._fill_limit_orders(tick)
        await self._check_exits(tick)
        self._check_liquidation(tick)

    async def _fill_limit_orders(self, tick: Tick) -> None:
        market = self._market
        for order in self._exchange.pending_limit_orders(market):
            if order.direction.is_long:
                crossed = tick.price <= order.price
            else:
                crossed = tick.price >= order.price
            if not crossed:
                continue

            self._exchange.fill_limit_order(market, order)
            position = market.position
            if position is None or position.direction is not order.direction:
                continue

            position.apply_fill(order.volume, order.price)
            position.current_price = Money(tick.price, market.pair.quote_currency)
            position.updated_at = tick.timestamp
            await market.positions.save(position)

            self._logger.info(
                "limit_order_filled",
                ticker=market.ticker,
                order_id=order.order_id,
                price=str(order.price),
                volume=str(order.volume),
                average_entry=str(position.average_entry_price.amount),
            )
            market.context.emit(
                "dca_fill",
                dir=position.direction.value,
                price=order.price,
                addedVolume=order.volume,
                newAvgEntry=position.average_entry_price.amount,
                totalVolume=position.volume.amount,
                time=tick.timestamp,
            )

    async def _check_exits(self, tick: Tick) -> None:
        market = self._market
        position = market.position
        if position is None or not position.is_active:
            return

        sign = position.direction.multiplier
        take_profit = position.take_profit_price
        if take_profit is not None and (tick.price - take_profit.amount) * sign >= 0:
            # A take-profit order never fires at a loss
            if position.unrealized_pnl(take_profit).amount > 0:
                await self._close(
                    position, take_profit, PositionFinishReason.TAKE_PROFIT_MARKET, tick
                )
                return

        stop_loss = position.stop_loss_price
        if stop_loss is not None and (tick.price - stop_loss.amount) * sign <= 0:
            await self._close(position, stop_loss, PositionFinishReason.STOP_LOSS_MARKET, tick)
            if market.strategy is not None:
                market.strategy.notify_stop_loss(tick.timestamp)

    async def _close(
        self,
        position: Position,
        price: Money,
        reason: PositionFinishReason,
        tick: Tick,
    ) -> None:
        market = self._market
        if position.status is PositionStatus.PENDING:
            # The simulated entry has already filled at the exchange
            position.transition_to(PositionStatus.OPEN)
        pnl = self._exchange.settle_close(market, position, price)
        position.current_price = price
        position.updated_at = tick.timestamp
        position.mark_finished(tick.timestamp, reason)
        await market.positions.save(position)
        if position.id is not None:
            self._trade_pnls[position.id] = pnl

        self._logger.info(
            "position_closed",
            ticker=market.ticker,
            direction=position.direction.value,
            reason=reason.value,
            price=str(price.amount),
            pnl=str(pnl),
            balance=str(self._exchange.balance),
        )
        market.context.emit(
            "position_close",
            price=price.amount,
            pnl=pnl,
            reason=reason.value,
            time=tick.timestamp,
        )

    def _check_liquidation(self, tick: Tick) -> None:
        position = self._market.position
        unrealized = Decimal("0")
        if position is not None and position.is_active:
            mark = Money(tick.price, self._market.pair.quote_currency)
            unrealized = position.unrealized_pnl(mark).amount

        self._max_drawdown = min(self._max_drawdown, unrealized)
        if self._exchange.balance + unrealized <= 0:
            self._liquidated = True
            self._logger.warning(
                "backtest_liquidated",
                ticker=self._market.ticker,
                price=str(tick.price),
                balance=str(self._exchange.balance),
                unrealized_pnl=str(unrealized),
            )

    def _snapshot_candle(self, candle: Candle, index: int, total: int) -> None:
        balance = self._exchange.balance
        self._balance_history.append(BalancePoint(candle.open_time, balance))
        if self._events is not None:
            self._events.write_candle(candle, self._market.indicator_snapshot())
            self._events.write_balance(balance)
            self._events.write_progress(index + 1, total)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def _build_result(
        self, financial: FinancialResult, sim_start: int, sim_end: int
    ) -> BacktestResult:
        market = self._market
        positions = await market.positions.list_positions(
            exchange_name=market.pair.exchange_name, ticker=market.ticker
        )
        finished = [p for p in positions if p.status is PositionStatus.FINISHED]
        active = [p for p in positions if p.is_active]

        shortest, longest, average = duration_stats(
            [p.finished_at - p.created_at for p in finished if p.finished_at is not None]
        )
        intervals = [
            (p.created_at, p.finished_at) for p in finished if p.finished_at is not None
        ]
        intervals.extend((p.created_at, sim_end) for p in active)

        long_stats = self._direction_stats(finished, PositionDirection.LONG)
        short_stats = self._direction_stats(finished, PositionDirection.SHORT)
        trades = TradeStats(
            finished=len(finished),
            open=sum(1 for p in active if p.status is PositionStatus.OPEN),
            pending=sum(1 for p in active if p.status is PositionStatus.PENDING),
            shortest=shortest,
            longest=longest,
            average=average,
            idle=idle_time(intervals, sim_start, sim_end),
            wins=long_stats.wins + short_stats.wins,
            losses=long_stats.losses + short_stats.losses,
            breakeven_locks=long_stats.breakeven_locks + short_stats.breakeven_locks,
            long=long_stats,
            short=short_stats,
        )

        trade_pnls = [self._realized_pnl(p) for p in finished]
        end_time = self._clock()
        open_positions = [
            OpenPositionSummary(
                direction=p.direction.value,
                entry=p.average_entry_price.amount,
                volume=p.volume.amount,
                created_at=p.created_at,
                unrealized_pnl=p.unrealized_pnl().amount,
                time_hanging=max(0, end_time - p.created_at),
            )
            for p in active
        ]

        result = BacktestResult(
            pair=market.pair,
            sim_start=sim_start,
            sim_end=sim_end,
            financial=financial,
            trades=trades,
            open_positions=open_positions,
            balance_history=list(self._balance_history),
        )
        result.risk = risk_ratios(trade_pnls, financial.initial_balance, result.duration_days)
        return result

    def _realized_pnl(self, position: Position) -> Decimal:
        """PnL booked by the engine, or the PnL at the last known price."""
        if position.id is not None and position.id in self._trade_pnls:
            return self._trade_pnls[position.id]
        return position.unrealized_pnl().amount

    @staticmethod
    def _direction_stats(
        finished: list[Position], direction: PositionDirection
    ) -> DirectionStats:
        trades = [p for p in finished if p.direction is direction]
        shortest, longest, average = duration_stats(
            [p.finished_at - p.created_at for p in trades if p.finished_at is not None]
        )
        stats = DirectionStats(
            label=direction.value,
            finished=len(trades),
            shortest=shortest,
            longest=longest,
            average=average,
        )
        for p in trades:
            if p.finish_reason is not None and p.finish_reason.is_take_profit:
                stats.wins += 1
            elif is_breakeven_stop(p):
                stats.breakeven_locks += 1
            elif p.finish_reason is not None and p.finish_reason.is_stop_loss:
                stats.losses += 1
        return stats
