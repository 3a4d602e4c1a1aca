"""Market: one traded instrument with its candles, indicators, strategy and position.

A Market is the unit both the live Trader and the backtester drive. Each
cycle calls process_trading(): sync the active position with the exchange
and let the strategy manage it, or, when flat, ask the strategy whether to
enter. All order placement goes through the injected ExchangeDriver, so the
same code path runs against a venue and against BacktestExchange.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from typing import TYPE_CHECKING

from dcabot.candles import CandleArena
from dcabot.context import ExecutionContext
from dcabot.data.positions import PositionRepository
from dcabot.exchange.driver import ExchangeDriver
from dcabot.financial.context import TradingContext
from dcabot.financial.grid import DCAOrderGrid
from dcabot.financial.money import Money
from dcabot.financial.position import Position
from dcabot.indicators.base import Err, Indicator, IndicatorResult
from dcabot.indicators.factory import build_indicator
from dcabot.market_data.price_cache import PriceCache
from dcabot.models import Candle, Pair, PositionDirection, PositionStatus, TimeFrame

if TYPE_CHECKING:
    from dcabot.strategies.base import BaseStrategy


class Market:
    """A pair on one exchange, bound to a strategy and a positions table.

    Args:
        pair: Instrument and strategy configuration.
        exchange: Live or simulated exchange driver.
        positions: Repository for this market's positions.
        context: Clock, logger and simulation flag.
        price_cache: Optional shared current-price cache (live only).
    """

    def __init__(
        self,
        pair: Pair,
        exchange: ExchangeDriver,
        positions: PositionRepository,
        context: ExecutionContext,
        price_cache: PriceCache | None = None,
    ) -> None:
        self.pair = pair
        self.exchange = exchange
        self.positions = positions
        self.context = context
        self.candles = CandleArena()
        self.strategy: BaseStrategy | None = None
        self._price_cache = price_cache
        self._timeframe_candles: dict[TimeFrame, list[Candle]] = {}
        self._indicators: dict[str, Indicator] = {}
        self._indicator_results: dict[str, IndicatorResult] = {}
        self._position: Position | None = None

    @property
    def key(self) -> str:
        return f"{self.pair.exchange_name}:{self.pair.ticker}:{self.pair.market_type.value}"

    @property
    def ticker(self) -> str:
        return self.pair.ticker

    # ------------------------------------------------------------------
    # Candles
    # ------------------------------------------------------------------

    def set_candles(self, candles: Iterable[Candle]) -> None:
        """Replace the market's own-timeframe candles."""
        self.candles = CandleArena(candles)

    def set_timeframe_candles(self, timeframe: TimeFrame, candles: Iterable[Candle]) -> None:
        """Provide candles of another timeframe (e.g. for a trend filter)."""
        self._timeframe_candles[timeframe] = sorted(candles, key=lambda c: c.open_time)

    def request_candles(self, timeframe: TimeFrame, start: int, end: int) -> list[Candle]:
        """Return candles with start <= open_time <= end for a timeframe.

        Only data already loaded into the market is returned; nothing is
        fetched here.
        """
        if timeframe is self.pair.timeframe:
            source: Iterable[Candle] = self.candles
        else:
            source = self._timeframe_candles.get(timeframe, [])
        return [c for c in source if start <= c.open_time <= end]

    # ------------------------------------------------------------------
    # Strategy and indicators
    # ------------------------------------------------------------------

    def set_strategy(self, strategy: BaseStrategy) -> None:
        """Bind a strategy and build the indicators it asks for.

        Indicators that fail to build are logged and skipped.
        """
        self.strategy = strategy
        self._indicators.clear()
        self._indicator_results.clear()
        for name, params in strategy.use_indicators().items():
            build = build_indicator(name, params)
            if isinstance(build, Err):
                self.context.logger.warning(
                    "indicator_skipped", ticker=self.ticker, indicator=name, error=build.message
                )
                continue
            self._indicators[name] = build.indicator

    def calculate_indicators(self) -> None:
        for name, indicator in self._indicators.items():
            self._indicator_results[name] = indicator.calculate(self.candles)

    def indicator_result(self, name: str) -> IndicatorResult | None:
        return self._indicator_results.get(name)

    def latest_indicator_value(self, name: str) -> Decimal | None:
        result = self._indicator_results.get(name)
        return result.latest_value if result else None

    def latest_indicator_signal(self, name: str) -> str | None:
        result = self._indicator_results.get(name)
        return result.latest_signal if result else None

    def indicator_snapshot(self) -> dict[str, str]:
        """Latest value of every indicator, as strings, for event records."""
        snapshot: dict[str, str] = {}
        for name, result in self._indicator_results.items():
            if result.latest_value is not None:
                snapshot[name] = str(result.latest_value)
        return snapshot

    # ------------------------------------------------------------------
    # Prices, balances, positions
    # ------------------------------------------------------------------

    async def get_current_price(self) -> Money | None:
        if self._price_cache is None:
            return await self.exchange.get_current_price(self)
        return await self._price_cache.get_or_fetch(
            self.key, lambda: self.exchange.get_current_price(self)
        )

    async def trading_context(self) -> TradingContext:
        """Snapshot of balance, margin and price for resolving order volumes."""
        quote = self.pair.quote_currency
        price = await self.get_current_price()
        balance = await self.exchange.get_balance(quote)
        margin = await self.exchange.get_available_margin()
        return TradingContext(
            balance=balance.amount if balance else Decimal("0"),
            margin=margin.amount if margin else Decimal("0"),
            current_price=price if price is not None else Money(Decimal("0"), quote),
        )

    @property
    def position(self) -> Position | None:
        """The active position held in memory, if any."""
        if self._position is not None and self._position.is_active:
            return self._position
        return None

    async def get_position(self) -> Position | None:
        """Return the active position, loading it from the repository if needed."""
        if self.position is not None:
            return self._position
        self._position = await self.positions.find_active(
            self.pair.exchange_name, self.pair.ticker, self.pair.market_type
        )
        return self._position

    async def get_tick_size(self) -> Decimal | None:
        return await self.exchange.get_tick_size(self)

    async def has_active_order(self, order_id: str) -> bool:
        return await self.exchange.has_active_order(self, order_id)

    async def remove_limit_orders(self) -> bool:
        return await self.exchange.remove_limit_orders(self)

    async def set_stop_loss(self, price: Money) -> bool:
        return await self.exchange.set_stop_loss(self, price)

    # ------------------------------------------------------------------
    # Trading cycle
    # ------------------------------------------------------------------

    async def process_trading(self) -> None:
        """Run one decision cycle.

        With an active position: sync it with the exchange, then let the
        strategy manage it (also when the sync just finished it). Without
        one, and with trading enabled, ask the strategy for an entry.
        """
        strategy = self.strategy
        if strategy is None:
            return

        position = await self.get_position()
        if position is not None:
            await position.update_info(self)
            await strategy.update_position(position)
            if position.is_active:
                await self.positions.save(position)
            return

        if not self.pair.trading_enabled:
            return

        if strategy.should_long():
            await strategy.handle_long(self)
        elif strategy.does_short() and strategy.should_short():
            await strategy.handle_short(self)

    # ------------------------------------------------------------------
    # Opening positions
    # ------------------------------------------------------------------

    async def open_position(
        self,
        direction: PositionDirection,
        amount: Money,
        take_profit_percent: Decimal | None = None,
    ) -> Position | None:
        """Open a position with a market order.

        Args:
            direction: LONG or SHORT.
            amount: Order size in quote currency.
            take_profit_percent: TP distance from entry, in %.

        Returns:
            The saved position, or None if the price or order was unavailable.
        """
        price = await self.get_current_price()
        if price is None or price.amount <= 0 or amount.amount <= 0:
            self.context.logger.warning(
                "open_position_skipped",
                ticker=self.ticker,
                price=str(price.amount) if price else None,
                amount=str(amount.amount),
            )
            return None

        order_id = await self.exchange.open_position(
            self, direction, amount, price, take_profit_percent
        )
        if order_id is None:
            self.context.logger.error(
                "open_position_failed", ticker=self.ticker, direction=direction.value
            )
            return None

        position = self._new_position(
            direction,
            PositionStatus.OPEN,
            price,
            amount.amount / price.amount,
            take_profit_percent,
            order_id,
        )
        await self.positions.save(position)
        self._position = position
        self._log_open(position)
        return position

    async def open_position_by_dca_grid(self, grid: DCAOrderGrid) -> Position | None:
        """Open a position and place the whole DCA grid as limit orders.

        Level 0 is the entry: a market order when the grid asks for one,
        otherwise a limit order at the current price (the position stays
        PENDING until it fills). Every further level becomes a limit order
        at its offset from the current price.

        Returns:
            The saved position, or None if any level price is non-positive
            or the entry order fails.
        """
        if grid.is_empty():
            return None
        price = await self.get_current_price()
        if price is None or price.amount <= 0:
            self.context.logger.warning("grid_open_skipped", ticker=self.ticker)
            return None

        context = await self.trading_context()
        order_map = grid.build_order_map(context)
        level_prices = [price.modify_by_percent(entry.offset) for entry in order_map]
        if any(p.amount <= 0 for p in level_prices):
            self.context.logger.error(
                "grid_price_not_positive",
                ticker=self.ticker,
                offsets=[str(e.offset) for e in order_map],
            )
            return None

        direction = grid.direction
        entry = order_map[0]
        if entry.volume.amount <= 0:
            self.context.logger.warning("grid_entry_volume_zero", ticker=self.ticker)
            return None

        if grid.always_market_entry:
            order_id = await self.exchange.open_position(
                self, direction, entry.volume, price, grid.expected_profit
            )
            status = PositionStatus.OPEN
        else:
            order_id = await self.exchange.place_limit_order(
                self, entry.volume.amount / price.amount, price, direction, grid.expected_profit
            )
            status = PositionStatus.PENDING
        if order_id is None:
            self.context.logger.error(
                "grid_entry_failed", ticker=self.ticker, direction=direction.value
            )
            return None

        for index, (level, level_price) in enumerate(
            zip(order_map[1:], level_prices[1:]), start=1
        ):
            volume = level.volume.amount / level_price.amount
            if await self.exchange.place_limit_order(self, volume, level_price, direction) is None:
                self.context.logger.warning(
                    "grid_level_failed",
                    ticker=self.ticker,
                    level=index,
                    price=str(level_price.amount),
                )

        position = self._new_position(
            direction,
            status,
            price,
            entry.volume.amount / price.amount,
            grid.expected_profit,
            order_id,
        )
        await self.positions.save(position)
        self._position = position
        self._log_open(position, levels=len(order_map))
        return position

    def _new_position(
        self,
        direction: PositionDirection,
        status: PositionStatus,
        price: Money,
        volume: Decimal,
        take_profit_percent: Decimal | None,
        order_id: str,
    ) -> Position:
        now = self.context.now()
        position = Position(
            exchange_name=self.pair.exchange_name,
            ticker=self.pair.ticker,
            market_type=self.pair.market_type,
            direction=direction,
            status=status,
            initial_entry_price=price,
            average_entry_price=price,
            current_price=price,
            volume=Money(volume, self.pair.base_currency),
            expected_profit_percent=take_profit_percent or Decimal("0"),
            entry_order_id=order_id,
            created_at=now,
            updated_at=now,
        )
        if take_profit_percent:
            position.take_profit_price = position.expected_take_profit_price()
        return position

    def _log_open(self, position: Position, **extra: object) -> None:
        self.context.logger.info(
            "position_open",
            ticker=self.ticker,
            direction=position.direction.value,
            status=position.status.value,
            price=str(position.average_entry_price.amount),
            volume=str(position.volume.amount),
            **extra,
        )
        self.context.emit(
            "position_open",
            dir=position.direction.value,
            price=position.average_entry_price.amount,
            volume=position.volume.amount,
            time=position.created_at,
        )

    # ------------------------------------------------------------------
    # Managing positions
    # ------------------------------------------------------------------

    async def execute_dca_fill(self, position: Position, amount: Money) -> bool:
        """Add to a position at market and recompute its average entry.

        Args:
            position: Active position to average.
            amount: Added size in quote currency.

        Returns:
            True if the exchange accepted the order.
        """
        price = position.current_price
        if price.amount <= 0 or amount.amount <= 0:
            return False
        if position.direction.is_long:
            ok = await self.exchange.buy_additional(self, amount)
        else:
            ok = await self.exchange.sell_additional(self, amount)
        if not ok:
            self.context.logger.error("dca_fill_failed", ticker=self.ticker)
            return False

        added = amount.amount / price.amount
        position.apply_fill(added, price.amount)
        if position.take_profit_price is not None:
            await self.exchange.set_take_profit(self, position.take_profit_price)
        await self.positions.save(position)

        self.context.logger.info(
            "dca_fill",
            ticker=self.ticker,
            price=str(price.amount),
            added_volume=str(added),
            average_entry=str(position.average_entry_price.amount),
        )
        self.context.emit(
            "dca_fill",
            dir=position.direction.value,
            price=price.amount,
            addedVolume=added,
            newAvgEntry=position.average_entry_price.amount,
            totalVolume=position.volume.amount,
            time=self.context.now(),
        )
        return True

    async def partial_close(
        self,
        position: Position,
        volume: Decimal,
        close_price: Money | None = None,
        breakeven_lock: bool = False,
    ) -> bool:
        """Close part of a position at market and shrink its recorded volume.

        Args:
            position: Active position.
            volume: Base volume to close.
            close_price: Price to book the close at; defaults to current.
            breakeven_lock: The caller reports the event itself.

        Returns:
            True if the exchange accepted the close.
        """
        if volume <= 0:
            return False
        price = close_price if close_price is not None else position.current_price
        if not await self.exchange.close_position(self, position.direction, volume, price):
            return False

        locked_profit = (
            (price.amount - position.average_entry_price.amount)
            * position.direction.multiplier
            * volume
        )
        position.reduce_volume(volume)
        await self.positions.save(position)

        self.context.logger.info(
            "partial_close",
            ticker=self.ticker,
            volume=str(volume),
            price=str(price.amount),
            locked_profit=str(locked_profit),
            breakeven_lock=breakeven_lock,
        )
        if not breakeven_lock:
            self.context.emit(
                "partial_close",
                closeVolume=volume,
                closePrice=price.amount,
                lockedProfit=locked_profit,
                time=self.context.now(),
            )
        return True
