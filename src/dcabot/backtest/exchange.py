"""Simulated exchange driver for backtesting.

Implements the ExchangeDriver ABC against an in-memory account instead of a
venue. The backtest engine injects the current price before every tick;
market orders fill at that price immediately. Grid limit orders are kept as
pending orders that the engine fills when a tick crosses their price.

Accounting is futures-style: opening or adding to a position does not move
margin out of the balance; realized PnL is credited when volume is closed.
A fee of fee_rate x notional is debited on every fill. For spot markets the
driver also tracks base-currency holdings so Position.update_info() sees the
same balances it would see live.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from dcabot.exchange.driver import ExchangeDriver
from dcabot.exchange.types import ExchangePosition
from dcabot.financial.money import Money
from dcabot.financial.position import Position
from dcabot.logging import get_logger
from dcabot.models import Candle, MarginMode, Pair, PositionDirection, PositionMode

if TYPE_CHECKING:
    from dcabot.market import Market

logger = get_logger(__name__)

DEFAULT_TICK_SIZE = Decimal("0.01")
DEFAULT_QTY_STEP = Decimal("0.0001")


@dataclass(frozen=True)
class PendingLimitOrder:
    """A resting grid order: base volume to add at price."""

    order_id: str
    price: Decimal
    volume: Decimal
    direction: PositionDirection


class BacktestExchange(ExchangeDriver):
    """In-memory exchange with a virtual balance.

    Args:
        initial_balance: Starting quote-currency balance.
        name: Exchange name written into positions.
        fee_rate: Fraction of notional charged per fill.
        tick_size: Price tick reported to strategies.
        qty_step: Quantity step reported to strategies.
        leverage: Leverage reported to validation; None means unknown.
    """

    def __init__(
        self,
        initial_balance: Decimal,
        name: str = "backtest",
        fee_rate: Decimal = Decimal("0"),
        tick_size: Decimal = DEFAULT_TICK_SIZE,
        qty_step: Decimal = DEFAULT_QTY_STEP,
        leverage: Decimal | None = None,
        margin_mode: MarginMode = MarginMode.ISOLATED,
        position_mode: PositionMode = PositionMode.HEDGE,
    ) -> None:
        self.name = name
        self.balance = initial_balance
        self.fee_rate = fee_rate
        self.fees_paid = Decimal("0")
        self._tick_size = tick_size
        self._qty_step = qty_step
        self._leverage = leverage
        self._margin_mode = margin_mode
        self._position_mode = position_mode
        self._prices: dict[str, Money] = {}
        self._pending: dict[str, list[PendingLimitOrder]] = {}
        self._holdings: dict[str, Decimal] = {}
        self._order_counter = 0

    # ------------------------------------------------------------------
    # Simulation controls
    # ------------------------------------------------------------------

    def set_current_price(self, market: Market, price: Money) -> None:
        self._prices[market.key] = price

    def set_instrument_steps(
        self, tick_size: Decimal | None, qty_step: Decimal | None
    ) -> None:
        """Adopt the venue's real steps; None keeps the configured value."""
        if tick_size is not None and tick_size > 0:
            self._tick_size = tick_size
        if qty_step is not None and qty_step > 0:
            self._qty_step = qty_step

    def credit_balance(self, amount: Decimal) -> None:
        self.balance += amount

    def pending_limit_orders(self, market: Market) -> list[PendingLimitOrder]:
        return list(self._pending.get(market.key, []))

    def fill_limit_order(self, market: Market, order: PendingLimitOrder) -> None:
        """Remove a pending order the engine has filled and book the fill."""
        orders = self._pending.get(market.key, [])
        self._pending[market.key] = [o for o in orders if o.order_id != order.order_id]
        if not self._pending[market.key]:
            del self._pending[market.key]
        self._book_fill(market, order.direction, order.volume, order.price)

    def settle_close(self, market: Market, position: Position, price: Money) -> Decimal:
        """Close the whole position at price; credit and return realized PnL.

        Pending grid orders for the market are cleared.
        """
        pnl = position.unrealized_pnl(price).amount
        self._book_close(market, position.direction, position.volume.amount, price.amount, pnl)
        self._pending.pop(market.key, None)
        return pnl

    def _next_order_id(self) -> str:
        self._order_counter += 1
        return f"bt-{self._order_counter}"

    def _charge_fee(self, notional: Decimal) -> None:
        fee = abs(notional) * self.fee_rate
        if fee:
            self.balance -= fee
            self.fees_paid += fee

    def _book_fill(
        self, market: Market, direction: PositionDirection, volume: Decimal, price: Decimal
    ) -> None:
        self._charge_fee(volume * price)
        if market.pair.market_type.is_spot and direction.is_long:
            base = market.pair.base_currency
            self._holdings[base] = self._holdings.get(base, Decimal("0")) + volume

    def _book_close(
        self,
        market: Market,
        direction: PositionDirection,
        volume: Decimal,
        price: Decimal,
        pnl: Decimal,
    ) -> None:
        self.balance += pnl
        self._charge_fee(volume * price)
        if market.pair.market_type.is_spot and direction.is_long:
            base = market.pair.base_currency
            remaining = self._holdings.get(base, Decimal("0")) - volume
            self._holdings[base] = max(remaining, Decimal("0"))

    # ------------------------------------------------------------------
    # ExchangeDriver
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    def pair_to_ticker(self, pair: Pair) -> str:
        return f"{pair.base_currency}{pair.quote_currency}"

    async def get_candles(
        self,
        pair: Pair,
        limit: int,
        start: int | None = None,
        end: int | None = None,
    ) -> list[Candle]:
        return []

    async def get_current_price(self, market: Market) -> Money | None:
        return self._prices.get(market.key)

    async def get_current_futures_position(self, market: Market) -> ExchangePosition | None:
        position = market.position
        if position is None or position.volume.amount <= 0:
            return None
        return ExchangePosition(
            direction=position.direction,
            volume=position.volume.amount,
            average_price=position.average_entry_price.amount,
            current_price=position.current_price.amount,
            unrealized_pnl=position.unrealized_pnl().amount,
        )

    async def get_spot_balance_by_currency(self, currency: str) -> Money | None:
        return Money(self._holdings.get(currency, Decimal("0")), currency)

    async def get_balance(self, currency: str = "USDT") -> Money | None:
        return Money(self.balance, currency)

    async def get_available_margin(self) -> Money | None:
        return Money(self.balance)

    async def open_position(
        self,
        market: Market,
        direction: PositionDirection,
        amount: Money,
        price: Money,
        take_profit_percent: Decimal | None = None,
    ) -> str | None:
        if price.amount <= 0:
            return None
        self._book_fill(market, direction, amount.amount / price.amount, price.amount)
        order_id = self._next_order_id()
        logger.debug(
            "backtest_open",
            ticker=market.ticker,
            direction=direction.value,
            price=str(price.amount),
            amount=str(amount.amount),
        )
        return order_id

    async def buy_additional(self, market: Market, amount: Money) -> bool:
        return await self._add(market, PositionDirection.LONG, amount)

    async def sell_additional(self, market: Market, amount: Money) -> bool:
        return await self._add(market, PositionDirection.SHORT, amount)

    async def _add(self, market: Market, direction: PositionDirection, amount: Money) -> bool:
        price = self._prices.get(market.key)
        if price is None or price.amount <= 0:
            return False
        self._book_fill(market, direction, amount.amount / price.amount, price.amount)
        return True

    async def close_position(
        self,
        market: Market,
        direction: PositionDirection,
        volume: Decimal,
        price: Money | None = None,
    ) -> bool:
        position = market.position
        mark = price if price is not None else self._prices.get(market.key)
        if position is None or mark is None:
            return False
        volume = min(volume, position.volume.amount)
        pnl = (mark.amount - position.average_entry_price.amount) * direction.multiplier * volume
        self._book_close(market, direction, volume, mark.amount, pnl)
        return True

    async def place_limit_order(
        self,
        market: Market,
        volume: Decimal,
        price: Money,
        direction: PositionDirection,
        take_profit_percent: Decimal | None = None,
    ) -> str | None:
        order_id = self._next_order_id()
        if take_profit_percent is not None:
            # Entry order of a new grid: fills at once, stale grid orders go away
            self._pending.pop(market.key, None)
            self._book_fill(market, direction, volume, price.amount)
            return order_id
        self._pending.setdefault(market.key, []).append(
            PendingLimitOrder(order_id, price.amount, volume, direction)
        )
        logger.debug(
            "backtest_limit_placed",
            ticker=market.ticker,
            direction=direction.value,
            price=str(price.amount),
            volume=str(volume),
        )
        return order_id

    async def place_limit_close(
        self,
        market: Market,
        direction: PositionDirection,
        volume: Decimal,
        price: Money,
    ) -> str | None:
        if not await self.close_position(market, direction, volume, price):
            return None
        return self._next_order_id()

    async def remove_limit_orders(self, market: Market) -> bool:
        self._pending.pop(market.key, None)
        return True

    async def set_take_profit(self, market: Market, price: Money) -> bool:
        return True

    async def set_stop_loss(self, market: Market, price: Money) -> bool:
        return True

    async def has_active_order(self, market: Market, order_id: str) -> bool:
        return any(o.order_id == order_id for o in self._pending.get(market.key, []))

    async def get_tick_size(self, market: Market) -> Decimal | None:
        return self._tick_size

    async def get_qty_step(self, market: Market) -> Decimal | None:
        return self._qty_step

    async def get_margin_mode(self, market: Market) -> MarginMode | None:
        return self._margin_mode

    async def get_position_mode(self, market: Market) -> PositionMode | None:
        return self._position_mode

    async def get_leverage(self, market: Market) -> Decimal | None:
        return self._leverage
