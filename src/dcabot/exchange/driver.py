"""Abstract exchange driver interface.

Strategies, positions and the Market depend only on this interface. The live
implementation talks to a venue through ccxt; the backtest implementation is
an in-memory simulation. Swapping the driver is the only difference between
live and simulated execution.

Transient venue failures are caught inside implementations, logged, and
surfaced as None/False. Drivers never raise ExchangeError to the Market.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import TYPE_CHECKING

from dcabot.exchange.types import ExchangePosition
from dcabot.financial.money import Money
from dcabot.models import Candle, MarginMode, Pair, PositionDirection, PositionMode

if TYPE_CHECKING:
    from dcabot.market import Market


class ExchangeDriver(ABC):
    """Abstract base class for exchange drivers."""

    name: str = "exchange"

    @abstractmethod
    async def connect(self) -> None:
        """Initialize the connection and load instruments."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Release network resources."""
        ...

    @abstractmethod
    def pair_to_ticker(self, pair: Pair) -> str:
        """Return the venue symbol for a pair."""
        ...

    @abstractmethod
    async def get_candles(
        self,
        pair: Pair,
        limit: int,
        start: int | None = None,
        end: int | None = None,
    ) -> list[Candle]:
        """Fetch candles in the pair's timeframe, oldest first.

        Args:
            pair: Pair to fetch.
            limit: Maximum number of candles.
            start: Earliest open_time in Unix seconds, inclusive.
            end: Latest open_time in Unix seconds, inclusive.
        """
        ...

    @abstractmethod
    async def get_current_price(self, market: Market) -> Money | None:
        ...

    @abstractmethod
    async def get_current_futures_position(self, market: Market) -> ExchangePosition | None:
        ...

    @abstractmethod
    async def get_spot_balance_by_currency(self, currency: str) -> Money | None:
        ...

    @abstractmethod
    async def get_balance(self, currency: str = "USDT") -> Money | None:
        """Return total account equity in the given quote currency."""
        ...

    @abstractmethod
    async def get_available_margin(self) -> Money | None:
        """Return free margin in quote currency."""
        ...

    @abstractmethod
    async def open_position(
        self,
        market: Market,
        direction: PositionDirection,
        amount: Money,
        price: Money,
        take_profit_percent: Decimal | None = None,
    ) -> str | None:
        """Open a position with a market order.

        Args:
            market: Target market.
            direction: LONG or SHORT.
            amount: Order size in quote currency.
            price: Price the size was computed at.
            take_profit_percent: Optional TP distance from entry, in %.

        Returns:
            The venue order id, or None on failure.
        """
        ...

    @abstractmethod
    async def buy_additional(self, market: Market, amount: Money) -> bool:
        """Increase a LONG (or reduce a SHORT) by a quote-currency amount at market."""
        ...

    @abstractmethod
    async def sell_additional(self, market: Market, amount: Money) -> bool:
        """Increase a SHORT (or reduce a LONG) by a quote-currency amount at market."""
        ...

    @abstractmethod
    async def close_position(
        self,
        market: Market,
        direction: PositionDirection,
        volume: Decimal,
        price: Money | None = None,
    ) -> bool:
        """Close base volume of a position at market (reduce-only)."""
        ...

    @abstractmethod
    async def place_limit_order(
        self,
        market: Market,
        volume: Decimal,
        price: Money,
        direction: PositionDirection,
        take_profit_percent: Decimal | None = None,
    ) -> str | None:
        """Place a limit order that opens or adds to a position.

        A take_profit_percent marks the order as an entry order; grid levels
        pass None.

        Returns:
            The venue order id, or None on failure.
        """
        ...

    @abstractmethod
    async def place_limit_close(
        self,
        market: Market,
        direction: PositionDirection,
        volume: Decimal,
        price: Money,
    ) -> str | None:
        """Place a reduce-only limit order closing base volume of a position."""
        ...

    @abstractmethod
    async def remove_limit_orders(self, market: Market) -> bool:
        ...

    @abstractmethod
    async def set_take_profit(self, market: Market, price: Money) -> bool:
        ...

    @abstractmethod
    async def set_stop_loss(self, market: Market, price: Money) -> bool:
        ...

    @abstractmethod
    async def has_active_order(self, market: Market, order_id: str) -> bool:
        ...

    @abstractmethod
    async def get_tick_size(self, market: Market) -> Decimal | None:
        ...

    @abstractmethod
    async def get_qty_step(self, market: Market) -> Decimal | None:
        ...

    @abstractmethod
    async def get_margin_mode(self, market: Market) -> MarginMode | None:
        ...

    @abstractmethod
    async def get_position_mode(self, market: Market) -> PositionMode | None:
        ...

    @abstractmethod
    async def get_leverage(self, market: Market) -> Decimal | None:
        ...
