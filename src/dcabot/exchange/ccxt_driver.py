"""Live exchange driver implemented on top of ccxt async.

Wraps any ccxt.async_support exchange class selected by ExchangeSettings.name
(bybit, gateio, kucoin, bingx, ...). Instrument constraints are taken from
the markets loaded at connect() time.

Every venue call is wrapped: ccxt errors are logged and converted to
None/False so the Market can skip the tick and retry on the next one.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any

import ccxt.async_support as ccxt_async

from dcabot.config import ExchangeSettings
from dcabot.exchange.driver import ExchangeDriver
from dcabot.exchange.types import ExchangePosition, InstrumentInfo, round_to_step
from dcabot.financial.money import Money, to_decimal
from dcabot.logging import get_logger
from dcabot.models import (
    Candle,
    MarginMode,
    MarketType,
    Pair,
    PositionDirection,
    PositionMode,
)

if TYPE_CHECKING:
    from dcabot.market import Market

logger = get_logger(__name__)


class CcxtExchangeDriver(ExchangeDriver):
    """Exchange driver for live trading through ccxt."""

    def __init__(self, settings: ExchangeSettings) -> None:
        self._settings = settings
        self.name = settings.name

        config: dict = {
            "apiKey": settings.api_key.get_secret_value(),
            "secret": settings.api_secret.get_secret_value(),
            "enableRateLimit": True,
            "options": {
                "defaultType": settings.default_type,
            },
        }
        if settings.api_password.get_secret_value():
            config["password"] = settings.api_password.get_secret_value()

        exchange_class = getattr(ccxt_async, settings.name)
        self._exchange = exchange_class(config)
        if settings.testnet:
            self._exchange.set_sandbox_mode(True)
        self._markets: dict = {}

    @property
    def exchange(self) -> Any:
        """Access the underlying ccxt exchange instance."""
        return self._exchange

    async def connect(self) -> None:
        logger.info("connecting_to_exchange", exchange=self.name, testnet=self._settings.testnet)
        self._markets = await self._exchange.load_markets()
        logger.info("exchange_connected", exchange=self.name, market_count=len(self._markets))

    async def disconnect(self) -> None:
        """Clean up ccxt async resources. CRITICAL: must be called to avoid resource leaks."""
        await self._exchange.close()
        logger.info("exchange_connection_closed", exchange=self.name)

    def pair_to_ticker(self, pair: Pair) -> str:
        if pair.market_type is MarketType.SPOT:
            return pair.ticker
        if pair.market_type is MarketType.INVERSE_FUTURES:
            return f"{pair.base_currency}/USD:{pair.base_currency}"
        return f"{pair.ticker}:{pair.quote_currency}"

    def instrument_info(self, symbol: str) -> InstrumentInfo | None:
        market = self._markets.get(symbol)
        if not market:
            return None
        limits = market.get("limits", {})
        precision = market.get("precision", {})
        return InstrumentInfo(
            symbol=symbol,
            min_qty=Decimal(str(limits.get("amount", {}).get("min") or 0)),
            max_qty=Decimal(str(limits.get("amount", {}).get("max") or 0)),
            qty_step=Decimal(str(precision.get("amount") or 0)),
            min_notional=Decimal(str(limits.get("cost", {}).get("min") or 0)),
            tick_size=Decimal(str(precision.get("price") or 0)),
        )

    # ------------------------------------------------------------------
    # Market data
    # ------------------------------------------------------------------

    async def get_candles(
        self,
        pair: Pair,
        limit: int,
        start: int | None = None,
        end: int | None = None,
    ) -> list[Candle]:
        symbol = self.pair_to_ticker(pair)
        since = start * 1000 if start is not None else None
        try:
            raw = await self._exchange.fetch_ohlcv(
                symbol, pair.timeframe.value, since=since, limit=limit
            )
        except ccxt_async.BaseError as e:
            logger.error("fetch_candles_failed", symbol=symbol, error=str(e))
            return []

        candles = []
        for ts_ms, o, h, l, c, v in sorted(raw, key=lambda row: row[0]):
            open_time = int(ts_ms) // 1000
            if end is not None and open_time > end:
                break
            candles.append(
                Candle(
                    open_time=open_time,
                    open=to_decimal(o),
                    high=to_decimal(h),
                    low=to_decimal(l),
                    close=to_decimal(c),
                    volume=to_decimal(v or 0),
                )
            )
        return candles

    async def get_current_price(self, market: Market) -> Money | None:
        symbol = self.pair_to_ticker(market.pair)
        try:
            ticker = await self._exchange.fetch_ticker(symbol)
        except ccxt_async.BaseError as e:
            logger.warning("fetch_ticker_failed", symbol=symbol, error=str(e))
            return None
        last = ticker.get("last")
        if last is None:
            return None
        return Money(to_decimal(last), market.pair.quote_currency)

    async def get_current_futures_position(self, market: Market) -> ExchangePosition | None:
        symbol = self.pair_to_ticker(market.pair)
        try:
            positions = await self._exchange.fetch_positions([symbol])
        except ccxt_async.BaseError as e:
            logger.warning("fetch_positions_failed", symbol=symbol, error=str(e))
            return None

        for raw in positions:
            contracts = to_decimal(raw.get("contracts") or 0)
            if contracts <= 0:
                continue
            size = contracts * to_decimal(raw.get("contractSize") or 1)
            direction = (
                PositionDirection.LONG if raw.get("side") == "long" else PositionDirection.SHORT
            )
            return ExchangePosition(
                direction=direction,
                volume=size,
                average_price=to_decimal(raw.get("entryPrice") or 0),
                current_price=to_decimal(raw.get("markPrice") or 0),
                unrealized_pnl=to_decimal(raw.get("unrealizedPnl") or 0),
            )
        return None

    async def get_spot_balance_by_currency(self, currency: str) -> Money | None:
        return await self.get_balance(currency)

    async def get_balance(self, currency: str = "USDT") -> Money | None:
        try:
            balance = await self._exchange.fetch_balance()
        except ccxt_async.BaseError as e:
            logger.warning("fetch_balance_failed", currency=currency, error=str(e))
            return None
        total = balance.get("total", {}).get(currency) or 0
        return Money(to_decimal(total), currency)

    async def get_available_margin(self) -> Money | None:
        try:
            balance = await self._exchange.fetch_balance()
        except ccxt_async.BaseError as e:
            logger.warning("fetch_balance_failed", error=str(e))
            return None
        free = balance.get("free", {}).get("USDT") or 0
        return Money(to_decimal(free), "USDT")

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def _create_order(
        self,
        symbol: str,
        order_type: str,
        side: str,
        amount: Decimal,
        price: Decimal | None = None,
        params: dict | None = None,
    ) -> dict | None:
        info = self.instrument_info(symbol)
        if info is not None:
            amount = round_to_step(amount, info.qty_step)
        if amount <= 0:
            logger.warning("order_amount_below_step", symbol=symbol)
            return None
        logger.info(
            "creating_order",
            symbol=symbol,
            order_type=order_type,
            side=side,
            amount=str(amount),
            price=str(price) if price is not None else None,
        )
        try:
            return await self._exchange.create_order(
                symbol,
                order_type,
                side,
                float(amount),
                float(price) if price is not None else None,
                params=params or {},
            )
        except ccxt_async.BaseError as e:
            logger.error("create_order_failed", symbol=symbol, side=side, error=str(e))
            return None

    async def open_position(
        self,
        market: Market,
        direction: PositionDirection,
        amount: Money,
        price: Money,
        take_profit_percent: Decimal | None = None,
    ) -> str | None:
        symbol = self.pair_to_ticker(market.pair)
        params: dict = {}
        if take_profit_percent:
            tp = price.modify_by_percent_with_direction(take_profit_percent, direction)
            params["takeProfit"] = {"triggerPrice": float(tp.amount)}
        order = await self._create_order(
            symbol,
            "market",
            _side(direction),
            amount.amount / price.amount,
            params=params,
        )
        return str(order["id"]) if order else None

    async def buy_additional(self, market: Market, amount: Money) -> bool:
        return await self._market_by_quote(market, "buy", amount)

    async def sell_additional(self, market: Market, amount: Money) -> bool:
        return await self._market_by_quote(market, "sell", amount)

    async def _market_by_quote(self, market: Market, side: str, amount: Money) -> bool:
        price = await self.get_current_price(market)
        if price is None or price.amount <= 0:
            return False
        symbol = self.pair_to_ticker(market.pair)
        order = await self._create_order(symbol, "market", side, amount.amount / price.amount)
        return order is not None

    async def close_position(
        self,
        market: Market,
        direction: PositionDirection,
        volume: Decimal,
        price: Money | None = None,
    ) -> bool:
        symbol = self.pair_to_ticker(market.pair)
        params = {} if market.pair.market_type.is_spot else {"reduceOnly": True}
        order = await self._create_order(
            symbol, "market", _side(direction.opposite), volume, params=params
        )
        return order is not None

    async def place_limit_order(
        self,
        market: Market,
        volume: Decimal,
        price: Money,
        direction: PositionDirection,
        take_profit_percent: Decimal | None = None,
    ) -> str | None:
        symbol = self.pair_to_ticker(market.pair)
        params: dict = {}
        if take_profit_percent:
            tp = price.modify_by_percent_with_direction(take_profit_percent, direction)
            params["takeProfit"] = {"triggerPrice": float(tp.amount)}
        order = await self._create_order(
            symbol, "limit", _side(direction), volume, price.amount, params=params
        )
        return str(order["id"]) if order else None

    async def place_limit_close(
        self,
        market: Market,
        direction: PositionDirection,
        volume: Decimal,
        price: Money,
    ) -> str | None:
        symbol = self.pair_to_ticker(market.pair)
        params = {} if market.pair.market_type.is_spot else {"reduceOnly": True}
        order = await self._create_order(
            symbol, "limit", _side(direction.opposite), volume, price.amount, params=params
        )
        return str(order["id"]) if order else None

    async def remove_limit_orders(self, market: Market) -> bool:
        symbol = self.pair_to_ticker(market.pair)
        try:
            await self._exchange.cancel_all_orders(symbol)
        except ccxt_async.BaseError as e:
            logger.error("cancel_orders_failed", symbol=symbol, error=str(e))
            return False
        logger.info("limit_orders_removed", symbol=symbol)
        return True

    async def set_take_profit(self, market: Market, price: Money) -> bool:
        return await self._set_trading_stop(market, {"takeProfit": float(price.amount)})

    async def set_stop_loss(self, market: Market, price: Money) -> bool:
        return await self._set_trading_stop(market, {"stopLoss": float(price.amount)})

    async def _set_trading_stop(self, market: Market, params: dict) -> bool:
        # TODO: cancel the previous trigger order once trigger order ids are stored per position
        symbol = self.pair_to_ticker(market.pair)
        remote = await self.get_current_futures_position(market)
        if remote is None:
            return False
        order = await self._create_order(
            symbol,
            "market",
            _side(remote.direction.opposite),
            remote.volume,
            params={"reduceOnly": True, **_trigger_params(params)},
        )
        return order is not None

    async def has_active_order(self, market: Market, order_id: str) -> bool:
        symbol = self.pair_to_ticker(market.pair)
        try:
            order = await self._exchange.fetch_order(order_id, symbol)
        except ccxt_async.OrderNotFound:
            return False
        except ccxt_async.BaseError as e:
            logger.warning("fetch_order_failed", order_id=order_id, error=str(e))
            # Treat as still active; the next tick retries
            return True
        return order.get("status") == "open"

    # ------------------------------------------------------------------
    # Instrument and account settings
    # ------------------------------------------------------------------

    async def get_tick_size(self, market: Market) -> Decimal | None:
        info = self.instrument_info(self.pair_to_ticker(market.pair))
        return info.tick_size if info else None

    async def get_qty_step(self, market: Market) -> Decimal | None:
        info = self.instrument_info(self.pair_to_ticker(market.pair))
        return info.qty_step if info else None

    async def _fetch_position_row(self, market: Market) -> dict | None:
        symbol = self.pair_to_ticker(market.pair)
        try:
            rows = await self._exchange.fetch_positions([symbol])
        except ccxt_async.BaseError as e:
            logger.warning("fetch_positions_failed", symbol=symbol, error=str(e))
            return None
        return rows[0] if rows else None

    async def get_margin_mode(self, market: Market) -> MarginMode | None:
        row = await self._fetch_position_row(market)
        if row is None or not row.get("marginMode"):
            return None
        return MarginMode.ISOLATED if row["marginMode"] == "isolated" else MarginMode.CROSS

    async def get_position_mode(self, market: Market) -> PositionMode | None:
        try:
            mode = await self._exchange.fetch_position_mode(self.pair_to_ticker(market.pair))
        except (ccxt_async.BaseError, AttributeError) as e:
            logger.warning("fetch_position_mode_failed", error=str(e))
            return None
        return PositionMode.HEDGE if mode.get("hedged") else PositionMode.ONE_WAY

    async def get_leverage(self, market: Market) -> Decimal | None:
        row = await self._fetch_position_row(market)
        if row is None or row.get("leverage") is None:
            return None
        return to_decimal(row["leverage"])


def _side(direction: PositionDirection) -> str:
    return "buy" if direction.is_long else "sell"


def _trigger_params(params: dict) -> dict:
    if "takeProfit" in params:
        return {"takeProfitPrice": params["takeProfit"]}
    return {"stopLossPrice": params["stopLoss"]}
