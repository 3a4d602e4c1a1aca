"""Persistent position aggregate with a status state machine.

A Position mirrors one directional exposure on one market. It is created by
Market when an entry order is placed, synchronised against the exchange
driver once per tick by update_info(), and persisted through the market's
PositionRepository after every pass.

Status transitions (anything else raises InvalidTransitionError):
    PENDING -> OPEN -> FINISHED
    PENDING -> CANCELED
    PENDING | OPEN -> ERROR

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from dcabot.exceptions import InvalidTransitionError
from dcabot.financial.money import DUST_THRESHOLD, Money
from dcabot.models import (
    MarketType,
    PositionDirection,
    PositionFinishReason,
    PositionStatus,
)

if TYPE_CHECKING:
    from dcabot.market import Market

#: Pending entry orders drifting further than this (in %) are canceled.
PENDING_DRIFT_PERCENT = Decimal("0.5")

#: TP/SL orders are re-issued only when the new price differs by at least this %.
TP_HYSTERESIS_PERCENT = Decimal("0.1")

#: Take-profit is recomputed after a fill only for non-trivial targets.
MIN_EXPECTED_PROFIT_PERCENT = Decimal("0.0001")


@dataclass
class Position:
    """A directional position on one market.

    Prices are Money in the quote currency. volume is Money in the base
    currency.

    Attributes:
        exchange_name: Exchange the position lives on.
        ticker: Market ticker, e.g. "BTC/USDT".
        market_type: Spot or futures.
        direction: LONG or SHORT.
        status: Current lifecycle state.
        initial_entry_price: Price of the first fill; DCA offsets are measured from it.
        average_entry_price: Volume-weighted average of all fills.
        current_price: Last observed market price.
        volume: Position size in base currency.
        take_profit_price: Active take-profit price, if any.
        expected_profit_percent: TP distance from the average entry, in %.
        stop_loss_price: Active stop-loss price, if any.
        expected_stop_loss_percent: SL distance from the entry, in %.
        entry_order_id: Exchange id of the entry order.
        finish_reason: Why the position was closed.
        created_at: Unix seconds, from the execution-context clock.
        updated_at: Unix seconds of the last update_info() pass.
        finished_at: Unix seconds of the close, if finished.
        id: Repository row id, None until first saved.
    """

    exchange_name: str
    ticker: str
    market_type: MarketType
    direction: PositionDirection
    status: PositionStatus
    initial_entry_price: Money
    average_entry_price: Money
    current_price: Money
    volume: Money
    expected_profit_percent: Decimal = Decimal("0")
    take_profit_price: Money | None = None
    expected_stop_loss_percent: Decimal = Decimal("0")
    stop_loss_price: Money | None = None
    entry_order_id: str | None = None
    finish_reason: PositionFinishReason | None = None
    created_at: int = 0
    updated_at: int = 0
    finished_at: int | None = None
    id: int | None = None

    @property
    def base_currency(self) -> str:
        return self.volume.currency

    @property
    def quote_currency(self) -> str:
        return self.average_entry_price.currency

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def transition_to(self, status: PositionStatus) -> None:
        """Move to a new status.

        Raises:
            InvalidTransitionError: If the transition is not allowed.
        """
        if not self.status.can_transition_to(status):
            raise InvalidTransitionError(
                f"Position {self.ticker} cannot go from "
                f"{self.status.value} to {status.value}"
            )
        self.status = status

    def mark_finished(
        self, finished_at: int, reason: PositionFinishReason | None = None
    ) -> None:
        self.transition_to(PositionStatus.FINISHED)
        self.finished_at = finished_at
        if reason is not None:
            self.finish_reason = reason

    def mark_error(self) -> None:
        self.transition_to(PositionStatus.ERROR)

    def infer_finish_reason(self) -> PositionFinishReason | None:
        """Guess why the venue closed the position from the last price.

        Used when the exchange reports the position gone without saying why.
        """
        price = self.current_price.amount
        sign = self.direction.multiplier
        if self.take_profit_price is not None and (price - self.take_profit_price.amount) * sign >= 0:
            return PositionFinishReason.TAKE_PROFIT_MARKET
        if self.stop_loss_price is not None and (price - self.stop_loss_price.amount) * sign <= 0:
            return PositionFinishReason.STOP_LOSS_MARKET
        return None

    # ------------------------------------------------------------------
    # PnL
    # ------------------------------------------------------------------

    def price_for_pnl(self) -> Money:
        """Average entry when known, otherwise the initial entry."""
        if self.average_entry_price.amount > 0:
            return self.average_entry_price
        return self.initial_entry_price

    def unrealized_pnl_percent(self) -> Decimal:
        change = self.price_for_pnl().percent_difference(self.current_price)
        return change * self.direction.multiplier

    def unrealized_pnl(self, price: Money | None = None) -> Money:
        """Unrealized PnL in quote currency at the given (or current) price."""
        mark = price if price is not None else self.current_price
        diff = mark.amount - self.price_for_pnl().amount
        return Money(
            self.volume.amount * diff * self.direction.multiplier,
            self.quote_currency,
        )

    def volume_in_quote(self) -> Money:
        return Money(self.volume.amount * self.current_price.amount, self.quote_currency)

    # ------------------------------------------------------------------
    # Fills
    # ------------------------------------------------------------------

    def expected_take_profit_price(self) -> Money:
        return self.average_entry_price.modify_by_percent_with_direction(
            self.expected_profit_percent, self.direction
        )

    def apply_fill(self, added_volume: Decimal, fill_price: Decimal) -> None:
        """Add base volume filled at fill_price.

        Recomputes the weighted average entry and, for a non-trivial expected
        profit, the take-profit price.
        """
        old_volume = self.volume.amount
        new_volume = old_volume + added_volume
        if new_volume <= 0:
            return
        weighted = (
            old_volume * self.average_entry_price.amount + added_volume * fill_price
        ) / new_volume
        self.average_entry_price = Money(weighted, self.quote_currency)
        self.volume = Money(new_volume, self.base_currency)
        if abs(self.expected_profit_percent) >= MIN_EXPECTED_PROFIT_PERCENT:
            self.take_profit_price = self.expected_take_profit_price()

    def reduce_volume(self, closed_volume: Decimal) -> None:
        remaining = self.volume.amount - closed_volume
        if remaining < 0:
            remaining = Decimal("0")
        self.volume = Money(remaining, self.base_currency)

    # ------------------------------------------------------------------
    # Exchange synchronisation
    # ------------------------------------------------------------------

    async def update_info(self, market: Market) -> None:
        """Synchronise status, price and volume with the exchange.

        Runs once per tick. Always stamps updated_at and saves.
        """
        current = await market.get_current_price()
        if current is not None:
            self.current_price = current

        if self.market_type.is_spot:
            await self._update_spot(market)
        else:
            await self._update_futures(market)

        self.updated_at = market.context.now()
        await market.positions.save(self)

    async def _update_spot(self, market: Market) -> None:
        if self.status is PositionStatus.PENDING:
            if self.entry_order_id and await market.has_active_order(self.entry_order_id):
                return
            self.transition_to(PositionStatus.OPEN)
            market.context.logger.info(
                "position_opened",
                ticker=self.ticker,
                direction=self.direction.value,
                price=str(self.average_entry_price.amount),
            )
            return

        if self.status is not PositionStatus.OPEN:
            return

        balance = await market.exchange.get_spot_balance_by_currency(self.base_currency)
        if balance is None:
            return

        if balance.amount + DUST_THRESHOLD < self.volume.amount:
            self.mark_finished(market.context.now(), self.infer_finish_reason())
            market.context.logger.info(
                "position_finished",
                ticker=self.ticker,
                reason="balance_below_volume",
                balance=str(balance.amount),
                volume=str(self.volume.amount),
            )
            return

        excess = balance.amount - self.volume.amount
        if excess > DUST_THRESHOLD:
            # Averaging order filled outside the engine
            self.apply_fill(excess, self.current_price.amount)
            market.context.logger.info(
                "external_fill_detected",
                ticker=self.ticker,
                added=str(excess),
                average_entry=str(self.average_entry_price.amount),
            )

    async def _update_futures(self, market: Market) -> None:
        if self.status is PositionStatus.PENDING:
            if self.entry_order_id and await market.has_active_order(self.entry_order_id):
                drift = abs(self.initial_entry_price.percent_difference(self.current_price))
                if drift > PENDING_DRIFT_PERCENT:
                    if await market.remove_limit_orders():
                        self.transition_to(PositionStatus.CANCELED)
                        market.context.logger.info(
                            "pending_position_canceled",
                            ticker=self.ticker,
                            drift_percent=str(drift),
                        )
                    else:
                        market.context.logger.error(
                            "pending_position_cancel_failed", ticker=self.ticker
                        )
                return

            self.transition_to(PositionStatus.OPEN)
            await self._sync_from_exchange(market)
            market.context.logger.info(
                "position_opened",
                ticker=self.ticker,
                direction=self.direction.value,
                price=str(self.average_entry_price.amount),
            )
            return

        if self.status is not PositionStatus.OPEN:
            return

        if not await self._sync_from_exchange(market):
            if not await market.remove_limit_orders():
                market.context.logger.error(
                    "finished_position_cleanup_failed", ticker=self.ticker
                )
                return
            self.mark_finished(market.context.now(), self.infer_finish_reason())
            market.context.logger.info(
                "position_finished",
                ticker=self.ticker,
                reason=self.finish_reason.value if self.finish_reason else None,
            )

    async def _sync_from_exchange(self, market: Market) -> bool:
        """Copy volume/average/current from the exchange position, if any."""
        remote = await market.exchange.get_current_futures_position(market)
        if remote is None or remote.volume <= 0:
            return False
        self.volume = Money(remote.volume, self.base_currency)
        if remote.average_price > 0:
            self.average_entry_price = Money(remote.average_price, self.quote_currency)
        if remote.current_price > 0:
            self.current_price = Money(remote.current_price, self.quote_currency)
        return True

    async def update_take_profit(self, market: Market) -> bool:
        """Re-issue the take-profit order when the target moved enough.

        Returns:
            True if a new take-profit order was placed.
        """
        if self.expected_profit_percent == 0:
            return False
        expected = self.expected_take_profit_price()
        if self.take_profit_price is not None:
            change = abs(self.take_profit_price.percent_difference(expected))
            if change < TP_HYSTERESIS_PERCENT:
                return False
        if not await market.exchange.set_take_profit(market, expected):
            return False
        self.take_profit_price = expected
        market.context.logger.debug(
            "take_profit_updated", ticker=self.ticker, price=str(expected.amount)
        )
        return True

    async def update_stop_loss(self, market: Market, price: Money) -> bool:
        """Move the stop-loss, applying the same hysteresis as take-profit."""
        if self.stop_loss_price is not None:
            change = abs(self.stop_loss_price.percent_difference(price))
            if change < TP_HYSTERESIS_PERCENT:
                return False
        if not await market.exchange.set_stop_loss(market, price):
            return False
        self.stop_loss_price = price
        return True

    def describe(self) -> str:
        return (
            f"{self.direction.short_code} {self.ticker} "
            f"{self.volume.amount} @ {self.average_entry_price.amount} "
            f"[{self.status.value}]"
        )
