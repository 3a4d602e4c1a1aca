"""Exchange-facing value types and rounding helpers.

All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from dataclasses import dataclass
from decimal import Decimal

from dcabot.models import PositionDirection


@dataclass
class InstrumentInfo:
    """Trading constraints for an instrument (spot or perpetual)."""

    symbol: str
    min_qty: Decimal
    max_qty: Decimal
    qty_step: Decimal
    min_notional: Decimal = Decimal("0")
    tick_size: Decimal = Decimal("0.01")


@dataclass
class ExchangePosition:
    """A position as reported by the venue.

    Attributes:
        direction: LONG or SHORT.
        volume: Size in base currency (always positive).
        average_price: Venue-computed average entry.
        current_price: Mark/last price reported with the position.
        unrealized_pnl: Venue-reported unrealized PnL in quote currency.
    """

    direction: PositionDirection
    volume: Decimal
    average_price: Decimal
    current_price: Decimal = Decimal("0")
    unrealized_pnl: Decimal = Decimal("0")


def round_to_step(value: Decimal, step: Decimal) -> Decimal:
    """Round a value down to the nearest step increment.

    Always rounds DOWN so an order never exceeds the available balance.

    Args:
        value: The raw quantity to round.
        step: The minimum increment (e.g., 0.001 for BTC).

    Returns:
        The value rounded down to the nearest step, or value unchanged when
        step is not positive.
    """
    if step <= 0:
        return value
    return (value // step) * step


def round_price(price: Decimal, tick_size: Decimal) -> Decimal:
    """Round a price to the nearest tick."""
    if tick_size <= 0:
        return price
    return (price / tick_size).quantize(Decimal("1")) * tick_size
