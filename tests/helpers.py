"""Object factories shared by the test modules."""

from decimal import Decimal

from dcabot.financial.money import Money
from dcabot.financial.position import Position
from dcabot.models import Candle, MarketType, PositionDirection, PositionStatus


def make_candle(
    open_time: int,
    open_: str,
    high: str,
    low: str,
    close: str,
    volume: str = "0",
) -> Candle:
    """Candle from string prices (keeps Decimal exact)."""
    return Candle(
        open_time=open_time,
        open=Decimal(open_),
        high=Decimal(high),
        low=Decimal(low),
        close=Decimal(close),
        volume=Decimal(volume),
    )


def make_position(
    direction: PositionDirection = PositionDirection.LONG,
    entry: str = "100",
    volume: str = "1",
    status: PositionStatus = PositionStatus.OPEN,
    expected_profit: str = "0",
    ticker: str = "BTC/USDT",
    exchange_name: str = "backtest",
    created_at: int = 0,
) -> Position:
    """Futures position with a single fill at entry."""
    price = Money(Decimal(entry))
    return Position(
        exchange_name=exchange_name,
        ticker=ticker,
        market_type=MarketType.FUTURES,
        direction=direction,
        status=status,
        initial_entry_price=price,
        average_entry_price=price,
        current_price=price,
        volume=Money(Decimal(volume), ticker.split("/")[0]),
        expected_profit_percent=Decimal(expected_profit),
        created_at=created_at,
        updated_at=created_at,
    )
