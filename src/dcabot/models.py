"""Shared data models for the DCA trading engine.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum

from dcabot.exceptions import InvalidTickerError


class PositionDirection(str, Enum):
    """Position direction."""

    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def is_long(self) -> bool:
        return self is PositionDirection.LONG

    @property
    def is_short(self) -> bool:
        return self is PositionDirection.SHORT

    @property
    def multiplier(self) -> Decimal:
        """+1 for LONG, -1 for SHORT. Applied to price moves to get PnL sign."""
        return Decimal("1") if self.is_long else Decimal("-1")

    @property
    def opposite(self) -> "PositionDirection":
        return PositionDirection.SHORT if self.is_long else PositionDirection.LONG

    @property
    def short_code(self) -> str:
        return "L" if self.is_long else "S"


class PositionStatus(str, Enum):
    """Position lifecycle state.

    Valid transitions: PENDING -> OPEN -> FINISHED, PENDING -> CANCELED,
    and any active state -> ERROR.
    """

    PENDING = "pending"
    OPEN = "open"
    FINISHED = "finished"
    CANCELED = "canceled"
    ERROR = "error"

    @property
    def is_active(self) -> bool:
        return self in (PositionStatus.PENDING, PositionStatus.OPEN)

    def can_transition_to(self, target: "PositionStatus") -> bool:
        return target in _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS: dict[PositionStatus, frozenset[PositionStatus]] = {
    PositionStatus.PENDING: frozenset(
        {PositionStatus.OPEN, PositionStatus.CANCELED, PositionStatus.ERROR}
    ),
    PositionStatus.OPEN: frozenset({PositionStatus.FINISHED, PositionStatus.ERROR}),
    PositionStatus.FINISHED: frozenset(),
    PositionStatus.CANCELED: frozenset(),
    PositionStatus.ERROR: frozenset(),
}


class PositionFinishReason(str, Enum):
    """Why a position was closed."""

    TAKE_PROFIT_LIMIT = "TAKE_PROFIT_LIMIT"
    TAKE_PROFIT_MARKET = "TAKE_PROFIT_MARKET"
    STOP_LOSS_LIMIT = "STOP_LOSS_LIMIT"
    STOP_LOSS_MARKET = "STOP_LOSS_MARKET"
    LIQUIDATION = "LIQUIDATION"

    @property
    def is_take_profit(self) -> bool:
        return self in (
            PositionFinishReason.TAKE_PROFIT_LIMIT,
            PositionFinishReason.TAKE_PROFIT_MARKET,
        )

    @property
    def is_stop_loss(self) -> bool:
        return self in (
            PositionFinishReason.STOP_LOSS_LIMIT,
            PositionFinishReason.STOP_LOSS_MARKET,
        )


class MarketType(str, Enum):
    """Market category on the venue."""

    SPOT = "spot"
    FUTURES = "futures"
    INVERSE_FUTURES = "inverse_futures"

    @property
    def is_spot(self) -> bool:
        return self is MarketType.SPOT

    @property
    def is_futures(self) -> bool:
        return self in (MarketType.FUTURES, MarketType.INVERSE_FUTURES)


class TimeFrame(str, Enum):
    """Candle timeframe (ccxt notation)."""

    TF_1MINUTE = "1m"
    TF_5MINUTES = "5m"
    TF_15MINUTES = "15m"
    TF_30MINUTES = "30m"
    TF_1HOUR = "1h"
    TF_4HOURS = "4h"
    TF_1DAY = "1d"

    def to_seconds(self) -> int:
        return _TIMEFRAME_SECONDS[self]


_TIMEFRAME_SECONDS: dict[TimeFrame, int] = {
    TimeFrame.TF_1MINUTE: 60,
    TimeFrame.TF_5MINUTES: 300,
    TimeFrame.TF_15MINUTES: 900,
    TimeFrame.TF_30MINUTES: 1800,
    TimeFrame.TF_1HOUR: 3600,
    TimeFrame.TF_4HOURS: 14400,
    TimeFrame.TF_1DAY: 86400,
}


class MarginMode(str, Enum):
    ISOLATED = "isolated"
    CROSS = "cross"


class PositionMode(str, Enum):
    ONE_WAY = "one_way"
    HEDGE = "hedge"


class EntryVolumeMode(str, Enum):
    """How a configured order volume is interpreted."""

    ABSOLUTE_QUOTE = "absolute_quote"  # "140" or "140 USDT"
    ABSOLUTE_BASE = "absolute_base"  # "0.002 BTC"
    PERCENT_BALANCE = "percent_balance"  # "5%"
    PERCENT_MARGIN = "percent_margin"  # "5%M"

    @property
    def requires_runtime_calculation(self) -> bool:
        return self is not EntryVolumeMode.ABSOLUTE_QUOTE


class DCAOffsetMode(str, Enum):
    """How grid level offsets relate to each other."""

    FROM_ENTRY = "fromEntry"  # each offset accumulates from the entry price
    FROM_PREVIOUS = "fromPrevious"  # each offset is relative to the previous level's price


@dataclass(frozen=True)
class Candle:
    """A single OHLCV candle. open_time is a Unix timestamp in seconds."""

    open_time: int
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal = Decimal("0")

    @property
    def is_bullish(self) -> bool:
        return self.close >= self.open


@dataclass
class Pair:
    """A traded/monitored instrument together with its strategy configuration.

    Immutable after construction except for the enable flags; use with_params()
    to derive a pair with different strategy parameters.
    """

    base_currency: str
    quote_currency: str
    timeframe: TimeFrame
    exchange_name: str
    market_type: MarketType = MarketType.FUTURES
    trading_enabled: bool = False
    monitoring_enabled: bool = False
    strategy_name: str | None = None
    strategy_params: dict[str, str] = field(default_factory=dict)
    backtest_days: int | None = None
    backtest_initial_balance: Decimal | None = None

    @classmethod
    def from_ticker(cls, ticker: str, **kwargs: object) -> "Pair":
        """Create a pair from a "BASE/QUOTE" ticker string.

        Raises:
            InvalidTickerError: If the ticker is not exactly two non-empty parts.
        """
        parts = ticker.split("/")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise InvalidTickerError(f"Invalid ticker format: {ticker!r}")
        return cls(
            base_currency=parts[0].upper(),
            quote_currency=parts[1].upper(),
            **kwargs,  # type: ignore[arg-type]
        )

    @property
    def ticker(self) -> str:
        return f"{self.base_currency}/{self.quote_currency}"

    def with_params(self, params: dict[str, str]) -> "Pair":
        """Return a copy of this pair with different strategy parameters."""
        return replace(self, strategy_params=dict(params))

    def describe(self) -> str:
        return f"{self.ticker} {self.timeframe.value} {self.market_type.value} @ {self.exchange_name}"
