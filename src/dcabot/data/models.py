"""Persisted records for backtest results and optimizer suggestions.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or rates.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from dcabot.models import MarketType, TimeFrame


class CandlePurpose(str, Enum):
    """Partition of the candles table."""

    RUNTIME = "runtime"
    BACKTEST = "backtest"


@dataclass
class BacktestResultRecord:
    """One persisted backtest run.

    result_json holds the full serialized BacktestResult; the scalar columns
    duplicate the fields the optimizer filters and compares on.
    """

    exchange_name: str
    ticker: str
    market_type: MarketType
    timeframe: TimeFrame
    strategy: str
    params: dict[str, str]
    sim_start: int
    sim_end: int
    initial_balance: Decimal
    final_balance: Decimal
    pnl: Decimal
    pnl_percent: Decimal
    max_drawdown: Decimal
    liquidated: bool
    coin_price_start: Decimal
    coin_price_end: Decimal
    result_json: str = "{}"
    created_at: int = 0
    id: int | None = None

    @property
    def duration_days(self) -> Decimal:
        return Decimal(self.sim_end - self.sim_start) / Decimal(86400)


@dataclass
class OptimizationSuggestion:
    """A single-parameter change that beat the baseline backtest."""

    exchange_name: str
    ticker: str
    market_type: MarketType
    timeframe: TimeFrame
    strategy: str
    param_name: str
    original_value: str
    mutated_value: str
    baseline_pnl_percent: Decimal
    mutated_pnl_percent: Decimal
    baseline_result_id: int | None
    mutated_result_id: int | None
    suggested_config: str
    status: str = "new"
    created_at: int = 0
    id: int | None = None

    @property
    def improvement(self) -> Decimal:
        return self.mutated_pnl_percent - self.baseline_pnl_percent


@dataclass
class CandleRange:
    """First and last stored open_time for one candle series."""

    first: int | None = None
    last: int | None = None
    count: int = 0
