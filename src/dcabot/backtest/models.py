"""Data models for backtest results.

A BacktestResult bundles the financial outcome, trade statistics, risk
ratios, balance snapshots and the positions left open at the end of a run.
to_dict() produces the JSON shape written to the event stream and stored in
backtest_results.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from dcabot.models import Pair

_HUNDRED = Decimal("100")
_SECONDS_PER_DAY = Decimal("86400")


def _opt(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


@dataclass
class FinancialResult:
    """Balance outcome of a run.

    Attributes:
        initial_balance: Virtual balance at start.
        final_balance: Balance at end; zero when liquidated.
        max_drawdown: Most negative unrealized PnL seen (<= 0).
        liquidated: True if equity reached zero and the run stopped.
        coin_price_start: Open of the first simulated candle.
        coin_price_end: Close of the last simulated candle.
    """

    initial_balance: Decimal
    final_balance: Decimal
    max_drawdown: Decimal = Decimal("0")
    liquidated: bool = False
    coin_price_start: Decimal = Decimal("0")
    coin_price_end: Decimal = Decimal("0")

    @property
    def pnl(self) -> Decimal:
        return self.final_balance - self.initial_balance

    @property
    def pnl_percent(self) -> Decimal:
        if self.initial_balance <= 0:
            return Decimal("0")
        return self.pnl / self.initial_balance * _HUNDRED

    def to_dict(self) -> dict:
        return {
            "initial_balance": str(self.initial_balance),
            "final_balance": str(self.final_balance),
            "pnl": str(self.pnl),
            "pnl_percent": str(self.pnl_percent),
            "max_drawdown": str(self.max_drawdown),
            "liquidated": self.liquidated,
            "coin_price_start": str(self.coin_price_start),
            "coin_price_end": str(self.coin_price_end),
        }


@dataclass
class DirectionStats:
    """Trade statistics for one direction. Durations are in seconds."""

    label: str
    finished: int = 0
    wins: int = 0
    losses: int = 0
    breakeven_locks: int = 0
    shortest: int = 0
    longest: int = 0
    average: int = 0

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "finished": self.finished,
            "wins": self.wins,
            "losses": self.losses,
            "breakeven_locks": self.breakeven_locks,
            "shortest": self.shortest,
            "longest": self.longest,
            "average": self.average,
        }


@dataclass
class TradeStats:
    """Aggregate trade statistics. Durations are in seconds."""

    finished: int = 0
    open: int = 0
    pending: int = 0
    shortest: int = 0
    longest: int = 0
    average: int = 0
    idle: int = 0
    wins: int = 0
    losses: int = 0
    breakeven_locks: int = 0
    long: DirectionStats | None = None
    short: DirectionStats | None = None

    @property
    def win_rate(self) -> Decimal | None:
        if self.finished == 0:
            return None
        return Decimal(self.wins) / Decimal(self.finished) * _HUNDRED

    def to_dict(self) -> dict:
        return {
            "finished": self.finished,
            "open": self.open,
            "pending": self.pending,
            "shortest": self.shortest,
            "longest": self.longest,
            "average": self.average,
            "idle": self.idle,
            "wins": self.wins,
            "losses": self.losses,
            "breakeven_locks": self.breakeven_locks,
            "win_rate": _opt(self.win_rate),
            "long": self.long.to_dict() if self.long else None,
            "short": self.short.to_dict() if self.short else None,
        }


@dataclass
class RiskRatios:
    """Per-trade risk ratios; sharpe/sortino are None when undefined."""

    sharpe: Decimal | None
    sortino: Decimal | None
    avg_return: Decimal
    std_deviation: Decimal

    def to_dict(self) -> dict:
        return {
            "sharpe": _opt(self.sharpe),
            "sortino": _opt(self.sortino),
            "avg_return": str(self.avg_return),
            "std_deviation": str(self.std_deviation),
        }


@dataclass
class OpenPositionSummary:
    """A position still open or pending when the simulation ended."""

    direction: str
    entry: Decimal
    volume: Decimal
    created_at: int
    unrealized_pnl: Decimal
    time_hanging: int

    def to_dict(self) -> dict:
        return {
            "direction": self.direction,
            "entry": str(self.entry),
            "volume": str(self.volume),
            "created_at": self.created_at,
            "unrealized_pnl": str(self.unrealized_pnl),
            "time_hanging": self.time_hanging,
        }


@dataclass
class BalancePoint:
    timestamp: int
    balance: Decimal


@dataclass
class BacktestResult:
    """Complete result of a single backtest run."""

    pair: Pair
    sim_start: int
    sim_end: int
    financial: FinancialResult
    trades: TradeStats
    risk: RiskRatios | None = None
    open_positions: list[OpenPositionSummary] = field(default_factory=list)
    balance_history: list[BalancePoint] = field(default_factory=list)

    @property
    def duration_days(self) -> Decimal:
        return Decimal(max(0, self.sim_end - self.sim_start)) / _SECONDS_PER_DAY

    def to_dict(self) -> dict:
        """Serialize to a JSON-compatible dict (Decimals as strings)."""
        return {
            "pair": self.pair.ticker,
            "exchange": self.pair.exchange_name,
            "market_type": self.pair.market_type.value,
            "timeframe": self.pair.timeframe.value,
            "strategy": self.pair.strategy_name,
            "params": dict(self.pair.strategy_params),
            "sim_start": self.sim_start,
            "sim_end": self.sim_end,
            "duration_days": str(self.duration_days),
            "financial": self.financial.to_dict(),
            "trades": self.trades.to_dict(),
            "risk": self.risk.to_dict() if self.risk else None,
            "open_positions": [p.to_dict() for p in self.open_positions],
            "balance_history": [
                {"timestamp": p.timestamp, "balance": str(p.balance)}
                for p in self.balance_history
            ],
        }
