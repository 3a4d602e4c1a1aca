"""Backtest engine package.

Replays historical candles through the production Market/Strategy/Position
stack against a simulated exchange (ExchangeDriver ABC swap), splitting each
candle into synthetic intra-candle ticks.
"""

from dcabot.backtest.engine import BacktestEngine
from dcabot.backtest.events import BacktestEventWriter
from dcabot.backtest.exchange import BacktestExchange, PendingLimitOrder
from dcabot.backtest.models import (
    BacktestResult,
    BalancePoint,
    DirectionStats,
    FinancialResult,
    OpenPositionSummary,
    RiskRatios,
    TradeStats,
)
from dcabot.backtest.runner import BacktestRunner, window_for_days
from dcabot.backtest.ticks import Tick, generate_ticks

__all__ = [
    "BacktestEngine",
    "BacktestEventWriter",
    "BacktestExchange",
    "BacktestResult",
    "BacktestRunner",
    "BalancePoint",
    "DirectionStats",
    "FinancialResult",
    "OpenPositionSummary",
    "PendingLimitOrder",
    "RiskRatios",
    "Tick",
    "TradeStats",
    "generate_ticks",
    "window_for_days",
]
