"""Persistence layer: SQLite database, position repository, candle and result stores."""

from dcabot.data.database import POSITIONS_TABLE, TradingDatabase
from dcabot.data.loader import CandleLoader
from dcabot.data.models import (
    BacktestResultRecord,
    CandlePurpose,
    CandleRange,
    OptimizationSuggestion,
)
from dcabot.data.positions import PositionRepository
from dcabot.data.store import BacktestResultStore, CandleStore, SuggestionStore

__all__ = [
    "POSITIONS_TABLE",
    "BacktestResultRecord",
    "BacktestResultStore",
    "CandleLoader",
    "CandlePurpose",
    "CandleRange",
    "CandleStore",
    "OptimizationSuggestion",
    "PositionRepository",
    "SuggestionStore",
    "TradingDatabase",
]
