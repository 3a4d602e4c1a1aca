"""Trading strategies and the policies they are assembled from."""

from dcabot.strategies.base import (
    BaseStrategy,
    EntryDecider,
    PositionUpdater,
    StrategyValidationResult,
)
from dcabot.strategies.dca import DCAStrategy
from dcabot.strategies.factory import available_strategies, create_strategy, get_strategy_class
from dcabot.strategies.parameters import ParameterRegistry, ParameterSpec, ParameterType
from dcabot.strategies.rsi_dca import RSIDCA, RSIDCAWithShorts
from dcabot.strategies.rsi_single_entry import RSISingleEntry
from dcabot.strategies.single_entry import SingleEntryStrategy

__all__ = [
    "BaseStrategy",
    "DCAStrategy",
    "EntryDecider",
    "ParameterRegistry",
    "ParameterSpec",
    "ParameterType",
    "PositionUpdater",
    "RSIDCA",
    "RSIDCAWithShorts",
    "RSISingleEntry",
    "SingleEntryStrategy",
    "StrategyValidationResult",
    "available_strategies",
    "create_strategy",
    "get_strategy_class",
]
