"""Strategy construction by configured name."""

from __future__ import annotations

from typing import TYPE_CHECKING

from dcabot.exceptions import UnknownStrategyError
from dcabot.strategies.base import BaseStrategy
from dcabot.strategies.rsi_dca import RSIDCA, RSIDCAWithShorts
from dcabot.strategies.rsi_single_entry import RSISingleEntry

if TYPE_CHECKING:
    from dcabot.market import Market

_STRATEGIES: dict[str, type[BaseStrategy]] = {
    cls.name: cls for cls in (RSIDCA, RSIDCAWithShorts, RSISingleEntry)
}


def available_strategies() -> list[str]:
    return sorted(_STRATEGIES)


def get_strategy_class(name: str) -> type[BaseStrategy]:
    """Look up a strategy class by name.

    Raises:
        UnknownStrategyError: If no strategy is registered under the name.
    """
    try:
        return _STRATEGIES[name]
    except KeyError:
        raise UnknownStrategyError(
            f"Unknown strategy {name!r}; available: {', '.join(available_strategies())}"
        ) from None


def create_strategy(
    name: str, market: Market, params: dict[str, str] | None = None
) -> BaseStrategy:
    """Instantiate a strategy for a market.

    Raises:
        UnknownStrategyError: If the name is not registered.
        ConfigError: If a parameter value is invalid.
    """
    return get_strategy_class(name)(market, params)
