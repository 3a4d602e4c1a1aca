"""Strategy capability protocols and shared plumbing.

A strategy decides when to enter (EntryDecider) and how to manage an open
position (PositionUpdater). The Market calls should_long()/should_short()
only when it holds no active position, then handle_long()/handle_short()
to open one; update_position() runs on every cycle while a position is
active. The same strategy code runs live and in simulation; only the
exchange driver behind the Market differs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, ClassVar, Protocol, runtime_checkable

from dcabot.financial.position import Position
from dcabot.models import TimeFrame
from dcabot.strategies.parameters import ParameterRegistry

if TYPE_CHECKING:
    from dcabot.context import ExecutionContext
    from dcabot.market import Market


@runtime_checkable
class EntryDecider(Protocol):
    def should_long(self) -> bool: ...

    def should_short(self) -> bool: ...


@runtime_checkable
class PositionUpdater(Protocol):
    async def update_position(self, position: Position) -> None: ...


@dataclass
class StrategyValidationResult:
    """Errors block trading; warnings are logged only."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)


class BaseStrategy(ABC):
    """Plumbing shared by all strategies: market binding and parameters.

    Subclasses declare ``name`` and ``parameters`` as class attributes.
    Parameters are resolved from the pair configuration at construction;
    invalid values raise ConfigError.
    """

    name: ClassVar[str] = "base"
    parameters: ClassVar[ParameterRegistry] = ParameterRegistry()

    def __init__(self, market: Market, params: dict[str, str] | None = None) -> None:
        self.market = market
        self.raw_params: dict[str, str] = {
            **self.parameters.defaults(),
            **{k: str(v) for k, v in (params or {}).items() if k in self.parameters},
        }
        self.params = self.parameters.resolve(params)

    @property
    def context(self) -> ExecutionContext:
        return self.market.context

    def use_indicators(self) -> dict[str, dict[str, object]]:
        """Indicators this strategy reads, keyed by name with build parameters."""
        return {}

    @classmethod
    def required_timeframes(cls) -> list[TimeFrame]:
        """Timeframes needed beyond the market's own (preloaded for backtests)."""
        return []

    def does_long(self) -> bool:
        return True

    def does_short(self) -> bool:
        return False

    @abstractmethod
    def should_long(self) -> bool: ...

    @abstractmethod
    def should_short(self) -> bool: ...

    @abstractmethod
    async def handle_long(self, market: Market) -> Position | None: ...

    @abstractmethod
    async def handle_short(self, market: Market) -> Position | None: ...

    @abstractmethod
    async def update_position(self, position: Position) -> None: ...

    def notify_stop_loss(self, timestamp: int) -> None:
        """Called by the simulator when a stop-loss closes a position."""

    async def validate_exchange_settings(self, market: Market) -> StrategyValidationResult:
        return StrategyValidationResult()
