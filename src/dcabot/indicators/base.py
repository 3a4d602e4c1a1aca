"""Indicator contract and result container.

Indicators are pure functions of a CandleArena. Construction is fallible
(bad parameters, unknown names) and returns an IndicatorBuild instead of
raising, so a Market can skip a broken indicator and keep trading.

CRITICAL: All computations use Decimal. Never use float.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import ClassVar

from dcabot.candles import CandleArena

#: Precision limit for indicator intermediate results (12 decimal places).
INDICATOR_QUANTIZE = Decimal("0.000000000001")


@dataclass(frozen=True)
class IndicatorResult:
    """Values aligned with candle timestamps, plus optional per-value signals."""

    values: list[Decimal] = field(default_factory=list)
    timestamps: list[int] = field(default_factory=list)
    signals: list[str] = field(default_factory=list)

    @property
    def latest_value(self) -> Decimal | None:
        return self.values[-1] if self.values else None

    @property
    def previous_value(self) -> Decimal | None:
        return self.values[-2] if len(self.values) >= 2 else None

    @property
    def latest_signal(self) -> str | None:
        return self.signals[-1] if self.signals else None

    def is_empty(self) -> bool:
        return not self.values


class Indicator(ABC):
    """Base class for candle indicators."""

    name: ClassVar[str]

    def __init__(self, period: int) -> None:
        self.period = period

    @abstractmethod
    def calculate(self, candles: CandleArena) -> IndicatorResult:
        """Compute the indicator over every candle in the arena."""


@dataclass(frozen=True)
class Ok:
    indicator: Indicator


@dataclass(frozen=True)
class Err:
    name: str
    message: str


IndicatorBuild = Ok | Err
