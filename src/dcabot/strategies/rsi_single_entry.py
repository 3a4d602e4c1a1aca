"""Single-entry strategy on RSI threshold crossings.

Long when RSI crosses down through rsiLongThreshold, short when it crosses
up through rsiShortThreshold. After an entry no new signal is taken for
cooldownCandles candles.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from dcabot.financial.position import Position
from dcabot.indicators.rsi import RSI
from dcabot.models import PositionDirection
from dcabot.strategies.parameters import ParameterSpec, ParameterType
from dcabot.strategies.policies import Cooldown
from dcabot.strategies.single_entry import SINGLE_ENTRY_PARAMETERS, SingleEntryStrategy

if TYPE_CHECKING:
    from dcabot.market import Market


class RSISingleEntry(SingleEntryStrategy):
    name = "RSISingleEntry"
    parameters = SINGLE_ENTRY_PARAMETERS.extend(
        [
            ParameterSpec("RSIPeriod", "14", ParameterType.INT, "RSI period",
                          minimum=Decimal(2), maximum=Decimal(100), step=Decimal(1)),
            ParameterSpec("rsiLongThreshold", "30", ParameterType.DECIMAL,
                          "Go long when RSI crosses below this level",
                          minimum=Decimal(1), maximum=Decimal(50), step=Decimal(1)),
            ParameterSpec("rsiShortThreshold", "70", ParameterType.DECIMAL,
                          "Go short when RSI crosses above this level",
                          minimum=Decimal(50), maximum=Decimal(99), step=Decimal(1)),
            ParameterSpec("cooldownCandles", "0", ParameterType.INT,
                          "Candles to skip after an entry",
                          minimum=Decimal(0), maximum=Decimal(500), step=Decimal(1)),
        ]
    )

    def __init__(self, market: Market, params: dict[str, str] | None = None) -> None:
        super().__init__(market, params)
        self.long_threshold: Decimal = self.params["rsiLongThreshold"]  # type: ignore[assignment]
        self.short_threshold: Decimal = self.params["rsiShortThreshold"]  # type: ignore[assignment]
        candles: int = self.params["cooldownCandles"]  # type: ignore[assignment]
        self.entry_cooldown = Cooldown(candles * market.pair.timeframe.to_seconds())

    def use_indicators(self) -> dict[str, dict[str, object]]:
        return {RSI.name: {"period": self.params["RSIPeriod"]}}

    def does_short(self) -> bool:
        return True

    def _rsi_pair(self) -> tuple[Decimal, Decimal] | None:
        result = self.market.indicator_result(RSI.name)
        if result is None or result.previous_value is None or result.latest_value is None:
            return None
        return result.previous_value, result.latest_value

    def _entry_blocked(self) -> bool:
        if not self.market.candles:
            return True
        return self.entry_cooldown.is_active(self.market.candles.last().open_time)

    def detect_long_signal(self) -> bool:
        values = self._rsi_pair()
        if values is None or self._entry_blocked():
            return False
        previous, current = values
        return previous > self.long_threshold and current <= self.long_threshold

    def detect_short_signal(self) -> bool:
        values = self._rsi_pair()
        if values is None or self._entry_blocked():
            return False
        previous, current = values
        return previous < self.short_threshold and current >= self.short_threshold

    async def _enter(self, market: Market, direction: PositionDirection) -> Position | None:
        position = await super()._enter(market, direction)
        if position is not None and market.candles:
            self.entry_cooldown.mark(market.candles.last().open_time)
        return position
