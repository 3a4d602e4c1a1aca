"""RSI-driven DCA strategies."""

from __future__ import annotations

from decimal import Decimal

from dcabot.indicators.rsi import RSI, SIGNAL_OVERBOUGHT, SIGNAL_OVERSOLD
from dcabot.strategies.dca import DCA_PARAMETERS, DCA_SHORT_PARAMETERS, DCAStrategy
from dcabot.strategies.parameters import ParameterSpec, ParameterType

_RSI_PARAMETERS = [
    ParameterSpec("RSIPeriod", "14", ParameterType.INT, "RSI period",
                  minimum=Decimal(2), maximum=Decimal(100), step=Decimal(1)),
    ParameterSpec("RSIOverbought", "70", ParameterType.DECIMAL, "RSI overbought level",
                  minimum=Decimal(50), maximum=Decimal(100), step=Decimal(1)),
    ParameterSpec("RSIOversold", "30", ParameterType.DECIMAL, "RSI oversold level",
                  minimum=Decimal(0), maximum=Decimal(50), step=Decimal(1)),
]


class RSIDCA(DCAStrategy):
    """Opens a long DCA grid when RSI reports oversold."""

    name = "RSIDCA"
    parameters = DCA_PARAMETERS.extend(_RSI_PARAMETERS)

    def use_indicators(self) -> dict[str, dict[str, object]]:
        return {
            RSI.name: {
                "period": self.params["RSIPeriod"],
                "overbought": self.params["RSIOverbought"],
                "oversold": self.params["RSIOversold"],
            }
        }

    def should_long(self) -> bool:
        return self.market.latest_indicator_signal(RSI.name) == SIGNAL_OVERSOLD


class RSIDCAWithShorts(RSIDCA):
    """RSIDCA that also opens a short grid when RSI reports overbought."""

    name = "RSIDCAWithShorts"
    parameters = DCA_SHORT_PARAMETERS.extend(_RSI_PARAMETERS)

    def does_short(self) -> bool:
        return True

    def should_short(self) -> bool:
        return self.market.latest_indicator_signal(RSI.name) == SIGNAL_OVERBOUGHT
