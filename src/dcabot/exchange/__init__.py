"""Exchange driver layer: abstract driver, ccxt live driver and shared types."""

from dcabot.exchange.ccxt_driver import CcxtExchangeDriver
from dcabot.exchange.driver import ExchangeDriver
from dcabot.exchange.types import ExchangePosition, InstrumentInfo, round_price, round_to_step

__all__ = [
    "CcxtExchangeDriver",
    "ExchangeDriver",
    "ExchangePosition",
    "InstrumentInfo",
    "round_price",
    "round_to_step",
]
