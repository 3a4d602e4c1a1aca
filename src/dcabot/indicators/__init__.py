"""Candle indicators: RSI, EMA and the name-keyed factory."""

from dcabot.indicators.base import Err, Indicator, IndicatorBuild, IndicatorResult, Ok
from dcabot.indicators.ema import EMA, ema_from_prices
from dcabot.indicators.factory import available_indicators, build_indicator
from dcabot.indicators.rsi import RSI, rsi_from_prices

__all__ = [
    "EMA",
    "Err",
    "Indicator",
    "IndicatorBuild",
    "IndicatorResult",
    "Ok",
    "RSI",
    "available_indicators",
    "build_indicator",
    "ema_from_prices",
    "rsi_from_prices",
]
