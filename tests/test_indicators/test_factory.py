"""Tests for building indicators by name."""

from dcabot.indicators.base import Err, Ok
from dcabot.indicators.ema import EMA
from dcabot.indicators.factory import available_indicators, build_indicator
from dcabot.indicators.rsi import RSI


class TestBuildIndicator:
    def test_known_indicator(self) -> None:
        build = build_indicator("RSI", {"period": "7", "oversold": "25"})
        assert isinstance(build, Ok)
        assert isinstance(build.indicator, RSI)
        assert build.indicator.period == 7

    def test_unknown_name(self) -> None:
        build = build_indicator("MACD")
        assert isinstance(build, Err)
        assert "Unknown indicator" in build.message

    def test_non_positive_period(self) -> None:
        assert isinstance(build_indicator("EMA", {"period": 0}), Err)

    def test_non_numeric_period(self) -> None:
        assert isinstance(build_indicator("EMA", {"period": "fast"}), Err)

    def test_unexpected_parameter(self) -> None:
        """EMA has no overbought level; the build fails instead of raising."""
        assert isinstance(build_indicator("EMA", {"overbought": "70"}), Err)

    def test_defaults(self) -> None:
        build = build_indicator("EMA")
        assert isinstance(build, Ok)
        assert isinstance(build.indicator, EMA)


def test_available_indicators() -> None:
    assert available_indicators() == ["EMA", "RSI"]
