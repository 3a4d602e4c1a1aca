"""Tests for the command-line entry point helpers.

Verifies:
- NAME=VALUE parameter parsing and its error path
- Backtest pair resolution from configuration plus command-line overrides
"""

from decimal import Decimal

import pytest

from dcabot.config import AppSettings, ExchangeSettings, PairSettings
from dcabot.exceptions import ConfigError
from dcabot.main import _parse_params, _resolve_pair, build_parser
from dcabot.models import TimeFrame


def _make_settings(*pairs: PairSettings) -> AppSettings:
    return AppSettings(exchange=ExchangeSettings(name="bybit"), pairs=list(pairs))


class TestParseParams:
    def test_parses_and_strips(self) -> None:
        assert _parse_params(["RSIPeriod=10", " offsetMode = fromEntry "]) == {
            "RSIPeriod": "10",
            "offsetMode": "fromEntry",
        }

    def test_value_may_contain_equals_sign(self) -> None:
        assert _parse_params(["a=b=c"]) == {"a": "b=c"}

    @pytest.mark.parametrize("item", ["RSIPeriod", "=10"])
    def test_malformed_item_raises(self, item: str) -> None:
        with pytest.raises(ConfigError):
            _parse_params([item])


class TestResolvePair:
    def test_unconfigured_ticker_builds_default_pair(self) -> None:
        args = build_parser().parse_args(
            ["backtest", "BTC/USDT", "--strategy", "RSIDCA", "--param", "RSIPeriod=10"]
        )

        pair = _resolve_pair(_make_settings(), args)

        assert pair.ticker == "BTC/USDT"
        assert pair.exchange_name == "bybit"
        assert pair.timeframe is TimeFrame.TF_1HOUR
        assert pair.strategy_name == "RSIDCA"
        assert pair.strategy_params == {"RSIPeriod": "10"}

    def test_configured_pair_merges_overrides(self) -> None:
        configured = PairSettings(
            ticker="BTC/USDT",
            timeframe=TimeFrame.TF_4HOURS,
            strategy="RSIDCA",
            params={"RSIPeriod": "14", "numberOfLevels": "3"},
        )
        args = build_parser().parse_args(
            ["backtest", "BTC/USDT", "--param", "RSIPeriod=10", "--balance", "500"]
        )

        pair = _resolve_pair(_make_settings(configured), args)

        assert pair.timeframe is TimeFrame.TF_4HOURS
        assert pair.strategy_name == "RSIDCA"
        assert pair.strategy_params == {"RSIPeriod": "10", "numberOfLevels": "3"}
        assert pair.backtest_initial_balance == Decimal("500")

    def test_configured_pair_without_overrides_is_unchanged(self) -> None:
        configured = PairSettings(ticker="ETH/USDT", strategy="RSISingleEntry")
        settings = _make_settings(configured)
        args = build_parser().parse_args(["backtest", "ETH/USDT"])

        assert _resolve_pair(settings, args) == settings.build_pairs()[0]

    def test_timeframe_override(self) -> None:
        args = build_parser().parse_args(["backtest", "BTC/USDT", "--timeframe", "1d"])
        assert _resolve_pair(_make_settings(), args).timeframe is TimeFrame.TF_1DAY


class TestParser:
    def test_command_is_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_repeated_params_accumulate(self) -> None:
        args = build_parser().parse_args(
            ["backtest", "BTC/USDT", "--param", "a=1", "--param", "b=2", "--days", "7"]
        )
        assert args.param == ["a=1", "b=2"]
        assert args.days == 7
