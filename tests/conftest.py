"""Shared test fixtures for the DCA trading engine."""

from decimal import Decimal

import pytest

from dcabot.config import AppSettings, BacktestSettings, DatabaseSettings, ExchangeSettings
from dcabot.models import MarketType, Pair, TimeFrame


@pytest.fixture
def mock_settings() -> AppSettings:
    """Return AppSettings with test defaults (in-memory DB, dummy API keys)."""
    return AppSettings(
        log_level="DEBUG",
        exchange=ExchangeSettings(
            api_key="test-api-key",  # type: ignore[arg-type]
            api_secret="test-api-secret",  # type: ignore[arg-type]
            testnet=True,
        ),
        backtest=BacktestSettings(default_initial_balance=Decimal("1000")),
        database=DatabaseSettings(path=":memory:"),
    )


@pytest.fixture
def futures_pair() -> Pair:
    """BTC/USDT 4h futures pair on the simulated exchange."""
    return Pair.from_ticker(
        "BTC/USDT",
        timeframe=TimeFrame.TF_4HOURS,
        exchange_name="backtest",
        market_type=MarketType.FUTURES,
        trading_enabled=True,
    )
