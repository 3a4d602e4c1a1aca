"""Tests for the live Trader loop.

Verifies:
- Markets are built only for enabled pairs with a buildable strategy
- Failed exchange validation disables trading but keeps the market
- A cycle caches closed candles and isolates per-market failures
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from helpers import make_candle

from dcabot.config import TraderSettings
from dcabot.data.database import TradingDatabase
from dcabot.data.models import CandlePurpose
from dcabot.data.store import CandleStore
from dcabot.financial.money import Money
from dcabot.models import MarketType, Pair, PositionMode, TimeFrame
from dcabot.trader import Trader

HOUR = 3600


def _make_pair(ticker: str = "BTC/USDT", **kwargs: object) -> Pair:
    options: dict[str, object] = {
        "timeframe": TimeFrame.TF_1HOUR,
        "exchange_name": "bybit",
        "market_type": MarketType.FUTURES,
        "trading_enabled": True,
        "strategy_name": "RSIDCA",
    }
    options.update(kwargs)
    return Pair.from_ticker(ticker, **options)


def _make_driver(position_mode: PositionMode | None = PositionMode.HEDGE) -> MagicMock:
    driver = MagicMock()
    driver.name = "bybit"
    driver.connect = AsyncMock()
    driver.disconnect = AsyncMock()
    driver.get_position_mode = AsyncMock(return_value=position_mode)
    driver.get_available_margin = AsyncMock(return_value=Money(Decimal("500")))
    driver.get_candles = AsyncMock(
        return_value=[make_candle(i * HOUR, "10", "11", "9", "10") for i in range(3)]
    )
    return driver


class TestBuildMarkets:
    @pytest.mark.asyncio
    async def test_skips_unusable_pairs(self) -> None:
        pairs = [
            _make_pair(),
            _make_pair("ETH/USDT", strategy_name=None),
            _make_pair("SOL/USDT", trading_enabled=False, monitoring_enabled=False),
            _make_pair("XRP/USDT", strategy_name="Nope"),
            _make_pair("ADA/USDT", strategy_params={"RSIPeriod": "0"}),
            _make_pair("DOT/USDT", trading_enabled=False, monitoring_enabled=True),
        ]
        async with TradingDatabase(":memory:") as database:
            trader = Trader(_make_driver(), database, pairs)
            markets = await trader.build_markets()

        assert [m.ticker for m in markets] == ["BTC/USDT", "DOT/USDT"]
        assert all(m.strategy is not None for m in markets)

    @pytest.mark.asyncio
    async def test_invalid_exchange_settings_disable_trading(self) -> None:
        async with TradingDatabase(":memory:") as database:
            trader = Trader(_make_driver(PositionMode.ONE_WAY), database, [_make_pair()])
            (market,) = await trader.build_markets()
        assert market.pair.trading_enabled is False

    @pytest.mark.asyncio
    async def test_unverifiable_settings_keep_trading(self) -> None:
        async with TradingDatabase(":memory:") as database:
            trader = Trader(_make_driver(None), database, [_make_pair()])
            (market,) = await trader.build_markets()
        assert market.pair.trading_enabled is True


class TestRunCycle:
    @pytest.mark.asyncio
    async def test_closed_candles_cached_forming_candle_in_memory(self) -> None:
        pair = _make_pair()
        driver = _make_driver()
        async with TradingDatabase(":memory:") as database:
            trader = Trader(driver, database, [pair], TraderSettings(candle_limit=3))
            trader.markets = await trader.build_markets()
            trader.markets[0].process_trading = AsyncMock()  # type: ignore[method-assign]
            await trader.run_cycle()
            cached = await CandleStore(database).get_candles(CandlePurpose.RUNTIME, pair)

        driver.get_candles.assert_awaited_with(pair, 3)
        assert [c.open_time for c in cached] == [0, HOUR]
        assert len(trader.markets[0].candles) == 3
        driver.get_available_margin.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failure_in_one_market_does_not_stop_others(self) -> None:
        async with TradingDatabase(":memory:") as database:
            trader = Trader(
                _make_driver(), database, [_make_pair(), _make_pair("ETH/USDT")]
            )
            trader.markets = await trader.build_markets()
            first, second = trader.markets
            failing = AsyncMock(side_effect=RuntimeError("boom"))
            first.process_trading = failing  # type: ignore[method-assign]
            second.process_trading = AsyncMock()  # type: ignore[method-assign]

            await trader.run_cycle()

        first.process_trading.assert_awaited_once()
        second.process_trading.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_market_without_candles_is_skipped(self) -> None:
        driver = _make_driver()
        driver.get_candles = AsyncMock(return_value=[])
        async with TradingDatabase(":memory:") as database:
            trader = Trader(driver, database, [_make_pair()])
            trader.markets = await trader.build_markets()
            market = trader.markets[0]
            market.process_trading = AsyncMock()  # type: ignore[method-assign]
            await trader.run_cycle()
        market.process_trading.assert_not_awaited()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_runs_until_stopped(self) -> None:
        driver = _make_driver()
        async with TradingDatabase(":memory:") as database:
            trader = Trader(driver, database, [_make_pair()], TraderSettings(loop_interval=0))

            async def _cycle() -> None:
                trader.stop()

            trader.run_cycle = _cycle  # type: ignore[method-assign]
            await trader.start()

        driver.connect.assert_awaited_once()
        driver.disconnect.assert_awaited_once()
        assert len(trader.markets) == 1
