"""Tests for BacktestRunner.

Verifies:
- A run replays stored candles and persists a result record
- The disposable positions table is dropped afterwards, also on failure
- Missing strategy or candles raise before anything is simulated
- The optional JSONL event stream is framed by init/done records
"""

import json
from dataclasses import replace
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from helpers import make_candle

from dcabot.backtest.runner import BacktestRunner, window_for_days
from dcabot.config import BacktestSettings
from dcabot.data.database import TradingDatabase
from dcabot.data.models import CandlePurpose
from dcabot.data.store import BacktestResultStore, CandleStore
from dcabot.exceptions import ConfigError, InsufficientDataError
from dcabot.models import MarketType, Pair, TimeFrame

FOUR_HOURS = 14400
SETTINGS = BacktestSettings(default_initial_balance=Decimal("1000"))


def _make_pair(strategy: str | None = "RSIDCA") -> Pair:
    return Pair.from_ticker(
        "BTC/USDT",
        timeframe=TimeFrame.TF_4HOURS,
        exchange_name="bybit",
        market_type=MarketType.FUTURES,
        strategy_name=strategy,
        strategy_params={"RSIPeriod": "7"},
    )


def _rally(count: int = 30) -> list:
    return [
        make_candle(i * FOUR_HOURS, str(100 + i), str(101 + i), str(99 + i), str(100 + i))
        for i in range(count)
    ]


async def _backtest_tables(database: TradingDatabase) -> list[str]:
    cursor = await database.db.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name LIKE 'backtest_positions_%'"
    )
    return [row[0] for row in await cursor.fetchall()]


class TestBacktestRunner:
    @pytest.mark.asyncio
    async def test_run_persists_result(self) -> None:
        pair = _make_pair()
        async with TradingDatabase(":memory:") as database:
            await CandleStore(database).insert_candles(CandlePurpose.BACKTEST, pair, _rally())
            runner = BacktestRunner(database, SETTINGS, now=lambda: 5000)

            result, record = await runner.run(
                pair, 0, 29 * FOUR_HOURS, params={"RSIPeriod": "10"}
            )

            assert record.id is not None
            stored = await BacktestResultStore(database).get(record.id)
            assert await _backtest_tables(database) == []

        assert stored is not None
        assert stored.created_at == 5000
        assert stored.params == {"RSIPeriod": "10"}
        assert stored.strategy == "RSIDCA"
        assert stored.sim_start == 0
        assert stored.sim_end == 30 * FOUR_HOURS - 1
        assert stored.initial_balance == Decimal("1000")
        assert stored.coin_price_start == Decimal("100")
        assert stored.coin_price_end == Decimal("129")
        assert json.loads(stored.result_json)["financial"]["initial_balance"] == "1000"
        assert result.financial.liquidated is False

    @pytest.mark.asyncio
    async def test_pair_balance_overrides_default(self) -> None:
        pair = replace(_make_pair(), backtest_initial_balance=Decimal("250"))
        async with TradingDatabase(":memory:") as database:
            await CandleStore(database).insert_candles(CandlePurpose.BACKTEST, pair, _rally())
            _, record = await BacktestRunner(database, SETTINGS).run(pair, 0, 29 * FOUR_HOURS)
        assert record.initial_balance == Decimal("250")

    @pytest.mark.asyncio
    async def test_requires_strategy(self) -> None:
        async with TradingDatabase(":memory:") as database:
            with pytest.raises(ConfigError):
                await BacktestRunner(database, SETTINGS).run(_make_pair(None), 0, FOUR_HOURS)

    @pytest.mark.asyncio
    async def test_requires_candles(self) -> None:
        async with TradingDatabase(":memory:") as database:
            with pytest.raises(InsufficientDataError):
                await BacktestRunner(database, SETTINGS).run(_make_pair(), 0, FOUR_HOURS)
            assert await _backtest_tables(database) == []

    @pytest.mark.asyncio
    async def test_invalid_params_drop_table(self) -> None:
        """A failing strategy build still drops the disposable table."""
        pair = _make_pair()
        async with TradingDatabase(":memory:") as database:
            await CandleStore(database).insert_candles(CandlePurpose.BACKTEST, pair, _rally())
            with pytest.raises(ConfigError):
                await BacktestRunner(database, SETTINGS).run(
                    pair, 0, 29 * FOUR_HOURS, params={"RSIPeriod": "0"}
                )
            assert await _backtest_tables(database) == []

    @pytest.mark.asyncio
    async def test_loader_and_driver_are_used(self) -> None:
        pair = _make_pair()
        loader = MagicMock()
        loader.ensure_candles = AsyncMock(return_value=0)
        driver = MagicMock()
        driver.get_tick_size = AsyncMock(return_value=Decimal("0.5"))
        driver.get_qty_step = AsyncMock(return_value=None)
        async with TradingDatabase(":memory:") as database:
            await CandleStore(database).insert_candles(CandlePurpose.BACKTEST, pair, _rally())
            runner = BacktestRunner(database, SETTINGS, loader=loader, driver=driver)
            await runner.run(pair, 0, 29 * FOUR_HOURS)

        loader.ensure_candles.assert_awaited_once()
        assert loader.ensure_candles.await_args.args[-1] is CandlePurpose.BACKTEST
        driver.get_tick_size.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_event_log(self, tmp_path: Path) -> None:
        pair = _make_pair()
        path = tmp_path / "run.jsonl"
        async with TradingDatabase(":memory:") as database:
            await CandleStore(database).insert_candles(
                CandlePurpose.BACKTEST, pair, _rally(count=10)
            )
            await BacktestRunner(database, SETTINGS).run(
                pair, 0, 9 * FOUR_HOURS, event_log_path=str(path)
            )

        types = [json.loads(line)["type"] for line in path.read_text().splitlines()]
        assert types[0] == "init"
        assert types[-2:] == ["result", "done"]
        assert types.count("candle") == 10

    @pytest.mark.asyncio
    async def test_run_days_uses_latest_closed_candles(self) -> None:
        pair = _make_pair()
        now = 30 * FOUR_HOURS + 100
        async with TradingDatabase(":memory:") as database:
            await CandleStore(database).insert_candles(CandlePurpose.BACKTEST, pair, _rally())
            result, _ = await BacktestRunner(database, SETTINGS, now=lambda: now).run_days(
                pair, 1
            )
        # 6 candles per day, ending with the last closed one (open_time 29 * 4h)
        assert result.sim_start == 24 * FOUR_HOURS
        assert result.sim_end == 30 * FOUR_HOURS - 1


class TestWindowForDays:
    def test_window_ends_at_last_closed_candle(self) -> None:
        assert window_for_days(1, TimeFrame.TF_4HOURS, 100_000) == (0, 72_000)

    def test_aligned_now(self) -> None:
        start, end = window_for_days(2, TimeFrame.TF_1DAY, 10 * 86400)
        assert (start, end) == (8 * 86400, 9 * 86400)
