"""Tests for CandleStore, BacktestResultStore and SuggestionStore."""

from decimal import Decimal

import pytest
from helpers import make_candle

from dcabot.data.database import TradingDatabase
from dcabot.data.models import BacktestResultRecord, CandlePurpose, OptimizationSuggestion
from dcabot.data.store import BacktestResultStore, CandleStore, SuggestionStore
from dcabot.models import MarketType, Pair, TimeFrame

HOUR = 3600


def _make_pair(**kwargs: object) -> Pair:
    return Pair.from_ticker(
        "BTC/USDT",
        timeframe=TimeFrame.TF_1HOUR,
        exchange_name="bybit",
        market_type=MarketType.FUTURES,
        strategy_name="RSIDCA",
        **kwargs,
    )


def _hourly(count: int, start: int = 0) -> list:
    return [make_candle(start + i * HOUR, "100", "101", "99", "100.5", "3") for i in range(count)]


def _make_record(
    pnl_percent: str = "1.5",
    params: dict[str, str] | None = None,
    created_at: int = 1000,
    sim_start: int = 0,
    sim_end: int = 30 * 86400,
) -> BacktestResultRecord:
    return BacktestResultRecord(
        exchange_name="bybit",
        ticker="BTC/USDT",
        market_type=MarketType.FUTURES,
        timeframe=TimeFrame.TF_1HOUR,
        strategy="RSIDCA",
        params=params if params is not None else {"RSIPeriod": "14"},
        sim_start=sim_start,
        sim_end=sim_end,
        initial_balance=Decimal("1000"),
        final_balance=Decimal("1015"),
        pnl=Decimal("15"),
        pnl_percent=Decimal(pnl_percent),
        max_drawdown=Decimal("-3.2"),
        liquidated=False,
        coin_price_start=Decimal("30000"),
        coin_price_end=Decimal("31000.5"),
        created_at=created_at,
    )


class TestCandleStore:
    @pytest.mark.asyncio
    async def test_insert_ignores_duplicates(self) -> None:
        async with TradingDatabase(":memory:") as database:
            store = CandleStore(database)
            pair = _make_pair()
            assert await store.insert_candles(CandlePurpose.BACKTEST, pair, _hourly(3)) == 3
            assert await store.insert_candles(CandlePurpose.BACKTEST, pair, _hourly(4)) == 1
            assert len(await store.get_candles(CandlePurpose.BACKTEST, pair)) == 4

    @pytest.mark.asyncio
    async def test_insert_empty(self) -> None:
        async with TradingDatabase(":memory:") as database:
            assert await CandleStore(database).insert_candles(
                CandlePurpose.RUNTIME, _make_pair(), []
            ) == 0

    @pytest.mark.asyncio
    async def test_purposes_are_partitioned(self) -> None:
        async with TradingDatabase(":memory:") as database:
            store = CandleStore(database)
            pair = _make_pair()
            await store.insert_candles(CandlePurpose.RUNTIME, pair, _hourly(2))
            assert await store.get_candles(CandlePurpose.BACKTEST, pair) == []

    @pytest.mark.asyncio
    async def test_window_and_exact_decimals(self) -> None:
        async with TradingDatabase(":memory:") as database:
            store = CandleStore(database)
            pair = _make_pair()
            await store.insert_candles(CandlePurpose.BACKTEST, pair, _hourly(10))

            window = await store.get_candles(CandlePurpose.BACKTEST, pair, 2 * HOUR, 4 * HOUR)
        assert [c.open_time for c in window] == [2 * HOUR, 3 * HOUR, 4 * HOUR]
        assert window[0].close == Decimal("100.5")
        assert window[0].volume == Decimal("3")

    @pytest.mark.asyncio
    async def test_limit_without_start_returns_latest(self) -> None:
        async with TradingDatabase(":memory:") as database:
            store = CandleStore(database)
            pair = _make_pair()
            await store.insert_candles(CandlePurpose.BACKTEST, pair, _hourly(10))

            latest = await store.get_candles(CandlePurpose.BACKTEST, pair, limit=3)
            first = await store.get_candles(CandlePurpose.BACKTEST, pair, start=0, limit=2)
        assert [c.open_time for c in latest] == [7 * HOUR, 8 * HOUR, 9 * HOUR]
        assert [c.open_time for c in first] == [0, HOUR]

    @pytest.mark.asyncio
    async def test_timeframes_are_separate_series(self) -> None:
        async with TradingDatabase(":memory:") as database:
            store = CandleStore(database)
            pair = _make_pair()
            await store.insert_candles(
                CandlePurpose.BACKTEST, pair, _hourly(2), TimeFrame.TF_1DAY
            )
            assert await store.get_candles(CandlePurpose.BACKTEST, pair) == []
            daily = await store.get_candles(
                CandlePurpose.BACKTEST, pair, timeframe=TimeFrame.TF_1DAY
            )
        assert len(daily) == 2

    @pytest.mark.asyncio
    async def test_get_range(self) -> None:
        async with TradingDatabase(":memory:") as database:
            store = CandleStore(database)
            pair = _make_pair()
            empty = await store.get_range(CandlePurpose.BACKTEST, pair)
            await store.insert_candles(CandlePurpose.BACKTEST, pair, _hourly(5, start=HOUR))
            stored = await store.get_range(CandlePurpose.BACKTEST, pair)
        assert empty.count == 0 and empty.first is None
        assert (stored.first, stored.last, stored.count) == (HOUR, 5 * HOUR, 5)


class TestBacktestResultStore:
    @pytest.mark.asyncio
    async def test_save_and_get(self) -> None:
        async with TradingDatabase(":memory:") as database:
            store = BacktestResultStore(database)
            record = _make_record()
            result_id = await store.save(record)
            loaded = await store.get(result_id)
        assert record.id == result_id
        assert loaded is not None
        assert loaded.pnl_percent == Decimal("1.5")
        assert loaded.coin_price_end == Decimal("31000.5")
        assert loaded.params == {"RSIPeriod": "14"}
        assert loaded.liquidated is False
        assert loaded.duration_days == Decimal("30")

    @pytest.mark.asyncio
    async def test_get_missing(self) -> None:
        async with TradingDatabase(":memory:") as database:
            assert await BacktestResultStore(database).get(42) is None

    @pytest.mark.asyncio
    async def test_find_baseline_returns_newest_match(self) -> None:
        async with TradingDatabase(":memory:") as database:
            store = BacktestResultStore(database)
            await store.save(_make_record(pnl_percent="1", created_at=1000))
            await store.save(_make_record(pnl_percent="2", created_at=2000))

            found = await store.find_baseline(
                _make_pair(), "RSIDCA", {"RSIPeriod": "14"}, 500, 29 * 86400
            )
        assert found is not None
        assert found.pnl_percent == Decimal("2")

    @pytest.mark.asyncio
    async def test_find_baseline_filters(self) -> None:
        """Parameters, freshness and window length must all match."""
        async with TradingDatabase(":memory:") as database:
            store = BacktestResultStore(database)
            await store.save(_make_record(created_at=1000))
            pair = _make_pair()

            other_params = await store.find_baseline(
                pair, "RSIDCA", {"RSIPeriod": "15"}, 0, 0
            )
            stale = await store.find_baseline(pair, "RSIDCA", {"RSIPeriod": "14"}, 2000, 0)
            too_short = await store.find_baseline(
                pair, "RSIDCA", {"RSIPeriod": "14"}, 0, 31 * 86400
            )
            other_strategy = await store.find_baseline(
                pair, "RSISingleEntry", {"RSIPeriod": "14"}, 0, 0
            )
        assert other_params is None
        assert stale is None
        assert too_short is None
        assert other_strategy is None

    @pytest.mark.asyncio
    async def test_param_order_does_not_matter(self) -> None:
        async with TradingDatabase(":memory:") as database:
            store = BacktestResultStore(database)
            await store.save(_make_record(params={"a": "1", "b": "2"}))
            found = await store.find_baseline(
                _make_pair(), "RSIDCA", {"b": "2", "a": "1"}, 0, 0
            )
        assert found is not None


class TestSuggestionStore:
    @pytest.mark.asyncio
    async def test_save_and_list(self) -> None:
        async with TradingDatabase(":memory:") as database:
            store = SuggestionStore(database)
            for created_at, value in ((100, "11"), (200, "12")):
                await store.save(
                    OptimizationSuggestion(
                        exchange_name="bybit",
                        ticker="BTC/USDT",
                        market_type=MarketType.FUTURES,
                        timeframe=TimeFrame.TF_1HOUR,
                        strategy="RSIDCA",
                        param_name="priceDeviation",
                        original_value="10",
                        mutated_value=value,
                        baseline_pnl_percent=Decimal("1.0"),
                        mutated_pnl_percent=Decimal("2.5"),
                        baseline_result_id=1,
                        mutated_result_id=2,
                        suggested_config="{}",
                        created_at=created_at,
                    )
                )

            listed = await store.list_for_pair("bybit", "BTC/USDT")
            other = await store.list_for_pair("bybit", "ETH/USDT")
        assert [s.mutated_value for s in listed] == ["12", "11"]
        assert listed[0].improvement == Decimal("1.5")
        assert listed[0].status == "new"
        assert other == []
