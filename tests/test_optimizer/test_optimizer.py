"""Tests for the hill-climbing Optimizer.

Verifies:
- A strictly better mutation is stored as a suggestion, a worse one is not
- A fresh matching baseline is reused instead of re-run
- The candidate replays exactly the baseline window
- Mutations that change nothing skip the candidate run
- run_forever survives failing iterations and stops on request
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from dcabot.backtest.runner import SECONDS_PER_DAY
from dcabot.config import OptimizerSettings
from dcabot.data.database import TradingDatabase
from dcabot.data.models import BacktestResultRecord
from dcabot.data.store import BacktestResultStore, SuggestionStore
from dcabot.models import MarketType, Pair, TimeFrame
from dcabot.optimizer import Optimizer

NOW = 1_700_000_000
FOUR_HOURS = 14400
WINDOW_START = NOW - 30 * SECONDS_PER_DAY
WINDOW_END = NOW - 1


def _make_pair(
    ticker: str = "BTC/USDT",
    params: dict[str, str] | None = None,
    backtest_days: int | None = 30,
) -> Pair:
    return Pair.from_ticker(
        ticker,
        timeframe=TimeFrame.TF_4HOURS,
        exchange_name="bybit",
        market_type=MarketType.FUTURES,
        strategy_name="RSIDCA",
        strategy_params=params if params is not None else {"priceDeviation": "20"},
        backtest_days=backtest_days,
    )


def _make_record(
    pnl_percent: str,
    record_id: int | None,
    params: dict[str, str] | None = None,
) -> BacktestResultRecord:
    return BacktestResultRecord(
        id=record_id,
        exchange_name="bybit",
        ticker="BTC/USDT",
        market_type=MarketType.FUTURES,
        timeframe=TimeFrame.TF_4HOURS,
        strategy="RSIDCA",
        params=params if params is not None else {"priceDeviation": "20"},
        sim_start=WINDOW_START,
        sim_end=WINDOW_END,
        initial_balance=Decimal("1000"),
        final_balance=Decimal("1000"),
        pnl=Decimal("0"),
        pnl_percent=Decimal(pnl_percent),
        max_drawdown=Decimal("0"),
        liquidated=False,
        coin_price_start=Decimal("100"),
        coin_price_end=Decimal("100"),
        created_at=NOW,
    )


def _make_runner(*records: BacktestResultRecord) -> MagicMock:
    runner = MagicMock()
    runner.run = AsyncMock(side_effect=[(MagicMock(), r) for r in records])
    return runner


def _make_rng(direction: int = 1) -> MagicMock:
    rng = MagicMock()
    rng.choice.side_effect = lambda options: direction if options == (-1, 1) else options[0]
    return rng


def _make_optimizer(
    runner: MagicMock,
    database: TradingDatabase,
    pairs: list[Pair],
    optimizable: list[str] | None = None,
    direction: int = 1,
) -> Optimizer:
    settings = OptimizerSettings(
        optimizable_params=optimizable if optimizable is not None else ["priceDeviation"],
        interval_hours=0.00001,
    )
    return Optimizer(
        runner, database, pairs, settings, rng=_make_rng(direction), now=lambda: NOW
    )


class TestRunIteration:
    @pytest.mark.asyncio
    async def test_improvement_saves_suggestion(self) -> None:
        pair = _make_pair()
        runner = _make_runner(_make_record("1.0", 1), _make_record("2.5", 2))
        async with TradingDatabase(":memory:") as database:
            optimizer = _make_optimizer(runner, database, [pair])
            suggestion = await optimizer.run_iteration(pair)
            stored = await SuggestionStore(database).list_for_pair("bybit", "BTC/USDT")

        assert suggestion is not None
        assert suggestion.param_name == "priceDeviation"
        assert (suggestion.original_value, suggestion.mutated_value) == ("20", "20.5")
        assert suggestion.improvement == Decimal("1.5")
        assert (suggestion.baseline_result_id, suggestion.mutated_result_id) == (1, 2)
        assert '"priceDeviation": "20.5"' in suggestion.suggested_config
        assert len(stored) == 1

    @pytest.mark.asyncio
    async def test_candidate_replays_baseline_window(self) -> None:
        pair = _make_pair()
        runner = _make_runner(_make_record("1.0", 1), _make_record("0.5", 2))
        async with TradingDatabase(":memory:") as database:
            optimizer = _make_optimizer(runner, database, [pair])
            await optimizer.run_iteration(pair)

        assert runner.run.await_count == 2
        candidate_call = runner.run.await_args_list[1]
        assert candidate_call.args == (pair, WINDOW_START, WINDOW_END - FOUR_HOURS + 1)
        assert candidate_call.kwargs["params"] == {"priceDeviation": "20.5"}
        assert candidate_call.kwargs["ticks_per_candle"] == 4

    @pytest.mark.asyncio
    async def test_worse_or_equal_is_discarded(self) -> None:
        pair = _make_pair()
        runner = _make_runner(_make_record("1.0", 1), _make_record("1.0", 2))
        async with TradingDatabase(":memory:") as database:
            optimizer = _make_optimizer(runner, database, [pair])
            assert await optimizer.run_iteration(pair) is None
            assert await SuggestionStore(database).list_for_pair("bybit", "BTC/USDT") == []

    @pytest.mark.asyncio
    async def test_fresh_baseline_is_reused(self) -> None:
        pair = _make_pair()
        runner = _make_runner(_make_record("3.0", 7))
        async with TradingDatabase(":memory:") as database:
            baseline = _make_record("1.0", None)
            await BacktestResultStore(database).save(baseline)
            optimizer = _make_optimizer(runner, database, [pair])
            suggestion = await optimizer.run_iteration(pair)

        runner.run.assert_awaited_once()
        assert runner.run.await_args.kwargs["params"] == {"priceDeviation": "20.5"}
        assert suggestion is not None
        assert suggestion.baseline_result_id == baseline.id

    @pytest.mark.asyncio
    async def test_stale_baseline_is_recomputed(self) -> None:
        pair = _make_pair()
        runner = _make_runner(_make_record("1.0", 1), _make_record("0.0", 2))
        async with TradingDatabase(":memory:") as database:
            stale = _make_record("5.0", None)
            stale.created_at = NOW - 8 * SECONDS_PER_DAY
            await BacktestResultStore(database).save(stale)
            optimizer = _make_optimizer(runner, database, [pair])
            await optimizer.run_iteration(pair)

        assert runner.run.await_count == 2
        baseline_call = runner.run.await_args_list[0]
        assert "params" not in baseline_call.kwargs

    @pytest.mark.asyncio
    async def test_unchanged_mutation_skips_candidate(self) -> None:
        """numberOfLevels already at its maximum cannot step up."""
        pair = _make_pair(params={"numberOfLevels": "20"})
        runner = _make_runner(_make_record("1.0", 1, {"numberOfLevels": "20"}))
        async with TradingDatabase(":memory:") as database:
            optimizer = _make_optimizer(runner, database, [pair], ["numberOfLevels"])
            assert await optimizer.run_iteration(pair) is None
        runner.run.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_eligible_parameters(self) -> None:
        pair = _make_pair()
        runner = _make_runner()
        async with TradingDatabase(":memory:") as database:
            optimizer = _make_optimizer(runner, database, [pair], ["notAParameter"])
            assert await optimizer.run_iteration(pair) is None
        runner.run.assert_not_awaited()


class TestPairSelection:
    @pytest.mark.asyncio
    async def test_round_robin_over_backtestable_pairs(self) -> None:
        btc = _make_pair()
        eth = _make_pair("ETH/USDT")
        skipped = _make_pair("SOL/USDT", backtest_days=None)
        async with TradingDatabase(":memory:") as database:
            optimizer = _make_optimizer(_make_runner(), database, [btc, skipped, eth])
            picked = [optimizer.next_pair() for _ in range(3)]
        assert optimizer.pairs == [btc, eth]
        assert picked == [btc, eth, btc]

    @pytest.mark.asyncio
    async def test_no_pairs(self) -> None:
        async with TradingDatabase(":memory:") as database:
            optimizer = _make_optimizer(_make_runner(), database, [])
            assert optimizer.next_pair() is None
            await optimizer.run_forever()

    @pytest.mark.asyncio
    async def test_eligible_parameters(self) -> None:
        pair = _make_pair()
        async with TradingDatabase(":memory:") as database:
            configured = _make_optimizer(
                _make_runner(), database, [pair], ["priceDeviation", "RSIPeriod", "bogus"]
            )
            everything = _make_optimizer(_make_runner(), database, [pair], [])
            assert configured.eligible_parameters(pair) == ["priceDeviation", "RSIPeriod"]
            eligible = everything.eligible_parameters(pair)
        assert "offsetMode" in eligible and "UseLimitOrders" in eligible


class TestRunForever:
    @pytest.mark.asyncio
    async def test_failures_do_not_stop_the_loop(self) -> None:
        pair = _make_pair()
        async with TradingDatabase(":memory:") as database:
            optimizer = _make_optimizer(_make_runner(), database, [pair])
            calls: list[Pair] = []

            async def _iteration(p: Pair) -> None:
                calls.append(p)
                if len(calls) == 1:
                    raise RuntimeError("exchange unavailable")
                optimizer.stop()

            optimizer.run_iteration = _iteration  # type: ignore[method-assign]
            await optimizer.run_forever()

        assert calls == [pair, pair]
