"""High-level entry point for running a backtest.

BacktestRunner wires one run together: loads candles into the backtest
partition, creates a disposable positions table, builds a simulated Market
with the configured strategy, replays it through BacktestEngine and stores
the outcome as a BacktestResultRecord. The disposable table is dropped in
``finally`` even when the run fails.
"""

import json
import time
import uuid
from collections.abc import Callable
from dataclasses import replace

from dcabot.backtest.engine import BacktestEngine
from dcabot.backtest.events import BacktestEventWriter
from dcabot.backtest.exchange import BacktestExchange
from dcabot.backtest.models import BacktestResult
from dcabot.config import BacktestSettings
from dcabot.context import ExecutionContext, SimulationClock
from dcabot.data.database import TradingDatabase
from dcabot.data.loader import CandleLoader
from dcabot.data.models import BacktestResultRecord, CandlePurpose
from dcabot.data.positions import PositionRepository
from dcabot.data.store import BacktestResultStore, CandleStore
from dcabot.exceptions import ConfigError, InsufficientDataError
from dcabot.exchange.driver import ExchangeDriver
from dcabot.logging import bind_simulation_context, clear_simulation_context, get_logger
from dcabot.market import Market
from dcabot.models import Candle, Pair, TimeFrame
from dcabot.strategies.base import BaseStrategy
from dcabot.strategies.factory import create_strategy, get_strategy_class
from dcabot.strategies.policies import TREND_FILTER_CANDLES

logger = get_logger(__name__)

SECONDS_PER_DAY = 86400


def window_for_days(days: int, timeframe: TimeFrame, now: int) -> tuple[int, int]:
    """Return [start, end] open times covering the last ``days`` closed candles."""
    step = timeframe.to_seconds()
    end = (now // step) * step - step
    start = end - days * SECONDS_PER_DAY + step
    return start, end


def to_record(result: BacktestResult, created_at: int) -> BacktestResultRecord:
    """Flatten a BacktestResult into its persisted row."""
    pair = result.pair
    financial = result.financial
    return BacktestResultRecord(
        exchange_name=pair.exchange_name,
        ticker=pair.ticker,
        market_type=pair.market_type,
        timeframe=pair.timeframe,
        strategy=pair.strategy_name or "",
        params=dict(pair.strategy_params),
        sim_start=result.sim_start,
        sim_end=result.sim_end,
        initial_balance=financial.initial_balance,
        final_balance=financial.final_balance,
        pnl=financial.pnl,
        pnl_percent=financial.pnl_percent,
        max_drawdown=financial.max_drawdown,
        liquidated=financial.liquidated,
        coin_price_start=financial.coin_price_start,
        coin_price_end=financial.coin_price_end,
        result_json=json.dumps(result.to_dict()),
        created_at=created_at,
    )


class BacktestRunner:
    """Runs backtests against the shared database.

    Args:
        database: Connected TradingDatabase (candles, results, disposable tables).
        settings: Simulated exchange and tick settings.
        loader: Optional loader used to fetch missing candles first.
        driver: Optional real driver to take tick size / qty step from.
        now: Wall-clock source for record timestamps.
    """

    def __init__(
        self,
        database: TradingDatabase,
        settings: BacktestSettings | None = None,
        loader: CandleLoader | None = None,
        driver: ExchangeDriver | None = None,
        now: Callable[[], int] = lambda: int(time.time()),
    ) -> None:
        self._database = database
        self._settings = settings or BacktestSettings()
        self._loader = loader
        self._driver = driver
        self._now = now
        self._candles = CandleStore(database)
        self._results = BacktestResultStore(database)

    async def run(
        self,
        pair: Pair,
        start: int,
        end: int,
        params: dict[str, str] | None = None,
        ticks_per_candle: int | None = None,
        event_log_path: str | None = None,
    ) -> tuple[BacktestResult, BacktestResultRecord]:
        """Replay [start, end] for a pair and persist the result.

        Args:
            pair: Pair with strategy name and (default) parameters.
            start: First candle open_time, Unix seconds.
            end: Last candle open_time, Unix seconds.
            params: Strategy parameters overriding the pair's own.
            ticks_per_candle: Overrides the configured tick count.
            event_log_path: Overrides the configured JSONL event stream.

        Returns:
            The full result and its saved record (with id).

        Raises:
            ConfigError: If the pair has no strategy or a parameter is invalid.
            UnknownStrategyError: If the strategy name is not registered.
            InsufficientDataError: If no candles exist for the window.
        """
        if not pair.strategy_name:
            raise ConfigError(f"Pair {pair.describe()} has no strategy configured")
        strategy_cls = get_strategy_class(pair.strategy_name)
        sim_pair = replace(
            pair,
            trading_enabled=True,
            strategy_params=dict(params if params is not None else pair.strategy_params),
        )

        candles = await self._load(sim_pair, start, end, sim_pair.timeframe)
        if not candles:
            raise InsufficientDataError(
                f"No {sim_pair.timeframe.value} candles for {sim_pair.ticker} in [{start}, {end}]"
            )
        extra: dict[TimeFrame, list[Candle]] = {}
        for timeframe in strategy_cls.required_timeframes():
            if timeframe is sim_pair.timeframe:
                continue
            lookback = start - TREND_FILTER_CANDLES * timeframe.to_seconds()
            extra[timeframe] = await self._load(sim_pair, lookback, end, timeframe)

        settings = self._settings
        initial_balance = (
            sim_pair.backtest_initial_balance or settings.default_initial_balance
        )
        ticks = ticks_per_candle or settings.ticks_per_candle
        log_path = event_log_path or settings.event_log_path

        run_id = uuid.uuid4().hex[:12]
        table = f"backtest_positions_{run_id}"
        writer = BacktestEventWriter(log_path) if log_path else None
        started = time.monotonic()

        bind_simulation_context(run=run_id)
        await self._database.create_positions_table(table)
        try:
            clock = SimulationClock(candles[0].open_time)
            context = ExecutionContext.simulated(
                clock, event_sink=writer.emit if writer else None
            )
            exchange = BacktestExchange(
                initial_balance,
                name=sim_pair.exchange_name,
                fee_rate=settings.fee_rate,
                tick_size=settings.tick_size,
                qty_step=settings.qty_step,
            )
            market = Market(sim_pair, exchange, PositionRepository(self._database, table), context)
            if self._driver is not None:
                exchange.set_instrument_steps(
                    await self._driver.get_tick_size(market),
                    await self._driver.get_qty_step(market),
                )
            for timeframe, tf_candles in extra.items():
                market.set_timeframe_candles(timeframe, tf_candles)

            strategy = create_strategy(sim_pair.strategy_name, market, sim_pair.strategy_params)
            market.set_strategy(strategy)
            await self._log_validation(strategy, market)

            if writer is not None:
                writer.write_init(
                    pair=sim_pair.ticker,
                    timeframe=sim_pair.timeframe.value,
                    strategy=strategy.name,
                    params=strategy.raw_params,
                    initial_balance=initial_balance,
                    total_candles=len(candles),
                )

            engine = BacktestEngine(market, exchange, clock, ticks, writer)
            result = await engine.run(candles)

            record = to_record(result, self._now())
            await self._results.save(record)
            if writer is not None:
                writer.write_result(result.to_dict())
                writer.write_done()
        except Exception as e:
            if writer is not None:
                writer.write_error(str(e))
            raise
        finally:
            await self._database.drop_table(table)
            if writer is not None:
                writer.close()
            clear_simulation_context("run")

        logger.info(
            "backtest_complete",
            ticker=sim_pair.ticker,
            strategy=sim_pair.strategy_name,
            result_id=record.id,
            pnl_percent=str(result.financial.pnl_percent),
            trades=result.trades.finished,
            elapsed_seconds=round(time.monotonic() - started, 2),
        )
        return result, record

    async def run_days(
        self,
        pair: Pair,
        days: int,
        params: dict[str, str] | None = None,
        event_log_path: str | None = None,
    ) -> tuple[BacktestResult, BacktestResultRecord]:
        """Backtest the last ``days`` days up to the latest closed candle."""
        start, end = window_for_days(days, pair.timeframe, self._now())
        return await self.run(pair, start, end, params=params, event_log_path=event_log_path)

    async def _load(
        self, pair: Pair, start: int, end: int, timeframe: TimeFrame
    ) -> list[Candle]:
        if self._loader is not None:
            await self._loader.ensure_candles(pair, start, end, timeframe, CandlePurpose.BACKTEST)
        return await self._candles.get_candles(
            CandlePurpose.BACKTEST, pair, start, end, timeframe
        )

    @staticmethod
    async def _log_validation(strategy: BaseStrategy, market: Market) -> None:
        validation = await strategy.validate_exchange_settings(market)
        for warning in validation.warnings:
            logger.warning("strategy_validation_warning", ticker=market.ticker, message=warning)
        for error in validation.errors:
            logger.error("strategy_validation_error", ticker=market.ticker, message=error)
