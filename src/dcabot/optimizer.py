"""Single-parameter hill-climbing optimizer.

Each iteration takes the next pair (round-robin over pairs that declare
backtest_days), reuses or computes a baseline backtest, nudges one randomly
chosen parameter through its registry mutation rule and replays the exact
same window. A strictly better PnL% is stored as an OptimizationSuggestion;
nothing is ever applied to the live configuration.
"""

import asyncio
import json
import random
import time
from collections.abc import Callable

from dcabot.backtest.runner import SECONDS_PER_DAY, BacktestRunner, window_for_days
from dcabot.config import OptimizerSettings
from dcabot.data.database import TradingDatabase
from dcabot.data.models import BacktestResultRecord, OptimizationSuggestion
from dcabot.data.store import BacktestResultStore, SuggestionStore
from dcabot.logging import get_logger
from dcabot.models import Pair
from dcabot.strategies.factory import get_strategy_class

logger = get_logger(__name__)


def suggested_config(pair: Pair, params: dict[str, str]) -> str:
    """Render the pair's configuration snippet with the suggested params."""
    return json.dumps(
        {
            "ticker": pair.ticker,
            "timeframe": pair.timeframe.value,
            "market_type": pair.market_type.value,
            "strategy": pair.strategy_name,
            "params": dict(sorted(params.items())),
        },
        indent=2,
    )


class Optimizer:
    """Hill-climbing search over strategy parameters, one change at a time.

    Args:
        runner: Backtest runner bound to the shared database.
        database: Connected database holding results and suggestions.
        pairs: Candidate pairs; only those with backtest_days are used.
        settings: Optimizer settings.
        rng: Random source; inject a seeded instance for reproducible runs.
        now: Wall-clock source in Unix seconds.
    """

    def __init__(
        self,
        runner: BacktestRunner,
        database: TradingDatabase,
        pairs: list[Pair],
        settings: OptimizerSettings | None = None,
        rng: random.Random | None = None,
        now: Callable[[], int] = lambda: int(time.time()),
    ) -> None:
        self._runner = runner
        self._settings = settings or OptimizerSettings()
        self._rng = rng or random.Random(self._settings.seed)
        self._now = now
        self._results = BacktestResultStore(database)
        self._suggestions = SuggestionStore(database)
        self._pairs = [p for p in pairs if p.backtest_days and p.strategy_name]
        self._cursor = 0
        self._running = False
        self._stop_event = asyncio.Event()

    @property
    def pairs(self) -> list[Pair]:
        return list(self._pairs)

    def next_pair(self) -> Pair | None:
        """Return the next pair in round-robin order, or None if there are none."""
        if not self._pairs:
            return None
        pair = self._pairs[self._cursor % len(self._pairs)]
        self._cursor += 1
        return pair

    def eligible_parameters(self, pair: Pair) -> list[str]:
        """Parameters that are configured for optimization and have a mutation rule."""
        registry = get_strategy_class(pair.strategy_name or "").parameters
        mutable = registry.mutable_names()
        configured = self._settings.optimizable_params or mutable
        return [name for name in configured if name in mutable]

    # ------------------------------------------------------------------
    # Iteration
    # ------------------------------------------------------------------

    async def run_iteration(self, pair: Pair) -> OptimizationSuggestion | None:
        """Run one baseline/mutation comparison for a pair.

        Returns:
            The saved suggestion when the mutation strictly improved PnL%,
            otherwise None.
        """
        eligible = self.eligible_parameters(pair)
        if not eligible:
            logger.info("optimizer_no_eligible_params", ticker=pair.ticker)
            return None

        baseline = await self._baseline(pair)

        name = self._rng.choice(eligible)
        registry = get_strategy_class(pair.strategy_name or "").parameters
        spec = registry.get(name)
        original = pair.strategy_params.get(name, spec.default if spec else "")
        mutated = registry.mutate(name, original, self._rng)
        if mutated == original:
            logger.info("optimizer_mutation_unchanged", ticker=pair.ticker, param=name)
            return None

        params = {**pair.strategy_params, name: mutated}
        end = baseline.sim_end - pair.timeframe.to_seconds() + 1
        _, candidate = await self._runner.run(
            pair,
            baseline.sim_start,
            end,
            params=params,
            ticks_per_candle=self._settings.ticks_per_candle,
        )

        logger.info(
            "optimizer_compared",
            ticker=pair.ticker,
            param=name,
            original=original,
            mutated=mutated,
            baseline_pnl_percent=str(baseline.pnl_percent),
            mutated_pnl_percent=str(candidate.pnl_percent),
        )
        if candidate.pnl_percent <= baseline.pnl_percent:
            return None

        suggestion = OptimizationSuggestion(
            exchange_name=pair.exchange_name,
            ticker=pair.ticker,
            market_type=pair.market_type,
            timeframe=pair.timeframe,
            strategy=pair.strategy_name or "",
            param_name=name,
            original_value=original,
            mutated_value=mutated,
            baseline_pnl_percent=baseline.pnl_percent,
            mutated_pnl_percent=candidate.pnl_percent,
            baseline_result_id=baseline.id,
            mutated_result_id=candidate.id,
            suggested_config=suggested_config(pair, params),
            created_at=self._now(),
        )
        await self._suggestions.save(suggestion)
        return suggestion

    async def _baseline(self, pair: Pair) -> BacktestResultRecord:
        settings = self._settings
        days = max(pair.backtest_days or 0, settings.min_backtest_days)
        created_after = self._now() - settings.baseline_freshness_days * SECONDS_PER_DAY
        # One candle of slack for the last, still-open candle of the window
        min_duration = days * SECONDS_PER_DAY - pair.timeframe.to_seconds()

        record = await self._results.find_baseline(
            pair, pair.strategy_name or "", pair.strategy_params, created_after, min_duration
        )
        if record is not None:
            logger.info("optimizer_baseline_reused", ticker=pair.ticker, result_id=record.id)
            return record

        start, end = window_for_days(days, pair.timeframe, self._now())
        _, record = await self._runner.run(
            pair, start, end, ticks_per_candle=settings.ticks_per_candle
        )
        logger.info("optimizer_baseline_computed", ticker=pair.ticker, result_id=record.id)
        return record

    # ------------------------------------------------------------------
    # Daemon loop
    # ------------------------------------------------------------------

    async def run_forever(self) -> None:
        """Iterate over pairs until stop() is called.

        Exceptions from a single pair are logged and do not stop the loop.
        """
        if not self._pairs:
            logger.warning("optimizer_no_pairs")
            return

        self._running = True
        logger.info("optimizer_started", pairs=len(self._pairs))
        while self._running:
            pair = self.next_pair()
            if pair is None:
                break
            try:
                await self.run_iteration(pair)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(
                    "optimizer_iteration_failed",
                    ticker=pair.ticker,
                    error=str(e),
                    exc_info=True,
                )
            await self._pause()
        logger.info("optimizer_stopped")

    def stop(self) -> None:
        self._running = False
        self._stop_event.set()

    async def _pause(self) -> None:
        if not self._running:
            return
        try:
            await asyncio.wait_for(
                self._stop_event.wait(), timeout=self._settings.interval_hours * 3600
            )
        except asyncio.TimeoutError:
            pass
