"""Live trading worker: one fixed-interval loop per exchange.

Each pass refreshes the account balance, then for every market refreshes
candles, recomputes indicators and runs Market.process_trading(). Markets are
handled one after another; a failure in one market is logged and the pass
moves on to the next. There is no intra-worker parallelism.
"""

import asyncio
from dataclasses import replace

from dcabot.config import TraderSettings
from dcabot.context import ExecutionContext
from dcabot.data.database import TradingDatabase
from dcabot.data.loader import CandleLoader
from dcabot.data.models import CandlePurpose
from dcabot.data.positions import PositionRepository
from dcabot.data.store import CandleStore
from dcabot.exceptions import DcaBotError
from dcabot.exchange.driver import ExchangeDriver
from dcabot.logging import get_logger
from dcabot.market import Market
from dcabot.market_data.price_cache import PriceCache
from dcabot.models import Pair
from dcabot.strategies.factory import create_strategy
from dcabot.strategies.policies import TREND_FILTER_CANDLES

logger = get_logger(__name__)

#: Pause after an unexpected loop failure before the next pass.
ERROR_BACKOFF_SECONDS = 10


class Trader:
    """Drives all configured markets of one exchange.

    Args:
        driver: Live exchange driver.
        database: Connected database (positions and runtime candles).
        pairs: Pairs configured for this exchange.
        settings: Loop interval, price cache TTL and candle limit.
        context: Execution context; a live one is created when omitted.
    """

    def __init__(
        self,
        driver: ExchangeDriver,
        database: TradingDatabase,
        pairs: list[Pair],
        settings: TraderSettings | None = None,
        context: ExecutionContext | None = None,
    ) -> None:
        self._driver = driver
        self._database = database
        self._pairs = pairs
        self._settings = settings or TraderSettings()
        self._context = context or ExecutionContext.live("dcabot.trader")
        self._price_cache = PriceCache(ttl=self._settings.price_cache_ttl)
        self._candle_store = CandleStore(database)
        self._loader = CandleLoader(driver, self._candle_store)
        self._positions = PositionRepository(database)
        self.markets: list[Market] = []
        self._running = False

    async def start(self) -> None:
        """Connect, build markets and run the loop until stop() is called."""
        await self._driver.connect()
        try:
            self.markets = await self.build_markets()
            logger.info("trader_starting", exchange=self._driver.name, markets=len(self.markets))
            self._running = True
            await self._run_loop()
        finally:
            await self._driver.disconnect()
            logger.info("trader_stopped", exchange=self._driver.name)

    def stop(self) -> None:
        logger.info("trader_stopping", exchange=self._driver.name)
        self._running = False

    async def build_markets(self) -> list[Market]:
        """Create a Market per monitored or traded pair that has a strategy.

        Pairs whose strategy cannot be built are logged and skipped. Pairs
        whose exchange settings fail validation keep running with trading
        disabled, so open positions are still managed.
        """
        markets: list[Market] = []
        for pair in self._pairs:
            if not (pair.trading_enabled or pair.monitoring_enabled):
                continue
            if not pair.strategy_name:
                logger.info("market_without_strategy", ticker=pair.ticker)
                continue

            market = Market(pair, self._driver, self._positions, self._context, self._price_cache)
            try:
                strategy = create_strategy(pair.strategy_name, market, pair.strategy_params)
            except DcaBotError as e:
                logger.error("strategy_build_failed", ticker=pair.ticker, error=str(e))
                continue
            market.set_strategy(strategy)

            validation = await strategy.validate_exchange_settings(market)
            for warning in validation.warnings:
                logger.warning("strategy_validation_warning", ticker=pair.ticker, message=warning)
            if not validation.is_valid:
                for error in validation.errors:
                    logger.error("strategy_validation_error", ticker=pair.ticker, message=error)
                market.pair = replace(pair, trading_enabled=False)

            markets.append(market)
        return markets

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_cycle()
                await asyncio.sleep(self._settings.loop_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("trader_cycle_error", error=str(e), exc_info=True)
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)

    async def run_cycle(self) -> None:
        """One polling pass over every market."""
        balance = await self._driver.get_available_margin()
        if balance is not None:
            logger.debug("balance_refreshed", balance=str(balance.amount))

        for market in self.markets:
            try:
                await self.refresh_candles(market)
                if not market.candles:
                    logger.warning("no_candles", ticker=market.ticker)
                    continue
                market.calculate_indicators()
                await market.process_trading()
            except Exception as e:
                logger.error(
                    "market_cycle_error",
                    ticker=market.ticker,
                    error=str(e),
                    exc_info=True,
                )

    async def refresh_candles(self, market: Market) -> None:
        """Load recent candles for the market and its extra timeframes.

        Closed candles are cached in the runtime partition; the still-forming
        last candle is only kept in memory.
        """
        pair = market.pair
        candles = await self._driver.get_candles(pair, self._settings.candle_limit)
        if not candles:
            return
        if len(candles) > 1:
            await self._candle_store.insert_candles(CandlePurpose.RUNTIME, pair, candles[:-1])
        market.set_candles(candles)

        strategy = market.strategy
        if strategy is None:
            return
        now = self._context.now()
        for timeframe in strategy.required_timeframes():
            if timeframe is pair.timeframe:
                continue
            start = now - TREND_FILTER_CANDLES * timeframe.to_seconds()
            market.set_timeframe_candles(
                timeframe,
                await self._loader.load(pair, start, now, timeframe, CandlePurpose.RUNTIME),
            )
