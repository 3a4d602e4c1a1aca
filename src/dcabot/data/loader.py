"""Paginated candle history loader.

Fills the candles table from an exchange driver for a time window, resuming
from whatever is already stored. Used by the backtest runner before a
replay and by the live trader for higher-timeframe candles.
"""

import asyncio
from dataclasses import replace

from dcabot.data.models import CandlePurpose
from dcabot.data.store import CandleStore
from dcabot.exchange.driver import ExchangeDriver
from dcabot.logging import get_logger
from dcabot.models import Candle, Pair, TimeFrame

logger = get_logger(__name__)

#: Candles requested per driver call.
PAGE_SIZE = 1000


class CandleLoader:
    """Fetches missing candles from a driver and persists them via CandleStore.

    Usage:
        loader = CandleLoader(driver, CandleStore(database))
        candles = await loader.load(pair, start, end)
    """

    def __init__(
        self,
        driver: ExchangeDriver,
        store: CandleStore,
        batch_delay: float = 0.2,
    ) -> None:
        self._driver = driver
        self._store = store
        self._batch_delay = batch_delay

    async def load(
        self,
        pair: Pair,
        start: int,
        end: int,
        timeframe: TimeFrame | None = None,
        purpose: CandlePurpose = CandlePurpose.BACKTEST,
    ) -> list[Candle]:
        """Ensure [start, end] is stored, then return it from the store."""
        await self.ensure_candles(pair, start, end, timeframe, purpose)
        return await self._store.get_candles(purpose, pair, start, end, timeframe)

    async def ensure_candles(
        self,
        pair: Pair,
        start: int,
        end: int,
        timeframe: TimeFrame | None = None,
        purpose: CandlePurpose = CandlePurpose.BACKTEST,
    ) -> int:
        """Fetch candles missing from the store for [start, end].

        Only the tail after the last stored candle (or the head before the
        first) is fetched; interior gaps are left alone.

        Returns:
            Number of newly inserted candles.
        """
        tf = timeframe or pair.timeframe
        series = replace(pair, timeframe=tf)
        stored = await self._store.get_range(purpose, series, tf)

        windows: list[tuple[int, int]] = []
        if stored.count == 0 or stored.first is None or stored.last is None:
            windows.append((start, end))
        else:
            if start < stored.first:
                windows.append((start, stored.first - 1))
            if end > stored.last:
                windows.append((stored.last + tf.to_seconds(), end))

        inserted = 0
        for window_start, window_end in windows:
            inserted += await self._fetch_window(series, window_start, window_end, purpose)

        if inserted:
            logger.info(
                "candles_loaded",
                ticker=pair.ticker,
                timeframe=tf.value,
                inserted=inserted,
            )
        return inserted

    async def _fetch_window(
        self, pair: Pair, start: int, end: int, purpose: CandlePurpose
    ) -> int:
        cursor = start
        inserted = 0
        while cursor <= end:
            batch = await self._driver.get_candles(pair, PAGE_SIZE, start=cursor, end=end)
            if not batch:
                break
            inserted += await self._store.insert_candles(purpose, pair, batch, pair.timeframe)
            next_cursor = batch[-1].open_time + pair.timeframe.to_seconds()
            if next_cursor <= cursor:
                break
            cursor = next_cursor
            logger.debug(
                "candle_page_fetched",
                ticker=pair.ticker,
                count=len(batch),
                cursor=cursor,
            )
            if cursor <= end:
                await asyncio.sleep(self._batch_delay)
        return inserted
