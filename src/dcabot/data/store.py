"""Typed SQLite read/write access for candles, backtest results and suggestions.

CRITICAL: All monetary values stored as TEXT in SQLite, restored as Decimal on read.
"""

import json
from decimal import Decimal

from dcabot.data.database import TradingDatabase
from dcabot.data.models import (
    BacktestResultRecord,
    CandlePurpose,
    CandleRange,
    OptimizationSuggestion,
)
from dcabot.logging import get_logger
from dcabot.models import Candle, MarketType, Pair, TimeFrame

logger = get_logger(__name__)


class CandleStore:
    """Candle persistence partitioned by purpose (runtime / backtest)."""

    def __init__(self, database: TradingDatabase) -> None:
        self._database = database

    async def insert_candles(
        self,
        purpose: CandlePurpose,
        pair: Pair,
        candles: list[Candle],
        timeframe: TimeFrame | None = None,
    ) -> int:
        """Insert candles, ignoring duplicates via INSERT OR IGNORE.

        Returns the number of actually inserted rows.
        """
        if not candles:
            return 0
        tf = timeframe or pair.timeframe
        data = [
            (
                purpose.value,
                pair.exchange_name,
                pair.ticker,
                pair.market_type.value,
                tf.value,
                c.open_time,
                str(c.open),
                str(c.high),
                str(c.low),
                str(c.close),
                str(c.volume),
            )
            for c in candles
        ]
        cursor = await self._database.db.executemany(
            "INSERT OR IGNORE INTO candles "
            "(purpose, exchange_name, ticker, market_type, timeframe, open_time, "
            "open, high, low, close, volume) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            data,
        )
        await self._database.db.commit()
        logger.debug(
            "inserted_candles",
            ticker=pair.ticker,
            purpose=purpose.value,
            total=len(candles),
            inserted=cursor.rowcount,
        )
        return cursor.rowcount

    async def get_candles(
        self,
        purpose: CandlePurpose,
        pair: Pair,
        start: int | None = None,
        end: int | None = None,
        timeframe: TimeFrame | None = None,
        limit: int | None = None,
    ) -> list[Candle]:
        """Return candles ordered by open_time ascending.

        With a limit and no start, the most recent ``limit`` candles are returned.
        """
        tf = timeframe or pair.timeframe
        query = (
            "SELECT open_time, open, high, low, close, volume FROM candles "
            "WHERE purpose = ? AND exchange_name = ? AND ticker = ? "
            "AND market_type = ? AND timeframe = ?"
        )
        params: list[object] = [
            purpose.value,
            pair.exchange_name,
            pair.ticker,
            pair.market_type.value,
            tf.value,
        ]
        if start is not None:
            query += " AND open_time >= ?"
            params.append(start)
        if end is not None:
            query += " AND open_time <= ?"
            params.append(end)

        if limit is not None and start is None:
            query = f"SELECT * FROM ({query} ORDER BY open_time DESC LIMIT ?) ORDER BY open_time ASC"
            params.append(limit)
        else:
            query += " ORDER BY open_time ASC"
            if limit is not None:
                query += " LIMIT ?"
                params.append(limit)

        cursor = await self._database.db.execute(query, params)
        rows = await cursor.fetchall()
        return [
            Candle(
                open_time=r[0],
                open=Decimal(r[1]),
                high=Decimal(r[2]),
                low=Decimal(r[3]),
                close=Decimal(r[4]),
                volume=Decimal(r[5]),
            )
            for r in rows
        ]

    async def get_range(
        self, purpose: CandlePurpose, pair: Pair, timeframe: TimeFrame | None = None
    ) -> CandleRange:
        tf = timeframe or pair.timeframe
        cursor = await self._database.db.execute(
            "SELECT MIN(open_time), MAX(open_time), COUNT(*) FROM candles "
            "WHERE purpose = ? AND exchange_name = ? AND ticker = ? "
            "AND market_type = ? AND timeframe = ?",
            (purpose.value, pair.exchange_name, pair.ticker, pair.market_type.value, tf.value),
        )
        row = await cursor.fetchone()
        if row is None:
            return CandleRange()
        return CandleRange(first=row[0], last=row[1], count=row[2] or 0)


class BacktestResultStore:
    """Persistence for BacktestResultRecord rows."""

    def __init__(self, database: TradingDatabase) -> None:
        self._database = database

    async def save(self, record: BacktestResultRecord) -> int:
        cursor = await self._database.db.execute(
            "INSERT INTO backtest_results "
            "(created_at, exchange_name, ticker, market_type, timeframe, strategy, params, "
            "sim_start, sim_end, initial_balance, final_balance, pnl, pnl_percent, "
            "max_drawdown, liquidated, coin_price_start, coin_price_end, result_json) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                record.created_at,
                record.exchange_name,
                record.ticker,
                record.market_type.value,
                record.timeframe.value,
                record.strategy,
                _params_json(record.params),
                record.sim_start,
                record.sim_end,
                str(record.initial_balance),
                str(record.final_balance),
                str(record.pnl),
                str(record.pnl_percent),
                str(record.max_drawdown),
                int(record.liquidated),
                str(record.coin_price_start),
                str(record.coin_price_end),
                record.result_json,
            ),
        )
        await self._database.db.commit()
        record.id = cursor.lastrowid
        return record.id  # type: ignore[return-value]

    async def get(self, result_id: int) -> BacktestResultRecord | None:
        cursor = await self._database.db.execute(
            f"SELECT {_RESULT_COLUMNS} FROM backtest_results WHERE id = ?", (result_id,)
        )
        row = await cursor.fetchone()
        return _result_from_row(row) if row else None

    async def find_baseline(
        self,
        pair: Pair,
        strategy: str,
        params: dict[str, str],
        created_after: int,
        min_duration: int,
    ) -> BacktestResultRecord | None:
        """Return the newest result for identical pair/strategy/params.

        Only results created at or after created_after and covering at least
        min_duration seconds qualify.
        """
        cursor = await self._database.db.execute(
            f"SELECT {_RESULT_COLUMNS} FROM backtest_results "
            "WHERE exchange_name = ? AND ticker = ? AND market_type = ? AND timeframe = ? "
            "AND strategy = ? AND params = ? AND created_at >= ? "
            "AND (sim_end - sim_start) >= ? "
            "ORDER BY created_at DESC, id DESC LIMIT 1",
            (
                pair.exchange_name,
                pair.ticker,
                pair.market_type.value,
                pair.timeframe.value,
                strategy,
                _params_json(params),
                created_after,
                min_duration,
            ),
        )
        row = await cursor.fetchone()
        return _result_from_row(row) if row else None


class SuggestionStore:
    """Persistence for OptimizationSuggestion rows."""

    def __init__(self, database: TradingDatabase) -> None:
        self._database = database

    async def save(self, suggestion: OptimizationSuggestion) -> int:
        cursor = await self._database.db.execute(
            "INSERT INTO optimization_suggestions "
            "(created_at, exchange_name, ticker, market_type, timeframe, strategy, "
            "param_name, original_value, mutated_value, baseline_pnl_percent, "
            "mutated_pnl_percent, baseline_result_id, mutated_result_id, "
            "suggested_config, status) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                suggestion.created_at,
                suggestion.exchange_name,
                suggestion.ticker,
                suggestion.market_type.value,
                suggestion.timeframe.value,
                suggestion.strategy,
                suggestion.param_name,
                suggestion.original_value,
                suggestion.mutated_value,
                str(suggestion.baseline_pnl_percent),
                str(suggestion.mutated_pnl_percent),
                suggestion.baseline_result_id,
                suggestion.mutated_result_id,
                suggestion.suggested_config,
                suggestion.status,
            ),
        )
        await self._database.db.commit()
        suggestion.id = cursor.lastrowid
        logger.info(
            "suggestion_saved",
            ticker=suggestion.ticker,
            param=suggestion.param_name,
            improvement=str(suggestion.improvement),
        )
        return suggestion.id  # type: ignore[return-value]

    async def list_for_pair(self, exchange_name: str, ticker: str) -> list[OptimizationSuggestion]:
        cursor = await self._database.db.execute(
            "SELECT id, created_at, exchange_name, ticker, market_type, timeframe, strategy, "
            "param_name, original_value, mutated_value, baseline_pnl_percent, "
            "mutated_pnl_percent, baseline_result_id, mutated_result_id, "
            "suggested_config, status FROM optimization_suggestions "
            "WHERE exchange_name = ? AND ticker = ? ORDER BY created_at DESC, id DESC",
            (exchange_name, ticker),
        )
        rows = await cursor.fetchall()
        return [
            OptimizationSuggestion(
                id=r[0],
                created_at=r[1],
                exchange_name=r[2],
                ticker=r[3],
                market_type=MarketType(r[4]),
                timeframe=TimeFrame(r[5]),
                strategy=r[6],
                param_name=r[7],
                original_value=r[8],
                mutated_value=r[9],
                baseline_pnl_percent=Decimal(r[10]),
                mutated_pnl_percent=Decimal(r[11]),
                baseline_result_id=r[12],
                mutated_result_id=r[13],
                suggested_config=r[14],
                status=r[15],
            )
            for r in rows
        ]


_RESULT_COLUMNS = (
    "id, created_at, exchange_name, ticker, market_type, timeframe, strategy, params, "
    "sim_start, sim_end, initial_balance, final_balance, pnl, pnl_percent, "
    "max_drawdown, liquidated, coin_price_start, coin_price_end, result_json"
)


def _params_json(params: dict[str, str]) -> str:
    """Canonical JSON for parameter equality checks."""
    return json.dumps({k: str(v) for k, v in params.items()}, sort_keys=True)


def _result_from_row(r: tuple) -> BacktestResultRecord:
    return BacktestResultRecord(
        id=r[0],
        created_at=r[1],
        exchange_name=r[2],
        ticker=r[3],
        market_type=MarketType(r[4]),
        timeframe=TimeFrame(r[5]),
        strategy=r[6],
        params=json.loads(r[7]),
        sim_start=r[8],
        sim_end=r[9],
        initial_balance=Decimal(r[10]),
        final_balance=Decimal(r[11]),
        pnl=Decimal(r[12]),
        pnl_percent=Decimal(r[13]),
        max_drawdown=Decimal(r[14]),
        liquidated=bool(r[15]),
        coin_price_start=Decimal(r[16]),
        coin_price_end=Decimal(r[17]),
        result_json=r[18],
    )
