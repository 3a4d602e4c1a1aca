"""Async SQLite database manager for positions, candles and backtest results.

Uses aiosqlite for non-blocking database operations with WAL mode
for concurrent read/write performance.

Positions live in a table named "positions" in live trading. Every backtest
run gets its own disposable copy of that table (backtest_positions_<suffix>)
so simulated rows never mix with live ones; the copy is dropped when the run
finishes.
"""

import os
import re
from typing import Self

import aiosqlite

from dcabot.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

POSITIONS_TABLE = "positions"

_TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_POSITIONS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS {table} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    exchange_name TEXT NOT NULL,
    ticker TEXT NOT NULL,
    market_type TEXT NOT NULL,
    direction TEXT NOT NULL,
    status TEXT NOT NULL,
    base_currency TEXT NOT NULL,
    quote_currency TEXT NOT NULL,
    initial_entry_price TEXT NOT NULL,
    average_entry_price TEXT NOT NULL,
    current_price TEXT NOT NULL,
    volume TEXT NOT NULL,
    expected_profit_percent TEXT NOT NULL DEFAULT '0',
    take_profit_price TEXT,
    expected_stop_loss_percent TEXT NOT NULL DEFAULT '0',
    stop_loss_price TEXT,
    entry_order_id TEXT,
    finish_reason TEXT,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL,
    finished_at INTEGER
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_{table}_active
    ON {table}(exchange_name, ticker, market_type)
    WHERE status IN ('pending', 'open');

CREATE INDEX IF NOT EXISTS idx_{table}_key_status
    ON {table}(exchange_name, ticker, market_type, status);
"""

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS candles (
    purpose TEXT NOT NULL,
    exchange_name TEXT NOT NULL,
    ticker TEXT NOT NULL,
    market_type TEXT NOT NULL,
    timeframe TEXT NOT NULL,
    open_time INTEGER NOT NULL,
    open TEXT NOT NULL,
    high TEXT NOT NULL,
    low TEXT NOT NULL,
    close TEXT NOT NULL,
    volume TEXT NOT NULL,
    PRIMARY KEY (purpose, exchange_name, ticker, market_type, timeframe, open_time)
);

CREATE TABLE IF NOT EXISTS backtest_results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at INTEGER NOT NULL,
    exchange_name TEXT NOT NULL,
    ticker TEXT NOT NULL,
    market_type TEXT NOT NULL,
    timeframe TEXT NOT NULL,
    strategy TEXT NOT NULL,
    params TEXT NOT NULL,
    sim_start INTEGER NOT NULL,
    sim_end INTEGER NOT NULL,
    initial_balance TEXT NOT NULL,
    final_balance TEXT NOT NULL,
    pnl TEXT NOT NULL,
    pnl_percent TEXT NOT NULL,
    max_drawdown TEXT NOT NULL,
    liquidated INTEGER NOT NULL DEFAULT 0,
    coin_price_start TEXT NOT NULL,
    coin_price_end TEXT NOT NULL,
    result_json TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS optimization_suggestions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at INTEGER NOT NULL,
    exchange_name TEXT NOT NULL,
    ticker TEXT NOT NULL,
    market_type TEXT NOT NULL,
    timeframe TEXT NOT NULL,
    strategy TEXT NOT NULL,
    param_name TEXT NOT NULL,
    original_value TEXT NOT NULL,
    mutated_value TEXT NOT NULL,
    baseline_pnl_percent TEXT NOT NULL,
    mutated_pnl_percent TEXT NOT NULL,
    baseline_result_id INTEGER,
    mutated_result_id INTEGER,
    suggested_config TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'new'
);
"""

_CREATE_INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_results_pair
    ON backtest_results(exchange_name, ticker, market_type, timeframe, strategy, created_at);

CREATE INDEX IF NOT EXISTS idx_suggestions_pair
    ON optimization_suggestions(exchange_name, ticker, market_type, created_at);
"""


def validate_table_name(name: str) -> str:
    """Return name if it is a safe SQL identifier.

    Raises:
        ValueError: If the name contains anything but letters, digits and underscores.
    """
    if not _TABLE_NAME_RE.match(name):
        raise ValueError(f"Invalid table name: {name!r}")
    return name


class TradingDatabase:
    """Async SQLite connection manager.

    Manages database lifecycle including schema creation, WAL mode
    configuration, and clean resource cleanup.

    Usage:
        async with TradingDatabase("data/dcabot.db") as database:
            repo = PositionRepository(database)
            ...
    """

    def __init__(self, db_path: str = "data/dcabot.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    @property
    def db(self) -> aiosqlite.Connection:
        """Access the raw aiosqlite connection.

        Raises RuntimeError if not connected.
        """
        if self._connection is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    async def connect(self) -> None:
        """Open database connection, configure pragmas, and create schema."""
        if self._db_path != ":memory:":
            db_dir = os.path.dirname(self._db_path)
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)

        self._connection = await aiosqlite.connect(self._db_path)

        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")

        await self._create_tables()
        await self._ensure_schema_version()

        logger.info("database_connected", db_path=self._db_path)

    async def close(self) -> None:
        """Close the database connection if open."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("database_closed", db_path=self._db_path)

    async def create_positions_table(self, table: str) -> None:
        """Create a positions table (live or disposable backtest copy)."""
        validate_table_name(table)
        await self.db.executescript(_POSITIONS_TABLE_SQL.format(table=table))
        await self.db.commit()

    async def drop_table(self, table: str) -> None:
        validate_table_name(table)
        if table == POSITIONS_TABLE:
            raise ValueError("Refusing to drop the live positions table")
        await self.db.execute(f"DROP TABLE IF EXISTS {table}")
        await self.db.commit()
        logger.debug("table_dropped", table=table)

    async def _create_tables(self) -> None:
        assert self._connection is not None
        await self._connection.executescript(_CREATE_TABLES_SQL)
        await self._connection.executescript(_CREATE_INDEXES_SQL)
        await self._connection.executescript(
            _POSITIONS_TABLE_SQL.format(table=POSITIONS_TABLE)
        )
        await self._connection.commit()

    async def _ensure_schema_version(self) -> None:
        assert self._connection is not None
        cursor = await self._connection.execute(
            "SELECT version FROM schema_version LIMIT 1"
        )
        row = await cursor.fetchone()
        if row is None:
            await self._connection.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            await self._connection.commit()
            logger.info("schema_version_set", version=SCHEMA_VERSION)

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()
