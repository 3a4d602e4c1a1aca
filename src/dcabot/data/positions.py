"""Position persistence.

Rows are keyed by (exchange_name, ticker, market_type); a partial unique
index guarantees at most one active (pending/open) row per key.

CRITICAL: All monetary values stored as TEXT in SQLite, restored as Decimal on read.
"""

from decimal import Decimal

import aiosqlite

from dcabot.data.database import POSITIONS_TABLE, TradingDatabase, validate_table_name
from dcabot.financial.money import Money
from dcabot.financial.position import Position
from dcabot.logging import get_logger
from dcabot.models import (
    MarketType,
    PositionDirection,
    PositionFinishReason,
    PositionStatus,
)

logger = get_logger(__name__)

_COLUMNS = (
    "exchange_name",
    "ticker",
    "market_type",
    "direction",
    "status",
    "base_currency",
    "quote_currency",
    "initial_entry_price",
    "average_entry_price",
    "current_price",
    "volume",
    "expected_profit_percent",
    "take_profit_price",
    "expected_stop_loss_percent",
    "stop_loss_price",
    "entry_order_id",
    "finish_reason",
    "created_at",
    "updated_at",
    "finished_at",
)

_ACTIVE_STATUSES = (PositionStatus.PENDING.value, PositionStatus.OPEN.value)


class PositionRepository:
    """Typed read/write access to one positions table.

    Args:
        database: Connected TradingDatabase.
        table: Table name; "positions" for live trading, a disposable
            backtest_positions_<suffix> table for a backtest run.
    """

    def __init__(self, database: TradingDatabase, table: str = POSITIONS_TABLE) -> None:
        self._database = database
        self._table = validate_table_name(table)

    @property
    def table(self) -> str:
        return self._table

    async def save(self, position: Position) -> None:
        """Insert a new row or update the existing one; assigns position.id."""
        values = _to_row(position)
        if position.id is None:
            placeholders = ", ".join("?" for _ in _COLUMNS)
            cursor = await self._database.db.execute(
                f"INSERT INTO {self._table} ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                values,
            )
            position.id = cursor.lastrowid
        else:
            assignments = ", ".join(f"{c} = ?" for c in _COLUMNS)
            await self._database.db.execute(
                f"UPDATE {self._table} SET {assignments} WHERE id = ?",
                (*values, position.id),
            )
        await self._database.db.commit()

    async def find_active(
        self, exchange_name: str, ticker: str, market_type: MarketType
    ) -> Position | None:
        """Return the pending/open position for a market key, if any."""
        cursor = await self._database.db.execute(
            f"SELECT id, {', '.join(_COLUMNS)} FROM {self._table} "
            "WHERE exchange_name = ? AND ticker = ? AND market_type = ? "
            "AND status IN (?, ?) ORDER BY id DESC LIMIT 1",
            (exchange_name, ticker, market_type.value, *_ACTIVE_STATUSES),
        )
        row = await cursor.fetchone()
        return _from_row(row) if row else None

    async def list_positions(
        self,
        exchange_name: str | None = None,
        ticker: str | None = None,
        statuses: list[PositionStatus] | None = None,
    ) -> list[Position]:
        """Return positions ordered by creation, optionally filtered."""
        clauses: list[str] = []
        params: list[object] = []
        if exchange_name is not None:
            clauses.append("exchange_name = ?")
            params.append(exchange_name)
        if ticker is not None:
            clauses.append("ticker = ?")
            params.append(ticker)
        if statuses:
            clauses.append(f"status IN ({', '.join('?' for _ in statuses)})")
            params.extend(s.value for s in statuses)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

        cursor = await self._database.db.execute(
            f"SELECT id, {', '.join(_COLUMNS)} FROM {self._table}{where} "
            "ORDER BY created_at ASC, id ASC",
            params,
        )
        rows = await cursor.fetchall()
        return [_from_row(r) for r in rows]

    async def count_by_status(self) -> dict[PositionStatus, int]:
        cursor = await self._database.db.execute(
            f"SELECT status, COUNT(*) FROM {self._table} GROUP BY status"
        )
        rows = await cursor.fetchall()
        return {PositionStatus(status): count for status, count in rows}


def _opt_amount(money: Money | None) -> str | None:
    return str(money.amount) if money is not None else None


def _to_row(p: Position) -> tuple:
    return (
        p.exchange_name,
        p.ticker,
        p.market_type.value,
        p.direction.value,
        p.status.value,
        p.base_currency,
        p.quote_currency,
        str(p.initial_entry_price.amount),
        str(p.average_entry_price.amount),
        str(p.current_price.amount),
        str(p.volume.amount),
        str(p.expected_profit_percent),
        _opt_amount(p.take_profit_price),
        str(p.expected_stop_loss_percent),
        _opt_amount(p.stop_loss_price),
        p.entry_order_id,
        p.finish_reason.value if p.finish_reason else None,
        p.created_at,
        p.updated_at,
        p.finished_at,
    )


def _from_row(row: aiosqlite.Row | tuple) -> Position:
    (
        row_id,
        exchange_name,
        ticker,
        market_type,
        direction,
        status,
        base,
        quote,
        initial_entry,
        average_entry,
        current,
        volume,
        expected_profit,
        take_profit,
        expected_stop_loss,
        stop_loss,
        entry_order_id,
        finish_reason,
        created_at,
        updated_at,
        finished_at,
    ) = row
    return Position(
        id=row_id,
        exchange_name=exchange_name,
        ticker=ticker,
        market_type=MarketType(market_type),
        direction=PositionDirection(direction),
        status=PositionStatus(status),
        initial_entry_price=Money(Decimal(initial_entry), quote),
        average_entry_price=Money(Decimal(average_entry), quote),
        current_price=Money(Decimal(current), quote),
        volume=Money(Decimal(volume), base),
        expected_profit_percent=Decimal(expected_profit),
        take_profit_price=Money(Decimal(take_profit), quote) if take_profit else None,
        expected_stop_loss_percent=Decimal(expected_stop_loss),
        stop_loss_price=Money(Decimal(stop_loss), quote) if stop_loss else None,
        entry_order_id=entry_order_id,
        finish_reason=PositionFinishReason(finish_reason) if finish_reason else None,
        created_at=created_at,
        updated_at=updated_at,
        finished_at=finished_at,
    )
