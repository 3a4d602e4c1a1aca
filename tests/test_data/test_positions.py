"""Tests for PositionRepository.

Verifies:
- save() assigns an id and later updates the same row
- find_active() only returns pending/open rows of the market key
- At most one active row per (exchange, ticker, market type)
- Monetary fields survive the TEXT round trip as exact Decimals
"""

import sqlite3
from decimal import Decimal

import pytest
from helpers import make_position

from dcabot.data.database import TradingDatabase
from dcabot.data.positions import PositionRepository
from dcabot.financial.money import Money
from dcabot.models import MarketType, PositionFinishReason, PositionStatus


class TestPositionRepository:
    @pytest.mark.asyncio
    async def test_save_assigns_id_and_loads_back(self) -> None:
        async with TradingDatabase(":memory:") as database:
            repo = PositionRepository(database)
            position = make_position(entry="101.25", volume="0.123")
            position.take_profit_price = Money(Decimal("110.5"))
            await repo.save(position)
            assert position.id is not None

            loaded = await repo.find_active("backtest", "BTC/USDT", MarketType.FUTURES)
        assert loaded is not None
        assert loaded.id == position.id
        assert loaded.average_entry_price == Money(Decimal("101.25"), "USDT")
        assert loaded.volume == Money(Decimal("0.123"), "BTC")
        assert loaded.take_profit_price == Money(Decimal("110.5"), "USDT")
        assert loaded.stop_loss_price is None

    @pytest.mark.asyncio
    async def test_update_in_place(self) -> None:
        async with TradingDatabase(":memory:") as database:
            repo = PositionRepository(database)
            position = make_position()
            await repo.save(position)
            first_id = position.id

            position.mark_finished(500, PositionFinishReason.TAKE_PROFIT_MARKET)
            await repo.save(position)

            assert position.id == first_id
            assert await repo.find_active("backtest", "BTC/USDT", MarketType.FUTURES) is None
            (stored,) = await repo.list_positions()
        assert stored.status is PositionStatus.FINISHED
        assert stored.finish_reason is PositionFinishReason.TAKE_PROFIT_MARKET
        assert stored.finished_at == 500

    @pytest.mark.asyncio
    async def test_single_active_row_per_key(self) -> None:
        async with TradingDatabase(":memory:") as database:
            repo = PositionRepository(database)
            await repo.save(make_position())
            with pytest.raises(sqlite3.IntegrityError):
                await repo.save(make_position(status=PositionStatus.PENDING))

    @pytest.mark.asyncio
    async def test_finished_rows_do_not_block_new_position(self) -> None:
        async with TradingDatabase(":memory:") as database:
            repo = PositionRepository(database)
            old = make_position()
            old.mark_finished(10)
            await repo.save(old)
            await repo.save(make_position(created_at=20))

            counts = await repo.count_by_status()
        assert counts == {PositionStatus.FINISHED: 1, PositionStatus.OPEN: 1}

    @pytest.mark.asyncio
    async def test_find_active_is_scoped_to_key(self) -> None:
        async with TradingDatabase(":memory:") as database:
            repo = PositionRepository(database)
            await repo.save(make_position(ticker="ETH/USDT"))
            assert await repo.find_active("backtest", "BTC/USDT", MarketType.FUTURES) is None
            assert await repo.find_active("other", "ETH/USDT", MarketType.FUTURES) is None
            assert await repo.find_active("backtest", "ETH/USDT", MarketType.SPOT) is None

    @pytest.mark.asyncio
    async def test_list_filters(self) -> None:
        async with TradingDatabase(":memory:") as database:
            repo = PositionRepository(database)
            finished = make_position(created_at=1)
            finished.mark_finished(5)
            await repo.save(finished)
            await repo.save(make_position(created_at=2))
            await repo.save(make_position(ticker="ETH/USDT", created_at=3))

            btc = await repo.list_positions(ticker="BTC/USDT")
            active = await repo.list_positions(statuses=[PositionStatus.OPEN])
        assert [p.created_at for p in btc] == [1, 2]
        assert [p.ticker for p in active] == ["BTC/USDT", "ETH/USDT"]

    @pytest.mark.asyncio
    async def test_disposable_table_is_isolated(self) -> None:
        """Rows in a backtest table never show up in the live table."""
        async with TradingDatabase(":memory:") as database:
            await database.create_positions_table("backtest_positions_t1")
            sim = PositionRepository(database, "backtest_positions_t1")
            live = PositionRepository(database)
            await sim.save(make_position())

            assert sim.table == "backtest_positions_t1"
            assert await live.list_positions() == []
            assert len(await sim.list_positions()) == 1

    def test_rejects_unsafe_table_name(self) -> None:
        with pytest.raises(ValueError):
            PositionRepository(None, "positions; --")  # type: ignore[arg-type]
