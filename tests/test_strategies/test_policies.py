"""Tests for reusable strategy policies."""

from decimal import Decimal

from helpers import make_candle, make_position

from dcabot.backtest.exchange import BacktestExchange
from dcabot.context import ExecutionContext, SimulationClock
from dcabot.data.database import TradingDatabase
from dcabot.data.positions import PositionRepository
from dcabot.financial.money import Money
from dcabot.financial.position import Position
from dcabot.market import Market
from dcabot.models import Pair, PositionDirection, TimeFrame
from dcabot.strategies.policies import (
    BreakevenLockPolicy,
    Cooldown,
    EMATrendFilter,
    PartialClosePolicy,
    StopLossCooldownPolicy,
    progress_to_take_profit,
    trigger_price,
)

DAY = 86400


def _make_market(pair: Pair, now: int = 0) -> Market:
    # Policies never touch the repository
    return Market(
        pair,
        BacktestExchange(Decimal("1000")),
        PositionRepository(TradingDatabase(":memory:")),
        ExecutionContext.simulated(SimulationClock(now)),
    )


def _winning_long(current: str = "105") -> Position:
    position = make_position(entry="100")
    position.take_profit_price = Money(Decimal("110"))
    position.current_price = Money(Decimal(current))
    return position


class TestCooldown:
    def test_zero_never_blocks(self) -> None:
        cooldown = Cooldown(0)
        cooldown.mark(100)
        assert not cooldown.is_active(100)

    def test_blocks_for_duration(self) -> None:
        cooldown = Cooldown(100)
        assert not cooldown.is_active(0)
        cooldown.mark(1000)
        assert cooldown.is_active(1099)
        assert not cooldown.is_active(1100)

    def test_stop_loss_cooldown_in_minutes(self) -> None:
        policy = StopLossCooldownPolicy(2)
        policy.record_stop_loss(0)
        assert policy.duration_seconds == 120
        assert policy.is_active(119)


class TestTakeProfitProgress:
    def test_long(self) -> None:
        assert progress_to_take_profit(_winning_long("105")) == Decimal("50")

    def test_short(self) -> None:
        position = make_position(direction=PositionDirection.SHORT, entry="100")
        position.take_profit_price = Money(Decimal("90"))
        position.current_price = Money(Decimal("97"))
        assert progress_to_take_profit(position) == Decimal("30")

    def test_without_take_profit(self) -> None:
        assert progress_to_take_profit(make_position()) == Decimal("0")
        assert trigger_price(make_position(), Decimal("50")) is None

    def test_trigger_price(self) -> None:
        assert trigger_price(_winning_long(), Decimal("70")) == Money(Decimal("107"))


class TestPartialClosePolicy:
    def test_runs_once_per_position(self) -> None:
        policy = PartialClosePolicy(True, Decimal("50"), Decimal("70"))
        position = _winning_long("105")
        assert policy.should_trigger(position)
        assert policy.close_volume(position) == Decimal("0.7")
        policy.mark_executed(position)
        assert policy.is_executed(position)
        assert not policy.should_trigger(position)

    def test_below_trigger(self) -> None:
        policy = PartialClosePolicy(True, Decimal("60"), Decimal("70"))
        assert not policy.should_trigger(_winning_long("105"))

    def test_disabled(self) -> None:
        policy = PartialClosePolicy(False, Decimal("0"), Decimal("70"))
        assert not policy.should_trigger(_winning_long("109"))


class TestBreakevenLockPolicy:
    TICK = Decimal("0.01")

    def test_stop_is_one_tick_on_the_loss_side(self) -> None:
        policy = BreakevenLockPolicy(True, Decimal("10"), Decimal("25"))
        long = make_position(entry="100")
        short = make_position(direction=PositionDirection.SHORT, entry="100")
        assert policy.stop_price(long, self.TICK) == Money(Decimal("99.99"))
        assert policy.stop_price(short, self.TICK) == Money(Decimal("100.01"))

    def test_executed_when_stop_near_entry(self) -> None:
        policy = BreakevenLockPolicy(True, Decimal("10"), Decimal("25"))
        position = _winning_long("102")
        assert policy.should_trigger(position, self.TICK)

        position.stop_loss_price = Money(Decimal("95"))
        assert not policy.is_executed(position, self.TICK)
        position.stop_loss_price = Money(Decimal("99.98"))
        assert policy.is_executed(position, self.TICK)
        assert not policy.should_trigger(position, self.TICK)


class TestEMATrendFilter:
    def test_disabled_allows_everything(self, futures_pair: Pair) -> None:
        trend = EMATrendFilter(False, TimeFrame.TF_1DAY, 10)
        assert trend.allows(_make_market(futures_pair), PositionDirection.SHORT)

    def test_missing_data_blocks(self, futures_pair: Pair) -> None:
        trend = EMATrendFilter(True, TimeFrame.TF_1DAY, 10)
        market = _make_market(futures_pair)
        assert not trend.allows(market, PositionDirection.LONG)
        market.set_candles([make_candle(0, "1", "1", "1", "1")])
        assert not trend.allows(market, PositionDirection.LONG)

    def test_uptrend_allows_long_only(self, futures_pair: Pair) -> None:
        trend = EMATrendFilter(True, TimeFrame.TF_1DAY, 10)
        market = _make_market(futures_pair, now=39 * DAY + 3600)
        daily = [
            make_candle(i * DAY, str(100 + i), str(101 + i), str(99 + i), str(100 + i))
            for i in range(40)
        ]
        market.set_timeframe_candles(TimeFrame.TF_1DAY, daily)
        market.set_candles([make_candle(39 * DAY, "139", "140", "138", "139")])

        assert trend.allows(market, PositionDirection.LONG)
        assert not trend.allows(market, PositionDirection.SHORT)

    def test_ignores_future_candles(self, futures_pair: Pair) -> None:
        """Only higher-timeframe candles closed by the clock count."""
        trend = EMATrendFilter(True, TimeFrame.TF_1DAY, 10)
        market = _make_market(futures_pair, now=5 * DAY + 3600)
        daily = [
            make_candle(i * DAY, str(200 - i), str(201 - i), str(199 - i), str(200 - i))
            for i in range(40)
        ]
        market.set_timeframe_candles(TimeFrame.TF_1DAY, daily)
        market.set_candles([make_candle(5 * DAY, "195", "196", "194", "195")])

        # Only five closed daily candles, fewer than the EMA period
        assert not trend.allows(market, PositionDirection.SHORT)

    def test_forming_candle_close_not_visible(self, futures_pair: Pair) -> None:
        """The still-open day's final close must not steer today's entries."""
        trend = EMATrendFilter(True, TimeFrame.TF_1DAY, 10)
        market = _make_market(futures_pair, now=39 * DAY + 4 * 3600)
        daily = [make_candle(i * DAY, "100", "100", "100", "100") for i in range(39)]
        daily.append(make_candle(39 * DAY, "100", "200", "100", "200"))
        market.set_timeframe_candles(TimeFrame.TF_1DAY, daily)
        market.set_candles([make_candle(39 * DAY, "100", "100", "100", "100")])

        assert not trend.allows(market, PositionDirection.LONG)

    def test_candle_visible_once_closed(self, futures_pair: Pair) -> None:
        trend = EMATrendFilter(True, TimeFrame.TF_1DAY, 10)
        market = _make_market(futures_pair, now=40 * DAY)
        daily = [make_candle(i * DAY, "100", "100", "100", "100") for i in range(39)]
        daily.append(make_candle(39 * DAY, "100", "200", "100", "200"))
        market.set_timeframe_candles(TimeFrame.TF_1DAY, daily)
        market.set_candles([make_candle(40 * DAY, "200", "200", "200", "200")])

        assert trend.allows(market, PositionDirection.LONG)
