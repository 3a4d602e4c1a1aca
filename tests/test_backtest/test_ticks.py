"""Tests for synthetic intra-candle tick generation."""

from decimal import Decimal

from helpers import make_candle

from dcabot.backtest.ticks import generate_ticks

FOUR_HOURS = 14400


class TestFourTicks:
    def test_bullish_path_visits_low_first(self) -> None:
        """Close >= open: O -> L -> H -> C."""
        ticks = generate_ticks(make_candle(0, "100", "110", "95", "105"), FOUR_HOURS)
        assert [t.price for t in ticks] == [
            Decimal("100"),
            Decimal("95"),
            Decimal("110"),
            Decimal("105"),
        ]

    def test_bearish_path_visits_high_first(self) -> None:
        """Close < open: O -> H -> L -> C."""
        ticks = generate_ticks(make_candle(0, "100", "110", "90", "95"), FOUR_HOURS)
        assert [t.price for t in ticks] == [
            Decimal("100"),
            Decimal("110"),
            Decimal("90"),
            Decimal("95"),
        ]

    def test_timestamps_inside_candle(self) -> None:
        ticks = generate_ticks(make_candle(FOUR_HOURS, "100", "110", "95", "105"), FOUR_HOURS)
        times = [t.timestamp for t in ticks]
        assert times == sorted(set(times))
        assert times[0] == FOUR_HOURS
        assert times[-1] == 2 * FOUR_HOURS - 1

    def test_snapshots_expand_high_low(self) -> None:
        """The partial candle only knows the extremes reached so far."""
        ticks = generate_ticks(make_candle(0, "100", "110", "95", "105", "40"), FOUR_HOURS)
        assert ticks[1].candle.low == Decimal("95")
        assert ticks[1].candle.high == Decimal("100")
        assert ticks[3].candle.high == Decimal("110")
        assert ticks[3].candle.close == Decimal("105")
        assert [t.candle.volume for t in ticks] == [
            Decimal("0"),
            Decimal("10"),
            Decimal("30"),
            Decimal("40"),
        ]

    def test_snapshots_keep_open_time(self) -> None:
        ticks = generate_ticks(make_candle(7200, "1", "2", "0.5", "1.5"), 3600)
        assert all(t.candle.open_time == 7200 and t.candle.open == Decimal("1") for t in ticks)

    def test_fewer_than_four_raised_to_four(self) -> None:
        assert len(generate_ticks(make_candle(0, "1", "2", "0.5", "1.5"), 3600, count=2)) == 4


class TestInterpolatedTicks:
    def test_seven_ticks_interpolate_segments(self) -> None:
        ticks = generate_ticks(make_candle(0, "100", "110", "95", "105"), FOUR_HOURS, count=7)
        assert [t.price for t in ticks] == [
            Decimal("100"),
            Decimal("97.5"),
            Decimal("95"),
            Decimal("102.5"),
            Decimal("110"),
            Decimal("107.5"),
            Decimal("105"),
        ]

    def test_times_strictly_increasing(self) -> None:
        ticks = generate_ticks(make_candle(0, "100", "110", "95", "105"), 60, count=12)
        times = [t.timestamp for t in ticks]
        assert all(a < b for a, b in zip(times, times[1:]))
        assert times[-1] == 59

    def test_last_tick_is_close(self) -> None:
        ticks = generate_ticks(make_candle(0, "100", "110", "95", "105"), FOUR_HOURS, count=10)
        assert ticks[-1].price == Decimal("105")
        assert ticks[-1].candle.volume == Decimal("0")
