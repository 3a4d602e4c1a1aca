"""Tests for backtest analytics: risk ratios, durations and idle time."""

from decimal import Decimal

from dcabot.analytics.metrics import duration_stats, idle_time, merge_intervals, risk_ratios


class TestRiskRatios:
    def test_too_few_trades(self) -> None:
        assert risk_ratios([Decimal("1")] * 4, Decimal("100"), Decimal("30")) is None

    def test_non_positive_balance(self) -> None:
        assert risk_ratios([Decimal("1")] * 5, Decimal("0"), Decimal("30")) is None

    def test_identical_returns_have_no_ratios(self) -> None:
        """Zero deviation leaves Sharpe and Sortino undefined."""
        ratios = risk_ratios([Decimal("2")] * 5, Decimal("100"), Decimal("30"))
        assert ratios is not None
        assert ratios.sharpe is None
        assert ratios.sortino is None
        assert ratios.avg_return == Decimal("0.02")
        assert ratios.std_deviation == Decimal("0")

    def test_positive_mean_positive_sharpe(self) -> None:
        pnls = [Decimal(p) for p in ("10", "-5", "8", "12", "-2", "6")]
        ratios = risk_ratios(pnls, Decimal("1000"), Decimal("365"))
        assert ratios is not None
        assert ratios.sharpe is not None and ratios.sharpe > 0
        assert ratios.sortino is not None and ratios.sortino > ratios.sharpe

    def test_annualization_scales_with_frequency(self) -> None:
        """The same trades over a shorter span annualize to a larger ratio."""
        pnls = [Decimal(p) for p in ("10", "-5", "8", "12", "-2")]
        yearly = risk_ratios(pnls, Decimal("1000"), Decimal("365"))
        monthly = risk_ratios(pnls, Decimal("1000"), Decimal("30"))
        assert yearly is not None and monthly is not None
        assert monthly.sharpe > yearly.sharpe  # type: ignore[operator]


class TestDurations:
    def test_empty(self) -> None:
        assert duration_stats([]) == (0, 0, 0)

    def test_min_max_average(self) -> None:
        assert duration_stats([10, 20, 30]) == (10, 30, 20)


class TestIdleTime:
    def test_overlapping_trades_merge(self) -> None:
        assert merge_intervals([(10, 20), (15, 30), (50, 60)], 0, 100) == [(10, 30), (50, 60)]

    def test_intervals_clipped_to_window(self) -> None:
        assert merge_intervals([(-10, 5), (95, 200)], 0, 100) == [(0, 5), (95, 100)]

    def test_idle_is_uncovered_time(self) -> None:
        assert idle_time([(10, 20), (15, 30)], 0, 100) == 80

    def test_no_trades_all_idle(self) -> None:
        assert idle_time([], 0, 100) == 100

    def test_empty_window(self) -> None:
        assert idle_time([], 100, 100) == 0
