"""Backtest performance calculations.

Pure Decimal analytics over finished trades: risk ratios, trade duration
statistics and idle time. No external dependencies (no pandas, numpy).
"""

from decimal import Decimal

from dcabot.backtest.models import RiskRatios

#: Fewer finished trades than this yields no risk ratios.
MIN_TRADES = 5

_DAYS_PER_YEAR = Decimal("365")


def risk_ratios(
    trade_pnls: list[Decimal],
    initial_balance: Decimal,
    duration_days: Decimal,
) -> RiskRatios | None:
    """Compute annualized Sharpe and Sortino ratios from per-trade PnL.

    Returns are pnl / initial_balance per trade. Deviation uses the
    population formula; the downside deviation only counts returns below
    the mean. Both ratios are scaled by sqrt(trades per year).

    Args:
        trade_pnls: Realized PnL of every finished trade.
        initial_balance: Starting balance.
        duration_days: Simulated span in days.

    Returns:
        RiskRatios, or None with fewer than MIN_TRADES trades or a
        non-positive balance. A ratio whose deviation is zero is None.
    """
    if len(trade_pnls) < MIN_TRADES or initial_balance <= 0:
        return None

    returns = [pnl / initial_balance for pnl in trade_pnls]
    n = Decimal(len(returns))
    mean = sum(returns, Decimal("0")) / n

    std_dev = (sum(((r - mean) ** 2 for r in returns), Decimal("0")) / n).sqrt()
    downside = (
        sum(((r - mean) ** 2 for r in returns if r < mean), Decimal("0")) / n
    ).sqrt()

    if duration_days > 0:
        trades_per_year = n / duration_days * _DAYS_PER_YEAR
    else:
        trades_per_year = n
    factor = trades_per_year.sqrt()

    return RiskRatios(
        sharpe=mean / std_dev * factor if std_dev > 0 else None,
        sortino=mean / downside * factor if downside > 0 else None,
        avg_return=mean,
        std_deviation=std_dev,
    )


def duration_stats(durations: list[int]) -> tuple[int, int, int]:
    """Return (shortest, longest, average) of trade durations in seconds."""
    if not durations:
        return 0, 0, 0
    return min(durations), max(durations), sum(durations) // len(durations)


def merge_intervals(
    intervals: list[tuple[int, int]], start: int, end: int
) -> list[tuple[int, int]]:
    """Clip intervals to [start, end] and merge overlapping ones.

    Empty and inverted intervals are dropped. Returns intervals sorted by start.
    """
    clipped = sorted(
        (max(a, start), min(b, end)) for a, b in intervals if min(b, end) > max(a, start)
    )
    merged: list[tuple[int, int]] = []
    for a, b in clipped:
        if merged and a <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], b))
        else:
            merged.append((a, b))
    return merged


def idle_time(intervals: list[tuple[int, int]], start: int, end: int) -> int:
    """Seconds in [start, end] not covered by any trade interval."""
    if end <= start:
        return 0
    covered = sum(b - a for a, b in merge_intervals(intervals, start, end))
    return (end - start) - covered
