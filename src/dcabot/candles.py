"""Index-addressed candle storage owned by a Market.

Candles never hold references to their neighbours; previous/next lookups are
index arithmetic on the arena. The arena is append-only, except that the
backtester may overwrite the last slot with a partial snapshot of the same
candle while it replays intra-candle ticks.
"""

from collections.abc import Iterable, Iterator
from decimal import Decimal

from dcabot.exceptions import InsufficientDataError
from dcabot.models import Candle


class CandleArena:
    """Ordered, append-only sequence of candles with last-slot overwrite."""

    def __init__(self, candles: Iterable[Candle] = ()) -> None:
        self._candles: list[Candle] = []
        for candle in candles:
            self.append(candle)

    def append(self, candle: Candle) -> None:
        """Append a candle that opens strictly after the current last one.

        Raises:
            ValueError: If the candle is not newer than the last candle.
        """
        if self._candles and candle.open_time <= self._candles[-1].open_time:
            raise ValueError(
                f"Candle at {candle.open_time} is not after "
                f"{self._candles[-1].open_time}"
            )
        self._candles.append(candle)

    def overwrite_last(self, candle: Candle) -> None:
        """Replace the last slot with a snapshot of the same candle.

        Raises:
            InsufficientDataError: If the arena is empty.
            ValueError: If the snapshot has a different open_time.
        """
        if not self._candles:
            raise InsufficientDataError("Cannot overwrite the last candle of an empty arena")
        last = self._candles[-1]
        if candle.open_time != last.open_time:
            raise ValueError(
                f"Snapshot open_time {candle.open_time} does not match "
                f"last candle {last.open_time}"
            )
        self._candles[-1] = candle

    def first(self) -> Candle:
        if not self._candles:
            raise InsufficientDataError("Candle arena is empty")
        return self._candles[0]

    def last(self) -> Candle:
        if not self._candles:
            raise InsufficientDataError("Candle arena is empty")
        return self._candles[-1]

    def previous(self, index: int) -> Candle | None:
        return self._candles[index - 1] if 0 < index < len(self._candles) else None

    def next(self, index: int) -> Candle | None:
        return self._candles[index + 1] if 0 <= index < len(self._candles) - 1 else None

    def tail(self, count: int) -> list[Candle]:
        """Return the last count candles (all of them if fewer)."""
        if count <= 0:
            return []
        return self._candles[-count:]

    def closes(self) -> list[Decimal]:
        return [c.close for c in self._candles]

    def min_price(self) -> Decimal:
        return min(c.low for c in self._candles)

    def max_price(self) -> Decimal:
        return max(c.high for c in self._candles)

    def __len__(self) -> int:
        return len(self._candles)

    def __getitem__(self, index: int) -> Candle:
        return self._candles[index]

    def __iter__(self) -> Iterator[Candle]:
        return iter(self._candles)

    def __bool__(self) -> bool:
        return bool(self._candles)
