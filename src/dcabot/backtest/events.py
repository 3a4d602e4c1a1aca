"""JSONL event stream for backtest runs.

One JSON object per line with a "type" field. The file is opened in append
mode and flushed after every record so an external viewer can tail it while
the simulation runs. Decimals are written as strings.
"""

import json
from decimal import Decimal
from pathlib import Path
from typing import IO, Any

from dcabot.models import Candle


def _default(value: object) -> object:
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class BacktestEventWriter:
    """Appends typed simulation events to a JSONL file.

    Usable as a context manager; also callable as an ExecutionContext
    event sink via emit().
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._fh: IO[str] | None = self._path.open("a", encoding="utf-8")

    @property
    def path(self) -> Path:
        return self._path

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    def __enter__(self) -> "BacktestEventWriter":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def write(self, event_type: str, data: dict[str, Any] | None = None) -> None:
        if self._fh is None:
            return
        record = dict(data or {})
        record["type"] = event_type
        self._fh.write(json.dumps(record, default=_default, ensure_ascii=False) + "\n")
        self._fh.flush()

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        """Event-sink entry point for ExecutionContext.emit()."""
        self.write(event_type, payload)

    def write_init(
        self,
        pair: str,
        timeframe: str,
        strategy: str,
        params: dict[str, str],
        initial_balance: Decimal,
        total_candles: int,
    ) -> None:
        self.write(
            "init",
            {
                "pair": pair,
                "timeframe": timeframe,
                "strategy": strategy,
                "params": params,
                "initialBalance": initial_balance,
                "totalCandles": total_candles,
            },
        )

    def write_candle(self, candle: Candle, indicators: dict[str, str] | None = None) -> None:
        self.write(
            "candle",
            {
                "t": candle.open_time,
                "o": candle.open,
                "h": candle.high,
                "l": candle.low,
                "c": candle.close,
                "v": candle.volume,
                "ind": indicators or {},
            },
        )

    def write_position_close(self, price: Decimal, pnl: Decimal, reason: str, time: int) -> None:
        self.write("position_close", {"price": price, "pnl": pnl, "reason": reason, "time": time})

    def write_balance(self, value: Decimal) -> None:
        self.write("balance", {"value": value})

    def write_progress(self, current: int, total: int) -> None:
        self.write("progress", {"current": current, "total": total})

    def write_result(self, summary: dict[str, Any]) -> None:
        self.write("result", summary)

    def write_error(self, message: str) -> None:
        self.write("error", {"message": message})

    def write_done(self) -> None:
        self.write("done")
