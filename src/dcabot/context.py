"""Execution context threaded through Market, strategies and positions.

Replaces a process-wide "is this a backtest" switch: every component that
needs the current time, a logger, or to know whether it runs in simulation
receives an ExecutionContext explicitly.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from dcabot.logging import get_logger


class SimulationClock:
    """Manually advanced clock for deterministic backtest replay.

    Never reads wall-clock time. The backtest engine calls set() once per
    synthetic tick.
    """

    def __init__(self, start: int = 0) -> None:
        self._now = start

    def set(self, timestamp: int) -> None:
        self._now = timestamp

    def __call__(self) -> int:
        return self._now


@dataclass
class ExecutionContext:
    """Clock source, log sink and simulation flag for one engine instance.

    Attributes:
        clock: Returns the current Unix time in whole seconds.
        logger: Structured logger all engine components log through.
        simulation: True when running inside the backtester/optimizer.
        event_sink: Optional consumer of simulation events (type, payload).
    """

    clock: Callable[[], int]
    logger: structlog.stdlib.BoundLogger
    simulation: bool = False
    event_sink: Callable[[str, dict[str, Any]], None] | None = None

    @classmethod
    def live(cls, name: str = "dcabot") -> "ExecutionContext":
        return cls(clock=lambda: int(time.time()), logger=get_logger(name))

    @classmethod
    def simulated(
        cls,
        clock: SimulationClock,
        name: str = "dcabot.backtest",
        event_sink: Callable[[str, dict[str, Any]], None] | None = None,
    ) -> "ExecutionContext":
        return cls(
            clock=clock,
            logger=get_logger(name).bind(simulation=True),
            simulation=True,
            event_sink=event_sink,
        )

    def now(self) -> int:
        return self.clock()

    def emit(self, event: str, **payload: Any) -> None:
        """Forward an event to the sink, if one is attached."""
        if self.event_sink is not None:
            self.event_sink(event, payload)
