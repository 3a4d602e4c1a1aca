"""Structured logging for the trader, backtester and optimizer (structlog)."""

import logging
import os
from decimal import Decimal

import structlog

#: Third-party loggers that are only interesting at WARNING and above.
QUIET_LOGGERS = ("ccxt", "aiosqlite", "asyncio", "urllib3")


def _stringify_decimals(
    logger: object, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Render Decimal values as plain strings so JSON output stays exact."""
    for key, value in event_dict.items():
        if isinstance(value, Decimal):
            event_dict[key] = str(value)
    return event_dict


def setup_logging(log_level: str = "INFO", log_format: str | None = None) -> None:
    """Route structlog and stdlib logging through one rendered handler.

    Context bound with bind_simulation_context() (sim_time, ticker, run) is
    merged into every event, so a replayed trade can be traced back to the
    simulated candle that produced it.

    Args:
        log_level: Root level name, e.g. "DEBUG".
        log_format: "json" or "console"; falls back to the LOG_FORMAT
            environment variable, then to "console".
    """
    fmt = (log_format or os.environ.get("LOG_FORMAT", "console")).lower()

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _stringify_decimals,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    renderer: structlog.types.Processor
    if fmt == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_simulation_context(**values: object) -> None:
    """Attach simulation fields (e.g. sim_time, ticker, run) to all log events."""
    structlog.contextvars.bind_contextvars(**values)


def clear_simulation_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)
