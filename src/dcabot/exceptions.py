"""Custom exceptions for the DCA trading engine.

Only programmer errors are raised across component boundaries. Transient
exchange failures are caught in the driver layer and surfaced as None/False,
and insufficient data prevents a Market or Strategy from being built.
All exceptions live here to avoid circular imports between modules.
"""


class DcaBotError(Exception):
    """Base exception for all engine errors."""


class CurrencyMismatchError(DcaBotError):
    """Raised when Money arithmetic mixes two different currencies."""


class InvalidTransitionError(DcaBotError):
    """Raised when a position status change violates the lifecycle."""


class InvalidTickerError(DcaBotError):
    """Raised when a ticker string cannot be split into base/quote currencies."""


class UnknownStrategyError(DcaBotError):
    """Raised when a strategy name is not present in the strategy registry."""


class ConfigError(DcaBotError):
    """Raised when a strategy parameter or indicator configuration is invalid."""


class InsufficientDataError(DcaBotError):
    """Raised when there is not enough data (candles, prices) to build a component."""


class ExchangeError(DcaBotError):
    """Raised by exchange adapters for transient API failures."""


class PriceUnavailableError(ExchangeError):
    """Raised when a current price cannot be determined for a market."""
