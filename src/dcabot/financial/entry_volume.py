"""Parser for entry volume configuration strings.

Supported formats:
- "140" or "140 USDT"    -> ABSOLUTE_QUOTE, 140
- "5%"                   -> PERCENT_BALANCE, 5
- "5%M" or "5% margin"   -> PERCENT_MARGIN, 5
- "0.002 BTC" or "2 SOL" -> ABSOLUTE_BASE, 0.002 / 2
"""

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from dcabot.exceptions import ConfigError
from dcabot.financial.context import TradingContext
from dcabot.financial.money import Money, to_decimal
from dcabot.models import EntryVolumeMode

_PERCENT_MARGIN_RE = re.compile(r"^([\d.]+)\s*%\s*m(argin)?$", re.IGNORECASE)
_PERCENT_BALANCE_RE = re.compile(r"^([\d.]+)\s*%$")
_QUOTE_RE = re.compile(r"^([\d.]+)\s*USDT$", re.IGNORECASE)
_BASE_RE = re.compile(r"^([\d.]+)\s+([A-Za-z]{2,10})$")

_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class EntryVolume:
    """A parsed volume specification: numeric value plus interpretation mode."""

    value: Decimal
    mode: EntryVolumeMode
    raw: str = ""

    @classmethod
    def parse(cls, raw: object) -> "EntryVolume":
        """Parse a configured volume value.

        Raises:
            ConfigError: If the value is not a number in any supported format.
        """
        text = str(raw).strip()

        match = _PERCENT_MARGIN_RE.match(text)
        if match:
            return cls(_number(match.group(1), text), EntryVolumeMode.PERCENT_MARGIN, text)

        match = _PERCENT_BALANCE_RE.match(text)
        if match:
            return cls(_number(match.group(1), text), EntryVolumeMode.PERCENT_BALANCE, text)

        match = _QUOTE_RE.match(text)
        if match:
            return cls(_number(match.group(1), text), EntryVolumeMode.ABSOLUTE_QUOTE, text)

        match = _BASE_RE.match(text)
        if match and match.group(2).upper() != "USDT":
            return cls(_number(match.group(1), text), EntryVolumeMode.ABSOLUTE_BASE, text)

        # Plain number: quote currency
        return cls(_number(text, text), EntryVolumeMode.ABSOLUTE_QUOTE, text)

    @property
    def requires_runtime_calculation(self) -> bool:
        return self.mode.requires_runtime_calculation

    def resolve(self, context: TradingContext) -> Money:
        """Convert to a quote-currency amount at the context's balance and price."""
        quote = context.current_price.currency
        if self.mode is EntryVolumeMode.PERCENT_BALANCE:
            return Money(context.balance * self.value / _HUNDRED, quote)
        if self.mode is EntryVolumeMode.PERCENT_MARGIN:
            return Money(context.margin * self.value / _HUNDRED, quote)
        if self.mode is EntryVolumeMode.ABSOLUTE_BASE:
            return Money(self.value * context.current_price.amount, quote)
        return Money(self.value, quote)


def _number(text: str, raw: str) -> Decimal:
    try:
        value = to_decimal(text)
    except InvalidOperation as e:
        raise ConfigError(f"Invalid entry volume: {raw!r}") from e
    if not value.is_finite():
        raise ConfigError(f"Invalid entry volume: {raw!r}")
    return value
