"""Money value object with directional percentage arithmetic.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from dataclasses import dataclass
from decimal import Decimal

from dcabot.exceptions import CurrencyMismatchError
from dcabot.models import PositionDirection

#: Amounts below this are treated as zero (exchange dust).
DUST_THRESHOLD = Decimal("0.0001")

_HUNDRED = Decimal("100")


def to_decimal(value: object) -> Decimal:
    """Convert int/str/float/Decimal to Decimal without float artifacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(str(value))


@dataclass(frozen=True)
class Money:
    """An amount tagged with a currency.

    Every arithmetic method returns a new instance. Mixing currencies in
    add/subtract/compare is a programmer error and raises CurrencyMismatchError.
    """

    amount: Decimal
    currency: str = "USDT"

    @classmethod
    def of(cls, value: object, currency: str = "USDT") -> "Money":
        return cls(to_decimal(value), currency)

    def _check_currency(self, other: "Money") -> None:
        if self.currency != other.currency:
            raise CurrencyMismatchError(
                f"Cannot combine {self.currency} with {other.currency}"
            )

    def add(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(self.amount + other.amount, self.currency)

    def subtract(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(self.amount - other.amount, self.currency)

    __add__ = add
    __sub__ = subtract

    def multiply(self, factor: object) -> "Money":
        return Money(self.amount * to_decimal(factor), self.currency)

    def modify_by_percent(self, percent: object) -> "Money":
        """Return amount * (1 + percent/100)."""
        p = to_decimal(percent)
        return Money(self.amount * (Decimal("1") + p / _HUNDRED), self.currency)

    def modify_by_percent_with_direction(
        self, percent: object, direction: PositionDirection
    ) -> "Money":
        """Move the amount in the favorable direction of a position.

        For LONG, +p raises the price; for SHORT, +p lowers it. This is how
        take-profit (positive p) and stop-loss (negative p) prices are derived.
        """
        return self.modify_by_percent(to_decimal(percent) * direction.multiplier)

    def percent_difference(self, other: "Money") -> Decimal:
        """Return (other - self) / self * 100, or 0 when self is zero."""
        if self.amount == 0:
            return Decimal("0")
        return (other.amount - self.amount) / self.amount * _HUNDRED

    def is_less_than(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount < other.amount

    def is_zero(self) -> bool:
        return abs(self.amount) < DUST_THRESHOLD

    def format(self, places: int = 4) -> str:
        return f"{self.amount:.{places}f} {self.currency}"

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"
