"""Runtime trading context used to resolve relative order volumes."""

from dataclasses import dataclass
from decimal import Decimal

from dcabot.financial.money import Money


@dataclass(frozen=True)
class TradingContext:
    """Snapshot of account/market state for a single volume resolution.

    Built fresh for every call and never persisted.

    Attributes:
        balance: Account balance in quote currency.
        margin: Available margin in quote currency.
        current_price: Current price of the base currency.
    """

    balance: Decimal
    margin: Decimal
    current_price: Money

    @classmethod
    def empty(cls) -> "TradingContext":
        return cls(Decimal("0"), Decimal("0"), Money(Decimal("0")))

    def is_valid(self) -> bool:
        return (
            self.balance > 0
            or self.margin > 0
            or self.current_price.amount > 0
        )
