"""Financial primitives: Money, trading context, DCA grids and positions."""

from dcabot.financial.context import TradingContext
from dcabot.financial.entry_volume import EntryVolume
from dcabot.financial.grid import DCAOrderGrid, DCAOrderLevel, OrderMapEntry
from dcabot.financial.money import Money, to_decimal
from dcabot.financial.position import Position

__all__ = [
    "DCAOrderGrid",
    "DCAOrderLevel",
    "EntryVolume",
    "Money",
    "OrderMapEntry",
    "Position",
    "TradingContext",
    "to_decimal",
]
