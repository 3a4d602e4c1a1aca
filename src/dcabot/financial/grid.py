"""DCA order grid: pure transformation from strategy parameters to orders.

A grid is an ordered list of levels. Level 0 is the entry order (offset 0);
each subsequent level is an averaging order placed further away from the
entry price. build_order_map() resolves relative volumes against a
TradingContext and expresses every offset as a signed percentage distance
from the entry price (negative for LONG averaging, positive for SHORT).

The grid never clamps prices. Callers reject non-positive computed prices
(see Market.open_position_by_dca_grid).

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from dataclasses import dataclass
from decimal import Decimal

from dcabot.financial.context import TradingContext
from dcabot.financial.entry_volume import EntryVolume
from dcabot.financial.money import Money, to_decimal
from dcabot.models import DCAOffsetMode, EntryVolumeMode, PositionDirection

_HUNDRED = Decimal("100")
_ONE = Decimal("1")


@dataclass(frozen=True)
class DCAOrderLevel:
    """A single level of a DCA grid.

    Attributes:
        raw_volume: Configured volume; meaning depends on volume_mode.
        volume_mode: How raw_volume is converted to quote currency.
        offset_percent: Step offset in percent. Whether it is measured from
            the entry or from the previous level depends on the grid mode.
    """

    raw_volume: Decimal
    volume_mode: EntryVolumeMode
    offset_percent: Decimal

    def resolve_volume(self, context: TradingContext) -> Money:
        """Convert the raw volume into a quote-currency amount."""
        return EntryVolume(self.raw_volume, self.volume_mode).resolve(context)


@dataclass(frozen=True)
class OrderMapEntry:
    """A resolved grid order: quote volume and signed offset from entry, in %."""

    volume: Money
    offset: Decimal


@dataclass(frozen=True)
class DCAOrderGrid:
    """Ordered DCA levels plus the settings that apply to the whole grid."""

    levels: tuple[DCAOrderLevel, ...]
    direction: PositionDirection = PositionDirection.LONG
    offset_mode: DCAOffsetMode = DCAOffsetMode.FROM_ENTRY
    expected_profit: Decimal = Decimal("0")
    always_market_entry: bool = False

    @classmethod
    def from_parameters(
        cls,
        number_of_levels: int,
        entry_volume: object,
        volume_multiplier: object,
        price_deviation: object,
        price_deviation_multiplier: object,
        direction: PositionDirection,
        expected_profit: object,
        offset_mode: DCAOffsetMode = DCAOffsetMode.FROM_ENTRY,
        volume_mode: EntryVolumeMode = EntryVolumeMode.ABSOLUTE_QUOTE,
        always_market_entry: bool = False,
    ) -> "DCAOrderGrid":
        """Build a grid from the classic DCA parameter set.

        Level 0 gets entry_volume and offset 0. Level 1 gets price_deviation.
        Volume is multiplied by volume_multiplier on every level; deviation is
        multiplied by price_deviation_multiplier after each averaging level.

        Args:
            number_of_levels: Total levels including the entry order.
            entry_volume: Raw volume of the entry order.
            volume_multiplier: Volume factor between consecutive levels.
            price_deviation: Offset of the first averaging level, in %.
            price_deviation_multiplier: Offset factor between averaging levels.
            direction: LONG or SHORT.
            expected_profit: Take-profit distance from average entry, in %.
            offset_mode: FROM_ENTRY or FROM_PREVIOUS.
            volume_mode: Interpretation of entry_volume.
            always_market_entry: Fill the entry with a market order.

        Returns:
            A grid with exactly max(number_of_levels, 0) levels.
        """
        volume = to_decimal(entry_volume)
        vol_mult = to_decimal(volume_multiplier)
        deviation = to_decimal(price_deviation)
        dev_mult = to_decimal(price_deviation_multiplier)

        levels: list[DCAOrderLevel] = []
        for level in range(number_of_levels):
            offset = Decimal("0") if level == 0 else deviation
            levels.append(DCAOrderLevel(volume, volume_mode, offset))
            volume *= vol_mult
            if level > 0:
                deviation *= dev_mult

        return cls(
            levels=tuple(levels),
            direction=direction,
            offset_mode=offset_mode,
            expected_profit=to_decimal(expected_profit),
            always_market_entry=always_market_entry,
        )

    def build_order_map(self, context: TradingContext) -> list[OrderMapEntry]:
        """Resolve volumes and convert level offsets to signed offsets from entry."""
        sign = Decimal("-1") if self.direction.is_long else Decimal("1")
        order_map: list[OrderMapEntry] = []

        if self.offset_mode is DCAOffsetMode.FROM_ENTRY:
            total = Decimal("0")
            for level in self.levels:
                total += level.offset_percent
                order_map.append(
                    OrderMapEntry(level.resolve_volume(context), sign * total)
                )
            return order_map

        # FROM_PREVIOUS: each step compounds against the previous level's price
        ratio = _ONE
        for level in self.levels:
            step = level.offset_percent
            if step > 0:
                if self.direction.is_long:
                    ratio *= _ONE - step / _HUNDRED
                else:
                    ratio *= _ONE + step / _HUNDRED
            magnitude = (_ONE - ratio) * _HUNDRED if self.direction.is_long else (ratio - _ONE) * _HUNDRED
            order_map.append(
                OrderMapEntry(level.resolve_volume(context), sign * magnitude)
            )
        return order_map

    def total_volume(self, context: TradingContext) -> Money:
        total = Money(Decimal("0"), context.current_price.currency)
        for level in self.levels:
            total = total + level.resolve_volume(context)
        return total

    @property
    def requires_runtime_calculation(self) -> bool:
        return any(l.volume_mode.requires_runtime_calculation for l in self.levels)

    def is_empty(self) -> bool:
        return not self.levels

    def __len__(self) -> int:
        return len(self.levels)
