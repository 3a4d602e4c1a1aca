"""Dollar-cost averaging strategy family.

With limit orders (the default) the whole grid is placed when the position
opens and the only maintenance is re-issuing the take-profit as the average
entry moves. Without limit orders the entry is a market order and averaging
levels are filled in-process when the price crosses their offset.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from dcabot.financial.position import Position
from dcabot.models import DCAOffsetMode, PositionDirection, PositionMode
from dcabot.strategies.base import BaseStrategy, StrategyValidationResult
from dcabot.strategies.parameters import ParameterRegistry, ParameterSpec, ParameterType
from dcabot.strategies.policies import GridBuilder, GridSettings

if TYPE_CHECKING:
    from dcabot.market import Market

#: Grid levels closer than this to the entry (in %) never trigger a fill.
MIN_LEVEL_OFFSET = Decimal("0.01")

_D = Decimal

DCA_PARAMETERS = ParameterRegistry(
    [
        ParameterSpec("numberOfLevels", "5", ParameterType.INT,
                      "Number of DCA orders including the entry order",
                      minimum=_D(1), maximum=_D(20), step=_D(1)),
        ParameterSpec("initialEntryVolume", "3%", ParameterType.VOLUME,
                      "Entry order volume (USDT, %, %M, or base currency)",
                      minimum=_D(0), step=_D(1)),
        ParameterSpec("volumeMultiplier", "2", ParameterType.DECIMAL,
                      "Volume multiplier for each averaging order",
                      minimum=_D("0.1"), maximum=_D(5), step=_D("0.1")),
        ParameterSpec("priceDeviation", "20", ParameterType.DECIMAL,
                      "Price deviation for first averaging (%)",
                      minimum=_D("0.1"), maximum=_D(90), step=_D("0.5")),
        ParameterSpec("priceDeviationMultiplier", "1.3", ParameterType.DECIMAL,
                      "Price deviation multiplier for subsequent averagings",
                      minimum=_D("0.1"), maximum=_D(5), step=_D("0.1")),
        ParameterSpec("expectedProfit", "1.5", ParameterType.DECIMAL,
                      "Expected profit (%)",
                      minimum=_D("0.1"), maximum=_D(100), step=_D("0.1")),
        ParameterSpec("UseLimitOrders", "true", ParameterType.BOOL,
                      "Place the averaging grid as limit orders"),
        ParameterSpec("offsetMode", DCAOffsetMode.FROM_PREVIOUS.value, ParameterType.CHOICE,
                      "Price offset calculation mode",
                      choices=tuple(m.value for m in DCAOffsetMode)),
        ParameterSpec("alwaysMarketEntry", "true", ParameterType.BOOL,
                      "Always use a market order for the entry"),
    ]
)

DCA_SHORT_PARAMETERS = DCA_PARAMETERS.extend(
    [
        ParameterSpec("numberOfLevelsShort", "6", ParameterType.INT,
                      "Number of DCA orders including the entry order (short)",
                      minimum=_D(1), maximum=_D(20), step=_D(1)),
        ParameterSpec("initialEntryVolumeShort", "10", ParameterType.VOLUME,
                      "Entry order volume (short)",
                      minimum=_D(0), step=_D(1)),
        ParameterSpec("volumeMultiplierShort", "1.5", ParameterType.DECIMAL,
                      "Volume multiplier for each averaging order (short)",
                      minimum=_D("0.1"), maximum=_D(5), step=_D("0.1")),
        ParameterSpec("priceDeviationShort", "10", ParameterType.DECIMAL,
                      "Price deviation for first averaging (%, short)",
                      minimum=_D("0.1"), maximum=_D(90), step=_D("0.5")),
        ParameterSpec("priceDeviationMultiplierShort", "2", ParameterType.DECIMAL,
                      "Price deviation multiplier (short)",
                      minimum=_D("0.1"), maximum=_D(5), step=_D("0.1")),
        ParameterSpec("expectedProfitShort", "1.5", ParameterType.DECIMAL,
                      "Expected profit (%, short)",
                      minimum=_D("0.1"), maximum=_D(100), step=_D("0.1")),
    ]
)


class DCAStrategy(BaseStrategy):
    """Base class for DCA strategies; subclasses supply the entry signal."""

    name = "DCA"
    parameters = DCA_PARAMETERS

    def __init__(self, market: Market, params: dict[str, str] | None = None) -> None:
        super().__init__(market, params)
        p = self.params
        long = GridSettings(
            number_of_levels=p["numberOfLevels"],  # type: ignore[arg-type]
            entry_volume=p["initialEntryVolume"],  # type: ignore[arg-type]
            volume_multiplier=p["volumeMultiplier"],  # type: ignore[arg-type]
            price_deviation=p["priceDeviation"],  # type: ignore[arg-type]
            price_deviation_multiplier=p["priceDeviationMultiplier"],  # type: ignore[arg-type]
            expected_profit=p["expectedProfit"],  # type: ignore[arg-type]
        )
        short = GridSettings(
            number_of_levels=p.get("numberOfLevelsShort", long.number_of_levels),  # type: ignore[arg-type]
            entry_volume=p.get("initialEntryVolumeShort", long.entry_volume),  # type: ignore[arg-type]
            volume_multiplier=p.get("volumeMultiplierShort", long.volume_multiplier),  # type: ignore[arg-type]
            price_deviation=p.get("priceDeviationShort", long.price_deviation),  # type: ignore[arg-type]
            price_deviation_multiplier=p.get(  # type: ignore[arg-type]
                "priceDeviationMultiplierShort", long.price_deviation_multiplier
            ),
            expected_profit=p.get("expectedProfitShort", long.expected_profit),  # type: ignore[arg-type]
        )
        self.use_limit_orders: bool = p["UseLimitOrders"]  # type: ignore[assignment]
        self.grids = GridBuilder(
            long=long,
            short=short,
            offset_mode=DCAOffsetMode(p["offsetMode"]),
            always_market_entry=p["alwaysMarketEntry"],  # type: ignore[arg-type]
        )
        # Highest filled grid index per (position id, direction)
        self._filled_levels: dict[tuple[int, PositionDirection], int] = {}

    def should_short(self) -> bool:
        return False

    async def handle_long(self, market: Market) -> Position | None:
        return await self._open(market, PositionDirection.LONG)

    async def handle_short(self, market: Market) -> Position | None:
        return await self._open(market, PositionDirection.SHORT)

    async def _open(self, market: Market, direction: PositionDirection) -> Position | None:
        grid = self.grids.build(direction)
        if grid.is_empty():
            return None
        if self.use_limit_orders:
            return await market.open_position_by_dca_grid(grid)

        context = await market.trading_context()
        entry_volume = grid.levels[0].resolve_volume(context)
        return await market.open_position(
            direction, entry_volume, take_profit_percent=grid.expected_profit
        )

    async def update_position(self, position: Position) -> None:
        if not position.is_active:
            self._filled_levels.pop(self._level_key(position), None)
            return
        if self.use_limit_orders:
            await position.update_take_profit(self.market)
            return

        entry = position.initial_entry_price.amount
        current = position.current_price.amount
        if entry <= 0 or current <= 0:
            return
        change_percent = (current - entry) / entry * Decimal("100")

        key = self._level_key(position)
        filled = self._filled_levels.get(key, 0)

        grid = self.grids.build(position.direction)
        order_map = grid.build_order_map(await self.market.trading_context())
        for index, level in enumerate(order_map):
            if index <= filled:
                continue
            if abs(level.offset) < MIN_LEVEL_OFFSET:
                continue
            if position.direction.is_long:
                triggered = change_percent <= level.offset
            else:
                triggered = change_percent >= level.offset
            if triggered:
                if await self.market.execute_dca_fill(position, level.volume):
                    self._filled_levels[key] = index
            break

    def filled_level(self, position: Position) -> int:
        return self._filled_levels.get(self._level_key(position), 0)

    @staticmethod
    def _level_key(position: Position) -> tuple[int, PositionDirection]:
        return (position.id if position.id is not None else id(position), position.direction)

    async def validate_exchange_settings(self, market: Market) -> StrategyValidationResult:
        result = StrategyValidationResult()
        if not market.pair.market_type.is_futures:
            return result
        mode = await market.exchange.get_position_mode(market)
        if mode is None:
            result.add_warning(
                "Could not verify position mode on the exchange. "
                "DCA strategy requires Hedge mode (Two-Way)."
            )
        elif mode is not PositionMode.HEDGE:
            result.add_error(
                f"DCA strategy requires Hedge position mode, but the exchange is "
                f"configured as '{mode.value}'."
            )
        return result
