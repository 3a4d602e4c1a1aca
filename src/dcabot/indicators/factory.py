"""Indicator construction by name.

build_indicator() never raises: configuration problems come back as Err so
the caller can log and skip the indicator.
"""

from decimal import InvalidOperation

from dcabot.financial.money import to_decimal
from dcabot.indicators.base import Err, Indicator, IndicatorBuild, Ok
from dcabot.indicators.ema import EMA
from dcabot.indicators.rsi import RSI

_INDICATORS: dict[str, type[Indicator]] = {
    RSI.name: RSI,
    EMA.name: EMA,
}


def available_indicators() -> list[str]:
    return sorted(_INDICATORS)


def build_indicator(name: str, params: dict[str, object] | None = None) -> IndicatorBuild:
    """Build an indicator from its registry name and raw parameters.

    Args:
        name: Registry name, e.g. "RSI".
        params: Raw parameters; "period" must be a positive integer, other
            numeric parameters are converted to Decimal.

    Returns:
        Ok with the indicator, or Err describing what is wrong.
    """
    cls = _INDICATORS.get(name)
    if cls is None:
        return Err(name, f"Unknown indicator: {name}")

    kwargs: dict[str, object] = {}
    for key, raw in (params or {}).items():
        try:
            if key == "period":
                period = int(str(raw))
                if period < 1:
                    return Err(name, f"period must be positive, got {raw}")
                kwargs[key] = period
            else:
                kwargs[key] = to_decimal(raw)
        except (ValueError, InvalidOperation):
            return Err(name, f"Invalid value for {key}: {raw!r}")

    try:
        return Ok(cls(**kwargs))  # type: ignore[arg-type]
    except TypeError as e:
        return Err(name, str(e))
