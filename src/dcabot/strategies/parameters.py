"""Typed strategy parameters with validation and mutation rules.

Pair configuration carries strategy parameters as plain strings. Every
strategy class declares a ParameterRegistry describing the parameters it
understands: default, type, allowed range and, for numeric parameters, the
mutation step the optimizer uses. The registry resolves raw strings to typed
values once, when the strategy is constructed.
"""

import random
import re
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum

from dcabot.exceptions import ConfigError
from dcabot.financial.entry_volume import EntryVolume
from dcabot.financial.money import to_decimal

_TRUE_VALUES = frozenset({"true", "yes", "1", "on"})
_FALSE_VALUES = frozenset({"false", "no", "0", "off", ""})

_VOLUME_NUMBER_RE = re.compile(r"^\s*([\d.]+)(.*)$")


class ParameterType(str, Enum):
    INT = "int"
    DECIMAL = "decimal"
    BOOL = "bool"
    CHOICE = "choice"
    VOLUME = "volume"  # entry volume string, see EntryVolume.parse
    STRING = "string"


@dataclass(frozen=True)
class ParameterSpec:
    """Declaration of one strategy parameter.

    Attributes:
        name: Configuration key, e.g. "priceDeviation".
        default: Default as a configuration string.
        type: How the raw string is parsed.
        label: Human-readable description.
        minimum: Inclusive lower bound for numeric values.
        maximum: Inclusive upper bound for numeric values.
        step: Mutation step for numeric values; None disables numeric mutation.
        choices: Allowed values for CHOICE parameters.
    """

    name: str
    default: str
    type: ParameterType
    label: str = ""
    minimum: Decimal | None = None
    maximum: Decimal | None = None
    step: Decimal | None = None
    choices: tuple[str, ...] = ()

    @property
    def is_mutable(self) -> bool:
        if self.type in (ParameterType.BOOL, ParameterType.CHOICE):
            return True
        if self.type in (ParameterType.INT, ParameterType.DECIMAL, ParameterType.VOLUME):
            return self.step is not None
        return False

    def parse(self, raw: object) -> object:
        """Convert a raw configuration value to its typed form.

        Raises:
            ConfigError: If the value cannot be parsed or is out of range.
        """
        text = str(raw).strip()
        if self.type is ParameterType.BOOL:
            lowered = text.lower()
            if lowered in _TRUE_VALUES:
                return True
            if lowered in _FALSE_VALUES:
                return False
            raise ConfigError(f"{self.name}: expected a boolean, got {raw!r}")

        if self.type is ParameterType.CHOICE:
            if text not in self.choices:
                raise ConfigError(f"{self.name}: {raw!r} is not one of {list(self.choices)}")
            return text

        if self.type is ParameterType.VOLUME:
            volume = EntryVolume.parse(text)
            self._check_range(volume.value)
            return volume

        if self.type is ParameterType.STRING:
            return text

        try:
            number = to_decimal(text.rstrip("%"))
        except InvalidOperation as e:
            raise ConfigError(f"{self.name}: expected a number, got {raw!r}") from e
        if not number.is_finite():
            raise ConfigError(f"{self.name}: expected a finite number, got {raw!r}")
        self._check_range(number)
        if self.type is ParameterType.INT:
            if number != number.to_integral_value():
                raise ConfigError(f"{self.name}: expected an integer, got {raw!r}")
            return int(number)
        return number

    def _check_range(self, value: Decimal) -> None:
        if self.minimum is not None and value < self.minimum:
            raise ConfigError(f"{self.name}: {value} is below minimum {self.minimum}")
        if self.maximum is not None and value > self.maximum:
            raise ConfigError(f"{self.name}: {value} is above maximum {self.maximum}")

    def mutate(self, raw: str, rng: random.Random) -> str:
        """Return a neighbouring value for hill climbing.

        Numeric values move one step up or down and are clamped to the
        allowed range, so the result can equal the input at a boundary.
        Booleans flip; choices switch to a different option.
        """
        if self.type is ParameterType.BOOL:
            return "false" if self.parse(raw) else "true"

        if self.type is ParameterType.CHOICE:
            others = [c for c in self.choices if c != raw]
            return rng.choice(others) if others else raw

        if not self.is_mutable or self.step is None:
            return raw

        if self.type is ParameterType.VOLUME:
            match = _VOLUME_NUMBER_RE.match(raw)
            if not match:
                return raw
            number, suffix = to_decimal(match.group(1)), match.group(2)
        else:
            number, suffix = to_decimal(str(raw).strip().rstrip("%")), ""

        candidate = number + self.step * rng.choice((-1, 1))
        if self.minimum is not None and candidate < self.minimum:
            candidate = self.minimum
        if self.maximum is not None and candidate > self.maximum:
            candidate = self.maximum
        if candidate == number:
            return raw
        return format_number(candidate) + suffix


def format_number(value: Decimal) -> str:
    """Format a Decimal without exponent or trailing zeros ("1.50" -> "1.5")."""
    return format(value.normalize(), "f")


class ParameterRegistry:
    """Name-keyed collection of ParameterSpec for one strategy class."""

    def __init__(self, specs: Iterable[ParameterSpec] = ()) -> None:
        self._specs: dict[str, ParameterSpec] = {}
        for spec in specs:
            self._specs[spec.name] = spec

    def extend(self, specs: Iterable[ParameterSpec]) -> "ParameterRegistry":
        """Return a new registry with specs added (later specs override)."""
        return ParameterRegistry([*self._specs.values(), *specs])

    def get(self, name: str) -> ParameterSpec | None:
        return self._specs.get(name)

    def names(self) -> list[str]:
        return list(self._specs)

    def mutable_names(self) -> list[str]:
        return [name for name, spec in self._specs.items() if spec.is_mutable]

    def defaults(self) -> dict[str, str]:
        return {name: spec.default for name, spec in self._specs.items()}

    def resolve(self, raw: dict[str, str] | None) -> dict[str, object]:
        """Merge raw values over defaults and parse every declared parameter.

        Keys that are not declared are ignored.

        Raises:
            ConfigError: If any declared parameter has an invalid value.
        """
        values = self.defaults()
        for key, value in (raw or {}).items():
            if key in self._specs:
                values[key] = str(value)
        return {name: self._specs[name].parse(value) for name, value in values.items()}

    def mutate(self, name: str, raw: str, rng: random.Random) -> str:
        spec = self._specs.get(name)
        if spec is None or not spec.is_mutable:
            return raw
        return spec.mutate(raw, rng)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __len__(self) -> int:
        return len(self._specs)
