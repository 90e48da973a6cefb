"""Unit conversion tool: length, mass, time, volume and temperature."""

from __future__ import annotations

import math
from typing import Any, NamedTuple

from teleassist.ai.tools.base import Tool, format_number
from teleassist.errors import ToolExecutionError


class UnitMeta(NamedTuple):
    kind: str
    to_base: float


def _units(kind: str, to_base: float, *names: str) -> dict[str, UnitMeta]:
    return {name: UnitMeta(kind, to_base) for name in names}


LINEAR_UNITS: dict[str, UnitMeta] = {
    **_units("length", 1, "m", "meter", "meters"),
    **_units("length", 1000, "km", "kilometer", "kilometers"),
    **_units("length", 0.01, "cm"),
    **_units("length", 0.001, "mm"),
    **_units("length", 1609.344, "mi", "mile", "miles"),
    **_units("length", 0.3048, "ft", "foot", "feet"),
    **_units("length", 0.0254, "in", "inch", "inches"),
    **_units("mass", 1, "kg"),
    **_units("mass", 0.001, "g", "gram", "grams"),
    **_units("mass", 0.45359237, "lb", "lbs", "pound", "pounds"),
    **_units("mass", 0.028349523125, "oz"),
    **_units("time", 1, "s", "sec", "second", "seconds"),
    **_units("time", 60, "min", "minute", "minutes"),
    **_units("time", 3600, "h", "hr", "hour", "hours"),
    **_units("time", 86400, "day", "days"),
    **_units("volume", 1, "l", "liter", "liters"),
    **_units("volume", 0.001, "ml"),
    **_units("volume", 3.785411784, "gal"),
}

# Celsius is the pivot for temperature conversions.
_TEMPERATURE_UNITS = {
    "c": "c", "celsius": "c",
    "f": "f", "fahrenheit": "f",
    "k": "k", "kelvin": "k",
}


def _normalize_unit(unit: str) -> str:
    return "".join(unit.split()).lower()


def _to_celsius(value: float, unit: str) -> float:
    if unit == "f":
        return (value - 32) * 5 / 9
    if unit == "k":
        return value - 273.15
    return value


def _from_celsius(value: float, unit: str) -> float:
    if unit == "f":
        return value * 9 / 5 + 32
    if unit == "k":
        return value + 273.15
    return value


def convert_unit(value: float, from_unit: str, to_unit: str) -> float:
    """Convert ``value`` between two units of the same kind."""
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ToolExecutionError("Value must be a finite number.")

    from_key = _normalize_unit(from_unit)
    to_key = _normalize_unit(to_unit)

    from_temp = _TEMPERATURE_UNITS.get(from_key)
    to_temp = _TEMPERATURE_UNITS.get(to_key)
    if from_temp or to_temp:
        if not (from_temp and to_temp):
            raise ToolExecutionError("Temperature units can only be converted to temperature units.")
        return _from_celsius(_to_celsius(value, from_temp), to_temp)

    from_meta = LINEAR_UNITS.get(from_key)
    to_meta = LINEAR_UNITS.get(to_key)
    if from_meta is None or to_meta is None:
        raise ToolExecutionError("Unsupported unit. Use common units like m, km, ft, kg, lb, l, ml, min.")
    if from_meta.kind != to_meta.kind:
        raise ToolExecutionError(f"Cannot convert {from_meta.kind} to {to_meta.kind}.")

    return value * from_meta.to_base / to_meta.to_base


class UnitConvertTool(Tool):
    @property
    def name(self) -> str:
        return "unit_convert"

    @property
    def description(self) -> str:
        return "Convert values between common units."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "value": {"type": "number"},
                "from": {"type": "string"},
                "to": {"type": "string"},
            },
            "required": ["value", "from", "to"],
        }

    async def execute(self, **kwargs: Any) -> str:
        try:
            value = float(kwargs.get("value"))  # type: ignore[arg-type]
        except (TypeError, ValueError) as e:
            raise ToolExecutionError("Value must be a finite number.") from e
        from_unit = str(kwargs.get("from") or "")
        to_unit = str(kwargs.get("to") or "")
        result = convert_unit(value, from_unit, to_unit)
        return f"{format_number(value)} {from_unit} = {format_number(result)} {to_unit}"
