"""Input parsing and display formatting for control-table fields."""

from __future__ import annotations

import math
import re

from mttr.core.errors import NotANumberError, NotAnIntegerError, NotInEnumerationError, OutOfRangeError
from mttr.core.model import FieldSchema, FieldState

_UNIT_RE = re.compile(r"^([\d.]+)\s+(.+)$")


def validate(field: FieldSchema, raw: str | int | float) -> int:
    """Turn user input into a raw field value.

    Checks run in order and the first failure wins: the input must be a
    number, the number must be an integer, the integer must lie in the
    declared range, and for enumerations it must be one of the keys.
    """
    if isinstance(raw, bool):
        raise NotANumberError(field.address, f"{field.name}: '{raw}' is not a number")

    if isinstance(raw, str):
        text = raw.strip()
        if "_" in text:
            raise NotANumberError(field.address, f"{field.name}: '{raw}' is not a number")
        try:
            number: int | float = int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError:
                raise NotANumberError(field.address, f"{field.name}: '{raw}' is not a number") from None
    else:
        number = raw

    if isinstance(number, float):
        if not math.isfinite(number):
            raise NotANumberError(field.address, f"{field.name}: '{raw}' is not a number")
        if not number.is_integer():
            raise NotAnIntegerError(field.address, f"{field.name}: {number} is not an integer")
        number = int(number)

    if field.range is not None:
        low, high = field.range
        if not low <= number <= high:
            raise OutOfRangeError(
                field.address, f"{field.name}: {number} is out of range [{low}, {high}]"
            )
    if field.is_enum and field.value_map is not None and number not in field.value_map:
        allowed = ", ".join(str(k) for k in sorted(field.value_map))
        raise NotInEnumerationError(
            field.address, f"{field.name}: {number} is not one of {allowed}"
        )
    return number


def parse_unit(raw_unit: str | None) -> tuple[float, str]:
    """Split a unit such as ``"0.229 rev/min"`` into ``(0.229, "rev/min")``."""
    if not raw_unit:
        return 1.0, ""
    match = _UNIT_RE.match(raw_unit)
    if match:
        try:
            return float(match.group(1)), match.group(2)
        except ValueError:
            pass
    return 1.0, raw_unit


def format_value(field: FieldSchema, value: int) -> str:
    label = field.label_for(value)
    if label is not None:
        return f"{value} ({label})"
    return str(value)


def format_state(field: FieldSchema, state: FieldState) -> str:
    if state.error is not None:
        return f"ERR ({state.error})"
    if state.value is None:
        return "---"
    return format_value(field, state.value)
