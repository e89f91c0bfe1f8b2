"""Static DXF group-code range table and value coercion.

Every group code maps to exactly one value kind through
``GROUP_CODE_RANGES``.  A code outside every range, or a value that does
not fit its kind, is rejected with ``RecordError``; the caller drops the
token and keeps parsing.
"""

from __future__ import annotations

import enum
import math

from geo_import.core.exceptions import RecordError


class ValueKind(enum.Enum):
    """Typed interpretation of a group value."""

    STRING = "string"
    FLOAT = "float"
    INT16 = "int16"
    INT32 = "int32"
    UINT8 = "uint8"
    BOOL = "bool"


#: ``(low, high, kind)`` inclusive ranges, sorted by ``low``.
GROUP_CODE_RANGES: tuple[tuple[int, int, ValueKind], ...] = (
    (0, 9, ValueKind.STRING),
    (10, 59, ValueKind.FLOAT),
    (60, 79, ValueKind.INT16),
    (90, 99, ValueKind.INT32),
    (100, 102, ValueKind.STRING),
    (140, 147, ValueKind.FLOAT),
    (170, 175, ValueKind.INT16),
    (280, 289, ValueKind.UINT8),
    (290, 299, ValueKind.BOOL),
    (300, 369, ValueKind.STRING),
    (370, 389, ValueKind.UINT8),
)

_INT_BOUNDS: dict[ValueKind, tuple[int, int]] = {
    ValueKind.INT16: (-32_768, 32_767),
    ValueKind.INT32: (-2_147_483_648, 2_147_483_647),
    ValueKind.UINT8: (0, 255),
}

GroupValue = str | float | int | bool


def classify_group_code(code: int) -> ValueKind | None:
    """Return the value kind for *code*, or ``None`` when it is not allowed."""
    for low, high, kind in GROUP_CODE_RANGES:
        if low <= code <= high:
            return kind
    return None


def coerce_group_value(code: int, value: str, *, record_index: int = -1) -> GroupValue:
    """Convert a raw value line according to its group code.

    Raises:
        RecordError: If the code is not allowed, the value is empty, or
            the value does not parse within the kind's bounds.
    """
    kind = classify_group_code(code)
    if kind is None:
        msg = f"Group code {code} is not allowed"
        raise RecordError(msg, record_index=record_index, stage="decode_dxf")

    text = value.strip()
    if not text:
        msg = f"Group code {code} has an empty value"
        raise RecordError(msg, record_index=record_index, stage="decode_dxf")

    if kind == ValueKind.STRING:
        return text

    if kind == ValueKind.FLOAT:
        try:
            number = float(text)
        except ValueError:
            msg = f"Group code {code} expects a float, got {text!r}"
            raise RecordError(msg, record_index=record_index, stage="decode_dxf") from None
        if not math.isfinite(number):
            msg = f"Group code {code} value {text!r} is not finite"
            raise RecordError(msg, record_index=record_index, stage="decode_dxf")
        return number

    if kind == ValueKind.BOOL:
        if text not in ("0", "1"):
            msg = f"Group code {code} expects 0 or 1, got {text!r}"
            raise RecordError(msg, record_index=record_index, stage="decode_dxf")
        return text == "1"

    try:
        integer = int(text)
    except ValueError:
        msg = f"Group code {code} expects an integer, got {text!r}"
        raise RecordError(msg, record_index=record_index, stage="decode_dxf") from None
    low, high = _INT_BOUNDS[kind]
    if not low <= integer <= high:
        msg = f"Group code {code} value {integer} outside {low}..{high}"
        raise RecordError(msg, record_index=record_index, stage="decode_dxf")
    return integer
