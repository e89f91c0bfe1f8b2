"""Line-pair tokeniser for ASCII DXF."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from geo_import.core.exceptions import RecordError, StructuralError
from geo_import.decoders.dxf._group_codes import coerce_group_value

if TYPE_CHECKING:
    from collections.abc import Iterator

    from geo_import.decoders.dxf._group_codes import GroupValue

BINARY_SENTINEL = "AutoCAD Binary DXF"


@dataclass(frozen=True, slots=True)
class GroupToken:
    """One validated ``(code, value)`` pair.

    Attributes:
        code: Integer group code.
        value: Value coerced to the code's kind.
        index: Zero-based pair position in the stream.
    """

    code: int
    value: GroupValue
    index: int


def tokenize(text: str) -> Iterator[GroupToken | RecordError]:
    """Yield tokens (or errors for dropped pairs) in stream order.

    Raises:
        StructuralError: If the input is empty, binary DXF, or its first
            pair does not start with an integer group code.
    """
    if text.startswith(BINARY_SENTINEL):
        msg = "Binary DXF is not supported"
        raise StructuralError(msg, stage="decode_dxf")

    lines = text.splitlines()
    if not any(line.strip() for line in lines):
        msg = "DXF input is empty"
        raise StructuralError(msg, stage="decode_dxf")

    for index, start in enumerate(range(0, len(lines), 2)):
        code_line = lines[start].strip()
        if start + 1 >= len(lines):
            if code_line:
                yield RecordError(
                    f"Group code {code_line!r} at line {start + 1} has no value line",
                    record_index=index,
                    stage="decode_dxf",
                )
            return

        try:
            code = int(code_line)
        except ValueError:
            if index == 0:
                msg = f"DXF does not start with a group code: {code_line[:40]!r}"
                raise StructuralError(msg, stage="decode_dxf") from None
            yield RecordError(
                f"Invalid group code {code_line!r} at line {start + 1}",
                record_index=index,
                stage="decode_dxf",
            )
            continue

        try:
            value = coerce_group_value(code, lines[start + 1], record_index=index)
        except RecordError as exc:
            yield exc
            continue
        yield GroupToken(code=code, value=value, index=index)
