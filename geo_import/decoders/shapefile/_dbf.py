"""dBASE (.dbf) attribute table reader for shapefile companions.

Only the subset used by shapefiles is supported: character, numeric,
float, logical and date fields.  Other field types are returned as
stripped strings.
"""

from __future__ import annotations

import datetime
import logging
import struct
from dataclasses import dataclass

from geo_import.core.exceptions import StructuralError
from geo_import.decoders.shapefile._constants import (
    DBF_DELETED_FLAG,
    DBF_FALSE_VALUES,
    DBF_FIELD_DESCRIPTOR_LENGTH,
    DBF_HEADER_TERMINATOR,
    DBF_TRUE_VALUES,
)

logger = logging.getLogger("geo_import.decoders.shapefile.dbf")


@dataclass(frozen=True, slots=True)
class DbfField:
    """One field descriptor."""

    name: str
    field_type: str
    length: int
    decimals: int


@dataclass(frozen=True, slots=True)
class DbfTable:
    """Decoded attribute table.

    Attributes:
        fields: Field descriptors in column order.
        records: One attribute dict per row; ``None`` for deleted rows.
    """

    fields: tuple[DbfField, ...]
    records: tuple[dict[str, object] | None, ...]

    def get(self, index: int) -> dict[str, object] | None:
        """Return row *index*, or an empty dict when the table is shorter."""
        if index >= len(self.records):
            return {}
        return self.records[index]


def read_dbf(buffer: bytes, *, encoding: str = "utf-8") -> DbfTable:
    """Decode a whole DBF buffer.

    Raises:
        StructuralError: If the header or field descriptors are truncated.
    """
    if len(buffer) < 32:
        msg = f"DBF too short for header: {len(buffer)} bytes"
        raise StructuralError(msg, stage="decode_dbf")

    record_count, header_length, record_length = struct.unpack_from("<IHH", buffer, 4)

    fields: list[DbfField] = []
    offset = 32
    while offset < header_length and buffer[offset] != DBF_HEADER_TERMINATOR:
        if offset + DBF_FIELD_DESCRIPTOR_LENGTH > len(buffer):
            msg = f"DBF field descriptor truncated at byte {offset}"
            raise StructuralError(msg, stage="decode_dbf")
        raw_name = buffer[offset : offset + 11].split(b"\x00", 1)[0]
        fields.append(
            DbfField(
                name=raw_name.decode(encoding, errors="replace").strip(),
                field_type=chr(buffer[offset + 11]),
                length=buffer[offset + 16],
                decimals=buffer[offset + 17],
            )
        )
        offset += DBF_FIELD_DESCRIPTOR_LENGTH

    records: list[dict[str, object] | None] = []
    for row in range(record_count):
        start = header_length + row * record_length
        if start + record_length > len(buffer):
            logger.warning(
                "DBF truncated | declared_records=%d | readable_records=%d",
                record_count,
                row,
            )
            break
        if buffer[start] == DBF_DELETED_FLAG:
            records.append(None)
            continue
        values: dict[str, object] = {}
        cursor = start + 1
        for fld in fields:
            raw = buffer[cursor : cursor + fld.length].decode(encoding, errors="replace")
            values[fld.name] = convert_value(fld, raw)
            cursor += fld.length
        records.append(values)

    return DbfTable(fields=tuple(fields), records=tuple(records))


def convert_value(fld: DbfField, raw: str) -> object:
    """Convert one raw field string; blanks become ``None``."""
    text = raw.strip().rstrip("\x00")
    if not text:
        return None

    if fld.field_type in ("N", "F"):
        try:
            if fld.decimals == 0 and "." not in text and "e" not in text.lower():
                return int(text)
            return float(text)
        except ValueError:
            # Overflowed numerics are stored as asterisks
            return None

    if fld.field_type == "L":
        if text in DBF_TRUE_VALUES:
            return True
        if text in DBF_FALSE_VALUES:
            return False
        return None

    if fld.field_type == "D":
        try:
            return datetime.datetime.strptime(text, "%Y%m%d").date()  # noqa: DTZ007
        except ValueError:
            return None

    return text
