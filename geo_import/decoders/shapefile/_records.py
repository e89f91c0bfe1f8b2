"""Record-level shapefile decoding.

``iter_shape_records`` walks the record stream after the header and
yields either a ``ShapeRecord`` or a ``RecordError`` for each record.
A malformed record never aborts the walk unless its declared length
makes resynchronisation impossible.
"""

from __future__ import annotations

import math
import struct
from dataclasses import dataclass
from typing import TYPE_CHECKING

from geo_import.core.exceptions import RecordError
from geo_import.decoders.shapefile._constants import (
    HEADER_LENGTH,
    RECORD_HEADER_LENGTH,
    WORD_BYTES,
    ShapeType,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from geo_import.core.config import DecoderLimits
    from geo_import.decoders.shapefile._header import ShapefileHeader


@dataclass(frozen=True, slots=True)
class ShapeRecord:
    """One decoded shape.

    Attributes:
        record_number: 1-based record number stored in the file.
        record_index: 0-based position in the record stream.
        shape_type: Shape type code of this record.
        bbox: ``(xmin, ymin, xmax, ymax)``; for points, the point itself.
        parts: Start index of each part into ``points``.
        points: XY pairs.
        z: Z value per point (Z types only).
        m: M value per point, when present.
    """

    record_number: int
    record_index: int
    shape_type: ShapeType
    bbox: tuple[float, float, float, float]
    parts: tuple[int, ...]
    points: tuple[tuple[float, float], ...]
    z: tuple[float, ...] | None = None
    m: tuple[float, ...] | None = None

    @property
    def is_null(self) -> bool:
        return self.shape_type == ShapeType.NULL

    def part_ranges(self) -> list[tuple[int, int]]:
        """Return ``(start, end)`` slices of ``points`` for every part."""
        bounds = [*self.parts, len(self.points)]
        return [(bounds[i], bounds[i + 1]) for i in range(len(self.parts))]


def iter_shape_records(
    buffer: bytes, header: ShapefileHeader, limits: DecoderLimits
) -> Iterator[ShapeRecord | RecordError]:
    """Yield every record after the header, in file order.

    Null shapes are yielded as ``ShapeRecord`` with ``is_null`` set so
    that attribute rows stay aligned with their record index.
    """
    offset = HEADER_LENGTH
    end = header.file_length
    index = 0

    while offset < end:
        if offset + RECORD_HEADER_LENGTH > end:
            yield RecordError(
                f"Truncated record header at byte {offset}",
                record_index=index,
                stage="decode_shapefile",
            )
            return

        record_number, content_words = struct.unpack_from(">ii", buffer, offset)
        content_length = content_words * WORD_BYTES
        content_start = offset + RECORD_HEADER_LENGTH

        if content_length < 0 or content_start + content_length > end:
            yield RecordError(
                f"Record {record_number} content ({content_length} bytes) runs past end of file",
                record_index=index,
                stage="decode_shapefile",
            )
            return

        offset = content_start + content_length

        if content_length > limits.max_record_length_bytes:
            yield RecordError(
                f"Record {record_number} length {content_length} exceeds limit "
                f"{limits.max_record_length_bytes}",
                record_index=index,
                stage="decode_shapefile",
            )
            index += 1
            continue

        content = memoryview(buffer)[content_start : content_start + content_length]
        try:
            yield _parse_content(content, record_number, index, limits)
        except RecordError as exc:
            yield exc
        except struct.error as exc:
            yield RecordError(
                f"Record {record_number} content truncated: {exc}",
                record_index=index,
                stage="decode_shapefile",
            )
        index += 1


# ---------------------------------------------------------------------------
# Content parsers
# ---------------------------------------------------------------------------


def _parse_content(
    content: memoryview, record_number: int, index: int, limits: DecoderLimits
) -> ShapeRecord:
    if len(content) < 4:
        msg = f"Record {record_number} is shorter than its shape type field"
        raise RecordError(msg, record_index=index, stage="decode_shapefile")

    (code,) = struct.unpack_from("<i", content, 0)
    try:
        shape_type = ShapeType(code)
    except ValueError:
        msg = f"Record {record_number} has unknown shape type {code}"
        raise RecordError(msg, record_index=index, stage="decode_shapefile") from None

    base = shape_type.base
    if base == ShapeType.NULL:
        return ShapeRecord(record_number, index, shape_type, (0.0, 0.0, 0.0, 0.0), (), ())
    if base == ShapeType.MULTIPATCH:
        msg = f"Record {record_number} is a multipatch, which is not supported"
        raise RecordError(msg, record_index=index, stage="decode_shapefile")
    if base == ShapeType.POINT:
        return _parse_point(content, shape_type, record_number, index)
    if base == ShapeType.MULTIPOINT:
        return _parse_multipoint(content, shape_type, record_number, index, limits)
    return _parse_multipart(content, shape_type, record_number, index, limits)


def _parse_point(
    content: memoryview, shape_type: ShapeType, record_number: int, index: int
) -> ShapeRecord:
    x, y = struct.unpack_from("<2d", content, 4)
    z = m = None
    if shape_type.has_z:
        (z_value,) = struct.unpack_from("<d", content, 20)
        z = (z_value,)
        if len(content) >= 36:
            m = struct.unpack_from("<d", content, 28)
    elif shape_type.has_m:
        m = struct.unpack_from("<d", content, 20)
    _check_finite([(x, y)], z, record_number, index)
    return ShapeRecord(record_number, index, shape_type, (x, y, x, y), (0,), ((x, y),), z, m)


def _parse_multipoint(
    content: memoryview,
    shape_type: ShapeType,
    record_number: int,
    index: int,
    limits: DecoderLimits,
) -> ShapeRecord:
    bbox = struct.unpack_from("<4d", content, 4)
    (num_points,) = struct.unpack_from("<i", content, 36)
    if not 0 <= num_points <= limits.max_points:
        msg = f"Record {record_number} point count {num_points} outside 0..{limits.max_points}"
        raise RecordError(msg, record_index=index, stage="decode_shapefile")

    points_offset = 40
    points = _read_points(content, points_offset, num_points)
    z, m = _read_zm(content, shape_type, points_offset + 16 * num_points, num_points)
    _check_finite(points, z, record_number, index)
    return ShapeRecord(
        record_number, index, shape_type, bbox, tuple(range(num_points)), points, z, m
    )


def _parse_multipart(
    content: memoryview,
    shape_type: ShapeType,
    record_number: int,
    index: int,
    limits: DecoderLimits,
) -> ShapeRecord:
    bbox = struct.unpack_from("<4d", content, 4)
    num_parts, num_points = struct.unpack_from("<2i", content, 36)
    if not 0 < num_parts <= limits.max_parts:
        msg = f"Record {record_number} part count {num_parts} outside 1..{limits.max_parts}"
        raise RecordError(msg, record_index=index, stage="decode_shapefile")
    if not 0 < num_points <= limits.max_points:
        msg = f"Record {record_number} point count {num_points} outside 1..{limits.max_points}"
        raise RecordError(msg, record_index=index, stage="decode_shapefile")

    parts = struct.unpack_from(f"<{num_parts}i", content, 44)
    previous = -1
    for part in parts:
        if not 0 <= part < num_points:
            msg = f"Record {record_number} part index {part} outside 0..{num_points - 1}"
            raise RecordError(msg, record_index=index, stage="decode_shapefile")
        if part <= previous:
            msg = f"Record {record_number} part indices are not strictly increasing"
            raise RecordError(msg, record_index=index, stage="decode_shapefile")
        previous = part
    if parts[0] != 0:
        msg = f"Record {record_number} first part starts at {parts[0]}, expected 0"
        raise RecordError(msg, record_index=index, stage="decode_shapefile")

    points_offset = 44 + 4 * num_parts
    points = _read_points(content, points_offset, num_points)
    z, m = _read_zm(content, shape_type, points_offset + 16 * num_points, num_points)
    _check_finite(points, z, record_number, index)
    return ShapeRecord(record_number, index, shape_type, bbox, parts, points, z, m)


def _read_points(content: memoryview, offset: int, count: int) -> tuple[tuple[float, float], ...]:
    flat = struct.unpack_from(f"<{2 * count}d", content, offset)
    return tuple(zip(flat[0::2], flat[1::2], strict=True))


def _read_zm(
    content: memoryview, shape_type: ShapeType, offset: int, count: int
) -> tuple[tuple[float, ...] | None, tuple[float, ...] | None]:
    """Read the optional Z and M blocks that follow the XY points.

    Each block is a 16-byte range followed by one double per point.  The
    M block is optional in Z and M files alike; it is read only when the
    record is long enough to hold it.
    """
    z = None
    if shape_type.has_z:
        z = struct.unpack_from(f"<{count}d", content, offset + 16)
        offset += 16 + 8 * count
    m = None
    if shape_type.has_m and len(content) >= offset + 16 + 8 * count:
        m = struct.unpack_from(f"<{count}d", content, offset + 16)
    return z, m


def _check_finite(
    points: tuple[tuple[float, float], ...] | list[tuple[float, float]],
    z: tuple[float, ...] | None,
    record_number: int,
    index: int,
) -> None:
    for i, (x, y) in enumerate(points):
        if not (math.isfinite(x) and math.isfinite(y)):
            msg = f"Record {record_number} point {i} is not finite: ({x}, {y})"
            raise RecordError(msg, record_index=index, stage="decode_shapefile")
    if z is not None and not all(math.isfinite(v) for v in z):
        msg = f"Record {record_number} has a non-finite Z value"
        raise RecordError(msg, record_index=index, stage="decode_shapefile")
