"""Main-file header parsing for shapefiles."""

from __future__ import annotations

import math
import struct
from dataclasses import dataclass

from geo_import.core.exceptions import StructuralError
from geo_import.decoders.shapefile._constants import (
    BBOX_OFFSET,
    FILE_CODE,
    FILE_CODE_OFFSET,
    FILE_LENGTH_OFFSET,
    FILE_VERSION,
    HEADER_LENGTH,
    SHAPE_TYPE_OFFSET,
    VERSION_OFFSET,
    WORD_BYTES,
)


@dataclass(frozen=True, slots=True)
class ShapefileHeader:
    """Decoded 100-byte main-file header.

    Attributes:
        file_length: File length in bytes (converted from 16-bit words).
        shape_type: Declared shape type code for the whole file.
        bbox: ``(xmin, ymin, xmax, ymax)``.
        z_range: ``(zmin, zmax)``.
        m_range: ``(mmin, mmax)``; shapefiles often store no-data here.
    """

    file_length: int
    shape_type: int
    bbox: tuple[float, float, float, float]
    z_range: tuple[float, float]
    m_range: tuple[float, float]


def parse_header(buffer: bytes) -> ShapefileHeader:
    """Decode and check the shapefile header.

    Raises:
        StructuralError: If the buffer is too short, the file code or
            version is wrong, the declared length is impossible, or the
            bounding box holds a non-finite value.
    """
    if len(buffer) < HEADER_LENGTH:
        msg = f"Shapefile too short for header: {len(buffer)} bytes (need {HEADER_LENGTH})"
        raise StructuralError(msg, stage="decode_shapefile")

    (file_code,) = struct.unpack_from(">i", buffer, FILE_CODE_OFFSET)
    if file_code != FILE_CODE:
        msg = f"Invalid shapefile file code {file_code} (expected {FILE_CODE})"
        raise StructuralError(msg, stage="decode_shapefile")

    (version,) = struct.unpack_from("<i", buffer, VERSION_OFFSET)
    if version != FILE_VERSION:
        msg = f"Unsupported shapefile version {version} (expected {FILE_VERSION})"
        raise StructuralError(msg, stage="decode_shapefile")

    (length_words,) = struct.unpack_from(">i", buffer, FILE_LENGTH_OFFSET)
    file_length = length_words * WORD_BYTES
    if file_length < HEADER_LENGTH or file_length > len(buffer):
        msg = f"Invalid shapefile length {file_length} bytes for a buffer of {len(buffer)} bytes"
        raise StructuralError(msg, stage="decode_shapefile")

    (shape_type,) = struct.unpack_from("<i", buffer, SHAPE_TYPE_OFFSET)
    bounds = struct.unpack_from("<8d", buffer, BBOX_OFFSET)
    # Z and M ranges may legitimately be zero, but never NaN or infinite
    if not all(math.isfinite(v) for v in bounds[:6]):
        msg = f"Shapefile header bounding box is not finite: {bounds[:4]}"
        raise StructuralError(msg, stage="decode_shapefile")

    return ShapefileHeader(
        file_length=file_length,
        shape_type=shape_type,
        bbox=(bounds[0], bounds[1], bounds[2], bounds[3]),
        z_range=(bounds[4], bounds[5]),
        m_range=(bounds[6], bounds[7]),
    )
