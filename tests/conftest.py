"""Shared pytest fixtures for the geo_import test suite.

Binary shapefile and DBF fixtures are assembled in memory with
``struct`` so every test states exactly which bytes it decodes.
"""

from __future__ import annotations

import struct
from collections.abc import Callable, Sequence

import pytest

from geo_import.crs.registry import CoordinateSystemRegistry
from geo_import.crs.transformer import CoordinateTransformer, identity_operation
from geo_import.models.feature import Feature
from geo_import.models.geometry import GeometryKind, GeometryRecord

Point2D = tuple[float, float]

# ---------------------------------------------------------------------------
# Shapefile builders
# ---------------------------------------------------------------------------


def _bbox(points: Sequence[Point2D]) -> tuple[float, float, float, float]:
    if not points:
        return (0.0, 0.0, 0.0, 0.0)
    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    return (min(xs), min(ys), max(xs), max(ys))


def null_content() -> bytes:
    return struct.pack("<i", 0)


def point_content(x: float, y: float) -> bytes:
    return struct.pack("<i2d", 1, x, y)


def point_z_content(x: float, y: float, z: float, m: float = 0.0) -> bytes:
    return struct.pack("<i4d", 11, x, y, z, m)


def multipoint_content(points: Sequence[Point2D]) -> bytes:
    flat = [v for p in points for v in p]
    return struct.pack("<i4di", 8, *_bbox(points), len(points)) + struct.pack(
        f"<{len(flat)}d", *flat
    )


def multipart_content(
    shape_type: int,
    parts: Sequence[Sequence[Point2D]],
    *,
    z: Sequence[float] | None = None,
    starts: Sequence[int] | None = None,
) -> bytes:
    """Polyline (3/13) or polygon (5/15) content; *z* adds a Z block."""
    points = [p for part in parts for p in part]
    if starts is None:
        starts = []
        cursor = 0
        for part in parts:
            starts.append(cursor)
            cursor += len(part)
    flat = [v for p in points for v in p]
    content = struct.pack("<i4d2i", shape_type, *_bbox(points), len(starts), len(points))
    content += struct.pack(f"<{len(starts)}i", *starts)
    content += struct.pack(f"<{len(flat)}d", *flat)
    if z is not None:
        content += struct.pack("<2d", min(z), max(z)) + struct.pack(f"<{len(z)}d", *z)
    return content


def build_shp(
    contents: Sequence[bytes],
    *,
    shape_type: int = 5,
    bbox: tuple[float, float, float, float] = (0.0, 0.0, 10.0, 10.0),
    file_code: int = 9994,
    version: int = 1000,
    length_words: int | None = None,
) -> bytes:
    """Assemble a ``.shp`` buffer from record contents (numbered from 1)."""
    body = b""
    for number, content in enumerate(contents, start=1):
        body += struct.pack(">ii", number, len(content) // 2) + content
    total_words = (100 + len(body)) // 2 if length_words is None else length_words
    header = struct.pack(">i", file_code) + b"\x00" * 20 + struct.pack(">i", total_words)
    header += struct.pack("<ii", version, shape_type)
    header += struct.pack("<8d", *bbox, 0.0, 0.0, 0.0, 0.0)
    return header + body


def build_dbf(
    fields: Sequence[tuple[str, str, int, int]],
    rows: Sequence[Sequence[str]],
    *,
    deleted: frozenset[int] = frozenset(),
) -> bytes:
    """Assemble a dBASE III buffer; *fields* are ``(name, type, length, decimals)``."""
    header_length = 32 + 32 * len(fields) + 1
    record_length = 1 + sum(f[2] for f in fields)
    buffer = struct.pack("<4BIHH20x", 3, 126, 1, 1, len(rows), header_length, record_length)
    for name, field_type, length, decimals in fields:
        buffer += name.encode("ascii").ljust(11, b"\x00")
        buffer += field_type.encode("ascii") + b"\x00" * 4
        buffer += bytes([length, decimals]) + b"\x00" * 14
    buffer += b"\x0d"
    for index, row in enumerate(rows):
        buffer += b"*" if index in deleted else b" "
        for (_, _, length, _), value in zip(fields, row, strict=True):
            buffer += value.encode("utf-8").ljust(length)[:length]
    return buffer + b"\x1a"


def dxf_text(*pairs: tuple[int | str, object]) -> str:
    """Render ``(code, value)`` pairs as ASCII DXF lines."""
    return "".join(f"{code}\n{value}\n" for code, value in pairs)


# ---------------------------------------------------------------------------
# Builder fixtures
# ---------------------------------------------------------------------------


class ShapefileBytes:
    """Namespace of shapefile/DBF builders handed to tests."""

    null = staticmethod(null_content)
    point = staticmethod(point_content)
    point_z = staticmethod(point_z_content)
    multipoint = staticmethod(multipoint_content)
    multipart = staticmethod(multipart_content)
    shp = staticmethod(build_shp)
    dbf = staticmethod(build_dbf)


@pytest.fixture()
def shapefile_bytes() -> type[ShapefileBytes]:
    """Return the in-memory shapefile builders."""
    return ShapefileBytes


@pytest.fixture()
def dxf() -> Callable[..., str]:
    """Return the ASCII DXF renderer."""
    return dxf_text


# ---------------------------------------------------------------------------
# Feature and transformer fixtures
# ---------------------------------------------------------------------------

SQUARE_RING: tuple[Point2D, ...] = ((0.0, 0.0), (0.0, 1.0), (1.0, 1.0), (1.0, 0.0), (0.0, 0.0))


def make_point_features(count: int, *, srid: int = 4326) -> list[Feature]:
    return [
        Feature(
            id=i + 1,
            geometry=GeometryRecord(GeometryKind.POINT, (float(i % 180), 1.0), srid),
            attributes={"name": f"f{i + 1}"},
            source_index=i,
        )
        for i in range(count)
    ]


@pytest.fixture()
def point_features() -> Callable[..., list[Feature]]:
    """Return a factory of ``count`` valid WGS84 point features."""
    return make_point_features


@pytest.fixture()
def registry() -> CoordinateSystemRegistry:
    return CoordinateSystemRegistry.with_builtin_systems()


@pytest.fixture()
def identity_transformer(registry: CoordinateSystemRegistry) -> CoordinateTransformer:
    """Transformer whose every operation is the identity (no pyproj)."""
    return CoordinateTransformer(registry, operation_factory=lambda source, target: identity_operation)
