"""Map decoded shape records onto ``GeometryRecord`` kinds.

Polygon rings are classified by orientation: the shapefile format
stores outer rings clockwise and holes counter-clockwise.  Each hole is
attached to the shell that precedes it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from geo_import.decoders.shapefile._constants import ShapeType
from geo_import.models.geometry import GeometryKind, GeometryRecord

if TYPE_CHECKING:
    from geo_import.decoders.shapefile._records import ShapeRecord
    from geo_import.models.geometry import Position


def shape_to_geometry(record: ShapeRecord, srid: int | None) -> GeometryRecord | None:
    """Return the geometry for *record*, or ``None`` for a null shape."""
    base = record.shape_type.base
    if base == ShapeType.NULL:
        return None

    positions = _positions(record)

    if base == ShapeType.POINT:
        return GeometryRecord(GeometryKind.POINT, positions[0], srid)
    if base == ShapeType.MULTIPOINT:
        return GeometryRecord(GeometryKind.MULTI_POINT, tuple(positions), srid)

    parts = [tuple(positions[start:end]) for start, end in record.part_ranges()]
    if base == ShapeType.POLYLINE:
        if len(parts) == 1:
            return GeometryRecord(GeometryKind.LINE_STRING, parts[0], srid)
        return GeometryRecord(GeometryKind.MULTI_LINE_STRING, tuple(parts), srid)

    polygons = group_rings(parts)
    if len(polygons) == 1:
        return GeometryRecord(GeometryKind.POLYGON, polygons[0], srid)
    return GeometryRecord(GeometryKind.MULTI_POLYGON, tuple(polygons), srid)


def signed_area(ring: tuple[Position, ...]) -> float:
    """Shoelace signed area; negative for clockwise rings."""
    total = 0.0
    for (x1, y1, *_), (x2, y2, *_) in zip(ring, ring[1:] + ring[:1], strict=True):
        total += x1 * y2 - x2 * y1
    return total / 2.0


def group_rings(rings: list[tuple[Position, ...]]) -> list[tuple[tuple[Position, ...], ...]]:
    """Group rings into polygons of ``(shell, *holes)``.

    A counter-clockwise ring that appears before any shell is promoted
    to a shell of its own.
    """
    polygons: list[list[tuple[Position, ...]]] = []
    for ring in rings:
        if signed_area(ring) <= 0 or not polygons:
            polygons.append([ring])
        else:
            polygons[-1].append(ring)
    return [tuple(p) for p in polygons]


def _positions(record: ShapeRecord) -> list[Position]:
    if record.z is None:
        return [(x, y) for x, y in record.points]
    return [(x, y, z) for (x, y), z in zip(record.points, record.z, strict=True)]
