"""DXF entity assembly and geometry derivation.

Entities start at every code-0 token inside the ``ENTITIES`` section.
Curves are tessellated with ezdxf construction tools at fixed segment
counts: circles and arcs with 32 segments, ellipses with 64.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
from ezdxf.math import ConstructionArc, ConstructionCircle, ConstructionEllipse

from geo_import.core.exceptions import RecordError
from geo_import.models.geometry import GeometryKind, GeometryRecord

if TYPE_CHECKING:
    from geo_import.decoders.dxf._group_codes import GroupValue
    from geo_import.models.geometry import Position

ALLOWED_ENTITY_TYPES: frozenset[str] = frozenset(
    {
        "POINT",
        "LINE",
        "POLYLINE",
        "LWPOLYLINE",
        "CIRCLE",
        "ARC",
        "ELLIPSE",
        "INSERT",
        "TEXT",
        "MTEXT",
        "DIMENSION",
    }
)

CIRCLE_SEGMENTS = 32
ARC_SEGMENTS = 32
ELLIPSE_SEGMENTS = 64

CLOSED_FLAG = 1

#: Group code to attribute name for the properties kept on each feature.
ATTRIBUTE_CODES: dict[int, str] = {
    8: "layer",
    6: "linetype",
    62: "color",
    370: "lineweight",
    5: "handle",
    1: "text",
    2: "block",
}


@dataclass(slots=True)
class DxfEntity:
    """One entity as read from the stream.

    Attributes:
        entity_type: Upper-case type name (``"LINE"``, ``"CIRCLE"`` ...).
        pairs: Validated ``(code, value)`` pairs in stream order.
        index: Token index of the code-0 pair that opened the entity.
        vertices: For ``POLYLINE``, the pairs of each following ``VERTEX``.
        geometry: Derived geometry, set by ``derive_geometry``.
    """

    entity_type: str
    pairs: list[tuple[int, GroupValue]] = field(default_factory=list)
    index: int = 0
    vertices: list[list[tuple[int, GroupValue]]] = field(default_factory=list)
    geometry: GeometryRecord | None = None

    @property
    def layer(self) -> str:
        return str(self.first(8, "0"))

    def first(self, code: int, default: GroupValue | None = None) -> GroupValue | None:
        """Return the first value for *code*, or *default*."""
        for c, v in self.pairs:
            if c == code:
                return v
        return default

    def attributes(self) -> dict[str, object]:
        attrs: dict[str, object] = {"entity_type": self.entity_type}
        for code, name in ATTRIBUTE_CODES.items():
            value = self.first(code)
            if value is not None:
                attrs[name] = value
        attrs.setdefault("layer", "0")
        return attrs


def derive_geometry(entity: DxfEntity, srid: int | None) -> GeometryRecord:
    """Build the geometry of *entity*.

    Raises:
        RecordError: If mandatory coordinates or dimensions are missing.
    """
    kind = entity.entity_type
    if kind == "POINT" or kind in ("TEXT", "MTEXT", "INSERT", "DIMENSION"):
        return GeometryRecord(GeometryKind.POINT, _position(entity.pairs, 10, entity), srid)
    if kind == "LINE":
        start = _position(entity.pairs, 10, entity)
        end = _position(entity.pairs, 11, entity)
        return GeometryRecord(GeometryKind.LINE_STRING, (start, end), srid)
    if kind == "LWPOLYLINE":
        return _polyline(_lw_vertices(entity), _flags(entity), entity, srid)
    if kind == "POLYLINE":
        vertices = [_position(pairs, 10, entity) for pairs in entity.vertices]
        return _polyline(vertices, _flags(entity), entity, srid)
    if kind == "CIRCLE":
        return _circle(entity, srid)
    if kind == "ARC":
        return _arc(entity, srid)
    if kind == "ELLIPSE":
        return _ellipse(entity, srid)
    msg = f"Entity type {kind} has no geometry mapping"
    raise RecordError(msg, record_index=entity.index, stage="decode_dxf")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _position(pairs: list[tuple[int, GroupValue]], x_code: int, entity: DxfEntity) -> Position:
    """Read the x/y(/z) triple that starts at *x_code* (10, 11 ...)."""
    values: dict[int, GroupValue] = {}
    for code, value in pairs:
        if code in (x_code, x_code + 10, x_code + 20) and code not in values:
            values[code] = value
    if x_code not in values or x_code + 10 not in values:
        msg = f"{entity.entity_type} is missing coordinate group {x_code}/{x_code + 10}"
        raise RecordError(msg, record_index=entity.index, stage="decode_dxf")
    x, y = float(values[x_code]), float(values[x_code + 10])
    z = values.get(x_code + 20)
    return (x, y) if z is None else (x, y, float(z))


def _required(entity: DxfEntity, code: int, name: str) -> float:
    value = entity.first(code)
    if value is None:
        msg = f"{entity.entity_type} is missing {name} (group {code})"
        raise RecordError(msg, record_index=entity.index, stage="decode_dxf")
    return float(value)


def _flags(entity: DxfEntity) -> int:
    return int(entity.first(70, 0) or 0)


def _lw_vertices(entity: DxfEntity) -> list[Position]:
    """Collect LWPOLYLINE vertices; each code 10 opens a new vertex."""
    vertices: list[list[float]] = []
    for code, value in entity.pairs:
        if code == 10:
            vertices.append([float(value)])
        elif code == 20 and vertices and len(vertices[-1]) == 1:
            vertices[-1].append(float(value))
        elif code == 30 and vertices and len(vertices[-1]) == 2:
            vertices[-1].append(float(value))
    if any(len(v) < 2 for v in vertices):
        msg = "LWPOLYLINE vertex is missing its y coordinate"
        raise RecordError(msg, record_index=entity.index, stage="decode_dxf")
    return [tuple(v) for v in vertices]


def _polyline(
    vertices: list[Position], flags: int, entity: DxfEntity, srid: int | None
) -> GeometryRecord:
    if not vertices:
        msg = f"{entity.entity_type} has no vertices"
        raise RecordError(msg, record_index=entity.index, stage="decode_dxf")
    if flags & CLOSED_FLAG:
        ring = list(vertices)
        if ring[0] != ring[-1]:
            ring.append(ring[0])
        return GeometryRecord(GeometryKind.POLYGON, (tuple(ring),), srid)
    return GeometryRecord(GeometryKind.LINE_STRING, tuple(vertices), srid)


def _circle(entity: DxfEntity, srid: int | None) -> GeometryRecord:
    cx, cy, *rest = _position(entity.pairs, 10, entity)
    radius = _required(entity, 40, "radius")
    circle = ConstructionCircle((cx, cy), radius)
    angles = np.linspace(0.0, 360.0, CIRCLE_SEGMENTS, endpoint=False)
    ring = [_xyz(v.x, v.y, rest) for v in circle.vertices(angles)]
    ring.append(ring[0])
    return GeometryRecord(GeometryKind.POLYGON, (tuple(ring),), srid)


def _arc(entity: DxfEntity, srid: int | None) -> GeometryRecord:
    cx, cy, *rest = _position(entity.pairs, 10, entity)
    radius = _required(entity, 40, "radius")
    start = _required(entity, 50, "start angle")
    end = _required(entity, 51, "end angle")
    if end < start:
        end += 360.0
    arc = ConstructionArc((cx, cy), radius, start, end)
    angles = np.linspace(start, end, ARC_SEGMENTS + 1)
    line = tuple(_xyz(v.x, v.y, rest) for v in arc.vertices(angles))
    return GeometryRecord(GeometryKind.LINE_STRING, line, srid)


def _ellipse(entity: DxfEntity, srid: int | None) -> GeometryRecord:
    cx, cy, *rest = _position(entity.pairs, 10, entity)
    mx, my, *_ = _position(entity.pairs, 11, entity)
    ratio = _required(entity, 40, "axis ratio")
    if mx == 0.0 and my == 0.0:
        msg = "ELLIPSE major axis has zero length"
        raise RecordError(msg, record_index=entity.index, stage="decode_dxf")
    start = float(entity.first(41, 0.0) or 0.0)
    end = float(entity.first(42, 2 * math.pi) or 0.0)
    if end <= start:
        end += 2 * math.pi
    full = math.isclose(end - start, 2 * math.pi, abs_tol=1e-9)
    ellipse = ConstructionEllipse(
        center=(cx, cy, 0.0), major_axis=(mx, my, 0.0), ratio=ratio
    )
    params = np.linspace(start, end, ELLIPSE_SEGMENTS + (0 if full else 1), endpoint=not full)
    points = [_xyz(v.x, v.y, rest) for v in ellipse.vertices(params)]
    if full:
        points.append(points[0])
        return GeometryRecord(GeometryKind.POLYGON, (tuple(points),), srid)
    return GeometryRecord(GeometryKind.LINE_STRING, tuple(points), srid)


def _xyz(x: float, y: float, rest: list[float]) -> Position:
    return (float(x), float(y), rest[0]) if rest else (float(x), float(y))
