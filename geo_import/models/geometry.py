"""Geometry model shared by the decoders, validator and transformer.

A ``GeometryRecord`` carries a GeoJSON-shaped coordinate nesting plus
the declared source reference system.  Records are immutable: helpers
such as ``map_positions`` return new records rather than mutating the
coordinate tuples in place.

Nesting depth per kind:

- ``Point``                        position
- ``LineString`` / ``MultiPoint``  sequence of positions
- ``Polygon`` / ``MultiLineString`` sequence of position sequences
- ``MultiPolygon``                 sequence of polygons
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from shapely.geometry.base import BaseGeometry

Position = tuple[float, ...]


class GeometryKind(enum.Enum):
    """Supported geometry kinds (GeoJSON type names)."""

    POINT = "Point"
    LINE_STRING = "LineString"
    POLYGON = "Polygon"
    MULTI_POINT = "MultiPoint"
    MULTI_LINE_STRING = "MultiLineString"
    MULTI_POLYGON = "MultiPolygon"

    @property
    def depth(self) -> int:
        """Number of sequence levels wrapped around each position."""
        return _DEPTH[self]


_DEPTH: dict[GeometryKind, int] = {
    GeometryKind.POINT: 0,
    GeometryKind.LINE_STRING: 1,
    GeometryKind.MULTI_POINT: 1,
    GeometryKind.POLYGON: 2,
    GeometryKind.MULTI_LINE_STRING: 2,
    GeometryKind.MULTI_POLYGON: 3,
}


@dataclass(frozen=True, slots=True)
class GeometryRecord:
    """Decoded geometry with its declared reference system.

    Attributes:
        kind: Geometry kind.
        coordinates: Nested tuples of positions; each position holds 2
            or 3 numeric components.
        srid: Declared source reference-system id (``None`` when the
            source did not declare one).
    """

    kind: GeometryKind
    coordinates: Any
    srid: int | None = None

    def iter_positions(self) -> Iterator[Position]:
        """Yield every position in document order."""
        yield from _iter_at_depth(self.coordinates, self.kind.depth)

    @property
    def vertex_count(self) -> int:
        return sum(1 for _ in self.iter_positions())

    def map_positions(self, fn: Callable[[Position], Position]) -> GeometryRecord:
        """Return a copy with *fn* applied to every position."""
        return replace(self, coordinates=_map_at_depth(self.coordinates, self.kind.depth, fn))

    def with_positions(self, positions: list[Position], srid: int | None) -> GeometryRecord:
        """Return a copy whose positions are replaced, in order, by *positions*.

        Raises:
            ValueError: If *positions* does not match ``vertex_count``.
        """
        expected = self.vertex_count
        if len(positions) != expected:
            msg = f"Expected {expected} positions, got {len(positions)}"
            raise ValueError(msg)
        remaining = iter(positions)
        coords = _map_at_depth(self.coordinates, self.kind.depth, lambda _: next(remaining))
        return GeometryRecord(kind=self.kind, coordinates=coords, srid=srid)

    def to_geojson(self) -> dict[str, object]:
        """Return a GeoJSON geometry object (lists, not tuples)."""
        return {"type": self.kind.value, "coordinates": _to_lists(self.coordinates)}

    def to_shapely(self) -> BaseGeometry:
        """Return the equivalent shapely geometry."""
        from shapely.geometry import shape

        return shape(self.to_geojson())

    @classmethod
    def from_geojson(cls, data: dict[str, Any], srid: int | None = None) -> GeometryRecord:
        """Build a record from a GeoJSON geometry mapping.

        Raises:
            ValueError: If the geometry type is not supported.
        """
        try:
            kind = GeometryKind(data["type"])
        except (KeyError, ValueError) as exc:
            msg = f"Unsupported geometry type: {data.get('type')!r}"
            raise ValueError(msg) from exc
        return cls(kind=kind, coordinates=_to_tuples(data["coordinates"], kind.depth), srid=srid)


# ---------------------------------------------------------------------------
# Nesting helpers
# ---------------------------------------------------------------------------


def _iter_at_depth(coords: Any, depth: int) -> Iterator[Position]:
    if depth == 0:
        yield coords
        return
    for child in coords:
        yield from _iter_at_depth(child, depth - 1)


def _map_at_depth(coords: Any, depth: int, fn: Callable[[Position], Position]) -> Any:
    if depth == 0:
        return tuple(fn(coords))
    return tuple(_map_at_depth(child, depth - 1, fn) for child in coords)


def _to_lists(coords: Any) -> Any:
    if isinstance(coords, (list, tuple)):
        return [_to_lists(c) for c in coords]
    return coords


def _to_tuples(coords: Any, depth: int) -> Any:
    if depth == 0:
        return tuple(coords)
    return tuple(_to_tuples(c, depth - 1) for c in coords)
