"""Shared constants for shapefile decoding."""

from __future__ import annotations

import enum

# Main file header
FILE_CODE = 9994
FILE_VERSION = 1000
HEADER_LENGTH = 100
RECORD_HEADER_LENGTH = 8

# Byte offsets inside the 100-byte header
FILE_CODE_OFFSET = 0
FILE_LENGTH_OFFSET = 24
VERSION_OFFSET = 28
SHAPE_TYPE_OFFSET = 32
BBOX_OFFSET = 36

# Lengths in the file are counted in 16-bit words
WORD_BYTES = 2

# DBF
DBF_HEADER_TERMINATOR = 0x0D
DBF_FIELD_DESCRIPTOR_LENGTH = 32
DBF_DELETED_FLAG = 0x2A  # "*"
DBF_TRUE_VALUES = frozenset("TtYy")
DBF_FALSE_VALUES = frozenset("FfNn")


class ShapeType(enum.IntEnum):
    """Shape type codes from the ESRI shapefile technical description."""

    NULL = 0
    POINT = 1
    POLYLINE = 3
    POLYGON = 5
    MULTIPOINT = 8
    POINT_Z = 11
    POLYLINE_Z = 13
    POLYGON_Z = 15
    MULTIPOINT_Z = 18
    POINT_M = 21
    POLYLINE_M = 23
    POLYGON_M = 25
    MULTIPOINT_M = 28
    MULTIPATCH = 31

    @property
    def has_z(self) -> bool:
        return self in _Z_TYPES

    @property
    def has_m(self) -> bool:
        return self in _M_TYPES or self in _Z_TYPES

    @property
    def base(self) -> ShapeType:
        """Collapse Z/M variants onto their plain 2D type."""
        return _BASE[self]


_Z_TYPES = frozenset(
    {ShapeType.POINT_Z, ShapeType.POLYLINE_Z, ShapeType.POLYGON_Z, ShapeType.MULTIPOINT_Z}
)
_M_TYPES = frozenset(
    {ShapeType.POINT_M, ShapeType.POLYLINE_M, ShapeType.POLYGON_M, ShapeType.MULTIPOINT_M}
)
_BASE = {
    ShapeType.NULL: ShapeType.NULL,
    ShapeType.POINT: ShapeType.POINT,
    ShapeType.POINT_Z: ShapeType.POINT,
    ShapeType.POINT_M: ShapeType.POINT,
    ShapeType.POLYLINE: ShapeType.POLYLINE,
    ShapeType.POLYLINE_Z: ShapeType.POLYLINE,
    ShapeType.POLYLINE_M: ShapeType.POLYLINE,
    ShapeType.POLYGON: ShapeType.POLYGON,
    ShapeType.POLYGON_Z: ShapeType.POLYGON,
    ShapeType.POLYGON_M: ShapeType.POLYGON,
    ShapeType.MULTIPOINT: ShapeType.MULTIPOINT,
    ShapeType.MULTIPOINT_Z: ShapeType.MULTIPOINT,
    ShapeType.MULTIPOINT_M: ShapeType.MULTIPOINT,
    ShapeType.MULTIPATCH: ShapeType.MULTIPATCH,
}
