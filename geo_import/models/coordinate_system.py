"""Coordinate reference system descriptor.

A ``CoordinateSystem`` is registered once in a
``CoordinateSystemRegistry`` and is immutable thereafter.  The
transformer builds projection operations from ``proj_definition``
(falling back to the authority code when no definition is given).
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class CoordinateSystem:
    """Descriptor of one spatial reference system.

    Attributes:
        id: Registry key (conventionally the EPSG code).
        authority_code: EPSG authority code.
        name: Display name (e.g. ``"CH1903+ / LV95"``).
        wkt: Well-known-text definition (may be empty).
        proj_definition: PROJ string used to build operations (may be empty).
        is_geographic: ``True`` for angular (lon/lat) systems.
    """

    id: int
    authority_code: int
    name: str = ""
    wkt: str = ""
    proj_definition: str = ""
    is_geographic: bool = False

    @property
    def crs_input(self) -> str:
        """Return the CRS input string accepted by pyproj."""
        return self.proj_definition or f"EPSG:{self.authority_code}"
