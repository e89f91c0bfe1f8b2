"""Coordinate system registry.

Holds every ``CoordinateSystem`` the import pipeline may reference.
Entries are registered once and never replaced.  Registration is
serialised with a lock; lookups read the dict without locking, since a
published entry is immutable.

The registry is constructed explicitly and passed by reference to the
transformer and orchestrator; there is no module-level instance.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from geo_import.core.constants import LV03_SRID, LV95_SRID, WEB_MERCATOR_SRID, WGS84_SRID
from geo_import.core.exceptions import (
    DuplicateCoordinateSystemError,
    UnknownCoordinateSystemError,
)
from geo_import.models.coordinate_system import CoordinateSystem

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger("geo_import.crs.registry")

# ---------------------------------------------------------------------------
# Built-in definitions
# ---------------------------------------------------------------------------

LV95_PROJ = (
    "+proj=somerc +lat_0=46.95240555555556 +lon_0=7.439583333333333 +k_0=1 "
    "+x_0=2600000 +y_0=1200000 +ellps=bessel "
    "+towgs84=674.374,15.056,405.346,0,0,0,0 +units=m +no_defs +type=crs"
)
LV03_PROJ = (
    "+proj=somerc +lat_0=46.95240555555556 +lon_0=7.439583333333333 +k_0=1 "
    "+x_0=600000 +y_0=200000 +ellps=bessel "
    "+towgs84=674.374,15.056,405.346,0,0,0,0 +units=m +no_defs +type=crs"
)

BUILTIN_SYSTEMS: tuple[CoordinateSystem, ...] = (
    CoordinateSystem(
        id=WGS84_SRID,
        authority_code=WGS84_SRID,
        name="WGS 84",
        proj_definition="+proj=longlat +datum=WGS84 +no_defs +type=crs",
        is_geographic=True,
    ),
    CoordinateSystem(
        id=WEB_MERCATOR_SRID,
        authority_code=WEB_MERCATOR_SRID,
        name="WGS 84 / Pseudo-Mercator",
        is_geographic=False,
    ),
    CoordinateSystem(
        id=LV95_SRID,
        authority_code=LV95_SRID,
        name="CH1903+ / LV95",
        proj_definition=LV95_PROJ,
        is_geographic=False,
    ),
    CoordinateSystem(
        id=LV03_SRID,
        authority_code=LV03_SRID,
        name="CH1903 / LV03",
        proj_definition=LV03_PROJ,
        is_geographic=False,
    ),
)


class CoordinateSystemRegistry:
    """Id-keyed store of coordinate systems."""

    def __init__(self, systems: Iterable[CoordinateSystem] = ()) -> None:
        self._systems: dict[int, CoordinateSystem] = {}
        self._lock = threading.Lock()
        for system in systems:
            self.register(system)

    @classmethod
    def with_builtin_systems(cls) -> CoordinateSystemRegistry:
        """Return a registry preloaded with WGS84, Web Mercator, LV95 and LV03."""
        return cls(BUILTIN_SYSTEMS)

    def register(self, system: CoordinateSystem) -> CoordinateSystem:
        """Add *system*.

        Raises:
            DuplicateCoordinateSystemError: If the id is already taken;
                the existing entry is left untouched.
        """
        with self._lock:
            existing = self._systems.get(system.id)
            if existing is not None:
                msg = (
                    f"Coordinate system {system.id} is already registered "
                    f"as {existing.name or existing.authority_code!r}"
                )
                raise DuplicateCoordinateSystemError(msg)
            # Publish a new dict so lock-free readers never see a resize
            updated = dict(self._systems)
            updated[system.id] = system
            self._systems = updated
        logger.debug("crs registered | id=%d | name=%s", system.id, system.name)
        return system

    def get(self, system_id: int) -> CoordinateSystem:
        """Return the system registered under *system_id*.

        Raises:
            UnknownCoordinateSystemError: If nothing is registered.
        """
        system = self._systems.get(system_id)
        if system is None:
            msg = f"Coordinate system {system_id} is not registered"
            raise UnknownCoordinateSystemError(msg)
        return system

    def find(self, system_id: int) -> CoordinateSystem | None:
        return self._systems.get(system_id)

    def find_by_authority_code(self, code: int) -> CoordinateSystem | None:
        for system in self._systems.values():
            if system.authority_code == code:
                return system
        return None

    def geographic(self) -> list[CoordinateSystem]:
        return [s for s in self._systems.values() if s.is_geographic]

    def projected(self) -> list[CoordinateSystem]:
        return [s for s in self._systems.values() if not s.is_geographic]

    def ids(self) -> list[int]:
        return sorted(self._systems)

    def __contains__(self, system_id: object) -> bool:
        return system_id in self._systems

    def __len__(self) -> int:
        return len(self._systems)
