"""Source reference-system detection from a ``.prj`` WKT companion."""

from __future__ import annotations

import logging
import re

from geo_import.core.constants import LV03_SRID, LV95_SRID, WEB_MERCATOR_SRID, WGS84_SRID

logger = logging.getLogger("geo_import.decoders.shapefile.prj")

_AUTHORITY_RE = re.compile(r'AUTHORITY\[\s*"EPSG"\s*,\s*"(\d+)"\s*\]', re.IGNORECASE)
_EPSG_RE = re.compile(r"EPSG[:\[](\d+)", re.IGNORECASE)

# Checked in order; LV95 before LV03 because both names contain "CH1903"
_KNOWN_NAMES: tuple[tuple[tuple[str, ...], int], ...] = (
    (("CH1903+_LV95", "CH1903+ / LV95", "CH1903+"), LV95_SRID),
    (("CH1903_LV03", "CH1903 / LV03", "CH1903"), LV03_SRID),
    (("WGS_1984_Web_Mercator", "Pseudo-Mercator", "Pseudo_Mercator"), WEB_MERCATOR_SRID),
)
_WGS84_NAMES = ("GCS_WGS_1984", "WGS 84", "WGS84", "WGS_1984")


def detect_srid(wkt: str) -> int | None:
    """Infer an EPSG code from projection WKT.

    An explicit top-level ``AUTHORITY["EPSG", ...]`` wins; otherwise a
    set of well-known system names is matched.  Returns ``None`` when
    nothing is recognised.
    """
    text = wkt.strip()
    if not text:
        return None

    authorities = _AUTHORITY_RE.findall(text)
    if authorities:
        # WKT1 puts the outermost authority last
        return int(authorities[-1])

    for names, srid in _KNOWN_NAMES:
        if any(name in text for name in names):
            return srid

    if text.upper().startswith("GEOGCS") and any(name in text for name in _WGS84_NAMES):
        return WGS84_SRID

    match = _EPSG_RE.search(text)
    if match:
        return int(match.group(1))

    logger.info("prj not recognised | prefix=%s", text[:60])
    return None
