"""Shapefile decoder — composable pipeline.

Decodes an ESRI shapefile (``.shp``) and its optional companions into
``Feature`` objects.

The decoding pipeline is split into focused stages:
- **_header**: 100-byte main header, fatal ``StructuralError`` on corruption
- **_records**: record stream walk with per-record ``RecordError`` entries
- **_geometry**: shape record to ``GeometryRecord`` (ring orientation)
- **_dbf**: dBASE attribute table companion
- **_prj**: source reference system detection from WKT

Behaviour:
- A corrupt header aborts before any record is emitted.
- A corrupt record is reported and skipped; the next record is decoded.
- Null shapes are skipped silently.
- Deleted attribute rows drop the matching shape.
- ``ShapefileDecoder`` is a lazy, single-pass iterator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from geo_import.core.config import DecoderLimits
from geo_import.decoders.shapefile._constants import FILE_CODE, FILE_VERSION, ShapeType
from geo_import.decoders.shapefile._dbf import DbfField, DbfTable, read_dbf
from geo_import.decoders.shapefile._geometry import group_rings, shape_to_geometry, signed_area
from geo_import.decoders.shapefile._header import ShapefileHeader, parse_header
from geo_import.decoders.shapefile._prj import detect_srid
from geo_import.decoders.shapefile._records import ShapeRecord, iter_shape_records
from geo_import.models.feature import Feature, normalize_attributes

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from geo_import.core.exceptions import RecordError

logger = logging.getLogger("geo_import.decoders.shapefile")

__all__ = [
    "FILE_CODE",
    "FILE_VERSION",
    "DbfField",
    "DbfTable",
    "ShapeRecord",
    "ShapeType",
    "ShapefileDecodeResult",
    "ShapefileDecoder",
    "ShapefileHeader",
    "decode_shapefile",
    "detect_srid",
    "group_rings",
    "iter_shape_records",
    "load_shapefile",
    "parse_header",
    "read_dbf",
    "shape_to_geometry",
    "signed_area",
]


@dataclass(frozen=True, slots=True)
class ShapefileDecodeResult:
    """Fully materialised decode outcome.

    Attributes:
        header: Parsed main-file header.
        srid: Source reference system (explicit or detected from ``.prj``).
        features: Decoded features in record order.
        errors: One entry per corrupt record.
    """

    header: ShapefileHeader
    srid: int | None
    features: tuple[Feature, ...]
    errors: tuple[RecordError, ...]


class ShapefileDecoder:
    """Lazy, non-restartable shapefile decoder.

    The header and companions are decoded on construction so that a
    structurally corrupt file fails before iteration starts.  Record
    errors encountered while iterating are appended to ``errors``.

    Raises:
        StructuralError: On construction, for a corrupt header or DBF.
    """

    def __init__(
        self,
        shp_bytes: bytes,
        *,
        dbf_bytes: bytes | None = None,
        prj_text: str | None = None,
        limits: DecoderLimits | None = None,
        srid: int | None = None,
        encoding: str = "utf-8",
    ) -> None:
        self.header = parse_header(shp_bytes)
        self.limits = limits or DecoderLimits()
        if srid is None and prj_text:
            srid = detect_srid(prj_text)
        self.srid = srid
        self.table = read_dbf(dbf_bytes, encoding=encoding) if dbf_bytes else None
        self.errors: list[RecordError] = []
        self._buffer = shp_bytes
        self._started = False

    def __iter__(self) -> Iterator[Feature]:
        if self._started:
            msg = "ShapefileDecoder is single-pass and has already been iterated"
            raise RuntimeError(msg)
        self._started = True
        return self._features()

    def _features(self) -> Iterator[Feature]:
        next_id = 1
        skipped_null = 0
        for item in iter_shape_records(self._buffer, self.header, self.limits):
            if not isinstance(item, ShapeRecord):
                logger.warning(
                    "shapefile record rejected | index=%d | error=%s",
                    item.record_index,
                    item,
                )
                self.errors.append(item)
                continue

            if item.is_null:
                skipped_null += 1
                continue

            row = self.table.get(item.record_index) if self.table is not None else {}
            if row is None:
                logger.debug("shapefile record deleted in dbf | index=%d", item.record_index)
                continue

            geometry = shape_to_geometry(item, self.srid)
            if geometry is None:
                continue
            yield Feature(
                id=next_id,
                geometry=geometry,
                attributes=normalize_attributes(row, record_index=item.record_index),
                source_index=item.record_index,
            )
            next_id += 1

        logger.info(
            "shapefile decoded | features=%d | errors=%d | null_shapes=%d | srid=%s",
            next_id - 1,
            len(self.errors),
            skipped_null,
            self.srid,
        )


def decode_shapefile(
    shp_bytes: bytes,
    *,
    dbf_bytes: bytes | None = None,
    prj_text: str | None = None,
    limits: DecoderLimits | None = None,
    srid: int | None = None,
) -> ShapefileDecodeResult:
    """Decode a whole shapefile into memory.

    Raises:
        StructuralError: If the header or DBF companion is corrupt.
    """
    decoder = ShapefileDecoder(
        shp_bytes, dbf_bytes=dbf_bytes, prj_text=prj_text, limits=limits, srid=srid
    )
    features = tuple(decoder)
    return ShapefileDecodeResult(
        header=decoder.header,
        srid=decoder.srid,
        features=features,
        errors=tuple(decoder.errors),
    )


def load_shapefile(
    path: Path, *, limits: DecoderLimits | None = None, srid: int | None = None
) -> ShapefileDecoder:
    """Open ``path`` and its sibling ``.dbf``/``.prj`` files, if present."""
    dbf_path = path.with_suffix(".dbf")
    prj_path = path.with_suffix(".prj")
    return ShapefileDecoder(
        path.read_bytes(),
        dbf_bytes=dbf_path.read_bytes() if dbf_path.exists() else None,
        prj_text=prj_path.read_text(errors="replace") if prj_path.exists() else None,
        limits=limits,
        srid=srid,
    )
