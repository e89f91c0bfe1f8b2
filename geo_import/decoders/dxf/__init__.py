"""DXF decoder — ASCII drawing exchange format to features.

The decoding pipeline is split into focused stages:
- **_group_codes**: static code-range table and typed value coercion
- **_tokens**: line-pair tokeniser (code line, value line)
- **_entities**: entity assembly and geometry derivation

Behaviour:
- Tokens with a disallowed code or an invalid value are dropped and
  reported; parsing continues with the next pair.
- Only entities in ``ALLOWED_ENTITY_TYPES`` become features.
- ``POLYLINE`` gathers its ``VERTEX`` entities up to ``SEQEND``.
- Input with no group-code structure at all is a ``StructuralError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from geo_import.core.exceptions import RecordError
from geo_import.decoders.dxf._entities import (
    ALLOWED_ENTITY_TYPES,
    DxfEntity,
    derive_geometry,
)
from geo_import.decoders.dxf._group_codes import (
    GROUP_CODE_RANGES,
    ValueKind,
    classify_group_code,
    coerce_group_value,
)
from geo_import.decoders.dxf._tokens import GroupToken, tokenize
from geo_import.models.feature import Feature, normalize_attributes

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

logger = logging.getLogger("geo_import.decoders.dxf")

__all__ = [
    "ALLOWED_ENTITY_TYPES",
    "GROUP_CODE_RANGES",
    "DxfDecodeResult",
    "DxfEntity",
    "GroupToken",
    "ValueKind",
    "classify_group_code",
    "coerce_group_value",
    "decode_dxf",
    "iter_entities",
    "load_dxf",
    "tokenize",
]


@dataclass(frozen=True, slots=True)
class DxfDecodeResult:
    """Decode outcome.

    Attributes:
        entities: Allowed entities with derived geometry, in stream order.
        features: One feature per entity with geometry.
        errors: Dropped tokens and rejected entities.
        insunits: ``$INSUNITS`` header value, when present.
        srid: Source reference system passed by the caller.
    """

    entities: tuple[DxfEntity, ...]
    features: tuple[Feature, ...]
    errors: tuple[RecordError, ...]
    insunits: int | None = None
    srid: int | None = None


@dataclass(slots=True)
class _SectionState:
    name: str | None = None
    saw_sections: bool = False
    header_var: str | None = None
    insunits: int | None = None
    done: bool = False


def iter_entities(
    tokens: Iterator[GroupToken | RecordError],
    errors: list[RecordError],
    state: _SectionState | None = None,
) -> Iterator[DxfEntity]:
    """Group tokens into entities, appending token errors to *errors*."""
    state = state or _SectionState()
    current: DxfEntity | None = None
    open_polyline: DxfEntity | None = None
    pending_section = False

    for token in tokens:
        if isinstance(token, RecordError):
            errors.append(token)
            continue

        if pending_section:
            pending_section = False
            if token.code == 2:
                state.name = str(token.value).upper()
                continue

        if token.code == 0:
            value = str(token.value).upper()
            if current is not None:
                yield current
                current = None

            if value == "SECTION":
                state.saw_sections = True
                pending_section = True
                continue
            if value == "ENDSEC":
                state.name = None
                continue
            if value == "EOF":
                state.done = True
                break
            if not _in_entity_scope(state):
                continue

            if value == "VERTEX" and open_polyline is not None:
                open_polyline.vertices.append([])
                continue
            if value == "SEQEND" and open_polyline is not None:
                yield open_polyline
                open_polyline = None
                continue
            if open_polyline is not None:
                # Missing SEQEND; close the polyline before the next entity
                yield open_polyline
                open_polyline = None

            entity = DxfEntity(entity_type=value, index=token.index)
            if value == "POLYLINE":
                open_polyline = entity
            else:
                current = entity
            continue

        if state.name == "HEADER":
            _read_header_var(token, state)
            continue
        if not _in_entity_scope(state):
            continue

        if open_polyline is not None:
            if open_polyline.vertices:
                open_polyline.vertices[-1].append((token.code, token.value))
            else:
                open_polyline.pairs.append((token.code, token.value))
        elif current is not None:
            current.pairs.append((token.code, token.value))

    if current is not None:
        yield current
    if open_polyline is not None:
        yield open_polyline


def decode_dxf(text: str, *, srid: int | None = None) -> DxfDecodeResult:
    """Decode an ASCII DXF document.

    Raises:
        StructuralError: If the text has no DXF group-code structure.
    """
    errors: list[RecordError] = []
    state = _SectionState()
    entities: list[DxfEntity] = []
    features: list[Feature] = []

    for entity in iter_entities(tokenize(text), errors, state):
        if entity.entity_type not in ALLOWED_ENTITY_TYPES:
            errors.append(
                RecordError(
                    f"Entity type {entity.entity_type} is not supported",
                    record_index=entity.index,
                    stage="decode_dxf",
                )
            )
            continue
        try:
            entity.geometry = derive_geometry(entity, srid)
            attributes = normalize_attributes(entity.attributes(), record_index=entity.index)
        except RecordError as exc:
            errors.append(exc)
            continue
        entities.append(entity)
        features.append(
            Feature(
                id=len(features) + 1,
                geometry=entity.geometry,
                attributes=attributes,
                source_index=entity.index,
            )
        )

    if errors:
        logger.warning(
            "dxf decoded with errors | features=%d | errors=%d | first_error=%s",
            len(features),
            len(errors),
            errors[0],
        )
    else:
        logger.info("dxf decoded | features=%d | insunits=%s", len(features), state.insunits)

    return DxfDecodeResult(
        entities=tuple(entities),
        features=tuple(features),
        errors=tuple(errors),
        insunits=state.insunits,
        srid=srid,
    )


def load_dxf(path: Path, *, srid: int | None = None) -> DxfDecodeResult:
    """Read and decode a DXF file from disk."""
    return decode_dxf(path.read_text(errors="replace"), srid=srid)


def _in_entity_scope(state: _SectionState) -> bool:
    # Files without SECTION markers are treated as a bare entity stream
    return state.name == "ENTITIES" or not state.saw_sections


def _read_header_var(token: GroupToken, state: _SectionState) -> None:
    if token.code == 9:
        state.header_var = str(token.value)
    elif state.header_var == "$INSUNITS" and token.code == 70:
        state.insunits = int(token.value)
        state.header_var = None
