"""Data model for a decoded feature.

A Feature pairs one ``GeometryRecord`` with its attribute map.  It is
the output of the decoders and the unit of work for validation,
transformation and batching in the import orchestrator.
"""

from __future__ import annotations

import datetime
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Union

from geo_import.core.exceptions import RecordError

if TYPE_CHECKING:
    from geo_import.models.geometry import GeometryRecord

Scalar = Union[str, int, float, bool, None]
AttributeValue = Union[Scalar, datetime.date, list["AttributeValue"], dict[str, "AttributeValue"]]


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    """One problem found by the validation layer.

    Attributes:
        code: Machine-readable issue code (e.g. ``"RING_NOT_CLOSED"``).
        message: Human-readable description.
        path: Location inside the coordinate nesting (e.g. ``"0/2"``).
    """

    code: str
    message: str
    path: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message, "path": self.path}


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of validating one geometry."""

    is_valid: bool
    issues: tuple[ValidationIssue, ...] = ()

    @classmethod
    def from_issues(cls, issues: list[ValidationIssue]) -> ValidationResult:
        return cls(is_valid=not issues, issues=tuple(issues))

    def describe(self) -> str:
        """Join issue messages into a single line for error reporting."""
        return "; ".join(f"{i.code}: {i.message}" for i in self.issues)


@dataclass(frozen=True, slots=True)
class Feature:
    """A single decoded feature.

    Attributes:
        id: Identifier, unique within one dataset.
        geometry: Owned geometry record.
        attributes: Attribute map (see ``AttributeValue``).
        validation: Result attached by the validation layer, if run.
        source_index: Zero-based position of the record in its source file.
    """

    id: int
    geometry: GeometryRecord
    attributes: dict[str, AttributeValue] = field(default_factory=dict)
    validation: ValidationResult | None = None
    source_index: int = 0

    def with_validation(self, result: ValidationResult) -> Feature:
        return replace(self, validation=result)

    def with_geometry(self, geometry: GeometryRecord) -> Feature:
        return replace(self, geometry=geometry)

    def to_dict(self) -> dict[str, object]:
        """Serialise as a GeoJSON feature for storage writes."""
        return {
            "type": "Feature",
            "id": self.id,
            "geometry": self.geometry.to_geojson(),
            "properties": {k: _jsonable(v) for k, v in self.attributes.items()},
        }


# ---------------------------------------------------------------------------
# Attribute normalisation
# ---------------------------------------------------------------------------


def normalize_attributes(
    raw: Mapping[str, object], *, record_index: int = -1
) -> dict[str, AttributeValue]:
    """Coerce decoder output into the ``AttributeValue`` union.

    Tuples become lists and nested mappings are normalised recursively.

    Raises:
        RecordError: If a value (or a nested value) is not representable.
    """
    return {str(k): _normalize_value(v, str(k), record_index) for k, v in raw.items()}


def apply_property_mapping(
    attributes: Mapping[str, AttributeValue], mapping: Mapping[str, str]
) -> dict[str, AttributeValue]:
    """Rename attribute keys according to *mapping*; unmapped keys are kept."""
    return {mapping.get(key, key): value for key, value in attributes.items()}


def _normalize_value(value: object, key: str, record_index: int) -> AttributeValue:
    if value is None or isinstance(value, (str, bool, int, float, datetime.date)):
        return value  # type: ignore[return-value]
    if isinstance(value, (list, tuple)):
        return [_normalize_value(v, key, record_index) for v in value]
    if isinstance(value, Mapping):
        return {str(k): _normalize_value(v, f"{key}.{k}", record_index) for k, v in value.items()}
    msg = f"Attribute {key!r} has unsupported type {type(value).__name__}"
    raise RecordError(msg, record_index=record_index)


def _jsonable(value: AttributeValue) -> object:
    if isinstance(value, datetime.date):
        return value.isoformat()
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value
