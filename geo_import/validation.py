"""Structural geometry validation.

Responsibilities:
- Per-kind structural rules (vertex counts, ring closure)
- Finite, 2- or 3-component positions everywhere
- Optional topology check with shapely (``is_valid``)
- Dataset-level summary of features with issues

All checks are pure: features are returned as annotated copies and
geometry is never modified.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from numbers import Real
from typing import TYPE_CHECKING, Any

from geo_import.models.feature import ValidationIssue, ValidationResult
from geo_import.models.geometry import GeometryKind

if TYPE_CHECKING:
    from collections.abc import Iterable

    from geo_import.models.feature import Feature
    from geo_import.models.geometry import GeometryRecord

logger = logging.getLogger("geo_import.validation")

MIN_LINE_VERTICES = 2
# 3 distinct vertices + closing vertex
MIN_RING_VERTICES = 4

# Issue codes
NON_FINITE = "NON_FINITE"
BAD_DIMENSION = "BAD_DIMENSION"
MALFORMED = "MALFORMED"
TOO_FEW_VERTICES = "TOO_FEW_VERTICES"
RING_TOO_SHORT = "RING_TOO_SHORT"
RING_NOT_CLOSED = "RING_NOT_CLOSED"
EMPTY = "EMPTY"
TOPOLOGY = "TOPOLOGY"


@dataclass(frozen=True, slots=True)
class ValidationSummary:
    """Dataset-level aggregate.

    Attributes:
        total: Features inspected.
        with_issues: Features whose validation failed.
        issue_counts: Occurrences per issue code.
    """

    total: int
    with_issues: int
    issue_counts: dict[str, int] = field(default_factory=dict)

    @property
    def valid(self) -> int:
        return self.total - self.with_issues


def validate_geometry(record: GeometryRecord, *, check_topology: bool = False) -> ValidationResult:
    """Check *record* against the structural rules of its kind."""
    issues: list[ValidationIssue] = []
    try:
        _check(record.kind, record.coordinates, "", issues)
    except TypeError as exc:
        issues.append(ValidationIssue(MALFORMED, f"Coordinate nesting is malformed: {exc}"))

    if check_topology and not issues:
        issues.extend(_topology_issues(record))
    return ValidationResult.from_issues(issues)


def validate_feature(feature: Feature, *, check_topology: bool = False) -> Feature:
    """Return a copy of *feature* with its ``ValidationResult`` attached."""
    return feature.with_validation(validate_geometry(feature.geometry, check_topology=check_topology))


def summarize_validation(features: Iterable[Feature]) -> ValidationSummary:
    """Aggregate attached validation results.

    Features that were never validated are validated on the fly.
    """
    total = 0
    with_issues = 0
    counts: Counter[str] = Counter()
    for feature in features:
        total += 1
        result = feature.validation or validate_geometry(feature.geometry)
        if not result.is_valid:
            with_issues += 1
            counts.update(issue.code for issue in result.issues)
    if with_issues:
        logger.info(
            "validation summary | total=%d | with_issues=%d | codes=%s",
            total,
            with_issues,
            dict(counts),
        )
    return ValidationSummary(total=total, with_issues=with_issues, issue_counts=dict(counts))


# ---------------------------------------------------------------------------
# Per-kind rules
# ---------------------------------------------------------------------------


def _check(kind: GeometryKind, coords: Any, path: str, issues: list[ValidationIssue]) -> None:
    if kind == GeometryKind.POINT:
        _check_position(coords, path, issues)
    elif kind == GeometryKind.LINE_STRING:
        _check_line(coords, path, issues)
    elif kind == GeometryKind.POLYGON:
        _check_polygon(coords, path, issues)
    elif kind == GeometryKind.MULTI_POINT:
        _check_members(GeometryKind.POINT, coords, path, issues)
    elif kind == GeometryKind.MULTI_LINE_STRING:
        _check_members(GeometryKind.LINE_STRING, coords, path, issues)
    elif kind == GeometryKind.MULTI_POLYGON:
        _check_members(GeometryKind.POLYGON, coords, path, issues)


def _check_members(
    member_kind: GeometryKind, coords: Any, path: str, issues: list[ValidationIssue]
) -> None:
    if len(coords) == 0:
        issues.append(ValidationIssue(EMPTY, "Multi-geometry has no members", path))
        return
    for i, member in enumerate(coords):
        _check(member_kind, member, _join(path, i), issues)


def _check_position(position: Any, path: str, issues: list[ValidationIssue]) -> None:
    if not isinstance(position, (list, tuple)) or len(position) not in (2, 3):
        issues.append(ValidationIssue(BAD_DIMENSION, "Position must have 2 or 3 components", path))
        return
    for value in position:
        if isinstance(value, bool) or not isinstance(value, Real) or not math.isfinite(value):
            issues.append(ValidationIssue(NON_FINITE, f"Component {value!r} is not finite", path))
            return


def _check_line(coords: Any, path: str, issues: list[ValidationIssue]) -> None:
    if len(coords) < MIN_LINE_VERTICES:
        issues.append(
            ValidationIssue(
                TOO_FEW_VERTICES,
                f"LineString needs at least {MIN_LINE_VERTICES} vertices, got {len(coords)}",
                path,
            )
        )
    for i, position in enumerate(coords):
        _check_position(position, _join(path, i), issues)


def _check_polygon(rings: Any, path: str, issues: list[ValidationIssue]) -> None:
    if len(rings) == 0:
        issues.append(ValidationIssue(EMPTY, "Polygon has no rings", path))
        return
    for r, ring in enumerate(rings):
        ring_path = _join(path, r)
        if len(ring) < MIN_RING_VERTICES:
            issues.append(
                ValidationIssue(
                    RING_TOO_SHORT,
                    f"Ring needs at least {MIN_RING_VERTICES} vertices, got {len(ring)}",
                    ring_path,
                )
            )
        elif tuple(ring[0]) != tuple(ring[-1]):
            issues.append(ValidationIssue(RING_NOT_CLOSED, "First and last vertex differ", ring_path))
        for i, position in enumerate(ring):
            _check_position(position, _join(ring_path, i), issues)


def _topology_issues(record: GeometryRecord) -> list[ValidationIssue]:
    from shapely.validation import explain_validity

    try:
        geometry = record.to_shapely()
    except Exception as exc:
        return [ValidationIssue(TOPOLOGY, f"Cannot build geometry: {exc}")]
    if geometry.is_valid:
        return []
    return [ValidationIssue(TOPOLOGY, explain_validity(geometry))]


def _join(path: str, index: int) -> str:
    return f"{path}/{index}" if path else str(index)
