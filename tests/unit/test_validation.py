"""Tests for structural geometry validation."""

from __future__ import annotations

import pytest

from geo_import.models.feature import Feature
from geo_import.models.geometry import GeometryKind, GeometryRecord
from geo_import.validation import (
    BAD_DIMENSION,
    EMPTY,
    MALFORMED,
    NON_FINITE,
    RING_NOT_CLOSED,
    RING_TOO_SHORT,
    TOO_FEW_VERTICES,
    TOPOLOGY,
    summarize_validation,
    validate_feature,
    validate_geometry,
)

SQUARE = ((0.0, 0.0), (0.0, 1.0), (1.0, 1.0), (1.0, 0.0), (0.0, 0.0))
BOWTIE = ((0.0, 0.0), (1.0, 1.0), (1.0, 0.0), (0.0, 1.0), (0.0, 0.0))


def _codes(kind: GeometryKind, coords) -> list[str]:
    return [issue.code for issue in validate_geometry(GeometryRecord(kind, coords)).issues]


class TestValidateGeometry:
    @pytest.mark.parametrize(
        ("kind", "coords"),
        [
            (GeometryKind.POINT, (1.0, 2.0)),
            (GeometryKind.POINT, (1.0, 2.0, 3.0)),
            (GeometryKind.LINE_STRING, ((0.0, 0.0), (1.0, 1.0))),
            (GeometryKind.POLYGON, (SQUARE,)),
            (GeometryKind.MULTI_POINT, ((0.0, 0.0), (1.0, 1.0))),
            (GeometryKind.MULTI_LINE_STRING, (((0.0, 0.0), (1.0, 1.0)),)),
            (GeometryKind.MULTI_POLYGON, ((SQUARE,), (SQUARE,))),
        ],
    )
    def test_valid(self, kind: GeometryKind, coords) -> None:
        assert validate_geometry(GeometryRecord(kind, coords)).is_valid

    def test_point_dimension(self) -> None:
        assert _codes(GeometryKind.POINT, (1.0,)) == [BAD_DIMENSION]
        assert _codes(GeometryKind.POINT, (1.0, 2.0, 3.0, 4.0)) == [BAD_DIMENSION]

    def test_non_finite(self) -> None:
        assert _codes(GeometryKind.POINT, (float("nan"), 2.0)) == [NON_FINITE]

    def test_line_too_short(self) -> None:
        assert _codes(GeometryKind.LINE_STRING, ((0.0, 0.0),)) == [TOO_FEW_VERTICES]

    def test_ring_too_short(self) -> None:
        assert _codes(GeometryKind.POLYGON, (((0.0, 0.0), (1.0, 1.0), (0.0, 0.0)),)) == [
            RING_TOO_SHORT
        ]

    def test_ring_not_closed(self) -> None:
        ring = ((0.0, 0.0), (0.0, 1.0), (1.0, 1.0), (1.0, 0.0))
        assert _codes(GeometryKind.POLYGON, (ring,)) == [RING_NOT_CLOSED]

    def test_issue_path_points_at_member(self) -> None:
        result = validate_geometry(
            GeometryRecord(GeometryKind.MULTI_POLYGON, ((SQUARE,), ((SQUARE[0], SQUARE[1]),)))
        )
        assert [(i.code, i.path) for i in result.issues] == [(RING_TOO_SHORT, "1/0")]

    def test_empty_members(self) -> None:
        assert _codes(GeometryKind.MULTI_POINT, ()) == [EMPTY]
        assert _codes(GeometryKind.POLYGON, ()) == [EMPTY]

    def test_malformed_nesting(self) -> None:
        assert _codes(GeometryKind.LINE_STRING, 5) == [MALFORMED]

    def test_topology_check_is_opt_in(self) -> None:
        record = GeometryRecord(GeometryKind.POLYGON, (BOWTIE,))
        assert validate_geometry(record).is_valid
        result = validate_geometry(record, check_topology=True)
        assert [i.code for i in result.issues] == [TOPOLOGY]
        assert "Self-intersection" in result.issues[0].message


class TestValidateFeature:
    def test_returns_annotated_copy(self) -> None:
        feature = Feature(id=1, geometry=GeometryRecord(GeometryKind.POINT, (1.0, 2.0)))
        validated = validate_feature(feature)
        assert feature.validation is None
        assert validated.validation.is_valid
        assert validated.geometry is feature.geometry

    def test_summary(self) -> None:
        features = [
            Feature(id=1, geometry=GeometryRecord(GeometryKind.POINT, (1.0, 2.0))),
            Feature(id=2, geometry=GeometryRecord(GeometryKind.POINT, (float("inf"), 2.0))),
            validate_feature(
                Feature(id=3, geometry=GeometryRecord(GeometryKind.LINE_STRING, ((0.0, 0.0),)))
            ),
        ]
        summary = summarize_validation(features)
        assert summary.total == 3
        assert summary.with_issues == 2
        assert summary.valid == 1
        assert summary.issue_counts == {NON_FINITE: 1, TOO_FEW_VERTICES: 1}
