"""Tests for geometry, feature and session models.

Covers:
- GeometryRecord position traversal, mapping and GeoJSON conversion
- Feature serialisation and attribute normalisation
- ImportSession state machine and counters
- Progress/error events and NDJSON encoding
- ImportSummary shape and checkpoint (de)serialisation
"""

from __future__ import annotations

import datetime
import json

import pytest

from geo_import.adapters.base import Checkpoint
from geo_import.core.exceptions import RecordError, SessionStateError
from geo_import.models.feature import (
    Feature,
    ValidationIssue,
    ValidationResult,
    apply_property_mapping,
    normalize_attributes,
)
from geo_import.models.geometry import GeometryKind, GeometryRecord
from geo_import.models.session import (
    ErrorEvent,
    FailedFeature,
    ImportBatch,
    ImportSession,
    ImportStatistics,
    ImportSummary,
    ProgressEvent,
    SessionState,
    encode_event,
)

SQUARE = ((0.0, 0.0), (0.0, 1.0), (1.0, 1.0), (1.0, 0.0), (0.0, 0.0))


# ===================================================================
# Geometry
# ===================================================================


class TestGeometryRecord:
    def test_iter_positions_in_document_order(self) -> None:
        record = GeometryRecord(GeometryKind.MULTI_POLYGON, ((SQUARE,), (SQUARE[:4] + (SQUARE[0],),)))
        assert record.vertex_count == 10
        assert next(record.iter_positions()) == (0.0, 0.0)

    def test_point_has_one_position(self) -> None:
        assert list(GeometryRecord(GeometryKind.POINT, (1.0, 2.0)).iter_positions()) == [(1.0, 2.0)]

    def test_map_positions_returns_copy(self) -> None:
        line = GeometryRecord(GeometryKind.LINE_STRING, ((0.0, 0.0), (1.0, 1.0)), 2056)
        moved = line.map_positions(lambda p: (p[0] + 10, p[1]))
        assert moved.coordinates == ((10.0, 0.0), (11.0, 1.0))
        assert moved.srid == 2056
        assert line.coordinates == ((0.0, 0.0), (1.0, 1.0))

    def test_with_positions(self) -> None:
        line = GeometryRecord(GeometryKind.LINE_STRING, ((0.0, 0.0), (1.0, 1.0)), 2056)
        replaced = line.with_positions([(5.0, 5.0), (6.0, 6.0)], 4326)
        assert replaced.coordinates == ((5.0, 5.0), (6.0, 6.0))
        assert replaced.srid == 4326

    @pytest.mark.parametrize("count", [1, 3])
    def test_with_positions_count_mismatch(self, count: int) -> None:
        line = GeometryRecord(GeometryKind.LINE_STRING, ((0.0, 0.0), (1.0, 1.0)))
        with pytest.raises(ValueError, match="Expected 2 positions"):
            line.with_positions([(0.0, 0.0)] * count, None)

    def test_geojson_round_trip(self) -> None:
        polygon = GeometryRecord(GeometryKind.POLYGON, (SQUARE,))
        payload = polygon.to_geojson()
        assert payload["type"] == "Polygon"
        assert payload["coordinates"][0][0] == [0.0, 0.0]
        assert GeometryRecord.from_geojson(payload) == polygon

    def test_from_geojson_unknown_type(self) -> None:
        with pytest.raises(ValueError, match="Unsupported geometry type"):
            GeometryRecord.from_geojson({"type": "GeometryCollection", "coordinates": []})

    def test_to_shapely(self) -> None:
        shape = GeometryRecord(GeometryKind.POLYGON, (SQUARE,)).to_shapely()
        assert shape.area == pytest.approx(1.0)

    def test_depth(self) -> None:
        assert [k.depth for k in GeometryKind] == [0, 1, 2, 1, 2, 3]


# ===================================================================
# Feature
# ===================================================================


class TestFeature:
    def test_to_dict_is_geojson_feature(self) -> None:
        feature = Feature(
            id=7,
            geometry=GeometryRecord(GeometryKind.POINT, (7.5, 46.9)),
            attributes={"name": "Bern", "surveyed": datetime.date(2024, 5, 1), "tags": ["a"]},
        )
        assert feature.to_dict() == {
            "type": "Feature",
            "id": 7,
            "geometry": {"type": "Point", "coordinates": [7.5, 46.9]},
            "properties": {"name": "Bern", "surveyed": "2024-05-01", "tags": ["a"]},
        }
        json.dumps(feature.to_dict())

    def test_with_geometry_keeps_identity_fields(self) -> None:
        feature = Feature(id=1, geometry=GeometryRecord(GeometryKind.POINT, (0.0, 0.0)), source_index=4)
        moved = feature.with_geometry(GeometryRecord(GeometryKind.POINT, (1.0, 1.0), 4326))
        assert moved.id == 1
        assert moved.source_index == 4
        assert feature.geometry.coordinates == (0.0, 0.0)

    def test_validation_describe(self) -> None:
        result = ValidationResult.from_issues(
            [ValidationIssue("EMPTY", "no rings"), ValidationIssue("NON_FINITE", "nan", "0/1")]
        )
        assert not result.is_valid
        assert result.describe() == "EMPTY: no rings; NON_FINITE: nan"
        assert result.issues[1].to_dict() == {"code": "NON_FINITE", "message": "nan", "path": "0/1"}

    def test_normalize_attributes(self) -> None:
        raw = {"a": 1, "b": (1, 2), "c": {"d": None}, 4: "key"}
        assert normalize_attributes(raw) == {"a": 1, "b": [1, 2], "c": {"d": None}, "4": "key"}

    def test_normalize_rejects_unsupported(self) -> None:
        with pytest.raises(RecordError, match="'c.d'") as exc_info:
            normalize_attributes({"c": {"d": object()}}, record_index=3)
        assert exc_info.value.record_index == 3

    def test_property_mapping(self) -> None:
        assert apply_property_mapping({"NAME": "x", "AREA": 2}, {"NAME": "name"}) == {
            "name": "x",
            "AREA": 2,
        }


# ===================================================================
# Session
# ===================================================================


class TestImportSession:
    def test_happy_path_transitions(self) -> None:
        session = ImportSession(id="s1", total=10)
        session.transition(SessionState.PROCESSING)
        session.transition(SessionState.COMPLETED)
        assert session.state.is_terminal

    @pytest.mark.parametrize(
        ("start", "target"),
        [
            (SessionState.CREATED, SessionState.COMPLETED),
            (SessionState.CREATED, SessionState.FAILED),
            (SessionState.CREATED, SessionState.CANCELLED),
            (SessionState.COMPLETED, SessionState.PROCESSING),
            (SessionState.FAILED, SessionState.COMPLETED),
            (SessionState.CANCELLED, SessionState.PROCESSING),
            (SessionState.PROCESSING, SessionState.CREATED),
        ],
    )
    def test_illegal_transitions(self, start: SessionState, target: SessionState) -> None:
        session = ImportSession(id="s1", total=1, state=start)
        with pytest.raises(SessionStateError) as exc_info:
            session.transition(target)
        assert exc_info.value.correlation_id == "s1"
        assert session.state == start

    def test_terminal_states_only_from_processing(self) -> None:
        for target in (SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED):
            session = ImportSession(id="s1", total=1)
            session.transition(SessionState.PROCESSING)
            session.transition(target)
            assert session.state == target

    def test_counters(self) -> None:
        session = ImportSession(id="s1", total=10, state=SessionState.PROCESSING, processed=6, failed=1)
        assert session.remaining == 3
        assert session.is_consistent
        session.state = SessionState.COMPLETED
        assert not session.is_consistent
        session.processed = 9
        assert session.is_consistent

    def test_batch_build(self) -> None:
        feature = Feature(id=1, geometry=GeometryRecord(GeometryKind.POINT, (0.0, 0.0)))
        batch = ImportBatch.build("s1", 4, [feature])
        assert batch.batch_id == "s1:4"
        assert len(batch) == 1
        assert batch.features == (feature,)


class TestEvents:
    def test_progress_event(self) -> None:
        event = ProgressEvent(batch_index=2, processed=250, failed=0, total=250, total_batches=3)
        assert event.to_dict() == {
            "type": "progress",
            "batchIndex": 2,
            "processed": 250,
            "failed": 0,
            "total": 250,
            "totalBatches": 3,
        }

    def test_error_event_with_and_without_batch(self) -> None:
        assert ErrorEvent("boom", "STORAGE_REJECTED", 1).to_dict() == {
            "type": "error",
            "error": {"message": "boom", "code": "STORAGE_REJECTED", "batchIndex": 1},
        }
        assert "batchIndex" not in ErrorEvent("boom", "X").to_dict()["error"]

    def test_encode_event_is_one_compact_line(self) -> None:
        line = encode_event(ProgressEvent(0, 1, 0, 1, 1))
        assert line.endswith("\n")
        assert line.count("\n") == 1
        assert " " not in line
        assert json.loads(line)["type"] == "progress"


class TestSummary:
    def test_to_dict(self) -> None:
        summary = ImportSummary(
            imported_features=9,
            collection_id="c1",
            layer_ids=("parcels",),
            failed_features=(FailedFeature(3, "RING_NOT_CLOSED: open", "GEOMETRY_INVALID"),),
            statistics=ImportStatistics(import_time_s=1.23456, validated_count=10, transformed_count=9),
        )
        assert summary.to_dict() == {
            "importedFeatures": 9,
            "collectionId": "c1",
            "layerIds": ["parcels"],
            "failedFeatures": [{"feature": 3, "error": "RING_NOT_CLOSED: open"}],
            "statistics": {"importTime": 1.235, "validatedCount": 10, "transformedCount": 9},
        }


class TestCheckpoint:
    def test_round_trip(self) -> None:
        checkpoint = Checkpoint(session_id="s1", batch_index=3, processed=400, failed=2)
        assert Checkpoint.from_dict(checkpoint.to_dict()) == checkpoint

    def test_batch_index_must_be_int(self) -> None:
        with pytest.raises(TypeError, match="batch_index"):
            Checkpoint.from_dict({"session_id": "s1", "batch_index": "3"})

    def test_missing_field(self) -> None:
        with pytest.raises(KeyError):
            Checkpoint.from_dict({"batch_index": 1})
