"""Tests for the shapefile decoder.

Covers:
- Header checks (file code, version, length, finite bounds) are fatal
- Record walk: per-record errors, limits, truncation, unknown types
- Geometry mapping, including ring orientation into shells and holes
- DBF attribute join, deleted rows, PRJ reference-system detection
- Single-pass iteration
"""

from __future__ import annotations

import datetime
import struct

import pytest

from geo_import.core.config import DecoderLimits
from geo_import.core.exceptions import RecordError, StructuralError
from geo_import.decoders.shapefile import (
    ShapefileDecoder,
    ShapeType,
    decode_shapefile,
    detect_srid,
    group_rings,
    iter_shape_records,
    load_shapefile,
    parse_header,
    read_dbf,
    signed_area,
)
from geo_import.models.geometry import GeometryKind

CW_SHELL = [(0.0, 0.0), (0.0, 10.0), (10.0, 10.0), (10.0, 0.0), (0.0, 0.0)]
CCW_HOLE = [(2.0, 2.0), (4.0, 2.0), (4.0, 4.0), (2.0, 4.0), (2.0, 2.0)]
CW_SHELL_2 = [(20.0, 0.0), (20.0, 5.0), (25.0, 5.0), (25.0, 0.0), (20.0, 0.0)]


# ===================================================================
# Header
# ===================================================================


class TestParseHeader:
    """The 100-byte main header is validated before any record."""

    def test_valid_header(self, shapefile_bytes) -> None:
        buffer = shapefile_bytes.shp([], shape_type=1, bbox=(1.0, 2.0, 3.0, 4.0))
        header = parse_header(buffer)
        assert header.file_length == 100
        assert header.shape_type == 1
        assert header.bbox == (1.0, 2.0, 3.0, 4.0)

    def test_short_buffer(self) -> None:
        with pytest.raises(StructuralError, match="too short"):
            parse_header(b"\x00" * 99)

    def test_wrong_file_code(self, shapefile_bytes) -> None:
        with pytest.raises(StructuralError, match="file code"):
            parse_header(shapefile_bytes.shp([], file_code=1234))

    def test_wrong_version(self, shapefile_bytes) -> None:
        with pytest.raises(StructuralError, match="version"):
            parse_header(shapefile_bytes.shp([], version=999))

    def test_length_past_buffer(self, shapefile_bytes) -> None:
        with pytest.raises(StructuralError, match="length"):
            parse_header(shapefile_bytes.shp([], length_words=500))

    def test_non_finite_bbox(self, shapefile_bytes) -> None:
        with pytest.raises(StructuralError, match="not finite"):
            parse_header(shapefile_bytes.shp([], bbox=(float("nan"), 0.0, 1.0, 1.0)))

    def test_structural_error_emits_nothing(self, shapefile_bytes) -> None:
        buffer = shapefile_bytes.shp([shapefile_bytes.point(1.0, 2.0)], version=7)
        with pytest.raises(StructuralError):
            decode_shapefile(buffer)

    def test_structural_error_is_permanent(self) -> None:
        with pytest.raises(StructuralError) as exc_info:
            parse_header(b"")
        assert exc_info.value.code == "STRUCTURAL_ERROR"
        assert exc_info.value.retryable is False


# ===================================================================
# Records
# ===================================================================


class TestRecordWalk:
    """Per-record problems are reported and decoding continues."""

    def test_points_decoded_in_order(self, shapefile_bytes) -> None:
        buffer = shapefile_bytes.shp(
            [shapefile_bytes.point(1.0, 2.0), shapefile_bytes.point(3.0, 4.0)], shape_type=1
        )
        result = decode_shapefile(buffer)
        assert [f.geometry.coordinates for f in result.features] == [(1.0, 2.0), (3.0, 4.0)]
        assert [f.id for f in result.features] == [1, 2]
        assert result.errors == ()

    def test_unknown_shape_type_is_record_error(self, shapefile_bytes) -> None:
        bad = struct.pack("<i2d", 99, 0.0, 0.0)
        buffer = shapefile_bytes.shp(
            [shapefile_bytes.point(1.0, 1.0), bad, shapefile_bytes.point(2.0, 2.0)], shape_type=1
        )
        result = decode_shapefile(buffer)
        assert len(result.features) == 2
        assert len(result.errors) == 1
        assert result.errors[0].record_index == 1
        assert "unknown shape type 99" in result.errors[0].message

    def test_multipatch_unsupported(self, shapefile_bytes) -> None:
        buffer = shapefile_bytes.shp([struct.pack("<i4d", 31, 0, 0, 0, 0)], shape_type=31)
        result = decode_shapefile(buffer)
        assert result.features == ()
        assert "multipatch" in result.errors[0].message

    def test_null_shapes_skipped_silently(self, shapefile_bytes) -> None:
        buffer = shapefile_bytes.shp(
            [shapefile_bytes.null(), shapefile_bytes.point(5.0, 6.0)], shape_type=1
        )
        result = decode_shapefile(buffer)
        assert len(result.features) == 1
        assert result.features[0].source_index == 1
        assert result.errors == ()

    def test_record_length_limit(self, shapefile_bytes) -> None:
        big = shapefile_bytes.multipart(3, [[(0.0, 0.0), (1.0, 1.0), (2.0, 2.0)]])
        buffer = shapefile_bytes.shp([big, shapefile_bytes.point(1.0, 1.0)], shape_type=3)
        result = decode_shapefile(buffer, limits=DecoderLimits(max_record_length_bytes=40))
        assert len(result.errors) == 1
        assert "exceeds limit" in result.errors[0].message
        assert len(result.features) == 1

    def test_part_limit(self, shapefile_bytes) -> None:
        content = shapefile_bytes.multipart(3, [[(0.0, 0.0), (1.0, 1.0)], [(2.0, 2.0), (3.0, 3.0)]])
        result = decode_shapefile(
            shapefile_bytes.shp([content], shape_type=3), limits=DecoderLimits(max_parts=1)
        )
        assert result.features == ()
        assert "part count" in result.errors[0].message

    def test_point_limit(self, shapefile_bytes) -> None:
        content = shapefile_bytes.multipoint([(0.0, 0.0), (1.0, 1.0), (2.0, 2.0)])
        result = decode_shapefile(
            shapefile_bytes.shp([content], shape_type=8), limits=DecoderLimits(max_points=2)
        )
        assert "point count" in result.errors[0].message

    def test_part_indices_must_increase(self, shapefile_bytes) -> None:
        content = shapefile_bytes.multipart(
            3, [[(0.0, 0.0), (1.0, 1.0)], [(2.0, 2.0), (3.0, 3.0)]], starts=[2, 0]
        )
        result = decode_shapefile(shapefile_bytes.shp([content], shape_type=3))
        assert "strictly increasing" in result.errors[0].message

    def test_part_index_out_of_range(self, shapefile_bytes) -> None:
        content = shapefile_bytes.multipart(3, [[(0.0, 0.0), (1.0, 1.0)]], starts=[5])
        result = decode_shapefile(shapefile_bytes.shp([content], shape_type=3))
        assert "part index 5" in result.errors[0].message

    def test_first_part_must_start_at_zero(self, shapefile_bytes) -> None:
        content = shapefile_bytes.multipart(
            3, [[(0.0, 0.0), (1.0, 1.0)], [(2.0, 2.0), (3.0, 3.0)]], starts=[1, 2]
        )
        result = decode_shapefile(shapefile_bytes.shp([content], shape_type=3))
        assert result.features == ()
        assert "first part starts at 1" in result.errors[0].message

    def test_content_past_end_stops_walk(self, shapefile_bytes) -> None:
        buffer = shapefile_bytes.shp([shapefile_bytes.point(1.0, 1.0)], shape_type=1)
        # Declare a record that claims far more content than the file holds
        buffer += struct.pack(">ii", 2, 500)
        buffer = buffer[:24] + struct.pack(">i", len(buffer) // 2) + buffer[28:]
        result = decode_shapefile(buffer)
        assert len(result.features) == 1
        assert "runs past end" in result.errors[0].message

    def test_truncated_content_is_record_error(self, shapefile_bytes) -> None:
        # Polyline content cut short after the counts
        content = struct.pack("<i4d2i", 3, 0, 0, 1, 1, 1, 2)
        result = decode_shapefile(shapefile_bytes.shp([content], shape_type=3))
        assert result.features == ()
        assert isinstance(result.errors[0], RecordError)

    def test_non_finite_point_rejected(self, shapefile_bytes) -> None:
        buffer = shapefile_bytes.shp([shapefile_bytes.point(float("inf"), 1.0)], shape_type=1)
        result = decode_shapefile(buffer)
        assert "not finite" in result.errors[0].message

    def test_iter_shape_records_keeps_null_records(self, shapefile_bytes) -> None:
        buffer = shapefile_bytes.shp([shapefile_bytes.null()], shape_type=0)
        items = list(iter_shape_records(buffer, parse_header(buffer), DecoderLimits()))
        assert len(items) == 1
        assert items[0].is_null


# ===================================================================
# Geometry mapping
# ===================================================================


class TestGeometryMapping:
    """Shape types map onto geometry kinds."""

    def test_point_z(self, shapefile_bytes) -> None:
        buffer = shapefile_bytes.shp([shapefile_bytes.point_z(1.0, 2.0, 3.0, 4.0)], shape_type=11)
        feature = decode_shapefile(buffer).features[0]
        assert feature.geometry.kind == GeometryKind.POINT
        assert feature.geometry.coordinates == (1.0, 2.0, 3.0)

    def test_multipoint(self, shapefile_bytes) -> None:
        buffer = shapefile_bytes.shp(
            [shapefile_bytes.multipoint([(0.0, 0.0), (1.0, 1.0)])], shape_type=8
        )
        geometry = decode_shapefile(buffer).features[0].geometry
        assert geometry.kind == GeometryKind.MULTI_POINT
        assert geometry.coordinates == ((0.0, 0.0), (1.0, 1.0))

    def test_single_part_polyline(self, shapefile_bytes) -> None:
        content = shapefile_bytes.multipart(3, [[(0.0, 0.0), (5.0, 5.0)]])
        geometry = decode_shapefile(shapefile_bytes.shp([content], shape_type=3)).features[0].geometry
        assert geometry.kind == GeometryKind.LINE_STRING

    def test_multi_part_polyline(self, shapefile_bytes) -> None:
        content = shapefile_bytes.multipart(3, [[(0.0, 0.0), (1.0, 1.0)], [(2.0, 2.0), (3.0, 3.0)]])
        geometry = decode_shapefile(shapefile_bytes.shp([content], shape_type=3)).features[0].geometry
        assert geometry.kind == GeometryKind.MULTI_LINE_STRING
        assert len(geometry.coordinates) == 2

    def test_polygon_with_hole(self, shapefile_bytes) -> None:
        content = shapefile_bytes.multipart(5, [CW_SHELL, CCW_HOLE])
        geometry = decode_shapefile(shapefile_bytes.shp([content])).features[0].geometry
        assert geometry.kind == GeometryKind.POLYGON
        assert len(geometry.coordinates) == 2

    def test_two_shells_make_multipolygon(self, shapefile_bytes) -> None:
        content = shapefile_bytes.multipart(5, [CW_SHELL, CCW_HOLE, CW_SHELL_2])
        geometry = decode_shapefile(shapefile_bytes.shp([content])).features[0].geometry
        assert geometry.kind == GeometryKind.MULTI_POLYGON
        assert [len(polygon) for polygon in geometry.coordinates] == [2, 1]

    def test_polygon_z_keeps_third_component(self, shapefile_bytes) -> None:
        content = shapefile_bytes.multipart(15, [CW_SHELL], z=[1.0, 2.0, 3.0, 4.0, 1.0])
        geometry = decode_shapefile(shapefile_bytes.shp([content], shape_type=15)).features[0].geometry
        assert geometry.coordinates[0][1] == (0.0, 10.0, 2.0)

    def test_signed_area_orientation(self) -> None:
        assert signed_area(tuple(CW_SHELL)) < 0
        assert signed_area(tuple(CCW_HOLE)) > 0

    def test_leading_hole_promoted_to_shell(self) -> None:
        polygons = group_rings([tuple(CCW_HOLE), tuple(CW_SHELL)])
        assert len(polygons) == 2

    def test_shape_type_helpers(self) -> None:
        assert ShapeType.POLYGON_Z.has_z
        assert ShapeType.POLYGON_Z.base == ShapeType.POLYGON
        assert ShapeType.POINT_M.has_m
        assert not ShapeType.POINT.has_m


# ===================================================================
# DBF companion
# ===================================================================

FIELDS = [("NAME", "C", 10, 0), ("AREA", "N", 8, 2), ("COUNT", "N", 4, 0), ("OK", "L", 1, 0), ("DAY", "D", 8, 0)]


class TestDbf:
    """Attribute table decoding and join."""

    def test_field_types_converted(self, shapefile_bytes) -> None:
        table = read_dbf(shapefile_bytes.dbf(FIELDS, [["Parcel A", "12.50", "7", "T", "20240131"]]))
        assert [f.name for f in table.fields] == ["NAME", "AREA", "COUNT", "OK", "DAY"]
        assert table.records[0] == {
            "NAME": "Parcel A",
            "AREA": 12.5,
            "COUNT": 7,
            "OK": True,
            "DAY": datetime.date(2024, 1, 31),
        }

    def test_blank_and_unparsable_values_become_none(self, shapefile_bytes) -> None:
        table = read_dbf(shapefile_bytes.dbf(FIELDS, [["", "********", "", "?", "        "]]))
        assert set(table.records[0].values()) == {None}

    def test_deleted_rows_are_none(self, shapefile_bytes) -> None:
        table = read_dbf(
            shapefile_bytes.dbf(FIELDS[:1], [["a"], ["b"]], deleted=frozenset({0}))
        )
        assert table.records[0] is None
        assert table.records[1] == {"NAME": "b"}

    def test_short_dbf_is_structural(self) -> None:
        with pytest.raises(StructuralError):
            read_dbf(b"\x03" * 10)

    def test_attributes_joined_and_deleted_row_skips_feature(self, shapefile_bytes) -> None:
        shp = shapefile_bytes.shp(
            [shapefile_bytes.point(0.0, 0.0), shapefile_bytes.point(1.0, 1.0), shapefile_bytes.point(2.0, 2.0)],
            shape_type=1,
        )
        dbf = shapefile_bytes.dbf(FIELDS[:1], [["a"], ["b"], ["c"]], deleted=frozenset({1}))
        result = decode_shapefile(shp, dbf_bytes=dbf)
        assert [f.attributes["NAME"] for f in result.features] == ["a", "c"]
        assert [f.id for f in result.features] == [1, 2]
        assert [f.source_index for f in result.features] == [0, 2]


# ===================================================================
# PRJ companion
# ===================================================================

LV95_WKT = (
    'PROJCS["CH1903+_LV95",GEOGCS["GCS_CH1903+",DATUM["D_CH1903+",'
    'SPHEROID["Bessel_1841",6377397.155,299.1528128]]],PROJECTION["Hotine_Oblique_Mercator"]]'
)


class TestPrjDetection:
    def test_lv95_by_name(self, shapefile_bytes) -> None:
        shp = shapefile_bytes.shp([shapefile_bytes.point(2600000.0, 1200000.0)], shape_type=1)
        result = decode_shapefile(shp, prj_text=LV95_WKT)
        assert result.srid == 2056
        assert result.features[0].geometry.srid == 2056

    def test_explicit_srid_wins(self, shapefile_bytes) -> None:
        shp = shapefile_bytes.shp([shapefile_bytes.point(0.0, 0.0)], shape_type=1)
        assert decode_shapefile(shp, prj_text=LV95_WKT, srid=21781).srid == 21781

    @pytest.mark.parametrize(
        ("wkt", "expected"),
        [
            ('PROJCS["CH1903_LV03",GEOGCS["GCS_CH1903"]]', 21781),
            ('GEOGCS["GCS_WGS_1984",DATUM["D_WGS_1984"]]', 4326),
            ('PROJCS["WGS_1984_Web_Mercator_Auxiliary_Sphere"]', 3857),
            ('PROJCS["x",GEOGCS["y",AUTHORITY["EPSG","4326"]],AUTHORITY["EPSG","32632"]]', 32632),
            ('PROJCS["Unknown"]', None),
            ("", None),
        ],
    )
    def test_detect_srid(self, wkt: str, expected: int | None) -> None:
        assert detect_srid(wkt) == expected


# ===================================================================
# Iteration and file loading
# ===================================================================


class TestShapefileDecoder:
    def test_single_pass(self, shapefile_bytes) -> None:
        decoder = ShapefileDecoder(shapefile_bytes.shp([shapefile_bytes.point(0.0, 0.0)], shape_type=1))
        assert len(list(decoder)) == 1
        with pytest.raises(RuntimeError, match="single-pass"):
            iter(decoder)

    def test_errors_collected_while_iterating(self, shapefile_bytes) -> None:
        bad = struct.pack("<i2d", 42, 0.0, 0.0)
        decoder = ShapefileDecoder(shapefile_bytes.shp([bad], shape_type=1))
        assert decoder.errors == []
        assert list(decoder) == []
        assert len(decoder.errors) == 1

    def test_load_reads_companions(self, shapefile_bytes, tmp_path) -> None:
        shp_path = tmp_path / "parcels.shp"
        shp_path.write_bytes(shapefile_bytes.shp([shapefile_bytes.point(1.0, 2.0)], shape_type=1))
        (tmp_path / "parcels.dbf").write_bytes(shapefile_bytes.dbf(FIELDS[:1], [["x"]]))
        (tmp_path / "parcels.prj").write_text(LV95_WKT)

        decoder = load_shapefile(shp_path)
        features = list(decoder)
        assert decoder.srid == 2056
        assert features[0].attributes == {"NAME": "x"}
