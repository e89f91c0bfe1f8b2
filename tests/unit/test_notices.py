"""Tests for the session notice aggregator.

Covers:
- Counts per level and per error code
- Bounded window of recent notices
- Highest level tracking
- Storage-reported notices (unknown levels downgraded to warning)
- Exceptions recorded as error notices
- Pydantic summary serialisation
"""

from __future__ import annotations

import threading

import pytest

from geo_import.core.exceptions import BatchWriteError
from geo_import.models.notices import SCHEMA_VERSION, NoticeLevel, NoticeSummary
from geo_import.notices.aggregator import NoticeAggregator


class TestAddNotice:
    def test_counts_by_level(self) -> None:
        agg = NoticeAggregator("s1")
        agg.add_notice("info", "decoded")
        agg.add_notice(NoticeLevel.WARNING, "odd prj")
        agg.add_notice("warning", "odd prj again")
        assert agg.count("warning") == 2
        assert agg.count(NoticeLevel.INFO) == 1
        assert agg.count("error") == 0
        assert agg.summary().total == 3

    def test_notice_is_tagged(self) -> None:
        notice = NoticeAggregator("s1").add_notice(
            "info", "hello", {"k": 1}, code="X", batch_index=2
        )
        assert notice.session_id == "s1"
        assert notice.batch_index == 2
        assert notice.details == {"k": 1}
        assert notice.timestamp

    def test_unknown_level_rejected(self) -> None:
        with pytest.raises(ValueError):
            NoticeAggregator("s1").add_notice("fatal", "nope")

    def test_error_codes_counted(self) -> None:
        agg = NoticeAggregator("s1")
        agg.add_notice("error", "a", code="STORAGE_REJECTED")
        agg.add_notice("error", "b", code="STORAGE_REJECTED")
        agg.add_notice("warning", "c")
        assert agg.summary().error_codes == {"STORAGE_REJECTED": 2}

    def test_recent_window_is_bounded(self) -> None:
        agg = NoticeAggregator("s1", max_recent=3)
        for i in range(10):
            agg.add_notice("info", f"n{i}")
        summary = agg.summary()
        assert [n.message for n in summary.recent] == ["n7", "n8", "n9"]
        assert summary.counts == {"info": 10}

    def test_highest_level(self) -> None:
        agg = NoticeAggregator("s1")
        assert agg.summary().highest_level is None
        agg.add_notice("debug", "a")
        agg.add_notice("warning", "b")
        agg.add_notice("info", "c")
        assert agg.summary().highest_level == NoticeLevel.WARNING

    def test_thread_safe_counts(self) -> None:
        agg = NoticeAggregator("s1")

        def burst() -> None:
            for _ in range(200):
                agg.add_notice("info", "x")

        threads = [threading.Thread(target=burst) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert agg.count("info") == 800


class TestStorageNotices:
    def test_add_notices_normalises_levels(self) -> None:
        agg = NoticeAggregator("s1")
        recorded = agg.add_notices(
            [
                {"level": "info", "message": "ok"},
                {"level": "shout", "message": "weird", "details": {"a": 1}},
                {"message": "no level"},
            ],
            batch_index=5,
        )
        assert recorded == 3
        summary = agg.summary()
        assert summary.counts == {"info": 2, "warning": 1}
        assert all(n.batch_index == 5 for n in summary.recent)

    def test_plain_text_details_are_wrapped(self) -> None:
        agg = NoticeAggregator("s1")
        agg.add_notices(
            [
                {"level": "info", "message": "coerced", "details": "row 3 coerced"},
                {"level": "info", "message": "counted", "details": 7},
                {"level": "info", "message": "bare"},
            ]
        )
        recent = agg.summary().recent
        assert [n.details for n in recent] == [{"value": "row 3 coerced"}, {"value": 7}, {}]


class TestAddError:
    def test_pipeline_error(self) -> None:
        agg = NoticeAggregator("s1")
        notice = agg.add_error(BatchWriteError("rejected", code="STORAGE_REJECTED"), batch_index=1)
        assert notice.level == NoticeLevel.ERROR
        assert notice.code == "STORAGE_REJECTED"
        assert notice.details["category"] == "permanent"
        assert notice.message == "rejected"

    def test_foreign_exception(self) -> None:
        notice = NoticeAggregator("s1").add_error(KeyError("missing"))
        assert notice.code == "UNEXPECTED_ERROR"
        assert notice.details == {"type": "KeyError"}


class TestSummarySerialisation:
    def test_to_dict_is_json_ready(self) -> None:
        agg = NoticeAggregator("s1")
        agg.add_notice("error", "boom", code="X")
        payload = agg.summary().to_dict()
        assert payload["schema_version"] == SCHEMA_VERSION
        assert payload["session_id"] == "s1"
        assert payload["highest_level"] == "error"
        assert payload["recent"][0]["level"] == "error"

    def test_validates_back(self) -> None:
        agg = NoticeAggregator("s1")
        agg.add_notice("warning", "w")
        restored = NoticeSummary.model_validate(agg.summary().to_dict())
        assert restored.highest_level == NoticeLevel.WARNING
        assert restored.total == 1
