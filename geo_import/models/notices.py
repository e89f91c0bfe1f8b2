"""Pydantic notice models persisted with an import session.

A ``Notice`` is one message surfaced by a decoder, the storage backend
or the orchestrator.  ``NoticeSummary`` is the rolling aggregate kept
as session metadata: counts per level and error code plus a bounded
window of the most recent notices.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

# Schema version for forward compatibility of persisted session metadata
SCHEMA_VERSION = "import-notices-v1"


class NoticeLevel(enum.Enum):
    """Severity of a notice, ordered from most to least severe."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    DEBUG = "debug"

    @property
    def rank(self) -> int:
        return _RANK[self]


_RANK = {
    NoticeLevel.ERROR: 3,
    NoticeLevel.WARNING: 2,
    NoticeLevel.INFO: 1,
    NoticeLevel.DEBUG: 0,
}


class Notice(BaseModel):
    """One notice entry.

    Attributes:
        level: Severity.
        message: Human-readable text.
        details: Free-form structured context.
        code: Machine-readable error code, when the notice came from an error.
        session_id: Import session the notice belongs to.
        batch_index: Batch that produced the notice, if any.
        timestamp: When the notice was recorded (ISO 8601, UTC).
    """

    level: NoticeLevel
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    code: str = ""
    session_id: str = ""
    batch_index: int | None = None
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())


class NoticeSummary(BaseModel):
    """Rolling notice aggregate for one session.

    Attributes:
        schema_version: Persisted schema identifier.
        session_id: Import session id.
        counts: Notice count per level value.
        error_codes: Count per machine-readable error code.
        recent: Most recent notices, oldest first, bounded.
        highest_level: Most severe level seen, ``None`` when empty.
    """

    schema_version: str = SCHEMA_VERSION
    session_id: str = ""
    counts: dict[str, int] = Field(default_factory=dict)
    error_codes: dict[str, int] = Field(default_factory=dict)
    recent: list[Notice] = Field(default_factory=list)
    highest_level: NoticeLevel | None = None

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a JSON-compatible dict."""
        return self.model_dump(mode="json")
