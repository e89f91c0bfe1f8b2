"""Import session, batch, event and summary models.

The session is the only mutable model: the orchestrator owns it and
advances its counters and state as batches resolve.  Events and the
final summary are immutable and serialise to the camelCase JSON shape
consumed by callers (one event per NDJSON line).
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from geo_import.core.exceptions import SessionStateError

if TYPE_CHECKING:
    from geo_import.models.feature import Feature
    from geo_import.models.notices import NoticeSummary


class SessionState(enum.Enum):
    """Lifecycle state of an import session.

    Values:
        CREATED:    Session exists, no batch started.
        PROCESSING: Batches are being written.
        COMPLETED:  Every batch resolved and the session finished normally.
        FAILED:     Fail-fast stop or unexpected error.
        CANCELLED:  Caller requested cancellation between batches.
    """

    CREATED = "created"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED})

_ALLOWED_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.CREATED: frozenset({SessionState.PROCESSING}),
    SessionState.PROCESSING: frozenset(_TERMINAL),
    SessionState.COMPLETED: frozenset(),
    SessionState.FAILED: frozenset(),
    SessionState.CANCELLED: frozenset(),
}


@dataclass(slots=True)
class ImportSession:
    """Mutable state of one import run.

    Attributes:
        id: Session identifier (also the checkpoint key).
        total: Number of features in the request.
        state: Current lifecycle state.
        processed: Features committed to storage (or skipped via resume).
        failed: Features that failed validation, transform or write.
        checkpoint: Index of the last committed batch, ``None`` before any.
        notices: Latest notice summary snapshot.
        failure_cause: Message of the error that failed the session.
    """

    id: str
    total: int
    state: SessionState = SessionState.CREATED
    processed: int = 0
    failed: int = 0
    checkpoint: int | None = None
    notices: NoticeSummary | None = None
    failure_cause: str = ""

    def transition(self, target: SessionState) -> None:
        """Move to *target*.

        Raises:
            SessionStateError: If the transition is not allowed.
        """
        if target not in _ALLOWED_TRANSITIONS[self.state]:
            msg = f"Illegal session transition {self.state.value} -> {target.value}"
            raise SessionStateError(msg, correlation_id=self.id)
        self.state = target

    @property
    def remaining(self) -> int:
        return max(self.total - self.processed - self.failed, 0)

    @property
    def is_consistent(self) -> bool:
        """``processed + failed == total`` once the session is terminal."""
        return not self.state.is_terminal or self.processed + self.failed == self.total


@dataclass(frozen=True, slots=True)
class ImportBatch:
    """A contiguous slice of features written in one storage call.

    Attributes:
        index: Zero-based batch index (strictly increasing, gap-free).
        batch_id: Idempotency key (``"<session_id>:<index>"``).
        features: Features in original order.
    """

    index: int
    batch_id: str
    features: tuple[Feature, ...]

    @classmethod
    def build(cls, session_id: str, index: int, features: list[Feature]) -> ImportBatch:
        return cls(index=index, batch_id=f"{session_id}:{index}", features=tuple(features))

    def __len__(self) -> int:
        return len(self.features)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """Emitted after each batch resolves."""

    batch_index: int
    processed: int
    failed: int
    total: int
    total_batches: int

    def to_dict(self) -> dict[str, object]:
        return {
            "type": "progress",
            "batchIndex": self.batch_index,
            "processed": self.processed,
            "failed": self.failed,
            "total": self.total,
            "totalBatches": self.total_batches,
        }


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    """Emitted when a batch or the session fails."""

    message: str
    code: str
    batch_index: int | None = None

    def to_dict(self) -> dict[str, object]:
        error: dict[str, object] = {"message": self.message, "code": self.code}
        if self.batch_index is not None:
            error["batchIndex"] = self.batch_index
        return {"type": "error", "error": error}


ImportEvent = ProgressEvent | ErrorEvent


def encode_event(event: ImportEvent) -> str:
    """Render *event* as one NDJSON line (with trailing newline)."""
    return json.dumps(event.to_dict(), separators=(",", ":")) + "\n"


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FailedFeature:
    """A feature excluded from the import and the reason why."""

    feature_id: int
    error: str
    code: str = ""

    def to_dict(self) -> dict[str, object]:
        return {"feature": self.feature_id, "error": self.error}


@dataclass(frozen=True, slots=True)
class ImportStatistics:
    import_time_s: float
    validated_count: int
    transformed_count: int

    def to_dict(self) -> dict[str, object]:
        return {
            "importTime": round(self.import_time_s, 3),
            "validatedCount": self.validated_count,
            "transformedCount": self.transformed_count,
        }


@dataclass(frozen=True, slots=True)
class ImportSummary:
    """Final result returned to the caller."""

    imported_features: int
    collection_id: str
    layer_ids: tuple[str, ...]
    failed_features: tuple[FailedFeature, ...]
    statistics: ImportStatistics
    state: SessionState = SessionState.COMPLETED
    notices: dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "importedFeatures": self.imported_features,
            "collectionId": self.collection_id,
            "layerIds": list(self.layer_ids),
            "failedFeatures": [f.to_dict() for f in self.failed_features],
            "statistics": self.statistics.to_dict(),
        }
