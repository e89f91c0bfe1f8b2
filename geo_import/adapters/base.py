"""Adapter contracts consumed by the import orchestrator.

The orchestrator never talks to a storage engine, checkpoint store or
metrics backend directly; it only sees these abstract interfaces.

Contracts:
    ``StorageWriter.write_batch(layer_id, batch_id, items)``
        Persist one batch.  Must be idempotent per ``batch_id`` so a
        retried or resumed batch is never written twice.
    ``CheckpointStore.save/load/clear``
        Persist the last committed batch of a session.
    ``MetricsSink``
        Fire-and-forget lifecycle notifications.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from geo_import.models.session import ImportSummary, ProgressEvent


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FeatureWriteResult:
    """Outcome of persisting one feature."""

    feature_id: int
    success: bool
    error: str = ""


@dataclass(frozen=True, slots=True)
class BatchWriteResult:
    """Outcome of one ``write_batch`` call.

    Attributes:
        feature_results: Per-feature outcomes; features missing from the
            list are treated as committed.
        notices: Backend notices (``{"level", "message", "details"}``).
    """

    feature_results: tuple[FeatureWriteResult, ...] = ()
    notices: tuple[dict[str, Any], ...] = ()

    def failures(self) -> list[FeatureWriteResult]:
        return [r for r in self.feature_results if not r.success]


class StorageWriter(abc.ABC):
    """Abstract base class for feature storage backends."""

    @abc.abstractmethod
    def write_batch(
        self,
        layer_id: str,
        batch_id: str,
        items: list[dict[str, Any]],
    ) -> BatchWriteResult:
        """Persist one batch of serialised features.

        Args:
            layer_id: Target layer.
            batch_id: Idempotency key (``"<session_id>:<index>"``).
            items: GeoJSON feature dicts, in batch order.

        Returns:
            A ``BatchWriteResult`` with per-feature outcomes and notices.

        Raises:
            BatchWriteError: With ``retryable=True`` for throttling,
                timeouts and connection failures; ``False`` when the
                backend rejected the payload.
        """

    def close(self) -> None:  # noqa: B027
        """Release backend resources.  Default is a no-op."""


# ---------------------------------------------------------------------------
# Checkpoints
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Checkpoint:
    """Last committed position of a session.

    Attributes:
        session_id: Import session id.
        batch_index: Last index of the unbroken run of committed batches
            starting at 0.  A batch that failed to write stops it
            advancing, so resume retries that batch.
        processed: Processed features up to and including that batch.
        failed: Failed features up to and including that batch.
        updated_at: ISO 8601 UTC timestamp.
    """

    session_id: str
    batch_index: int
    processed: int
    failed: int
    updated_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, object]:
        return {
            "session_id": self.session_id,
            "batch_index": self.batch_index,
            "processed": self.processed,
            "failed": self.failed,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Checkpoint:
        """Deserialise a stored checkpoint.

        Raises:
            KeyError: If a required field is missing.
            TypeError: If ``batch_index`` is not an integer.
        """
        batch_index = data["batch_index"]
        if not isinstance(batch_index, int) or isinstance(batch_index, bool):
            msg = f"batch_index must be an int, got {type(batch_index).__name__}"
            raise TypeError(msg)
        return cls(
            session_id=str(data["session_id"]),
            batch_index=batch_index,
            processed=int(data.get("processed", 0)),
            failed=int(data.get("failed", 0)),
            updated_at=str(data.get("updated_at", "")),
        )


class CheckpointStore(abc.ABC):
    """Abstract base class for checkpoint persistence."""

    @abc.abstractmethod
    def save(self, checkpoint: Checkpoint) -> None:
        """Persist *checkpoint*, replacing any earlier one for the session."""

    @abc.abstractmethod
    def load(self, session_id: str) -> Checkpoint | None:
        """Return the stored checkpoint, or ``None`` when there is none."""

    @abc.abstractmethod
    def clear(self, session_id: str) -> None:
        """Remove the checkpoint of *session_id* (no error when absent)."""


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


class MetricsSink(abc.ABC):
    """Lifecycle notifications.  Implementations must not block for long."""

    @abc.abstractmethod
    def import_started(self, session_id: str, total: int) -> None: ...

    @abc.abstractmethod
    def import_progress(self, session_id: str, event: ProgressEvent) -> None: ...

    @abc.abstractmethod
    def import_completed(self, session_id: str, summary: ImportSummary) -> None: ...

    @abc.abstractmethod
    def import_failed(self, session_id: str, error: dict[str, object]) -> None: ...


class NullMetricsSink(MetricsSink):
    """Discards every notification."""

    def import_started(self, session_id: str, total: int) -> None:
        return None

    def import_progress(self, session_id: str, event: ProgressEvent) -> None:
        return None

    def import_completed(self, session_id: str, summary: ImportSummary) -> None:
        return None

    def import_failed(self, session_id: str, error: dict[str, object]) -> None:
        return None
