"""In-memory adapters for tests and dry runs."""

from __future__ import annotations

import logging
import threading
from typing import Any

from geo_import.adapters.base import (
    BatchWriteResult,
    Checkpoint,
    CheckpointStore,
    FeatureWriteResult,
    StorageWriter,
)

logger = logging.getLogger("geo_import.adapters.memory")


class InMemoryStorageWriter(StorageWriter):
    """Keeps written features per layer.

    A batch id that was already written returns its earlier result
    without storing the features again.
    """

    def __init__(self) -> None:
        self.layers: dict[str, list[dict[str, Any]]] = {}
        self._results: dict[str, BatchWriteResult] = {}
        self._lock = threading.Lock()

    def write_batch(
        self,
        layer_id: str,
        batch_id: str,
        items: list[dict[str, Any]],
    ) -> BatchWriteResult:
        with self._lock:
            previous = self._results.get(batch_id)
            if previous is not None:
                logger.debug("batch already written | batch=%s", batch_id)
                return previous
            self.layers.setdefault(layer_id, []).extend(items)
            result = BatchWriteResult(
                feature_results=tuple(
                    FeatureWriteResult(feature_id=int(item.get("id", 0)), success=True)
                    for item in items
                )
            )
            self._results[batch_id] = result
            return result

    @property
    def batch_ids(self) -> list[str]:
        return list(self._results)

    def feature_count(self, layer_id: str) -> int:
        return len(self.layers.get(layer_id, []))


class InMemoryCheckpointStore(CheckpointStore):
    """Dict-backed checkpoint store."""

    def __init__(self) -> None:
        self._checkpoints: dict[str, Checkpoint] = {}
        self.saves = 0

    def save(self, checkpoint: Checkpoint) -> None:
        self._checkpoints[checkpoint.session_id] = checkpoint
        self.saves += 1

    def load(self, session_id: str) -> Checkpoint | None:
        return self._checkpoints.get(session_id)

    def clear(self, session_id: str) -> None:
        self._checkpoints.pop(session_id, None)
