"""Metrics sinks.

``LoggingMetricsSink`` writes lifecycle notifications to the log.
``BackgroundMetricsSink`` wraps any sink and delivers notifications on a
daemon thread so a slow metrics backend never stalls the import; a
failing sink is logged and otherwise ignored.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import TYPE_CHECKING, Any

from geo_import.adapters.base import MetricsSink

if TYPE_CHECKING:
    from collections.abc import Callable

    from geo_import.models.session import ImportSummary, ProgressEvent

logger = logging.getLogger("geo_import.adapters.metrics")

_STOP = object()


class LoggingMetricsSink(MetricsSink):
    """Emits one structured log line per notification."""

    def import_started(self, session_id: str, total: int) -> None:
        logger.info("metrics import_started | session=%s | total=%d", session_id, total)

    def import_progress(self, session_id: str, event: ProgressEvent) -> None:
        logger.info(
            "metrics import_progress | session=%s | batch=%d/%d | processed=%d | failed=%d",
            session_id,
            event.batch_index + 1,
            event.total_batches,
            event.processed,
            event.failed,
        )

    def import_completed(self, session_id: str, summary: ImportSummary) -> None:
        logger.info(
            "metrics import_completed | session=%s | imported=%d | failed=%d | duration=%.1fs",
            session_id,
            summary.imported_features,
            len(summary.failed_features),
            summary.statistics.import_time_s,
        )

    def import_failed(self, session_id: str, error: dict[str, object]) -> None:
        logger.info(
            "metrics import_failed | session=%s | code=%s", session_id, error.get("code", "")
        )


class BackgroundMetricsSink(MetricsSink):
    """Fire-and-forget wrapper delivering notifications on a worker thread."""

    def __init__(self, inner: MetricsSink, *, max_pending: int = 1000) -> None:
        self._inner = inner
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=max_pending)
        self._thread = threading.Thread(
            target=self._run, name="geo-import-metrics", daemon=True
        )
        self._thread.start()

    def import_started(self, session_id: str, total: int) -> None:
        self._submit(self._inner.import_started, session_id, total)

    def import_progress(self, session_id: str, event: ProgressEvent) -> None:
        self._submit(self._inner.import_progress, session_id, event)

    def import_completed(self, session_id: str, summary: ImportSummary) -> None:
        self._submit(self._inner.import_completed, session_id, summary)

    def import_failed(self, session_id: str, error: dict[str, object]) -> None:
        self._submit(self._inner.import_failed, session_id, error)

    def flush(self, timeout: float | None = None) -> None:
        """Block until every queued notification was delivered."""
        if timeout is None:
            self._queue.join()
            return
        done = threading.Event()

        def _wait() -> None:
            self._queue.join()
            done.set()

        threading.Thread(target=_wait, daemon=True).start()
        done.wait(timeout)

    def close(self) -> None:
        """Deliver pending notifications and stop the worker."""
        self._queue.put(_STOP)
        self._thread.join()

    def _submit(self, fn: Callable[..., None], *args: object) -> None:
        try:
            self._queue.put_nowait((fn, args))
        except queue.Full:
            logger.warning("metrics queue full, dropping notification | fn=%s", fn.__name__)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                fn, args = item
                try:
                    fn(*args)
                except Exception as exc:
                    logger.warning("metrics sink failed | fn=%s | error=%s", fn.__name__, exc)
            finally:
                self._queue.task_done()
