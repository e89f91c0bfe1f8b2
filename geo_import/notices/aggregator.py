"""Notice and error aggregation for one import session.

Collects notices from decoders, storage writes and the orchestrator.
Keeps running counts by level and error code plus a bounded window of
recent entries, so a long import never holds an unbounded history.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter, deque
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from geo_import.core.constants import DEFAULT_MAX_RECENT_NOTICES
from geo_import.core.exceptions import PipelineError
from geo_import.models.notices import Notice, NoticeLevel, NoticeSummary

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger("geo_import.notices.aggregator")


class NoticeAggregator:
    """Rolling, thread-safe notice collector tagged with a session id."""

    def __init__(self, session_id: str, *, max_recent: int = DEFAULT_MAX_RECENT_NOTICES) -> None:
        self.session_id = session_id
        self._recent: deque[Notice] = deque(maxlen=max_recent)
        self._counts: Counter[str] = Counter()
        self._error_codes: Counter[str] = Counter()
        self._highest: NoticeLevel | None = None
        self._lock = threading.Lock()

    def add_notice(
        self,
        level: NoticeLevel | str,
        message: str,
        details: Mapping[str, Any] | None = None,
        *,
        code: str = "",
        batch_index: int | None = None,
    ) -> Notice:
        """Record one notice and return it.

        Raises:
            ValueError: If *level* is not a known notice level.
        """
        notice = Notice(
            level=NoticeLevel(level),
            message=message,
            details=dict(details or {}),
            code=code,
            session_id=self.session_id,
            batch_index=batch_index,
        )
        self._record(notice)
        return notice

    def add_notices(
        self, notices: Iterable[Mapping[str, Any]], *, batch_index: int | None = None
    ) -> int:
        """Record notices reported by a storage backend.

        Each mapping carries ``level``, ``message`` and optional
        ``details``; entries with an unknown level are recorded as
        warnings and non-mapping details are kept under ``"value"``.
        Returns the number recorded.
        """
        recorded = 0
        for raw in notices:
            level = str(raw.get("level", NoticeLevel.INFO.value))
            if level not in {lvl.value for lvl in NoticeLevel}:
                level = NoticeLevel.WARNING.value
            details = raw.get("details")
            if details is not None and not isinstance(details, Mapping):
                details = {"value": details}
            self.add_notice(
                level,
                str(raw.get("message", "")),
                details,
                code=str(raw.get("code", "")),
                batch_index=batch_index,
            )
            recorded += 1
        return recorded

    def add_error(self, exc: BaseException, *, batch_index: int | None = None) -> Notice:
        """Record an exception as an error notice."""
        if isinstance(exc, PipelineError):
            details: dict[str, Any] = exc.to_error_dict()
            code = exc.code
            message = exc.message or str(exc)
        else:
            details = {"type": type(exc).__name__}
            code = "UNEXPECTED_ERROR"
            message = str(exc) or type(exc).__name__
        return self.add_notice(
            NoticeLevel.ERROR, message, details, code=code, batch_index=batch_index
        )

    def summary(self) -> NoticeSummary:
        """Return a snapshot of the aggregate."""
        with self._lock:
            return NoticeSummary(
                session_id=self.session_id,
                counts=dict(self._counts),
                error_codes=dict(self._error_codes),
                recent=list(self._recent),
                highest_level=self._highest,
            )

    def count(self, level: NoticeLevel | str) -> int:
        return self._counts[NoticeLevel(level).value]

    def _record(self, notice: Notice) -> None:
        with self._lock:
            self._recent.append(notice)
            self._counts[notice.level.value] += 1
            if notice.code:
                self._error_codes[notice.code] += 1
            if self._highest is None or notice.level.rank > self._highest.rank:
                self._highest = notice.level
        if notice.level == NoticeLevel.ERROR:
            logger.warning(
                "notice recorded | session=%s | batch=%s | level=%s | code=%s | message=%s",
                self.session_id,
                notice.batch_index,
                notice.level.value,
                notice.code,
                notice.message,
            )
