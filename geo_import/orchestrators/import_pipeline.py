"""Streaming import orchestrator.

Drives one import session from a feature stream to storage:

1. Partition features into ordered batches.
2. Per batch: validate + transform on a bounded pool, join, then write
   with timeout and retry (see ``phases``).
3. Emit a progress event after each batch carrying that batch's
   processed and failed counts, checkpoint the committed batches every
   ``checkpoint_interval`` resolved features, and check for
   cancellation between batches.
4. Return the final ``ImportSummary``.

Batches never overlap: a batch is fully written (or given up on) before
the next one is prepared.  Checkpoints only cover the unbroken run of
committed batches from index 0, so a resumed session rewrites every
batch from the first one that failed.

Failure policies:
    ``fail_fast``   — the first batch that cannot be written fails the
                      session; the remaining features count as failed.
    ``best_effort`` — a batch that cannot be written counts as failed and
                      the import continues.

``run()`` never raises.  Any error that escapes the batch loop fails the
session with its cause recorded and an error event emitted.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from geo_import.adapters.base import Checkpoint, NullMetricsSink
from geo_import.adapters.memory import InMemoryCheckpointStore
from geo_import.core.config import ImportConfig
from geo_import.core.constants import FAILURE_POLICIES, FAILURE_POLICY_FAIL_FAST
from geo_import.core.exceptions import (
    BatchWriteError,
    PipelineError,
    UnexpectedError,
    ValidationError,
)
from geo_import.crs.transformer import TransformOptions
from geo_import.models.notices import NoticeLevel
from geo_import.models.session import (
    ErrorEvent,
    FailedFeature,
    ImportSession,
    ImportStatistics,
    ImportSummary,
    ProgressEvent,
    SessionState,
)
from geo_import.notices.aggregator import NoticeAggregator
from geo_import.orchestrators.phases import (
    count_batches,
    iter_batches,
    prepare_batch,
    write_with_retry,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from geo_import.adapters.base import CheckpointStore, MetricsSink, StorageWriter
    from geo_import.crs.transformer import CoordinateTransformer
    from geo_import.models.feature import Feature
    from geo_import.models.session import ImportBatch, ImportEvent

logger = logging.getLogger("geo_import.orchestrators.import_pipeline")

CANCELLED_CODE = "IMPORT_CANCELLED"
IN_FLIGHT_CODE = "WRITE_IN_FLIGHT"


# ---------------------------------------------------------------------------
# Request / outcome
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ImportRequest:
    """One import job.

    Attributes:
        features: Feature stream.  Lazy iterables require ``total``.
        source_srid: Reference system the features are declared in.
        target_srid: Reference system to store in (config default if ``None``).
        batch_size: Features per batch (config default if ``None``).
        layer_id: Storage layer receiving the features.
        collection_id: Collection reported in the summary.
        session_id: Session id, also the checkpoint key.
        total: Feature count when ``features`` is not a sized collection.
        failure_policy: ``fail_fast`` or ``best_effort`` (config default if ``None``).
        property_mapping: Attribute renames applied before writing.
        resume_from_checkpoint: Skip batches covered by a stored checkpoint.
        check_topology: Run the shapely topology check during validation.
        allow_identity_fallback: Passed through to the transformer.
    """

    features: Iterable[Feature]
    source_srid: int
    target_srid: int | None = None
    batch_size: int | None = None
    layer_id: str = "default"
    collection_id: str = ""
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    total: int | None = None
    failure_policy: str | None = None
    property_mapping: dict[str, str] = field(default_factory=dict)
    resume_from_checkpoint: bool = True
    check_topology: bool = False
    allow_identity_fallback: bool = False


@dataclass(frozen=True, slots=True)
class ImportOutcome:
    """Final session state, summary and every emitted event."""

    session: ImportSession
    summary: ImportSummary
    events: tuple[ImportEvent, ...]

    @property
    def succeeded(self) -> bool:
        return self.session.state == SessionState.COMPLETED


@dataclass(slots=True)
class _RunState:
    """Per-run mutable bookkeeping that is not part of the session."""

    failed_features: list[FailedFeature] = field(default_factory=list)
    events: list[ImportEvent] = field(default_factory=list)
    validated: int = 0
    transformed: int = 0
    resolved_since_checkpoint: int = 0
    last_batch_error: str = ""
    #: Committed prefix: last index and the session counters after it
    prefix_intact: bool = True
    committed_index: int = -1
    committed_processed: int = 0
    committed_failed: int = 0
    #: Last committed index a checkpoint save was attempted for
    checkpointed_index: int = -1


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class ImportOrchestrator:
    """Batches, transforms and writes features for one session at a time."""

    def __init__(
        self,
        transformer: CoordinateTransformer,
        storage: StorageWriter,
        *,
        checkpoints: CheckpointStore | None = None,
        metrics: MetricsSink | None = None,
        config: ImportConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.transformer = transformer
        self.storage = storage
        self.checkpoints = checkpoints or InMemoryCheckpointStore()
        self.metrics = metrics or NullMetricsSink()
        self.config = config or ImportConfig()
        self._sleep = sleep

    def run(
        self,
        request: ImportRequest,
        *,
        on_event: Callable[[ImportEvent], None] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ImportOutcome:
        """Run *request* to completion, failure or cancellation."""
        start = time.monotonic()
        session = ImportSession(id=request.session_id, total=request.total or 0)
        notices = NoticeAggregator(session.id)
        state = _RunState()

        def emit(event: ImportEvent) -> None:
            state.events.append(event)
            if on_event is not None:
                try:
                    on_event(event)
                except Exception as exc:
                    logger.warning("event callback failed | session=%s | error=%s", session.id, exc)

        logger.info(
            "import started | session=%s | layer=%s | source=%d | target=%s",
            session.id,
            request.layer_id,
            request.source_srid,
            request.target_srid or self.config.default_target_srid,
        )

        session.transition(SessionState.PROCESSING)
        try:
            features, session.total = _materialise(request)
            self._run_batches(request, features, session, notices, state, emit, cancel_event)
        except Exception as exc:
            self._fail_session(session, notices, emit, exc)

        session.notices = notices.summary()
        summary = ImportSummary(
            imported_features=session.processed,
            collection_id=request.collection_id,
            layer_ids=(request.layer_id,),
            failed_features=tuple(state.failed_features),
            statistics=ImportStatistics(
                import_time_s=time.monotonic() - start,
                validated_count=state.validated,
                transformed_count=state.transformed,
            ),
            state=session.state,
            notices=session.notices.to_dict(),
        )

        if session.state == SessionState.COMPLETED:
            self._notify(self.metrics.import_completed, session.id, summary)
        elif session.state == SessionState.FAILED:
            self._notify(
                self.metrics.import_failed,
                session.id,
                {"code": "IMPORT_FAILED", "message": session.failure_cause},
            )

        logger.info(
            "import finished | session=%s | state=%s | processed=%d | failed=%d | duration=%.1fs",
            session.id,
            session.state.value,
            session.processed,
            session.failed,
            summary.statistics.import_time_s,
        )
        return ImportOutcome(session=session, summary=summary, events=tuple(state.events))

    # ------------------------------------------------------------------
    # Batch loop
    # ------------------------------------------------------------------

    def _run_batches(
        self,
        request: ImportRequest,
        features: Iterable[Feature],
        session: ImportSession,
        notices: NoticeAggregator,
        state: _RunState,
        emit: Callable[[ImportEvent], None],
        cancel_event: threading.Event | None,
    ) -> None:
        batch_size = request.batch_size or self.config.default_batch_size
        target_srid = request.target_srid or self.config.default_target_srid
        policy = request.failure_policy or self.config.failure_policy
        _check_request(batch_size, policy)

        # Unknown systems fail the session up front rather than every feature
        self.transformer.registry.get(request.source_srid)
        self.transformer.registry.get(target_srid)

        self._notify(self.metrics.import_started, session.id, session.total)

        total_batches = count_batches(session.total, batch_size)
        checkpoint = self.checkpoints.load(session.id) if request.resume_from_checkpoint else None
        if checkpoint is not None:
            logger.info(
                "resuming from checkpoint | session=%s | batch=%d | processed=%d",
                session.id,
                checkpoint.batch_index,
                checkpoint.processed,
            )
        options = TransformOptions(allow_identity_fallback=request.allow_identity_fallback)

        skipped = 0
        if checkpoint is not None:
            state.committed_index = state.checkpointed_index = checkpoint.batch_index
            state.committed_processed = checkpoint.processed
            state.committed_failed = checkpoint.failed
        transform_pool = ThreadPoolExecutor(
            max_workers=self.config.transform_workers, thread_name_prefix="geo-import-transform"
        )
        try:
            for batch in iter_batches(features, batch_size, session.id):
                if cancel_event is not None and cancel_event.is_set():
                    self._checkpoint_committed(session, state, notices)
                    self._cancel_session(session, notices, batch.index)
                    return

                before = (session.processed, session.failed)
                if checkpoint is not None and batch.index <= checkpoint.batch_index:
                    # Skipped batches report nothing until the checkpointed one restores the counters
                    skipped += len(batch)
                    if batch.index == checkpoint.batch_index:
                        session.failed = min(checkpoint.failed, skipped)
                        session.processed = skipped - session.failed
                        session.checkpoint = checkpoint.batch_index
                    self._progress(session, batch.index, total_batches, before, emit)
                    continue

                committed = self._process_batch(
                    request,
                    batch,
                    target_srid=target_srid,
                    options=options,
                    session=session,
                    notices=notices,
                    state=state,
                    emit=emit,
                    transform_pool=transform_pool,
                )
                self._progress(session, batch.index, total_batches, before, emit)

                if committed and state.prefix_intact:
                    state.committed_index = batch.index
                    state.committed_processed = session.processed
                    state.committed_failed = session.failed
                elif not committed:
                    state.prefix_intact = False

                if not committed and policy == FAILURE_POLICY_FAIL_FAST:
                    self._checkpoint_committed(session, state, notices)
                    session.failed += session.remaining
                    session.failure_cause = state.last_batch_error
                    session.transition(SessionState.FAILED)
                    return

                state.resolved_since_checkpoint += len(batch)
                if state.resolved_since_checkpoint >= self.config.checkpoint_interval:
                    self._checkpoint_committed(session, state, notices)
                    state.resolved_since_checkpoint = 0
        finally:
            transform_pool.shutdown(wait=True)

        self._checkpoint_committed(session, state, notices)

        if session.processed + session.failed != session.total:
            notices.add_notice(
                NoticeLevel.WARNING,
                "Feature stream length differs from the declared total",
                {"declared": session.total, "seen": session.processed + session.failed},
            )
            session.total = session.processed + session.failed
        session.transition(SessionState.COMPLETED)

    def _process_batch(
        self,
        request: ImportRequest,
        batch: ImportBatch,
        *,
        target_srid: int,
        options: TransformOptions,
        session: ImportSession,
        notices: NoticeAggregator,
        state: _RunState,
        emit: Callable[[ImportEvent], None],
        transform_pool: ThreadPoolExecutor,
    ) -> bool:
        """Prepare and write one batch; return ``False`` if the write failed."""
        prepared = prepare_batch(
            batch,
            transformer=self.transformer,
            source_srid=request.source_srid,
            target_srid=target_srid,
            pool=transform_pool,
            options=options,
            property_mapping=request.property_mapping,
            check_topology=request.check_topology,
        )
        state.validated += prepared["validated_count"]
        state.transformed += prepared["transformed_count"]
        for warning in prepared["warnings"]:
            notices.add_notice(NoticeLevel.WARNING, warning, batch_index=batch.index)
        for failure in prepared["failed"]:
            notices.add_notice(
                NoticeLevel.WARNING,
                failure.error,
                {"feature": failure.feature_id},
                code=failure.code,
                batch_index=batch.index,
            )
        state.failed_features.extend(prepared["failed"])
        session.failed += len(prepared["failed"])

        ready = prepared["ready"]
        if not ready:
            return True

        try:
            outcome = write_with_retry(
                self.storage,
                request.layer_id,
                batch,
                [feature.to_dict() for feature in ready],
                config=self.config,
                sleep=self._sleep,
            )
        except BatchWriteError as exc:
            notices.add_error(exc, batch_index=batch.index)
            if exc.in_flight:
                notices.add_notice(
                    NoticeLevel.WARNING,
                    "Abandoned write attempts were still running; the batch may have been stored",
                    {"in_flight": exc.in_flight, "batch_id": batch.batch_id},
                    code=IN_FLIGHT_CODE,
                    batch_index=batch.index,
                )
            emit(ErrorEvent(message=exc.message, code=exc.code, batch_index=batch.index))
            state.failed_features.extend(
                FailedFeature(feature.id, exc.message, code=exc.code) for feature in ready
            )
            session.failed += len(ready)
            state.last_batch_error = exc.message
            logger.error(
                "batch failed | session=%s | batch=%d | features=%d | in_flight=%d | error=%s",
                session.id,
                batch.index,
                len(ready),
                exc.in_flight,
                exc,
            )
            return False

        result = outcome["result"]
        storage_failures = result.failures()
        for failure in storage_failures:
            state.failed_features.append(
                FailedFeature(
                    failure.feature_id,
                    failure.error or "rejected by storage",
                    code="STORAGE_REJECTED",
                )
            )
        session.failed += len(storage_failures)
        session.processed += len(ready) - len(storage_failures)
        logger.info(
            "batch committed | session=%s | batch=%d | written=%d | rejected=%d | attempts=%d",
            session.id,
            batch.index,
            len(ready) - len(storage_failures),
            len(storage_failures),
            outcome["attempts"],
        )
        try:
            notices.add_notices(result.notices, batch_index=batch.index)
        except Exception as exc:
            # Counters above are final; a malformed notice never un-commits the batch
            logger.warning(
                "storage notices dropped | session=%s | batch=%d | error=%s",
                session.id,
                batch.index,
                exc,
            )
        return True

    # ------------------------------------------------------------------
    # Session transitions and side channels
    # ------------------------------------------------------------------

    def _progress(
        self,
        session: ImportSession,
        batch_index: int,
        total_batches: int,
        before: tuple[int, int],
        emit: Callable[[ImportEvent], None],
    ) -> None:
        """Emit the counts *batch_index* added on top of *before*."""
        event = ProgressEvent(
            batch_index=batch_index,
            processed=session.processed - before[0],
            failed=session.failed - before[1],
            total=session.total,
            total_batches=total_batches,
        )
        emit(event)
        self._notify(self.metrics.import_progress, session.id, event)

    def _checkpoint_committed(
        self, session: ImportSession, state: _RunState, notices: NoticeAggregator
    ) -> None:
        """Persist the committed prefix if it advanced since the last attempt."""
        if state.committed_index <= state.checkpointed_index:
            return
        state.checkpointed_index = state.committed_index
        checkpoint = Checkpoint(
            session_id=session.id,
            batch_index=state.committed_index,
            processed=state.committed_processed,
            failed=state.committed_failed,
        )
        try:
            self.checkpoints.save(checkpoint)
        except PipelineError as exc:
            # Import stays correct without the checkpoint; only resume is affected
            notices.add_error(exc, batch_index=checkpoint.batch_index)
            logger.warning("checkpoint save failed | session=%s | error=%s", session.id, exc)
            return
        session.checkpoint = checkpoint.batch_index
        logger.debug("checkpoint saved | session=%s | batch=%d", session.id, checkpoint.batch_index)

    def _cancel_session(
        self, session: ImportSession, notices: NoticeAggregator, batch_index: int
    ) -> None:
        session.failed += session.remaining
        session.transition(SessionState.CANCELLED)
        notices.add_notice(
            NoticeLevel.WARNING,
            "Import cancelled",
            {"next_batch": batch_index},
            code=CANCELLED_CODE,
        )
        logger.info("import cancelled | session=%s | next_batch=%d", session.id, batch_index)

    def _fail_session(
        self,
        session: ImportSession,
        notices: NoticeAggregator,
        emit: Callable[[ImportEvent], None],
        exc: Exception,
    ) -> None:
        error = exc if isinstance(exc, PipelineError) else UnexpectedError(
            f"{type(exc).__name__}: {exc}", correlation_id=session.id
        )
        logger.exception("import failed | session=%s | error=%s", session.id, error)
        notices.add_error(error)
        emit(ErrorEvent(message=error.message, code=error.code))
        session.failure_cause = error.message
        session.failed += session.remaining
        if not session.state.is_terminal:
            session.transition(SessionState.FAILED)

    def _notify(self, fn: Callable[..., None], *args: object) -> None:
        try:
            fn(*args)
        except Exception as exc:
            logger.warning("metrics notification failed | fn=%s | error=%s", fn.__name__, exc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _materialise(request: ImportRequest) -> tuple[Iterable[Feature], int]:
    """Return the feature stream and its total.

    Sized collections are used as-is; other iterables are consumed into
    a list unless the request declares ``total``.
    """
    if request.total is not None:
        return request.features, request.total
    if hasattr(request.features, "__len__"):
        return request.features, len(request.features)  # type: ignore[arg-type]
    features = list(request.features)
    return features, len(features)


def _check_request(batch_size: int, policy: str) -> None:
    if batch_size < 1:
        msg = f"batch_size must be >= 1, got {batch_size}"
        raise ValidationError(msg, stage="import")
    if policy not in FAILURE_POLICIES:
        msg = f"failure_policy must be one of {sorted(FAILURE_POLICIES)}, got {policy!r}"
        raise ValidationError(msg, stage="import")
