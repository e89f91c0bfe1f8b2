"""Bounded phase helpers for the import orchestrator.

Each batch passes through two phases, strictly in order:

1. **Preparation** — validate and transform every feature of the batch
   on a bounded worker pool, then join all results in original order.
   Nothing of the batch reaches storage before the join completes.
2. **Write** — one ``StorageWriter.write_batch`` call per attempt, with
   a per-attempt timeout and exponential retry for retryable failures.
   Attempts of one batch never share workers with another batch.

The top-level orchestrator in ``import_pipeline.py`` drives these
phases batch by batch and owns all session state.
"""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, TypedDict

from geo_import.core.exceptions import BatchWriteError, PipelineError
from geo_import.models.feature import apply_property_mapping
from geo_import.models.session import FailedFeature, ImportBatch
from geo_import.validation import validate_feature

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator, Mapping
    from concurrent.futures import Executor

    from geo_import.adapters.base import BatchWriteResult, StorageWriter
    from geo_import.core.config import ImportConfig
    from geo_import.crs.transformer import CoordinateTransformer, TransformOptions
    from geo_import.models.feature import Feature

logger = logging.getLogger("geo_import.orchestrators.phases")


# ---------------------------------------------------------------------------
# Phase result contracts
# ---------------------------------------------------------------------------


class PreparedBatch(TypedDict):
    """Output contract for the preparation phase."""

    ready: list[Feature]
    failed: list[FailedFeature]
    validated_count: int
    transformed_count: int
    warnings: list[str]


class WriteOutcome(TypedDict):
    """Output contract for the write phase."""

    result: BatchWriteResult
    attempts: int
    duration_s: float


@dataclass(frozen=True, slots=True)
class _FeatureOutcome:
    feature: Feature | None
    failure: FailedFeature | None
    validated: bool
    transformed: bool
    warning: str | None = None


# ---------------------------------------------------------------------------
# Batching
# ---------------------------------------------------------------------------


def count_batches(total: int, batch_size: int) -> int:
    """Return ``ceil(total / batch_size)``."""
    return math.ceil(total / batch_size) if total > 0 else 0


def iter_batches(
    features: Iterable[Feature], batch_size: int, session_id: str
) -> Iterator[ImportBatch]:
    """Partition *features* into ordered batches; the last may be short."""
    buffer: list[Feature] = []
    index = 0
    for feature in features:
        buffer.append(feature)
        if len(buffer) == batch_size:
            yield ImportBatch.build(session_id, index, buffer)
            buffer = []
            index += 1
    if buffer:
        yield ImportBatch.build(session_id, index, buffer)


# ---------------------------------------------------------------------------
# Phase 1: Preparation (validate + transform, fan-out / fan-in)
# ---------------------------------------------------------------------------


def prepare_batch(
    batch: ImportBatch,
    *,
    transformer: CoordinateTransformer,
    source_srid: int,
    target_srid: int,
    pool: Executor,
    options: TransformOptions | None = None,
    property_mapping: Mapping[str, str] | None = None,
    check_topology: bool = False,
) -> PreparedBatch:
    """Validate and transform every feature of *batch*.

    Work is submitted to *pool* and joined in submission order, so the
    ``ready`` list preserves the batch order.  Worker exceptions other
    than per-feature validation/transform failures propagate.
    """
    start = time.monotonic()

    def _one(feature: Feature) -> _FeatureOutcome:
        return _prepare_feature(
            feature,
            transformer=transformer,
            source_srid=source_srid,
            target_srid=target_srid,
            options=options,
            property_mapping=property_mapping,
            check_topology=check_topology,
        )

    futures = [pool.submit(_one, feature) for feature in batch.features]
    outcomes = [future.result() for future in futures]

    prepared: PreparedBatch = {
        "ready": [o.feature for o in outcomes if o.feature is not None],
        "failed": [o.failure for o in outcomes if o.failure is not None],
        "validated_count": sum(1 for o in outcomes if o.validated),
        "transformed_count": sum(1 for o in outcomes if o.transformed),
        "warnings": [o.warning for o in outcomes if o.warning],
    }
    logger.debug(
        "phase=prepare completed | batch=%s | ready=%d | failed=%d | duration=%.3fs",
        batch.batch_id,
        len(prepared["ready"]),
        len(prepared["failed"]),
        time.monotonic() - start,
    )
    return prepared


def _prepare_feature(
    feature: Feature,
    *,
    transformer: CoordinateTransformer,
    source_srid: int,
    target_srid: int,
    options: TransformOptions | None,
    property_mapping: Mapping[str, str] | None,
    check_topology: bool,
) -> _FeatureOutcome:
    validated = validate_feature(feature, check_topology=check_topology)
    result = validated.validation
    if result is not None and not result.is_valid:
        return _FeatureOutcome(
            feature=None,
            failure=FailedFeature(feature.id, result.describe(), code="GEOMETRY_INVALID"),
            validated=False,
            transformed=False,
        )

    transformed = transformer.transform_geometry(
        validated.geometry, source_srid, target_srid, options
    )
    if not transformed.success:
        return _FeatureOutcome(
            feature=None,
            failure=FailedFeature(
                feature.id, transformed.error or "transform failed", code="TRANSFORM_FAILED"
            ),
            validated=True,
            transformed=False,
        )

    ready = validated.with_geometry(transformed.geometry)
    if property_mapping:
        ready = replace(ready, attributes=apply_property_mapping(ready.attributes, property_mapping))
    return _FeatureOutcome(
        feature=ready,
        failure=None,
        validated=True,
        transformed=True,
        warning=transformed.warning,
    )


# ---------------------------------------------------------------------------
# Phase 2: Write (timeout + retry with exponential backoff)
# ---------------------------------------------------------------------------


def write_with_retry(
    writer: StorageWriter,
    layer_id: str,
    batch: ImportBatch,
    items: list[dict[str, Any]],
    *,
    config: ImportConfig,
    sleep: Callable[[float], None] = time.sleep,
) -> WriteOutcome:
    """Write one batch, retrying retryable failures.

    Attempts run on a pool owned by this call, one worker per attempt,
    so they never queue behind another batch's writes.  An attempt is
    abandoned after ``config.write_timeout_s``; if it completes before
    the batch is given up on, its result is used.  Once retries are
    exhausted, abandoned attempts get one more timeout window to land.

    Raises:
        BatchWriteError: With ``retryable=False`` after a non-retryable
            failure or once ``config.max_retries`` retries are exhausted.
            ``in_flight`` counts abandoned attempts still running.
    """
    last_error: PipelineError | None = None
    start_time = time.monotonic()
    abandoned: list[Future[BatchWriteResult]] = []
    pool = ThreadPoolExecutor(
        max_workers=config.max_retries + 1, thread_name_prefix="geo-import-write"
    )
    try:
        for attempt in range(config.max_retries + 1):
            landed = _landed(abandoned)
            if landed is not None:
                return _write_outcome(landed, attempt, start_time, batch)

            future = pool.submit(writer.write_batch, layer_id, batch.batch_id, items)
            try:
                result = future.result(timeout=config.write_timeout_s)
                return _write_outcome(result, attempt + 1, start_time, batch)
            except FutureTimeoutError:
                abandoned.append(future)
                last_error = BatchWriteError(
                    f"Batch {batch.batch_id} write timed out after {config.write_timeout_s}s",
                    retryable=True,
                    correlation_id=batch.batch_id,
                )
            except PipelineError as exc:
                if not exc.retryable:
                    msg = f"Batch {batch.batch_id} write failed (non-retryable): {exc}"
                    raise BatchWriteError(
                        msg,
                        retryable=False,
                        code=exc.code,
                        correlation_id=batch.batch_id,
                        in_flight=_running(abandoned),
                    ) from exc
                last_error = exc

            if attempt < config.max_retries:
                delay = config.retry_delay_for(attempt + 1)
                logger.warning(
                    "Batch write attempt %d/%d failed (retryable) | batch=%s | delay=%.2fs | error=%s",
                    attempt + 1,
                    config.max_retries + 1,
                    batch.batch_id,
                    delay,
                    last_error,
                )
                sleep(delay)

        if abandoned:
            wait(abandoned, timeout=config.write_timeout_s)
            landed = _landed(abandoned)
            if landed is not None:
                return _write_outcome(landed, config.max_retries + 1, start_time, batch)

        in_flight = _running(abandoned)
        logger.error(
            "Batch write retries exhausted | batch=%s | attempts=%d | in_flight=%d | error=%s",
            batch.batch_id,
            config.max_retries + 1,
            in_flight,
            last_error,
        )
        msg = f"Batch {batch.batch_id} write failed after {config.max_retries + 1} attempts: {last_error}"
        raise BatchWriteError(
            msg, retryable=False, correlation_id=batch.batch_id, in_flight=in_flight
        ) from last_error
    finally:
        pool.shutdown(wait=False, cancel_futures=True)


def _landed(futures: list[Future[BatchWriteResult]]) -> BatchWriteResult | None:
    """Return the result of the first abandoned attempt that succeeded."""
    for future in futures:
        if future.done() and not future.cancelled() and future.exception() is None:
            return future.result()
    return None


def _running(futures: list[Future[BatchWriteResult]]) -> int:
    return sum(1 for future in futures if not future.done())


def _write_outcome(
    result: BatchWriteResult, attempts: int, start_time: float, batch: ImportBatch
) -> WriteOutcome:
    if attempts > 1:
        logger.info("Batch write succeeded | batch=%s | attempts=%d", batch.batch_id, attempts)
    return {
        "result": result,
        "attempts": attempts,
        "duration_s": time.monotonic() - start_time,
    }
