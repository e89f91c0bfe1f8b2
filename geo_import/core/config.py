"""Import configuration loaded from environment variables.

All configuration values have sensible defaults. Deployments override
them through ``GEO_IMPORT_*`` environment variables.

Fail-fast validation:
    ``from_env()`` raises ``ConfigValidationError`` if any numeric
    value is out of its valid range.  This catches bad configuration at
    startup rather than halfway through a long import.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from geo_import.core.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CHECKPOINT_INTERVAL,
    DEFAULT_MAX_PARTS,
    DEFAULT_MAX_POINTS,
    DEFAULT_MAX_RECORD_LENGTH_BYTES,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_RETRY_DELAY_S,
    DEFAULT_RETRY_BACKOFF,
    DEFAULT_RETRY_DELAY_S,
    DEFAULT_TARGET_SRID,
    DEFAULT_TRANSFORM_WORKERS,
    DEFAULT_WRITE_TIMEOUT_S,
    FAILURE_POLICIES,
    FAILURE_POLICY_FAIL_FAST,
)
from geo_import.core.exceptions import PipelineError


class ConfigValidationError(PipelineError):
    """Raised when configuration values are out of valid range.

    Attributes:
        key: The configuration key that failed validation.
        value: The invalid value.
        message: Human-readable description of the valid range.
    """

    default_stage = "config"
    default_code = "CONFIG_VALIDATION_FAILED"

    def __init__(self, key: str, value: object, message: str) -> None:
        self.key = key
        self.value = value
        self.message = message
        super().__init__(f"Invalid configuration {key}={value!r}: {message}")


@dataclass(frozen=True, slots=True)
class ImportConfig:
    """Immutable import configuration.

    Loaded once at startup and handed to the orchestrator.

    Attributes:
        default_batch_size: Features per batch when a request gives none.
        default_target_srid: Target reference system when a request gives none.
        max_retries: Retries after the first failed write attempt.
        retry_delay_s: Delay before the first retry (seconds).
        retry_backoff: Multiplier applied to the delay per further retry.
        max_retry_delay_s: Upper bound for any single retry delay.
        checkpoint_interval: Processed features between checkpoints.
        write_timeout_s: Per-attempt timeout for a storage write.
        transform_workers: Thread pool size for per-batch transforms.
        failure_policy: ``fail_fast`` or ``best_effort``.
    """

    default_batch_size: int = DEFAULT_BATCH_SIZE
    default_target_srid: int = DEFAULT_TARGET_SRID
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_s: float = DEFAULT_RETRY_DELAY_S
    retry_backoff: float = DEFAULT_RETRY_BACKOFF
    max_retry_delay_s: float = DEFAULT_MAX_RETRY_DELAY_S
    checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL
    write_timeout_s: float = DEFAULT_WRITE_TIMEOUT_S
    transform_workers: int = DEFAULT_TRANSFORM_WORKERS
    failure_policy: str = FAILURE_POLICY_FAIL_FAST

    @classmethod
    def from_env(cls) -> ImportConfig:
        """Load and validate configuration from environment variables.

        Raises:
            ConfigValidationError: If a value is out of range or the
                failure policy is unknown.
            ValueError: If a numeric environment variable cannot be
                parsed (e.g. ``GEO_IMPORT_BATCH_SIZE=abc``).
        """
        config = cls(
            default_batch_size=int(os.getenv("GEO_IMPORT_BATCH_SIZE", str(DEFAULT_BATCH_SIZE))),
            default_target_srid=int(os.getenv("GEO_IMPORT_TARGET_SRID", str(DEFAULT_TARGET_SRID))),
            max_retries=int(os.getenv("GEO_IMPORT_MAX_RETRIES", str(DEFAULT_MAX_RETRIES))),
            retry_delay_s=float(os.getenv("GEO_IMPORT_RETRY_DELAY_S", str(DEFAULT_RETRY_DELAY_S))),
            retry_backoff=float(os.getenv("GEO_IMPORT_RETRY_BACKOFF", str(DEFAULT_RETRY_BACKOFF))),
            max_retry_delay_s=float(
                os.getenv("GEO_IMPORT_MAX_RETRY_DELAY_S", str(DEFAULT_MAX_RETRY_DELAY_S))
            ),
            checkpoint_interval=int(
                os.getenv("GEO_IMPORT_CHECKPOINT_INTERVAL", str(DEFAULT_CHECKPOINT_INTERVAL))
            ),
            write_timeout_s=float(
                os.getenv("GEO_IMPORT_WRITE_TIMEOUT_S", str(DEFAULT_WRITE_TIMEOUT_S))
            ),
            transform_workers=int(
                os.getenv("GEO_IMPORT_TRANSFORM_WORKERS", str(DEFAULT_TRANSFORM_WORKERS))
            ),
            failure_policy=os.getenv("GEO_IMPORT_FAILURE_POLICY", FAILURE_POLICY_FAIL_FAST),
        )
        _validate(config)
        return config

    def retry_delay_for(self, attempt: int) -> float:
        """Return the delay before retry number *attempt* (1-based), capped."""
        delay = self.retry_delay_s * (self.retry_backoff ** max(attempt - 1, 0))
        return min(delay, self.max_retry_delay_s)


@dataclass(frozen=True, slots=True)
class DecoderLimits:
    """Configurable upper bounds applied to every decoded record.

    Attributes:
        max_record_length_bytes: Largest accepted record content.
        max_parts: Largest accepted part count per shape.
        max_points: Largest accepted point count per shape.
    """

    max_record_length_bytes: int = DEFAULT_MAX_RECORD_LENGTH_BYTES
    max_parts: int = DEFAULT_MAX_PARTS
    max_points: int = DEFAULT_MAX_POINTS

    @classmethod
    def from_env(cls) -> DecoderLimits:
        """Load decoder limits from ``GEO_IMPORT_MAX_*`` variables."""
        limits = cls(
            max_record_length_bytes=int(
                os.getenv("GEO_IMPORT_MAX_RECORD_BYTES", str(DEFAULT_MAX_RECORD_LENGTH_BYTES))
            ),
            max_parts=int(os.getenv("GEO_IMPORT_MAX_PARTS", str(DEFAULT_MAX_PARTS))),
            max_points=int(os.getenv("GEO_IMPORT_MAX_POINTS", str(DEFAULT_MAX_POINTS))),
        )
        for key, value in (
            ("GEO_IMPORT_MAX_RECORD_BYTES", limits.max_record_length_bytes),
            ("GEO_IMPORT_MAX_PARTS", limits.max_parts),
            ("GEO_IMPORT_MAX_POINTS", limits.max_points),
        ):
            if value <= 0:
                raise ConfigValidationError(key, value, "must be > 0")
        return limits


def _validate(config: ImportConfig) -> None:
    """Validate configuration ranges.  Raises ``ConfigValidationError``."""
    if config.default_batch_size < 1:
        raise ConfigValidationError(
            "GEO_IMPORT_BATCH_SIZE",
            config.default_batch_size,
            "must be >= 1 (features)",
        )

    if config.default_target_srid <= 0:
        raise ConfigValidationError(
            "GEO_IMPORT_TARGET_SRID",
            config.default_target_srid,
            "must be a positive EPSG code",
        )

    if config.max_retries < 0:
        raise ConfigValidationError(
            "GEO_IMPORT_MAX_RETRIES",
            config.max_retries,
            "must be >= 0",
        )

    if config.retry_delay_s < 0:
        raise ConfigValidationError(
            "GEO_IMPORT_RETRY_DELAY_S",
            config.retry_delay_s,
            "must be >= 0 (seconds)",
        )

    if config.retry_backoff < 1.0:
        raise ConfigValidationError(
            "GEO_IMPORT_RETRY_BACKOFF",
            config.retry_backoff,
            "must be >= 1.0",
        )

    if config.max_retry_delay_s < config.retry_delay_s:
        raise ConfigValidationError(
            "GEO_IMPORT_MAX_RETRY_DELAY_S",
            config.max_retry_delay_s,
            "must be >= GEO_IMPORT_RETRY_DELAY_S",
        )

    if config.checkpoint_interval < 1:
        raise ConfigValidationError(
            "GEO_IMPORT_CHECKPOINT_INTERVAL",
            config.checkpoint_interval,
            "must be >= 1 (features)",
        )

    if config.write_timeout_s <= 0:
        raise ConfigValidationError(
            "GEO_IMPORT_WRITE_TIMEOUT_S",
            config.write_timeout_s,
            "must be > 0 (seconds)",
        )

    if config.transform_workers < 1:
        raise ConfigValidationError(
            "GEO_IMPORT_TRANSFORM_WORKERS",
            config.transform_workers,
            "must be >= 1",
        )

    if config.failure_policy not in FAILURE_POLICIES:
        raise ConfigValidationError(
            "GEO_IMPORT_FAILURE_POLICY",
            config.failure_policy,
            f"must be one of {sorted(FAILURE_POLICIES)}",
        )
