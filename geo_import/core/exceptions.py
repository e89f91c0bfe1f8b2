"""Unified import exception taxonomy.

Provides a shared base exception hierarchy for decoders, the coordinate
registry/transformer, storage adapters and the import orchestrator.
Every domain exception inherits from ``PipelineError`` and carries
structured context fields that enable consistent retry decisions,
aggregation into session notices, and operator diagnostics.

Taxonomy categories
-------------------
- ``ValidationError``   — input/contract violations, never retryable.
- ``TransientError``    — temporary failures (network, throttle), retryable.
- ``PermanentError``    — unrecoverable domain failures, not retryable.
- ``ContractError``     — illegal state or schema drift, never retryable.

Domain errors
-------------
- ``StructuralError``   — corrupt file header/signature; aborts decoding.
- ``RecordError``       — one corrupt record; aggregated, decoding continues.
- ``GeometryValidationError`` — geometry failed validation; feature excluded.
- ``TransformError``    — coordinate transform failed for one feature.
- ``BatchWriteError``   — storage write failed; retried when transient.
- ``UnexpectedError``   — anything else, caught at the import boundary.

Every exception exposes ``to_error_dict()`` for a stable structured
error payload suitable for progress events and logging.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base exception for all import-domain errors.

    Attributes:
        message: Human-readable error description.
        stage: Pipeline stage where the error occurred
            (e.g. ``"decode_shapefile"``, ``"write_batch"``).
        code: Machine-readable error code (e.g. ``"RECORD_INVALID"``).
        retryable: Whether the orchestrator should retry the operation.
        correlation_id: Session/batch correlation identifier.
    """

    #: Default stage for subclasses (override via class attribute or kwarg).
    default_stage: str = ""
    #: Default code for subclasses (override via class attribute or kwarg).
    default_code: str = ""

    def __init__(
        self,
        message: str = "",
        *,
        stage: str = "",
        code: str = "",
        retryable: bool = False,
        correlation_id: str = "",
    ) -> None:
        self.message = message
        self.stage = stage or self.default_stage
        self.code = code or self.default_code
        self.retryable = retryable
        self.correlation_id = correlation_id
        super().__init__(message)

    @property
    def category(self) -> str:
        """Return the error category based on concrete class."""
        if isinstance(self, ContractError):
            return "contract"
        if isinstance(self, ValidationError):
            return "validation"
        if isinstance(self, TransientError):
            return "transient"
        if isinstance(self, PermanentError):
            return "permanent"
        return "transient" if self.retryable else "permanent"

    def to_error_dict(self) -> dict[str, object]:
        """Return a structured error payload with stable keys."""
        return {
            "category": self.category,
            "code": self.code,
            "stage": self.stage,
            "message": self.message,
            "retryable": self.retryable,
            "correlation_id": self.correlation_id,
        }


# ---------------------------------------------------------------------------
# Category base classes
# ---------------------------------------------------------------------------


class ValidationError(PipelineError):
    """Input or domain-model validation failure. Never retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class TransientError(PipelineError):
    """Temporary failure that may succeed on retry."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class PermanentError(PipelineError):
    """Unrecoverable domain failure. Not retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class ContractError(PipelineError):
    """Illegal state transition or payload drift. Never retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


class StructuralError(PermanentError):
    """File header or signature is corrupt; no records can be trusted."""

    default_stage = "decode"
    default_code = "STRUCTURAL_ERROR"


class RecordError(ValidationError):
    """A single record could not be decoded.

    Attributes:
        record_index: Zero-based position of the record in the source
            (``-1`` when the position is unknown).
    """

    default_stage = "decode"
    default_code = "RECORD_INVALID"

    def __init__(self, message: str = "", *, record_index: int = -1, **kwargs: object) -> None:
        self.record_index = record_index
        super().__init__(message, **kwargs)

    def to_error_dict(self) -> dict[str, object]:
        payload = super().to_error_dict()
        payload["record_index"] = self.record_index
        return payload


# ---------------------------------------------------------------------------
# Validation and transformation
# ---------------------------------------------------------------------------


class GeometryValidationError(ValidationError):
    """Feature geometry failed a structural check."""

    default_stage = "validate"
    default_code = "GEOMETRY_INVALID"


class TransformError(PermanentError):
    """Coordinate transformation failed for a feature."""

    default_stage = "transform"
    default_code = "TRANSFORM_FAILED"


class DuplicateCoordinateSystemError(ValidationError):
    """A coordinate system with the same id is already registered."""

    default_stage = "crs_registry"
    default_code = "CRS_DUPLICATE"


class UnknownCoordinateSystemError(ValidationError):
    """No coordinate system is registered under the requested id."""

    default_stage = "crs_registry"
    default_code = "CRS_UNKNOWN"


# ---------------------------------------------------------------------------
# Import orchestration
# ---------------------------------------------------------------------------


class BatchWriteError(PipelineError):
    """Storage rejected or failed a batch write.

    Retryability is carried on the instance; storage adapters raise it
    with ``retryable=True`` for throttling/timeouts and ``False`` for
    rejected payloads.

    Attributes:
        in_flight: Timed-out attempts still running when the batch was
            given up on; their writes may still land.
    """

    default_stage = "write_batch"
    default_code = "BATCH_WRITE_FAILED"

    def __init__(self, message: str = "", *, in_flight: int = 0, **kwargs: object) -> None:
        self.in_flight = in_flight
        super().__init__(message, **kwargs)  # type: ignore[arg-type]

    def to_error_dict(self) -> dict[str, object]:
        payload = super().to_error_dict()
        payload["in_flight"] = self.in_flight
        return payload

    @property
    def category(self) -> str:
        return "transient" if self.retryable else "permanent"


class SessionStateError(ContractError):
    """An import session was asked to make an illegal state transition."""

    default_stage = "import_session"
    default_code = "SESSION_STATE_INVALID"


class UnexpectedError(PermanentError):
    """Unclassified failure caught at the import boundary."""

    default_stage = "import"
    default_code = "UNEXPECTED_ERROR"
