"""Caching coordinate transformer.

``CoordinateTransformer.transform`` converts positions between two
registered coordinate systems and always returns a tagged
``TransformResult``; no exception crosses its public boundary.

Operations are built lazily per ordered ``(from_id, to_id)`` pair by a
pluggable operation factory and cached until ``clear_cache()``.  The
reverse direction is a separate cache entry.  The default factory wraps
``pyproj.Transformer`` and works on numpy arrays so a whole geometry is
converted in one call.

Identity fallback is strictly opt-in: when an operation fails and the
caller set ``allow_identity_fallback`` *and* both ids are equal, the
input is copied through and the result carries a warning.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from numbers import Real
from typing import TYPE_CHECKING

import numpy as np

from geo_import.core.exceptions import TransformError

if TYPE_CHECKING:
    from geo_import.crs.registry import CoordinateSystemRegistry
    from geo_import.models.coordinate_system import CoordinateSystem
    from geo_import.models.geometry import GeometryRecord, Position

logger = logging.getLogger("geo_import.crs.transformer")

ArrayTriple = tuple[np.ndarray, np.ndarray, np.ndarray | None]
TransformOperation = Callable[[np.ndarray, np.ndarray, np.ndarray | None], ArrayTriple]
OperationFactory = Callable[["CoordinateSystem", "CoordinateSystem"], TransformOperation]


@dataclass(frozen=True, slots=True)
class TransformOptions:
    """Per-call transform options.

    Attributes:
        validate_input: Check every position is ≥2 finite numbers first.
        allow_identity_fallback: Copy input through on failure when the
            source and target ids are equal.
    """

    validate_input: bool = True
    allow_identity_fallback: bool = False


@dataclass(frozen=True, slots=True)
class TransformResult:
    """Tagged transform outcome.

    On failure ``coordinates`` holds the original input unchanged.
    """

    coordinates: tuple[Position, ...]
    success: bool
    error: str | None = None
    warning: str | None = None
    fallback_used: bool = False


@dataclass(frozen=True, slots=True)
class GeometryTransformResult:
    """Tagged outcome of ``transform_geometry``."""

    geometry: GeometryRecord
    success: bool
    error: str | None = None
    warning: str | None = None
    fallback_used: bool = False


# ---------------------------------------------------------------------------
# Default operation factory (pyproj)
# ---------------------------------------------------------------------------


def identity_operation(xs: np.ndarray, ys: np.ndarray, zs: np.ndarray | None) -> ArrayTriple:
    return xs.copy(), ys.copy(), None if zs is None else zs.copy()


def pyproj_operation_factory(source: CoordinateSystem, target: CoordinateSystem) -> TransformOperation:
    """Build an operation backed by ``pyproj.Transformer``.

    Raises:
        TransformError: If pyproj cannot build a pipeline for the pair.
    """
    if source.id == target.id:
        return identity_operation

    from pyproj import Transformer
    from pyproj.exceptions import CRSError, ProjError

    try:
        # Built once up front so an invalid definition fails at cache time
        Transformer.from_crs(source.crs_input, target.crs_input, always_xy=True)
    except (CRSError, ProjError) as exc:
        msg = f"Cannot build transform {source.id}->{target.id}: {exc}"
        raise TransformError(msg) from exc

    # Transformer instances are kept per thread
    local = threading.local()

    def _operation(xs: np.ndarray, ys: np.ndarray, zs: np.ndarray | None) -> ArrayTriple:
        transformer = getattr(local, "transformer", None)
        if transformer is None:
            transformer = Transformer.from_crs(source.crs_input, target.crs_input, always_xy=True)
            local.transformer = transformer
        if zs is None:
            out_x, out_y = transformer.transform(xs, ys, errcheck=True)
            return np.asarray(out_x, dtype=float), np.asarray(out_y, dtype=float), None
        out_x, out_y, out_z = transformer.transform(xs, ys, zs, errcheck=True)
        return (
            np.asarray(out_x, dtype=float),
            np.asarray(out_y, dtype=float),
            np.asarray(out_z, dtype=float),
        )

    return _operation


# ---------------------------------------------------------------------------
# Transformer
# ---------------------------------------------------------------------------


class CoordinateTransformer:
    """Pair-keyed caching transformer over a ``CoordinateSystemRegistry``."""

    def __init__(
        self,
        registry: CoordinateSystemRegistry,
        *,
        operation_factory: OperationFactory = pyproj_operation_factory,
    ) -> None:
        self.registry = registry
        self._factory = operation_factory
        self._cache: dict[tuple[int, int], TransformOperation] = {}
        self._lock = threading.Lock()

    # -- cache ---------------------------------------------------------------

    def cached_pairs(self) -> list[tuple[int, int]]:
        return sorted(self._cache)

    def clear_cache(self) -> None:
        """Drop every cached operation (the only eviction path)."""
        with self._lock:
            self._cache = {}
        logger.info("transform cache cleared")

    def get_operation(self, from_id: int, to_id: int) -> TransformOperation:
        """Return the cached operation for the pair, building it on first use.

        Raises:
            UnknownCoordinateSystemError: If either id is not registered.
            TransformError: If the factory cannot build the operation.
        """
        key = (from_id, to_id)
        operation = self._cache.get(key)
        if operation is not None:
            return operation

        with self._lock:
            operation = self._cache.get(key)
            if operation is None:
                source = self.registry.get(from_id)
                target = self.registry.get(to_id)
                operation = self._factory(source, target)
                updated = dict(self._cache)
                updated[key] = operation
                self._cache = updated
                logger.debug("transform operation cached | pair=%d->%d", from_id, to_id)
        return operation

    # -- public API ------------------------------------------------------------

    def transform(
        self,
        coordinates: Sequence[Sequence[float]],
        from_id: int,
        to_id: int,
        options: TransformOptions | None = None,
    ) -> TransformResult:
        """Transform a flat sequence of positions from *from_id* to *to_id*."""
        options = options or TransformOptions()
        original = _snapshot(coordinates)

        if options.validate_input:
            problem = validate_positions(coordinates)
            if problem is not None:
                return TransformResult(coordinates=original, success=False, error=problem)

        try:
            operation = self.get_operation(from_id, to_id)
            transformed = _apply(operation, original)
        except Exception as exc:
            return self._failure(original, from_id, to_id, exc, options)

        return TransformResult(coordinates=tuple(transformed), success=True)

    def transform_geometry(
        self,
        geometry: GeometryRecord,
        from_id: int,
        to_id: int,
        options: TransformOptions | None = None,
    ) -> GeometryTransformResult:
        """Transform every position of *geometry* in one vectorised call."""
        positions = list(geometry.iter_positions())
        result = self.transform(positions, from_id, to_id, options)
        if not result.success:
            return GeometryTransformResult(geometry=geometry, success=False, error=result.error)
        return GeometryTransformResult(
            geometry=geometry.with_positions(list(result.coordinates), srid=to_id),
            success=True,
            warning=result.warning,
            fallback_used=result.fallback_used,
        )

    def _failure(
        self,
        original: tuple[Position, ...],
        from_id: int,
        to_id: int,
        exc: Exception,
        options: TransformOptions,
    ) -> TransformResult:
        if options.allow_identity_fallback and from_id == to_id:
            warning = f"Transform {from_id}->{to_id} failed ({exc}); identity copy used"
            logger.warning("transform fallback | pair=%d->%d | error=%s", from_id, to_id, exc)
            return TransformResult(
                coordinates=tuple(tuple(p) for p in original),
                success=True,
                warning=warning,
                fallback_used=True,
            )
        logger.debug("transform failed | pair=%d->%d | error=%s", from_id, to_id, exc)
        return TransformResult(
            coordinates=original,
            success=False,
            error=f"Transform {from_id}->{to_id} failed: {exc}",
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def validate_positions(coordinates: object) -> str | None:
    """Return a description of the first malformed position, or ``None``."""
    if not _iterable(coordinates):
        return f"Coordinates must be a sequence of positions, got {type(coordinates).__name__}"
    for i, position in enumerate(coordinates):  # type: ignore[arg-type]
        if not _iterable(position) or len(position) < 2:
            return f"Position {i} must have at least 2 components"
        for value in position:
            if isinstance(value, bool) or not isinstance(value, Real):
                return f"Position {i} has non-numeric component {value!r}"
            if not math.isfinite(value):
                return f"Position {i} has non-finite component {value!r}"
    return None


def _iterable(value: object) -> bool:
    return isinstance(value, (list, tuple, np.ndarray))


def _snapshot(coordinates: object) -> tuple[Position, ...]:
    if not _iterable(coordinates):
        return ()
    return tuple(tuple(p) if _iterable(p) else p for p in coordinates)  # type: ignore[union-attr]


def _apply(operation: TransformOperation, positions: tuple[Position, ...]) -> list[Position]:
    if not positions:
        return []
    xs = np.fromiter((p[0] for p in positions), dtype=float, count=len(positions))
    ys = np.fromiter((p[1] for p in positions), dtype=float, count=len(positions))
    has_z = any(len(p) > 2 for p in positions)
    zs = (
        np.fromiter((p[2] if len(p) > 2 else 0.0 for p in positions), dtype=float, count=len(positions))
        if has_z
        else None
    )

    out_x, out_y, out_z = operation(xs, ys, zs)
    if not (np.all(np.isfinite(out_x)) and np.all(np.isfinite(out_y))):
        msg = "Operation produced non-finite coordinates"
        raise TransformError(msg)
    if out_z is not None and not np.all(np.isfinite(out_z)):
        msg = "Operation produced non-finite Z values"
        raise TransformError(msg)

    result: list[Position] = []
    for i, position in enumerate(positions):
        if len(position) > 2 and out_z is not None:
            result.append((float(out_x[i]), float(out_y[i]), float(out_z[i]), *position[3:]))
        else:
            result.append((float(out_x[i]), float(out_y[i])))
    return result
