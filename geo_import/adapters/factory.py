"""Storage writer factory — selects a storage backend by name.

The factory maintains a registry of known writers.  Entries are lazy
import thunks so that backend dependencies (e.g. httpx) are only loaded
when that writer is selected.

Usage::

    from geo_import.adapters.factory import get_storage_writer

    writer = get_storage_writer("http", base_url="https://features.example")
    writer.write_batch("parcels", "session-1:0", items)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from geo_import.adapters.base import StorageWriter
from geo_import.core.exceptions import ValidationError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger("geo_import.adapters.factory")

# ---------------------------------------------------------------------------
# Writer name constants
# ---------------------------------------------------------------------------

MEMORY = "memory"
HTTP = "http"

# ---------------------------------------------------------------------------
# Lazy-import writer registry
# ---------------------------------------------------------------------------

_WRITER_REGISTRY: dict[str, Callable[[], type[StorageWriter]]] = {}


class UnknownStorageWriterError(ValidationError):
    """Raised when no storage writer is registered under a name."""

    default_stage = "adapters"
    default_code = "STORAGE_WRITER_UNKNOWN"


def _register_builtin_writers() -> None:
    """Register the built-in writers (called once, lazily)."""

    def _memory() -> type[StorageWriter]:
        from geo_import.adapters.memory import InMemoryStorageWriter

        return InMemoryStorageWriter

    def _http() -> type[StorageWriter]:
        from geo_import.adapters.http import HttpStorageWriter

        return HttpStorageWriter

    _WRITER_REGISTRY[MEMORY] = _memory
    _WRITER_REGISTRY[HTTP] = _http


def _ensure_registry() -> None:
    """Initialise the writer registry once (idempotent)."""
    if not _WRITER_REGISTRY:
        _register_builtin_writers()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def register_storage_writer(name: str, loader: Callable[[], type[StorageWriter]]) -> None:
    """Register a custom storage writer.

    Args:
        name: Writer name (e.g. ``"postgis"``).
        loader: Zero-argument callable returning the writer class.

    Raises:
        ValueError: If the name is empty.
    """
    if not name:
        msg = "Storage writer name must be non-empty"
        raise ValueError(msg)
    _ensure_registry()
    _WRITER_REGISTRY[name] = loader
    logger.debug("Registered storage writer: %s", name)


def get_storage_writer(name: str, **kwargs: Any) -> StorageWriter:
    """Instantiate the writer registered under *name*.

    Args:
        name: Writer identifier (``"memory"``, ``"http"`` ...).
        **kwargs: Passed to the writer's constructor.

    Raises:
        UnknownStorageWriterError: If the name is not registered.
    """
    _ensure_registry()
    loader = _WRITER_REGISTRY.get(name)
    if loader is None:
        available = ", ".join(sorted(_WRITER_REGISTRY))
        msg = f"Unknown storage writer: {name!r}. Available: {available}"
        raise UnknownStorageWriterError(msg)
    writer_cls = loader()
    logger.info("Storage writer selected: %s (%s)", name, writer_cls.__name__)
    return writer_cls(**kwargs)


def list_storage_writers() -> list[str]:
    _ensure_registry()
    return sorted(_WRITER_REGISTRY)
