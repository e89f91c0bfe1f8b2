"""Azure Blob Storage checkpoint store.

Each session's checkpoint is a small JSON document at
``{prefix}/{session_id}.json`` inside one container.  Writes overwrite
the previous checkpoint; ``clear`` deletes the blob.
"""

from __future__ import annotations

import contextlib
import json
import logging
from typing import TYPE_CHECKING

from geo_import.adapters.base import Checkpoint, CheckpointStore
from geo_import.core.exceptions import TransientError

if TYPE_CHECKING:
    from azure.storage.blob import BlobServiceClient

logger = logging.getLogger("geo_import.adapters.blob")

DEFAULT_CHECKPOINT_CONTAINER = "import-checkpoints"
DEFAULT_CHECKPOINT_PREFIX = "sessions"


class CheckpointStoreError(TransientError):
    """Raised when a checkpoint blob cannot be written or read."""

    default_stage = "checkpoint"
    default_code = "CHECKPOINT_STORE_FAILED"


class BlobCheckpointStore(CheckpointStore):
    """``CheckpointStore`` persisting JSON documents in a blob container."""

    def __init__(
        self,
        blob_service_client: BlobServiceClient,
        *,
        container: str = DEFAULT_CHECKPOINT_CONTAINER,
        prefix: str = DEFAULT_CHECKPOINT_PREFIX,
    ) -> None:
        self._service = blob_service_client
        self._container = container
        self._prefix = prefix.strip("/")
        container_client = blob_service_client.get_container_client(container)
        with contextlib.suppress(Exception):
            container_client.create_container()

    @classmethod
    def from_connection_string(cls, connection_string: str, **kwargs: str) -> BlobCheckpointStore:
        from azure.storage.blob import BlobServiceClient

        return cls(BlobServiceClient.from_connection_string(connection_string), **kwargs)

    def blob_path(self, session_id: str) -> str:
        return f"{self._prefix}/{session_id}.json" if self._prefix else f"{session_id}.json"

    def save(self, checkpoint: Checkpoint) -> None:
        path = self.blob_path(checkpoint.session_id)
        payload = json.dumps(checkpoint.to_dict(), separators=(",", ":")).encode("utf-8")
        try:
            self._service.get_blob_client(container=self._container, blob=path).upload_blob(
                payload, overwrite=True
            )
        except Exception as exc:
            msg = f"Failed to write checkpoint {self._container}/{path}: {exc}"
            raise CheckpointStoreError(msg, correlation_id=checkpoint.session_id) from exc
        logger.debug(
            "checkpoint saved | session=%s | batch=%d | blob=%s",
            checkpoint.session_id,
            checkpoint.batch_index,
            path,
        )

    def load(self, session_id: str) -> Checkpoint | None:
        from azure.core.exceptions import ResourceNotFoundError

        path = self.blob_path(session_id)
        try:
            blob_client = self._service.get_blob_client(container=self._container, blob=path)
            data = blob_client.download_blob().readall()
        except ResourceNotFoundError:
            return None
        except Exception as exc:
            msg = f"Failed to read checkpoint {self._container}/{path}: {exc}"
            raise CheckpointStoreError(msg, correlation_id=session_id) from exc

        try:
            return Checkpoint.from_dict(json.loads(data))
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("checkpoint unreadable, ignoring | session=%s | error=%s", session_id, exc)
            return None

    def clear(self, session_id: str) -> None:
        from azure.core.exceptions import ResourceNotFoundError

        path = self.blob_path(session_id)
        with contextlib.suppress(ResourceNotFoundError):
            self._service.get_blob_client(container=self._container, blob=path).delete_blob()
