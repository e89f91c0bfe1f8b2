"""HTTP storage writer.

Sends each batch as a JSON ``PUT`` to
``{base_url}/layers/{layer_id}/batches/{batch_id}`` with an
``Idempotency-Key`` header equal to the batch id, so the backend can
discard replays of a retried or resumed batch.

Expected response body (all keys optional)::

    {"results": [{"featureId": 1, "success": true, "error": ""}],
     "notices": [{"level": "warning", "message": "...", "details": {}}]}

Error mapping:
    429, 5xx, timeouts and connection failures -> retryable ``BatchWriteError``
    other 4xx                                   -> non-retryable ``BatchWriteError``
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from geo_import.adapters.base import BatchWriteResult, FeatureWriteResult, StorageWriter
from geo_import.core.exceptions import BatchWriteError

logger = logging.getLogger("geo_import.adapters.http")

DEFAULT_HTTP_TIMEOUT_S = 30.0
RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


class HttpStorageWriter(StorageWriter):
    """``StorageWriter`` backed by an HTTP feature service."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_HTTP_TIMEOUT_S,
        headers: dict[str, str] | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        if not base_url:
            msg = "base_url must be non-empty"
            raise ValueError(msg)
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout, headers=headers or {})
        self._owns_client = client is None

    def write_batch(
        self,
        layer_id: str,
        batch_id: str,
        items: list[dict[str, Any]],
    ) -> BatchWriteResult:
        url = f"{self._base_url}/layers/{layer_id}/batches/{batch_id}"
        try:
            response = self._client.put(
                url,
                json={"type": "FeatureCollection", "features": items},
                headers={"Idempotency-Key": batch_id},
            )
        except httpx.TimeoutException as exc:
            msg = f"Batch {batch_id} write timed out: {exc}"
            raise BatchWriteError(msg, retryable=True, correlation_id=batch_id) from exc
        except httpx.TransportError as exc:
            msg = f"Batch {batch_id} write failed to connect: {exc}"
            raise BatchWriteError(msg, retryable=True, correlation_id=batch_id) from exc

        if response.status_code >= 400:
            retryable = response.status_code in RETRYABLE_STATUS_CODES or response.status_code >= 500
            msg = f"Batch {batch_id} rejected with HTTP {response.status_code}: {response.text[:200]}"
            raise BatchWriteError(msg, retryable=retryable, correlation_id=batch_id)

        body = _json_body(response)
        logger.debug(
            "batch written | layer=%s | batch=%s | items=%d | status=%d",
            layer_id,
            batch_id,
            len(items),
            response.status_code,
        )
        return BatchWriteResult(
            feature_results=tuple(
                FeatureWriteResult(
                    feature_id=int(r.get("featureId", 0)),
                    success=bool(r.get("success", True)),
                    error=str(r.get("error", "") or ""),
                )
                for r in body.get("results", [])
                if isinstance(r, dict)
            ),
            notices=tuple(n for n in body.get("notices", []) if isinstance(n, dict)),
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


def _json_body(response: httpx.Response) -> dict[str, Any]:
    if not response.content:
        return {}
    try:
        body = response.json()
    except ValueError:
        logger.warning("storage response is not JSON | status=%d", response.status_code)
        return {}
    return body if isinstance(body, dict) else {}
