"""HTTP replay executor.

This module provides:
- HttpReplayExecutor: replays a queued operation against the authoritative
  backend with httpx and reports failures as tagged executor errors

Response handling:
- 2xx: JSON body returned (empty dict when there is none)
- 4xx whose JSON body carries a conflict ``error.code`` (DUPLICATE_OPERATION,
  VERSION_MISMATCH, RESOURCE_NOT_FOUND): body returned for the classifier
- any other 4xx / 5xx: ServerError, so the operation is retried and never
  closed as synced
- transport errors and timeouts: NetworkError
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from ledgersync.sync.domain.conflicts import CONFLICT_CODES, get_error_code
from ledgersync.sync.types import NetworkError, ServerError

if TYPE_CHECKING:
    from ledgersync.server.models import OfflineOperation

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"

# Stored request headers that must not be replayed verbatim
_HOP_BY_HOP_HEADERS = frozenset({"host", "content-length", "connection", "transfer-encoding"})


class HttpReplayExecutor:
    """Replays queued operations over HTTP."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            base_url: Base URL of the backend (operation endpoints are relative).
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self._base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self._base_url,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> HttpReplayExecutor:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _headers(self, operation: OfflineOperation) -> dict[str, str]:
        headers = {
            str(name): str(value)
            for name, value in (operation.request_headers or {}).items()
            if value is not None and str(name).lower() not in _HOP_BY_HOP_HEADERS
        }
        headers[IDEMPOTENCY_HEADER] = operation.operation_id
        if operation.device_id:
            headers.setdefault("X-Device-Id", operation.device_id)
        return headers

    def __call__(self, operation: OfflineOperation) -> Any:
        """Replay one operation and return the decoded response body.

        Raises:
            NetworkError: If the backend could not be reached or timed out.
            ServerError: If the backend rejected the replay without a
                conflict error code.
        """
        logger.debug(
            "Replaying operation %d: %s %s", operation.id, operation.method, operation.endpoint
        )
        try:
            response = self._client.request(
                operation.method,
                operation.endpoint,
                json=operation.request_body,
                headers=self._headers(operation),
            )
        except httpx.TimeoutException as e:
            raise NetworkError(f"Network timeout replaying {operation.endpoint}: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Network error replaying {operation.endpoint}: {e}") from e

        body = self._decode(response)

        if response.is_success:
            return body if body is not None else {}
        if response.is_client_error and get_error_code(body) in CONFLICT_CODES:
            return body

        message = f"Replay of {operation.endpoint} failed with HTTP {response.status_code}"
        code = get_error_code(body)
        if code:
            message = f"{message} ({code})"
        raise ServerError(message, status_code=response.status_code)

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None
