"""HTTP client for the DevContext sync server."""

from typing import Any

import httpx
from loguru import logger

from devcontext.errors import (
    RateLimitedError,
    SyncAuthError,
    SyncRejectedError,
    SyncTransportError,
)


class SyncApiClient:
    """Async client for ``/sync/push`` and ``/sync/pull``.

    Every non-success response is mapped to a ``SyncError`` subclass so
    the sync engine can decide whether to retry, back off or stop.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Server base URL, e.g. "http://127.0.0.1:8000".
            token: Bearer token for the user.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "SyncApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def push(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Send a push batch.

        Args:
            payload: ``{"deviceId", "lastSyncVersion", "changes"}`` in wire form.

        Returns:
            Response body, ``{"success": True, "syncVersion": int}``.
        """
        return await self._request("POST", "/sync/push", json=payload)

    async def pull(
        self, since: int, device_id: str | None = None, project_id: str | None = None
    ) -> dict[str, Any]:
        """Fetch changes newer than a sync version.

        Returns:
            Response body, ``{"syncVersion": int, "changes": {...}}``.
        """
        params: dict[str, Any] = {"since": since}
        if device_id:
            params["deviceId"] = device_id
        if project_id:
            params["projectId"] = project_id
        return await self._request("GET", "/sync/pull", params=params)

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise SyncTransportError(f"Request to {path} timed out") from e
        except httpx.HTTPError as e:
            raise SyncTransportError(f"Request to {path} failed: {e}") from e

        body = self._json(response)
        if response.status_code == 200:
            return body

        message = body.get("error") or f"HTTP {response.status_code}"
        logger.debug(f"{method} {path} returned {response.status_code}: {message}")
        if response.status_code == 401:
            raise SyncAuthError(message)
        if response.status_code == 429:
            raise RateLimitedError(message, retry_after=self._retry_after(response, body))
        if response.status_code == 400:
            raise SyncRejectedError(message, body)
        raise SyncTransportError(f"Server error {response.status_code}: {message}")

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    @staticmethod
    def _retry_after(response: httpx.Response, body: dict[str, Any]) -> int:
        value = body.get("retryAfter") or response.headers.get("Retry-After")
        try:
            return max(1, int(value))
        except (TypeError, ValueError):
            return 60
