"""Shared httpx plumbing for the platform API clients.

Every client authenticates with a bearer token supplied per run, talks JSON,
and maps non-success responses to :mod:`.errors` types. There is no automatic
retry: each call is a single, timeout-bounded request.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .errors import PlatformAPIError, PlatformTimeoutError, error_class_for_status

logger = logging.getLogger(__name__)

# Module-level shared client for connection pooling in app runtimes/tests.
_shared_async_client: httpx.AsyncClient | None = None


def _get_shared_async_client() -> httpx.AsyncClient:
    global _shared_async_client
    if _shared_async_client is None:
        _shared_async_client = httpx.AsyncClient()
    return _shared_async_client


def _reset_shared_async_client_for_tests() -> None:
    """Test helper: clear shared client cache (does not close the instance)."""
    global _shared_async_client
    _shared_async_client = None


class PlatformClient:
    """Base class for bearer-token JSON API clients."""

    platform = "platform"

    def __init__(
        self,
        *,
        token: str,
        base_url: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        if not token:
            raise ValueError(f"{self.platform} token is required")
        if not base_url:
            raise ValueError(f"{self.platform} base_url is required")

        self._token = token
        self._base_url = base_url.rstrip("/")
        self._client = http_client or _get_shared_async_client()
        self._timeout = float(timeout_seconds)

    def _headers(self) -> dict[str, str]:
        # Never log these headers.
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/json",
        }

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self._base_url}{path}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        try:
            return await self._client.request(
                method,
                self._url(path),
                headers={**self._headers(), **(headers or {})},
                json=json,
                params=params,
                timeout=self._timeout if timeout is None else timeout,
            )
        except httpx.TimeoutException as exc:
            raise PlatformTimeoutError(
                platform=self.platform,
                status_code=0,
                message=f"{method} {path} timed out",
            ) from exc

    def _error_message(self, resp: httpx.Response, payload: Any) -> tuple[str, str | None]:
        """Extract ``(message, code)`` from an error response body."""
        if isinstance(payload, dict):
            error = payload.get("error")
            if isinstance(error, dict):
                return str(error.get("message") or resp.text[:200]), error.get("code")
            message = payload.get("message") or error
            if isinstance(message, str) and message.strip():
                return message.strip(), payload.get("code")
        text = resp.text.strip()
        return (text[:200] if text else f"HTTP {resp.status_code}"), None

    def _raise_for_status(self, resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return

        try:
            payload = resp.json()
        except ValueError:
            payload = None

        message, code = self._error_message(resp, payload)
        err_cls = error_class_for_status(resp.status_code)
        raise err_cls(
            platform=self.platform,
            status_code=resp.status_code,
            message=message,
            code=code,
        )

    async def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = await self._request(method, path, **kwargs)
        self._raise_for_status(resp)
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as exc:
            raise PlatformAPIError(
                platform=self.platform,
                status_code=resp.status_code,
                message=f"expected JSON from {method} {path}",
            ) from exc
