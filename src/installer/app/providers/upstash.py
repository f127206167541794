"""Upstash credential checks: QStash token and Redis REST credentials.

Both are confidence checks only: one request, no retry.
"""

from __future__ import annotations

import logging
from urllib.parse import urlsplit

import httpx

from .errors import PlatformAPIError
from .http import PlatformClient

logger = logging.getLogger(__name__)

QSTASH_API_BASE = "https://qstash.upstash.io"
UPSTASH_HOST_SUFFIX = ".upstash.io"


class QStashClient(PlatformClient):
    platform = "qstash"

    def __init__(
        self,
        *,
        token: str,
        base_url: str = QSTASH_API_BASE,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        super().__init__(
            token=token,
            base_url=base_url,
            http_client=http_client,
            timeout_seconds=timeout_seconds,
        )

    async def verify_token(self) -> None:
        """Introspect the token by listing schedules."""
        await self._json("GET", "/v2/schedules")


def normalize_redis_url(rest_url: str) -> str:
    """Return the origin of an Upstash REST URL.

    Raises ``ValueError`` unless the URL is https on ``*.upstash.io``.
    """
    parts = urlsplit(rest_url.strip())
    if parts.scheme != "https":
        raise ValueError("Redis REST URL must use https")
    host = (parts.hostname or "").lower()
    if not host.endswith(UPSTASH_HOST_SUFFIX):
        raise ValueError("Redis REST URL must be an Upstash host (*.upstash.io)")
    return f"{parts.scheme}://{parts.netloc}"


class RedisRestClient(PlatformClient):
    platform = "redis"

    def __init__(
        self,
        *,
        rest_url: str,
        token: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        super().__init__(
            token=token,
            base_url=rest_url,
            http_client=http_client,
            timeout_seconds=timeout_seconds,
        )

    async def ping(self) -> None:
        """Ping the REST endpoint; the URL shape is checked first."""
        origin = normalize_redis_url(self._base_url)
        resp = await self._request("GET", f"{origin}/ping")
        self._raise_for_status(resp)
        try:
            result = resp.json().get("result")
        except (ValueError, AttributeError):
            result = None
        if result is not None and str(result).upper() != "PONG":
            raise PlatformAPIError(
                platform=self.platform,
                status_code=resp.status_code,
                message=f"unexpected ping reply: {result!r}",
            )
