"""Error hierarchy shared by the platform API clients.

These errors carry the platform name, HTTP status and the platform's own
message/code, but never the request headers or body (which hold tokens).
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class PlatformAPIError(Exception):
    """Non-success response from one of the external platforms."""

    platform: str
    status_code: int
    message: str
    code: str | None = None

    def __str__(self) -> str:
        bits: list[str] = [f"{self.platform} API error (status={self.status_code})", self.message]
        if self.code:
            bits.append(f"code={self.code}")
        return " ".join(bits)


class PlatformAuthError(PlatformAPIError):
    """401/403: token rejected, expired, or missing a scope."""


class PlatformNotFoundError(PlatformAPIError):
    """404: resource (or route) does not exist for this token."""


class PlatformConflictError(PlatformAPIError):
    """409: name or resource collision."""


class PlatformTimeoutError(PlatformAPIError):
    """The request did not complete within the client timeout."""


def error_class_for_status(status_code: int) -> type[PlatformAPIError]:
    if status_code in (401, 403):
        return PlatformAuthError
    if status_code == 404:
        return PlatformNotFoundError
    if status_code == 409:
        return PlatformConflictError
    return PlatformAPIError
