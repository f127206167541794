"""Async PostgREST client for the tenant's own database project.

Only what the admin bootstrap needs: filtered ``select`` and ``upsert``,
authenticated with the project's secret (service role) key.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

import httpx

from installer.app.providers.errors import PlatformAPIError
from installer.app.providers.http import PlatformClient


def _encode_filter_value(op: str, value: Any) -> str:
    if op == "is":
        if value is None:
            return "null"
        return "true" if value is True else "false" if value is False else str(value)
    if value is None:
        raise ValueError(f"{op} does not support None; use op='is' with value=None")
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _filters_to_params(filters: Mapping[str, tuple[str, Any] | Any] | None) -> dict[str, str]:
    params: dict[str, str] = {}
    for col, spec in (filters or {}).items():
        if isinstance(spec, tuple) and len(spec) == 2:
            op, val = spec
        else:
            op, val = "eq", spec
        params[str(col)] = f"{op}.{_encode_filter_value(str(op), val)}"
    return params


class PostgrestClient(PlatformClient):
    """Service-role PostgREST client (``<project_url>/rest/v1``)."""

    platform = "postgrest"

    def __init__(
        self,
        *,
        project_url: str,
        service_key: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        if not project_url:
            raise ValueError("project_url is required")
        super().__init__(
            token=service_key,
            base_url=f"{project_url.rstrip('/')}/rest/v1",
            http_client=http_client,
            timeout_seconds=timeout_seconds,
        )

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["apikey"] = self._token
        return headers

    async def select(
        self,
        table: str,
        filters: Mapping[str, tuple[str, Any] | Any] | None = None,
        *,
        columns: str = "*",
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        params = _filters_to_params(filters)
        params["select"] = columns
        if limit is not None:
            params["limit"] = str(int(limit))

        payload = await self._json("GET", f"/{table}", params=params)
        if not isinstance(payload, list):
            raise PlatformAPIError(
                platform=self.platform,
                status_code=500,
                message="expected list response from select",
            )
        return payload

    async def upsert(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]],
        *,
        on_conflict: str | None = None,
    ) -> None:
        params = {"on_conflict": on_conflict} if on_conflict else None
        resp = await self._request(
            "POST",
            f"/{table}",
            params=params,
            json=[dict(row) for row in rows],
            headers={"Prefer": "return=minimal,resolution=merge-duplicates"},
        )
        self._raise_for_status(resp)
