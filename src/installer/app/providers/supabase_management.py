"""Supabase Management API client (``api.supabase.com/v1``).

Used to allocate and inspect the tenant's database project: organizations,
project list/create/status, API keys and the connection pooler host.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

import httpx

from .errors import PlatformAPIError
from .http import PlatformClient

logger = logging.getLogger(__name__)

SUPABASE_API_BASE = "https://api.supabase.com"
PAT_PREFIX = "sbp_"
DEFAULT_REGION = "us-east-1"

# Deployment region -> closest database region.
VERCEL_TO_SUPABASE_REGION: dict[str, str] = {
    "iad1": "us-east-1",
    "cle1": "us-east-1",
    "bos1": "us-east-1",
    "sfo1": "us-west-1",
    "pdx1": "us-west-2",
    "gru1": "sa-east-1",
    "cpt1": "sa-east-1",
    "lhr1": "eu-west-2",
    "cdg1": "eu-west-3",
    "fra1": "eu-central-1",
    "arn1": "eu-north-1",
    "dub1": "eu-west-1",
    "hnd1": "ap-northeast-1",
    "icn1": "ap-northeast-2",
    "sin1": "ap-southeast-1",
    "hkg1": "ap-southeast-1",
    "syd1": "ap-southeast-2",
    "bom1": "ap-south-1",
}


def region_for_deployment(deployment_region: str | None) -> str:
    """Map a deployment region code to a database region."""
    if deployment_region:
        region = VERCEL_TO_SUPABASE_REGION.get(deployment_region.strip().lower())
        if region:
            return region
    return DEFAULT_REGION


@dataclass(frozen=True, slots=True)
class Organization:
    slug: str
    name: str = ""


@dataclass(frozen=True, slots=True)
class ApiKeys:
    publishable: str = field(repr=False)
    secret: str = field(repr=False)


def _pick_key(items: Iterable[dict[str, Any]], kinds: tuple[str, ...]) -> str | None:
    items = list(items)
    for attr in ("name", "type"):
        for item in items:
            label = str(item.get(attr) or "").lower()
            value = item.get("api_key")
            if isinstance(value, str) and value.strip() and any(k in label for k in kinds):
                return value.strip()
    return None


def pick_pooler_host(configs: list[dict[str, Any]]) -> str | None:
    """Prefer the primary transaction-mode pooler, else the first entry."""
    if not configs:
        return None
    primary = next(
        (
            c for c in configs
            if str(c.get("database_type") or "").upper() == "PRIMARY"
            and str(c.get("pool_mode") or "").lower() == "transaction"
        ),
        configs[0],
    )
    host = primary.get("db_host") or primary.get("dbHost")
    if isinstance(host, str) and host.strip():
        return host.strip()
    return None


class SupabaseManagementClient(PlatformClient):
    platform = "supabase"

    def __init__(
        self,
        *,
        token: str,
        base_url: str = SUPABASE_API_BASE,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        super().__init__(
            token=token,
            base_url=base_url,
            http_client=http_client,
            timeout_seconds=timeout_seconds,
        )

    @property
    def has_valid_token_format(self) -> bool:
        return self._token.startswith(PAT_PREFIX)

    async def list_organizations(self) -> list[Organization]:
        data = await self._json("GET", "/v1/organizations")
        orgs: list[Organization] = []
        for item in data if isinstance(data, list) else []:
            slug = item.get("slug") or item.get("id")
            if slug:
                orgs.append(Organization(slug=str(slug), name=str(item.get("name") or "")))
        return orgs

    async def list_project_names(self) -> list[str]:
        data = await self._json("GET", "/v1/projects")
        return [
            str(item["name"])
            for item in (data if isinstance(data, list) else [])
            if item.get("name")
        ]

    async def create_project(
        self,
        *,
        name: str,
        organization_slug: str,
        db_password: str,
        region: str,
    ) -> str:
        """Create a project and return its ref."""
        data = await self._json(
            "POST",
            "/v1/projects",
            json={
                "name": name,
                "organization_slug": organization_slug,
                "db_pass": db_password,
                "region": region,
            },
        )
        ref = (data.get("ref") or data.get("id")) if isinstance(data, dict) else None
        if not ref:
            raise PlatformAPIError(
                platform=self.platform,
                status_code=200,
                message="project create response did not include a ref",
            )
        logger.info("Database project created", extra={"project_ref": ref, "region": region})
        return str(ref)

    async def get_project_status(self, project_ref: str) -> str:
        data = await self._json("GET", f"/v1/projects/{project_ref}")
        status = data.get("status") or data.get("project_status") or ""
        return str(status).upper()

    async def is_project_ready(self, project_ref: str) -> bool:
        return (await self.get_project_status(project_ref)).startswith("ACTIVE")

    async def get_api_keys(self, project_ref: str) -> ApiKeys:
        data = await self._json(
            "GET", f"/v1/projects/{project_ref}/api-keys", params={"reveal": "true"},
        )
        items = [i for i in data if isinstance(i, dict)] if isinstance(data, list) else []
        publishable = _pick_key(items, ("publishable", "anon"))
        secret = _pick_key(items, ("secret", "service_role"))
        if not publishable or not secret:
            raise PlatformAPIError(
                platform=self.platform,
                status_code=200,
                message="could not resolve project API keys; check the project is active",
            )
        return ApiKeys(publishable=publishable, secret=secret)

    async def get_pooler_host(self, project_ref: str) -> str | None:
        data = await self._json("GET", f"/v1/projects/{project_ref}/config/database/pooler")
        configs = [c for c in data if isinstance(c, dict)] if isinstance(data, list) else []
        return pick_pooler_host(configs)
