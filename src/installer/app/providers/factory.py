"""Build the per-run platform clients from the request credentials."""

from __future__ import annotations

import httpx

from installer.app.protocols import PlatformClients
from installer.app.provisioning.payload import ProvisionRequest
from installer.app.settings import InstallerSettings

from .github_client import GitHubClient
from .supabase_management import SupabaseManagementClient
from .upstash import QStashClient, RedisRestClient
from .vercel_client import VercelClient


def build_platform_clients(
    request: ProvisionRequest,
    settings: InstallerSettings,
    http_client: httpx.AsyncClient | None = None,
) -> PlatformClients:
    """Return httpx-backed clients authenticated with the caller's tokens.

    Credentials are used for this run only; nothing is cached between runs.
    """
    timeout = settings.http_timeout_seconds
    return PlatformClients(
        repository=GitHubClient(
            token=request.github.token,
            base_url=settings.github_api_base,
            http_client=http_client,
            timeout_seconds=timeout,
        ),
        deployment=VercelClient(
            token=request.vercel.token,
            base_url=settings.vercel_api_base,
            http_client=http_client,
            timeout_seconds=timeout,
        ),
        database=SupabaseManagementClient(
            token=request.supabase.pat,
            base_url=settings.supabase_api_base,
            http_client=http_client,
            timeout_seconds=timeout,
        ),
        queue=QStashClient(
            token=request.qstash.token,
            base_url=settings.qstash_api_base,
            http_client=http_client,
            timeout_seconds=timeout,
        ),
        cache=RedisRestClient(
            rest_url=request.redis.rest_url,
            token=request.redis.rest_token,
            http_client=http_client,
            timeout_seconds=timeout,
        ),
    )
