"""Platform API clients used by the provisioning pipeline."""

from .errors import (
    PlatformAPIError,
    PlatformAuthError,
    PlatformConflictError,
    PlatformNotFoundError,
    PlatformTimeoutError,
)
from .github_client import GitHubClient
from .supabase_management import SupabaseManagementClient
from .upstash import QStashClient, RedisRestClient
from .vercel_client import VercelClient

__all__ = [
    "GitHubClient",
    "PlatformAPIError",
    "PlatformAuthError",
    "PlatformConflictError",
    "PlatformNotFoundError",
    "PlatformTimeoutError",
    "QStashClient",
    "RedisRestClient",
    "SupabaseManagementClient",
    "VercelClient",
]
