"""Collaborator protocols for the provisioning orchestrator.

The httpx clients in ``installer.app.providers`` and the in-memory fakes in
``installer.app.inmemory`` both satisfy these contracts; the orchestrator
only depends on the protocols.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from .db.migrations import MigrationResult
from .providers.github_client import RepositoryPublicKey
from .providers.supabase_management import ApiKeys, Organization
from .providers.vercel_client import EnvVar, VercelIdentity, VercelProject


@runtime_checkable
class RepositoryHost(Protocol):
    """Source repository host: existence check and Actions secrets."""

    async def get_repository(self, owner: str, repo: str) -> dict[str, Any]: ...
    async def get_actions_public_key(self, owner: str, repo: str) -> RepositoryPublicKey: ...
    async def set_actions_secrets(
        self, owner: str, repo: str, secrets: Mapping[str, str],
    ) -> list[str]: ...


@runtime_checkable
class DeploymentPlatform(Protocol):
    """Deployment platform: identity, project link, env, deployments."""

    async def get_identity(self) -> VercelIdentity: ...
    async def get_project(
        self, id_or_name: str, *, team_id: str | None = None,
    ) -> VercelProject | None: ...
    async def create_project(
        self, name: str, repo_full_name: str, *, team_id: str | None = None,
    ) -> VercelProject: ...
    async def link_project(
        self, project_id: str, repo_full_name: str, *, team_id: str | None = None,
    ) -> VercelProject: ...
    async def upsert_env(
        self, project_id: str, envs: Sequence[EnvVar], *, team_id: str | None = None,
    ) -> None: ...
    async def disable_deployment_protection(
        self, project_id: str, *, team_id: str | None = None,
    ) -> None: ...
    async def redeploy_latest(
        self, project_id: str, *, team_id: str | None = None,
    ) -> str | None: ...
    async def create_first_deployment(
        self,
        project_id: str,
        project_name: str,
        repo_full_name: str,
        *,
        ref: str = "main",
        team_id: str | None = None,
    ) -> str: ...
    async def get_deployment_state(
        self, deployment_id: str, *, team_id: str | None = None,
    ) -> str: ...


@runtime_checkable
class DatabasePlatform(Protocol):
    """Managed database platform (project lifecycle and credentials)."""

    @property
    def has_valid_token_format(self) -> bool: ...
    async def list_organizations(self) -> list[Organization]: ...
    async def list_project_names(self) -> list[str]: ...
    async def create_project(
        self, *, name: str, organization_slug: str, db_password: str, region: str,
    ) -> str: ...
    async def is_project_ready(self, project_ref: str) -> bool: ...
    async def get_api_keys(self, project_ref: str) -> ApiKeys: ...
    async def get_pooler_host(self, project_ref: str) -> str | None: ...


@runtime_checkable
class QueueService(Protocol):
    async def verify_token(self) -> None: ...


@runtime_checkable
class CacheService(Protocol):
    async def ping(self) -> None: ...


@runtime_checkable
class SchemaMigrator(Protocol):
    async def migrate(self, database_url: str) -> MigrationResult: ...


@runtime_checkable
class AdminBootstrapper(Protocol):
    async def bootstrap(
        self,
        *,
        project_url: str,
        service_key: str,
        admin_email: str,
        admin_name: str,
    ) -> str: ...


@dataclass(frozen=True, slots=True)
class PlatformClients:
    """The five platform collaborators for one run."""

    repository: RepositoryHost
    deployment: DeploymentPlatform
    database: DatabasePlatform
    queue: QueueService
    cache: CacheService
