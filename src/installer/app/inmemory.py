"""In-memory collaborator implementations for local development and tests.

They satisfy the protocols in ``installer.app.protocols`` and record every
call so tests can assert on ordering and side effects. Failures are injected
by setting the matching ``fail_*`` attribute to an exception instance.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from .db.migrations import MigrationResult
from .protocols import PlatformClients
from .providers.errors import PlatformConflictError, PlatformNotFoundError
from .providers.github_client import RepositoryPublicKey
from .providers.supabase_management import ApiKeys, Organization
from .providers.vercel_client import EnvVar, VercelIdentity, VercelProject


@dataclass
class CallLog:
    """Ordered record of calls across every fake sharing it."""

    calls: list[tuple[str, str]] = field(default_factory=list)

    def record(self, service: str, operation: str) -> None:
        self.calls.append((service, operation))

    def operations(self, service: str | None = None) -> list[str]:
        return [op for svc, op in self.calls if service is None or svc == service]


class InMemoryRepositoryHost:
    def __init__(self, log: CallLog | None = None, *, repositories: set[str] | None = None) -> None:
        self.log = log or CallLog()
        self.repositories = repositories
        self.secrets: dict[str, dict[str, str]] = {}
        self.fail_secrets: Exception | None = None

    async def get_repository(self, owner: str, repo: str) -> dict[str, Any]:
        self.log.record("repository", "get_repository")
        full_name = f"{owner}/{repo}"
        if self.repositories is not None and full_name not in self.repositories:
            raise PlatformNotFoundError(platform="github", status_code=404, message="Not Found")
        return {"full_name": full_name}

    async def get_actions_public_key(self, owner: str, repo: str) -> RepositoryPublicKey:
        self.log.record("repository", "get_actions_public_key")
        return RepositoryPublicKey(key_id="key-1", key="")

    async def set_actions_secrets(
        self, owner: str, repo: str, secrets: Mapping[str, str],
    ) -> list[str]:
        self.log.record("repository", "set_actions_secrets")
        if self.fail_secrets is not None:
            raise self.fail_secrets
        self.secrets.setdefault(f"{owner}/{repo}", {}).update(secrets)
        return list(secrets)


class InMemoryDeploymentPlatform:
    def __init__(self, log: CallLog | None = None, *, team_id: str | None = None) -> None:
        self.log = log or CallLog()
        self.team_id = team_id
        self.projects: dict[str, VercelProject] = {}
        self.env: dict[str, dict[str, str]] = {}
        self.env_writes: list[tuple[str, ...]] = []
        self.deployments: dict[str, list[str]] = {}
        self.deployment_states: list[str] = ["READY"]
        self.protection_disabled: set[str] = set()
        self.fail_identity: Exception | None = None
        self.fail_trigger: Exception | None = None
        self.fail_protection: Exception | None = None
        self.fail_env_keys: dict[str, Exception] = {}

    async def get_identity(self) -> VercelIdentity:
        self.log.record("deployment", "get_identity")
        if self.fail_identity is not None:
            raise self.fail_identity
        return VercelIdentity(user_id="user_1", team_id=self.team_id)

    async def get_project(
        self, id_or_name: str, *, team_id: str | None = None,
    ) -> VercelProject | None:
        self.log.record("deployment", "get_project")
        for project in self.projects.values():
            if id_or_name in (project.id, project.name):
                return project
        return None

    async def create_project(
        self, name: str, repo_full_name: str, *, team_id: str | None = None,
    ) -> VercelProject:
        self.log.record("deployment", "create_project")
        project = VercelProject(id=f"prj_{uuid.uuid4().hex[:8]}", name=name, repo_id="1")
        self.projects[project.id] = project
        return project

    async def link_project(
        self, project_id: str, repo_full_name: str, *, team_id: str | None = None,
    ) -> VercelProject:
        self.log.record("deployment", "link_project")
        project = self.projects[project_id]
        linked = VercelProject(id=project.id, name=project.name, repo_id=project.repo_id or "1")
        self.projects[project_id] = linked
        return linked

    async def upsert_env(
        self, project_id: str, envs: Sequence[EnvVar], *, team_id: str | None = None,
    ) -> None:
        self.log.record("deployment", "upsert_env")
        for env in envs:
            if env.key in self.fail_env_keys:
                raise self.fail_env_keys[env.key]
        self.env_writes.append(tuple(env.key for env in envs))
        store = self.env.setdefault(project_id, {})
        for env in envs:
            store[env.key] = env.value

    async def disable_deployment_protection(
        self, project_id: str, *, team_id: str | None = None,
    ) -> None:
        self.log.record("deployment", "disable_deployment_protection")
        if self.fail_protection is not None:
            raise self.fail_protection
        self.protection_disabled.add(project_id)

    async def redeploy_latest(
        self, project_id: str, *, team_id: str | None = None,
    ) -> str | None:
        self.log.record("deployment", "redeploy_latest")
        if self.fail_trigger is not None:
            raise self.fail_trigger
        if not self.deployments.get(project_id):
            return None
        deployment_id = f"dpl_{uuid.uuid4().hex[:8]}"
        self.deployments[project_id].append(deployment_id)
        return deployment_id

    async def create_first_deployment(
        self,
        project_id: str,
        project_name: str,
        repo_full_name: str,
        *,
        ref: str = "main",
        team_id: str | None = None,
    ) -> str:
        self.log.record("deployment", "create_first_deployment")
        deployment_id = f"dpl_{uuid.uuid4().hex[:8]}"
        self.deployments.setdefault(project_id, []).append(deployment_id)
        return deployment_id

    async def get_deployment_state(
        self, deployment_id: str, *, team_id: str | None = None,
    ) -> str:
        self.log.record("deployment", "get_deployment_state")
        if len(self.deployment_states) > 1:
            return self.deployment_states.pop(0)
        return self.deployment_states[0]


class InMemoryDatabasePlatform:
    def __init__(
        self,
        log: CallLog | None = None,
        *,
        token: str = "sbp_" + "0" * 40,
        organizations: list[Organization] | None = None,
        existing_names: list[str] | None = None,
    ) -> None:
        self.log = log or CallLog()
        self.token = token
        self.organizations = (
            [Organization(slug="org-1", name="Org")] if organizations is None else organizations
        )
        self.project_names: list[str] = list(existing_names or [])
        self.created: list[dict[str, str]] = []
        self.ready_after = 1
        self.pooler_host: str | None = "aws-0-us-east-1.pooler.supabase.com"
        self.conflicts_remaining = 0
        self.fail_organizations: Exception | None = None
        self.fail_list_names: Exception | None = None
        self.fail_pooler: Exception | None = None
        self._status_checks = 0

    @property
    def has_valid_token_format(self) -> bool:
        return self.token.startswith("sbp_")

    async def list_organizations(self) -> list[Organization]:
        self.log.record("database", "list_organizations")
        if self.fail_organizations is not None:
            raise self.fail_organizations
        return list(self.organizations)

    async def list_project_names(self) -> list[str]:
        self.log.record("database", "list_project_names")
        if self.fail_list_names is not None:
            raise self.fail_list_names
        return list(self.project_names)

    async def create_project(
        self, *, name: str, organization_slug: str, db_password: str, region: str,
    ) -> str:
        self.log.record("database", "create_project")
        if self.conflicts_remaining > 0:
            self.conflicts_remaining -= 1
            raise PlatformConflictError(
                platform="supabase", status_code=409, message="name already taken",
            )
        ref = f"ref{len(self.created) + 1}"
        self.created.append({
            "ref": ref,
            "name": name,
            "organization_slug": organization_slug,
            "region": region,
        })
        self.project_names.append(name)
        return ref

    async def is_project_ready(self, project_ref: str) -> bool:
        self.log.record("database", "is_project_ready")
        self._status_checks += 1
        return self._status_checks >= self.ready_after

    async def get_api_keys(self, project_ref: str) -> ApiKeys:
        self.log.record("database", "get_api_keys")
        return ApiKeys(publishable=f"pk-{project_ref}", secret=f"sk-{project_ref}")

    async def get_pooler_host(self, project_ref: str) -> str | None:
        self.log.record("database", "get_pooler_host")
        if self.fail_pooler is not None:
            raise self.fail_pooler
        return self.pooler_host


class InMemoryQueueService:
    def __init__(self, log: CallLog | None = None) -> None:
        self.log = log or CallLog()
        self.fail: Exception | None = None

    async def verify_token(self) -> None:
        self.log.record("queue", "verify_token")
        if self.fail is not None:
            raise self.fail


class InMemoryCacheService:
    def __init__(self, log: CallLog | None = None) -> None:
        self.log = log or CallLog()
        self.fail: Exception | None = None

    async def ping(self) -> None:
        self.log.record("cache", "ping")
        if self.fail is not None:
            raise self.fail


class InMemorySchemaMigrator:
    """Tracks applied state per database URL; the sentinel is the flag."""

    def __init__(self, log: CallLog | None = None) -> None:
        self.log = log or CallLog()
        self.applied_urls: set[str] = set()
        self.migrate_calls = 0

    async def migrate(self, database_url: str) -> MigrationResult:
        self.log.record("migrator", "migrate")
        self.migrate_calls += 1
        if database_url in self.applied_urls:
            return MigrationResult(already_applied=True)
        self.applied_urls.add(database_url)
        return MigrationResult(already_applied=False, applied=("0001_settings.sql",))


class InMemoryAdminBootstrapper:
    def __init__(self, log: CallLog | None = None) -> None:
        self.log = log or CallLog()
        self.settings: dict[str, dict[str, str]] = {}

    async def bootstrap(
        self,
        *,
        project_url: str,
        service_key: str,
        admin_email: str,
        admin_name: str,
    ) -> str:
        self.log.record("bootstrap", "bootstrap")
        existing = self.settings.get(project_url)
        if existing and existing.get("admin_email"):
            return "exists"
        self.settings[project_url] = {"admin_email": admin_email, "admin_name": admin_name}
        return "created"


def create_inmemory_clients(log: CallLog | None = None) -> PlatformClients:
    """Build a full set of in-memory platform clients sharing one call log."""
    log = log or CallLog()
    return PlatformClients(
        repository=InMemoryRepositoryHost(log),
        deployment=InMemoryDeploymentPlatform(log),
        database=InMemoryDatabasePlatform(log),
        queue=InMemoryQueueService(log),
        cache=InMemoryCacheService(log),
    )
