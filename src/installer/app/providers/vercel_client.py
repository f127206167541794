"""Vercel REST client used by the provisioning pipeline.

Covers: caller identity, project lookup/creation linked to a GitHub repo,
environment variable upsert, deployment protection, and deployments
(redeploy, first deployment, status).

All calls accept an optional ``team_id`` which is forwarded as the
``teamId`` query parameter.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Sequence

import httpx

from .errors import PlatformAPIError, PlatformNotFoundError
from .http import PlatformClient

logger = logging.getLogger(__name__)

VERCEL_API_BASE = "https://api.vercel.com"

READY_STATE = "READY"
FAILED_STATES = frozenset({"ERROR", "CANCELED"})


@dataclass(frozen=True, slots=True)
class VercelIdentity:
    user_id: str
    team_id: str | None = None


@dataclass(frozen=True, slots=True)
class VercelProject:
    id: str
    name: str
    repo_id: str | None = None


@dataclass(frozen=True, slots=True)
class EnvVar:
    key: str
    value: str = field(repr=False)
    targets: tuple[str, ...] = ("production", "preview")


def _project_from(data: dict[str, Any]) -> VercelProject:
    link = data.get("link") or {}
    repo_id = link.get("repoId")
    return VercelProject(
        id=str(data["id"]),
        name=str(data.get("name") or ""),
        repo_id=str(repo_id) if repo_id is not None else None,
    )


def _deployment_id(data: dict[str, Any] | None) -> str | None:
    if not data:
        return None
    value = data.get("id") or data.get("uid")
    return str(value) if value else None


class VercelClient(PlatformClient):
    platform = "vercel"

    def __init__(
        self,
        *,
        token: str,
        base_url: str = VERCEL_API_BASE,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        super().__init__(
            token=token,
            base_url=base_url,
            http_client=http_client,
            timeout_seconds=timeout_seconds,
        )

    def _error_message(self, resp: httpx.Response, payload: Any) -> tuple[str, str | None]:
        error = payload.get("error") if isinstance(payload, dict) else None
        if not isinstance(error, dict):
            return super()._error_message(resp, payload)

        message = str(error.get("message") or "")
        code = error.get("code") or None

        if error.get("invalidToken") or re.search(r"invalid token", message, re.I):
            return "Vercel token is invalid or expired. Create a new Full Account token.", code
        if code == "forbidden" or re.search(r"not authorized", message, re.I):
            return "Vercel token lacks permission for this project. Use a Full Account token.", code
        if code in ("missing_scope", "insufficient_scope"):
            return "Vercel token is missing a required scope. Create a Full Account token.", code
        if code == "not_found":
            return "Resource not found on Vercel for this token.", code
        if message:
            return f"Vercel error: {message}", code
        return super()._error_message(resp, payload)

    @staticmethod
    def _params(team_id: str | None, **extra: str) -> dict[str, str]:
        params = dict(extra)
        if team_id:
            params["teamId"] = team_id
        return params

    # ── Identity ──────────────────────────────────────────────────────

    async def get_identity(self) -> VercelIdentity:
        data = await self._json("GET", "/v2/user")
        user = data.get("user") or {}
        user_id = user.get("id") or user.get("uid")
        if not user_id:
            raise PlatformAPIError(
                platform=self.platform,
                status_code=200,
                message="Vercel token did not resolve to a user",
            )
        return VercelIdentity(user_id=str(user_id), team_id=user.get("teamId") or None)

    # ── Projects ──────────────────────────────────────────────────────

    async def get_project(
        self, id_or_name: str, *, team_id: str | None = None,
    ) -> VercelProject | None:
        try:
            data = await self._json(
                "GET", f"/v9/projects/{id_or_name}", params=self._params(team_id),
            )
        except PlatformNotFoundError:
            return None
        return _project_from(data)

    async def create_project(
        self, name: str, repo_full_name: str, *, team_id: str | None = None,
    ) -> VercelProject:
        data = await self._json(
            "POST",
            "/v9/projects",
            params=self._params(team_id),
            json={
                "name": name,
                "gitRepository": {"type": "github", "repo": repo_full_name},
            },
        )
        return _project_from(data)

    async def link_project(
        self, project_id: str, repo_full_name: str, *, team_id: str | None = None,
    ) -> VercelProject:
        data = await self._json(
            "POST",
            f"/v9/projects/{project_id}/link",
            params=self._params(team_id),
            json={"type": "github", "repo": repo_full_name},
        )
        return _project_from(data)

    async def disable_deployment_protection(
        self, project_id: str, *, team_id: str | None = None,
    ) -> None:
        await self._json(
            "PATCH",
            f"/v9/projects/{project_id}",
            params=self._params(team_id),
            json={"ssoProtection": None},
        )

    # ── Environment ───────────────────────────────────────────────────

    async def list_env(
        self, project_id: str, *, team_id: str | None = None,
    ) -> list[dict[str, Any]]:
        data = await self._json(
            "GET", f"/v10/projects/{project_id}/env", params=self._params(team_id),
        )
        return list(data.get("envs") or [])

    async def upsert_env(
        self,
        project_id: str,
        envs: Sequence[EnvVar],
        *,
        team_id: str | None = None,
    ) -> None:
        """Update existing keys in place and create the missing targets.

        An existing variable is patched with the new value and the targets
        it already covers are considered handled; remaining targets are
        created as a single encrypted variable.
        """
        existing = await self.list_env(project_id, team_id=team_id)
        params = self._params(team_id)

        for env in envs:
            handled: set[str] = set()
            for item in existing:
                if item.get("key") != env.key or not item.get("id"):
                    continue
                await self._json(
                    "PATCH",
                    f"/v10/projects/{project_id}/env/{item['id']}",
                    params=params,
                    json={"value": env.value},
                )
                handled.update(item.get("target") or [])

            to_create = [t for t in env.targets if t not in handled]
            if to_create:
                await self._json(
                    "POST",
                    f"/v10/projects/{project_id}/env",
                    params=params,
                    json={
                        "key": env.key,
                        "value": env.value,
                        "target": to_create,
                        "type": "encrypted",
                    },
                )

        logger.info(
            "Environment variables upserted",
            extra={"project_id": project_id, "keys": [env.key for env in envs]},
        )

    # ── Deployments ───────────────────────────────────────────────────

    async def _list_deployments(
        self, project_id: str, *, team_id: str | None, **filters: str,
    ) -> list[dict[str, Any]]:
        data = await self._json(
            "GET",
            "/v6/deployments",
            params=self._params(team_id, projectId=project_id, **filters),
        )
        return list(data.get("deployments") or [])

    async def redeploy_latest(
        self, project_id: str, *, team_id: str | None = None,
    ) -> str | None:
        """Redeploy the latest production deployment.

        Returns the new deployment id, or ``None`` when the project has no
        deployment yet.
        """
        deployments = await self._list_deployments(
            project_id, team_id=team_id, target="production", limit="1",
        )
        latest = deployments[0] if deployments else None
        if latest is None:
            deployments = await self._list_deployments(project_id, team_id=team_id, limit="5")
            latest = next(
                (d for d in deployments if d.get("target") == "production"),
                deployments[0] if deployments else None,
            )

        source_id = _deployment_id(latest)
        if not source_id:
            logger.info("Project has no deployments to redeploy", extra={"project_id": project_id})
            return None

        name = latest.get("name")
        if not name:
            project = await self.get_project(project_id, team_id=team_id)
            name = project.name if project else None
        if not name:
            raise PlatformAPIError(
                platform=self.platform,
                status_code=200,
                message="cannot redeploy: deployment and project name are missing",
            )

        created = await self._json(
            "POST",
            "/v13/deployments",
            params=self._params(team_id),
            json={"deploymentId": source_id, "name": name, "target": "production"},
        )
        new_id = _deployment_id(created)
        if not new_id:
            raise PlatformAPIError(
                platform=self.platform,
                status_code=200,
                message="redeploy response did not include a deployment id",
            )
        return new_id

    async def create_first_deployment(
        self,
        project_id: str,
        project_name: str,
        repo_full_name: str,
        *,
        ref: str = "main",
        team_id: str | None = None,
    ) -> str:
        """Create a production deployment straight from the linked repository."""
        project = await self.get_project(project_id, team_id=team_id)
        if project is None or not project.repo_id:
            raise PlatformAPIError(
                platform=self.platform,
                status_code=200,
                message="project is not linked to a GitHub repository (repoId missing)",
            )

        created = await self._json(
            "POST",
            "/v13/deployments",
            params=self._params(team_id),
            json={
                "name": project_name,
                "project": project_id,
                "target": "production",
                "gitSource": {
                    "type": "github",
                    "repo": repo_full_name,
                    "ref": ref,
                    "repoId": project.repo_id,
                },
            },
        )
        deployment_id = _deployment_id(created)
        if not deployment_id:
            raise PlatformAPIError(
                platform=self.platform,
                status_code=200,
                message="deployment response did not include a deployment id",
            )
        return deployment_id

    async def get_deployment_state(
        self, deployment_id: str, *, team_id: str | None = None,
    ) -> str:
        data = await self._json(
            "GET", f"/v13/deployments/{deployment_id}", params=self._params(team_id),
        )
        return str(data.get("readyState") or data.get("state") or "").upper()
