"""GitHub REST client: repository existence and Actions secrets.

Secrets are encrypted client-side with the repository's libsodium public key
(sealed box) before upload, as the Actions secrets API requires.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Mapping

import httpx
from nacl import encoding, public

from .http import PlatformClient

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"


@dataclass(frozen=True, slots=True)
class RepositoryPublicKey:
    key_id: str
    key: str


def seal_secret(public_key_b64: str, value: str) -> str:
    """Encrypt ``value`` for the repository key; returns base64 ciphertext."""
    key = public.PublicKey(public_key_b64.encode("utf-8"), encoding.Base64Encoder())
    sealed = public.SealedBox(key).encrypt(value.encode("utf-8"))
    return base64.b64encode(sealed).decode("utf-8")


class GitHubClient(PlatformClient):
    platform = "github"

    def __init__(
        self,
        *,
        token: str,
        base_url: str = GITHUB_API_BASE,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        super().__init__(
            token=token,
            base_url=base_url,
            http_client=http_client,
            timeout_seconds=timeout_seconds,
        )

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["Accept"] = "application/vnd.github.v3+json"
        return headers

    async def get_repository(self, owner: str, repo: str) -> dict[str, Any]:
        return await self._json("GET", f"/repos/{owner}/{repo}")

    async def get_actions_public_key(self, owner: str, repo: str) -> RepositoryPublicKey:
        data = await self._json("GET", f"/repos/{owner}/{repo}/actions/secrets/public-key")
        return RepositoryPublicKey(key_id=str(data["key_id"]), key=str(data["key"]))

    async def put_actions_secret(
        self,
        owner: str,
        repo: str,
        name: str,
        value: str,
        public_key: RepositoryPublicKey,
    ) -> None:
        await self._json(
            "PUT",
            f"/repos/{owner}/{repo}/actions/secrets/{name}",
            json={
                "encrypted_value": seal_secret(public_key.key, value),
                "key_id": public_key.key_id,
            },
        )

    async def set_actions_secrets(
        self,
        owner: str,
        repo: str,
        secrets: Mapping[str, str],
    ) -> list[str]:
        """Write every secret, fetching the repository key once.

        Stops at the first failure. Returns the names written.
        """
        key = await self.get_actions_public_key(owner, repo)
        written: list[str] = []
        for name, value in secrets.items():
            await self.put_actions_secret(owner, repo, name, value, key)
            written.append(name)
        logger.info(
            "Repository secrets written",
            extra={"repo": f"{owner}/{repo}", "count": len(written)},
        )
        return written
