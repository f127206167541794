"""Seed the initial administrator settings in the tenant database.

Idempotent: when ``admin_email`` is already set it is kept and nothing is
written.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Literal

import httpx

from .postgrest_client import PostgrestClient

logger = logging.getLogger(__name__)

SETTINGS_TABLE = 'settings'
INITIAL_VERSION = '1.0.0'

BootstrapMode = Literal['created', 'exists']


def initial_settings(
    admin_email: str,
    admin_name: str,
    *,
    now: datetime,
    version: str = INITIAL_VERSION,
) -> list[dict[str, str]]:
    email = admin_email.strip().lower()
    name = admin_name.strip()
    company = name or email.split('@')[0] or 'Workspace'
    stamp = now.isoformat()
    values = {
        'admin_email': email,
        'admin_name': name,
        'company_name': company,
        'installation_date': stamp,
        'version': version,
    }
    return [{'key': k, 'value': v, 'updated_at': stamp} for k, v in values.items()]


class AdminBootstrapper:
    """Implements the ``AdminBootstrapper`` collaborator over PostgREST."""

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._http_client = http_client
        self._timeout_seconds = timeout_seconds
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def bootstrap(
        self,
        *,
        project_url: str,
        service_key: str,
        admin_email: str,
        admin_name: str,
    ) -> BootstrapMode:
        client = PostgrestClient(
            project_url=project_url,
            service_key=service_key,
            http_client=self._http_client,
            timeout_seconds=self._timeout_seconds,
        )

        rows = await client.select(
            SETTINGS_TABLE, {'key': 'admin_email'}, columns='value', limit=1,
        )
        if rows and rows[0].get('value'):
            logger.info('Admin settings already present, keeping them')
            return 'exists'

        await client.upsert(
            SETTINGS_TABLE,
            initial_settings(admin_email, admin_name, now=self._now()),
            on_conflict='key',
        )
        logger.info('Admin settings created')
        return 'created'
