"""Apply the bundled SQL migrations to a freshly created database.

Idempotency: before applying anything we probe for the sentinel table
(``public.settings``). When it exists the schema is considered applied and
the run is a no-op. Per-file "already exists" errors are skipped so a
partially applied schema can be completed.

There is no migration tracking table: files are applied in name order.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol

import asyncpg

from installer.app.provisioning.connection import asyncpg_connect_kwargs

logger = logging.getLogger(__name__)

SENTINEL_TABLE = 'public.settings'
MIGRATIONS_PACKAGE = 'installer.migrations'


class MigrationConnection(Protocol):
    async def fetchval(self, query: str, *args: Any, timeout: float | None = None) -> Any: ...

    async def execute(self, query: str, *args: Any, timeout: float | None = None) -> str: ...

    async def close(self) -> None: ...


@dataclass(frozen=True, slots=True)
class MigrationFile:
    name: str
    sql: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class MigrationResult:
    already_applied: bool
    applied: tuple[str, ...] = ()
    skipped: tuple[str, ...] = ()


def load_migrations(directory: Path | None = None) -> list[MigrationFile]:
    """Read ``*.sql`` files (dotfiles excluded) sorted by name."""
    root = directory if directory is not None else resources.files(MIGRATIONS_PACKAGE)
    files = [
        entry for entry in root.iterdir()
        if entry.name.endswith('.sql') and not entry.name.startswith('.')
    ]
    return [
        MigrationFile(name=entry.name, sql=entry.read_text(encoding='utf-8'))
        for entry in sorted(files, key=lambda e: e.name)
    ]


async def _asyncpg_connect(url: str, *, timeout: float) -> MigrationConnection:
    return await asyncpg.connect(**asyncpg_connect_kwargs(url), timeout=timeout)


class SchemaMigrator:
    """Implements the ``SchemaMigrator`` collaborator with asyncpg."""

    def __init__(
        self,
        *,
        migrations_dir: Path | None = None,
        settle_seconds: float = 5.0,
        connect_timeout_seconds: float = 30.0,
        statement_timeout_seconds: float = 120.0,
        connect: Callable[[str], Awaitable[MigrationConnection]] | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._migrations_dir = migrations_dir
        self._settle_seconds = settle_seconds
        self._statement_timeout = statement_timeout_seconds
        self._connect = connect or functools.partial(
            _asyncpg_connect, timeout=connect_timeout_seconds,
        )
        self._sleep = sleep

    async def _schema_present(self, conn: MigrationConnection) -> bool:
        present = await conn.fetchval(
            'SELECT to_regclass($1) IS NOT NULL', SENTINEL_TABLE, timeout=self._statement_timeout,
        )
        return bool(present)

    async def migrate(self, database_url: str) -> MigrationResult:
        """Apply every migration unless the sentinel table already exists."""
        migrations = load_migrations(self._migrations_dir)
        if not migrations:
            raise RuntimeError('no migration files found')

        conn = await self._connect(database_url)
        applied: list[str] = []
        skipped: list[str] = []
        try:
            if await self._schema_present(conn):
                logger.info('Schema already applied, skipping migrations')
                return MigrationResult(already_applied=True)

            for migration in migrations:
                try:
                    await conn.execute(migration.sql, timeout=self._statement_timeout)
                except asyncpg.PostgresError as exc:
                    if 'already exists' not in str(exc):
                        raise
                    logger.info(
                        'Migration objects already exist, skipping',
                        extra={'migration': migration.name},
                    )
                    skipped.append(migration.name)
                    continue
                applied.append(migration.name)
        finally:
            await conn.close()

        logger.info(
            'Migrations applied',
            extra={'applied': applied, 'skipped': skipped},
        )
        if self._settle_seconds > 0:
            # Let the REST layer pick up the new schema.
            await self._sleep(self._settle_seconds)
        return MigrationResult(
            already_applied=False,
            applied=tuple(applied),
            skipped=tuple(skipped),
        )
