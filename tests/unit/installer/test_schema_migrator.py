"""Schema migrator tests with a fake asyncpg connection."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import asyncpg
import pytest

from installer.app.db.migrations import SENTINEL_TABLE, SchemaMigrator, load_migrations


class AlreadyExists(asyncpg.PostgresError):
    def __str__(self) -> str:
        return self.args[0]


class FakeConnection:
    """Tracks executed SQL; the sentinel appears once any file has run."""

    def __init__(self, *, schema_present: bool = False, fail_on: dict[str, Exception] | None = None):
        self.schema_present = schema_present
        self.fail_on = fail_on or {}
        self.executed: list[str] = []
        self.probes: list[tuple[str, tuple[Any, ...]]] = []
        self.timeouts: list[float | None] = []
        self.closed = False

    async def fetchval(self, query: str, *args: Any, timeout: float | None = None) -> Any:
        self.timeouts.append(timeout)
        self.probes.append((query, args))
        return self.schema_present

    async def execute(self, query: str, *args: Any, timeout: float | None = None) -> str:
        self.timeouts.append(timeout)
        for marker, exc in self.fail_on.items():
            if marker in query:
                raise exc
        self.executed.append(query)
        self.schema_present = True
        return 'OK'

    async def close(self) -> None:
        self.closed = True


class Harness:
    def __init__(self, conn: FakeConnection, migrations_dir: Path | None = None) -> None:
        self.conn = conn
        self.urls: list[str] = []
        self.sleeps: list[float] = []
        self.migrator = SchemaMigrator(
            migrations_dir=migrations_dir,
            settle_seconds=5.0,
            statement_timeout_seconds=7.0,
            connect=self._connect,
            sleep=self._sleep,
        )

    async def _connect(self, url: str) -> FakeConnection:
        self.urls.append(url)
        return self.conn

    async def _sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)


def _write(tmp_path: Path, files: dict[str, str]) -> Path:
    for name, sql in files.items():
        (tmp_path / name).write_text(sql, encoding='utf-8')
    return tmp_path


def test_bundled_migrations_are_ordered_and_create_sentinel():
    migrations = load_migrations()
    names = [m.name for m in migrations]
    assert names == sorted(names)
    assert names[0] == '0001_settings.sql'
    assert 'CREATE TABLE public.settings' in migrations[0].sql


def test_load_migrations_skips_non_sql_and_dotfiles(tmp_path):
    _write(tmp_path, {'002_b.sql': 'b', '001_a.sql': 'a', '.hidden.sql': 'x', 'notes.txt': 'n'})
    assert [m.name for m in load_migrations(tmp_path)] == ['001_a.sql', '002_b.sql']


@pytest.mark.asyncio
async def test_applies_every_file_in_order_then_settles(tmp_path):
    directory = _write(tmp_path, {'001_a.sql': 'CREATE a', '002_b.sql': 'CREATE b'})
    harness = Harness(FakeConnection(), directory)

    result = await harness.migrator.migrate('postgresql://db')

    assert result.already_applied is False
    assert result.applied == ('001_a.sql', '002_b.sql')
    assert harness.conn.executed == ['CREATE a', 'CREATE b']
    assert harness.conn.probes == [('SELECT to_regclass($1) IS NOT NULL', (SENTINEL_TABLE,))]
    assert harness.conn.closed
    assert harness.sleeps == [5.0]


@pytest.mark.asyncio
async def test_second_run_is_a_no_op(tmp_path):
    directory = _write(tmp_path, {'001_a.sql': 'CREATE a'})
    harness = Harness(FakeConnection(), directory)

    await harness.migrator.migrate('postgresql://db')
    second = await harness.migrator.migrate('postgresql://db')

    assert second.already_applied is True
    assert second.applied == ()
    assert harness.conn.executed == ['CREATE a']
    assert harness.sleeps == [5.0]


@pytest.mark.asyncio
async def test_already_exists_errors_are_skipped(tmp_path):
    directory = _write(tmp_path, {'001_a.sql': 'CREATE a', '002_b.sql': 'CREATE b'})
    conn = FakeConnection(fail_on={'CREATE a': AlreadyExists('relation "a" already exists')})
    harness = Harness(conn, directory)

    result = await harness.migrator.migrate('postgresql://db')

    assert result.skipped == ('001_a.sql',)
    assert result.applied == ('002_b.sql',)


@pytest.mark.asyncio
async def test_other_database_errors_propagate_and_close(tmp_path):
    directory = _write(tmp_path, {'001_a.sql': 'CREATE a'})
    conn = FakeConnection(fail_on={'CREATE a': AlreadyExists('syntax error at or near "CREATE"')})
    harness = Harness(conn, directory)

    with pytest.raises(asyncpg.PostgresError):
        await harness.migrator.migrate('postgresql://db')

    assert conn.closed
    assert harness.sleeps == []


@pytest.mark.asyncio
async def test_no_migration_files_is_an_error(tmp_path):
    harness = Harness(FakeConnection(), tmp_path)

    with pytest.raises(RuntimeError, match='no migration files'):
        await harness.migrator.migrate('postgresql://db')

    assert harness.urls == []


@pytest.mark.asyncio
async def test_every_statement_carries_the_statement_timeout(tmp_path):
    directory = _write(tmp_path, {'001_a.sql': 'CREATE a', '002_b.sql': 'CREATE b'})
    harness = Harness(FakeConnection(), directory)

    await harness.migrator.migrate('postgresql://db')

    assert harness.conn.timeouts == [7.0, 7.0, 7.0]


@pytest.mark.asyncio
async def test_default_connect_passes_connect_timeout(tmp_path, monkeypatch):
    directory = _write(tmp_path, {'001_a.sql': 'CREATE a'})
    conn = FakeConnection()
    seen: dict[str, Any] = {}

    async def fake_connect(**kwargs: Any) -> FakeConnection:
        seen.update(kwargs)
        return conn

    monkeypatch.setattr(asyncpg, 'connect', fake_connect)
    migrator = SchemaMigrator(
        migrations_dir=directory, settle_seconds=0, connect_timeout_seconds=12.5,
    )

    await migrator.migrate('postgresql://postgres:pw@db.ref1.supabase.co:5432/postgres')

    assert seen['timeout'] == 12.5
    assert seen['dsn'].startswith('postgresql://postgres:pw@db.ref1.supabase.co:5432/postgres')
    assert conn.closed
