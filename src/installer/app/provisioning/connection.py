"""Database connection strings for the freshly created project.

Two shapes reach the same database:

  pooled  postgresql://postgres.<ref>:<pw>@<pooler-host>:6543/postgres?sslmode=require&pgbouncer=true
  direct  postgresql://postgres:<pw>@db.<ref>.supabase.co:5432/postgres?sslmode=require

The pooled form is preferred; the direct form is used when the pooler host
could not be resolved.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

POOLER_PORT = 6543
DIRECT_PORT = 5432

ConnectionMode = Literal['pooled', 'direct']


@dataclass(frozen=True, slots=True)
class DatabaseConnection:
    url: str
    mode: ConnectionMode
    host: str

    def __repr__(self) -> str:
        # url embeds the password
        return f'DatabaseConnection(mode={self.mode!r}, host={self.host!r})'


def _encode_password(password: str) -> str:
    return quote(password, safe='')


def build_pooled_url(
    project_ref: str,
    password: str,
    pooler_host: str,
    port: int = POOLER_PORT,
) -> str:
    return (
        f'postgresql://postgres.{project_ref}:{_encode_password(password)}'
        f'@{pooler_host}:{port}/postgres?sslmode=require&pgbouncer=true'
    )


def direct_host(project_ref: str) -> str:
    return f'db.{project_ref}.supabase.co'


def build_direct_url(project_ref: str, password: str) -> str:
    return (
        f'postgresql://postgres:{_encode_password(password)}'
        f'@{direct_host(project_ref)}:{DIRECT_PORT}/postgres?sslmode=require'
    )


def build_connection(
    project_ref: str,
    password: str | None,
    pooler_host: str | None,
) -> DatabaseConnection | None:
    """Pick the pooled form when a pooler host is known, else direct.

    Returns ``None`` without a password: there is nothing to connect with.
    """
    if not project_ref or not password:
        return None
    if pooler_host:
        return DatabaseConnection(
            url=build_pooled_url(project_ref, password, pooler_host),
            mode='pooled',
            host=pooler_host,
        )
    return DatabaseConnection(
        url=build_direct_url(project_ref, password),
        mode='direct',
        host=direct_host(project_ref),
    )


def asyncpg_connect_kwargs(url: str) -> dict[str, Any]:
    """Translate a connection URL into ``asyncpg.connect`` keyword arguments.

    asyncpg forwards unknown query parameters to the server as settings, so
    ``pgbouncer`` is stripped here. The transaction pooler cannot hold
    prepared statements across transactions, hence ``statement_cache_size=0``.
    """
    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    sslmode = query.pop('sslmode', None)
    pgbouncer = query.pop('pgbouncer', None)

    kwargs: dict[str, Any] = {
        'dsn': urlunsplit(parts._replace(query=urlencode(query))),
    }
    if sslmode:
        kwargs['ssl'] = sslmode
    if pgbouncer == 'true' or parts.port == POOLER_PORT:
        kwargs['statement_cache_size'] = 0
    return kwargs
