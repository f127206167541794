"""Collision-tolerant naming for the database project created on each run.

A run always allocates a *new* database project. The name is picked from the
names already visible to the token (``base``, ``base-v2``, ``base-v3``, ...),
and if the platform still reports a collision at create time (another actor
took the name in between) we retry exactly once with a timestamp suffix.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, TypeVar

from installer.app.providers.errors import PlatformAPIError, PlatformConflictError

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_MAX_ATTEMPTS = 100

DB_PASSWORD_LENGTH = 24
# No 0/O, 1/l/I.
DB_PASSWORD_ALPHABET = (
    'ABCDEFGHJKLMNPQRSTUVWXYZ'
    'abcdefghijkmnopqrstuvwxyz'
    '23456789'
    '!@#$%^&*'
)

_BASE36 = '0123456789abcdefghijklmnopqrstuvwxyz'


class NameExhaustedError(RuntimeError):
    """Every candidate name up to the attempt bound is already taken."""

    def __init__(self, base: str, max_attempts: int) -> None:
        super().__init__(
            f'no available name for {base!r} after {max_attempts} candidates'
        )
        self.base = base
        self.max_attempts = max_attempts


@dataclass(frozen=True, slots=True)
class DatabaseProject:
    """Handle for the database project allocated by this run."""

    project_ref: str
    name: str
    db_password: str
    is_new: bool = True

    @property
    def project_url(self) -> str:
        return f'https://{self.project_ref}.supabase.co'

    def __repr__(self) -> str:
        return (
            f'DatabaseProject(project_ref={self.project_ref!r}, '
            f'name={self.name!r}, is_new={self.is_new!r})'
        )


def _candidates(base: str, max_attempts: int) -> Iterable[str]:
    yield base
    for n in range(2, max_attempts + 1):
        yield f'{base}-v{n}'


def next_available_name(
    base: str,
    existing: Iterable[str],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> str:
    """Return the first of ``base``, ``base-v2`` ... not in ``existing``.

    Comparison is case-insensitive.
    """
    if not base:
        raise ValueError('base name is required')
    taken = {name.lower() for name in existing if name}
    for candidate in _candidates(base, max_attempts):
        if candidate.lower() not in taken:
            return candidate
    raise NameExhaustedError(base, max_attempts)


def _base36(value: int) -> str:
    if value <= 0:
        return '0'
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return ''.join(reversed(digits))


def fallback_name(base: str, now_ms: int | None = None) -> str:
    """Timestamp-suffixed name used after a create-time collision."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f'{base}-{_base36(now_ms)}'


async def create_with_unique_name(
    base: str,
    list_names: Callable[[], Awaitable[Iterable[str]]],
    create: Callable[[str], Awaitable[T]],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    now_ms: Callable[[], int] | None = None,
) -> T:
    """Create a resource under a free name, retrying once on a collision.

    A failing ``list_names`` is treated as "no existing names"; the
    create-time collision retry covers a name that turns out to be taken.
    Any non-collision ``create`` failure propagates unchanged, and so does a
    second collision.
    """
    try:
        existing = await list_names()
    except PlatformAPIError as exc:
        logger.warning(
            'Could not list existing names, trying the base name',
            extra={'error': str(exc)},
        )
        existing = ()
    name = next_available_name(base, existing, max_attempts)
    try:
        return await create(name)
    except PlatformConflictError:
        retry_name = fallback_name(base, now_ms() if now_ms else None)
        logger.warning(
            'Name collision on create, retrying with fallback name',
            extra={'candidate_name': name, 'fallback_name': retry_name},
        )
        return await create(retry_name)


def generate_db_password(length: int = DB_PASSWORD_LENGTH) -> str:
    """Random database password from an unambiguous alphabet."""
    if length <= 0:
        raise ValueError('length must be positive')
    return ''.join(secrets.choice(DB_PASSWORD_ALPHABET) for _ in range(length))
