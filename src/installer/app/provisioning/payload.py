"""Request schema for ``POST /api/installer/provision``.

Wire names are camelCase (``repoFullName``, ``restToken``); attributes are
snake_case. Credentials are excluded from ``repr`` so a logged model never
leaks them.
"""

from __future__ import annotations

from typing import Annotated
from urllib.parse import urlsplit

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

_EMAIL_PATTERN = r'^[^@\s]+@[^@\s]+\.[^@\s]+$'
_FULL_NAME_PATTERN = r'^[^/\s]+/[^/\s]+$'


def _require_url(v: str) -> str:
    v = v.strip()
    parts = urlsplit(v)
    if parts.scheme not in ('http', 'https') or not parts.netloc:
        raise ValueError('Invalid URL')
    return v


HttpURL = Annotated[str, AfterValidator(_require_url)]


class _Group(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class IdentityInput(_Group):
    name: str = Field(..., min_length=2)
    email: str = Field(..., pattern=_EMAIL_PATTERN)
    password: str = Field(..., min_length=8, repr=False)

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class GitHubInput(_Group):
    token: str = Field(..., min_length=1, repr=False)
    username: str = Field(..., min_length=1)
    repo_name: str = Field(..., min_length=1)
    repo_url: HttpURL
    repo_full_name: str = Field(..., pattern=_FULL_NAME_PATTERN)

    @property
    def owner(self) -> str:
        return self.repo_full_name.split('/', 1)[0]

    @property
    def repo(self) -> str:
        return self.repo_full_name.split('/', 1)[1]


class VercelInput(_Group):
    token: str = Field(..., min_length=24, repr=False)


class SupabaseInput(_Group):
    pat: str = Field(..., min_length=40, repr=False)


class QStashInput(_Group):
    token: str = Field(..., min_length=30, repr=False)


class RedisInput(_Group):
    rest_url: HttpURL
    rest_token: str = Field(..., min_length=30, repr=False)


class ProvisionRequest(_Group):
    identity: IdentityInput
    github: GitHubInput
    vercel: VercelInput
    supabase: SupabaseInput
    qstash: QStashInput
    redis: RedisInput
