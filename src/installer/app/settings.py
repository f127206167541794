"""Installer service configuration.

InstallerSettings is the single configuration object accepted by create_app().
It is a plain dataclass (not env-coupled) so tests can inject config without
touching os.environ; ``from_env`` is the production factory.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

_DEFAULT_CORS_ORIGINS = (
    "http://localhost:5173",
    "http://localhost:3000",
)

_DEFAULT_ENV_TARGETS = ("production", "preview")

_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def _float(env: dict[str, str], key: str, default: float) -> float:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}") from None


def _bool(env: dict[str, str], key: str, default: bool) -> bool:
    raw = env.get(key, "").strip().lower()
    if not raw:
        return default
    return raw not in _FALSE_VALUES


def _csv(raw: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True, slots=True)
class InstallerSettings:
    """Configuration for the installer FastAPI application.

    All fields have defaults suitable for local development.
    """

    # ── Environment ────────────────────────────────────────────────
    environment: str = "local"
    """One of: local, dev, staging, production."""

    installer_enabled: bool = True
    """Gate for the provision endpoint. Only the literal ``false`` disables it."""

    cors_origins: tuple[str, ...] = _DEFAULT_CORS_ORIGINS

    deployment_region: str = ""
    """Region code of the running deployment (used to place the database)."""

    # ── Provisioning ───────────────────────────────────────────────
    database_project_base_name: str = "app"
    master_password_salt: str = "_installer_salt"
    """Appended to the admin password before hashing MASTER_PASSWORD."""

    api_key_env_name: str = "APP_API_KEY"
    api_key_prefix: str = "app_"
    env_targets: tuple[str, ...] = _DEFAULT_ENV_TARGETS

    # ── Platform endpoints ─────────────────────────────────────────
    github_api_base: str = "https://api.github.com"
    vercel_api_base: str = "https://api.vercel.com"
    supabase_api_base: str = "https://api.supabase.com"
    qstash_api_base: str = "https://qstash.upstash.io"

    # ── Timeouts ───────────────────────────────────────────────────
    http_timeout_seconds: float = 30.0
    database_ready_timeout_seconds: float = 210.0
    database_ready_poll_seconds: float = 4.0
    strict_database_readiness: bool = True
    """Fail the run when the database is not ready in time (else warn and continue)."""

    deployment_ready_timeout_seconds: float = 240.0
    deployment_ready_poll_seconds: float = 2.5
    readiness_check_timeout_seconds: float = 15.0
    create_heartbeat_seconds: float = 6.0
    schema_settle_seconds: float = 5.0
    migration_connect_timeout_seconds: float = 30.0
    migration_statement_timeout_seconds: float = 120.0
    run_timeout_seconds: float = 300.0
    """Ceiling for one provisioning run (the hosting request limit)."""

    # ── Migrations ─────────────────────────────────────────────────
    migrations_dir: Path | None = None
    """Override for the bundled SQL migrations directory."""

    # ── Logging ────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"
    """``json`` or ``console``."""

    @property
    def is_local(self) -> bool:
        return self.environment == "local"

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if not self.database_project_base_name:
            errors.append("database_project_base_name is required")
        if not self.env_targets:
            errors.append("env_targets must not be empty")
        for name in (
            "http_timeout_seconds",
            "database_ready_timeout_seconds",
            "database_ready_poll_seconds",
            "deployment_ready_timeout_seconds",
            "deployment_ready_poll_seconds",
            "readiness_check_timeout_seconds",
            "create_heartbeat_seconds",
            "migration_connect_timeout_seconds",
            "migration_statement_timeout_seconds",
            "run_timeout_seconds",
        ):
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be positive")
        if self.schema_settle_seconds < 0:
            errors.append("schema_settle_seconds must not be negative")
        if self.log_format not in ("json", "console"):
            errors.append(f"log_format must be json or console, got {self.log_format!r}")
        if not self.is_local and self.master_password_salt == "_installer_salt":
            errors.append(f"{self.environment}: master_password_salt must be set")
        return errors

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> InstallerSettings:
        """Build settings from environment variables.

        Tests should construct InstallerSettings directly.
        """
        if env is None:
            env = dict(os.environ)

        defaults = cls()
        migrations_dir = env.get("INSTALLER_MIGRATIONS_DIR", "").strip()

        return cls(
            environment=env.get("ENVIRONMENT", "local"),
            installer_enabled=env.get("INSTALLER_ENABLED", "").strip().lower() != "false",
            cors_origins=_csv(env.get("CORS_ORIGINS", "")) or _DEFAULT_CORS_ORIGINS,
            deployment_region=env.get("VERCEL_REGION", ""),
            database_project_base_name=env.get(
                "INSTALLER_DATABASE_NAME", defaults.database_project_base_name,
            ),
            master_password_salt=env.get("MASTER_PASSWORD_SALT", defaults.master_password_salt),
            api_key_env_name=env.get("INSTALLER_API_KEY_ENV_NAME", defaults.api_key_env_name),
            api_key_prefix=env.get("INSTALLER_API_KEY_PREFIX", defaults.api_key_prefix),
            env_targets=_csv(env.get("INSTALLER_ENV_TARGETS", "")) or _DEFAULT_ENV_TARGETS,
            github_api_base=env.get("GITHUB_API_BASE", defaults.github_api_base),
            vercel_api_base=env.get("VERCEL_API_BASE", defaults.vercel_api_base),
            supabase_api_base=env.get("SUPABASE_API_BASE", defaults.supabase_api_base),
            qstash_api_base=env.get("QSTASH_API_BASE", defaults.qstash_api_base),
            http_timeout_seconds=_float(env, "INSTALLER_HTTP_TIMEOUT", defaults.http_timeout_seconds),
            database_ready_timeout_seconds=_float(
                env, "INSTALLER_DB_READY_TIMEOUT", defaults.database_ready_timeout_seconds,
            ),
            database_ready_poll_seconds=_float(
                env, "INSTALLER_DB_READY_POLL", defaults.database_ready_poll_seconds,
            ),
            strict_database_readiness=_bool(
                env, "INSTALLER_STRICT_DB_READINESS", defaults.strict_database_readiness,
            ),
            deployment_ready_timeout_seconds=_float(
                env, "INSTALLER_DEPLOY_READY_TIMEOUT", defaults.deployment_ready_timeout_seconds,
            ),
            deployment_ready_poll_seconds=_float(
                env, "INSTALLER_DEPLOY_READY_POLL", defaults.deployment_ready_poll_seconds,
            ),
            readiness_check_timeout_seconds=_float(
                env, "INSTALLER_READINESS_CHECK_TIMEOUT", defaults.readiness_check_timeout_seconds,
            ),
            create_heartbeat_seconds=_float(
                env, "INSTALLER_HEARTBEAT_INTERVAL", defaults.create_heartbeat_seconds,
            ),
            schema_settle_seconds=_float(
                env, "INSTALLER_SCHEMA_SETTLE", defaults.schema_settle_seconds,
            ),
            migration_connect_timeout_seconds=_float(
                env, "INSTALLER_MIGRATION_CONNECT_TIMEOUT", defaults.migration_connect_timeout_seconds,
            ),
            migration_statement_timeout_seconds=_float(
                env, "INSTALLER_MIGRATION_STATEMENT_TIMEOUT", defaults.migration_statement_timeout_seconds,
            ),
            run_timeout_seconds=_float(env, "INSTALLER_RUN_TIMEOUT", defaults.run_timeout_seconds),
            migrations_dir=Path(migrations_dir) if migrations_dir else None,
            log_level=env.get("LOG_LEVEL", defaults.log_level).upper(),
            log_format=env.get("LOG_FORMAT", defaults.log_format).lower(),
        )
