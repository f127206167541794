"""Installer FastAPI application factory.

create_app() wires logging, request-id propagation, CORS, the health check
and the provisioning route. Platform clients are built per run from the
request credentials; tests inject in-memory collaborators instead.

Usage:
    # Production
    app = create_app(InstallerSettings.from_env())

    # Testing (full DI control)
    app = create_app(
        settings,
        clients_factory=lambda request, settings: fake_clients,
        migrator=InMemorySchemaMigrator(),
        bootstrapper=InMemoryAdminBootstrapper(),
    )
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .db.bootstrap import AdminBootstrapper
from .db.migrations import SchemaMigrator
from .observability.logging import configure_logging
from .observability.middleware import RequestIdMiddleware
from .protocols import AdminBootstrapper as AdminBootstrapperProtocol
from .protocols import SchemaMigrator as SchemaMigratorProtocol
from .providers.factory import build_platform_clients
from .routes.provision import ClientsFactory, create_provision_router
from .settings import InstallerSettings

logger = logging.getLogger(__name__)


def create_app(
    settings: InstallerSettings | None = None,
    *,
    clients_factory: ClientsFactory | None = None,
    migrator: SchemaMigratorProtocol | None = None,
    bootstrapper: AdminBootstrapperProtocol | None = None,
) -> FastAPI:
    """Create the installer FastAPI application.

    Args:
        settings: Installer configuration. Defaults to ``from_env()``.
        clients_factory: Builds the platform clients for one request.
        migrator: Applies the schema to the provisioned database.
        bootstrapper: Seeds the admin settings rows.

    Raises:
        ValueError: If settings validation fails.
    """
    if settings is None:
        settings = InstallerSettings.from_env()

    errors = settings.validate()
    if errors:
        raise ValueError(
            "Installer settings validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    if clients_factory is None:
        clients_factory = build_platform_clients
    if migrator is None:
        migrator = SchemaMigrator(
            migrations_dir=settings.migrations_dir,
            settle_seconds=settings.schema_settle_seconds,
            connect_timeout_seconds=settings.migration_connect_timeout_seconds,
            statement_timeout_seconds=settings.migration_statement_timeout_seconds,
        )
    if bootstrapper is None:
        bootstrapper = AdminBootstrapper(timeout_seconds=settings.http_timeout_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(
            level=settings.log_level,
            json_output=settings.log_format == "json",
        )
        logger.info(
            "Installer startup",
            extra={"environment": settings.environment, "enabled": settings.installer_enabled},
        )
        yield
        logger.info("Installer shutdown")

    app = FastAPI(
        title="Installer",
        description="One-shot provisioning of the application's hosted services",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # ── Middleware stack (applied in reverse order) ──────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIdMiddleware)

    # ── Routes ──────────────────────────────────────────────────

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "environment": settings.environment,
            "installer_enabled": settings.installer_enabled,
        }

    app.include_router(
        create_provision_router(
            settings,
            clients_factory=clients_factory,
            migrator=migrator,
            bootstrapper=bootstrapper,
        )
    )

    return app


# For uvicorn, use --factory flag:
#   uvicorn installer.app.main:create_app --factory
# This avoids executing create_app() at import time.
