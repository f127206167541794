"""Provisioning entry point.

  POST /api/installer/provision → SSE stream of provisioning events

The handler validates the payload, starts one orchestrator run in the
background and returns immediately with a streaming body. The run keeps going
if the client disconnects; there is no replay for a reconnecting client.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from installer.app.protocols import AdminBootstrapper, PlatformClients, SchemaMigrator
from installer.app.provisioning.events import SSE_MEDIA_TYPE, EventStream
from installer.app.provisioning.orchestrator import ProvisioningOrchestrator
from installer.app.provisioning.payload import ProvisionRequest
from installer.app.settings import InstallerSettings

logger = logging.getLogger(__name__)

ClientsFactory = Callable[[ProvisionRequest, InstallerSettings], PlatformClients]

# Strong references to in-flight runs; tasks drop themselves when done.
_running_tasks: set[asyncio.Task[Any]] = set()


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={'error': message, **extra})


def _validation_details(exc: ValidationError) -> list[dict[str, Any]]:
    # Inputs are dropped; they may hold credentials.
    return [
        {'loc': list(err['loc']), 'msg': err['msg'], 'type': err['type']}
        for err in exc.errors()
    ]


def create_provision_router(
    settings: InstallerSettings,
    *,
    clients_factory: ClientsFactory,
    migrator: SchemaMigrator,
    bootstrapper: AdminBootstrapper,
) -> APIRouter:
    router = APIRouter(tags=['installer'])

    @router.post('/api/installer/provision')
    async def provision(request: Request):
        if not settings.installer_enabled:
            return _error(403, 'Installer is disabled')

        raw = await request.body()
        if not raw.strip():
            return _error(400, 'Request body is required')
        try:
            body = json.loads(raw)
        except ValueError:
            return _error(400, 'Request body is not valid JSON')

        try:
            payload = ProvisionRequest.model_validate(body)
        except ValidationError as exc:
            return _error(400, 'Invalid provisioning request', details=_validation_details(exc))

        try:
            clients = clients_factory(payload, settings)
        except ValueError as exc:
            return _error(400, str(exc))

        stream = EventStream()
        orchestrator = ProvisioningOrchestrator(
            payload,
            stream,
            clients=clients,
            settings=settings,
            migrator=migrator,
            bootstrapper=bootstrapper,
        )
        task = asyncio.create_task(orchestrator.run())
        _running_tasks.add(task)
        task.add_done_callback(_running_tasks.discard)
        logger.info(
            'Provisioning run accepted',
            extra={'run_id': orchestrator.run_id, 'repo': payload.github.repo_full_name},
        )

        return StreamingResponse(
            stream.iter_sse(),
            media_type=SSE_MEDIA_TYPE,
            headers={'Cache-Control': 'no-cache'},
        )

    return router
