"""Provisioning orchestrator: one run of the fixed step sequence.

The orchestrator is the only writer to the run's EventStream and the only
owner of its PipelineState. Steps run strictly in order; each one emits a
``progress`` event on entry. The first uncaught failure ends the run with a
single ``error`` event whose ``returnToStep`` points at the wizard screen
for the failing step. A successful run ends with ``complete``.

Ordering constraints:
  - Environment variables are fully written before the installer gate flips
    and before the deployment is triggered.
  - Schema migration needs a resolved connection string.
  - Secret mirroring and deployment protection are best-effort.
  - Deployment readiness is skipped when no deployment id was produced, and
    neither a slow nor a failed deployment fails the run.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from installer.app.observability.logging import run_id_ctx
from installer.app.protocols import AdminBootstrapper, PlatformClients, SchemaMigrator
from installer.app.providers.errors import (
    PlatformAPIError,
    PlatformAuthError,
    PlatformNotFoundError,
    PlatformTimeoutError,
)
from installer.app.providers.supabase_management import ApiKeys, region_for_deployment
from installer.app.providers.vercel_client import (
    FAILED_STATES,
    READY_STATE,
    EnvVar,
    VercelProject,
)
from installer.app.settings import InstallerSettings

from .compensation import CompensationManager
from .connection import DatabaseConnection, build_connection
from .events import CompleteEvent, ErrorEvent, EventStream
from .naming import DatabaseProject, create_with_unique_name, generate_db_password
from .payload import ProvisionRequest
from .progress import Heartbeat, ProgressReporter
from .readiness import wait_until_ready
from .steps import STEPS, Step

logger = logging.getLogger(__name__)

INSTALLER_ENABLED_ENV = 'INSTALLER_ENABLED'
RESTORE_INSTALLER_FLAG = 'restore_installer_enabled'


class ProvisioningError(Exception):
    """Pipeline-level failure with a message fit for the caller."""

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


def describe_failure(exc: BaseException) -> tuple[str, str]:
    """Return ``(message, detail)`` for the caller-facing error event."""
    if isinstance(exc, ProvisioningError):
        detail = exc.detail or f'{type(exc).__name__}: {exc.message}'
        cause = exc.__cause__
        if cause is not None:
            detail = f'{detail} (caused by {type(cause).__name__}: {cause})'
        return exc.message, detail
    if isinstance(exc, PlatformAPIError):
        return exc.message, f'{type(exc).__name__}: {exc}'
    message = str(exc) or type(exc).__name__
    return message, f'{type(exc).__name__}: {message}'


def hash_master_password(password: str, salt: str) -> str:
    return hashlib.sha256(f'{password}{salt}'.encode('utf-8')).hexdigest()


@dataclass
class PipelineState:
    """Mutable state for exactly one run."""

    step_index: int = 0
    deployment_user_id: str | None = None
    team_id: str | None = None
    project: VercelProject | None = None
    organization_slug: str | None = None
    database: DatabaseProject | None = None
    database_ready: bool = False
    api_keys: ApiKeys | None = None
    connection: DatabaseConnection | None = None
    admin_password_hash: str | None = None
    env_written: bool = False
    deployment_id: str | None = None
    deployment_state: str | None = None
    completed: bool = False

    def require_project(self) -> VercelProject:
        if self.project is None:
            raise ProvisioningError('Deployment project is not linked')
        return self.project

    def require_database(self) -> DatabaseProject:
        if self.database is None:
            raise ProvisioningError('Database project was not created')
        return self.database

    def require_api_keys(self) -> ApiKeys:
        if self.api_keys is None:
            raise ProvisioningError('Database API keys were not resolved')
        return self.api_keys


class ProvisioningOrchestrator:
    """Runs the provisioning steps for one request."""

    def __init__(
        self,
        request: ProvisionRequest,
        stream: EventStream,
        *,
        clients: PlatformClients,
        settings: InstallerSettings,
        migrator: SchemaMigrator,
        bootstrapper: AdminBootstrapper,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        run_id: str | None = None,
    ) -> None:
        self._request = request
        self._stream = stream
        self._clients = clients
        self._settings = settings
        self._migrator = migrator
        self._bootstrapper = bootstrapper
        self._sleep = sleep
        self._clock = clock
        self._steps: Sequence[Step] = STEPS
        self._reporter = ProgressReporter(stream, self._steps)
        self._compensation = CompensationManager()
        self.run_id = run_id or uuid.uuid4().hex
        self.state = PipelineState()

    # ── Run loop ──────────────────────────────────────────────────────

    async def run(self) -> PipelineState:
        """Execute every step, then close the stream. Never raises."""
        token = run_id_ctx.set(self.run_id)
        timeout = self._settings.run_timeout_seconds
        logger.info('Provisioning run started', extra={'repo': self._request.github.repo_full_name})
        try:
            try:
                await asyncio.wait_for(self._execute(), timeout=timeout)
            except asyncio.TimeoutError:
                await self._fail(
                    ProvisioningError(f'Provisioning did not finish within {timeout:g} seconds')
                )
        finally:
            self._stream.close()
            run_id_ctx.reset(token)
        return self.state

    async def _execute(self) -> None:
        try:
            for index, step in enumerate(self._steps):
                self.state.step_index = index
                await self._reporter.enter(index)
                started = self._clock()
                logger.info(
                    'Step started',
                    extra={'step_id': step.id, 'step_number': index + 1},
                )
                await self._handler(step)()
                logger.info(
                    'Step completed',
                    extra={
                        'step_id': step.id,
                        'duration_seconds': round(self._clock() - started, 3),
                    },
                )
            self.state.completed = True
            await self._stream.send(CompleteEvent())
            logger.info('Provisioning run complete')
        except Exception as exc:
            await self._fail(exc)

    def _handler(self, step: Step) -> Callable[[], Awaitable[None]]:
        return getattr(self, f'_step_{step.id}')

    async def _fail(self, exc: BaseException) -> None:
        step = self._steps[self.state.step_index]
        message, detail = describe_failure(exc)
        logger.error(
            'Provisioning run failed',
            extra={'step_id': step.id, 'error': message, 'error_type': type(exc).__name__},
        )
        # Outcomes are logged by the manager; the caller sees the original error.
        await self._compensation.run()
        if self._stream.closed:
            return
        await self._stream.send(
            ErrorEvent(error=message, error_details=detail, return_to_step=step.return_to_step)
        )

    def _ticker(self, index: int) -> Callable[[float], Awaitable[object]]:
        step = self._steps[index]

        async def on_tick(fraction: float) -> None:
            await self._reporter.tick(index, fraction, f'{step.subtitle} ({round(fraction * 100)}%)')

        return on_tick

    # ── Steps ─────────────────────────────────────────────────────────

    async def _step_repository_check(self) -> None:
        github = self._request.github
        try:
            await self._clients.repository.get_repository(github.owner, github.repo)
        except PlatformNotFoundError as exc:
            raise ProvisioningError(
                f'Repository {github.repo_full_name} was not found or is not accessible with this token'
            ) from exc

    async def _step_platform_auth_check(self) -> None:
        identity = await self._clients.deployment.get_identity()
        self.state.deployment_user_id = identity.user_id
        self.state.team_id = identity.team_id

    async def _step_project_link(self) -> None:
        github = self._request.github
        deployment = self._clients.deployment
        team_id = self.state.team_id

        existing = await deployment.get_project(github.repo_name, team_id=team_id)
        if existing is not None:
            project = await deployment.link_project(
                existing.id, github.repo_full_name, team_id=team_id,
            )
            logger.info('Reusing deployment project', extra={'project_id': project.id})
        else:
            project = await deployment.create_project(
                github.repo_name, github.repo_full_name, team_id=team_id,
            )
            logger.info('Created deployment project', extra={'project_id': project.id})
        if not project.id:
            raise ProvisioningError('Deployment project could not be created')
        self.state.project = project

    async def _step_database_auth_check(self) -> None:
        database = self._clients.database
        if not database.has_valid_token_format:
            raise ProvisioningError('Database access token is invalid (it must start with sbp_)')
        organizations = await database.list_organizations()
        if not organizations:
            raise ProvisioningError('No organization is available for the database access token')
        self.state.organization_slug = organizations[0].slug

    async def _step_database_create(self) -> None:
        database = self._clients.database
        index = self.state.step_index
        organization = self.state.organization_slug
        if not organization:
            raise ProvisioningError('Database organization was not resolved')

        password = generate_db_password()
        region = region_for_deployment(self._settings.deployment_region)

        async def create(name: str) -> DatabaseProject:
            ref = await database.create_project(
                name=name,
                organization_slug=organization,
                db_password=password,
                region=region,
            )
            return DatabaseProject(project_ref=ref, name=name, db_password=password)

        async def on_beat(beat: int, fraction: float) -> None:
            await self._reporter.tick(index, fraction)

        async with Heartbeat(on_beat, interval_seconds=self._settings.create_heartbeat_seconds):
            self.state.database = await create_with_unique_name(
                self._settings.database_project_base_name,
                database.list_project_names,
                create,
            )
        logger.info(
            'Database project allocated',
            extra={'project_ref': self.state.database.project_ref, 'region': region},
        )

    async def _step_database_ready_wait(self) -> None:
        project = self.state.require_database()
        database = self._clients.database
        settings = self._settings

        result = await wait_until_ready(
            lambda: database.is_project_ready(project.project_ref),
            timeout_seconds=settings.database_ready_timeout_seconds,
            poll_interval_seconds=settings.database_ready_poll_seconds,
            check_timeout_seconds=settings.readiness_check_timeout_seconds,
            on_tick=self._ticker(self.state.step_index),
            transient_errors=(PlatformNotFoundError, PlatformTimeoutError),
            clock=self._clock,
            sleep=self._sleep,
        )
        self.state.database_ready = result.ready
        if result.ready:
            return
        if settings.strict_database_readiness:
            raise ProvisioningError(
                f'Database project did not become ready within '
                f'{settings.database_ready_timeout_seconds:g} seconds'
            )
        logger.warning(
            'Database project not ready before deadline, continuing',
            extra={'project_ref': project.project_ref, 'attempts': result.attempts},
        )

    async def _step_credential_resolution(self) -> None:
        project = self.state.require_database()
        database = self._clients.database

        self.state.api_keys = await database.get_api_keys(project.project_ref)

        try:
            pooler_host = await database.get_pooler_host(project.project_ref)
        except PlatformAPIError as exc:
            logger.warning(
                'Pooler host unavailable, using direct connection',
                extra={'project_ref': project.project_ref, 'error': str(exc)},
            )
            pooler_host = None

        self.state.connection = build_connection(
            project.project_ref, project.db_password, pooler_host,
        )
        if self.state.connection is not None:
            logger.info(
                'Database connection resolved',
                extra={'mode': self.state.connection.mode, 'host': self.state.connection.host},
            )

    async def _step_queue_auth_check(self) -> None:
        try:
            await self._clients.queue.verify_token()
        except PlatformAuthError as exc:
            raise ProvisioningError('Message queue token was rejected') from exc

    async def _step_cache_auth_check(self) -> None:
        try:
            await self._clients.cache.ping()
        except PlatformAuthError as exc:
            raise ProvisioningError('Cache credentials were rejected') from exc

    def _environment(self) -> list[EnvVar]:
        request = self._request
        settings = self._settings
        project = self.state.require_database()
        keys = self.state.require_api_keys()
        targets = tuple(settings.env_targets)

        values = {
            'NEXT_PUBLIC_SUPABASE_URL': project.project_url,
            'NEXT_PUBLIC_SUPABASE_PUBLISHABLE_KEY': keys.publishable,
            'SUPABASE_SECRET_KEY': keys.secret,
            'QSTASH_TOKEN': request.qstash.token,
            'UPSTASH_REDIS_REST_URL': request.redis.rest_url,
            'UPSTASH_REDIS_REST_TOKEN': request.redis.rest_token,
            'MASTER_PASSWORD': self.state.admin_password_hash or '',
            settings.api_key_env_name: f'{settings.api_key_prefix}{uuid.uuid4().hex}',
            'SETUP_COMPLETE': 'true',
            'VERCEL_API_TOKEN': request.vercel.token,
            'SUPABASE_ACCESS_TOKEN': request.supabase.pat,
        }
        return [EnvVar(key=k, value=v, targets=targets) for k, v in values.items()]

    async def _step_environment_upsert(self) -> None:
        deployment = self._clients.deployment
        project = self.state.require_project()
        team_id = self.state.team_id

        self.state.admin_password_hash = hash_master_password(
            self._request.identity.password, self._settings.master_password_salt,
        )
        await deployment.upsert_env(project.id, self._environment(), team_id=team_id)
        self.state.env_written = True

        try:
            await deployment.disable_deployment_protection(project.id, team_id=team_id)
        except Exception as exc:
            logger.warning(
                'Could not disable deployment protection',
                extra={'project_id': project.id, 'error': str(exc)},
            )

    async def _step_secret_mirroring(self) -> None:
        request = self._request
        project = self.state.require_database()
        keys = self.state.require_api_keys()
        secrets = {
            'VERCEL_TOKEN': request.vercel.token,
            'SUPABASE_URL': project.project_url,
            'SUPABASE_ANON_KEY': keys.publishable,
            'SUPABASE_SERVICE_ROLE_KEY': keys.secret,
            'QSTASH_TOKEN': request.qstash.token,
            'REDIS_URL': request.redis.rest_url,
            'REDIS_TOKEN': request.redis.rest_token,
            'MASTER_PASSWORD': self.state.admin_password_hash or '',
        }
        try:
            await self._clients.repository.set_actions_secrets(
                request.github.owner, request.github.repo, secrets,
            )
        except Exception as exc:
            logger.warning(
                'Could not mirror secrets to the repository',
                extra={'repo': request.github.repo_full_name, 'error': str(exc)},
            )

    async def _step_schema_migration(self) -> None:
        connection = self.state.connection
        if connection is None:
            raise ProvisioningError(
                'No database connection string could be resolved; schema migrations cannot run'
            )
        result = await self._migrator.migrate(connection.url)
        logger.info(
            'Schema migration finished',
            extra={'already_applied': result.already_applied, 'applied': list(result.applied)},
        )

    async def _step_admin_bootstrap(self) -> None:
        identity = self._request.identity
        mode = await self._bootstrapper.bootstrap(
            project_url=self.state.require_database().project_url,
            service_key=self.state.require_api_keys().secret,
            admin_email=identity.email,
            admin_name=identity.name,
        )
        logger.info('Admin bootstrap finished', extra={'mode': mode})

    async def _step_deployment_trigger(self) -> None:
        deployment = self._clients.deployment
        project = self.state.require_project()
        team_id = self.state.team_id
        targets = tuple(self._settings.env_targets)
        prior = 'true' if self._settings.installer_enabled else 'false'

        await deployment.upsert_env(
            project.id, [EnvVar(INSTALLER_ENABLED_ENV, 'false', targets)], team_id=team_id,
        )

        async def restore_flag() -> None:
            await deployment.upsert_env(
                project.id, [EnvVar(INSTALLER_ENABLED_ENV, prior, targets)], team_id=team_id,
            )

        self._compensation.register(RESTORE_INSTALLER_FLAG, restore_flag)

        deployment_id = await deployment.redeploy_latest(project.id, team_id=team_id)
        if deployment_id is None:
            logger.info('No previous deployment, creating the first one')
            deployment_id = await deployment.create_first_deployment(
                project.id,
                project.name or self._request.github.repo_name,
                self._request.github.repo_full_name,
                team_id=team_id,
            )

        self.state.deployment_id = deployment_id
        self._compensation.discard(RESTORE_INSTALLER_FLAG)
        logger.info('Deployment triggered', extra={'deployment_id': deployment_id})

    async def _step_deployment_ready_wait(self) -> None:
        deployment_id = self.state.deployment_id
        if not deployment_id:
            logger.warning('No deployment id, skipping deployment readiness wait')
            return

        deployment = self._clients.deployment
        team_id = self.state.team_id
        settings = self._settings

        async def check() -> bool:
            ready_state = await deployment.get_deployment_state(deployment_id, team_id=team_id)
            self.state.deployment_state = ready_state
            return ready_state == READY_STATE or ready_state in FAILED_STATES

        result = await wait_until_ready(
            check,
            timeout_seconds=settings.deployment_ready_timeout_seconds,
            poll_interval_seconds=settings.deployment_ready_poll_seconds,
            check_timeout_seconds=settings.readiness_check_timeout_seconds,
            on_tick=self._ticker(self.state.step_index),
            transient_errors=(PlatformAPIError,),
            clock=self._clock,
            sleep=self._sleep,
        )
        if not result.ready:
            logger.warning(
                'Deployment not ready before deadline; it keeps building in the background',
                extra={'deployment_id': deployment_id, 'attempts': result.attempts},
            )
        elif self.state.deployment_state in FAILED_STATES:
            # Setup is already committed; the deployment can be retried from
            # the platform dashboard.
            logger.warning(
                'Deployment finished in a failed state',
                extra={'deployment_id': deployment_id, 'state': self.state.deployment_state},
            )
