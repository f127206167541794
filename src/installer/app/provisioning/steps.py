"""Static step table for a provisioning run.

The orchestrator walks this table in order:
  repository_check -> platform_auth_check -> project_link
  -> database_auth_check -> database_create -> database_ready_wait
  -> credential_resolution -> queue_auth_check -> cache_auth_check
  -> environment_upsert -> secret_mirroring -> schema_migration
  -> admin_bootstrap -> deployment_trigger -> deployment_ready_wait

Each step carries a progress weight and the wizard screen the caller should
return to when the step fails.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class WizardScreen(IntEnum):
    """Caller-side input screens, in wizard order."""

    IDENTITY = 1
    REPOSITORY = 2
    DEPLOYMENT = 3
    DATABASE = 4
    QUEUE = 5
    CACHE = 6


@dataclass(frozen=True, slots=True)
class Step:
    """Descriptor for one provisioning step."""

    id: str
    title: str
    subtitle: str
    weight: int
    return_to_step: WizardScreen


STEPS: tuple[Step, ...] = (
    Step('repository_check', 'Connecting repository...', 'Checking the repository exists', 5, WizardScreen.REPOSITORY),
    Step('platform_auth_check', 'Authenticating deployment platform...', 'Verifying the deployment token', 5, WizardScreen.DEPLOYMENT),
    Step('project_link', 'Linking project...', 'Connecting the deployment project to the repository', 10, WizardScreen.DEPLOYMENT),
    Step('database_auth_check', 'Authenticating database platform...', 'Verifying the database access token', 5, WizardScreen.DATABASE),
    Step('database_create', 'Creating database...', 'Allocating a new database project', 10, WizardScreen.DATABASE),
    Step('database_ready_wait', 'Starting database...', 'Waiting for the database project to become active', 15, WizardScreen.DATABASE),
    Step('credential_resolution', 'Resolving credentials...', 'Fetching API keys and connection details', 5, WizardScreen.DATABASE),
    Step('queue_auth_check', 'Checking message queue...', 'Verifying the queue token', 5, WizardScreen.QUEUE),
    Step('cache_auth_check', 'Checking cache...', 'Pinging the cache with the supplied credentials', 5, WizardScreen.CACHE),
    Step('environment_upsert', 'Writing configuration...', 'Setting environment variables', 10, WizardScreen.DEPLOYMENT),
    Step('secret_mirroring', 'Securing credentials...', 'Mirroring secrets to the repository', 5, WizardScreen.REPOSITORY),
    Step('schema_migration', 'Preparing schema...', 'Applying database migrations', 15, WizardScreen.DATABASE),
    Step('admin_bootstrap', 'Registering administrator...', 'Creating the administrative identity', 10, WizardScreen.IDENTITY),
    Step('deployment_trigger', 'Deploying...', 'Triggering a production deployment', 10, WizardScreen.DEPLOYMENT),
    Step('deployment_ready_wait', 'Finishing up...', 'Waiting for the deployment to go live', 5, WizardScreen.DEPLOYMENT),
)

STEP_IDS: tuple[str, ...] = tuple(step.id for step in STEPS)

TOTAL_WEIGHT: int = sum(step.weight for step in STEPS)


def step_index(step_id: str) -> int:
    """Return the position of ``step_id`` in :data:`STEPS`."""
    try:
        return STEP_IDS.index(step_id)
    except ValueError:
        raise KeyError(f'unknown provisioning step: {step_id!r}') from None
