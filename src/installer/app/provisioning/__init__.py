"""Provisioning pipeline building blocks.

The orchestrator and request payload live in their own modules
(``orchestrator`` and ``payload``) and are imported from there.
"""

from .compensation import CompensationManager, CompensationOutcome
from .connection import DatabaseConnection, build_connection
from .events import (
    SSE_MEDIA_TYPE,
    CompleteEvent,
    ErrorEvent,
    EventStream,
    ProgressEvent,
    StreamClosedError,
    encode_sse,
)
from .naming import (
    DatabaseProject,
    NameExhaustedError,
    create_with_unique_name,
    fallback_name,
    next_available_name,
)
from .progress import MAX_PROGRESS, Heartbeat, ProgressReporter, percent
from .readiness import ReadinessResult, wait_until_ready
from .steps import STEP_IDS, STEPS, TOTAL_WEIGHT, Step, WizardScreen, step_index

__all__ = [
    'MAX_PROGRESS',
    'SSE_MEDIA_TYPE',
    'STEPS',
    'STEP_IDS',
    'TOTAL_WEIGHT',
    'CompensationManager',
    'CompensationOutcome',
    'CompleteEvent',
    'DatabaseConnection',
    'DatabaseProject',
    'ErrorEvent',
    'EventStream',
    'Heartbeat',
    'NameExhaustedError',
    'ProgressEvent',
    'ProgressReporter',
    'ReadinessResult',
    'Step',
    'StreamClosedError',
    'WizardScreen',
    'build_connection',
    'create_with_unique_name',
    'encode_sse',
    'fallback_name',
    'next_available_name',
    'percent',
    'step_index',
    'wait_until_ready',
]
