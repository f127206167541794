"""Structured logging configuration for the installer service.

Configures structlog for JSON-formatted logging correlated by request id and
provisioning run id. Modules keep using ``logging.getLogger(__name__)`` with
``extra=`` fields; those records go through the same structlog renderer, and
fields named after credentials are redacted before rendering.

Usage::

    from installer.app.observability.logging import configure_logging

    configure_logging()  # Call once at app startup
"""

from __future__ import annotations

import logging
import os
import sys
from contextvars import ContextVar

import structlog

# Context variables for correlation. Tasks spawned inside a request inherit
# a copy, so a background run keeps its request_id.
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
run_id_ctx: ContextVar[str | None] = ContextVar("run_id", default=None)

_configured = False


def _add_correlation_ids(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    """Inject request_id / run_id from context into every log entry."""
    rid = request_id_ctx.get()
    if rid is not None:
        event_dict["request_id"] = rid
    run_id = run_id_ctx.get()
    if run_id is not None:
        event_dict["run_id"] = run_id
    return event_dict


# Field names whose values are credentials for one of the provisioned services.
_SENSITIVE_KEYS = frozenset({
    "authorization",
    "apikey",
    "token",
    "pat",
    "password",
    "secret",
    "service_key",
    "rest_token",
    "connection_string",
})

REDACTED = "[REDACTED]"


def _redact_sensitive_fields(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    """Replace values of credential-named fields before rendering."""
    for key in event_dict:
        if key.lower() in _SENSITIVE_KEYS:
            event_dict[key] = REDACTED
    return event_dict


def configure_logging(
    *,
    level: str | None = None,
    json_output: bool | None = None,
) -> None:
    """Configure structlog and stdlib logging. Safe to call more than once.

    Args:
        level: Log level name. Defaults to LOG_LEVEL env var or INFO.
        json_output: JSON lines when True, console output when False.
            Defaults to LOG_FORMAT env var == "json".
    """
    global _configured
    if _configured:
        return
    _configured = True

    level = level or os.environ.get("LOG_LEVEL", "INFO")
    if json_output is None:
        json_output = os.environ.get("LOG_FORMAT", "json") == "json"

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        _add_correlation_ids,
        _redact_sensitive_fields,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        # stdlib records: lift ``extra=`` fields into the event dict.
        foreign_pre_chain=[structlog.stdlib.ExtraAdder(), *shared_processors],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Quiet noisy libraries.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _reset_logging_for_tests() -> None:
    """Test helper: allow configure_logging() to run again."""
    global _configured
    _configured = False
    structlog.reset_defaults()
