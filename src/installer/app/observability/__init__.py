"""Logging and request correlation for the installer."""

from .logging import configure_logging, request_id_ctx, run_id_ctx
from .middleware import RequestIdMiddleware

__all__ = [
    "RequestIdMiddleware",
    "configure_logging",
    "request_id_ctx",
    "run_id_ctx",
]
