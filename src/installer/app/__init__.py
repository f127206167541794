"""Installer FastAPI application."""

from .main import create_app
from .settings import InstallerSettings

__all__ = ["create_app", "InstallerSettings"]
