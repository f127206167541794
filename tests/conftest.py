"""Pytest configuration for installer tests."""
import sys
from pathlib import Path

# Add src/ to path for src-layout imports
_PROJECT_ROOT = Path(__file__).parent.parent
_SRC = _PROJECT_ROOT / 'src'
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

import pytest

from installer.app.observability.logging import _reset_logging_for_tests
from installer.app.providers.http import _reset_shared_async_client_for_tests


@pytest.fixture(autouse=True)
def _isolate_module_state():
    """Reset module-level logging and HTTP client caches between tests."""
    yield
    _reset_shared_async_client_for_tests()
    _reset_logging_for_tests()
