"""
Pytest configuration file.

Ensures the repo root is on sys.path so that 'import mtm_replay...' and
'import actions...' work, and clears the cached settings around each test.
"""
import sys
from pathlib import Path

import pytest

# Add the repo root to sys.path
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from mtm_replay.config.settings import reset_settings


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Clear the cached settings so environment overrides don't leak between tests."""
    reset_settings()
    yield
    reset_settings()
