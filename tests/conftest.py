"""Shared fixtures."""

from unittest.mock import patch

import pytest

from aula_mcp.auth.session_store import SessionStore
from aula_mcp.config import Settings, reset_settings


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the user's environment and config file."""
    with patch("aula_mcp.config.CONFIG_PATH", tmp_path / "missing-config.yaml"):
        yield Settings(
            browser_executable_path="/usr/bin/google-chrome",
            data_dir=tmp_path / "data",
            ping_interval_minutes=15,
        )
    reset_settings()


@pytest.fixture
def store(settings):
    """Empty session store in a temporary directory."""
    return SessionStore(settings.session_file)
