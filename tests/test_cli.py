"""Tests for the offline CLI commands."""

from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from aula_mcp.main import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_settings(settings):
    """Point the CLI's default session store at the test data dir."""
    with patch("aula_mcp.auth.session_store.get_settings", return_value=settings), \
            patch("aula_mcp.auth.qr_capture.get_settings", return_value=settings), \
            patch("aula_mcp.cli.commands.auth.get_settings", return_value=settings):
        yield settings


class TestStatus:
    def test_no_session(self):
        result = runner.invoke(app, ["status"])

        assert result.exit_code == 1
        assert "Not logged in" in result.output

    def test_active_session(self, store):
        store.set("abc")

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 0
        assert "Logged in" in result.output
        assert "Session age" in result.output

    def test_expired_session(self, store):
        store.set("abc")
        store.mark_expired()

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 1
        assert "expired" in result.output


class TestLogout:
    def test_logout(self, store):
        store.set("abc")

        result = runner.invoke(app, ["logout"])

        assert result.exit_code == 0
        assert not store.path.exists()
        assert "Logged out." in result.output

    def test_logout_without_session(self):
        result = runner.invoke(app, ["logout"])

        assert result.exit_code == 0
        assert "No session found" in result.output


class TestLogin:
    def test_missing_browser_path(self, settings, tmp_path):
        settings.browser_executable_path = None

        result = runner.invoke(app, ["login", "--qr-file", str(tmp_path / "qr.png")])

        assert result.exit_code == 1
        assert "BROWSER_EXECUTABLE_PATH" in result.output
