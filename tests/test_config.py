"""Tests for settings loading."""

from pathlib import Path
from unittest.mock import patch

import pytest

from aula_mcp.config import Settings, get_settings, load_config, reset_settings


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    with patch("aula_mcp.config.CONFIG_PATH", path):
        yield path
    reset_settings()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "BROWSER_EXECUTABLE_PATH",
        "AULA_BROWSER_EXECUTABLE_PATH",
        "AULA_DATA_DIR",
        "AULA_PING_INTERVAL_MINUTES",
        "AULA_LOGIN_MARKER",
    ):
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    """Tests for Settings defaults and overrides."""

    def test_defaults(self, config_file):
        settings = Settings()

        assert settings.browser_executable_path is None
        assert settings.ping_interval_minutes == 15
        assert settings.data_dir == Path.home() / ".aula-mcp"
        assert settings.session_file == settings.data_dir / "session.json"
        assert settings.api_base_url == "https://www.aula.dk/api/v19/"

    def test_unprefixed_browser_path(self, config_file, monkeypatch):
        """BROWSER_EXECUTABLE_PATH is honoured without the AULA_ prefix."""
        monkeypatch.setenv("BROWSER_EXECUTABLE_PATH", "/opt/chrome/chrome")

        assert Settings().browser_executable_path == Path("/opt/chrome/chrome")

    def test_empty_browser_path_is_unset(self, config_file, monkeypatch):
        monkeypatch.setenv("BROWSER_EXECUTABLE_PATH", "  ")

        assert Settings().browser_executable_path is None

    def test_data_dir_from_env(self, config_file, monkeypatch, tmp_path):
        monkeypatch.setenv("AULA_DATA_DIR", str(tmp_path / "aula"))

        settings = Settings()

        assert settings.data_dir == tmp_path / "aula"
        assert settings.session_file == tmp_path / "aula" / "session.json"

    def test_ping_interval_bounds(self, config_file, monkeypatch):
        monkeypatch.setenv("AULA_PING_INTERVAL_MINUTES", "0")

        with pytest.raises(ValueError):
            Settings()

    def test_empty_marker_disables_condition(self, config_file, monkeypatch):
        monkeypatch.setenv("AULA_LOGIN_MARKER", "")

        assert Settings().login_marker is None

    def test_api_version(self, config_file):
        settings = Settings(api_url="https://staging.aula.dk/api", api_version=20)

        assert settings.api_base_url == "https://staging.aula.dk/api/v20/"


class TestYamlConfig:
    """Tests for ~/.aula-mcp/config.yaml."""

    def test_missing_file(self, config_file):
        assert load_config() == {}

    def test_invalid_yaml(self, config_file):
        config_file.write_text("child_name: [unclosed")

        assert load_config() == {}

    def test_yaml_values(self, config_file):
        config_file.write_text(
            "browser_executable_path: /usr/bin/chromium\n"
            "child_name: Emma\n"
            "ping_interval_minutes: 10\n"
        )

        settings = Settings()

        assert settings.browser_executable_path == Path("/usr/bin/chromium")
        assert settings.child_name == "Emma"
        assert settings.ping_interval_minutes == 10

    def test_env_beats_yaml(self, config_file, monkeypatch):
        config_file.write_text("ping_interval_minutes: 10\n")
        monkeypatch.setenv("AULA_PING_INTERVAL_MINUTES", "30")

        assert Settings().ping_interval_minutes == 30

    def test_get_settings_is_cached(self, config_file):
        assert get_settings() is get_settings()

        reset_settings()
        first = get_settings()
        reset_settings()

        assert get_settings() is not first
