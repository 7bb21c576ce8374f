"""Configuration management using Pydantic Settings."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

DEFAULT_DATA_DIR = Path.home() / ".aula-mcp"

# Config file location
CONFIG_PATH = DEFAULT_DATA_DIR / "config.yaml"


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Settings source backed by ~/.aula-mcp/config.yaml.

    The file is read once per Settings() construction; keys that are not
    settings fields are dropped.
    """

    def __init__(self, settings_cls: type[BaseSettings]):
        super().__init__(settings_cls)
        self._values = {
            key: value
            for key, value in load_config().items()
            if key in settings_cls.model_fields
        }

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        return self._values.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        return dict(self._values)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="AULA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    browser_executable_path: Path | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "browser_executable_path",
            "AULA_BROWSER_EXECUTABLE_PATH",
            "BROWSER_EXECUTABLE_PATH",
        ),
        description="Chrome/Chromium executable used for the MitID login window",
    )
    data_dir: Path = Field(
        default=DEFAULT_DATA_DIR,
        description="Directory holding session.json and other runtime data",
    )
    ping_interval_minutes: int = Field(
        default=15,
        ge=1,
        le=240,
        description="Minutes between session keepalive pings",
    )
    login_url: str = Field(
        default="https://www.aula.dk/",
        description="Entry page that shows the MitID login",
    )
    cookie_name: str = Field(default="PHPSESSID", description="Session cookie captured after login")
    api_url: str = Field(default="https://www.aula.dk/api/", description="Aula API base URL")
    api_version: int = Field(default=19, ge=1, description="Aula API version segment")
    timeout: int = Field(default=30, ge=5, le=120, description="HTTP timeout in seconds")
    child_name: str | None = Field(default=None, description="Child to select after login")
    institution_name: str | None = Field(
        default=None, description="Institution to select after login"
    )
    login_portal_marker: str | None = Field(
        default="/portal",
        description="URL substring that marks the post-login portal",
    )
    login_route_marker: str | None = Field(
        default="#/",
        description="URL substring that marks a client-side portal route",
    )
    login_marker: str | None = Field(
        default="login",
        description="URL substring present while still on the login pages",
    )
    log_level: str = Field(default="INFO", description="Log level for the MCP server")

    @field_validator("browser_executable_path", mode="before")
    @classmethod
    def empty_path_is_unset(cls, v: Any) -> Any:
        """Treat an empty string as an unset executable path."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("login_portal_marker", "login_route_marker", "login_marker", mode="before")
    @classmethod
    def empty_marker_disables(cls, v: Any) -> Any:
        """An empty marker disables that login-detection condition."""
        if isinstance(v, str) and not v:
            return None
        return v

    @field_validator("data_dir", mode="after")
    @classmethod
    def expand_data_dir(cls, v: Path) -> Path:
        """Expand ~ in the data directory."""
        return v.expanduser()

    @property
    def session_file(self) -> Path:
        """Path to the persisted session record."""
        return self.data_dir / "session.json"

    @property
    def api_base_url(self) -> str:
        """Versioned API endpoint, e.g. https://www.aula.dk/api/v19/."""
        return f"{self.api_url.rstrip('/')}/v{self.api_version}/"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize settings sources - priority: env > yaml > defaults."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
        )


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings (useful for testing)."""
    global _settings
    _settings = None


def load_config() -> dict[str, Any]:
    """Load config from YAML file.

    Returns:
        Dictionary of config values, empty dict if file doesn't exist or is invalid.
    """
    if not CONFIG_PATH.exists():
        return {}
    try:
        with open(CONFIG_PATH) as f:
            data = yaml.safe_load(f) or {}
    except (yaml.YAMLError, OSError):
        return {}
    return data if isinstance(data, dict) else {}
