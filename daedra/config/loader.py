"""Configuration loading from environment and YAML files."""

import ipaddress
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from daedra import SERVER_NAME, VERSION

DEFAULT_PROVIDERS = ["search", "fetch"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Logging
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"

    # Transport
    transport: Literal["stdio", "sse"] = "stdio"
    host: str = "127.0.0.1"
    port: int = Field(default=3000, ge=1, le=65535)

    # Bounded send: a client that cannot take a message within this many
    # seconds is dropped.
    write_timeout: float = 10.0
    max_message_bytes: int = 4 * 1024 * 1024
    session_queue_size: int = 256

    # Result cache
    cache_enabled: bool = True
    cache_ttl: int = Field(default=300, ge=0)
    cache_max_entries: int = Field(default=1000, ge=1)

    # Upstream HTTP
    request_timeout: int = 30

    # Server info
    server_name: str = SERVER_NAME
    server_version: str = VERSION

    # Optional YAML file with enabled providers and per-tool overrides
    tools_config: str | None = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("host")
    @classmethod
    def _check_host(cls, value: str) -> str:
        if value == "localhost":
            return value
        try:
            ipaddress.ip_address(value)
        except ValueError:
            raise ValueError(f"Invalid host address: {value!r}") from None
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {value!r}")
        return level

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Return a validated copy with the non-None overrides applied."""
        data = self.model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return Settings.model_validate(data)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def load_tools_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """
    Load tool provider configuration from YAML file.

    Args:
        config_path: Path to the config file. If None, uses default location.

    Returns:
        Dictionary with ``enabled_providers`` and ``providers`` keys.
    """
    default = {"enabled_providers": list(DEFAULT_PROVIDERS), "providers": {}}

    if config_path is None:
        possible_paths = [
            Path("config/tools.yaml"),
            Path(__file__).parent.parent.parent / "config" / "tools.yaml",
        ]
        for path in possible_paths:
            if path.exists():
                config_path = path
                break
        else:
            return default

    config_path = Path(config_path)
    if not config_path.exists():
        return default

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    config.setdefault("enabled_providers", list(DEFAULT_PROVIDERS))
    config.setdefault("providers", {})
    return config


def get_enabled_providers(config: dict[str, Any] | None = None) -> list[str]:
    """Get list of enabled provider names."""
    if config is None:
        config = load_tools_config()
    return config.get("enabled_providers", list(DEFAULT_PROVIDERS))


def get_provider_config(provider_name: str, config: dict[str, Any] | None = None) -> dict[str, Any]:
    """Get configuration for a specific provider."""
    if config is None:
        config = load_tools_config()
    providers = config.get("providers") or {}
    return providers.get(provider_name) or {}
