"""Client settings and configuration.

This module defines the configuration options for the Chatterbox client.
Settings are loaded from environment variables with sensible defaults and
turned into an immutable `ClientConfig` that every service receives at
construction time.
"""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings loaded from environment variables.

    Settings can be overridden via environment variables or a `.env` file.
    """

    # Server endpoint and caller identity
    api_url: str = Field(default="http://localhost:8080/api", alias="CHATTERBOX_API_URL")
    user_id: str = Field(default="user-alice-123", alias="CHATTERBOX_USER_ID")
    display_name: str | None = Field(default=None, alias="CHATTERBOX_DISPLAY_NAME")

    # Local cache
    database_url: str = Field(
        default="sqlite:///./chatterbox.db",
        alias="CHATTERBOX_DATABASE_URL",
    )
    sql_debug: bool = Field(default=False, alias="CHATTERBOX_SQL_DEBUG")

    # Sync loop
    sync_interval_seconds: float = Field(default=5.0, alias="CHATTERBOX_SYNC_INTERVAL_SECONDS")
    sync_max_backoff_seconds: float = Field(
        default=30.0,
        alias="CHATTERBOX_SYNC_MAX_BACKOFF_SECONDS",
    )
    http_timeout_seconds: float = Field(default=10.0, alias="CHATTERBOX_HTTP_TIMEOUT_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )


@dataclass(frozen=True)
class ClientConfig:
    """Immutable configuration for one client identity."""

    api_url: str
    user_id: str
    database_url: str
    sync_interval_seconds: float = 5.0
    sync_max_backoff_seconds: float = 30.0
    http_timeout_seconds: float = 10.0
    sql_debug: bool = False


def load_client_config(settings: Settings | None = None, **overrides: object) -> ClientConfig:
    """Build a configuration object from environment-backed settings.

    Keyword overrides replace individual fields, which lets one process host
    several identities against different endpoints.
    """
    settings = settings or Settings()
    values: dict[str, object] = {
        "api_url": settings.api_url,
        "user_id": settings.user_id,
        "database_url": settings.database_url,
        "sync_interval_seconds": float(settings.sync_interval_seconds),
        "sync_max_backoff_seconds": float(settings.sync_max_backoff_seconds),
        "http_timeout_seconds": float(settings.http_timeout_seconds),
        "sql_debug": settings.sql_debug,
    }
    values.update(overrides)
    return ClientConfig(**values)  # type: ignore[arg-type]
