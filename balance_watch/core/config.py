"""
Application configuration models and helpers.

Centralizes settings management so both the FastAPI app and the background
balance monitor share a consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

import os

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_UPDATE_INTERVAL_SECONDS = 60
MAX_UPDATE_INTERVAL_SECONDS = 3600
_MIN_TOKEN_LENGTH = 10


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


def looks_like_token(value: str | None) -> bool:
    """Cheap format check: non-blank and longer than a trivial placeholder."""
    return bool(value and len(value.strip()) > _MIN_TOKEN_LENGTH)


class MonitorSettings(BaseSettings):
    """Credential and polling configuration for the balance monitor."""

    model_config = SettingsConfigDict(
        env_prefix="BALANCE_WATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    token: str = Field(
        "",
        description="Bearer token identifying the account. Empty means not configured.",
    )
    update_interval: int = Field(
        600,
        description="Seconds between scheduled refreshes (60-3600).",
    )
    cache_db_path: str = Field(
        "data/balance_watch.db",
        description="SQLite file backing the account snapshot cache.",
    )
    api_base_url: AnyHttpUrl = Field("https://portal.withorb.com/api/v1")
    pricing_unit_id: str = Field(
        "jWTJo9ptbapMWkvg",
        description="Pricing unit used when requesting the credits ledger summary.",
    )
    request_timeout: float = Field(
        10.0,
        description="Timeout in seconds applied to every remote call.",
    )

    @field_validator("api_base_url", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        """Allow the base URL to be supplied with or without a trailing slash."""
        if isinstance(value, str):
            return value.rstrip("/")
        return value

    def validation_errors(self) -> list[str]:
        """Return human-readable problems that keep the monitor unconfigured."""
        errors: list[str] = []
        if not self.token or not self.token.strip():
            errors.append("API token must not be empty.")
        if self.update_interval < MIN_UPDATE_INTERVAL_SECONDS:
            errors.append(
                f"Update interval must be at least {MIN_UPDATE_INTERVAL_SECONDS} seconds."
            )
        elif self.update_interval > MAX_UPDATE_INTERVAL_SECONDS:
            errors.append(
                f"Update interval must not exceed {MAX_UPDATE_INTERVAL_SECONDS} seconds."
            )
        return errors

    @property
    def is_valid(self) -> bool:
        return not self.validation_errors()

    @property
    def base_url(self) -> str:
        return str(self.api_base_url).rstrip("/")


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    monitor: MonitorSettings = Field(default_factory=MonitorSettings)
    start_monitor: bool = Field(
        True,
        validation_alias="BALANCE_WATCH_AUTOSTART",
        description="Start the polling monitor with the application lifespan.",
    )
    notification_backlog: Optional[int] = Field(
        20,
        validation_alias="BALANCE_WATCH_NOTIFICATION_BACKLOG",
        description="Maximum number of undrained notices kept in memory.",
    )


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "MAX_UPDATE_INTERVAL_SECONDS",
    "MIN_UPDATE_INTERVAL_SECONDS",
    "MonitorSettings",
    "get_settings",
    "looks_like_token",
]
