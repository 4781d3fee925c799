"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_CALENDAR_DAYS = 365


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Episodely", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tvmaze_api_url: HttpUrl = Field(
        default="https://api.tvmaze.com", alias="TVMAZE_API_URL"
    )
    tvmaze_retry_limit: int = Field(
        default=2, alias="TVMAZE_RETRY_LIMIT", ge=0, le=10
    )

    catalog_refresh_enabled: bool = Field(
        default=True, alias="CATALOG_REFRESH_ENABLED"
    )
    catalog_refresh_interval_seconds: int = Field(
        default=43_200, alias="CATALOG_REFRESH_INTERVAL", ge=300
    )

    calendar_days: int = Field(
        default=45, alias="CALENDAR_DAYS", ge=1, le=MAX_CALENDAR_DAYS
    )

    session_cookie_name: str = Field(
        default="episodely_session", alias="SESSION_COOKIE"
    )
    session_ttl_seconds: int = Field(
        default=30 * 24 * 3_600, alias="SESSION_TTL", ge=60
    )

    export_dir: Path | None = Field(default=None, alias="EXPORT_DIR")
    export_backup_interval_seconds: int = Field(
        default=86_400, alias="EXPORT_BACKUP_INTERVAL", ge=60
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./episodely.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("export_dir", mode="before")
    @classmethod
    def _blank_export_dir(cls, value: object) -> object:
        """Treat an empty EXPORT_DIR as unset."""

        if isinstance(value, str) and not value.strip():
            return None
        return value

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", populate_by_name=True
    )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
