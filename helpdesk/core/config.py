from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import AliasChoices, AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Application configuration loaded from environment variables.

    Values may also be supplied through a ``.env`` file in the project root.
    """

    app_name: str = Field(default="Helpdesk Realtime", validation_alias="APP_NAME")
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")
    secret_key: str = Field(validation_alias=AliasChoices("SESSION_SECRET", "SECRET_KEY"))
    database_host: str = Field(validation_alias="DB_HOST")
    database_user: str = Field(validation_alias="DB_USER")
    database_password: str = Field(validation_alias="DB_PASSWORD")
    database_name: str = Field(validation_alias="DB_NAME")
    migration_lock_timeout: int = Field(
        default=60, validation_alias="MIGRATION_LOCK_TIMEOUT"
    )
    session_cookie_name: str = Field(
        default="helpdesk_session",
        validation_alias=AliasChoices("SESSION_COOKIE_NAME", "SESSION_COOKIE"),
    )
    allowed_origins: List[AnyHttpUrl] = Field(
        default_factory=list,
        validation_alias="ALLOWED_ORIGINS",
    )
    uploads_path: Path = Field(
        default=_PROJECT_ROOT / "private_uploads",
        validation_alias="UPLOADS_PATH",
    )
    max_attachment_size: int = Field(
        default=15 * 1024 * 1024,
        validation_alias="MAX_ATTACHMENT_SIZE",
    )
    direct_message_page_size: int = Field(
        default=5, ge=1, le=200, validation_alias="DIRECT_MESSAGE_PAGE_SIZE"
    )
    log_file_path: Path | None = Field(default=None, validation_alias="LOG_FILE_PATH")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    @field_validator("log_file_path", mode="before")
    @classmethod
    def _empty_string_to_none(cls, value: Path | str | None) -> Path | str | None:
        """Treat a blank ``LOG_FILE_PATH`` as unset."""

        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    model_config = SettingsConfigDict(
        env_file=(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
