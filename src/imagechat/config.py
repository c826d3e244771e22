"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Fallback secret when the caller does not send X-API-Key
    gemini_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("GEMINI_API_KEY", "gemini_api_key"),
    )
    gemini_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl(
            "https://generativelanguage.googleapis.com/v1beta"
        ),
        validation_alias=AliasChoices("GEMINI_BASE_URL", "gemini_base_url"),
    )
    request_timeout: float = Field(
        default=300.0,
        validation_alias=AliasChoices("GEMINI_TIMEOUT", "timeout"),
        ge=1,
    )
    default_model: str = Field(
        default="gemini-2.5-flash-image",
        validation_alias=AliasChoices("IMAGECHAT_DEFAULT_MODEL", "default_model"),
    )
    history_max_messages: int = Field(
        default=20,
        ge=0,
        validation_alias=AliasChoices(
            "HISTORY_MAX_MESSAGES", "history_max_messages"
        ),
    )
    upstream_error_body_limit: int = Field(
        default=500,
        ge=1,
        validation_alias=AliasChoices(
            "UPSTREAM_ERROR_BODY_LIMIT", "upstream_error_body_limit"
        ),
    )

    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("LOG_LEVEL", "log_level"),
    )
    log_dir: Optional[Path] = Field(
        default=None,
        validation_alias=AliasChoices("LOG_DIR", "log_dir"),
    )
    log_retention_hours: int = Field(
        default=48,
        ge=0,
        validation_alias=AliasChoices("LOG_RETENTION_HOURS", "log_retention_hours"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["Settings", "get_settings"]
