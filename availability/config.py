"""Configuration loaded from environment variables via pydantic-settings.

Usage:
    from availability.config import get_settings
    settings = get_settings()
    attempts = settings.retry.max_attempts
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Response store connection configuration."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_", extra="ignore")

    url: str = Field(default="sqlite:///./availability.db", description="SQLAlchemy URL")
    echo: bool = Field(default=False, description="Log emitted SQL")


class RetrySettings(BaseSettings):
    """Backoff policy for response writes."""

    model_config = SettingsConfigDict(env_prefix="RESPONSE_RETRY_", extra="ignore")

    max_attempts: int = Field(default=3, ge=1, description="Attempts per write")
    base_delay_ms: int = Field(default=100, ge=0, description="First backoff delay")

    @property
    def base_delay(self) -> float:
        return self.base_delay_ms / 1000


class PromptSettings(BaseSettings):
    """Prompt coordinator configuration."""

    model_config = SettingsConfigDict(env_prefix="PROMPT_", extra="ignore")

    pacing_ms: int = Field(default=300, ge=0, description="Pause between prompts")

    @property
    def pacing(self) -> float:
        return self.pacing_ms / 1000


class LogSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")

    level: str = Field(default="INFO", description="Root log level")

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.strip().upper()


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore")

    seed_demo_data: bool = Field(default=False, alias="seed_demo_data")

    @field_validator("seed_demo_data", mode="before")
    @classmethod
    def parse_bool(cls, v):
        if isinstance(v, str):
            return v.lower() in ("1", "true", "yes")
        return bool(v)


class Settings:
    """All configuration sections, each loaded with its own env prefix."""

    def __init__(self) -> None:
        self.database = DatabaseSettings()
        self.retry = RetrySettings()
        self.prompt = PromptSettings()
        self.log = LogSettings()
        self.app = AppSettings()


@lru_cache
def get_settings() -> Settings:
    """Get cached Settings instance."""
    return Settings()


def clear_settings_cache() -> None:
    """Clear cached settings (useful for testing)."""
    get_settings.cache_clear()
