"""
Configuration models and helpers.

Settings are read from ``AUTHKEEPER_*`` environment variables or a ``.env``
file. Services never read settings themselves; the factories in
``authkeeper.dependencies`` pass the relevant values in.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _home() -> Path:
    return Path.home()


class StoreRetrySettings(BaseSettings):
    """Backoff schedule for SQLite contention."""

    model_config = SettingsConfigDict(
        env_prefix="AUTHKEEPER_STORE_RETRY_", env_file=".env", extra="ignore"
    )

    max_retries: int = Field(5, ge=0)
    initial_delay: float = Field(1.0, gt=0)
    backoff_multiplier: float = Field(2.0, ge=1.0)
    max_delay: float = Field(10.0, gt=0)


class AppSettings(BaseSettings):
    """Root settings object for the credential manager and its CLI."""

    model_config = SettingsConfigDict(
        env_prefix="AUTHKEEPER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = Field("INFO")
    store_path: Path = Field(
        default_factory=lambda: _home() / ".authkeeper_tokens.db",
        description="SQLite file shared by every process on this machine.",
    )
    credentials_path: Path = Field(
        default_factory=lambda: _home() / ".credentials.json",
        description="OAuth client registration downloaded from the provider console.",
    )
    token_encryption_secret: Optional[str] = Field(
        None,
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens. "
            "Tokens are stored in plaintext when omitted."
        ),
    )
    busy_timeout_seconds: float = Field(5.0, ge=0)
    authorization_timeout_seconds: float = Field(300.0, gt=0)
    refresh_window_seconds: int = Field(300, ge=0)
    store_retry: StoreRetrySettings = Field(default_factory=StoreRetrySettings)

    @field_validator("store_path", "credentials_path", mode="after")
    @classmethod
    def _expand_user(cls, value: Path) -> Path:
        """Allow ``~`` in configured paths."""
        return value.expanduser()

    @field_validator("log_level", mode="after")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        return value.upper()


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()


__all__ = [
    "AppSettings",
    "StoreRetrySettings",
    "get_settings",
]
