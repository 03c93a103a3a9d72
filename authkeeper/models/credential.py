"""
Domain models for OAuth credential persistence.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_ACCOUNT = "default"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_service(service: str) -> str:
    return str(service).strip().lower()


def normalize_scopes(scopes: Iterable[str] | str | None) -> tuple[str, ...]:
    """Strip, de-duplicate and keep first-seen order."""
    if scopes is None:
        return ()
    if isinstance(scopes, str):
        scopes = scopes.replace(",", " ").split()
    seen: dict[str, None] = {}
    for scope in scopes:
        cleaned = str(scope).strip()
        if cleaned:
            seen.setdefault(cleaned, None)
    return tuple(seen)


class CredentialRecord(BaseModel):
    """Token material stored for one (service, account) pair."""

    model_config = ConfigDict(frozen=True)

    service: str = Field(..., min_length=1, description="Lowercase backend identifier.")
    account: str = Field(DEFAULT_ACCOUNT, description="Logical identity within the service.")
    access_token: str
    refresh_token: str = ""
    expiry: Optional[datetime] = None
    scopes: tuple[str, ...] = ()
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("service", mode="before")
    @classmethod
    def _lowercase_service(cls, value: str) -> str:
        return normalize_service(value)

    @field_validator("scopes", mode="before")
    @classmethod
    def _coerce_scopes(cls, value: Iterable[str] | str | None) -> tuple[str, ...]:
        return normalize_scopes(value)

    @field_validator("expiry", "created_at", "updated_at", mode="after")
    @classmethod
    def _force_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @property
    def key(self) -> tuple[str, str]:
        return (self.service, self.account)

    def missing_scopes(self, required: Iterable[str]) -> list[str]:
        granted = set(self.scopes)
        return [scope for scope in normalize_scopes(required) if scope not in granted]

    def has_scopes(self, required: Iterable[str]) -> bool:
        """True when every required scope was granted."""
        return not self.missing_scopes(required)

    def is_expired(self, *, now: Optional[datetime] = None, window: timedelta = timedelta(0)) -> bool:
        """An unknown expiry counts as expired so the next use refreshes it."""
        if self.expiry is None:
            return True
        now = _as_utc(now) or utcnow()
        return self.expiry <= now + window


class TokenGrant(BaseModel):
    """Token endpoint response, for both code exchange and refresh."""

    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scopes: tuple[str, ...] = ()
    issued_at: datetime = Field(default_factory=utcnow)

    @field_validator("scopes", mode="before")
    @classmethod
    def _coerce_scopes(cls, value: Iterable[str] | str | None) -> tuple[str, ...]:
        return normalize_scopes(value)

    @property
    def expiry(self) -> Optional[datetime]:
        if self.expires_in is None:
            return None
        return _as_utc(self.issued_at) + timedelta(seconds=self.expires_in)


class AcquireRequest(BaseModel):
    """What a caller needs: a usable credential for (service, account, scopes)."""

    service: str = Field(..., min_length=1)
    account: str = DEFAULT_ACCOUNT
    required_scopes: tuple[str, ...] = Field(..., min_length=1)
    client_registration_path: Path

    @field_validator("service", mode="before")
    @classmethod
    def _lowercase_service(cls, value: str) -> str:
        return normalize_service(value)

    @field_validator("required_scopes", mode="before")
    @classmethod
    def _coerce_scopes(cls, value: Iterable[str] | str | None) -> tuple[str, ...]:
        return normalize_scopes(value)


__all__ = [
    "AcquireRequest",
    "CredentialRecord",
    "DEFAULT_ACCOUNT",
    "TokenGrant",
    "normalize_scopes",
    "normalize_service",
    "utcnow",
]
