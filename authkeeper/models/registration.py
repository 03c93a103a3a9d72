"""OAuth client registration material (the provider's client secrets file)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

from pydantic import BaseModel, Field, ValidationError

from authkeeper.core.errors import ConfigurationError

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"


class ClientRegistration(BaseModel):
    """The ``installed`` or ``web`` section of a client secrets file."""

    client_id: str = Field(..., min_length=1)
    client_secret: str = Field(..., min_length=1)
    redirect_uris: list[str] = Field(default_factory=list)
    auth_uri: str = GOOGLE_AUTH_URI
    token_uri: str = GOOGLE_TOKEN_URI

    @property
    def redirect_uri(self) -> str:
        if not self.redirect_uris:
            raise ConfigurationError(
                "No redirect_uris found in credentials file. Please reconfigure your OAuth client."
            )
        return self.redirect_uris[0]

    @classmethod
    def from_mapping(cls, payload: Dict[str, Any]) -> "ClientRegistration":
        section = payload.get("installed") or payload.get("web")
        if not isinstance(section, dict):
            raise ConfigurationError(
                "Credentials file must contain 'installed' or 'web' configuration"
            )
        for field_name in ("client_id", "client_secret"):
            if not section.get(field_name):
                raise ConfigurationError(f"Missing '{field_name}' in credentials file")
        try:
            return cls.model_validate(section)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid credentials file: {exc}") from exc


def load_client_registration(path: Path | str) -> ClientRegistration:
    """Read and validate a client secrets file."""
    credentials_path = Path(path).expanduser()
    try:
        raw = credentials_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Credentials file not found: {credentials_path}") from exc
    except OSError as exc:
        raise ConfigurationError(f"Could not read credentials file {credentials_path}: {exc}") from exc
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid JSON in {credentials_path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Invalid credentials file {credentials_path}: expected an object")
    return ClientRegistration.from_mapping(payload)


def validate_client_registration(path: Path | str) -> tuple[bool, str | None]:
    """Non-raising variant of :func:`load_client_registration` for diagnostics."""
    try:
        load_client_registration(path)
    except ConfigurationError as exc:
        return False, str(exc)
    return True, None


__all__ = [
    "ClientRegistration",
    "GOOGLE_AUTH_URI",
    "GOOGLE_TOKEN_URI",
    "load_client_registration",
    "validate_client_registration",
]
