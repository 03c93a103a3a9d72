"""Pydantic models shared across the package."""

from .credential import (
    DEFAULT_ACCOUNT,
    AcquireRequest,
    CredentialRecord,
    TokenGrant,
    normalize_scopes,
)
from .registration import ClientRegistration, load_client_registration, validate_client_registration

__all__ = [
    "AcquireRequest",
    "ClientRegistration",
    "CredentialRecord",
    "DEFAULT_ACCOUNT",
    "TokenGrant",
    "load_client_registration",
    "normalize_scopes",
    "validate_client_registration",
]
