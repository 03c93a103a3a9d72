"""Expose the storage and provider clients."""

from .google_auth import GoogleOAuthClient
from .sqlite_store import CredentialStore

__all__ = [
    "CredentialStore",
    "GoogleOAuthClient",
]
