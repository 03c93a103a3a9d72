"""OAuth credential lifecycle management backed by a shared SQLite store."""

from authkeeper.clients import CredentialStore, GoogleOAuthClient
from authkeeper.core.errors import (
    AuthKeeperError,
    ConfigurationError,
    CredentialAcquisitionError,
    ProviderError,
    ProviderErrorKind,
)
from authkeeper.models import AcquireRequest, ClientRegistration, CredentialRecord
from authkeeper.services import AuthorizationFlowRunner, CredentialHandle, CredentialManager

__version__ = "0.1.0"

__all__ = [
    "AcquireRequest",
    "AuthKeeperError",
    "AuthorizationFlowRunner",
    "ClientRegistration",
    "ConfigurationError",
    "CredentialAcquisitionError",
    "CredentialHandle",
    "CredentialManager",
    "CredentialRecord",
    "CredentialStore",
    "GoogleOAuthClient",
    "ProviderError",
    "ProviderErrorKind",
]
