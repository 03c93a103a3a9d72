"""Exception hierarchy shared by the store, provider client and lifecycle manager."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class AuthKeeperError(Exception):
    """Base exception for credential lifecycle failures."""


class ProviderErrorKind(str, Enum):
    """Failure classes produced once, where a remote or storage call fails."""

    CONTENTION = "contention"
    NETWORK_TRANSIENT = "network_transient"
    AUTHORIZATION_REVOKED = "authorization_revoked"
    OTHER = "other"


class ProviderError(AuthKeeperError):
    """Raised by the provider client with its failure class attached."""

    def __init__(
        self,
        message: str,
        kind: ProviderErrorKind = ProviderErrorKind.OTHER,
        *,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        return self.kind is ProviderErrorKind.NETWORK_TRANSIENT

    @property
    def revoked(self) -> bool:
        return self.kind is ProviderErrorKind.AUTHORIZATION_REVOKED

    def __repr__(self) -> str:
        return f"ProviderError({str(self)!r}, kind={self.kind.value}, status_code={self.status_code})"


class TokenResponseError(ProviderError):
    """Raised when the token endpoint answers without an access token."""


class ConfigurationError(AuthKeeperError):
    """Raised for missing or malformed client registration material."""


class AuthorizationFlowError(AuthKeeperError):
    """Raised when the interactive authorization flow cannot complete."""


class AuthorizationDeniedError(AuthorizationFlowError):
    """Raised when the user rejects the consent screen."""


class MissingAuthorizationCodeError(AuthorizationFlowError):
    """Raised when the redirect arrives without an authorization code."""


class AuthorizationTimeoutError(AuthorizationFlowError):
    """Raised when nobody completes the consent screen in time."""


class StoreClosedError(AuthKeeperError):
    """Raised when a closed credential store is used."""


class CredentialAcquisitionError(AuthKeeperError):
    """Raised by the lifecycle manager with the request context attached."""

    def __init__(self, message: str, *, service: str, account: str, kind: str) -> None:
        super().__init__(f"{message} (service={service}, account={account}, kind={kind})")
        self.service = service
        self.account = account
        self.kind = kind


__all__ = [
    "AuthKeeperError",
    "AuthorizationDeniedError",
    "AuthorizationFlowError",
    "AuthorizationTimeoutError",
    "ConfigurationError",
    "CredentialAcquisitionError",
    "MissingAuthorizationCodeError",
    "ProviderError",
    "ProviderErrorKind",
    "StoreClosedError",
    "TokenResponseError",
]
