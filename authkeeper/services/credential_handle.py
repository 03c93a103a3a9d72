"""
The live credential object callers authenticate outgoing requests with.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Protocol

from google.oauth2.credentials import Credentials

from authkeeper.core.errors import ProviderError, ProviderErrorKind
from authkeeper.models.credential import CredentialRecord, TokenGrant


class TokenRefresher(Protocol):
    async def refresh_access_token(self, refresh_token: str) -> TokenGrant: ...


class CredentialHandle:
    """Mutable mirror of one stored :class:`CredentialRecord`.

    The lifecycle manager overwrites the token fields through
    :meth:`set_credentials` after every store read or write, so a handle
    returned from ``acquire`` always matches the persisted row.
    """

    def __init__(
        self,
        record: CredentialRecord,
        *,
        refresher: Optional[TokenRefresher] = None,
        refresh_window: timedelta = timedelta(minutes=5),
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        token_uri: Optional[str] = None,
    ) -> None:
        self._refresher = refresher
        self._refresh_window = refresh_window
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_uri = token_uri
        self.was_refreshed = False
        self.set_credentials(record)

    @property
    def service(self) -> str:
        return self._service

    @property
    def account(self) -> str:
        return self._account

    @property
    def access_token(self) -> str:
        return self._access_token

    @property
    def refresh_token(self) -> str:
        return self._refresh_token

    @property
    def expiry(self) -> Optional[datetime]:
        return self._expiry

    @property
    def scopes(self) -> tuple[str, ...]:
        return self._scopes

    def set_credentials(self, record: CredentialRecord) -> None:
        """Overwrite every token field with ``record``'s values."""
        self._service = record.service
        self._account = record.account
        self._access_token = record.access_token
        self._refresh_token = record.refresh_token
        self._expiry = record.expiry
        self._scopes = record.scopes

    def to_record(self) -> CredentialRecord:
        return CredentialRecord(
            service=self._service,
            account=self._account,
            access_token=self._access_token,
            refresh_token=self._refresh_token,
            expiry=self._expiry,
            scopes=self._scopes,
        )

    def needs_refresh(self) -> bool:
        return not self._access_token or self.to_record().is_expired(window=self._refresh_window)

    async def get_access_token(self) -> str:
        """Return a usable access token, refreshing it over the network if expired.

        Updates this handle in place; persisting the new values is the
        caller's job.
        """
        if not self.needs_refresh():
            return self._access_token
        if not self._refresh_token:
            raise ProviderError(
                "Access token expired and no refresh token is available.",
                ProviderErrorKind.AUTHORIZATION_REVOKED,
            )
        if self._refresher is None:
            raise ProviderError("No token refresher configured for this credential.")

        grant = await self._refresher.refresh_access_token(self._refresh_token)
        self._access_token = grant.access_token
        if grant.refresh_token:
            self._refresh_token = grant.refresh_token
        if grant.expiry is not None:
            self._expiry = grant.expiry
        return self._access_token

    def to_google_credentials(self) -> Credentials:
        """Build ``google.oauth2`` credentials for googleapiclient-based callers."""
        expiry = self._expiry.replace(tzinfo=None) if self._expiry is not None else None
        return Credentials(
            token=self._access_token,
            refresh_token=self._refresh_token or None,
            token_uri=self._token_uri,
            client_id=self._client_id,
            client_secret=self._client_secret,
            scopes=list(self._scopes),
            expiry=expiry,
        )

    def __repr__(self) -> str:
        return (
            f"CredentialHandle(service={self._service!r}, account={self._account!r}, "
            f"expiry={self._expiry!r}, scopes={len(self._scopes)})"
        )


__all__ = ["CredentialHandle", "TokenRefresher"]
