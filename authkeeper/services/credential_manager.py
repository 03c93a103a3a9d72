"""
Credential lifecycle: reuse, refresh or re-acquire OAuth credentials.

After every store read or write the returned :class:`CredentialHandle` is
overwritten with the persisted values. A handle that disagrees with the
database would keep failing authentication until the next process start, so
persistence always happens first, then synchronization, then the return.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import timedelta
from pathlib import Path
from typing import Callable, Iterable, Optional

from authkeeper.clients.google_auth import GoogleOAuthClient
from authkeeper.clients.sqlite_store import CredentialStore
from authkeeper.core.errors import (
    AuthorizationFlowError,
    ConfigurationError,
    CredentialAcquisitionError,
    ProviderError,
    StoreClosedError,
)
from authkeeper.models.credential import DEFAULT_ACCOUNT, AcquireRequest, CredentialRecord
from authkeeper.models.registration import ClientRegistration, load_client_registration
from authkeeper.services.authorization_flow import AuthorizationFlowRunner
from authkeeper.services.credential_handle import CredentialHandle
from authkeeper.utils.retry import NETWORK_RETRY, RetryConfig, is_contention_error, run_with_retry_async

logger = logging.getLogger(__name__)

LEGACY_DEFAULT_ACCOUNT = ""


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.transient


class _ProviderSession:
    """Loads client registration at most once per ``acquire`` call, and only on demand."""

    def __init__(
        self,
        path: Path,
        loader: Callable[[Path], ClientRegistration],
        factory: Callable[[ClientRegistration], GoogleOAuthClient],
    ) -> None:
        self._path = path
        self._loader = loader
        self._factory = factory
        self._client: Optional[GoogleOAuthClient] = None

    def client(self) -> GoogleOAuthClient:
        if self._client is None:
            self._client = self._factory(self._loader(self._path))
        return self._client


class CredentialManager:
    """Hands out credential handles that are in sync with the credential store."""

    def __init__(
        self,
        store: CredentialStore,
        flow_runner: AuthorizationFlowRunner,
        *,
        oauth_client_factory: Callable[[ClientRegistration], GoogleOAuthClient] = GoogleOAuthClient,
        registration_loader: Callable[[Path], ClientRegistration] = load_client_registration,
        refresh_retry: RetryConfig = NETWORK_RETRY,
        refresh_window: timedelta = timedelta(minutes=5),
    ) -> None:
        self._store = store
        self._flow_runner = flow_runner
        self._oauth_client_factory = oauth_client_factory
        self._registration_loader = registration_loader
        self._refresh_retry = refresh_retry
        self._refresh_window = refresh_window

    @property
    def store(self) -> CredentialStore:
        return self._store

    async def get_credentials(
        self,
        service: str,
        required_scopes: Iterable[str],
        *,
        client_registration_path: Path | str,
        account: str = DEFAULT_ACCOUNT,
    ) -> CredentialHandle:
        """Keyword-friendly wrapper around :meth:`acquire`."""
        request = AcquireRequest(
            service=service,
            account=account,
            required_scopes=tuple(required_scopes),
            client_registration_path=Path(client_registration_path),
        )
        return await self.acquire(request)

    async def acquire(self, request: AcquireRequest) -> CredentialHandle:
        """Return a usable handle for ``request``, re-authorizing when needed.

        Failures surface as :class:`CredentialAcquisitionError` naming the
        service, account and failure class; the original error is chained.
        """
        session = _ProviderSession(
            request.client_registration_path.expanduser(),
            self._registration_loader,
            self._oauth_client_factory,
        )
        try:
            self._cleanup_invalid(request.service, request.account)
            handle = await self._load_existing(request, session)
            if handle is not None:
                return handle
            return await self._authenticate_and_save(request, session)
        except ConfigurationError as exc:
            raise self._failure(request, "configuration", exc) from exc
        except AuthorizationFlowError as exc:
            raise self._failure(request, "authorization_flow", exc) from exc
        except ProviderError as exc:
            raise self._failure(request, exc.kind.value, exc) from exc
        except sqlite3.Error as exc:
            kind = "contention" if is_contention_error(exc) else "storage"
            raise self._failure(request, kind, exc) from exc
        except (StoreClosedError, ValueError) as exc:
            # TokenCipherService.decrypt raises ValueError when the secret changed.
            raise self._failure(request, "storage", exc) from exc

    @staticmethod
    def _failure(request: AcquireRequest, kind: str, exc: Exception) -> CredentialAcquisitionError:
        logger.error(
            "Authentication failed for %s (account: %s): %s",
            request.service,
            request.account,
            exc,
        )
        return CredentialAcquisitionError(
            str(exc), service=request.service, account=request.account, kind=kind
        )

    def _cleanup_invalid(self, service: str, account: str) -> None:
        """Drop rows with no scopes, including the legacy empty-account row."""
        existing = self._store.get(service, account)
        if existing is not None and not existing.scopes:
            logger.info("Removing token with empty scopes for %s (account: %s)", service, account)
            self._store.delete(service, account)

        if account == DEFAULT_ACCOUNT:
            legacy = self._store.get(service, LEGACY_DEFAULT_ACCOUNT)
            if legacy is not None and not legacy.scopes:
                logger.info("Removing legacy token with empty account string for %s", service)
                self._store.delete(service, LEGACY_DEFAULT_ACCOUNT)

    def _new_handle(self, record: CredentialRecord, oauth_client: GoogleOAuthClient) -> CredentialHandle:
        registration = oauth_client.registration
        return CredentialHandle(
            record,
            refresher=oauth_client,
            refresh_window=self._refresh_window,
            client_id=registration.client_id,
            client_secret=registration.client_secret,
            token_uri=registration.token_uri,
        )

    async def _load_existing(
        self, request: AcquireRequest, session: _ProviderSession
    ) -> Optional[CredentialHandle]:
        service, account = request.service, request.account
        record = self._store.get(service, account)
        if record is None:
            return None

        if not record.scopes:
            logger.info("Token has no scopes for %s. Re-authenticating...", service)
            self._store.delete(service, account)
            return None

        missing = record.missing_scopes(request.required_scopes)
        if missing:
            logger.info(
                "Token has incorrect scopes for %s. Missing: %s. Re-authenticating...",
                service,
                ", ".join(missing),
            )
            self._store.delete(service, account)
            return None

        handle = self._new_handle(record, session.client())
        try:
            await run_with_retry_async(
                handle.get_access_token,
                config=self._refresh_retry,
                should_retry=_is_transient,
                label=f"Token refresh for {service}",
            )
        except ProviderError as exc:
            if exc.revoked:
                logger.warning("Saved %s token is invalid (%s). Re-authenticating...", service, exc)
                self._store.delete(service, account)
                return None
            logger.warning(
                "Error loading %s token (%s). Token not deleted - may be transient error.",
                service,
                exc,
            )
            raise

        # Persist even when nothing changed: the refresh may have moved expiry only.
        refreshed = handle.to_record().model_copy(update={"scopes": request.required_scopes})
        stored = self._store.upsert(refreshed)
        handle.set_credentials(stored)
        handle.was_refreshed = (
            stored.expiry != record.expiry or stored.access_token != record.access_token
        )

        if handle.was_refreshed:
            logger.info("Refreshed and saved %s token (account: %s)", service, account)
        else:
            logger.info("Using saved %s token (account: %s)", service, account)
        return handle

    async def _authenticate_and_save(
        self, request: AcquireRequest, session: _ProviderSession
    ) -> CredentialHandle:
        service, account = request.service, request.account
        oauth_client = session.client()
        logger.info("Authenticating %s service (account: %s)...", service, account)

        grant = await self._flow_runner.run(oauth_client, request.required_scopes)
        stored = self._store.upsert(
            CredentialRecord(
                service=service,
                account=account,
                access_token=grant.access_token,
                refresh_token=grant.refresh_token or "",
                expiry=grant.expiry,
                scopes=request.required_scopes,
            )
        )
        handle = self._new_handle(stored, oauth_client)
        logger.info("Successfully authenticated and saved %s token (account: %s)", service, account)
        return handle


__all__ = ["CredentialManager", "LEGACY_DEFAULT_ACCOUNT"]
