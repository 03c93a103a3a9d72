from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from authkeeper.clients.sqlite_store import CredentialStore
from authkeeper.core.errors import (
    AuthorizationDeniedError,
    CredentialAcquisitionError,
    ProviderError,
    ProviderErrorKind,
    StoreClosedError,
)
from authkeeper.models.credential import CredentialRecord, TokenGrant
from authkeeper.models.registration import ClientRegistration
from authkeeper.services.credential_manager import CredentialManager
from authkeeper.services.token_cipher import TokenCipherService
from authkeeper.utils.retry import RetryConfig

NO_WAIT = RetryConfig(max_retries=2, initial_delay=0.001, max_delay=0.001)


class DummyOAuthClient:
    def __init__(self, registration: ClientRegistration, outcomes: list) -> None:
        self.registration = registration
        self.outcomes = outcomes
        self.calls: list[str] = []

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        self.calls.append(refresh_token)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class DummyFlowRunner:
    def __init__(self, grant: TokenGrant | Exception | None = None) -> None:
        self.grant = grant or TokenGrant(access_token="T1", refresh_token="R1", expires_in=3600)
        self.calls: list[tuple[str, ...]] = []

    async def run(self, oauth_client, scopes) -> TokenGrant:
        self.calls.append(tuple(scopes))
        if isinstance(self.grant, Exception):
            raise self.grant
        return self.grant


class RedirectCheckingFlow:
    async def run(self, oauth_client, scopes) -> TokenGrant:
        redirect_uri = oauth_client.registration.redirect_uri
        raise AssertionError(f"flow should not start for {redirect_uri}")


class Harness:
    def __init__(self, store: CredentialStore, *, refresh_outcomes: list | None = None, grant=None) -> None:
        self.store = store
        self.flow = DummyFlowRunner(grant)
        self.refresh_outcomes = list(refresh_outcomes or [])
        self.clients: list[DummyOAuthClient] = []
        self.manager = CredentialManager(
            store,
            self.flow,
            oauth_client_factory=self._factory,
            refresh_retry=NO_WAIT,
        )

    def _factory(self, registration: ClientRegistration) -> DummyOAuthClient:
        client = DummyOAuthClient(registration, self.refresh_outcomes)
        self.clients.append(client)
        return client

    @property
    def refresh_calls(self) -> int:
        return sum(len(client.calls) for client in self.clients)


def _seed(store: CredentialStore, *, scopes=("read",), expiry=None, account="default", **overrides) -> CredentialRecord:
    values = {
        "service": "x",
        "account": account,
        "access_token": "OLD",
        "refresh_token": "R0",
        "expiry": expiry,
        "scopes": scopes,
    }
    values.update(overrides)
    return store.upsert(CredentialRecord(**values))


def _later(**delta) -> datetime:
    return datetime.now(timezone.utc) + timedelta(**delta)


@pytest.mark.asyncio
async def test_first_acquire_authorizes_and_persists(store: CredentialStore, client_secrets: Path) -> None:
    harness = Harness(store)

    handle = await harness.manager.get_credentials("x", ["read"], client_registration_path=client_secrets)

    assert harness.flow.calls == [("read",)]
    assert handle.access_token == "T1"
    stored = store.get("x")
    assert stored.access_token == "T1"
    assert stored.refresh_token == "R1"
    assert stored.scopes == ("read",)
    assert handle.to_record() == stored.model_copy(update={"created_at": None, "updated_at": None})


@pytest.mark.asyncio
async def test_valid_token_is_reused_without_network(store: CredentialStore, client_secrets: Path) -> None:
    _seed(store, expiry=_later(hours=1))
    harness = Harness(store)

    handle = await harness.manager.get_credentials("x", ["read"], client_registration_path=client_secrets)

    assert handle.access_token == "OLD"
    assert handle.was_refreshed is False
    assert harness.flow.calls == []
    assert harness.refresh_calls == 0


@pytest.mark.asyncio
async def test_insufficient_scopes_trigger_reauthorization(store: CredentialStore, client_secrets: Path) -> None:
    _seed(store, scopes=("read",), expiry=_later(hours=1))
    harness = Harness(store)

    handle = await harness.manager.get_credentials(
        "x", ["read", "write"], client_registration_path=client_secrets
    )

    assert harness.flow.calls == [("read", "write")]
    assert handle.scopes == ("read", "write")
    assert store.get("x").scopes == ("read", "write")
    assert store.get("x").access_token == "T1"


@pytest.mark.asyncio
async def test_empty_scope_rows_are_cleaned_up(store: CredentialStore, client_secrets: Path) -> None:
    _seed(store, scopes=())
    _seed(store, scopes=(), account="")
    harness = Harness(store)

    await harness.manager.get_credentials("x", ["read"], client_registration_path=client_secrets)

    assert store.get("x", "") is None
    assert store.get("x").scopes == ("read",)
    assert harness.flow.calls == [("read",)]


@pytest.mark.asyncio
async def test_legacy_row_with_scopes_is_left_alone(store: CredentialStore, client_secrets: Path) -> None:
    _seed(store, scopes=("read",), account="")
    harness = Harness(store)

    await harness.manager.get_credentials("x", ["read"], client_registration_path=client_secrets)

    assert store.get("x", "") is not None


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_and_persisted(store: CredentialStore, client_secrets: Path) -> None:
    _seed(store, expiry=_later(minutes=-5))
    harness = Harness(store, refresh_outcomes=[TokenGrant(access_token="T2", expires_in=3600)])

    handle = await harness.manager.get_credentials("x", ["read"], client_registration_path=client_secrets)

    stored = store.get("x")
    assert handle.was_refreshed is True
    assert handle.access_token == stored.access_token == "T2"
    assert stored.refresh_token == "R0"
    assert handle.expiry == stored.expiry
    assert harness.flow.calls == []


@pytest.mark.asyncio
async def test_revoked_refresh_deletes_and_reauthorizes(store: CredentialStore, client_secrets: Path) -> None:
    _seed(store, expiry=_later(minutes=-5))
    revoked = ProviderError("invalid_grant", ProviderErrorKind.AUTHORIZATION_REVOKED, status_code=400)
    harness = Harness(store, refresh_outcomes=[revoked])

    handle = await harness.manager.get_credentials("x", ["read"], client_registration_path=client_secrets)

    assert harness.refresh_calls == 1
    assert harness.flow.calls == [("read",)]
    assert handle.access_token == "T1"
    assert store.get("x").access_token == "T1"


@pytest.mark.asyncio
async def test_transient_refresh_failures_are_retried(store: CredentialStore, client_secrets: Path) -> None:
    _seed(store, expiry=_later(minutes=-5))
    reset = ProviderError("connection reset", ProviderErrorKind.NETWORK_TRANSIENT)
    harness = Harness(
        store,
        refresh_outcomes=[reset, reset, TokenGrant(access_token="T3", expires_in=3600)],
    )

    handle = await harness.manager.get_credentials("x", ["read"], client_registration_path=client_secrets)

    assert harness.refresh_calls == 3
    assert handle.access_token == "T3"
    assert store.get("x").access_token == "T3"
    assert harness.flow.calls == []


@pytest.mark.asyncio
async def test_exhausted_transient_failure_keeps_record(store: CredentialStore, client_secrets: Path) -> None:
    _seed(store, expiry=_later(minutes=-5))
    reset = ProviderError("connection reset", ProviderErrorKind.NETWORK_TRANSIENT)
    harness = Harness(store, refresh_outcomes=[reset, reset, reset])

    with pytest.raises(CredentialAcquisitionError) as excinfo:
        await harness.manager.get_credentials("x", ["read"], client_registration_path=client_secrets)

    assert excinfo.value.kind == "network_transient"
    assert store.get("x").access_token == "OLD"
    assert harness.flow.calls == []


@pytest.mark.asyncio
async def test_other_refresh_failure_surfaces_and_keeps_record(
    store: CredentialStore, client_secrets: Path
) -> None:
    _seed(store, expiry=_later(minutes=-5))
    harness = Harness(store, refresh_outcomes=[ProviderError("bad request", status_code=400)])

    with pytest.raises(CredentialAcquisitionError) as excinfo:
        await harness.manager.get_credentials("x", ["read"], client_registration_path=client_secrets)

    assert excinfo.value.kind == "other"
    assert excinfo.value.service == "x"
    assert excinfo.value.account == "default"
    assert isinstance(excinfo.value.__cause__, ProviderError)
    assert harness.refresh_calls == 1
    assert store.get("x") is not None


@pytest.mark.asyncio
async def test_missing_registration_is_a_configuration_failure(store: CredentialStore, tmp_path: Path) -> None:
    _seed(store, expiry=_later(minutes=-5))
    harness = Harness(store)

    with pytest.raises(CredentialAcquisitionError) as excinfo:
        await harness.manager.get_credentials(
            "x", ["read"], client_registration_path=tmp_path / "missing.json"
        )

    assert excinfo.value.kind == "configuration"
    assert store.get("x") is not None


@pytest.mark.asyncio
async def test_registration_without_redirect_fails_before_flow(store: CredentialStore, tmp_path: Path) -> None:
    path = tmp_path / "credentials.json"
    path.write_text('{"installed": {"client_id": "a", "client_secret": "b"}}', encoding="utf-8")
    manager = CredentialManager(store, RedirectCheckingFlow(), refresh_retry=NO_WAIT)

    with pytest.raises(CredentialAcquisitionError) as excinfo:
        await manager.get_credentials("x", ["read"], client_registration_path=path)

    assert excinfo.value.kind == "configuration"
    assert store.get("x") is None


@pytest.mark.asyncio
async def test_denied_authorization_is_reported(store: CredentialStore, client_secrets: Path) -> None:
    harness = Harness(store, grant=AuthorizationDeniedError("access_denied"))

    with pytest.raises(CredentialAcquisitionError) as excinfo:
        await harness.manager.get_credentials("x", ["read"], client_registration_path=client_secrets)

    assert excinfo.value.kind == "authorization_flow"
    assert store.get("x") is None


@pytest.mark.asyncio
async def test_reuse_rewrites_required_scopes(store: CredentialStore, client_secrets: Path) -> None:
    first = _seed(store, scopes=("read", "write"), expiry=_later(hours=1))
    harness = Harness(store)

    handle = await harness.manager.get_credentials("x", ["read"], client_registration_path=client_secrets)

    stored = store.get("x")
    assert stored.scopes == ("read",)
    assert stored.created_at == first.created_at
    assert handle.scopes == stored.scopes
    assert handle.access_token == stored.access_token


@pytest.mark.asyncio
async def test_accounts_are_independent(store: CredentialStore, client_secrets: Path) -> None:
    _seed(store, account="work", access_token="WORK", expiry=_later(hours=1))
    harness = Harness(store)

    handle = await harness.manager.get_credentials(
        "x", ["read"], client_registration_path=client_secrets, account="personal"
    )

    assert handle.account == "personal"
    assert store.get("x", "work").access_token == "WORK"
    assert store.get("x", "personal").access_token == "T1"


@pytest.mark.asyncio
async def test_closed_store_is_a_storage_failure(store: CredentialStore, client_secrets: Path) -> None:
    harness = Harness(store)
    store.close()

    with pytest.raises(CredentialAcquisitionError) as excinfo:
        await harness.manager.get_credentials("x", ["read"], client_registration_path=client_secrets)

    assert excinfo.value.kind == "storage"
    assert excinfo.value.service == "x"
    assert isinstance(excinfo.value.__cause__, StoreClosedError)


@pytest.mark.asyncio
async def test_changed_encryption_secret_is_a_storage_failure(tmp_path: Path, client_secrets: Path) -> None:
    path = tmp_path / "encrypted.db"
    with CredentialStore(path, cipher=TokenCipherService(secret="first")) as original:
        _seed(original, expiry=_later(hours=1))

    with CredentialStore(path, cipher=TokenCipherService(secret="second")) as rekeyed:
        harness = Harness(rekeyed)
        with pytest.raises(CredentialAcquisitionError) as excinfo:
            await harness.manager.get_credentials("x", ["read"], client_registration_path=client_secrets)

    assert excinfo.value.kind == "storage"
    assert isinstance(excinfo.value.__cause__, ValueError)
    assert harness.flow.calls == []
