"""
Factory functions that assemble the store, flow runner and manager from settings.

Nothing here is cached: each caller owns the objects it builds and closes
the store when done.
"""

from __future__ import annotations

from datetime import timedelta

from authkeeper.clients.sqlite_store import CredentialStore
from authkeeper.core.config import AppSettings, get_settings
from authkeeper.services.authorization_flow import AuthorizationFlowRunner
from authkeeper.services.credential_manager import CredentialManager
from authkeeper.services.token_cipher import TokenCipherService
from authkeeper.utils.retry import RetryConfig


def build_token_cipher(settings: AppSettings) -> TokenCipherService | None:
    """Provide the at-rest cipher when a secret is configured."""
    secret = settings.token_encryption_secret
    if not secret:
        return None
    return TokenCipherService(secret=secret)


def build_store_retry_config(settings: AppSettings) -> RetryConfig:
    retry = settings.store_retry
    return RetryConfig(
        max_retries=retry.max_retries,
        initial_delay=retry.initial_delay,
        backoff_multiplier=retry.backoff_multiplier,
        max_delay=retry.max_delay,
    )


def build_credential_store(settings: AppSettings | None = None) -> CredentialStore:
    """Open the shared SQLite credential store."""
    settings = settings or get_settings()
    return CredentialStore(
        settings.store_path,
        cipher=build_token_cipher(settings),
        retry_config=build_store_retry_config(settings),
        busy_timeout=settings.busy_timeout_seconds,
    )


def build_flow_runner(settings: AppSettings | None = None) -> AuthorizationFlowRunner:
    settings = settings or get_settings()
    return AuthorizationFlowRunner(timeout=settings.authorization_timeout_seconds)


def build_credential_manager(
    store: CredentialStore,
    settings: AppSettings | None = None,
) -> CredentialManager:
    """Build a manager around a store the caller owns."""
    settings = settings or get_settings()
    return CredentialManager(
        store,
        build_flow_runner(settings),
        refresh_window=timedelta(seconds=settings.refresh_window_seconds),
    )


__all__ = [
    "build_credential_manager",
    "build_credential_store",
    "build_flow_runner",
    "build_store_retry_config",
    "build_token_cipher",
]
