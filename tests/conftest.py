"""Pytest configuration shared across the suite."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

try:
    from . import _bootstrap  # noqa: F401
except ImportError:  # pragma: no cover - fallback for rootdir-relative collection
    import _bootstrap  # type: ignore # noqa: F401

from authkeeper.clients.sqlite_store import CredentialStore
from authkeeper.utils.retry import RetryConfig

FAST_RETRY = RetryConfig(max_retries=3, initial_delay=0.001, backoff_multiplier=2.0, max_delay=0.01)


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture
def store(tmp_path: Path):
    with CredentialStore(tmp_path / "tokens.db", retry_config=FAST_RETRY) as credential_store:
        yield credential_store


@pytest.fixture
def client_secrets(tmp_path: Path) -> Path:
    path = tmp_path / "credentials.json"
    path.write_text(
        json.dumps(
            {
                "installed": {
                    "client_id": "test-client-id",
                    "client_secret": "test-client-secret",
                    "redirect_uris": ["http://localhost"],
                }
            }
        ),
        encoding="utf-8",
    )
    return path
