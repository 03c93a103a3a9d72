"""Import tokens saved by older releases as one JSON file per service."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from authkeeper.clients.sqlite_store import CredentialStore
from authkeeper.models.credential import DEFAULT_ACCOUNT, CredentialRecord

logger = logging.getLogger(__name__)

LEGACY_SERVICES = ("calendar", "gmail")


@dataclass(slots=True)
class MigrationResult:
    service: str
    path: Path
    status: str
    error: Optional[str] = None


def legacy_token_path(service: str, home: Path | None = None) -> Path:
    return (home or Path.home()) / f".{service}_token.json"


def _expiry_from_millis(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)


def record_from_legacy(service: str, payload: Dict[str, Any]) -> CredentialRecord:
    """Map an old ``{access_token, refresh_token, expiry_date, scopes}`` file to a record."""
    if not payload.get("access_token"):
        raise ValueError("legacy token file has no access_token")
    return CredentialRecord(
        service=service,
        account=DEFAULT_ACCOUNT,
        access_token=payload["access_token"],
        refresh_token=payload.get("refresh_token") or "",
        expiry=_expiry_from_millis(payload.get("expiry_date")),
        scopes=payload.get("scopes") or payload.get("scope") or (),
    )


def migrate_legacy_tokens(
    store: CredentialStore,
    *,
    home: Path | None = None,
    services: Iterable[str] = LEGACY_SERVICES,
) -> List[MigrationResult]:
    """Copy each legacy file into ``store`` and rename it to ``*.old``.

    A broken file is reported in the results and does not stop the others.
    """
    results: List[MigrationResult] = []
    for service in services:
        path = legacy_token_path(service, home)
        if not path.exists():
            results.append(MigrationResult(service, path, "missing"))
            continue
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            store.upsert(record_from_legacy(service, payload))
            path.rename(path.with_name(path.name + ".old"))
        except (OSError, ValueError) as exc:
            logger.warning("Failed to migrate %s token from %s: %s", service, path, exc)
            results.append(MigrationResult(service, path, "failed", str(exc)))
            continue
        logger.info("Migrated %s token from %s", service, path)
        results.append(MigrationResult(service, path, "migrated"))
    return results


__all__ = [
    "LEGACY_SERVICES",
    "MigrationResult",
    "legacy_token_path",
    "migrate_legacy_tokens",
    "record_from_legacy",
]
