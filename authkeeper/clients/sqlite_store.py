"""SQLite-backed credential store shared by concurrent processes.

Every public operation goes through :func:`run_with_retry` so that a
``database is locked`` error raised while another process writes is retried
with backoff instead of surfacing. SQLite's own busy timeout absorbs short
waits first; the retry schedule covers contention that outlasts it.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import closing, contextmanager
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterable, Iterator, Optional, TypeVar

from authkeeper.core.errors import StoreClosedError
from authkeeper.models.credential import (
    DEFAULT_ACCOUNT,
    CredentialRecord,
    normalize_scopes,
    normalize_service,
    utcnow,
)
from authkeeper.utils.retry import RetryConfig, run_with_retry

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from authkeeper.services.token_cipher import TokenCipherService

T = TypeVar("T")

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS tokens (
    service TEXT NOT NULL,
    account TEXT NOT NULL,
    access_token TEXT NOT NULL,
    refresh_token TEXT NOT NULL,
    expiry TEXT,
    scopes TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (service, account)
)
"""

_INDEX = "CREATE INDEX IF NOT EXISTS idx_tokens_service ON tokens(service)"

_UPSERT = """
INSERT INTO tokens (
    service, account, access_token, refresh_token,
    expiry, scopes, created_at, updated_at
) VALUES (
    :service, :account, :access_token, :refresh_token,
    :expiry, :scopes, :now, :now
)
ON CONFLICT(service, account) DO UPDATE SET
    access_token = excluded.access_token,
    refresh_token = excluded.refresh_token,
    expiry = excluded.expiry,
    scopes = excluded.scopes,
    updated_at = excluded.updated_at
"""


def _ensure_directory(db_path: Path) -> None:
    if db_path.parent and not db_path.parent.exists():
        db_path.parent.mkdir(parents=True, exist_ok=True)


def _to_text(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_text(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class CredentialStore:
    """Durable mapping from (service, account) to a :class:`CredentialRecord`."""

    def __init__(
        self,
        db_path: Path | str,
        *,
        cipher: TokenCipherService | None = None,
        retry_config: RetryConfig | None = None,
        busy_timeout: float = 5.0,
    ) -> None:
        self._db_path = Path(db_path).expanduser()
        self._cipher = cipher
        self._retry = retry_config or RetryConfig()
        self._busy_timeout = busy_timeout
        self._closed = False
        _ensure_directory(self._db_path)
        self._retry_call(self._enable_wal)
        self._retry_call(self._ensure_schema)

    @property
    def path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._db_path,
            timeout=self._busy_timeout,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success, roll back on error, always close."""
        if self._closed:
            raise StoreClosedError(f"Credential store {self._db_path} is closed")
        with closing(self._connect()) as conn:
            with conn:
                yield conn

    def _retry_call(self, operation: Callable[[], T]) -> T:
        return run_with_retry(operation, config=self._retry, label=f"Credential store {self._db_path.name}")

    def _enable_wal(self) -> None:
        with self._transaction() as conn:
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        with self._transaction() as conn:
            conn.execute(_SCHEMA)
            conn.execute(_INDEX)

    def _seal(self, value: str) -> str:
        return self._cipher.encrypt(value) if self._cipher else value

    def _unseal(self, value: str) -> str:
        return self._cipher.decrypt(value) if self._cipher else value

    def _row_to_record(self, row: sqlite3.Row) -> CredentialRecord:
        return CredentialRecord(
            service=row["service"],
            account=row["account"],
            access_token=self._unseal(row["access_token"]),
            refresh_token=self._unseal(row["refresh_token"]),
            expiry=_from_text(row["expiry"]),
            scopes=json.loads(row["scopes"]),
            created_at=_from_text(row["created_at"]),
            updated_at=_from_text(row["updated_at"]),
        )

    def _select(self, conn: sqlite3.Connection, service: str, account: str) -> Optional[CredentialRecord]:
        row = conn.execute(
            "SELECT * FROM tokens WHERE service = ? AND account = ?",
            (service, account),
        ).fetchone()
        return self._row_to_record(row) if row else None

    def upsert(self, record: CredentialRecord) -> CredentialRecord:
        """Insert or replace the row for ``record.key`` and return what was stored.

        ``created_at`` survives updates; ``updated_at`` is always now. The
        scope set is overwritten, never merged with the previous one.
        """

        def _write() -> CredentialRecord:
            params = {
                "service": record.service,
                "account": record.account,
                "access_token": self._seal(record.access_token),
                "refresh_token": self._seal(record.refresh_token),
                "expiry": _to_text(record.expiry),
                "scopes": json.dumps(list(record.scopes)),
                "now": utcnow().isoformat(),
            }
            with self._transaction() as conn:
                conn.execute(_UPSERT, params)
                stored = self._select(conn, record.service, record.account)
            if stored is None:
                raise sqlite3.DatabaseError(
                    f"Row for {record.service} (account: {record.account}) missing after upsert"
                )
            return stored

        stored = self._retry_call(_write)
        logger.debug("Saved credential for %s (account: %s)", stored.service, stored.account)
        return stored

    def get(self, service: str, account: str = DEFAULT_ACCOUNT) -> Optional[CredentialRecord]:
        def _read() -> Optional[CredentialRecord]:
            with self._transaction() as conn:
                return self._select(conn, normalize_service(service), account)

        return self._retry_call(_read)

    def list(self, service: Optional[str] = None) -> list[CredentialRecord]:
        """All records ordered by (service, account), optionally for one service."""

        def _read() -> list[CredentialRecord]:
            with self._transaction() as conn:
                if service:
                    rows = conn.execute(
                        "SELECT * FROM tokens WHERE service = ? ORDER BY service, account",
                        (normalize_service(service),),
                    ).fetchall()
                else:
                    rows = conn.execute("SELECT * FROM tokens ORDER BY service, account").fetchall()
            return [self._row_to_record(row) for row in rows]

        return self._retry_call(_read)

    def delete(self, service: str, account: str = DEFAULT_ACCOUNT) -> bool:
        """Remove the row; True when one existed."""

        def _write() -> bool:
            with self._transaction() as conn:
                cursor = conn.execute(
                    "DELETE FROM tokens WHERE service = ? AND account = ?",
                    (normalize_service(service), account),
                )
                return cursor.rowcount > 0

        deleted = self._retry_call(_write)
        if deleted:
            logger.debug("Deleted credential for %s (account: %s)", service, account)
        return deleted

    def has_required_scopes(
        self,
        service: str,
        required_scopes: Iterable[str],
        account: str = DEFAULT_ACCOUNT,
    ) -> bool:
        record = self.get(service, account)
        if record is None:
            return False
        return record.has_scopes(normalize_scopes(required_scopes))

    def close(self) -> None:
        self._closed = True

    def __enter__(self) -> "CredentialStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["CredentialStore"]
