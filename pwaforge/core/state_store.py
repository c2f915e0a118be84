"""Persistent key-value state backed by SQLite.

Holds the device identity, cached demo credential, quota window and the
user's own API key.  Read-modify-write sequences (quota increments,
first-time registration) run inside ``transaction()`` so concurrent jobs
in one process, or several processes sharing the database, never lose
updates.

Design:
- One table ``kv(key PRIMARY KEY, value)``; values are text.
- WAL journal mode for concurrent readers.
- ``transaction()`` takes a process lock and ``BEGIN IMMEDIATE`` so the
  write lock is held from the first read.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_KV = """
CREATE TABLE IF NOT EXISTS kv (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class StateTransaction:
    """Accessor bound to one open connection inside ``StateStore.transaction``."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def get(self, key: str, default: str | None = None) -> str | None:
        row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row[0] if row is not None else default

    def get_int(self, key: str, default: int = 0) -> int:
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return int(raw)
        except ValueError:
            return default

    def set(self, key: str, value: str | int) -> None:
        self._conn.execute(
            "INSERT INTO kv (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, str(value)),
        )

    def delete(self, key: str) -> None:
        self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))

    def keys(self) -> list[str]:
        rows = self._conn.execute("SELECT key FROM kv ORDER BY key").fetchall()
        return [r[0] for r in rows]


class StateStore:
    """Small durable key-value store.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            timeout=30.0,
            isolation_level=None,  # explicit BEGIN/COMMIT below
        )
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        conn = self._connect()
        try:
            conn.execute(_CREATE_KV)
        finally:
            conn.close()

    @property
    def db_path(self) -> Path:
        return self._db_path

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[StateTransaction]:
        """Atomic read-modify-write scope.

        Commits on normal exit and rolls back if the block raises.
        """
        with self._lock:
            conn = self._connect()
            try:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    yield StateTransaction(conn)
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
            finally:
                conn.close()

    # ------------------------------------------------------------------
    # Single-statement conveniences
    # ------------------------------------------------------------------

    def get(self, key: str, default: str | None = None) -> str | None:
        with self.transaction() as tx:
            return tx.get(key, default)

    def get_int(self, key: str, default: int = 0) -> int:
        with self.transaction() as tx:
            return tx.get_int(key, default)

    def set(self, key: str, value: str | int) -> None:
        with self.transaction() as tx:
            tx.set(key, value)

    def delete(self, key: str) -> None:
        with self.transaction() as tx:
            tx.delete(key)

    def keys(self) -> list[str]:
        with self.transaction() as tx:
            return tx.keys()

    def __repr__(self) -> str:
        return f"StateStore(db_path={str(self._db_path)!r})"
