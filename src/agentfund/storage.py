"""
agentfund.storage — Pluggable persistence backends for marketplace records.

Backends: MemoryBackend, SQLiteBackend

Every backend offers ``transaction()``: a re-entrant context manager that
serializes all enclosed reads and writes against other transactions and
discards every enclosed write if the block raises. Marketplace operations
run entirely inside one transaction, so a failed operation never leaves a
partial write behind.
"""

import copy
import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional


# ─── Abstract Backend ──────────────────────────────────────────────

class StorageBackend(ABC):
    """Abstract persistence interface."""

    @abstractmethod
    def save(self, key: str, data: dict) -> None: ...

    @abstractmethod
    def load(self, key: str) -> Optional[dict]: ...

    @abstractmethod
    def delete(self, key: str) -> bool: ...

    @abstractmethod
    def list_keys(self, prefix: str = "") -> list[str]: ...

    @abstractmethod
    def transaction(self): ...

    def exists(self, key: str) -> bool:
        return self.load(key) is not None

    def load_prefix(self, prefix: str) -> list[dict]:
        """Load every record whose key starts with ``prefix``."""
        out = []
        for key in self.list_keys(prefix):
            data = self.load(key)
            if data is not None:
                out.append(data)
        return out

    def close(self) -> None:
        pass


# ─── Memory Backend ────────────────────────────────────────────────

class MemoryBackend(StorageBackend):
    """In-memory dict storage guarded by a re-entrant lock."""

    def __init__(self):
        self._store: dict[str, dict] = {}
        self._lock = threading.RLock()
        self._depth = 0

    def save(self, key: str, data: dict) -> None:
        with self._lock:
            self._store[key] = copy.deepcopy(data)

    def load(self, key: str) -> Optional[dict]:
        with self._lock:
            data = self._store.get(key)
            return copy.deepcopy(data) if data is not None else None

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._store.pop(key, None) is not None

    def list_keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return [k for k in self._store if k.startswith(prefix)]

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._store

    @contextmanager
    def transaction(self) -> Iterator["MemoryBackend"]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return

            # Records are replaced, never mutated in place, so a shallow
            # copy of the index is a complete snapshot.
            snapshot = dict(self._store)
            self._depth = 1
            try:
                yield self
            except BaseException:
                self._store = snapshot
                raise
            finally:
                self._depth = 0


# ─── SQLite Backend ────────────────────────────────────────────────

class SQLiteBackend(StorageBackend):
    """File-based SQLite with WAL mode, thread-safe."""

    def __init__(self, db_path: str = "agentfund.db"):
        self._db_path = db_path
        self._lock = threading.RLock()
        self._depth = 0
        # Autocommit mode; transactions are opened explicitly.
        self._conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                agent_id TEXT,
                created_at TEXT DEFAULT (datetime('now'))
            )
        """)
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_agent ON kv(agent_id)")
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_key_prefix ON kv(key)")

    def save(self, key: str, data: dict) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO kv (key, data, agent_id, created_at) VALUES (?, ?, ?, ?)",
                (key, json.dumps(data), data.get("agent_id"),
                 datetime.now(timezone.utc).isoformat()),
            )

    def load(self, key: str) -> Optional[dict]:
        with self._lock:
            row = self._conn.execute("SELECT data FROM kv WHERE key = ?", (key,)).fetchone()
        return json.loads(row[0]) if row else None

    def delete(self, key: str) -> bool:
        with self._lock:
            cur = self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            return cur.rowcount > 0

    def list_keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT key FROM kv WHERE substr(key, 1, ?) = ?", (len(prefix), prefix)
            ).fetchall()
        return [r[0] for r in rows]

    def exists(self, key: str) -> bool:
        with self._lock:
            row = self._conn.execute("SELECT 1 FROM kv WHERE key = ?", (key,)).fetchone()
        return row is not None

    def load_prefix(self, prefix: str) -> list[dict]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT data FROM kv WHERE substr(key, 1, ?) = ?", (len(prefix), prefix)
            ).fetchall()
        return [json.loads(r[0]) for r in rows]

    @contextmanager
    def transaction(self) -> Iterator["SQLiteBackend"]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return

            self._conn.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield self
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")
            finally:
                self._depth = 0

    def close(self):
        self._conn.close()


def open_backend(database_path: str = "") -> StorageBackend:
    """SQLite when a path is configured, otherwise in-memory."""
    if database_path:
        return SQLiteBackend(database_path)
    return MemoryBackend()


__all__ = [
    "StorageBackend",
    "MemoryBackend",
    "SQLiteBackend",
    "open_backend",
]
