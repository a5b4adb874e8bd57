"""
Key-Value Backends — host-provided byte stores under MemoStore

A backend stores opaque bytes under string keys and nothing else:

    get(key)          -> bytes or None when the key is absent
    set(key, value)   -> replace the value atomically
    delete(key)       -> remove the key (no error if absent)
    close()

Implementations:
    MemoryBackend  - dict, for tests and throwaway sessions
    FileBackend    - one file per key, temp file + os.replace
    SQLiteBackend  - single kv_store table, WAL on disk-backed files

Out-of-space conditions surface as QuotaExceededError so the store can report
them the same way as its own quota check.

Author: memopad contributors
"""

from __future__ import annotations

import errno
import logging
import os
import re
import sqlite3
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol

from memopad.errors import MSG_QUOTA_EXCEEDED, QuotaExceededError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_NO_SPACE_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}

# Keys become file names in FileBackend: keep them boring.
_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")


def _validate_key(key: str) -> str:
    """Return *key* if it is a safe storage key, else raise ValueError."""
    if not key or not _KEY_PATTERN.match(key) or key in (".", ".."):
        raise ValueError(
            f"Unsafe storage key: {key!r} - only [A-Za-z0-9_.-] characters allowed"
        )
    return key


class KeyValueBackend(Protocol):
    """Structural type for byte stores accepted by MemoStore."""

    def get(self, key: str) -> Optional[bytes]: ...

    def set(self, key: str, value: bytes) -> None: ...

    def delete(self, key: str) -> None: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class MemoryBackend:
    """Dict-backed store. Values are copied on the way in."""

    def __init__(self, initial: Optional[Dict[str, bytes]] = None):
        self._data: Dict[str, bytes] = dict(initial or {})

    def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# File
# ---------------------------------------------------------------------------


class FileBackend:
    """
    One file per key inside *directory*.

    Writes go to a temporary file in the same directory which is then
    renamed over the target with os.replace, so a reader sees either the old
    bytes or the new ones.
    """

    def __init__(self, directory: str, fsync: bool = True):
        self._dir = Path(directory)
        self._fsync = fsync
        self._dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"FileBackend initialized: {self._dir}")

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, key: str) -> Path:
        return self._dir / f"{_validate_key(key)}.json"

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def set(self, key: str, value: bytes) -> None:
        path = self._path(key)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", suffix=".tmp", dir=str(self._dir))
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(value)
                fh.flush()
                if self._fsync:
                    os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except OSError as exc:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            if exc.errno in _NO_SPACE_ERRNOS:
                raise QuotaExceededError(MSG_QUOTA_EXCEEDED, exc) from exc
            raise
        logger.debug(f"FileBackend wrote {len(value)} bytes to {path}")

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS kv_store (
    key        TEXT PRIMARY KEY,
    value      BLOB NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS schema_meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class SQLiteBackend:
    """
    SQLite-backed key-value store.

    Thread-safe via explicit lock. Each set() is a single INSERT OR REPLACE
    committed on its own, which is the replace boundary seen by readers.
    """

    def __init__(self, db_path: str = ":memory:", wal_mode: bool = True):
        """Open (and create if needed) the database.

        Args:
            db_path: SQLite database path (or ":memory:" for in-memory).
            wal_mode: Enable WAL journal mode for disk-backed databases.
        """
        self._db_path = db_path
        self._lock = threading.Lock()
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        if wal_mode and db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA_SQL)
        self._conn.execute(
            "INSERT OR IGNORE INTO schema_meta (key, value) VALUES ('schema_version', ?)",
            (str(SCHEMA_VERSION),),
        )
        self._conn.execute(
            "INSERT OR IGNORE INTO schema_meta (key, value) VALUES ('created_by', 'memopad')",
        )
        self._conn.commit()
        logger.info(f"SQLiteBackend initialized: {db_path}")

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM kv_store WHERE key=?", (key,)
            ).fetchone()
        if row is None:
            return None
        value = row[0]
        return value.encode("utf-8") if isinstance(value, str) else bytes(value)

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            try:
                self._conn.execute(
                    "INSERT OR REPLACE INTO kv_store (key, value, updated_at) "
                    "VALUES (?, ?, datetime('now'))",
                    (key, sqlite3.Binary(value)),
                )
                self._conn.commit()
            except sqlite3.OperationalError as exc:
                self._conn.rollback()
                if "full" in str(exc).lower():
                    raise QuotaExceededError(MSG_QUOTA_EXCEEDED, exc) from exc
                raise

    def delete(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM kv_store WHERE key=?", (key,))
            self._conn.commit()

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        with self._lock:
            self._conn.close()


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def open_backend(kind: str, path: str = "", wal_mode: bool = True) -> KeyValueBackend:
    """Build a backend by name: ``memory``, ``file`` or ``sqlite``.

    Args:
        kind: Backend name.
        path: Directory for ``file``, database path for ``sqlite``.
        wal_mode: Passed to SQLiteBackend.

    Raises:
        ValueError: On an unknown backend name or a missing path.
    """
    if kind == "memory":
        return MemoryBackend()
    if kind == "file":
        if not path:
            raise ValueError("file backend requires a directory path")
        return FileBackend(path)
    if kind == "sqlite":
        return SQLiteBackend(db_path=path or ":memory:", wal_mode=wal_mode)
    raise ValueError(f"Unknown backend: {kind!r} (expected memory, file or sqlite)")
