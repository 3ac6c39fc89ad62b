"""Persistent on-disk key/value store kept in a directory."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Union

from .base import (
    DatabaseClosedError,
    KeyNotFoundError,
    KeyValueStore,
    KeyValueWriter,
    StorageError,
)

_DB_FILE = "kv.sqlite"
_WAL_SUFFIX = "-wal"


@dataclass(frozen=True)
class _Op:
    key: bytes
    value: Optional[bytes]  # None if delete
    deleted: bool = False


def _prefix_end(prefix: bytes) -> Optional[bytes]:
    """Smallest key greater than every key that starts with prefix."""
    trimmed = prefix.rstrip(b"\xff")
    if not trimmed:
        return None
    return trimmed[:-1] + bytes((trimmed[-1] + 1,))


class DiskDatabase(KeyValueStore):
    """A thread-safe key/value store persisted under a directory."""

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)
        self._lock = threading.RLock()
        try:
            self._path.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self._path / _DB_FILE),
                check_same_thread=False,
                isolation_level=None,
            )
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(
                "CREATE TABLE IF NOT EXISTS kv "
                "(key BLOB PRIMARY KEY, value BLOB NOT NULL) WITHOUT ROWID"
            )
        except (OSError, sqlite3.Error) as exc:
            raise StorageError(f"failed to open db: {exc}") from exc
        self._conn: Optional[sqlite3.Connection] = conn

    @property
    def path(self) -> Path:
        """Directory holding the store."""
        return self._path

    def _live(self) -> sqlite3.Connection:
        if self._conn is None:
            raise DatabaseClosedError()
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._live()
            conn.execute("BEGIN")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def close(self) -> None:
        """Close the store; later access raises DatabaseClosedError."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def has(self, key: bytes) -> bool:
        with self._lock:
            row = self._live().execute(
                "SELECT 1 FROM kv WHERE key = ?", (bytes(key),)
            ).fetchone()
        return row is not None

    def get(self, key: bytes) -> bytes:
        with self._lock:
            row = self._live().execute(
                "SELECT value FROM kv WHERE key = ?", (bytes(key),)
            ).fetchone()
        if row is None:
            raise KeyNotFoundError()
        return bytes(row[0])

    def put(self, key: bytes, value: bytes) -> None:
        with self._lock:
            self._live().execute(
                "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                (bytes(key), bytes(value)),
            )

    def delete(self, key: bytes) -> None:
        with self._lock:
            self._live().execute("DELETE FROM kv WHERE key = ?", (bytes(key),))

    def stat(self) -> str:
        with self._lock:
            self._live()
            db_file = self._path / _DB_FILE
            wal_file = self._path / (_DB_FILE + _WAL_SUFFIX)
            db_size = db_file.stat().st_size if db_file.exists() else 0
            wal_size = wal_file.stat().st_size if wal_file.exists() else 0
        return (f"Disk DB size: {db_size} bytes, "
                f"write-ahead log size: {wal_size} bytes")

    def sync_key_value(self) -> None:
        """Flush the write-ahead log into the database file."""
        with self._lock:
            self._live().execute("PRAGMA wal_checkpoint(FULL)")

    def delete_range(self, start: bytes, end: bytes) -> None:
        with self._transaction() as conn:
            conn.execute(
                "DELETE FROM kv WHERE key >= ? AND key < ?",
                (bytes(start or b""), bytes(end or b"")),
            )

    def compact(self, start: Optional[bytes] = None,
                limit: Optional[bytes] = None) -> None:
        """Reclaim unused space in the database file."""
        with self._lock:
            try:
                self._live().execute("VACUUM")
            except sqlite3.Error as exc:
                raise StorageError(f"failed to compact: {exc}") from exc

    def new_batch(self) -> "DiskBatch":
        return DiskBatch(self)

    def new_batch_with_size(self, size: int) -> "DiskBatch":
        return DiskBatch(self)

    def new_iterator(self, prefix: Optional[bytes] = None,
                     start: Optional[bytes] = None) -> "DiskIterator":
        pre = bytes(prefix or b"")
        first = pre + bytes(start or b"")
        upper = _prefix_end(pre)
        with self._lock:
            conn = self._live()
            if upper is None:
                rows = conn.execute(
                    "SELECT key, value FROM kv WHERE key >= ? ORDER BY key",
                    (first,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT key, value FROM kv WHERE key >= ? AND key < ? "
                    "ORDER BY key",
                    (first, upper),
                ).fetchall()
        return DiskIterator([(bytes(k), bytes(v)) for k, v in rows])

    def _apply(self, ops: list[_Op]) -> None:
        with self._transaction() as conn:
            for op in ops:
                if op.deleted:
                    conn.execute("DELETE FROM kv WHERE key = ?", (op.key,))
                else:
                    conn.execute(
                        "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                        (op.key, op.value),
                    )


class DiskBatch(KeyValueWriter):
    """Write-only batch; changes take effect atomically on write()."""

    def __init__(self, db: DiskDatabase) -> None:
        self._db = db
        self._ops: list[_Op] = []
        self._size = 0

    def put(self, key: bytes, value: bytes) -> None:
        self._ops.append(_Op(bytes(key), bytes(value)))
        self._size += len(key) + len(value)

    def delete(self, key: bytes) -> None:
        self._ops.append(_Op(bytes(key), None, deleted=True))
        self._size += len(key)

    def value_size(self) -> int:
        """Total size of the data queued for writing."""
        return self._size

    def write(self) -> None:
        """Commit the queued changes to the database."""
        self._db._apply(self._ops)

    def reset(self) -> None:
        self._ops = []
        self._size = 0

    def replay(self, writer: KeyValueWriter) -> None:
        """Apply the queued changes to another writer."""
        for op in self._ops:
            if op.deleted:
                try:
                    writer.delete(op.key)
                except StorageError as exc:
                    raise StorageError(
                        f"failed to delete key {op.key!r}: {exc}") from exc
            else:
                try:
                    writer.put(op.key, op.value)
                except StorageError as exc:
                    raise StorageError(
                        f"failed to put key {op.key!r}: {exc}") from exc


class DiskIterator:
    """Iterator over a key-ordered snapshot of the store."""

    def __init__(self, rows: list[tuple[bytes, bytes]]) -> None:
        self._rows = rows
        self._idx = -1
        self._err: Optional[Exception] = None

    def next(self) -> bool:
        """Advance; return False once exhausted."""
        if self._idx >= len(self._rows):
            return False
        self._idx += 1
        return self._idx < len(self._rows)

    def error(self) -> Optional[Exception]:
        """Return the error met during iteration, if any."""
        return self._err

    def _current(self) -> Optional[tuple[bytes, bytes]]:
        if 0 <= self._idx < len(self._rows):
            return self._rows[self._idx]
        return None

    def key(self) -> Optional[bytes]:
        row = self._current()
        return row[0] if row else None

    def value(self) -> Optional[bytes]:
        row = self._current()
        return row[1] if row else None

    def release(self) -> None:
        self._idx = -1
        self._rows = []

    def __iter__(self) -> Iterator[tuple[bytes, bytes]]:
        while self.next():
            yield self.key(), self.value()

    def __enter__(self) -> "DiskIterator":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()