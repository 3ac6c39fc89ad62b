"""In-memory key/value store."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Iterator, Optional

from .base import (
    DatabaseClosedError,
    KeyNotFoundError,
    KeyValueStore,
    KeyValueWriter,
    copy_bytes,
)


@dataclass
class _Pair:
    key: bytes
    value: Optional[bytes]  # None if marked for deletion
    deleted: bool = False


class MemoryDatabase(KeyValueStore):
    """A thread-safe in-memory key/value store."""

    def __init__(self) -> None:
        self._data: Optional[dict[bytes, bytes]] = {}
        self._lock = threading.RLock()

    def _live(self) -> dict[bytes, bytes]:
        if self._data is None:
            raise DatabaseClosedError()
        return self._data

    def close(self) -> None:
        """Drop all data; later access raises DatabaseClosedError."""
        with self._lock:
            self._data = None

    def has(self, key: bytes) -> bool:
        with self._lock:
            return bytes(key) in self._live()

    def get(self, key: bytes) -> bytes:
        with self._lock:
            try:
                return bytes(self._live()[bytes(key)])
            except KeyError:
                raise KeyNotFoundError() from None

    def put(self, key: bytes, value: bytes) -> None:
        with self._lock:
            self._live()[bytes(key)] = bytes(value)

    def delete(self, key: bytes) -> None:
        with self._lock:
            self._live().pop(bytes(key), None)

    def stat(self) -> str:
        with self._lock:
            return f"Memory DB: {len(self._live())} keys stored"

    def sync_key_value(self) -> None:
        with self._lock:
            self._live()

    def delete_range(self, start: bytes, end: bytes) -> None:
        lo, hi = bytes(start or b""), bytes(end or b"")
        with self._lock:
            data = self._live()
            for key in [k for k in data if lo <= k < hi]:
                del data[key]

    def compact(self, start: Optional[bytes] = None,
                limit: Optional[bytes] = None) -> None:
        """Nothing to compact in memory."""

    def new_batch(self) -> "MemoryBatch":
        return MemoryBatch(self)

    def new_batch_with_size(self, size: int) -> "MemoryBatch":
        return MemoryBatch(self)

    def new_iterator(self, prefix: Optional[bytes] = None,
                     start: Optional[bytes] = None) -> "MemoryIterator":
        pre = bytes(prefix or b"")
        first = pre + bytes(start or b"")
        with self._lock:
            data = self._data or {}
            pairs = sorted(
                (_Pair(k, copy_bytes(v)) for k, v in data.items()
                 if k.startswith(pre) and k >= first),
                key=lambda p: p.key,
            )
        return MemoryIterator(pairs)

    def _apply(self, pairs: list[_Pair]) -> None:
        with self._lock:
            data = self._live()
            for pair in pairs:
                if pair.deleted:
                    data.pop(pair.key, None)
                else:
                    data[pair.key] = pair.value


class MemoryBatch(KeyValueWriter):
    """Write-only batch; changes take effect on write(). Not thread-safe."""

    def __init__(self, db: MemoryDatabase) -> None:
        self._db = db
        self._pairs: list[_Pair] = []
        self._size = 0

    def put(self, key: bytes, value: bytes) -> None:
        self._pairs.append(_Pair(bytes(key), bytes(value)))
        self._size += len(key) + len(value)

    def delete(self, key: bytes) -> None:
        self._pairs.append(_Pair(bytes(key), None, deleted=True))
        self._size += len(key)

    def value_size(self) -> int:
        """Total size of the data queued for writing."""
        return self._size

    def write(self) -> None:
        """Commit the queued changes to the database."""
        self._db._apply(self._pairs)

    def reset(self) -> None:
        self._pairs = []
        self._size = 0

    def replay(self, writer: KeyValueWriter) -> None:
        """Apply the queued changes to another writer."""
        for pair in self._pairs:
            if pair.deleted:
                writer.delete(pair.key)
            else:
                writer.put(pair.key, pair.value)


class MemoryIterator:
    """Iterator over a sorted snapshot of key/value pairs."""

    def __init__(self, pairs: list[_Pair]) -> None:
        self._pairs = pairs
        self._idx = -1
        self._err: Optional[Exception] = None

    def next(self) -> bool:
        """Advance; return False once exhausted."""
        if self._idx >= len(self._pairs):
            return False
        self._idx += 1
        return self._idx < len(self._pairs)

    def error(self) -> Optional[Exception]:
        """Return the error met during iteration; a snapshot never records one."""
        return self._err

    def _current(self) -> Optional[_Pair]:
        if 0 <= self._idx < len(self._pairs):
            return self._pairs[self._idx]
        return None

    def key(self) -> Optional[bytes]:
        pair = self._current()
        return pair.key if pair else None

    def value(self) -> Optional[bytes]:
        pair = self._current()
        return pair.value if pair else None

    def release(self) -> None:
        self._idx = -1
        self._pairs = []

    def __iter__(self) -> Iterator[tuple[bytes, bytes]]:
        while self.next():
            yield self.key(), self.value()

    def __enter__(self) -> "MemoryIterator":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()