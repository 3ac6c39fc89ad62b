"""Common interface and errors of the key/value stores."""

from __future__ import annotations

import abc
from typing import Any


class StorageError(Exception):
    """Base class of storage errors."""


class DatabaseClosedError(StorageError):
    """Raised when the storage is already closed."""

    def __init__(self, message: str = "storage closed") -> None:
        super().__init__(message)


class KeyNotFoundError(StorageError):
    """Raised when the requested key is not in the storage."""

    def __init__(self, message: str = "key not found") -> None:
        super().__init__(message)


def copy_bytes(b: bytes | None) -> bytes | None:
    """Return an independent copy of b, or None if b is None."""
    return None if b is None else bytes(b)


class KeyValueWriter(abc.ABC):
    """Anything that accepts puts and deletes."""

    @abc.abstractmethod
    def put(self, key: bytes, value: bytes) -> None: ...

    @abc.abstractmethod
    def delete(self, key: bytes) -> None: ...


class KeyValueStore(KeyValueWriter):
    """A byte-keyed store with batches, ordered iteration and range deletion."""

    @abc.abstractmethod
    def has(self, key: bytes) -> bool: ...

    @abc.abstractmethod
    def get(self, key: bytes) -> bytes:
        """Return the value of the key; raise KeyNotFoundError if absent."""

    @abc.abstractmethod
    def stat(self) -> str: ...

    @abc.abstractmethod
    def sync_key_value(self) -> None: ...

    @abc.abstractmethod
    def delete_range(self, start: bytes, end: bytes) -> None:
        """Delete every key in [start, end)."""

    @abc.abstractmethod
    def new_batch(self) -> Any: ...

    @abc.abstractmethod
    def new_batch_with_size(self, size: int) -> Any: ...

    @abc.abstractmethod
    def new_iterator(self, prefix: bytes | None = None,
                     start: bytes | None = None) -> Any:
        """Iterate in key order over keys with prefix, from prefix + start."""

    @abc.abstractmethod
    def compact(self, start: bytes | None = None,
                limit: bytes | None = None) -> None: ...

    @abc.abstractmethod
    def close(self) -> None: ...

    def __enter__(self) -> "KeyValueStore":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()