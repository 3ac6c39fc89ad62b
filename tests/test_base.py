import pytest

from sparseth.storage.base import (
    DatabaseClosedError,
    KeyNotFoundError,
    KeyValueStore,
    KeyValueWriter,
    StorageError,
    copy_bytes,
)


class _DictWriter(KeyValueWriter):
    def __init__(self):
        self.items = {}

    def put(self, key, value):
        self.items[bytes(key)] = copy_bytes(value)

    def delete(self, key):
        self.items.pop(bytes(key), None)


def test_copy_bytes_none():
    assert copy_bytes(None) is None


def test_copy_bytes_is_independent():
    original = bytearray(b"abc")
    copied = copy_bytes(original)
    original[0] = ord("z")
    assert copied == b"abc"


def test_copy_bytes_empty():
    assert copy_bytes(b"") == b""


def test_error_messages():
    assert str(DatabaseClosedError()) == "storage closed"
    assert str(KeyNotFoundError()) == "key not found"


def test_errors_share_base():
    errors = [KeyNotFoundError(), DatabaseClosedError()]
    messages = [str(err) for err in errors if isinstance(err, StorageError)]
    assert messages == ["key not found", "storage closed"]


def test_interfaces_are_abstract():
    with pytest.raises(TypeError):
        KeyValueStore()
    with pytest.raises(TypeError):
        KeyValueWriter()


def test_writer_subclass_must_implement_delete():
    class PutOnly(KeyValueWriter):
        def put(self, key, value):
            pass

    with pytest.raises(TypeError):
        PutOnly()

    writer = _DictWriter()
    value = copy_bytes(bytearray(b"val"))
    writer.put(b"key", value)
    writer.delete(b"key")
    assert writer.items == {}


def test_writer_subclass_must_implement_put():
    class DeleteOnly(KeyValueWriter):
        def delete(self, key):
            pass

    with pytest.raises(TypeError):
        DeleteOnly()

    writer = _DictWriter()
    source = bytearray(b"val")
    writer.put(b"key", copy_bytes(source))
    source[0] = ord("x")
    assert writer.items == {b"key": b"val"}