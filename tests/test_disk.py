import pytest

from sparseth.storage.base import DatabaseClosedError, KeyNotFoundError
from sparseth.storage.disk import DiskDatabase
from sparseth.storage.memory import MemoryDatabase


@pytest.fixture
def db(tmp_path):
    database = DiskDatabase(tmp_path / "db")
    yield database
    database.close()


ITEMS = {
    b"alpha": b"alpha_val",
    b"bravo": b"bravo_val",
    b"charlie": b"charlie_val",
    b"delta": b"delta_val",
}


def test_new_creates_empty_db(tmp_path):
    database = DiskDatabase(tmp_path / "fresh")
    try:
        assert database.has(b"some_key") is False
        assert database.stat().startswith("Disk DB size:")
    finally:
        database.close()


def test_consecutive_calls_fail_after_close(tmp_path):
    database = DiskDatabase(tmp_path / "db")
    database.close()
    with pytest.raises(DatabaseClosedError):
        database.has(b"some_key")


def test_data_persists_after_reopen(tmp_path):
    path = tmp_path / "db"
    with DiskDatabase(path) as database:
        database.put(b"key", b"val")
    with DiskDatabase(path) as database:
        assert database.get(b"key") == b"val"


def test_has_no_key_in_empty_db(db):
    assert db.has(b"some_key") is False


def test_has_non_existing_key(db):
    db.put(b"existing_key", b"existing_value")
    assert db.has(b"non_existing_key") is False


def test_has_existing_key(db):
    db.put(b"existing_key", b"existing_value")
    assert db.has(b"existing_key") is True


def test_get_non_existing_key_raises(db):
    with pytest.raises(KeyNotFoundError):
        db.get(b"non_existing_key")


def test_get_existing_key(db):
    db.put(b"key", b"val")
    assert db.get(b"key") == b"val"


def test_put_empty_value(db):
    db.put(b"key", b"")
    assert db.get(b"key") == b""


def test_put_overrides_value(db):
    db.put(b"key", b"first")
    db.put(b"key", b"second")
    assert db.get(b"key") == b"second"


def test_delete_existing_key(db):
    db.put(b"key", b"val")
    db.delete(b"key")
    assert db.has(b"key") is False


def test_delete_range_removes_key(db):
    db.put(b"key", b"val")
    db.delete_range(b"key", b"zzz")
    assert db.has(b"key") is False


def test_delete_range_only_within_range(db):
    expected = {b"alpha": True, b"bravo": False, b"charlie": False, b"delta": True}
    for key in expected:
        db.put(key, b"val")
    db.delete_range(b"bravo", b"delta")
    assert {key: db.has(key) for key in expected} == expected


def test_sync_and_compact_keep_data(db):
    db.put(b"key", b"val")
    db.sync_key_value()
    db.compact()
    assert db.get(b"key") == b"val"


def test_batch_write_inserts(db):
    batch = db.new_batch()
    batch.put(b"key", b"val")
    batch.write()
    assert db.get(b"key") == b"val"


def test_batch_changes_only_after_write(db):
    batch = db.new_batch()
    batch.put(b"key", b"val")
    with pytest.raises(KeyNotFoundError):
        db.get(b"key")
    batch.write()
    assert db.get(b"key") == b"val"


def test_batch_delete(db):
    db.put(b"key", b"val")
    batch = db.new_batch()
    batch.delete(b"key")
    batch.write()
    assert db.has(b"key") is False


def test_batch_value_size_and_reset(db):
    batch = db.new_batch_with_size(4)
    batch.put(b"key", b"val")
    batch.delete(b"ab")
    assert batch.value_size() == 8
    batch.reset()
    assert batch.value_size() == 0


def test_batch_write_fails_after_close(tmp_path):
    database = DiskDatabase(tmp_path / "db")
    batch = database.new_batch()
    batch.put(b"key", b"val")
    database.close()
    with pytest.raises(DatabaseClosedError):
        batch.write()


def test_batch_replay(db):
    db.put(b"del_key", b"del_val")
    batch = db.new_batch()
    batch.delete(b"del_key")
    batch.put(b"key", b"val")
    batch.replay(db)
    assert db.has(b"del_key") is False
    assert db.get(b"key") == b"val"


def test_batch_replay_into_other_store(db):
    batch = db.new_batch()
    batch.put(b"key", b"val")
    other = MemoryDatabase()
    batch.replay(other)
    assert other.get(b"key") == b"val"
    assert db.has(b"key") is False


def test_iterator_exhausted_on_empty_db(db):
    it = db.new_iterator(None, None)
    assert it.next() is False
    assert it.key() is None


def test_iterator_exhausted_if_no_keys_match(db):
    db.put(b"first", b"first_val")
    db.put(b"second", b"second_val")
    it = db.new_iterator(b"non_existing", b"non_existing")
    assert it.next() is False


def test_iterator_without_errors(db):
    for i in range(10):
        db.put(f"key-{i}".encode(), f"val-{i}".encode())
    it = db.new_iterator(None, None)
    errors = []
    count = 0
    while it.next():
        errors.append(it.error())
        count += 1
    assert count == 10
    assert errors == [None] * 10


def test_iterator_all_keys_if_nil_range(db):
    for i in range(10):
        db.put(f"key-{i}".encode(), f"val-{i}".encode())
    with db.new_iterator() as it:
        assert len(list(it)) == 10


def test_iterator_binary_alphabetical_order(db):
    for key, val in ITEMS.items():
        db.put(key, val)
    it = db.new_iterator(None, None)
    seen = []
    while it.next():
        seen.append((it.key(), it.value()))
    assert seen == sorted(ITEMS.items())


def test_iterator_skips_keys_before_start(db):
    for key, val in ITEMS.items():
        db.put(key, val)
    with db.new_iterator(None, b"charlie") as it:
        assert list(it) == [(b"charlie", b"charlie_val"), (b"delta", b"delta_val")]


def test_iterator_respects_prefix(db):
    db.put(b"a\xff\x01", b"1")
    db.put(b"a\xff\x02", b"2")
    db.put(b"b", b"3")
    db.put(b"a", b"4")
    with db.new_iterator(b"a\xff", None) as it:
        assert [k for k, _ in it] == [b"a\xff\x01", b"a\xff\x02"]


def test_iterator_release_clears(db):
    db.put(b"key", b"val")
    it = db.new_iterator()
    assert it.next() is True
    it.release()
    assert it.key() is None
    assert it.value() is None