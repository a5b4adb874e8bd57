"""
Tests for memopad.store — MemoStore CRUD, validation, quota and error mapping.

Author: memopad contributors
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from memopad.backends import FileBackend, MemoryBackend, SQLiteBackend
from memopad.errors import (
    MSG_DELETE_FAILED,
    NotFoundError,
    ParseError,
    QuotaExceededError,
    StorageError,
    UnknownStorageError,
)
from memopad.store import STORAGE_KEY, STORAGE_QUOTA_LIMIT, MemoStore
from memopad.types import Memo, generate_id

T0 = datetime(2024, 12, 15, 14, 30, tzinfo=timezone.utc)


class SteppingClock:
    """Deterministic clock: every call returns the next instant."""

    def __init__(self, start=T0, step=timedelta(seconds=1)):
        self.value = start
        self.step = step

    def __call__(self):
        current = self.value
        self.value = self.value + self.step
        return current


class BrokenBackend(MemoryBackend):
    """Backend whose reads or writes fail with a plain exception."""

    def __init__(self, fail_get=False, fail_set=False):
        super().__init__()
        self.fail_get = fail_get
        self.fail_set = fail_set

    def get(self, key):
        if self.fail_get:
            raise IOError("disk unplugged")
        return super().get(key)

    def set(self, key, value):
        if self.fail_set:
            raise IOError("read-only medium")
        super().set(key, value)


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def store(backend):
    return MemoStore(backend, clock=SteppingClock())


def _record(content="", created="2024-12-15T14:30:00.000Z", updated=None, memo_id=None):
    return {
        "id": memo_id or generate_id(),
        "content": content,
        "createdAt": created,
        "updatedAt": updated or created,
    }


def _seed(backend, records):
    backend.set(STORAGE_KEY, json.dumps(records).encode("utf-8"))


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_defaults(self, backend):
        s = MemoStore(backend)
        assert s.key == STORAGE_KEY == "memo-app-data"
        assert s.quota_bytes == STORAGE_QUOTA_LIMIT == 5 * 1024 * 1024
        assert s.backend is backend

    def test_non_positive_quota(self, backend):
        with pytest.raises(ValueError, match="quota_bytes"):
            MemoStore(backend, quota_bytes=0)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestListAll:
    def test_absent_key_is_empty(self, store):
        assert store.list_all() == []

    def test_empty_array(self, store, backend):
        _seed(backend, [])
        assert store.list_all() == []

    def test_sorted_by_updated_desc(self, store, backend):
        _seed(backend, [
            _record("old", updated="2024-12-15T10:00:00.000Z", created="2024-12-15T10:00:00.000Z"),
            _record("new", updated="2024-12-15T12:00:00.000Z", created="2024-12-15T10:00:00.000Z"),
            _record("mid", updated="2024-12-15T11:00:00.000Z", created="2024-12-15T10:00:00.000Z"),
        ])
        assert [m.content for m in store.list_all()] == ["new", "mid", "old"]

    def test_ties_keep_stored_order(self, store, backend):
        _seed(backend, [_record("a"), _record("b"), _record("c")])
        assert [m.content for m in store.list_all()] == ["a", "b", "c"]

    def test_invalid_json(self, store, backend):
        backend.set(STORAGE_KEY, b"{not json")
        with pytest.raises(ParseError) as exc_info:
            store.list_all()
        assert exc_info.value.kind == "ParseError"

    def test_invalid_utf8(self, store, backend):
        backend.set(STORAGE_KEY, b"\xff\xfe[]")
        with pytest.raises(ParseError):
            store.list_all()

    def test_not_an_array(self, store, backend):
        backend.set(STORAGE_KEY, b'{"memos": []}')
        with pytest.raises(ParseError, match="array"):
            store.list_all()

    def test_one_bad_record_fails_whole_read(self, store, backend):
        bad = _record("bad")
        bad["id"] = "not-a-uuid"
        _seed(backend, [_record("good"), bad])
        with pytest.raises(ParseError, match="record 1"):
            store.list_all()

    def test_updated_before_created_is_invalid(self, store, backend):
        _seed(backend, [_record(created="2024-12-15T10:00:00Z", updated="2024-12-15T09:00:00Z")])
        with pytest.raises(ParseError):
            store.list_all()

    def test_backend_failure_is_unknown(self):
        s = MemoStore(BrokenBackend(fail_get=True))
        with pytest.raises(UnknownStorageError) as exc_info:
            s.list_all()
        assert exc_info.value.kind == "Unknown"
        assert isinstance(exc_info.value.cause, IOError)


class TestGetById:
    def test_found(self, store):
        memo = store.create("hello")
        assert store.get_by_id(memo.id) == memo

    def test_absent(self, store):
        store.create("x")
        assert store.get_by_id(generate_id()) is None

    def test_malformed_id(self, store):
        assert store.get_by_id("../../etc/passwd") is None

    def test_parse_error_propagates(self, store, backend):
        backend.set(STORAGE_KEY, b"garbage")
        with pytest.raises(ParseError):
            store.get_by_id(generate_id())


class TestSizeEstimate:
    def test_empty(self, store):
        assert store.size_estimate() == 0

    def test_matches_stored_bytes(self, store, backend):
        store.create("héllo")
        assert store.size_estimate() == len(backend.get(STORAGE_KEY))


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


class TestCreate:
    def test_create_persists(self, store, backend):
        memo = store.create("first")
        data = json.loads(backend.get(STORAGE_KEY))
        assert data == [memo.to_dict()]

    def test_timestamps_equal(self, store):
        memo = store.create()
        assert memo.content == ""
        assert memo.created_at == memo.updated_at == T0

    def test_appends(self, store):
        a = store.create("a")
        b = store.create("b")
        ids = {m.id for m in store.list_all()}
        assert ids == {a.id, b.id}
        assert store.list_all()[0].id == b.id

    def test_unique_ids(self, store):
        ids = {store.create(str(i)).id for i in range(20)}
        assert len(ids) == 20

    def test_quota_exceeded_leaves_store_untouched(self, backend):
        s = MemoStore(backend, quota_bytes=300)
        s.create("small")
        before = backend.get(STORAGE_KEY)
        with pytest.raises(QuotaExceededError) as exc_info:
            s.create("x" * 400)
        assert exc_info.value.kind == "QuotaExceeded"
        assert backend.get(STORAGE_KEY) == before

    def test_compact_utf8_encoding(self, store, backend):
        store.create("日本語")
        raw = backend.get(STORAGE_KEY)
        assert "日本語".encode("utf-8") in raw
        assert b", " not in raw


class TestUpdate:
    def test_content_changes(self, store):
        memo = store.create("before")
        updated = store.update(memo.id, {"content": "after"})
        assert updated.content == "after"
        assert updated.id == memo.id
        assert updated.created_at == memo.created_at
        assert updated.updated_at > memo.updated_at
        assert store.get_by_id(memo.id).content == "after"

    def test_same_content_twice(self, store):
        memo = store.create("x")
        first = store.update(memo.id, {"content": "y"})
        second = store.update(memo.id, {"content": "y"})
        assert second.content == first.content
        assert second.created_at == first.created_at
        assert second.updated_at > first.updated_at
        assert len(store.list_all()) == 1

    def test_immutable_fields_ignored(self, store):
        memo = store.create("x")
        other = generate_id()
        updated = store.update(memo.id, {
            "id": other,
            "createdAt": "2000-01-01T00:00:00Z",
            "content": "y",
        })
        assert updated.id == memo.id
        assert updated.created_at == memo.created_at
        assert store.get_by_id(other) is None

    def test_unknown_fields_ignored(self, store):
        memo = store.create("x")
        assert store.update(memo.id, {"title": "nope"}).content == "x"

    def test_unknown_id(self, store):
        store.create("x")
        with pytest.raises(NotFoundError) as exc_info:
            store.update(generate_id(), {"content": "y"})
        assert exc_info.value.kind == "NotFound"

    def test_malformed_id(self, store):
        with pytest.raises(NotFoundError):
            store.update("nope", {"content": "y"})

    def test_updated_at_never_goes_backwards(self, backend):
        clock = SteppingClock(step=timedelta(seconds=-10))
        s = MemoStore(backend, clock=clock)
        memo = s.create("x")
        updated = s.update(memo.id, {"content": "y"})
        assert updated.updated_at >= memo.updated_at

    def test_quota_on_update(self, backend):
        s = MemoStore(backend, quota_bytes=300)
        memo = s.create("x")
        with pytest.raises(QuotaExceededError):
            s.update(memo.id, {"content": "y" * 500})
        assert s.get_by_id(memo.id).content == "x"

    def test_backend_write_failure(self):
        b = BrokenBackend()
        s = MemoStore(b)
        memo = s.create("x")
        b.fail_set = True
        with pytest.raises(UnknownStorageError):
            s.update(memo.id, {"content": "y"})


class TestUpdateMany:
    def test_single_write(self, store, backend):
        a = store.create("a")
        b = store.create("b")
        writes = []
        original_set = backend.set
        backend.set = lambda key, value: (writes.append(key), original_set(key, value))
        updated = store.update_many({a.id: {"content": "a2"}, b.id: {"content": "b2"}})
        assert [m.id for m in updated] == [a.id, b.id]
        assert [m.content for m in updated] == ["a2", "b2"]
        assert writes == [STORAGE_KEY]
        assert store.get_by_id(a.id).content == "a2"
        assert store.get_by_id(b.id).content == "b2"

    def test_empty_is_noop(self, store, backend):
        assert store.update_many({}) == []
        assert backend.get(STORAGE_KEY) is None

    def test_unknown_id_writes_nothing(self, store):
        a = store.create("a")
        with pytest.raises(NotFoundError):
            store.update_many({a.id: {"content": "a2"}, generate_id(): {"content": "x"}})
        assert store.get_by_id(a.id).content == "a"

    def test_malformed_id_writes_nothing(self, store):
        a = store.create("a")
        with pytest.raises(NotFoundError):
            store.update_many({a.id: {"content": "a2"}, "nope": {"content": "x"}})
        assert store.get_by_id(a.id).content == "a"


class TestRemove:
    def test_remove(self, store):
        a = store.create("a")
        b = store.create("b")
        store.remove(a.id)
        assert [m.id for m in store.list_all()] == [b.id]

    def test_remove_unknown(self, store):
        with pytest.raises(NotFoundError):
            store.remove(generate_id())

    def test_remove_last_leaves_empty_array(self, store, backend):
        memo = store.create()
        store.remove(memo.id)
        assert backend.get(STORAGE_KEY) == b"[]"
        assert store.list_all() == []

    def test_delete_failure_message(self):
        b = BrokenBackend()
        s = MemoStore(b)
        memo = s.create("x")
        b.fail_set = True
        with pytest.raises(UnknownStorageError) as exc_info:
            s.remove(memo.id)
        assert str(exc_info.value) == MSG_DELETE_FAILED


class TestPersistAndClear:
    def test_persist_returns_size(self, store, backend):
        size = store.persist([Memo(content="x")])
        assert size == len(backend.get(STORAGE_KEY))

    def test_persist_replaces_whole_value(self, store):
        store.create("a")
        replacement = Memo(content="only")
        store.persist([replacement])
        assert store.list_all() == [replacement]

    def test_clear(self, store, backend):
        store.create("a")
        store.clear()
        assert backend.get(STORAGE_KEY) is None
        assert store.list_all() == []

    def test_errors_share_base_class(self, backend):
        s = MemoStore(backend, quota_bytes=10)
        with pytest.raises(StorageError):
            s.create("way too long for ten bytes")


# ---------------------------------------------------------------------------
# Durable backends
# ---------------------------------------------------------------------------


class TestDurableBackends:
    def test_file_reopen(self, tmp_path):
        first = MemoStore(FileBackend(str(tmp_path)))
        memo = first.create("keep me")
        second = MemoStore(FileBackend(str(tmp_path)))
        assert second.get_by_id(memo.id) == memo

    def test_sqlite_reopen(self, tmp_path):
        db = str(tmp_path / "memos.db")
        first = MemoStore(SQLiteBackend(db))
        memo = first.create("keep me")
        first.close()
        second = MemoStore(SQLiteBackend(db))
        assert second.list_all() == [memo]
        second.close()

    def test_custom_key(self, tmp_path):
        backend = FileBackend(str(tmp_path))
        MemoStore(backend, key="work").create("w")
        assert MemoStore(backend).list_all() == []
        assert (tmp_path / "work.json").exists()
