import io

import pytest

from venotes.errors import BackendError, NotFound
from venotes.storage.local_storage import LocalStorageManager


class FailingStream(io.RawIOBase):
    """Yields some bytes, then raises."""

    def __init__(self):
        self.calls = 0

    def readable(self):
        return True

    def read(self, size=-1):
        self.calls += 1
        if self.calls == 1:
            return b"partial"
        raise IOError("connection reset")


def test_put_get_roundtrip(store):
    assert not store.exists("abc.txt")
    assert store.put("abc.txt", io.BytesIO(b"hello")) == "abc.txt"
    assert store.exists("abc.txt")
    with store.get("abc.txt") as stream:
        assert stream.read() == b"hello"


def test_put_overwrites_existing_key(store):
    store.put("k", io.BytesIO(b"one"))
    store.put("k", io.BytesIO(b"two"))
    with store.get("k") as stream:
        assert stream.read() == b"two"


def test_get_missing_raises_not_found(store):
    with pytest.raises(NotFound):
        store.get("missing")
    # NotFound is also a FileNotFoundError
    with pytest.raises(FileNotFoundError):
        store.get("missing")


def test_delete_is_idempotent(store):
    store.put("k", io.BytesIO(b"data"))
    store.delete("k")
    assert not store.exists("k")
    store.delete("k")


def test_failed_put_leaves_nothing_behind(store, settings):
    with pytest.raises(BackendError):
        store.put("broken.bin", FailingStream())

    assert not store.exists("broken.bin")
    assert list(settings.local_path.iterdir()) == []


def test_failed_put_keeps_previous_object(store):
    store.put("k", io.BytesIO(b"original"))
    with pytest.raises(BackendError):
        store.put("k", FailingStream())
    with store.get("k") as stream:
        assert stream.read() == b"original"


@pytest.mark.parametrize("key", ["", ".", "..", "a/b", "..\\x", "a\x00b"])
def test_rejects_unsafe_keys(store, key):
    with pytest.raises(ValueError):
        store.put(key, io.BytesIO(b"x"))


def test_storage_info_counts_objects(store):
    store.put("a", io.BytesIO(b"12345"))
    store.put("b", io.BytesIO(b"123"))
    info = store.get_storage_info()
    assert info["backend"] == "local"
    assert info["object_count"] == 2
    assert info["total_size"] == 8


def test_creates_base_directory(tmp_path):
    target = tmp_path / "nested" / "uploads"
    LocalStorageManager(str(target))
    assert target.is_dir()
