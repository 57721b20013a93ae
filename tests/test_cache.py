"""
Tests for the file-backed fetch cache.
"""
from __future__ import annotations

import json
import shutil
import time
from unittest.mock import patch

import pytest

from treefetch.cache import Cache, FileCache, cache_key_digest
from treefetch.errors import CacheConflictError


@pytest.fixture
def tree(tmp_path):
    root = tmp_path / "tree"
    root.mkdir()
    (root / "file").write_text("content")
    return root


@pytest.fixture
def store_path(store, tree):
    return store.add_to_store("source", tree)


IMMUTABLE_KEY = {"type": "git", "name": "source", "rev": "0" * 40}
MUTABLE_KEY = {"type": "git", "name": "source", "url": "https://example.org/r", "ref": "main"}
INFO = {"rev": "0" * 40, "lastModified": 1700000000, "narHash": "sha256-abc"}


class TestFileCache:
    """Test lookup and insertion semantics."""

    def test_implements_protocol(self, tmp_path):
        """Test that FileCache satisfies the Cache protocol."""
        assert isinstance(FileCache(tmp_path), Cache)

    def test_miss(self, tmp_path, store):
        """Test lookup of an absent key."""
        assert FileCache(tmp_path / "c").lookup(store, MUTABLE_KEY) is None

    def test_hit(self, tmp_path, store, store_path):
        """Test that an added entry is returned with its nar hash."""
        cache = FileCache(tmp_path / "c")
        cache.add(store, MUTABLE_KEY, INFO, store_path, locked=False)

        hit = cache.lookup(store, MUTABLE_KEY)

        assert hit is not None
        info, found = hit
        assert info == INFO
        assert found == store_path
        assert found.nar_hash == "sha256-abc"

    def test_key_order_irrelevant(self, tmp_path, store, store_path):
        """Test that keys are compared as sets of attributes."""
        cache = FileCache(tmp_path / "c")
        cache.add(store, MUTABLE_KEY, INFO, store_path, locked=False)
        reordered = dict(reversed(list(MUTABLE_KEY.items())))
        assert cache.lookup(store, reordered) is not None
        assert cache_key_digest(reordered) == cache_key_digest(MUTABLE_KEY)

    def test_zero_ttl_always_expires(self, tmp_path, store, store_path):
        """Test that unlocked entries are stale immediately with ttl=0."""
        cache = FileCache(tmp_path / "c", ttl=0)
        cache.add(store, MUTABLE_KEY, INFO, store_path, locked=False)
        assert cache.lookup(store, MUTABLE_KEY) is None

    def test_unlocked_entry_expires_after_ttl(self, tmp_path, store, store_path):
        """Test that entries older than the TTL are misses."""
        cache = FileCache(tmp_path / "c", ttl=60)
        cache.add(store, MUTABLE_KEY, INFO, store_path, locked=False)
        assert cache.lookup(store, MUTABLE_KEY) is not None

        with patch("treefetch.cache.time.time", return_value=time.time() + 61):
            assert cache.lookup(store, MUTABLE_KEY) is None

    def test_locked_entry_never_expires(self, tmp_path, store, store_path):
        """Test that locked entries ignore the TTL."""
        cache = FileCache(tmp_path / "c", ttl=0)
        cache.add(store, IMMUTABLE_KEY, INFO, store_path, locked=True)

        with patch("treefetch.cache.time.time", return_value=time.time() + 10 ** 9):
            assert cache.lookup(store, IMMUTABLE_KEY) is not None

    def test_locked_identical_readd_is_noop(self, tmp_path, store, store_path):
        """Test that re-adding the same locked content succeeds."""
        cache = FileCache(tmp_path / "c")
        cache.add(store, IMMUTABLE_KEY, INFO, store_path, locked=True)
        cache.add(store, IMMUTABLE_KEY, dict(INFO), store_path, locked=True)
        assert cache.lookup(store, IMMUTABLE_KEY)[0] == INFO

    def test_locked_conflict(self, tmp_path, store, store_path):
        """Test that a locked entry cannot be replaced with different content."""
        cache = FileCache(tmp_path / "c")
        cache.add(store, IMMUTABLE_KEY, INFO, store_path, locked=True)
        with pytest.raises(CacheConflictError):
            cache.add(store, IMMUTABLE_KEY, {**INFO, "lastModified": 1}, store_path, locked=True)

    def test_unlocked_entry_replaced(self, tmp_path, store, store_path):
        """Test that mutable entries are overwritten."""
        cache = FileCache(tmp_path / "c")
        cache.add(store, MUTABLE_KEY, INFO, store_path, locked=False)
        cache.add(store, MUTABLE_KEY, {**INFO, "lastModified": 2}, store_path, locked=False)
        assert cache.lookup(store, MUTABLE_KEY)[0]["lastModified"] == 2

    def test_invalid_store_path_is_miss(self, tmp_path, store, store_path):
        """Test that entries pointing at deleted store paths are ignored."""
        cache = FileCache(tmp_path / "c")
        cache.add(store, IMMUTABLE_KEY, INFO, store_path, locked=True)
        shutil.rmtree(store.to_real_path(store_path))
        assert cache.lookup(store, IMMUTABLE_KEY) is None

    def test_corrupt_entry_is_miss(self, tmp_path, store, store_path, caplog):
        """Test that unreadable entries are logged and treated as misses."""
        cache = FileCache(tmp_path / "c")
        cache.add(store, MUTABLE_KEY, INFO, store_path, locked=False)
        entry = tmp_path / "c" / f"{cache_key_digest(MUTABLE_KEY)}.json"
        entry.write_text("{not json")

        assert cache.lookup(store, MUTABLE_KEY) is None
        assert "corrupt cache entry" in caplog.text

    def test_entry_format(self, tmp_path, store, store_path):
        """Test the persisted JSON layout."""
        cache = FileCache(tmp_path / "c")
        cache.add(store, IMMUTABLE_KEY, INFO, store_path, locked=True)
        entry = json.loads((tmp_path / "c" / f"{cache_key_digest(IMMUTABLE_KEY)}.json").read_text())

        assert entry["key"] == IMMUTABLE_KEY
        assert entry["info"] == INFO
        assert entry["storePath"] == str(store_path)
        assert entry["locked"] is True
        assert isinstance(entry["timestamp"], int)
