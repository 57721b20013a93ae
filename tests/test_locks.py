"""Tests for cross-process path locks."""
from __future__ import annotations

import pytest

from treefetch.locks import LockTimeout, PathLock, lock_path_for


class TestPathLock:

    def test_lock_file_is_sibling(self, tmp_path):
        assert lock_path_for(tmp_path / "mirror") == tmp_path / "mirror.lock"

    def test_context_manager_releases(self, tmp_path):
        lock = PathLock(tmp_path / "mirror")
        with lock:
            assert lock.held
            assert (tmp_path / "mirror.lock").exists()
        assert not lock.held

    def test_released_on_exception(self, tmp_path):
        lock = PathLock(tmp_path / "mirror")
        with pytest.raises(RuntimeError):
            with lock:
                raise RuntimeError("boom")
        assert not lock.held
        # Reacquirable immediately
        with PathLock(tmp_path / "mirror", timeout=0.1):
            pass

    def test_contended_lock_times_out(self, tmp_path):
        """A second holder of the same path waits, then gives up."""
        with PathLock(tmp_path / "mirror"):
            with pytest.raises(LockTimeout):
                PathLock(tmp_path / "mirror", timeout=0.2).acquire()

    def test_creates_parent_directory(self, tmp_path):
        with PathLock(tmp_path / "deep" / "er" / "mirror"):
            assert (tmp_path / "deep" / "er" / "mirror.lock").exists()
