"""Tests for the in-memory accessor."""
from __future__ import annotations

import pytest

from treefetch.accessor import FileType, MemoryInputAccessor
from treefetch.dump import dump_to_bytes
from treefetch.errors import PathNotFoundError, UnsupportedOperation


class TestMemoryInputAccessor:

    def test_add_and_read(self):
        accessor = MemoryInputAccessor()
        accessor.add_file("/flake.nix", "{ }")
        accessor.add_file("/data.bin", b"\x00\x01")

        assert accessor.read_file("/flake.nix") == b"{ }"
        assert accessor.read_file("//data.bin") == b"\x00\x01"
        assert accessor.path_exists("/flake.nix")
        assert accessor.stat("/flake.nix").type is FileType.REGULAR

    def test_missing(self):
        accessor = MemoryInputAccessor()
        assert not accessor.path_exists("/x")
        with pytest.raises(PathNotFoundError):
            accessor.read_file("/x")
        with pytest.raises(PathNotFoundError):
            accessor.stat("/x")

    def test_listing_and_links_unsupported(self):
        accessor = MemoryInputAccessor()
        with pytest.raises(UnsupportedOperation):
            accessor.read_directory("/")
        with pytest.raises(UnsupportedOperation):
            accessor.read_link("/x")

    def test_single_file_dump(self):
        """A single file dumps without needing directory listings."""
        accessor = MemoryInputAccessor()
        accessor.add_file("/f", "hi")
        assert dump_to_bytes(accessor, "/f").endswith(b"hi" + b"\0" * 6 + b"\x01" + b"\0" * 7 + b")" + b"\0" * 7)

    def test_accessors_are_numbered(self):
        first, second = MemoryInputAccessor(), MemoryInputAccessor()
        assert second.number > first.number
        assert str(first.root / "a") == f"«{first.number}»/a"
