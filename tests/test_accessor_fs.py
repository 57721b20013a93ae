"""
Tests for the filesystem accessor and the shared path helpers.
"""
from __future__ import annotations

import os

import pytest

from treefetch.accessor import FileType, FSInputAccessor, SourcePath, canon_path, join_path
from treefetch.errors import AccessorError, ConfinementError, PathNotFoundError


@pytest.fixture
def tree(tmp_path):
    root = tmp_path / "tree"
    (root / "a" / "b").mkdir(parents=True)
    (root / "a" / "x").mkdir()
    (root / "a" / "b" / "c").write_text("c contents")
    (root / "a" / "x" / "y").write_text("y contents")
    (root / "top.txt").write_text("top")
    script = root / "run.sh"
    script.write_text("#!/bin/sh\n")
    script.chmod(0o755)
    os.symlink("top.txt", root / "link")
    return root


class TestPathHelpers:
    """Test lexical path canonicalization."""

    @pytest.mark.parametrize("raw,expected", [
        ("/", "/"),
        ("/a//b/./c/../d/", "/a/b/d"),
        ("/../etc", "/etc"),
        ("/a/..", "/"),
    ])
    def test_canon_path(self, raw, expected):
        """Test that paths collapse lexically without escaping the root."""
        assert canon_path(raw) == expected

    def test_canon_path_requires_absolute(self):
        """Test that relative paths are rejected."""
        with pytest.raises(ValueError):
            canon_path("a/b")

    def test_join_path(self):
        """Test joining entry names."""
        assert join_path("/", "a") == "/a"
        assert join_path("/a", "b") == "/a/b"


class TestFSInputAccessor:
    """Test reads through an unrestricted filesystem accessor."""

    def test_read_file(self, tree):
        """Test reading a regular file."""
        accessor = FSInputAccessor(tree)
        assert accessor.read_file("/a/b/c") == b"c contents"

    def test_read_missing_file(self, tree):
        """Test that missing files raise PathNotFoundError."""
        with pytest.raises(PathNotFoundError):
            FSInputAccessor(tree).read_file("/nope")

    def test_read_directory_as_file(self, tree):
        """Test that reading a directory as a file fails."""
        with pytest.raises(AccessorError):
            FSInputAccessor(tree).read_file("/a")

    def test_stat_kinds(self, tree):
        """Test stat of each entry kind, including the executable bit."""
        accessor = FSInputAccessor(tree)
        assert accessor.stat("/top.txt").type is FileType.REGULAR
        assert accessor.stat("/top.txt").is_executable is False
        assert accessor.stat("/run.sh").is_executable is True
        assert accessor.stat("/a").type is FileType.DIRECTORY
        assert accessor.stat("/link").type is FileType.SYMLINK
        assert accessor.stat("/").type is FileType.DIRECTORY

    def test_read_directory(self, tree):
        """Test listing a directory."""
        entries = FSInputAccessor(tree).read_directory("/")
        assert entries == {
            "a": FileType.DIRECTORY,
            "top.txt": FileType.REGULAR,
            "run.sh": FileType.REGULAR,
            "link": FileType.SYMLINK,
        }

    def test_read_link(self, tree):
        """Test reading a symlink target."""
        accessor = FSInputAccessor(tree)
        assert accessor.read_link("/link") == "top.txt"
        with pytest.raises(AccessorError):
            accessor.read_link("/top.txt")

    def test_path_exists(self, tree):
        """Test existence checks."""
        accessor = FSInputAccessor(tree)
        assert accessor.path_exists("/a/x/y")
        assert not accessor.path_exists("/a/x/z")

    def test_dotdot_stays_inside_root(self, tree):
        """Test that '..' climbing above the accessor root is a confinement error."""
        with pytest.raises(ConfinementError):
            FSInputAccessor(tree).read_file("/../../etc/passwd")

    def test_symlink_escape_rejected(self, tree, tmp_path):
        """Test that a symlink pointing outside the root is confined."""
        outside = tmp_path / "secret"
        outside.write_text("secret")
        os.symlink(outside, tree / "escape")
        accessor = FSInputAccessor(tree)

        with pytest.raises(ConfinementError):
            accessor.read_file("/escape")
        assert not accessor.path_exists("/escape")
        # The link itself is still visible without following it
        assert accessor.stat("/escape").type is FileType.SYMLINK

    def test_source_path_navigation(self, tree):
        """Test SourcePath joins and reads through its accessor."""
        root = FSInputAccessor(tree).root
        child = root / "a" / "b" / "c"
        assert isinstance(child, SourcePath)
        assert child.path == "/a/b/c"
        assert child.base_name == "c"
        assert child.parent.path == "/a/b"
        assert child.read_file() == b"c contents"
        assert root.base_name == "source"


class TestAllowedPaths:
    """Test an accessor restricted to an allowed-path set."""

    def test_allowed_file_beneath_entry(self, tree):
        """Test that paths beneath an allowed entry are visible."""
        accessor = FSInputAccessor(tree, allowed_paths={"a/b"})
        assert accessor.read_file("/a/b/c") == b"c contents"

    def test_ancestors_visible(self, tree):
        """Test that ancestor directories of allowed entries are visible."""
        accessor = FSInputAccessor(tree, allowed_paths={"a/b"})
        assert accessor.stat("/a").type is FileType.DIRECTORY
        assert accessor.read_directory("/") == {"a": FileType.DIRECTORY}
        assert accessor.read_directory("/a") == {"b": FileType.DIRECTORY}

    @pytest.mark.parametrize("path", ["/a/x", "/a/x/y", "/top.txt", "/../etc/passwd"])
    def test_disallowed_paths_confined(self, tree, path):
        """Test that everything else raises ConfinementError."""
        accessor = FSInputAccessor(tree, allowed_paths={"a/b"})
        with pytest.raises(ConfinementError):
            accessor.read_file(path)
        assert not accessor.path_exists(path)

    def test_prefix_is_not_ancestor(self, tree):
        """Test that 'a/b' does not admit a sibling named 'a/bb'."""
        (tree / "a" / "bb").write_text("sibling")
        accessor = FSInputAccessor(tree, allowed_paths={"a/b"})
        with pytest.raises(ConfinementError):
            accessor.read_file("/a/bb")

    def test_symlink_into_disallowed_area(self, tree):
        """Test that an allowed symlink cannot be followed to a disallowed file."""
        os.symlink("../x/y", tree / "a" / "b" / "sneaky")
        accessor = FSInputAccessor(tree, allowed_paths={"a/b"})
        with pytest.raises(ConfinementError):
            accessor.read_file("/a/b/sneaky")
        assert accessor.read_link("/a/b/sneaky") == "../x/y"

    @pytest.mark.parametrize("bad", ["", "/a", "a/"])
    def test_malformed_allowed_paths(self, tree, bad):
        """Test that allowed paths must be relative without trailing '/'."""
        with pytest.raises(ValueError):
            FSInputAccessor(tree, allowed_paths={bad})
