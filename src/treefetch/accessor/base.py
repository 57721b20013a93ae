"""
Input accessor interface.

An InputAccessor is a read-only capability over a tree rooted at an opaque
base: a directory, an archive, or an in-memory file set. Paths are always
accessor-relative and absolute within that namespace (``/src/main.py``), and
are canonicalized before lookup.
"""
from __future__ import annotations

import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import IO, Callable, Dict, Optional

__all__ = [
    "FileType",
    "Stat",
    "DirEntries",
    "PathFilter",
    "InputAccessor",
    "SourcePath",
    "canon_path",
    "join_path",
]


class FileType(str, Enum):
    """Kinds of tree entries an accessor can report."""
    REGULAR = "regular"
    DIRECTORY = "directory"
    SYMLINK = "symlink"
    OTHER = "other"


@dataclass(frozen=True)
class Stat:
    """Type and executable bit of a tree entry (symlinks are not followed)."""
    type: FileType
    is_executable: bool = False


# Directory listing: entry name -> type, or None when the backend cannot tell cheaply
DirEntries = Dict[str, Optional[FileType]]

# Predicate on accessor-relative paths; False omits the entry from a dump
PathFilter = Callable[[str], bool]


def canon_path(path: str) -> str:
    """
    Canonicalize an absolute path lexically.

    Collapses repeated separators, drops ``.`` segments, and resolves ``..``
    against the preceding segment. ``..`` never climbs above ``/``.

    Examples:
        >>> canon_path("/a//b/./c/../d/")
        '/a/b/d'
        >>> canon_path("/../etc")
        '/etc'

    Raises:
        ValueError: If path is not absolute
    """
    if not path.startswith("/"):
        raise ValueError(f"not an absolute path: '{path}'")
    parts = []
    for segment in path.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if parts:
                parts.pop()
            continue
        parts.append(segment)
    return "/" + "/".join(parts)


def join_path(parent: str, name: str) -> str:
    """Join an accessor path and a directory entry name."""
    return f"/{name}" if parent == "/" else f"{parent}/{name}"


_numbers = itertools.count(1)


class InputAccessor(ABC):
    """
    Read-only structured access to a tree.

    Every operation fails with an exception (PathNotFoundError,
    ConfinementError, UnsupportedOperation) rather than returning partial data.
    Each instance carries a process-unique ``number`` for log correlation.
    """

    def __init__(self) -> None:
        self.number = next(_numbers)

    @abstractmethod
    def read_file(self, path: str) -> bytes:
        """Return the full contents of a regular file."""
        ...

    @abstractmethod
    def path_exists(self, path: str) -> bool:
        """Whether path exists and is visible through this accessor."""
        ...

    @abstractmethod
    def stat(self, path: str) -> Stat:
        """Type and executable bit of path, without following a final symlink."""
        ...

    @abstractmethod
    def read_directory(self, path: str) -> DirEntries:
        """Entries of a directory, keyed by name."""
        ...

    @abstractmethod
    def read_link(self, path: str) -> str:
        """Target of a symlink."""
        ...

    def dump_path(
        self,
        path: str,
        sink: IO[bytes],
        filter: Optional[PathFilter] = None,
        *,
        use_case_hack: bool = False,
    ) -> None:
        """
        Write the canonical archive dump of ``path`` to ``sink``.

        See :func:`treefetch.dump.dump_path` for the format.
        """
        from ..dump import dump_path
        dump_path(self, path, sink, filter, use_case_hack=use_case_hack)

    @property
    def root(self) -> SourcePath:
        return SourcePath(self, "/")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} #{self.number}>"


@dataclass(frozen=True)
class SourcePath:
    """
    A path inside the tree of a specific accessor.

    Non-owning: it is only meaningful while its accessor is alive.
    """
    accessor: InputAccessor
    path: str = "/"

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", canon_path(self.path))

    @property
    def base_name(self) -> str:
        """Last path component, or ``source`` for the root."""
        if self.path == "/":
            return "source"
        return self.path.rsplit("/", 1)[1]

    @property
    def parent(self) -> SourcePath:
        return SourcePath(self.accessor, self.path.rsplit("/", 1)[0] or "/")

    def join(self, name: str) -> SourcePath:
        return SourcePath(self.accessor, join_path(self.path, name))

    def __truediv__(self, name: str) -> SourcePath:
        return self.join(name)

    def read_file(self) -> bytes:
        return self.accessor.read_file(self.path)

    def path_exists(self) -> bool:
        return self.accessor.path_exists(self.path)

    def stat(self) -> Stat:
        return self.accessor.stat(self.path)

    def read_directory(self) -> DirEntries:
        return self.accessor.read_directory(self.path)

    def read_link(self) -> str:
        return self.accessor.read_link(self.path)

    def dump(self, sink: IO[bytes], filter: Optional[PathFilter] = None, *, use_case_hack: bool = False) -> None:
        self.accessor.dump_path(self.path, sink, filter, use_case_hack=use_case_hack)

    def __str__(self) -> str:
        return f"«{self.accessor.number}»{self.path}"
