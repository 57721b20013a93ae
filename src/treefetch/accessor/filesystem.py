"""
Filesystem input accessor.

Exposes a directory tree, optionally restricted to an allowed-path set (the
tracked files of a dirty working tree). Paths are confined to the root both
lexically and after symlink resolution.
"""
from __future__ import annotations

import bisect
import logging
import os
import stat as stat_mod
from pathlib import Path
from typing import Iterable, List, Optional, Set

from ..errors import AccessorError, ConfinementError, PathNotFoundError
from .base import DirEntries, FileType, InputAccessor, Stat, canon_path

__all__ = ["FSInputAccessor", "is_dir_or_in_dir"]

logger = logging.getLogger(__name__)


def is_dir_or_in_dir(path: str, dir: str) -> bool:
    """Whether ``path`` equals ``dir`` or lies beneath it (lexical, absolute paths)."""
    if dir == "/":
        return path.startswith("/")
    return path == dir or path.startswith(dir + "/")


class FSInputAccessor(InputAccessor):
    """
    Accessor over a local directory.

    Args:
        root: Directory exposed as ``/``
        allowed_paths: Optional relative paths (no leading or trailing ``/``)
            the accessor may expose. A path is visible iff it is one of them,
            an ancestor directory of one of them, or lies beneath one of them.
    """

    def __init__(self, root: str | Path, allowed_paths: Optional[Iterable[str]] = None) -> None:
        super().__init__()
        self.root_dir = canon_path(os.path.abspath(os.fspath(root)))
        self._real_root = os.path.realpath(self.root_dir)

        self._allowed: Optional[List[str]] = None
        self._allowed_set: Set[str] = set()
        if allowed_paths is not None:
            allowed = sorted(set(allowed_paths))
            for p in allowed:
                if not p or p.startswith("/") or p.endswith("/"):
                    raise ValueError(f"allowed path must be relative without trailing '/': '{p}'")
            self._allowed = allowed
            self._allowed_set = set(allowed)
            logger.debug(f"{self!r} rooted at {self.root_dir} with {len(allowed)} allowed paths")
        else:
            logger.debug(f"{self!r} rooted at {self.root_dir}")

    def read_file(self, path: str) -> bytes:
        abs_path = self._checked(path, follow=True)
        try:
            with open(abs_path, "rb") as f:
                return f.read()
        except FileNotFoundError as e:
            raise PathNotFoundError(f"file '{path}' does not exist") from e
        except IsADirectoryError as e:
            raise AccessorError(f"'{path}' is a directory, not a file") from e

    def path_exists(self, path: str) -> bool:
        try:
            abs_path = self._checked(path, follow=True)
        except ConfinementError:
            return False
        return os.path.lexists(abs_path)

    def stat(self, path: str) -> Stat:
        abs_path = self._checked(path, follow=False)
        try:
            st = os.lstat(abs_path)
        except FileNotFoundError as e:
            raise PathNotFoundError(f"path '{path}' does not exist") from e
        mode = st.st_mode
        if stat_mod.S_ISREG(mode):
            return Stat(FileType.REGULAR, is_executable=bool(mode & stat_mod.S_IXUSR))
        if stat_mod.S_ISDIR(mode):
            return Stat(FileType.DIRECTORY)
        if stat_mod.S_ISLNK(mode):
            return Stat(FileType.SYMLINK)
        return Stat(FileType.OTHER)

    def read_directory(self, path: str) -> DirEntries:
        abs_path = self._checked(path, follow=True)
        entries: DirEntries = {}
        try:
            with os.scandir(abs_path) as it:
                for entry in it:
                    if not self.is_allowed(f"{abs_path.rstrip('/')}/{entry.name}"):
                        continue
                    if entry.is_symlink():
                        kind: Optional[FileType] = FileType.SYMLINK
                    elif entry.is_dir(follow_symlinks=False):
                        kind = FileType.DIRECTORY
                    elif entry.is_file(follow_symlinks=False):
                        kind = FileType.REGULAR
                    else:
                        kind = None
                    entries[entry.name] = kind
        except FileNotFoundError as e:
            raise PathNotFoundError(f"directory '{path}' does not exist") from e
        except NotADirectoryError as e:
            raise AccessorError(f"'{path}' is not a directory") from e
        return entries

    def read_link(self, path: str) -> str:
        abs_path = self._checked(path, follow=False)
        try:
            return os.readlink(abs_path)
        except FileNotFoundError as e:
            raise PathNotFoundError(f"symlink '{path}' does not exist") from e
        except OSError as e:
            raise AccessorError(f"'{path}' is not a symlink") from e

    def make_abs_path(self, path: str) -> str:
        """Resolve an accessor path to a canonical absolute host path."""
        if not path.startswith("/"):
            path = "/" + path
        return canon_path(self.root_dir + path)

    def is_allowed(self, abs_path: str) -> bool:
        """Lexical check: inside the root and covered by the allowed-path set."""
        if not is_dir_or_in_dir(abs_path, self.root_dir):
            return False
        return self._covered(self._sub_path(abs_path, self.root_dir))

    def _sub_path(self, abs_path: str, root: str) -> str:
        return abs_path[len(root):].lstrip("/") if root != "/" else abs_path.lstrip("/")

    def _covered(self, sub: str) -> bool:
        if self._allowed is None or sub == "":
            return True
        if sub in self._allowed_set:
            return True
        # Beneath an allowed path
        for i, ch in enumerate(sub):
            if ch == "/" and sub[:i] in self._allowed_set:
                return True
        # An ancestor directory of an allowed path
        prefix = sub + "/"
        i = bisect.bisect_left(self._allowed, prefix)
        return i < len(self._allowed) and self._allowed[i].startswith(prefix)

    def _checked(self, path: str, *, follow: bool) -> str:
        abs_path = self.make_abs_path(path)
        if not self.is_allowed(abs_path):
            raise ConfinementError(f"access to path '{abs_path}' is not allowed")

        # Symlinks may point anywhere; the resolved location must obey the same rules.
        if abs_path == self.root_dir:
            real = self._real_root
        elif follow:
            real = os.path.realpath(abs_path)
        else:
            real = os.path.join(os.path.realpath(os.path.dirname(abs_path)), os.path.basename(abs_path))
        if not is_dir_or_in_dir(real, self._real_root) or not self._covered(self._sub_path(real, self._real_root)):
            raise ConfinementError(f"access to path '{abs_path}' is not allowed (resolves to '{real}')")
        return abs_path
