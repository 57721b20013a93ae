"""
Zip archive input accessor.

Exposes the contents of a zip archive below its single top-level directory
(the layout produced by source-hosting "download zip" endpoints). The member
table is indexed once when the archive is opened so later lookups never scan
the archive's central directory again.
"""
from __future__ import annotations

import bisect
import logging
import os
import stat as stat_mod
import zipfile
from pathlib import Path
from typing import Dict, List, Optional

from ..errors import AccessorError, PathNotFoundError, UnsupportedFileType, UnsupportedOperation
from .base import DirEntries, FileType, InputAccessor, Stat, canon_path

__all__ = ["ZipInputAccessor"]

logger = logging.getLogger(__name__)

# ZipInfo.create_system value for archives written on Unix
ZIP_OPSYS_UNIX = 3


class ZipInputAccessor(InputAccessor):
    """
    Accessor over a zip file.

    Member keys drop the first path component: ``repo-main/src/a.py`` is
    exposed as ``/src/a.py``. Directory keys end with ``/``; directories that
    only exist implicitly (as parents of members) are indexed too.
    """

    def __init__(self, zip_path: str | Path) -> None:
        super().__init__()
        self.zip_path = os.fspath(zip_path)
        try:
            self._zip = zipfile.ZipFile(self.zip_path)
        except (OSError, zipfile.BadZipFile) as e:
            raise AccessorError(f"couldn't open '{self.zip_path}': {e}") from e

        self._members: Dict[str, Optional[zipfile.ZipInfo]] = {}
        for info in self._zip.infolist():
            slash = info.filename.find("/")
            if slash < 0:
                continue
            key = info.filename[slash:]
            if _has_bad_segment(key):
                self._zip.close()
                raise AccessorError(f"archive member '{info.filename}' in '{self.zip_path}' has an unsafe path")
            self._members.setdefault(key, info)
            # Index implicit parent directories
            for i in range(1, len(key) - 1):
                if key[i] == "/":
                    self._members.setdefault(key[:i + 1], None)
            self._members.setdefault("/", None)

        self._keys: List[str] = sorted(self._members)
        logger.debug(f"{self!r} indexed {len(self._keys)} members of {self.zip_path}")

    def close(self) -> None:
        self._zip.close()

    def __enter__(self) -> "ZipInputAccessor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def read_file(self, path: str) -> bytes:
        key = canon_path(path)
        info = self._members.get(key) if key != "/" else None
        if info is None:
            raise PathNotFoundError(f"file '{key}' does not exist in '{self.zip_path}'")
        try:
            return self._zip.read(info)
        except (OSError, zipfile.BadZipFile) as e:
            raise AccessorError(f"couldn't read archive member '{key}' in '{self.zip_path}': {e}") from e

    def path_exists(self, path: str) -> bool:
        key = canon_path(path)
        return key in self._members or _dir_key(key) in self._members

    def stat(self, path: str) -> Stat:
        key = canon_path(path)
        if key != "/" and key in self._members:
            return self._stat_member(key, self._members[key], default=FileType.REGULAR)
        dir_key = _dir_key(key)
        if dir_key in self._members:
            info = self._members[dir_key]
            if info is None:
                return Stat(FileType.DIRECTORY)
            return self._stat_member(key, info, default=FileType.DIRECTORY)
        raise PathNotFoundError(f"file '{key}' does not exist in '{self.zip_path}'")

    def read_directory(self, path: str) -> DirEntries:
        prefix = _dir_key(canon_path(path))
        if prefix not in self._members:
            raise PathNotFoundError(f"directory '{prefix}' does not exist in '{self.zip_path}'")

        entries: DirEntries = {}
        i = bisect.bisect_right(self._keys, prefix)
        while i < len(self._keys) and self._keys[i].startswith(prefix):
            rest = self._keys[i][len(prefix):]
            i += 1
            slash = rest.find("/")
            if slash == -1:
                entries.setdefault(rest, None)
            elif slash == len(rest) - 1:
                entries[rest[:-1]] = FileType.DIRECTORY
        return entries

    def read_link(self, path: str) -> str:
        key = canon_path(path)
        if self.stat(key).type != FileType.SYMLINK:
            raise AccessorError(f"'{key}' in '{self.zip_path}' is not a symlink")
        return self.read_file(key).decode("utf-8", errors="surrogateescape")

    def _stat_member(self, key: str, info: Optional[zipfile.ZipInfo], *, default: FileType) -> Stat:
        if info is None:
            return Stat(default)
        if info.create_system != ZIP_OPSYS_UNIX:
            raise UnsupportedOperation(
                f"'{key}' in '{self.zip_path}' has no Unix metadata (created on system {info.create_system})"
            )
        mode = info.external_attr >> 16
        kind = stat_mod.S_IFMT(mode)
        if kind == 0:
            return Stat(default)
        if kind == stat_mod.S_IFDIR:
            return Stat(FileType.DIRECTORY)
        if kind == stat_mod.S_IFREG:
            return Stat(FileType.REGULAR, is_executable=bool(mode & stat_mod.S_IXUSR))
        if kind == stat_mod.S_IFLNK:
            return Stat(FileType.SYMLINK)
        raise UnsupportedFileType(f"{self.zip_path}:{key}", oct(kind))


def _dir_key(key: str) -> str:
    return key if key.endswith("/") else key + "/"


def _has_bad_segment(key: str) -> bool:
    """True if a member key contains an empty, ``.`` or ``..`` component."""
    body = key[1:-1] if key.endswith("/") else key[1:]
    return bool(body) and any(part in ("", ".", "..") for part in body.split("/"))
