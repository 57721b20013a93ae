"""
In-memory input accessor.

Models a flat set of synthetic files; used for generated content and tests.
"""
from __future__ import annotations

from typing import Dict

from ..errors import PathNotFoundError, UnsupportedOperation
from .base import DirEntries, FileType, InputAccessor, Stat, canon_path

__all__ = ["MemoryInputAccessor"]


class MemoryInputAccessor(InputAccessor):
    """Explicit path -> contents mapping. Directory listings and symlinks are unsupported."""

    def __init__(self) -> None:
        super().__init__()
        self._files: Dict[str, bytes] = {}

    def add_file(self, path: str, contents: bytes | str) -> None:
        if isinstance(contents, str):
            contents = contents.encode("utf-8")
        self._files[canon_path(path)] = contents

    def read_file(self, path: str) -> bytes:
        try:
            return self._files[canon_path(path)]
        except KeyError:
            raise PathNotFoundError(f"file '{path}' does not exist") from None

    def path_exists(self, path: str) -> bool:
        return canon_path(path) in self._files

    def stat(self, path: str) -> Stat:
        if canon_path(path) not in self._files:
            raise PathNotFoundError(f"file '{path}' does not exist")
        return Stat(FileType.REGULAR)

    def read_directory(self, path: str) -> DirEntries:
        raise UnsupportedOperation("MemoryInputAccessor.read_directory")

    def read_link(self, path: str) -> str:
        raise UnsupportedOperation("MemoryInputAccessor.read_link")
