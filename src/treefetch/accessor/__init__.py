"""
Accessor package - read-only structured access to source trees.

Backends share the InputAccessor interface so the dump routine and the fetch
pipeline never need to know whether a tree lives on disk, in a zip archive,
or in memory.
"""
from .archive import ZipInputAccessor
from .base import DirEntries, FileType, InputAccessor, PathFilter, SourcePath, Stat, canon_path, join_path
from .filesystem import FSInputAccessor
from .memory import MemoryInputAccessor

__all__ = [
    "DirEntries",
    "FileType",
    "InputAccessor",
    "PathFilter",
    "SourcePath",
    "Stat",
    "canon_path",
    "join_path",
    "FSInputAccessor",
    "ZipInputAccessor",
    "MemoryInputAccessor",
]
