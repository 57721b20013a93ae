"""
Content-addressed store interfaces for treefetch.

The Store protocol is the boundary between the fetch pipeline and the place
ingested trees end up. LocalStore is the on-disk implementation: a tree is
dumped once, hashed while it is spooled, and materialized under a name derived
from that hash, so identical trees always land at the same store path.
"""
from __future__ import annotations

import base64
import hashlib
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional, Protocol, runtime_checkable

from .accessor.base import PathFilter
from .accessor.filesystem import FSInputAccessor
from .dump import HashingSink, dump_path, restore_path
from .inputs import STORE_NAME_PATTERN

__all__ = ["StorePath", "Store", "LocalStore", "IngestionMethod", "parse_store_path"]

logger = logging.getLogger(__name__)

IngestionMethod = Literal["recursive", "flat"]

_HASH_PART_PATTERN = re.compile(r"^[a-z2-7]{32}$")

# Dumps up to this size stay in memory while being hashed
_SPOOL_MAX_SIZE = 16 * 1024 * 1024


@dataclass(frozen=True)
class StorePath:
    """
    Handle of an artifact in the store.

    Invariants:
    - hash_part: 32 lowercase base32 characters
    - name: matches the store name pattern
    - nar_hash: SRI hash of the artifact's dump when known; not part of identity
    """
    hash_part: str
    name: str
    nar_hash: Optional[str] = field(default=None, compare=False)

    def __str__(self) -> str:
        return f"{self.hash_part}-{self.name}"


def parse_store_path(value: str) -> StorePath:
    """
    Parse the ``<hash>-<name>`` form of a store path.

    Raises:
        ValueError: If value is not a well-formed store path
    """
    hash_part, sep, name = value.partition("-")
    if not sep or not _HASH_PART_PATTERN.fullmatch(hash_part) or not STORE_NAME_PATTERN.fullmatch(name):
        raise ValueError(f"invalid store path '{value}'")
    return StorePath(hash_part, name)


@runtime_checkable
class Store(Protocol):
    """Protocol for content-addressed store operations."""

    def add_to_store(
        self,
        name: str,
        path: str | Path,
        *,
        method: IngestionMethod = "recursive",
        hash_algo: str = "sha256",
        filter: Optional[PathFilter] = None,
    ) -> StorePath:
        """
        Copy a file or tree into the store.

        Deterministic: identical content, method, and filter yield the same
        store path. Re-adding existing content is a no-op.

        Args:
            name: Name component of the resulting store path
            path: Host path to ingest
            method: ``recursive`` for trees, ``flat`` for a single regular file
            hash_algo: hashlib algorithm used for the content address
            filter: Predicate on accessor paths (``/sub/file``); recursive only

        Returns:
            StorePath with nar_hash set

        Raises:
            ValueError: If name is invalid or a flat ingestion is given a non-file
            DumpError: If the tree cannot be serialized
        """
        ...

    def is_valid_path(self, store_path: StorePath) -> bool:
        """Whether store_path exists in the store."""
        ...

    def to_real_path(self, store_path: StorePath) -> Path:
        """Host path of store_path."""
        ...


class LocalStore(Store):
    """
    Store rooted at a local directory.

    Artifacts are materialized via a temporary sibling and renamed into place,
    so readers never observe a partially written store path.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def add_to_store(
        self,
        name: str,
        path: str | Path,
        *,
        method: IngestionMethod = "recursive",
        hash_algo: str = "sha256",
        filter: Optional[PathFilter] = None,
    ) -> StorePath:
        if not STORE_NAME_PATTERN.fullmatch(name):
            raise ValueError(f"invalid store path name '{name}'")
        src = Path(path)
        if method == "flat" and not (src.is_file() and not src.is_symlink()):
            raise ValueError(f"flat ingestion requires a regular file: {src}")
        if method not in ("recursive", "flat"):
            raise ValueError(f"unknown ingestion method '{method}'")

        accessor = FSInputAccessor(src)
        with tempfile.SpooledTemporaryFile(max_size=_SPOOL_MAX_SIZE) as spool:
            sink = HashingSink(hash_algo, tee=spool)
            dump_path(accessor, "/", sink, filter if method == "recursive" else None)

            if method == "flat":
                with open(src, "rb") as f:
                    content_hash = hashlib.file_digest(f, hash_algo).hexdigest()
            else:
                content_hash = sink.hexdigest()

            store_path = self._make_store_path(method, hash_algo, content_hash, name, sink.sri())
            dest = self.to_real_path(store_path)
            if os.path.lexists(dest):
                logger.debug(f"{store_path} already present in {self.root}")
                return store_path

            spool.seek(0)
            self.root.mkdir(parents=True, exist_ok=True)
            with tempfile.TemporaryDirectory(dir=self.root, prefix=".tmp-") as tmp:
                staged = Path(tmp) / "out"
                restore_path(spool, staged)
                try:
                    os.replace(staged, dest)
                except OSError:
                    # Another process materialized the same content first
                    if not os.path.lexists(dest):
                        raise
                    logger.debug(f"{store_path} was added concurrently")

        logger.info(f"Added {src} to store as {store_path} ({sink.size} bytes)")
        return store_path

    def is_valid_path(self, store_path: StorePath) -> bool:
        return os.path.lexists(self.to_real_path(store_path))

    def to_real_path(self, store_path: StorePath) -> Path:
        return self.root / str(store_path)

    def _make_store_path(
        self, method: str, hash_algo: str, content_hash: str, name: str, nar_hash: str
    ) -> StorePath:
        fingerprint = f"source:{method}:{hash_algo}:{content_hash}:{self.root.resolve()}:{name}"
        digest = hashlib.sha256(fingerprint.encode("utf-8")).digest()[:20]
        hash_part = base64.b32encode(digest).decode("ascii").lower()
        return StorePath(hash_part, name, nar_hash=nar_hash)
