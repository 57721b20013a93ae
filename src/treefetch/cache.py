"""
Fetch cache.

Maps a lookup key (an attribute bag) to the result of an earlier fetch: the
enriched input attributes and the store path holding the tree. Two key
families share the cache:

- immutable keys ``{type, name, rev}``, written ``locked`` and valid forever
- mutable keys ``{type, name, url, ref}``, which expire after a TTL
"""
from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple, runtime_checkable

from .errors import CacheConflictError
from .store import Store, StorePath, parse_store_path

__all__ = ["Cache", "FileCache", "CacheHit", "cache_key_digest"]

logger = logging.getLogger(__name__)

Attrs = Dict[str, Any]
CacheHit = Tuple[Attrs, StorePath]


def _canonical_json(value: Mapping[str, Any]) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def cache_key_digest(key: Mapping[str, Any]) -> str:
    """Stable digest of a key; attribute order is irrelevant."""
    return hashlib.sha256(_canonical_json(key).encode("utf-8")).hexdigest()


@runtime_checkable
class Cache(Protocol):
    """Protocol for two-tier fetch cache operations."""

    def lookup(self, store: Store, key: Mapping[str, Any]) -> Optional[CacheHit]:
        """
        Find a cached result for key.

        Returns:
            (result attributes, store path), or None on a miss, an expired
            mutable entry, or an entry whose store path no longer exists
        """
        ...

    def add(
        self,
        store: Store,
        key: Mapping[str, Any],
        info: Mapping[str, Any],
        store_path: StorePath,
        locked: bool,
    ) -> None:
        """
        Record a result for key.

        Args:
            store: Store holding store_path
            key: Lookup key
            info: Result attributes
            store_path: Artifact handle
            locked: True for entries that never expire and never change

        Raises:
            CacheConflictError: If a locked entry exists with different content
        """
        ...


class FileCache(Cache):
    """
    Cache persisted as one JSON file per key under ``root``.

    Writes go through a temporary file and ``os.replace`` so concurrent
    readers see either the old or the new entry, never a torn one.
    """

    def __init__(self, root: str | Path, ttl: int = 3600) -> None:
        self.root = Path(root)
        self.ttl = ttl

    def _entry_path(self, key: Mapping[str, Any]) -> Path:
        return self.root / f"{cache_key_digest(key)}.json"

    def _read_entry(self, path: Path) -> Optional[Dict[str, Any]]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring corrupt cache entry {path}: {e}")
            return None

    def lookup(self, store: Store, key: Mapping[str, Any]) -> Optional[CacheHit]:
        path = self._entry_path(key)
        entry = self._read_entry(path)
        if entry is None:
            logger.debug(f"Cache miss for {_canonical_json(key)}")
            return None

        if not entry.get("locked") and time.time() - entry.get("timestamp", 0) >= self.ttl:
            logger.debug(f"Cache entry for {_canonical_json(key)} expired")
            return None

        try:
            store_path = parse_store_path(entry["storePath"])
        except (KeyError, ValueError) as e:
            logger.warning(f"Ignoring malformed cache entry {path}: {e}")
            return None
        if not store.is_valid_path(store_path):
            logger.debug(f"Cached store path {store_path} is no longer valid")
            return None

        info = dict(entry.get("info", {}))
        store_path = StorePath(store_path.hash_part, store_path.name, nar_hash=info.get("narHash"))
        logger.debug(f"Cache hit for {_canonical_json(key)}: {store_path}")
        return info, store_path

    def add(
        self,
        store: Store,
        key: Mapping[str, Any],
        info: Mapping[str, Any],
        store_path: StorePath,
        locked: bool,
    ) -> None:
        path = self._entry_path(key)
        entry = {
            "key": dict(key),
            "info": dict(info),
            "storePath": str(store_path),
            "locked": locked,
            "timestamp": int(time.time()),
        }

        existing = self._read_entry(path)
        if existing is not None and existing.get("locked"):
            same = existing.get("info") == entry["info"] and existing.get("storePath") == entry["storePath"]
            if same:
                logger.debug(f"Locked cache entry for {_canonical_json(key)} already present")
                return
            raise CacheConflictError(
                f"cache entry for {_canonical_json(key)} is locked to {existing.get('storePath')}, "
                f"refusing to replace it with {store_path}"
            )

        self.root.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(suffix=".tmp", dir=self.root, prefix=path.name + ".")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(entry, f, sort_keys=True)
            os.replace(temp_path, path)
        except BaseException:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise
        logger.debug(f"Cached {_canonical_json(key)} -> {store_path} (locked={locked})")
