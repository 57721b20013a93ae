"""
Settings and configuration for treefetch.

Centralizes configuration values and provides validation with fail-fast behavior.
Loads settings from environment variables when a fetcher or CLI context is built.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

__all__ = ["Settings", "create_settings_from_env", "default_cache_dir"]


def default_cache_dir() -> str:
    """Return the per-user cache directory, honoring XDG_CACHE_HOME."""
    xdg = os.getenv("XDG_CACHE_HOME")
    base = Path(xdg) if xdg else Path.home() / ".cache"
    return str(base / "treefetch")


@dataclass(frozen=True)
class Settings:
    """
    Configuration settings for the fetch pipeline.

    Storage Settings:
        cache_dir: Root for bare mirrors and the fetch cache
        store_dir: Root of the local content-addressed store (defaults to <cache_dir>/store)

    Fetch Policy Settings:
        tarball_ttl: Seconds a mutable ref stays fresh before a refetch is attempted
        allow_dirty: Permit fetching a local working tree with uncommitted changes
        warn_dirty: Log a warning when a dirty tree is fetched
        force_remote: Treat local file:// repositories as remotes (bare-mirror path)
        fetch_retry: Extra attempts for a failed network fetch (0=no retry)
        lock_timeout_s: Seconds to wait for a mirror lock (-1=wait forever)
        default_remote_ref: Ref used for remotes when none is requested

    Serialization Settings:
        use_case_hack: Enable case-collision handling in archive dumps

    Tooling:
        git_program: Name or path of the git executable
    """
    cache_dir: str = field(default_factory=default_cache_dir)
    store_dir: Optional[str] = None
    tarball_ttl: int = 3600
    allow_dirty: bool = True
    warn_dirty: bool = True
    force_remote: bool = False
    fetch_retry: int = 0
    lock_timeout_s: float = -1
    use_case_hack: bool = False
    default_remote_ref: str = "master"
    git_program: str = "git"

    def __post_init__(self):
        """Validate settings on construction."""
        if not self.cache_dir:
            raise ValueError("cache_dir is required")

        if self.tarball_ttl < 0:
            raise ValueError(f"tarball_ttl must be non-negative, got {self.tarball_ttl}")

        if self.fetch_retry < 0:
            raise ValueError(f"fetch_retry must be non-negative, got {self.fetch_retry}")

        if self.lock_timeout_s < 0 and self.lock_timeout_s != -1:
            raise ValueError(f"lock_timeout_s must be positive or -1, got {self.lock_timeout_s}")

        # Ref must be usable as a git refname without further quoting
        if not re.match(r"^[A-Za-z0-9][A-Za-z0-9._/-]*$", self.default_remote_ref):
            raise ValueError(f"Invalid default_remote_ref: {self.default_remote_ref}")

        if not self.git_program:
            raise ValueError("git_program is required")

    @property
    def store_root(self) -> Path:
        """Directory holding the content-addressed store."""
        if self.store_dir:
            return Path(self.store_dir)
        return Path(self.cache_dir) / "store"

    @property
    def mirror_root(self) -> Path:
        """Directory holding bare mirrors of remote repositories."""
        return Path(self.cache_dir) / "gitv3"

    @property
    def fetch_cache_root(self) -> Path:
        """Directory holding fetch cache entries."""
        return Path(self.cache_dir) / "fetcher-cache"


def create_settings_from_env() -> Settings:
    """
    Load settings from environment variables.

    Environment Variables:
        - TREEFETCH_CACHE_DIR (default: $XDG_CACHE_HOME/treefetch)
        - TREEFETCH_STORE_DIR (default: <cache_dir>/store)
        - TREEFETCH_TARBALL_TTL (default: 3600)
        - TREEFETCH_ALLOW_DIRTY (default: true)
        - TREEFETCH_WARN_DIRTY (default: true)
        - TREEFETCH_FORCE_REMOTE (default: false)
        - TREEFETCH_FETCH_RETRY (default: 0)
        - TREEFETCH_LOCK_TIMEOUT (default: -1)
        - TREEFETCH_USE_CASE_HACK (default: false)
        - TREEFETCH_DEFAULT_REF (default: master)
        - TREEFETCH_GIT (default: git)

    Returns:
        Settings object with validated configuration

    Raises:
        ValueError: If configuration is invalid

    Note:
        Creates a fresh Settings instance every time (no caching).
    """
    def str_to_bool(value: str) -> bool:
        return value.lower() in ('true', '1', 'yes', 'on')

    def get_bool(key: str, default: bool) -> bool:
        value = os.getenv(key)
        return str_to_bool(value) if value else default

    def get_float(key: str, default: float) -> float:
        value = os.getenv(key)
        return float(value) if value else default

    def get_int(key: str, default: int) -> int:
        value = os.getenv(key)
        return int(value) if value else default

    return Settings(
        cache_dir=os.getenv("TREEFETCH_CACHE_DIR") or default_cache_dir(),
        store_dir=os.getenv("TREEFETCH_STORE_DIR") or None,
        tarball_ttl=get_int("TREEFETCH_TARBALL_TTL", 3600),
        allow_dirty=get_bool("TREEFETCH_ALLOW_DIRTY", True),
        warn_dirty=get_bool("TREEFETCH_WARN_DIRTY", True),
        force_remote=get_bool("TREEFETCH_FORCE_REMOTE", False),
        fetch_retry=get_int("TREEFETCH_FETCH_RETRY", 0),
        lock_timeout_s=get_float("TREEFETCH_LOCK_TIMEOUT", -1),
        use_case_hack=get_bool("TREEFETCH_USE_CASE_HACK", False),
        default_remote_ref=os.getenv("TREEFETCH_DEFAULT_REF") or "master",
        git_program=os.getenv("TREEFETCH_GIT") or "git",
    )
