"""
Cross-process path locks.

A PathLock guards mutation of an on-disk resource (a bare mirror) by holding
an exclusive lock on a sibling ``.lock`` file. It is a context manager, so the
lock is released on every exit path, including exceptions.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from filelock import FileLock, Timeout

from .errors import TreefetchError

__all__ = ["PathLock", "LockTimeout", "lock_path_for"]

logger = logging.getLogger(__name__)


class LockTimeout(TreefetchError):
    """Raised when a path lock cannot be acquired within the configured timeout."""
    pass


def lock_path_for(path: Path) -> Path:
    """Return the sibling lock file used to guard ``path``."""
    return path.with_name(path.name + ".lock")


class PathLock:
    """
    Exclusive lock on a directory, held via ``<dir>.lock``.

    Examples:
        >>> with PathLock(mirror_dir):
        ...     mutate(mirror_dir)
    """

    def __init__(self, path: Path, *, timeout: float = -1) -> None:
        self.path = Path(path)
        self.lock_file = lock_path_for(self.path)
        self.timeout = timeout
        self._lock: Optional[FileLock] = None

    def acquire(self) -> "PathLock":
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        lock = FileLock(str(self.lock_file), timeout=self.timeout)
        logger.debug(f"Waiting for lock on {self.path}")
        try:
            lock.acquire()
        except Timeout as e:
            raise LockTimeout(f"timed out waiting for lock on '{self.path}'") from e
        self._lock = lock
        logger.debug(f"Acquired lock on {self.path}")
        return self

    def release(self) -> None:
        if self._lock is not None:
            self._lock.release()
            self._lock = None
            logger.debug(f"Released lock on {self.path}")

    @property
    def held(self) -> bool:
        return self._lock is not None

    def __enter__(self) -> "PathLock":
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
