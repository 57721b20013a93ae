"""
Error classes for treefetch.

Provides a single taxonomy for everything that can go wrong while resolving,
fetching, and ingesting a source tree. Each class also derives from the
closest builtin exception so generic callers can keep catching ValueError,
FileNotFoundError, and friends.
"""
from __future__ import annotations

from typing import Optional, Sequence


class TreefetchError(Exception):
    """Base class for all treefetch errors."""
    pass


class InputValidationError(TreefetchError, ValueError):
    """
    Fetch request is malformed.

    Raised when:
    - An attribute key is not recognized for the input type
    - A ref is not a valid Git branch/tag name
    - A rev is given without a ref
    - A URL scheme is not supported
    """
    pass


class PolicyViolation(TreefetchError):
    """Operation is forbidden by the configured policy."""
    pass


class DirtyTreeError(PolicyViolation):
    """
    Local working tree has uncommitted changes and dirty trees are not allowed.
    """

    def __init__(self, url: str):
        super().__init__(f"Git tree '{url}' is dirty")
        self.url = url


class ConsistencyError(TreefetchError):
    """Fetched state contradicts what the request requires."""
    pass


class ShallowRepositoryError(ConsistencyError):
    """
    Repository only has shallow history but full history was requested.
    """

    def __init__(self, url: str):
        super().__init__(
            f"'{url}' is a shallow Git repository, but a non-shallow repository is needed"
        )
        self.url = url


class RevisionNotFoundError(ConsistencyError):
    """
    Requested revision is not reachable from the fetched ref.
    """

    def __init__(self, rev: str, ref: str, url: str):
        super().__init__(
            f"Cannot find Git revision '{rev}' in ref '{ref}' of repository '{url}'. "
            f"Make sure that the rev exists on the ref you've specified or set allRefs."
        )
        self.rev = rev
        self.ref = ref
        self.url = url


class NarHashMismatch(ConsistencyError):
    """
    Ingested tree does not match the narHash pinned by the caller.
    """

    def __init__(self, message: str, expected: str | None = None, actual: str | None = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class CacheConflictError(ConsistencyError):
    """
    Attempt to overwrite a locked cache entry with different content.
    """
    pass


class FetchNetworkError(TreefetchError):
    """
    Fetching from the origin failed and no earlier copy exists to fall back on.
    """
    pass


class GitCommandError(TreefetchError):
    """
    A git subprocess exited unsuccessfully or was killed by a signal.
    """

    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = ""):
        command = " ".join(argv)
        if returncode < 0:
            message = f"'{command}' was killed by signal {-returncode}"
        else:
            message = f"'{command}' failed with exit code {returncode}"
        if stderr:
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr


class AccessorError(TreefetchError):
    """Base class for input accessor failures."""
    pass


class PathNotFoundError(AccessorError, FileNotFoundError):
    """Path does not exist in the tree exposed by an accessor."""
    pass


class ConfinementError(AccessorError, PermissionError):
    """
    Path resolves outside the accessor root or outside its allowed-path set.
    """
    pass


class UnsupportedOperation(AccessorError, NotImplementedError):
    """
    Operation is not implemented by this backend.

    Raised when:
    - The in-memory backend is asked for a directory listing or a symlink
    - The archive backend meets an entry without Unix metadata
    - Cloning a specific revision is requested
    """
    pass


class DumpError(TreefetchError):
    """Base class for archive dump encoding and decoding failures."""
    pass


class UnsupportedFileType(DumpError):
    """A tree contains a file that is neither regular, directory, nor symlink."""

    def __init__(self, path: str, kind: Optional[str] = None):
        suffix = f" ({kind})" if kind else ""
        super().__init__(f"file '{path}' has an unsupported type{suffix}")
        self.path = path


class NameCollisionError(DumpError):
    """Two directory entries map to the same name after case normalization."""

    def __init__(self, first: str, second: str):
        super().__init__(f"file name collision between '{first}' and '{second}'")
        self.first = first
        self.second = second


class BadArchiveError(DumpError):
    """A dump stream is malformed or contains unsafe names."""
    pass


__all__ = [
    "TreefetchError",
    "InputValidationError",
    "PolicyViolation",
    "DirtyTreeError",
    "ConsistencyError",
    "ShallowRepositoryError",
    "RevisionNotFoundError",
    "NarHashMismatch",
    "CacheConflictError",
    "FetchNetworkError",
    "GitCommandError",
    "AccessorError",
    "PathNotFoundError",
    "ConfinementError",
    "UnsupportedOperation",
    "DumpError",
    "UnsupportedFileType",
    "NameCollisionError",
    "BadArchiveError",
]
