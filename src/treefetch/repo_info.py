"""
Repository classification.

Derives everything the fetch pipeline needs to know about the target
repository before it touches the cache: whether it is a local working tree or
an opaque remote, whether the working tree has uncommitted changes, and which
cache namespace its results belong to.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import List, Set
from urllib.parse import urlsplit, urlunsplit

from .errors import DirtyTreeError
from .git import GitRunner
from .inputs import GitInput
from .settings import Settings

__all__ = ["RepoInfo", "get_repo_info", "list_files"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RepoInfo:
    """
    Read-only snapshot of a repository, computed once per fetch.

    Attributes:
        shallow: Shallow history is acceptable
        submodules: Submodules are part of the tree
        all_refs: Every ref is fetched, not just the requested one
        cache_type: Cache namespace for this flag combination
        is_local: URL is a local working tree (not forced remote)
        is_dirty: Local tree with no explicit ref/rev and uncommitted changes
        has_commits: Repository has at least one branch
        url: Path of a local working tree, or the remote URL without its query
    """
    shallow: bool
    submodules: bool
    all_refs: bool
    cache_type: str
    is_local: bool
    is_dirty: bool
    has_commits: bool
    url: str

    def check_dirty(self, settings: Settings) -> None:
        """
        Enforce the dirty-tree policy.

        Raises:
            DirtyTreeError: If the tree is dirty and dirty trees are not allowed
        """
        if not self.is_dirty:
            return
        if not settings.allow_dirty:
            raise DirtyTreeError(self.url)
        if settings.warn_dirty:
            logger.warning(f"Git tree '{self.url}' is dirty")

    def git_args(self, *args: str) -> List[str]:
        """Arguments that run a git command against this repository's working tree."""
        return ["-C", self.url, *args]


def get_repo_info(input: GitInput, settings: Settings, git: GitRunner) -> RepoInfo:
    """
    Classify the repository an input refers to.

    Only local trees fetched without an explicit ref or rev are checked for
    uncommitted changes; a tree without any branch counts as dirty.

    Raises:
        GitCommandError: If the repository metadata cannot be read
    """
    shallow = bool(input.shallow)
    submodules = bool(input.submodules)
    all_refs = bool(input.all_refs)

    cache_type = "git"
    if shallow:
        cache_type += "-shallow"
    if submodules:
        cache_type += "-submodules"
    if all_refs:
        cache_type += "-all-refs"

    parts = urlsplit(input.url)
    is_local = (
        parts.scheme == "file"
        and not settings.force_remote
        and os.path.exists(os.path.join(parts.path, ".git"))
    )
    url = parts.path if is_local else urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))

    info = RepoInfo(
        shallow=shallow,
        submodules=submodules,
        all_refs=all_refs,
        cache_type=cache_type,
        is_local=is_local,
        is_dirty=False,
        has_commits=True,
        url=url,
    )

    if not is_local or input.ref is not None or input.rev is not None:
        return info

    has_commits = bool(git.run(info.git_args("for-each-ref", "--count=1", "refs/heads")))
    if has_commits:
        # Exit status 1 means "differences found"
        result = git.run_status(info.git_args("diff-index", "--quiet", "HEAD", "--"), informative=(1,))
        is_dirty = result.informative
    else:
        is_dirty = True

    logger.debug(f"Local repository {url}: has_commits={has_commits} dirty={is_dirty}")
    return replace(info, is_dirty=is_dirty, has_commits=has_commits)


def list_files(info: RepoInfo, git: GitRunner) -> Set[str]:
    """Tracked files of a local working tree, relative to its root."""
    args = ["ls-files", "-z"]
    if info.submodules:
        args.append("--recurse-submodules")
    return set(git.list_z(info.git_args(*args)))
