"""
Git fetch pipeline.

Turns a GitInput into a store path plus the enriched input (resolved ref and
rev, lastModified, revCount, narHash). Repeated fetches of a concrete revision
are answered from the immutable cache without touching git; fetches of a
branch are rate-limited by the mutable cache and the mirror's ref-file age.

Remote repositories are mirrored into a bare repository under
``<cache_dir>/gitv3/<sha256(url)>``. The mirror is only mutated while holding
its cross-process lock; exporting a known revision is read-only and runs
without it.
"""
from __future__ import annotations

import hashlib
import logging
import os
import re
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, Optional, Set, Tuple
from urllib.parse import urlsplit

from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from .accessor.base import InputAccessor, PathFilter
from .accessor.filesystem import FSInputAccessor
from .cache import Cache, FileCache
from .errors import (
    FetchNetworkError,
    GitCommandError,
    InputValidationError,
    NarHashMismatch,
    RevisionNotFoundError,
    ShallowRepositoryError,
    UnsupportedOperation,
)
from .git import INITIAL_BRANCH, GitRunner
from .inputs import REV_PATTERN, GitInput, apply_overrides
from .locks import PathLock
from .repo_info import RepoInfo, get_repo_info, list_files
from .settings import Settings, create_settings_from_env
from .store import LocalStore, Store, StorePath

__all__ = ["GitFetcher", "fetch", "lazy_fetch", "make_tracked_filter", "is_not_dot_git"]

logger = logging.getLogger(__name__)

FetchResult = Tuple[StorePath, GitInput]

_DOT_GIT = re.compile(r"^(?:.*/)?\.git$")

# Where a fetched remote HEAD is recorded inside a mirror; "HEAD" itself is the
# mirror's own symbolic ref.
REMOTE_HEAD_REF = "refs/treefetch/HEAD"

# Substrings git prints when cat-file is asked for an object it does not have
_MISSING_OBJECT_MESSAGES = ("bad file", "bad object", "Not a valid object name")


def is_not_dot_git(path: str) -> bool:
    """Path filter excluding version-control metadata (``.git`` dirs and gitfiles)."""
    return not _DOT_GIT.match(path)


def make_tracked_filter(files: Set[str]) -> PathFilter:
    """
    Path filter accepting tracked files and directories containing one.

    Args:
        files: Paths relative to the tree root, as listed by ``git ls-files``
    """
    tracked = set(files)
    dirs: Set[str] = set()
    for f in tracked:
        parts = f.split("/")
        for i in range(1, len(parts)):
            dirs.add("/".join(parts[:i]))

    def accept(path: str) -> bool:
        rel = path.lstrip("/")
        return rel in tracked or rel in dirs

    return accept


def local_ref_name(ref: str) -> str:
    """Ref a requested branch/tag is stored under in a bare mirror."""
    if ref.startswith("refs/"):
        return ref
    if ref == "HEAD":
        return REMOTE_HEAD_REF
    return f"refs/heads/{ref}"


class GitFetcher:
    """
    Fetches Git inputs into a store.

    Args:
        settings: Fetch policy and on-disk locations
        store: Destination store (defaults to a LocalStore at settings.store_root)
        cache: Fetch cache (defaults to a FileCache at settings.fetch_cache_root)
        git: Git runner (defaults to settings.git_program)

    Examples:
        >>> fetcher = GitFetcher(create_settings_from_env())
        >>> store_path, locked = fetcher.fetch(GitInput.from_url("git+https://example.org/repo?ref=main"))
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[Store] = None,
        cache: Optional[Cache] = None,
        git: Optional[GitRunner] = None,
    ) -> None:
        self.settings = settings
        self.store = store if store is not None else LocalStore(settings.store_root)
        self.cache = cache if cache is not None else FileCache(settings.fetch_cache_root, settings.tarball_ttl)
        self.git = git if git is not None else GitRunner(settings.git_program)

    def fetch(self, input: GitInput) -> FetchResult:
        """
        Fetch input into the store.

        Returns:
            (store path, input enriched with ref, rev, lastModified, revCount, narHash)

        Raises:
            DirtyTreeError: Local tree is dirty and dirty trees are not allowed
            ShallowRepositoryError: Repository is shallow but shallow wasn't requested
            RevisionNotFoundError: Requested rev is not in the fetched history
            FetchNetworkError: Fetch failed and no earlier copy exists
            NarHashMismatch: Tree differs from the narHash pinned by the caller
            GitCommandError: Any other git failure
        """
        repo_info = get_repo_info(input, self.settings, self.git)
        return self._fetch(input, repo_info)

    def lazy_fetch(self, input: GitInput) -> Tuple[InputAccessor, GitInput]:
        """
        Return an accessor over input's tree.

        A dirty local working tree is exposed in place (restricted to tracked
        files) without copying it into the store; anything else is fetched and
        exposed from its store path.
        """
        repo_info = get_repo_info(input, self.settings, self.git)
        if repo_info.is_dirty:
            repo_info.check_dirty(self.settings)
            files = list_files(repo_info, self.git)
            accessor = FSInputAccessor(repo_info.url, allowed_paths=files)
            attrs = input.to_attrs()
            attrs["lastModified"] = self._dirty_last_modified(repo_info)
            return accessor, GitInput.from_attrs(attrs)

        store_path, result = self._fetch(input, repo_info)
        return FSInputAccessor(self.store.to_real_path(store_path)), result

    def _fetch(self, original: GitInput, repo_info: RepoInfo) -> FetchResult:
        input = original
        name = input.get_name()

        def immutable_key(rev: str) -> Dict[str, Any]:
            return {"type": repo_info.cache_type, "name": name, "rev": rev}

        if input.rev:
            hit = self.cache.lookup(self.store, immutable_key(input.rev))
            if hit is not None:
                logger.debug(f"Using cached {hit[1]} for revision {input.rev}")
                return self._make_result(original, input, repo_info, *hit)

        if repo_info.is_dirty:
            return self._fetch_dirty(original, repo_info)

        if input.ref is None:
            if repo_info.is_local:
                ref = self.git.run(repo_info.git_args("rev-parse", "--abbrev-ref", "HEAD"))
            else:
                ref = self.settings.default_remote_ref
            input = apply_overrides(input, ref=ref)
        assert input.ref is not None

        mutable_key = {"type": repo_info.cache_type, "name": name, "url": repo_info.url, "ref": input.ref}

        if repo_info.is_local:
            rev = input.rev or self.git.run(repo_info.git_args("rev-parse", f"{input.ref}^{{commit}}"))
            repo_dir = repo_info.url
            self._check_shallow(repo_dir, repo_info)
        else:
            hit = self.cache.lookup(self.store, mutable_key)
            if hit is not None:
                cached_rev = hit[0].get("rev")
                if cached_rev and (not input.rev or input.rev == cached_rev):
                    logger.debug(f"Using cached revision {cached_rev} of ref '{input.ref}'")
                    input = apply_overrides(input, rev=cached_rev)
                    return self._make_result(original, input, repo_info, *hit)
            repo_dir, rev = self._update_mirror(input, repo_info)

        input = apply_overrides(input, rev=rev)
        logger.info(f"Using revision {rev} of repo '{repo_info.url}'")

        # Another process may have ingested this revision while we fetched
        hit = self.cache.lookup(self.store, immutable_key(rev))
        if hit is not None:
            return self._make_result(original, input, repo_info, *hit)

        info, store_path = self._export_and_ingest(input, repo_info, repo_dir, rev, name)

        if not original.rev:
            self.cache.add(self.store, mutable_key, info, store_path, False)
        self.cache.add(self.store, immutable_key(rev), info, store_path, True)

        return self._make_result(original, input, repo_info, info, store_path)

    def _fetch_dirty(self, original: GitInput, repo_info: RepoInfo) -> FetchResult:
        """Copy the tracked files of a dirty working tree into the store."""
        repo_info.check_dirty(self.settings)
        files = list_files(repo_info, self.git)
        store_path = self.store.add_to_store(
            original.get_name(), repo_info.url, method="recursive", filter=make_tracked_filter(files)
        )
        attrs = original.to_attrs()
        attrs["lastModified"] = self._dirty_last_modified(repo_info)
        self._verify_nar_hash(original, store_path.nar_hash)
        if store_path.nar_hash:
            attrs["narHash"] = store_path.nar_hash
        return store_path, GitInput.from_attrs(attrs)

    def _dirty_last_modified(self, repo_info: RepoInfo) -> int:
        if not repo_info.has_commits:
            return 0
        return int(self.git.run(repo_info.git_args("log", "-1", "--format=%ct", "--no-show-signature", "HEAD")))

    def _update_mirror(self, input: GitInput, repo_info: RepoInfo) -> Tuple[str, str]:
        """
        Bring the bare mirror of a remote up to date as far as input requires.

        Returns:
            (mirror directory, resolved rev)
        """
        assert input.ref is not None
        mirror_dir = self.settings.mirror_root / hashlib.sha256(repo_info.url.encode("utf-8")).hexdigest()
        local_ref = local_ref_name(input.ref)
        local_ref_file = mirror_dir / local_ref

        with PathLock(mirror_dir, timeout=self.settings.lock_timeout_s):
            if not mirror_dir.exists():
                logger.info(f"Creating mirror of '{repo_info.url}' in {mirror_dir}")
                self.git.run(["-c", f"init.defaultBranch={INITIAL_BRANCH}", "init", "--bare", str(mirror_dir)])

            now = time.time()
            if input.rev:
                result = self.git.capture(["-C", str(mirror_dir), "cat-file", "-e", input.rev])
                if result.signaled:
                    raise GitCommandError(result.argv, result.returncode, result.stderr)
                do_fetch = not result.ok
            elif repo_info.all_refs:
                do_fetch = True
            else:
                try:
                    do_fetch = local_ref_file.stat().st_mtime + self.settings.tarball_ttl <= now
                except FileNotFoundError:
                    do_fetch = True

            if do_fetch:
                self._fetch_origin(mirror_dir, repo_info, input.ref, local_ref, local_ref_file)
                try:
                    os.utime(local_ref_file, (now, now))
                except OSError as e:
                    logger.warning(f"could not update mtime for file '{local_ref_file}': {e}")
            else:
                logger.debug(f"Mirror of '{repo_info.url}' is fresh enough, not fetching")

            rev = input.rev or self._read_local_ref(mirror_dir, local_ref, local_ref_file)
            self._check_shallow(str(mirror_dir), repo_info)

        return str(mirror_dir), rev

    def _fetch_origin(
        self, mirror_dir: Path, repo_info: RepoInfo, ref: str, local_ref: str, local_ref_file: Path
    ) -> None:
        if repo_info.all_refs:
            refspec = "refs/*:refs/*"
        elif ref.startswith("refs/") or ref == "HEAD":
            refspec = f"{ref}:{local_ref}"
        else:
            refspec = f"refs/heads/{ref}:{local_ref}"

        logger.info(f"Fetching Git repository '{repo_info.url}'")
        args = ["-C", str(mirror_dir), "fetch", "--quiet", "--force", "--", repo_info.url, refspec]
        retryer = Retrying(
            stop=stop_after_attempt(self.settings.fetch_retry + 1),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(GitCommandError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            retryer(self.git.run, args)
        except GitCommandError as e:
            if not local_ref_file.exists():
                raise FetchNetworkError(f"failed to fetch Git repository '{repo_info.url}': {e}") from e
            logger.warning(
                f"could not update local clone of Git repository '{repo_info.url}'; "
                f"continuing with the most recent version"
            )

    def _read_local_ref(self, mirror_dir: Path, local_ref: str, local_ref_file: Path) -> str:
        try:
            value = local_ref_file.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            value = ""
        if REV_PATTERN.fullmatch(value):
            return value
        # Packed or otherwise non-loose ref
        return self.git.run(["-C", str(mirror_dir), "rev-parse", "--verify", f"{local_ref}^{{commit}}"])

    def _check_shallow(self, repo_dir: str, repo_info: RepoInfo) -> None:
        is_shallow = self.git.run(["-C", repo_dir, "rev-parse", "--is-shallow-repository"]) == "true"
        if is_shallow and not repo_info.shallow:
            raise ShallowRepositoryError(repo_info.url)

    def _export_and_ingest(
        self, input: GitInput, repo_info: RepoInfo, repo_dir: str, rev: str, name: str
    ) -> Tuple[Dict[str, Any], StorePath]:
        """Materialize rev in a scratch directory and add it to the store."""
        result = self.git.capture(["-C", repo_dir, "cat-file", "commit", rev])
        if not result.ok:
            if result.returncode == 128 and any(m in result.output for m in _MISSING_OBJECT_MESSAGES):
                raise RevisionNotFoundError(rev, input.ref or "", repo_info.url)
            raise GitCommandError(result.argv, result.returncode, result.stderr)

        filter: Optional[PathFilter] = None
        with tempfile.TemporaryDirectory(prefix="treefetch-") as tmp:
            tmp_dir = Path(tmp) / "source"
            tmp_dir.mkdir()

            if repo_info.submodules:
                tmp_git_dir = Path(tmp) / "git"
                self.git.run([
                    "-c", f"init.defaultBranch={INITIAL_BRANCH}",
                    "init", str(tmp_dir), "--separate-git-dir", str(tmp_git_dir),
                ])
                # The mirror may only have the commit, not a ref pointing at it
                self.git.run([
                    "-C", str(tmp_dir), "fetch", "--quiet", "--force", "--update-head-ok",
                    "--", os.path.abspath(repo_dir), "refs/*:refs/*",
                ])
                self.git.run(["-C", str(tmp_dir), "checkout", "--quiet", rev])
                # Relative submodule URLs resolve against origin
                self.git.run(["-C", str(tmp_dir), "remote", "add", "origin", repo_info.url])
                self.git.run(["-C", str(tmp_dir), "submodule", "--quiet", "update", "--init", "--recursive"])
                filter = is_not_dot_git
            else:
                self.git.stream_archive(repo_dir, rev, tmp_dir)

            store_path = self.store.add_to_store(name, tmp_dir, method="recursive", filter=filter)

        last_modified = int(self.git.run(["-C", repo_dir, "log", "-1", "--format=%ct", "--no-show-signature", rev]))
        info: Dict[str, Any] = {"rev": rev, "lastModified": last_modified}
        if not repo_info.shallow:
            info["revCount"] = int(self.git.run(["-C", repo_dir, "rev-list", "--count", rev]))
        if store_path.nar_hash:
            info["narHash"] = store_path.nar_hash
        return info, store_path

    def _make_result(
        self,
        original: GitInput,
        input: GitInput,
        repo_info: RepoInfo,
        info: Dict[str, Any],
        store_path: StorePath,
    ) -> FetchResult:
        assert input.rev is not None
        assert not original.rev or original.rev == input.rev
        attrs = input.to_attrs()
        if not repo_info.shallow and "revCount" in info:
            attrs["revCount"] = info["revCount"]
        attrs["lastModified"] = info["lastModified"]
        nar_hash = info.get("narHash") or store_path.nar_hash
        self._verify_nar_hash(original, nar_hash)
        if nar_hash:
            attrs["narHash"] = nar_hash
        return store_path, GitInput.from_attrs(attrs)

    def _verify_nar_hash(self, original: GitInput, actual: Optional[str]) -> None:
        expected = original.nar_hash
        if expected and actual and expected != actual:
            raise NarHashMismatch(
                f"NAR hash mismatch in input '{original}': expected '{expected}', got '{actual}'",
                expected=expected,
                actual=actual,
            )

    def get_source_path(self, input: GitInput) -> Optional[str]:
        """Local working-tree path of input, if it denotes one (file URL, no ref or rev)."""
        return get_source_path(input)

    def mark_changed_file(self, input: GitInput, file: str, commit_msg: Optional[str] = None) -> None:
        """
        Register a file as changed in the input's working tree.

        The file is added with ``--intent-to-add`` so it becomes visible to
        dirty-tree fetches; with commit_msg it is committed as well.

        Raises:
            InputValidationError: If input has no local source path
        """
        source_path = get_source_path(input)
        if source_path is None:
            raise InputValidationError(f"input '{input}' does not refer to a local working tree")
        self.git.run(["-C", source_path, "add", "--force", "--intent-to-add", "--", file])
        if commit_msg is not None:
            self.git.run(["-C", source_path, "commit", file, "-m", commit_msg])

    def clone(self, input: GitInput, dest: str | Path) -> None:
        """
        Clone input's repository into dest.

        Raises:
            UnsupportedOperation: If input pins a rev
        """
        if input.rev:
            raise UnsupportedOperation("cloning a specific revision is not implemented")
        repo_info = get_repo_info(input, self.settings, self.git)
        args = ["clone", repo_info.url]
        if input.ref:
            args += ["--branch", input.ref]
        args.append(str(dest))
        self.git.run(args)


def get_source_path(input: GitInput) -> Optional[str]:
    """Path of a local working tree for a ``file`` URL without ref or rev, else None."""
    parts = urlsplit(input.url)
    if parts.scheme == "file" and not input.ref and not input.rev:
        return parts.path
    return None


def fetch(
    store: Store,
    input: GitInput,
    *,
    settings: Optional[Settings] = None,
    cache: Optional[Cache] = None,
    git: Optional[GitRunner] = None,
) -> FetchResult:
    """Fetch input into store; see :meth:`GitFetcher.fetch`."""
    return GitFetcher(settings or create_settings_from_env(), store=store, cache=cache, git=git).fetch(input)


def lazy_fetch(
    store: Store,
    input: GitInput,
    *,
    settings: Optional[Settings] = None,
    cache: Optional[Cache] = None,
    git: Optional[GitRunner] = None,
) -> Tuple[InputAccessor, GitInput]:
    """Accessor over input's tree; see :meth:`GitFetcher.lazy_fetch`."""
    return GitFetcher(settings or create_settings_from_env(), store=store, cache=cache, git=git).lazy_fetch(input)
