"""
Operations Facade - Application service layer.

Provides a clean interface between CLI and fetcher APIs, centralizing
command orchestration, configuration, and policy decisions while keeping
CLI commands thin and testable.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from ..accessor.base import DirEntries
from ..accessor.filesystem import FSInputAccessor
from ..dump import hash_path, read_dump, write_dump
from ..fetcher import GitFetcher
from ..inputs import GitInput, to_url
from ..settings import Settings
from ..store import StorePath


@dataclass(frozen=True)
class OpsConfig:
    """
    Configuration for Operations facade.

    Centralizes output and serialization policy to avoid scattered
    configuration.
    """
    zstd_level: int = 19          # Compression level for .zst dumps
    verbose: bool = False         # Show detailed output


class Operations:
    """
    Application service facade for CLI operations.

    One method per CLI verb. Exceptions bubble up unchanged for central
    exit-code mapping in :func:`run_and_exit`.
    """

    def __init__(self, config: OpsConfig, settings: Optional[Settings] = None,
                 fetcher: Optional[GitFetcher] = None):
        """
        Initialize Operations facade.

        Args:
            config: Configuration settings
            settings: Optional settings (if None, loaded from environment)
            fetcher: Optional fetcher (if None, built from settings)
        """
        self.cfg = config

        # Load settings if not provided
        if settings is None:
            from ..settings import create_settings_from_env
            settings = create_settings_from_env()
        self.settings = settings

        self.fetcher = fetcher if fetcher is not None else GitFetcher(settings)

    def fetch(self, input: GitInput) -> Tuple[StorePath, Path, GitInput]:
        """
        Fetch input into the store.

        Returns:
            (store path, its host path, enriched input)
        """
        store_path, result = self.fetcher.fetch(input)
        return store_path, self.fetcher.store.to_real_path(store_path), result

    def ls(self, input: GitInput, path: str = "/") -> Tuple[DirEntries, GitInput]:
        """List a directory of input's tree without copying dirty trees into the store."""
        accessor, result = self.fetcher.lazy_fetch(input)
        return accessor.read_directory(path), result

    def dump(self, src: str, out_path: str) -> str:
        """
        Write the canonical dump of src to out_path (.nar or .nar.zst).

        Returns:
            SRI hash of the uncompressed dump
        """
        return write_dump(src, out_path, use_case_hack=self.settings.use_case_hack,
                          zstd_level=self.cfg.zstd_level)

    def hash(self, src: str) -> str:
        """SRI hash of the canonical dump of src."""
        return hash_path(FSInputAccessor(src), "/", use_case_hack=self.settings.use_case_hack)

    def restore(self, dump_file: str, dest: str) -> None:
        """Materialize a dump file at dest, which must not exist."""
        read_dump(dump_file, dest, use_case_hack=self.settings.use_case_hack)

    def to_url(self, input: GitInput) -> str:
        return to_url(input)
