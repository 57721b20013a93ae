"""
CLI Context for managing application dependencies.

Provides a clean way to manage CLI-level dependencies like settings and the
fetcher, avoiding global state and enabling proper dependency injection.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .fetcher import GitFetcher
from .settings import Settings, create_settings_from_env


@dataclass
class CLIContext:
    """
    Shared context for CLI commands.

    Manages application-level dependencies (settings, fetcher) that are
    initialized once and shared across a CLI command execution.
    """
    settings: Settings
    _fetcher: Optional[GitFetcher] = None

    @classmethod
    def from_env(cls) -> CLIContext:
        """
        Create CLI context from environment variables.

        Returns:
            CLIContext with settings loaded from environment
        """
        settings = create_settings_from_env()
        return cls(settings=settings)

    @property
    def fetcher(self) -> GitFetcher:
        """
        Get or create the fetcher (lazy initialization).

        Returns:
            GitFetcher backed by the settings' store and cache locations
        """
        if self._fetcher is None:
            self._fetcher = GitFetcher(self.settings)
        return self._fetcher
