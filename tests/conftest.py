"""Root pytest configuration for treefetch tests."""
import os

import pytest

from treefetch.settings import Settings
from treefetch.store import LocalStore

from .fakes import InMemoryCache, RecordingGitRunner


# Isolate git from the user's configuration
@pytest.fixture(autouse=True)
def git_env(monkeypatch, tmp_path):
    """Automatically give git a clean, deterministic environment."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Treefetch Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "treefetch@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Treefetch Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "treefetch@example.com")
    # Submodule tests clone over the file transport
    monkeypatch.setenv("GIT_CONFIG_COUNT", "2")
    monkeypatch.setenv("GIT_CONFIG_KEY_0", "protocol.file.allow")
    monkeypatch.setenv("GIT_CONFIG_VALUE_0", "always")
    monkeypatch.setenv("GIT_CONFIG_KEY_1", "advice.detachedHead")
    monkeypatch.setenv("GIT_CONFIG_VALUE_1", "false")
    for var in [k for k in os.environ if k.startswith("TREEFETCH_")]:
        monkeypatch.delenv(var)


# Standardized test fixtures
@pytest.fixture
def settings(tmp_path):
    """Standard test settings rooted in a temporary cache directory."""
    return Settings(cache_dir=str(tmp_path / "cache"))


@pytest.fixture
def store(tmp_path):
    """Local store in a temporary directory."""
    return LocalStore(tmp_path / "store")


@pytest.fixture
def cache():
    """In-memory fetch cache."""
    return InMemoryCache()


@pytest.fixture
def git():
    """Git runner that records every invocation."""
    return RecordingGitRunner()
