"""Test doubles for the fetcher's collaborators."""
from .memory_cache import InMemoryCache
from .recording_git import RecordingGitRunner

__all__ = ["InMemoryCache", "RecordingGitRunner"]
