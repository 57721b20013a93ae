"""
Helpers that build real Git repositories for tests.
"""
from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path
from typing import Dict, Optional, Union

import pytest

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git binary not available")

FileSpec = Union[str, bytes]


def run_git(argv: list[str], *, cwd: Path) -> str:
    completed = subprocess.run(
        ["git", *argv],
        cwd=cwd,
        check=False,
        text=True,
        capture_output=True,
    )
    if completed.returncode != 0:
        raise RuntimeError(f"git {' '.join(argv)} failed: {completed.stderr.strip()}")
    return completed.stdout.strip()


def write_files(root: Path, files: Dict[str, FileSpec]) -> None:
    for rel, content in files.items():
        target = root / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            target.write_bytes(content)
        else:
            target.write_text(content, encoding="utf-8")


def commit_files(repo: Path, files: Dict[str, FileSpec], message: str = "update") -> str:
    """Write, stage, and commit files; return the new HEAD."""
    write_files(repo, files)
    run_git(["add", "--", *files], cwd=repo)
    run_git(["commit", "-q", "-m", message], cwd=repo)
    return run_git(["rev-parse", "HEAD"], cwd=repo)


def create_repo(path: Path, files: Optional[Dict[str, FileSpec]] = None, *, branch: str = "main") -> str:
    """
    Initialize a repository on ``branch`` with one commit.

    Returns:
        The commit hash of HEAD
    """
    path.mkdir(parents=True, exist_ok=True)
    run_git(["init", "-q"], cwd=path)
    run_git(["checkout", "-q", "-b", branch], cwd=path)
    run_git(["config", "user.email", "treefetch@example.com"], cwd=path)
    run_git(["config", "user.name", "Treefetch Test"], cwd=path)
    return commit_files(path, files or {"README.md": "hello repo\n"}, message="initial")


def file_url(path: Path) -> str:
    return "file://" + os.path.abspath(path)
