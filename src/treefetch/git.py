"""
Git subprocess runner.

All interaction with the version-control binary goes through GitRunner so
that exit-status semantics live in one place: a command either succeeds, ends
with a status the caller declared informative (for example ``diff-index``
reporting differences), or fails with GitCommandError.
"""
from __future__ import annotations

import logging
import os
import subprocess
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import Collection, List, Optional, Sequence, Tuple

from .errors import GitCommandError

__all__ = ["GitResult", "GitRunner", "INITIAL_BRANCH"]

logger = logging.getLogger(__name__)

# Explicit initial branch for freshly initialized repositories; it only silences
# git's advice output since we always fetch a specific revision or branch.
INITIAL_BRANCH = "__treefetch_dummy_branch"


@dataclass(frozen=True)
class GitResult:
    """
    Outcome of a git invocation that did not fail.

    ``informative`` is True when the command exited with one of the statuses
    the caller declared meaningful rather than fatal.
    """
    argv: Tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def informative(self) -> bool:
        return self.returncode > 0

    @property
    def signaled(self) -> bool:
        return self.returncode < 0

    @property
    def output(self) -> str:
        """Stdout followed by stderr, for matching git's diagnostic messages."""
        return self.stdout + self.stderr


class GitRunner:
    """
    Thin wrapper over the git executable.

    Every invocation is blocking; cancellation is left to the caller.
    """

    def __init__(self, program: str = "git") -> None:
        self.program = program

    def capture(self, args: Sequence[str], *, cwd: Optional[Path] = None) -> GitResult:
        """
        Run git and return the raw result without interpreting the exit status.

        Args:
            args: Arguments after the program name
            cwd: Working directory for the subprocess

        Returns:
            GitResult with decoded stdout/stderr
        """
        argv = (self.program, *args)
        logger.debug(f"Running {' '.join(argv)}")
        env = dict(os.environ, GIT_TERMINAL_PROMPT="0")
        completed = subprocess.run(
            list(argv),
            cwd=cwd,
            env=env,
            check=False,
            capture_output=True,
        )
        return GitResult(
            argv=argv,
            returncode=completed.returncode,
            stdout=completed.stdout.decode("utf-8", errors="surrogateescape"),
            stderr=completed.stderr.decode("utf-8", errors="replace"),
        )

    def run(self, args: Sequence[str], *, cwd: Optional[Path] = None) -> str:
        """
        Run git and return stdout with the trailing newline removed.

        Raises:
            GitCommandError: If git exits non-zero or is killed by a signal
        """
        result = self.capture(args, cwd=cwd)
        if not result.ok:
            raise GitCommandError(result.argv, result.returncode, result.stderr)
        return result.stdout.rstrip("\n")

    def run_status(
        self,
        args: Sequence[str],
        *,
        informative: Collection[int] = (1,),
        cwd: Optional[Path] = None,
    ) -> GitResult:
        """
        Run git, accepting the listed exit statuses as non-fatal outcomes.

        Args:
            args: Arguments after the program name
            informative: Exit statuses that report a result rather than a failure

        Returns:
            GitResult; check ``informative`` to see which outcome occurred

        Raises:
            GitCommandError: For any other non-zero status or a signal
        """
        result = self.capture(args, cwd=cwd)
        if result.ok or (result.returncode > 0 and result.returncode in informative):
            return result
        raise GitCommandError(result.argv, result.returncode, result.stderr)

    def list_z(self, args: Sequence[str], *, cwd: Optional[Path] = None) -> List[str]:
        """Run a ``-z`` style listing command and split its NUL-separated output."""
        result = self.capture(args, cwd=cwd)
        if not result.ok:
            raise GitCommandError(result.argv, result.returncode, result.stderr)
        return [item for item in result.stdout.split("\0") if item]

    def stream_archive(self, repo_dir: str, rev: str, dest: Path) -> None:
        """
        Export ``rev`` of ``repo_dir`` into ``dest`` by streaming ``git archive``.

        The tar stream is unpacked as it is produced; nothing is buffered on disk.

        Raises:
            GitCommandError: If git archive fails or its output is not a tar stream
        """
        argv = [self.program, "-C", repo_dir, "archive", "--format=tar", rev]
        logger.debug(f"Running {' '.join(argv)} into {dest}")
        tar_error: Optional[tarfile.TarError] = None
        with subprocess.Popen(argv, stdout=subprocess.PIPE, stderr=subprocess.PIPE) as proc:
            try:
                with tarfile.open(fileobj=proc.stdout, mode="r|") as tar:
                    tar.extractall(dest, filter="tar")
            except tarfile.TarError as e:
                # A truncated stream usually means git died; prefer git's own error
                tar_error = e
                proc.kill()
            stderr = proc.stderr.read().decode("utf-8", errors="replace")
            returncode = proc.wait()
        if returncode != 0:
            raise GitCommandError(argv, returncode, stderr)
        if tar_error is not None:
            raise GitCommandError(argv, returncode, f"malformed archive stream: {tar_error}") from tar_error
