"""
CLI smoke tests.

Tests basic CLI functionality and command wiring against temporary trees and
repositories. Validates that all commands can be invoked, produce the expected
output, and exit with mapped codes on failure.
"""
from __future__ import annotations

import pytest
from typer.testing import CliRunner

from treefetch.accessor import FSInputAccessor
from treefetch.cli import _parse_input, app
from treefetch.dump import hash_path
from treefetch.errors import InputValidationError

from tests.helpers.git_repos import create_repo, file_url, requires_git


@pytest.fixture
def cache_env(monkeypatch, tmp_path):
    monkeypatch.setenv("TREEFETCH_CACHE_DIR", str(tmp_path / "cache"))
    return tmp_path / "cache"


@pytest.fixture
def tree(tmp_path):
    root = tmp_path / "tree"
    (root / "src").mkdir(parents=True)
    (root / "src" / "main.py").write_text("print('hi')\n")
    (root / "README.md").write_text("readme\n")
    return root


class TestCLISmokeTests:
    """Smoke tests for CLI commands."""

    def setup_method(self):
        """Set up test environment."""
        self.runner = CliRunner()

    def test_hash_command(self, cache_env, tree):
        """Test hash prints the SRI hash of a tree."""
        result = self.runner.invoke(app, ["hash", str(tree)])

        assert result.exit_code == 0
        assert result.stdout.strip() == hash_path(FSInputAccessor(tree))

    def test_hash_missing_path(self, cache_env, tmp_path):
        """Test hash of a missing path exits with the not-found code."""
        result = self.runner.invoke(app, ["hash", str(tmp_path / "nope")])
        assert result.exit_code == 1

    def test_dump_and_restore(self, cache_env, tree, tmp_path):
        """Test dump then restore reproduces the tree."""
        out = tmp_path / "tree.nar.zst"
        dumped = self.runner.invoke(app, ["dump", str(tree), str(out)])
        assert dumped.exit_code == 0
        assert "NAR hash: sha256-" in dumped.stdout
        assert out.exists()

        dest = tmp_path / "restored"
        restored = self.runner.invoke(app, ["restore", str(out), str(dest)])
        assert restored.exit_code == 0
        assert (dest / "src" / "main.py").read_text() == "print('hi')\n"
        assert hash_path(FSInputAccessor(dest)) == hash_path(FSInputAccessor(tree))

    def test_dump_uncompressed(self, cache_env, tree, tmp_path):
        """Test dump with --compression none."""
        out = tmp_path / "tree.nar"
        result = self.runner.invoke(app, ["dump", str(tree), str(out), "--compression", "none"])
        assert result.exit_code == 0
        assert out.read_bytes()[8:21] == b"nix-archive-1"

    def test_dump_default_output_name(self, cache_env, tree, tmp_path, monkeypatch):
        """Test that the output name defaults to <basename>.nar.zst."""
        monkeypatch.chdir(tmp_path)
        result = self.runner.invoke(app, ["dump", str(tree)])
        assert result.exit_code == 0
        assert (tmp_path / "tree.nar.zst").exists()

    def test_dump_extension_mismatch(self, cache_env, tree, tmp_path):
        """Test that the output extension must match the compression."""
        result = self.runner.invoke(app, ["dump", str(tree), str(tmp_path / "out.nar")])
        assert result.exit_code != 0
        assert not (tmp_path / "out.nar").exists()

    def test_dump_invalid_compression(self, cache_env, tree, tmp_path):
        """Test that unknown compression names are usage errors."""
        result = self.runner.invoke(app, ["dump", str(tree), str(tmp_path / "x"), "--compression", "gzip"])
        assert result.exit_code == 2

    def test_restore_existing_destination(self, cache_env, tree, tmp_path):
        """Test that restoring onto an existing path fails."""
        out = tmp_path / "tree.nar"
        self.runner.invoke(app, ["dump", str(tree), str(out), "--compression", "none"])
        result = self.runner.invoke(app, ["restore", str(out), str(tree)])
        assert result.exit_code != 0

    def test_restore_garbage(self, cache_env, tmp_path):
        """Test that a non-dump file exits with the dump error code."""
        bogus = tmp_path / "bogus.nar"
        bogus.write_bytes(b"definitely not a dump")
        result = self.runner.invoke(app, ["restore", str(bogus), str(tmp_path / "out")])
        assert result.exit_code == 8
        assert "error:" in result.output

    def test_to_url(self, cache_env):
        """Test to-url renders the canonical URL."""
        result = self.runner.invoke(app, [
            "to-url", "git+https://example.org/repo", "--ref", "main", "--shallow",
        ])
        assert result.exit_code == 0
        assert result.stdout.strip() == "git+https://example.org/repo?ref=main&shallow=1"

    def test_to_url_invalid_input(self, cache_env):
        """Test that invalid inputs exit with the validation code."""
        result = self.runner.invoke(app, ["to-url", "git+https://example.org/repo", "--rev", "a" * 40])
        assert result.exit_code == 2
        assert "no branch/tag name" in result.output

    def test_help(self):
        """Test that every command is registered."""
        result = self.runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("fetch", "ls", "dump", "hash", "restore", "to-url"):
            assert command in result.stdout


class TestParseInput:
    """Test CLI argument to input conversion."""

    def test_local_path_becomes_file_url(self, tmp_path):
        """Test that scheme-less paths become git+file URLs."""
        input = _parse_input(str(tmp_path))
        assert input.url == file_url(tmp_path)

    def test_options_override_query(self):
        """Test that options win over URL query parameters."""
        input = _parse_input("git+https://example.org/r?ref=main", ref="dev", submodules=True)
        assert input.ref == "dev"
        assert input.submodules is True

    def test_invalid_option(self):
        """Test that invalid option values are rejected."""
        with pytest.raises(InputValidationError):
            _parse_input("git+https://example.org/r", ref="bad..ref")


@requires_git
class TestFetchCommands:
    """Test commands that run git."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_fetch_local_repo(self, cache_env, tmp_path):
        """Test fetch of a local repository prints its store path."""
        repo = tmp_path / "repo"
        head = create_repo(repo, {"a.txt": "a"})

        result = self.runner.invoke(app, ["fetch", str(repo), "--verbose"])

        assert result.exit_code == 0, result.output
        assert f"Revision: {head}" in result.stdout
        assert str(cache_env / "store") in result.stdout
        assert "NAR hash: sha256-" in result.stdout

    def test_ls_local_repo(self, cache_env, tmp_path):
        """Test ls lists the tree of a repository."""
        repo = tmp_path / "repo"
        create_repo(repo, {"a.txt": "a", "dir/b.txt": "b"})

        result = self.runner.invoke(app, ["ls", str(repo)])

        assert result.exit_code == 0, result.output
        assert "a.txt" in result.stdout
        assert "dir/" in result.stdout

    def test_fetch_missing_rev(self, cache_env, tmp_path):
        """Test that a missing revision exits with the consistency code."""
        repo = tmp_path / "repo"
        create_repo(repo)

        result = self.runner.invoke(app, ["fetch", str(repo), "--ref", "main", "--rev", "f" * 40])

        assert result.exit_code == 5
