"""
Human-readable output formatting.

Centralizes all CLI output formatting so commands stay thin; everything goes
through a rich console.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..accessor.base import DirEntries, FileType
from ..inputs import GitInput
from ..store import StorePath

_console = Console(soft_wrap=True)
_err_console = Console(stderr=True, soft_wrap=True)


def print_error(exc: BaseException) -> None:
    """Print a failure on stderr."""
    _err_console.print(f"[bold red]error:[/] {escape(str(exc))}")


def print_fetch_result(store_path: StorePath, real_path: Path, result: GitInput, verbose: bool = False) -> None:
    """
    Print fetch result.

    Args:
        store_path: Store path the tree was ingested into
        real_path: Host path of store_path
        result: Enriched input returned by the fetch
        verbose: Show every result attribute
    """
    _console.print(f"[bold]Store path:[/] {escape(str(real_path))}")
    _console.print(f"[bold]Locked URL:[/] {escape(result.to_url())}")
    if result.rev:
        _console.print(f"[bold]Revision:[/] {result.rev}")
    if result.nar_hash:
        _console.print(f"[bold]NAR hash:[/] {result.nar_hash}")

    if verbose:
        table = Table(title="Attributes")
        table.add_column("Name", style="cyan")
        table.add_column("Value", style="yellow")
        for key, value in sorted(result.to_attrs().items()):
            table.add_row(key, escape(str(value)))
        _console.print(table)


def print_entries(entries: DirEntries, result: GitInput) -> None:
    """
    Print a directory listing.

    Args:
        entries: Directory entries keyed by name
        result: Input the tree was fetched from
    """
    _console.print(f"[dim]{escape(str(result))}[/]")
    for name in sorted(entries):
        kind = entries[name]
        suffix = "/" if kind == FileType.DIRECTORY else ""
        _console.print(escape(name + suffix), highlight=False)


def print_hash(nar_hash: str, src: Optional[str] = None) -> None:
    """Print a tree hash, optionally labelled with its source."""
    if src:
        _console.print(f"{nar_hash}  {escape(src)}", highlight=False)
    else:
        _console.print(nar_hash, highlight=False)


def print_dump_summary(src: str, out_path: str, nar_hash: str) -> None:
    """
    Print dump operation summary.

    Args:
        src: Path that was dumped
        out_path: Output dump path
        nar_hash: Hash of the uncompressed dump
    """
    _console.print(f"Dumped {escape(src)} to {escape(out_path)}", highlight=False)
    _console.print(f"NAR hash: {nar_hash}", highlight=False)


def print_restore_summary(dump_file: str, dest: str) -> None:
    _console.print(f"Restored {escape(dump_file)} to {escape(dest)}", highlight=False)


def print_url(url: str) -> None:
    _console.print(escape(url), highlight=False)
