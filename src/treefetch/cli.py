"""
treefetch CLI

Implements 6 CLI verbs with Operations facade integration:
- fetch: Fetch a Git input into the store
- ls: List a directory of a Git input's tree
- dump: Write the canonical dump of a path to a file
- hash: Print the NAR hash of a path
- restore: Materialize a dump file
- to-url: Print the canonical URL of a Git input
"""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

import typer

from .cli_context import CLIContext
from .inputs import GitInput
from .operations import Operations, OpsConfig, run_and_exit
from .operations.printers import (
    print_dump_summary, print_entries, print_fetch_result, print_hash,
    print_restore_summary, print_url
)

app = typer.Typer(name="treefetch", help="Fetch Git sources into a content-addressed store")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _parse_input(url: str, *,
                 ref: Optional[str] = None,
                 rev: Optional[str] = None,
                 shallow: bool = False,
                 submodules: bool = False,
                 all_refs: bool = False,
                 name: Optional[str] = None,
                 nar_hash: Optional[str] = None) -> GitInput:
    """
    Build a GitInput from a CLI URL argument plus options.

    Supports:
    - "git+https://host/repo?ref=main" and the other Git URL schemes
    - "/local/path" or "./path" -> git+file URL of the absolute path

    Raises:
        InputValidationError: If the URL or an option is invalid
    """
    if not urlsplit(url).scheme:
        url = "git+file://" + os.path.abspath(url)
    attrs: Dict[str, Any] = GitInput.from_url(url).to_attrs()
    overrides = {
        "ref": ref,
        "rev": rev,
        "name": name,
        "narHash": nar_hash,
        "shallow": True if shallow else None,
        "submodules": True if submodules else None,
        "allRefs": True if all_refs else None,
    }
    attrs.update({k: v for k, v in overrides.items() if v is not None})
    return GitInput.from_attrs(attrs)


@app.command()
def fetch(
    url: str = typer.Argument(..., help="Git URL (git+https://..., git+file://...) or local path"),
    ref: Optional[str] = typer.Option(None, "--ref", help="Branch or tag to fetch"),
    rev: Optional[str] = typer.Option(None, "--rev", help="Commit to fetch (requires --ref)"),
    shallow: bool = typer.Option(False, "--shallow", help="Accept shallow history"),
    submodules: bool = typer.Option(False, "--submodules", help="Include submodules"),
    all_refs: bool = typer.Option(False, "--all-refs", help="Fetch every ref of the remote"),
    name: Optional[str] = typer.Option(None, "--name", help="Store path name"),
    nar_hash: Optional[str] = typer.Option(None, "--nar-hash", help="Expected SRI hash of the tree"),
    verbose: bool = typer.Option(False, "--verbose", help="Show detailed output")
) -> None:
    """Fetch a Git input into the store."""

    def _fetch() -> None:
        _configure_logging(verbose)
        input = _parse_input(url, ref=ref, rev=rev, shallow=shallow, submodules=submodules,
                             all_refs=all_refs, name=name, nar_hash=nar_hash)
        context = CLIContext.from_env()
        ops = Operations(OpsConfig(verbose=verbose), settings=context.settings, fetcher=context.fetcher)

        store_path, real_path, result = ops.fetch(input)
        print_fetch_result(store_path, real_path, result, verbose=verbose)

    run_and_exit(_fetch)


@app.command()
def ls(
    url: str = typer.Argument(..., help="Git URL or local path"),
    path: str = typer.Argument("/", help="Directory inside the tree"),
    ref: Optional[str] = typer.Option(None, "--ref", help="Branch or tag"),
    rev: Optional[str] = typer.Option(None, "--rev", help="Commit (requires --ref)"),
    verbose: bool = typer.Option(False, "--verbose", help="Show detailed output")
) -> None:
    """List a directory of a Git input's tree."""

    def _ls() -> None:
        _configure_logging(verbose)
        input = _parse_input(url, ref=ref, rev=rev)
        context = CLIContext.from_env()
        ops = Operations(OpsConfig(verbose=verbose), settings=context.settings, fetcher=context.fetcher)

        entries, result = ops.ls(input, path if path.startswith("/") else "/" + path)
        print_entries(entries, result)

    run_and_exit(_ls)


@app.command()
def dump(
    src: str = typer.Argument(..., help="File or directory to dump"),
    out_path: Optional[str] = typer.Argument(None, help="Output path (.nar or .nar.zst, auto-generated if not provided)"),
    compression: str = typer.Option("zstd", "--compression", help="Compression format: zstd or none")
) -> None:
    """Write the canonical dump of a path to a file."""

    def _dump() -> None:
        compression_map = {
            "zstd": ("nar.zst", True),
            "none": ("nar", False)
        }
        if compression not in compression_map:
            raise typer.BadParameter(f"Invalid compression '{compression}'. Use 'zstd' or 'none'.")
        ext, use_compression = compression_map[compression]

        if out_path is None:
            src_name = os.path.basename(os.path.abspath(src)) or "source"
            final_out_path = f"{src_name}.{ext}"
        else:
            final_out_path = out_path
            if use_compression and not final_out_path.endswith(".zst"):
                raise typer.BadParameter("With --compression zstd, output path must end with .zst")
            elif not use_compression and final_out_path.endswith(".zst"):
                raise typer.BadParameter("With --compression none, output path must not end with .zst")

        ops = Operations(OpsConfig(), settings=CLIContext.from_env().settings)
        nar_hash = ops.dump(src, final_out_path)
        print_dump_summary(src, final_out_path, nar_hash)

    run_and_exit(_dump)


@app.command()
def hash(
    src: str = typer.Argument(..., help="File or directory to hash")
) -> None:
    """Print the NAR hash of a path."""

    def _hash() -> None:
        ops = Operations(OpsConfig(), settings=CLIContext.from_env().settings)
        print_hash(ops.hash(src))

    run_and_exit(_hash)


@app.command()
def restore(
    dump_file: str = typer.Argument(..., help="Dump file (.nar or .nar.zst)"),
    dest: str = typer.Argument(..., help="Path to create")
) -> None:
    """Materialize a dump file."""

    def _restore() -> None:
        ops = Operations(OpsConfig(), settings=CLIContext.from_env().settings)
        ops.restore(dump_file, dest)
        print_restore_summary(dump_file, dest)

    run_and_exit(_restore)


@app.command("to-url")
def to_url(
    url: str = typer.Argument(..., help="Git URL or local path"),
    ref: Optional[str] = typer.Option(None, "--ref", help="Branch or tag"),
    rev: Optional[str] = typer.Option(None, "--rev", help="Commit (requires --ref)"),
    shallow: bool = typer.Option(False, "--shallow", help="Accept shallow history")
) -> None:
    """Print the canonical URL of a Git input."""

    def _to_url() -> None:
        input = _parse_input(url, ref=ref, rev=rev, shallow=shallow)
        ops = Operations(OpsConfig(), settings=CLIContext.from_env().settings)
        print_url(ops.to_url(input))

    run_and_exit(_to_url)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
