"""
Error mapping and CLI utilities.

Provides centralized exception-to-exit-code mapping and CLI command wrappers
to ensure consistent error handling across all Typer commands.
"""
from __future__ import annotations

import typer
from typing import Callable, TypeVar

T = TypeVar('T')

# Exit codes by exception class name; the most specific class in the MRO wins
EXIT_CODES = {
    "PathNotFoundError": 1,
    "FileNotFoundError": 1,
    "InputValidationError": 2,
    "ValueError": 2,
    "FetchNetworkError": 3,
    "GitCommandError": 3,
    "LockTimeout": 3,
    "PolicyViolation": 4,
    "DirtyTreeError": 4,
    "ConsistencyError": 5,
    "ShallowRepositoryError": 5,
    "RevisionNotFoundError": 5,
    "NarHashMismatch": 5,
    "CacheConflictError": 5,
    "ConfinementError": 6,
    "UnsupportedOperation": 7,
    "DumpError": 8,
    "UnsupportedFileType": 8,
    "NameCollisionError": 8,
    "BadArchiveError": 8,
}


def exit_code_for(exc: BaseException) -> int:
    """
    Map exception to standardized exit code.

    Returns exit codes:
    - 0: Success
    - 1: Path not found (PathNotFoundError)
    - 2: Invalid input (InputValidationError, ValueError)
    - 3: Network/git failure (FetchNetworkError, GitCommandError) or unknown error
    - 4: Policy violation (DirtyTreeError)
    - 5: Consistency violation (ShallowRepositoryError, RevisionNotFoundError, NarHashMismatch)
    - 6: Confinement violation (ConfinementError)
    - 7: Unsupported operation (UnsupportedOperation)
    - 8: Dump encoding/decoding error (DumpError and subclasses)

    Args:
        exc: Exception to map

    Returns:
        Exit code (1-8, with 3 as fallback for unknown exceptions)
    """
    for cls in type(exc).__mro__:
        if cls.__name__ in EXIT_CODES:
            return EXIT_CODES[cls.__name__]
    return 3


def run_and_exit(func: Callable[[], T]) -> T:
    """
    Unified error wrapper for CLI commands.

    Executes the given function and maps any exceptions to appropriate
    exit codes using typer.Exit. This centralizes error handling so
    CLI commands don't need individual try/except blocks.

    Args:
        func: Function to execute

    Returns:
        Function result if successful

    Raises:
        typer.Exit: With appropriate exit code if function raises exception
    """
    try:
        return func()
    except (typer.Exit, typer.BadParameter):
        raise
    except Exception as e:
        from .printers import print_error
        print_error(e)
        raise typer.Exit(code=exit_code_for(e)) from e
