"""
Error mapping and CLI utilities.

Provides centralized exception-to-exit-code mapping and CLI command wrappers
to ensure consistent error handling across all Typer commands.
"""
from __future__ import annotations

import typer
from typing import Callable, TypeVar

T = TypeVar('T')

# Exit code for a well-formed rejection; not an exception
REJECTED_EXIT_CODE = 8

EXIT_CODES = {
    "ValidationError": 2,
    "ValueError": 2,
    "ConflictingStartEpochError": 2,
    "MalformedIdentifierError": 2,
    "InvalidAddressError": 2,
    "InvalidLabelSourceError": 2,
    "FileNotFoundError": 2,
    "ChainReadError": 3,
    "SigningError": 4,
    "UnsupportedProtocolError": 5,
    "TransportFailed": 6,
    "TimedOut": 7,
}


def exit_code_for(exc: BaseException) -> int:
    """
    Map exception to standardized exit code.

    Returns:
    - 2: Invalid input (bad CID/address/label, conflicting start epoch)
    - 3: Chain read failure, or unknown error
    - 4: Signing failure
    - 5: Provider does not speak a supported protocol version
    - 6: Transport failure (safe to retry from scratch)
    - 7: Timed out (outcome unknown, reconcile before retrying)
    """
    return EXIT_CODES.get(type(exc).__name__, 3)


def run_and_exit(func: Callable[[], T]) -> T:
    """
    Unified error wrapper for CLI commands.

    Executes the given function and maps any exceptions to appropriate
    exit codes using typer.Exit, printing the error message to stderr.

    Raises:
        typer.Exit: With appropriate exit code if function raises exception
    """
    try:
        return func()
    except typer.Exit:
        raise
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=exit_code_for(e)) from e
