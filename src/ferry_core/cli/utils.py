"""CLI utility functions and error handling.

Shared helpers for the ferry CLI: exit codes, and output helpers that keep
human-facing messages on stderr so stdout stays machine-readable.

Example:
    from ferry_core.cli.utils import ExitCode, error

    error("No environments defined", team="jx")
    sys.exit(ExitCode.USAGE_ERROR)
"""

from __future__ import annotations

from enum import IntEnum

import click


class ExitCode(IntEnum):
    """Exit codes of the ferry CLI.

    The values match the ``exit_code`` attributes of the promotion errors.
    """

    SUCCESS = 0
    """Command completed successfully."""

    GENERAL_ERROR = 1
    """General error (catch-all for failures)."""

    USAGE_ERROR = 2
    """Invalid usage or configuration (unknown environment, bad option)."""

    NOT_FOUND = 3
    """No published version of the application was found."""

    EXTERNAL_SERVICE_ERROR = 5
    """Git provider, helm or cluster call failed."""

    PROMOTION_FAILED = 6
    """Pull request closed or a commit status failed."""

    TIMEOUT = 7
    """Timed out waiting for the promotion."""


def exit_code_for(exc: BaseException) -> int:
    """CLI exit code for an exception.

    Promotion errors carry their own exit code; anything else is a general
    error.
    """
    code = getattr(exc, "exit_code", None)
    if isinstance(code, int):
        return code
    return int(ExitCode.GENERAL_ERROR)


def _with_context(prefix: str, message: str, context: dict[str, str | int | bool | None]) -> str:
    context_str = ", ".join(f"{k}={v}" for k, v in context.items() if v is not None)
    if context_str:
        return f"{prefix}{message} ({context_str})"
    return f"{prefix}{message}"


def error(message: str, **context: str | int | bool | None) -> None:
    """Print an error message to stderr.

    Example:
        error("Promotion failed", environment="staging")
        # Output: Error: Promotion failed (environment=staging)
    """
    click.echo(_with_context("Error: ", message, context), err=True)


def warn(message: str, **context: str | int | bool | None) -> None:
    """Print a warning message to stderr."""
    click.echo(_with_context("Warning: ", message, context), err=True)


def success(message: str) -> None:
    """Print a success message to stdout."""
    click.echo(message)


def info(message: str) -> None:
    """Print an informational message to stderr."""
    click.echo(message, err=True)


__all__: list[str] = [
    "ExitCode",
    "error",
    "exit_code_for",
    "info",
    "success",
    "warn",
]
