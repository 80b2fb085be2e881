"""Promotion exception hierarchy for ferry-core.

This module defines all custom exceptions raised while promoting an
application into an environment. All exceptions inherit from PromotionError.

Exception Hierarchy:
    PromotionError (base)
    ├── ConfigurationError          # Unknown environment, missing option
    │   └── DiscoveryError          # Application name could not be discovered
    ├── NotFoundError               # No published version of the application
    ├── ExternalServiceError        # Git provider, helm, ledger or cluster call failed
    ├── TerminalFailure             # Pull request can never succeed
    │   ├── PullRequestClosedError  # Closed without merging
    │   └── CommitStatusFailedError # A check reported failure/error
    └── PromotionTimeoutError       # Deadline exceeded while waiting

Exit Codes:
    0 - Success
    1 - General error (PromotionError)
    2 - Configuration error (ConfigurationError, DiscoveryError)
    3 - Version not found (NotFoundError)
    5 - External service error (ExternalServiceError)
    6 - Pull request or commit status failed (TerminalFailure)
    7 - Timed out waiting for the promotion (PromotionTimeoutError)

Example:
    >>> from ferry_core.errors import ConfigurationError
    >>> raise ConfigurationError(
    ...     "Unknown environment: prod", valid_choices=["staging", "production"]
    ... )
    Traceback (most recent call last):
        ...
    ConfigurationError: Unknown environment: prod. Valid values: staging, production
"""

from __future__ import annotations

from datetime import timedelta


class PromotionError(Exception):
    """Base exception for all promotion errors.

    Attributes:
        exit_code: CLI exit code for this error type (default: 1).
    """

    exit_code: int = 1


class ConfigurationError(PromotionError):
    """Raised when the promotion request cannot be resolved to a target.

    Covers unknown environment names, missing options and environments
    without a namespace.

    Attributes:
        valid_choices: Valid values for the offending option, if known.
        exit_code: CLI exit code (2).
    """

    exit_code: int = 2

    def __init__(self, message: str, valid_choices: list[str] | None = None) -> None:
        """Initialize ConfigurationError.

        Args:
            message: Description of the configuration problem.
            valid_choices: Valid values for the offending option.
        """
        self.valid_choices = list(valid_choices or [])
        if self.valid_choices:
            message = f"{message}. Valid values: {', '.join(self.valid_choices)}"
        super().__init__(message)

    @classmethod
    def invalid_option(
        cls, option: str, value: str, valid_choices: list[str]
    ) -> ConfigurationError:
        """Build the error for an option value that is not one of the choices."""
        return cls(f"Invalid option: --{option} {value}", valid_choices=valid_choices)

    @classmethod
    def missing_option(cls, option: str) -> ConfigurationError:
        """Build the error for a required option that was not given."""
        return cls(f"Missing option: --{option}")


class DiscoveryError(ConfigurationError):
    """Raised when the application name cannot be discovered.

    Discovery looks for chart metadata in the working directory and then
    falls back to the git remote repository name.
    """


class NotFoundError(PromotionError):
    """Raised when the package repository has no version of the application.

    Attributes:
        application: Application that was searched for.
        exit_code: CLI exit code (3).
    """

    exit_code: int = 3

    def __init__(self, application: str) -> None:
        self.application = application
        super().__init__(
            f"Could not find a version of app {application} in the helm repositories"
        )


class ExternalServiceError(PromotionError):
    """Raised when a single call to an external collaborator fails.

    Wraps errors from the Git provider, the helm binary, the activity ledger
    and the cluster API. Inside the merge poll loop these are logged and
    retried; elsewhere they abort the promotion.

    Attributes:
        service: Name of the service that failed (e.g., "github", "helm").
        operation: Operation that was attempted.
        reason: Description of the failure.
        exit_code: CLI exit code (5).
    """

    exit_code: int = 5

    def __init__(self, service: str, operation: str, reason: str) -> None:
        self.service = service
        self.operation = operation
        self.reason = reason
        super().__init__(f"{service} {operation} failed: {reason}")


class TerminalFailure(PromotionError):
    """Raised when a pull request reached a state it cannot recover from.

    Attributes:
        url: Pull request URL.
        exit_code: CLI exit code (6).
    """

    exit_code: int = 6

    def __init__(self, url: str, message: str) -> None:
        self.url = url
        super().__init__(message)


class PullRequestClosedError(TerminalFailure):
    """Raised when a promotion pull request is closed without merging."""

    def __init__(self, url: str) -> None:
        super().__init__(
            url, f"Promotion failed as Pull Request {url} is closed without merging"
        )


class CommitStatusFailedError(TerminalFailure):
    """Raised when a commit status reports ``failure`` or ``error``.

    Attributes:
        sha: Commit the status was reported against.
        context: Context URL of the failing status.
        state: Reported state.
        target_url: Link to the failing build, if reported.
        description: Status description, if reported.
    """

    def __init__(
        self,
        url: str,
        sha: str,
        state: str,
        context: str = "",
        target_url: str = "",
        description: str = "",
    ) -> None:
        self.sha = sha
        self.state = state
        self.context = context
        self.target_url = target_url
        self.description = description
        if context:
            message = (
                f"Status: {state} for {context} on sha {sha} "
                f"URL: {target_url} description: {description}"
            )
        else:
            message = f"Pull request {url} last commit has status {state} for ref {sha}"
        super().__init__(url, message)


class PromotionTimeoutError(PromotionError, TimeoutError):
    """Raised when the pull request does not resolve before the deadline.

    Attributes:
        url: Pull request URL.
        duration: The configured timeout.
        exit_code: CLI exit code (7).
    """

    exit_code: int = 7

    def __init__(self, url: str, duration: timedelta) -> None:
        self.url = url
        self.duration = duration
        super().__init__(
            f"Timed out waiting for pull request {url} to merge. "
            f"Waited {format_duration(duration)}"
        )


def format_duration(duration: timedelta) -> str:
    """Format a timedelta the way durations are written on the command line.

    Examples:
        >>> format_duration(timedelta(hours=1))
        '1h0m0s'
        >>> format_duration(timedelta(seconds=20))
        '20s'
    """
    total = duration.total_seconds()
    hours, remainder = divmod(int(total), 3600)
    minutes, seconds = divmod(remainder, 60)
    fraction = total - int(total)
    secs = f"{seconds + fraction:g}s"
    if hours:
        return f"{hours}h{minutes}m{secs}"
    if minutes:
        return f"{minutes}m{secs}"
    return secs


__all__ = [
    "CommitStatusFailedError",
    "ConfigurationError",
    "DiscoveryError",
    "ExternalServiceError",
    "NotFoundError",
    "PromotionError",
    "PromotionTimeoutError",
    "PullRequestClosedError",
    "TerminalFailure",
    "format_duration",
]
