"""Promotion configuration and runtime schemas.

This module defines the immutable configuration a promotion run is built
from, and the ReleaseInfo that tracks a single promotion attempt.

Key Components:
    PromoteConfig: Immutable options for one orchestrator invocation
    GitProviderConfig: Which Git hosting backend to talk to
    ReleaseInfo: The release being promoted and its live pull request
    parse_duration: Parse "1h", "20s", "1h30m" style durations

Example:
    >>> config = PromoteConfig(application="myapp", environment="staging")
    >>> config.timeout
    datetime.timedelta(seconds=3600)
    >>> config.release_name_for("jx-staging")
    'jx-staging-myapp'
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from ferry_core.git.provider import PullRequestInfo

DEFAULT_HELM_REPO_NAME = "releases"
"""Local alias of the chart repository that holds the application."""

DEFAULT_HELM_REPO_URL = "http://jenkins-x-chartmuseum:8080"
"""Chart repository the alias points at."""

DEFAULT_REQUIREMENTS_PATH = "env/requirements.yaml"
"""Requirements manifest inside an environment repository."""

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str) -> timedelta:
    """Parse a duration string such as ``1h``, ``20s`` or ``1h30m``.

    Args:
        value: Duration string. A bare ``0`` is accepted.

    Returns:
        The parsed duration.

    Raises:
        ValueError: If the string is not a valid duration.

    Examples:
        >>> parse_duration("1h30m")
        datetime.timedelta(seconds=5400)
        >>> parse_duration("500ms")
        datetime.timedelta(microseconds=500000)
    """
    text = value.strip()
    if text == "0":
        return timedelta(0)
    if not text:
        raise ValueError("empty duration")

    position = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return timedelta(seconds=seconds)


def _coerce_duration(value: Any, option: str) -> Any:
    if isinstance(value, str):
        try:
            return parse_duration(value)
        except ValueError as e:
            raise ValueError(
                f"Invalid duration format {value} for option --{option}: {e}"
            ) from e
    return value


class GitProviderConfig(BaseModel):
    """Git hosting backend used for pull requests and issue comments.

    Attributes:
        kind: Hosting backend variant.
        server_url: Base URL of the hosting server.
        token: API token. Never logged.
        requirements_path: Requirements manifest path in environment repositories.
        timeout_seconds: HTTP request timeout.

    Examples:
        >>> GitProviderConfig(kind="gitea", server_url="https://gitea.example.com").kind
        'gitea'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["github", "gitea"] = Field(
        default="github",
        description="Git hosting backend variant",
    )
    server_url: str = Field(
        default="https://github.com",
        min_length=1,
        description="Base URL of the Git hosting server",
    )
    token: str | None = Field(
        default=None,
        repr=False,
        description="API token for the Git hosting server",
    )
    requirements_path: str = Field(
        default=DEFAULT_REQUIREMENTS_PATH,
        min_length=1,
        description="Requirements manifest path inside environment repositories",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP request timeout in seconds",
    )


class PromoteConfig(BaseModel):
    """Immutable options for one orchestrator invocation.

    Built once (normally by the CLI) and passed to the PromotionCoordinator.

    Attributes:
        application: Application (chart) name. Discovered when empty.
        version: Version to promote. Empty means the latest version.
        environment: Target environment name.
        namespace: Target namespace override.
        release_name: Helm release name. Defaults to "{namespace}-{app}".
        all_automatic: Promote to every automatic permanent environment.
        helm_repo_name: Local alias of the chart repository.
        helm_repo_url: URL of the chart repository.
        timeout: How long to wait for the promotion. None disables waiting.
        pull_request_poll_interval: Poll interval while waiting on a pull request.
        no_helm_update: Skip refreshing the chart repository index.
        no_merge: Never merge promotion pull requests automatically.
        batch_mode: Non-interactive; confirmation prompts are declined.
        team_namespace: Namespace environments are registered in.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    application: str = Field(default="", description="Application to promote")
    version: str = Field(default="", description="Version to promote")
    environment: str = Field(default="", description="Target environment name")
    namespace: str = Field(default="", description="Target namespace override")
    release_name: str = Field(default="", description="Helm release name")
    all_automatic: bool = Field(
        default=False,
        description="Promote to all automatic environments in order",
    )
    helm_repo_name: str = Field(
        default=DEFAULT_HELM_REPO_NAME,
        description="Local alias of the chart repository",
    )
    helm_repo_url: str = Field(
        default=DEFAULT_HELM_REPO_URL,
        description="Chart repository URL",
    )
    timeout: timedelta | None = Field(
        default=timedelta(hours=1),
        description="Time to wait for the promotion to succeed",
    )
    pull_request_poll_interval: timedelta = Field(
        default=timedelta(seconds=20),
        description="Poll interval when waiting for a pull request to merge",
    )
    no_helm_update: bool = Field(
        default=False,
        description="Skip 'helm repo update' before upgrading",
    )
    no_merge: bool = Field(
        default=False,
        description="Disable automatic merge of promotion pull requests",
    )
    batch_mode: bool = Field(
        default=False,
        description="Run without interactive prompts",
    )
    team_namespace: str = Field(
        default="",
        description="Namespace the environments are registered in",
    )

    @field_validator("timeout", mode="before")
    @classmethod
    def validate_timeout(cls, v: Any) -> Any:
        """Accept Go-style duration strings; empty or zero disables waiting."""
        if v in ("", None):
            return None
        parsed = _coerce_duration(v, "timeout")
        if isinstance(parsed, timedelta) and parsed <= timedelta(0):
            return None
        return parsed

    @field_validator("pull_request_poll_interval", mode="before")
    @classmethod
    def validate_poll_interval(cls, v: Any) -> Any:
        """Accept Go-style duration strings."""
        return _coerce_duration(v, "pull-request-poll-time")

    @property
    def full_app_name(self) -> str:
        """Chart reference including the local repository alias."""
        if self.helm_repo_name:
            return f"{self.helm_repo_name}/{self.application}"
        return self.application

    def release_name_for(self, namespace: str) -> str:
        """Release name to use in the given namespace."""
        return self.release_name or f"{namespace}-{self.application}"


@dataclass
class ReleaseInfo:
    """The release a single promotion attempt acts on.

    Exactly one exists per promote call. The pull request info is replaced
    as the GitOps path progresses; name, app and version never change.
    """

    release_name: str
    full_app_name: str
    version: str
    pull_request_info: PullRequestInfo | None = None


__all__ = [
    "DEFAULT_HELM_REPO_NAME",
    "DEFAULT_HELM_REPO_URL",
    "DEFAULT_REQUIREMENTS_PATH",
    "GitProviderConfig",
    "PromoteConfig",
    "ReleaseInfo",
    "parse_duration",
]
