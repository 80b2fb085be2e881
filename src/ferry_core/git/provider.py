"""Git provider capability interface.

The orchestrator talks to Git hosting through GitProvider. One variant is
implemented per hosting backend (GitHubProvider, GiteaProvider) and the
variant is chosen from GitProviderConfig, never by inspecting types.

Key Components:
    PullRequest: Mutable handle refreshed from the provider
    CommitStatus: A check status reported against a commit
    PullRequestArguments: What a promotion pull request is created from
    PullRequestInfo: Provider, handle and arguments of the live pull request
    GitProvider: The capability set
    create_git_provider: Select a variant from configuration
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ferry_core.helm.requirements import Requirements

if TYPE_CHECKING:
    from ferry_core.discovery import GitRepositoryInfo
    from ferry_core.schemas.promotion import GitProviderConfig

STATUS_SUCCESS = "success"
STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in-progress"
STATUS_FAILURE = "failure"
STATUS_ERROR = "error"
STATUS_UNKNOWN = "unknown"

FAILED_STATES = frozenset({STATUS_FAILURE, STATUS_ERROR})

EditRequirements = Callable[[Requirements], None]
"""Edits a requirements manifest in place."""


@dataclass
class PullRequest:
    """Handle on a pull request, refreshed in place by the provider.

    Attributes:
        owner: Repository owner.
        repo: Repository name.
        number: Pull request number.
        url: Web URL of the pull request.
        state: "open" or "closed".
        merged: Whether it has been merged (None until known).
        mergeable: Whether it can be merged without conflicts (None until known).
        merge_commit_sha: Merge commit, once reported.
        last_commit_sha: Head commit of the pull request branch.
    """

    owner: str
    repo: str
    number: int
    url: str
    state: str = "open"
    merged: bool | None = None
    mergeable: bool | None = None
    merge_commit_sha: str | None = None
    last_commit_sha: str = ""

    @property
    def is_closed(self) -> bool:
        return self.state == "closed"


@dataclass(frozen=True)
class CommitStatus:
    """A status reported by a CI system against a commit.

    Attributes:
        url: Context URL identifying the reporter (distinct per check).
        state: "success", "pending", "failure" or "error".
        target_url: Link to the build.
        description: Free text description.
    """

    url: str
    state: str
    target_url: str = ""
    description: str = ""

    @property
    def is_failed(self) -> bool:
        return self.state in FAILED_STATES


@dataclass(frozen=True)
class PullRequestArguments:
    """Arguments a promotion pull request is (re-)created from."""

    repository: GitRepositoryInfo
    branch: str
    title: str
    body: str
    base: str = ""


@dataclass
class PullRequestInfo:
    """The live promotion pull request of a ReleaseInfo.

    Attributes:
        provider: Provider the pull request lives on.
        pull_request: Pull request handle.
        arguments: Arguments used to create it.
        resolved_version: Version written into the manifest.
    """

    provider: GitProvider
    pull_request: PullRequest
    arguments: PullRequestArguments
    resolved_version: str = ""
    labels: list[str] = field(default_factory=list)


class GitProvider(ABC):
    """Capability set of a Git hosting backend."""

    kind: str = ""

    @abstractmethod
    def refresh_pull_request(self, pr: PullRequest) -> None:
        """Update state, merged, mergeable and shas of the handle in place."""

    @abstractmethod
    def list_commit_statuses(self, owner: str, repo: str, sha: str) -> list[CommitStatus]:
        """List statuses reported against a commit, newest first."""

    @abstractmethod
    def last_commit_status(self, pr: PullRequest) -> str:
        """Aggregate status of the pull request head commit.

        Returns:
            One of "in-progress", "success", "error", "failure" or "unknown".
        """

    @abstractmethod
    def merge_pull_request(self, pr: PullRequest, message: str) -> None:
        """Merge the pull request."""

    @abstractmethod
    def create_issue_comment(self, owner: str, repo: str, number: int, text: str) -> None:
        """Comment on an issue."""

    @abstractmethod
    def propose_or_update_pull_request(
        self,
        edit: EditRequirements,
        arguments: PullRequestArguments,
        existing: PullRequestInfo | None = None,
    ) -> PullRequestInfo:
        """Apply edit to the requirements manifest and propose it.

        The branch is reset onto the base branch before editing, so calling
        this again for an existing pull request rebases it rather than
        opening a duplicate.
        """


def create_git_provider(config: GitProviderConfig) -> GitProvider:
    """Create the provider variant selected by configuration.

    Args:
        config: Git provider configuration.

    Returns:
        GitHubProvider or GiteaProvider.
    """
    if config.kind == "gitea":
        from ferry_core.git.gitea import GiteaProvider

        return GiteaProvider(config)

    from ferry_core.git.github import GitHubProvider

    return GitHubProvider(config)


__all__ = [
    "FAILED_STATES",
    "STATUS_ERROR",
    "STATUS_FAILURE",
    "STATUS_IN_PROGRESS",
    "STATUS_PENDING",
    "STATUS_SUCCESS",
    "STATUS_UNKNOWN",
    "CommitStatus",
    "EditRequirements",
    "GitProvider",
    "PullRequest",
    "PullRequestArguments",
    "PullRequestInfo",
    "create_git_provider",
]
