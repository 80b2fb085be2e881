"""Git hosting providers.

Example:
    >>> from ferry_core.git import create_git_provider
    >>> from ferry_core.schemas.promotion import GitProviderConfig
    >>> provider = create_git_provider(GitProviderConfig(kind="github"))
    >>> provider.kind
    'github'
"""

from __future__ import annotations

from ferry_core.git.provider import (
    CommitStatus,
    GitProvider,
    PullRequest,
    PullRequestArguments,
    PullRequestInfo,
    create_git_provider,
)

__all__ = [
    "CommitStatus",
    "GitProvider",
    "PullRequest",
    "PullRequestArguments",
    "PullRequestInfo",
    "create_git_provider",
]
