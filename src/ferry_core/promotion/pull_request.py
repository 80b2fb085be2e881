"""GitOps path: propose the new version as a pull request.

The pull request edits the environment repository's requirements manifest
so the application is pinned to the promoted version. An existing unmerged
pull request for the same release is updated in place.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

import structlog

from ferry_core.discovery import parse_git_url
from ferry_core.errors import ConfigurationError
from ferry_core.git.provider import PullRequestArguments
from ferry_core.promotion.activity import ActivityTracker, start_pull_request
from ferry_core.telemetry.tracing import create_span

if TYPE_CHECKING:
    from ferry_core.git.provider import GitProvider, PullRequestInfo
    from ferry_core.helm.requirements import Requirements
    from ferry_core.promotion.versions import VersionResolver
    from ferry_core.schemas.environment import Environment
    from ferry_core.schemas.promotion import PromoteConfig, ReleaseInfo

logger = structlog.get_logger(__name__)

LATEST_VERSION_NAME = "latest"

_INVALID_BRANCH_CHARS = re.compile(r"[^A-Za-z0-9._/-]+")


def to_valid_branch_name(name: str) -> str:
    """Replace characters git does not accept in branch names.

    Examples:
        >>> to_valid_branch_name("promote-myapp-1.2.0+build 5")
        'promote-myapp-1.2.0-build-5'
    """
    branch = _INVALID_BRANCH_CHARS.sub("-", name)
    branch = re.sub(r"\.{2,}", ".", branch)
    return branch.strip("-./")


def pull_request_arguments(
    app: str, version: str, environment: Environment
) -> PullRequestArguments:
    """Branch, title and body of a promotion pull request.

    Raises:
        ConfigurationError: If the environment source URL cannot be parsed.
    """
    version_name = version or LATEST_VERSION_NAME
    try:
        repository = parse_git_url(environment.source_url)
    except ValueError as e:
        raise ConfigurationError(
            f"Environment {environment.name} has an invalid source URL: {e}"
        ) from e
    return PullRequestArguments(
        repository=repository,
        branch=to_valid_branch_name(f"promote-{app}-{version_name}"),
        title=f"{app} to {version_name}",
        body=f"Promote {app} to version {version_name}",
    )


class PullRequestPromoter:
    """Creates or refreshes the promotion pull request of an environment.

    Args:
        config: Promotion configuration.
        provider: Git provider hosting the environment repository.
        resolver: Resolves the latest version when none was requested.
    """

    def __init__(
        self,
        config: PromoteConfig,
        provider: GitProvider,
        resolver: VersionResolver,
    ) -> None:
        self.config = config
        self.provider = provider
        self.resolver = resolver

    def promote(
        self,
        environment: Environment,
        release_info: ReleaseInfo,
        tracker: ActivityTracker,
    ) -> PullRequestInfo:
        """Propose (or rebase) the pull request and track it on the release.

        Args:
            environment: Target environment with a source repository.
            release_info: Release being promoted; its pull request info is
                replaced with the result.
            tracker: Activity tracker of the environment.

        Returns:
            The live pull request.

        Raises:
            ConfigurationError: If the environment source URL is invalid.
            NotFoundError: If no version was requested and none is published.
            ExternalServiceError: If the Git provider call fails.
        """
        app = self.config.application
        arguments = pull_request_arguments(app, release_info.version, environment)
        resolved: dict[str, str] = {}

        def edit(requirements: Requirements) -> None:
            version = release_info.version or self.resolver.resolve_latest(
                release_info.full_app_name
            )
            resolved["version"] = version
            requirements.set_app_version(app, version, self.config.helm_repo_url)

        existing = release_info.pull_request_info
        with create_span(
            "ferry.pull_request.propose",
            attributes={
                "ferry.app": app,
                "ferry.environment": environment.name,
                "ferry.branch": arguments.branch,
                "ferry.rebase": existing is not None,
            },
        ) as span:
            info = self.provider.propose_or_update_pull_request(edit, arguments, existing)
            span.set_attribute("ferry.pull_request.url", info.pull_request.url)

        info.resolved_version = resolved.get("version", release_info.version)
        release_info.pull_request_info = info

        tracker.apply(
            start_pull_request(tracker.environment, info.pull_request.url, info.resolved_version)
        )
        logger.info(
            "pull_request_proposed",
            app=app,
            environment=environment.name,
            url=info.pull_request.url,
            version=info.resolved_version,
            rebased=existing is not None,
        )
        return info


__all__ = [
    "LATEST_VERSION_NAME",
    "PullRequestPromoter",
    "pull_request_arguments",
    "to_valid_branch_name",
]
