"""Unit test fixtures for ferry-core.

Unit tests run without external services: no cluster, no helm binary and
no Git hosting API. The fakes below stand in for those collaborators.

Key Fixtures:
- helm: FakeHelm package repository client
- git_provider: FakeGitProvider with scripted pull request states
- clock: FakeClock whose sleep advances time
- recorder / activity_key / tracker: in-memory activity ledger
- make_registry: builds a FakeRegistry from environments
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from ferry_core.errors import ExternalServiceError
from ferry_core.git.provider import (
    STATUS_IN_PROGRESS,
    CommitStatus,
    GitProvider,
    PullRequest,
    PullRequestArguments,
    PullRequestInfo,
)
from ferry_core.helm.requirements import Requirements
from ferry_core.promotion.activity import ActivityTracker, InMemoryActivityRecorder
from ferry_core.schemas.activity import PromotionActivityKey
from ferry_core.schemas.environment import Environment


def _next(queue: list[Any], default: Any) -> Any:
    """Pop from a script queue; the last entry repeats forever."""
    if not queue:
        return default
    if len(queue) > 1:
        return queue.pop(0)
    return queue[0]


class FakeHelm:
    """PackageRepositoryClient recording every call."""

    def __init__(self, versions: dict[str, list[str]] | None = None) -> None:
        self.versions = versions or {}
        self.repositories: dict[str, str] = {}
        self.refreshed = 0
        self.upgrades: list[tuple[str, str, str, str]] = []
        self.fail_namespaces: set[str] = set()

    def ensure_repository(self, alias: str, url: str) -> None:
        self.repositories[alias] = url

    def refresh_index(self) -> None:
        self.refreshed += 1

    def search_versions(self, chart: str) -> list[str]:
        return list(self.versions.get(chart, []))

    def upgrade_or_install(
        self,
        chart: str,
        release_name: str,
        namespace: str,
        version: str = "",
        create_namespace: bool = True,
    ) -> None:
        if namespace in self.fail_namespaces:
            raise ExternalServiceError("helm", "upgrade --install", f"cannot upgrade in {namespace}")
        self.upgrades.append((chart, release_name, namespace, version))


class FakeGitProvider(GitProvider):
    """GitProvider driven by scripted responses.

    Attributes:
        frames: Attribute updates applied to the pull request on each refresh.
        statuses: Commit status lists returned for merge commits.
        last_statuses: Aggregate statuses returned for the last commit.
        refresh_errors: Number of leading refreshes that fail.
        last_status_error: Raised by every last commit status query, if set.
        propose_error: Raised by every proposal, if set.
    """

    kind = "fake"

    def __init__(self) -> None:
        self.frames: list[dict[str, Any]] = []
        self.statuses: list[list[CommitStatus]] = []
        self.last_statuses: list[str] = []
        self.refresh_errors = 0
        self.merge_error: Exception | None = None
        self.last_status_error: Exception | None = None
        self.propose_error: Exception | None = None
        self.refresh_calls = 0
        self.status_calls = 0
        self.merges: list[tuple[int, str]] = []
        self.comments: list[tuple[str, str, int, str]] = []
        self.proposals: list[
            tuple[PullRequestArguments, PullRequestInfo | None, Requirements]
        ] = []

    def refresh_pull_request(self, pr: PullRequest) -> None:
        self.refresh_calls += 1
        if self.refresh_errors:
            self.refresh_errors -= 1
            raise ExternalServiceError("fake", "get pull request", "connection reset")
        for name, value in _next(self.frames, {}).items():
            setattr(pr, name, value)

    def list_commit_statuses(self, owner: str, repo: str, sha: str) -> list[CommitStatus]:
        self.status_calls += 1
        return list(_next(self.statuses, []))

    def last_commit_status(self, pr: PullRequest) -> str:
        if self.last_status_error is not None:
            raise self.last_status_error
        return _next(self.last_statuses, STATUS_IN_PROGRESS)

    def merge_pull_request(self, pr: PullRequest, message: str) -> None:
        self.merges.append((pr.number, message))
        if self.merge_error is not None:
            raise self.merge_error

    def create_issue_comment(self, owner: str, repo: str, number: int, text: str) -> None:
        self.comments.append((owner, repo, number, text))

    def propose_or_update_pull_request(
        self,
        edit: Callable[[Requirements], None],
        arguments: PullRequestArguments,
        existing: PullRequestInfo | None = None,
    ) -> PullRequestInfo:
        if self.propose_error is not None:
            raise self.propose_error
        requirements = Requirements()
        edit(requirements)
        self.proposals.append((arguments, existing, requirements))
        number = len(self.proposals)
        pr = PullRequest(
            owner=arguments.repository.organisation,
            repo=arguments.repository.name,
            number=number,
            url=f"https://github.com/acme/environment-staging/pull/{number}",
            last_commit_sha=f"head{number}",
        )
        return PullRequestInfo(provider=self, pull_request=pr, arguments=arguments)


class FakeClock:
    """Monotonic clock advanced only by sleep()."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeRegistry:
    """EnvironmentRegistry over a fixed list."""

    def __init__(self, environments: list[Environment], namespace: str = "jx") -> None:
        self.environments = environments
        self.namespace = namespace
        self.ensured: list[str] = []

    def current_namespace(self) -> str:
        return self.namespace

    def list_environments(self, team_namespace: str = "") -> list[Environment]:
        return list(self.environments)

    def get_environment(self, name: str, team_namespace: str = "") -> Environment | None:
        return next((env for env in self.environments if env.name == name), None)

    def ensure_namespace(self, namespace: str) -> None:
        self.ensured.append(namespace)


@pytest.fixture
def helm() -> FakeHelm:
    """Fake package repository client."""
    return FakeHelm()


@pytest.fixture
def git_provider() -> FakeGitProvider:
    """Fake git provider with no scripted responses."""
    return FakeGitProvider()


@pytest.fixture
def clock() -> FakeClock:
    """Fake monotonic clock starting at zero."""
    return FakeClock()


@pytest.fixture
def recorder() -> InMemoryActivityRecorder:
    """Empty in-memory activity ledger."""
    return InMemoryActivityRecorder()


@pytest.fixture
def activity_key() -> PromotionActivityKey:
    """Activity key of a pipeline build promoting to staging."""
    return PromotionActivityKey(
        name="acme-myapp-master-7",
        pipeline="acme/myapp/master",
        build="7",
        environment="staging",
    )


@pytest.fixture
def tracker(recorder: InMemoryActivityRecorder, activity_key: PromotionActivityKey) -> ActivityTracker:
    """Tracker recording into the in-memory ledger."""
    return ActivityTracker(recorder, activity_key)


@pytest.fixture
def make_registry() -> Callable[..., FakeRegistry]:
    """Factory building a fake environment registry."""
    return FakeRegistry


@pytest.fixture
def staging() -> Environment:
    """Automatic permanent environment promoted via pull requests."""
    from ferry_core.schemas.environment import PromotionStrategy

    return Environment(
        name="staging",
        label="Staging",
        namespace="jx-staging",
        promotion_strategy=PromotionStrategy.AUTOMATIC,
        source_url="https://github.com/acme/environment-staging.git",
        order=100,
    )
