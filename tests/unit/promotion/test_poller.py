"""Unit tests for MergeStatusPoller.

The poller runs against a scripted FakeGitProvider and a FakeClock, so
every test is deterministic and never sleeps.

Tests cover:
- Merge, merge-commit statuses and ledger completion
- Terminal failures (closed, failed status, failed last commit)
- Rebasing on merge conflicts without resetting the deadline
- Timeouts and retries of transient provider errors
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from ferry_core.errors import (
    CommitStatusFailedError,
    ExternalServiceError,
    NotFoundError,
    PromotionTimeoutError,
    PullRequestClosedError,
)
from ferry_core.git.provider import CommitStatus
from ferry_core.promotion.activity import ActivityTracker, InMemoryActivityRecorder
from ferry_core.promotion.poller import MERGE_MESSAGE, MergeStatusPoller, PollState
from ferry_core.promotion.pull_request import PullRequestPromoter
from ferry_core.promotion.versions import VersionResolver
from ferry_core.schemas.activity import (
    GitStatus,
    PromotionActivityKey,
    PullRequestStepState,
    UpdateStepState,
)
from ferry_core.schemas.environment import Environment
from ferry_core.schemas.promotion import PromoteConfig, ReleaseInfo


@pytest.fixture
def config() -> PromoteConfig:
    """Promotion of myapp 1.2.0 waiting up to a minute, polling every 20s."""
    return PromoteConfig(
        application="myapp",
        version="1.2.0",
        environment="staging",
        timeout="60s",
        pull_request_poll_interval="20s",
    )


@pytest.fixture
def release_info() -> ReleaseInfo:
    """Release of myapp 1.2.0 into staging."""
    return ReleaseInfo(
        release_name="jx-staging-myapp",
        full_app_name="releases/myapp",
        version="1.2.0",
    )


@pytest.fixture
def promoter(config: PromoteConfig, git_provider, helm) -> PullRequestPromoter:
    """Pull request promoter on the fake provider."""
    return PullRequestPromoter(config, git_provider, VersionResolver(helm))


@pytest.fixture
def proposed(
    promoter: PullRequestPromoter,
    staging: Environment,
    release_info: ReleaseInfo,
    tracker: ActivityTracker,
) -> ReleaseInfo:
    """Release with an open promotion pull request."""
    promoter.promote(staging, release_info, tracker)
    return release_info


def _poller(config, promoter, clock, notifier=None) -> MergeStatusPoller:
    return MergeStatusPoller(
        config, promoter, notifier, clock=clock.monotonic, sleep=clock.sleep
    )


class TestMergeStatusPollerSuccess:
    """Tests for pull requests that merge and pass their checks."""

    def test_merges_and_waits_for_statuses(
        self,
        config: PromoteConfig,
        promoter: PullRequestPromoter,
        git_provider,
        clock,
        staging: Environment,
        proposed: ReleaseInfo,
        tracker: ActivityTracker,
        recorder: InMemoryActivityRecorder,
        activity_key: PromotionActivityKey,
    ) -> None:
        """Merge is requested, then the merge commit checks are awaited."""
        git_provider.last_statuses = ["success"]
        git_provider.frames = [
            {"merged": False},
            {"merged": True, "merge_commit_sha": None},
            {"merged": True, "merge_commit_sha": "abc123"},
        ]
        git_provider.statuses = [
            [CommitStatus(url="ci/a", state="pending")],
            [
                CommitStatus(url="ci/b", state="success"),
                CommitStatus(url="ci/a", state="success", target_url="http://ci/a/1"),
            ],
        ]
        notifier = MagicMock()

        state = _poller(config, promoter, clock, notifier).wait(staging, proposed, tracker)

        assert state == PollState.SUCCEEDED
        assert git_provider.merges == [(1, MERGE_MESSAGE)]
        notifier.notify.assert_called_once_with(
            "myapp", proposed, "jx-staging", "Staging", tracker
        )

        record = recorder.get(activity_key.name)
        assert record is not None
        step = record.step("staging")
        assert step.pull_request.state == PullRequestStepState.MERGED
        assert step.pull_request.merge_commit_sha == "abc123"
        assert step.update.state == UpdateStepState.SUCCEEDED
        assert step.update.version == "1.2.0"
        assert step.update.statuses == [
            GitStatus(url="http://ci/a/1", status="success"),
            GitStatus(url="ci/b", status="success"),
        ]

    def test_steps_complete_exactly_once(
        self,
        config: PromoteConfig,
        promoter: PullRequestPromoter,
        git_provider,
        clock,
        staging: Environment,
        proposed: ReleaseInfo,
        tracker: ActivityTracker,
        recorder: InMemoryActivityRecorder,
    ) -> None:
        """Repeated polls of a merged pull request do not rewrite the ledger."""
        git_provider.frames = [{"merged": True, "merge_commit_sha": "abc123"}]
        git_provider.statuses = [
            [CommitStatus(url="ci/a", state="pending")],
            [CommitStatus(url="ci/a", state="pending")],
            [CommitStatus(url="ci/a", state="pending")],
            [CommitStatus(url="ci/a", state="success")],
        ]
        config = PromoteConfig(application="myapp", timeout="5m")

        _poller(config, promoter, clock).wait(staging, proposed, tracker)

        assert git_provider.status_calls == 4
        # started PR, merged PR, started update, pending statuses,
        # successful statuses, completed update
        assert recorder.writes == 6

    def test_no_merge_never_merges(
        self,
        promoter: PullRequestPromoter,
        git_provider,
        clock,
        staging: Environment,
        proposed: ReleaseInfo,
        tracker: ActivityTracker,
    ) -> None:
        """With no_merge set the poller only waits for someone else to merge."""
        config = PromoteConfig(application="myapp", no_merge=True, timeout="5m")
        git_provider.last_statuses = ["success"]
        git_provider.frames = [{}, {"merged": True, "merge_commit_sha": "abc123"}]
        git_provider.statuses = [[CommitStatus(url="ci/a", state="success")]]

        state = _poller(config, promoter, clock).wait(staging, proposed, tracker)

        assert state == PollState.SUCCEEDED
        assert git_provider.merges == []

    def test_merge_commit_without_statuses_keeps_waiting(
        self,
        config: PromoteConfig,
        promoter: PullRequestPromoter,
        git_provider,
        clock,
        staging: Environment,
        proposed: ReleaseInfo,
        tracker: ActivityTracker,
    ) -> None:
        """A merge commit with no statuses yet is not a success."""
        git_provider.frames = [{"merged": True, "merge_commit_sha": "abc123"}]
        git_provider.statuses = [[], [], [CommitStatus(url="ci/a", state="success")]]

        state = _poller(config, promoter, clock).wait(staging, proposed, tracker)

        assert state == PollState.SUCCEEDED
        assert clock.sleeps == [20.0, 20.0]

    def test_transient_errors_are_retried(
        self,
        config: PromoteConfig,
        promoter: PullRequestPromoter,
        git_provider,
        clock,
        staging: Environment,
        proposed: ReleaseInfo,
        tracker: ActivityTracker,
    ) -> None:
        """Refresh and merge failures are logged and the loop continues."""
        git_provider.refresh_errors = 1
        git_provider.merge_error = ExternalServiceError("fake", "merge pull request", "HTTP 405")
        git_provider.last_statuses = ["success"]
        git_provider.frames = [{}, {}, {"merged": True, "merge_commit_sha": "abc123"}]
        git_provider.statuses = [[CommitStatus(url="ci/a", state="success")]]

        state = _poller(config, promoter, clock).wait(staging, proposed, tracker)

        assert state == PollState.SUCCEEDED
        assert len(git_provider.merges) == 2
        assert git_provider.refresh_calls == 4


class TestMergeStatusPollerFailures:
    """Tests for terminal failures and timeouts."""

    def test_failed_merge_status(
        self,
        config: PromoteConfig,
        promoter: PullRequestPromoter,
        git_provider,
        clock,
        staging: Environment,
        proposed: ReleaseInfo,
        tracker: ActivityTracker,
        recorder: InMemoryActivityRecorder,
        activity_key: PromotionActivityKey,
    ) -> None:
        """A failed check on the merge commit fails the promotion."""
        git_provider.frames = [{"merged": True, "merge_commit_sha": "abc123"}]
        git_provider.statuses = [
            [
                CommitStatus(url="ci/a", state="success"),
                CommitStatus(
                    url="ci/b",
                    state="failure",
                    target_url="http://ci/b/7",
                    description="tests failed",
                ),
            ]
        ]

        with pytest.raises(CommitStatusFailedError) as exc_info:
            _poller(config, promoter, clock).wait(staging, proposed, tracker)

        error = exc_info.value
        assert error.sha == "abc123"
        assert error.context == "ci/b"
        assert error.exit_code == 6
        assert "ci/b" in str(error)
        assert "abc123" in str(error)
        record = recorder.get(activity_key.name)
        assert record.step("staging").pull_request.state == PullRequestStepState.FAILED

    def test_failed_last_commit_status(
        self,
        config: PromoteConfig,
        promoter: PullRequestPromoter,
        git_provider,
        clock,
        staging: Environment,
        proposed: ReleaseInfo,
        tracker: ActivityTracker,
    ) -> None:
        """An errored build of the pull request head fails the promotion."""
        git_provider.last_statuses = ["error"]

        with pytest.raises(CommitStatusFailedError, match="head1") as exc_info:
            _poller(config, promoter, clock).wait(staging, proposed, tracker)

        assert exc_info.value.state == "error"
        assert git_provider.merges == []

    def test_closed_pull_request(
        self,
        config: PromoteConfig,
        promoter: PullRequestPromoter,
        git_provider,
        clock,
        staging: Environment,
        proposed: ReleaseInfo,
        tracker: ActivityTracker,
        recorder: InMemoryActivityRecorder,
        activity_key: PromotionActivityKey,
    ) -> None:
        """A pull request closed without merging is terminal."""
        git_provider.frames = [{"state": "closed", "merged": False}]

        with pytest.raises(PullRequestClosedError) as exc_info:
            _poller(config, promoter, clock).wait(staging, proposed, tracker)

        assert exc_info.value.url == "https://github.com/acme/environment-staging/pull/1"
        assert clock.sleeps == []
        record = recorder.get(activity_key.name)
        assert record.step("staging").pull_request.state == PullRequestStepState.FAILED

    def test_timeout_names_pull_request_and_duration(
        self,
        config: PromoteConfig,
        promoter: PullRequestPromoter,
        git_provider,
        clock,
        staging: Environment,
        proposed: ReleaseInfo,
        tracker: ActivityTracker,
    ) -> None:
        """A pull request that never merges times out at the deadline."""
        with pytest.raises(PromotionTimeoutError) as exc_info:
            _poller(config, promoter, clock).wait(staging, proposed, tracker)

        message = str(exc_info.value)
        assert "https://github.com/acme/environment-staging/pull/1" in message
        assert "1m0s" in message
        assert exc_info.value.exit_code == 7
        assert clock.now == 60.0
        assert git_provider.status_calls == 0

    def test_wait_requires_pull_request(
        self,
        config: PromoteConfig,
        promoter: PullRequestPromoter,
        clock,
        staging: Environment,
        release_info: ReleaseInfo,
        tracker: ActivityTracker,
    ) -> None:
        """Waiting on a release without a pull request is a programming error."""
        with pytest.raises(ValueError, match="no pull request"):
            _poller(config, promoter, clock).wait(staging, release_info, tracker)


class TestMergeStatusPollerRebase:
    """Tests for rebasing conflicting pull requests."""

    def test_conflict_rebases_onto_new_handle(
        self,
        config: PromoteConfig,
        promoter: PullRequestPromoter,
        git_provider,
        clock,
        staging: Environment,
        proposed: ReleaseInfo,
        tracker: ActivityTracker,
    ) -> None:
        """A non-mergeable pull request is re-proposed and tracking moves on."""
        first = proposed.pull_request_info
        git_provider.frames = [
            {"mergeable": False},
            {"merged": True, "merge_commit_sha": "def456"},
        ]
        git_provider.statuses = [[CommitStatus(url="ci/a", state="success")]]

        state = _poller(config, promoter, clock).wait(staging, proposed, tracker)

        assert state == PollState.SUCCEEDED
        assert len(git_provider.proposals) == 2
        _, existing, requirements = git_provider.proposals[1]
        assert existing is first
        assert requirements.find("myapp").version == "1.2.0"
        assert proposed.pull_request_info is not first
        assert proposed.pull_request_info.pull_request.number == 2
        assert proposed.pull_request_info.pull_request.merge_commit_sha == "def456"

    def test_rebase_keeps_original_deadline(
        self,
        config: PromoteConfig,
        promoter: PullRequestPromoter,
        git_provider,
        clock,
        staging: Environment,
        proposed: ReleaseInfo,
        tracker: ActivityTracker,
    ) -> None:
        """Rebasing on every poll still times out at the first deadline."""
        git_provider.frames = [{"mergeable": False}]

        with pytest.raises(PromotionTimeoutError) as exc_info:
            _poller(config, promoter, clock).wait(staging, proposed, tracker)

        assert clock.now == 60.0
        assert len(git_provider.proposals) == 5
        assert exc_info.value.url == proposed.pull_request_info.pull_request.url

    def test_conflict_rebases_when_status_query_fails(
        self,
        config: PromoteConfig,
        promoter: PullRequestPromoter,
        git_provider,
        clock,
        staging: Environment,
        proposed: ReleaseInfo,
        tracker: ActivityTracker,
    ) -> None:
        """A failing last commit status query does not block the rebase."""
        git_provider.last_status_error = ExternalServiceError(
            "github", "get combined status", "HTTP 502"
        )
        git_provider.frames = [
            {"mergeable": False},
            {"merged": True, "merge_commit_sha": "def456"},
        ]
        git_provider.statuses = [[CommitStatus(url="ci/a", state="success")]]

        state = _poller(config, promoter, clock).wait(staging, proposed, tracker)

        assert state == PollState.SUCCEEDED
        assert len(git_provider.proposals) == 2
        assert git_provider.merges == []

    def test_failed_rebase_marks_pull_request_failed(
        self,
        config: PromoteConfig,
        promoter: PullRequestPromoter,
        git_provider,
        clock,
        recorder: InMemoryActivityRecorder,
        activity_key: PromotionActivityKey,
        staging: Environment,
        proposed: ReleaseInfo,
        tracker: ActivityTracker,
    ) -> None:
        """Errors other than provider failures end the wait and fail the step."""
        git_provider.frames = [{"mergeable": False}]
        git_provider.propose_error = NotFoundError("releases/myapp")

        with pytest.raises(NotFoundError):
            _poller(config, promoter, clock).wait(staging, proposed, tracker)

        assert clock.sleeps == []
        record = recorder.get(activity_key.name)
        assert record.step("staging").pull_request.state == PullRequestStepState.FAILED

    def test_provider_error_while_rebasing_is_retried(
        self,
        config: PromoteConfig,
        promoter: PullRequestPromoter,
        git_provider,
        clock,
        staging: Environment,
        proposed: ReleaseInfo,
        tracker: ActivityTracker,
    ) -> None:
        git_provider.frames = [{"mergeable": False}]
        git_provider.propose_error = ExternalServiceError("github", "update branch", "HTTP 500")

        with pytest.raises(PromotionTimeoutError):
            _poller(config, promoter, clock).wait(staging, proposed, tracker)

        assert clock.now == 60.0
        assert git_provider.refresh_calls == 4
