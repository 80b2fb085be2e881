"""Merge status poller: wait for a promotion pull request to resolve.

The poller is a single loop driven by a small state machine::

    AWAITING_MERGE ──merged + sha──> AWAITING_MERGE_STATUSES ──all success──> SUCCEEDED
         │  ▲                                  │
         │  └──── REBASING <── not mergeable   └── failed status ──> FAILED_STATUS
         ├── closed ──> FAILED_CLOSED
         ├── last commit error/failure ──> FAILED_STATUS
         └── deadline passed ──> FAILED_TIMEOUT

The deadline is computed once when waiting starts. Rebasing replaces the
tracked pull request but keeps the deadline and the log-once flags.

Errors talking to the Git provider or the ledger inside the loop are
logged and retried on the next iteration.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from ferry_core.errors import (
    CommitStatusFailedError,
    ExternalServiceError,
    PromotionError,
    PromotionTimeoutError,
    PullRequestClosedError,
)
from ferry_core.git.provider import (
    FAILED_STATES,
    STATUS_IN_PROGRESS,
    STATUS_SUCCESS,
    CommitStatus,
)
from ferry_core.promotion.activity import (
    ActivityTracker,
    complete_pull_request,
    complete_update,
    fail_pull_request,
    record_update_statuses,
    start_update,
)
from ferry_core.schemas.activity import GitStatus
from ferry_core.telemetry.tracing import create_span

if TYPE_CHECKING:
    from ferry_core.git.provider import PullRequestInfo
    from ferry_core.promotion.issues import IssueNotifier
    from ferry_core.promotion.pull_request import PullRequestPromoter
    from ferry_core.schemas.environment import Environment
    from ferry_core.schemas.promotion import PromoteConfig, ReleaseInfo

logger = structlog.get_logger(__name__)

MERGE_MESSAGE = "ferry promote automatically merged promotion PR"


class PollState(str, Enum):
    """States of the merge status poller."""

    AWAITING_MERGE = "awaiting_merge"
    AWAITING_MERGE_STATUSES = "awaiting_merge_statuses"
    REBASING = "rebasing"
    SUCCEEDED = "succeeded"
    FAILED_CLOSED = "failed_closed"
    FAILED_STATUS = "failed_status"
    FAILED_TIMEOUT = "failed_timeout"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {
        PollState.SUCCEEDED,
        PollState.FAILED_CLOSED,
        PollState.FAILED_STATUS,
        PollState.FAILED_TIMEOUT,
    }
)


@dataclass
class _PollContext:
    """Loop state that survives a rebase."""

    deadline: float
    state: PollState = PollState.AWAITING_MERGE
    logged_waiting_for_sha: bool = False
    logged_merge_sha: bool = False
    logged_merge_failure: bool = False
    logged_status_error: bool = False
    logged_no_statuses: bool = False
    url_states: dict[str, str] = field(default_factory=dict)
    url_target_urls: dict[str, str] = field(default_factory=dict)
    rebases: int = 0


class MergeStatusPoller:
    """Polls a promotion pull request until it merges and its checks pass.

    Args:
        config: Promotion configuration (timeout, poll interval, no_merge).
        promoter: Re-run to rebase the pull request on conflicts.
        notifier: Notified once the merge commit checks all pass.
        clock: Monotonic clock in seconds.
        sleep: Sleeps for a number of seconds.

    Example:
        >>> poller = MergeStatusPoller(config, promoter, notifier)
        >>> poller.wait(environment, release_info, tracker)
        <PollState.SUCCEEDED: 'succeeded'>
    """

    def __init__(
        self,
        config: PromoteConfig,
        promoter: PullRequestPromoter,
        notifier: IssueNotifier | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.promoter = promoter
        self.notifier = notifier
        self.clock = clock
        self.sleep = sleep

    @property
    def timeout(self) -> timedelta:
        return self.config.timeout or timedelta(0)

    def wait(
        self,
        environment: Environment,
        release_info: ReleaseInfo,
        tracker: ActivityTracker,
    ) -> PollState:
        """Block until the pull request resolves.

        Args:
            environment: Environment being promoted.
            release_info: Release whose pull request is tracked.
            tracker: Activity tracker of the environment.

        Returns:
            PollState.SUCCEEDED.

        Raises:
            PullRequestClosedError: If the pull request is closed unmerged.
            CommitStatusFailedError: If a check reports failure or error.
            PromotionTimeoutError: If the deadline passes first.
            PromotionError: If rebasing fails for a reason other than a
                provider error (e.g. no published version).
        """
        if release_info.pull_request_info is None:
            raise ValueError("release has no pull request to wait for")

        ctx = _PollContext(deadline=self.clock() + self.timeout.total_seconds())
        with create_span(
            "ferry.pull_request.wait",
            attributes={
                "ferry.environment": environment.name,
                "ferry.pull_request.url": release_info.pull_request_info.pull_request.url,
            },
        ) as span:
            try:
                self._poll(ctx, environment, release_info, tracker)
            except PromotionError:
                tracker.try_apply(fail_pull_request(tracker.environment))
                raise
            finally:
                span.set_attribute("ferry.poll.state", ctx.state.value)
                span.set_attribute("ferry.poll.rebases", ctx.rebases)
        return ctx.state

    def _poll(
        self,
        ctx: _PollContext,
        environment: Environment,
        release_info: ReleaseInfo,
        tracker: ActivityTracker,
    ) -> None:
        while True:
            info = release_info.pull_request_info
            if info is None:
                raise ValueError("release has no pull request to wait for")
            pr = info.pull_request
            log = logger.bind(url=pr.url, environment=environment.name)

            try:
                info.provider.refresh_pull_request(pr)
            except ExternalServiceError as e:
                log.warning("pull_request_refresh_failed", error=str(e))
            else:
                try:
                    ctx.state = self._step(ctx, info, release_info, environment, tracker, log)
                except PullRequestClosedError:
                    ctx.state = PollState.FAILED_CLOSED
                    raise
                except CommitStatusFailedError:
                    ctx.state = PollState.FAILED_STATUS
                    raise
                except ExternalServiceError as e:
                    log.warning("pull_request_poll_failed", error=str(e))

                if ctx.state == PollState.SUCCEEDED:
                    return
                if ctx.state == PollState.REBASING:
                    self._rebase(ctx, environment, release_info, tracker, log)

            if self.clock() >= ctx.deadline:
                ctx.state = PollState.FAILED_TIMEOUT
                url = release_info.pull_request_info.pull_request.url
                log.warning("pull_request_wait_timed_out", timeout=str(self.timeout))
                raise PromotionTimeoutError(url, self.timeout)

            self.sleep(self.config.pull_request_poll_interval.total_seconds())

    def _step(
        self,
        ctx: _PollContext,
        info: PullRequestInfo,
        release_info: ReleaseInfo,
        environment: Environment,
        tracker: ActivityTracker,
        log: structlog.typing.FilteringBoundLogger,
    ) -> PollState:
        pr = info.pull_request

        if pr.merged:
            if not pr.merge_commit_sha:
                if not ctx.logged_waiting_for_sha:
                    ctx.logged_waiting_for_sha = True
                    log.info("pull_request_merged_awaiting_sha")
                return PollState.AWAITING_MERGE

            sha = pr.merge_commit_sha
            if not ctx.logged_merge_sha:
                ctx.logged_merge_sha = True
                log.info("pull_request_merged", sha=sha)
                tracker.try_apply(complete_pull_request(tracker.environment, sha))
                tracker.try_apply(
                    start_update(tracker.environment, info.resolved_version or release_info.version)
                )
            return self._check_merge_statuses(ctx, info, release_info, environment, tracker, log)

        if pr.is_closed:
            log.warning("pull_request_closed")
            raise PullRequestClosedError(pr.url)

        try:
            status = info.provider.last_commit_status(pr)
        except ExternalServiceError as e:
            log.warning("last_commit_status_failed", sha=pr.last_commit_sha, error=str(e))
        else:
            self._act_on_last_commit_status(ctx, info, status, log)

        if pr.mergeable is False:
            return PollState.REBASING
        return PollState.AWAITING_MERGE

    def _act_on_last_commit_status(
        self,
        ctx: _PollContext,
        info: PullRequestInfo,
        status: str,
        log: structlog.typing.FilteringBoundLogger,
    ) -> None:
        pr = info.pull_request
        if status == STATUS_IN_PROGRESS:
            log.debug("pull_request_build_in_progress")
        elif status == STATUS_SUCCESS:
            if self.config.no_merge:
                return
            try:
                info.provider.merge_pull_request(pr, MERGE_MESSAGE)
            except ExternalServiceError as e:
                if not ctx.logged_merge_failure:
                    ctx.logged_merge_failure = True
                    log.warning("pull_request_merge_failed", error=str(e))
        elif status in FAILED_STATES:
            raise CommitStatusFailedError(pr.url, pr.last_commit_sha, status)
        else:
            log.debug("pull_request_status_unknown", status=status)

    def _check_merge_statuses(
        self,
        ctx: _PollContext,
        info: PullRequestInfo,
        release_info: ReleaseInfo,
        environment: Environment,
        tracker: ActivityTracker,
        log: structlog.typing.FilteringBoundLogger,
    ) -> PollState:
        pr = info.pull_request
        sha = pr.merge_commit_sha or ""
        try:
            statuses = info.provider.list_commit_statuses(pr.owner, pr.repo, sha)
        except ExternalServiceError as e:
            if not ctx.logged_status_error:
                ctx.logged_status_error = True
                log.warning("merge_status_query_failed", sha=sha, error=str(e))
            return PollState.AWAITING_MERGE_STATUSES

        if not statuses:
            if not ctx.logged_no_statuses:
                ctx.logged_no_statuses = True
                log.info("merge_commit_has_no_statuses", sha=sha)
            return PollState.AWAITING_MERGE_STATUSES

        for status in statuses:
            if status.is_failed:
                log.warning(
                    "merge_status_failed",
                    sha=sha,
                    context=status.url,
                    state=status.state,
                    target_url=status.target_url,
                    description=status.description,
                )
                raise CommitStatusFailedError(
                    pr.url,
                    sha,
                    status.state,
                    context=status.url,
                    target_url=status.target_url,
                    description=status.description,
                )
            self._observe(ctx, status, log)

        tracker.try_apply(record_update_statuses(tracker.environment, self._git_statuses(ctx)))

        if all(state == STATUS_SUCCESS for state in ctx.url_states.values()):
            log.info("merge_status_checks_passed", sha=sha, contexts=len(ctx.url_states))
            if self.notifier is not None:
                self.notifier.notify(
                    self.config.application,
                    release_info,
                    environment.namespace,
                    environment.display_name,
                    tracker,
                )
            tracker.try_apply(complete_update(tracker.environment))
            return PollState.SUCCEEDED
        return PollState.AWAITING_MERGE_STATUSES

    @staticmethod
    def _observe(
        ctx: _PollContext, status: CommitStatus, log: structlog.typing.FilteringBoundLogger
    ) -> None:
        current = ctx.url_states.get(status.url, "")
        if current == STATUS_SUCCESS or current == status.state:
            return
        ctx.url_states[status.url] = status.state
        ctx.url_target_urls[status.url] = status.target_url
        log.info(
            "merge_status_changed",
            context=status.url,
            state=status.state,
            target_url=status.target_url,
            description=status.description,
        )

    @staticmethod
    def _git_statuses(ctx: _PollContext) -> list[GitStatus]:
        return [
            GitStatus(url=ctx.url_target_urls.get(url) or url, status=ctx.url_states[url])
            for url in sorted(ctx.url_states)
        ]

    def _rebase(
        self,
        ctx: _PollContext,
        environment: Environment,
        release_info: ReleaseInfo,
        tracker: ActivityTracker,
        log: structlog.typing.FilteringBoundLogger,
    ) -> None:
        log.info("pull_request_rebasing", reason="merge conflict")
        try:
            self.promoter.promote(environment, release_info, tracker)
        except ExternalServiceError as e:
            log.warning("pull_request_rebase_failed", error=str(e))
        else:
            ctx.rebases += 1
        ctx.state = PollState.AWAITING_MERGE


__all__ = ["MERGE_MESSAGE", "MergeStatusPoller", "PollState"]
