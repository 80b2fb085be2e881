"""Promotion activity ledger: keys, transitions and recorders.

Every state change of a promotion is recorded as a pure transition
``PromotionActivityRecord -> PromotionActivityRecord`` applied through
ActivityRecorder.apply(). The recorder owns the get-modify-write cycle and
is the only place persistence happens. Transitions return the record
unchanged when it is already in the target state, so applying the same
transition twice is a no-op.

Concurrent writers on the same key are not coordinated; the last write
wins.

Example:
    >>> recorder = InMemoryActivityRecorder()
    >>> key = PromotionActivityKey(name="acme-myapp-1", pipeline="acme/myapp", environment="staging")
    >>> record = recorder.apply(key, start_update("staging", "1.2.0"))
    >>> record.step("staging").update.state
    <UpdateStepState.STARTED: 'started'>
"""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Protocol

import structlog

from ferry_core.discovery import GitCli, to_valid_name, url_join
from ferry_core.errors import ExternalServiceError
from ferry_core.schemas.activity import (
    GitStatus,
    PromotionActivityKey,
    PromotionActivityRecord,
    PullRequestStepState,
    UpdateStepState,
)

logger = structlog.get_logger(__name__)

Transition = Callable[[PromotionActivityRecord], PromotionActivityRecord]
"""A pure function producing the next version of a record."""


class ActivityRecorder(Protocol):
    """Durable ledger of promotion activity."""

    def get_or_create(self, key: PromotionActivityKey) -> PromotionActivityRecord: ...

    def apply(
        self, key: PromotionActivityKey, transition: Transition
    ) -> PromotionActivityRecord: ...


# Key derivation


def derive_activity_key(
    environment: str,
    environ: Mapping[str, str] | None = None,
    git: GitCli | None = None,
    release_notes_url: str = "",
) -> PromotionActivityKey | None:
    """Derive the activity key from CI environment variables and git metadata.

    ``JOB_NAME`` and ``BUILD_NUMBER`` identify the pipeline build. Without a
    job name the pipeline falls back to ``{org}/{repo}/{branch}`` of the local
    git remote. Build and log URLs are derived from ``JENKINS_URL`` when not
    given explicitly.

    Args:
        environment: Environment being promoted.
        environ: Environment variables (defaults to os.environ).
        git: Git metadata reader (defaults to the current directory).
        release_notes_url: Release notes of the version being promoted.

    Returns:
        The key, or None when no pipeline can be determined.
    """
    environ = os.environ if environ is None else environ
    git = git or GitCli()

    pipeline = environ.get("JOB_NAME", "")
    build = environ.get("BUILD_NUMBER", "") or environ.get("BUILD_ID", "")
    build_url = environ.get("BUILD_URL", "")
    build_logs_url = environ.get("BUILD_LOG_URL", "")
    jenkins_url = environ.get("JENKINS_URL", "")

    git_url = ""
    try:
        info = git.info()
    except ExternalServiceError as e:
        logger.warning("git_info_unavailable", error=e.reason)
        info = None

    if info is not None:
        git_url = info.https_url
        if not pipeline:
            try:
                branch = git.branch() or "master"
            except ExternalServiceError:
                branch = "master"
            if branch == "HEAD":
                branch = "master"
            pipeline = f"{info.organisation}/{info.name}/{branch}"

    if not pipeline:
        logger.warning("activity_key_unavailable", reason="no pipeline name could be determined")
        return None
    build = build or "1"

    if not build_url and jenkins_url:
        segments: list[str] = []
        for part in pipeline.split("/"):
            segments.extend(["job", part])
        build_url = url_join(jenkins_url, *segments, build)
    if not build_logs_url and build_url:
        build_logs_url = url_join(build_url, "console")

    name = to_valid_name(f"{pipeline}-{build}")
    if not name:
        logger.warning("activity_key_unavailable", reason="empty record name", pipeline=pipeline)
        return None

    return PromotionActivityKey(
        name=name,
        pipeline=pipeline,
        build=build,
        environment=environment,
        build_url=build_url,
        build_logs_url=build_logs_url,
        git_url=git_url,
        release_notes_url=release_notes_url,
    )


# Transitions


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _with_version(record: PromotionActivityRecord, version: str) -> PromotionActivityRecord:
    if version and not record.version:
        return record.model_copy(update={"version": version})
    return record


def _replace_step(
    record: PromotionActivityRecord, environment: str, **changes: object
) -> PromotionActivityRecord:
    step = record.step(environment)
    updated = step.model_copy(update=changes)
    if updated == step and environment in record.steps:
        return record
    return record.with_step(updated)


def start_pull_request(environment: str, url: str, version: str = "") -> Transition:
    """PullRequestStep -> started, recording the pull request URL."""

    def transition(record: PromotionActivityRecord) -> PromotionActivityRecord:
        record = _with_version(record, version)
        pr = record.step(environment).pull_request
        if pr.state == PullRequestStepState.STARTED and pr.pull_request_url == url:
            return _replace_step(record, environment)
        pr = pr.model_copy(
            update={
                "state": PullRequestStepState.STARTED,
                "pull_request_url": url,
                "started_at": pr.started_at or _now(),
            }
        )
        return _replace_step(record, environment, pull_request=pr)

    return transition


def complete_pull_request(environment: str, merge_commit_sha: str) -> Transition:
    """PullRequestStep -> merged with the merge commit sha."""

    def transition(record: PromotionActivityRecord) -> PromotionActivityRecord:
        pr = record.step(environment).pull_request
        if pr.state == PullRequestStepState.MERGED and pr.merge_commit_sha == merge_commit_sha:
            return record
        pr = pr.model_copy(
            update={
                "state": PullRequestStepState.MERGED,
                "merge_commit_sha": merge_commit_sha,
                "completed_at": _now(),
            }
        )
        return _replace_step(record, environment, pull_request=pr)

    return transition


def fail_pull_request(environment: str) -> Transition:
    """PullRequestStep -> failed."""

    def transition(record: PromotionActivityRecord) -> PromotionActivityRecord:
        pr = record.step(environment).pull_request
        if pr.state == PullRequestStepState.FAILED:
            return record
        pr = pr.model_copy(update={"state": PullRequestStepState.FAILED, "completed_at": _now()})
        return _replace_step(record, environment, pull_request=pr)

    return transition


def start_update(environment: str, version: str) -> Transition:
    """UpdateStep -> started for a version."""

    def transition(record: PromotionActivityRecord) -> PromotionActivityRecord:
        record = _with_version(record, version)
        update = record.step(environment).update
        if update.state == UpdateStepState.STARTED and update.version == version:
            return _replace_step(record, environment)
        update = update.model_copy(
            update={
                "state": UpdateStepState.STARTED,
                "version": version,
                "started_at": update.started_at or _now(),
                "completed_at": None,
            }
        )
        return _replace_step(record, environment, update=update)

    return transition


def complete_update(environment: str) -> Transition:
    """UpdateStep -> succeeded."""

    def transition(record: PromotionActivityRecord) -> PromotionActivityRecord:
        update = record.step(environment).update
        if update.state == UpdateStepState.SUCCEEDED:
            return record
        update = update.model_copy(
            update={"state": UpdateStepState.SUCCEEDED, "completed_at": _now()}
        )
        return _replace_step(record, environment, update=update)

    return transition


def fail_update(environment: str) -> Transition:
    """UpdateStep -> failed."""

    def transition(record: PromotionActivityRecord) -> PromotionActivityRecord:
        update = record.step(environment).update
        if update.state == UpdateStepState.FAILED:
            return record
        update = update.model_copy(update={"state": UpdateStepState.FAILED, "completed_at": _now()})
        return _replace_step(record, environment, update=update)

    return transition


def record_update_statuses(environment: str, statuses: list[GitStatus]) -> Transition:
    """Record the commit statuses observed on the merge commit."""

    def transition(record: PromotionActivityRecord) -> PromotionActivityRecord:
        update = record.step(environment).update
        if update.statuses == statuses:
            return record
        return _replace_step(
            record, environment, update=update.model_copy(update={"statuses": list(statuses)})
        )

    return transition


def set_application_url(url: str) -> Transition:
    """Record where the application is reachable."""

    def transition(record: PromotionActivityRecord) -> PromotionActivityRecord:
        if not url or record.application_url == url:
            return record
        return record.model_copy(update={"application_url": url})

    return transition


# Recorders


class InMemoryActivityRecorder:
    """ActivityRecorder keeping records in a dict.

    Attributes:
        writes: Number of writes that changed a record.
    """

    def __init__(self) -> None:
        self._records: dict[str, PromotionActivityRecord] = {}
        self.writes = 0

    def get(self, name: str) -> PromotionActivityRecord | None:
        return self._records.get(name)

    def get_or_create(self, key: PromotionActivityKey) -> PromotionActivityRecord:
        record = self._records.get(key.name)
        if record is None:
            record = PromotionActivityRecord.from_key(key)
            self._records[key.name] = record
        return record

    def apply(self, key: PromotionActivityKey, transition: Transition) -> PromotionActivityRecord:
        current = self.get_or_create(key)
        updated = transition(current)
        if updated != current:
            self._records[key.name] = updated
            self.writes += 1
        return updated


class ActivityTracker:
    """Applies transitions for one environment of one promotion.

    A tracker without a key records nothing, so promotions outside a
    pipeline still run.

    Args:
        recorder: The ledger, or None to disable recording.
        key: Activity key, or None when it could not be derived.
    """

    def __init__(
        self,
        recorder: ActivityRecorder | None,
        key: PromotionActivityKey | None,
    ) -> None:
        self.recorder = recorder
        self.key = key

    @property
    def enabled(self) -> bool:
        return self.recorder is not None and self.key is not None

    @property
    def environment(self) -> str:
        return self.key.environment if self.key is not None else ""

    def for_environment(self, environment: str) -> ActivityTracker:
        if self.key is None:
            return self
        return ActivityTracker(self.recorder, self.key.for_environment(environment))

    def apply(self, transition: Transition) -> PromotionActivityRecord | None:
        """Apply a transition. Recorder errors propagate."""
        if self.recorder is None or self.key is None:
            return None
        return self.recorder.apply(self.key, transition)

    def try_apply(self, transition: Transition) -> PromotionActivityRecord | None:
        """Apply a transition, logging recorder errors instead of raising."""
        try:
            return self.apply(transition)
        except ExternalServiceError as e:
            logger.warning(
                "activity_update_failed",
                record=self.key.name if self.key else None,
                error=str(e),
            )
            return None


__all__ = [
    "ActivityRecorder",
    "ActivityTracker",
    "InMemoryActivityRecorder",
    "Transition",
    "complete_pull_request",
    "complete_update",
    "derive_activity_key",
    "fail_pull_request",
    "fail_update",
    "record_update_statuses",
    "set_application_url",
    "start_pull_request",
    "start_update",
]
