"""Promotion activity ledger schemas.

The activity ledger is a durable record of how a promotion progressed. One
record exists per pipeline build; it holds a promote step per environment,
each with a pull request step (GitOps path) and an update step.

Records are immutable. Transitions are pure functions producing a new record
(see ferry_core.promotion.activity).

Key Components:
    PullRequestStepState / UpdateStepState: Step lifecycles
    GitStatus: A commit status observed against a merge commit
    PullRequestStep / UpdateStep: Per-environment step state
    PromoteStep: Both steps for one environment
    PromotionActivityKey: Identifies a record and the environment being promoted
    PromotionActivityRecord: The durable record
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class PullRequestStepState(str, Enum):
    """Lifecycle of the pull request step."""

    PENDING = "pending"
    STARTED = "started"
    MERGED = "merged"
    FAILED = "failed"


class UpdateStepState(str, Enum):
    """Lifecycle of the update step."""

    PENDING = "pending"
    STARTED = "started"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class GitStatus(BaseModel):
    """A commit status recorded on the update step.

    Attributes:
        url: Target URL of the status (falls back to the context URL).
        status: Reported state (e.g., "success", "pending").
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str
    status: str


class PullRequestStep(BaseModel):
    """State of the promotion pull request for one environment."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    state: PullRequestStepState = PullRequestStepState.PENDING
    pull_request_url: str = ""
    merge_commit_sha: str = ""
    statuses: list[GitStatus] = Field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None


class UpdateStep(BaseModel):
    """State of the release update for one environment."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    state: UpdateStepState = UpdateStepState.PENDING
    version: str = ""
    statuses: list[GitStatus] = Field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None


class PromoteStep(BaseModel):
    """Both promotion steps for a single environment."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    environment: str
    pull_request: PullRequestStep = Field(default_factory=PullRequestStep)
    update: UpdateStep = Field(default_factory=UpdateStep)


class PromotionActivityKey(BaseModel):
    """Identifies an activity record and the environment being promoted.

    The record name is derived from the pipeline and build and sanitized into
    a record-safe name. Two promotions deriving the same name share a record.

    Attributes:
        name: Sanitized record name.
        pipeline: Pipeline (job) name.
        build: Build number.
        environment: Environment the promotion targets.
        build_url: Link to the build.
        build_logs_url: Link to the build logs.
        git_url: Source repository URL of the application.
        release_notes_url: Release notes of the version being promoted.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1)
    pipeline: str
    build: str = ""
    environment: str
    build_url: str = ""
    build_logs_url: str = ""
    git_url: str = ""
    release_notes_url: str = ""

    def for_environment(self, environment: str) -> PromotionActivityKey:
        """Same record, different environment step."""
        return self.model_copy(update={"environment": environment})


class PromotionActivityRecord(BaseModel):
    """Durable ledger record for one pipeline build.

    Attributes:
        name: Record name (from the activity key).
        pipeline: Pipeline name.
        build: Build number.
        build_url: Link to the build.
        build_logs_url: Link to the build logs.
        git_url: Source repository URL.
        release_notes_url: Release notes link.
        version: Version being promoted, once known.
        application_url: Where the application became reachable.
        steps: Promote steps keyed by environment name.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    pipeline: str = ""
    build: str = ""
    build_url: str = ""
    build_logs_url: str = ""
    git_url: str = ""
    release_notes_url: str = ""
    version: str = ""
    application_url: str = ""
    steps: dict[str, PromoteStep] = Field(default_factory=dict)

    @classmethod
    def from_key(cls, key: PromotionActivityKey) -> PromotionActivityRecord:
        """Create an empty record for the given key."""
        return cls(
            name=key.name,
            pipeline=key.pipeline,
            build=key.build,
            build_url=key.build_url,
            build_logs_url=key.build_logs_url,
            git_url=key.git_url,
            release_notes_url=key.release_notes_url,
        )

    def step(self, environment: str) -> PromoteStep:
        """Promote step for an environment (an empty one if not recorded yet)."""
        return self.steps.get(environment) or PromoteStep(environment=environment)

    def with_step(self, step: PromoteStep) -> PromotionActivityRecord:
        """Copy of this record with the given step replaced."""
        steps = dict(self.steps)
        steps[step.environment] = step
        return self.model_copy(update={"steps": steps})


__all__ = [
    "GitStatus",
    "PromoteStep",
    "PromotionActivityKey",
    "PromotionActivityRecord",
    "PullRequestStep",
    "PullRequestStepState",
    "UpdateStep",
    "UpdateStepState",
]
