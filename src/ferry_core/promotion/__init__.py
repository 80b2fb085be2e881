"""Promotion orchestration.

Key Components:
    PromotionCoordinator: Resolves the target and chooses the promotion path
    VersionResolver: Picks the latest published version
    ReleaseUpdater: Direct helm upgrade path
    PullRequestPromoter: GitOps pull request path
    MergeStatusPoller: Waits for the pull request to merge and pass its checks
    IssueNotifier: Comments on fixed issues (best effort)
    ActivityTracker: Records every transition in the activity ledger
"""

from __future__ import annotations

from ferry_core.promotion.activity import (
    ActivityRecorder,
    ActivityTracker,
    InMemoryActivityRecorder,
    derive_activity_key,
)
from ferry_core.promotion.coordinator import PromotionCoordinator
from ferry_core.promotion.issues import IssueNotifier
from ferry_core.promotion.poller import MergeStatusPoller, PollState
from ferry_core.promotion.pull_request import PullRequestPromoter
from ferry_core.promotion.release import ReleaseUpdater
from ferry_core.promotion.versions import VersionResolver, select_latest_version

__all__ = [
    "ActivityRecorder",
    "ActivityTracker",
    "InMemoryActivityRecorder",
    "IssueNotifier",
    "MergeStatusPoller",
    "PollState",
    "PromotionCoordinator",
    "PullRequestPromoter",
    "ReleaseUpdater",
    "VersionResolver",
    "derive_activity_key",
    "select_latest_version",
]
