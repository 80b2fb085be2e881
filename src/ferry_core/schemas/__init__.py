"""Schema definitions for ferry-core.

Pydantic models for configuration, environments and the activity ledger.

Environment Models:
    Environment: A deployment target read from the environment registry
    PromotionStrategy: Manual or Automatic promotion
    EnvironmentKind: Permanent, Preview, Test or Edit

Promotion Models:
    PromoteConfig: Immutable options for one orchestrator invocation
    GitProviderConfig: Git hosting backend selection
    ReleaseInfo: Release tracked by a single promotion attempt

Activity Models:
    PromotionActivityKey: Identifies a ledger record and environment
    PromotionActivityRecord: The durable ledger record

Example:
    >>> from ferry_core.schemas import PromoteConfig
    >>> config = PromoteConfig(application="myapp", version="1.2.3", environment="staging")
    >>> config.full_app_name
    'releases/myapp'
"""

from __future__ import annotations

from ferry_core.schemas.activity import (
    GitStatus,
    PromoteStep,
    PromotionActivityKey,
    PromotionActivityRecord,
    PullRequestStep,
    PullRequestStepState,
    UpdateStep,
    UpdateStepState,
)
from ferry_core.schemas.environment import (
    Environment,
    EnvironmentKind,
    PromotionStrategy,
    sort_environments,
)
from ferry_core.schemas.promotion import (
    GitProviderConfig,
    PromoteConfig,
    ReleaseInfo,
    parse_duration,
)

__all__ = [
    # Environment
    "Environment",
    "EnvironmentKind",
    "PromotionStrategy",
    "sort_environments",
    # Promotion
    "GitProviderConfig",
    "PromoteConfig",
    "ReleaseInfo",
    "parse_duration",
    # Activity
    "GitStatus",
    "PromoteStep",
    "PromotionActivityKey",
    "PromotionActivityRecord",
    "PullRequestStep",
    "PullRequestStepState",
    "UpdateStep",
    "UpdateStepState",
]
