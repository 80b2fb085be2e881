"""ferry-core: promote application versions into deployment environments.

Promotions either upgrade a release directly with helm or open a GitOps
pull request against the environment repository and wait for it to merge
and pass its checks. Every transition is recorded in an activity ledger.

Example:
    >>> from ferry_core import PromoteConfig, PromotionCoordinator
    >>> config = PromoteConfig(application="myapp", version="1.2.0", environment="staging")
"""

from __future__ import annotations

from ferry_core.errors import (
    ConfigurationError,
    ExternalServiceError,
    NotFoundError,
    PromotionError,
    PromotionTimeoutError,
    TerminalFailure,
)
from ferry_core.promotion.coordinator import PromotionCoordinator
from ferry_core.schemas.promotion import PromoteConfig, ReleaseInfo

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "ExternalServiceError",
    "NotFoundError",
    "PromoteConfig",
    "PromotionCoordinator",
    "PromotionError",
    "PromotionTimeoutError",
    "ReleaseInfo",
    "TerminalFailure",
    "__version__",
]
