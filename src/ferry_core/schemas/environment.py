"""Environment schemas.

An Environment is a named deployment target owned by an external registry.
The orchestrator only reads environments; it never mutates them.

Key Components:
    PromotionStrategy: Manual or Automatic promotion
    EnvironmentKind: Permanent, Preview, Test or Edit
    Environment: A deployment target with namespace, strategy, kind and source
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class PromotionStrategy(str, Enum):
    """How versions reach an environment.

    Attributes:
        MANUAL: Promotion requires an explicit request.
        AUTOMATIC: Promoted as part of the CI/CD pipeline.
        NEVER: Never promoted to.

    Examples:
        >>> PromotionStrategy("Automatic")
        <PromotionStrategy.AUTOMATIC: 'Automatic'>
    """

    MANUAL = "Manual"
    AUTOMATIC = "Automatic"
    NEVER = "Never"


class EnvironmentKind(str, Enum):
    """Lifecycle category of an environment.

    Only permanent environments take part in automatic promotion and the
    GitOps path.
    """

    PERMANENT = "Permanent"
    PREVIEW = "Preview"
    TEST = "Test"
    EDIT = "Edit"


class Environment(BaseModel):
    """A named deployment target.

    Attributes:
        name: Environment identifier (e.g., "staging").
        label: Human-facing name, used in issue comments.
        namespace: Namespace the environment deploys into.
        promotion_strategy: Manual or Automatic.
        kind: Permanent, Preview, Test or Edit.
        source_url: URL of the GitOps manifest repository, if any.
        order: Ordering used when sequencing automatic promotions.

    Examples:
        >>> env = Environment(
        ...     name="staging",
        ...     namespace="jx-staging",
        ...     promotion_strategy=PromotionStrategy.AUTOMATIC,
        ...     source_url="https://github.com/acme/environment-staging.git",
        ...     order=100,
        ... )
        >>> env.uses_gitops
        True
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(
        ...,
        min_length=1,
        description="Environment identifier",
    )
    label: str = Field(
        default="",
        description="Human-facing environment name",
    )
    namespace: str = Field(
        default="",
        description="Namespace the environment deploys into",
    )
    promotion_strategy: PromotionStrategy = Field(
        default=PromotionStrategy.MANUAL,
        description="How versions reach this environment",
    )
    kind: EnvironmentKind = Field(
        default=EnvironmentKind.PERMANENT,
        description="Lifecycle category",
    )
    source_url: str = Field(
        default="",
        description="GitOps manifest repository URL",
    )
    order: int = Field(
        default=0,
        description="Ordering attribute for automatic promotion",
    )

    @property
    def display_name(self) -> str:
        """Label if set, else the environment name."""
        return self.label or self.name

    @property
    def is_permanent(self) -> bool:
        return self.kind == EnvironmentKind.PERMANENT

    @property
    def is_automatic(self) -> bool:
        return self.promotion_strategy == PromotionStrategy.AUTOMATIC

    @property
    def uses_gitops(self) -> bool:
        """Whether promotions go through a pull request on the source repository."""
        return bool(self.source_url) and self.is_permanent


def sort_environments(environments: list[Environment]) -> list[Environment]:
    """Sort environments by ascending order, then by name."""
    return sorted(environments, key=lambda env: (env.order, env.name))


__all__ = [
    "Environment",
    "EnvironmentKind",
    "PromotionStrategy",
    "sort_environments",
]
