"""Promotion coordinator: top-level promotion policy.

The coordinator resolves which namespace and environment to promote into,
chooses between the GitOps path (pull request against the environment
repository) and the direct-update path (helm upgrade), confirms overriding
automatic environments, and sequences "promote to all automatic
environments" strictly one environment after another.

Example:
    >>> coordinator = PromotionCoordinator(
    ...     config=PromoteConfig(application="myapp", version="2.0.0", environment="production"),
    ...     registry=registry,
    ...     package_client=HelmClient(),
    ... )
    >>> coordinator.run()
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TYPE_CHECKING

import structlog

from ferry_core.errors import ConfigurationError, PromotionError
from ferry_core.promotion.activity import ActivityTracker, derive_activity_key, fail_pull_request
from ferry_core.promotion.issues import IssueNotifier
from ferry_core.promotion.poller import MergeStatusPoller
from ferry_core.promotion.pull_request import PullRequestPromoter
from ferry_core.promotion.release import ReleaseUpdater
from ferry_core.promotion.versions import VersionResolver
from ferry_core.schemas.environment import sort_environments
from ferry_core.schemas.promotion import ReleaseInfo
from ferry_core.telemetry.tracing import create_span

if TYPE_CHECKING:
    from ferry_core.discovery import GitRepositoryInfo
    from ferry_core.git.provider import GitProvider
    from ferry_core.helm.client import PackageRepositoryClient
    from ferry_core.kube.environments import EnvironmentRegistry
    from ferry_core.kube.releases import ReleaseRegistry
    from ferry_core.kube.services import ServiceLocator
    from ferry_core.promotion.activity import ActivityRecorder
    from ferry_core.schemas.activity import PromotionActivityKey
    from ferry_core.schemas.environment import Environment
    from ferry_core.schemas.promotion import PromoteConfig

logger = structlog.get_logger(__name__)

PULL_REQUEST_SETTLE_SECONDS = 3.0
"""Pause after proposing a pull request before polling it."""

ConfirmCallback = Callable[[str], bool]
KeyFactory = Callable[[str], "PromotionActivityKey | None"]


class PromotionCoordinator:
    """Coordinates promotions of one application.

    Args:
        config: Immutable promotion configuration.
        registry: Environment registry.
        package_client: Package repository client (helm).
        git_provider: Git provider for the GitOps path and issue comments.
        recorder: Activity ledger, or None to record nothing.
        services: Locates the deployed application for notifications.
        releases: Release records for notifications.
        repository: Source repository of the application (issue comments).
        confirm: Asks the user a yes/no question. Without it, overriding an
            automatic environment is declined.
        key_factory: Derives the activity key for an environment.
        clock: Monotonic clock used for poll deadlines.
        sleep: Sleep function used between polls.
    """

    def __init__(
        self,
        config: PromoteConfig,
        registry: EnvironmentRegistry,
        package_client: PackageRepositoryClient,
        git_provider: GitProvider | None = None,
        recorder: ActivityRecorder | None = None,
        services: ServiceLocator | None = None,
        releases: ReleaseRegistry | None = None,
        repository: GitRepositoryInfo | None = None,
        confirm: ConfirmCallback | None = None,
        key_factory: KeyFactory | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not config.application:
            raise ConfigurationError.missing_option("app")
        self.config = config
        self.registry = registry
        self.git_provider = git_provider
        self.recorder = recorder
        self.confirm = confirm
        self.key_factory = key_factory or (lambda environment: derive_activity_key(environment))
        self.sleep = sleep
        self._base_key: PromotionActivityKey | None = None
        self._key_derived = False

        self.resolver = VersionResolver(package_client)
        self.notifier = IssueNotifier(
            services=services,
            releases=releases,
            git_provider=git_provider,
            repository=repository,
        )
        self.updater = ReleaseUpdater(config, package_client, self.notifier)
        self.promoter: PullRequestPromoter | None = None
        self.poller: MergeStatusPoller | None = None
        if git_provider is not None:
            self.promoter = PullRequestPromoter(config, git_provider, self.resolver)
            self.poller = MergeStatusPoller(
                config, self.promoter, self.notifier, clock=clock, sleep=sleep
            )
        self._log = logger.bind(app=config.application)

    def run(self) -> list[ReleaseInfo]:
        """Promote as configured: to one environment or all automatic ones.

        Returns:
            The releases promoted (empty when a confirmation was declined).

        Raises:
            ConfigurationError: If the target cannot be resolved.
            PromotionError: If a promotion fails.
        """
        if self.config.all_automatic:
            return self.promote_all_automatic()

        namespace, environment = self.resolve_target()
        if environment is None:
            if not self.config.environment:
                raise ConfigurationError.missing_option("env")
            raise ConfigurationError(
                f"Could not find an Environment called {self.config.environment}"
            )
        release_info = self.promote(namespace, environment, warn_if_automatic=True)
        if release_info is None:
            return []
        self.wait_for_promotion(namespace, environment, release_info)
        return [release_info]

    def resolve_target(self) -> tuple[str, Environment | None]:
        """Resolve the target namespace and environment.

        Returns:
            The namespace, and the environment when one was requested.

        Raises:
            ConfigurationError: If no environments exist, the environment is
                unknown, or it has no namespace.
        """
        team = self.config.team_namespace or self.registry.current_namespace()
        environments = self.registry.list_environments(team)
        if not environments:
            raise ConfigurationError(
                f"No Environments have been created yet in team {team}. Please create some first"
            )

        environment: Environment | None = None
        namespace = self.registry.current_namespace()
        if self.config.environment:
            environment = next(
                (env for env in environments if env.name == self.config.environment), None
            )
            if environment is None:
                raise ConfigurationError.invalid_option(
                    "env",
                    self.config.environment,
                    sorted(env.name for env in environments),
                )
            namespace = environment.namespace
            if not namespace:
                raise ConfigurationError(
                    f"Environment {environment.name} does not have a namespace associated with it"
                )
        elif self.config.namespace:
            namespace = self.config.namespace

        self.registry.ensure_namespace(namespace)
        return namespace, environment

    def promote_all_automatic(self) -> list[ReleaseInfo]:
        """Promote to every automatic permanent environment, in order.

        Environments are visited in ascending order. The first failure stops
        the sweep and is raised.

        Returns:
            The releases promoted, in order.
        """
        team = self.config.team_namespace or self.registry.current_namespace()
        environments = self.registry.list_environments(team)
        if not environments:
            self._log.warning("no_environments", team=team)
            return []

        targets = [
            env for env in sort_environments(environments) if env.is_automatic and env.is_permanent
        ]
        promoted: list[ReleaseInfo] = []
        with create_span(
            "ferry.promote.all_automatic",
            attributes={"ferry.app": self.config.application, "ferry.environments": len(targets)},
        ):
            for environment in targets:
                if not environment.namespace:
                    raise ConfigurationError(f"No namespace for environment {environment.name}")
                self.registry.ensure_namespace(environment.namespace)
                release_info = self.promote(
                    environment.namespace, environment, warn_if_automatic=False
                )
                if release_info is None:
                    continue
                self.wait_for_promotion(environment.namespace, environment, release_info)
                promoted.append(release_info)
        return promoted

    def promote(
        self,
        namespace: str,
        environment: Environment | None,
        warn_if_automatic: bool = True,
    ) -> ReleaseInfo | None:
        """Promote the configured version into a namespace.

        Args:
            namespace: Target namespace.
            environment: Target environment, if any.
            warn_if_automatic: Ask before overriding an automatic environment.

        Returns:
            The release, or None when the user declined.
        """
        app = self.config.application
        version = self.config.version
        log = self._log.bind(
            namespace=namespace,
            environment=environment.name if environment else None,
            version=version or "latest",
        )

        if warn_if_automatic and environment is not None and environment.is_automatic:
            log.warning("environment_promotes_automatically")
            if not self._confirm(
                f"The Environment {environment.name} is setup to promote automatically "
                "as part of the CI/CD Pipelines. Do you wish to promote anyway?"
            ):
                log.info("promotion_declined")
                return None

        tracker = self._tracker(environment.name if environment else namespace)
        with create_span(
            "ferry.promote",
            attributes={
                "ferry.app": app,
                "ferry.namespace": namespace,
                "ferry.environment": environment.name if environment else None,
                "ferry.version": version or None,
            },
        ) as span:
            log.info("promote_started")
            if environment is not None and environment.uses_gitops:
                span.set_attribute("ferry.path", "gitops")
                return self._promote_via_pull_request(environment, tracker)

            span.set_attribute("ferry.path", "direct")
            self.updater.prepare_repository()
            if not version:
                version = self.resolver.resolve_latest(self.config.full_app_name)
            release_info = ReleaseInfo(
                release_name=self.config.release_name_for(namespace),
                full_app_name=self.config.full_app_name,
                version=version,
            )
            self.updater.upgrade(
                release_info,
                namespace,
                tracker,
                environment.display_name if environment else namespace,
            )
            return release_info

    def wait_for_promotion(
        self,
        namespace: str,
        environment: Environment,
        release_info: ReleaseInfo,
    ) -> None:
        """Wait for a GitOps promotion to complete.

        Direct promotions complete synchronously and return immediately, as
        does any promotion when no timeout is configured.
        """
        if release_info.pull_request_info is None:
            return
        if self.config.timeout is None:
            self._log.info("promotion_not_awaited", reason="no timeout configured")
            return
        if self.poller is None:
            raise ConfigurationError(
                f"Environment {environment.name} is promoted via pull requests "
                "but no git provider is configured"
            )
        self.poller.wait(environment, release_info, self._tracker(environment.name))
        self._log.info(
            "promotion_succeeded",
            environment=environment.name,
            namespace=namespace,
            url=release_info.pull_request_info.pull_request.url,
        )

    def _promote_via_pull_request(
        self, environment: Environment, tracker: ActivityTracker
    ) -> ReleaseInfo:
        if self.promoter is None:
            raise ConfigurationError(
                f"Environment {environment.name} is promoted via pull requests "
                "but no git provider is configured"
            )
        release_info = ReleaseInfo(
            release_name=self.config.release_name_for(environment.namespace),
            full_app_name=self.config.full_app_name,
            version=self.config.version,
        )
        try:
            if not release_info.version:
                self.updater.prepare_repository()
            self.promoter.promote(environment, release_info, tracker)
        except PromotionError:
            tracker.try_apply(fail_pull_request(tracker.environment))
            self._log.error("pull_request_promotion_failed", environment=environment.name)
            raise
        self.sleep(PULL_REQUEST_SETTLE_SECONDS)
        return release_info

    def _confirm(self, question: str) -> bool:
        if self.config.batch_mode or self.confirm is None:
            return False
        return self.confirm(question)

    def _tracker(self, environment: str) -> ActivityTracker:
        if not self._key_derived:
            self._base_key = self.key_factory(environment)
            self._key_derived = True
        if self._base_key is None:
            return ActivityTracker(self.recorder, None)
        return ActivityTracker(self.recorder, self._base_key.for_environment(environment))


__all__ = ["PULL_REQUEST_SETTLE_SECONDS", "PromotionCoordinator"]
