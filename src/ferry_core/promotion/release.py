"""Direct-update path: upgrade a deployed release in place."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from ferry_core.errors import PromotionError
from ferry_core.promotion.activity import (
    ActivityTracker,
    complete_update,
    fail_update,
    start_update,
)
from ferry_core.telemetry.tracing import create_span

if TYPE_CHECKING:
    from ferry_core.helm.client import PackageRepositoryClient
    from ferry_core.promotion.issues import IssueNotifier
    from ferry_core.schemas.promotion import PromoteConfig, ReleaseInfo

logger = structlog.get_logger(__name__)


class ReleaseUpdater:
    """Upgrades or installs a release with the package manager.

    Args:
        config: Promotion configuration.
        client: Package repository client.
        notifier: Notified after a successful upgrade, if given.

    Example:
        >>> updater = ReleaseUpdater(config, HelmClient())
        >>> updater.prepare_repository()
        >>> updater.upgrade(release_info, "jx-production", tracker, "Production")
    """

    def __init__(
        self,
        config: PromoteConfig,
        client: PackageRepositoryClient,
        notifier: IssueNotifier | None = None,
    ) -> None:
        self.config = config
        self.client = client
        self.notifier = notifier

    def prepare_repository(self) -> None:
        """Register the chart repository alias and refresh its index.

        The refresh is skipped when ``no_helm_update`` is set.
        """
        self.client.ensure_repository(self.config.helm_repo_name, self.config.helm_repo_url)
        if self.config.no_helm_update:
            logger.debug("helm_repo_update_skipped")
            return
        self.client.refresh_index()

    def upgrade(
        self,
        release_info: ReleaseInfo,
        namespace: str,
        tracker: ActivityTracker,
        environment_label: str = "",
    ) -> None:
        """Upgrade-or-install the release pinned to its version.

        The update step is marked started before the call and succeeded or
        failed after it.

        Args:
            release_info: Release to upgrade.
            namespace: Target namespace (created if absent).
            tracker: Activity tracker of the target environment.
            environment_label: Environment name used in notifications.

        Raises:
            ExternalServiceError: If the upgrade fails.
        """
        log = logger.bind(
            release=release_info.release_name,
            chart=release_info.full_app_name,
            namespace=namespace,
            version=release_info.version,
        )
        tracker.apply(start_update(tracker.environment, release_info.version))

        with create_span(
            "ferry.release.upgrade",
            attributes={
                "ferry.release": release_info.release_name,
                "ferry.chart": release_info.full_app_name,
                "ferry.namespace": namespace,
                "ferry.version": release_info.version or None,
            },
        ):
            log.info("release_upgrade_started")
            try:
                self.client.upgrade_or_install(
                    release_info.full_app_name,
                    release_info.release_name,
                    namespace,
                    version=release_info.version,
                    create_namespace=True,
                )
            except PromotionError:
                tracker.try_apply(fail_update(tracker.environment))
                log.error("release_upgrade_failed")
                raise

        tracker.apply(complete_update(tracker.environment))
        log.info("release_upgraded")

        if self.notifier is not None:
            self.notifier.notify(
                self.config.application,
                release_info,
                namespace,
                environment_label or namespace,
                tracker,
            )


__all__ = ["ReleaseUpdater"]
