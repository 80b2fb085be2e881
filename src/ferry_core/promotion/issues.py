"""Issue notifications after a successful promotion.

Once a version reaches an environment, every closed issue linked to that
release gets a comment saying where the fix is deployed. Notification is
best effort: every failure is logged and none reach the caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from ferry_core.discovery import to_valid_name_with_dots
from ferry_core.promotion.activity import ActivityTracker, set_application_url

if TYPE_CHECKING:
    from ferry_core.discovery import GitRepositoryInfo
    from ferry_core.git.provider import GitProvider
    from ferry_core.kube.releases import ReleaseRegistry
    from ferry_core.kube.services import ServiceLocator
    from ferry_core.schemas.promotion import ReleaseInfo

logger = structlog.get_logger(__name__)


def format_issue_comment(
    environment: str,
    version: str,
    release_notes_url: str = "",
    url: str = "",
    host: str = "",
) -> str:
    """Text of the deployment comment posted on an issue.

    Examples:
        >>> format_issue_comment("Staging", "1.2.0", url="http://myapp.example.com")
        ':white_check_mark: the fix for this issue is now deployed to **Staging** in version 1.2.0 and available [here](http://myapp.example.com)'
    """
    version_message = f"[{version}]({release_notes_url})" if release_notes_url else version
    available = ""
    if url:
        available = f" and available [here]({url})"
    elif host:
        available = f" and available at {host}"
    return (
        ":white_check_mark: the fix for this issue is now deployed to "
        f"**{environment}** in version {version_message}{available}"
    )


class IssueNotifier:
    """Comments on closed issues fixed by a promoted release.

    Args:
        services: Locates the deployed application.
        releases: Release records listing fixed issues.
        git_provider: Provider used to post comments.
        repository: Source repository of the application.
    """

    def __init__(
        self,
        services: ServiceLocator | None = None,
        releases: ReleaseRegistry | None = None,
        git_provider: GitProvider | None = None,
        repository: GitRepositoryInfo | None = None,
    ) -> None:
        self.services = services
        self.releases = releases
        self.git_provider = git_provider
        self.repository = repository

    def notify(
        self,
        app: str,
        release_info: ReleaseInfo,
        namespace: str,
        environment_label: str,
        tracker: ActivityTracker | None = None,
    ) -> None:
        """Post deployment comments. Never raises."""
        log = logger.bind(app=app, namespace=namespace, environment=environment_label)
        try:
            self._notify(app, release_info, namespace, environment_label, tracker, log)
        except Exception as e:
            log.warning("issue_notification_failed", error=str(e))

    def _notify(
        self,
        app: str,
        release_info: ReleaseInfo,
        namespace: str,
        environment_label: str,
        tracker: ActivityTracker | None,
        log: Any,
    ) -> None:
        version = release_info.version
        if not version and release_info.pull_request_info is not None:
            version = release_info.pull_request_info.resolved_version
        if not version:
            log.warning("issue_notification_skipped", reason="no version resolved")
            return

        url, host = self._locate(app, release_info.release_name, namespace, log)
        if url and tracker is not None:
            tracker.try_apply(set_application_url(url))

        if self.releases is None:
            return
        release_name = to_valid_name_with_dots(f"{app}-{version}")
        release = self.releases.get_release(release_name, namespace)
        if release is None:
            log.debug("release_record_not_found", release=release_name)
            return

        closed = [issue for issue in release.issues if issue.is_closed]
        if not closed:
            return
        if self.git_provider is None or self.repository is None:
            log.warning("issue_notification_skipped", reason="no git repository to comment on")
            return

        text = format_issue_comment(
            environment_label, version, release.release_notes_url, url, host
        )
        for issue in closed:
            try:
                number = int(issue.id)
            except ValueError:
                number = 0
            if number <= 0:
                log.warning("issue_id_invalid", issue_id=issue.id)
                continue
            try:
                self.git_provider.create_issue_comment(
                    self.repository.organisation, self.repository.name, number, text
                )
            except Exception as e:
                log.warning("issue_comment_failed", issue=number, error=str(e))
                continue
            log.info("issue_commented", issue=number, url=issue.url)

    def _locate(
        self,
        app: str,
        release_name: str,
        namespace: str,
        log: Any,
    ) -> tuple[str, str]:
        if self.services is None:
            return "", ""
        for name in dict.fromkeys([app, release_name, f"{namespace}-{app}"]):
            try:
                url = self.services.service_url(name, namespace)
            except Exception as e:
                log.warning("service_url_lookup_failed", service=name, error=str(e))
                continue
            if url:
                return url, ""
        try:
            return "", self.services.ingress_host(app, namespace)
        except Exception as e:
            log.warning("ingress_lookup_failed", ingress=app, error=str(e))
            return "", ""


__all__ = ["IssueNotifier", "format_issue_comment"]
