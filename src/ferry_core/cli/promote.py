"""Promote command implementation.

This module implements ``ferry promote``, which:
- Discovers the application name when it is not given
- Resolves the target environment (or every automatic environment)
- Upgrades the release directly, or opens a GitOps pull request
- Waits for the pull request to merge and its checks to pass
- Records every step in the activity ledger

Example:
    $ ferry promote myapp --version 1.2.0 --env production
    $ ferry promote --all-auto --timeout 30m
    $ ferry promote myapp --env staging --output json
"""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, NoReturn

import click
import structlog
from pydantic import ValidationError

from ferry_core.cli.utils import ExitCode, error, exit_code_for, info, success, warn
from ferry_core.discovery import GitCli, discover_app_name
from ferry_core.errors import ExternalServiceError, PromotionError
from ferry_core.git.provider import create_git_provider
from ferry_core.helm.client import HelmClient
from ferry_core.promotion.coordinator import PromotionCoordinator
from ferry_core.schemas.promotion import (
    DEFAULT_HELM_REPO_NAME,
    DEFAULT_HELM_REPO_URL,
    DEFAULT_REQUIREMENTS_PATH,
    GitProviderConfig,
    PromoteConfig,
)
from ferry_core.telemetry.logging import configure_logging

if TYPE_CHECKING:
    from ferry_core.discovery import GitRepositoryInfo
    from ferry_core.kube.environments import EnvironmentRegistry
    from ferry_core.kube.releases import ReleaseRegistry
    from ferry_core.kube.services import ServiceLocator
    from ferry_core.promotion.activity import ActivityRecorder
    from ferry_core.schemas.promotion import ReleaseInfo

logger = structlog.get_logger(__name__)


@dataclass
class ClusterCollaborators:
    """Collaborators that depend on where environments are registered."""

    registry: EnvironmentRegistry
    recorder: ActivityRecorder | None = None
    services: ServiceLocator | None = None
    releases: ReleaseRegistry | None = None


def build_cluster_collaborators(
    environments_file: Path | None,
    kubeconfig: Path | None,
    team_namespace: str,
) -> ClusterCollaborators:
    """Create the environment registry and the cluster-backed collaborators.

    A YAML environments file replaces the cluster entirely: nothing is
    recorded and no issue notifications are sent.
    """
    if environments_file is not None:
        from ferry_core.kube.environments import FileEnvironmentRegistry

        return ClusterCollaborators(registry=FileEnvironmentRegistry(environments_file))

    from ferry_core.kube.activities import KubernetesActivityRecorder
    from ferry_core.kube.client import current_namespace, load_kubeconfig
    from ferry_core.kube.environments import KubernetesEnvironmentRegistry
    from ferry_core.kube.releases import KubernetesReleaseRegistry
    from ferry_core.kube.services import KubernetesServiceLocator

    load_kubeconfig(kubeconfig)
    namespace = team_namespace or current_namespace(kubeconfig)
    return ClusterCollaborators(
        registry=KubernetesEnvironmentRegistry(namespace),
        recorder=KubernetesActivityRecorder(namespace),
        services=KubernetesServiceLocator(),
        releases=KubernetesReleaseRegistry(),
    )


def _source_repository() -> GitRepositoryInfo | None:
    try:
        return GitCli().info()
    except ExternalServiceError as e:
        logger.warning("source_repository_unknown", error=e.reason)
        return None


def _format_releases(releases: list[ReleaseInfo], output_format: str) -> str:
    rows = [
        {
            "release": release.release_name,
            "chart": release.full_app_name,
            "version": release.version
            or (release.pull_request_info.resolved_version if release.pull_request_info else ""),
            "pull_request": (
                release.pull_request_info.pull_request.url if release.pull_request_info else None
            ),
        }
        for release in releases
    ]
    if output_format == "json":
        return json.dumps({"releases": rows}, indent=2)

    lines = [""]
    for row in rows:
        lines.append(f"Release:      {row['release']}")
        lines.append(f"Chart:        {row['chart']}")
        lines.append(f"Version:      {row['version'] or 'latest'}")
        if row["pull_request"]:
            lines.append(f"Pull Request: {row['pull_request']}")
        lines.append("")
    return "\n".join(lines)


def _fail(message: str, exit_code: int, output: str, **extra: Any) -> NoReturn:
    if output == "json":
        click.echo(json.dumps({"error": message, "exit_code": exit_code, **extra}))
    else:
        error(message)
    sys.exit(exit_code)


@click.command(
    name="promote",
    help="Promote a version of an application into an environment.",
    epilog="""
Examples:
    $ ferry promote myapp --version 1.2.0 --env production
    $ ferry promote --all-auto
    $ ferry promote myapp --env staging --timeout 30m --no-merge

Exit Codes:
    0  - Success (or promotion declined)
    2  - Invalid option or unknown environment
    3  - No published version found
    5  - Git provider, helm or cluster call failed
    6  - Pull request closed or a commit status failed
    7  - Timed out waiting for the promotion
""",
)
@click.argument("app_arg", metavar="[APP]", required=False)
@click.option("--app", "-a", "app", default="", help="Application to promote.")
@click.option(
    "--version", "-v", "version", default="", help="Version to promote. Defaults to the latest."
)
@click.option("--env", "-e", "environment", default="", help="Environment to promote to.")
@click.option("--namespace", "-n", default="", help="Namespace to promote to.")
@click.option("--release", "release_name", default="", help="Helm release name.")
@click.option(
    "--helm-repo-name",
    "-r",
    default=DEFAULT_HELM_REPO_NAME,
    show_default=True,
    help="Local alias of the chart repository.",
)
@click.option(
    "--helm-repo-url",
    "-u",
    default=DEFAULT_HELM_REPO_URL,
    show_default=True,
    help="Chart repository URL.",
)
@click.option(
    "--all-auto",
    "all_automatic",
    is_flag=True,
    default=False,
    help="Promote to all automatic environments in order.",
)
@click.option(
    "--timeout",
    "-t",
    default="1h",
    show_default=True,
    help="Time to wait for the promotion to succeed. Empty disables waiting.",
)
@click.option(
    "--pull-request-poll-time",
    default="20s",
    show_default=True,
    help="Poll interval when waiting for a pull request to merge.",
)
@click.option("--no-helm-update", is_flag=True, default=False, help="Skip 'helm repo update'.")
@click.option(
    "--no-merge", is_flag=True, default=False, help="Never merge promotion pull requests."
)
@click.option(
    "--batch-mode", "-b", is_flag=True, default=False, help="Run without interactive prompts."
)
@click.option("--team-namespace", default="", help="Namespace environments are registered in.")
@click.option(
    "--environments-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Read environments from a YAML file instead of the cluster.",
)
@click.option(
    "--kubeconfig",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to kubeconfig file.",
)
@click.option(
    "--git-kind",
    type=click.Choice(["github", "gitea"], case_sensitive=False),
    default="github",
    show_default=True,
    help="Git hosting backend of environment repositories.",
)
@click.option(
    "--git-server", default="https://github.com", show_default=True, help="Git server URL."
)
@click.option(
    "--git-token",
    envvar=["GIT_TOKEN", "GITHUB_TOKEN"],
    default=None,
    help="Git API token (or set GIT_TOKEN).",
)
@click.option(
    "--requirements-path",
    default=DEFAULT_REQUIREMENTS_PATH,
    show_default=True,
    help="Requirements manifest path in environment repositories.",
)
@click.option(
    "--output",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Minimum log level.",
)
@click.option(
    "--log-format",
    type=click.Choice(["console", "json"], case_sensitive=False),
    default="console",
    show_default=True,
    help="Log output format.",
)
def promote_command(
    app_arg: str | None,
    app: str,
    version: str,
    environment: str,
    namespace: str,
    release_name: str,
    helm_repo_name: str,
    helm_repo_url: str,
    all_automatic: bool,
    timeout: str,
    pull_request_poll_time: str,
    no_helm_update: bool,
    no_merge: bool,
    batch_mode: bool,
    team_namespace: str,
    environments_file: Path | None,
    kubeconfig: Path | None,
    git_kind: str,
    git_server: str,
    git_token: str | None,
    requirements_path: str,
    output: str,
    log_level: str,
    log_format: str,
) -> None:
    """Promote a version of an application into an environment.

    \b
    APP: Application to promote. Discovered from Chart.yaml or the git
    remote when omitted.
    """
    configure_logging(log_level=log_level, json_output=log_format.lower() == "json")
    output = output.lower()

    try:
        application = app or app_arg or discover_app_name()
        config = PromoteConfig(
            application=application,
            version=version,
            environment=environment,
            namespace=namespace,
            release_name=release_name,
            all_automatic=all_automatic,
            helm_repo_name=helm_repo_name,
            helm_repo_url=helm_repo_url,
            timeout=timeout,
            pull_request_poll_interval=pull_request_poll_time,
            no_helm_update=no_helm_update,
            no_merge=no_merge,
            batch_mode=batch_mode,
            team_namespace=team_namespace,
        )
        git_config = GitProviderConfig(
            kind=git_kind.lower(),
            server_url=git_server,
            token=git_token,
            requirements_path=requirements_path,
        )
    except ValidationError as e:
        messages = "; ".join(err["msg"] for err in e.errors())
        _fail(f"Invalid options: {messages}", int(ExitCode.USAGE_ERROR), output)
    except PromotionError as e:
        _fail(str(e), e.exit_code, output)

    if output == "table":
        target = "all automatic environments" if all_automatic else (environment or namespace)
        info(f"Promoting {config.application} {version or 'latest'} to {target or 'current namespace'}")

    try:
        cluster = build_cluster_collaborators(environments_file, kubeconfig, team_namespace)
        coordinator = PromotionCoordinator(
            config=config,
            registry=cluster.registry,
            package_client=HelmClient(),
            git_provider=create_git_provider(git_config),
            recorder=cluster.recorder,
            services=cluster.services,
            releases=cluster.releases,
            repository=_source_repository(),
            confirm=None if batch_mode else (lambda q: click.confirm(q, default=False, err=True)),
        )
        releases = coordinator.run()
    except PromotionError as e:
        extra: dict[str, Any] = {"type": type(e).__name__}
        url = getattr(e, "url", None)
        if url:
            extra["pull_request"] = url
        _fail(str(e), e.exit_code, output, **extra)
    except Exception as e:
        _fail(str(e), exit_code_for(e), output, type=type(e).__name__)

    click.echo(_format_releases(releases, output))
    if output == "table":
        if releases:
            success(f"Successfully promoted {config.application}")
        else:
            warn("Nothing was promoted")
    sys.exit(int(ExitCode.SUCCESS))


__all__: list[str] = ["ClusterCollaborators", "build_cluster_collaborators", "promote_command"]
