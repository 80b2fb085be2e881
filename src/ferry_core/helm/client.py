"""Helm package repository client.

Thin wrapper over the ``helm`` binary covering what a promotion needs:
repository alias registration, index refresh, version search and
upgrade-or-install of a release.

Failed helm invocations are raised as ExternalServiceError.

Example:
    >>> helm = HelmClient()
    >>> helm.ensure_repository("releases", "http://jenkins-x-chartmuseum:8080")
    >>> helm.search_versions("releases/myapp")
    ['1.0.0', '1.1.0']
"""

from __future__ import annotations

import json
import subprocess
from typing import Protocol

import structlog

from ferry_core.errors import ExternalServiceError

logger = structlog.get_logger(__name__)


class PackageRepositoryClient(Protocol):
    """What the orchestrator needs from a package manager."""

    def ensure_repository(self, alias: str, url: str) -> None: ...

    def refresh_index(self) -> None: ...

    def search_versions(self, chart: str) -> list[str]: ...

    def upgrade_or_install(
        self,
        chart: str,
        release_name: str,
        namespace: str,
        version: str = "",
        create_namespace: bool = True,
    ) -> None: ...


class HelmClient:
    """Package repository client backed by the ``helm`` CLI.

    Args:
        helm_binary: Helm executable name or path.
        kube_context: Optional kubeconfig context for release operations.
    """

    def __init__(self, helm_binary: str = "helm", kube_context: str | None = None) -> None:
        self.helm_binary = helm_binary
        self.kube_context = kube_context

    def list_repositories(self) -> dict[str, str]:
        """Registered repository aliases mapped to their URLs.

        A fresh client with no repositories configured yields an empty dict.
        """
        process = self._invoke(["repo", "list", "-o", "json"])
        if process.returncode != 0:
            if "no repositories" in (process.stderr or "").lower():
                return {}
            raise self._failure("repo list", process)
        entries = json.loads(process.stdout or "[]") or []
        return {entry["name"]: entry.get("url", "") for entry in entries}

    def ensure_repository(self, alias: str, url: str) -> None:
        """Register the repository alias if it is missing."""
        repositories = self.list_repositories()
        if not repositories:
            logger.info("helm_repositories_initialised", alias=alias)
        if alias in repositories:
            return
        logger.info("helm_repository_added", alias=alias, url=url)
        self._run(["repo", "add", alias, url])

    def refresh_index(self) -> None:
        self._run(["repo", "update"])

    def search_versions(self, chart: str) -> list[str]:
        """All published versions of a chart.

        Args:
            chart: Chart reference including the repository alias.

        Returns:
            Version strings in the order helm reports them.
        """
        output = self._run(["search", "repo", chart, "--versions", "-o", "json"])
        entries = json.loads(output or "[]") or []
        return [
            str(entry["version"])
            for entry in entries
            if entry.get("name") == chart and entry.get("version")
        ]

    def upgrade_or_install(
        self,
        chart: str,
        release_name: str,
        namespace: str,
        version: str = "",
        create_namespace: bool = True,
    ) -> None:
        """Upgrade a release, installing it if it does not exist yet."""
        args = [
            "upgrade",
            "--install",
            release_name,
            chart,
            "--namespace",
            namespace,
        ]
        if create_namespace:
            args.append("--create-namespace")
        if version:
            args.extend(["--version", version])
        if self.kube_context:
            args.extend(["--kube-context", self.kube_context])
        self._run(args)

    def _invoke(self, args: list[str]) -> subprocess.CompletedProcess[str]:
        command = [self.helm_binary, *args]
        logger.debug("helm_command", command=" ".join(command))
        try:
            return subprocess.run(command, capture_output=True, text=True, check=False)
        except OSError as e:
            raise ExternalServiceError("helm", " ".join(args[:2]), str(e)) from e

    def _run(self, args: list[str]) -> str:
        process = self._invoke(args)
        if process.returncode != 0:
            raise self._failure(" ".join(args[:2]), process)
        return process.stdout

    @staticmethod
    def _failure(
        operation: str, process: subprocess.CompletedProcess[str]
    ) -> ExternalServiceError:
        reason = (process.stderr or "").strip() or f"exit code {process.returncode}"
        return ExternalServiceError("helm", operation, reason)


__all__ = ["HelmClient", "PackageRepositoryClient"]
