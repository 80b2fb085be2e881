"""Shared REST plumbing for GitHub-style hosting APIs.

GitHub and Gitea expose near-identical pull request, status and issue
endpoints. RestGitProvider implements those once over a synchronous
``httpx.Client``; variants supply the API base URL and the calls that
differ (merging, branch reset, file writes).

All transport and HTTP errors are raised as ExternalServiceError so the
poller can tell retryable failures from terminal ones.
"""

from __future__ import annotations

import base64
from abc import abstractmethod
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from ferry_core.errors import ExternalServiceError
from ferry_core.git.provider import (
    STATUS_ERROR,
    STATUS_FAILURE,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    STATUS_SUCCESS,
    STATUS_UNKNOWN,
    CommitStatus,
    EditRequirements,
    GitProvider,
    PullRequest,
    PullRequestArguments,
    PullRequestInfo,
)
from ferry_core.helm.requirements import Requirements
from ferry_core.telemetry.sanitization import sanitize_error_message

if TYPE_CHECKING:
    from ferry_core.schemas.promotion import GitProviderConfig

logger = structlog.get_logger(__name__)

_AGGREGATE_STATUS = {
    STATUS_PENDING: STATUS_IN_PROGRESS,
    STATUS_SUCCESS: STATUS_SUCCESS,
    STATUS_FAILURE: STATUS_FAILURE,
    STATUS_ERROR: STATUS_ERROR,
}


class RestGitProvider(GitProvider):
    """GitProvider over a GitHub-style REST API.

    Args:
        config: Git provider configuration.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    service_name = "git"

    def __init__(
        self,
        config: GitProviderConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        headers = {"Accept": "application/json"}
        if config.token:
            headers["Authorization"] = f"token {config.token}"
        self._client = httpx.Client(
            base_url=self.api_url(config.server_url),
            headers=headers,
            timeout=config.timeout_seconds,
            transport=transport,
        )

    @staticmethod
    @abstractmethod
    def api_url(server_url: str) -> str:
        """REST API base URL for a hosting server."""

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> RestGitProvider:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Pull requests and statuses

    def refresh_pull_request(self, pr: PullRequest) -> None:
        data = self._request(
            "GET", f"/repos/{pr.owner}/{pr.repo}/pulls/{pr.number}", "get pull request"
        )
        self._apply_pull_request(pr, data)

    def list_commit_statuses(self, owner: str, repo: str, sha: str) -> list[CommitStatus]:
        data = self._request(
            "GET",
            f"/repos/{owner}/{repo}/commits/{sha}/statuses",
            "list commit statuses",
        )
        return [
            CommitStatus(
                url=item.get("context") or item.get("url") or "",
                state=item.get("state") or item.get("status") or "",
                target_url=item.get("target_url") or "",
                description=item.get("description") or "",
            )
            for item in data or []
        ]

    def last_commit_status(self, pr: PullRequest) -> str:
        if not pr.last_commit_sha:
            return STATUS_UNKNOWN
        data = self._request(
            "GET",
            f"/repos/{pr.owner}/{pr.repo}/commits/{pr.last_commit_sha}/status",
            "get combined status",
        )
        state = (data or {}).get("state") or ""
        return _AGGREGATE_STATUS.get(state, STATUS_UNKNOWN)

    def create_issue_comment(self, owner: str, repo: str, number: int, text: str) -> None:
        self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{number}/comments",
            "create issue comment",
            json={"body": text},
        )

    # Proposing changes

    def propose_or_update_pull_request(
        self,
        edit: EditRequirements,
        arguments: PullRequestArguments,
        existing: PullRequestInfo | None = None,
    ) -> PullRequestInfo:
        owner = arguments.repository.organisation
        repo = arguments.repository.name
        base = arguments.base or self._default_branch(owner, repo)
        log = logger.bind(owner=owner, repo=repo, branch=arguments.branch, base=base)

        self._reset_branch(owner, repo, arguments.branch, base, existing)

        path = self.config.requirements_path
        text, file_sha = self._read_file(owner, repo, path, arguments.branch)
        try:
            requirements = Requirements.from_yaml(text)
        except ValueError as e:
            raise ExternalServiceError(self.service_name, "read requirements", str(e)) from e
        edit(requirements)
        self._write_file(
            owner,
            repo,
            path,
            arguments.branch,
            requirements.to_yaml(),
            file_sha,
            arguments.body,
        )

        number = self._open_pull_request_number(owner, repo, arguments.branch, existing)
        if number is None:
            data = self._request(
                "POST",
                f"/repos/{owner}/{repo}/pulls",
                "create pull request",
                json={
                    "title": arguments.title,
                    "body": arguments.body,
                    "head": arguments.branch,
                    "base": base,
                },
            )
            log.info("pull_request_created", url=data.get("html_url"))
        else:
            data = self._request(
                "PATCH",
                f"/repos/{owner}/{repo}/pulls/{number}",
                "update pull request",
                json={"title": arguments.title, "body": arguments.body},
            )
            log.info("pull_request_updated", url=data.get("html_url"))

        pr = PullRequest(owner=owner, repo=repo, number=int(data["number"]), url="")
        self._apply_pull_request(pr, data)
        return PullRequestInfo(provider=self, pull_request=pr, arguments=arguments)

    def _default_branch(self, owner: str, repo: str) -> str:
        data = self._request("GET", f"/repos/{owner}/{repo}", "get repository")
        return str(data.get("default_branch") or "master")

    def _open_pull_request_number(
        self,
        owner: str,
        repo: str,
        branch: str,
        existing: PullRequestInfo | None,
    ) -> int | None:
        if existing is not None and not existing.pull_request.is_closed:
            return existing.pull_request.number
        pulls = self._request(
            "GET",
            f"/repos/{owner}/{repo}/pulls",
            "list pull requests",
            params={"state": "open"},
        )
        for item in pulls or []:
            if (item.get("head") or {}).get("ref") == branch:
                return int(item["number"])
        return None

    def _read_file(self, owner: str, repo: str, path: str, ref: str) -> tuple[str, str | None]:
        data = self._request(
            "GET",
            f"/repos/{owner}/{repo}/contents/{path}",
            "get file",
            params={"ref": ref},
            allow_missing=True,
        )
        if data is None:
            return "", None
        content = base64.b64decode(data.get("content") or "").decode("utf-8")
        return content, data.get("sha")

    @abstractmethod
    def _reset_branch(
        self,
        owner: str,
        repo: str,
        branch: str,
        base: str,
        existing: PullRequestInfo | None,
    ) -> None:
        """Make the branch start from the tip of base."""

    @abstractmethod
    def _write_file(
        self,
        owner: str,
        repo: str,
        path: str,
        branch: str,
        content: str,
        sha: str | None,
        message: str,
    ) -> None:
        """Commit file content onto the branch."""

    # Plumbing

    @staticmethod
    def _apply_pull_request(pr: PullRequest, data: dict[str, Any]) -> None:
        pr.url = data.get("html_url") or pr.url
        pr.state = data.get("state") or pr.state
        pr.merged = data.get("merged")
        pr.mergeable = data.get("mergeable")
        pr.merge_commit_sha = data.get("merge_commit_sha") or None
        pr.last_commit_sha = (data.get("head") or {}).get("sha") or pr.last_commit_sha

    @staticmethod
    def _encode(content: str) -> str:
        return base64.b64encode(content.encode("utf-8")).decode("ascii")

    def _request(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        json: Any = None,
        params: dict[str, str] | None = None,
        allow_missing: bool = False,
    ) -> Any:
        """Send a request and decode the JSON body.

        Args:
            method: HTTP method.
            path: API path relative to the base URL.
            operation: Operation name used in errors.
            json: Optional JSON body.
            params: Optional query parameters.
            allow_missing: Return None instead of raising on 404.

        Returns:
            Decoded JSON, or None for empty bodies and allowed 404s.

        Raises:
            ExternalServiceError: On transport errors or error responses.
        """
        try:
            response = self._client.request(method, path, json=json, params=params)
        except httpx.HTTPError as e:
            raise ExternalServiceError(
                self.service_name, operation, sanitize_error_message(str(e))
            ) from e

        if response.status_code == 404 and allow_missing:
            return None
        if response.status_code >= 400:
            raise ExternalServiceError(
                self.service_name,
                operation,
                f"HTTP {response.status_code}: {sanitize_error_message(response.text)}",
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ExternalServiceError(self.service_name, operation, f"invalid JSON: {e}") from e


__all__ = ["RestGitProvider"]
