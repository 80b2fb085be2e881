"""Gitea provider.

Gitea cannot force-move a branch through its API. An existing promotion
branch is instead brought up to date with its base via the pull request
update endpoint before the manifest is rewritten.
"""

from __future__ import annotations

from ferry_core.git.provider import PullRequest, PullRequestInfo
from ferry_core.git.rest import RestGitProvider


class GiteaProvider(RestGitProvider):
    """GitProvider for Gitea servers."""

    kind = "gitea"
    service_name = "gitea"

    @staticmethod
    def api_url(server_url: str) -> str:
        return f"{server_url.rstrip('/')}/api/v1"

    def merge_pull_request(self, pr: PullRequest, message: str) -> None:
        self._request(
            "POST",
            f"/repos/{pr.owner}/{pr.repo}/pulls/{pr.number}/merge",
            "merge pull request",
            json={"Do": "merge", "MergeMessageField": message},
        )

    def _reset_branch(
        self,
        owner: str,
        repo: str,
        branch: str,
        base: str,
        existing: PullRequestInfo | None,
    ) -> None:
        current = self._request(
            "GET",
            f"/repos/{owner}/{repo}/branches/{branch}",
            "get branch",
            allow_missing=True,
        )
        if current is None:
            self._request(
                "POST",
                f"/repos/{owner}/{repo}/branches",
                "create branch",
                json={"new_branch_name": branch, "old_branch_name": base},
            )
            return
        if existing is not None and not existing.pull_request.is_closed:
            self._request(
                "POST",
                f"/repos/{owner}/{repo}/pulls/{existing.pull_request.number}/update",
                "update pull request branch",
            )

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
        body = {"message": message, "content": self._encode(content), "branch": branch}
        if sha:
            body["sha"] = sha
            self._request(
                "PUT", f"/repos/{owner}/{repo}/contents/{path}", "update file", json=body
            )
        else:
            self._request(
                "POST", f"/repos/{owner}/{repo}/contents/{path}", "create file", json=body
            )


__all__ = ["GiteaProvider"]
