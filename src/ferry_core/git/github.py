"""GitHub (and GitHub Enterprise) provider."""

from __future__ import annotations

from urllib.parse import urlparse

from ferry_core.git.provider import PullRequest, PullRequestInfo
from ferry_core.git.rest import RestGitProvider


class GitHubProvider(RestGitProvider):
    """GitProvider for github.com and GitHub Enterprise servers."""

    kind = "github"
    service_name = "github"

    @staticmethod
    def api_url(server_url: str) -> str:
        """REST API base URL; Enterprise servers serve it under ``/api/v3``.

        Examples:
            >>> GitHubProvider.api_url("https://github.com")
            'https://api.github.com'
            >>> GitHubProvider.api_url("https://git.example.com/")
            'https://git.example.com/api/v3'
        """
        host = urlparse(server_url).hostname or ""
        if host in ("github.com", "api.github.com"):
            return "https://api.github.com"
        return f"{server_url.rstrip('/')}/api/v3"

    def merge_pull_request(self, pr: PullRequest, message: str) -> None:
        self._request(
            "PUT",
            f"/repos/{pr.owner}/{pr.repo}/pulls/{pr.number}/merge",
            "merge pull request",
            json={"commit_message": message, "merge_method": "merge"},
        )

    def _reset_branch(
        self,
        owner: str,
        repo: str,
        branch: str,
        base: str,
        existing: PullRequestInfo | None,
    ) -> None:
        ref = self._request(
            "GET", f"/repos/{owner}/{repo}/git/ref/heads/{base}", "get base ref"
        )
        base_sha = ref["object"]["sha"]
        current = self._request(
            "GET",
            f"/repos/{owner}/{repo}/git/ref/heads/{branch}",
            "get branch ref",
            allow_missing=True,
        )
        if current is None:
            self._request(
                "POST",
                f"/repos/{owner}/{repo}/git/refs",
                "create branch",
                json={"ref": f"refs/heads/{branch}", "sha": base_sha},
            )
            return
        self._request(
            "PATCH",
            f"/repos/{owner}/{repo}/git/refs/heads/{branch}",
            "reset branch",
            json={"sha": base_sha, "force": True},
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
        self._request("PUT", f"/repos/{owner}/{repo}/contents/{path}", "write file", json=body)


__all__ = ["GitHubProvider"]
