"""Local discovery: application name, git remote metadata and naming helpers.

The application name is discovered from chart metadata in the working
directory, falling back to the name of the git remote repository.

Example:
    >>> info = parse_git_url("git@github.com:acme/myapp.git")
    >>> (info.host, info.organisation, info.name)
    ('github.com', 'acme', 'myapp')
    >>> to_valid_name("acme/myapp/master-12")
    'acme-myapp-master-12'
"""

from __future__ import annotations

import re
import subprocess
from pathlib import Path
from urllib.parse import urlparse

import structlog
import yaml
from pydantic import BaseModel, ConfigDict

from ferry_core.errors import DiscoveryError, ExternalServiceError

logger = structlog.get_logger(__name__)

_MAX_NAME_LENGTH = 63
_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9-]+")
_INVALID_NAME_CHARS_WITH_DOTS = re.compile(r"[^a-z0-9.-]+")
_SCP_LIKE_URL = re.compile(r"^(?:[^@/]+@)?(?P<host>[^:/]+):(?P<path>.+)$")


class GitRepositoryInfo(BaseModel):
    """Where a git repository is hosted.

    Attributes:
        url: The original URL.
        host: Hosting server host name.
        organisation: Owner (user or organisation).
        name: Repository name without ``.git``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str
    host: str
    organisation: str
    name: str

    @property
    def https_url(self) -> str:
        return f"https://{self.host}/{self.organisation}/{self.name}"


def parse_git_url(url: str) -> GitRepositoryInfo:
    """Parse an https, ssh or scp-like git URL.

    Args:
        url: Repository URL.

    Returns:
        Parsed repository info.

    Raises:
        ValueError: If owner and repository cannot be determined.
    """
    text = url.strip()
    if "://" in text:
        parsed = urlparse(text)
        host = parsed.hostname or ""
        path = parsed.path
    else:
        match = _SCP_LIKE_URL.match(text)
        if match is None:
            raise ValueError(f"Cannot parse git URL: {url}")
        host = match.group("host")
        path = match.group("path")

    parts = [p for p in path.strip("/").split("/") if p]
    if not host or len(parts) < 2:
        raise ValueError(f"Cannot parse git URL: {url}")
    name = parts[-1]
    if name.endswith(".git"):
        name = name[: -len(".git")]
    return GitRepositoryInfo(
        url=url,
        host=host,
        organisation="/".join(parts[:-1]),
        name=name,
    )


def to_valid_name(name: str) -> str:
    """Sanitize a string into a lowercase DNS-label-safe resource name."""
    return _sanitize(name, _INVALID_NAME_CHARS)


def to_valid_name_with_dots(name: str) -> str:
    """Like to_valid_name but keeps dots, so versions stay readable."""
    return _sanitize(name, _INVALID_NAME_CHARS_WITH_DOTS)


def _sanitize(name: str, invalid: re.Pattern[str]) -> str:
    result = invalid.sub("-", name.lower())
    result = re.sub(r"-{2,}", "-", result).strip("-.")
    return result[:_MAX_NAME_LENGTH].rstrip("-.")


def url_join(*parts: str) -> str:
    """Join URL path segments with single slashes."""
    cleaned = [p.strip("/") for p in parts[1:] if p and p.strip("/")]
    head = parts[0].rstrip("/") if parts else ""
    return "/".join([head, *cleaned]) if head else "/".join(cleaned)


class GitCli:
    """Reads metadata of the local git checkout via the ``git`` binary."""

    def __init__(self, cwd: Path | None = None, git_binary: str = "git") -> None:
        self.cwd = cwd or Path.cwd()
        self.git_binary = git_binary

    def remote_url(self, remote: str = "origin") -> str:
        return self._run(["config", "--get", f"remote.{remote}.url"]).strip()

    def branch(self) -> str:
        return self._run(["rev-parse", "--abbrev-ref", "HEAD"]).strip()

    def info(self) -> GitRepositoryInfo | None:
        """Repository info of the origin remote, or None if there is none."""
        url = self.remote_url()
        if not url:
            return None
        try:
            return parse_git_url(url)
        except ValueError as e:
            logger.warning("git_remote_unparseable", error=str(e))
            return None

    def _run(self, args: list[str]) -> str:
        command = [self.git_binary, *args]
        try:
            process = subprocess.run(
                command,
                cwd=str(self.cwd),
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            raise ExternalServiceError("git", " ".join(args), str(e)) from e
        if process.returncode != 0:
            raise ExternalServiceError(
                "git", " ".join(args), process.stderr.strip() or f"exit code {process.returncode}"
            )
        return process.stdout


def find_chart_file(directory: Path) -> Path | None:
    """Find ``Chart.yaml`` in the directory or under ``charts/*``."""
    candidate = directory / "Chart.yaml"
    if candidate.is_file():
        return candidate
    charts = sorted((directory / "charts").glob("*/Chart.yaml"))
    return charts[0] if charts else None


def load_chart_name(chart_file: Path) -> str:
    """Read the ``name`` field of a chart file."""
    with chart_file.open() as f:
        data = yaml.safe_load(f) or {}
    return str(data.get("name") or "")


def discover_app_name(directory: Path | None = None, git: GitCli | None = None) -> str:
    """Discover the application name for a promotion.

    Args:
        directory: Working directory to search. Defaults to the current one.
        git: Git metadata reader. Defaults to one on the same directory.

    Returns:
        The chart name, or the git remote repository name.

    Raises:
        DiscoveryError: If neither source yields a name.
    """
    directory = directory or Path.cwd()
    chart_file = find_chart_file(directory)
    if chart_file is not None:
        name = load_chart_name(chart_file)
        if name:
            return name

    git = git or GitCli(directory)
    try:
        info = git.info()
    except ExternalServiceError as e:
        raise DiscoveryError(
            f"Could not discover the application name: {e.reason}. "
            "Use the --app option"
        ) from e
    if info is None or not info.name:
        raise DiscoveryError(
            "No git info found to discover the application name from. Use the --app option"
        )
    return info.name


__all__ = [
    "GitCli",
    "GitRepositoryInfo",
    "discover_app_name",
    "find_chart_file",
    "load_chart_name",
    "parse_git_url",
    "to_valid_name",
    "to_valid_name_with_dots",
    "url_join",
]
