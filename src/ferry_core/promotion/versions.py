"""Version resolution for promotions.

When no version is requested, the latest published version is promoted:
the greatest semantic version, or, when no version parses as one, the
lexicographically greatest raw string.

Example:
    >>> select_latest_version(["1.0.0", "1.2.0", "0.9.5"])
    '1.2.0'
    >>> select_latest_version(["not-a-version", "also-bad"])
    'not-a-version'
"""

from __future__ import annotations

import re
from functools import total_ordering
from typing import TYPE_CHECKING

import structlog

from ferry_core.errors import NotFoundError

if TYPE_CHECKING:
    from ferry_core.helm.client import PackageRepositoryClient

logger = structlog.get_logger(__name__)

_SEMVER_PATTERN = re.compile(
    r"^(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+(?P<build>[0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)


@total_ordering
class SemanticVersion:
    """A parsed semantic version ordered by SemVer 2.0 precedence.

    Build metadata is kept but does not take part in ordering.
    """

    __slots__ = ("major", "minor", "patch", "prerelease", "build", "raw")

    def __init__(
        self,
        major: int,
        minor: int,
        patch: int,
        prerelease: tuple[str, ...] = (),
        build: str = "",
        raw: str = "",
    ) -> None:
        self.major = major
        self.minor = minor
        self.patch = patch
        self.prerelease = prerelease
        self.build = build
        self.raw = raw or str(self)

    @classmethod
    def parse(cls, text: str) -> SemanticVersion | None:
        """Parse a version string, returning None if it is not SemVer."""
        match = _SEMVER_PATTERN.match(text.strip())
        if match is None:
            return None
        prerelease = match.group("prerelease")
        return cls(
            int(match.group("major")),
            int(match.group("minor")),
            int(match.group("patch")),
            tuple(prerelease.split(".")) if prerelease else (),
            match.group("build") or "",
            text,
        )

    def _key(self) -> tuple[object, ...]:
        # A release sorts after all of its prereleases.
        if not self.prerelease:
            pre: tuple[object, ...] = ((1,),)
        else:
            pre = tuple(
                (0, int(part), "") if part.isdigit() else (1, 0, part)
                for part in self.prerelease
            )
            pre = ((0, pre),)
        return (self.major, self.minor, self.patch, pre)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemanticVersion):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: SemanticVersion) -> bool:
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += "-" + ".".join(self.prerelease)
        if self.build:
            text += "+" + self.build
        return text

    def __repr__(self) -> str:
        return f"SemanticVersion({str(self)!r})"


def select_latest_version(versions: list[str]) -> str:
    """Pick the version to promote from a list of published versions.

    Args:
        versions: Raw version strings.

    Returns:
        The greatest semantic version (as originally written), else the
        lexicographically greatest string. Empty string for an empty list.
    """
    parsed = [v for v in (SemanticVersion.parse(raw) for raw in versions) if v is not None]
    if parsed:
        return max(parsed).raw
    return max(versions, default="")


class VersionResolver:
    """Resolves the latest published version of an application.

    Args:
        client: Package repository client.
    """

    def __init__(self, client: PackageRepositoryClient) -> None:
        self.client = client

    def resolve_latest(self, chart: str) -> str:
        """Latest version of a chart.

        Args:
            chart: Chart reference including the repository alias.

        Returns:
            The version to promote.

        Raises:
            NotFoundError: If the repository has no versions of the chart.
        """
        versions = self.client.search_versions(chart)
        if not versions:
            raise NotFoundError(chart)
        version = select_latest_version(versions)
        logger.info("latest_version_resolved", chart=chart, version=version, candidates=len(versions))
        return version


__all__ = ["SemanticVersion", "VersionResolver", "select_latest_version"]
