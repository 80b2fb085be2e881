"""Release records: release notes and the issues fixed by a version.

A release record named ``{app}-{version}`` is published by the release
pipeline. The issue notifier reads it to find issues to comment on.
"""

from __future__ import annotations

from typing import Any, Protocol

from kubernetes import client
from kubernetes.client.rest import ApiException
from pydantic import BaseModel, ConfigDict, Field

from ferry_core.kube.client import kubernetes_error

RELEASE_GROUP = "jenkins.io"
RELEASE_VERSION = "v1"
RELEASE_PLURAL = "releases"


class IssueSummary(BaseModel):
    """An issue referenced by a release."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    url: str = ""
    title: str = ""
    state: str = ""

    @property
    def is_closed(self) -> bool:
        return self.state.lower() == "closed"


class ReleaseRecord(BaseModel):
    """A published release of an application version."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str
    version: str = ""
    release_notes_url: str = ""
    issues: list[IssueSummary] = Field(default_factory=list)


class ReleaseRegistry(Protocol):
    def get_release(self, name: str, namespace: str) -> ReleaseRecord | None: ...


class KubernetesReleaseRegistry:
    """Reads ``releases.jenkins.io`` custom resources."""

    def __init__(self, custom_api: Any | None = None) -> None:
        self._custom_api = custom_api or client.CustomObjectsApi()

    def get_release(self, name: str, namespace: str) -> ReleaseRecord | None:
        try:
            resource = self._custom_api.get_namespaced_custom_object(
                RELEASE_GROUP, RELEASE_VERSION, namespace, RELEASE_PLURAL, name
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise kubernetes_error("get release", e) from e

        spec = resource.get("spec") or {}
        return ReleaseRecord(
            name=name,
            version=spec.get("version") or "",
            release_notes_url=spec.get("releaseNotesURL") or "",
            issues=[
                IssueSummary.model_validate({**issue, "id": str(issue.get("id", ""))})
                for issue in spec.get("issues") or []
            ],
        )


__all__ = [
    "IssueSummary",
    "KubernetesReleaseRegistry",
    "ReleaseRecord",
    "ReleaseRegistry",
]
