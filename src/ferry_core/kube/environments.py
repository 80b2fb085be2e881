"""Environment registries.

Environments are owned by an external registry; the orchestrator only reads
them and makes sure a target namespace exists.

Two registries are provided:

- KubernetesEnvironmentRegistry reads ``environments.jenkins.io`` custom
  resources from the team namespace.
- FileEnvironmentRegistry reads a YAML file, for local use.

Example YAML for FileEnvironmentRegistry::

    namespace: jx
    environments:
      - name: staging
        namespace: jx-staging
        promotion_strategy: Automatic
        source_url: https://github.com/acme/environment-staging.git
        order: 100
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol

import structlog
import yaml
from kubernetes import client
from kubernetes.client.rest import ApiException
from pydantic import ValidationError

from ferry_core.errors import ConfigurationError
from ferry_core.kube.client import kubernetes_error
from ferry_core.schemas.environment import Environment, EnvironmentKind, PromotionStrategy

logger = structlog.get_logger(__name__)

ENVIRONMENT_GROUP = "jenkins.io"
ENVIRONMENT_VERSION = "v1"
ENVIRONMENT_PLURAL = "environments"


class EnvironmentRegistry(Protocol):
    """Read access to environment definitions."""

    def current_namespace(self) -> str: ...

    def list_environments(self, team_namespace: str = "") -> list[Environment]: ...

    def get_environment(self, name: str, team_namespace: str = "") -> Environment | None: ...

    def ensure_namespace(self, namespace: str) -> None: ...


def environment_from_resource(resource: dict[str, Any]) -> Environment:
    """Convert an environment custom resource into an Environment."""
    metadata = resource.get("metadata") or {}
    spec = resource.get("spec") or {}
    strategy = spec.get("promotionStrategy") or PromotionStrategy.MANUAL.value
    kind = spec.get("kind") or EnvironmentKind.PERMANENT.value
    return Environment(
        name=metadata.get("name", ""),
        label=spec.get("label") or "",
        namespace=spec.get("namespace") or "",
        promotion_strategy=_enum_or_default(PromotionStrategy, strategy, PromotionStrategy.MANUAL),
        kind=_enum_or_default(EnvironmentKind, kind, EnvironmentKind.PERMANENT),
        source_url=(spec.get("source") or {}).get("url") or "",
        order=int(spec.get("order") or 0),
    )


def _enum_or_default(enum_type: Any, value: str, default: Any) -> Any:
    try:
        return enum_type(value)
    except ValueError:
        logger.warning("unknown_environment_value", value=value, default=default.value)
        return default


class KubernetesEnvironmentRegistry:
    """Environment registry backed by custom resources.

    Args:
        namespace: Team namespace to read environments from.
        custom_api: CustomObjectsApi client (created if None).
        core_api: CoreV1Api client (created if None).

    Kubernetes configuration must already be loaded (see load_kubeconfig).
    """

    def __init__(
        self,
        namespace: str,
        custom_api: Any | None = None,
        core_api: Any | None = None,
    ) -> None:
        self._namespace = namespace
        self._custom_api = custom_api or client.CustomObjectsApi()
        self._core_api = core_api or client.CoreV1Api()

    def current_namespace(self) -> str:
        return self._namespace

    def list_environments(self, team_namespace: str = "") -> list[Environment]:
        namespace = team_namespace or self._namespace
        try:
            result = self._custom_api.list_namespaced_custom_object(
                ENVIRONMENT_GROUP, ENVIRONMENT_VERSION, namespace, ENVIRONMENT_PLURAL
            )
        except ApiException as e:
            raise kubernetes_error("list environments", e) from e
        return [environment_from_resource(item) for item in result.get("items", [])]

    def get_environment(self, name: str, team_namespace: str = "") -> Environment | None:
        namespace = team_namespace or self._namespace
        try:
            resource = self._custom_api.get_namespaced_custom_object(
                ENVIRONMENT_GROUP, ENVIRONMENT_VERSION, namespace, ENVIRONMENT_PLURAL, name
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise kubernetes_error("get environment", e) from e
        return environment_from_resource(resource)

    def ensure_namespace(self, namespace: str) -> None:
        """Create the namespace if it does not exist."""
        try:
            self._core_api.read_namespace(namespace)
            return
        except ApiException as e:
            if e.status != 404:
                raise kubernetes_error("read namespace", e) from e

        body = client.V1Namespace(metadata=client.V1ObjectMeta(name=namespace))
        try:
            self._core_api.create_namespace(body)
        except ApiException as e:
            if e.status != 409:
                raise kubernetes_error("create namespace", e) from e
        logger.info("namespace_created", namespace=namespace)


class FileEnvironmentRegistry:
    """Environment registry read from a YAML file.

    Namespaces are not created; ensure_namespace only logs.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        try:
            data = yaml.safe_load(path.read_text()) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read environments file {path}: {e}") from e
        self._namespace = str(data.get("namespace") or "default")
        try:
            self._environments = [
                Environment.model_validate(item) for item in data.get("environments") or []
            ]
        except ValidationError as e:
            raise ConfigurationError(f"Invalid environments file {path}: {e}") from e

    def current_namespace(self) -> str:
        return self._namespace

    def list_environments(self, team_namespace: str = "") -> list[Environment]:
        return list(self._environments)

    def get_environment(self, name: str, team_namespace: str = "") -> Environment | None:
        for environment in self._environments:
            if environment.name == name:
                return environment
        return None

    def ensure_namespace(self, namespace: str) -> None:
        logger.debug("namespace_not_managed", namespace=namespace, registry=str(self.path))


__all__ = [
    "ENVIRONMENT_GROUP",
    "ENVIRONMENT_PLURAL",
    "ENVIRONMENT_VERSION",
    "EnvironmentRegistry",
    "FileEnvironmentRegistry",
    "KubernetesEnvironmentRegistry",
    "environment_from_resource",
]
