"""Activity ledger stored as ``pipelineactivities.jenkins.io`` resources.

The CI pipeline writes the same resources and owns ``spec.steps`` (a list of
stages), so promote steps are kept under ``spec.promoteSteps``. Spec keys
ferry does not know are preserved on every write.

Updates are get-modify-write. The resource version is dropped before
replacing, so concurrent writers on the same record overwrite each other
(last writer wins).
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog
from kubernetes import client
from kubernetes.client.rest import ApiException
from pydantic import ValidationError

from ferry_core.errors import ExternalServiceError
from ferry_core.kube.client import kubernetes_error
from ferry_core.schemas.activity import PromotionActivityKey, PromotionActivityRecord

logger = structlog.get_logger(__name__)

ACTIVITY_GROUP = "jenkins.io"
ACTIVITY_VERSION = "v1"
ACTIVITY_PLURAL = "pipelineactivities"
ACTIVITY_KIND = "PipelineActivity"

PROMOTE_STEPS_KEY = "promoteSteps"

_SCALAR_FIELDS = frozenset(PromotionActivityRecord.model_fields) - {"name", "steps"}


def record_to_spec(record: PromotionActivityRecord) -> dict[str, Any]:
    spec = record.model_dump(mode="json", exclude={"name", "steps"})
    spec[PROMOTE_STEPS_KEY] = {
        environment: step.model_dump(mode="json") for environment, step in record.steps.items()
    }
    return spec


def record_from_resource(resource: dict[str, Any]) -> PromotionActivityRecord:
    """Read a record, ignoring spec fields written by other tools.

    Raises:
        ExternalServiceError: If the stored spec does not hold a valid record.
    """
    name = (resource.get("metadata") or {}).get("name", "")
    spec = resource.get("spec") or {}
    known = {k: v for k, v in spec.items() if k in _SCALAR_FIELDS}
    known["steps"] = spec.get(PROMOTE_STEPS_KEY) or {}
    try:
        return PromotionActivityRecord.model_validate({**known, "name": name})
    except ValidationError as e:
        raise ExternalServiceError(
            "kubernetes",
            "read pipeline activity",
            f"{name} has an invalid spec: {e.error_count()} validation error(s)",
        ) from e


class KubernetesActivityRecorder:
    """ActivityRecorder persisting records as custom resources.

    Args:
        namespace: Namespace records are stored in.
        custom_api: CustomObjectsApi client (created if None).
    """

    def __init__(self, namespace: str, custom_api: Any | None = None) -> None:
        self.namespace = namespace
        self._api = custom_api or client.CustomObjectsApi()

    def get_or_create(self, key: PromotionActivityKey) -> PromotionActivityRecord:
        return record_from_resource(self._get_or_create_resource(key))

    def apply(
        self,
        key: PromotionActivityKey,
        transition: Callable[[PromotionActivityRecord], PromotionActivityRecord],
    ) -> PromotionActivityRecord:
        resource = self._get_or_create_resource(key)
        current = record_from_resource(resource)
        updated = transition(current)
        if updated == current:
            return current

        resource["spec"] = {**(resource.get("spec") or {}), **record_to_spec(updated)}
        (resource.get("metadata") or {}).pop("resourceVersion", None)
        try:
            self._api.replace_namespaced_custom_object(
                ACTIVITY_GROUP,
                ACTIVITY_VERSION,
                self.namespace,
                ACTIVITY_PLURAL,
                key.name,
                resource,
            )
        except ApiException as e:
            raise kubernetes_error("update pipeline activity", e) from e
        logger.debug("activity_updated", record=key.name, environment=key.environment)
        return updated

    def _get_or_create_resource(self, key: PromotionActivityKey) -> dict[str, Any]:
        try:
            return self._api.get_namespaced_custom_object(
                ACTIVITY_GROUP, ACTIVITY_VERSION, self.namespace, ACTIVITY_PLURAL, key.name
            )
        except ApiException as e:
            if e.status != 404:
                raise kubernetes_error("get pipeline activity", e) from e

        body = {
            "apiVersion": f"{ACTIVITY_GROUP}/{ACTIVITY_VERSION}",
            "kind": ACTIVITY_KIND,
            "metadata": {"name": key.name, "namespace": self.namespace},
            "spec": record_to_spec(PromotionActivityRecord.from_key(key)),
        }
        try:
            created = self._api.create_namespaced_custom_object(
                ACTIVITY_GROUP, ACTIVITY_VERSION, self.namespace, ACTIVITY_PLURAL, body
            )
        except ApiException as e:
            raise kubernetes_error("create pipeline activity", e) from e
        logger.info("activity_created", record=key.name)
        return created or body


__all__ = [
    "ACTIVITY_GROUP",
    "ACTIVITY_PLURAL",
    "ACTIVITY_VERSION",
    "KubernetesActivityRecorder",
    "PROMOTE_STEPS_KEY",
    "record_from_resource",
    "record_to_spec",
]
