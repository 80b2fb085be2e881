"""Locate where a deployed application is reachable."""

from __future__ import annotations

from typing import Any, Protocol

import structlog
from kubernetes import client
from kubernetes.client.rest import ApiException

from ferry_core.kube.client import kubernetes_error

logger = structlog.get_logger(__name__)

EXPOSE_URL_ANNOTATION = "fabric8.io/exposeUrl"


class ServiceLocator(Protocol):
    """Resolves externally reachable URLs inside a namespace."""

    def service_url(self, name: str, namespace: str) -> str: ...

    def ingress_host(self, name: str, namespace: str) -> str: ...


class KubernetesServiceLocator:
    """ServiceLocator backed by Services and Ingresses.

    A service URL comes from the expose annotation, else from a load
    balancer ingress address. Lookups of missing resources return "".
    """

    def __init__(self, core_api: Any | None = None, networking_api: Any | None = None) -> None:
        self._core_api = core_api or client.CoreV1Api()
        self._networking_api = networking_api or client.NetworkingV1Api()

    def service_url(self, name: str, namespace: str) -> str:
        try:
            service = self._core_api.read_namespaced_service(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return ""
            raise kubernetes_error("read service", e) from e

        annotations = service.metadata.annotations or {}
        url = annotations.get(EXPOSE_URL_ANNOTATION, "")
        if url:
            return url

        load_balancer = service.status.load_balancer if service.status else None
        for ingress in (load_balancer.ingress if load_balancer else None) or []:
            host = ingress.hostname or ingress.ip
            if host:
                port = service.spec.ports[0].port if service.spec.ports else 80
                return f"http://{host}" if port == 80 else f"http://{host}:{port}"
        return ""

    def ingress_host(self, name: str, namespace: str) -> str:
        try:
            ingress = self._networking_api.read_namespaced_ingress(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return ""
            raise kubernetes_error("read ingress", e) from e
        rules = ingress.spec.rules if ingress.spec else None
        return (rules[0].host or "") if rules else ""


__all__ = ["EXPOSE_URL_ANNOTATION", "KubernetesServiceLocator", "ServiceLocator"]
