"""Kubernetes adapters: environments, services, releases and the activity ledger."""

from __future__ import annotations

from ferry_core.kube.activities import KubernetesActivityRecorder
from ferry_core.kube.client import current_namespace, load_kubeconfig
from ferry_core.kube.environments import (
    EnvironmentRegistry,
    FileEnvironmentRegistry,
    KubernetesEnvironmentRegistry,
)
from ferry_core.kube.releases import KubernetesReleaseRegistry, ReleaseRecord, ReleaseRegistry
from ferry_core.kube.services import KubernetesServiceLocator, ServiceLocator

__all__ = [
    "EnvironmentRegistry",
    "FileEnvironmentRegistry",
    "KubernetesActivityRecorder",
    "KubernetesEnvironmentRegistry",
    "KubernetesReleaseRegistry",
    "KubernetesServiceLocator",
    "ReleaseRecord",
    "ReleaseRegistry",
    "ServiceLocator",
    "current_namespace",
    "load_kubeconfig",
]
