"""Kubernetes client configuration helpers."""

from __future__ import annotations

from pathlib import Path

from kubernetes import config as k8s_config

from ferry_core.errors import ExternalServiceError

_SERVICE_ACCOUNT_NAMESPACE = Path("/var/run/secrets/kubernetes.io/serviceaccount/namespace")


def load_kubeconfig(kubeconfig: Path | None = None) -> None:
    """Load Kubernetes configuration.

    An explicit kubeconfig wins. Otherwise in-cluster configuration is
    tried first, then the default kubeconfig.

    Args:
        kubeconfig: Path to kubeconfig file, or None for default.
    """
    if kubeconfig:
        k8s_config.load_kube_config(config_file=str(kubeconfig))
        return

    try:
        k8s_config.load_incluster_config()
    except k8s_config.ConfigException:
        k8s_config.load_kube_config()


def current_namespace(kubeconfig: Path | None = None) -> str:
    """Namespace of the current kubeconfig context, or the pod's namespace."""
    if _SERVICE_ACCOUNT_NAMESPACE.is_file():
        return _SERVICE_ACCOUNT_NAMESPACE.read_text().strip() or "default"
    try:
        _, active = k8s_config.list_kube_config_contexts(
            config_file=str(kubeconfig) if kubeconfig else None
        )
    except (k8s_config.ConfigException, OSError):
        return "default"
    return (active or {}).get("context", {}).get("namespace") or "default"


def sanitize_k8s_api_error(exc: Exception) -> str:
    """Sanitize a Kubernetes API exception for safe logging.

    Only status code and reason are kept, never the body or headers.

    Args:
        exc: Exception from the kubernetes client (ApiException expected).

    Returns:
        Sanitized error message.
    """
    status = getattr(exc, "status", None)
    reason = getattr(exc, "reason", None)

    if status is not None and reason is not None:
        return f"{reason} (HTTP {status})"
    if reason is not None:
        return str(reason)
    return type(exc).__name__


def kubernetes_error(operation: str, exc: Exception) -> ExternalServiceError:
    """Wrap a Kubernetes API failure."""
    return ExternalServiceError("kubernetes", operation, sanitize_k8s_api_error(exc))


__all__ = [
    "current_namespace",
    "kubernetes_error",
    "load_kubeconfig",
    "sanitize_k8s_api_error",
]
