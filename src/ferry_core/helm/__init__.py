"""Helm adapters: package repository client and requirements manifest."""

from __future__ import annotations

from ferry_core.helm.client import HelmClient, PackageRepositoryClient
from ferry_core.helm.requirements import Dependency, Requirements

__all__ = [
    "Dependency",
    "HelmClient",
    "PackageRepositoryClient",
    "Requirements",
]
