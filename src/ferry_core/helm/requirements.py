"""Helm requirements manifest of an environment repository.

An environment repository pins the applications deployed into it in a
``requirements.yaml`` file. Promotion via pull request edits that pin.

Example:
    >>> reqs = Requirements.from_yaml("dependencies: []\\n")
    >>> reqs.set_app_version("myapp", "1.2.0", "http://charts.example.com")
    >>> reqs.dependencies[0].version
    '1.2.0'
"""

from __future__ import annotations

from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field


class Dependency(BaseModel):
    """A chart dependency entry.

    Unknown keys (``alias``, ``condition``...) are preserved on round trip.
    """

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    name: str
    version: str = ""
    repository: str = ""


class Requirements(BaseModel):
    """Parsed requirements manifest."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    dependencies: list[Dependency] = Field(default_factory=list)

    @classmethod
    def from_yaml(cls, text: str) -> Requirements:
        """Parse manifest text. Empty text yields an empty manifest.

        Raises:
            ValueError: If the text is not a YAML mapping.
        """
        data = yaml.safe_load(text) if text.strip() else None
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("requirements manifest must be a YAML mapping")
        if data.get("dependencies") is None:
            data["dependencies"] = []
        return cls.model_validate(data)

    def to_yaml(self) -> str:
        data: dict[str, Any] = self.model_dump(exclude_none=True)
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)

    def find(self, app: str) -> Dependency | None:
        for dependency in self.dependencies:
            if dependency.name == app:
                return dependency
        return None

    def set_app_version(self, app: str, version: str, repository: str) -> None:
        """Pin an application, updating its entry or appending a new one.

        Args:
            app: Chart name.
            version: Version to pin.
            repository: Chart repository URL.
        """
        dependency = self.find(app)
        if dependency is None:
            self.dependencies.append(
                Dependency(name=app, version=version, repository=repository)
            )
            return
        dependency.version = version
        if repository:
            dependency.repository = repository


__all__ = ["Dependency", "Requirements"]
