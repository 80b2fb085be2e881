"""Unit tests for the environment registries."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from kubernetes.client.rest import ApiException

from ferry_core.errors import ConfigurationError, ExternalServiceError
from ferry_core.kube.environments import (
    ENVIRONMENT_GROUP,
    ENVIRONMENT_PLURAL,
    ENVIRONMENT_VERSION,
    FileEnvironmentRegistry,
    KubernetesEnvironmentRegistry,
    environment_from_resource,
)
from ferry_core.schemas.environment import EnvironmentKind, PromotionStrategy


def _resource(name: str, **spec) -> dict:
    return {"metadata": {"name": name}, "spec": spec}


class TestEnvironmentFromResource:
    """Tests for custom resource conversion."""

    def test_full_resource(self) -> None:
        environment = environment_from_resource(
            _resource(
                "staging",
                label="Staging",
                namespace="jx-staging",
                promotionStrategy="Automatic",
                kind="Permanent",
                source={"url": "https://github.com/acme/environment-staging.git"},
                order=100,
            )
        )

        assert environment.name == "staging"
        assert environment.display_name == "Staging"
        assert environment.namespace == "jx-staging"
        assert environment.is_automatic
        assert environment.uses_gitops
        assert environment.order == 100

    def test_defaults(self) -> None:
        environment = environment_from_resource(_resource("dev"))

        assert environment.promotion_strategy == PromotionStrategy.MANUAL
        assert environment.kind == EnvironmentKind.PERMANENT
        assert environment.source_url == ""
        assert not environment.uses_gitops

    def test_unknown_values_fall_back(self) -> None:
        environment = environment_from_resource(
            _resource("odd", promotionStrategy="Sometimes", kind="Ephemeral")
        )

        assert environment.promotion_strategy == PromotionStrategy.MANUAL
        assert environment.kind == EnvironmentKind.PERMANENT

    def test_preview_never_uses_gitops(self) -> None:
        environment = environment_from_resource(
            _resource("pr-1", kind="Preview", source={"url": "https://github.com/acme/app.git"})
        )

        assert not environment.uses_gitops


class TestKubernetesEnvironmentRegistry:
    """Tests for KubernetesEnvironmentRegistry."""

    @pytest.fixture
    def custom_api(self) -> MagicMock:
        api = MagicMock()
        api.list_namespaced_custom_object.return_value = {
            "items": [_resource("staging", namespace="jx-staging"), _resource("dev")]
        }
        return api

    def test_list_environments(self, custom_api: MagicMock) -> None:
        registry = KubernetesEnvironmentRegistry("jx", custom_api=custom_api, core_api=MagicMock())

        environments = registry.list_environments()

        assert [env.name for env in environments] == ["staging", "dev"]
        custom_api.list_namespaced_custom_object.assert_called_once_with(
            ENVIRONMENT_GROUP, ENVIRONMENT_VERSION, "jx", ENVIRONMENT_PLURAL
        )

    def test_list_environments_of_other_team(self, custom_api: MagicMock) -> None:
        registry = KubernetesEnvironmentRegistry("jx", custom_api=custom_api, core_api=MagicMock())

        registry.list_environments("team-b")

        assert custom_api.list_namespaced_custom_object.call_args.args[2] == "team-b"

    def test_list_failure(self, custom_api: MagicMock) -> None:
        custom_api.list_namespaced_custom_object.side_effect = ApiException(
            status=403, reason="Forbidden"
        )
        registry = KubernetesEnvironmentRegistry("jx", custom_api=custom_api, core_api=MagicMock())

        with pytest.raises(ExternalServiceError, match=r"Forbidden \(HTTP 403\)"):
            registry.list_environments()

    def test_get_missing_environment(self, custom_api: MagicMock) -> None:
        custom_api.get_namespaced_custom_object.side_effect = ApiException(
            status=404, reason="Not Found"
        )
        registry = KubernetesEnvironmentRegistry("jx", custom_api=custom_api, core_api=MagicMock())

        assert registry.get_environment("nope") is None

    def test_ensure_existing_namespace(self) -> None:
        core_api = MagicMock()
        registry = KubernetesEnvironmentRegistry("jx", custom_api=MagicMock(), core_api=core_api)

        registry.ensure_namespace("jx-staging")

        core_api.read_namespace.assert_called_once_with("jx-staging")
        core_api.create_namespace.assert_not_called()

    def test_ensure_missing_namespace_creates_it(self) -> None:
        core_api = MagicMock()
        core_api.read_namespace.side_effect = ApiException(status=404, reason="Not Found")
        registry = KubernetesEnvironmentRegistry("jx", custom_api=MagicMock(), core_api=core_api)

        registry.ensure_namespace("jx-staging")

        body = core_api.create_namespace.call_args.args[0]
        assert body.metadata.name == "jx-staging"

    def test_ensure_namespace_tolerates_concurrent_create(self) -> None:
        core_api = MagicMock()
        core_api.read_namespace.side_effect = ApiException(status=404, reason="Not Found")
        core_api.create_namespace.side_effect = ApiException(status=409, reason="Conflict")
        registry = KubernetesEnvironmentRegistry("jx", custom_api=MagicMock(), core_api=core_api)

        registry.ensure_namespace("jx-staging")


class TestFileEnvironmentRegistry:
    """Tests for FileEnvironmentRegistry."""

    def test_reads_environments(self, tmp_path: Path) -> None:
        path = tmp_path / "environments.yaml"
        path.write_text(
            "namespace: team-a\n"
            "environments:\n"
            "  - name: staging\n"
            "    namespace: jx-staging\n"
            "    promotion_strategy: Automatic\n"
            "    order: 100\n"
            "  - name: production\n"
            "    namespace: jx-production\n"
        )

        registry = FileEnvironmentRegistry(path)

        assert registry.current_namespace() == "team-a"
        assert [env.name for env in registry.list_environments()] == ["staging", "production"]
        assert registry.get_environment("staging").is_automatic
        assert registry.get_environment("qa") is None
        registry.ensure_namespace("jx-staging")

    def test_invalid_file(self, tmp_path: Path) -> None:
        path = tmp_path / "environments.yaml"
        path.write_text("environments:\n  - namespace: no-name\n")

        with pytest.raises(ConfigurationError, match="Invalid environments file"):
            FileEnvironmentRegistry(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="Cannot read environments file"):
            FileEnvironmentRegistry(tmp_path / "missing.yaml")
