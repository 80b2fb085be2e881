"""Unit tests for cluster-backed services, releases and activity records."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from kubernetes.client.rest import ApiException

from ferry_core.errors import ExternalServiceError
from ferry_core.kube.activities import (
    ACTIVITY_KIND,
    KubernetesActivityRecorder,
    record_from_resource,
    record_to_spec,
)
from ferry_core.kube.client import sanitize_k8s_api_error
from ferry_core.kube.releases import KubernetesReleaseRegistry
from ferry_core.kube.services import EXPOSE_URL_ANNOTATION, KubernetesServiceLocator
from ferry_core.promotion.activity import (
    ActivityTracker,
    complete_update,
    fail_pull_request,
    start_update,
)
from ferry_core.schemas.activity import (
    PromotionActivityKey,
    PromotionActivityRecord,
    PullRequestStepState,
    UpdateStepState,
)


def _service(annotations=None, ingress=None, port=80) -> SimpleNamespace:
    return SimpleNamespace(
        metadata=SimpleNamespace(annotations=annotations),
        spec=SimpleNamespace(ports=[SimpleNamespace(port=port)]),
        status=SimpleNamespace(load_balancer=SimpleNamespace(ingress=ingress)),
    )


class TestSanitizeK8sApiError:
    def test_keeps_status_and_reason_only(self) -> None:
        exc = ApiException(status=403, reason="Forbidden")
        exc.body = "secret body"

        assert sanitize_k8s_api_error(exc) == "Forbidden (HTTP 403)"

    def test_other_exception(self) -> None:
        assert sanitize_k8s_api_error(RuntimeError("boom")) == "RuntimeError"


class TestKubernetesServiceLocator:
    """Tests for KubernetesServiceLocator."""

    def test_expose_annotation_wins(self) -> None:
        core_api = MagicMock()
        core_api.read_namespaced_service.return_value = _service(
            annotations={EXPOSE_URL_ANNOTATION: "http://myapp.example.com"},
            ingress=[SimpleNamespace(hostname="lb.example.com", ip=None)],
        )
        locator = KubernetesServiceLocator(core_api=core_api, networking_api=MagicMock())

        assert locator.service_url("myapp", "jx-staging") == "http://myapp.example.com"

    def test_load_balancer_address(self) -> None:
        core_api = MagicMock()
        core_api.read_namespaced_service.return_value = _service(
            ingress=[SimpleNamespace(hostname=None, ip="10.0.0.7")], port=8080
        )
        locator = KubernetesServiceLocator(core_api=core_api, networking_api=MagicMock())

        assert locator.service_url("myapp", "jx-staging") == "http://10.0.0.7:8080"

    def test_missing_service(self) -> None:
        core_api = MagicMock()
        core_api.read_namespaced_service.side_effect = ApiException(status=404, reason="Not Found")
        locator = KubernetesServiceLocator(core_api=core_api, networking_api=MagicMock())

        assert locator.service_url("myapp", "jx-staging") == ""

    def test_ingress_host(self) -> None:
        networking_api = MagicMock()
        networking_api.read_namespaced_ingress.return_value = SimpleNamespace(
            spec=SimpleNamespace(rules=[SimpleNamespace(host="myapp.staging.example.com")])
        )
        locator = KubernetesServiceLocator(core_api=MagicMock(), networking_api=networking_api)

        assert locator.ingress_host("myapp", "jx-staging") == "myapp.staging.example.com"


class TestKubernetesReleaseRegistry:
    """Tests for KubernetesReleaseRegistry."""

    def test_get_release(self) -> None:
        custom_api = MagicMock()
        custom_api.get_namespaced_custom_object.return_value = {
            "metadata": {"name": "myapp-1.2.0"},
            "spec": {
                "version": "1.2.0",
                "releaseNotesURL": "https://github.com/acme/myapp/releases/tag/v1.2.0",
                "issues": [
                    {"id": 12, "url": "https://github.com/acme/myapp/issues/12", "state": "closed"},
                    {"id": "13", "state": "open", "user": {"login": "someone"}},
                ],
            },
        }

        release = KubernetesReleaseRegistry(custom_api).get_release("myapp-1.2.0", "jx-staging")

        assert release.release_notes_url.endswith("v1.2.0")
        assert [issue.id for issue in release.issues] == ["12", "13"]
        assert [issue.is_closed for issue in release.issues] == [True, False]

    def test_missing_release(self) -> None:
        custom_api = MagicMock()
        custom_api.get_namespaced_custom_object.side_effect = ApiException(
            status=404, reason="Not Found"
        )

        assert KubernetesReleaseRegistry(custom_api).get_release("x", "ns") is None


class TestKubernetesActivityRecorder:
    """Tests for KubernetesActivityRecorder."""

    @pytest.fixture
    def key(self) -> PromotionActivityKey:
        return PromotionActivityKey(
            name="acme-myapp-master-7", pipeline="acme/myapp/master", build="7", environment="staging"
        )

    def test_creates_missing_record(self, key: PromotionActivityKey) -> None:
        api = MagicMock()
        api.get_namespaced_custom_object.side_effect = ApiException(status=404, reason="Not Found")
        api.create_namespaced_custom_object.side_effect = lambda *args: args[-1]
        recorder = KubernetesActivityRecorder("jx", custom_api=api)

        record = recorder.get_or_create(key)

        assert record.name == key.name
        assert record.pipeline == "acme/myapp/master"
        body = api.create_namespaced_custom_object.call_args.args[-1]
        assert body["kind"] == ACTIVITY_KIND
        assert body["metadata"] == {"name": key.name, "namespace": "jx"}

    def test_apply_replaces_without_resource_version(self, key: PromotionActivityKey) -> None:
        api = MagicMock()
        existing = PromotionActivityRecord.from_key(key)
        api.get_namespaced_custom_object.return_value = {
            "metadata": {"name": key.name, "resourceVersion": "42"},
            "spec": {**record_to_spec(existing), "stages": ["kept"]},
        }
        recorder = KubernetesActivityRecorder("jx", custom_api=api)

        record = recorder.apply(key, start_update("staging", "1.2.0"))

        assert record.step("staging").update.state == UpdateStepState.STARTED
        replaced = api.replace_namespaced_custom_object.call_args.args[-1]
        assert "resourceVersion" not in replaced["metadata"]
        assert replaced["spec"]["stages"] == ["kept"]
        assert replaced["spec"]["promoteSteps"]["staging"]["update"]["version"] == "1.2.0"

    def test_unchanged_record_is_not_written(self, key: PromotionActivityKey) -> None:
        api = MagicMock()
        done = PromotionActivityRecord.from_key(key)
        done = complete_update("staging")(done)
        api.get_namespaced_custom_object.return_value = {
            "metadata": {"name": key.name},
            "spec": record_to_spec(done),
        }
        recorder = KubernetesActivityRecorder("jx", custom_api=api)

        recorder.apply(key, complete_update("staging"))

        api.replace_namespaced_custom_object.assert_not_called()

    def test_replace_failure(self, key: PromotionActivityKey) -> None:
        api = MagicMock()
        api.get_namespaced_custom_object.return_value = {
            "metadata": {"name": key.name},
            "spec": record_to_spec(PromotionActivityRecord.from_key(key)),
        }
        api.replace_namespaced_custom_object.side_effect = ApiException(
            status=409, reason="Conflict"
        )
        recorder = KubernetesActivityRecorder("jx", custom_api=api)

        with pytest.raises(ExternalServiceError, match="update pipeline activity"):
            recorder.apply(key, start_update("staging", "1.2.0"))

    def test_round_trip_through_spec(self, key: PromotionActivityKey) -> None:
        record = start_update("staging", "1.2.0")(PromotionActivityRecord.from_key(key))

        restored = record_from_resource(
            {"metadata": {"name": key.name}, "spec": record_to_spec(record)}
        )

        assert restored == record

    def test_pipeline_stage_steps_are_left_alone(self, key: PromotionActivityKey) -> None:
        """Stages written by the CI pipeline share the resource with promote steps."""
        api = MagicMock()
        stages = [{"kind": "Stage", "stage": {"name": "Build", "status": "Succeeded"}}]
        api.get_namespaced_custom_object.return_value = {
            "metadata": {"name": key.name},
            "spec": {"pipeline": key.pipeline, "build": "7", "steps": stages},
        }
        tracker = ActivityTracker(KubernetesActivityRecorder("jx", custom_api=api), key)

        record = tracker.try_apply(fail_pull_request("staging"))

        assert record.step("staging").pull_request.state == PullRequestStepState.FAILED
        replaced = api.replace_namespaced_custom_object.call_args.args[-1]
        assert replaced["spec"]["steps"] == stages
        assert replaced["spec"]["promoteSteps"]["staging"]["pull_request"]["state"] == "failed"

    def test_invalid_spec_is_an_external_service_error(self, key: PromotionActivityKey) -> None:
        api = MagicMock()
        api.get_namespaced_custom_object.return_value = {
            "metadata": {"name": key.name},
            "spec": {"promoteSteps": ["not", "a", "mapping"]},
        }
        tracker = ActivityTracker(KubernetesActivityRecorder("jx", custom_api=api), key)

        with pytest.raises(ExternalServiceError, match="invalid spec"):
            tracker.apply(fail_pull_request("staging"))
        assert tracker.try_apply(fail_pull_request("staging")) is None
        api.replace_namespaced_custom_object.assert_not_called()
