"""Tests for deployment patches, pod spec comparison and the experiment annotation."""

import json
from datetime import UTC, datetime

import pytest
from factories import POD_SPEC_V1, POD_SPEC_V2, make_deployment

from gated_deployments import deployments
from gated_deployments.deployments import DeploymentHelper
from gated_deployments.experiment_store import (
    DEPLOYMENT_ANNOTATION_NAME,
    EXPERIMENT_ANNOTATION_NAME,
    ExperimentStore,
)
from gated_deployments.models import ExperimentAnnotation


class TestPodSpec:
    def test_identical_specs(self):
        assert deployments.is_pod_spec_identical(
            make_deployment("a", pod_spec=POD_SPEC_V1, replicas=1),
            make_deployment("b", pod_spec=POD_SPEC_V1, replicas=5),
        )

    def test_different_specs(self):
        assert not deployments.is_pod_spec_identical(
            make_deployment("a", pod_spec=POD_SPEC_V1),
            make_deployment("b", pod_spec=POD_SPEC_V2),
        )

    def test_hash_ignores_key_order_and_metadata(self):
        first = make_deployment("a", pod_spec={"containers": [{"name": "app", "image": "x"}]})
        second = make_deployment(
            "b",
            pod_spec={"containers": [{"image": "x", "name": "app"}]},
            resource_version="99",
            annotations={"foo": "bar"},
        )
        assert deployments.pod_spec_hash(first) == deployments.pod_spec_hash(second)

    def test_hash_changes_with_image(self):
        assert deployments.pod_spec_hash(make_deployment("a", pod_spec=POD_SPEC_V1)) != (
            deployments.pod_spec_hash(make_deployment("a", pod_spec=POD_SPEC_V2))
        )

    def test_missing_replicas_defaults_to_one(self):
        deployment = make_deployment("a")
        del deployment["spec"]["replicas"]
        assert deployments.replicas(deployment) == 1


class TestDeploymentHelper:
    @pytest.mark.asyncio
    async def test_kill_scales_to_zero(self, kube):
        await DeploymentHelper(kube, "ns").kill("svc-treatment")
        kube.patch_deployment.assert_awaited_once_with("ns", "svc-treatment", {"spec": {"replicas": 0}})

    @pytest.mark.asyncio
    async def test_update_pod_spec_replaces_containers(self, kube):
        await DeploymentHelper(kube, "ns").update_pod_spec("svc-control", POD_SPEC_V2)

        namespace, name, body = kube.patch_deployment.await_args.args
        assert (namespace, name) == ("ns", "svc-control")
        containers = body["spec"]["template"]["spec"]["containers"]
        assert containers[:-1] == POD_SPEC_V2["containers"]
        assert containers[-1] == {"$patch": "replace"}
        # Caller's spec is not mutated
        assert POD_SPEC_V2["containers"][-1] != {"$patch": "replace"}

    @pytest.mark.asyncio
    async def test_set_annotation(self, kube):
        await DeploymentHelper(kube, "ns").set_annotation("svc", "key", None)
        kube.patch_deployment.assert_awaited_once_with(
            "ns", "svc", {"metadata": {"annotations": {"key": None}}}
        )

    @pytest.mark.asyncio
    async def test_get_reads_from_namespace(self, kube):
        kube.deployments["svc"] = make_deployment("svc")
        assert await DeploymentHelper(kube, "ns").get("svc") is kube.deployments["svc"]
        kube.get_deployment.assert_awaited_once_with("ns", "svc")


class TestExperimentStore:
    def _store(self, kube):
        return ExperimentStore(DeploymentHelper(kube, "ns"), "svc-treatment")

    def test_load_absent(self, kube):
        assert self._store(kube).load(make_deployment("svc-treatment")) is None

    def test_load_valid(self, kube):
        deployment = make_deployment("svc-treatment", annotations={
            EXPERIMENT_ANNOTATION_NAME: json.dumps({
                "startTime": "2026-03-01T12:00:00.000Z",
                "podSpecHash": "abc",
            }),
        })
        state = self._store(kube).load(deployment)
        assert state == ExperimentAnnotation(
            start_time=datetime(2026, 3, 1, 12, 0, tzinfo=UTC), pod_spec_hash="abc"
        )

    @pytest.mark.parametrize("raw", [
        "not json",
        json.dumps({"startTime": "2026-03-01T12:00:00Z"}),
        json.dumps({"startTime": "yesterday", "podSpecHash": "abc"}),
        json.dumps({"startTime": "2026-03-01T12:00:00Z", "podSpecHash": ""}),
        json.dumps(["a", "b"]),
    ])
    def test_load_invalid_is_absent(self, kube, raw):
        deployment = make_deployment("svc-treatment", annotations={EXPERIMENT_ANNOTATION_NAME: raw})
        assert self._store(kube).load(deployment) is None

    @pytest.mark.asyncio
    async def test_save_writes_millisecond_utc(self, kube):
        state = ExperimentAnnotation(
            start_time=datetime(2026, 3, 1, 12, 0, 0, 123456, tzinfo=UTC), pod_spec_hash="abc"
        )
        await self._store(kube).save(state)

        _, name, body = kube.patch_deployment.await_args.args
        assert name == "svc-treatment"
        value = json.loads(body["metadata"]["annotations"][EXPERIMENT_ANNOTATION_NAME])
        assert value == {"startTime": "2026-03-01T12:00:00.123Z", "podSpecHash": "abc"}

    @pytest.mark.asyncio
    async def test_clear_and_status(self, kube):
        store = self._store(kube)
        await store.clear()
        await store.set_status("harm")

        bodies = [call.args[2] for call in kube.patch_deployment.await_args_list]
        assert bodies == [
            {"metadata": {"annotations": {EXPERIMENT_ANNOTATION_NAME: None}}},
            {"metadata": {"annotations": {DEPLOYMENT_ANNOTATION_NAME: "harm"}}},
        ]

    def test_saved_annotation_loads_back(self, kube):
        state = ExperimentAnnotation(
            start_time=datetime(2026, 3, 1, 12, 0, 0, 500000, tzinfo=UTC), pod_spec_hash="abc"
        )
        deployment = make_deployment(
            "svc-treatment", annotations={EXPERIMENT_ANNOTATION_NAME: state.to_json()}
        )
        assert self._store(kube).load(deployment) == state
