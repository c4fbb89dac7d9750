"""Deployment reads, patches and pod spec comparison."""

from __future__ import annotations

import copy
import hashlib
import json
from typing import Any

from .kube import KubeClient


def pod_spec(deployment: dict[str, Any]) -> dict[str, Any]:
    return deployment["spec"]["template"]["spec"]


def replicas(deployment: dict[str, Any]) -> int:
    # The API server defaults an omitted replica count to 1
    return deployment["spec"].get("replicas", 1)


def is_pod_spec_identical(first: dict[str, Any], second: dict[str, Any]) -> bool:
    return pod_spec(first) == pod_spec(second)


def pod_spec_hash(deployment: dict[str, Any]) -> str:
    canonical = json.dumps(pod_spec(deployment), sort_keys=True, separators=(",", ":"))
    return hashlib.sha1(canonical.encode("utf-8")).hexdigest()


class DeploymentHelper:
    """Mutations on deployments of one namespace."""

    def __init__(self, kube: KubeClient, namespace: str) -> None:
        self._kube = kube
        self._namespace = namespace

    async def get(self, name: str) -> dict[str, Any]:
        return await self._kube.get_deployment(self._namespace, name)

    async def patch(self, name: str, body: dict[str, Any]) -> None:
        await self._kube.patch_deployment(self._namespace, name, body)

    async def kill(self, name: str) -> None:
        """Scale a deployment to zero replicas."""
        await self.patch(name, {"spec": {"replicas": 0}})

    async def update_pod_spec(self, name: str, spec: dict[str, Any]) -> None:
        """Replace a deployment's pod spec.

        The containers list is replaced wholesale rather than merged by name,
        so containers absent from ``spec`` are removed.
        """
        replacement = copy.deepcopy(spec)
        replacement["containers"] = [*replacement.get("containers", []), {"$patch": "replace"}]
        await self.patch(name, {"spec": {"template": {"spec": replacement}}})

    async def set_annotation(self, name: str, key: str, value: str | None) -> None:
        await self.patch(name, {"metadata": {"annotations": {key: value}}})
