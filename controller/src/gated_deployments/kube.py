"""Cluster API adapter over kubernetes_asyncio.

Resources are exchanged as plain JSON dicts (the API server's camelCase
shape) so watch payloads and direct reads compare cleanly.
"""

from __future__ import annotations

import base64
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import kubernetes_asyncio.client
import kubernetes_asyncio.client.exceptions
import kubernetes_asyncio.config

logger = logging.getLogger(__name__)

GATED_DEPLOYMENT_GROUP = "kubernetes-client.io"
GATED_DEPLOYMENT_VERSION = "v1"
GATED_DEPLOYMENT_PLURAL = "gateddeployments"


class KubeWatchStream:
    """Raw newline-delimited lines of one watch request.

    The request is issued on first iteration; ``abort`` closes the
    underlying connection.
    """

    def __init__(self, open_request: Callable[[], Awaitable[Any]]) -> None:
        self._open_request = open_request
        self._response: Any = None
        self._aborted = False

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._lines()

    async def _lines(self) -> AsyncIterator[bytes]:
        if self._aborted:
            return
        self._response = await self._open_request()
        try:
            async for line in self._response.content:
                if self._aborted:
                    break
                yield line
        finally:
            self._response.release()

    def abort(self) -> None:
        self._aborted = True
        if self._response is not None:
            self._response.close()


class KubeClient:
    def __init__(
        self,
        api_client: kubernetes_asyncio.client.ApiClient,
        *,
        watch_timeout_seconds: int = 300,
    ) -> None:
        self._api_client = api_client
        self._watch_timeout_seconds = watch_timeout_seconds
        self._apps = kubernetes_asyncio.client.AppsV1Api(api_client)
        self._core = kubernetes_asyncio.client.CoreV1Api(api_client)
        self._custom = kubernetes_asyncio.client.CustomObjectsApi(api_client)
        self._extensions = kubernetes_asyncio.client.ApiextensionsV1Api(api_client)

    @classmethod
    async def from_config(
        cls,
        kubeconfig: str | None = None,
        *,
        watch_timeout_seconds: int = 300,
    ) -> "KubeClient":
        """Use in-cluster credentials when available, else a kubeconfig file."""
        try:
            kubernetes_asyncio.config.load_incluster_config()
            logger.info("Loaded in-cluster kube config")
        except kubernetes_asyncio.config.ConfigException:
            await kubernetes_asyncio.config.load_kube_config(config_file=kubeconfig)
            logger.info("Loaded kube config from %s", kubeconfig or "default location")
        return cls(
            kubernetes_asyncio.client.ApiClient(),
            watch_timeout_seconds=watch_timeout_seconds,
        )

    async def close(self) -> None:
        await self._api_client.close()

    # -- watch streams ------------------------------------------------------

    def watch_deployment(self, namespace: str, name: str) -> KubeWatchStream:
        return KubeWatchStream(
            lambda: self._apps.list_namespaced_deployment(
                namespace,
                field_selector=f"metadata.name={name}",
                watch=True,
                timeout_seconds=self._watch_timeout_seconds,
                _preload_content=False,
            )
        )

    def watch_gated_deployments(self) -> KubeWatchStream:
        return KubeWatchStream(
            lambda: self._custom.list_cluster_custom_object(
                GATED_DEPLOYMENT_GROUP,
                GATED_DEPLOYMENT_VERSION,
                GATED_DEPLOYMENT_PLURAL,
                watch=True,
                timeout_seconds=self._watch_timeout_seconds,
                _preload_content=False,
            )
        )

    # -- deployments --------------------------------------------------------

    async def get_deployment(self, namespace: str, name: str) -> dict[str, Any]:
        response = await self._apps.read_namespaced_deployment(
            name, namespace, _preload_content=False
        )
        try:
            return await response.json()
        finally:
            response.release()

    async def patch_deployment(self, namespace: str, name: str, body: dict[str, Any]) -> None:
        # dict bodies are sent as strategic merge patches
        await self._apps.patch_namespaced_deployment(name, namespace, body)

    # -- secrets ------------------------------------------------------------

    async def read_secret_value(self, namespace: str, name: str, key: str) -> str:
        secret = await self._core.read_namespaced_secret(name, namespace)
        data = secret.data or {}
        if key not in data:
            raise KeyError(f"Secret {namespace}/{name} has no key {key!r}")
        return base64.b64decode(data[key]).decode("utf-8")

    # -- custom resource definition ----------------------------------------

    async def upsert_custom_resource_definition(self, manifest: dict[str, Any]) -> None:
        name = manifest["metadata"]["name"]
        try:
            existing = await self._extensions.read_custom_resource_definition(name)
        except kubernetes_asyncio.client.exceptions.ApiException as e:
            if e.status != 404:
                raise
            await self._extensions.create_custom_resource_definition(manifest)
            logger.info("Created custom resource definition %s", name)
            return

        body = {
            **manifest,
            "metadata": {
                **manifest["metadata"],
                "resourceVersion": existing.metadata.resource_version,
            },
        }
        await self._extensions.replace_custom_resource_definition(name, body)
        logger.info("Replaced custom resource definition %s", name)
