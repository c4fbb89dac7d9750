"""Fleet-wide supervisor: one DeploymentWatcher per GatedDeployment resource."""

from __future__ import annotations

import logging
from typing import Any

from .deployment_watcher import DeploymentWatcher
from .kube import KubeClient
from .models import GatedDeployment
from .plugins import PluginContext, build_plugins_from_config
from .watcher import Watcher, WatchStream, resource_id

logger = logging.getLogger(__name__)


class GatedDeploymentWatcher(Watcher):
    def __init__(
        self,
        *,
        kube: KubeClient,
        controller_namespace: str,
        poller_interval_seconds: float,
    ) -> None:
        super().__init__()
        self._kube = kube
        self._controller_namespace = controller_namespace
        self._poller_interval_seconds = poller_interval_seconds
        self._deployment_watchers: dict[str, DeploymentWatcher] = {}

    @property
    def deployment_watchers(self) -> dict[str, DeploymentWatcher]:
        return self._deployment_watchers

    def active_ids(self) -> list[str]:
        return sorted(self._deployment_watchers)

    def shutdown(self) -> None:
        """Stop this watcher and every child without clearing experiment state."""
        super().shutdown()
        for watcher in self._deployment_watchers.values():
            watcher.shutdown()

    def get_stream(self) -> WatchStream:
        return self._kube.watch_gated_deployments()

    async def _create_deployment_watcher(self, gated_deployment: dict[str, Any]) -> None:
        gated_deployment_id = resource_id(gated_deployment)
        log_fields = {"gd_gated_deployment_id": gated_deployment_id}
        logger.info("%s: Creating and starting deployment watcher", gated_deployment_id, extra=log_fields)

        try:
            declaration = GatedDeployment.model_validate(gated_deployment)
            descriptor = declaration.deployment_descriptor
            plugins = await build_plugins_from_config(
                PluginContext(
                    namespace=self._controller_namespace,
                    kube=self._kube,
                    control_name=descriptor.control.name,
                    treatment_name=descriptor.treatment.name,
                ),
                descriptor.decision_plugins,
            )

            watcher = DeploymentWatcher(
                kube=self._kube,
                deployment_descriptor=descriptor,
                namespace=declaration.metadata.namespace,
                plugins=plugins,
                poller_interval_seconds=self._poller_interval_seconds,
                gated_deployment_id=gated_deployment_id,
            )
            self._deployment_watchers[gated_deployment_id] = watcher
            watcher.start()
        except Exception as exc:
            logger.error(
                "%s: Failed to create and start deployment watcher: %s",
                gated_deployment_id,
                exc,
                extra=log_fields,
            )

    def _remove_deployment_watcher(self, gated_deployment: dict[str, Any]) -> None:
        gated_deployment_id = resource_id(gated_deployment)
        log_fields = {"gd_gated_deployment_id": gated_deployment_id}
        logger.info("%s: Stopping and removing deployment watcher", gated_deployment_id, extra=log_fields)

        watcher = self._deployment_watchers.pop(gated_deployment_id, None)
        if watcher is None:
            logger.warning("%s: No deployment watcher found", gated_deployment_id, extra=log_fields)
            return
        watcher.stop()

    async def on_added(self, gated_deployment: dict[str, Any]) -> None:
        await self._create_deployment_watcher(gated_deployment)

    async def on_modified(self, gated_deployment: dict[str, Any]) -> None:
        # Recreate rather than diff the descriptor.
        self._remove_deployment_watcher(gated_deployment)
        await self._create_deployment_watcher(gated_deployment)

    async def on_deleted(self, gated_deployment: dict[str, Any]) -> None:
        self._remove_deployment_watcher(gated_deployment)
