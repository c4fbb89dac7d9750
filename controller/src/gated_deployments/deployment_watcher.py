"""Canary experiment lifecycle for one gated deployment.

Watches the treatment deployment. While the treatment has replicas and a pod
spec that differs from control, an experiment runs: every poll interval all
decision plugins are asked for a verdict and the aggregate decides whether to
promote the treatment into control, kill it, or keep waiting.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from . import deployments, metrics
from .analysis import Verdict
from .deployments import DeploymentHelper
from .experiment_store import ExperimentStore
from .kube import KubeClient
from .models import DeploymentDescriptor, ExperimentAnnotation, utcnow
from .plugins import Decision, ExperimentTimeLimit
from .watcher import Watcher, WatchStream

logger = logging.getLogger(__name__)


@dataclass
class Experiment:
    start_time: datetime | None = None
    poller: asyncio.Task[None] | None = None
    treatment_pod_spec: dict[str, Any] | None = None

    @property
    def running(self) -> bool:
        return self.poller is not None


class DeploymentWatcher(Watcher):
    def __init__(
        self,
        *,
        kube: KubeClient,
        deployment_descriptor: DeploymentDescriptor,
        namespace: str,
        plugins: list[ExperimentTimeLimit],
        poller_interval_seconds: float,
        gated_deployment_id: str,
    ) -> None:
        super().__init__()
        self._kube = kube
        self._descriptor = deployment_descriptor
        self._namespace = namespace
        self._plugins = plugins
        self._poller_interval_seconds = poller_interval_seconds
        self._gated_deployment_id = gated_deployment_id

        self._deployments = DeploymentHelper(kube, namespace)
        self._store = ExperimentStore(self._deployments, deployment_descriptor.treatment.name)

        self._experiment = Experiment()
        self._previous: dict[str, Any] | None = None
        # Serializes poll ticks with watch callbacks; both touch _experiment.
        self._lock = asyncio.Lock()
        # Bumped on every clear so an in-flight tick of a cleared experiment is dropped.
        self._generation = 0

    @property
    def name(self) -> str:
        return self._gated_deployment_id

    def _log_fields(self, resource: dict[str, Any] | None = None) -> dict[str, str]:
        return {**super()._log_fields(resource), "gd_gated_deployment_id": self._gated_deployment_id}

    @property
    def experiment(self) -> Experiment:
        return self._experiment

    def get_stream(self) -> WatchStream:
        return self._kube.watch_deployment(self._namespace, self._descriptor.treatment.name)

    # -- watch callbacks ----------------------------------------------------

    async def on_added(self, deployment: dict[str, Any]) -> None:
        async with self._lock:
            self._previous = deployment
            await self._start_experiment(deployment)

    async def on_modified(self, deployment: dict[str, Any]) -> None:
        # Pod status churn produces many modify events for an unchanged
        # deployment. Only restart on a replica or pod spec change.
        async with self._lock:
            previous = self._previous
            if (
                previous is None
                or deployments.replicas(deployment) != deployments.replicas(previous)
                or not deployments.is_pod_spec_identical(deployment, previous)
            ):
                await self._clear_experiment()
                await self._start_experiment(deployment)
            self._previous = deployment

    async def on_deleted(self, deployment: dict[str, Any]) -> None:
        async with self._lock:
            self._previous = None
            await self._clear_experiment()

    def shutdown(self) -> None:
        """Stop watching and polling but keep the experiment annotation for resume."""
        super().shutdown()
        self._generation += 1
        poller = self._experiment.poller
        if poller is not None and poller is not asyncio.current_task():
            poller.cancel()
        if self._experiment.running:
            for plugin in self._plugins:
                plugin.on_experiment_stop()
        self._experiment = Experiment()

    # -- experiment lifecycle (callers hold _lock) ---------------------------

    async def _is_eligible_for_experiment(self, treatment_deployment: dict[str, Any]) -> bool:
        """Identical control and treatment pod specs leave nothing to compare."""
        control_deployment = await self._deployments.get(self._descriptor.control.name)
        return not deployments.is_pod_spec_identical(control_deployment, treatment_deployment)

    async def _start_experiment(self, treatment_deployment: dict[str, Any]) -> None:
        try:
            annotation: ExperimentAnnotation | None = None
            if deployments.replicas(treatment_deployment) > 0:
                if await self._is_eligible_for_experiment(treatment_deployment):
                    annotation = self._begin(treatment_deployment)
                else:
                    logger.info(
                        "%s: Found non zero treatment replicas with same pod spec as control. "
                        "Killing treatment and setting no harm",
                        self._gated_deployment_id,
                        extra=self._log_fields(),
                    )
                    await self._kill_treatment(Verdict.NO_HARM)

            if annotation is None:
                await self._store.clear()
            else:
                await self._store.save(annotation)
        except Exception:
            logger.exception(
                "%s: Error occurred when starting experiment", self._gated_deployment_id, extra=self._log_fields()
            )

    def _begin(self, treatment_deployment: dict[str, Any]) -> ExperimentAnnotation:
        pod_spec_hash = deployments.pod_spec_hash(treatment_deployment)
        existing = self._store.load(treatment_deployment)
        if existing is not None and existing.pod_spec_hash == pod_spec_hash:
            start_time = existing.start_time
            metrics.increment("experiments_resumed")
            logger.info(
                "%s: Resuming experiment started at %s",
                self._gated_deployment_id,
                start_time.isoformat(),
                extra=self._log_fields(),
            )
        else:
            start_time = utcnow()
            metrics.increment("experiments_started")
            logger.info("%s: Starting experiment", self._gated_deployment_id, extra=self._log_fields())

        self._experiment = Experiment(
            start_time=start_time,
            poller=asyncio.get_running_loop().create_task(
                self._run_poller(self._generation),
                name=f"poll:{self._gated_deployment_id}",
            ),
            treatment_pod_spec=deployments.pod_spec(treatment_deployment),
        )
        for plugin in self._plugins:
            plugin.on_experiment_start(start_time)

        return ExperimentAnnotation(start_time=start_time, pod_spec_hash=pod_spec_hash)

    async def _clear_experiment(self) -> None:
        if not self._experiment.running:
            return

        logger.info("%s: Stopping experiment", self._gated_deployment_id, extra=self._log_fields())
        self._generation += 1
        poller = self._experiment.poller
        if poller is not None and poller is not asyncio.current_task():
            poller.cancel()
        self._experiment = Experiment()
        for plugin in self._plugins:
            plugin.on_experiment_stop()

        try:
            await self._store.clear()
        except Exception:
            logger.exception(
                "%s: Error occurred when clearing experiment", self._gated_deployment_id, extra=self._log_fields()
            )

    async def _kill_treatment(self, verdict: Verdict) -> None:
        await self._deployments.kill(self._descriptor.treatment.name)
        await self._store.set_status(verdict.value)
        metrics.increment("treatments_killed")

    async def _pass_experiment(self) -> None:
        treatment_pod_spec = self._experiment.treatment_pod_spec

        # Clear before mutating: the patches below come back as modify events
        # and must not be taken for a new treatment needing an experiment.
        await self._clear_experiment()

        logger.info(
            "%s: Updating control with treatment and killing treatment",
            self._gated_deployment_id,
            extra=self._log_fields(),
        )
        await self._deployments.update_pod_spec(self._descriptor.control.name, treatment_pod_spec)
        await self._kill_treatment(Verdict.NO_HARM)
        metrics.increment("experiments_passed")

    async def _fail_experiment(self) -> None:
        await self._clear_experiment()

        logger.info("%s: Killing treatment", self._gated_deployment_id, extra=self._log_fields())
        await self._kill_treatment(Verdict.HARM)
        metrics.increment("experiments_failed")

    # -- polling ------------------------------------------------------------

    async def _run_poller(self, generation: int) -> None:
        while True:
            await asyncio.sleep(self._poller_interval_seconds)
            async with self._lock:
                if generation != self._generation:
                    return
                try:
                    await self._poll()
                except Exception:
                    logger.exception(
                        "%s: Error occurred when polling", self._gated_deployment_id, extra=self._log_fields()
                    )

    async def _poll_plugin(self, plugin: ExperimentTimeLimit) -> Decision:
        try:
            return await plugin.on_experiment_poll()
        except Exception:
            metrics.increment("plugin_poll_errors")
            logger.exception(
                "%s: Error occurred when polling plugin %s",
                self._gated_deployment_id,
                plugin.name,
                extra=self._log_fields(),
            )
            return Decision.WAIT

    async def _poll(self) -> None:
        """Fail on any FAIL, pass when every plugin passes, otherwise keep running."""
        results = await asyncio.gather(*(self._poll_plugin(plugin) for plugin in self._plugins))

        if any(result == Decision.FAIL for result in results):
            decision, message = Decision.FAIL, "Experiment failed"
        elif all(result == Decision.PASS for result in results):
            decision, message = Decision.PASS, "Experiment success"
        else:
            decision, message = Decision.WAIT, "Experiment not yet significant"

        metrics.record_poll(self._gated_deployment_id, decision.value)
        logger.info(
            "%s: %s",
            self._gated_deployment_id,
            message,
            extra={**self._log_fields(), "gd_decision": decision.value},
        )
        if decision is Decision.FAIL:
            await self._fail_experiment()
        elif decision is Decision.PASS:
            await self._pass_experiment()
