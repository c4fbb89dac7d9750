"""Gated deployments controller: canary decisions driven by cluster watch streams."""

import asyncio
import logging
import signal

from .config import Config
from .crd import CUSTOM_RESOURCE_MANIFEST
from .gated_deployment_watcher import GatedDeploymentWatcher
from .health import start_health_server
from .kube import KubeClient
from .logging import parse_level, setup_logging
from .plugins import registered_plugins


def main() -> None:
    config = Config.from_env()
    setup_logging(config.log_format, parse_level(config.log_level))

    logger = logging.getLogger(__name__)

    logger.info("Gated deployments controller starting")
    logger.info("Log format: %s", config.log_format)
    logger.info("Controller namespace: %s", config.controller_namespace)
    logger.info("Poller interval: %dms", config.poller_interval_milliseconds)
    logger.info("Health port: %d", config.health_port)
    logger.info("Registered decision plugins: %s", registered_plugins())

    asyncio.run(_run(config))


async def _run(config: Config) -> None:
    logger = logging.getLogger(__name__)

    kube = await KubeClient.from_config(
        config.kubeconfig,
        watch_timeout_seconds=config.watch_timeout_seconds,
    )
    try:
        logger.info("Updating CRD")
        await kube.upsert_custom_resource_definition(CUSTOM_RESOURCE_MANIFEST)
        logger.info("Successfully updated CRD")

        supervisor = GatedDeploymentWatcher(
            kube=kube,
            controller_namespace=config.controller_namespace,
            poller_interval_seconds=config.poller_interval_seconds,
        )

        health_server = await start_health_server(config.health_port, supervisor)
        logger.info("Health server started")

        shutdown = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, shutdown.set)

        supervisor.start()
        logger.info("Watching gated deployments")
        try:
            await shutdown.wait()
            logger.info("Shutdown requested")
        finally:
            # Experiment annotations stay in place so the next process resumes.
            children = list(supervisor.deployment_watchers.values())
            supervisor.shutdown()
            await supervisor.drain()
            for watcher in children:
                await watcher.drain()
            health_server.close()
            await health_server.wait_closed()
    finally:
        await kube.close()


if __name__ == "__main__":
    main()
