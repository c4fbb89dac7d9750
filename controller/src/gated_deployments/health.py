"""Minimal async HTTP health endpoint for Kubernetes liveness checks.

Uses raw asyncio.start_server, no HTTP framework.
"""

import asyncio
import json
import logging

from .gated_deployment_watcher import GatedDeploymentWatcher
from .metrics import get_metrics
from .watcher import WatcherState

logger = logging.getLogger(__name__)

_HTTP_200 = "HTTP/1.1 200 OK\r\nContent-Type: application/json\r\n"
_HTTP_503 = "HTTP/1.1 503 Service Unavailable\r\nContent-Type: application/json\r\n"
_HTTP_404 = "HTTP/1.1 404 Not Found\r\nContent-Type: application/json\r\n"


def health_payload(supervisor: GatedDeploymentWatcher) -> tuple[bool, dict]:
    healthy = supervisor.state is WatcherState.RUNNING
    return healthy, {
        "status": "ok" if healthy else "degraded",
        "watcher": supervisor.state.value,
        "gated_deployments": supervisor.active_ids(),
        "metrics": get_metrics(),
    }


async def _handle_request(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    supervisor: GatedDeploymentWatcher,
) -> None:
    try:
        request_line = await asyncio.wait_for(reader.readline(), timeout=5)
        request_str = request_line.decode("utf-8", errors="replace")

        # Parse method and path from "GET /health HTTP/1.1\r\n"
        parts = request_str.strip().split()
        path = parts[1] if len(parts) >= 2 else "/"

        if path == "/health":
            healthy, payload = health_payload(supervisor)
            body = json.dumps(payload)
            status_line = _HTTP_200 if healthy else _HTTP_503
            response = f"{status_line}Content-Length: {len(body)}\r\n\r\n{body}"
        else:
            body = json.dumps({"error": "not_found"})
            response = f"{_HTTP_404}Content-Length: {len(body)}\r\n\r\n{body}"

        writer.write(response.encode())
        await writer.drain()
    except Exception:
        logger.debug("Health endpoint request error", exc_info=True)
    finally:
        writer.close()
        await writer.wait_closed()


async def start_health_server(
    port: int,
    supervisor: GatedDeploymentWatcher,
    host: str = "0.0.0.0",
) -> asyncio.Server:
    """Start the health HTTP server. Returns the asyncio.Server for lifecycle management."""

    async def handler(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        await _handle_request(reader, writer, supervisor)

    server = await asyncio.start_server(handler, host, port)
    logger.info("Health endpoint listening on port %d", port)
    return server
