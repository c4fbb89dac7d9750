from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from gated_deployments import metrics


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def kube():
    """Cluster client double: deployments are read from ``kube.deployments``."""
    client = MagicMock()
    client.deployments = {}

    async def _get_deployment(namespace: str, name: str) -> dict[str, Any]:
        return client.deployments[name]

    client.get_deployment = AsyncMock(side_effect=_get_deployment)
    client.patch_deployment = AsyncMock()
    client.read_secret_value = AsyncMock(return_value="query-key")
    return client
