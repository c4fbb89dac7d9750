"""New Relic Insights query client.

See https://docs.newrelic.com/docs/insights/insights-api/get-data/query-insights-event-data-api
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

import httpx

logger = logging.getLogger(__name__)

QUERY_URL = "https://insights-api.newrelic.com/v1/accounts/{account_id}/query"

AVERAGE_TEMPLATE = (
    "SELECT average(duration), count(*) FROM Transaction SINCE '{since}' UNTIL now "
    "WHERE host LIKE '{host}' AND appName = '{app_name}' AND `request.uri` LIKE '{path_name}'"
)
SAMPLES_TEMPLATE = (
    "SELECT duration FROM Transaction SINCE '{since}' UNTIL now "
    "WHERE host LIKE '{host}' AND appName = '{app_name}' AND `request.uri` LIKE '{path_name}' "
    "LIMIT 1000"
)


def format_since(since: datetime) -> str:
    return since.astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S")


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def build_nrql(template: str, *, since: datetime, host_prefix: str, app_name: str, path_name: str) -> str:
    """Fill a query template. Hosts of a group share the deployment name as prefix."""
    return template.format(
        since=format_since(since),
        host=_quote(f"{host_prefix}%"),
        app_name=_quote(app_name),
        path_name=_quote(path_name),
    )


class NewRelicClient:
    def __init__(
        self,
        account_id: str,
        key: str,
        *,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.account_id = account_id
        self._key = key
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    async def _query(self, nrql: str) -> list[dict[str, Any]]:
        async with httpx.AsyncClient(
            timeout=self._timeout_seconds, transport=self._transport
        ) as client:
            response = await client.get(
                QUERY_URL.format(account_id=self.account_id),
                params={"nrql": nrql},
                headers={"X-Query-Key": self._key, "Accept": "application/json"},
            )
            response.raise_for_status()
            return response.json()["results"]

    async def query_average(
        self, *, since: datetime, host_prefix: str, app_name: str, path_name: str
    ) -> dict[str, Any]:
        """Average duration and transaction count of one group."""
        results = await self._query(build_nrql(
            AVERAGE_TEMPLATE,
            since=since,
            host_prefix=host_prefix,
            app_name=app_name,
            path_name=path_name,
        ))
        summary: dict[str, Any] = {"average": None, "count": 0}
        for result in results:
            if "average" in result:
                summary["average"] = result["average"]
            if "count" in result:
                summary["count"] = result["count"]
        return summary

    async def query_samples(
        self, *, since: datetime, host_prefix: str, app_name: str, path_name: str
    ) -> list[float]:
        results = await self._query(build_nrql(
            SAMPLES_TEMPLATE,
            since=since,
            host_prefix=host_prefix,
            app_name=app_name,
            path_name=path_name,
        ))
        if not results:
            return []
        return [
            event["duration"]
            for event in results[0].get("events", [])
            if event.get("duration") is not None
        ]


async def get_client_from_secret(
    kube: Any,
    namespace: str,
    *,
    account_id: str,
    secret_name: str,
    secret_key: str,
) -> NewRelicClient:
    """Create a client whose query key is read from a secret in ``namespace``."""
    key = await kube.read_secret_value(namespace, secret_name, secret_key)
    return NewRelicClient(account_id, key)
