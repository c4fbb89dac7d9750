"""Latency comparison of control and treatment from New Relic transactions."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .. import analysis, newrelic
from ..models import DEFAULT_MAX_TIME_SECONDS
from .base import Decision, PluginContext
from .registry import register_plugin

logger = logging.getLogger(__name__)

PLUGIN_NAME = "newRelicPerformance"

_DECISIONS = {
    analysis.Verdict.HARM: Decision.FAIL,
    analysis.Verdict.NO_HARM: Decision.PASS,
    analysis.Verdict.NOT_SIGNIFICANT: Decision.WAIT,
}


class NewRelicPerformanceConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    account_id: str = Field(alias="accountId")
    secret_name: str = Field(alias="secretName")
    secret_key: str = Field(alias="secretKey")
    app_name: str = Field(alias="appName")
    test_path: str = Field(default="%", alias="testPath")
    min_samples: int = Field(default=50, alias="minSamples", ge=1)
    max_time: int = Field(default=DEFAULT_MAX_TIME_SECONDS, alias="maxTime")
    harm_threshold: float = Field(default=analysis.DEFAULT_HARM_THRESHOLD, alias="harmThreshold")
    z_score_threshold: float = Field(
        default=analysis.DEFAULT_Z_SCORE_THRESHOLD, alias="zScoreThreshold"
    )

    @field_validator("account_id", mode="before")
    @classmethod
    def account_id_as_text(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value


class NewRelicPerformancePlugin:
    def __init__(
        self,
        config: NewRelicPerformanceConfig,
        client: newrelic.NewRelicClient,
        control_name: str,
        treatment_name: str,
    ) -> None:
        self._config = config
        self._client = client
        self._control_name = control_name
        self._treatment_name = treatment_name
        self._start_time: datetime | None = None

    def on_experiment_start(self, start_time: datetime) -> None:
        self._start_time = start_time

    def on_experiment_stop(self) -> None:
        self._start_time = None

    async def poll(self) -> Decision:
        """Run the Mann-Whitney U test over samples collected since the start."""
        if self._start_time is None:
            return Decision.WAIT

        control, treatment = await asyncio.gather(
            self._fetch_performance_data(self._control_name),
            self._fetch_performance_data(self._treatment_name),
        )

        if not control["samples"] or not treatment["samples"]:
            return Decision.WAIT

        result = analysis.evaluate(
            control["samples"],
            treatment["samples"],
            min_samples=self._config.min_samples,
            harm_threshold=self._config.harm_threshold,
            z_score_threshold=self._config.z_score_threshold,
        )
        logger.info(
            "%s: control avg=%s n=%s, treatment avg=%s n=%s, u=%s z=%.2f -> %s",
            self._treatment_name,
            control.get("average"),
            len(control["samples"]),
            treatment.get("average"),
            len(treatment["samples"]),
            result.u,
            result.z_score,
            result.verdict.value,
            extra={"gd_deployment": self._treatment_name, "gd_decision": result.verdict.value},
        )
        return _DECISIONS[result.verdict]

    async def _fetch_performance_data(self, name: str) -> dict[str, Any]:
        query = {
            "since": self._start_time,
            "host_prefix": name,
            "app_name": self._config.app_name,
            "path_name": self._config.test_path,
        }
        summary, samples = await asyncio.gather(
            self._client.query_average(**query),
            self._client.query_samples(**query),
        )
        return {**summary, "samples": samples}


@register_plugin(PLUGIN_NAME)
async def build(context: PluginContext, config: dict[str, Any]) -> NewRelicPerformancePlugin:
    plugin_config = NewRelicPerformanceConfig.model_validate(config)
    client = await newrelic.get_client_from_secret(
        context.kube,
        context.namespace,
        account_id=plugin_config.account_id,
        secret_name=plugin_config.secret_name,
        secret_key=plugin_config.secret_key,
    )
    return NewRelicPerformancePlugin(
        plugin_config, client, context.control_name, context.treatment_name
    )
