"""Declaration and annotation models."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_MAX_TIME_SECONDS = 600


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class DeploymentRef(_CamelModel):
    name: str = Field(min_length=1)


class PluginConfig(_CamelModel):
    """One ``decisionPlugins`` entry. Plugin-specific keys are kept as extras."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str = Field(min_length=1)
    max_time: int = Field(default=DEFAULT_MAX_TIME_SECONDS, alias="maxTime")

    def as_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class DeploymentDescriptor(_CamelModel):
    control: DeploymentRef
    treatment: DeploymentRef
    decision_plugins: list[PluginConfig] = Field(default_factory=list, alias="decisionPlugins")


class ObjectMeta(_CamelModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    namespace: str
    resource_version: str | None = Field(default=None, alias="resourceVersion")


class GatedDeployment(_CamelModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    metadata: ObjectMeta
    deployment_descriptor: DeploymentDescriptor = Field(alias="deploymentDescriptor")

    @property
    def id(self) -> str:
        return f"{self.metadata.namespace}/{self.metadata.name}"


class ExperimentAnnotation(_CamelModel):
    """Durable experiment state stored on the treatment deployment."""

    start_time: datetime = Field(alias="startTime")
    pod_spec_hash: str = Field(alias="podSpecHash", min_length=1)

    @field_validator("start_time")
    @classmethod
    def as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def to_json(self) -> str:
        return json.dumps({
            "startTime": format_timestamp(self.start_time),
            "podSpecHash": self.pod_spec_hash,
        })
