"""Decision plugin contract and the experiment time limit shared by all plugins."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from ..models import DEFAULT_MAX_TIME_SECONDS, utcnow

logger = logging.getLogger(__name__)


class Decision(str, enum.Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    WAIT = "WAIT"


class DecisionPlugin(Protocol):
    """What a plugin builder must return."""

    def on_experiment_start(self, start_time: datetime) -> None: ...

    def on_experiment_stop(self) -> None: ...

    async def poll(self) -> Decision: ...


@dataclass(frozen=True)
class PluginContext:
    """Everything a plugin builder may need besides its own config."""

    namespace: str
    kube: Any
    control_name: str
    treatment_name: str


class ExperimentTimeLimit:
    """Wraps a plugin so an experiment that outlives ``max_time`` passes.

    An experiment that ran its full duration without conclusive harm is
    accepted. ``max_time <= 0`` disables the limit.
    """

    def __init__(
        self,
        plugin: DecisionPlugin,
        *,
        name: str,
        control_name: str,
        treatment_name: str,
        max_time: int = DEFAULT_MAX_TIME_SECONDS,
    ) -> None:
        self.plugin = plugin
        self.name = name
        self.control_name = control_name
        self.treatment_name = treatment_name
        self.max_time = max_time
        self.start_time: datetime | None = None

    def on_experiment_start(self, start_time: datetime) -> None:
        self.start_time = start_time
        self.plugin.on_experiment_start(start_time)

    def on_experiment_stop(self) -> None:
        self.start_time = None
        self.plugin.on_experiment_stop()

    def elapsed_seconds(self) -> float | None:
        if self.start_time is None:
            return None
        return (utcnow() - self.start_time).total_seconds()

    async def on_experiment_poll(self) -> Decision:
        elapsed = self.elapsed_seconds()
        if self.max_time > 0 and elapsed is not None and elapsed >= self.max_time:
            logger.debug(
                "%s: %s reached max time (%ds), passing",
                self.treatment_name,
                self.name,
                self.max_time,
                extra={"gd_deployment": self.treatment_name},
            )
            return Decision.PASS
        return await self.plugin.poll()
