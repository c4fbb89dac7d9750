"""Experiment state persisted as an annotation on the treatment deployment.

The annotation is what lets a restarted controller resume an experiment with
its original start time instead of starting the clock again.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from .deployments import DeploymentHelper
from .models import ExperimentAnnotation

logger = logging.getLogger(__name__)

EXPERIMENT_ANNOTATION_NAME = "gatedDeployExperiment"
DEPLOYMENT_ANNOTATION_NAME = "gatedDeployStatus"


class ExperimentStore:
    def __init__(self, deployments: DeploymentHelper, treatment_name: str) -> None:
        self._deployments = deployments
        self._treatment_name = treatment_name

    def load(self, treatment_deployment: dict[str, Any]) -> ExperimentAnnotation | None:
        """Return the recorded experiment, or None if absent or invalid."""
        annotations = (treatment_deployment.get("metadata") or {}).get("annotations") or {}
        raw = annotations.get(EXPERIMENT_ANNOTATION_NAME)
        if not raw:
            return None
        try:
            return ExperimentAnnotation.model_validate(json.loads(raw))
        except (json.JSONDecodeError, TypeError, ValidationError):
            logger.debug(
                "Ignoring invalid experiment annotation on %s: %r",
                self._treatment_name,
                raw,
                extra={"gd_deployment": self._treatment_name},
            )
            return None

    async def save(self, state: ExperimentAnnotation) -> None:
        await self._deployments.set_annotation(
            self._treatment_name, EXPERIMENT_ANNOTATION_NAME, state.to_json()
        )

    async def clear(self) -> None:
        await self._deployments.set_annotation(
            self._treatment_name, EXPERIMENT_ANNOTATION_NAME, None
        )

    async def set_status(self, verdict: str) -> None:
        await self._deployments.set_annotation(
            self._treatment_name, DEPLOYMENT_ANNOTATION_NAME, verdict
        )
