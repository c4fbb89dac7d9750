"""Decision plugin registry: builders registered by name, built per GatedDeployment declaration.

Every built plugin is wrapped in ExperimentTimeLimit, so a declaration's
``maxTime`` applies uniformly regardless of the plugin behind it.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..models import PluginConfig
from .base import DecisionPlugin, ExperimentTimeLimit, PluginContext

logger = logging.getLogger(__name__)

# Builder signature: async def build(context: PluginContext, config: dict) -> DecisionPlugin
PluginBuilder = Callable[[PluginContext, dict[str, Any]], Awaitable[DecisionPlugin]]

_registry: dict[str, PluginBuilder] = {}


class UnknownPluginError(ValueError):
    pass


def register_plugin(name: str) -> Callable[[PluginBuilder], PluginBuilder]:
    """Register a plugin builder under the name used in ``decisionPlugins``."""

    def decorator(fn: PluginBuilder) -> PluginBuilder:
        if name in _registry:
            raise ValueError(f"Duplicate plugin name={name!r}")
        _registry[name] = fn
        logger.debug("Registered decision plugin %s", name)
        return fn

    return decorator


def get_builder(name: str) -> PluginBuilder | None:
    return _registry.get(name)


def registered_plugins() -> list[str]:
    return list(_registry.keys())


async def build_plugins_from_config(
    context: PluginContext,
    configs: list[PluginConfig],
) -> list[ExperimentTimeLimit]:
    """Build every configured plugin concurrently.

    Any unknown name or failing builder fails the whole set.
    """
    builders: list[PluginBuilder] = []
    for config in configs:
        builder = get_builder(config.name)
        if builder is None:
            raise UnknownPluginError(f"Invalid plugin: {config.name}")
        builders.append(builder)

    plugins = await asyncio.gather(*(
        builder(context, config.as_dict())
        for builder, config in zip(builders, configs)
    ))

    return [
        ExperimentTimeLimit(
            plugin,
            name=config.name,
            control_name=context.control_name,
            treatment_name=context.treatment_name,
            max_time=config.max_time,
        )
        for plugin, config in zip(plugins, configs)
    ]
