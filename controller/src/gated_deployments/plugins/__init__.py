from .base import Decision, DecisionPlugin, ExperimentTimeLimit, PluginContext
from .registry import (
    UnknownPluginError,
    build_plugins_from_config,
    get_builder,
    register_plugin,
    registered_plugins,
)

# Import plugins so they register themselves.
from . import newrelic_performance  # noqa: F401,E402

__all__ = [
    "Decision",
    "DecisionPlugin",
    "ExperimentTimeLimit",
    "PluginContext",
    "UnknownPluginError",
    "build_plugins_from_config",
    "get_builder",
    "register_plugin",
    "registered_plugins",
]
