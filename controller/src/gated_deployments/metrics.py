"""In-memory controller metrics.

Asyncio is single-threaded, so plain dicts need no locking.
"""

import time

_start_time = time.monotonic()

_COUNTERS = (
    "experiments_started",
    "experiments_resumed",
    "experiments_passed",
    "experiments_failed",
    "treatments_killed",
    "plugin_poll_errors",
    "watch_restarts",
    "watch_errors",
    "callback_errors",
)

_metrics: dict = {name: 0 for name in _COUNTERS}
_metrics["polls"] = {}


def increment(name: str, amount: int = 1) -> None:
    if name not in _COUNTERS:
        raise KeyError(f"Unknown metric {name!r}")
    _metrics[name] += amount


def record_poll(gated_deployment_id: str, decision: str) -> None:
    """Count aggregated poll outcomes per gated deployment."""
    p = _metrics["polls"].setdefault(gated_deployment_id, {
        "PASS": 0,
        "FAIL": 0,
        "WAIT": 0,
    })
    p[decision] += 1


def reset() -> None:
    for name in _COUNTERS:
        _metrics[name] = 0
    _metrics["polls"].clear()


def get_metrics() -> dict:
    """Return a snapshot of current metrics."""
    snapshot = {name: _metrics[name] for name in _COUNTERS}
    snapshot["uptime_seconds"] = round(time.monotonic() - _start_time, 1)
    snapshot["polls"] = {
        name: dict(counts)
        for name, counts in _metrics["polls"].items()
    }
    return snapshot
