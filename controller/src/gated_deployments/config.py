import os
from dataclasses import dataclass


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class Config:
    controller_namespace: str = "kubernetes-gated-deployments"
    poller_interval_milliseconds: int = 30000
    watch_timeout_seconds: int = 300
    health_port: int = 8081
    log_format: str = "json"
    log_level: str = "info"
    kubeconfig: str | None = None

    @property
    def poller_interval_seconds(self) -> float:
        return self.poller_interval_milliseconds / 1000.0

    @classmethod
    def from_env(cls) -> "Config":
        poller_interval = _int_env("POLLER_INTERVAL_MILLISECONDS", 30000)
        if poller_interval <= 0:
            raise RuntimeError("POLLER_INTERVAL_MILLISECONDS must be positive")

        log_format = os.environ.get("GATED_LOG_FORMAT", "json").lower()
        if log_format not in ("json", "text"):
            raise RuntimeError(f"GATED_LOG_FORMAT must be 'json' or 'text', got {log_format!r}")

        return cls(
            controller_namespace=os.environ.get("CONTROLLER_NAMESPACE") or "kubernetes-gated-deployments",
            poller_interval_milliseconds=poller_interval,
            watch_timeout_seconds=_int_env("GATED_WATCH_TIMEOUT_SECONDS", 300),
            health_port=_int_env("GATED_HEALTH_PORT", 8081),
            log_format=log_format,
            log_level=os.environ.get("LOG_LEVEL", "info").lower(),
            kubeconfig=os.environ.get("KUBECONFIG") or None,
        )
