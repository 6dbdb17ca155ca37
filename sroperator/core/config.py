"""
Operator settings loaded from environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


@dataclass
class OperatorSettings:
    """Runtime configuration of the operator process."""
    # Namespace to watch (empty = all namespaces)
    watch_namespace: str = ""

    # Store backend: "kubernetes" or "memory"
    store_backend: str = "kubernetes"
    kubeconfig: Optional[str] = None

    # Worker pool size per controller
    max_concurrent_reconciles: int = 4

    # Requeue timings (seconds)
    default_sync_interval: int = 300        # Schema resync when spec has none
    error_requeue_seconds: int = 60         # transient / registry errors
    instance_requeue_seconds: int = 600     # association and uniqueness errors

    # Registry endpoint resolution
    registry_url_template: str = "http://{name}.{namespace}.svc:{port}"
    registry_service_port: int = 8082
    registry_timeout_seconds: float = 10.0

    # Probe / metrics HTTP server
    probe_host: str = "0.0.0.0"
    probe_port: int = 8080

    app_version: str = field(default="0.1.0")

    @classmethod
    def from_env(cls) -> "OperatorSettings":
        """Build settings from the process environment."""
        return cls(
            watch_namespace=os.getenv("WATCH_NAMESPACE", ""),
            store_backend=os.getenv("STORE_BACKEND", "kubernetes").lower(),
            kubeconfig=os.getenv("KUBECONFIG") or None,
            max_concurrent_reconciles=_env_int("MAX_CONCURRENT_RECONCILES", 4),
            default_sync_interval=_env_int("DEFAULT_SYNC_INTERVAL", 300),
            error_requeue_seconds=_env_int("ERROR_REQUEUE_SECONDS", 60),
            instance_requeue_seconds=_env_int("INSTANCE_REQUEUE_SECONDS", 600),
            registry_url_template=os.getenv(
                "REGISTRY_URL_TEMPLATE", "http://{name}.{namespace}.svc:{port}"
            ),
            registry_service_port=_env_int("REGISTRY_SERVICE_PORT", 8082),
            registry_timeout_seconds=_env_float("REGISTRY_TIMEOUT_SECONDS", 10.0),
            probe_host=os.getenv("PROBE_HOST", "0.0.0.0"),
            probe_port=_env_int("PROBE_PORT", 8080),
            app_version=os.getenv("APP_VERSION", "0.1.0"),
        )

    def validate(self) -> list:
        """Return a list of configuration problems (empty when valid)."""
        problems = []
        if self.store_backend not in ("kubernetes", "memory"):
            problems.append(f"STORE_BACKEND must be 'kubernetes' or 'memory', got '{self.store_backend}'")
        if self.max_concurrent_reconciles < 1:
            problems.append("MAX_CONCURRENT_RECONCILES must be >= 1")
        for name in ("default_sync_interval", "error_requeue_seconds", "instance_requeue_seconds"):
            if getattr(self, name) <= 0:
                problems.append(f"{name.upper()} must be positive")
        if self.instance_requeue_seconds < self.error_requeue_seconds:
            problems.append("INSTANCE_REQUEUE_SECONDS should not be shorter than ERROR_REQUEUE_SECONDS")
        if "{name}" not in self.registry_url_template:
            problems.append("REGISTRY_URL_TEMPLATE must contain '{name}'")
        return problems


_settings: Optional[OperatorSettings] = None


def get_settings() -> OperatorSettings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = OperatorSettings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (used by tests after changing the environment)."""
    global _settings
    _settings = None
